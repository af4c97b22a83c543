"""
数据模型 / 类型定义，供各模块引用。
使用 dataclass 保持轻量，不引入 ORM。
"""

import sqlite3
from dataclasses import dataclass
from decimal import Decimal
from typing import Optional

# 订单状态流转：pending → paid → analyzed
STATUS_PENDING = "pending"
STATUS_PAID = "paid"
STATUS_ANALYZED = "analyzed"

ORDER_STATUSES = (STATUS_PENDING, STATUS_PAID, STATUS_ANALYZED)

# 支付方式：支付宝 / 微信支付
PAY_METHODS = ("alipay", "wxpay")


@dataclass
class Order:
    id: str
    order_no: str
    client_id: str
    amount: Decimal
    pay_method: str = "alipay"
    status: str = STATUS_PENDING
    provider_trade_no: Optional[str] = None
    provider_status_text: Optional[str] = None
    param: Optional[str] = None
    created_at: Optional[str] = None
    updated_at: Optional[str] = None

    @classmethod
    def from_row(cls, row: sqlite3.Row) -> "Order":
        """由 orders 表的一行构建 Order，金额按字符串还原为 Decimal。"""
        return cls(
            id=row["id"],
            order_no=row["order_no"],
            client_id=row["client_id"],
            amount=Decimal(str(row["amount"])).quantize(Decimal("0.01")),
            pay_method=row["pay_method"],
            status=row["status"],
            provider_trade_no=row["provider_trade_no"],
            provider_status_text=row["provider_status_text"],
            param=row["param"],
            created_at=row["created_at"],
            updated_at=row["updated_at"],
        )
