"""
下单服务模块：生成订单号、创建待支付订单、构建易支付跳转链接。
"""

import logging
import random
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Optional
from urllib.parse import urlencode

from paygate.config import PaymentConfig
from paygate.models.schemas import PAY_METHODS, STATUS_PENDING, Order
from paygate.services.order_store import DuplicateOrderNoError, OrderStore
from paygate.services.sign import SIGN_TYPE, generate_sign

logger = logging.getLogger(__name__)

ORDER_AMOUNT = Decimal("0.50")  # 固定价格：人民币 0.5 元
PRODUCT_NAME = "颜究院颜值分析"

# 订单号冲突时的最大尝试次数
MAX_CREATE_ATTEMPTS = 5


class InvalidInputError(Exception):
    """下单参数无效。"""
    pass


class ResourceExhaustedError(Exception):
    """多次重试后仍无法生成唯一订单号。"""
    pass


@dataclass
class CheckoutResult:
    order_no: str
    redirect_url: str


def generate_order_no(now: Optional[datetime] = None) -> str:
    """
    生成商户订单号：时间戳 + 随机数。
    格式：YYYYMMDDHHMMSS + 3 位随机数字（100-999），例：20260219231505342。

    同一秒内可能冲突，唯一性由 orders.order_no 的唯一索引兜底。
    """
    ts = (now or datetime.now()).strftime("%Y%m%d%H%M%S")
    return f"{ts}{random.randint(100, 999)}"


class CheckoutService:
    """下单服务：创建订单并返回签名后的支付跳转链接。"""

    def __init__(self, config: PaymentConfig, store: Optional[OrderStore] = None):
        self.config = config
        self.store = store or OrderStore()

    def _create_pending_order(self, client_id: str, pay_method: str) -> Order:
        """写入待支付订单，订单号冲突时重新生成。"""
        for attempt in range(1, MAX_CREATE_ATTEMPTS + 1):
            order = Order(
                id="",
                order_no=generate_order_no(),
                client_id=client_id,
                amount=ORDER_AMOUNT,
                pay_method=pay_method,
                status=STATUS_PENDING,
            )
            try:
                return self.store.insert(order)
            except DuplicateOrderNoError:
                logger.warning(
                    "订单号冲突，重新生成: order_no=%s, attempt=%d",
                    order.order_no, attempt,
                )
        raise ResourceExhaustedError("无法生成唯一订单号，请重试")

    def build_pay_params(self, order: Order) -> dict:
        """构建易支付下单参数（不含 sign / sign_type）。"""
        return {
            "pid": self.config.pid,
            "name": PRODUCT_NAME,
            "money": str(order.amount),
            "out_trade_no": order.order_no,
            "notify_url": self.config.notify_url,
            "return_url": self.config.return_url,
            "type": order.pay_method,
        }

    def build_redirect_url(self, params: dict) -> str:
        """签名并拼接完整的支付跳转 URL。"""
        sign = generate_sign(params, self.config.key)
        query = urlencode({**params, "sign": sign, "sign_type": SIGN_TYPE})
        return f"{self.config.submit_url}?{query}"

    def create_checkout(self, client_id: str, pay_method: str = "alipay") -> CheckoutResult:
        """
        创建支付订单：
        1. 校验 client_id 与支付方式
        2. 生成订单号并写入 pending 订单（冲突时有限次重试）
        3. 构建签名参数，拼接支付跳转链接

        Raises:
            InvalidInputError: 参数无效。
            ResourceExhaustedError: 订单号多次冲突。
            StorageError: 数据库错误。
        """
        if not client_id:
            raise InvalidInputError("缺少用户标识 uid")
        if pay_method not in PAY_METHODS:
            raise InvalidInputError("pay_type 仅支持 alipay 或 wxpay")

        order = self._create_pending_order(client_id, pay_method)
        redirect_url = self.build_redirect_url(self.build_pay_params(order))

        logger.info(
            "创建订单: order_no=%s, client_id=%s, amount=%s, pay_method=%s",
            order.order_no, client_id, order.amount, pay_method,
        )
        return CheckoutResult(order_no=order.order_no, redirect_url=redirect_url)
