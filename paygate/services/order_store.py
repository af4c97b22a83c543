"""
订单存储：orders 表的插入、查询和条件状态流转。

compare_and_transition 是修改订单状态的唯一入口，
以单条 UPDATE ... WHERE status = ? 实现原子的乐观锁。
"""

import logging
import sqlite3
import uuid
from typing import Optional

from paygate.database import get_db
from paygate.models.schemas import (
    STATUS_ANALYZED,
    STATUS_PAID,
    STATUS_PENDING,
    Order,
)

logger = logging.getLogger(__name__)

# 允许的状态流转（只能前进，不能跳级或回退）
ALLOWED_TRANSITIONS = {
    (STATUS_PENDING, STATUS_PAID),
    (STATUS_PAID, STATUS_ANALYZED),
}

# 状态流转时允许一并写入的字段
TRANSITION_FIELDS = ("provider_trade_no", "provider_status_text", "pay_method", "param")


class OrderNotFoundError(Exception):
    """订单不存在。"""
    pass


class DuplicateOrderNoError(Exception):
    """订单号已存在（订单号生成冲突）。"""
    pass


class StorageError(Exception):
    """数据库读写失败，可安全重试。"""
    pass


class OrderStore:
    """订单存储服务。"""

    def insert(self, order: Order) -> Order:
        """
        写入一笔新订单。

        Raises:
            DuplicateOrderNoError: order_no 已存在。
            StorageError: 其他数据库错误。
        """
        if not order.id:
            order.id = uuid.uuid4().hex

        db = get_db()
        try:
            db.execute("BEGIN IMMEDIATE")
            db.execute(
                """INSERT INTO orders
                   (id, order_no, client_id, amount, pay_method, status, param)
                   VALUES (?, ?, ?, ?, ?, ?, ?)""",
                (
                    order.id, order.order_no, order.client_id,
                    str(order.amount), order.pay_method, order.status,
                    order.param,
                ),
            )
            db.commit()
        except sqlite3.IntegrityError as e:
            db.rollback()
            if "UNIQUE constraint failed" in str(e) and "order_no" in str(e):
                raise DuplicateOrderNoError(f"订单号 {order.order_no} 已存在") from e
            raise StorageError(f"订单写入失败: {e}") from e
        except sqlite3.Error as e:
            db.rollback()
            raise StorageError(f"订单写入失败: {e}") from e
        finally:
            db.close()

        return self.get_by_order_no(order.order_no)

    def get_by_order_no(self, order_no: str) -> Order:
        """
        按订单号查询。

        Raises:
            OrderNotFoundError: 订单不存在。
            StorageError: 数据库错误。
        """
        db = get_db()
        try:
            row = db.execute(
                "SELECT * FROM orders WHERE order_no = ?", (order_no,)
            ).fetchone()
        except sqlite3.Error as e:
            raise StorageError(f"订单查询失败: {e}") from e
        finally:
            db.close()

        if not row:
            raise OrderNotFoundError(f"订单 {order_no} 不存在")
        return Order.from_row(row)

    def compare_and_transition(
        self,
        order_no: str,
        expected_status: str,
        new_status: str,
        extra_fields: Optional[dict] = None,
    ) -> bool:
        """
        仅当当前状态等于 expected_status 时，原子地更新为 new_status。

        Args:
            order_no: 订单号。
            expected_status: 期望的当前状态。
            new_status: 目标状态。
            extra_fields: 同时写入的字段，仅限 TRANSITION_FIELDS。

        Returns:
            True 表示本次更新生效；False 表示状态已被其他请求改变（或订单不存在）。

        Raises:
            ValueError: 非法的状态流转或字段。
            StorageError: 数据库错误。
        """
        if (expected_status, new_status) not in ALLOWED_TRANSITIONS:
            raise ValueError(f"不允许的状态流转: {expected_status} → {new_status}")

        extra_fields = extra_fields or {}
        unknown = set(extra_fields) - set(TRANSITION_FIELDS)
        if unknown:
            raise ValueError(f"不允许更新的字段: {', '.join(sorted(unknown))}")

        # 字段名来自白名单，可安全拼接
        columns = list(extra_fields)
        assignments = ", ".join(["status = ?"] + [f"{c} = ?" for c in columns])
        values = [new_status] + [extra_fields[c] for c in columns]

        db = get_db()
        try:
            # 立即获取写锁，并发写入由 busy_timeout 排队
            db.execute("BEGIN IMMEDIATE")
            cursor = db.execute(
                f"UPDATE orders SET {assignments} WHERE order_no = ? AND status = ?",
                (*values, order_no, expected_status),
            )
            db.commit()
            applied = cursor.rowcount == 1
        except sqlite3.Error as e:
            db.rollback()
            raise StorageError(f"订单状态更新失败: {e}") from e
        finally:
            db.close()

        logger.debug(
            "条件状态流转: order_no=%s, %s → %s, applied=%s",
            order_no, expected_status, new_status, applied,
        )
        return applied

    def list_by_client(self, client_id: str, limit: int = 20) -> list[Order]:
        """查询某个客户端的订单，按创建时间倒序。"""
        db = get_db()
        try:
            rows = db.execute(
                """SELECT * FROM orders WHERE client_id = ?
                   ORDER BY created_at DESC, rowid DESC LIMIT ?""",
                (client_id, limit),
            ).fetchall()
        except sqlite3.Error as e:
            raise StorageError(f"订单查询失败: {e}") from e
        finally:
            db.close()
        return [Order.from_row(row) for row in rows]
