"""分析闸门：AI 分析前将订单从 paid 原子更新为 analyzed，每笔支付只能分析一次。"""

import logging
from typing import Optional

from paygate.models.schemas import STATUS_ANALYZED, STATUS_PAID, Order
from paygate.services.order_store import OrderStore

logger = logging.getLogger(__name__)


class GateError(Exception):
    """分析闸门拒绝。"""
    pass


class NotPaidError(GateError):
    """订单尚未完成支付。"""
    pass


class AlreadyConsumedError(GateError):
    """订单已使用过（已分析）。"""
    pass


class AnalysisGate:
    def __init__(self, store: Optional[OrderStore] = None):
        self.store = store or OrderStore()

    def consume_for_analysis(self, order_no: str) -> Order:
        """
        消费已支付订单。

        Returns:
            状态更新前的订单快照（status 仍为 paid）。

        Raises:
            OrderNotFoundError: 订单不存在。
            AlreadyConsumedError: 订单已分析，或并发请求抢先完成了消费。
            NotPaidError: 订单未支付。
            StorageError: 数据库错误。
        """
        order = self.store.get_by_order_no(order_no)

        if order.status == STATUS_ANALYZED:
            raise AlreadyConsumedError("该订单已使用，每次支付仅可分析一次")
        if order.status != STATUS_PAID:
            raise NotPaidError(f"订单尚未完成支付，请先支付 ¥{order.amount}")

        if not self.store.compare_and_transition(order_no, STATUS_PAID, STATUS_ANALYZED):
            logger.info("并发分析请求已抢先消费订单: order_no=%s", order_no)
            raise AlreadyConsumedError("该订单已使用，每次支付仅可分析一次")

        logger.info("订单已消费: order_no=%s, client_id=%s", order_no, order.client_id)
        return order
