"""
支付结果通知处理：校验易支付异步回调（notify_url）和同步回跳（return_url）参数，
将订单从 pending 更新为 paid。

核心规则：
- 签名错误、订单不存在、金额不一致：拒绝，不修改订单
- 非 TRADE_SUCCESS 状态、重复通知、并发竞争失败：返回 "success"，避免平台重试
- 状态更新只通过 OrderStore.compare_and_transition 完成，重复投递最多生效一次
"""

import logging
from dataclasses import dataclass
from decimal import Decimal, InvalidOperation
from typing import Optional

from paygate.models.schemas import PAY_METHODS, STATUS_PAID, STATUS_PENDING
from paygate.services.order_store import OrderNotFoundError, OrderStore, StorageError
from paygate.services.sign import verify_sign

logger = logging.getLogger(__name__)

TRADE_SUCCESS = "TRADE_SUCCESS"

# 回应平台的纯文本标记
TOKEN_SUCCESS = "success"
TOKEN_SIGN_ERROR = "sign error"
TOKEN_NOT_FOUND = "order not found"
TOKEN_AMOUNT_MISMATCH = "amount mismatch"
TOKEN_ERROR = "error"


@dataclass
class WebhookResult:
    http_status: int
    body: str
    # 本次请求是否真正完成了 pending → paid
    transitioned: bool = False

    @property
    def acknowledged(self) -> bool:
        return self.body == TOKEN_SUCCESS


def _parse_amount(value) -> Optional[Decimal]:
    """解析回调金额，无法解析时返回 None。"""
    if value is None or str(value) == "":
        return None
    try:
        parsed = Decimal(str(value))
    except InvalidOperation:
        return None
    # NaN / sNaN / Infinity 不是有效金额，sNaN 参与比较还会直接抛异常
    if not parsed.is_finite():
        return None
    return parsed


class WebhookHandler:
    """易支付回调处理器。"""

    def __init__(self, key: str, store: Optional[OrderStore] = None):
        self._key = key
        self.store = store or OrderStore()

    def handle_callback(self, raw_params: dict) -> WebhookResult:
        """
        处理异步回调（notify_url），返回需要回应平台的状态码与纯文本。

        流程：验签 → 交易状态 → 查订单 → 幂等检查 → 金额校验 → 条件更新
        """
        return self._apply_payment(raw_params, source="webhook")

    def confirm_return(self, raw_params: dict) -> WebhookResult:
        """
        处理浏览器回传的 return_url 参数。

        易支付对同步回跳使用与异步回调相同的签名参数，
        因此与 handle_callback 共用同一套校验和状态流转。
        """
        return self._apply_payment(raw_params, source="return")

    def _apply_payment(self, raw_params: dict, source: str) -> WebhookResult:
        params = {k: v for k, v in raw_params.items() if v is not None}
        order_no = params.get("out_trade_no")
        trade_status = params.get("trade_status")

        # 安全校验 1：验证签名防止伪造通知
        if not verify_sign(params, self._key):
            logger.warning("[%s] 签名验证失败: order_no=%s", source, order_no)
            return WebhookResult(400, TOKEN_SIGN_ERROR)

        # 只处理支付成功状态，其余状态也回应 success 防止平台重试
        if trade_status != TRADE_SUCCESS:
            logger.info(
                "[%s] 非成功状态，跳过: order_no=%s, trade_status=%s",
                source, order_no, trade_status,
            )
            return WebhookResult(200, TOKEN_SUCCESS)

        try:
            order = self.store.get_by_order_no(order_no or "")
        except OrderNotFoundError:
            logger.warning("[%s] 订单不存在: order_no=%s", source, order_no)
            return WebhookResult(404, TOKEN_NOT_FOUND)
        except StorageError as e:
            logger.error("[%s] 查询订单失败: order_no=%s, %s", source, order_no, e)
            return WebhookResult(500, TOKEN_ERROR)

        # 幂等：已处理过的订单直接确认，不再做任何校验
        if order.status != STATUS_PENDING:
            logger.info(
                "[%s] 订单已处理，跳过重复通知: order_no=%s, status=%s",
                source, order_no, order.status,
            )
            return WebhookResult(200, TOKEN_SUCCESS)

        # 安全校验 2：金额必须与下单金额完全一致
        reported = _parse_amount(params.get("money"))
        if reported is None or reported != order.amount:
            logger.error(
                "[%s] 金额不匹配，疑似伪造通知: order_no=%s, received=%s, expected=%s",
                source, order_no, params.get("money"), order.amount,
            )
            return WebhookResult(400, TOKEN_AMOUNT_MISMATCH)

        extra = {
            "provider_trade_no": params.get("trade_no"),
            "provider_status_text": trade_status,
        }
        if params.get("type") in PAY_METHODS:
            extra["pay_method"] = params["type"]

        try:
            applied = self.store.compare_and_transition(
                order.order_no, STATUS_PENDING, STATUS_PAID, extra
            )
        except StorageError as e:
            logger.error("[%s] 更新订单失败: order_no=%s, %s", source, order_no, e)
            return WebhookResult(500, TOKEN_ERROR)

        if applied:
            logger.info(
                "[%s] 支付成功: order_no=%s, trade_no=%s, client_id=%s",
                source, order_no, params.get("trade_no"), order.client_id,
            )
        else:
            logger.info("[%s] 并发通知已由其他请求处理: order_no=%s", source, order_no)

        return WebhookResult(200, TOKEN_SUCCESS, transitioned=applied)
