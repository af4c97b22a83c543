"""
易支付路由：

- POST /api/checkout/providers/zpay/url            获取支付跳转链接
- GET|POST /api/checkout/providers/zpay/webhook    易支付异步回调（notify_url）
- POST /api/checkout/providers/zpay/confirm-return 浏览器回传 return_url 参数确认支付
- GET  /api/checkout/providers/zpay/status         前端轮询订单状态
- GET  /api/checkout/providers/zpay/orders         查询客户端最近订单
"""

import logging
from typing import Optional

from fastapi import APIRouter, Query, Request
from fastapi.responses import JSONResponse, PlainTextResponse
from pydantic import BaseModel

from paygate.config import ConfigError, PaymentConfig
from paygate.services.checkout_service import (
    CheckoutService,
    InvalidInputError,
    ResourceExhaustedError,
)
from paygate.services.order_store import OrderNotFoundError, OrderStore, StorageError
from paygate.services.webhook_service import TOKEN_ERROR, WebhookHandler

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/checkout/providers/zpay")


def _error(status_code: int, msg: str) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"success": False, "error": msg})


class CheckoutRequest(BaseModel):
    client_id: Optional[str] = None
    pay_method: Optional[str] = None
    # 兼容前端旧字段名
    uid: Optional[str] = None
    pay_type: Optional[str] = None


@router.post("/url")
async def create_checkout_url(body: CheckoutRequest):
    """
    创建订单并返回支付跳转链接。

    Body: {client_id: string, pay_method?: "alipay" | "wxpay"}
    """
    client_id = body.client_id or body.uid
    pay_method = body.pay_method or body.pay_type or "alipay"

    try:
        svc = CheckoutService(PaymentConfig.from_env())
        result = svc.create_checkout(client_id, pay_method)
    except InvalidInputError as e:
        return _error(400, str(e))
    except ConfigError as e:
        logger.error("[zpay/url] %s", e)
        return _error(500, str(e))
    except (ResourceExhaustedError, StorageError) as e:
        logger.error("[zpay/url] 创建订单失败: %s", e)
        return _error(500, "创建订单失败，请稍后重试")

    return JSONResponse(content={
        "success": True,
        "url": result.redirect_url,
        "order_no": result.order_no,
        "out_trade_no": result.order_no,
    })


def _webhook_handler() -> Optional[WebhookHandler]:
    try:
        return WebhookHandler(PaymentConfig.from_env().key)
    except ConfigError as e:
        logger.error("[zpay/webhook] %s", e)
        return None


@router.api_route("/webhook", methods=["GET", "POST"])
async def zpay_webhook(request: Request):
    """
    易支付异步回调。

    必须返回纯字符串 "success"，否则平台会重试。
    """
    params = dict(request.query_params)
    if request.method == "POST":
        form_data = await request.form()
        params.update({k: v for k, v in form_data.items() if isinstance(v, str)})

    handler = _webhook_handler()
    if handler is None:
        return PlainTextResponse(TOKEN_ERROR, status_code=500)

    result = handler.handle_callback(params)
    return PlainTextResponse(result.body, status_code=result.http_status)


@router.post("/confirm-return")
async def confirm_return(request: Request):
    """
    支付完成跳回页面后，前端将 return_url 上的全部参数回传，
    后端验签并确认支付（与异步回调使用同一套校验）。
    """
    try:
        payload = await request.json()
    except ValueError:
        return _error(400, "请求体必须是 JSON")
    if not isinstance(payload, dict):
        return _error(400, "请求体必须是 JSON 对象")

    handler = _webhook_handler()
    if handler is None:
        return _error(500, "支付配置缺失")

    params = {k: str(v) for k, v in payload.items() if v is not None}
    result = handler.confirm_return(params)
    if not result.acknowledged:
        return JSONResponse(
            status_code=result.http_status,
            content={"success": False, "error": result.body},
        )

    try:
        order = OrderStore().get_by_order_no(params.get("out_trade_no", ""))
    except OrderNotFoundError:
        # 非成功状态的回跳不会查询订单，这里可能仍然找不到
        return JSONResponse(content={"success": True, "status": None})
    except StorageError as e:
        logger.error("[zpay/confirm-return] 查询订单失败: %s", e)
        return _error(500, "服务器错误")

    return JSONResponse(content={"success": True, "status": order.status})


@router.get("/status")
async def order_status(
    out_trade_no: Optional[str] = Query(None),
    order_no: Optional[str] = Query(None),
):
    """前端轮询订单支付状态：pending | paid | analyzed。"""
    order_no = order_no or out_trade_no
    if not order_no:
        return _error(400, "缺少 out_trade_no 参数")

    try:
        order = OrderStore().get_by_order_no(order_no)
    except OrderNotFoundError:
        return _error(404, "订单不存在")
    except StorageError as e:
        logger.error("[zpay/status] 查询订单失败: %s", e)
        return _error(500, "服务器错误")

    return JSONResponse(content={
        "success": True,
        "status": order.status,
        "client_id": order.client_id,
    })


@router.get("/orders")
async def client_orders(
    client_id: Optional[str] = Query(None),
    limit: int = Query(20, ge=1, le=100),
):
    """查询某个客户端最近的订单，按创建时间倒序。"""
    if not client_id:
        return _error(400, "缺少 client_id 参数")

    try:
        orders = OrderStore().list_by_client(client_id, limit)
    except StorageError as e:
        logger.error("[zpay/orders] 查询订单失败: %s", e)
        return _error(500, "服务器错误")

    return JSONResponse(content={
        "success": True,
        "orders": [
            {
                "order_no": o.order_no,
                "amount": str(o.amount),
                "pay_method": o.pay_method,
                "status": o.status,
                "created_at": o.created_at,
            }
            for o in orders
        ],
    })
