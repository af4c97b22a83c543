"""
AI 分析路由：POST /api/analyze

已配置易支付时，先通过分析闸门消费已支付订单，再调用视觉模型。
"""

import logging
from typing import Optional

from fastapi import APIRouter
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from paygate.config import ConfigError, VisionConfig, payment_required
from paygate.services.analysis_gate import AlreadyConsumedError, AnalysisGate, NotPaidError
from paygate.services.order_store import OrderNotFoundError, StorageError
from paygate.services.vision_client import VisionClient, VisionClientError, VisionTimeoutError

logger = logging.getLogger(__name__)

router = APIRouter()


class AnalyzeRequest(BaseModel):
    image: Optional[str] = None
    out_trade_no: Optional[str] = None
    order_no: Optional[str] = None


def _error(status_code: int, msg: str) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"success": False, "error": msg})


@router.post("/api/analyze")
async def analyze(body: AnalyzeRequest):
    """
    分析照片。

    Body: {image: string (data URL 或 base64), out_trade_no?: string}
    """
    if not body.image:
        return _error(400, "缺少 image 字段")

    # 先确认模型配置可用，避免订单被消费后才发现无法分析
    try:
        client = VisionClient(VisionConfig.from_env())
    except ConfigError as e:
        logger.error("[analyze] %s", e)
        return _error(500, str(e))

    if payment_required():
        order_no = body.order_no or body.out_trade_no
        if not order_no:
            return _error(402, "请先完成支付后再进行分析")

        try:
            AnalysisGate().consume_for_analysis(order_no)
        except OrderNotFoundError:
            return _error(404, "订单不存在，请重新支付")
        except AlreadyConsumedError as e:
            return _error(409, str(e))
        except NotPaidError as e:
            return _error(402, str(e))
        except StorageError as e:
            logger.error("[analyze] 更新订单状态失败: %s", e)
            return _error(500, "服务器错误，请稍后重试")

    try:
        result = client.analyze(body.image)
    except VisionTimeoutError as e:
        logger.error("[analyze] %s", e)
        return _error(504, "AI 分析超时，请稍后重试")
    except VisionClientError as e:
        logger.error("[analyze] %s", e)
        return _error(500, str(e))

    return JSONResponse(content={"success": True, "data": result})
