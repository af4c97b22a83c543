"""
颜究院 paygate 应用入口：FastAPI 应用实例、路由注册和生命周期。
"""

import logging
import os
from contextlib import asynccontextmanager
from datetime import datetime

from dotenv import load_dotenv
from fastapi import FastAPI

from paygate.config import payment_required

load_dotenv()

# 日志配置
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
    force=True,
)

logger = logging.getLogger(__name__)


# ── Lifespan ──────────────────────────────────────────────

@asynccontextmanager
async def lifespan(app: FastAPI):
    """应用生命周期：启动时初始化数据库。"""
    from paygate.database import init_db

    init_db()
    logger.info("数据库初始化完成")
    yield


app = FastAPI(title="paygate", description="颜究院支付与分析后端", lifespan=lifespan)

# ── CORS 中间件（开发环境跨域） ────────────────────────────

if os.environ.get("CORS_ENABLED", "0") == "1":
    from fastapi.middleware.cors import CORSMiddleware
    app.add_middleware(
        CORSMiddleware,
        allow_origins=os.environ.get("CORS_ORIGINS", "http://localhost:5173").split(","),
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

# ── 路由注册 ──────────────────────────────────────────────

from paygate.routes.analyze import router as analyze_router
from paygate.routes.checkout import router as checkout_router

app.include_router(checkout_router)
app.include_router(analyze_router)


# ── 健康检查 ──────────────────────────────────────────────

@app.get("/health")
@app.get("/api/health")
async def health_check():
    return {
        "status": "ok",
        "time": datetime.now().isoformat(timespec="seconds"),
        "payment_required": payment_required(),
    }
