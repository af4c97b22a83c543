"""
运行配置：从环境变量（.env）读取支付与 AI 分析配置。

业务服务不直接读取环境变量，由路由层构造配置对象后传入。
"""

import os
from dataclasses import dataclass

from dotenv import load_dotenv

load_dotenv()

DEFAULT_SUBMIT_URL = "https://zpayz.cn/submit.php"
DEFAULT_VISION_BASE_URL = "https://dashscope.aliyuncs.com/compatible-mode/v1"
DEFAULT_VISION_MODEL = "qwen-vl-max"


class ConfigError(Exception):
    """必需的配置项缺失。"""
    pass


@dataclass(frozen=True)
class PaymentConfig:
    """易支付商户配置。"""

    pid: str
    key: str
    base_url: str
    submit_url: str = DEFAULT_SUBMIT_URL

    @property
    def notify_url(self) -> str:
        return f"{self.base_url}/api/checkout/providers/zpay/webhook"

    @property
    def return_url(self) -> str:
        # zpay 不支持 return_url 带参数，支付完成后跳回首页
        return self.base_url

    @classmethod
    def from_env(cls) -> "PaymentConfig":
        """
        读取 ZPAY_PID、ZPAY_KEY、BASE_URL（兼容 NEXT_PUBLIC_BASE_URL）。

        Raises:
            ConfigError: 任一必需项缺失。
        """
        pid = os.getenv("ZPAY_PID")
        key = os.getenv("ZPAY_KEY")
        base_url = os.getenv("BASE_URL") or os.getenv("NEXT_PUBLIC_BASE_URL")
        if not pid or not key or not base_url:
            raise ConfigError(
                "支付配置缺失：请检查 ZPAY_PID、ZPAY_KEY、BASE_URL 环境变量"
            )
        return cls(
            pid=pid,
            key=key,
            base_url=base_url.rstrip("/"),
            submit_url=os.getenv("ZPAY_SUBMIT_URL", DEFAULT_SUBMIT_URL),
        )


@dataclass(frozen=True)
class VisionConfig:
    """视觉大模型（OpenAI 兼容接口）配置。"""

    api_key: str
    base_url: str = DEFAULT_VISION_BASE_URL
    model: str = DEFAULT_VISION_MODEL
    timeout: float = 60.0

    @classmethod
    def from_env(cls) -> "VisionConfig":
        api_key = os.getenv("DASHSCOPE_API_KEY")
        if not api_key:
            raise ConfigError("服务端未配置 DASHSCOPE_API_KEY 环境变量")
        try:
            timeout = float(os.getenv("VISION_TIMEOUT", "60"))
        except ValueError:
            raise ConfigError("VISION_TIMEOUT 必须是数字")
        return cls(
            api_key=api_key,
            base_url=os.getenv("VISION_BASE_URL", DEFAULT_VISION_BASE_URL).rstrip("/"),
            model=os.getenv("VISION_MODEL", DEFAULT_VISION_MODEL),
            timeout=timeout,
        )


def payment_required() -> bool:
    """商户 PID 与 KEY 均已配置时才强制支付校验。"""
    return bool(os.getenv("ZPAY_PID") and os.getenv("ZPAY_KEY"))
