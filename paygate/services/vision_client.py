"""
视觉大模型客户端：通过 OpenAI 兼容的 chat/completions 接口（通义千问 VL）分析人脸照片。

主要功能：
- 组装图片 + 提示词请求
- 超时与接口错误转换为 VisionTimeoutError / VisionClientError
- 解析模型返回的 JSON（含正则兜底）并对字段做校验
"""

import json
import logging
import re

import httpx

from paygate.config import VisionConfig

logger = logging.getLogger(__name__)

SYSTEM_PROMPT = """你是一位专业的颜值分析与历史名人匹配 AI。
请分析用户上传的人脸照片，根据五官特征、面部比例、气质风格，给出颜值评分，并匹配最相似的中国历史名人。
你必须严格按照以下 JSON 格式返回，不得包含任何其他文字或 markdown 代码块：
{
  "score": <颜值评分，整数，范围 1-100>,
  "celebrity": "<最相似的中国历史名人姓名>",
  "similarity": <面部相似度百分比，整数，范围 1-100>,
  "description": "<该历史名人的简短介绍，20-50 字>",
  "dynasty": "<该名人所在的朝代或时代，如：唐代、西汉、三国等>"
}"""

USER_PROMPT = (
    "请分析这张照片，返回颜值评分和最相似的中国历史名人。"
    "只输出纯 JSON，不要包含任何 markdown 代码块或额外文字。"
)

_JSON_BLOCK = re.compile(r"\{[\s\S]*\}")


class VisionClientError(Exception):
    """视觉模型调用失败。"""
    pass


class VisionTimeoutError(VisionClientError):
    """视觉模型调用超时。"""
    pass


def to_image_url(image: str) -> str:
    """支持 data URL（data:image/jpeg;base64,...）或纯 base64。"""
    if image.startswith("data:"):
        return image
    return f"data:image/jpeg;base64,{image}"


def _to_int(value, default: int) -> int:
    try:
        return int(value) or default
    except (TypeError, ValueError):
        return default


def parse_result(raw: str) -> dict:
    """
    解析模型输出为结构化结果，缺失字段使用兜底值。

    Raises:
        VisionClientError: 输出中找不到 JSON。
    """
    try:
        result = json.loads(raw)
    except ValueError:
        match = _JSON_BLOCK.search(raw)
        if not match:
            raise VisionClientError(f"AI 返回内容无法解析为 JSON：{raw[:200]}")
        try:
            result = json.loads(match.group(0))
        except ValueError as e:
            raise VisionClientError(f"AI 返回内容无法解析为 JSON：{e}")

    if not isinstance(result, dict):
        raise VisionClientError("AI 返回内容不是 JSON 对象")

    return {
        "score": _to_int(result.get("score"), 80),
        "celebrity": str(result.get("celebrity") or "历史名人"),
        "similarity": _to_int(result.get("similarity"), 70),
        "description": str(result.get("description") or ""),
        "dynasty": str(result.get("dynasty") or ""),
    }


class VisionClient:
    """OpenAI 兼容接口客户端。"""

    def __init__(self, config: VisionConfig):
        self.config = config

    def _build_payload(self, image: str) -> dict:
        # response_format=json_object 在 Qwen VL 系列不稳定，由提示词约束 JSON 输出
        return {
            "model": self.config.model,
            "messages": [
                {"role": "system", "content": SYSTEM_PROMPT},
                {
                    "role": "user",
                    "content": [
                        {"type": "text", "text": USER_PROMPT},
                        {"type": "image_url", "image_url": {"url": to_image_url(image)}},
                    ],
                },
            ],
        }

    def analyze(self, image: str) -> dict:
        """
        调用视觉模型分析照片。

        Args:
            image: data URL 或纯 base64 图片。

        Returns:
            dict: {score, celebrity, similarity, description, dynasty}

        Raises:
            VisionTimeoutError: 超过配置的超时时间。
            VisionClientError: 接口调用失败或响应异常。
        """
        url = f"{self.config.base_url}/chat/completions"
        headers = {"Authorization": f"Bearer {self.config.api_key}"}

        try:
            with httpx.Client(timeout=self.config.timeout) as client:
                response = client.post(url, json=self._build_payload(image), headers=headers)
                response.raise_for_status()
        except httpx.TimeoutException as e:
            raise VisionTimeoutError(f"AI 分析超时: {e}")
        except httpx.HTTPError as e:
            raise VisionClientError(f"请求视觉模型接口失败: {e}")

        try:
            data = response.json()
            raw = data["choices"][0]["message"]["content"] or ""
        except (ValueError, KeyError, IndexError, TypeError) as e:
            raise VisionClientError(f"解析视觉模型响应失败: {e}")

        return parse_result(raw)
