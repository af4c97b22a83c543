"""易支付（zpay）MD5 签名生成与验证模块。"""

import hashlib
import hmac

SIGN_TYPE = "MD5"

# 不参与签名的保留字段
_RESERVED_KEYS = ("sign", "sign_type")


def canonicalize(params: dict) -> str:
    """
    构建待签名字符串。

    1. 过滤空值和 sign、sign_type 参数
    2. 按参数名 ASCII 码从小到大排序
    3. 拼接 URL 键值对（参数值不 URL 编码）
    """
    filtered = {
        k: v
        for k, v in params.items()
        if k not in _RESERVED_KEYS and v is not None and str(v) != ""
    }
    sorted_keys = sorted(filtered.keys())
    return "&".join(f"{k}={filtered[k]}" for k in sorted_keys)


def generate_sign(params: dict, key: str) -> str:
    """
    生成 MD5 签名：md5(待签名字符串 + 商户密钥 KEY)。

    返回小写 32 位十六进制签名字符串。
    """
    sign_str = canonicalize(params) + key
    return hashlib.md5(sign_str.encode("utf-8")).hexdigest()


def verify_sign(params: dict, key: str) -> bool:
    """
    验证请求中携带的 sign 是否正确。

    缺少 sign 字段时直接判定失败；比较区分大小写。
    """
    sign = params.get("sign")
    if not sign:
        return False
    expected = generate_sign(params, key)
    return hmac.compare_digest(
        expected.encode("utf-8"), str(sign).encode("utf-8")
    )
