"""下单服务单元测试。"""

import os
import re
import sqlite3
import tempfile
from datetime import datetime
from decimal import Decimal
from unittest.mock import patch
from urllib.parse import parse_qs, urlparse

import pytest

# 在导入 paygate 模块之前设置测试数据库路径
_tmp = tempfile.NamedTemporaryFile(suffix=".db", delete=False, prefix="checkout_svc_")
_tmp.close()
os.environ["DB_PATH"] = _tmp.name

import paygate.database as _db_mod
from paygate.config import PaymentConfig
from paygate.database import init_db
from paygate.services.checkout_service import (
    MAX_CREATE_ATTEMPTS,
    ORDER_AMOUNT,
    PRODUCT_NAME,
    CheckoutService,
    InvalidInputError,
    ResourceExhaustedError,
    generate_order_no,
)
from paygate.services.order_store import OrderStore, StorageError
from paygate.services.sign import generate_sign, verify_sign

CONFIG = PaymentConfig(
    pid="1001",
    key="merchant-key",
    base_url="https://yan.example.com",
    submit_url="https://zpayz.cn/submit.php",
)


@pytest.fixture(autouse=True)
def _setup_db():
    """每个测试前重建数据库。"""
    os.environ["DB_PATH"] = _tmp.name
    _db_mod.DB_PATH = _tmp.name
    conn = sqlite3.connect(_tmp.name)
    conn.executescript("DROP TABLE IF EXISTS orders;")
    conn.close()
    init_db()
    yield


@pytest.fixture
def svc():
    return CheckoutService(CONFIG)


def _query(url: str) -> dict:
    return {k: v[0] for k, v in parse_qs(urlparse(url).query).items()}


# ── generate_order_no 测试 ────────────────────────────────


class TestGenerateOrderNo:
    """订单号生成测试。"""

    def test_format(self):
        order_no = generate_order_no()
        assert re.fullmatch(r"\d{17}", order_no)

    def test_timestamp_prefix(self):
        order_no = generate_order_no(datetime(2026, 2, 19, 12, 0, 0))
        assert order_no.startswith("20260219120000")

    def test_zero_padding(self):
        order_no = generate_order_no(datetime(2026, 1, 2, 3, 4, 5))
        assert order_no[:14] == "20260102030405"

    def test_suffix_range(self):
        for _ in range(200):
            suffix = int(generate_order_no()[-3:])
            assert 100 <= suffix <= 999

    @patch("paygate.services.checkout_service.random.randint", return_value=123)
    def test_scenario_order_no(self, _mock_randint):
        assert generate_order_no(datetime(2026, 2, 19, 12, 0, 0)) == "20260219120000123"

    def test_prefix_non_decreasing(self):
        first = generate_order_no()
        second = generate_order_no()
        assert second[:14] >= first[:14]


# ── create_checkout 测试 ─────────────────────────────────


class TestCreateCheckout:
    """create_checkout 测试。"""

    def test_creates_pending_order(self, svc):
        result = svc.create_checkout("u1", "alipay")
        order = OrderStore().get_by_order_no(result.order_no)
        assert order.status == "pending"
        assert order.client_id == "u1"
        assert order.amount == ORDER_AMOUNT
        assert order.pay_method == "alipay"

    def test_redirect_url_params(self, svc):
        result = svc.create_checkout("u1", "wxpay")
        assert result.redirect_url.startswith("https://zpayz.cn/submit.php?")
        q = _query(result.redirect_url)
        assert q["pid"] == "1001"
        assert q["name"] == PRODUCT_NAME
        assert q["money"] == "0.50"
        assert q["out_trade_no"] == result.order_no
        assert q["notify_url"] == "https://yan.example.com/api/checkout/providers/zpay/webhook"
        assert q["return_url"] == "https://yan.example.com"
        assert q["type"] == "wxpay"
        assert q["sign_type"] == "MD5"

    def test_redirect_url_signature_valid(self, svc):
        result = svc.create_checkout("u1")
        q = _query(result.redirect_url)
        assert verify_sign(q, CONFIG.key)
        assert q["sign"] == generate_sign(q, CONFIG.key)

    def test_default_pay_method_alipay(self, svc):
        result = svc.create_checkout("u1")
        assert _query(result.redirect_url)["type"] == "alipay"

    def test_missing_client_id(self, svc):
        with pytest.raises(InvalidInputError):
            svc.create_checkout("", "alipay")

    def test_invalid_pay_method(self, svc):
        with pytest.raises(InvalidInputError):
            svc.create_checkout("u1", "qqpay")

    def test_invalid_input_creates_nothing(self, svc):
        with pytest.raises(InvalidInputError):
            svc.create_checkout("u1", "paypal")
        assert OrderStore().list_by_client("u1") == []

    def test_each_checkout_creates_one_order(self, svc):
        first = svc.create_checkout("u1")
        second = svc.create_checkout("u1")
        assert first.order_no != second.order_no
        assert len(OrderStore().list_by_client("u1")) == 2


class TestOrderNoCollision:
    """订单号冲突重试测试。"""

    def test_retries_on_collision(self, svc):
        svc.create_checkout("u1")
        existing = OrderStore().list_by_client("u1")[0].order_no

        with patch(
            "paygate.services.checkout_service.generate_order_no",
            side_effect=[existing, existing, "20260219120000999"],
        ):
            result = svc.create_checkout("u2")

        assert result.order_no == "20260219120000999"
        # 原订单未被覆盖
        assert OrderStore().get_by_order_no(existing).client_id == "u1"

    def test_exhausted_after_max_attempts(self, svc):
        svc.create_checkout("u1")
        existing = OrderStore().list_by_client("u1")[0].order_no

        with patch(
            "paygate.services.checkout_service.generate_order_no",
            return_value=existing,
        ) as mock_gen:
            with pytest.raises(ResourceExhaustedError):
                svc.create_checkout("u2")

        assert mock_gen.call_count == MAX_CREATE_ATTEMPTS
        assert OrderStore().list_by_client("u2") == []

    def test_storage_error_propagates(self):
        store = OrderStore()
        with patch.object(store, "insert", side_effect=StorageError("disk full")):
            with pytest.raises(StorageError):
                CheckoutService(CONFIG, store).create_checkout("u1")


class TestPaymentConfig:
    """PaymentConfig 派生地址测试。"""

    def test_notify_and_return_url(self):
        assert CONFIG.notify_url == "https://yan.example.com/api/checkout/providers/zpay/webhook"
        assert CONFIG.return_url == "https://yan.example.com"

    def test_amount_constant(self):
        assert ORDER_AMOUNT == Decimal("0.50")
