import hashlib
import hmac

import pytest

from marketplace.errors import ConfigError, PaymentGatewayError
from marketplace.payos import (
    PayOSClient,
    generate_order_code,
    sign_payment_request,
    signature_string,
    verify_webhook_signature,
    webhook_signature,
)


KEY = "secret"


def expected_hmac(message: str) -> str:
    return hmac.new(KEY.encode(), message.encode(), hashlib.sha256).hexdigest()


def test_generate_order_code() -> None:
    assert generate_order_code(now_ms=1717171717171, rnd=42) == 17171717142


def test_generate_order_code_fits_eleven_digits() -> None:
    code = generate_order_code()
    assert code < 10**11
    assert 10 <= code % 100 <= 99


def test_sign_payment_request_uses_fixed_key_order() -> None:
    payload = {
        "orderCode": 123,
        "amount": 99000,
        "returnUrl": "http://r",
        "cancelUrl": "http://c",
        "description": "desc",
        "ignored": "x",
    }
    got = sign_payment_request(payload, KEY)
    assert got == expected_hmac(
        "amount=99000&cancelUrl=http://c&description=desc&orderCode=123&returnUrl=http://r"
    )


def test_sign_payment_request_missing_values_are_empty() -> None:
    got = sign_payment_request({"amount": 1}, KEY)
    assert got == expected_hmac("amount=1&cancelUrl=&description=&orderCode=&returnUrl=")


@pytest.mark.parametrize(
    "data,expected",
    (
        ({"b": 2, "a": 1}, "a=1&b=2"),
        ({"x": None, "y": True, "z": False}, "x=&y=true&z=false"),
        ({"items": [1, 2], "m": {"k": "v"}}, 'items=[1,2]&m={"k":"v"}'),
    ),
)
def test_signature_string(data: dict, expected: str) -> None:
    assert signature_string(data) == expected


def test_webhook_signature_signs_data_object() -> None:
    body = {"code": "00", "data": {"orderCode": 7, "amount": 10}, "signature": "x"}
    assert webhook_signature(body, KEY) == expected_hmac("amount=10&orderCode=7")


def test_webhook_signature_without_data_signs_body() -> None:
    body = {"orderCode": 7, "status": "PAID", "signature": "x", "checksumSignature": "y"}
    assert webhook_signature(body, KEY) == expected_hmac("orderCode=7&status=PAID")


def test_verify_webhook_signature() -> None:
    body = {"data": {"orderCode": 7}}
    good = expected_hmac("orderCode=7")
    assert verify_webhook_signature(body, good, KEY)
    assert not verify_webhook_signature(body, "0" * 64, KEY)
    assert not verify_webhook_signature({"data": {"orderCode": 8}}, good, KEY)


@pytest.mark.asyncio
async def test_create_payment_link_signs_and_sends(payos, payos_gateway) -> None:
    resp = await payos.create_payment_link(
        amount=5000,
        order_code=12345,
        description="Plan",
        return_url="http://test/ok",
        cancel_url="http://test/no",
    )
    assert resp["data"]["checkoutUrl"] == "https://pay.payos.test/web/abc"

    request = payos_gateway.requests[0]
    assert request.url.path == "/v2/payment-requests"
    assert request.headers["x-client-id"] == "client-id"
    assert request.headers["x-api-key"] == "api-key"
    sent = payos_gateway.payloads[0]
    assert sent["orderCode"] == 12345
    assert sent["signature"] == sign_payment_request(sent, payos.checksum_key)


@pytest.mark.asyncio
async def test_create_payment_link_gateway_error(payos, payos_gateway) -> None:
    payos_gateway.status_code = 400
    payos_gateway.reply = {"code": "20", "desc": "Invalid amount"}
    with pytest.raises(PaymentGatewayError) as e:
        await payos.create_payment_link(
            amount=1,
            order_code=1,
            description="x",
            return_url="http://r",
            cancel_url="http://c",
        )
    assert e.value.message == "Invalid amount"
    assert e.value.status_code == 502


def test_configured() -> None:
    assert not PayOSClient(client_id="a", api_key=None, checksum_key="c").configured
    assert PayOSClient(client_id="a", api_key="b", checksum_key="c").configured


@pytest.mark.asyncio
async def test_create_payment_link_requires_credentials(payos, payos_gateway) -> None:
    payos.checksum_key = None
    with pytest.raises(ConfigError) as e:
        await payos.create_payment_link(
            amount=1000,
            order_code=1,
            description="x",
            return_url="http://r",
            cancel_url="http://c",
        )
    assert e.value.message == "PAYOS env missing"
    assert e.value.status_code == 500
    assert payos_gateway.requests == []
