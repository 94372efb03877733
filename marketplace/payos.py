"""PayOS payment gateway: order codes, request signing, webhook verification."""

import hashlib
import hmac
import json
import logging
import random
import time
from typing import Any, Mapping

import httpx

from marketplace.errors import ConfigError, PaymentGatewayError


logger = logging.getLogger(__name__)


BASE_URL = "https://api-merchant.payos.vn"
PAYMENT_REQUEST_KEYS = ("amount", "cancelUrl", "description", "orderCode", "returnUrl")
SIGNATURE_FIELDS = ("signature", "checksumSignature")


def generate_order_code(now_ms: int | None = None, rnd: int | None = None) -> int:
    """Last nine digits of the epoch in ms followed by two random digits."""
    now_ms = int(time.time() * 1000) if now_ms is None else now_ms
    rnd = random.randint(10, 99) if rnd is None else rnd
    return int(f"{str(now_ms)[-9:]}{rnd}")


def _hmac_hex(message: str, checksum_key: str) -> str:
    return hmac.new(
        checksum_key.encode("utf-8"), message.encode("utf-8"), hashlib.sha256
    ).hexdigest()


def sign_payment_request(payload: Mapping[str, Any], checksum_key: str) -> str:
    picked = {
        k: "" if payload.get(k) is None else str(payload[k])
        for k in PAYMENT_REQUEST_KEYS
    }
    raw = "&".join(f"{k}={picked[k]}" for k in PAYMENT_REQUEST_KEYS)
    return _hmac_hex(raw, checksum_key)


def _field_value(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (dict, list)):
        return json.dumps(value, separators=(",", ":"), ensure_ascii=False)
    return str(value)


def signature_string(data: Mapping[str, Any]) -> str:
    return "&".join(f"{k}={_field_value(data[k])}" for k in sorted(data))


def webhook_signature(body: Mapping[str, Any], checksum_key: str) -> str:
    data = body.get("data")
    if not isinstance(data, Mapping):
        data = {k: v for k, v in body.items() if k not in SIGNATURE_FIELDS}
    return _hmac_hex(signature_string(data), checksum_key)  # pyright: ignore[reportUnknownArgumentType]


def verify_webhook_signature(
    body: Mapping[str, Any], signature: str, checksum_key: str
) -> bool:
    try:
        expected = webhook_signature(body, checksum_key)
    except (TypeError, ValueError) as e:
        logger.error("Could not compute webhook signature: %r", e)
        return False
    return hmac.compare_digest(expected, signature)


class PayOSClient:
    def __init__(
        self,
        *,
        client_id: str | None,
        api_key: str | None,
        checksum_key: str | None,
        base_url: str = BASE_URL,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        self.client_id = client_id
        self.api_key = api_key
        self.checksum_key = checksum_key
        self.client = (
            httpx.AsyncClient(base_url=base_url, timeout=30)
            if http_client is None
            else http_client
        )

    @property
    def configured(self) -> bool:
        return bool(self.client_id and self.api_key and self.checksum_key)

    async def create_payment_link(
        self,
        *,
        amount: int,
        order_code: int,
        description: str,
        return_url: str,
        cancel_url: str,
    ) -> dict[str, Any]:
        if not self.configured or self.checksum_key is None:
            raise ConfigError("PAYOS env missing")
        payload: dict[str, Any] = {
            "amount": amount,
            "orderCode": order_code,
            "description": description,
            "returnUrl": return_url,
            "cancelUrl": cancel_url,
        }
        payload["signature"] = sign_payment_request(payload, self.checksum_key)
        resp = await self.client.post(
            "/v2/payment-requests",
            json=payload,
            headers={
                "x-client-id": self.client_id or "",
                "x-api-key": self.api_key or "",
            },
        )
        try:
            data = resp.json()
        except ValueError:
            data = {"message": resp.text}
        if resp.is_error:
            logger.error("PayOS error %s: %s", resp.status_code, data)
            msg = data.get("desc") or data.get("message") or "PayOS error"
            raise PaymentGatewayError(msg, detail=data)
        return data

    async def close(self) -> None:
        await self.client.aclose()
