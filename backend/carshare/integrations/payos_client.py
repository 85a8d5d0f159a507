"""Minimal PayOS API client for booking checkout links."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import ROUND_HALF_UP, Decimal
import hashlib
import hmac
import json
import logging
from typing import Any, Dict, Mapping, Optional, Protocol, cast

import httpx
from pydantic import SecretStr

from ..core.config import settings
from ..monitoring.prometheus_metrics import prometheus_metrics

logger = logging.getLogger(__name__)

SUCCESS_CODE = "00"

# Fields PayOS signs when creating a payment link.
_CREATE_SIGNED_FIELDS = ("amount", "cancelUrl", "description", "orderCode", "returnUrl")


class PaymentGatewayError(RuntimeError):
    """Raised when PayOS is unreachable or answers with an error."""

    def __init__(
        self,
        message: str,
        status_code: Optional[int] = None,
        *,
        error_code: str | None = None,
        error_body: Any | None = None,
    ) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.error_code = error_code
        self.error_body = error_body


@dataclass(frozen=True)
class PaymentLinkResult:
    payment_link_id: str
    order_code: int
    checkout_url: str
    qr_code: Optional[str]
    status: str


@dataclass(frozen=True)
class PaymentLinkInfo:
    order_code: int
    amount: int
    amount_paid: int
    status: str  # PENDING | PAID | CANCELLED | EXPIRED | PROCESSING
    reference: Optional[str] = None

    @property
    def is_paid(self) -> bool:
        return self.status == "PAID"

    @property
    def is_closed(self) -> bool:
        return self.status in {"CANCELLED", "EXPIRED"}


class PaymentGateway(Protocol):
    def create_payment_link(
        self,
        *,
        order_code: int,
        amount: Decimal,
        description: str,
        buyer_name: Optional[str],
        return_url: str,
        cancel_url: str,
        expired_at: datetime,
    ) -> PaymentLinkResult: ...

    def get_payment_link(self, order_code: int) -> PaymentLinkInfo: ...

    def verify_webhook_signature(self, data: Mapping[str, Any], signature: str) -> bool: ...


def to_gateway_amount(amount: Decimal) -> int:
    """PayOS amounts are whole VND."""
    return int(Decimal(amount).to_integral_value(rounding=ROUND_HALF_UP))


def _format_signed_value(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (list, dict)):
        return json.dumps(value, separators=(",", ":"), ensure_ascii=False)
    return str(value)


def sign_payload(data: Mapping[str, Any], checksum_key: str) -> str:
    """HMAC-SHA256 over ``key=value`` pairs sorted by key and joined with ``&``."""

    message = "&".join(f"{key}={_format_signed_value(data[key])}" for key in sorted(data))
    return hmac.new(checksum_key.encode("utf-8"), message.encode("utf-8"), hashlib.sha256).hexdigest()


def _secret(value: str | SecretStr) -> str:
    return value.get_secret_value() if isinstance(value, SecretStr) else value


class PayOSClient:
    """Thin client for the PayOS merchant API."""

    def __init__(
        self,
        *,
        client_id: str | SecretStr,
        api_key: str | SecretStr,
        checksum_key: str | SecretStr,
        base_url: str = "https://api-merchant.payos.vn",
        timeout: float = 10.0,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        self._client_id = _secret(client_id)
        self._api_key = _secret(api_key)
        self._checksum_key = _secret(checksum_key)
        if not (self._client_id and self._api_key and self._checksum_key):
            raise ValueError("PayOS client id, API key and checksum key must be provided")
        self._base_url = base_url.rstrip("/")
        self._timeout = timeout
        self._transport = transport

    def create_payment_link(
        self,
        *,
        order_code: int,
        amount: Decimal,
        description: str,
        buyer_name: Optional[str],
        return_url: str,
        cancel_url: str,
        expired_at: datetime,
    ) -> PaymentLinkResult:
        body: Dict[str, Any] = {
            "orderCode": order_code,
            "amount": to_gateway_amount(amount),
            # PayOS truncates descriptions over 25 characters
            "description": description[:25],
            "cancelUrl": cancel_url,
            "returnUrl": return_url,
            "expiredAt": int(expired_at.timestamp()),
        }
        if buyer_name:
            body["buyerName"] = buyer_name
        body["signature"] = sign_payload(
            {key: body[key] for key in _CREATE_SIGNED_FIELDS}, self._checksum_key
        )

        data = self.request("POST", "/v2/payment-requests", json_body=body, operation="create_link")
        return PaymentLinkResult(
            payment_link_id=str(data.get("paymentLinkId") or ""),
            order_code=int(data.get("orderCode") or order_code),
            checkout_url=str(data.get("checkoutUrl") or ""),
            qr_code=data.get("qrCode"),
            status=str(data.get("status") or "PENDING"),
        )

    def get_payment_link(self, order_code: int) -> PaymentLinkInfo:
        data = self.request("GET", f"/v2/payment-requests/{order_code}", operation="get_link")
        transactions = data.get("transactions") or []
        reference = transactions[0].get("reference") if transactions else None
        return PaymentLinkInfo(
            order_code=int(data.get("orderCode") or order_code),
            amount=int(data.get("amount") or 0),
            amount_paid=int(data.get("amountPaid") or 0),
            status=str(data.get("status") or "PENDING"),
            reference=reference,
        )

    def verify_webhook_signature(self, data: Mapping[str, Any], signature: str) -> bool:
        if not signature:
            return False
        expected = sign_payload(data, self._checksum_key)
        return hmac.compare_digest(expected, signature)

    def request(
        self,
        method: str,
        path: str,
        *,
        json_body: Dict[str, Any] | None = None,
        operation: str = "request",
    ) -> Dict[str, Any]:
        """Perform a PayOS request and return the ``data`` object of a ``code == "00"`` reply."""

        url = f"{self._base_url}{path}"
        with httpx.Client(
            timeout=self._timeout,
            transport=self._transport,
            headers={
                "Accept": "application/json",
                "x-client-id": self._client_id,
                "x-api-key": self._api_key,
            },
        ) as client:
            try:
                response = client.request(method, url, json=json_body)
                response.raise_for_status()
            except httpx.HTTPStatusError as exc:
                status = exc.response.status_code
                prometheus_metrics.record_gateway_request(operation, "http_error")
                logger.error(
                    "PayOS API error %s for %s %s: %s",
                    status,
                    method,
                    path,
                    exc.response.text[:500],
                )
                raise PaymentGatewayError(
                    f"PayOS responded with status {status}",
                    status_code=status,
                    error_body=exc.response.text[:500],
                ) from exc
            except httpx.RequestError as exc:
                prometheus_metrics.record_gateway_request(operation, "transport_error")
                logger.error("PayOS request failure for %s %s: %s", method, path, str(exc))
                raise PaymentGatewayError("Failed to reach PayOS") from exc

        try:
            payload = cast(Dict[str, Any], response.json())
        except json.JSONDecodeError as exc:
            prometheus_metrics.record_gateway_request(operation, "invalid_response")
            logger.error("Invalid JSON from PayOS for %s %s: %s", method, path, response.text[:500])
            raise PaymentGatewayError("Received malformed JSON from PayOS") from exc

        code = str(payload.get("code", ""))
        if code != SUCCESS_CODE:
            prometheus_metrics.record_gateway_request(operation, "rejected")
            logger.error("PayOS rejected %s %s: code=%s desc=%s", method, path, code, payload.get("desc"))
            raise PaymentGatewayError(
                f"PayOS returned code {code}: {payload.get('desc')}",
                status_code=response.status_code,
                error_code=code,
                error_body=payload,
            )

        prometheus_metrics.record_gateway_request(operation, "success")
        return cast(Dict[str, Any], payload.get("data") or {})


class FakePayOSClient:
    """Deterministic in-memory stand-in for PayOS used outside production and in tests."""

    checksum_key = "fake-payos-checksum-key"

    def __init__(self) -> None:
        self._logger = logging.getLogger(self.__class__.__name__)
        self.links: Dict[int, Dict[str, Any]] = {}
        self.fail_requests = False
        self.calls: list[tuple[str, int]] = []

    def _maybe_fail(self, operation: str, order_code: int) -> None:
        self.calls.append((operation, order_code))
        if self.fail_requests:
            prometheus_metrics.record_gateway_request(operation, "transport_error")
            raise PaymentGatewayError("Fake PayOS is in failure mode")

    def create_payment_link(
        self,
        *,
        order_code: int,
        amount: Decimal,
        description: str,
        buyer_name: Optional[str],
        return_url: str,
        cancel_url: str,
        expired_at: datetime,
    ) -> PaymentLinkResult:
        self._maybe_fail("create_link", order_code)
        link = self.links.get(order_code)
        if link is None:
            link = {
                "paymentLinkId": f"fake-link-{order_code}",
                "orderCode": order_code,
                "amount": to_gateway_amount(amount),
                "amountPaid": 0,
                "status": "PENDING",
                "expiredAt": expired_at.astimezone(timezone.utc),
                "reference": None,
            }
            self.links[order_code] = link
            self._logger.debug("Fake payment link created", extra={"order_code": order_code})
        prometheus_metrics.record_gateway_request("create_link", "success")
        return PaymentLinkResult(
            payment_link_id=link["paymentLinkId"],
            order_code=order_code,
            checkout_url=f"https://pay.fake-payos.test/web/{link['paymentLinkId']}",
            qr_code=f"FAKEQR{order_code}",
            status=link["status"],
        )

    def get_payment_link(self, order_code: int) -> PaymentLinkInfo:
        self._maybe_fail("get_link", order_code)
        link = self.links.get(order_code)
        if link is None:
            raise PaymentGatewayError(f"Unknown order {order_code}", status_code=404, error_code="101")
        return PaymentLinkInfo(
            order_code=order_code,
            amount=link["amount"],
            amount_paid=link["amountPaid"],
            status=link["status"],
            reference=link["reference"],
        )

    def verify_webhook_signature(self, data: Mapping[str, Any], signature: str) -> bool:
        if not signature:
            return False
        return hmac.compare_digest(sign_payload(data, self.checksum_key), signature)

    # Test helpers

    def mark_paid(self, order_code: int, amount: Optional[int] = None) -> None:
        link = self.links[order_code]
        link["status"] = "PAID"
        link["amountPaid"] = link["amount"] if amount is None else amount
        link["reference"] = f"FT{order_code}"

    def mark_status(self, order_code: int, status: str) -> None:
        self.links[order_code]["status"] = status

    def build_webhook(
        self,
        order_code: int,
        amount: int,
        *,
        code: str = SUCCESS_CODE,
        reference: Optional[str] = None,
    ) -> Dict[str, Any]:
        """A signed webhook body as PayOS would deliver it."""

        data: Dict[str, Any] = {
            "orderCode": order_code,
            "amount": amount,
            "description": f"Order {order_code}",
            "accountNumber": "0000000000",
            "reference": reference or f"FT{order_code}",
            "transactionDateTime": datetime.now(timezone.utc).strftime("%Y-%m-%d %H:%M:%S"),
            "currency": "VND",
            "paymentLinkId": f"fake-link-{order_code}",
            "code": code,
            "desc": "success" if code == SUCCESS_CODE else "failed",
        }
        return {
            "code": SUCCESS_CODE,
            "desc": "success",
            "success": code == SUCCESS_CODE,
            "data": data,
            "signature": sign_payload(data, self.checksum_key),
        }


_gateway: Optional[PaymentGateway] = None


def get_payment_gateway() -> PaymentGateway:
    """Process-wide gateway; the fake one unless ``PAYOS_FAKE`` is off."""

    global _gateway
    if _gateway is None:
        if settings.payos_fake:
            _gateway = FakePayOSClient()
        else:
            _gateway = PayOSClient(
                client_id=settings.payos_client_id,
                api_key=settings.payos_api_key,
                checksum_key=settings.payos_checksum_key,
                base_url=settings.payos_base_url,
                timeout=settings.payos_timeout_seconds,
            )
    return _gateway


def set_payment_gateway(gateway: Optional[PaymentGateway]) -> None:
    global _gateway
    _gateway = gateway
