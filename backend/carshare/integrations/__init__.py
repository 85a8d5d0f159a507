"""External service integrations for the carshare platform."""

from .payos_client import (
    FakePayOSClient,
    PaymentGateway,
    PaymentGatewayError,
    PaymentLinkInfo,
    PaymentLinkResult,
    PayOSClient,
)

__all__ = [
    "FakePayOSClient",
    "PaymentGateway",
    "PaymentGatewayError",
    "PaymentLinkInfo",
    "PaymentLinkResult",
    "PayOSClient",
]
