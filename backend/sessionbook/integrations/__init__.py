"""External provider integrations."""

from .payment_gateway import (
    CheckoutSession,
    FakePaymentGateway,
    PaymentCallback,
    PaymentGateway,
    StripePaymentGateway,
    build_payment_gateway,
)

__all__ = [
    "CheckoutSession",
    "FakePaymentGateway",
    "PaymentCallback",
    "PaymentGateway",
    "StripePaymentGateway",
    "build_payment_gateway",
]
