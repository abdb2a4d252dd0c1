"""
Payment provider adapters for credit package purchases.

The gateway initiates a hosted checkout and verifies/parses the provider's
asynchronous callback. Reconciling a callback with the credit ledger is the
payment service's job.
"""

from __future__ import annotations

from dataclasses import dataclass, field
import hashlib
import hmac
import json
import logging
from typing import Any, Dict, Optional, Protocol
from uuid import uuid4

from pydantic import SecretStr
import stripe

from ..core.config import Settings
from ..core.exceptions import PaymentCallbackException, TransientStorageException

logger = logging.getLogger(__name__)

CALLBACK_SUCCEEDED = "succeeded"
CALLBACK_FAILED = "failed"
CALLBACK_IGNORED = "ignored"


@dataclass(frozen=True)
class CheckoutSession:
    reference: str
    provider: str
    provider_session_id: str
    checkout_url: str


@dataclass(frozen=True)
class PaymentCallback:
    """A verified provider callback, normalized to succeeded / failed / ignored."""

    provider: str
    event_id: str
    event_type: str
    status: str
    reference: Optional[str] = None
    failure_reason: Optional[str] = None
    payload: Dict[str, Any] = field(default_factory=dict)


class PaymentGateway(Protocol):
    provider: str
    signature_header: str

    def create_checkout(
        self,
        *,
        reference: str,
        amount_minor: int,
        currency: str,
        description: str,
        customer_id: str,
    ) -> CheckoutSession: ...

    def parse_callback(self, payload: bytes, signature: Optional[str]) -> PaymentCallback: ...


def _secret_value(secret: str | SecretStr) -> str:
    return secret.get_secret_value() if isinstance(secret, SecretStr) else secret


def _load_json(payload: bytes) -> Dict[str, Any]:
    try:
        data = json.loads(payload)
    except (ValueError, UnicodeDecodeError) as exc:
        raise PaymentCallbackException("Callback body is not valid JSON") from exc
    if not isinstance(data, dict):
        raise PaymentCallbackException("Callback body must be a JSON object")
    return data


class StripePaymentGateway:
    """Stripe Checkout in payment mode; callbacks arrive as signed webhook events."""

    provider = "stripe"
    signature_header = "Stripe-Signature"

    _SUCCESS_EVENTS = {"checkout.session.async_payment_succeeded"}
    _FAILURE_EVENTS = {"checkout.session.async_payment_failed", "checkout.session.expired"}

    def __init__(
        self,
        *,
        api_key: str | SecretStr,
        webhook_secret: str | SecretStr,
        success_url: str,
        cancel_url: str,
    ) -> None:
        self._api_key = _secret_value(api_key)
        self._webhook_secret = _secret_value(webhook_secret)
        if not self._api_key or not self._webhook_secret:
            raise ValueError("Stripe API key and webhook secret must be provided")
        self._success_url = success_url
        self._cancel_url = cancel_url

    def create_checkout(
        self,
        *,
        reference: str,
        amount_minor: int,
        currency: str,
        description: str,
        customer_id: str,
    ) -> CheckoutSession:
        try:
            session = stripe.checkout.Session.create(
                api_key=self._api_key,
                mode="payment",
                client_reference_id=reference,
                success_url=self._success_url,
                cancel_url=self._cancel_url,
                line_items=[
                    {
                        "quantity": 1,
                        "price_data": {
                            "currency": currency,
                            "unit_amount": amount_minor,
                            "product_data": {"name": description},
                        },
                    }
                ],
                metadata={"reference": reference, "patient_id": customer_id},
                idempotency_key=f"checkout-{reference}",
            )
        except stripe.StripeError as exc:
            logger.error("Stripe checkout creation failed for %s: %s", reference, exc)
            raise TransientStorageException(
                "Payment provider unavailable", details={"reference": reference}
            ) from exc

        return CheckoutSession(
            reference=reference,
            provider=self.provider,
            provider_session_id=session["id"],
            checkout_url=session["url"],
        )

    def parse_callback(self, payload: bytes, signature: Optional[str]) -> PaymentCallback:
        if not signature:
            raise PaymentCallbackException("Missing Stripe-Signature header")
        try:
            stripe.Webhook.construct_event(payload, signature, self._webhook_secret)
        except stripe.SignatureVerificationError as exc:
            logger.warning("Invalid Stripe webhook signature: %s", exc)
            raise PaymentCallbackException("Invalid webhook signature") from exc
        except ValueError as exc:
            raise PaymentCallbackException("Invalid webhook payload") from exc

        event = _load_json(payload)
        event_type = str(event.get("type", ""))
        obj = (event.get("data") or {}).get("object") or {}
        reference = obj.get("client_reference_id") or (obj.get("metadata") or {}).get("reference")

        if event_type == "checkout.session.completed":
            # Delayed payment methods complete the session before funds settle.
            status = CALLBACK_SUCCEEDED if obj.get("payment_status") == "paid" else CALLBACK_IGNORED
        elif event_type in self._SUCCESS_EVENTS:
            status = CALLBACK_SUCCEEDED
        elif event_type in self._FAILURE_EVENTS:
            status = CALLBACK_FAILED
        else:
            status = CALLBACK_IGNORED

        return PaymentCallback(
            provider=self.provider,
            event_id=str(event.get("id", "")),
            event_type=event_type,
            status=status,
            reference=reference,
            failure_reason=event_type if status == CALLBACK_FAILED else None,
            payload=event,
        )


class FakePaymentGateway:
    """
    In-process stand-in for local, dev and test environments.

    Callbacks use the ``{"id", "event", "data": {"reference"}}`` shape and are
    signed with HMAC-SHA512 over the raw body.
    """

    provider = "fake"
    signature_header = "X-Payment-Signature"

    def __init__(self, *, secret: str | SecretStr, success_url: str = "http://localhost") -> None:
        self._secret = _secret_value(secret).encode("utf-8")
        self._success_url = success_url
        self._logger = logging.getLogger(self.__class__.__name__)

    def sign(self, payload: bytes) -> str:
        return hmac.new(self._secret, payload, hashlib.sha512).hexdigest()

    def build_callback(
        self,
        reference: str,
        *,
        event: str = "charge.success",
        event_id: Optional[str] = None,
    ) -> tuple[bytes, str]:
        """Produce a signed callback body, as the provider would send it."""
        body = json.dumps(
            {
                "id": event_id or f"evt_fake_{uuid4().hex}",
                "event": event,
                "data": {"reference": reference},
            }
        ).encode("utf-8")
        return body, self.sign(body)

    def create_checkout(
        self,
        *,
        reference: str,
        amount_minor: int,
        currency: str,
        description: str,
        customer_id: str,
    ) -> CheckoutSession:
        session_id = f"cs_fake_{uuid4().hex}"
        separator = "&" if "?" in self._success_url else "?"
        self._logger.debug(
            "Fake checkout created",
            extra={"reference": reference, "amount_minor": amount_minor, "currency": currency},
        )
        return CheckoutSession(
            reference=reference,
            provider=self.provider,
            provider_session_id=session_id,
            checkout_url=f"{self._success_url}{separator}reference={reference}",
        )

    def parse_callback(self, payload: bytes, signature: Optional[str]) -> PaymentCallback:
        if not signature or not hmac.compare_digest(self.sign(payload), signature):
            raise PaymentCallbackException("Invalid webhook signature")

        event = _load_json(payload)
        event_type = str(event.get("event", ""))
        data = event.get("data")
        if not isinstance(data, dict):
            data = {}
        reference = data.get("reference")
        event_id = event.get("id")
        if not event_id:
            raise PaymentCallbackException("Callback is missing an event id")

        if event_type == "charge.success":
            status = CALLBACK_SUCCEEDED
        elif event_type == "charge.failed":
            status = CALLBACK_FAILED
        else:
            status = CALLBACK_IGNORED

        return PaymentCallback(
            provider=self.provider,
            event_id=str(event_id),
            event_type=event_type,
            status=status,
            reference=reference,
            failure_reason=data.get("gateway_response") if status == CALLBACK_FAILED else None,
            payload=event,
        )


def build_payment_gateway(settings: Settings) -> PaymentGateway:
    """Select the gateway implementation configured for this process."""
    if settings.payment_provider == "stripe":
        return StripePaymentGateway(
            api_key=settings.stripe_secret_key,
            webhook_secret=settings.stripe_webhook_secret,
            success_url=settings.checkout_success_url,
            cancel_url=settings.checkout_cancel_url,
        )
    return FakePaymentGateway(
        secret=settings.fake_payment_secret, success_url=settings.checkout_success_url
    )
