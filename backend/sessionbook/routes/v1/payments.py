# backend/sessionbook/routes/v1/payments.py
"""
Payment routes - API v1

Endpoints:
    POST /payments/checkout - Start a credit package purchase
    POST /webhooks/payments - Provider callback (signed, no caller identity)
"""

import asyncio
import logging

from fastapi import APIRouter, Depends, Request, status

from ...api.dependencies import get_current_user, get_payment_service
from ...core.exceptions import DomainException
from ...models.user import User
from ...schemas.payment import CheckoutRequest, CheckoutResponse, PaymentCallbackResponse
from ...services.payment_service import PaymentService
from .errors import handle_domain_exception

logger = logging.getLogger(__name__)

router = APIRouter(tags=["payments-v1"])


@router.post(
    "/payments/checkout", response_model=CheckoutResponse, status_code=status.HTTP_201_CREATED
)
async def start_checkout(
    payload: CheckoutRequest,
    current_user: User = Depends(get_current_user),
    payment_service: PaymentService = Depends(get_payment_service),
) -> CheckoutResponse:
    try:
        session = await asyncio.to_thread(
            payment_service.start_purchase, current_user.id, payload.package_code
        )
    except DomainException as exc:
        handle_domain_exception(exc)
    return CheckoutResponse(
        reference=session.reference, provider=session.provider, checkout_url=session.checkout_url
    )


@router.post("/webhooks/payments", response_model=PaymentCallbackResponse)
async def handle_payment_webhook(
    request: Request,
    payment_service: PaymentService = Depends(get_payment_service),
) -> PaymentCallbackResponse:
    """
    Verify and reconcile a provider callback.

    Duplicates are acknowledged with 200 so the provider stops retrying.
    """
    payload = await request.body()
    signature = request.headers.get(payment_service.gateway.signature_header)
    try:
        outcome = await asyncio.to_thread(payment_service.handle_callback, payload, signature)
    except DomainException as exc:
        logger.warning("Payment webhook rejected: %s", exc.message)
        handle_domain_exception(exc)
    return PaymentCallbackResponse(
        event_id=outcome.event_id,
        status=outcome.status,
        credits_granted=outcome.credits_granted,
    )
