"""
Payment service: credit package purchases and provider callback reconciliation.

Flow:
    start_purchase -> PaymentIntent(pending) + hosted checkout URL
    provider callback -> handle_callback -> intent final + grant_credits

Callbacks are recorded in the webhook ledger keyed by (provider, event id),
so a redelivered event is acknowledged without touching the ledger twice.
"""

from __future__ import annotations

import logging
from typing import List, Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from ..core.config import Settings
from ..core.exceptions import DomainException, NotFoundException, RepositoryException
from ..core.timezone_utils import Clock
from ..core.ulid_helper import generate_ulid
from ..domain.results import CallbackOutcome, PackageOffer
from ..integrations.payment_gateway import (
    CALLBACK_FAILED,
    CALLBACK_IGNORED,
    CALLBACK_SUCCEEDED,
    CheckoutSession,
    PaymentCallback,
    PaymentGateway,
)
from ..models.credit import CreditPackage
from ..models.payment import PaymentIntentStatus
from ..models.webhook_event import WebhookEvent
from ..monitoring.prometheus_metrics import prometheus_metrics
from ..repositories.factory import RepositoryFactory
from .base import BaseService
from .credit_service import CreditService

logger = logging.getLogger(__name__)

EVENT_RECEIVED = "received"
EVENT_PROCESSED = "processed"
EVENT_IGNORED = "ignored"
EVENT_FAILED = "failed"

OUTCOME_PROCESSED = "processed"
OUTCOME_DUPLICATE = "duplicate"
OUTCOME_IGNORED = "ignored"


def to_package_offer(package: CreditPackage) -> PackageOffer:
    return PackageOffer(
        code=package.code,
        name=package.name,
        sessions_included=package.sessions_included,
        price_minor=package.price_minor,
        currency=package.currency,
        description=package.description,
    )


class PaymentService(BaseService):
    """Starts package purchases and reconciles provider callbacks with the credit ledger."""

    def __init__(
        self,
        db: Session,
        gateway: PaymentGateway,
        settings: Optional[Settings] = None,
        clock: Optional[Clock] = None,
        credit_service: Optional[CreditService] = None,
    ):
        super().__init__(db, settings=settings, clock=clock)
        self.gateway = gateway
        self.payment_repository = RepositoryFactory.create_payment_repository(db)
        self.webhook_repository = RepositoryFactory.create_webhook_event_repository(db)
        self.credit_service = credit_service or CreditService(
            db, settings=self.settings, clock=self.clock
        )

    @BaseService.measure_operation("list_package_offers")
    def list_package_offers(self) -> List[PackageOffer]:
        return [to_package_offer(p) for p in self.payment_repository.list_active_packages()]

    @BaseService.measure_operation("start_purchase")
    def start_purchase(self, patient_id: str, package_code: str) -> CheckoutSession:
        """
        Create a hosted checkout for a credit package and record a pending intent.

        Raises:
            NotFoundException: Unknown or inactive package
            TransientStorageException: Provider unavailable
        """
        package = self.payment_repository.get_package_by_code(package_code)
        if package is None or not package.is_active:
            raise NotFoundException(
                "Credit package not found", details={"package_code": package_code}
            )

        reference = f"sb_{generate_ulid()}"
        session = self.gateway.create_checkout(
            reference=reference,
            amount_minor=package.price_minor,
            currency=package.currency,
            description=f"{package.name} ({package.sessions_included} sessions)",
            customer_id=patient_id,
        )

        with self.transaction():
            self.payment_repository.create(
                reference=reference,
                patient_id=patient_id,
                package_code=package.code,
                sessions_included=package.sessions_included,
                amount_minor=package.price_minor,
                currency=package.currency,
                provider=self.gateway.provider,
                provider_session_id=session.provider_session_id,
                checkout_url=session.checkout_url,
                status=PaymentIntentStatus.PENDING.value,
                created_at=self.clock.now_utc(),
            )

        self.log_operation(
            "start_purchase", patient_id=patient_id, package_code=package_code, reference=reference
        )
        return session

    @BaseService.measure_operation("handle_payment_callback")
    def handle_callback(self, payload: bytes, signature: Optional[str]) -> CallbackOutcome:
        """
        Verify, record and reconcile one provider callback.

        Raises:
            PaymentCallbackException: Signature or body invalid
        """
        callback = self.gateway.parse_callback(payload, signature)
        provider = self.gateway.provider

        event = self.webhook_repository.find_by_source_and_event_id(provider, callback.event_id)
        if event is not None and event.status in (EVENT_PROCESSED, EVENT_IGNORED):
            return self._duplicate(callback)

        if event is None:
            try:
                with self.webhook_repository.transaction():
                    event = self.webhook_repository.create(
                        source=provider,
                        event_id=callback.event_id,
                        event_type=callback.event_type or "unknown",
                        payload=callback.payload,
                        status=EVENT_RECEIVED,
                        received_at=self.clock.now_utc(),
                    )
            except RepositoryException as exc:
                # Concurrent delivery of the same event won the insert.
                if isinstance(exc.__cause__, IntegrityError):
                    return self._duplicate(callback)
                raise

        try:
            with self.transaction():
                outcome = self._reconcile(callback, event.id)
        except DomainException as exc:
            self._mark_failed(event.id, exc.message)
            prometheus_metrics.inc_payment_callback(provider, "error")
            raise

        prometheus_metrics.inc_payment_callback(provider, outcome.status)
        self.log_operation(
            "handle_payment_callback",
            event_id=callback.event_id,
            reference=callback.reference,
            outcome=outcome.status,
            credits_granted=outcome.credits_granted,
        )
        return outcome

    def _reconcile(self, callback: PaymentCallback, event_pk: str) -> CallbackOutcome:
        now = self.clock.now_utc()
        event = self._require_event(event_pk)

        intent = (
            self.payment_repository.get_by_reference(callback.reference)
            if callback.reference
            else None
        )
        if callback.status == CALLBACK_IGNORED or intent is None:
            if callback.status != CALLBACK_IGNORED:
                logger.warning(
                    "Payment callback %s references unknown intent %s",
                    callback.event_id,
                    callback.reference,
                )
                event.processing_error = "unknown reference"
            event.status = EVENT_IGNORED
            event.processed_at = now
            return CallbackOutcome(
                event_id=callback.event_id, status=OUTCOME_IGNORED, reference=callback.reference
            )

        credit_ids: List[str] = []
        outcome_status = OUTCOME_PROCESSED
        if callback.status == CALLBACK_SUCCEEDED:
            if self.payment_repository.finalize_intent(
                intent.id, new_status=PaymentIntentStatus.SUCCEEDED.value, completed_at=now
            ):
                credit_ids = self.credit_service.grant_credits(
                    intent.patient_id,
                    intent.sessions_included,
                    intent.reference,
                    use_transaction=False,
                )
            else:
                outcome_status = OUTCOME_DUPLICATE
        elif callback.status == CALLBACK_FAILED:
            if not self.payment_repository.finalize_intent(
                intent.id,
                new_status=PaymentIntentStatus.FAILED.value,
                completed_at=now,
                failure_reason=callback.failure_reason,
            ):
                outcome_status = OUTCOME_DUPLICATE

        event.status = EVENT_PROCESSED
        event.processed_at = now
        return CallbackOutcome(
            event_id=callback.event_id,
            status=outcome_status,
            reference=intent.reference,
            credits_granted=len(credit_ids),
            credit_ids=tuple(credit_ids),
        )

    def _mark_failed(self, event_pk: str, error: str) -> None:
        with self.transaction():
            event = self._require_event(event_pk)
            event.status = EVENT_FAILED
            event.processing_error = error[:1000]
            event.processed_at = self.clock.now_utc()

    def _require_event(self, event_pk: str) -> WebhookEvent:
        event = self.webhook_repository.get_by_id(event_pk)
        if event is None:
            raise NotFoundException("Webhook event not found", details={"id": event_pk})
        return event

    def _duplicate(self, callback: PaymentCallback) -> CallbackOutcome:
        logger.info("Duplicate payment callback %s ignored", callback.event_id)
        prometheus_metrics.inc_payment_callback(self.gateway.provider, OUTCOME_DUPLICATE)
        return CallbackOutcome(
            event_id=callback.event_id, status=OUTCOME_DUPLICATE, reference=callback.reference
        )
