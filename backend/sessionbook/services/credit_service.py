"""Session credit ledger service: grant, reserve, spend, release and refund."""

from __future__ import annotations

from datetime import datetime
import logging
from typing import Dict, List, Optional

from sqlalchemy.orm import Session

from ..core.config import Settings
from ..core.exceptions import (
    InsufficientCreditsException,
    InvariantViolationException,
    NotFoundException,
    TransientStorageException,
    ValidationException,
)
from ..core.timezone_utils import Clock
from ..domain.results import CreditBalance
from ..models.credit import CreditStatus, SessionCredit
from ..monitoring.prometheus_metrics import prometheus_metrics
from ..repositories.factory import RepositoryFactory
from .base import BaseService

logger = logging.getLogger(__name__)

AVAILABLE = CreditStatus.AVAILABLE.value
RESERVED = CreditStatus.RESERVED.value
SPENT = CreditStatus.SPENT.value
REFUNDED = CreditStatus.REFUNDED.value


class CreditService(BaseService):
    """
    Owns every mutation of session credits.

    Each transition is a compare-and-set UPDATE on the credit's current
    status, so two callers racing for the same credit cannot both win.
    """

    def __init__(
        self,
        db: Session,
        settings: Optional[Settings] = None,
        clock: Optional[Clock] = None,
    ):
        super().__init__(db, settings=settings, clock=clock)
        self.credit_repository = RepositoryFactory.create_credit_repository(db)

    @BaseService.measure_operation("available_credits")
    def available_credits(self, patient_id: str) -> CreditBalance:
        credits = self.credit_repository.get_available_credits(patient_id=patient_id)
        return CreditBalance(count=len(credits), credit_ids=tuple(c.id for c in credits))

    @BaseService.measure_operation("reserve_one_credit")
    def reserve_one_credit(self, patient_id: str) -> str:
        """
        Move the patient's oldest available credit to reserved.

        Raises:
            InsufficientCreditsException: No available credit
            TransientStorageException: Lost every compare-and-set race
        """
        lost: List[str] = []
        for _ in range(self.settings.credit_reserve_max_attempts):
            with self.transaction():
                credit_id = self.credit_repository.select_oldest_available_id(
                    patient_id=patient_id, exclude_ids=lost
                )
                if credit_id is None:
                    raise InsufficientCreditsException(patient_id)
                won = self.credit_repository.compare_and_set_status(
                    credit_id,
                    expected=AVAILABLE,
                    new_status=RESERVED,
                    reserved_at=self.clock.now_utc(),
                )
            if won:
                prometheus_metrics.inc_credit_operation("reserve")
                self.log_operation("reserve_one_credit", patient_id=patient_id, credit_id=credit_id)
                return credit_id
            logger.info("Credit %s taken concurrently, trying the next one", credit_id)
            lost.append(credit_id)

        raise TransientStorageException(
            "Could not reserve a credit under contention",
            details={"patient_id": patient_id, "attempts": len(lost)},
        )

    @BaseService.measure_operation("confirm_spend")
    def confirm_spend(self, credit_id: str, booking_id: str) -> None:
        """reserved -> spent, bound to ``booking_id``. Anything else is an invariant violation."""
        with self.transaction():
            won = self.credit_repository.compare_and_set_status(
                credit_id,
                expected=RESERVED,
                new_status=SPENT,
                spent_at=self.clock.now_utc(),
                booking_id=booking_id,
            )
            if not won:
                credit = self.credit_repository.reload(credit_id)
                if credit is None:
                    raise NotFoundException("Credit not found", details={"credit_id": credit_id})
                raise InvariantViolationException(
                    "Credit is not reserved",
                    details={
                        "credit_id": credit_id,
                        "status": credit.status,
                        "booking_id": booking_id,
                    },
                )
        prometheus_metrics.inc_credit_operation("spend")
        self.log_operation("confirm_spend", credit_id=credit_id, booking_id=booking_id)

    @BaseService.measure_operation("release_credit")
    def release(self, credit_id: str) -> bool:
        """
        reserved -> available.

        Idempotent: releasing an already available credit is a no-op and
        returns False. Spent or refunded credits cannot be released.
        """
        with self.transaction():
            won = self.credit_repository.compare_and_set_status(
                credit_id, expected=RESERVED, new_status=AVAILABLE, reserved_at=None
            )
            if not won:
                credit = self.credit_repository.reload(credit_id)
                if credit is None:
                    raise NotFoundException("Credit not found", details={"credit_id": credit_id})
                if credit.status != AVAILABLE:
                    raise InvariantViolationException(
                        "Credit cannot be released",
                        details={"credit_id": credit_id, "status": credit.status},
                    )
        if won:
            prometheus_metrics.inc_credit_operation("release")
            self.log_operation("release_credit", credit_id=credit_id)
        return won

    @BaseService.measure_operation("release_abandoned_credit")
    def release_if_abandoned(self, credit_id: str, reserved_before: datetime) -> bool:
        """Release a reservation older than ``reserved_before`` that no active booking uses."""
        with self.transaction():
            won = self.credit_repository.release_if_abandoned(
                credit_id, reserved_before=reserved_before
            )
        if won:
            prometheus_metrics.inc_credit_operation("release")
            self.log_operation("release_abandoned_credit", credit_id=credit_id)
        return won

    def get_credit(self, credit_id: str) -> SessionCredit:
        credit = self.credit_repository.reload(credit_id)
        if credit is None:
            raise NotFoundException("Credit not found", details={"credit_id": credit_id})
        return credit

    @BaseService.measure_operation("grant_credits")
    def grant_credits(
        self,
        patient_id: str,
        count: int,
        package_reference: str,
        *,
        use_transaction: bool = True,
    ) -> List[str]:
        """
        Create ``count`` available credits for a purchase.

        Idempotent per (patient_id, package_reference): a repeated grant
        returns the ids created the first time.
        """
        if count <= 0:
            raise ValidationException(
                "count must be positive", code="INVALID_CREDIT_COUNT", details={"count": count}
            )
        if not package_reference:
            raise ValidationException("package_reference is required", code="INVALID_REFERENCE")

        def _grant() -> List[str]:
            existing = self.credit_repository.get_by_package_reference(
                patient_id=patient_id, package_reference=package_reference
            )
            if existing:
                logger.info(
                    "Credits for %s already granted to %s", package_reference, patient_id
                )
                return [c.id for c in existing]

            now = self.clock.now_utc()
            created = self.credit_repository.add_credits(
                [
                    {
                        "patient_id": patient_id,
                        "status": AVAILABLE,
                        "package_reference": package_reference,
                        "purchased_at": now,
                        "created_at": now,
                    }
                    for _ in range(count)
                ]
            )
            prometheus_metrics.inc_credit_operation("grant", amount=count)
            self.log_operation(
                "grant_credits",
                patient_id=patient_id,
                count=count,
                package_reference=package_reference,
            )
            return [c.id for c in created]

        if use_transaction:
            with self.transaction():
                return _grant()
        return _grant()

    @BaseService.measure_operation("refund_credit")
    def refund_credit(self, credit_id: str) -> bool:
        """available -> refunded. Already refunded is a no-op; reserved or spent is not refundable."""
        with self.transaction():
            won = self.credit_repository.compare_and_set_status(
                credit_id,
                expected=AVAILABLE,
                new_status=REFUNDED,
                refunded_at=self.clock.now_utc(),
            )
            if not won:
                credit = self.credit_repository.reload(credit_id)
                if credit is None:
                    raise NotFoundException("Credit not found", details={"credit_id": credit_id})
                if credit.status != REFUNDED:
                    raise InvariantViolationException(
                        "Only unused credits can be refunded",
                        details={"credit_id": credit_id, "status": credit.status},
                    )
        if won:
            prometheus_metrics.inc_credit_operation("refund")
            self.log_operation("refund_credit", credit_id=credit_id)
        return won

    @BaseService.measure_operation("credit_summary")
    def credit_summary(self, patient_id: str) -> Dict[str, int]:
        counts = self.credit_repository.count_by_status(patient_id=patient_id)
        summary = {status.value: counts.get(status.value, 0) for status in CreditStatus}
        summary["total_granted"] = sum(counts.values())
        return summary
