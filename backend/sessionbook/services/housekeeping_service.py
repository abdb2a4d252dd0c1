"""
Housekeeping for the booking engine.

Run periodically by Celery beat. Resolves attempts that never finished:
stale pending_payment bookings are rolled forward when their credit was
spent on them, and released otherwise; reservations nobody uses any more
go back to available. The audit reports ledger inconsistencies without
changing anything.
"""

from __future__ import annotations

from datetime import datetime, timedelta
import logging
from typing import Any, Dict, List, Optional

from sqlalchemy.orm import Session

from ..core.config import Settings
from ..core.exceptions import DomainException
from ..core.timezone_utils import Clock
from ..models.credit import CreditStatus
from ..monitoring.prometheus_metrics import prometheus_metrics
from ..repositories.factory import RepositoryFactory
from .base import BaseService
from .conflict_guard import ConflictGuard
from .credit_service import CreditService

logger = logging.getLogger(__name__)


class HousekeepingService(BaseService):
    def __init__(
        self,
        db: Session,
        settings: Optional[Settings] = None,
        clock: Optional[Clock] = None,
        conflict_guard: Optional[ConflictGuard] = None,
        credit_service: Optional[CreditService] = None,
    ):
        super().__init__(db, settings=settings, clock=clock)
        self.conflict_guard = conflict_guard or ConflictGuard(
            db, settings=self.settings, clock=self.clock
        )
        self.credit_service = credit_service or CreditService(
            db, settings=self.settings, clock=self.clock
        )
        self.booking_repository = RepositoryFactory.create_booking_repository(db)
        self.credit_repository = RepositoryFactory.create_credit_repository(db)

    def _cutoff(self, now: Optional[datetime]) -> datetime:
        current = now or self.clock.now_utc()
        return current - timedelta(minutes=self.settings.pending_booking_timeout_minutes)

    @BaseService.measure_operation("expire_stale_pending_bookings")
    def expire_stale_pending_bookings(self, now: Optional[datetime] = None) -> Dict[str, int]:
        """
        Resolve pending_payment bookings older than the configured timeout.

        A booking whose credit is already spent on it is confirmed; any other
        is released together with its (stale, unreferenced) credit reservation.
        Each booking is handled independently; one failure does not stop the sweep.
        """
        cutoff = self._cutoff(now)
        stats = {"examined": 0, "released": 0, "rolled_forward": 0, "credits_released": 0, "errors": 0}

        for booking in self.conflict_guard.list_stale_pending(cutoff):
            stats["examined"] += 1
            try:
                credit = (
                    self.credit_repository.reload(booking.credit_id) if booking.credit_id else None
                )
                if (
                    credit is not None
                    and credit.status == CreditStatus.SPENT.value
                    and credit.booking_id == booking.id
                ):
                    self.conflict_guard.confirm_booking(booking.id)
                    stats["rolled_forward"] += 1
                    continue

                if self.conflict_guard.release_slot(booking.id):
                    stats["released"] += 1
                if booking.credit_id and self.credit_service.release_if_abandoned(
                    booking.credit_id, cutoff
                ):
                    stats["credits_released"] += 1
            except DomainException as exc:
                stats["errors"] += 1
                logger.error(
                    "Housekeeping could not resolve booking %s: %s",
                    booking.id,
                    exc.message,
                    extra={"booking_id": booking.id, "error_code": exc.code},
                )

        prometheus_metrics.inc_housekeeping_action("released_booking", stats["released"])
        prometheus_metrics.inc_housekeeping_action("rolled_forward", stats["rolled_forward"])
        prometheus_metrics.inc_housekeeping_action("released_credit", stats["credits_released"])
        if stats["examined"]:
            self.log_operation("expire_stale_pending_bookings", **stats)
        return stats

    @BaseService.measure_operation("release_abandoned_credit_reservations")
    def release_abandoned_credit_reservations(self, now: Optional[datetime] = None) -> int:
        """Release credits reserved longer than the timeout that no active booking references."""
        cutoff = self._cutoff(now)
        released = 0
        for credit in self.credit_repository.get_stale_unreferenced_reservations(
            reserved_before=cutoff
        ):
            try:
                if self.credit_service.release_if_abandoned(credit.id, cutoff):
                    released += 1
            except DomainException as exc:
                logger.error("Could not release credit %s: %s", credit.id, exc.message)

        prometheus_metrics.inc_housekeeping_action("released_credit", released)
        if released:
            self.log_operation("release_abandoned_credit_reservations", released=released)
        return released

    @BaseService.measure_operation("audit_consistency")
    def audit_consistency(self) -> List[Dict[str, Any]]:
        """
        Report ledger inconsistencies.

        - settled (confirmed/completed/no_show) bookings without a credit spent on them
        - spent credits whose booking is missing or does not point back
        """
        issues: List[Dict[str, Any]] = []
        for booking in self.booking_repository.list_settled_without_spent_credit():
            issues.append(
                {
                    "issue": "booking_without_spent_credit",
                    "booking_id": booking.id,
                    "status": booking.status,
                    "credit_id": booking.credit_id,
                }
            )
        for credit in self.credit_repository.get_spent_without_booking():
            issues.append(
                {
                    "issue": "spent_credit_without_booking",
                    "credit_id": credit.id,
                    "booking_id": credit.booking_id,
                    "patient_id": credit.patient_id,
                }
            )

        prometheus_metrics.inc_housekeeping_action("audit_issue", len(issues))
        for issue in issues:
            logger.warning("Ledger consistency issue: %s", issue["issue"], extra=issue)
        return issues

    def run(self, now: Optional[datetime] = None) -> Dict[str, Any]:
        """Full sweep, in order: stale bookings, abandoned reservations, audit."""
        bookings = self.expire_stale_pending_bookings(now)
        credits_released = self.release_abandoned_credit_reservations(now)
        issues = self.audit_consistency()
        return {
            "bookings": bookings,
            "credits_released": credits_released,
            "audit_issues": len(issues),
        }
