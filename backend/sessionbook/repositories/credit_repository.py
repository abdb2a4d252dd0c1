# backend/sessionbook/repositories/credit_repository.py
"""
Credit Repository for SessionBook

Encapsulates session credit queries and the compare-and-set updates that
drive the credit reservation lifecycle.
"""

from __future__ import annotations

from datetime import datetime
import logging
from typing import Any, Dict, Iterable, List, Optional, cast

from sqlalchemy import and_, exists, func, or_, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ..core.exceptions import RepositoryException
from ..models.booking import ACTIVE_STATUSES, Booking
from ..models.credit import CreditStatus, SessionCredit
from .base_repository import BaseRepository

logger = logging.getLogger(__name__)


class CreditRepository(BaseRepository[SessionCredit]):
    """Repository for session credit queries."""

    def __init__(self, db: Session):
        super().__init__(db, SessionCredit)
        self.logger = logging.getLogger(__name__)

    def get_available_credits(self, *, patient_id: str) -> List[SessionCredit]:
        """Return available credits for a patient, oldest first."""
        try:
            query = (
                self.db.query(SessionCredit)
                .filter(
                    and_(
                        SessionCredit.patient_id == patient_id,
                        SessionCredit.status == CreditStatus.AVAILABLE.value,
                    )
                )
                .order_by(SessionCredit.purchased_at.asc(), SessionCredit.id.asc())
            )
            return cast(List[SessionCredit], query.all())
        except SQLAlchemyError as exc:
            self.logger.error("Failed to get available credits: %s", str(exc))
            raise RepositoryException("Failed to get available credits") from exc

    def select_oldest_available_id(
        self, *, patient_id: str, exclude_ids: Iterable[str] = ()
    ) -> Optional[str]:
        """
        Pick the oldest available credit id.

        On PostgreSQL the row is locked with SKIP LOCKED so concurrent
        reservations for the same patient move on to the next credit.
        """
        query = self.db.query(SessionCredit.id).filter(
            SessionCredit.patient_id == patient_id,
            SessionCredit.status == CreditStatus.AVAILABLE.value,
        )
        excluded = list(exclude_ids)
        if excluded:
            query = query.filter(SessionCredit.id.not_in(excluded))
        query = query.order_by(SessionCredit.purchased_at.asc(), SessionCredit.id.asc()).limit(1)
        if self.dialect_name == "postgresql":
            query = query.with_for_update(skip_locked=True)
        return cast(Optional[str], query.scalar())

    def compare_and_set_status(
        self,
        credit_id: str,
        *,
        expected: str,
        new_status: str,
        **values: Any,
    ) -> bool:
        """Conditional UPDATE; True when exactly this call moved the credit."""
        stmt = (
            update(SessionCredit)
            .where(SessionCredit.id == credit_id, SessionCredit.status == expected)
            .values(status=new_status, **values)
            .execution_options(synchronize_session=False)
        )
        result = self.db.execute(stmt)
        return result.rowcount == 1

    def release_if_abandoned(self, credit_id: str, *, reserved_before: datetime) -> bool:
        """
        reserved -> available, but only for a stale reservation that no active
        booking references. A credit re-reserved by a newer attempt is left alone.
        """
        referenced = exists().where(
            and_(Booking.credit_id == SessionCredit.id, Booking.status.in_(ACTIVE_STATUSES))
        )
        stmt = (
            update(SessionCredit)
            .where(
                SessionCredit.id == credit_id,
                SessionCredit.status == CreditStatus.RESERVED.value,
                SessionCredit.reserved_at < reserved_before,
                ~referenced,
            )
            .values(status=CreditStatus.AVAILABLE.value, reserved_at=None)
            .execution_options(synchronize_session=False)
        )
        return self.db.execute(stmt).rowcount == 1

    def reload(self, credit_id: str) -> Optional[SessionCredit]:
        return self.db.get(SessionCredit, credit_id, populate_existing=True)

    def get_by_package_reference(
        self, *, patient_id: str, package_reference: str
    ) -> List[SessionCredit]:
        query = (
            self._build_query()
            .filter(
                SessionCredit.patient_id == patient_id,
                SessionCredit.package_reference == package_reference,
            )
            .order_by(SessionCredit.id.asc())
        )
        return self._execute_query(query)

    def add_credits(self, rows: List[Dict[str, Any]]) -> List[SessionCredit]:
        credits = [SessionCredit(**row) for row in rows]
        self.db.add_all(credits)
        self.db.flush()
        return credits

    def count_by_status(self, *, patient_id: str) -> Dict[str, int]:
        try:
            rows = (
                self.db.query(SessionCredit.status, func.count(SessionCredit.id))
                .filter(SessionCredit.patient_id == patient_id)
                .group_by(SessionCredit.status)
                .all()
            )
            return {status: int(count) for status, count in rows}
        except SQLAlchemyError as exc:
            self.logger.error("Failed to count credits by status: %s", str(exc))
            raise RepositoryException("Failed to count credits") from exc

    def get_stale_unreferenced_reservations(
        self, *, reserved_before: datetime, limit: int = 500
    ) -> List[SessionCredit]:
        """Reserved credits older than the cutoff that no active booking points at."""
        referenced = exists().where(
            and_(Booking.credit_id == SessionCredit.id, Booking.status.in_(ACTIVE_STATUSES))
        )
        query = (
            self._build_query()
            .filter(
                SessionCredit.status == CreditStatus.RESERVED.value,
                SessionCredit.reserved_at < reserved_before,
                ~referenced,
            )
            .order_by(SessionCredit.reserved_at.asc(), SessionCredit.id.asc())
            .limit(limit)
        )
        return self._execute_query(query)

    def get_spent_without_booking(self) -> List[SessionCredit]:
        """Spent credits whose booking is missing or does not point back at them."""
        query = (
            self._build_query()
            .outerjoin(Booking, Booking.id == SessionCredit.booking_id)
            .filter(
                SessionCredit.status == CreditStatus.SPENT.value,
                or_(
                    Booking.id.is_(None),
                    Booking.credit_id.is_(None),
                    Booking.credit_id != SessionCredit.id,
                ),
            )
            .order_by(SessionCredit.spent_at.asc())
        )
        return self._execute_query(query)


__all__ = ["CreditRepository"]
