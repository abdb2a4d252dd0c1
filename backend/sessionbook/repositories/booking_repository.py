# backend/sessionbook/repositories/booking_repository.py
"""
Booking Repository for SessionBook

Implements the data access behind the booking conflict guard:
- Guarded inserts of pending bookings (the partial unique index decides)
- Compare-and-set status updates
- Slot, patient and housekeeping queries
- Consistency audit queries
"""

from datetime import date, datetime, time
import logging
from typing import Any, Iterable, List, Optional, Union

from sqlalchemy import or_, update
from sqlalchemy.orm import Session

from ..models.booking import ACTIVE_STATUSES, Booking, BookingStatus
from ..models.credit import CreditStatus, SessionCredit
from .base_repository import BaseRepository

logger = logging.getLogger(__name__)

SETTLED_STATUSES = (
    BookingStatus.CONFIRMED.value,
    BookingStatus.COMPLETED.value,
    BookingStatus.NO_SHOW.value,
)


class BookingRepository(BaseRepository[Booking]):
    """Repository for booking data access."""

    def __init__(self, db: Session):
        super().__init__(db, Booking)

    def insert_pending(self, **fields: Any) -> Booking:
        """
        Insert a pending_payment booking and flush it.

        IntegrityError from ``uq_bookings_active_slot`` is deliberately not
        wrapped: the conflict guard turns it into a slot conflict.
        """
        booking = Booking(status=BookingStatus.PENDING_PAYMENT.value, **fields)
        self.db.add(booking)
        self.db.flush()
        return booking

    def reload(self, booking_id: str) -> Optional[Booking]:
        """Fetch a booking, overwriting any stale copy in the identity map."""
        return self.db.get(Booking, booking_id, populate_existing=True)

    def compare_and_set_status(
        self,
        booking_id: str,
        *,
        expected: Union[str, Iterable[str]],
        new_status: str,
        **values: Any,
    ) -> bool:
        """
        Move a booking to ``new_status`` only if it is currently in ``expected``.

        Returns True when this call performed the transition.
        """
        expected_statuses = [expected] if isinstance(expected, str) else list(expected)
        stmt = (
            update(Booking)
            .where(Booking.id == booking_id, Booking.status.in_(expected_statuses))
            .values(status=new_status, **values)
            .execution_options(synchronize_session=False)
        )
        result = self.db.execute(stmt)
        return result.rowcount == 1

    # Slot queries

    def get_active_for_slot(
        self, therapist_id: str, booking_date: date, start_time: time
    ) -> Optional[Booking]:
        return (
            self._build_query()
            .filter(
                Booking.therapist_id == therapist_id,
                Booking.booking_date == booking_date,
                Booking.start_time == start_time,
                Booking.status.in_(ACTIVE_STATUSES),
            )
            .first()
        )

    def get_active_for_date(self, therapist_id: str, booking_date: date) -> List[Booking]:
        query = (
            self._build_query()
            .filter(
                Booking.therapist_id == therapist_id,
                Booking.booking_date == booking_date,
                Booking.status.in_(ACTIVE_STATUSES),
            )
            .order_by(Booking.start_time.asc())
        )
        return self._execute_query(query)

    # Patient queries

    def list_for_patient(
        self, patient_id: str, statuses: Optional[Iterable[str]] = None
    ) -> List[Booking]:
        query = self._build_query().filter(Booking.patient_id == patient_id)
        if statuses:
            query = query.filter(Booking.status.in_(list(statuses)))
        query = query.order_by(Booking.booking_date.desc(), Booking.start_time.desc())
        return self._execute_query(query)

    # Housekeeping queries

    def list_stale_pending(self, older_than: datetime, limit: int = 500) -> List[Booking]:
        query = (
            self._build_query()
            .filter(
                Booking.status == BookingStatus.PENDING_PAYMENT.value,
                Booking.created_at < older_than,
            )
            .order_by(Booking.created_at.asc(), Booking.id.asc())
            .limit(limit)
        )
        return self._execute_query(query)

    def list_settled_without_spent_credit(self) -> List[Booking]:
        """Confirmed/completed/no-show bookings whose credit is missing or not spent on them."""
        query = (
            self._build_query()
            .outerjoin(SessionCredit, SessionCredit.id == Booking.credit_id)
            .filter(
                Booking.status.in_(SETTLED_STATUSES),
                or_(
                    SessionCredit.id.is_(None),
                    SessionCredit.status != CreditStatus.SPENT.value,
                    SessionCredit.booking_id.is_(None),
                    SessionCredit.booking_id != Booking.id,
                ),
            )
            .order_by(Booking.booking_date.asc(), Booking.start_time.asc())
        )
        return self._execute_query(query)
