# backend/sessionbook/repositories/availability_repository.py
"""
Availability Repository for SessionBook

Data access for weekly availability rules and per-date exceptions.
All reads filter by therapist; ordering is by start time so slot
generation is deterministic.
"""

from datetime import date
import logging
from typing import List, Optional, Set

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ..core.exceptions import RepositoryException
from ..models.availability import AvailabilityRule, DateException
from .base_repository import BaseRepository

logger = logging.getLogger(__name__)


class AvailabilityRepository(BaseRepository[AvailabilityRule]):
    """Repository for availability rules and date exceptions."""

    def __init__(self, db: Session):
        super().__init__(db, AvailabilityRule)

    # Rules

    def get_rules(
        self,
        therapist_id: str,
        *,
        day_of_week: Optional[int] = None,
        include_inactive: bool = False,
    ) -> List[AvailabilityRule]:
        query = self._build_query().filter(AvailabilityRule.therapist_id == therapist_id)
        if day_of_week is not None:
            query = query.filter(AvailabilityRule.day_of_week == day_of_week)
        if not include_inactive:
            query = query.filter(AvailabilityRule.is_active.is_(True))
        query = query.order_by(
            AvailabilityRule.day_of_week.asc(),
            AvailabilityRule.start_time.asc(),
            AvailabilityRule.id.asc(),
        )
        return self._execute_query(query)

    def get_active_weekdays(self, therapist_id: str) -> Set[int]:
        """Weekdays (0 = Monday) on which the therapist has at least one active rule."""
        try:
            rows = (
                self.db.query(AvailabilityRule.day_of_week)
                .filter(
                    AvailabilityRule.therapist_id == therapist_id,
                    AvailabilityRule.is_active.is_(True),
                )
                .distinct()
                .all()
            )
            return {row[0] for row in rows}
        except SQLAlchemyError as exc:
            self.logger.error("Failed to load active weekdays for %s: %s", therapist_id, exc)
            raise RepositoryException("Failed to load active weekdays") from exc

    # Exceptions

    def get_exceptions_for_date(self, therapist_id: str, on_date: date) -> List[DateException]:
        query = (
            self.db.query(DateException)
            .filter(
                DateException.therapist_id == therapist_id,
                DateException.exception_date == on_date,
            )
            .order_by(DateException.start_time.asc(), DateException.id.asc())
        )
        return list(query.all())

    def get_exceptions_in_range(
        self, therapist_id: str, start_date: date, end_date: date
    ) -> List[DateException]:
        query = (
            self.db.query(DateException)
            .filter(
                DateException.therapist_id == therapist_id,
                DateException.exception_date >= start_date,
                DateException.exception_date <= end_date,
            )
            .order_by(DateException.exception_date.asc(), DateException.start_time.asc())
        )
        return list(query.all())

    def get_exception(self, exception_id: str) -> Optional[DateException]:
        return self.db.get(DateException, exception_id)

    def create_exception(self, **fields: object) -> DateException:
        exception = DateException(**fields)
        self.db.add(exception)
        self.db.flush()
        return exception

    def delete_exception(self, exception: DateException) -> None:
        self.db.delete(exception)
        self.db.flush()
