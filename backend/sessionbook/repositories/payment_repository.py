# backend/sessionbook/repositories/payment_repository.py
"""
Payment Repository for SessionBook

Data access for credit package offers and payment intents.
"""

from datetime import datetime
import logging
from typing import Any, List, Optional

from sqlalchemy import update
from sqlalchemy.orm import Session

from ..models.credit import CreditPackage
from ..models.payment import PaymentIntent
from .base_repository import BaseRepository

logger = logging.getLogger(__name__)


class PaymentRepository(BaseRepository[PaymentIntent]):
    """Repository for payment intents and the package catalogue."""

    def __init__(self, db: Session):
        super().__init__(db, PaymentIntent)

    # Packages

    def list_active_packages(self) -> List[CreditPackage]:
        query = (
            self.db.query(CreditPackage)
            .filter(CreditPackage.is_active.is_(True))
            .order_by(CreditPackage.sort_order.asc(), CreditPackage.price_minor.asc())
        )
        return list(query.all())

    def get_package_by_code(self, code: str) -> Optional[CreditPackage]:
        return self.db.query(CreditPackage).filter(CreditPackage.code == code).first()

    # Intents

    def get_by_reference(self, reference: str) -> Optional[PaymentIntent]:
        return self.find_one_by(reference=reference)

    def reload(self, intent_id: str) -> Optional[PaymentIntent]:
        return self.db.get(PaymentIntent, intent_id, populate_existing=True)

    def finalize_intent(
        self,
        intent_id: str,
        *,
        new_status: str,
        completed_at: datetime,
        **values: Any,
    ) -> bool:
        """Move a pending intent to a final status; False if it was already final."""
        stmt = (
            update(PaymentIntent)
            .where(PaymentIntent.id == intent_id, PaymentIntent.status == "pending")
            .values(status=new_status, completed_at=completed_at, **values)
            .execution_options(synchronize_session=False)
        )
        return self.db.execute(stmt).rowcount == 1
