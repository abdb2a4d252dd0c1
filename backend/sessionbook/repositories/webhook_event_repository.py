"""Repository helpers for the payment webhook ledger."""

from __future__ import annotations

import logging

from sqlalchemy.orm import Session

from ..models.webhook_event import WebhookEvent
from .base_repository import BaseRepository

logger = logging.getLogger(__name__)


class WebhookEventRepository(BaseRepository[WebhookEvent]):
    """Repository for webhook ledger queries."""

    def __init__(self, db: Session) -> None:
        super().__init__(db, WebhookEvent)

    def find_by_source_and_event_id(self, source: str, event_id: str) -> WebhookEvent | None:
        return (
            self._build_query()
            .filter(WebhookEvent.source == source, WebhookEvent.event_id == event_id)
            .first()
        )

