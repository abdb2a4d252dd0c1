# backend/sessionbook/tasks/housekeeping.py
"""
Periodic booking housekeeping.

Each worker process builds its own engine and session factory after the
fork; the sweep itself runs in ``HousekeepingService``.
"""

import logging
from typing import Any, Dict, Optional

from celery.signals import worker_process_init
from sqlalchemy.orm import Session, sessionmaker

from ..core.config import Settings
from ..core.timezone_utils import Clock
from ..database import create_db_engine, create_session_factory, session_scope
from ..services.housekeeping_service import HousekeepingService
from .celery_app import HOUSEKEEPING_TASK, BaseTask, celery_app, get_app_settings

logger = logging.getLogger(__name__)

_session_factory: Optional[sessionmaker[Session]] = None


@worker_process_init.connect  # type: ignore[misc]
def init_worker_session_factory(**kwargs: Any) -> None:
    global _session_factory
    _session_factory = create_session_factory(create_db_engine(get_app_settings()))


def configure_session_factory(factory: Optional[sessionmaker[Session]]) -> None:
    """Install the session factory used by housekeeping tasks (tests, eager mode)."""
    global _session_factory
    _session_factory = factory


def get_session_factory() -> sessionmaker[Session]:
    global _session_factory
    if _session_factory is None:
        _session_factory = create_session_factory(create_db_engine(get_app_settings()))
    return _session_factory


def run_housekeeping(
    session_factory: sessionmaker[Session],
    settings: Settings,
    clock: Optional[Clock] = None,
) -> Dict[str, Any]:
    """One full sweep on a fresh session."""
    with session_scope(session_factory) as session:
        return HousekeepingService(session, settings=settings, clock=clock).run()


@celery_app.task(name=HOUSEKEEPING_TASK, base=BaseTask)  # type: ignore[misc]
def run_booking_housekeeping() -> Dict[str, Any]:
    """Expire stale pending bookings, release abandoned credits and audit the ledger."""
    result = run_housekeeping(get_session_factory(), get_app_settings())
    if result["audit_issues"]:
        logger.warning("Booking housekeeping found %s ledger issues", result["audit_issues"])
    logger.info("Booking housekeeping finished", extra={"result": result})
    return result
