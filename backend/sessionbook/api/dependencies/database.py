# backend/sessionbook/api/dependencies/database.py
"""
Database-related dependencies.
"""

from typing import Generator

from fastapi import Request
from sqlalchemy.orm import Session


def get_db(request: Request) -> Generator[Session, None, None]:
    """
    Get database session dependency.

    Sessions come from the factory the app was created with.

    Yields:
        Database session that will be closed after use
    """
    session: Session = request.app.state.session_factory()
    try:
        yield session
    finally:
        session.close()
