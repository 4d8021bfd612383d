"""
Common dependencies for FastAPI endpoints.
"""
from typing import Generator

from sqlalchemy.orm import Session

from localchat.db.session import SessionLocal


def get_db() -> Generator[Session, None, None]:
    """
    Database session dependency.

    Yields a database session and ensures it's closed after the request.
    """
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()
