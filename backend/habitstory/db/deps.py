"""FastAPI dependencies for database access."""
from __future__ import annotations

from typing import Iterator

from fastapi import Depends
from sqlalchemy.orm import Session, sessionmaker

from habitstory.db.session import SessionLocal


def get_session_factory() -> sessionmaker:
    """Batch jobs open one session per unit of work, so they need the factory."""
    return SessionLocal


def get_db(session_factory: sessionmaker = Depends(get_session_factory)) -> Iterator[Session]:
    db = session_factory()
    try:
        yield db
    finally:
        db.close()
