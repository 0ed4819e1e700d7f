from typing import Generator
from sqlalchemy.orm import Session

from .db import SessionLocal


def get_db() -> Generator[Session, None, None]:
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def get_session_factory():
    """Fábrica de sesiones para trabajos que abren su propia sesión por empresa."""
    return SessionLocal
