from contextlib import contextmanager
from typing import Generator

from sqlalchemy import create_engine, event
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker, DeclarativeBase
from sqlalchemy.pool import StaticPool

from core.config import settings
from core.exceptions import PersistenceError


class Base(DeclarativeBase):
    pass


# Configure engine based on database type
if settings.DATABASE_URL.startswith("sqlite"):
    # For SQLite, use StaticPool for in-memory databases and enable foreign keys
    engine = create_engine(
        settings.DATABASE_URL,
        echo=settings.SQLALCHEMY_ECHO,
        future=True,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool if ":memory:" in settings.DATABASE_URL else None,
    )

    # Enable foreign key constraints for SQLite
    @event.listens_for(engine, "connect")
    def set_sqlite_pragma(dbapi_conn, connection_record):
        cursor = dbapi_conn.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()
else:
    # For PostgreSQL and other databases
    engine = create_engine(
        settings.DATABASE_URL,
        echo=settings.SQLALCHEMY_ECHO,
        future=True,
    )

SessionLocal = sessionmaker(bind=engine, autocommit=False, autoflush=False, expire_on_commit=False)


def get_db() -> Generator:
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


@contextmanager
def atomic(db: Session) -> Generator:
    """Run a unit of work on ``db``: commit on success, roll back on any error.

    Database failures are re-raised as ``PersistenceError`` so callers can tell
    them apart from business rejections.
    """
    try:
        yield db
        db.commit()
    except SQLAlchemyError as exc:
        db.rollback()
        raise PersistenceError(str(exc)) from exc
    except Exception:
        db.rollback()
        raise
