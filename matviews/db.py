from typing import Generator

from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker, Session, DeclarativeBase
from matviews.config import settings


class Base(DeclarativeBase):
    """Base class for SQLAlchemy models using modern DeclarativeBase."""
    pass


def _connect_args() -> dict:
    args = {"connect_timeout": 10}
    if settings.statement_timeout_ms:
        args["options"] = f"-c statement_timeout={settings.statement_timeout_ms}"
    return args


engine = create_engine(
    settings.database_url,
    pool_pre_ping=True,  # Verifica conexiones antes de usarlas
    pool_recycle=3600,
    pool_size=5,
    max_overflow=10,
    connect_args=_connect_args(),
)
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


def get_db() -> Generator[Session, None, None]:
    """
    Dependency that provides a database session.

    Yields:
        Session: SQLAlchemy database session
    """
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()
