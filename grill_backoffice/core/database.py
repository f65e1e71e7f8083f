from __future__ import annotations

import logging
from typing import Iterator

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, declarative_base, sessionmaker

from grill_backoffice.core.config import DATABASE_URL, DB_POOL_SIZE

logger = logging.getLogger(__name__)

Base = declarative_base()

# Bound to an engine by init_engine(); nothing connects at import time.
SessionLocal = sessionmaker(autocommit=False, autoflush=False, expire_on_commit=False)

_engine: Engine | None = None


def build_engine(url: str = DATABASE_URL) -> Engine:
    if url.startswith("sqlite"):
        return create_engine(url, connect_args={"check_same_thread": False})
    return create_engine(
        url,
        pool_size=DB_POOL_SIZE,
        max_overflow=DB_POOL_SIZE,
        pool_recycle=3600,
        pool_pre_ping=True,
    )


def init_engine(url: str = DATABASE_URL) -> Engine:
    global _engine
    if _engine is None:
        _engine = build_engine(url)
        SessionLocal.configure(bind=_engine)
        logger.info("database engine initialized dialect=%s", _engine.dialect.name)
    return _engine


def get_engine() -> Engine:
    if _engine is None:
        raise RuntimeError("Database engine not initialized; call init_engine() first")
    return _engine


def dispose_engine() -> None:
    global _engine
    if _engine is not None:
        _engine.dispose()
        logger.info("database engine disposed")
        _engine = None


def get_db() -> Iterator[Session]:
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()
