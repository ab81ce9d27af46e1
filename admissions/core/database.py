from sqlalchemy import create_engine, QueuePool
from sqlalchemy.orm import sessionmaker, declarative_base, Session
from typing import Generator

from .config import settings
from .logging_config import get_logger

logger = get_logger("database")


def _engine_options(database_url: str) -> dict:
    """Pool options per backend; SQLite is used for local runs and tests"""
    if database_url.startswith("sqlite"):
        return {"connect_args": {"check_same_thread": False}}

    return {
        "poolclass": QueuePool,
        "pool_size": settings.POOL_SIZE,
        "max_overflow": settings.POOL_MAX_OVERFLOW,
        "pool_pre_ping": True,
        "pool_recycle": settings.POOL_RECYCLE_SECONDS,
        "pool_timeout": settings.POOL_TIMEOUT,
        "connect_args": {
            "connect_timeout": settings.CONNECT_TIMEOUT,
            "options": "-c statement_timeout=30000"  # 30 seconds
        }
    }


def build_engine(database_url: str):
    return create_engine(database_url, **_engine_options(database_url))


engine = build_engine(settings.DATABASE_URL)

SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

Base = declarative_base()


def get_db() -> Generator[Session, None, None]:
    """Database session dependency for FastAPI"""
    db = SessionLocal()
    try:
        yield db
    except Exception as e:
        logger.error(f"Database session error: {e}")
        db.rollback()
        raise
    finally:
        db.close()
