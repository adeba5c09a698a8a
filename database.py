# database.py
import logging

from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker, declarative_base
from sqlalchemy.pool import StaticPool

from config import settings

logger = logging.getLogger(__name__)

Base = declarative_base()

DATABASE_URL = settings.DATABASE_URL
if not DATABASE_URL:
    raise RuntimeError("DATABASE_URL is not set in the environment")


def _engine_kwargs(url: str) -> dict:
    # SQLite (tests, local single-user runs) has no pool sizing; share one
    # connection so an in-memory database survives across sessions.
    if url.startswith("sqlite"):
        return {
            "connect_args": {"check_same_thread": False},
            "poolclass": StaticPool,
        }
    return {
        "pool_size": settings.DB_POOL_SIZE,
        "max_overflow": settings.DB_MAX_OVERFLOW,
        "pool_timeout": settings.DB_POOL_TIMEOUT,
        "pool_recycle": settings.DB_POOL_RECYCLE,
        "pool_pre_ping": True,  # test connection liveness before checkout
    }


engine = create_engine(DATABASE_URL, **_engine_kwargs(DATABASE_URL))

if DATABASE_URL.startswith("sqlite"):
    logger.info("DB configured: sqlite static pool")
else:
    logger.info(
        "DB pool configured: size=%d, max_overflow=%d, recycle=%ds, pre_ping=True",
        settings.DB_POOL_SIZE, settings.DB_MAX_OVERFLOW, settings.DB_POOL_RECYCLE,
    )

SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


def init_db() -> None:
    import models  # noqa: F401  registers every table on Base.metadata

    Base.metadata.create_all(bind=engine)


def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()
