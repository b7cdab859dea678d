# workbench/db.py
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker, declarative_base

from . import config
from .monitoring import logger


def _make_engine(url: str):
    connect_args = {"check_same_thread": False} if url.startswith("sqlite") else {}
    return create_engine(url, connect_args=connect_args)


engine = _make_engine(config.DATABASE_URL)
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)
Base = declarative_base()


def reconfigure(url: str):
    """Point the engine and session factory at another database (tests, alternate profiles)."""
    global engine, SessionLocal
    engine.dispose()
    engine = _make_engine(url)
    SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


def get_session():
    return SessionLocal()


def init_db():
    # models must be imported so Base knows about the tables
    from . import models  # noqa: F401
    try:
        Base.metadata.create_all(bind=engine)
    except Exception:
        logger.exception("DB init failed")
        raise
