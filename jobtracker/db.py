"""
Database configuration and session management
"""
from contextlib import contextmanager
import logging

from sqlalchemy import create_engine
from sqlalchemy.orm import declarative_base, sessionmaker

from .config import DATABASE_URL

logger = logging.getLogger("jobtracker.db")


def make_engine(url: str = DATABASE_URL, **kwargs):
    connect_args = {"check_same_thread": False} if url.startswith("sqlite") else {}
    return create_engine(url, future=True, connect_args=connect_args, **kwargs)


engine = make_engine()

SessionLocal = sessionmaker(autocommit=False, autoflush=False, expire_on_commit=False, bind=engine)

Base = declarative_base()


def init_db(bind=None):
    """Create all tables"""
    # Make sure all models are imported so Base.metadata is populated
    import jobtracker.models  # noqa: F401
    Base.metadata.create_all(bind=bind or engine)
    logger.info("Database tables created successfully", extra={"component": "db"})


def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


@contextmanager
def session_scope(factory=None):
    s = (factory or SessionLocal)()
    try:
        yield s
        s.commit()
    except Exception:
        s.rollback()
        raise
    finally:
        s.close()
