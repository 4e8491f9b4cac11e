"""Database configuration and session management for the archive catalog."""

from sqlalchemy import create_engine
from sqlalchemy.orm import declarative_base, sessionmaker

from app.config import get_settings


def _connect_args(url: str) -> dict:
    # FastAPI runs sync endpoints on a threadpool
    if url.startswith("sqlite"):
        return {"check_same_thread": False}
    return {}


DATABASE_URL = get_settings().database_url

engine = create_engine(DATABASE_URL, echo=False, connect_args=_connect_args(DATABASE_URL))
SessionLocal = sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)
Base = declarative_base()


def get_db():
    """Dependency for FastAPI routes to get database session."""
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()
