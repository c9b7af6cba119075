import os
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from fastapi import HTTPException
from dotenv import load_dotenv

# Load environment variables from .env
load_dotenv()

# Create engine and session
db_url = os.getenv("DB_URL")

engine = None
SessionLocal = None
if db_url:
    connect_args = {}
    if db_url.startswith("postgresql"):
        connect_args = {"options": "-csearch_path=public"}
    engine = create_engine(db_url, connect_args=connect_args, pool_pre_ping=True)
    SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


def init_db() -> None:
    """Create billing tables that do not exist yet (existing ones are untouched)."""
    if engine is None:
        return
    from app.models import Base  # noqa: F401  registers all models
    Base.metadata.create_all(bind=engine, checkfirst=True)


def get_db():
    if SessionLocal is None:
        raise HTTPException(
            status_code=500,
            detail="Database is not configured. Missing DB_URL environment variable."
        )
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def get_session_factory():
    """
    For work that runs off the request thread: the caller opens and closes its
    own Session instead of sharing the request-scoped one from ``get_db``.
    """
    if SessionLocal is None:
        raise HTTPException(
            status_code=500,
            detail="Database is not configured. Missing DB_URL environment variable."
        )
    return SessionLocal
