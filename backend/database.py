"""
Database connection for the BFP dispatch API
"""

import os

from sqlalchemy import create_engine
from sqlalchemy.orm import declarative_base, sessionmaker

DATABASE_URL = os.environ.get("DATABASE_URL", "sqlite:///./bfp_dispatch.db")


def _engine_options(url: str) -> dict:
    if url.startswith("sqlite"):
        # FastAPI runs sync dependencies in a threadpool
        return {"connect_args": {"check_same_thread": False}}
    return {
        "pool_size": 10,           # Base connections to keep open
        "max_overflow": 20,        # Additional connections when busy (30 total max)
        "pool_timeout": 30,        # Seconds to wait for connection before error
        "pool_recycle": 1800,      # Recycle connections after 30 min (prevents stale)
        "pool_pre_ping": True,     # Test connections before using (handles dropped connections)
    }


engine = create_engine(DATABASE_URL, **_engine_options(DATABASE_URL))
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)
Base = declarative_base()


def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()
