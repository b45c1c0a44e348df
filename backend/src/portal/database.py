"""Record database engine and sessions.

The engine is built once from DATABASE_URL. SQLite (used in development and
tests) gets a thread-tolerant connection; PostgreSQL gets a small pool.
"""

from typing import Generator

from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker

from .config import get_settings
from .models.base import Base

DATABASE_URL = get_settings().DATABASE_URL


def _engine_options(url: str) -> dict:
    options = {"pool_pre_ping": True, "echo": False}
    if url.startswith("sqlite"):
        # FastAPI runs sync dependencies in a worker thread
        options["connect_args"] = {"check_same_thread": False}
    else:
        options.update(pool_size=5, max_overflow=10)
    return options


engine = create_engine(DATABASE_URL, **_engine_options(DATABASE_URL))

SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


def init_db() -> None:
    """Create the form_record table if it is missing."""
    Base.metadata.create_all(bind=engine)


def get_db() -> Generator[Session, None, None]:
    """Per-request session dependency.

    Usage:
        @router.get("/applications")
        def list_applications(db: Session = Depends(get_db)):
            return FormRecordRepository(db).list_for_variant(FormVariant.UG_1)
    """
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()
