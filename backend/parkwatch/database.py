from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.orm import sessionmaker, declarative_base
from parkwatch.config import get_settings
import logging
import os

logger = logging.getLogger(__name__)
settings = get_settings()

db_url = settings.database_url


def build_engine(url: str) -> Engine:
    """Create an engine; SQLite gets thread-agnostic connections and FK enforcement."""
    if not url.startswith("sqlite"):
        return create_engine(url, pool_pre_ping=True)

    new_engine = create_engine(url, connect_args={"check_same_thread": False})

    # Without this, ON DELETE CASCADE doesn't work!
    @event.listens_for(new_engine, "connect")
    def set_sqlite_pragma(dbapi_connection, connection_record):
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()

    return new_engine


engine = build_engine(db_url)

SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

Base = declarative_base()


def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def _ensure_sqlite_directory(url: str) -> None:
    if url.startswith("sqlite:///") and ":memory:" not in url:
        db_dir = os.path.dirname(url.replace("sqlite:///", "", 1))
        if db_dir:
            os.makedirs(db_dir, exist_ok=True)


def init_db(bind: Engine | None = None) -> None:
    """Create all tables that do not exist yet."""
    # Register models on Base.metadata
    import parkwatch.models  # noqa: F401

    target = bind or engine
    _ensure_sqlite_directory(str(target.url))
    Base.metadata.create_all(bind=target)
    logger.info("Database tables ensured")
