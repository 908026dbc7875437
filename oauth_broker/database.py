"""
Audit database. Broker state lives in memory; only the audit trail is persisted (SQLite by default).
"""
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from oauth_broker.config import DATABASE_URL
from oauth_broker.models import Base


def _engine_options(url: str) -> dict:
    if not url.startswith("sqlite"):
        return {}
    # Sync endpoints run in FastAPI's threadpool
    options = {"connect_args": {"check_same_thread": False}}
    if url in ("sqlite://", "sqlite:///:memory:"):
        # In-memory: one shared connection, or each checkout would see an empty database
        options["poolclass"] = StaticPool
    return options


engine = create_engine(DATABASE_URL, **_engine_options(DATABASE_URL))
SessionLocal = sessionmaker(bind=engine, autoflush=False)


def init_db() -> None:
    """Create the audit table if missing."""
    Base.metadata.create_all(bind=engine)


def get_db():
    """Dependency: one DB session per request."""
    with SessionLocal() as db:
        yield db
