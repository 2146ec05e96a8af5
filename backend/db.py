import logging
import os
from dataclasses import dataclass
from typing import Any

from sqlalchemy import text
from sqlmodel import Session, SQLModel, create_engine

logger = logging.getLogger(__name__)

# Get database URL from environment, default to SQLite for local dev
# Use persistent storage path if running in container with volume mount
db_path = os.getenv("DATABASE_PATH", "./meal-orders.db")
env = os.getenv("ENV", os.getenv("RENDER", "").lower() or "dev")

if os.getenv("DATABASE_URL"):
    DATABASE_URL = os.getenv("DATABASE_URL")
else:
    # Guard against SQLite fallback in production
    if env in ("prod", "production") or os.getenv("RENDER"):
        raise RuntimeError(
            "DATABASE_URL missing in production; refusing to start with SQLite. "
            "Please configure DATABASE_URL environment variable."
        )
    DATABASE_URL = f"sqlite:///{db_path}"

# Render provides postgres:// but SQLAlchemy needs postgresql://
if DATABASE_URL and DATABASE_URL.startswith("postgres://"):
    DATABASE_URL = DATABASE_URL.replace("postgres://", "postgresql://", 1)

# Log database driver for observability
db_driver = DATABASE_URL.split(":", 1)[0] if ":" in DATABASE_URL else "unknown"
logger.info(f"DB_URL_DRIVER={db_driver}")

connect_args = {"check_same_thread": False} if DATABASE_URL.startswith("sqlite") else {}
engine = create_engine(DATABASE_URL, echo=False, connect_args=connect_args)


def create_db_and_tables(bind=None):
    """Create database and tables if they don't exist.
    This is safe to call multiple times - it won't wipe existing data.
    """
    import models  # noqa: F401  registers the table metadata

    SQLModel.metadata.create_all(bind or engine)


def get_session():
    """Get database session."""
    with Session(engine) as session:
        yield session


@dataclass
class RunResult:
    changes: int
    last_insert_id: int | None


class Store:
    """Persistence handle passed to the domain service.

    Wraps one SQLModel session. ``run``/``get``/``all`` execute parameterized
    SQL; ORM queries go through ``session`` directly.
    """

    def __init__(self, session: Session):
        self.session = session

    def run(self, stmt: str, params: dict[str, Any] | None = None) -> RunResult:
        result = self.session.execute(text(stmt), params or {})
        last_id = getattr(result, "lastrowid", None)
        return RunResult(changes=result.rowcount or 0, last_insert_id=last_id)

    def get(self, stmt: str, params: dict[str, Any] | None = None) -> dict[str, Any] | None:
        row = self.session.execute(text(stmt), params or {}).mappings().first()
        return dict(row) if row else None

    def all(self, stmt: str, params: dict[str, Any] | None = None) -> list[dict[str, Any]]:
        rows = self.session.execute(text(stmt), params or {}).mappings().all()
        return [dict(row) for row in rows]

    def add(self, obj):
        self.session.add(obj)
        return obj

    def commit(self):
        self.session.commit()

    def rollback(self):
        self.session.rollback()
