"""Persistence and SQLModel definitions for the KidSessions web frontend."""
from __future__ import annotations

import sqlite3
from datetime import datetime
from pathlib import Path
from typing import Any, Callable, Dict, List, Mapping, Optional
from uuid import uuid4

from sqlalchemy.engine import Engine
from sqlmodel import Field, Session, SQLModel, create_engine, select

from ..models import DEFAULT_SESSIONS_TOTAL, ChildRecord, ListOrder, RenewalEntry, as_utc, utcnow
from ..ops import StructuredLogger
from ..store import DocumentStore
from .config import SQLITE_FILE_NAME

# ---------------------------------------------------------------------------
# Database models
# ---------------------------------------------------------------------------
# Ensure fresh metadata when re-importing in test contexts.
SQLModel.metadata.clear()


def _new_id() -> str:
    return uuid4().hex


class Child(SQLModel, table=True):
    id: str = Field(default_factory=_new_id, primary_key=True)
    name: str = ""
    sessions_total: int = DEFAULT_SESSIONS_TOTAL
    sessions_used: int = 0
    renewal_pending: bool = False
    renewal_pending_amount: Optional[float] = None
    renewal_pending_at: Optional[datetime] = None
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)


class Renewal(SQLModel, table=True):
    id: str = Field(default_factory=_new_id, primary_key=True)
    child_id: str = Field(index=True)
    amount: float
    created_at: datetime = Field(default_factory=utcnow)


# Document field name -> column name.
CHILD_FIELD_COLUMNS: Dict[str, str] = {
    "name": "name",
    "sessionsTotal": "sessions_total",
    "sessionsUsed": "sessions_used",
    "renewalPending": "renewal_pending",
    "renewalPendingAmount": "renewal_pending_amount",
    "renewalPendingAt": "renewal_pending_at",
    "createdAt": "created_at",
    "updatedAt": "updated_at",
}


def make_engine(path: str | Path = SQLITE_FILE_NAME) -> Engine:
    return create_engine(
        f"sqlite:///{path}",
        echo=False,
        connect_args={"check_same_thread": False},
    )


engine = make_engine()


# ---------------------------------------------------------------------------
# Database initialisation & migrations
# ---------------------------------------------------------------------------
def create_db_and_tables(bind: Engine | None = None) -> None:
    SQLModel.metadata.create_all(bind or engine)


def _column_exists(conn: sqlite3.Connection, table: str, column: str) -> bool:
    cur = conn.execute(f"PRAGMA table_info({table});")
    return any(row[1] == column for row in cur.fetchall())


def run_migrations(path: str | Path = SQLITE_FILE_NAME) -> None:
    """Bring databases written by the earlier dashboards up to date."""

    raw = sqlite3.connect(str(path))
    try:
        if not _column_exists(raw, "child", "renewal_pending"):
            raw.execute("ALTER TABLE child ADD COLUMN renewal_pending BOOLEAN DEFAULT 0;")
        if not _column_exists(raw, "child", "renewal_pending_amount"):
            raw.execute("ALTER TABLE child ADD COLUMN renewal_pending_amount FLOAT;")
        if not _column_exists(raw, "child", "renewal_pending_at"):
            raw.execute("ALTER TABLE child ADD COLUMN renewal_pending_at DATETIME;")
        if not _column_exists(raw, "child", "updated_at"):
            raw.execute("ALTER TABLE child ADD COLUMN updated_at DATETIME;")
            raw.execute("UPDATE child SET updated_at = created_at WHERE updated_at IS NULL;")
        raw.execute(
            """
            CREATE TABLE IF NOT EXISTS renewal (
                id VARCHAR PRIMARY KEY,
                child_id VARCHAR NOT NULL,
                amount FLOAT NOT NULL,
                created_at DATETIME NOT NULL
            );
            """
        )
        raw.execute("CREATE INDEX IF NOT EXISTS ix_renewal_child_id ON renewal(child_id);")
        raw.commit()
    finally:
        raw.close()


# ---------------------------------------------------------------------------
# Store
# ---------------------------------------------------------------------------
def child_record(row: Child) -> ChildRecord:
    return ChildRecord(
        id=row.id,
        name=row.name or "",
        sessions_total=row.sessions_total if row.sessions_total is not None else DEFAULT_SESSIONS_TOTAL,
        sessions_used=row.sessions_used or 0,
        renewal_pending=bool(row.renewal_pending),
        renewal_pending_amount=row.renewal_pending_amount,
        renewal_pending_at=as_utc(row.renewal_pending_at),
        created_at=as_utc(row.created_at),
        updated_at=as_utc(row.updated_at),
    )


def renewal_entry(row: Renewal) -> RenewalEntry:
    return RenewalEntry(id=row.id, amount=float(row.amount or 0), created_at=as_utc(row.created_at))


def _column_values(fields: Mapping[str, Any]) -> Dict[str, Any]:
    # Timestamp columns only accept aware datetimes.
    return {
        CHILD_FIELD_COLUMNS[key]: as_utc(value) if isinstance(value, datetime) else value
        for key, value in fields.items()
    }


class SQLStore(DocumentStore):
    """Children and renewal logs kept in SQLite tables."""

    def __init__(
        self,
        bind: Engine | None = None,
        *,
        order: ListOrder = ListOrder.NAME,
        clock: Optional[Callable[[], datetime]] = None,
        logger: Optional[StructuredLogger] = None,
    ) -> None:
        super().__init__(order=order, clock=clock, logger=logger)
        self.engine = bind or engine

    def prepare(self) -> None:
        create_db_and_tables(self.engine)
        database = self.engine.url.database
        if database and database != ":memory:":
            run_migrations(database)

    def _load_children(self) -> List[ChildRecord]:
        with Session(self.engine) as session:
            return [child_record(row) for row in session.exec(select(Child)).all()]

    def _load_child(self, child_id: str) -> Optional[ChildRecord]:
        with Session(self.engine) as session:
            row = session.get(Child, child_id)
            return child_record(row) if row else None

    def _insert_child(self, child_id: str, fields: Mapping[str, Any]) -> None:
        values = _column_values(fields)
        with Session(self.engine) as session:
            session.add(Child(id=child_id, **values))
            session.commit()

    def _update_child(self, child_id: str, fields: Mapping[str, Any]) -> bool:
        with Session(self.engine) as session:
            row = session.get(Child, child_id)
            if row is None:
                return False
            for column, value in _column_values(fields).items():
                setattr(row, column, value)
            session.add(row)
            session.commit()
        return True

    def _delete_child(self, child_id: str) -> None:
        with Session(self.engine) as session:
            row = session.get(Child, child_id)
            if row is not None:
                session.delete(row)
                session.commit()

    def _insert_renewal(self, child_id: str, renewal_id: str, fields: Mapping[str, Any]) -> None:
        with Session(self.engine) as session:
            session.add(
                Renewal(
                    id=renewal_id,
                    child_id=child_id,
                    amount=fields["amount"],
                    created_at=as_utc(fields["createdAt"]),
                )
            )
            session.commit()

    def _load_renewals(self, child_id: str) -> List[RenewalEntry]:
        with Session(self.engine) as session:
            rows = session.exec(select(Renewal).where(Renewal.child_id == child_id)).all()
            return [renewal_entry(row) for row in rows]


__all__ = [
    "engine",
    "Child",
    "Renewal",
    "CHILD_FIELD_COLUMNS",
    "SQLStore",
    "child_record",
    "renewal_entry",
    "make_engine",
    "create_db_and_tables",
    "run_migrations",
]
