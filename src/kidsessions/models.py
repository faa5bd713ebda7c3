"""Domain models used by the KidSessions package."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Mapping, Optional

DEFAULT_SESSIONS_TOTAL = 12
MIN_SESSIONS_TOTAL = 1
MAX_SESSIONS_TOTAL = 999


class _ServerTimestamp:
    """Placeholder resolved to the store clock when a write is applied."""

    __slots__ = ()

    def __repr__(self) -> str:
        return "SERVER_TIMESTAMP"


SERVER_TIMESTAMP: Any = _ServerTimestamp()

EPOCH = datetime.min.replace(tzinfo=timezone.utc)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Return ``value`` as an aware UTC datetime; naive values are taken as UTC."""

    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


class SessionState(str, Enum):
    """Where a child sits in the session counting cycle."""

    ACTIVE = "active"
    FULL = "full"
    FULL_PENDING = "full_pending"


class RenewalMode(str, Enum):
    """How a renewal replenishes the quota."""

    IMMEDIATE = "immediate"
    DEFERRED = "deferred"


class ListOrder(str, Enum):
    """Ordering applied to the live child list."""

    NAME = "name"
    CREATED = "created"


class Tone(str, Enum):
    """Display tone derived from the remaining sessions."""

    OK = "ok"
    WARN = "warn"
    DANGER = "danger"


def tone_for_remaining(remaining: int) -> Tone:
    if remaining == 1:
        return Tone.WARN
    if remaining <= 0:
        return Tone.DANGER
    return Tone.OK


def _as_int(value: Any, default: int) -> int:
    if value is None:
        return default
    try:
        return int(float(value))
    except (TypeError, ValueError):
        return default


def _as_float(value: Any) -> Optional[float]:
    if value is None:
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


def _as_datetime(value: Any) -> Optional[datetime]:
    if isinstance(value, datetime):
        return value
    if isinstance(value, str) and value:
        try:
            return datetime.fromisoformat(value)
        except ValueError:
            return None
    return None


@dataclass(slots=True)
class ChildRecord:
    """Snapshot of a child document as last seen by the caller."""

    id: str
    name: str
    sessions_total: int = DEFAULT_SESSIONS_TOTAL
    sessions_used: int = 0
    renewal_pending: bool = False
    renewal_pending_amount: Optional[float] = None
    renewal_pending_at: Optional[datetime] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @property
    def remaining(self) -> int:
        return self.sessions_total - self.sessions_used

    @property
    def tone(self) -> Tone:
        return tone_for_remaining(self.remaining)

    @property
    def state(self) -> SessionState:
        if self.sessions_used < self.sessions_total:
            return SessionState.ACTIVE
        if self.renewal_pending:
            return SessionState.FULL_PENDING
        return SessionState.FULL

    @classmethod
    def from_document(cls, doc_id: str, data: Mapping[str, Any]) -> "ChildRecord":
        """Build a snapshot from stored fields, filling in the usual defaults."""

        return cls(
            id=str(doc_id),
            name=str(data.get("name") or ""),
            sessions_total=_as_int(data.get("sessionsTotal"), DEFAULT_SESSIONS_TOTAL),
            sessions_used=_as_int(data.get("sessionsUsed"), 0),
            renewal_pending=bool(data.get("renewalPending") or False),
            renewal_pending_amount=_as_float(data.get("renewalPendingAmount")),
            renewal_pending_at=_as_datetime(data.get("renewalPendingAt")),
            created_at=_as_datetime(data.get("createdAt")),
            updated_at=_as_datetime(data.get("updatedAt")),
        )

    def to_document(self, *, include_id: bool = False) -> Dict[str, Any]:
        document: Dict[str, Any] = {
            "name": self.name,
            "sessionsTotal": self.sessions_total,
            "sessionsUsed": self.sessions_used,
            "renewalPending": self.renewal_pending,
            "renewalPendingAmount": self.renewal_pending_amount,
            "renewalPendingAt": self.renewal_pending_at,
            "createdAt": self.created_at,
            "updatedAt": self.updated_at,
        }
        if include_id:
            document = {"id": self.id, **document}
        return document


@dataclass(slots=True, frozen=True)
class RenewalEntry:
    """One append-only line of a child's renewal log."""

    id: str
    amount: float
    created_at: Optional[datetime] = None

    @classmethod
    def from_document(cls, doc_id: str, data: Mapping[str, Any]) -> "RenewalEntry":
        return cls(
            id=str(doc_id),
            amount=_as_float(data.get("amount")) or 0.0,
            created_at=_as_datetime(data.get("createdAt")),
        )

    def to_document(self, *, include_id: bool = False) -> Dict[str, Any]:
        document: Dict[str, Any] = {"amount": self.amount, "createdAt": self.created_at}
        if include_id:
            document = {"id": self.id, **document}
        return document


__all__ = [
    "DEFAULT_SESSIONS_TOTAL",
    "MIN_SESSIONS_TOTAL",
    "MAX_SESSIONS_TOTAL",
    "SERVER_TIMESTAMP",
    "EPOCH",
    "utcnow",
    "as_utc",
    "SessionState",
    "RenewalMode",
    "ListOrder",
    "Tone",
    "tone_for_remaining",
    "ChildRecord",
    "RenewalEntry",
]
