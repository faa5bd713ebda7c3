"""KidSessions package for tracking session credits for children."""

from .counter import (
    clamp,
    decrement_update,
    immediate_renewal_update,
    increment_update,
    normalize_total,
    parse_renewal_amount,
    pending_renewal_update,
)
from .exceptions import (
    ChildNotFoundError,
    InvalidChildError,
    InvalidRenewalAmountError,
    KidSessionsError,
    TotalLockedError,
)
from .i18n import Translator, format_timestamp
from .models import (
    DEFAULT_SESSIONS_TOTAL,
    SERVER_TIMESTAMP,
    ChildRecord,
    ListOrder,
    RenewalEntry,
    RenewalMode,
    SessionState,
    Tone,
)
from .ops import StructuredLogger
from .service import SessionDesk
from .store import DocumentStore, MemoryStore, Subscription

__all__ = [
    "ChildNotFoundError",
    "ChildRecord",
    "DEFAULT_SESSIONS_TOTAL",
    "DocumentStore",
    "InvalidChildError",
    "InvalidRenewalAmountError",
    "KidSessionsError",
    "ListOrder",
    "MemoryStore",
    "RenewalEntry",
    "RenewalMode",
    "SERVER_TIMESTAMP",
    "SessionDesk",
    "SessionState",
    "StructuredLogger",
    "Subscription",
    "Tone",
    "TotalLockedError",
    "Translator",
    "clamp",
    "decrement_update",
    "format_timestamp",
    "immediate_renewal_update",
    "increment_update",
    "normalize_total",
    "parse_renewal_amount",
    "pending_renewal_update",
]
