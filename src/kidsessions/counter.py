"""Session counting and renewal rules.

Each helper inspects a :class:`~kidsessions.models.ChildRecord` snapshot and
returns the field update to write back, keyed by document field name.  The
helpers never touch a store, so the same rules drive the in-memory store, the
SQL store and the tests.

A renewal either resets the counter on the spot (``RenewalMode.IMMEDIATE``)
or only flags the child as pending (``RenewalMode.DEFERRED``).  A pending
renewal is consumed by the increment that reaches the quota: the counter
restarts at zero instead of saturating.
"""

from __future__ import annotations

import math
import re
from typing import Any, Dict

from .exceptions import InvalidRenewalAmountError
from .models import (
    DEFAULT_SESSIONS_TOTAL,
    MAX_SESSIONS_TOTAL,
    MIN_SESSIONS_TOTAL,
    SERVER_TIMESTAMP,
    ChildRecord,
)

Update = Dict[str, Any]

_AMOUNT_NOISE = re.compile(r"[^\d.]")


def clamp(value: int, low: int, high: int) -> int:
    return max(low, min(high, value))


def normalize_total(raw: Any) -> int:
    """Coerce a submitted quota into the accepted range.

    Blank, zero and unparseable input fall back to the default quota.
    """

    if isinstance(raw, str):
        raw = raw.strip()
    try:
        value = int(float(raw)) if raw not in (None, "") else 0
    except (TypeError, ValueError, OverflowError):
        value = 0
    if not value:
        value = DEFAULT_SESSIONS_TOTAL
    return clamp(value, MIN_SESSIONS_TOTAL, MAX_SESSIONS_TOTAL)


def parse_renewal_amount(raw: Any) -> float:
    """Return the paid amount typed by an admin, ignoring currency noise."""

    cleaned = _AMOUNT_NOISE.sub("", str(raw if raw is not None else ""))
    try:
        amount = float(cleaned)
    except ValueError:
        raise InvalidRenewalAmountError(f"Not a valid renewal amount: {raw!r}") from None
    if not math.isfinite(amount) or amount <= 0:
        raise InvalidRenewalAmountError(f"Not a valid renewal amount: {raw!r}")
    return amount


def _stamped(update: Update) -> Update:
    update["updatedAt"] = SERVER_TIMESTAMP
    return update


def increment_update(child: ChildRecord) -> Update:
    total = child.sessions_total
    next_used = clamp(child.sessions_used + 1, 0, total)
    if next_used >= total:
        if child.renewal_pending:
            return _stamped(
                {
                    "sessionsUsed": 0,
                    "renewalPending": False,
                    "renewalPendingAmount": None,
                    "renewalPendingAt": None,
                }
            )
        return _stamped({"sessionsUsed": total})
    return _stamped({"sessionsUsed": next_used})


def decrement_update(child: ChildRecord) -> Update:
    return _stamped({"sessionsUsed": clamp(child.sessions_used - 1, 0, child.sessions_total)})


def immediate_renewal_update(child: ChildRecord) -> Update:
    # Resets regardless of how many sessions were used.
    return _stamped({"sessionsUsed": 0})


def pending_renewal_update(amount: float) -> Update:
    return _stamped(
        {
            "renewalPending": True,
            "renewalPendingAmount": amount,
            "renewalPendingAt": SERVER_TIMESTAMP,
        }
    )


def total_update(child: ChildRecord, raw_total: Any) -> Update:
    total = normalize_total(raw_total)
    return _stamped(
        {
            "sessionsTotal": total,
            "sessionsUsed": clamp(child.sessions_used, 0, total),
        }
    )


__all__ = [
    "Update",
    "clamp",
    "normalize_total",
    "parse_renewal_amount",
    "increment_update",
    "decrement_update",
    "immediate_renewal_update",
    "pending_renewal_update",
    "total_update",
]
