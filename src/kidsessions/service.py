"""High level service coordinating session counting over a document store."""

from __future__ import annotations

from typing import Any, List, Optional

from . import counter
from .exceptions import InvalidChildError, TotalLockedError
from .models import (
    DEFAULT_SESSIONS_TOTAL,
    SERVER_TIMESTAMP,
    ChildRecord,
    RenewalEntry,
    RenewalMode,
)
from .ops import StructuredLogger
from .store import DocumentStore, ErrorListener, SnapshotListener, Subscription


def filter_children(children: List[ChildRecord], search: str = "") -> List[ChildRecord]:
    needle = (search or "").strip().lower()
    if not needle:
        return list(children)
    return [child for child in children if needle in child.name.lower()]


class SessionDesk:
    """Admin actions for children and their session quotas.

    Every mutation computes its update from the snapshot handed in by the
    caller and issues it as a plain write, so two admins acting on the same
    child concurrently get last-write-wins semantics.
    """

    __slots__ = ("_store", "_renewal_mode", "_allow_total_edit", "_logger")

    def __init__(
        self,
        store: DocumentStore,
        *,
        renewal_mode: RenewalMode = RenewalMode.DEFERRED,
        allow_total_edit: bool = False,
        logger: Optional[StructuredLogger] = None,
    ) -> None:
        self._store = store
        self._renewal_mode = RenewalMode(renewal_mode)
        self._allow_total_edit = allow_total_edit
        self._logger = logger or store.logger

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------
    def children(self, search: str = "") -> List[ChildRecord]:
        return filter_children(self._store.children(), search)

    def get_child(self, child_id: str) -> ChildRecord:
        return self._store.get_child(child_id)

    def renewal_history(self, child_id: str) -> List[RenewalEntry]:
        return self._store.renewals(child_id)

    def subscribe(self, listener: SnapshotListener, on_error: Optional[ErrorListener] = None) -> Subscription:
        return self._store.subscribe(listener, on_error)

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------
    def add_child(self, name: str, sessions_total: Any = DEFAULT_SESSIONS_TOTAL) -> str:
        clean_name = (name or "").strip()
        if not clean_name:
            raise InvalidChildError("Child name is required.")
        total = counter.normalize_total(sessions_total)
        child_id = self._store.add_child(
            {
                "name": clean_name,
                "sessionsTotal": total,
                "sessionsUsed": 0,
                "renewalPending": False,
                "createdAt": SERVER_TIMESTAMP,
                "updatedAt": SERVER_TIMESTAMP,
            }
        )
        self._logger.log("child_added", child=child_id, name=clean_name, total=total)
        return child_id

    def remove_child(self, child_id: str) -> None:
        self._store.delete_child(child_id)
        self._logger.log("child_removed", child=child_id)

    def increment_session(self, child: ChildRecord) -> counter.Update:
        update = counter.increment_update(child)
        self._store.update_child(child.id, update)
        if child.renewal_pending and "renewalPending" in update:
            self._logger.log("renewal_applied", child=child.id, amount=child.renewal_pending_amount)
        self._logger.log("session_incremented", child=child.id, used=update["sessionsUsed"])
        return update

    def decrement_session(self, child: ChildRecord) -> counter.Update:
        update = counter.decrement_update(child)
        self._store.update_child(child.id, update)
        self._logger.log("session_decremented", child=child.id, used=update["sessionsUsed"])
        return update

    def renew(self, child: ChildRecord, amount: Any = None) -> Optional[RenewalEntry]:
        """Replenish a child's quota.

        Immediate renewals reset the counter and return ``None``.  Deferred
        renewals validate ``amount``, append it to the renewal log and flag
        the child as pending; the counter resets on the increment that uses
        up the quota.  The log append and the flag are separate writes.
        """

        if self._renewal_mode is RenewalMode.IMMEDIATE:
            self._store.update_child(child.id, counter.immediate_renewal_update(child))
            self._logger.log("renewed", child=child.id, mode=self._renewal_mode.value)
            return None
        value = counter.parse_renewal_amount(amount)
        entry = self._store.add_renewal(child.id, {"amount": value, "createdAt": SERVER_TIMESTAMP})
        self._store.update_child(child.id, counter.pending_renewal_update(value))
        self._logger.log(
            "renewed",
            child=child.id,
            mode=self._renewal_mode.value,
            amount=value,
            renewal=entry.id,
        )
        return entry

    def set_sessions_total(self, child: ChildRecord, sessions_total: Any) -> counter.Update:
        if not self._allow_total_edit:
            raise TotalLockedError("Session quotas are fixed once a child is created.")
        update = counter.total_update(child, sessions_total)
        self._store.update_child(child.id, update)
        self._logger.log("total_updated", child=child.id, total=update["sessionsTotal"])
        return update

    # ------------------------------------------------------------------
    # Accessors
    # ------------------------------------------------------------------
    @property
    def store(self) -> DocumentStore:
        return self._store

    @property
    def renewal_mode(self) -> RenewalMode:
        return self._renewal_mode

    @property
    def allow_total_edit(self) -> bool:
        return self._allow_total_edit

    @property
    def logger(self) -> StructuredLogger:
        return self._logger


__all__ = ["SessionDesk", "filter_children"]
