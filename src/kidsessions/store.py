"""Document stores with a live query over the ``children`` collection."""

from __future__ import annotations

import threading
from datetime import datetime
from typing import Any, Callable, Dict, List, Mapping, Optional
from uuid import uuid4

from .exceptions import ChildNotFoundError
from .models import EPOCH, SERVER_TIMESTAMP, ChildRecord, ListOrder, RenewalEntry, as_utc, utcnow
from .ops import StructuredLogger

SnapshotListener = Callable[[List[ChildRecord]], None]
ErrorListener = Callable[[Exception], None]


class Subscription:
    """Handle returned by :meth:`DocumentStore.subscribe`."""

    __slots__ = ("_store", "_key", "active")

    def __init__(self, store: "DocumentStore", key: int) -> None:
        self._store = store
        self._key = key
        self.active = True

    def unsubscribe(self) -> None:
        if self.active:
            self._store._drop_listener(self._key)
            self.active = False

    __call__ = unsubscribe


def _moment(value: Optional[datetime]) -> datetime:
    return as_utc(value) or EPOCH


def order_children(children: List[ChildRecord], order: ListOrder) -> List[ChildRecord]:
    if order is ListOrder.CREATED:
        return sorted(
            children,
            key=lambda child: (_moment(child.created_at), child.id),
            reverse=True,
        )
    return sorted(children, key=lambda child: (child.name, child.id))


class DocumentStore:
    """Common write path and subscriber bookkeeping.

    Subclasses persist documents; this class resolves server timestamps and
    pushes the full ordered child list to every subscriber after each child
    write.  Renewal writes do not touch the child list and notify nobody.
    A failing subscriber never fails the write that triggered it: the error
    goes to its ``on_error`` callback, or to ``logger`` when it has none.
    """

    def __init__(
        self,
        *,
        order: ListOrder = ListOrder.NAME,
        clock: Optional[Callable[[], datetime]] = None,
        logger: Optional[StructuredLogger] = None,
    ) -> None:
        self.order = ListOrder(order)
        self.logger = logger or StructuredLogger()
        self._clock = clock or utcnow
        self._listeners: Dict[int, tuple[SnapshotListener, Optional[ErrorListener]]] = {}
        self._next_key = 0
        self._lock = threading.Lock()

    # -- persistence hooks -------------------------------------------------
    def prepare(self) -> None:
        """Create backing tables or files; nothing to do by default."""

    def _load_children(self) -> List[ChildRecord]:
        raise NotImplementedError

    def _load_child(self, child_id: str) -> Optional[ChildRecord]:
        raise NotImplementedError

    def _insert_child(self, child_id: str, fields: Mapping[str, Any]) -> None:
        raise NotImplementedError

    def _update_child(self, child_id: str, fields: Mapping[str, Any]) -> bool:
        raise NotImplementedError

    def _delete_child(self, child_id: str) -> None:
        raise NotImplementedError

    def _insert_renewal(self, child_id: str, renewal_id: str, fields: Mapping[str, Any]) -> None:
        raise NotImplementedError

    def _load_renewals(self, child_id: str) -> List[RenewalEntry]:
        raise NotImplementedError

    # -- reads -------------------------------------------------------------
    def now(self) -> datetime:
        return self._clock()

    def children(self) -> List[ChildRecord]:
        return order_children(self._load_children(), self.order)

    def get_child(self, child_id: str) -> ChildRecord:
        child = self._load_child(child_id)
        if child is None:
            raise ChildNotFoundError(f"No child with id {child_id!r}.")
        return child

    def renewals(self, child_id: str) -> List[RenewalEntry]:
        entries = self._load_renewals(child_id)
        return sorted(
            entries,
            key=lambda entry: (_moment(entry.created_at), entry.id),
            reverse=True,
        )

    # -- writes ------------------------------------------------------------
    def _resolve(self, fields: Mapping[str, Any]) -> Dict[str, Any]:
        moment = self.now()
        return {key: (moment if value is SERVER_TIMESTAMP else value) for key, value in fields.items()}

    def add_child(self, fields: Mapping[str, Any]) -> str:
        child_id = uuid4().hex
        self._insert_child(child_id, self._resolve(fields))
        self._notify()
        return child_id

    def update_child(self, child_id: str, fields: Mapping[str, Any]) -> None:
        if not self._update_child(child_id, self._resolve(fields)):
            raise ChildNotFoundError(f"No child with id {child_id!r}.")
        self._notify()

    def delete_child(self, child_id: str) -> None:
        self._delete_child(child_id)
        self._notify()

    def add_renewal(self, child_id: str, fields: Mapping[str, Any]) -> RenewalEntry:
        renewal_id = uuid4().hex
        resolved = self._resolve(fields)
        self._insert_renewal(child_id, renewal_id, resolved)
        return RenewalEntry.from_document(renewal_id, resolved)

    # -- live query --------------------------------------------------------
    def subscribe(
        self,
        listener: SnapshotListener,
        on_error: Optional[ErrorListener] = None,
    ) -> Subscription:
        """Deliver the ordered child list now and after every child write.

        Without ``on_error`` a failing first delivery is raised to the caller
        and the listener is not kept.
        """

        with self._lock:
            key = self._next_key
            self._next_key += 1
            self._listeners[key] = (listener, on_error)
        try:
            listener(self.children())
        except Exception as exc:
            if on_error is None:
                self._drop_listener(key)
                raise
            on_error(exc)
        return Subscription(self, key)

    def _drop_listener(self, key: int) -> None:
        with self._lock:
            self._listeners.pop(key, None)

    @property
    def subscriber_count(self) -> int:
        with self._lock:
            return len(self._listeners)

    def _notify(self) -> None:
        with self._lock:
            targets = list(self._listeners.values())
        if not targets:
            return
        try:
            snapshot = self.children()
        except Exception as exc:
            for _, on_error in targets:
                self._report(on_error, exc)
            return
        for listener, on_error in targets:
            try:
                listener(list(snapshot))
            except Exception as exc:
                self._report(on_error, exc)

    def _report(self, on_error: Optional[ErrorListener], exc: Exception) -> None:
        if on_error is not None:
            try:
                on_error(exc)
                return
            except Exception as handler_exc:
                exc = handler_exc
        self.logger.log_error("snapshot_listener", exc)


class MemoryStore(DocumentStore):
    """Keep documents in dictionaries, the way a document database lays them out."""

    def __init__(
        self,
        *,
        order: ListOrder = ListOrder.NAME,
        clock: Optional[Callable[[], datetime]] = None,
        logger: Optional[StructuredLogger] = None,
    ) -> None:
        super().__init__(order=order, clock=clock, logger=logger)
        self._children: Dict[str, Dict[str, Any]] = {}
        self._renewals: Dict[str, Dict[str, Dict[str, Any]]] = {}

    def _load_children(self) -> List[ChildRecord]:
        return [ChildRecord.from_document(child_id, data) for child_id, data in self._children.items()]

    def _load_child(self, child_id: str) -> Optional[ChildRecord]:
        data = self._children.get(child_id)
        if data is None:
            return None
        return ChildRecord.from_document(child_id, data)

    def _insert_child(self, child_id: str, fields: Mapping[str, Any]) -> None:
        self._children[child_id] = dict(fields)

    def _update_child(self, child_id: str, fields: Mapping[str, Any]) -> bool:
        data = self._children.get(child_id)
        if data is None:
            return False
        data.update(fields)
        return True

    def _delete_child(self, child_id: str) -> None:
        self._children.pop(child_id, None)

    def _insert_renewal(self, child_id: str, renewal_id: str, fields: Mapping[str, Any]) -> None:
        self._renewals.setdefault(child_id, {})[renewal_id] = dict(fields)

    def _load_renewals(self, child_id: str) -> List[RenewalEntry]:
        return [
            RenewalEntry.from_document(renewal_id, data)
            for renewal_id, data in self._renewals.get(child_id, {}).items()
        ]


__all__ = [
    "SnapshotListener",
    "ErrorListener",
    "Subscription",
    "DocumentStore",
    "MemoryStore",
    "order_children",
]
