import io
import json
from datetime import datetime, timedelta, timezone

import pytest

from kidsessions.exceptions import (
    ChildNotFoundError,
    InvalidChildError,
    InvalidRenewalAmountError,
    TotalLockedError,
)
from kidsessions.i18n import Translator, format_timestamp
from kidsessions.models import ListOrder, RenewalMode
from kidsessions.ops import StructuredLogger
from kidsessions.service import SessionDesk
from kidsessions.store import MemoryStore


class StepClock:
    def __init__(self) -> None:
        self.moment = datetime(2024, 1, 1, 9, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        self.moment += timedelta(minutes=1)
        return self.moment


def make_desk(**kwargs) -> SessionDesk:
    order = kwargs.pop("order", ListOrder.NAME)
    return SessionDesk(MemoryStore(order=order, clock=StepClock()), **kwargs)


def test_add_child_trims_name_and_sets_defaults() -> None:
    desk = make_desk()

    child_id = desk.add_child("  Sam  ")
    child = desk.get_child(child_id)

    assert child.name == "Sam"
    assert child.sessions_total == 12
    assert child.sessions_used == 0
    assert child.renewal_pending is False
    assert child.created_at is not None
    assert child.created_at == child.updated_at


def test_add_child_requires_a_name() -> None:
    desk = make_desk()

    with pytest.raises(InvalidChildError):
        desk.add_child("   ")

    assert desk.children() == []


def test_deferred_renewal_cycle() -> None:
    desk = make_desk()
    child_id = desk.add_child("Sam", 3)
    desk.increment_session(desk.get_child(child_id))
    desk.increment_session(desk.get_child(child_id))

    entry = desk.renew(desk.get_child(child_id), "100")

    child = desk.get_child(child_id)
    assert entry is not None and entry.amount == 100.0
    assert child.sessions_used == 2
    assert child.renewal_pending is True
    assert child.renewal_pending_amount == 100.0
    assert child.renewal_pending_at is not None

    desk.increment_session(child)

    child = desk.get_child(child_id)
    assert child.sessions_used == 0
    assert child.renewal_pending is False
    assert child.renewal_pending_amount is None
    assert child.renewal_pending_at is None
    assert [item.amount for item in desk.renewal_history(child_id)] == [100.0]
    assert desk.logger.tail(event="renewal_applied")


def test_full_child_without_renewal_stays_full() -> None:
    desk = make_desk()
    child_id = desk.add_child("Sam", 2)
    for _ in range(4):
        desk.increment_session(desk.get_child(child_id))

    assert desk.get_child(child_id).sessions_used == 2


def test_invalid_renewal_amount_writes_nothing() -> None:
    desk = make_desk()
    child_id = desk.add_child("Sam")

    with pytest.raises(InvalidRenewalAmountError):
        desk.renew(desk.get_child(child_id), "free")

    assert desk.renewal_history(child_id) == []
    assert desk.get_child(child_id).renewal_pending is False


def test_immediate_renewal_resets_without_logging_entries() -> None:
    desk = make_desk(renewal_mode=RenewalMode.IMMEDIATE)
    child_id = desk.add_child("Sam", 4)
    for _ in range(3):
        desk.increment_session(desk.get_child(child_id))

    assert desk.renew(desk.get_child(child_id)) is None

    child = desk.get_child(child_id)
    assert child.sessions_used == 0
    assert child.renewal_pending is False
    assert desk.renewal_history(child_id) == []


def test_renewal_history_is_newest_first() -> None:
    desk = make_desk()
    child_id = desk.add_child("Sam")
    desk.renew(desk.get_child(child_id), "10")
    desk.renew(desk.get_child(child_id), "20")

    assert [entry.amount for entry in desk.renewal_history(child_id)] == [20.0, 10.0]
    assert desk.get_child(child_id).renewal_pending_amount == 20.0


def test_renewal_log_survives_failed_status_write() -> None:
    desk = make_desk()
    child_id = desk.add_child("Sam")
    snapshot = desk.get_child(child_id)
    desk.remove_child(child_id)

    with pytest.raises(ChildNotFoundError):
        desk.renew(snapshot, "50")

    assert len(desk.renewal_history(child_id)) == 1


def test_updates_on_removed_child_raise() -> None:
    desk = make_desk()
    child_id = desk.add_child("Sam")
    snapshot = desk.get_child(child_id)
    desk.remove_child(child_id)

    with pytest.raises(ChildNotFoundError):
        desk.increment_session(snapshot)
    with pytest.raises(ChildNotFoundError):
        desk.get_child(child_id)
    desk.remove_child(child_id)


def test_stale_snapshots_lose_updates() -> None:
    desk = make_desk()
    child_id = desk.add_child("Sam")
    first = desk.get_child(child_id)
    second = desk.get_child(child_id)

    desk.increment_session(first)
    desk.increment_session(second)

    assert desk.get_child(child_id).sessions_used == 1


def test_sessions_total_is_locked_by_default() -> None:
    desk = make_desk()
    child_id = desk.add_child("Sam")

    with pytest.raises(TotalLockedError):
        desk.set_sessions_total(desk.get_child(child_id), 20)


def test_sessions_total_edit_clamps_used() -> None:
    desk = make_desk(allow_total_edit=True)
    child_id = desk.add_child("Sam", 10)
    for _ in range(8):
        desk.increment_session(desk.get_child(child_id))

    desk.set_sessions_total(desk.get_child(child_id), 5)

    child = desk.get_child(child_id)
    assert child.sessions_total == 5
    assert child.sessions_used == 5


def test_search_is_case_insensitive_and_trimmed() -> None:
    desk = make_desk()
    desk.add_child("Lina")
    desk.add_child("Omar")
    desk.add_child("Salina")

    assert [child.name for child in desk.children("  LIN ")] == ["Lina", "Salina"]
    assert len(desk.children("")) == 3


def test_name_and_creation_ordering() -> None:
    by_name = make_desk()
    by_created = make_desk(order=ListOrder.CREATED)
    for desk in (by_name, by_created):
        desk.add_child("Omar")
        desk.add_child("Adam")
        desk.add_child("Mona")

    assert [child.name for child in by_name.children()] == ["Adam", "Mona", "Omar"]
    assert [child.name for child in by_created.children()] == ["Mona", "Adam", "Omar"]


def test_subscribers_receive_initial_and_changed_snapshots() -> None:
    desk = make_desk()
    snapshots = []

    subscription = desk.subscribe(lambda children: snapshots.append([c.name for c in children]))
    child_id = desk.add_child("Sam")
    desk.renew(desk.get_child(child_id), "30")
    subscription.unsubscribe()
    desk.increment_session(desk.get_child(child_id))

    assert snapshots == [[], ["Sam"], ["Sam"]]
    assert desk.store.subscriber_count == 0


def test_listener_failures_are_routed_to_error_callback() -> None:
    desk = make_desk()
    errors = []

    def broken(_children):
        raise RuntimeError("render failed")

    desk.subscribe(broken, on_error=errors.append)
    desk.add_child("Sam")

    assert len(errors) == 2
    assert all(isinstance(error, RuntimeError) for error in errors)


def test_failed_first_delivery_does_not_keep_the_listener() -> None:
    desk = make_desk()
    calls = []

    def broken(children):
        calls.append(len(children))
        raise RuntimeError("render failed")

    with pytest.raises(RuntimeError):
        desk.subscribe(broken)
    desk.add_child("Sam")

    assert desk.store.subscriber_count == 0
    assert calls == [0]


def test_listener_failure_does_not_fail_the_write() -> None:
    console = io.StringIO()
    store = MemoryStore(clock=StepClock(), logger=StructuredLogger(console=console))
    desk = SessionDesk(store)
    seen = []

    def fails_after_first(children):
        if seen:
            raise RuntimeError("render failed")
        seen.append("first")

    desk.subscribe(fails_after_first)
    counts = []
    desk.subscribe(lambda children: counts.append(len(children)))

    child_id = desk.add_child("Sam")

    assert desk.get_child(child_id).name == "Sam"
    assert counts == [0, 1]
    assert store.logger.tail(event="child_added")
    failure = store.logger.tail(event="error")[-1]
    assert failure["action"] == "snapshot_listener"
    assert failure["message"] == "render failed"
    assert "render failed" in console.getvalue()


def test_failing_error_callback_is_logged_by_the_store() -> None:
    store = MemoryStore(logger=StructuredLogger(console=io.StringIO()))
    calls = []

    def fails_after_first(children):
        calls.append(len(children))
        if len(calls) > 1:
            raise RuntimeError("render failed")

    def broken_handler(exc):
        raise ValueError("handler failed")

    store.subscribe(fails_after_first, on_error=broken_handler)
    store.add_child({"name": "Sam"})

    assert calls == [0, 1]
    assert store.logger.tail(event="error")[-1]["message"] == "handler failed"


def test_structured_logger_writes_files_and_console(tmp_path) -> None:
    console = io.StringIO()
    logger = StructuredLogger(path=tmp_path / "logs" / "events.jsonl", console=console)

    logger.log("child_added", child="abc")
    logger.log_error("renew", ValueError("boom"), child="abc")

    lines = (tmp_path / "logs" / "events.jsonl").read_text(encoding="utf-8").splitlines()
    assert [json.loads(line)["event"] for line in lines] == ["child_added", "error"]
    assert json.loads(console.getvalue())["message"] == "boom"
    assert logger.tail(event="error")[0]["action"] == "renew"


def test_translator_and_timestamp_formatting() -> None:
    arabic = Translator("ar")

    assert arabic.translate("action.renew") == "تجديد"
    assert arabic.direction() == "rtl"
    assert "12" in Translator().translate("renew.hint", total=12)
    assert Translator("xx").default_locale == "en"
    assert format_timestamp(None) == "—"
    assert format_timestamp(datetime(2024, 3, 9, 7, 5)) == "2024/03/09 07:05"
