import asyncio
import io
import json
import sqlite3
from datetime import datetime, timezone
from typing import Iterator

import pytest

pytest.importorskip("fastapi")
from fastapi.testclient import TestClient
from sqlalchemy.exc import OperationalError

from kidsessions.models import ListOrder, RenewalMode
from kidsessions.ops import StructuredLogger
from kidsessions.service import SessionDesk
from kidsessions.store import MemoryStore
from kidsessions.webapp import application, persistence
from kidsessions.webapp.config import ADMIN_PIN


@pytest.fixture
def store(tmp_path):
    engine = persistence.make_engine(tmp_path / "webapp.db")
    return persistence.SQLStore(engine)


@pytest.fixture
def webapp_env(store):
    application.configure_desk(store, renewal_mode=RenewalMode.DEFERRED, allow_total_edit=False)
    return application


@pytest.fixture
def client(webapp_env) -> Iterator[TestClient]:
    with TestClient(webapp_env.app) as test_client:
        yield test_client


@pytest.fixture
def admin(client: TestClient) -> TestClient:
    response = client.post("/admin/login", data={"pin": ADMIN_PIN}, follow_redirects=False)
    assert response.status_code == 302
    return client


def add_child(client: TestClient, name: str, total: str = "12") -> str:
    client.post("/children/add", data={"name": name, "sessions_total": total})
    children = application.desk.children()
    return next(child.id for child in children if child.name == name)


def test_dashboard_requires_login(client: TestClient) -> None:
    response = client.get("/", follow_redirects=False)

    assert response.status_code == 302
    assert response.headers["location"] == "/admin/login"


def test_wrong_pin_is_rejected(client: TestClient) -> None:
    response = client.post("/admin/login", data={"pin": ADMIN_PIN + "9"})

    assert response.status_code == 401
    assert "Incorrect PIN." in response.text


def test_add_child_shows_on_dashboard(admin: TestClient) -> None:
    response = admin.post("/children/add", data={"name": "  Zephyrine ", "sessions_total": "8"})

    assert response.status_code == 200
    assert "Zephyrine" in response.text
    assert "0/8" in response.text
    child = application.desk.children()[0]
    assert child.name == "Zephyrine"
    assert child.sessions_total == 8


def test_add_child_without_name_reports_error(admin: TestClient) -> None:
    response = admin.post("/children/add", data={"name": "   "})

    assert "Child name is required." in response.text
    assert application.desk.children() == []
    assert application.desk.logger.tail(event="error")[-1]["action"] == "add_child"


def test_increment_and_decrement_routes(admin: TestClient) -> None:
    child_id = add_child(admin, "Quillon", "3")

    for _ in range(4):
        admin.post(f"/children/{child_id}/increment")
    assert application.desk.get_child(child_id).sessions_used == 3

    admin.post(f"/children/{child_id}/decrement")
    assert application.desk.get_child(child_id).sessions_used == 2

    response = admin.post(
        f"/children/{child_id}/decrement",
        data={"return_to": f"/?child={child_id}"},
        follow_redirects=False,
    )
    assert response.headers["location"] == f"/?child={child_id}"


def test_increment_missing_child_sets_notice(admin: TestClient) -> None:
    response = admin.post("/children/nope/increment")

    assert response.status_code == 200
    assert "That child no longer exists." in response.text


def test_external_return_target_is_ignored(admin: TestClient) -> None:
    child_id = add_child(admin, "Quillon")

    response = admin.post(
        f"/children/{child_id}/increment",
        data={"return_to": "//evil.example"},
        follow_redirects=False,
    )

    assert response.headers["location"] == "/"


def test_deferred_renewal_through_routes(admin: TestClient) -> None:
    child_id = add_child(admin, "Quillon", "2")
    admin.post(f"/children/{child_id}/increment")

    form = admin.get(f"/children/{child_id}/renew")
    assert "Amount paid" in form.text

    bad = admin.post(f"/children/{child_id}/renew", data={"amount": "abc"})
    assert bad.status_code == 400
    assert "Please enter a valid amount." in bad.text
    assert application.desk.get_child(child_id).renewal_pending is False

    admin.post(f"/children/{child_id}/renew", data={"amount": "25,000"})
    child = application.desk.get_child(child_id)
    assert child.renewal_pending is True
    assert child.renewal_pending_amount == 25000.0
    assert child.sessions_used == 1

    history = admin.get(f"/children/{child_id}/renewals")
    assert "Renewal pending" in history.text
    assert "25000" in history.text

    admin.post(f"/children/{child_id}/increment")
    child = application.desk.get_child(child_id)
    assert child.sessions_used == 0
    assert child.renewal_pending is False

    history = admin.get(f"/children/{child_id}/renewals")
    assert "No pending renewal" in history.text
    assert "25000" in history.text


def test_immediate_renewal_route(webapp_env, admin: TestClient) -> None:
    webapp_env.configure_desk(webapp_env.desk.store, renewal_mode=RenewalMode.IMMEDIATE)
    child_id = add_child(admin, "Quillon", "5")
    admin.post(f"/children/{child_id}/increment")
    admin.post(f"/children/{child_id}/increment")

    form = admin.get(f"/children/{child_id}/renew")
    assert "Amount paid" not in form.text

    admin.post(f"/children/{child_id}/renew")
    assert application.desk.get_child(child_id).sessions_used == 0
    assert application.desk.renewal_history(child_id) == []


def test_renewal_history_for_missing_child_redirects(admin: TestClient) -> None:
    response = admin.get("/children/missing/renewals", follow_redirects=False)

    assert response.status_code == 302
    assert response.headers["location"] == "/"


def test_total_edit_locked_and_unlocked(webapp_env, admin: TestClient) -> None:
    child_id = add_child(admin, "Quillon", "10")

    response = admin.post(f"/children/{child_id}/total", data={"sessions_total": "4"})
    assert "fixed once a child is created" in response.text
    assert application.desk.get_child(child_id).sessions_total == 10

    webapp_env.configure_desk(webapp_env.desk.store, allow_total_edit=True)
    dashboard = admin.get(f"/?child={child_id}")
    assert "Update quota" in dashboard.text
    admin.post(f"/children/{child_id}/total", data={"sessions_total": "4"})
    assert application.desk.get_child(child_id).sessions_total == 4


def test_search_and_selection(admin: TestClient) -> None:
    zephyrine = add_child(admin, "Zephyrine")
    add_child(admin, "Quillon")

    response = admin.get("/", params={"search": "ZEPH"})
    assert "Zephyrine" in response.text
    assert "Quillon" not in response.text

    response = admin.get("/", params={"search": "nobody"})
    assert "No results" in response.text

    response = admin.get("/", params={"child": zephyrine})
    assert "Selected:" in response.text

    admin.post(f"/children/{zephyrine}/delete")
    response = admin.get("/", params={"child": zephyrine})
    assert "Pick a child from the list to manage" in response.text
    assert [child.name for child in application.desk.children()] == ["Quillon"]


def test_dashboard_marks_tone_and_pending(admin: TestClient) -> None:
    child_id = add_child(admin, "Quillon", "2")
    admin.post(f"/children/{child_id}/increment")
    admin.post(f"/children/{child_id}/renew", data={"amount": "10"})

    response = admin.get("/")

    assert "row warn" in response.text
    assert "Renewed ✓" in response.text
    assert "1/2" in response.text


def test_api_children_uses_document_fields(client: TestClient, admin: TestClient) -> None:
    child_id = add_child(admin, "Quillon")
    admin.post(f"/children/{child_id}/renew", data={"amount": "40"})

    payload = admin.get("/api/children").json()["children"]

    assert payload[0]["id"] == child_id
    assert payload[0]["sessionsTotal"] == 12
    assert payload[0]["sessionsUsed"] == 0
    assert payload[0]["renewalPending"] is True
    assert payload[0]["renewalPendingAmount"] == 40.0

    renewals = admin.get(f"/api/children/{child_id}/renewals").json()["renewals"]
    assert renewals[0]["amount"] == 40.0

    admin.post("/admin/logout")
    assert client.get("/api/children").status_code == 401


def test_children_csv_export(admin: TestClient) -> None:
    add_child(admin, "Quillon", "6")

    response = admin.get("/admin/children.csv")

    assert response.headers["content-type"].startswith("text/csv")
    lines = response.text.strip().splitlines()
    assert lines[0].startswith("id,name,sessions_used,sessions_total")
    assert ",Quillon,0,6,6,0," in lines[1]


def test_migrations_upgrade_earlier_schema(tmp_path) -> None:
    db_path = tmp_path / "legacy.db"
    raw = sqlite3.connect(str(db_path))
    raw.execute(
        "CREATE TABLE child (id VARCHAR PRIMARY KEY, name VARCHAR, sessions_total INTEGER, "
        "sessions_used INTEGER, created_at DATETIME)"
    )
    raw.execute("INSERT INTO child VALUES ('old1', 'Legacy', 12, 5, '2024-01-01 10:00:00')")
    raw.commit()
    raw.close()

    store = persistence.SQLStore(persistence.make_engine(db_path))
    store.prepare()

    child = store.get_child("old1")
    assert child.renewal_pending is False
    assert child.sessions_used == 5
    assert child.updated_at == child.created_at
    assert store.renewals("old1") == []


def test_sql_store_saves_aware_utc_timestamps(tmp_path) -> None:
    store = persistence.SQLStore(persistence.make_engine(tmp_path / "stamps.db"), order=ListOrder.CREATED)
    store.prepare()
    desk = SessionDesk(store)

    first = desk.add_child("Sam", 3)
    second = desk.add_child("Mona", 3)
    desk.increment_session(desk.get_child(first))
    desk.renew(desk.get_child(first), "15")

    child = desk.get_child(first)
    assert child.sessions_used == 1
    assert child.renewal_pending is True
    assert child.created_at.tzinfo is not None
    assert child.updated_at.utcoffset().total_seconds() == 0
    assert child.renewal_pending_at >= child.created_at
    assert desk.renewal_history(first)[0].created_at.tzinfo is not None
    assert [record.id for record in desk.children()] == [second, first]


def test_sql_store_accepts_naive_clock_values(tmp_path) -> None:
    moment = datetime(2024, 2, 1, 8, 30)
    store = persistence.SQLStore(persistence.make_engine(tmp_path / "naive.db"), clock=lambda: moment)
    store.prepare()

    child_id = SessionDesk(store).add_child("Sam")

    assert store.get_child(child_id).created_at == moment.replace(tzinfo=timezone.utc)


def test_snapshot_stream_pushes_changes_until_disconnect(store) -> None:
    store.prepare()
    session_desk = SessionDesk(store)
    disconnected = False

    async def is_disconnected() -> bool:
        return disconnected

    async def read_stream():
        nonlocal disconnected
        events = application.snapshot_events(session_desk, is_disconnected, keepalive=5.0)
        first = await anext(events)
        subscribers = store.subscriber_count
        session_desk.add_child("Quillon")
        second = await anext(events)
        disconnected = True
        with pytest.raises(StopAsyncIteration):
            await anext(events)
        return first, subscribers, second

    first, subscribers, second = asyncio.run(read_stream())

    assert first == "data: []\n\n"
    assert subscribers == 1
    assert second.startswith("data: ") and second.endswith("\n\n")
    payload = json.loads(second[len("data: "):])
    assert [child["name"] for child in payload] == ["Quillon"]
    assert payload[0]["sessionsUsed"] == 0
    assert store.subscriber_count == 0


def test_snapshot_stream_sends_keepalive_comments(store) -> None:
    store.prepare()
    session_desk = SessionDesk(store)

    async def is_disconnected() -> bool:
        return False

    async def read_stream():
        events = application.snapshot_events(session_desk, is_disconnected, keepalive=0.01)
        try:
            return [await anext(events), await anext(events)]
        finally:
            await events.aclose()

    assert asyncio.run(read_stream()) == ["data: []\n\n", ": keepalive\n\n"]
    assert store.subscriber_count == 0


def test_stream_requires_login(client: TestClient) -> None:
    response = client.get("/api/children/stream")

    assert response.status_code == 401


class UnreachableStore(MemoryStore):
    def _load_children(self):
        raise OperationalError("SELECT child", {}, Exception("database is locked"))

    def _load_renewals(self, child_id):
        raise OperationalError("SELECT renewal", {}, Exception("database is locked"))


def test_api_reads_report_database_failures(webapp_env, admin: TestClient) -> None:
    webapp_env.configure_desk(UnreachableStore(logger=StructuredLogger(console=io.StringIO())))

    children = admin.get("/api/children")
    renewals = admin.get("/api/children/abc/renewals")

    assert children.status_code == 503
    assert renewals.status_code == 503
    failures = application.desk.logger.tail(event="error")
    assert [entry["action"] for entry in failures] == ["api_children", "api_renewals"]
    assert failures[-1]["child"] == "abc"
