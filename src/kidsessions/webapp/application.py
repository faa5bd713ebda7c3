"""FastAPI frontend for the KidSessions dashboard.

Admins sign in with a PIN, then add children, count sessions, renew quotas
and read renewal logs.  Pages are rendered server side; the dashboard keeps
itself current through a server-sent events stream fed by the store's live
query.  Deploy with ``uvicorn kidsessions.webapp:app``.
"""

from __future__ import annotations

import asyncio
import csv
import hmac
import io
import json
from contextlib import asynccontextmanager
from html import escape as html_escape
from typing import Any, AsyncIterator, Awaitable, Callable, List, Optional, Tuple
from urllib.parse import urlencode

from fastapi import FastAPI, Form, Query, Request
from fastapi.encoders import jsonable_encoder
from fastapi.responses import HTMLResponse, JSONResponse, RedirectResponse, StreamingResponse
from sqlalchemy.exc import SQLAlchemyError
from starlette.concurrency import run_in_threadpool
from starlette.middleware.sessions import SessionMiddleware

from ..exceptions import ChildNotFoundError, InvalidRenewalAmountError, KidSessionsError
from ..i18n import Translator, format_timestamp
from ..models import ChildRecord, RenewalEntry, RenewalMode
from ..ops import StructuredLogger
from ..service import SessionDesk, filter_children
from ..store import DocumentStore
from .config import (
    ADMIN_PIN,
    ALLOW_TOTAL_EDIT,
    DEFAULT_SESSIONS_TOTAL,
    LIST_ORDER,
    LOG_FILE,
    RENEWAL_MODE,
    SESSION_SECRET,
    STREAM_KEEPALIVE_SECONDS,
    UI_LOCALE,
)
from . import persistence as _persistence
from .persistence import *  # noqa: F401,F403
from .persistence import SQLStore

# ---------------------------------------------------------------------------
# Service wiring
# ---------------------------------------------------------------------------
translator = Translator(UI_LOCALE)
_logger = StructuredLogger(path=LOG_FILE)
desk = SessionDesk(
    SQLStore(order=LIST_ORDER, logger=_logger),
    renewal_mode=RENEWAL_MODE,
    allow_total_edit=ALLOW_TOTAL_EDIT,
    logger=_logger,
)


def configure_desk(
    store: DocumentStore,
    *,
    renewal_mode: RenewalMode = RENEWAL_MODE,
    allow_total_edit: bool = ALLOW_TOTAL_EDIT,
    logger: Optional[StructuredLogger] = None,
) -> SessionDesk:
    """Point the web handlers at another store (used by deployments and tests)."""

    global desk
    desk = SessionDesk(
        store,
        renewal_mode=renewal_mode,
        allow_total_edit=allow_total_edit,
        logger=logger,
    )
    return desk


def t(key: str, **params: object) -> str:
    return translator.translate(key, **params)


# ---------------------------------------------------------------------------
# FastAPI application setup
# ---------------------------------------------------------------------------
@asynccontextmanager
async def lifespan(_app: FastAPI):
    desk.store.prepare()
    yield


app = FastAPI(title="Kid Sessions", lifespan=lifespan)
app.add_middleware(
    SessionMiddleware,
    secret_key=SESSION_SECRET,
    same_site="lax",
    max_age=None,
)


# ---------------------------------------------------------------------------
# Session helpers
# ---------------------------------------------------------------------------
def admin_authed(request: Request) -> bool:
    return bool(request.session.get("admin_authed"))


def require_admin(request: Request) -> Optional[RedirectResponse]:
    if not admin_authed(request):
        return RedirectResponse("/admin/login", status_code=302)
    return None


def pin_matches(pin: str) -> bool:
    return hmac.compare_digest((pin or "").strip().encode("utf-8"), ADMIN_PIN.encode("utf-8"))


def set_admin_notice(request: Request, message: str, kind: str = "info") -> None:
    request.session["admin_notice"] = message
    request.session["admin_notice_kind"] = kind


def pop_admin_notice(request: Request) -> Tuple[Optional[str], str]:
    message = request.session.pop("admin_notice", None)
    kind = request.session.pop("admin_notice_kind", "info")
    return message, kind


def safe_redirect(target: Optional[str], fallback: str = "/") -> str:
    candidate = (target or "").strip()
    if candidate.startswith("/") and not candidate.startswith("//"):
        return candidate
    return fallback


def dashboard_url(search: str = "", child: str = "") -> str:
    params = {key: value for key, value in (("search", search), ("child", child)) if value}
    return f"/?{urlencode(params)}" if params else "/"


def report_failure(request: Request, action: str, exc: Exception, child_id: Optional[str] = None) -> None:
    desk.logger.log_error(action, exc, child=child_id)
    if isinstance(exc, ChildNotFoundError):
        message = "That child no longer exists."
    elif isinstance(exc, KidSessionsError):
        message = str(exc)
    else:
        message = "The change could not be saved."
    set_admin_notice(request, message, "error")


# ---------------------------------------------------------------------------
# Rendering
# ---------------------------------------------------------------------------
def base_styles() -> str:
    return """
    <style>
      :root{
        --bg:#0b1220; --card:#111827; --muted:#9aa4b2; --accent:#2563eb;
        --good:#16a34a; --warn:#d97706; --bad:#dc2626; --text:#e5e7eb;
      }
      @media (prefers-color-scheme: light){
    :root{ --bg:#f7fafc; --card:#ffffff; --muted:#475569; --accent:#2563eb; --text:#0f172a; }
      }
      html, body { overflow-x: hidden; }
      body{
        font-family: system-ui,-apple-system,Segoe UI,Roboto,Arial;
        background:var(--bg); color:var(--text);
        max-width:1200px; margin:0 auto; padding:24px 16px;
      }
      .grid{display:grid; grid-template-columns:2fr 1fr; gap:16px;}
      @media (max-width: 900px){ .grid{grid-template-columns:1fr;} }
      .card{background:var(--card); border-radius:12px; padding:16px; box-shadow:0 8px 20px rgba(0,0,0,.08); margin:12px 0;}
      .topbar{display:flex; justify-content:space-between; align-items:center; margin-bottom:8px}
      .badge,.pill{display:inline-block; padding:4px 8px; border-radius:999px; background:#1f2937; color:#cbd5e1; font-size:12px}
      input{width:100%; padding:12px; border:1px solid #2b3545; border-radius:10px; background:#fff; color:#000 !important; box-sizing:border-box; font-size:16px;}
      input::placeholder{color:var(--muted)}
      button{padding:10px 12px; border-radius:10px; border:0; background:var(--accent); color:#fff; cursor:pointer; min-height:40px;}
      button:hover{filter:brightness(1.05)}
      button.ghost{background:rgba(148,163,184,0.2); color:var(--text);}
      button.success{background:var(--good);}
      button.warn{background:var(--warn);}
      button.danger{background:var(--bad);}
      button.full{width:100%; margin-top:10px;}
      .field{display:flex; flex-direction:column; gap:6px; margin:10px 0;}
      .table-head,.row{display:grid; grid-template-columns:1.4fr 0.6fr 0.6fr 2.4fr; gap:8px; align-items:center;}
      .table-head{color:var(--muted); font-size:13px; padding:8px 10px;}
      .row{padding:10px; border-radius:10px; margin:6px 0; border-inline-start:4px solid var(--good); background:rgba(148,163,184,0.06);}
      .row.warn{border-inline-start-color:var(--warn);}
      .row.danger{border-inline-start-color:var(--bad);}
      .row.active{box-shadow:0 0 0 2px var(--accent);}
      .row a{color:var(--text); text-decoration:none; font-weight:600;}
      .actions{display:flex; gap:6px; flex-wrap:wrap;}
      .actions form{margin:0;}
      .pending-tag{margin-inline-start:8px; padding:2px 8px; border-radius:999px; background:rgba(251,191,36,0.2); color:#fbbf24; font-size:12px;}
      .empty{padding:14px; color:var(--muted);}
      .muted{color:var(--muted)}
      .notice{margin-bottom:12px; padding:12px; border-radius:10px;}
      .notice.error{background:#fee2e2; border-inline-start:4px solid #fca5a5; color:#b91c1c;}
      .notice.success,.notice.info{background:#dcfce7; border-inline-start:4px solid #86efac; color:#166534;}
      .log-meta{display:flex; flex-direction:column; gap:4px; margin:10px 0;}
      table{width:100%; border-collapse:collapse}
      th,td{padding:10px; border-bottom:1px solid #243041; text-align:start;}
    </style>
    """


def live_reload_script() -> str:
    return """
    <script>
    (function(){
      if(!window.EventSource){return;}
      var first = true;
      var source = new EventSource('/api/children/stream');
      source.onmessage = function(){
        if(first){ first = false; return; }
        source.close();
        window.location.reload();
      };
    })();
    </script>
    """


def frame(title: str, inner: str, head_extra: str = "") -> str:
    locale = translator.default_locale
    return (
        f"<html lang='{locale}' dir='{translator.direction()}'><head><meta charset='utf-8'>"
        "<meta name='viewport' content='width=device-width,initial-scale=1'>"
        f"{head_extra}<title>{html_escape(title)}</title>{base_styles()}</head><body>{inner}</body></html>"
    )


def render_page(
    request: Optional[Request],
    title: str,
    inner: str,
    *,
    head_extra: str = "",
    status_code: int = 200,
) -> HTMLResponse:
    notice_html = ""
    if request is not None:
        message, kind = pop_admin_notice(request)
        if message:
            notice_html = f"<div class='notice {html_escape(kind)}'>{html_escape(message)}</div>"
    return HTMLResponse(frame(title, notice_html + inner, head_extra=head_extra), status_code=status_code)


def format_amount(amount: Optional[float]) -> str:
    if amount is None:
        return "—"
    return str(int(amount)) if float(amount).is_integer() else f"{amount:.2f}"


def _action_button(child: ChildRecord, action: str, label: str, css: str, return_to: str) -> str:
    return (
        f"<form method='post' action='/children/{html_escape(child.id)}/{action}'>"
        f"<input type='hidden' name='return_to' value='{html_escape(return_to)}'>"
        f"<button type='submit' class='{css}'>{html_escape(label)}</button></form>"
    )


def child_row_html(child: ChildRecord, *, search: str, selected_id: str) -> str:
    return_to = dashboard_url(search, selected_id)
    active = " active" if child.id == selected_id else ""
    pending = ""
    if child.renewal_pending:
        pending = (
            f"<span class='pending-tag' title='{html_escape(t('pending.tag_title'))}'>"
            f"{html_escape(t('pending.tag'))}</span>"
        )
    child_id = html_escape(child.id)
    actions = "".join(
        [
            _action_button(child, "decrement", t("action.decrement"), "ghost", return_to),
            _action_button(child, "increment", t("action.increment"), "success", return_to),
            f"<a href='/children/{child_id}/renew'><button type='button' class='warn'>{html_escape(t('action.renew'))}</button></a>",
            f"<a href='/children/{child_id}/renewals'><button type='button'>{html_escape(t('action.history'))}</button></a>",
            _action_button(child, "delete", t("action.delete"), "danger", dashboard_url(search)),
        ]
    )
    return (
        f"<div class='row {child.tone.value}{active}' data-child='{child_id}'>"
        f"<div><a href='{html_escape(dashboard_url(search, child.id))}'>{html_escape(child.name)}</a>{pending}</div>"
        f"<div>{child.sessions_used}/{child.sessions_total}</div>"
        f"<div>{child.remaining}</div>"
        f"<div class='actions'>{actions}</div>"
        "</div>"
    )


def selected_box_html(selected: Optional[ChildRecord], search: str) -> str:
    if selected is None:
        return f"<div class='card muted'>{html_escape(t('dashboard.select_hint'))}</div>"
    total_form = ""
    if desk.allow_total_edit:
        total_form = f"""
        <form method='post' action='/children/{html_escape(selected.id)}/total'>
          <input type='hidden' name='return_to' value='{html_escape(dashboard_url(search, selected.id))}'>
          <label class='field'><span>{html_escape(t('column.sessions'))}</span>
            <input type='number' name='sessions_total' value='{selected.sessions_total}' min='1'></label>
          <button type='submit' class='full'>{html_escape(t('action.update_total'))}</button>
        </form>
        """
    return (
        f"<div class='card'><span class='muted'>{html_escape(t('dashboard.selected'))}</span> "
        f"<strong>{html_escape(selected.name)}</strong> "
        f"<span class='pill'>{selected.sessions_used}/{selected.sessions_total}</span>{total_form}</div>"
    )


def dashboard_html(children: List[ChildRecord], *, search: str, selected: Optional[ChildRecord]) -> str:
    selected_id = selected.id if selected else ""
    visible = filter_children(children, search)
    if visible:
        rows = "".join(child_row_html(child, search=search, selected_id=selected_id) for child in visible)
    else:
        rows = f"<div class='empty'>{html_escape(t('dashboard.no_results'))}</div>"
    return f"""
    <div class='topbar'>
      <h2>{html_escape(t('dashboard.title'))}</h2>
      <div class='actions'>
        <a href='/admin/children.csv'><span class='badge'>CSV</span></a>
        <form method='post' action='/admin/logout'><button type='submit' class='ghost'>{html_escape(t('login.logout'))}</button></form>
      </div>
    </div>
    <div class='grid'>
      <div class='card'>
        <h3>{html_escape(t('dashboard.search'))}</h3>
        <form method='get' action='/'>
          <input name='search' value='{html_escape(search)}' placeholder='{html_escape(t('dashboard.search_placeholder'))}'>
        </form>
        <div class='table-head'>
          <span>{html_escape(t('column.name'))}</span>
          <span>{html_escape(t('column.sessions'))}</span>
          <span>{html_escape(t('column.remaining'))}</span>
          <span></span>
        </div>
        <div class='list'>{rows}</div>
      </div>
      <div>
        <div class='card'>
          <h3>{html_escape(t('dashboard.add_title'))}</h3>
          <form method='post' action='/children/add'>
            <label class='field'><span>{html_escape(t('dashboard.name'))}</span>
              <input name='name' placeholder='{html_escape(t('dashboard.name_placeholder'))}' required></label>
            <label class='field'><span>{html_escape(t('dashboard.total'))}</span>
              <input type='number' name='sessions_total' value='{DEFAULT_SESSIONS_TOTAL}' min='1'></label>
            <button type='submit' class='full'>{html_escape(t('dashboard.add'))}</button>
          </form>
        </div>
        {selected_box_html(selected, search)}
      </div>
    </div>
    """


def renew_form_html(child: ChildRecord, *, amount: str = "", error: str = "") -> str:
    error_html = f"<div class='notice error'>{html_escape(error)}</div>" if error else ""
    if desk.renewal_mode is RenewalMode.IMMEDIATE:
        amount_field = ""
        hint = t("renew.immediate_hint")
    else:
        amount_field = f"""
        <label class='field'><span>{html_escape(t('renew.amount'))}</span>
          <input name='amount' value='{html_escape(amount)}' placeholder='{html_escape(t('renew.amount_placeholder'))}' inputmode='numeric'></label>
        """
        hint = t("renew.hint", total=child.sessions_total)
    return f"""
    <div class='card'>
      <h3>{html_escape(t('renew.title'))}</h3>
      <div>{html_escape(t('renew.child'))} <strong>{html_escape(child.name)}</strong></div>
      {error_html}
      <form method='post' action='/children/{html_escape(child.id)}/renew'>
        {amount_field}
        <div class='actions'>
          <a href='/'><button type='button' class='ghost'>{html_escape(t('action.cancel'))}</button></a>
          <button type='submit' class='warn'>{html_escape(t('action.save_renewal'))}</button>
        </div>
      </form>
      <p class='muted'>{html_escape(hint)}</p>
    </div>
    """


def renewals_html(child: ChildRecord, entries: List[RenewalEntry]) -> str:
    if child.renewal_pending:
        status = f"<strong style='color:#fbbf24;'>{html_escape(t('log.pending'))}</strong>"
        last = (
            f"<span>{html_escape(t('log.last_amount'))} <strong>{format_amount(child.renewal_pending_amount)}</strong>"
            f" — {format_timestamp(child.renewal_pending_at)}</span>"
        )
    else:
        status = f"<strong style='color:#9ca3af;'>{html_escape(t('log.not_pending'))}</strong>"
        last = ""
    if entries:
        rows = "".join(
            f"<tr><td>{format_timestamp(entry.created_at)}</td><td>{format_amount(entry.amount)}</td></tr>"
            for entry in entries
        )
        body = (
            f"<table><tr><th>{html_escape(t('log.when'))}</th><th>{html_escape(t('log.amount'))}</th></tr>{rows}</table>"
        )
    else:
        body = f"<div class='empty'>{html_escape(t('log.empty'))}</div>"
    return f"""
    <div class='card'>
      <h3>{html_escape(t('log.title'))}</h3>
      <div>{html_escape(t('renew.child'))} <strong>{html_escape(child.name)}</strong></div>
      <div class='log-meta'><span>{html_escape(t('log.status'))} {status}</span>{last}</div>
      {body}
      <p><a href='/'><button type='button'>{html_escape(t('action.close'))}</button></a></p>
    </div>
    """


# ---------------------------------------------------------------------------
# Login
# ---------------------------------------------------------------------------
@app.get("/admin/login", response_class=HTMLResponse)
def admin_login_page(request: Request):
    if admin_authed(request):
        return RedirectResponse("/", status_code=302)
    inner = f"""
    <div class='card'>
      <h3>{html_escape(t('login.title'))}</h3>
      <form method='post' action='/admin/login'>
        <label class='field'><span>{html_escape(t('login.pin'))}</span><input name='pin' type='password' placeholder='****' required></label>
        <button type='submit' class='full'>{html_escape(t('login.submit'))}</button>
      </form>
    </div>
    """
    return render_page(request, t("login.title"), inner)


@app.post("/admin/login")
def admin_login(request: Request, pin: str = Form(...)):
    if not pin_matches(pin):
        desk.logger.log("admin_login_failed")
        body = f"<div class='card'><p style='color:#ff6b6b;'>{html_escape(t('login.incorrect'))}</p><p><a href='/admin/login'>↺</a></p></div>"
        return render_page(request, t("login.title"), body, status_code=401)
    request.session["admin_authed"] = True
    return RedirectResponse("/", status_code=302)


@app.post("/admin/logout")
def admin_logout(request: Request):
    request.session.clear()
    return RedirectResponse("/admin/login", status_code=302)


# ---------------------------------------------------------------------------
# Dashboard
# ---------------------------------------------------------------------------
@app.get("/", response_class=HTMLResponse)
def dashboard(
    request: Request,
    search: str = Query(""),
    child: str = Query(""),
):
    if (redirect := require_admin(request)) is not None:
        return redirect
    try:
        children = desk.children()
    except SQLAlchemyError as exc:
        desk.logger.log_error("list_children", exc)
        children = []
    selected = next((item for item in children if item.id == (child or "").strip()), None)
    inner = dashboard_html(children, search=search or "", selected=selected)
    return render_page(request, t("dashboard.title"), inner, head_extra=live_reload_script())


@app.post("/children/add")
def add_child(
    request: Request,
    name: str = Form(""),
    sessions_total: str = Form(str(DEFAULT_SESSIONS_TOTAL)),
):
    if (redirect := require_admin(request)) is not None:
        return redirect
    try:
        desk.add_child(name, sessions_total)
    except (KidSessionsError, SQLAlchemyError) as exc:
        report_failure(request, "add_child", exc)
    return RedirectResponse("/", status_code=302)


@app.post("/children/{child_id}/delete")
def delete_child(request: Request, child_id: str, return_to: str = Form("/")):
    if (redirect := require_admin(request)) is not None:
        return redirect
    try:
        desk.remove_child(child_id)
    except SQLAlchemyError as exc:
        report_failure(request, "remove_child", exc, child_id)
    return RedirectResponse(safe_redirect(return_to), status_code=302)


@app.post("/children/{child_id}/increment")
def increment_session(request: Request, child_id: str, return_to: str = Form("/")):
    if (redirect := require_admin(request)) is not None:
        return redirect
    try:
        desk.increment_session(desk.get_child(child_id))
    except (KidSessionsError, SQLAlchemyError) as exc:
        report_failure(request, "increment_session", exc, child_id)
    return RedirectResponse(safe_redirect(return_to), status_code=302)


@app.post("/children/{child_id}/decrement")
def decrement_session(request: Request, child_id: str, return_to: str = Form("/")):
    if (redirect := require_admin(request)) is not None:
        return redirect
    try:
        desk.decrement_session(desk.get_child(child_id))
    except (KidSessionsError, SQLAlchemyError) as exc:
        report_failure(request, "decrement_session", exc, child_id)
    return RedirectResponse(safe_redirect(return_to), status_code=302)


@app.post("/children/{child_id}/total")
def update_total(
    request: Request,
    child_id: str,
    sessions_total: str = Form(""),
    return_to: str = Form("/"),
):
    if (redirect := require_admin(request)) is not None:
        return redirect
    try:
        desk.set_sessions_total(desk.get_child(child_id), sessions_total)
    except (KidSessionsError, SQLAlchemyError) as exc:
        report_failure(request, "set_sessions_total", exc, child_id)
    return RedirectResponse(safe_redirect(return_to), status_code=302)


# ---------------------------------------------------------------------------
# Renewals
# ---------------------------------------------------------------------------
@app.get("/children/{child_id}/renew", response_class=HTMLResponse)
def renew_page(request: Request, child_id: str):
    if (redirect := require_admin(request)) is not None:
        return redirect
    try:
        child = desk.get_child(child_id)
    except (KidSessionsError, SQLAlchemyError) as exc:
        report_failure(request, "open_renewal", exc, child_id)
        return RedirectResponse("/", status_code=302)
    return render_page(request, t("renew.title"), renew_form_html(child))


@app.post("/children/{child_id}/renew")
def renew_child(request: Request, child_id: str, amount: str = Form("")):
    if (redirect := require_admin(request)) is not None:
        return redirect
    try:
        child = desk.get_child(child_id)
        desk.renew(child, amount)
    except InvalidRenewalAmountError:
        inner = renew_form_html(child, amount=amount, error=t("renew.invalid_amount"))
        return render_page(request, t("renew.title"), inner, status_code=400)
    except (KidSessionsError, SQLAlchemyError) as exc:
        report_failure(request, "renew", exc, child_id)
    return RedirectResponse("/", status_code=302)


@app.get("/children/{child_id}/renewals", response_class=HTMLResponse)
def renewal_history(request: Request, child_id: str):
    if (redirect := require_admin(request)) is not None:
        return redirect
    try:
        child = desk.get_child(child_id)
    except (KidSessionsError, SQLAlchemyError) as exc:
        report_failure(request, "open_renewal_history", exc, child_id)
        return RedirectResponse("/", status_code=302)
    try:
        entries = desk.renewal_history(child_id)
    except SQLAlchemyError as exc:
        desk.logger.log_error("renewal_history", exc, child=child_id)
        entries = []
    return render_page(request, t("log.title"), renewals_html(child, entries))


# ---------------------------------------------------------------------------
# Live data
# ---------------------------------------------------------------------------
def _snapshot_payload(children: List[ChildRecord]) -> List[dict]:
    return jsonable_encoder([child.to_document(include_id=True) for child in children])


def _read_failed(action: str, exc: Exception, child_id: Optional[str] = None) -> JSONResponse:
    desk.logger.log_error(action, exc, child=child_id)
    return JSONResponse({"detail": "The data could not be loaded."}, status_code=503)


@app.get("/api/children")
def api_children(request: Request, search: str = Query("")):
    if not admin_authed(request):
        return JSONResponse({"detail": "Not authenticated"}, status_code=401)
    try:
        children = desk.children(search)
    except SQLAlchemyError as exc:
        return _read_failed("api_children", exc)
    return JSONResponse({"children": _snapshot_payload(children)})


@app.get("/api/children/{child_id}/renewals")
def api_renewals(request: Request, child_id: str):
    if not admin_authed(request):
        return JSONResponse({"detail": "Not authenticated"}, status_code=401)
    try:
        entries = desk.renewal_history(child_id)
    except SQLAlchemyError as exc:
        return _read_failed("api_renewals", exc, child_id)
    return JSONResponse(
        {"renewals": jsonable_encoder([entry.to_document(include_id=True) for entry in entries])}
    )


async def snapshot_events(
    session_desk: SessionDesk,
    is_disconnected: Callable[[], Awaitable[bool]],
    *,
    keepalive: float = STREAM_KEEPALIVE_SECONDS,
) -> AsyncIterator[str]:
    """Yield server-sent events for every child list snapshot until disconnect."""

    loop = asyncio.get_running_loop()
    queue: asyncio.Queue[Any] = asyncio.Queue()

    def push(snapshot: List[ChildRecord]) -> None:
        loop.call_soon_threadsafe(queue.put_nowait, _snapshot_payload(snapshot))

    def failed(exc: Exception) -> None:
        session_desk.logger.log_error("children_stream", exc)

    # The first snapshot is a blocking query.
    subscription = await run_in_threadpool(session_desk.subscribe, push, failed)
    try:
        while not await is_disconnected():
            try:
                payload = await asyncio.wait_for(queue.get(), timeout=keepalive)
            except asyncio.TimeoutError:
                yield ": keepalive\n\n"
                continue
            yield f"data: {json.dumps(payload)}\n\n"
    finally:
        subscription.unsubscribe()


@app.get("/api/children/stream")
async def api_children_stream(request: Request):
    if not admin_authed(request):
        return JSONResponse({"detail": "Not authenticated"}, status_code=401)
    return StreamingResponse(
        snapshot_events(desk, request.is_disconnected),
        media_type="text/event-stream",
        headers={"Cache-Control": "no-cache"},
    )


@app.get("/admin/children.csv")
def admin_children_csv(request: Request):
    if (redirect := require_admin(request)) is not None:
        return redirect
    output = io.StringIO()
    writer = csv.writer(output)
    writer.writerow(
        ["id", "name", "sessions_used", "sessions_total", "remaining", "renewal_pending", "renewal_pending_amount", "created_at"]
    )
    for child in desk.children():
        writer.writerow(
            [
                child.id,
                child.name,
                child.sessions_used,
                child.sessions_total,
                child.remaining,
                int(child.renewal_pending),
                "" if child.renewal_pending_amount is None else child.renewal_pending_amount,
                child.created_at.isoformat() if child.created_at else "",
            ]
        )
    output.seek(0)
    return StreamingResponse(
        iter([output.getvalue()]),
        media_type="text/csv",
        headers={"Content-Disposition": "attachment; filename=children.csv"},
    )


__all__ = [
    "app",
    "desk",
    "configure_desk",
    "translator",
    "dashboard_url",
    "safe_redirect",
    "format_amount",
    "snapshot_events",
]
__all__.extend(name for name in _persistence.__all__ if name not in __all__)
