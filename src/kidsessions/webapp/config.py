"""Configuration constants for the KidSessions web frontend."""
from __future__ import annotations

import os
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv

from ..models import DEFAULT_SESSIONS_TOTAL, ListOrder, RenewalMode

load_dotenv()


def _env_flag(name: str, default: bool = False) -> bool:
    raw = os.environ.get(name)
    if raw is None:
        return default
    return raw.strip().lower() in {"1", "true", "yes", "on"}


def _env_choice(name: str, enum_cls, default):
    raw = (os.environ.get(name) or "").strip().lower()
    try:
        return enum_cls(raw) if raw else default
    except ValueError:
        return default


ADMIN_PIN = os.environ.get("ADMIN_PIN", "1234")
SESSION_SECRET = os.environ.get("SESSION_SECRET", "change-this-session-secret")
SQLITE_FILE_NAME = os.environ.get("KIDSESSIONS_SQLITE", "kidsessions.db")
RENEWAL_MODE: RenewalMode = _env_choice("KIDSESSIONS_RENEWAL_MODE", RenewalMode, RenewalMode.DEFERRED)
LIST_ORDER: ListOrder = _env_choice("KIDSESSIONS_LIST_ORDER", ListOrder, ListOrder.NAME)
ALLOW_TOTAL_EDIT = _env_flag("KIDSESSIONS_ALLOW_TOTAL_EDIT")
UI_LOCALE = (os.environ.get("KIDSESSIONS_LOCALE") or "en").strip().lower()
_LOG_FILE = (os.environ.get("KIDSESSIONS_LOG_FILE") or "").strip()
LOG_FILE: Optional[Path] = Path(_LOG_FILE) if _LOG_FILE else None
STREAM_KEEPALIVE_SECONDS = 15.0

__all__ = [
    "ADMIN_PIN",
    "SESSION_SECRET",
    "SQLITE_FILE_NAME",
    "RENEWAL_MODE",
    "LIST_ORDER",
    "ALLOW_TOTAL_EDIT",
    "UI_LOCALE",
    "LOG_FILE",
    "STREAM_KEEPALIVE_SECONDS",
    "DEFAULT_SESSIONS_TOTAL",
]
