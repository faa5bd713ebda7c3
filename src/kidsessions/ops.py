"""Operational utilities for KidSessions."""

from __future__ import annotations

import json
import sys
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional, TextIO


class StructuredLogger:
    """Write JSON lines log entries for admin inspection.

    Entries are kept in memory for :meth:`tail`, appended to ``path`` when one
    is configured, and errors are echoed to ``console`` (stderr by default).
    """

    def __init__(
        self,
        *,
        path: Path | None = None,
        console: Optional[TextIO] = None,
        max_entries: int = 500,
    ) -> None:
        self.path = path
        self.console = console
        self.max_entries = max_entries
        self._entries: list[dict] = []

    def log(self, event_type: str, **fields: object) -> dict:
        entry = {"timestamp": datetime.now(timezone.utc).isoformat(), "event": event_type, **fields}
        self._entries.append(entry)
        if len(self._entries) > self.max_entries:
            del self._entries[: len(self._entries) - self.max_entries]
        if self.path:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            with self.path.open("a", encoding="utf-8") as handle:
                handle.write(json.dumps(entry, default=str) + "\n")
        return entry

    def log_error(self, action: str, exc: BaseException, **fields: object) -> dict:
        entry = self.log(
            "error",
            action=action,
            error=type(exc).__name__,
            message=str(exc),
            **fields,
        )
        stream = self.console or sys.stderr
        stream.write(json.dumps(entry, default=str) + "\n")
        return entry

    def tail(self, limit: int = 50, *, event: str | None = None) -> tuple[dict, ...]:
        entries = self._entries
        if event is not None:
            entries = [entry for entry in entries if entry["event"] == event]
        return tuple(entries[-limit:])


__all__ = ["StructuredLogger"]
