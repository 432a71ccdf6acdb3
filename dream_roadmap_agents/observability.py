from __future__ import annotations

import json
import uuid
from datetime import datetime, timezone
from pathlib import Path
from typing import Any


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def _json_default(value: Any) -> str:
    if isinstance(value, datetime):
        return value.isoformat()
    return str(value)


def _append_jsonl(path: Path, payload: dict[str, Any]) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    with path.open("a", encoding="utf-8") as f:
        f.write(json.dumps(payload, ensure_ascii=False, default=_json_default) + "\n")


def new_run_id() -> str:
    return f"{datetime.now(timezone.utc).strftime('%Y%m%dT%H%M%SZ')}-{uuid.uuid4().hex[:8]}"


class EventRecorder:
    """Appends run events as JSON lines.

    With no ``events_path`` the recorder only keeps events in memory, which is
    what the engine components get by default and what tests inspect.
    """

    def __init__(self, events_path: Path | None = None, run_id: str | None = None):
        self.events_path = events_path
        self.run_id = run_id or new_run_id()
        self.events: list[dict[str, Any]] = []

    def record(self, event_type: str, payload: dict[str, Any] | None = None) -> None:
        event = {
            "timestamp": _now_iso(),
            "run_id": self.run_id,
            "event_type": event_type,
            **(payload or {}),
        }
        self.events.append(event)
        if self.events_path is not None:
            _append_jsonl(self.events_path, event)

    def of_type(self, event_type: str) -> list[dict[str, Any]]:
        return [event for event in self.events if event["event_type"] == event_type]
