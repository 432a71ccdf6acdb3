from __future__ import annotations

from pathlib import Path
from typing import Protocol, TypeVar

from pydantic import BaseModel

from .models import DiscoverySession, Goal, ProgressCounters, Roadmap

TModel = TypeVar("TModel", bound=BaseModel)


class Repository(Protocol):
    def get_goal(self, goal_id: str) -> Goal: ...

    def save_goal(self, goal: Goal) -> None: ...

    def get_session(self, session_id: str) -> DiscoverySession: ...

    def save_session(self, session: DiscoverySession) -> None: ...

    def list_sessions(self, goal_id: str) -> list[DiscoverySession]: ...

    def get_roadmap(self, roadmap_id: str) -> Roadmap: ...

    def save_roadmap(self, roadmap: Roadmap) -> None: ...

    def get_counters(self, goal_id: str) -> ProgressCounters: ...

    def save_counters(self, counters: ProgressCounters) -> None: ...


class InMemoryRepository:
    """Whole-entity store kept in dictionaries; entities are copied on the way in and out."""

    def __init__(self) -> None:
        self._goals: dict[str, Goal] = {}
        self._sessions: dict[str, DiscoverySession] = {}
        self._roadmaps: dict[str, Roadmap] = {}
        self._counters: dict[str, ProgressCounters] = {}

    @staticmethod
    def _get(store: dict[str, TModel], key: str, kind: str) -> TModel:
        if key not in store:
            raise KeyError(f"Unknown {kind}: {key}")
        return store[key].model_copy(deep=True)

    def get_goal(self, goal_id: str) -> Goal:
        return self._get(self._goals, goal_id, "goal")

    def save_goal(self, goal: Goal) -> None:
        self._goals[goal.id] = goal.model_copy(deep=True)

    def get_session(self, session_id: str) -> DiscoverySession:
        return self._get(self._sessions, session_id, "discovery session")

    def save_session(self, session: DiscoverySession) -> None:
        self._sessions[session.id] = session.model_copy(deep=True)

    def list_sessions(self, goal_id: str) -> list[DiscoverySession]:
        return [
            s.model_copy(deep=True) for s in self._sessions.values() if s.goal_id == goal_id
        ]

    def get_roadmap(self, roadmap_id: str) -> Roadmap:
        return self._get(self._roadmaps, roadmap_id, "roadmap")

    def save_roadmap(self, roadmap: Roadmap) -> None:
        self._roadmaps[roadmap.id] = roadmap.model_copy(deep=True)

    def get_counters(self, goal_id: str) -> ProgressCounters:
        return self._get(self._counters, goal_id, "progress counters")

    def save_counters(self, counters: ProgressCounters) -> None:
        self._counters[counters.goal_id] = counters.model_copy(deep=True)


class JsonDirectoryRepository:
    """One JSON document per entity under ``<root>/<kind>/<id>.json``."""

    def __init__(self, root: Path):
        self.root = root.resolve()

    def _path(self, kind: str, key: str) -> Path:
        return self.root / kind / f"{key}.json"

    def _read(self, kind: str, key: str, model_cls: type[TModel]) -> TModel:
        path = self._path(kind, key)
        if not path.exists():
            raise KeyError(f"Unknown {kind[:-1]}: {key}")
        return model_cls.model_validate_json(path.read_text(encoding="utf-8"))

    def _write(self, kind: str, key: str, model: BaseModel) -> None:
        path = self._path(kind, key)
        path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = path.with_suffix(".json.tmp")
        tmp_path.write_text(model.model_dump_json(indent=2) + "\n", encoding="utf-8")
        tmp_path.replace(path)

    def get_goal(self, goal_id: str) -> Goal:
        return self._read("goals", goal_id, Goal)

    def save_goal(self, goal: Goal) -> None:
        self._write("goals", goal.id, goal)

    def get_session(self, session_id: str) -> DiscoverySession:
        return self._read("sessions", session_id, DiscoverySession)

    def save_session(self, session: DiscoverySession) -> None:
        self._write("sessions", session.id, session)

    def list_sessions(self, goal_id: str) -> list[DiscoverySession]:
        sessions_dir = self.root / "sessions"
        if not sessions_dir.exists():
            return []
        sessions = [
            DiscoverySession.model_validate_json(path.read_text(encoding="utf-8"))
            for path in sorted(sessions_dir.glob("*.json"))
        ]
        return [s for s in sessions if s.goal_id == goal_id]

    def get_roadmap(self, roadmap_id: str) -> Roadmap:
        return self._read("roadmaps", roadmap_id, Roadmap)

    def save_roadmap(self, roadmap: Roadmap) -> None:
        self._write("roadmaps", roadmap.id, roadmap)

    def get_counters(self, goal_id: str) -> ProgressCounters:
        return self._read("counters", goal_id, ProgressCounters)

    def save_counters(self, counters: ProgressCounters) -> None:
        self._write("counters", counters.goal_id, counters)
