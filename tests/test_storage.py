from __future__ import annotations

from pathlib import Path

import pytest

from conftest import FIXED_NOW
from dream_roadmap_agents.models import DiscoverySession, Goal, ProgressCounters
from dream_roadmap_agents.roadmap import fallback_roadmap
from dream_roadmap_agents.storage import InMemoryRepository, JsonDirectoryRepository


def test_json_directory_round_trips_entities(tmp_path: Path) -> None:
    repository = JsonDirectoryRepository(tmp_path / "data")
    goal = Goal(statement="Sail around Greece", domain_tag="travel", created_at=FIXED_NOW)
    roadmap = fallback_roadmap(goal, "You want open horizons.")
    counters = ProgressCounters(goal_id=goal.id, total_actions=12, last_activity_at=FIXED_NOW)

    repository.save_goal(goal)
    repository.save_roadmap(roadmap)
    repository.save_counters(counters)

    assert repository.get_goal(goal.id).model_dump() == goal.model_dump()
    assert repository.get_roadmap(roadmap.id).model_dump() == roadmap.model_dump()
    assert repository.get_counters(goal.id).model_dump() == counters.model_dump()
    assert (tmp_path / "data" / "roadmaps" / f"{roadmap.id}.json").exists()
    assert not list((tmp_path / "data").rglob("*.tmp"))


def test_json_directory_lists_sessions_by_goal(tmp_path: Path) -> None:
    repository = JsonDirectoryRepository(tmp_path)
    assert repository.list_sessions("g1") == []
    repository.save_session(DiscoverySession(goal_id="g1"))
    repository.save_session(DiscoverySession(goal_id="g2"))
    assert [s.goal_id for s in repository.list_sessions("g1")] == ["g1"]


@pytest.mark.parametrize("factory", [InMemoryRepository, None])
def test_unknown_ids_raise_key_error(tmp_path: Path, factory) -> None:
    repository = factory() if factory else JsonDirectoryRepository(tmp_path)
    with pytest.raises(KeyError):
        repository.get_goal("missing")
    with pytest.raises(KeyError):
        repository.get_roadmap("missing")


def test_in_memory_returns_copies() -> None:
    repository = InMemoryRepository()
    goal = Goal(statement="Learn the cello")
    repository.save_goal(goal)
    loaded = repository.get_goal(goal.id)
    loaded.statement = "changed"
    assert repository.get_goal(goal.id).statement == "Learn the cello"
