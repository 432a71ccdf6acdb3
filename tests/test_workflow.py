from __future__ import annotations

import asyncio

import pytest

from dream_roadmap_agents.config import EngineSettings
from dream_roadmap_agents.models import SessionStatus
from dream_roadmap_agents.roadmap import fallback_roadmap
from dream_roadmap_agents.workflow import DreamRoadmapWorkflow, render_roadmap_markdown


@pytest.fixture
def workflow(tmp_path) -> DreamRoadmapWorkflow:
    settings = EngineSettings(
        total_token_budget=1000,
        data_dir=tmp_path / "data",
        output_dir=tmp_path / "outputs",
        techniques_config_path=tmp_path / "missing.yaml",
        disable_tracing=True,
    )
    return DreamRoadmapWorkflow(settings)


def test_budget_stop_is_reported_once_tokens_run_out(workflow) -> None:
    assert not workflow._budget_stopped()
    workflow.ledger.add({"total_tokens": 1000})
    assert workflow._budget_stopped()
    [event] = workflow.recorder.of_type("budget_stop")
    assert event["total_tokens_used"] == 1000


def test_discovery_is_abandoned_when_budget_runs_out(workflow, monkeypatch) -> None:
    workflow.ledger.add({"total_tokens": 1000})
    monkeypatch.setattr("builtins.input", lambda _prompt="": "I want more time outdoors.")
    goal = workflow.service.create_goal("Hike the Pacific Crest Trail", "travel")

    assert asyncio.run(workflow._discover(goal)) is None

    [session] = workflow.service.repository.list_sessions(goal.id)
    assert session.status == SessionStatus.ABANDONED
    assert workflow.recorder.of_type("generation_fallback")


def test_markdown_lists_phases_and_actions(goal) -> None:
    roadmap = fallback_roadmap(goal, "You want to make things that last.")
    markdown = render_roadmap_markdown(roadmap)
    assert markdown.startswith(f"# {roadmap.title}")
    assert "You want to make things that last." in markdown
    assert "Progress: 0%" in markdown
    assert markdown.count("## [ ] Phase") == 3
    first_leaf = roadmap.phases[0].children[0]
    assert f"- [ ] {first_leaf.title} ({first_leaf.duration_minutes} min" in markdown
