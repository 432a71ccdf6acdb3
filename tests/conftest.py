from __future__ import annotations

import asyncio
import json
from datetime import datetime, timezone

import pytest

from dream_roadmap_agents.models import Goal
from dream_roadmap_agents.observability import EventRecorder
from dream_roadmap_agents.storage import InMemoryRepository

FIXED_NOW = datetime(2026, 3, 1, 9, 30, tzinfo=timezone.utc)


class ScriptedGenerator:
    """Returns queued responses in order; exceptions in the queue are raised.

    Once the queue is empty every further call returns ``None``.
    """

    def __init__(self, *responses: object):
        self.responses = list(responses)
        self.prompts: list[str] = []

    async def generate(self, prompt: str) -> str | None:
        self.prompts.append(prompt)
        if not self.responses:
            return None
        response = self.responses.pop(0)
        if isinstance(response, Exception):
            raise response
        return response


class GatedGenerator:
    """Holds every call open until ``release`` is set."""

    def __init__(self, response: str | None = None):
        self.response = response
        self.started = asyncio.Event()
        self.release = asyncio.Event()

    async def generate(self, prompt: str) -> str | None:
        self.started.set()
        await self.release.wait()
        return self.response


def roadmap_json(phase_count: int = 3, leaves_per_phase: int = 4, minutes: int = 5) -> str:
    phases = [
        {
            "title": f"Phase {p + 1}: Step {p + 1}",
            "description": "Move forward.",
            "why_it_matters": "It connects to your why.",
            "order_index": p,
            "sub_steps": [
                {
                    "title": f"Action {p + 1}.{leaf + 1}",
                    "description": "Do the thing.",
                    "duration_minutes": minutes,
                    "category": "action",
                    "order_index": leaf,
                }
                for leaf in range(leaves_per_phase)
            ],
        }
        for p in range(phase_count)
    ]
    return json.dumps({"roadmap_title": "Clay and Courage", "phases": phases})


@pytest.fixture
def goal() -> Goal:
    return Goal(statement="Launch a pottery side-business", domain_tag="creativity")


@pytest.fixture
def repository() -> InMemoryRepository:
    return InMemoryRepository()


@pytest.fixture
def recorder() -> EventRecorder:
    return EventRecorder()
