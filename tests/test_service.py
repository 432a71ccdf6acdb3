from __future__ import annotations

import asyncio

import pytest

from conftest import FIXED_NOW, GatedGenerator, ScriptedGenerator, roadmap_json
from dream_roadmap_agents.errors import (
    OperationInFlightError,
    StaleResultError,
    StateError,
)
from dream_roadmap_agents.models import (
    DiscoveryCompletion,
    InputType,
    Milestone,
    SessionStatus,
)
from dream_roadmap_agents.roadmap import fallback_roadmap
from dream_roadmap_agents.service import DreamPathService
from dream_roadmap_agents.storage import InMemoryRepository
from dream_roadmap_agents.tree import check_order_indexes, find_node, iter_leaves

ANSWERS = (
    "I want to make mugs people use every day.",
    "Proud, and finally calm.",
    "Someone who builds with their hands.",
    "Craft and independence.",
    "Freedom to choose how I spend my days.",
)


def _service(repository, generator, **kwargs) -> DreamPathService:
    return DreamPathService(repository, generator, clock=lambda: FIXED_NOW, **kwargs)


def _seed_roadmap(service: DreamPathService):
    goal = service.create_goal("Launch a pottery side-business", "creativity")
    roadmap = fallback_roadmap(goal, "You want to make things that last.")
    service.repository.save_roadmap(roadmap)
    return goal, roadmap


def test_pottery_walkthrough_with_generated_content(repository) -> None:
    generator = ScriptedGenerator(
        "What draws you to pottery?",
        "That matters.\nHow would it feel?",
        "Who would you become?",
        "What does that reveal?",
        "What is this really about?",
        "You want the freedom to build a life with your own hands.",
        roadmap_json(),
    )
    service = _service(repository, generator)

    async def scenario():
        goal = service.create_goal("Launch a pottery side-business", "creativity")
        question = await service.start_discovery(goal)
        result = question
        for answer in ANSWERS:
            result = await service.submit_discovery_response(question.session_id, answer)
        assert isinstance(result, DiscoveryCompletion)
        roadmap = await service.synthesize_roadmap(goal, result.root_motivation, 0)
        return goal, result, roadmap

    goal, completion, roadmap = asyncio.run(scenario())

    assert completion.root_motivation.endswith(".")
    assert len(roadmap.phases) == 3
    assert all(len(phase.children) >= 4 for phase in roadmap.phases)
    assert all(2 <= leaf.duration_minutes <= 15 for leaf in iter_leaves(roadmap))
    assert repository.get_roadmap(roadmap.id).title == roadmap.title
    assert repository.get_counters(goal.id).total_actions == 12


def test_pottery_walkthrough_without_generator_stays_valid(repository) -> None:
    service = _service(repository, ScriptedGenerator())

    async def scenario():
        goal = service.create_goal("Launch a pottery side-business")
        question = await service.start_discovery(goal)
        result = question
        for answer in ANSWERS:
            result = await service.submit_discovery_response(question.session_id, answer)
        return await service.synthesize_roadmap(goal, result.root_motivation, 0)

    roadmap = asyncio.run(scenario())

    assert roadmap.used_fallback
    assert len(roadmap.phases) == 3
    assert check_order_indexes(roadmap)
    assert service.recorder.of_type("generation_fallback")


def test_create_goal_rejects_blank_statement(repository) -> None:
    with pytest.raises(ValueError):
        _service(repository, ScriptedGenerator()).create_goal("   ")


def test_complete_leaf_updates_counters_and_milestones(repository) -> None:
    service = _service(repository, ScriptedGenerator())
    goal, roadmap = _seed_roadmap(service)
    leaves = roadmap.phases[0].children

    first = service.complete_leaf(roadmap.id, leaves[0].id)
    assert first.milestone == Milestone.FIRST_WIN
    assert first.celebration_message == "You did it! Your first bold move!"
    assert first.counters.completed_actions == 1
    assert first.counters.last_activity_at == FIXED_NOW

    for leaf in leaves[1:3]:
        service.complete_leaf(roadmap.id, leaf.id)
    last = service.complete_leaf(roadmap.id, leaves[3].id)
    assert last.cascaded
    assert last.counters.current_streak == 4
    assert repository.get_counters(goal.id).completed_actions == 4

    updated = service.complete_phase(roadmap.id, roadmap.phases[0].id)
    assert updated.phases[0].is_completed
    with pytest.raises(StateError):
        service.uncomplete_leaf(roadmap.id, leaves[0].id)


def test_complete_phase_with_pending_leaf_is_rejected(repository) -> None:
    service = _service(repository, ScriptedGenerator())
    _, roadmap = _seed_roadmap(service)
    with pytest.raises(StateError):
        service.complete_phase(roadmap.id, roadmap.phases[0].id)


def test_decompose_node_inserts_steps_and_syncs_totals(repository) -> None:
    service = _service(
        repository,
        ScriptedGenerator('[{"title": "Open the app"}, {"title": "Pick one image"}]'),
    )
    goal, roadmap = _seed_roadmap(service)
    target = roadmap.phases[1].children[0]

    updated = asyncio.run(service.decompose_node(roadmap.id, target.id))

    children = updated.phases[1].children
    assert [child.title for child in children[:2]] == ["Open the app", "Pick one image"]
    assert [child.order_index for child in children] == [0, 1, 2, 3, 4]
    assert find_node(updated, target.id) is None
    assert repository.get_counters(goal.id).total_actions == 13
    assert service.recorder.of_type("node_decomposed")[0]["replacement_count"] == 2


def test_refine_node_replaces_in_place(repository) -> None:
    service = _service(repository, ScriptedGenerator('{"title": "Call a local studio"}'))
    _, roadmap = _seed_roadmap(service)
    target = roadmap.phases[2].children[1]

    updated = asyncio.run(service.refine_node(roadmap.id, target.id, "Too abstract"))

    replacement = updated.phases[2].children[1]
    assert replacement.title == "Call a local studio"
    assert replacement.order_index == 1
    assert replacement.id != target.id
    assert len(updated.phases[2].children) == 4


def test_refine_unknown_node_is_state_error(repository) -> None:
    service = _service(repository, ScriptedGenerator())
    _, roadmap = _seed_roadmap(service)
    with pytest.raises(StateError):
        asyncio.run(service.refine_node(roadmap.id, "missing"))


def test_second_generation_on_same_node_is_rejected(repository) -> None:
    async def scenario():
        generator = GatedGenerator('{"title": "Gentler step"}')
        service = _service(repository, generator)
        _, roadmap = _seed_roadmap(service)
        leaf = roadmap.phases[0].children[0]

        task = asyncio.create_task(service.refine_node(roadmap.id, leaf.id))
        await generator.started.wait()
        assert service.is_in_flight(f"node:{leaf.id}")
        with pytest.raises(OperationInFlightError):
            await service.decompose_node(roadmap.id, leaf.id)
        generator.release.set()
        updated = await task
        assert not service.is_in_flight(f"node:{leaf.id}")
        return updated

    updated = asyncio.run(scenario())
    assert updated.phases[0].children[0].title == "Gentler step"


def test_result_for_changed_node_is_discarded(repository) -> None:
    async def scenario():
        generator = GatedGenerator('{"title": "Gentler step"}')
        service = _service(repository, generator)
        _, roadmap = _seed_roadmap(service)
        leaf = roadmap.phases[0].children[0]

        task = asyncio.create_task(service.refine_node(roadmap.id, leaf.id))
        await generator.started.wait()
        service.complete_leaf(roadmap.id, leaf.id)
        generator.release.set()
        with pytest.raises(StaleResultError):
            await task
        return repository.get_roadmap(roadmap.id), leaf.id

    stored, leaf_id = asyncio.run(scenario())
    leaf = find_node(stored, leaf_id)
    assert leaf is not None and leaf.is_completed


def test_refine_survives_sibling_decompose_shifting_its_slot(repository) -> None:
    async def scenario():
        gated = GatedGenerator('{"title": "Gentler step"}')
        service = _service(repository, gated)
        _, roadmap = _seed_roadmap(service)
        first, third = roadmap.phases[0].children[0], roadmap.phases[0].children[2]

        task = asyncio.create_task(service.refine_node(roadmap.id, third.id))
        await gated.started.wait()
        service.synthesizer.generator = ScriptedGenerator(
            '[{"title": "Half one"}, {"title": "Half two"}]'
        )
        await service.decompose_node(roadmap.id, first.id)
        gated.release.set()
        return await task, third.id

    updated, third_id = asyncio.run(scenario())

    children = updated.phases[0].children
    assert [child.title for child in children[:2]] == ["Half one", "Half two"]
    assert children[3].title == "Gentler step"
    assert children[3].order_index == 3
    assert find_node(updated, third_id) is None
    assert check_order_indexes(updated)


def test_result_for_changed_session_is_discarded(repository) -> None:
    async def scenario():
        generator = GatedGenerator("How would that feel?")
        service = _service(repository, ScriptedGenerator())
        goal = service.create_goal("Launch a pottery side-business")
        question = await service.start_discovery(goal)
        service.discovery.generator = generator

        task = asyncio.create_task(
            service.submit_discovery_response(question.session_id, ANSWERS[0])
        )
        await generator.started.wait()
        with pytest.raises(OperationInFlightError):
            service.abandon_discovery(question.session_id)
        stored = repository.get_session(question.session_id)
        repository.save_session(stored.model_copy(update={"status": SessionStatus.ABANDONED}))
        generator.release.set()
        with pytest.raises(StaleResultError):
            await task
        return repository.get_session(question.session_id)

    session = asyncio.run(scenario())
    assert session.status == SessionStatus.ABANDONED
    assert session.turns == []


def test_chat_reply_uses_generator_then_fallback(repository) -> None:
    service = _service(repository, ScriptedGenerator("Hello! What's on your mind?"))

    reply = asyncio.run(service.chat_reply("hi", []))
    assert reply == "Hello! What's on your mind?"

    fallback = asyncio.run(service.chat_reply("I'm scared I will fail", [("user", "hi")]))
    assert fallback.startswith("I hear you")
    events = service.recorder.of_type("chat_replied")
    assert [event["input_type"] for event in events] == ["greeting", "fear"]


def test_classify_input_and_coach_tip(repository) -> None:
    service = _service(repository, ScriptedGenerator("Breathe, then begin."))
    _, roadmap = _seed_roadmap(service)
    assert service.classify_input("thank you!", 3).type == InputType.GRATITUDE
    tip = asyncio.run(service.coach_tip(roadmap.id, roadmap.phases[0].children[0].id))
    assert tip == "Breathe, then begin."


def test_permission_statement_after_discovery(repository) -> None:
    service = _service(repository, ScriptedGenerator())

    async def scenario() -> str:
        goal = service.create_goal("Open a tiny bakery")
        question = await service.start_discovery(goal)
        result = question
        for answer in ANSWERS:
            result = await service.submit_discovery_response(question.session_id, answer)
        return await service.permission_statement(result.session_id)

    assert asyncio.run(scenario()).startswith("You have permission to")


def test_in_memory_repository_is_default_friendly() -> None:
    service = _service(InMemoryRepository(), ScriptedGenerator())
    goal = service.create_goal("Run a marathon", "health")
    assert service.retag_goal(goal.id, "career").domain_tag == "career"
