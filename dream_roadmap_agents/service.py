from __future__ import annotations

from contextlib import contextmanager
from datetime import datetime
from typing import Callable, Iterator

from .classifier import classify, fallback_reply
from .discovery import DiscoveryEngine
from .errors import OperationInFlightError, ParseFailure, StaleResultError, StateError
from .generation import TextGenerator, attempt
from .models import (
    CompletionOutcome,
    DiscoveryCompletion,
    DiscoveryQuestion,
    DiscoverySession,
    Goal,
    InputClassification,
    ProgressCounters,
    Roadmap,
    RoadmapNode,
    utc_now,
)
from .observability import EventRecorder
from .progress import (
    celebration_message,
    classify_milestone,
    complete_leaf,
    complete_phase,
    record_global_completion,
    sync_total_actions,
    uncomplete_leaf,
)
from .roadmap import RoadmapSynthesizer
from .storage import Repository
from .techniques import DEFAULT_DOMAIN_TECHNIQUES, DomainTechnique
from .tree import find_node, replace_node


class DreamPathService:
    """Entry point for callers: wires the engine components to a repository.

    At most one generation may be outstanding per discovery session and per
    roadmap node. A result that resolves after its target changed is rejected
    with :class:`StaleResultError` instead of being written.
    """

    def __init__(
        self,
        repository: Repository,
        generator: TextGenerator,
        *,
        roadmap_generator: TextGenerator | None = None,
        techniques: tuple[DomainTechnique, ...] = DEFAULT_DOMAIN_TECHNIQUES,
        user_name: str = "",
        recorder: EventRecorder | None = None,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.repository = repository
        self.recorder = recorder or EventRecorder()
        self.clock = clock
        self.discovery = DiscoveryEngine(
            generator,
            repository,
            techniques=techniques,
            user_name=user_name,
            recorder=self.recorder,
            clock=clock,
        )
        self.synthesizer = RoadmapSynthesizer(
            roadmap_generator or generator, recorder=self.recorder
        )
        self._in_flight: set[str] = set()

    @contextmanager
    def _exclusive(self, key: str) -> Iterator[None]:
        if key in self._in_flight:
            raise OperationInFlightError(f"A generation for {key} is already in flight.")
        self._in_flight.add(key)
        try:
            yield
        finally:
            self._in_flight.discard(key)

    def is_in_flight(self, key: str) -> bool:
        return key in self._in_flight

    def _counters_for(self, goal_id: str) -> ProgressCounters:
        try:
            return self.repository.get_counters(goal_id)
        except KeyError:
            return ProgressCounters(goal_id=goal_id)

    def _node_or_raise(self, roadmap: Roadmap, node_id: str) -> RoadmapNode:
        node = find_node(roadmap, node_id)
        if node is None:
            raise StateError(f"Node {node_id} is not part of roadmap {roadmap.id}.")
        return node

    def _reload_unchanged(self, roadmap_id: str, snapshot: RoadmapNode) -> Roadmap:
        current = self.repository.get_roadmap(roadmap_id)
        node = find_node(current, snapshot.id)
        # A sibling replacement may shift order_index; replace_node re-reads the slot.
        if node is None or node.model_dump(exclude={"order_index"}) != snapshot.model_dump(
            exclude={"order_index"}
        ):
            raise StaleResultError(
                f"Node {snapshot.id} changed while its replacement was being generated."
            )
        return current

    def create_goal(self, statement: str, domain_tag: str | None = None) -> Goal:
        if not statement or not statement.strip():
            raise ValueError("Goal statement must not be blank.")
        goal = Goal(statement=statement.strip(), domain_tag=domain_tag, created_at=self.clock())
        self.repository.save_goal(goal)
        self.repository.save_counters(ProgressCounters(goal_id=goal.id))
        self.recorder.record("goal_created", {"goal_id": goal.id, "domain_tag": domain_tag})
        return goal

    def retag_goal(self, goal_id: str, domain_tag: str | None) -> Goal:
        goal = self.repository.get_goal(goal_id).model_copy(update={"domain_tag": domain_tag})
        self.repository.save_goal(goal)
        return goal

    async def start_discovery(self, goal: Goal) -> DiscoveryQuestion:
        with self._exclusive(f"goal:{goal.id}"):
            return await self.discovery.start(goal)

    async def submit_discovery_response(
        self, session_id: str, text: str
    ) -> DiscoveryQuestion | DiscoveryCompletion:
        with self._exclusive(f"session:{session_id}"):
            return await self.discovery.submit_response(session_id, text)

    def abandon_discovery(self, session_id: str) -> DiscoverySession:
        if self.is_in_flight(f"session:{session_id}"):
            raise OperationInFlightError(
                f"Discovery session {session_id} has a question being generated."
            )
        return self.discovery.abandon(session_id)

    async def permission_statement(self, session_id: str) -> str:
        with self._exclusive(f"session:{session_id}"):
            return await self.discovery.permission_statement(session_id)

    async def synthesize_roadmap(
        self, goal: Goal, root_motivation: str | None, completed_count: int
    ) -> Roadmap:
        with self._exclusive(f"roadmap:{goal.id}"):
            roadmap = await self.synthesizer.synthesize(goal, root_motivation, completed_count)
        self.repository.save_roadmap(roadmap)
        self.repository.save_counters(sync_total_actions(self._counters_for(goal.id), roadmap))
        return roadmap

    async def refine_node(
        self, roadmap_id: str, node_id: str, feedback: str | None = None
    ) -> Roadmap:
        with self._exclusive(f"node:{node_id}"):
            roadmap = self.repository.get_roadmap(roadmap_id)
            node = self._node_or_raise(roadmap, node_id)
            goal = self.repository.get_goal(roadmap.goal_id)
            replacement = await self.synthesizer.refine(
                node, goal, roadmap.root_motivation, feedback
            )
            current = self._reload_unchanged(roadmap_id, node)
            updated = replace_node(current, node_id, [replacement])
            self.repository.save_roadmap(updated)
        self.recorder.record(
            "node_refined",
            {"roadmap_id": roadmap_id, "node_id": node_id, "replacement_id": replacement.id},
        )
        return updated

    async def decompose_node(self, roadmap_id: str, node_id: str) -> Roadmap:
        with self._exclusive(f"node:{node_id}"):
            roadmap = self.repository.get_roadmap(roadmap_id)
            node = self._node_or_raise(roadmap, node_id)
            goal = self.repository.get_goal(roadmap.goal_id)
            replacements = await self.synthesizer.decompose(node, goal, roadmap.root_motivation)
            current = self._reload_unchanged(roadmap_id, node)
            updated = replace_node(current, node_id, replacements)
            self.repository.save_roadmap(updated)
        self.repository.save_counters(
            sync_total_actions(self._counters_for(updated.goal_id), updated)
        )
        self.recorder.record(
            "node_decomposed",
            {"roadmap_id": roadmap_id, "node_id": node_id, "replacement_count": len(replacements)},
        )
        return updated

    def complete_leaf(self, roadmap_id: str, node_id: str) -> CompletionOutcome:
        now = self.clock()
        result = complete_leaf(self.repository.get_roadmap(roadmap_id), node_id, now)
        counters = record_global_completion(self._counters_for(result.roadmap.goal_id), now)
        self.repository.save_roadmap(result.roadmap)
        self.repository.save_counters(counters)

        milestone = classify_milestone(counters.completed_actions)
        self.recorder.record(
            "leaf_completed",
            {
                "roadmap_id": roadmap_id,
                "node_id": node_id,
                "cascaded": result.cascaded,
                "milestone": milestone.value,
                "completed_actions": counters.completed_actions,
            },
        )
        return CompletionOutcome(
            roadmap=result.roadmap,
            counters=counters,
            cascaded=result.cascaded,
            milestone=milestone,
            celebration_message=celebration_message(milestone, counters.completed_actions),
        )

    def complete_phase(self, roadmap_id: str, node_id: str) -> Roadmap:
        roadmap = complete_phase(self.repository.get_roadmap(roadmap_id), node_id, self.clock())
        self.repository.save_roadmap(roadmap)
        self.recorder.record(
            "phase_completed",
            {"roadmap_id": roadmap_id, "node_id": node_id, "roadmap_status": roadmap.status.value},
        )
        return roadmap

    def uncomplete_leaf(self, roadmap_id: str, node_id: str) -> Roadmap:
        roadmap = uncomplete_leaf(self.repository.get_roadmap(roadmap_id), node_id)
        self.repository.save_roadmap(roadmap)
        self.recorder.record("leaf_uncompleted", {"roadmap_id": roadmap_id, "node_id": node_id})
        return roadmap

    async def coach_tip(self, roadmap_id: str, node_id: str) -> str:
        roadmap = self.repository.get_roadmap(roadmap_id)
        return await self.synthesizer.coach_tip(self._node_or_raise(roadmap, node_id))

    def classify_input(self, message: str, prior_turn_count: int) -> InputClassification:
        return classify(message, prior_turn_count)

    async def chat_reply(self, message: str, history: list[tuple[str, str]]) -> str:
        """Answer one open-ended chat message, shaped by its detected input type.

        ``history`` holds prior ``(role, content)`` pairs, oldest first.
        """
        classification = classify(message, len(history))
        transcript = "\n".join(f"{role}: {content}" for role, content in history[-10:])
        prompt = (
            f"{classification.instruction}\n\n"
            f"Conversation so far:\n{transcript or '(none)'}\n\n"
            f"user: {message.strip()}\n\n"
            "Reply as the coach in plain prose."
        )

        def interpret(raw: str) -> str | ParseFailure:
            text = raw.strip()
            return text if text else ParseFailure("empty reply")

        result = await attempt(
            self.discovery.generator,
            prompt,
            interpret,
            lambda: fallback_reply(classification.type),
            operation="chat_reply",
            recorder=self.recorder,
        )
        self.recorder.record(
            "chat_replied",
            {"input_type": classification.type.value, "used_fallback": result.used_fallback},
        )
        return result.value
