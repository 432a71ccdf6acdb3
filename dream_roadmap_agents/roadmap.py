"""Roadmap generation, refinement and decomposition.

Each operation makes exactly one generator call and one parse attempt. When
either fails, or the parsed structure cannot be repaired by the validation
pass, a fixed hand-authored result is returned instead. Callers that want
retries must add them above this layer.
"""

from __future__ import annotations

from typing import Any

from .errors import ParseFailure, StateError, ValidationFailure
from .generation import TextGenerator, attempt
from .models import (
    MAX_LEAF_MINUTES,
    MIN_LEAF_MINUTES,
    Goal,
    NodeCategory,
    ProgressionBand,
    Roadmap,
    RoadmapNode,
)
from .observability import EventRecorder
from .parsing import extract_items, extract_object

DEFAULT_LEAF_MINUTES = 5
DEFAULT_ROADMAP_TITLE = "Your Golden Path"

BAND_GUIDANCE: dict[ProgressionBand, str] = {
    ProgressionBand.BEGINNING: (
        "This person is just beginning. Keep every action gentle: self-care, "
        "reflection and low-stakes research rather than challenges."
    ),
    ProgressionBand.MOMENTUM: (
        "This person is building momentum. Mix one slightly bolder action in with "
        "gentle ones, and include one connection action."
    ),
    ProgressionBand.STRIDE: (
        "This person is finding their stride. Actions can be more tangible and "
        "outward-facing, with at least one that involves other people."
    ),
    ProgressionBand.BOLD: (
        "This person is becoming bold. Actions should stretch them: real steps "
        "toward the dream, including one that feels exciting and slightly scary."
    ),
    ProgressionBand.ADVENTURER: (
        "This person is a seasoned adventurer. Actions should be substantive steps "
        "that create real momentum, including some that once felt impossible."
    ),
}

DEFAULT_ROADMAP_INSTRUCTIONS = (
    "You are a practical life architect who turns big dreams into a concrete plan "
    "of small, doable actions. Name every step as an inviting, specific instruction "
    "rather than an abstract idea, and link each phase back to the person's deeper why."
)

_PHASE_KEYS = ("phases", "actions")
_CHILD_KEYS = ("sub_steps", "children", "actions", "steps")
_DURATION_KEYS = ("duration_minutes", "durationMinutes", "duration")
_RATIONALE_KEYS = ("why_it_matters", "rationale")
_TIP_KEYS = ("gabby_tip", "coach_tip", "tip")


def progression_band(completed_count: int) -> ProgressionBand:
    if completed_count < 0:
        raise ValueError("completed_count must be >= 0.")
    if completed_count == 0:
        return ProgressionBand.BEGINNING
    if completed_count < 5:
        return ProgressionBand.MOMENTUM
    if completed_count < 15:
        return ProgressionBand.STRIDE
    if completed_count < 30:
        return ProgressionBand.BOLD
    return ProgressionBand.ADVENTURER


def _first_value(raw: dict[str, Any], keys: tuple[str, ...]) -> Any:
    for key in keys:
        if key in raw and raw[key] is not None:
            return raw[key]
    return None


def _text(raw: dict[str, Any], *keys: str) -> str:
    value = _first_value(raw, keys)
    return str(value).strip() if value is not None else ""


def _clamp(value: int, low: int, high: int) -> int:
    return max(low, min(high, value))


def _duration(raw: dict[str, Any], low: int, high: int) -> int:
    value = _first_value(raw, _DURATION_KEYS)
    try:
        minutes = int(round(float(value)))
    except (TypeError, ValueError, OverflowError):
        minutes = DEFAULT_LEAF_MINUTES
    return _clamp(minutes, low, high)


def _category(value: Any, default: NodeCategory) -> NodeCategory:
    try:
        return NodeCategory(str(value).strip().lower())
    except ValueError:
        return default


def _order_key(raw: dict[str, Any]) -> int | None:
    value = raw.get("order_index", raw.get("orderIndex"))
    try:
        return int(value)
    except (TypeError, ValueError, OverflowError):
        return None


def _in_sibling_order(items: list[dict[str, Any]]) -> list[dict[str, Any]]:
    """Order raw siblings by their reported index when it is usable.

    Missing or duplicated indexes fall back to the order the generator wrote
    them in. Either way the caller renumbers the result as 0..n-1.
    """
    keys = [_order_key(item) for item in items]
    if any(key is None for key in keys) or len(set(keys)) != len(keys):
        return list(items)
    return [item for _, item in sorted(zip(keys, items), key=lambda pair: pair[0])]


def _build_leaf(
    raw: dict[str, Any],
    parent_id: str | None,
    order_index: int,
    *,
    default_category: NodeCategory = NodeCategory.ACTION,
    max_minutes: int = MAX_LEAF_MINUTES,
) -> RoadmapNode:
    return RoadmapNode(
        parent_id=parent_id,
        title=_text(raw, "title"),
        description=_text(raw, "description"),
        rationale=_text(raw, *_RATIONALE_KEYS),
        tip=_text(raw, *_TIP_KEYS),
        duration_minutes=_duration(raw, MIN_LEAF_MINUTES, max_minutes),
        category=_category(raw.get("category"), default_category),
        order_index=order_index,
    )


def _titled(items: Any) -> list[dict[str, Any]]:
    if not isinstance(items, list):
        return []
    return [item for item in items if isinstance(item, dict) and _text(item, "title")]


def validate_roadmap_payload(
    data: dict[str, Any], goal: Goal, root_motivation: str | None
) -> Roadmap:
    """Repair a parsed roadmap object into a structurally valid :class:`Roadmap`.

    Raises :class:`ValidationFailure` when no phase with at least one leaf
    survives.
    """
    raw_phases = _first_value(data, _PHASE_KEYS)
    if not isinstance(raw_phases, list):
        raise ValidationFailure("roadmap object has no phase list")

    candidates = [item for item in raw_phases if isinstance(item, dict)]
    phases: list[RoadmapNode] = []
    for raw_phase in _in_sibling_order(candidates):
        raw_leaves = _titled(_first_value(raw_phase, _CHILD_KEYS))
        if not raw_leaves:
            continue
        phase = RoadmapNode(
            parent_id=None,
            title=_text(raw_phase, "title") or f"Phase {len(phases) + 1}",
            description=_text(raw_phase, "description"),
            rationale=_text(raw_phase, *_RATIONALE_KEYS),
            tip=_text(raw_phase, *_TIP_KEYS),
            category=_category(raw_phase.get("category"), NodeCategory.ACTION),
            order_index=len(phases),
        )
        phase.children = [
            _build_leaf(raw_leaf, phase.id, index)
            for index, raw_leaf in enumerate(_in_sibling_order(raw_leaves))
        ]
        phase.duration_minutes = sum(leaf.duration_minutes for leaf in phase.children)
        phases.append(phase)

    if not phases:
        raise ValidationFailure("no phase with at least one leaf action")

    return Roadmap(
        goal_id=goal.id,
        root_motivation=root_motivation,
        title=_text(data, "roadmap_title", "title") or DEFAULT_ROADMAP_TITLE,
        phases=phases,
    )


_FALLBACK_PHASES = (
    (
        {
            "title": "Phase 1: The Inner Foundation",
            "description": "Anchor inwardly before building outwardly. This phase is about clarity and permission.",
            "tip": "Do not rush this. The energy you bring to the start shapes the whole journey.",
            "category": NodeCategory.REFLECTION.value,
        },
        (
            ("Create your dream corner", "Clear a small physical space to work on your dream. A corner of a desk is enough.", 5, NodeCategory.PLANNING),
            ("Write your permission line", 'Write "I give myself permission to..." and finish the sentence with your dream.', 5, NodeCategory.REFLECTION),
            ("Picture the finish line", "Close your eyes and see the dream already achieved. Note the first thing you do.", 10, NodeCategory.REFLECTION),
            ("Name your why", "Write one sentence about why this dream matters to you right now.", 5, NodeCategory.REFLECTION),
        ),
    ),
    (
        {
            "title": "Phase 2: Gathering Inspiration",
            "description": "Look outward for evidence that this is possible.",
            "rationale": "Proof of possibility makes the path easier to see.",
            "tip": "Follow what lights you up, not only what looks practical.",
            "category": NodeCategory.RESEARCH.value,
        },
        (
            ("Find three trailblazers", "Identify three people who have done what you want to do and save their names.", 10, NodeCategory.RESEARCH),
            ("Build a small moodboard", "Save five images that capture how the finished dream feels.", 15, NodeCategory.RESEARCH),
            ("Collect one useful resource", "Bookmark one article, video or course that explains a first step.", 10, NodeCategory.RESEARCH),
            ("Tell one person", "Share your dream with one person you trust, in a single message.", 5, NodeCategory.CONNECTION),
        ),
    ),
    (
        {
            "title": "Phase 3: The First Motion",
            "description": "Take the smallest real-world step so hesitation loses its grip.",
            "rationale": "Momentum is the antidote to fear.",
            "tip": "It does not have to be perfect. It just has to be done.",
            "category": NodeCategory.ACTION.value,
        },
        (
            ("Five-minute brain dump", "Set a timer and list every task you think the dream needs.", 5, NodeCategory.PLANNING),
            ("Pick one tiny win", "Circle one item from the list that takes under two minutes and do it now.", 2, NodeCategory.ACTION),
            ("Schedule your next session", "Put fifteen minutes for your dream on the calendar this week.", 5, NodeCategory.PLANNING),
            ("Celebrate the start", "Write down what you did today and how it felt to begin.", 5, NodeCategory.REFLECTION),
        ),
    ),
)


def fallback_roadmap(goal: Goal, root_motivation: str | None) -> Roadmap:
    phases: list[RoadmapNode] = []
    for order_index, (fields, leaves) in enumerate(_FALLBACK_PHASES):
        phase = RoadmapNode(
            parent_id=None,
            title=fields["title"],
            description=fields["description"],
            rationale=fields.get("rationale") or (root_motivation or ""),
            tip=fields["tip"],
            category=NodeCategory(fields["category"]),
            order_index=order_index,
        )
        phase.children = [
            RoadmapNode(
                parent_id=phase.id,
                title=title,
                description=description,
                duration_minutes=minutes,
                category=category,
                order_index=index,
            )
            for index, (title, description, minutes, category) in enumerate(leaves)
        ]
        phase.duration_minutes = sum(leaf.duration_minutes for leaf in phase.children)
        phases.append(phase)
    return Roadmap(
        goal_id=goal.id,
        root_motivation=root_motivation,
        title="Your First Bold Steps",
        phases=phases,
        used_fallback=True,
    )


def fallback_refinement(node: RoadmapNode, root_motivation: str | None) -> RoadmapNode:
    rationale = (
        f'At the heart of "{root_motivation}" is permission to move at your own pace.'
        if root_motivation
        else "Progress is about direction, not speed. Any step forward counts."
    )
    replacement = RoadmapNode(
        parent_id=node.parent_id,
        title="Take one mindful moment",
        description=(
            "Pause wherever you are, take three deep breaths, and ask yourself: "
            '"What is the smallest step I could take right now that would feel good?"'
        ),
        rationale=rationale,
        tip="There is no wrong answer. Sometimes the smallest step is deciding you are ready.",
        duration_minutes=DEFAULT_LEAF_MINUTES,
        category=node.category,
        order_index=node.order_index,
    )
    return _keep_phase_shape(replacement, node)


def fallback_decomposition(node: RoadmapNode) -> list[RoadmapNode]:
    minutes = min(DEFAULT_LEAF_MINUTES, _decomposed_cap(node))
    return [
        RoadmapNode(
            parent_id=node.parent_id,
            title=f"Prepare for: {node.title}",
            description="Gather any materials or information you might need. Just collect, don't act yet.",
            rationale=node.rationale,
            tip="Preparation is progress too.",
            duration_minutes=minutes,
            category=node.category,
            order_index=node.order_index,
        ),
        RoadmapNode(
            parent_id=node.parent_id,
            title=f"Begin gently: {node.title}",
            description="Take just the first small step of this action and stop when the time is up.",
            rationale=node.rationale,
            tip="Progress over perfection. Any step forward counts.",
            duration_minutes=minutes,
            category=node.category,
            order_index=node.order_index + 1,
        ),
    ]


def _decomposed_cap(node: RoadmapNode) -> int:
    return max(MIN_LEAF_MINUTES, min(MAX_LEAF_MINUTES, node.duration_minutes - 1))


def _keep_phase_shape(replacement: RoadmapNode, original: RoadmapNode) -> RoadmapNode:
    if original.is_phase:
        replacement.children = [child.model_copy(deep=True) for child in original.children]
        for child in replacement.children:
            child.parent_id = replacement.id
        replacement.duration_minutes = sum(child.duration_minutes for child in replacement.children)
    return replacement


def _describe_node(node: RoadmapNode) -> str:
    return (
        f"- Title: {node.title}\n"
        f"- Description: {node.description or '(none)'}\n"
        f"- Duration: {node.duration_minutes} minutes\n"
        f"- Category: {node.category.value}"
    )


class RoadmapSynthesizer:
    def __init__(
        self,
        generator: TextGenerator,
        *,
        instructions: str = DEFAULT_ROADMAP_INSTRUCTIONS,
        recorder: EventRecorder | None = None,
    ):
        self.generator = generator
        self.instructions = instructions
        self.recorder = recorder or EventRecorder()

    def _roadmap_prompt(self, goal: Goal, root_motivation: str | None, band: ProgressionBand) -> str:
        return (
            f"{self.instructions}\n\n"
            f"PROGRESSION NOTE: {BAND_GUIDANCE[band]}\n\n"
            f'DREAM: "{goal.statement}"\n'
            f'ROOT MOTIVATION: "{root_motivation or "(not yet discovered)"}"\n\n'
            "Create a roadmap with exactly 3 phases. Each phase must contain 4-8 leaf "
            "actions, and every leaf action must take between 2 and 15 minutes.\n\n"
            "Respond ONLY with JSON in this shape:\n"
            "{\n"
            '  "roadmap_title": "...",\n'
            '  "phases": [\n'
            "    {\n"
            '      "title": "Phase 1: ...",\n'
            '      "description": "...",\n'
            '      "why_it_matters": "...",\n'
            '      "tip": "...",\n'
            '      "category": "research|planning|action|reflection|connection",\n'
            '      "order_index": 0,\n'
            '      "sub_steps": [\n'
            '        {"title": "...", "description": "...", "duration_minutes": 5, '
            '"category": "reflection", "order_index": 0}\n'
            "      ]\n"
            "    }\n"
            "  ]\n"
            "}"
        )

    async def synthesize(
        self, goal: Goal, root_motivation: str | None, completed_count: int
    ) -> Roadmap:
        band = progression_band(completed_count)
        outcome = await attempt(
            self.generator,
            self._roadmap_prompt(goal, root_motivation, band),
            lambda raw: self._interpret_roadmap(raw, goal, root_motivation),
            lambda: fallback_roadmap(goal, root_motivation),
            operation="synthesize_roadmap",
            recorder=self.recorder,
        )
        self.recorder.record(
            "roadmap_synthesized",
            {
                "goal_id": goal.id,
                "band": band.value,
                "phase_count": len(outcome.value.phases),
                "used_fallback": outcome.used_fallback,
            },
        )
        return outcome.value

    @staticmethod
    def _interpret_roadmap(
        raw: str, goal: Goal, root_motivation: str | None
    ) -> Roadmap | ParseFailure:
        data = extract_object(raw)
        if isinstance(data, ParseFailure):
            return data
        return validate_roadmap_payload(data, goal, root_motivation)

    async def refine(
        self,
        node: RoadmapNode,
        goal: Goal,
        root_motivation: str | None = None,
        feedback: str | None = None,
    ) -> RoadmapNode:
        if node.is_completed:
            raise StateError(f"Node {node.id} is already completed and cannot be refined.")

        if feedback and feedback.strip():
            feedback_block = (
                "The person explained why the current action doesn't feel right:\n"
                f'"{feedback.strip()}"'
            )
        else:
            feedback_block = (
                "The person feels this action is misaligned but didn't say why. "
                "Offer a gentler, more approachable alternative."
            )
        motivation = f'\nRoot motivation: "{root_motivation}"' if root_motivation else ""
        prompt = (
            "Refine a single roadmap step that didn't resonate.\n\n"
            f"CURRENT STEP:\n{_describe_node(node)}\n\n"
            f"{feedback_block}\n\n"
            f'DREAM: "{goal.statement}"{motivation}\n\n'
            "Respond ONLY with one JSON object:\n"
            '{"title": "...", "description": "...", "why_it_matters": "...", '
            '"duration_minutes": 5, "tip": "..."}'
        )
        outcome = await attempt(
            self.generator,
            prompt,
            lambda raw: self._interpret_refinement(raw, node),
            lambda: fallback_refinement(node, root_motivation),
            operation="refine_node",
            recorder=self.recorder,
        )
        return outcome.value

    @staticmethod
    def _interpret_refinement(raw: str, node: RoadmapNode) -> RoadmapNode | ParseFailure:
        data = extract_object(raw)
        if isinstance(data, ParseFailure):
            return data
        if not _text(data, "title"):
            raise ValidationFailure("refinement has no title")
        replacement = _build_leaf(
            data,
            node.parent_id,
            node.order_index,
            default_category=node.category,
        )
        # Positional identity comes from the original, whatever the generator said.
        replacement.order_index = node.order_index
        replacement.category = node.category
        return _keep_phase_shape(replacement, node)

    async def decompose(
        self, node: RoadmapNode, goal: Goal, root_motivation: str | None = None
    ) -> list[RoadmapNode]:
        if node.is_phase:
            raise StateError(f"Node {node.id} is a phase; only leaf actions can be decomposed.")
        if node.is_completed:
            raise StateError(f"Node {node.id} is already completed and cannot be decomposed.")

        motivation = f'\nRoot motivation: "{root_motivation}"' if root_motivation else ""
        prompt = (
            "This roadmap step feels too big. Break it into 2-3 smaller sequential steps "
            "that together accomplish the same intent. Each step must take fewer minutes "
            f"than the original {node.duration_minutes}, and the first should be the "
            "easiest possible start.\n\n"
            f"STEP TO BREAK DOWN:\n{_describe_node(node)}\n\n"
            f'DREAM: "{goal.statement}"{motivation}\n\n'
            "Respond ONLY with a JSON array:\n"
            '[{"title": "...", "description": "...", "why_it_matters": "...", '
            '"duration_minutes": 5, "tip": "..."}]'
        )
        outcome = await attempt(
            self.generator,
            prompt,
            lambda raw: self._interpret_decomposition(raw, node),
            lambda: fallback_decomposition(node),
            operation="decompose_node",
            recorder=self.recorder,
        )
        return outcome.value

    @staticmethod
    def _interpret_decomposition(
        raw: str, node: RoadmapNode
    ) -> list[RoadmapNode] | ParseFailure:
        items = extract_items(raw, "actions")
        if isinstance(items, ParseFailure):
            return items
        usable = _titled(items)[:3]
        if len(usable) < 2:
            raise ValidationFailure(f"decomposition produced {len(usable)} usable steps")
        cap = _decomposed_cap(node)
        replacements = []
        for offset, item in enumerate(usable):
            leaf = _build_leaf(
                item,
                node.parent_id,
                node.order_index + offset,
                default_category=node.category,
                max_minutes=cap,
            )
            replacements.append(leaf)
        return replacements

    async def coach_tip(self, node: RoadmapNode) -> str:
        prompt = (
            "Give one specific, supportive tip (1-2 sentences) for doing this step well. "
            "Include a concrete technique or mindset shift. Reply with the tip text only.\n\n"
            f"{_describe_node(node)}"
        )

        def _interpret(raw: str) -> str | ParseFailure:
            text = raw.strip().strip('"').strip()
            return text or ParseFailure("empty tip")

        outcome = await attempt(
            self.generator,
            prompt,
            _interpret,
            lambda: "Take a deep breath before you begin. You've got this.",
            operation="coach_tip",
            recorder=self.recorder,
        )
        return outcome.value
