"""Completion bookkeeping over a roadmap and over a goal's lifetime counters.

All functions here are pure: they take the current value and return a new one.
"""

from __future__ import annotations

from datetime import datetime

from .errors import StateError
from .models import (
    LeafCompletion,
    Milestone,
    ProgressCounters,
    Roadmap,
    RoadmapNode,
    RoadmapStatus,
    StreakBadge,
    utc_now,
)
from .tree import find_node, find_parent, iter_leaves, leaf_count

STREAK_BADGES: tuple[StreakBadge, ...] = (
    StreakBadge(days=3, title="3-Day Streak!", emoji="🌱"),
    StreakBadge(days=7, title="Week Warrior!", emoji="🔥"),
    StreakBadge(days=14, title="Fortnight Focus!", emoji="⚡"),
    StreakBadge(days=21, title="Habit Hero!", emoji="🏆"),
    StreakBadge(days=30, title="Monthly Master!", emoji="👑"),
    StreakBadge(days=50, title="50-Day Legend!", emoji="🌟"),
    StreakBadge(days=100, title="Century of Bold!", emoji="💎"),
)


def _require_leaf(roadmap: Roadmap, node_id: str) -> RoadmapNode:
    node = find_node(roadmap, node_id)
    if node is None:
        raise StateError(f"Node {node_id} is not part of roadmap {roadmap.id}.")
    if not node.is_leaf:
        raise StateError(f"Node {node_id} is a phase, not a leaf action.")
    return node


def _require_phase(roadmap: Roadmap, node_id: str) -> RoadmapNode:
    node = find_node(roadmap, node_id)
    if node is None:
        raise StateError(f"Node {node_id} is not part of roadmap {roadmap.id}.")
    if not node.is_phase:
        raise StateError(f"Node {node_id} is a leaf action, not a phase.")
    return node


def _require_active(roadmap: Roadmap) -> None:
    if roadmap.status != RoadmapStatus.ACTIVE:
        raise StateError(f"Roadmap {roadmap.id} is {roadmap.status.value}.")


def complete_leaf(
    roadmap: Roadmap, node_id: str, now: datetime | None = None
) -> LeafCompletion:
    """Mark one leaf action completed.

    ``cascaded`` reports whether the leaf's phase has just become eligible for
    completion. The phase itself is left untouched; completing it is a
    separate call to :func:`complete_phase`.
    """
    _require_active(roadmap)
    updated = roadmap.model_copy(deep=True)
    leaf = _require_leaf(updated, node_id)
    if leaf.is_completed:
        raise StateError(f"Leaf action {node_id} is already completed.")

    leaf.is_completed = True
    leaf.completed_at = now or utc_now()
    phase = find_parent(updated, node_id)
    cascaded = phase is not None and not phase.is_completed and phase.completion_eligible
    return LeafCompletion(roadmap=updated, cascaded=cascaded)


def uncomplete_leaf(roadmap: Roadmap, node_id: str) -> Roadmap:
    _require_active(roadmap)
    updated = roadmap.model_copy(deep=True)
    leaf = _require_leaf(updated, node_id)
    if not leaf.is_completed:
        raise StateError(f"Leaf action {node_id} is not completed.")
    phase = find_parent(updated, node_id)
    if phase is not None and phase.is_completed:
        raise StateError(
            f"Phase {phase.id} is already completed; its leaf actions can no longer be undone."
        )

    leaf.is_completed = False
    leaf.completed_at = None
    return updated


def complete_phase(roadmap: Roadmap, node_id: str, now: datetime | None = None) -> Roadmap:
    _require_active(roadmap)
    updated = roadmap.model_copy(deep=True)
    phase = _require_phase(updated, node_id)
    if phase.is_completed:
        raise StateError(f"Phase {node_id} is already completed.")
    pending = [child.id for child in phase.children if not child.is_completed]
    if pending:
        raise StateError(
            f"Phase {node_id} has {len(pending)} incomplete leaf action(s) and cannot be completed."
        )

    phase.is_completed = True
    phase.completed_at = now or utc_now()
    if all(p.is_completed for p in updated.phases):
        updated.status = RoadmapStatus.COMPLETED
    return updated


def roadmap_progress(roadmap: Roadmap) -> float:
    total = leaf_count(roadmap)
    if total == 0:
        return 0.0
    done = sum(1 for leaf in iter_leaves(roadmap) if leaf.is_completed)
    return done / total


def sync_total_actions(counters: ProgressCounters, roadmap: Roadmap) -> ProgressCounters:
    return counters.model_copy(update={"total_actions": leaf_count(roadmap)})


def record_global_completion(
    counters: ProgressCounters, now: datetime | None = None
) -> ProgressCounters:
    # Every completed action extends the streak; there is no calendar-day gating.
    current_streak = counters.current_streak + 1
    return counters.model_copy(
        update={
            "completed_actions": counters.completed_actions + 1,
            "current_streak": current_streak,
            "longest_streak": max(counters.longest_streak, current_streak),
            "last_activity_at": now or utc_now(),
        }
    )


def classify_milestone(completed_actions: int) -> Milestone:
    if completed_actions == 1:
        return Milestone.FIRST_WIN
    if completed_actions == 5:
        return Milestone.FIFTH_WIN
    if completed_actions == 10:
        return Milestone.TENTH_WIN
    if completed_actions > 10 and completed_actions % 10 == 0:
        return Milestone.EVERY_TENTH
    return Milestone.NONE


def celebration_message(milestone: Milestone, completed_actions: int) -> str:
    if milestone == Milestone.FIRST_WIN:
        return "You did it! Your first bold move!"
    if milestone == Milestone.FIFTH_WIN:
        return "5 bold moves! You're building momentum!"
    if milestone == Milestone.TENTH_WIN:
        return "10 bold moves! You're unstoppable!"
    if milestone == Milestone.EVERY_TENTH:
        return f"{completed_actions} bold moves! Keep going!"
    return "Another win in the books!"


def streak_milestone(current_streak: int) -> StreakBadge | None:
    for badge in STREAK_BADGES:
        if badge.days == current_streak:
            return badge
    return None


def streak_message(current_streak: int) -> str:
    if current_streak == 0:
        return "Start your streak today!"
    if current_streak == 1:
        return "You started a streak! Keep it going!"
    if current_streak < 7:
        return f"{current_streak} in a row! You're building momentum!"
    if current_streak < 30:
        return f"{current_streak} streak! You're unstoppable!"
    return f"{current_streak} and counting! You're a legend!"
