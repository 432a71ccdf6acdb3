from __future__ import annotations

import pytest

from dream_roadmap_agents.errors import StateError
from dream_roadmap_agents.models import RoadmapNode
from dream_roadmap_agents.roadmap import fallback_roadmap
from dream_roadmap_agents.tree import (
    check_order_indexes,
    find_node,
    find_parent,
    leaf_count,
    replace_node,
)


def test_lookup_helpers(goal) -> None:
    roadmap = fallback_roadmap(goal, None)
    phase = roadmap.phases[1]
    leaf = phase.children[2]
    assert find_node(roadmap, leaf.id) == leaf
    assert find_node(roadmap, phase.id) == phase
    assert find_parent(roadmap, leaf.id) == phase
    assert find_node(roadmap, "missing") is None
    assert leaf_count(roadmap) == 12


def test_replace_with_two_nodes_shifts_later_siblings(goal) -> None:
    roadmap = fallback_roadmap(goal, None)
    phase = roadmap.phases[0]
    target = phase.children[1]
    later_ids = [child.id for child in phase.children[2:]]

    updated = replace_node(
        roadmap,
        target.id,
        [RoadmapNode(title="First half"), RoadmapNode(title="Second half")],
    )

    children = updated.phases[0].children
    assert [child.order_index for child in children] == [0, 1, 2, 3, 4]
    assert [child.title for child in children[1:3]] == ["First half", "Second half"]
    assert all(child.parent_id == phase.id for child in children)
    assert [child.id for child in children[3:]] == later_ids
    assert find_node(updated, target.id) is None
    assert check_order_indexes(updated)
    # input untouched
    assert [child.id for child in roadmap.phases[0].children][1] == target.id


def test_replace_phase_reparents_children(goal) -> None:
    roadmap = fallback_roadmap(goal, None)
    original = roadmap.phases[2]
    replacement = RoadmapNode(
        title="New phase",
        children=[child.model_copy() for child in original.children],
    )

    updated = replace_node(roadmap, original.id, [replacement])

    new_phase = updated.phases[2]
    assert new_phase.title == "New phase"
    assert new_phase.order_index == 2
    assert all(child.parent_id == new_phase.id for child in new_phase.children)


def test_replace_rejects_completed_target_and_multi_phase(goal) -> None:
    roadmap = fallback_roadmap(goal, None)
    roadmap.phases[0].children[0].is_completed = True
    with pytest.raises(StateError):
        replace_node(roadmap, roadmap.phases[0].children[0].id, [RoadmapNode(title="x")])
    with pytest.raises(StateError):
        replace_node(
            roadmap, roadmap.phases[1].id, [RoadmapNode(title="a"), RoadmapNode(title="b")]
        )
    with pytest.raises(StateError):
        replace_node(roadmap, "missing", [RoadmapNode(title="x")])
    with pytest.raises(ValueError):
        replace_node(roadmap, roadmap.phases[1].id, [])
