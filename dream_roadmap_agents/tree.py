"""Pure helpers over a roadmap's node tree.

Every function that changes the tree takes a roadmap and returns a new one;
the input is never mutated.
"""

from __future__ import annotations

from typing import Iterator

from .errors import StateError
from .models import Roadmap, RoadmapNode


def find_node(roadmap: Roadmap, node_id: str) -> RoadmapNode | None:
    for phase in roadmap.phases:
        if phase.id == node_id:
            return phase
        for child in phase.children:
            if child.id == node_id:
                return child
    return None


def find_parent(roadmap: Roadmap, node_id: str) -> RoadmapNode | None:
    for phase in roadmap.phases:
        if any(child.id == node_id for child in phase.children):
            return phase
    return None


def iter_leaves(roadmap: Roadmap) -> Iterator[RoadmapNode]:
    for phase in roadmap.phases:
        yield from phase.children


def leaf_count(roadmap: Roadmap) -> int:
    return sum(len(phase.children) for phase in roadmap.phases)


def _sibling_group(roadmap: Roadmap, node_id: str) -> list[RoadmapNode]:
    if any(phase.id == node_id for phase in roadmap.phases):
        return roadmap.phases
    parent = find_parent(roadmap, node_id)
    if parent is None:
        raise StateError(f"Node {node_id} is not part of roadmap {roadmap.id}.")
    return parent.children


def is_contiguous(nodes: list[RoadmapNode]) -> bool:
    return sorted(node.order_index for node in nodes) == list(range(len(nodes)))


def check_order_indexes(roadmap: Roadmap) -> bool:
    if not is_contiguous(roadmap.phases):
        return False
    return all(is_contiguous(phase.children) for phase in roadmap.phases)


def replace_node(
    roadmap: Roadmap, node_id: str, replacements: list[RoadmapNode]
) -> Roadmap:
    """Put ``replacements`` into the slot held by ``node_id``.

    The first replacement takes the original ``order_index``, the rest follow
    it, and later siblings move forward by ``len(replacements) - 1``.
    """
    if not replacements:
        raise ValueError("At least one replacement node is required.")

    updated = roadmap.model_copy(deep=True)
    group = _sibling_group(updated, node_id)
    position = next(i for i, node in enumerate(group) if node.id == node_id)
    target = group[position]

    if target.is_completed:
        raise StateError(f"Node {node_id} is already completed and cannot be replaced.")
    if target.is_phase and len(replacements) > 1:
        raise StateError(f"Node {node_id} is a phase; only leaf actions can be decomposed.")

    shift = len(replacements) - 1
    for sibling in group:
        if sibling.order_index > target.order_index:
            sibling.order_index += shift

    placed: list[RoadmapNode] = []
    for offset, replacement in enumerate(replacements):
        node = replacement.model_copy(
            update={
                "parent_id": target.parent_id,
                "order_index": target.order_index + offset,
            },
            deep=True,
        )
        for child in node.children:
            child.parent_id = node.id
        placed.append(node)

    group[position : position + 1] = placed
    group.sort(key=lambda node: node.order_index)
    return updated
