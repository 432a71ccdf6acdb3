from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Any

import yaml

from .models import Roadmap
from .tree import check_order_indexes, iter_leaves


@dataclass(frozen=True, slots=True)
class GoldenScenario:
    scenario_id: str
    description: str
    expected_characteristics: tuple[str, ...]


def load_golden_scenarios(path: Path) -> list[GoldenScenario]:
    raw = yaml.safe_load(path.read_text(encoding="utf-8"))
    if not isinstance(raw, dict):
        raise ValueError("Golden scenarios file must be a mapping with key 'scenarios'.")
    scenarios = raw.get("scenarios")
    if not isinstance(scenarios, list):
        raise ValueError("Golden scenarios file must define a list under 'scenarios'.")

    parsed: list[GoldenScenario] = []
    for item in scenarios:
        if not isinstance(item, dict):
            raise ValueError("Scenario entries must be mappings.")
        scenario_id = str(item.get("id", "")).strip()
        description = str(item.get("description", "")).strip()
        characteristics_raw = item.get("expected_characteristics", [])
        if not isinstance(characteristics_raw, list):
            raise ValueError(f"Scenario '{scenario_id}' must have a list of expected_characteristics.")
        characteristics = tuple(str(value).strip() for value in characteristics_raw if str(value).strip())
        if not scenario_id or not description or not characteristics:
            raise ValueError(
                "Each scenario must include non-empty id, description, and expected_characteristics."
            )
        parsed.append(
            GoldenScenario(
                scenario_id=scenario_id,
                description=description,
                expected_characteristics=characteristics,
            )
        )
    return parsed


def load_roadmap(path: Path) -> Roadmap:
    return Roadmap.model_validate_json(path.read_text(encoding="utf-8"))


def _int_value(value: str) -> int | None:
    try:
        return int(value)
    except ValueError:
        return None


def _evaluate_rule(roadmap: Roadmap, rule: str) -> tuple[bool, str]:
    prefix, _, value = rule.partition(":")
    prefix = prefix.strip()
    value = value.strip()

    if prefix == "contiguous_order":
        return check_order_indexes(roadmap), "order_index is not contiguous in every sibling group"

    if prefix == "contains_keyword":
        haystack = " ".join(
            [roadmap.title]
            + [phase.title for phase in roadmap.phases]
            + [leaf.title for leaf in iter_leaves(roadmap)]
        ).lower()
        return value.lower() in haystack, f"missing keyword '{value}'"

    if prefix == "leaf_duration_range":
        low_raw, _, high_raw = value.partition("-")
        low = _int_value(low_raw.strip())
        high = _int_value(high_raw.strip())
        if low is None or high is None:
            return False, f"leaf_duration_range rule must use 'low-high': {rule}"
        outside = [
            leaf.duration_minutes
            for leaf in iter_leaves(roadmap)
            if not low <= leaf.duration_minutes <= high
        ]
        return not outside, f"leaf durations outside [{low},{high}]: {outside}"

    count = _int_value(value)
    if prefix in {"phase_count", "min_leaves_per_phase", "max_leaves_per_phase"} and count is None:
        return False, f"invalid count in rule: {rule}"

    if prefix == "phase_count":
        current = len(roadmap.phases)
        return current == count, f"found {current} phases, expected {count}"

    if prefix == "min_leaves_per_phase":
        sizes = [len(phase.children) for phase in roadmap.phases]
        return all(size >= count for size in sizes), f"leaf counts {sizes}, expected >= {count}"

    if prefix == "max_leaves_per_phase":
        sizes = [len(phase.children) for phase in roadmap.phases]
        return all(size <= count for size in sizes), f"leaf counts {sizes}, expected <= {count}"

    return False, f"unsupported rule prefix '{prefix}' in '{rule}'"


def evaluate_roadmap_characteristics(
    roadmap: Roadmap, expected_characteristics: tuple[str, ...] | list[str]
) -> dict[str, Any]:
    failures: list[str] = []
    for rule in expected_characteristics:
        ok, detail = _evaluate_rule(roadmap, rule)
        if not ok:
            failures.append(detail)
    return {
        "passed": not failures,
        "failure_count": len(failures),
        "failures": failures,
    }


def check_scenario(scenario: GoldenScenario, roadmap_path: Path) -> list[str]:
    """Return the failed rules for one scenario, or a single line if the file is missing."""
    if not roadmap_path.exists():
        return [f"roadmap file not found: {roadmap_path}"]
    result = evaluate_roadmap_characteristics(
        load_roadmap(roadmap_path), scenario.expected_characteristics
    )
    return result["failures"]
