#!/usr/bin/env python3
from __future__ import annotations

import argparse
import sys
from pathlib import Path

PROJECT_ROOT = Path(__file__).resolve().parents[1]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from dream_roadmap_agents.evaluation import check_scenario, load_golden_scenarios

SCENARIOS_PATH = PROJECT_ROOT / "evaluation" / "golden_scenarios.yaml"
SAMPLES_DIR = PROJECT_ROOT / "evaluation" / "sample_roadmaps"


def main() -> int:
    parser = argparse.ArgumentParser(description="Run the golden roadmap checks.")
    parser.add_argument(
        "roadmap",
        nargs="?",
        help="Saved roadmap JSON (e.g. outputs/roadmap.json); needs --scenario.",
    )
    parser.add_argument("--scenario", help="Only run this scenario id.")
    args = parser.parse_args()

    scenarios = load_golden_scenarios(SCENARIOS_PATH)
    if args.scenario:
        scenarios = [s for s in scenarios if s.scenario_id == args.scenario]
        if not scenarios:
            parser.error(f"unknown scenario: {args.scenario}")
    elif args.roadmap:
        parser.error("a roadmap path is checked against one --scenario")

    failed = 0
    for scenario in scenarios:
        path = Path(args.roadmap) if args.roadmap else SAMPLES_DIR / f"{scenario.scenario_id}.json"
        problems = check_scenario(scenario, path)
        print(f"[{'FAIL' if problems else 'PASS'}] {scenario.scenario_id}: {path}")
        for problem in problems:
            print(f"  - {problem}")
        failed += bool(problems)

    print(f"\n{len(scenarios) - failed}/{len(scenarios)} scenario(s) passed.")
    return 1 if failed else 0


if __name__ == "__main__":
    raise SystemExit(main())
