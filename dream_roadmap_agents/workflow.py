from __future__ import annotations

import asyncio
import json
import time
from datetime import datetime, timezone
from pathlib import Path

from agents import set_tracing_disabled

from .config import EngineSettings
from .errors import StateError
from .generation import AgentTextGenerator, UsageLedger
from .models import DiscoveryCompletion, Goal, Roadmap, RoadmapNode
from .observability import EventRecorder, new_run_id
from .progress import roadmap_progress, streak_message, streak_milestone
from .service import DreamPathService
from .storage import JsonDirectoryRepository
from .techniques import load_techniques
from .tree import find_node, iter_leaves

SHORT_ID_LENGTH = 6


def _write_text(path: Path, content: str) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(content.rstrip() + "\n", encoding="utf-8")


def _checkbox(node: RoadmapNode) -> str:
    return "[x]" if node.is_completed else "[ ]"


def render_roadmap_markdown(roadmap: Roadmap) -> str:
    lines = [
        f"# {roadmap.title}",
        "",
        "## Root Motivation",
        roadmap.root_motivation or "(not discovered)",
        "",
        f"Progress: {round(roadmap_progress(roadmap) * 100)}%",
        "",
    ]
    for number, phase in enumerate(roadmap.phases, start=1):
        lines.append(
            f"## {_checkbox(phase)} Phase {number}: {phase.title} "
            f"({phase.duration_minutes} min) `{phase.id[:SHORT_ID_LENGTH]}`"
        )
        if phase.description:
            lines.append(phase.description)
        for leaf in phase.children:
            lines.append(
                f"- {_checkbox(leaf)} {leaf.title} ({leaf.duration_minutes} min, "
                f"{leaf.category.value}) `{leaf.id[:SHORT_ID_LENGTH]}`"
            )
            if leaf.tip:
                lines.append(f"  - Tip: {leaf.tip}")
        lines.append("")
    return "\n".join(lines)


class DreamRoadmapWorkflow:
    def __init__(self, settings: EngineSettings):
        self.settings = settings
        self.output_dir = settings.output_dir.resolve()
        self.run_id = new_run_id()
        self.run_dir = self.output_dir / "observability" / self.run_id
        self.events_path = self.run_dir / "events.jsonl"
        self.roadmap_path = self.output_dir / "roadmap.json"
        self.start_monotonic = time.monotonic()

        self.output_dir.mkdir(parents=True, exist_ok=True)
        self.run_dir.mkdir(parents=True, exist_ok=True)

        set_tracing_disabled(settings.disable_tracing)

        self.recorder = EventRecorder(self.events_path, self.run_id)
        self.ledger = UsageLedger(total_token_budget=settings.total_token_budget)
        dialogue = AgentTextGenerator(
            settings,
            name="Dream Coach",
            ledger=self.ledger,
        )
        planner = AgentTextGenerator(
            settings,
            name="Roadmap Planner",
            max_output_tokens=settings.roadmap_max_output_tokens,
            ledger=self.ledger,
        )
        self.service = DreamPathService(
            JsonDirectoryRepository(settings.data_dir),
            dialogue,
            roadmap_generator=planner,
            techniques=load_techniques(settings.techniques_config_path),
            user_name=settings.user_name,
            recorder=self.recorder,
        )
        self.goal: Goal | None = None
        self.roadmap: Roadmap | None = None
        self.history: list[tuple[str, str]] = []

    def _print_help(self) -> None:
        print(
            "\nCommands:\n"
            "- :help\n"
            "- :status\n"
            "- :complete <id>\n"
            "- :phase <id>\n"
            "- :undo <id>\n"
            "- :refine <id> [feedback]\n"
            "- :decompose <id>\n"
            "- :tip <id>\n"
            "- :export [path]\n"
            "- exit\n"
            "Ids may be shortened to any unique prefix."
        )

    def _print_status(self) -> None:
        assert self.goal is not None and self.roadmap is not None
        counters = self.service.repository.get_counters(self.goal.id)
        leaves = list(iter_leaves(self.roadmap))
        print(
            "\nStatus:\n"
            f"- roadmap: {self.roadmap.title} ({self.roadmap.status.value})\n"
            f"- actions done: {sum(1 for leaf in leaves if leaf.is_completed)}/{len(leaves)}\n"
            f"- lifetime completed: {counters.completed_actions}\n"
            f"- streak: {streak_message(counters.current_streak)}\n"
            f"- budget snapshot: {json.dumps(self.ledger.snapshot(), ensure_ascii=False)}"
        )

    def _resolve(self, prefix: str) -> str | None:
        assert self.roadmap is not None
        if find_node(self.roadmap, prefix) is not None:
            return prefix
        matches = [
            node.id
            for phase in self.roadmap.phases
            for node in (phase, *phase.children)
            if node.id.startswith(prefix)
        ]
        if len(matches) != 1:
            print(f"\nNo single node matches '{prefix}'.")
            return None
        return matches[0]

    def _budget_stopped(self) -> bool:
        if not self.ledger.budget_exhausted:
            return False
        self.recorder.record("budget_stop", self.ledger.snapshot())
        print(
            "\nBudget governor stop: token budget reached. "
            f"Snapshot: {json.dumps(self.ledger.snapshot(), ensure_ascii=False)}"
        )
        return True

    def _save_roadmap(self, roadmap: Roadmap) -> None:
        self.roadmap = roadmap
        _write_text(self.roadmap_path, roadmap.model_dump_json(indent=2))

    def _export_roadmap(self, target: str | None) -> None:
        assert self.roadmap is not None
        if target:
            export_path = Path(target).expanduser()
        else:
            stamp = datetime.now(timezone.utc).strftime("%Y%m%dT%H%M%SZ")
            export_path = self.output_dir / "exports" / f"roadmap_{stamp}.md"
        _write_text(export_path, render_roadmap_markdown(self.roadmap))
        print(f"\nExported roadmap to: {export_path.resolve()}")

    async def _discover(self, goal: Goal) -> str | None:
        question = await self.service.start_discovery(goal)
        while True:
            if question.reflection:
                print(f"\nCoach: {question.reflection}")
            print(f"Coach: {question.question}")
            answer = input("\nYou: ").strip()
            if answer.lower() in {"exit", "quit"}:
                self.service.abandon_discovery(question.session_id)
                return None
            if not answer:
                continue
            result = await self.service.submit_discovery_response(question.session_id, answer)
            if isinstance(result, DiscoveryCompletion):
                print(f"\nYour root motivation: {result.root_motivation}")
                statement = await self.service.permission_statement(result.session_id)
                print(f"\n{statement}")
                return result.root_motivation
            if self._budget_stopped():
                self.service.abandon_discovery(result.session_id)
                return None
            question = result

    async def _handle_command(self, command: str) -> None:
        assert self.roadmap is not None
        name, _, rest = command.partition(" ")
        name = name.lower()
        rest = rest.strip()
        if name == "help":
            self._print_help()
            return
        if name == "status":
            self._print_status()
            return
        if name == "export":
            self._export_roadmap(rest or None)
            return
        if name not in {"complete", "phase", "undo", "refine", "decompose", "tip"}:
            print("\nUnknown command. Use :help")
            return

        prefix, _, feedback = rest.partition(" ")
        if not prefix:
            print(f"\nUsage: :{name} <id>")
            return
        node_id = self._resolve(prefix)
        if node_id is None:
            return

        roadmap_id = self.roadmap.id
        if name == "complete":
            outcome = self.service.complete_leaf(roadmap_id, node_id)
            self._save_roadmap(outcome.roadmap)
            print(f"\n{outcome.celebration_message}")
            badge = streak_milestone(outcome.counters.current_streak)
            if badge is not None:
                print(f"{badge.emoji} {badge.title}")
            if outcome.cascaded:
                print("Every action in this phase is done. Use :phase to close it out.")
        elif name == "phase":
            self._save_roadmap(self.service.complete_phase(roadmap_id, node_id))
            print("\nPhase completed.")
        elif name == "undo":
            self._save_roadmap(self.service.uncomplete_leaf(roadmap_id, node_id))
            print("\nAction marked as not done.")
        elif name == "refine":
            roadmap = await self.service.refine_node(roadmap_id, node_id, feedback.strip() or None)
            self._save_roadmap(roadmap)
            print(f"\n{render_roadmap_markdown(roadmap)}")
        elif name == "decompose":
            self._save_roadmap(await self.service.decompose_node(roadmap_id, node_id))
            print(f"\n{render_roadmap_markdown(self.roadmap)}")
        else:
            print(f"\nCoach tip: {await self.service.coach_tip(roadmap_id, node_id)}")

    async def run_cli(self) -> None:
        print("Dream roadmap session started.")
        print("Share a dream to explore. Type 'exit' to stop.")
        print(f"Observability run directory: {self.run_dir.resolve()}")
        self.recorder.record(
            "session_started",
            {
                "model": self.settings.model,
                "max_output_tokens": self.settings.max_output_tokens,
                "roadmap_max_output_tokens": self.settings.roadmap_max_output_tokens,
                "techniques_config_path": str(self.settings.techniques_config_path),
                **self.ledger.snapshot(),
            },
        )

        await self._run_session()

        self.recorder.record(
            "session_finished",
            {
                "roadmap_id": self.roadmap.id if self.roadmap is not None else None,
                "duration_seconds": round(time.monotonic() - self.start_monotonic, 2),
                **self.ledger.snapshot(),
            },
        )
        if self.roadmap is None:
            print("\nSession ended before roadmap generation.")
        print(f"Observability artifacts: {self.run_dir.resolve()}")

    async def _run_session(self) -> None:
        dream = ""
        while not dream:
            dream = input("\nYour dream: ").strip()
        if dream.lower() in {"exit", "quit"}:
            return
        domain_tag = input("Domain tag (optional, e.g. career, travel): ").strip() or None
        self.goal = self.service.create_goal(dream, domain_tag)

        root_motivation = await self._discover(self.goal)
        if root_motivation is None:
            return

        counters = self.service.repository.get_counters(self.goal.id)
        roadmap = await self.service.synthesize_roadmap(
            self.goal, root_motivation, counters.completed_actions
        )
        self._save_roadmap(roadmap)
        print(f"\n{render_roadmap_markdown(roadmap)}")
        print(f"Roadmap saved at: {self.roadmap_path}")
        self._print_help()

        while not self._budget_stopped():
            user_input = input("\nYou: ").strip()
            if not user_input:
                continue
            if user_input.lower() in {"exit", "quit"}:
                self.recorder.record("session_exit_requested", {"user_input": user_input})
                return
            if user_input.startswith(":"):
                try:
                    await self._handle_command(user_input[1:].strip())
                except StateError as exc:
                    print(f"\nCannot do that: {exc}")
                continue

            reply = await self.service.chat_reply(user_input, self.history)
            self.history.extend([("user", user_input), ("coach", reply)])
            print(f"\nCoach: {reply}")


async def run_workflow(settings: EngineSettings) -> None:
    workflow = DreamRoadmapWorkflow(settings)
    await workflow.run_cli()


def run_workflow_sync(settings: EngineSettings) -> None:
    asyncio.run(run_workflow(settings))
