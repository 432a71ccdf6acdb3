"""Text generation capability and the attempt-else-default call pattern.

Every generation call site in the engine goes through :func:`attempt`: one
generator call, one interpretation of its output, and a deterministic default
when either step fails. Nothing here retries.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Generic, Protocol, TypeVar

from agents import Agent, ModelSettings, Runner
from pydantic import BaseModel

from .config import EngineSettings
from .errors import BudgetExceededError, ParseFailure, ValidationFailure
from .observability import EventRecorder

logger = logging.getLogger(__name__)

T = TypeVar("T")


class TextGenerator(Protocol):
    async def generate(self, prompt: str) -> str | None: ...


def _to_text(output: Any) -> str:
    if output is None:
        return ""
    if isinstance(output, str):
        return output.strip()
    if isinstance(output, BaseModel):
        return output.model_dump_json(indent=2)
    try:
        return json.dumps(output, indent=2, ensure_ascii=False, default=str)
    except TypeError:
        return str(output)


def _usage_from_result(result: Any) -> dict[str, int]:
    usage = getattr(result, "usage", None)
    if usage is None:
        usage = getattr(getattr(result, "context_wrapper", None), "usage", None)
    return {
        "requests": int(getattr(usage, "requests", 0) or 0),
        "input_tokens": int(getattr(usage, "input_tokens", 0) or 0),
        "output_tokens": int(getattr(usage, "output_tokens", 0) or 0),
        "total_tokens": int(getattr(usage, "total_tokens", 0) or 0),
    }


@dataclass(slots=True)
class UsageLedger:
    total_token_budget: int
    total_usage: dict[str, int] = field(
        default_factory=lambda: {
            "requests": 0,
            "input_tokens": 0,
            "output_tokens": 0,
            "total_tokens": 0,
        }
    )

    @property
    def budget_exhausted(self) -> bool:
        return self.total_usage["total_tokens"] >= self.total_token_budget

    def add(self, usage: dict[str, int]) -> None:
        for key in self.total_usage:
            self.total_usage[key] += usage.get(key, 0)

    def enforce_or_raise(self, callsite: str) -> None:
        if self.budget_exhausted:
            raise BudgetExceededError(
                f"Budget exhausted at {callsite}: token budget reached "
                f"({self.total_usage['total_tokens']}/{self.total_token_budget})"
            )

    def snapshot(self) -> dict[str, Any]:
        return {
            "total_tokens_used": self.total_usage["total_tokens"],
            "total_token_budget": self.total_token_budget,
            "input_tokens": self.total_usage["input_tokens"],
            "output_tokens": self.total_usage["output_tokens"],
            "requests": self.total_usage["requests"],
        }


class AgentTextGenerator:
    """TextGenerator backed by a single-turn OpenAI Agents SDK agent."""

    def __init__(
        self,
        settings: EngineSettings,
        *,
        name: str = "Dream Coach",
        instructions: str = "",
        max_output_tokens: int | None = None,
        ledger: UsageLedger | None = None,
    ):
        self.settings = settings
        self.ledger = ledger or UsageLedger(total_token_budget=settings.total_token_budget)
        self.agent = Agent(
            name=name,
            instructions=instructions,
            model=settings.model,
            model_settings=ModelSettings(
                max_tokens=max_output_tokens or settings.max_output_tokens,
                parallel_tool_calls=False,
            ),
        )

    async def generate(self, prompt: str) -> str | None:
        self.ledger.enforce_or_raise(self.agent.name)
        result = await Runner.run(self.agent, prompt, max_turns=1)
        self.ledger.add(_usage_from_result(result))
        return _to_text(result.final_output) or None


@dataclass(frozen=True, slots=True)
class Attempt(Generic[T]):
    value: T
    used_fallback: bool = False
    failure: str | None = None


async def attempt(
    generator: TextGenerator,
    prompt: str,
    interpret: Callable[[str], T | ParseFailure],
    fallback: Callable[[], T],
    *,
    operation: str,
    recorder: EventRecorder | None = None,
) -> Attempt[T]:
    """Run one generation and interpret it, or return ``fallback()``.

    ``interpret`` may return a :class:`ParseFailure` or raise
    :class:`ValidationFailure`; both route to the fallback, as do a generator
    that raises or returns nothing.
    """
    failure: str
    try:
        raw = await generator.generate(prompt)
    except Exception as exc:
        failure = f"generation_unavailable: {type(exc).__name__}: {exc}"
    else:
        if raw is None or not raw.strip():
            failure = "generation_unavailable: empty response"
        else:
            try:
                result = interpret(raw)
            except ValidationFailure as exc:
                failure = f"validation_failure: {exc}"
            else:
                if not isinstance(result, ParseFailure):
                    return Attempt(value=result)
                failure = f"parse_failure: {result.reason}"

    logger.warning("%s fell back to default content (%s)", operation, failure)
    if recorder is not None:
        recorder.record("generation_fallback", {"operation": operation, "failure": failure})
    return Attempt(value=fallback(), used_fallback=True, failure=failure)
