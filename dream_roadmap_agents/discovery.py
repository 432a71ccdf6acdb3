from __future__ import annotations

import re
from datetime import datetime
from typing import Callable

from .errors import ParseFailure, StaleResultError, StateError
from .generation import TextGenerator, attempt
from .models import (
    MAX_DEPTH,
    DiscoveryCompletion,
    DiscoveryQuestion,
    DiscoverySession,
    DiscoveryTurn,
    Goal,
    ReflectionQuestion,
    SessionStatus,
    utc_now,
)
from .observability import EventRecorder
from .parsing import extract_reflection_and_question
from .storage import Repository
from .techniques import DEFAULT_DOMAIN_TECHNIQUES, DomainTechnique, technique_block

DEPTH_GUIDANCE: dict[int, str] = {
    1: "Ask about the practical, surface-level reason this dream matters. Keep it gentle and inviting.",
    2: "Go deeper into the emotional payoff. How would achieving this dream feel?",
    3: "Explore the identity shift. Who would they become? What version of themselves does this represent?",
    4: "Uncover core values. What does this dream reveal about what matters most to them?",
    5: (
        "Find the root motivation. It is often about love, freedom, meaning, or legacy. "
        "Make this question profound but accessible."
    ),
}

FALLBACK_QUESTIONS: dict[int, str] = {
    1: 'I love that you\'re pursuing "{goal}". Tell me, what draws you to this dream?',
    2: "When you imagine having achieved this, how do you think you'd feel?",
    3: "Who would you become? What version of yourself does this represent?",
    4: "What does this reveal about what matters most to you?",
    5: "At the deepest level, what is this really about for you?",
}

FALLBACK_ACKNOWLEDGMENT = "Thank you for sharing that."

DEFAULT_DISCOVERY_INSTRUCTIONS = (
    "You are a warm, perceptive mindset coach helping someone discover the deepest "
    "motivation behind a dream. Each turn, reflect briefly on what they shared "
    "(1-2 sentences), then ask one follow-up question that goes one layer deeper. "
    "Never mention frameworks, layers, steps, or how many questions remain. "
    "Keep the whole reply under 80 words."
)

_SENTENCE = re.compile(r"^(.+?[.!?])(?=\s|$)", re.DOTALL)


def _first_sentence(raw: str) -> str | ParseFailure:
    text = " ".join(raw.split()).strip().strip('"“”').strip()
    if not text:
        return ParseFailure("empty root motivation")
    match = _SENTENCE.match(text)
    return match.group(1).strip() if match else text


def fallback_question(goal: Goal, depth_level: int) -> ReflectionQuestion:
    return ReflectionQuestion(
        reflection="" if depth_level == 1 else FALLBACK_ACKNOWLEDGMENT,
        question=FALLBACK_QUESTIONS[depth_level].format(goal=goal.statement),
    )


def fallback_root_motivation(goal: Goal) -> str:
    return (
        f'Beneath "{goal.statement}" is a desire to grow into the person you are meant '
        "to be and to live a life that feels truly your own."
    )


def fallback_permission_statement(goal: Goal) -> str:
    return (
        f"You have permission to pursue {goal.statement} with your whole heart. "
        "Your desire for this comes from a real place within you, so honor it."
    )


def _transcript(turns: list[DiscoveryTurn]) -> str:
    blocks = []
    for turn in turns:
        block = f"Turn {turn.depth_level}:\nQuestion: {turn.question}\nAnswer: {turn.user_response}"
        if turn.reflection:
            block += f"\nCoach reflection: {turn.reflection}"
        blocks.append(block)
    return "\n\n".join(blocks)


class DiscoveryEngine:
    def __init__(
        self,
        generator: TextGenerator,
        repository: Repository,
        *,
        instructions: str = DEFAULT_DISCOVERY_INSTRUCTIONS,
        techniques: tuple[DomainTechnique, ...] = DEFAULT_DOMAIN_TECHNIQUES,
        user_name: str = "",
        recorder: EventRecorder | None = None,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.generator = generator
        self.repository = repository
        self.instructions = instructions
        self.techniques = techniques
        self.user_name = user_name
        self.recorder = recorder or EventRecorder()
        self.clock = clock

    def _question_prompt(self, goal: Goal, session: DiscoverySession) -> str:
        depth = session.depth_level
        parts = [self.instructions]
        techniques = technique_block(self.techniques, goal.domain_tag)
        if techniques:
            parts.append(techniques)
        if self.user_name:
            parts.append(f"Their name: {self.user_name}")
        parts.append(
            f'Their dream: "{goal.statement}"\n'
            f"Conversation depth: {depth} of {MAX_DEPTH} (internal only, never mention it)\n"
            f"{DEPTH_GUIDANCE[depth]}"
        )
        if session.turns:
            parts.append(
                "CONVERSATION SO FAR:\n"
                f"{_transcript(session.turns)}\n\n"
                "Reflect warmly on their last answer, then ask your next question."
            )
        else:
            parts.append(
                "This is your first question. Briefly acknowledge their dream, "
                "then ask why it matters to them."
            )
        parts.append("Put the question on its own final line.")
        return "\n\n".join(parts)

    def _motivation_prompt(self, goal: Goal, session: DiscoverySession) -> str:
        answers = "\n".join(
            f'Answer {turn.depth_level}: "{turn.user_response}"' for turn in session.turns
        )
        return (
            "Based on this conversation, state the person's root motivation in one "
            "sentence of 15-25 words, addressed to them in the second person.\n\n"
            f'Dream: "{goal.statement}"\n\n'
            f"Their answers:\n{answers}\n\n"
            "Reply with the single sentence only."
        )

    async def _ask(self, goal: Goal, session: DiscoverySession) -> DiscoveryQuestion:
        depth = session.depth_level
        outcome = await attempt(
            self.generator,
            self._question_prompt(goal, session),
            extract_reflection_and_question,
            lambda: fallback_question(goal, depth),
            operation=f"discovery_question_depth_{depth}",
            recorder=self.recorder,
        )
        session.pending_question = outcome.value.question
        session.pending_reflection = outcome.value.reflection
        return DiscoveryQuestion(
            session_id=session.id,
            depth_level=depth,
            question=outcome.value.question,
            reflection=outcome.value.reflection,
            used_fallback=outcome.used_fallback,
        )

    def _commit(self, session: DiscoverySession, expected: DiscoverySession | None) -> None:
        if expected is not None:
            current = self.repository.get_session(session.id)
            if (
                current.status != expected.status
                or current.depth_level != expected.depth_level
                or len(current.turns) != len(expected.turns)
            ):
                raise StaleResultError(
                    f"Discovery session {session.id} changed while a question was being generated."
                )
        self.repository.save_session(session)

    async def start(self, goal: Goal) -> DiscoveryQuestion:
        for existing in self.repository.list_sessions(goal.id):
            if existing.status == SessionStatus.IN_PROGRESS:
                raise StateError(
                    f"Goal {goal.id} already has discovery session {existing.id} in progress."
                )

        self.repository.save_goal(goal)
        session = DiscoverySession(goal_id=goal.id)
        question = await self._ask(goal, session)
        self._commit(session, expected=None)
        self.recorder.record(
            "discovery_started",
            {"goal_id": goal.id, "session_id": session.id, "used_fallback": question.used_fallback},
        )
        return question

    async def submit_response(
        self, session_id: str, text: str
    ) -> DiscoveryQuestion | DiscoveryCompletion:
        stored = self.repository.get_session(session_id)
        if stored.status != SessionStatus.IN_PROGRESS:
            raise StateError(
                f"Discovery session {session_id} is {stored.status.value}; it accepts no responses."
            )
        if stored.pending_question is None or len(stored.turns) != stored.depth_level - 1:
            raise StateError(f"Discovery session {session_id} has no open question.")
        if not text or not text.strip():
            raise ValueError("Discovery response must not be blank.")

        goal = self.repository.get_goal(stored.goal_id)
        session = stored.model_copy(deep=True)
        session.turns.append(
            DiscoveryTurn(
                depth_level=session.depth_level,
                question=session.pending_question,
                reflection=session.pending_reflection,
                user_response=text.strip(),
            )
        )
        session.pending_question = None
        session.pending_reflection = ""

        if session.depth_level < MAX_DEPTH:
            session.depth_level += 1
            question = await self._ask(goal, session)
            self._commit(session, expected=stored)
            self.recorder.record(
                "discovery_advanced",
                {
                    "session_id": session.id,
                    "depth_level": session.depth_level,
                    "used_fallback": question.used_fallback,
                },
            )
            return question

        outcome = await attempt(
            self.generator,
            self._motivation_prompt(goal, session),
            _first_sentence,
            lambda: fallback_root_motivation(goal),
            operation="root_motivation",
            recorder=self.recorder,
        )
        session.root_motivation = outcome.value
        session.status = SessionStatus.COMPLETED
        session.completed_at = self.clock()
        self._commit(session, expected=stored)
        self.recorder.record(
            "discovery_completed",
            {"session_id": session.id, "used_fallback": outcome.used_fallback},
        )
        return DiscoveryCompletion(
            session_id=session.id,
            root_motivation=outcome.value,
            used_fallback=outcome.used_fallback,
        )

    def abandon(self, session_id: str) -> DiscoverySession:
        session = self.repository.get_session(session_id)
        if session.status != SessionStatus.IN_PROGRESS:
            raise StateError(
                f"Discovery session {session_id} is {session.status.value} and cannot be abandoned."
            )
        session = session.model_copy(update={"status": SessionStatus.ABANDONED})
        session.pending_question = None
        self.repository.save_session(session)
        self.recorder.record("discovery_abandoned", {"session_id": session_id})
        return session

    async def permission_statement(self, session_id: str) -> str:
        session = self.repository.get_session(session_id)
        if session.status != SessionStatus.COMPLETED:
            raise StateError(f"Discovery session {session_id} has not completed.")
        goal = self.repository.get_goal(session.goal_id)
        insights = "; ".join(turn.user_response for turn in session.turns[-3:])
        prompt = (
            "Write a personal permission statement of 2-3 sentences for someone who "
            "has just discovered their deepest motivation. Start with "
            '"You have permission to" and speak to them directly.\n\n'
            f'Their dream: "{goal.statement}"\n'
            f'Their root motivation: "{session.root_motivation}"\n'
            f'Key insights: "{insights}"'
        )

        def _interpret(raw: str) -> str | ParseFailure:
            text = raw.strip().strip('"').strip()
            return text or ParseFailure("empty permission statement")

        outcome = await attempt(
            self.generator,
            prompt,
            _interpret,
            lambda: fallback_permission_statement(goal),
            operation="permission_statement",
            recorder=self.recorder,
        )
        return outcome.value
