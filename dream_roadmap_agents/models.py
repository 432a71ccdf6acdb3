from __future__ import annotations

import uuid
from datetime import datetime, timezone
from enum import Enum

from pydantic import BaseModel, Field

MIN_LEAF_MINUTES = 2
MAX_LEAF_MINUTES = 15
MAX_DEPTH = 5


def new_id() -> str:
    return uuid.uuid4().hex


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class SessionStatus(str, Enum):
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    ABANDONED = "abandoned"


class RoadmapStatus(str, Enum):
    ACTIVE = "active"
    COMPLETED = "completed"
    ARCHIVED = "archived"


class NodeCategory(str, Enum):
    RESEARCH = "research"
    PLANNING = "planning"
    ACTION = "action"
    REFLECTION = "reflection"
    CONNECTION = "connection"


class ProgressionBand(str, Enum):
    BEGINNING = "beginning"
    MOMENTUM = "momentum"
    STRIDE = "stride"
    BOLD = "bold"
    ADVENTURER = "adventurer"


class Milestone(str, Enum):
    NONE = "none"
    FIRST_WIN = "first_win"
    FIFTH_WIN = "fifth_win"
    TENTH_WIN = "tenth_win"
    EVERY_TENTH = "every_tenth"


class InputType(str, Enum):
    GREETING = "greeting"
    GRATITUDE = "gratitude"
    FEAR = "fear"
    QUESTION = "question"
    FOLLOWUP = "followup"
    CASUAL = "casual"


class Goal(BaseModel):
    id: str = Field(default_factory=new_id)
    statement: str
    domain_tag: str | None = None
    created_at: datetime = Field(default_factory=utc_now)


class DiscoveryTurn(BaseModel):
    depth_level: int = Field(ge=1, le=MAX_DEPTH)
    question: str
    reflection: str = ""
    user_response: str


class DiscoverySession(BaseModel):
    id: str = Field(default_factory=new_id)
    goal_id: str
    depth_level: int = Field(default=1, ge=1, le=MAX_DEPTH)
    turns: list[DiscoveryTurn] = Field(default_factory=list)
    status: SessionStatus = SessionStatus.IN_PROGRESS
    root_motivation: str | None = None
    pending_question: str | None = None
    pending_reflection: str = ""
    completed_at: datetime | None = None


class DiscoveryQuestion(BaseModel):
    session_id: str
    depth_level: int
    question: str
    reflection: str = ""
    used_fallback: bool = False


class DiscoveryCompletion(BaseModel):
    session_id: str
    root_motivation: str
    used_fallback: bool = False


class ReflectionQuestion(BaseModel):
    reflection: str = ""
    question: str


class RoadmapNode(BaseModel):
    id: str = Field(default_factory=new_id)
    parent_id: str | None = None
    title: str
    description: str = ""
    rationale: str = ""
    tip: str = ""
    duration_minutes: int = Field(default=5, ge=0)
    category: NodeCategory = NodeCategory.ACTION
    order_index: int = Field(default=0, ge=0)
    is_completed: bool = False
    completed_at: datetime | None = None
    children: list[RoadmapNode] = Field(default_factory=list)

    @property
    def is_phase(self) -> bool:
        return self.parent_id is None

    @property
    def is_leaf(self) -> bool:
        return self.parent_id is not None

    @property
    def completion_eligible(self) -> bool:
        return all(child.is_completed for child in self.children)


class Roadmap(BaseModel):
    id: str = Field(default_factory=new_id)
    goal_id: str
    root_motivation: str | None = None
    title: str
    phases: list[RoadmapNode] = Field(default_factory=list)
    status: RoadmapStatus = RoadmapStatus.ACTIVE
    used_fallback: bool = False


class ProgressCounters(BaseModel):
    goal_id: str
    total_actions: int = Field(default=0, ge=0)
    completed_actions: int = Field(default=0, ge=0)
    current_streak: int = Field(default=0, ge=0)
    longest_streak: int = Field(default=0, ge=0)
    last_activity_at: datetime | None = None


class LeafCompletion(BaseModel):
    roadmap: Roadmap
    cascaded: bool = False


class CompletionOutcome(BaseModel):
    roadmap: Roadmap
    counters: ProgressCounters
    cascaded: bool = False
    milestone: Milestone = Milestone.NONE
    celebration_message: str = ""


class InputClassification(BaseModel):
    type: InputType
    instruction: str


class StreakBadge(BaseModel):
    days: int
    title: str
    emoji: str
