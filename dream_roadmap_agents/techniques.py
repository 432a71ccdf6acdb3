from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Any

import yaml

FALLBACK_DOMAIN_TAG = "personal-freedom"


@dataclass(frozen=True, slots=True)
class DomainTechnique:
    tag: str
    title: str
    guidance: tuple[str, ...]

    def render(self) -> str:
        lines = [f"AREA OF FOCUS: {self.title.upper()}", "Techniques to draw on:"]
        lines.extend(f"- {item}" for item in self.guidance)
        return "\n".join(lines)


DEFAULT_DOMAIN_TECHNIQUES: tuple[DomainTechnique, ...] = (
    DomainTechnique(
        tag="career",
        title="Career",
        guidance=(
            "Reframe 'I'm not qualified': every expert started as a beginner.",
            "10-10-10: how will this fear matter in 10 minutes, 10 months, 10 years?",
            "Gather evidence: which past accomplishments contradict the doubt?",
            "Treat the current moment as a transition rather than being stuck.",
        ),
    ),
    DomainTechnique(
        tag="travel",
        title="Travel",
        guidance=(
            "Reframe 'I can't go alone': solo travel is self-discovery in motion.",
            "Possibility thinking: what if this becomes the story they love telling?",
            "Small steps: one flight, one city, one conversation at a time.",
            "Challenge all-or-nothing thinking: a weekend away still counts.",
        ),
    ),
    DomainTechnique(
        tag="personal-freedom",
        title="Personal Freedom",
        guidance=(
            "Every yes to themselves is a vote for the life they want.",
            "Permission giving: no outside approval is required.",
            "Values clarification: what would their 80-year-old self thank them for?",
            "Replace 'should' with 'could' and notice what opens up.",
        ),
    ),
    DomainTechnique(
        tag="relationships",
        title="Relationships",
        guidance=(
            "Reframe rejection as redirection toward people who truly see them.",
            "Connection takes courage, and courage is already present.",
            "Every relationship teaches something worth keeping.",
            "Challenge mind reading: focus on what they feel, not what others think.",
        ),
    ),
    DomainTechnique(
        tag="health",
        title="Health",
        guidance=(
            "Past attempts are practice; this one builds on all of them.",
            "Self-compassion: speak to themselves the way they would to a friend.",
            "Progress over perfection: one good choice today beats a perfect month.",
            "A ten-minute walk beats waiting for the perfect routine.",
        ),
    ),
    DomainTechnique(
        tag="creativity",
        title="Creativity",
        guidance=(
            "Creativity is a practice, not a gift.",
            "Beginner's mind: the first draft is only for them.",
            "Play over productivity: make things for the joy of it.",
            "Their voice exists because nobody else has it.",
        ),
    ),
    DomainTechnique(
        tag="finances",
        title="Finances",
        guidance=(
            "Financial literacy is a learnable skill.",
            "Future-self connection: what will future them thank present them for?",
            "One good money decision today creates tomorrow's momentum.",
            "Focus on what they can control: the next choice.",
        ),
    ),
    DomainTechnique(
        tag="education",
        title="Learning",
        guidance=(
            "Experience makes learning richer, not harder.",
            "Curiosity over competence: explore before mastering.",
            "'I am someone who learns' outlasts any credential.",
            "Everyone they admire started as a student.",
        ),
    ),
)


def _coerce_technique(raw: Any, index: int) -> DomainTechnique:
    if not isinstance(raw, dict):
        raise ValueError(f"Invalid technique at index {index}: entries must be mappings.")
    tag = str(raw.get("tag", "")).strip()
    title = str(raw.get("title", "")).strip()
    guidance_raw = raw.get("guidance", [])
    if not isinstance(guidance_raw, list):
        raise ValueError(f"Technique '{tag}' must define guidance as a list.")
    guidance = tuple(str(item).strip() for item in guidance_raw if str(item).strip())
    if not tag or not title or not guidance:
        raise ValueError(
            f"Invalid technique at index {index}: tag, title, and guidance are required."
        )
    return DomainTechnique(tag=tag, title=title, guidance=guidance)


def _validate_techniques(techniques: list[DomainTechnique]) -> tuple[DomainTechnique, ...]:
    if not techniques:
        raise ValueError("At least one domain technique must be configured.")

    tags = [t.tag for t in techniques]
    if len(tags) != len(set(tags)):
        raise ValueError("Domain technique tags must be unique.")

    return tuple(techniques)


def load_techniques(config_path: Path) -> tuple[DomainTechnique, ...]:
    if not config_path.exists():
        return DEFAULT_DOMAIN_TECHNIQUES

    raw = yaml.safe_load(config_path.read_text(encoding="utf-8"))
    if not isinstance(raw, dict):
        raise ValueError(
            f"Technique config must be a mapping at {config_path}. Expected key: techniques."
        )

    entries = raw.get("techniques")
    if not isinstance(entries, list):
        raise ValueError(
            f"Technique config at {config_path} must define a list under 'techniques'."
        )

    techniques = [_coerce_technique(entry, i) for i, entry in enumerate(entries)]
    return _validate_techniques(techniques)


def technique_block(
    techniques: tuple[DomainTechnique, ...], domain_tag: str | None
) -> str:
    """Render the block for ``domain_tag``; unknown tags get the general block."""
    if not domain_tag:
        return ""
    by_tag = {t.tag: t for t in techniques}
    technique = by_tag.get(domain_tag) or by_tag.get(FALLBACK_DOMAIN_TAG)
    if technique is None:
        return ""
    return technique.render()
