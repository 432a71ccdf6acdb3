from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path


def _bool_env(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in {"1", "true", "yes", "on"}


@dataclass(slots=True)
class EngineSettings:
    model: str = "gpt-5"
    max_output_tokens: int = 1024
    roadmap_max_output_tokens: int = 4096
    total_token_budget: int = 200000
    data_dir: Path = Path("data")
    output_dir: Path = Path("outputs")
    techniques_config_path: Path = Path("config/techniques.yaml")
    user_name: str = ""
    disable_tracing: bool = False

    @classmethod
    def from_env(cls) -> "EngineSettings":
        settings = cls(
            model=os.getenv("OPENAI_MODEL", "gpt-5"),
            max_output_tokens=int(os.getenv("MAX_OUTPUT_TOKENS", "1024")),
            roadmap_max_output_tokens=int(os.getenv("ROADMAP_MAX_OUTPUT_TOKENS", "4096")),
            total_token_budget=int(os.getenv("TOTAL_TOKEN_BUDGET", "200000")),
            data_dir=Path(os.getenv("DATA_DIR", "data")),
            output_dir=Path(os.getenv("OUTPUT_DIR", "outputs")),
            techniques_config_path=Path(
                os.getenv("TECHNIQUES_CONFIG_PATH", "config/techniques.yaml")
            ),
            user_name=os.getenv("USER_NAME", "").strip(),
            disable_tracing=_bool_env("DISABLE_TRACING", False),
        )
        settings.validate()
        return settings

    def validate(self) -> None:
        if not self.model.strip():
            raise ValueError("OPENAI_MODEL must not be empty.")
        if self.max_output_tokens < 128:
            raise ValueError("MAX_OUTPUT_TOKENS must be >= 128.")
        if self.roadmap_max_output_tokens < 512:
            raise ValueError("ROADMAP_MAX_OUTPUT_TOKENS must be >= 512.")
        if self.total_token_budget <= 0:
            raise ValueError("TOTAL_TOKEN_BUDGET must be > 0.")
