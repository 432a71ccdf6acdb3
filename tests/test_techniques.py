from __future__ import annotations

from pathlib import Path

import pytest

from dream_roadmap_agents.techniques import (
    DEFAULT_DOMAIN_TECHNIQUES,
    load_techniques,
    technique_block,
)


def test_techniques_yaml_loads_with_unique_tags() -> None:
    techniques = load_techniques(Path("config/techniques.yaml"))
    assert techniques
    assert all(technique.guidance for technique in techniques)
    assert len({technique.tag for technique in techniques}) == len(techniques)
    assert {t.tag for t in techniques} == {t.tag for t in DEFAULT_DOMAIN_TECHNIQUES}


def test_missing_config_falls_back_to_defaults(tmp_path: Path) -> None:
    assert load_techniques(tmp_path / "absent.yaml") == DEFAULT_DOMAIN_TECHNIQUES


def test_duplicate_tags_are_rejected(tmp_path: Path) -> None:
    path = tmp_path / "techniques.yaml"
    path.write_text(
        "techniques:\n"
        "  - {tag: travel, title: Travel, guidance: [Go]}\n"
        "  - {tag: travel, title: Again, guidance: [Stay]}\n",
        encoding="utf-8",
    )
    with pytest.raises(ValueError):
        load_techniques(path)


def test_technique_block_selection() -> None:
    assert technique_block(DEFAULT_DOMAIN_TECHNIQUES, None) == ""
    assert "AREA OF FOCUS: TRAVEL" in technique_block(DEFAULT_DOMAIN_TECHNIQUES, "travel")
    assert "AREA OF FOCUS: PERSONAL FREEDOM" in technique_block(
        DEFAULT_DOMAIN_TECHNIQUES, "underwater-basket-weaving"
    )
