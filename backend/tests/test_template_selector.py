from __future__ import annotations

import pytest

from habitstory.core.errors import ConfigurationError
from habitstory.services.template_selector import require_house_config, select_template


def test_house_default_is_head_of_list():
    assert select_template("MONK", None, "morning") == "first_breath"
    assert select_template("SAGE", None, "evening") == "reflection_journal_15min"


def test_class_default_wins():
    assert select_template("MONK", "VIPASSANA_FIRST", "morning") == "vipassana_scan_30min"
    # No class default for evening: falls back to the house.
    assert select_template("MONK", "VIPASSANA_FIRST", "evening") == "loving_kindness_20min"


def test_class_from_another_house_is_ignored(caplog):
    with caplog.at_level("WARNING"):
        assert select_template("MONK", "POWER_FOCUS", "morning") == "first_breath"
    assert "does not belong" in caplog.text


def test_unknown_class_is_ignored():
    assert select_template("OPERATIVE", "NOT_A_CLASS", "midday") == "tactical_meditation"


def test_window_without_templates_returns_none():
    assert select_template("MONK", None, "late_night") is None


def test_unknown_house_raises():
    with pytest.raises(ConfigurationError):
        require_house_config("PIRATE")
    with pytest.raises(ConfigurationError):
        select_template("PIRATE", None, "morning")
