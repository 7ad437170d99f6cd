from __future__ import annotations

import json
from pathlib import Path

import pytest

from guard_modules import GuardConfig, ProtectionLevel, load_config, save_config


def test_missing_settings_file_gives_defaults(tmp_path: Path) -> None:
    cfg = load_config(str(tmp_path / "settings.json"))

    assert cfg == GuardConfig()
    assert cfg.max_build_attempts == 3
    assert cfg.build_tool_processes == ["MSBuild", "dotnet", "VBCSCompiler"]


def test_settings_override_defaults_and_ignore_unknown_keys(tmp_path: Path) -> None:
    path = tmp_path / "settings.json"
    path.write_text(json.dumps({
        "memory_critical_mb": 256,
        "monitor_intervals": {"STANDARD": 90},
        "legacy_option": True,
    }), encoding="utf-8")

    cfg = load_config(str(path))

    assert cfg.memory_critical_mb == 256
    assert cfg.monitor_interval_for("standard") == 90
    assert cfg.monitor_interval_for("aggressive") is None
    assert not hasattr(cfg, "legacy_option")


def test_corrupt_settings_fall_back_to_defaults(tmp_path: Path) -> None:
    path = tmp_path / "settings.json"
    path.write_text("{not json", encoding="utf-8")

    assert load_config(str(path)) == GuardConfig()


def test_save_then_load(tmp_path: Path) -> None:
    path = tmp_path / "nested" / "settings.json"
    cfg = GuardConfig(max_build_attempts=5, pipe_break_markers=["Pipe is broken"])

    assert save_config(cfg, str(path)) is True
    assert load_config(str(path)) == cfg


def test_minimal_level_is_not_monitored() -> None:
    cfg = GuardConfig()

    assert cfg.monitor_interval_for("MINIMAL") is None
    assert cfg.monitor_interval_for("EMERGENCY") == 30.0


def test_module_flags_default_to_enabled() -> None:
    cfg = GuardConfig(modules={"continuous_monitor": {"enabled": False}})

    assert cfg.is_module_enabled("continuous_monitor") is False
    assert cfg.is_module_enabled("mitigation_engine") is True


def test_protection_level_parse() -> None:
    assert ProtectionLevel.parse(" Aggressive ") == ProtectionLevel.AGGRESSIVE
    with pytest.raises(ValueError):
        ProtectionLevel.parse("paranoid")


def test_shipped_settings_match_defaults() -> None:
    shipped = Path(__file__).parent.parent / "settings.json"

    assert load_config(str(shipped)) == GuardConfig()
