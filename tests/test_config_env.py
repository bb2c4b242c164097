#!/usr/bin/env python3
"""config_env YAML-first guard regressions."""

import os
import sys
import tempfile
from pathlib import Path

import pytest

sys.path.insert(0, str(Path(__file__).resolve().parents[1]))

from config_env import apply_env_overrides, get_path, load_config
from env_utils import env_value, parse_list, resolve_path, AUTOSPAWN_ROOT


def _set_env(updates: dict[str, str | None]) -> dict[str, str | None]:
    prev: dict[str, str | None] = {}
    for key, value in updates.items():
        prev[key] = os.environ.get(key)
        if value is None:
            os.environ.pop(key, None)
        else:
            os.environ[key] = value
    return prev


def _restore_env(prev: dict[str, str | None]) -> None:
    for key, value in prev.items():
        if value is None:
            os.environ.pop(key, None)
        else:
            os.environ[key] = value


def test_whitelisted_numeric_knobs_override_yaml() -> None:
    cfg = {"config": {"spawner": {"max_agents_per_token": 3, "min_capital": 0.1}}}
    prev = _set_env({
        "AUTOSPAWN_MAX_AGENTS_PER_TOKEN": "5",
        "AUTOSPAWN_MIN_CAPITAL": "0.25",
    })
    try:
        out = apply_env_overrides(cfg)
    finally:
        _restore_env(prev)

    assert out["config"]["spawner"]["max_agents_per_token"] == 5
    assert out["config"]["spawner"]["min_capital"] == pytest.approx(0.25)
    # Input is not mutated.
    assert cfg["config"]["spawner"]["max_agents_per_token"] == 3


def test_monitored_tokens_accepts_csv_and_json() -> None:
    cfg = {"config": {"monitored_tokens": ["ETH"]}}
    prev = _set_env({"AUTOSPAWN_MONITORED_TOKENS": "ETH, AERO"})
    try:
        out = apply_env_overrides(cfg)
    finally:
        _restore_env(prev)
    assert out["config"]["monitored_tokens"] == ["ETH", "AERO"]

    prev = _set_env({"AUTOSPAWN_MONITORED_TOKENS": '["BASE", "USDC"]'})
    try:
        out = apply_env_overrides(cfg)
    finally:
        _restore_env(prev)
    assert out["config"]["monitored_tokens"] == ["BASE", "USDC"]


def test_malformed_env_value_keeps_yaml_value() -> None:
    cfg = {"config": {"health": {"max_loss_pct": 20.0}}}
    prev = _set_env({"AUTOSPAWN_MAX_LOSS_PCT": "not-a-number"})
    try:
        out = apply_env_overrides(cfg)
    finally:
        _restore_env(prev)
    assert out["config"]["health"]["max_loss_pct"] == 20.0


def test_non_whitelisted_prefix_env_is_ignored() -> None:
    cfg = {"config": {"spawner": {"trade_ledger_size": 100}}}
    prev = _set_env({"AUTOSPAWN_TRADE_LEDGER_SIZE": "5"})
    try:
        out = apply_env_overrides(cfg)
    finally:
        _restore_env(prev)
    assert out["config"]["spawner"]["trade_ledger_size"] == 100


def test_dry_run_bool_override_creates_missing_section() -> None:
    prev = _set_env({"AUTOSPAWN_DRY_RUN": "false"})
    try:
        out = apply_env_overrides({})
    finally:
        _restore_env(prev)
    assert get_path(out, ("config", "executor", "dry_run")) is False


def test_load_config_reads_shipped_yaml_defaults() -> None:
    root = Path(__file__).resolve().parents[1]
    prev = _set_env({
        "AUTOSPAWN_MIN_ROI_PCT": None,
        "AUTOSPAWN_MAX_LOSS_PCT": None,
        "AUTOSPAWN_MONITORED_TOKENS": None,
    })
    try:
        cfg = load_config(root / "autospawn.yaml")
    finally:
        _restore_env(prev)
    assert get_path(cfg, ("config", "monitored_tokens")) == ["ETH", "BTC", "BASE", "USDC", "AERO"]
    assert get_path(cfg, ("config", "health", "min_roi_pct")) == -50.0
    assert get_path(cfg, ("config", "executor", "pool_fee")) == 3000


def test_load_config_missing_file_and_bad_root() -> None:
    with tempfile.TemporaryDirectory() as tmp:
        with pytest.raises(FileNotFoundError):
            load_config(Path(tmp) / "missing.yaml")
        bad = Path(tmp) / "bad.yaml"
        bad.write_text("- just\n- a list\n")
        with pytest.raises(ValueError):
            load_config(bad)


def test_env_value_parses_kinds_and_falls_back() -> None:
    prev = _set_env({
        "AUTOSPAWN_TEST_INT": " 7 ",
        "AUTOSPAWN_TEST_BOOL": "yes",
        "AUTOSPAWN_TEST_BAD": "maybe",
        "AUTOSPAWN_TEST_BLANK": "   ",
    })
    try:
        assert env_value("AUTOSPAWN_TEST_INT", "int", 0) == 7
        assert env_value("AUTOSPAWN_TEST_BOOL", "bool", False) is True
        assert env_value("AUTOSPAWN_TEST_BAD", "bool", False) is False
        assert env_value("AUTOSPAWN_TEST_BLANK", "str", "fallback") == "fallback"
        assert env_value("AUTOSPAWN_TEST_UNSET_XYZ", "float", 1.5) == 1.5
    finally:
        _restore_env({
            "AUTOSPAWN_TEST_INT": None,
            "AUTOSPAWN_TEST_BOOL": None,
            "AUTOSPAWN_TEST_BAD": None,
            "AUTOSPAWN_TEST_BLANK": None,
        })


def test_parse_list_and_relative_paths() -> None:
    assert parse_list("eth, ,aero") == ["eth", "aero"]
    with pytest.raises(ValueError):
        parse_list("[not json")
    assert resolve_path(None) is None
    assert resolve_path("state/x.jsonl") == str(Path(AUTOSPAWN_ROOT) / "state" / "x.jsonl")
    assert resolve_path("/tmp/x.jsonl") == "/tmp/x.jsonl"
