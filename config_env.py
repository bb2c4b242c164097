"""Load autospawn.yaml and apply whitelisted env overrides.

YAML is the source of truth. Only the operator knobs in _OVERRIDES can be
changed from the environment; other AUTOSPAWN_* names are reported once and
ignored.
"""

from __future__ import annotations

import os
from copy import deepcopy
from pathlib import Path
from typing import Any, Dict, List, Tuple

import yaml

from env_utils import env_value
from logging_utils import get_logger


PathKey = Tuple[str, ...]

# (env name, config path, kind)
_OVERRIDES: List[Tuple[str, PathKey, str]] = [
    ("AUTOSPAWN_MONITORED_TOKENS", ("config", "monitored_tokens"), "list"),
    ("AUTOSPAWN_MONITOR_INTERVAL_SEC", ("config", "spawner", "monitor_interval_sec"), "float"),
    ("AUTOSPAWN_MIN_CAPITAL", ("config", "spawner", "min_capital"), "float"),
    ("AUTOSPAWN_MAX_CAPITAL", ("config", "spawner", "max_capital"), "float"),
    ("AUTOSPAWN_MIN_SENTIMENT", ("config", "spawner", "min_sentiment"), "float"),
    ("AUTOSPAWN_MIN_CONFIDENCE", ("config", "spawner", "min_confidence"), "float"),
    ("AUTOSPAWN_MAX_AGENTS_PER_TOKEN", ("config", "spawner", "max_agents_per_token"), "int"),
    ("AUTOSPAWN_HEALTH_CHECK_INTERVAL_SEC", ("config", "health", "check_interval_sec"), "float"),
    ("AUTOSPAWN_MAX_LOSS_PCT", ("config", "health", "max_loss_pct"), "float"),
    ("AUTOSPAWN_MAX_INACTIVITY_HOURS", ("config", "health", "max_inactivity_hours"), "float"),
    ("AUTOSPAWN_MIN_ROI_PCT", ("config", "health", "min_roi_pct"), "float"),
    ("AUTOSPAWN_DRY_RUN", ("config", "executor", "dry_run"), "bool"),
    ("BASE_RPC_URL", ("config", "executor", "rpc_url"), "str"),
    ("AUTOSPAWN_AUDIT_LOG", ("config", "audit", "termination_log"), "str"),
    ("OPENAI_MAX_TOKENS", ("config", "analysis", "max_tokens"), "int"),
]

ALLOWED_ENV_OVERRIDES = frozenset(name for name, _, _ in _OVERRIDES)

# Prefixed names read directly by env_utils / logging_utils / main.
_PROCESS_ENV_NAMES = frozenset({
    "AUTOSPAWN_ROOT",
    "AUTOSPAWN_RUNTIME_DIR",
    "AUTOSPAWN_CONFIG_PATH",
    "AUTOSPAWN_LOG_LEVEL",
    "AUTOSPAWN_PRIVATE_KEY",
})

_LOG = get_logger("config_env")
_reported_ignored: set = set()


def get_path(cfg: Dict[str, Any], path: PathKey, default: Any = None) -> Any:
    node: Any = cfg
    for key in path:
        if not isinstance(node, dict) or key not in node:
            return default
        node = node[key]
    return node


def _set_path(cfg: Dict[str, Any], path: PathKey, value: Any) -> None:
    *parents, leaf = path
    node = cfg
    for key in parents:
        child = node.get(key)
        if not isinstance(child, dict):
            child = node[key] = {}
        node = child
    node[leaf] = value


def _report_ignored() -> None:
    ignored = sorted(
        name
        for name in os.environ
        if name.startswith("AUTOSPAWN_")
        and name not in ALLOWED_ENV_OVERRIDES
        and name not in _PROCESS_ENV_NAMES
        and name not in _reported_ignored
    )
    if not ignored:
        return
    _reported_ignored.update(ignored)
    _LOG.warning(f"Ignoring non-whitelisted env overrides (YAML-first): {', '.join(ignored)}")


def apply_env_overrides(config: Dict[str, Any]) -> Dict[str, Any]:
    """Return a copy of *config* with whitelisted env values applied.

    A malformed value keeps whatever the YAML had.
    """
    cfg = deepcopy(config) if config else {}
    for name, path, kind in _OVERRIDES:
        value = env_value(name, kind, get_path(cfg, path))
        if value is not None:
            _set_path(cfg, path, value)
    _report_ignored()
    return cfg


def load_config(path: Path) -> Dict[str, Any]:
    """Load YAML config from path and apply env overrides."""
    path = Path(path)
    if not path.is_file():
        raise FileNotFoundError(f"Config not found: {path}")
    raw = yaml.safe_load(path.read_text()) or {}
    if not isinstance(raw, dict):
        raise ValueError(f"Config root must be a mapping, got {type(raw).__name__}: {path}")
    return apply_env_overrides(raw)
