"""Environment access for autospawn: .env loading, typed parsing, runtime paths."""

from __future__ import annotations

import json
import os
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional

from dotenv import load_dotenv


# Secrets (signer, API keys) live in .env next to the code.
load_dotenv(Path(__file__).parent / ".env")


_TRUE = {"1", "true", "yes", "y", "on"}
_FALSE = {"0", "false", "no", "n", "off"}


def env_str(name: str, default: Optional[str] = None) -> Optional[str]:
    """Stripped value of *name*; *default* when unset or blank."""
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    return raw.strip()


def parse_bool(raw: str) -> bool:
    value = raw.strip().lower()
    if value in _TRUE:
        return True
    if value in _FALSE:
        return False
    raise ValueError(f"not a boolean: {raw!r}")


def parse_list(raw: str) -> List[str]:
    """JSON array or comma separated symbols."""
    raw = raw.strip()
    if raw.startswith("["):
        parsed = json.loads(raw)
        if not isinstance(parsed, list):
            raise ValueError(f"not a list: {raw!r}")
        return [str(p).strip() for p in parsed if str(p).strip()]
    parts = [p.strip() for p in raw.split(",") if p.strip()]
    if not parts:
        raise ValueError("empty list")
    return parts


_PARSERS: Dict[str, Callable[[str], Any]] = {
    "str": str,
    "int": int,
    "float": float,
    "bool": parse_bool,
    "list": parse_list,
    "json": json.loads,
}


def env_value(name: str, kind: str = "str", default: Any = None) -> Any:
    """Typed read of *name*. Unset, blank or unparseable values give *default*."""
    raw = env_str(name)
    if raw is None:
        return default
    try:
        return _PARSERS[kind](raw)
    except (TypeError, ValueError):
        return default


def _resolve_root() -> Path:
    here = Path(__file__).resolve().parent
    root = Path(env_str("AUTOSPAWN_ROOT", str(here))).expanduser()
    if not root.is_absolute():
        root = (here / root).resolve()
    return root


AUTOSPAWN_ROOT = str(_resolve_root())
AUTOSPAWN_RUNTIME_DIR = env_str("AUTOSPAWN_RUNTIME_DIR", str(Path(AUTOSPAWN_ROOT) / "state"))
AUTOSPAWN_CONFIG_PATH = env_str("AUTOSPAWN_CONFIG_PATH", str(Path(AUTOSPAWN_ROOT) / "autospawn.yaml"))


def resolve_path(raw: Optional[str]) -> Optional[str]:
    """Anchor relative config paths at AUTOSPAWN_ROOT."""
    if not raw:
        return None
    path = Path(raw).expanduser()
    if not path.is_absolute():
        path = Path(AUTOSPAWN_ROOT) / path
    return str(path)
