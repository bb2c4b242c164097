#!/usr/bin/env python3
"""Shared JSONL append helpers."""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any, Dict, List


def append_jsonl(path: str, record: Dict[str, Any]) -> bool:
    """JSONL append with parent directory creation. Returns False on I/O failure."""
    try:
        p = Path(path)
        p.parent.mkdir(parents=True, exist_ok=True)
        with p.open("a", encoding="utf-8") as f:
            f.write(json.dumps(record, separators=(",", ":"), ensure_ascii=False, default=str) + "\n")
        return True
    except OSError:
        return False


def read_jsonl(path: str) -> List[Dict[str, Any]]:
    """Read every well-formed object line; malformed lines are skipped."""
    p = Path(path)
    if not p.exists():
        return []
    out: List[Dict[str, Any]] = []
    with p.open("r", encoding="utf-8") as f:
        for line in f:
            line = line.strip()
            if not line:
                continue
            try:
                obj = json.loads(line)
            except json.JSONDecodeError:
                continue
            if isinstance(obj, dict):
                out.append(obj)
    return out
