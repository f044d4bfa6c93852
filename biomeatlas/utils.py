"""
utils.py — shared helpers for the pipeline steps

Config
------
CONFIG_PATH : path to pipeline_config.yaml (default: config/pipeline_config.yaml)
Every step calls load_cfg() itself so steps can also run ad-hoc
(python -m biomeatlas.<module>) without the driver.
"""
from __future__ import annotations

import json
import os
import time
from pathlib import Path
from typing import Any, Dict, Optional, Union

import yaml

DEFAULT_CONFIG = "config/pipeline_config.yaml"


# ─── Config ────────────────────────────────────────────────────────────────────

def load_cfg(path: Optional[Union[str, Path]] = None) -> dict:
    cfg_path = path or os.getenv("CONFIG_PATH", DEFAULT_CONFIG)
    with open(cfg_path, "r") as f:
        return yaml.safe_load(f) or {}


def cfg_path(cfg: dict, *keys: str, default: Optional[str] = None) -> Path:
    """Resolve a nested config key to a Path; raise naming the key if unset."""
    node: Any = cfg
    for k in keys:
        node = (node or {}).get(k) if isinstance(node, dict) else None
    if not node:
        if default is None:
            raise FileNotFoundError(f"config key {'.'.join(keys)!r} is not set")
        node = default
    return Path(node)


def require_file(path: Path, key: str) -> Path:
    if not path.exists():
        raise FileNotFoundError(f"{key}: {path} not found (run data_fetch first or fix the config)")
    return path


# ─── JSON I/O ──────────────────────────────────────────────────────────────────

def read_json(path: Union[str, Path], default=None):
    path = Path(path)
    if not path.exists():
        return default
    with open(path, "r", encoding="utf-8") as f:
        return json.load(f)


def write_json(path: Union[str, Path], obj: Any, pretty: bool = False) -> Path:
    """Atomic write (tmp file + replace); compact unless pretty."""
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    tmp = path.with_name(path.name + ".tmp")
    with open(tmp, "w", encoding="utf-8") as f:
        if pretty:
            json.dump(obj, f, ensure_ascii=False, indent=2)
        else:
            json.dump(obj, f, ensure_ascii=False, separators=(",", ":"))
    os.replace(tmp, path)
    return path


# ─── Parsing ───────────────────────────────────────────────────────────────────

def parse_number(x: Any, default: float = 0.0) -> float:
    """Best-effort numeric cell; blanks, text and NaN become default."""
    if x is None:
        return default
    try:
        v = float(str(x).strip())
    except ValueError:
        return default
    if v != v or v in (float("inf"), float("-inf")):
        return default
    return v


def inc(d: Dict[str, int], k: str, n: int = 1):
    d[k] = d.get(k, 0) + n


# ─── Progress ──────────────────────────────────────────────────────────────────

class Throttle:
    """Rate limiter for progress prints, one per run (not shared between runs)."""

    def __init__(self, interval: float = 1.0, clock=time.monotonic):
        self.interval = interval
        self._clock = clock
        self._last: Dict[str, float] = {}

    def ready(self, key: str) -> bool:
        now = self._clock()
        last = self._last.get(key)
        if last is None or now >= last + self.interval:
            self._last[key] = now
            return True
        return False
