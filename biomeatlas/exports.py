"""
exports.py — write aggregate tables as the site's JSON artifacts

Each named table is written verbatim to <output_dir>/<name>.json. When
exports.csv_mirrors is true, flat CSV mirrors of the tabular aggregates are
written to <output_dir>/csv/ for debugging (geometry is left out).
"""
from __future__ import annotations

from pathlib import Path
from typing import Dict, List

import pandas as pd

from .utils import read_json, write_json

DEFAULT_OUTPUT_DIR = "public"

PRETTY = {"metadata"}


def output_dir(cfg: dict) -> Path:
    return Path(cfg.get("output_dir") or DEFAULT_OUTPUT_DIR)


def write_tables(tables: Dict[str, object], cfg: dict) -> List[Path]:
    out_dir = output_dir(cfg)
    written = [write_json(out_dir / f"{name}.json", data, pretty=name in PRETTY) for name, data in tables.items()]
    if (cfg.get("exports", {}) or {}).get("csv_mirrors", False):
        for name, data in tables.items():
            df = table_frame(name, data)
            if df is None or df.empty:
                continue
            p = out_dir / "csv" / f"{name}.csv"
            p.parent.mkdir(parents=True, exist_ok=True)
            df.to_csv(p, index=False)
    return written


def read_tables(cfg: dict, names) -> Dict[str, object]:
    out_dir = output_dir(cfg)
    return {name: read_json(out_dir / f"{name}.json") for name in names}


def table_frame(name: str, data) -> pd.DataFrame | None:
    """Flatten one table into a DataFrame (None for shapes with no tabular form)."""
    if name == "by-project":
        return pd.DataFrame(
            [{"project": d["project"], "samples": len(d["samples"])} for d in data],
            columns=["project", "samples"],
        )
    if name in ("by-country", "by-region"):
        return pd.DataFrame([f["properties"] for f in data.get("features", [])])
    if name == "by-reads":
        return pd.json_normalize(data.get("histogram", []))
    if isinstance(data, list):
        return pd.json_normalize(data)
    return None
