"""
metadata.py — summary counts + provenance for the site header

derive_metadata() reduces the aggregate tables to headline counts and merges in
provenance (version, date, downloads, views, size) from the dataset's record on
the archive API (a Zenodo-style record JSON).

Config
------
services:
  record_api: https://zenodo.org/api/records/<id>
inputs:
  record: data/raw/record.json          # written by data_fetch
metadata:
  refresh: true                          # re-query record_api for live counts
"""
from __future__ import annotations

from typing import Any, Dict, Optional

import requests

from .utils import parse_number

VOLATILE = ("version", "date", "url", "downloads", "views", "size")

TABLES = ("by-project", "by-phylum", "by-class", "by-country", "by-region", "by-tag")


def features_of(table) -> list:
    if isinstance(table, dict):
        return table.get("features") or []
    return table or []


def taxon_total(entry: dict) -> float:
    samples = entry.get("samples")
    if isinstance(samples, dict):
        return parse_number(samples.get("total"))
    return parse_number(samples)


def derive_metadata(tables, record: Optional[dict] = None) -> Dict[str, Any]:
    """
    tables: Aggregates, or the dict from Aggregates.tables() / the written JSON files
    record: archive record JSON (optional)
    """
    if hasattr(tables, "tables"):
        tables = tables.tables()

    by_project = tables.get("by-project") or []
    meta: Dict[str, Any] = {
        "projects": len(by_project),
        "samples": sum(len(p.get("samples") or []) for p in by_project),
        "phyla": sum(1 for t in tables.get("by-phylum") or [] if taxon_total(t)),
        "classes": sum(1 for t in tables.get("by-class") or [] if taxon_total(t)),
        "countries": sum(1 for f in features_of(tables.get("by-country")) if (f.get("properties") or {}).get("samples")),
        "regions": sum(1 for f in features_of(tables.get("by-region")) if (f.get("properties") or {}).get("samples")),
        "tags": len(tables.get("by-tag") or []),
    }
    meta.update({k: None for k in VOLATILE})
    if record:
        refresh_provenance(meta, record)
    return meta


def record_provenance(record: dict) -> Dict[str, Any]:
    md = record.get("metadata") or {}
    stats = record.get("stats") or {}
    links = record.get("links") or {}
    doi = record.get("doi") or md.get("doi") or ""
    files = record.get("files") or []
    return {
        "version": md.get("version") or "",
        "date": md.get("publication_date") or record.get("created") or "",
        "url": links.get("doi") or (f"https://doi.org/{doi}" if doi else ""),
        "downloads": int(parse_number(stats.get("downloads"))),
        "views": int(parse_number(stats.get("views"))),
        "size": int(sum(parse_number(f.get("size")) for f in files if isinstance(f, dict))),
    }


def refresh_provenance(meta: Dict[str, Any], record: dict) -> Dict[str, Any]:
    """Overwrite only the volatile fields; counts stay as derived."""
    meta.update(record_provenance(record))
    return meta


def fetch_record(url: str, timeout: float = 60, session: Optional[requests.Session] = None) -> dict:
    """GET the record JSON; a non-OK response raises right away (no retries)."""
    http = session or requests
    r = http.get(url, timeout=timeout, allow_redirects=True)
    r.raise_for_status()
    return r.json()


# ─── Pipeline step ─────────────────────────────────────────────────────────────

def data_metadata():
    from .exports import read_tables, write_tables
    from .utils import cfg_path, load_cfg, read_json

    cfg = load_cfg()
    tables = read_tables(cfg, TABLES)
    missing = [name for name, data in tables.items() if data is None and name != "by-tag"]
    if missing:
        raise FileNotFoundError(f"missing aggregate tables: {', '.join(missing)} (run data_aggregate first)")

    record = read_json(cfg_path(cfg, "inputs", "record", default="data/raw/record.json"), None)
    meta = derive_metadata(tables, record)

    url = (cfg.get("services", {}) or {}).get("record_api")
    if url and (cfg.get("metadata", {}) or {}).get("refresh", False):
        print(f"[metadata] Refreshing provenance from {url}")
        refresh_provenance(meta, fetch_record(url, timeout=cfg.get("timeout", 60)))

    write_tables({"metadata": meta}, cfg)
    print(f"[metadata] {meta['projects']} projects, {meta['samples']} samples, "
          f"{meta['phyla']} phyla, {meta['classes']} classes, {meta['countries']} countries")
    return meta


if __name__ == "__main__":
    data_metadata()
