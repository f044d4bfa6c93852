"""
search_list.py — project the aggregate tables into one flat, searchable list

Every entry has the same shape:
    {name, type, samples, value?, project?, tag?}
so the search box can run one exact + fuzzy pass over projects, samples, phyla,
classes, countries, regions, tags and tag values together.
"""
from __future__ import annotations

from dataclasses import asdict, dataclass
from typing import Any, Dict, List, Optional

from .metadata import features_of, taxon_total

TYPES = ("project", "sample", "phylum", "class", "country", "region", "tag", "value")

TABLES = ("by-project", "by-phylum", "by-class", "by-country", "by-region", "by-tag", "by-tag-value")


@dataclass
class SearchEntry:
    name: str
    type: str
    samples: int
    value: Optional[str] = None
    project: Optional[str] = None
    tag: Optional[str] = None

    def to_json(self) -> Dict[str, Any]:
        return {k: v for k, v in asdict(self).items() if v is not None}


def build_search_list(tables) -> List[Dict[str, Any]]:
    """tables: Aggregates or the dict from Aggregates.tables() / the written JSON files."""
    if hasattr(tables, "tables"):
        tables = tables.tables()

    out: List[SearchEntry] = []

    for p in tables.get("by-project") or []:
        samples = p.get("samples") or []
        out.append(SearchEntry(p.get("project", ""), "project", len(samples)))
        for s in samples:
            out.append(SearchEntry(s, "sample", 1, project=p.get("project")))

    for t in tables.get("by-phylum") or []:
        out.append(SearchEntry(t.get("phylum", ""), "phylum", int(taxon_total(t))))
    for t in tables.get("by-class") or []:
        out.append(SearchEntry(t.get("class", ""), "class", int(taxon_total(t))))

    for f in features_of(tables.get("by-country")):
        props = f.get("properties") or {}
        out.append(SearchEntry(props.get("country") or props.get("code", ""), "country", props.get("samples", 0)))
    for f in features_of(tables.get("by-region")):
        props = f.get("properties") or {}
        out.append(SearchEntry(props.get("region") or props.get("country") or "", "region", props.get("samples", 0)))

    for t in tables.get("by-tag") or []:
        out.append(SearchEntry(t.get("tag", ""), "tag", t.get("samples", 0)))
    for t in tables.get("by-tag-value") or []:
        out.append(SearchEntry(t.get("value", ""), "value", t.get("samples", 0),
                               value=t.get("value", ""), project=t.get("project"), tag=t.get("tag")))

    return [e.to_json() for e in out if e.name]


# ─── Pipeline step ─────────────────────────────────────────────────────────────

def search_list():
    from .exports import read_tables, write_tables
    from .utils import load_cfg

    cfg = load_cfg()
    tables = read_tables(cfg, TABLES)
    if tables.get("by-project") is None:
        raise FileNotFoundError("by-project.json missing (run data_aggregate first)")
    entries = build_search_list(tables)
    write_tables({"search-list": entries}, cfg)
    print(f"[search] wrote search-list.json ({len(entries)} entries)")
    return entries


if __name__ == "__main__":
    search_list()
