"""
aggregator.py — single-pass aggregation of the compendium tables

What it does
------------
1) Seeds country and region features from the normalized world map. Countries that
   share a region are dissolved into one region geometry (each country once).
2) Parses the taxonomic header: one {kingdom, phylum, class} per data column,
   from column names like "Bacteria.Firmicutes.Bacilli".
3) Walks the taxonomic table and the sample metadata table in lockstep
   (row N of one belongs to row N of the other) and counts:
     - samples per project
     - samples per country / region
     - samples per phylum / class, at most once per sample per taxon,
       broken down by country code and region
     - total reads per sample (sum of the taxonomic cells)
4) Bins total reads into a log-spaced histogram (overall + per country/region).
5) Optionally streams the tag table (project, ?, sample, tag, value) into
   per-tag and per-(tag, value, project) counts.
6) Sorts every table for display.

Inputs (from config/pipeline_config.yaml)
-----------------------------------------
inputs:
  taxonomic:  data/raw/taxonomic_table.csv
  metadata:   data/raw/sample_metadata.tsv
  tags:       data/raw/sample_tags.tsv          # optional
  world_map:  data/raw/world.geojson            # written by data_fetch
  country_to_region: config/country-to-region.json
aggregate:
  bins: 50
  row_limit: 10000000
  metadata_columns: {sample: 0, project: 1, country_code: -2, region: -1, header: true}

Outputs
-------
<output_dir>/by-project.json, by-phylum.json, by-class.json, by-country.json,
by-region.json, by-reads.json, by-tag.json, by-tag-value.json

CLI / Pipeline
--------------
    python -m biomeatlas.main --call data_aggregate
    python -m biomeatlas.aggregator
"""
from __future__ import annotations

import copy
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional, Tuple

from .geo import dissolve
from .histogram import DEFAULT_BINS, ReadsHistogram, reads_histogram
from .streams import Row, paired_rows
from .utils import Throttle, inc, parse_number

NA = "NA"
TAXON_COLUMN_OFFSET = 2
ROW_LIMIT = 10_000_000


# ==========================
# Records
# ==========================

@dataclass
class TaxonAggregate:
    kingdom: str
    phylum: str
    class_: str = ""
    samples: Dict[str, int] = field(default_factory=lambda: {"total": 0})

    @property
    def total(self) -> int:
        return self.samples.get("total", 0)

    def count(self, keys: Iterable[str]):
        inc(self.samples, "total")
        for key in keys:
            inc(self.samples, key)

    def to_json(self) -> dict:
        return {"kingdom": self.kingdom, "phylum": self.phylum, "class": self.class_, "samples": self.samples}


@dataclass
class GeoFeature:
    code: str
    country: str
    region: str
    samples: int = 0
    geometry: Optional[dict] = None

    @property
    def name(self) -> str:
        return self.country or self.region or self.code

    def to_json(self) -> dict:
        return {
            "type": "Feature",
            "properties": {"region": self.region, "country": self.country, "code": self.code, "samples": self.samples},
            "geometry": self.geometry,
        }


@dataclass
class ProjectAggregate:
    project: str
    samples: List[str] = field(default_factory=list)

    def to_json(self) -> dict:
        return {"project": self.project, "samples": self.samples}


@dataclass
class TagAggregate:
    tag: str
    projects: int = 0
    samples: int = 0

    def to_json(self) -> dict:
        return {"tag": self.tag, "projects": self.projects, "samples": self.samples}


@dataclass
class TagValueAggregate:
    tag: str
    value: str
    project: str
    samples: int = 0

    def to_json(self) -> dict:
        return {"tag": self.tag, "value": self.value, "project": self.project, "samples": self.samples}


@dataclass
class SampleRecord:
    sample: str
    project: str
    country_code: str = ""
    region: str = ""

    @property
    def keys(self) -> List[str]:
        """Non-empty, distinct geographic breakdown keys."""
        return list(dict.fromkeys(k for k in (self.country_code, self.region) if k))


@dataclass
class MetadataColumns:
    """Column positions in the sample metadata table (negative = from the end)."""
    sample: int = 0
    project: int = 1
    country_code: int = -2
    region: int = -1
    header: bool = True

    @classmethod
    def from_cfg(cls, d: Optional[dict]) -> "MetadataColumns":
        d = d or {}
        known = {k: d[k] for k in ("sample", "project", "country_code", "region", "header") if k in d}
        return cls(**known)

    def record(self, row: Row) -> SampleRecord:
        def at(i: int) -> str:
            try:
                return (row[i] or "").strip()
            except IndexError:
                return ""
        return SampleRecord(
            sample=at(self.sample),
            project=at(self.project),
            country_code=at(self.country_code).upper(),
            region=at(self.region),
        )


Taxon = Tuple[str, str, str]


@dataclass
class Aggregates:
    by_project: List[ProjectAggregate] = field(default_factory=list)
    by_phylum: List[TaxonAggregate] = field(default_factory=list)
    by_class: List[TaxonAggregate] = field(default_factory=list)
    by_country: List[GeoFeature] = field(default_factory=list)
    by_region: List[GeoFeature] = field(default_factory=list)
    by_reads: ReadsHistogram = field(default_factory=ReadsHistogram)
    by_tag: List[TagAggregate] = field(default_factory=list)
    by_tag_value: List[TagValueAggregate] = field(default_factory=list)

    def tables(self) -> Dict[str, object]:
        """JSON-ready tables keyed by output name."""
        return {
            "by-project": [p.to_json() for p in self.by_project],
            "by-phylum": [t.to_json() for t in self.by_phylum],
            "by-class": [t.to_json() for t in self.by_class],
            "by-country": feature_collection(self.by_country),
            "by-region": feature_collection(self.by_region),
            "by-reads": self.by_reads.to_json(),
            "by-tag": [t.to_json() for t in self.by_tag],
            "by-tag-value": [t.to_json() for t in self.by_tag_value],
        }


def feature_collection(features: Iterable[GeoFeature]) -> dict:
    return {"type": "FeatureCollection", "features": [f.to_json() for f in features]}


# ==========================
# Header / geography
# ==========================

def parse_taxon(name: str) -> Optional[Taxon]:
    """'Bacteria.Firmicutes.Bacilli' -> (kingdom, phylum, class); None if the taxon is NA."""
    parts = (name or "").strip().split(".")
    parts = (parts + ["", "", ""])[:3]
    specific = next((p for p in reversed(parts) if p), "")
    if specific == NA:
        return None
    kingdom, phylum, class_ = ("" if p == NA else p for p in parts)
    return kingdom, phylum, class_


def parse_taxon_header(header: Row) -> List[Optional[Taxon]]:
    return [parse_taxon(cell) for cell in header[TAXON_COLUMN_OFFSET:]]


def seed_geography(world_map: dict) -> Tuple[Dict[str, GeoFeature], Dict[str, GeoFeature]]:
    """
    Country features keyed by code, region features keyed by region name.
    A country without a region stands in as its own region (keyed by code).
    """
    by_country: Dict[str, GeoFeature] = {}
    by_region: Dict[str, GeoFeature] = {}
    dissolved = set()

    for feature in (world_map or {}).get("features") or []:
        props = feature.get("properties") or {}
        code = props.get("code") or ""
        country = props.get("country") or ""
        region = props.get("region") or ""
        key = code or country
        if not key:
            continue
        geometry = feature.get("geometry")

        by_country[key] = GeoFeature(code=code, country=country, region=region, geometry=copy.deepcopy(geometry))

        region_key = region or key
        existing = by_region.get(region_key)
        if existing is None:
            by_region[region_key] = GeoFeature(
                code="" if region else code,
                country="" if region else country,
                region=region,
                geometry=copy.deepcopy(geometry),
            )
            dissolved.add(key)
        elif key not in dissolved:
            existing.geometry = dissolve([existing.geometry, geometry])
            dissolved.add(key)

    return by_country, by_region


# ==========================
# Counting
# ==========================

def count_taxa(
    row: Row,
    header: List[Optional[Taxon]],
    record: SampleRecord,
    by_phylum: Dict[str, TaxonAggregate],
    by_class: Dict[str, TaxonAggregate],
) -> float:
    """Count one sample toward every taxon present in it; return its total reads."""
    phylum_counted = set()
    class_counted = set()
    keys = record.keys
    total = 0.0

    for taxon, cell in zip(header, row[TAXON_COLUMN_OFFSET:]):
        if taxon is None:
            continue
        value = parse_number(cell)
        if value <= 0:
            continue
        total += value
        kingdom, phylum, class_ = taxon

        if phylum not in phylum_counted:
            by_phylum.setdefault(phylum, TaxonAggregate(kingdom, phylum)).count(keys)
            phylum_counted.add(phylum)

        if class_ not in class_counted:
            by_class.setdefault(class_, TaxonAggregate(kingdom, phylum, class_)).count(keys)
            class_counted.add(class_)

    return total


def count_tags(rows: Iterable[Row], *, limit: int = ROW_LIMIT) -> Tuple[List[TagAggregate], List[TagValueAggregate]]:
    rows = iter(rows)
    next(rows, None)  # header

    projects: Dict[str, set] = {}
    samples: Dict[str, set] = {}
    values: Dict[Tuple[str, str, str], int] = {}

    for n, row in enumerate(rows):
        if n >= limit:
            print(f"[aggregate] WARN tag table hit row limit {limit}; stopping early")
            break
        project, _, sample, tag, value = ((row or []) + [""] * 5)[:5]
        tag = tag.strip()
        if not tag:
            continue
        projects.setdefault(tag, set()).add(project)
        samples.setdefault(tag, set()).add(sample)
        vkey = (tag, value.strip(), project)
        values[vkey] = values.get(vkey, 0) + 1

    by_tag = [TagAggregate(tag, len(projects[tag]), len(samples[tag])) for tag in projects]
    by_tag_value = [TagValueAggregate(t, v, p, n) for (t, v, p), n in values.items()]
    return rank_tags(by_tag), rank_tag_values(by_tag_value)


# ==========================
# Ranking
# ==========================

def rank_projects(projects: Iterable[ProjectAggregate]) -> List[ProjectAggregate]:
    return sorted(projects, key=lambda p: (-len(p.samples), p.project))


def rank_taxa(taxa: Iterable[TaxonAggregate], level: str) -> List[TaxonAggregate]:
    """Drop the unnamed entry, then order by samples.total desc, name asc."""
    name = (lambda t: t.class_) if level == "class" else (lambda t: t.phylum)
    return sorted((t for t in taxa if name(t)), key=lambda t: (-t.total, name(t)))


def rank_features(features: Iterable[GeoFeature]) -> List[GeoFeature]:
    return sorted(features, key=lambda f: (-f.samples, f.name))


def rank_tags(tags: Iterable[TagAggregate]) -> List[TagAggregate]:
    return sorted(tags, key=lambda t: (-t.samples, t.tag))


def rank_tag_values(values: Iterable[TagValueAggregate]) -> List[TagValueAggregate]:
    return sorted(values, key=lambda t: (-t.samples, t.tag, t.value, t.project))


# ==========================
# Main pass
# ==========================

def aggregate(
    taxonomic_rows: Iterable[Row],
    metadata_rows: Iterable[Row],
    world_map: dict,
    tag_rows: Optional[Iterable[Row]] = None,
    *,
    bins: int = DEFAULT_BINS,
    row_limit: int = ROW_LIMIT,
    columns: Optional[MetadataColumns] = None,
    verbose: bool = False,
    throttle: Optional[Throttle] = None,
) -> Aggregates:
    """
    taxonomic_rows: header + one row per sample (sample id, project marker, taxon cells...)
    metadata_rows:  [header +] one row per sample, same order as taxonomic_rows
    world_map:      normalized feature collection (geo.normalize_world_map)
    tag_rows:       optional header + (project, ?, sample, tag, value) rows
    """
    columns = columns or MetadataColumns()
    throttle = throttle or Throttle()

    by_country, by_region = seed_geography(world_map)

    tax = iter(taxonomic_rows)
    header = parse_taxon_header(next(tax, []))
    meta = iter(metadata_rows)
    if columns.header:
        next(meta, None)

    by_project: Dict[str, ProjectAggregate] = {}
    by_phylum: Dict[str, TaxonAggregate] = {}
    by_class: Dict[str, TaxonAggregate] = {}
    totals: Dict[str, float] = {}
    groups: Dict[str, List[str]] = {}

    pairs = paired_rows(tax, meta, limit=row_limit)
    for tax_row, meta_row in pairs:
        if meta_row is not None:
            record = columns.record(meta_row)
        else:
            record = SampleRecord(sample="", project="")
        if tax_row is not None and not record.sample:
            record.sample = (tax_row[0] if tax_row else "").strip()

        country = by_country.get(record.country_code)
        if country is not None:
            country.samples += 1
            if not record.region:
                record.region = country.region
        region_key = record.region or record.country_code
        if region_key in by_region:
            by_region[region_key].samples += 1

        if record.project:
            by_project.setdefault(record.project, ProjectAggregate(record.project)).samples.append(record.sample)

        if tax_row is not None:
            sample_key = record.sample or f"row{pairs.count}"
            totals[sample_key] = count_taxa(tax_row, header, record, by_phylum, by_class)
            groups[sample_key] = record.keys

        if verbose and throttle.ready("aggregate"):
            print(f"[aggregate] Row {pairs.count}")

    if pairs.limit_reached:
        print(f"[aggregate] WARN hit row limit {row_limit}; stopping early (malformed input?)")

    if verbose:
        print(f"[aggregate] {pairs.count} rows, {len(by_project)} projects, "
              f"{len(by_phylum)} phyla, {len(by_class)} classes")

    by_tag: List[TagAggregate] = []
    by_tag_value: List[TagValueAggregate] = []
    if tag_rows is not None:
        by_tag, by_tag_value = count_tags(tag_rows, limit=row_limit)
        if verbose:
            print(f"[aggregate] {len(by_tag)} tags, {len(by_tag_value)} tag values")

    return Aggregates(
        by_project=rank_projects(by_project.values()),
        by_phylum=rank_taxa(by_phylum.values(), "phylum"),
        by_class=rank_taxa(by_class.values(), "class"),
        by_country=rank_features(by_country.values()),
        by_region=rank_features(by_region.values()),
        by_reads=reads_histogram(totals, groups, bins=bins),
        by_tag=by_tag,
        by_tag_value=by_tag_value,
    )


# ==========================
# Pipeline step
# ==========================

def data_aggregate():
    """
    Reads the raw tables + world map named in config, writes the by-* JSON files.
    """
    from .exports import write_tables
    from .geo import normalize_world_map
    from .streams import DelimitedReader
    from .utils import cfg_path, load_cfg, read_json, require_file

    cfg = load_cfg()
    verbose = cfg.get("verbose", True)
    inputs = cfg.get("inputs", {}) or {}
    agg_cfg = cfg.get("aggregate", {}) or {}

    taxonomic = require_file(cfg_path(cfg, "inputs", "taxonomic"), "inputs.taxonomic")
    metadata = require_file(cfg_path(cfg, "inputs", "metadata"), "inputs.metadata")
    world_path = require_file(cfg_path(cfg, "inputs", "world_map"), "inputs.world_map")
    c2r_path = require_file(cfg_path(cfg, "inputs", "country_to_region"), "inputs.country_to_region")

    tags = None
    if inputs.get("tags"):
        tags_path = cfg_path(cfg, "inputs", "tags")
        if tags_path.exists():
            tags = DelimitedReader(tags_path)
        else:
            print(f"[aggregate] SKIP tags: {tags_path} not found.")

    print("[aggregate] Cleaning world map data")
    world_map = normalize_world_map(read_json(world_path, {}), read_json(c2r_path, {}))

    print("[aggregate] Streaming taxonomic + sample metadata tables")
    result = aggregate(
        DelimitedReader(taxonomic),
        DelimitedReader(metadata),
        world_map,
        tags,
        bins=int(agg_cfg.get("bins", DEFAULT_BINS)),
        row_limit=int(agg_cfg.get("row_limit", ROW_LIMIT)),
        columns=MetadataColumns.from_cfg(agg_cfg.get("metadata_columns")),
        verbose=verbose,
    )

    written = write_tables(result.tables(), cfg)
    print(f"[aggregate] wrote {', '.join(p.name for p in written)}")
    return result


if __name__ == "__main__":
    data_aggregate()
