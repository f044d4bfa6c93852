"""
geo.py — world map cleanup and polygon dissolve

normalize_world_map() reduces a Natural Earth style admin-0 feature collection
(ne_110m_admin_0_countries.geojson) to the four properties the site uses:
    {region, country, code, samples: 0}

dissolve() merges N GeoJSON geometries into one (Polygon or MultiPolygon) via
shapely's unary_union.
"""
from __future__ import annotations

import copy
import re
from typing import Any, Dict, Iterable, Optional

from shapely.geometry import mapping, shape
from shapely.ops import unary_union

# property keys tried in order for the country code
CODE_KEYS = ("ISO_A2_EH", "ISO_A2", "ADM0_ISO", "ADM0_A3")
NULL_VALUES = {"-99"}


def clean(value: Any) -> str:
    """Filter out non-string and sentinel property values."""
    if not isinstance(value, str):
        return ""
    if value in NULL_VALUES:
        return ""
    return value


def start_case(value: str) -> str:
    """'united states' -> 'United States', 'southAfrica' -> 'South Africa'."""
    value = re.sub(r"([a-z0-9])([A-Z])", r"\1 \2", value or "")
    words = [w for w in re.split(r"[\W_]+", value) if w]
    return " ".join(w[:1].upper() + w[1:] for w in words)


def feature_code(props: Dict[str, Any]) -> str:
    for key in CODE_KEYS + ("code",):
        code = clean(props.get(key))
        if code:
            return code.upper()
    return ""


def normalize_feature(feature: dict, country_to_region: Dict[str, str]) -> dict:
    props = feature.get("properties") or {}
    code = feature_code(props)
    country = start_case(clean(props.get("NAME")) or clean(props.get("country")))
    region = country_to_region.get(code, "") if code else ""
    region = region or clean(props.get("region"))
    out = {k: v for k, v in feature.items() if k != "properties"}
    out["geometry"] = copy.deepcopy(feature.get("geometry"))
    out["properties"] = {"region": region, "country": country, "code": code, "samples": 0}
    return out


def normalize_world_map(collection: dict, country_to_region: Optional[Dict[str, str]] = None) -> dict:
    """
    Return a new feature collection with opt-in properties only.
    The input is not modified; running it on its own output gives the same result.
    """
    country_to_region = country_to_region or {}
    features = [normalize_feature(f, country_to_region) for f in (collection.get("features") or [])]
    out = {k: v for k, v in collection.items() if k != "features"}
    out["type"] = collection.get("type", "FeatureCollection")
    out["features"] = features
    return out


def dissolve(geometries: Iterable[Optional[dict]]) -> Optional[dict]:
    shapes = [shape(g) for g in geometries if g]
    if not shapes:
        return None
    merged = unary_union(shapes)
    return _as_lists(mapping(merged))


def _as_lists(obj):
    # shapely's mapping() returns nested tuples; keep output json-shaped
    if isinstance(obj, dict):
        return {k: _as_lists(v) for k, v in obj.items()}
    if isinstance(obj, (list, tuple)):
        return [_as_lists(v) for v in obj]
    return obj
