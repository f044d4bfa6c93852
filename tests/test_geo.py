import copy

from shapely.geometry import shape

from biomeatlas.geo import clean, dissolve, feature_code, normalize_world_map, start_case
from conftest import square


def natural_earth(**props):
    return {"type": "Feature", "properties": props, "geometry": square(0, 0)}


def test_clean_drops_sentinels():
    assert clean("-99") == ""
    assert clean(None) == ""
    assert clean(12) == ""
    assert clean("FR") == "FR"


def test_code_falls_back_through_keys():
    assert feature_code({"ISO_A2_EH": "-99", "ISO_A2": "-99", "ADM0_ISO": "nor"}) == "NOR"
    assert feature_code({"ISO_A2_EH": "FR", "ISO_A2": "-99"}) == "FR"
    assert feature_code({"ISO_A2": "-99"}) == ""


def test_start_case():
    assert start_case("united states") == "United States"
    assert start_case("southAfrica") == "South Africa"
    assert start_case("Bosnia_and_Herz.") == "Bosnia And Herz"


def test_normalize_keeps_only_site_properties():
    collection = {
        "type": "FeatureCollection",
        "features": [
            natural_earth(ISO_A2_EH="FR", NAME="france", POP_EST=67000000),
            natural_earth(ISO_A2="-99", ADM0_A3="KOS", NAME="Kosovo"),
        ],
    }
    before = copy.deepcopy(collection)
    out = normalize_world_map(collection, {"FR": "Europe"})

    assert collection == before
    fr, kos = out["features"]
    assert fr["properties"] == {"region": "Europe", "country": "France", "code": "FR", "samples": 0}
    assert kos["properties"] == {"region": "", "country": "Kosovo", "code": "KOS", "samples": 0}


def test_normalize_is_idempotent():
    collection = {"type": "FeatureCollection", "features": [natural_earth(ISO_A2="DE", NAME="Germany")]}
    once = normalize_world_map(collection, {"DE": "Europe"})
    assert normalize_world_map(once, {"DE": "Europe"}) == once
    assert normalize_world_map(once) == once


def test_dissolve_adjacent_squares_merges():
    merged = dissolve([square(0, 0), square(1, 0)])
    assert merged["type"] == "Polygon"
    assert shape(merged).area == 2.0
    assert isinstance(merged["coordinates"], list)


def test_dissolve_disjoint_squares_multipolygon():
    merged = dissolve([square(0, 0), None, square(5, 5)])
    assert merged["type"] == "MultiPolygon"
    assert shape(merged).area == 2.0


def test_dissolve_nothing():
    assert dissolve([]) is None
    assert dissolve([None]) is None
