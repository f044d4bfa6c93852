import argparse
import json

import pytest

from biomeatlas import main as driver


def plan(**kw):
    args = argparse.Namespace(all=False, until=None, call=None)
    vars(args).update(kw)
    return driver._resolve_plan(args)


def test_resolve_plan():
    assert plan(all=True) == driver.DEFAULT_ORDER
    assert plan(until="data_metadata") == ["data_fetch", "data_aggregate", "data_metadata"]
    assert plan(call="data_aggregate, search_list,") == ["data_aggregate", "search_list"]


def test_resolve_plan_rejects_bad_until():
    with pytest.raises(SystemExit) as exc:
        plan(until="nope")
    assert exc.value.code == 2


def test_missing_config_exits_2(tmp_path, monkeypatch):
    monkeypatch.setenv("CONFIG_PATH", str(tmp_path / "absent.yaml"))
    with pytest.raises(SystemExit) as exc:
        driver.main(["--all"])
    assert exc.value.code == 2


def test_unknown_step_exits_2(cfg_file):
    cfg_file()
    with pytest.raises(SystemExit) as exc:
        driver.main(["--call", "data_bogus"])
    assert exc.value.code == 2


def test_continue_on_error(cfg_file, monkeypatch):
    cfg_file()
    ran = []

    def boom():
        ran.append("data_fetch")
        raise RuntimeError("offline")

    steps = {name: (lambda name=name: ran.append(name)) for name in driver.DEFAULT_ORDER}
    steps["data_fetch"] = boom
    monkeypatch.setattr(driver, "_load_step_funcs", lambda: steps)

    with pytest.raises(SystemExit) as exc:
        driver.main(["--all"])
    assert exc.value.code == 1
    assert ran == ["data_fetch"]

    ran.clear()
    with pytest.raises(SystemExit) as exc:
        driver.main(["--all", "--continue-on-error"])
    assert exc.value.code == 1
    assert ran == driver.DEFAULT_ORDER


def test_pipeline_end_to_end(tmp_path, cfg_file):
    raw = tmp_path / "raw"
    raw.mkdir()
    (raw / "taxonomic_table.csv").write_text(
        "sample,project,Bacteria.Firmicutes.Bacilli,Bacteria.Bacteroidota.\n"
        "S1,P1,5,0\n"
        "S2,P1,0,3\n"
    )
    (raw / "sample_metadata.tsv").write_text(
        "sample\tproject\tcountry\tregion\n"
        "S1\tP1\tUS\tNorthAmerica\n"
        "S2\tP1\tFR\tEurope\n"
    )
    square = {"type": "Polygon", "coordinates": [[[0, 0], [1, 0], [1, 1], [0, 1], [0, 0]]]}
    world = {
        "type": "FeatureCollection",
        "features": [
            {"type": "Feature", "properties": {"ISO_A2_EH": "US", "NAME": "United States"}, "geometry": square},
            {"type": "Feature", "properties": {"ISO_A2_EH": "FR", "NAME": "France"}, "geometry": square},
        ],
    }
    (raw / "world.geojson").write_text(json.dumps(world))
    (raw / "c2r.json").write_text(json.dumps({"US": "NorthAmerica", "FR": "Europe"}))

    out = tmp_path / "public"
    cfg_file(
        "verbose: false\n"
        f"output_dir: {out}\n"
        "inputs:\n"
        f"  taxonomic: {raw / 'taxonomic_table.csv'}\n"
        f"  metadata: {raw / 'sample_metadata.tsv'}\n"
        f"  world_map: {raw / 'world.geojson'}\n"
        f"  country_to_region: {raw / 'c2r.json'}\n"
        f"  record: {raw / 'record.json'}\n"
        "metadata:\n"
        "  refresh: false\n"
    )

    with pytest.raises(SystemExit) as exc:
        driver.main(["--call", "data_aggregate,data_metadata,search_list"])
    assert exc.value.code == 0

    meta = json.loads((out / "metadata.json").read_text())
    assert (meta["projects"], meta["samples"], meta["phyla"], meta["countries"]) == (1, 2, 2, 2)
    assert meta["version"] is None

    by_country = json.loads((out / "by-country.json").read_text())
    assert {f["properties"]["code"]: f["properties"]["samples"] for f in by_country["features"]} == {"US": 1, "FR": 1}

    names = {e["name"] for e in json.loads((out / "search-list.json").read_text())}
    assert {"P1", "S1", "S2", "Firmicutes", "Bacilli", "France", "Europe"} <= names
