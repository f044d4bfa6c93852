import pytest


def square(x, y, size=1.0):
    return {
        "type": "Polygon",
        "coordinates": [[[x, y], [x + size, y], [x + size, y + size], [x, y + size], [x, y]]],
    }


def feature(code, country, region, geometry):
    return {
        "type": "Feature",
        "properties": {"region": region, "country": country, "code": code, "samples": 0},
        "geometry": geometry,
    }


@pytest.fixture
def world_map():
    """Normalized toy map: FR and DE share a border, AQ has no region."""
    return {
        "type": "FeatureCollection",
        "features": [
            feature("US", "United States", "NorthAmerica", square(-100, 30, 10)),
            feature("FR", "France", "Europe", square(0, 45)),
            feature("DE", "Germany", "Europe", square(1, 45)),
            feature("AQ", "Antarctica", "", square(0, -80, 5)),
        ],
    }


@pytest.fixture
def metadata_rows():
    return [
        ["sample", "project", "country", "region"],
        ["S1", "P1", "US", "NorthAmerica"],
        ["S2", "P1", "FR", "Europe"],
    ]


@pytest.fixture
def taxonomic_rows():
    return [
        ["sample", "project", "Bacteria.Firmicutes.Bacilli", "Bacteria.Bacteroidota."],
        ["S1", "P1", "5", "0"],
        ["S2", "P1", "0", "3"],
    ]


@pytest.fixture
def cfg_file(tmp_path, monkeypatch):
    """Write a config into tmp_path and point CONFIG_PATH at it."""
    def _write(text="verbose: false\n"):
        p = tmp_path / "pipeline_config.yaml"
        p.write_text(text)
        monkeypatch.setenv("CONFIG_PATH", str(p))
        return p
    return _write
