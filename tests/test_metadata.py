import pytest
import requests

from biomeatlas import metadata
from biomeatlas.aggregator import aggregate
from biomeatlas.metadata import derive_metadata, fetch_record, record_provenance

RECORD = {
    "doi": "10.5281/zenodo.8186993",
    "metadata": {"version": "2.1", "publication_date": "2023-07-26"},
    "links": {},
    "stats": {"downloads": 412.0, "views": 1337.0},
    "files": [{"key": "taxonomic_table.csv.gz", "size": 1000}, {"key": "sample_metadata.tsv.gz", "size": 24}],
}


def test_counts_from_aggregates(taxonomic_rows, metadata_rows, world_map):
    meta = derive_metadata(aggregate(taxonomic_rows, metadata_rows, world_map))
    assert meta["projects"] == 1
    assert meta["samples"] == 2
    assert meta["phyla"] == 2
    assert meta["classes"] == 1
    assert meta["countries"] == 2
    assert meta["regions"] == 2
    assert meta["tags"] == 0
    assert meta["version"] is None and meta["downloads"] is None


def test_provenance_from_record():
    assert record_provenance(RECORD) == {
        "version": "2.1",
        "date": "2023-07-26",
        "url": "https://doi.org/10.5281/zenodo.8186993",
        "downloads": 412,
        "views": 1337,
        "size": 1024,
    }


def test_refresh_keeps_counts(taxonomic_rows, metadata_rows, world_map):
    tables = aggregate(taxonomic_rows, metadata_rows, world_map).tables()
    meta = derive_metadata(tables, RECORD)
    assert meta["samples"] == 2
    assert meta["size"] == 1024


class FakeResponse:
    def __init__(self, status, payload=None):
        self.status_code = status
        self._payload = payload

    def raise_for_status(self):
        if self.status_code >= 400:
            raise requests.HTTPError(f"{self.status_code} Server Error")

    def json(self):
        return self._payload


def test_fetch_record_ok(monkeypatch):
    monkeypatch.setattr(metadata.requests, "get", lambda url, **kw: FakeResponse(200, RECORD))
    assert fetch_record("https://zenodo.org/api/records/1")["doi"] == RECORD["doi"]


def test_fetch_record_raises_on_error_status(monkeypatch):
    calls = []

    def fake_get(url, **kw):
        calls.append(url)
        return FakeResponse(503)

    monkeypatch.setattr(metadata.requests, "get", fake_get)
    with pytest.raises(requests.HTTPError):
        fetch_record("https://zenodo.org/api/records/1")
    assert len(calls) == 1
