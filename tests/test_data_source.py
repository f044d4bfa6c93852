import gzip
import json

import pytest
import requests

from biomeatlas import data_source
from biomeatlas.data_source import download, record_file_urls, request_json


class FakeResponse:
    def __init__(self, status=200, payload=None, body=b""):
        self.status_code = status
        self._payload = payload
        self._body = body
        self.headers = {"Content-Length": str(len(body))} if body else {}

    def raise_for_status(self):
        if self.status_code >= 400:
            raise requests.HTTPError(f"{self.status_code} Client Error")

    def json(self):
        return self._payload

    def iter_content(self, chunk_size=1):
        for i in range(0, len(self._body), chunk_size):
            yield self._body[i:i + chunk_size]

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        return False


class FakeSession:
    """Serves canned responses by URL and records every request."""

    def __init__(self, routes):
        self.routes = routes
        self.calls = []

    def get(self, url, **kw):
        self.calls.append(url)
        return self.routes[url]


def test_request_json_fails_on_first_error():
    session = FakeSession({"https://example.org/record": FakeResponse(404)})
    with pytest.raises(requests.HTTPError):
        request_json(session, "https://example.org/record")
    assert session.calls == ["https://example.org/record"]


def test_download_gunzips(tmp_path):
    body = gzip.compress(b"sample\tproject\nS1\tP1\n")
    url = "https://example.org/files/sample_metadata.tsv.gz?download=1"
    session = FakeSession({url: FakeResponse(body=body)})

    path = download(session, url, tmp_path / "raw")

    assert path == tmp_path / "raw" / "sample_metadata.tsv"
    assert path.read_text() == "sample\tproject\nS1\tP1\n"
    assert not (tmp_path / "raw" / "sample_metadata.tsv.gz").exists()


def test_download_plain_file(tmp_path):
    url = "https://example.org/files/taxonomic_table.csv"
    session = FakeSession({url: FakeResponse(body=b"a,b\n1,2\n")})
    assert download(session, url, tmp_path).read_bytes() == b"a,b\n1,2\n"


def test_record_file_urls():
    record = {"files": [
        {"key": "a.csv.gz", "links": {"self": "https://example.org/a.csv.gz"}},
        {"key": "b.tsv.gz", "links": {"download": "https://example.org/b.tsv.gz"}},
        {"key": "nolink"},
    ]}
    assert record_file_urls(record) == ["https://example.org/a.csv.gz", "https://example.org/b.tsv.gz"]


def test_data_fetch_uses_record_files(tmp_path, cfg_file, monkeypatch):
    world = {"type": "FeatureCollection", "features": []}
    record = {"files": [{"links": {"self": "https://example.org/files/tags.tsv"}}]}
    session = FakeSession({
        "https://example.org/world.geojson": FakeResponse(payload=world),
        "https://example.org/api/records/1": FakeResponse(payload=record),
        "https://example.org/files/tags.tsv": FakeResponse(body=b"project\ttag\n"),
    })
    monkeypatch.setattr(data_source, "make_session", lambda: session)

    raw = tmp_path / "raw"
    cfg_file(
        "services:\n"
        "  world_map: https://example.org/world.geojson\n"
        "  record_api: https://example.org/api/records/1\n"
        "inputs:\n"
        f"  world_map: {raw / 'world.geojson'}\n"
        f"  record: {raw / 'record.json'}\n"
        "fetch:\n"
        "  raw_files: true\n"
        f"  raw_dir: {raw}\n"
    )
    data_source.data_fetch()

    assert json.loads((raw / "world.geojson").read_text()) == world
    assert json.loads((raw / "record.json").read_text()) == record
    assert (raw / "tags.tsv").read_text() == "project\ttag\n"
    assert session.calls[-1] == "https://example.org/files/tags.tsv"


def test_data_fetch_stops_on_http_error(tmp_path, cfg_file, monkeypatch):
    session = FakeSession({"https://example.org/world.geojson": FakeResponse(503)})
    monkeypatch.setattr(data_source, "make_session", lambda: session)
    cfg_file(
        "services:\n"
        "  world_map: https://example.org/world.geojson\n"
        "inputs:\n"
        f"  world_map: {tmp_path / 'world.geojson'}\n"
    )
    with pytest.raises(requests.HTTPError):
        data_source.data_fetch()
    assert not (tmp_path / "world.geojson").exists()
