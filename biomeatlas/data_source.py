"""
data_source.py — fetch the world map, the dataset record and (optionally) raw tables

What it does
------------
1) Downloads the Natural Earth admin-0 countries GeoJSON to inputs.world_map.
2) Downloads the dataset's archive record JSON (version, dates, stats, files)
   to inputs.record.
3) If fetch.raw_files is true, streams every file listed in the record (or in
   fetch.urls) into the raw data dir, gunzipping *.gz downloads.

Key inputs (from config/pipeline_config.yaml)
---------------------------------------------
services:
  world_map:  https://rawgit.com/nvkelso/natural-earth-vector/master/geojson/ne_110m_admin_0_countries.geojson
  record_api: https://zenodo.org/api/records/<id>
inputs:
  world_map: data/raw/world.geojson
  record:    data/raw/record.json
fetch:
  raw_files: false
  raw_dir: data/raw
  urls: []
timeout: 60

Notes
-----
- A non-OK HTTP status fails the step immediately; nothing is retried.
"""
from __future__ import annotations

import gzip
import shutil
from pathlib import Path
from typing import Iterable, List, Optional

import requests

from .utils import Throttle, cfg_path, load_cfg, write_json

USER_AGENT = "biomeatlas/0.1 (+data_source.py)"
CHUNK = 1024 * 1024


def make_session() -> requests.Session:
    s = requests.Session()
    s.headers.update({"User-Agent": USER_AGENT})
    return s


def request_json(session: requests.Session, url: str, timeout: float = 60):
    r = session.get(url, timeout=timeout, allow_redirects=True)
    r.raise_for_status()
    return r.json()


def download(
    session: requests.Session,
    url: str,
    out_dir: Path,
    *,
    timeout: float = 60,
    throttle: Optional[Throttle] = None,
) -> Path:
    """Stream url to out_dir/<basename>; gunzip .gz files in place."""
    throttle = throttle or Throttle()
    filename = url.split("?")[0].rstrip("/").split("/")[-1] or "download"
    out_dir.mkdir(parents=True, exist_ok=True)
    dest = out_dir / filename
    print(f"[fetch] Downloading {filename}")

    with session.get(url, stream=True, timeout=timeout, allow_redirects=True) as r:
        r.raise_for_status()
        total = int(r.headers.get("Content-Length") or 0)
        done = 0
        with open(dest, "wb") as f:
            for chunk in r.iter_content(chunk_size=CHUNK):
                f.write(chunk)
                done += len(chunk)
                if total and throttle.ready("download"):
                    left = (total - done) / 1024 / 1024
                    print(f"[fetch] {100 * done / total:.1f}% done, {left:.1f}MB left")
    print(f"[fetch] 100% done, 0MB left")

    if dest.suffix == ".gz":
        plain = dest.with_suffix("")
        with gzip.open(dest, "rb") as src, open(plain, "wb") as dst:
            shutil.copyfileobj(src, dst)
        dest.unlink()
        dest = plain
    return dest


def record_file_urls(record: dict) -> List[str]:
    urls = []
    for f in record.get("files") or []:
        links = f.get("links") or {}
        url = links.get("self") or links.get("download")
        if url:
            urls.append(url)
    return urls


def data_fetch(urls: Optional[Iterable[str]] = None):
    cfg = load_cfg()
    services = cfg.get("services", {}) or {}
    fetch_cfg = cfg.get("fetch", {}) or {}
    timeout = cfg.get("timeout", 60)
    session = make_session()

    world_url = services.get("world_map")
    if world_url:
        print("[fetch] Getting world map data")
        world_out = cfg_path(cfg, "inputs", "world_map", default="data/raw/world.geojson")
        write_json(world_out, request_json(session, world_url, timeout))
        print(f"[fetch] wrote {world_out}")
    else:
        print("[fetch] SKIP world map: services.world_map not set.")

    record = {}
    record_url = services.get("record_api")
    if record_url:
        print("[fetch] Getting dataset record")
        record = request_json(session, record_url, timeout)
        record_out = cfg_path(cfg, "inputs", "record", default="data/raw/record.json")
        write_json(record_out, record, pretty=True)
        print(f"[fetch] wrote {record_out}")

    if fetch_cfg.get("raw_files", False):
        raw_dir = Path(fetch_cfg.get("raw_dir") or "data/raw")
        todo = list(urls or fetch_cfg.get("urls") or record_file_urls(record))
        throttle = Throttle()
        for url in todo:
            download(session, url, raw_dir, timeout=timeout, throttle=throttle)


if __name__ == "__main__":
    data_fetch()
