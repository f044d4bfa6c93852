"""
search.py — exact + fuzzy (trigram) search over flat entity lists, off the caller's thread

Scope
-----
A) Matchers (pure, run inside worker threads)
     exact_search(entries, keys, query)              case-insensitive substring
     fuzzy_search(entries, keys, query, threshold)   trigram Jaccard similarity > threshold
   Both normalize query and haystack (lower-case, runs of '_'/whitespace -> ' '),
   check a CancelToken once per entry, and report coarse progress strings
   ("Starting", "42% done").

B) Worker
     SearchWorker.submit({op, list, keys, query, threshold?}) -> SearchTask
     SearchWorker.handle(request) -> {"matches": [...]} | {"error": ..., "reason": ...}
   A cancelled task raises SearchCancelled(reason) instead of returning a partial list.
   Progress callbacks that arrive after the task resolved are dropped.

C) Combining layer (caller side)
     combine_matches(exact, fuzzy)  exact ++ (fuzzy minus exact, by name), fuzzy-only flagged
     SearchSession.search(query)    exact and fuzzy run concurrently; a newer query
                                    cancels the older one and stale results are dropped

CLI
---
    python -m biomeatlas.search "proteo" --types phylum class --limit 20
"""
from __future__ import annotations

import argparse
import re
import threading
from concurrent.futures import CancelledError, Future, ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeout
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional, Sequence, Union

DEFAULT_THRESHOLD = 0.25
DEFAULT_KEYS = ("name",)

Entry = Mapping[str, Any]
Keys = Union[str, Sequence[str]]
Progress = Callable[[str], None]


# ==========================
# Cancellation
# ==========================

class SearchCancelled(Exception):
    """Raised in place of a result when a search is cancelled; not a failure."""

    def __init__(self, reason: str = "aborted"):
        super().__init__(reason)
        self.reason = reason


class CancelToken:
    def __init__(self):
        self._event = threading.Event()
        self.reason = ""

    def cancel(self, reason: str = "aborted"):
        if not self._event.is_set():
            self.reason = reason
            self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def check(self):
        if self._event.is_set():
            raise SearchCancelled(self.reason)


# ==========================
# Matchers
# ==========================

def normalize(value: Any) -> str:
    return re.sub(r"[_\s]+", " ", str(value)).lower()


def _keys(keys: Keys) -> Sequence[str]:
    return (keys,) if isinstance(keys, str) else tuple(keys)


def _field(entry: Any, key: str) -> str:
    v = entry.get(key) if isinstance(entry, Mapping) else getattr(entry, key, None)
    return "" if v is None else str(v)


def haystack(entry: Any, keys: Keys) -> str:
    return normalize(" ".join(_field(entry, k) for k in _keys(keys)))


def n_grams(value: str, n: int = 3) -> List[str]:
    """Overlapping n-grams with n-1 spaces of padding on both ends."""
    pad = " " * (n - 1)
    value = pad + value + pad
    return [value[i:i + n] for i in range(len(value) - n + 1)]


def n_gram_similarity(a: str, b: str, n: int = 3) -> float:
    if a == b:
        return 1.0
    sa, sb = set(n_grams(a, n)), set(n_grams(b, n))
    union = sa | sb
    return len(sa & sb) / len(union) if union else 0.0


def _scan(
    entries: Iterable[Any],
    keep: Callable[[Any], bool],
    token: Optional[CancelToken],
    progress: Optional[Progress],
) -> List[Any]:
    entries = list(entries)
    total = len(entries)
    step = max(1, total // 100)
    if progress:
        progress("Starting")

    out = []
    for i, entry in enumerate(entries):
        if token is not None:
            token.check()
        if progress and i and i % step == 0:
            progress(f"{100 * i // total}% done")
        if keep(entry):
            out.append(entry)

    if token is not None:
        token.check()
    return out


def exact_search(
    entries: Iterable[Any],
    keys: Keys,
    query: str,
    *,
    token: Optional[CancelToken] = None,
    progress: Optional[Progress] = None,
) -> List[Any]:
    needle = normalize(query)
    return _scan(entries, lambda e: needle in haystack(e, keys), token, progress)


def fuzzy_search(
    entries: Iterable[Any],
    keys: Keys,
    query: str,
    threshold: float = DEFAULT_THRESHOLD,
    *,
    token: Optional[CancelToken] = None,
    progress: Optional[Progress] = None,
) -> List[Any]:
    needle = normalize(query)
    return _scan(entries, lambda e: n_gram_similarity(haystack(e, keys), needle) > threshold, token, progress)


OPS = {"exact": exact_search, "fuzzy": fuzzy_search}


def run_request(request: Mapping[str, Any], token: Optional[CancelToken] = None, progress: Optional[Progress] = None):
    op = request.get("op")
    if op not in OPS:
        raise ValueError(f"unknown search op {op!r} (expected one of: {', '.join(OPS)})")
    kwargs = {}
    if op == "fuzzy" and request.get("threshold") is not None:
        kwargs["threshold"] = float(request["threshold"])
    return OPS[op](
        request.get("list") or [],
        request.get("keys") or DEFAULT_KEYS,
        request.get("query") or "",
        token=token,
        progress=progress,
        **kwargs,
    )


# ==========================
# Worker
# ==========================

class SearchTask:
    """Handle on one submitted search: result(), cancel(), guarded progress."""

    def __init__(self, token: CancelToken, on_progress: Optional[Progress] = None):
        self.token = token
        self.future: Optional[Future] = None
        self.resolved = False
        self._on_progress = on_progress

    def report(self, status: str):
        if not self.resolved and self._on_progress is not None:
            self._on_progress(status)

    def _resolve(self, _future: Future):
        self.resolved = True

    def cancel(self, reason: str = "aborted"):
        self.token.cancel(reason)
        self.resolved = True
        if self.future is not None:
            self.future.cancel()

    def done(self) -> bool:
        return self.future is not None and self.future.done()

    def result(self, timeout: Optional[float] = None) -> List[Any]:
        try:
            return self.future.result(timeout)
        except CancelledError:
            raise SearchCancelled(self.token.reason or "aborted") from None


class SearchWorker:
    def __init__(self, max_workers: int = 2):
        self._pool = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="search")

    def submit(
        self,
        request: Mapping[str, Any],
        on_progress: Optional[Progress] = None,
        token: Optional[CancelToken] = None,
    ) -> SearchTask:
        task = SearchTask(token or CancelToken(), on_progress)
        task.future = self._pool.submit(run_request, request, task.token, task.report)
        task.future.add_done_callback(task._resolve)
        return task

    def handle(
        self,
        request: Mapping[str, Any],
        timeout: Optional[float] = None,
        token: Optional[CancelToken] = None,
    ) -> Dict[str, Any]:
        """Message-style call: {matches} on success, {error, reason} otherwise."""
        task = self.submit(request, token=token)
        try:
            return {"matches": task.result(timeout)}
        except SearchCancelled as e:
            return {"error": "cancelled", "reason": e.reason}
        except FutureTimeout:
            task.cancel("timeout")
            return {"error": "TimeoutError", "reason": f"no result after {timeout}s"}
        except Exception as e:
            return {"error": type(e).__name__, "reason": str(e)}

    def shutdown(self, wait: bool = True):
        self._pool.shutdown(wait=wait)

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        self.shutdown()


# ==========================
# Combining layer
# ==========================

def combine_matches(exact: Iterable[Entry], fuzzy: Iterable[Entry]) -> List[Dict[str, Any]]:
    exact = list(exact)
    seen = {_field(e, "name") for e in exact}
    extra = [{**f, "fuzzy": True} for f in fuzzy if _field(f, "name") not in seen]
    return exact + extra


class SearchSession:
    """
    Search box state over one entity list.

    state: idle -> searching -> resolved | cancelled
    Each search() bumps the generation and cancels what is still running;
    a call whose generation is no longer current returns None.
    generation, state and _inflight change only under _lock.
    """

    def __init__(
        self,
        entries: Sequence[Entry],
        keys: Keys = DEFAULT_KEYS,
        *,
        worker: Optional[SearchWorker] = None,
        threshold: float = DEFAULT_THRESHOLD,
    ):
        self.entries = list(entries)
        self.keys = list(_keys(keys))
        self.threshold = threshold
        self.worker = worker or SearchWorker()
        self.generation = 0
        self.state = "idle"
        self._inflight: List[SearchTask] = []
        self._lock = threading.Lock()

    def filtered(self, types: Optional[Iterable[str]] = None) -> List[Entry]:
        if not types:
            return self.entries
        types = set(types)
        return [e for e in self.entries if e.get("type") in types]

    def _cancel_inflight(self, reason: str):
        inflight, self._inflight = self._inflight, []
        for task in inflight:
            task.cancel(reason)
        if inflight:
            self.state = "cancelled"

    def cancel(self, reason: str = "cancelled"):
        with self._lock:
            self._cancel_inflight(reason)

    def search(
        self,
        query: str,
        *,
        types: Optional[Iterable[str]] = None,
        on_progress: Optional[Progress] = None,
        timeout: Optional[float] = None,
    ) -> Optional[List[Dict[str, Any]]]:
        with self._lock:
            self.generation += 1
            generation = self.generation
            self._cancel_inflight("superseded")

            if not (query or "").strip():
                self.state = "idle"
                return []

            entries = self.filtered(types)
            base = {"list": entries, "keys": self.keys, "query": query}
            exact = self.worker.submit({**base, "op": "exact"}, on_progress)
            fuzzy = self.worker.submit({**base, "op": "fuzzy", "threshold": self.threshold}, on_progress)
            tasks = [exact, fuzzy]
            self._inflight = tasks
            self.state = "searching"

        try:
            exact_matches = exact.result(timeout)
            fuzzy_matches = fuzzy.result(timeout)
        except SearchCancelled:
            return None

        with self._lock:
            if generation != self.generation:
                return None
            if self._inflight is tasks:
                self._inflight = []
            self.state = "resolved"
        return combine_matches(exact_matches, fuzzy_matches)

    def close(self):
        self.cancel()
        self.worker.shutdown(wait=False)


# ==========================
# Minimal CLI
# ==========================

def _print_matches(matches: List[Dict[str, Any]], limit: int):
    if not matches:
        print("No results")
        return
    for m in matches[:limit]:
        flag = "  (fuzzy)" if m.get("fuzzy") else ""
        print(f"{m.get('name', '')}\t{m.get('type', '')}\t{m.get('samples', '')}{flag}")
    if len(matches) > limit:
        print(f"... {len(matches) - limit} more")


if __name__ == "__main__":
    from .exports import output_dir
    from .utils import load_cfg, read_json

    p = argparse.ArgumentParser(description="Exact + fuzzy search over the built search list")
    p.add_argument("query")
    p.add_argument("--list", default=None, help="Path to search-list.json (default: <output_dir>/search-list.json)")
    p.add_argument("--types", nargs="*", default=None, help="Restrict to entry types, e.g. phylum class")
    p.add_argument("--threshold", type=float, default=None)
    p.add_argument("--limit", type=int, default=10)
    args = p.parse_args()

    cfg = load_cfg()
    search_cfg = cfg.get("search", {}) or {}
    list_path = args.list or (output_dir(cfg) / "search-list.json")
    entries = read_json(list_path, None)
    if entries is None:
        raise SystemExit(f"[search] {list_path} not found (run search_list first)")

    session = SearchSession(
        entries,
        search_cfg.get("keys") or DEFAULT_KEYS,
        worker=SearchWorker(int(search_cfg.get("max_workers", 2))),
        threshold=args.threshold if args.threshold is not None else float(search_cfg.get("threshold", DEFAULT_THRESHOLD)),
    )
    try:
        _print_matches(session.search(args.query, types=args.types) or [], args.limit)
    finally:
        session.close()
