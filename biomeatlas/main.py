"""
main.py — biomeatlas build pipeline driver

    python -m biomeatlas.main --all
    python -m biomeatlas.main --call data_aggregate,data_metadata
    python -m biomeatlas.main --until data_metadata --continue-on-error --debug

CONFIG_PATH selects the YAML config (default: config/pipeline_config.yaml).
"""
import argparse
import importlib
import os
import sys
import time
import traceback
from typing import Callable, Dict, List, Tuple

from .utils import DEFAULT_CONFIG, load_cfg

# step name -> (module, public function)
STEP_SOURCES = {
    "data_fetch": ("data_source", "data_fetch"),
    "data_aggregate": ("aggregator", "data_aggregate"),
    "data_metadata": ("metadata", "data_metadata"),
    "search_list": ("search_list", "search_list"),
}

DEFAULT_ORDER = ["data_fetch", "data_aggregate", "data_metadata", "search_list"]


# -----------------------------
# Config
# -----------------------------
def load_config() -> Tuple[str, dict]:
    cfg_path = os.getenv("CONFIG_PATH", DEFAULT_CONFIG)
    try:
        cfg = load_cfg(cfg_path)
    except FileNotFoundError:
        print(f"[ERROR] CONFIG_PATH points to missing file: {cfg_path}", file=sys.stderr)
        sys.exit(2)
    os.environ["CONFIG_PATH"] = cfg_path
    return cfg_path, cfg


# -----------------------------
# Step registry (lazy, error-wrapped imports)
# -----------------------------
def _missing(step: str, module: str, func: str, err_msg: str):
    print(
        f"[ERROR] Step {step} unavailable: need biomeatlas/{module}.py with {func}()\n"
        f"        Import error: {err_msg}",
        file=sys.stderr,
    )
    sys.exit(3)


def _load_step_funcs() -> Dict[str, Callable[[], object]]:
    steps: Dict[str, Callable[[], object]] = {}
    for step, (module, func) in STEP_SOURCES.items():
        try:
            steps[step] = getattr(importlib.import_module(f".{module}", __package__), func)
        except Exception as e:
            err_msg = f"{type(e).__name__}: {e}"
            steps[step] = (lambda step=step, module=module, func=func, err_msg=err_msg:
                           _missing(step, module, func, err_msg))
    return steps


# -----------------------------
# CLI & plan
# -----------------------------
def _parse_args(argv=None) -> argparse.Namespace:
    p = argparse.ArgumentParser(description="biomeatlas build pipeline driver")
    p.add_argument("--call", help="Single step or comma-list, e.g. data_aggregate,data_metadata")
    p.add_argument("--all", action="store_true", help=f"Run: {', '.join(DEFAULT_ORDER)}")
    p.add_argument("--until", help="Run default sequence up to this step")
    p.add_argument("--continue-on-error", action="store_true", help="Do not stop on first failing step")
    p.add_argument("--debug", action="store_true", help="Show full Python tracebacks on errors")
    return p.parse_args(argv)


def _resolve_plan(args: argparse.Namespace) -> List[str]:
    if args.all:
        return list(DEFAULT_ORDER)
    if args.until:
        if args.until not in DEFAULT_ORDER:
            print(f"[ERROR] --until must be one of: {', '.join(DEFAULT_ORDER)}", file=sys.stderr)
            sys.exit(2)
        return DEFAULT_ORDER[: DEFAULT_ORDER.index(args.until) + 1]
    if args.call:
        return [s.strip() for s in args.call.split(",") if s.strip()]
    print("[ERROR] Specify one of: --call, --all, or --until", file=sys.stderr)
    sys.exit(2)


# -----------------------------
# Runner
# -----------------------------
def _run_step(name: str, fn: Callable[[], object], *, debug: bool) -> Tuple[bool, str]:
    print(f"\n===== RUN {name} =====")
    t0 = time.time()
    status = "OK"
    try:
        fn()
    except SystemExit as se:
        status = f"FAIL (SystemExit {se.code})"
        print(traceback.format_exc() if debug else f"[ERROR] {name} raised SystemExit({se.code})", file=sys.stderr)
    except Exception as e:
        status = f"FAIL ({type(e).__name__}: {e})"
        if debug:
            print(traceback.format_exc(), file=sys.stderr)
        else:
            print(f"[ERROR] {type(e).__name__}: {e}\n  (run with --debug to see full traceback)", file=sys.stderr)
    print(f"===== DONE {name} [{status}] in {time.time() - t0:.1f}s =====")
    return status == "OK", status


def main(argv=None):
    cfg_path, _ = load_config()
    args = _parse_args(argv)
    steps = _load_step_funcs()
    plan = _resolve_plan(args)

    unknown = [s for s in plan if s not in steps]
    if unknown:
        print(f"[ERROR] Unknown step(s): {', '.join(unknown)}", file=sys.stderr)
        sys.exit(2)

    print(f"[INFO] Using config: {cfg_path}")
    print(f"[INFO] Plan: {' -> '.join(plan)}")

    t0 = time.time()
    failed = []
    for step in plan:
        ok, _ = _run_step(step, steps[step], debug=args.debug)
        if ok:
            continue
        failed.append(step)
        if not args.continue_on_error:
            break

    print(f"\nTotal: {time.time() - t0:.1f}s")
    if failed:
        print(f"[INFO] Failed: {', '.join(failed)}", file=sys.stderr)
    sys.exit(1 if failed else 0)


if __name__ == "__main__":
    main()
