# app.py — start a race, poll per-worker progress, cancel, fetch the result
from __future__ import annotations

import logging
import os
import threading
from typing import Any, Dict, Optional, Tuple

from flask import Flask, jsonify, request, send_from_directory

from config import CFG
from io_files import write_layout_view_html, write_solution
from pieces import CATALOG, FORM_ORDER, fmt_decoded_items, parse_demand
from render import render_board
from tiling.coordinator import ConfigurationError, SolveHandle, start_solve

logger = logging.getLogger(__name__)

BASE_DIR = os.path.dirname(os.path.abspath(__file__))

_STATE_LOCK = threading.Lock()
CURRENT: Dict[str, Any] = {
    "handle": None,
    "names": [],
    "decoded": [],
}

app = Flask(__name__)


@app.after_request
def _no_cache_progress(resp):
    if request.path == "/progress":
        resp.headers["Cache-Control"] = "no-store, max-age=0"
        resp.headers["Pragma"] = "no-cache"
        resp.headers["Expires"] = "0"
    return resp


def _merge_like_mapping() -> Dict[str, Any]:
    merged: Dict[str, Any] = {}
    payload = request.get_json(silent=True)
    if isinstance(payload, dict):
        merged.update(payload)

    for k, v in request.form.to_dict(flat=False).items():
        merged.setdefault(k, v if isinstance(v, list) else [v])
    for k, v in request.args.to_dict(flat=False).items():
        merged.setdefault(k, v if isinstance(v, list) else [v])
    return merged


def _scalar(like: Dict[str, Any], key: str) -> Any:
    val = like.get(key)
    if isinstance(val, (list, tuple)):
        return val[0] if val else None
    return val


def _int_option(like: Dict[str, Any], key: str, default: int) -> int:
    raw = _scalar(like, key)
    if raw in (None, ""):
        return int(default)
    return int(float(raw))


def _float_option(like: Dict[str, Any], key: str, default: float) -> float:
    raw = _scalar(like, key)
    if raw in (None, ""):
        return float(default)
    return float(raw)


def _current_handle() -> Optional[SolveHandle]:
    with _STATE_LOCK:
        return CURRENT["handle"]


def _error(message: str, code: int):
    return jsonify({"ok": False, "error": message}), code


@app.route("/")
def index():
    return jsonify({
        "pieces": {name: [list(r) for r in CATALOG[name]] for name in FORM_ORDER},
        "defaults": {
            "size": CFG.BOARD_SIZE,
            "workers": CFG.WORKERS,
            "timeout": CFG.WORKER_TIMEOUT,
        },
    })


@app.route("/solve", methods=["POST"])
def solve():
    like = _merge_like_mapping()
    pieces, decoded, err = parse_demand(like)
    if err or not pieces:
        seen_keys = ", ".join(list(like.keys())[:8]) or "—"
        return _error(f"Bad demand: {err or 'nothing parsed from request'} (saw keys: {seen_keys})", 400)

    try:
        size = _int_option(like, "size", CFG.BOARD_SIZE)
        workers = _int_option(like, "workers", CFG.WORKERS)
        timeout = _float_option(like, "timeout", CFG.WORKER_TIMEOUT)
        seed_raw = _scalar(like, "seed")
        seed = int(seed_raw) if seed_raw not in (None, "") else None
    except (TypeError, ValueError) as e:
        return _error(f"Bad option: {e}", 400)

    previous = _current_handle()
    if previous is not None and not previous.done():
        previous.cancel_all("superseded by a new solve")

    try:
        handle = start_solve(pieces, size, workers, timeout, seed=seed)
    except ConfigurationError as e:
        return _error(str(e), 400)

    with _STATE_LOCK:
        CURRENT.update({
            "handle": handle,
            "names": [p.name for p in pieces],
            "decoded": fmt_decoded_items(decoded),
        })

    return jsonify({
        "ok": True,
        "run_id": handle.run_id,
        "workers": handle.worker_ids,
        "size": size,
        "timeout": timeout,
        "demand_items": fmt_decoded_items(decoded),
    }), 202


@app.route("/progress")
def progress():
    handle = _current_handle()
    if handle is None:
        return jsonify({"run_id": None, "done": False, "workers": []})
    return jsonify(handle.reporter.snapshot())


@app.route("/cancel", methods=["POST"])
def cancel():
    handle = _current_handle()
    if handle is None:
        return _error("no solve running", 404)
    handle.cancel_all("cancel requested over http")
    return jsonify({"ok": True, "run_id": handle.run_id})


def _result_payload(handle: SolveHandle) -> Tuple[Dict[str, Any], Optional[str]]:
    result = handle.result()
    with _STATE_LOCK:
        names = list(CURRENT["names"])
        decoded = list(CURRENT["decoded"])

    payload = result.as_dict()
    payload["demand_items"] = decoded
    statuses = {wid: str(st) for wid, st in result.statuses.items()}
    svg = ""
    if result.board is not None:
        svg, legend = render_board(result.board, names)
        try:
            write_layout_view_html(svg, legend, BASE_DIR)
        except OSError:
            logger.warning("could not write layout view", exc_info=True)
    payload["svg"] = svg

    solution_name = None
    try:
        path = write_solution(result.board, statuses, BASE_DIR, winner=result.winner)
        solution_name = os.path.basename(path)
    except OSError:
        logger.warning("could not write solution file", exc_info=True)
    return payload, solution_name


@app.route("/result/latest")
def result_latest():
    handle = _current_handle()
    if handle is None:
        return _error("no solve has been started", 404)
    if not handle.done():
        return jsonify({"ok": True, "run_id": handle.run_id, "done": False}), 202
    payload, solution_name = _result_payload(handle)
    payload.update({"ok": True, "done": True, "solution_filename": solution_name})
    return jsonify(payload)


@app.route("/download/solution")
def download_solution():
    path = CFG.SOLUTION_OUT if os.path.isabs(CFG.SOLUTION_OUT) else os.path.join(BASE_DIR, CFG.SOLUTION_OUT)
    return send_from_directory(os.path.dirname(path), os.path.basename(path), as_attachment=True)


if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO)
    app.run(debug=False)
