from __future__ import annotations

import json
import logging
import os
import threading
import time
from collections import deque
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable, Deque, Dict, Iterable, List, Optional

from config import CFG
from models import BoardRows, WorkerStatus

logger = logging.getLogger(__name__)

# ------------------------------
# Attempt log
# ------------------------------


def _log_file_path() -> Path:
    configured = os.environ.get("TR_LOG_FILE")
    if configured:
        return Path(configured)
    return Path(__file__).resolve().parent / "logs" / "solver_attempts.log"


def _init_logger() -> logging.Logger:
    attempt_logger = logging.getLogger("tiling.attempt_log")
    if attempt_logger.handlers:
        return attempt_logger

    log_path = _log_file_path()
    try:
        log_path.parent.mkdir(parents=True, exist_ok=True)
        handler = logging.FileHandler(log_path, encoding="utf-8")
        formatter = logging.Formatter(
            "%(asctime)s [%(levelname)s] %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S",
        )
        handler.setFormatter(formatter)
        attempt_logger.addHandler(handler)
        attempt_logger.setLevel(logging.INFO)
        attempt_logger.propagate = False
    except OSError:
        # No log directory: run without the attempt log.
        attempt_logger.handlers.clear()
    return attempt_logger


ATTEMPT_LOGGER = _init_logger()


def _log_enabled() -> bool:
    return bool(ATTEMPT_LOGGER.handlers)


def _fmt_seconds(seconds: Optional[float]) -> Optional[str]:
    if seconds is None:
        return None
    try:
        return f"{float(seconds):.2f}s"
    except (TypeError, ValueError):
        return None


def _emit_log(event: str, **fields: Any) -> None:
    if not _log_enabled():
        return
    extras = [
        f"{key}={value}"
        for key, value in fields.items()
        if value is not None and value != ""
    ]
    try:
        if extras:
            ATTEMPT_LOGGER.info("%s | %s", event, " ".join(extras))
        else:
            ATTEMPT_LOGGER.info("%s", event)
    except Exception:
        # Logging failures must never bubble back to callers.
        pass


def log_attempt_detail(event: str, **fields: Any) -> None:
    """Write a free-form line to the attempt log."""
    _emit_log(event, **fields)


def _fmt_elapsed(seconds: float) -> str:
    seconds = max(0.0, float(seconds))
    if seconds < 60:
        return f"{int(seconds)}s"
    m, s = divmod(int(seconds), 60)
    if m < 60:
        return f"{m}m {s}s"
    h, m = divmod(m, 60)
    return f"{h}h {m}m"


def _now() -> float:
    return time.time()


# ------------------------------
# Events
# ------------------------------


@dataclass(frozen=True)
class StatusEvent:
    seq: int
    worker_id: int
    status: WorkerStatus
    board: Optional[BoardRows]
    message: str
    at: float

    def as_dict(self) -> Dict[str, Any]:
        return {
            "seq": self.seq,
            "worker": self.worker_id,
            "status": str(self.status),
            "board": [list(r) for r in self.board] if self.board is not None else None,
            "message": self.message,
            "at": self.at,
        }


@dataclass
class _WorkerState:
    worker_id: int
    status: Optional[WorkerStatus] = None
    board: Optional[BoardRows] = None
    message: str = ""
    started: Optional[float] = None
    finished: Optional[float] = None
    history: Deque[StatusEvent] = field(default_factory=deque)

    @property
    def terminal(self) -> bool:
        return self.status is not None and self.status.terminal


Subscriber = Callable[[StatusEvent], None]


class StatusReporter:
    """Serialised sink for worker status transitions of one solve request.

    Every :meth:`push` runs under a single lock: the status and its board
    snapshot are stored together and handed to subscribers as one
    :class:`StatusEvent` before the lock is released, so observers never see a
    status paired with another push's board and each worker's events arrive in
    the order the worker emitted them.

    A worker's first terminal status sticks.  Anything pushed for that worker
    afterwards is dropped and logged, which lets the coordinator and the worker
    itself both try to close a record without double-reporting.
    """

    def __init__(
        self,
        worker_ids: Iterable[int] = (),
        *,
        run_id: Any = None,
        history: Optional[int] = None,
        state_file: Optional[os.PathLike] = None,
    ):
        self._lock = threading.RLock()
        self._seq = 0
        self._history = int(CFG.EVENT_HISTORY if history is None else history)
        self._workers: Dict[int, _WorkerState] = {}
        self._subscribers: List[Subscriber] = []
        self._state_file = Path(state_file) if state_file else None
        self.run_id = run_id
        self.started = _now()
        self.finished: Optional[float] = None
        self.winner: Optional[int] = None
        for wid in worker_ids:
            self.register(wid)

    # ---- registration ------------------------------------------------

    def register(self, worker_id: int) -> None:
        with self._lock:
            if worker_id not in self._workers:
                self._workers[worker_id] = _WorkerState(
                    worker_id, history=deque(maxlen=max(1, self._history))
                )

    def subscribe(self, callback: Subscriber) -> Callable[[], None]:
        with self._lock:
            self._subscribers.append(callback)

        def _unsubscribe() -> None:
            with self._lock:
                if callback in self._subscribers:
                    self._subscribers.remove(callback)

        return _unsubscribe

    # ---- writes --------------------------------------------------------

    def push(
        self,
        worker_id: int,
        status: Any,
        board: Optional[BoardRows] = None,
        message: str = "",
    ) -> bool:
        """Record one transition; returns False if the worker already finished."""

        status = WorkerStatus(status)
        with self._lock:
            state = self._workers.get(worker_id)
            if state is None:
                self.register(worker_id)
                state = self._workers[worker_id]
            if state.terminal:
                if status.terminal:
                    _emit_log(
                        "Late status ignored",
                        run=self.run_id,
                        worker=worker_id,
                        kept=state.status,
                        dropped=status,
                    )
                return False

            now = _now()
            self._seq += 1
            event = StatusEvent(self._seq, worker_id, status, board, message or "", now)
            if state.started is None:
                state.started = now
                _emit_log("Worker started", run=self.run_id, worker=worker_id)
            state.status = status
            if board is not None:
                state.board = board
            state.message = event.message
            state.history.append(event)

            if status.terminal:
                state.finished = now
                _emit_log(
                    "Worker finished",
                    run=self.run_id,
                    worker=worker_id,
                    status=status,
                    duration=_fmt_seconds(now - state.started),
                    message=event.message,
                )

            for callback in list(self._subscribers):
                try:
                    callback(event)
                except Exception:
                    logger.exception("status subscriber failed for worker %s", worker_id)

            if self._state_file is not None:
                self._persist_locked()
        return True

    def mark_finished(self, winner: Optional[int]) -> None:
        with self._lock:
            if self.finished is not None:
                return
            self.finished = _now()
            self.winner = winner
            counts: Dict[str, int] = {}
            for state in self._workers.values():
                key = str(state.status) if state.status else "Idle"
                counts[key] = counts.get(key, 0) + 1
            _emit_log(
                "Run finished",
                run=self.run_id,
                winner=winner,
                duration=_fmt_seconds(self.finished - self.started),
                statuses=",".join(f"{k}:{v}" for k, v in sorted(counts.items())),
            )
            if self._state_file is not None:
                self._persist_locked()

    # ---- reads ---------------------------------------------------------

    def status_of(self, worker_id: int) -> Optional[WorkerStatus]:
        with self._lock:
            state = self._workers.get(worker_id)
            return state.status if state else None

    def board_of(self, worker_id: int) -> Optional[BoardRows]:
        with self._lock:
            state = self._workers.get(worker_id)
            return state.board if state else None

    def is_terminal(self, worker_id: int) -> bool:
        with self._lock:
            state = self._workers.get(worker_id)
            return bool(state and state.terminal)

    def all_terminal(self) -> bool:
        with self._lock:
            return bool(self._workers) and all(s.terminal for s in self._workers.values())

    def events(self, worker_id: Optional[int] = None) -> List[StatusEvent]:
        with self._lock:
            if worker_id is not None:
                state = self._workers.get(worker_id)
                return list(state.history) if state else []
            merged = [e for s in self._workers.values() for e in s.history]
        return sorted(merged, key=lambda e: e.seq)

    def statuses(self) -> Dict[int, Optional[WorkerStatus]]:
        with self._lock:
            return {wid: s.status for wid, s in sorted(self._workers.items())}

    def snapshot(self) -> Dict[str, Any]:
        with self._lock:
            end = self.finished if self.finished is not None else _now()
            elapsed = end - self.started
            workers = []
            for wid, state in sorted(self._workers.items()):
                workers.append({
                    "worker": wid,
                    "status": str(state.status) if state.status else "Idle",
                    "message": state.message,
                    "board": [list(r) for r in state.board] if state.board is not None else None,
                    "done": state.terminal,
                })
            return {
                "run_id": self.run_id,
                "elapsed": elapsed,
                "elapsed_str": _fmt_elapsed(elapsed),
                "done": self.finished is not None,
                "winner": self.winner,
                "workers": workers,
            }

    # ---- persistence ---------------------------------------------------

    def _persist_locked(self) -> None:
        path = self._state_file
        tmp = path.with_name(path.name + ".tmp")
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            with tmp.open("w", encoding="utf-8") as fh:
                json.dump(self.snapshot(), fh, ensure_ascii=False, separators=(",", ":"))
            tmp.replace(path)
        except OSError:
            logger.warning("could not persist progress state to %s", path, exc_info=True)


def load_state(path: os.PathLike) -> Optional[Dict[str, Any]]:
    """Read a snapshot written by a reporter with a ``state_file``."""
    try:
        with Path(path).open("r", encoding="utf-8") as fh:
            data = json.load(fh)
    except (OSError, ValueError):
        return None
    return data if isinstance(data, dict) else None


__all__ = [
    "StatusEvent",
    "StatusReporter",
    "load_state",
    "log_attempt_detail",
]
