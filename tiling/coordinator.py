# tiling/coordinator.py — worker race: shared solution signal, timeouts, cancel
from __future__ import annotations

import itertools
import logging
import multiprocessing as mp
import os
import queue as queue_mod
import random
import threading
import time
import traceback
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional, Sequence

from config import CFG
from models import BoardRows, Piece, WorkerStatus
from progress import StatusEvent, StatusReporter, log_attempt_detail
from tiling.board import Board
from tiling.engine import SearchStats, search

logger = logging.getLogger(__name__)

# Spawn everywhere so the process backend behaves the same on every platform;
# the thread backend uses the same primitives.
_CTX = mp.get_context("spawn")

_RUN_IDS = itertools.count(1)
_SUPERVISE_TICK = 0.05
_EXIT_REPORT_WINDOW = 0.5
_FLIP_LOCK_TIMEOUT = 2.0
# Seconds an expiring process gets to react to its cancel before terminate().
_EXPIRE_JOIN = 0.5
# Extra time a worker that already flipped the signal gets to publish Solved.
_WINNER_GRACE = 2.0

Emit = Callable[[int, WorkerStatus, Optional[BoardRows], str], Any]


class ConfigurationError(ValueError):
    """Raised before any worker starts when a solve request cannot work."""


# ---------- shared state ----------

class SolutionSignal:
    """First-flip-wins flag shared by every worker of one solve request.

    The flag stores the winning worker id; ``-1`` means unset.  Only the first
    :meth:`try_set` succeeds and the value never goes back to unset.

    Reads go straight to the shared int without taking a lock, so a process
    torn down mid-poll cannot leave the flag unreadable.  Only the flip itself
    is locked, and that wait is bounded.
    """

    def __init__(self):
        self._winner = _CTX.Value("i", -1, lock=False)
        self._flip_lock = _CTX.Lock()

    def is_set(self) -> bool:
        return self._winner.value >= 0

    @property
    def winner(self) -> Optional[int]:
        value = self._winner.value
        return value if value >= 0 else None

    def try_set(self, worker_id: int) -> bool:
        if self._winner.value >= 0:
            return False
        if not self._flip_lock.acquire(timeout=_FLIP_LOCK_TIMEOUT):
            logger.warning("worker %s could not take the solution lock", worker_id)
            return False
        try:
            if self._winner.value >= 0:
                return False
            self._winner.value = int(worker_id)
            return True
        finally:
            self._flip_lock.release()


@dataclass
class WorkerRecord:
    worker_id: int
    cancel: Any
    runner: Any = None
    hard_deadline: float = 0.0
    exited_at: Optional[float] = None
    expired: bool = False
    claim_extended: bool = False

    def is_alive(self) -> bool:
        return bool(self.runner is not None and self.runner.is_alive())


@dataclass
class SolveResult:
    run_id: int
    winner: Optional[int]
    board: Optional[BoardRows]
    statuses: Dict[int, WorkerStatus]
    elapsed: float
    cancelled: bool = False

    @property
    def solved(self) -> bool:
        return self.winner is not None

    def as_dict(self) -> Dict[str, Any]:
        return {
            "run_id": self.run_id,
            "solved": self.solved,
            "winner": self.winner,
            "board": [list(r) for r in self.board] if self.board is not None else None,
            "statuses": {str(k): str(v) for k, v in self.statuses.items()},
            "elapsed": self.elapsed,
            "cancelled": self.cancelled,
        }


# ---------- validation ----------

def validate_request(pieces: Sequence[Piece], size: int, worker_count: int, timeout: float) -> None:
    if not isinstance(size, int) or size < 1:
        raise ConfigurationError(f"board size must be a positive integer, got {size!r}")
    if not isinstance(worker_count, int) or worker_count < 1:
        raise ConfigurationError(f"worker count must be a positive integer, got {worker_count!r}")
    try:
        timeout_value = float(timeout)
    except (TypeError, ValueError):
        raise ConfigurationError(f"timeout must be a number, got {timeout!r}") from None
    if not timeout_value > 0:
        raise ConfigurationError(f"timeout must be positive, got {timeout!r}")
    if not pieces:
        raise ConfigurationError("no pieces to place")

    for idx, piece in enumerate(pieces, start=1):
        if not isinstance(piece, Piece):
            raise ConfigurationError(f"piece {idx} is not a Piece: {piece!r}")
        widths = {len(row) for row in piece.mask}
        if not piece.mask or len(widths) != 1:
            raise ConfigurationError(f"piece {idx} ({piece.name}) has a ragged or empty mask")
        if piece.area == 0:
            raise ConfigurationError(f"piece {idx} ({piece.name}) has no occupied cells")
        if not any(_fits(o.offsets, size) for o in piece.orientations):
            raise ConfigurationError(
                f"piece {idx} ({piece.name}) does not fit a {size}×{size} board in any orientation"
            )

    area = sum(p.area for p in pieces)
    if area != size * size:
        # Not rejected: an area mismatch simply exhausts or times out.
        logger.warning("piece area %d does not match board area %d", area, size * size)
        log_attempt_detail("Area mismatch", pieces_area=area, board_area=size * size)


def _fits(offsets, size: int) -> bool:
    return max(r for r, _ in offsets) < size and max(c for _, c in offsets) < size


# ---------- worker ----------

def _worker_rng(seed: Optional[int], worker_id: int) -> random.Random:
    if seed is None:
        return random.SystemRandom()
    return random.Random(int(seed) * 1_000_003 + int(worker_id))


def _run_worker(
    worker_id: int,
    size: int,
    pieces: Sequence[Piece],
    timeout: float,
    signal: SolutionSignal,
    cancel: Any,
    emit: Emit,
    *,
    seed: Optional[int],
    shuffle: bool,
    delay: float,
    stream: bool,
) -> WorkerStatus:
    """Run one worker to completion and emit exactly one terminal status."""

    board = Board(size)
    order = list(pieces)
    if shuffle and len(order) > 1:
        _worker_rng(seed, worker_id).shuffle(order)

    deadline = time.monotonic() + float(timeout)
    abort_reason: List[str] = []

    def should_abort() -> bool:
        if signal.is_set():
            abort_reason.append("solved elsewhere")
            return True
        if cancel.is_set():
            abort_reason.append("cancel requested")
            return True
        if time.monotonic() >= deadline:
            abort_reason.append("timeout")
            return True
        return False

    pace = None
    if delay > 0:
        def pace() -> None:
            # Interruptible sleep: a cancel wakes the worker early.
            cancel.wait(delay)

    observer = None
    if stream:
        def observer(b: Board) -> None:
            emit(worker_id, WorkerStatus.SEARCHING, b.snapshot(), "")

    emit(
        worker_id,
        WorkerStatus.SEARCHING,
        board.snapshot(),
        "order=" + ",".join(p.name for p in order),
    )

    stats = SearchStats()
    try:
        solved = search(board, order, 0, should_abort, observer, pace=pace, stats=stats)
    except Exception as exc:
        logger.exception("worker %s crashed", worker_id)
        emit(worker_id, WorkerStatus.FAILED, None, f"{type(exc).__name__}: {exc}")
        return WorkerStatus.FAILED

    work = f"placements={stats.placements} backtracks={stats.backtracks}"
    if solved:
        if signal.try_set(worker_id):
            emit(worker_id, WorkerStatus.SOLVED, board.snapshot(), work)
            return WorkerStatus.SOLVED
        emit(worker_id, WorkerStatus.CANCELLED, None, f"solved elsewhere first; {work}")
        return WorkerStatus.CANCELLED

    if stats.aborted and abort_reason:
        reason = abort_reason[-1]
        if reason == "timeout":
            emit(worker_id, WorkerStatus.TIMED_OUT, None, f"timed out after {timeout:g}s; {work}")
            return WorkerStatus.TIMED_OUT
        emit(worker_id, WorkerStatus.CANCELLED, None, f"{reason}; {work}")
        return WorkerStatus.CANCELLED

    emit(worker_id, WorkerStatus.NOT_SOLVED, None, f"search exhausted; {work}")
    return WorkerStatus.NOT_SOLVED


def _thread_main(reporter: StatusReporter, worker_id: int, *args, **kwargs) -> None:
    try:
        _run_worker(worker_id, *args, emit=reporter.push, **kwargs)
    except Exception as exc:
        logger.exception("worker %s failed outside the search", worker_id)
        reporter.push(worker_id, WorkerStatus.FAILED, None, f"{type(exc).__name__}: {exc}")


# Process entry point must be top-level (picklable under spawn)
def _process_main(events, worker_id: int, *args, **kwargs) -> None:
    def emit(wid, status, board, message):
        events.put((wid, str(status), board, message))

    try:
        _run_worker(worker_id, *args, emit=emit, **kwargs)
    except Exception as exc:
        emit(worker_id, WorkerStatus.FAILED, None, f"{type(exc).__name__}: {exc}\n{traceback.format_exc()}")


def _pump_events(events, reporter: StatusReporter, stop: threading.Event) -> None:
    while True:
        try:
            item = events.get(timeout=0.1)
        except queue_mod.Empty:
            if stop.is_set():
                return
            continue
        except (EOFError, OSError):
            return
        worker_id, status, board, message = item
        reporter.push(worker_id, status, board, message)


def _terminate_process(proc, grace: float = 0.2) -> None:
    """Tear down ``proc`` within a few ``grace`` windows: join, terminate, kill."""

    proc.join(timeout=grace)
    if not proc.is_alive():
        return
    proc.terminate()
    proc.join(timeout=grace)
    if not proc.is_alive():
        return
    proc.kill()
    proc.join(timeout=grace)


# ---------- handle ----------

class SolveHandle:
    """Observation and control point for one running solve request."""

    def __init__(
        self,
        run_id: int,
        records: List[WorkerRecord],
        signal: SolutionSignal,
        reporter: StatusReporter,
        backend: str,
    ):
        self.run_id = run_id
        self.records = records
        self.signal = signal
        self.reporter = reporter
        self.backend = backend
        self.started = time.monotonic()
        self._wake = threading.Event()
        self._done = threading.Event()
        self._cancel_requested = False
        self._result: Optional[SolveResult] = None
        self._events = None
        self._pump: Optional[threading.Thread] = None
        self._pump_stop = threading.Event()
        self._supervisor: Optional[threading.Thread] = None

    # ---- public --------------------------------------------------------

    @property
    def worker_ids(self) -> List[int]:
        return [r.worker_id for r in self.records]

    def done(self) -> bool:
        return self._done.is_set()

    def wait(self, timeout: Optional[float] = None) -> bool:
        return self._done.wait(timeout)

    def result(self, timeout: Optional[float] = None) -> SolveResult:
        if not self._done.wait(timeout):
            raise TimeoutError(f"solve {self.run_id} still running")
        assert self._result is not None
        return self._result

    def cancel_all(self, reason: str = "cancel requested") -> None:
        if self._done.is_set():
            return
        self._cancel_requested = True
        log_attempt_detail("Cancel requested", run=self.run_id, reason=reason)
        for record in self.records:
            record.cancel.set()
        self._wake.set()

    # ---- internals -----------------------------------------------------

    def _on_event(self, event: StatusEvent) -> None:
        if event.status is WorkerStatus.SOLVED:
            log_attempt_detail("Race won", run=self.run_id, worker=event.worker_id)
            for record in self.records:
                if record.worker_id != event.worker_id:
                    record.cancel.set()
        if event.status.terminal:
            self._wake.set()

    def _expire(self, record: WorkerRecord, now: float) -> None:
        if self.signal.winner == record.worker_id and not record.claim_extended:
            # The worker flipped the signal; let its Solved event land.
            record.claim_extended = True
            record.hard_deadline = now + _WINNER_GRACE
            log_attempt_detail("Winner deadline extended", run=self.run_id, worker=record.worker_id)
            return
        record.expired = True
        record.cancel.set()
        if self.backend == "process" and record.runner is not None:
            _terminate_process(record.runner, grace=_EXPIRE_JOIN)
        self.reporter.push(
            record.worker_id,
            WorkerStatus.TIMED_OUT,
            None,
            "no response before the hard deadline",
        )
        log_attempt_detail("Worker expired", run=self.run_id, worker=record.worker_id)

    def _check_exited(self, record: WorkerRecord, now: float) -> None:
        if record.is_alive() or record.runner is None:
            return
        if record.exited_at is None:
            record.exited_at = now
            return
        if now - record.exited_at < _EXIT_REPORT_WINDOW:
            return
        code = getattr(record.runner, "exitcode", None)
        self.reporter.push(
            record.worker_id,
            WorkerStatus.FAILED,
            None,
            f"worker exited without reporting (exit {code})",
        )

    def _supervise(self) -> None:
        try:
            while True:
                pending = [r for r in self.records if not self.reporter.is_terminal(r.worker_id)]
                if not pending:
                    break
                now = time.monotonic()
                for record in pending:
                    if now >= record.hard_deadline:
                        self._expire(record, now)
                    else:
                        self._check_exited(record, now)
                self._wake.wait(_SUPERVISE_TICK)
                self._wake.clear()

            for record in self.records:
                if record.expired or record.runner is None:
                    continue
                if self.backend == "process":
                    _terminate_process(record.runner, grace=float(CFG.JOIN_GRACE))
                else:
                    record.runner.join(timeout=float(CFG.JOIN_GRACE))
        except Exception:
            logger.exception("supervisor for run %s failed", self.run_id)
            for record in self.records:
                record.cancel.set()
                self.reporter.push(record.worker_id, WorkerStatus.FAILED, None, "supervisor failure")
        finally:
            self._finish()

    def _finish(self) -> None:
        if self._pump is not None:
            self._pump_stop.set()
            self._pump.join(timeout=1.0)

        statuses = {
            wid: (status or WorkerStatus.FAILED)
            for wid, status in self.reporter.statuses().items()
        }
        winner = self.signal.winner
        if winner is not None and statuses.get(winner) is not WorkerStatus.SOLVED:
            # The winner was expired before its Solved event got through.
            logger.warning(
                "run %s: worker %s set the signal but finished as %s",
                self.run_id, winner, statuses.get(winner),
            )
            winner = None
        board = self.reporter.board_of(winner) if winner is not None else None
        self._result = SolveResult(
            run_id=self.run_id,
            winner=winner,
            board=board,
            statuses=statuses,
            elapsed=time.monotonic() - self.started,
            cancelled=self._cancel_requested,
        )
        self.reporter.mark_finished(winner)
        self._done.set()


# ---------- public entrypoints ----------

def resolve_backend(name: Optional[str]) -> str:
    """Map a backend name to ``thread`` or ``process``; ``auto`` picks by CPU count."""
    backend = (name or "auto").strip().lower()
    if backend == "auto":
        return "process" if (os.cpu_count() or 1) > 1 else "thread"
    if backend not in ("thread", "process"):
        raise ConfigurationError(f"unknown backend {name!r}")
    return backend


def start_solve(
    pieces: Sequence[Piece],
    size: Optional[int] = None,
    worker_count: Optional[int] = None,
    timeout: Optional[float] = None,
    *,
    seed: Optional[int] = None,
    shuffle: Optional[bool] = None,
    backend: Optional[str] = None,
    placement_delay: Optional[float] = None,
    stream_placements: Optional[bool] = None,
    reporter: Optional[StatusReporter] = None,
    on_event: Optional[Callable[[StatusEvent], None]] = None,
) -> SolveHandle:
    """Validate the request, start every worker and return without waiting.

    Unset arguments fall back to :class:`config.CFG`.  Raises
    :class:`ConfigurationError` before anything is started if the request can
    never produce a placement.
    """

    size = CFG.BOARD_SIZE if size is None else size
    worker_count = CFG.WORKERS if worker_count is None else worker_count
    timeout = CFG.WORKER_TIMEOUT if timeout is None else timeout
    seed = CFG.SEED if seed is None else seed
    shuffle = CFG.SHUFFLE_PIECES if shuffle is None else bool(shuffle)
    backend = resolve_backend(backend or CFG.BACKEND)
    delay = float(CFG.PLACEMENT_DELAY if placement_delay is None else placement_delay)
    stream = CFG.STREAM_PLACEMENTS if stream_placements is None else bool(stream_placements)

    pieces = list(pieces)
    validate_request(pieces, size, worker_count, timeout)

    run_id = next(_RUN_IDS)
    worker_ids = list(range(1, worker_count + 1))
    if reporter is None:
        reporter = StatusReporter(worker_ids, run_id=run_id)
    else:
        for wid in worker_ids:
            reporter.register(wid)
        if reporter.run_id is None:
            reporter.run_id = run_id

    signal = SolutionSignal()
    records = [WorkerRecord(wid, _CTX.Event()) for wid in worker_ids]
    handle = SolveHandle(run_id, records, signal, reporter, backend)
    reporter.subscribe(handle._on_event)
    if on_event is not None:
        reporter.subscribe(on_event)

    log_attempt_detail(
        "Solve started",
        run=run_id,
        size=size,
        pieces=len(pieces),
        workers=worker_count,
        timeout=f"{float(timeout):g}s",
        backend=backend,
        seed=seed,
    )

    kwargs = dict(seed=seed, shuffle=shuffle, delay=delay, stream=stream)
    grace = float(CFG.JOIN_GRACE)
    if backend == "process":
        handle._events = _CTX.Queue()
        handle._pump = threading.Thread(
            target=_pump_events,
            args=(handle._events, reporter, handle._pump_stop),
            name=f"tiling-pump-{run_id}",
            daemon=True,
        )
        handle._pump.start()

    for record in records:
        args = (record.worker_id, size, pieces, float(timeout), signal, record.cancel)
        if backend == "process":
            runner = _CTX.Process(
                target=_process_main,
                args=(handle._events,) + args,
                kwargs=kwargs,
                name=f"tiling-worker-{run_id}-{record.worker_id}",
            )
            runner.daemon = True
        else:
            runner = threading.Thread(
                target=_thread_main,
                args=(reporter,) + args,
                kwargs=kwargs,
                name=f"tiling-worker-{run_id}-{record.worker_id}",
                daemon=True,
            )
        record.runner = runner
        record.hard_deadline = time.monotonic() + float(timeout) + grace
        runner.start()

    handle._supervisor = threading.Thread(
        target=handle._supervise, name=f"tiling-supervisor-{run_id}", daemon=True
    )
    handle._supervisor.start()
    return handle


def run_concurrent_search(
    pieces: Sequence[Piece],
    size: Optional[int] = None,
    worker_count: Optional[int] = None,
    timeout: Optional[float] = None,
    **kwargs: Any,
) -> SolveResult:
    """Blocking form of :func:`start_solve`."""
    return start_solve(pieces, size, worker_count, timeout, **kwargs).result()


def cancel_all(handle: SolveHandle) -> None:
    handle.cancel_all()


__all__ = [
    "ConfigurationError",
    "SolutionSignal",
    "SolveHandle",
    "resolve_backend",
    "SolveResult",
    "WorkerRecord",
    "cancel_all",
    "run_concurrent_search",
    "start_solve",
    "validate_request",
]
