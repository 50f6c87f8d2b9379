import os

# ======= Board =======
BOARD_SIZE = int(os.getenv("TR_BOARD_SIZE", "4"))

# ======= Worker / race knobs =======
WORKERS        = int(os.getenv("TR_WORKERS", "4"))
WORKER_TIMEOUT = float(os.getenv("TR_WORKER_TIMEOUT", "30"))
# Extra time the coordinator waits past a worker's own deadline before it
# records the worker as timed out on its behalf.
JOIN_GRACE     = float(os.getenv("TR_JOIN_GRACE", "2"))
# thread: one interpreter, workers share the GIL (no CPU parallelism).
# process: spawned workers, one core each.  auto: process when more than one
# CPU is available, otherwise thread.
BACKEND        = os.getenv("TR_BACKEND", "auto").strip().lower()   # auto | thread | process

# ======= Search heuristics =======
SHUFFLE_PIECES = int(os.getenv("TR_SHUFFLE_PIECES", "1")) != 0
_SEED_RAW      = os.getenv("TR_SEED", "").strip()
SEED           = int(_SEED_RAW) if _SEED_RAW else None

# ======= Visualisation pacing =======
# Seconds to pause after each placement/removal.  0 disables the pause;
# 0.3 is slow enough to follow a streamed board by eye.
PLACEMENT_DELAY    = float(os.getenv("TR_PLACEMENT_DELAY", "0"))
STREAM_PLACEMENTS  = int(os.getenv("TR_STREAM_PLACEMENTS", "0")) != 0

# ======= Reporting =======
EVENT_HISTORY = int(os.getenv("TR_EVENT_HISTORY", "200"))

# ======= Output names =======
SOLUTION_OUT = os.getenv("TR_SOLUTION_OUT", "solution.txt")
LAYOUT_HTML  = os.getenv("TR_LAYOUT_HTML", "layout_view.html")


class CFG:
    BOARD_SIZE = BOARD_SIZE

    WORKERS        = WORKERS
    WORKER_TIMEOUT = WORKER_TIMEOUT
    JOIN_GRACE     = JOIN_GRACE
    BACKEND        = BACKEND

    SHUFFLE_PIECES = SHUFFLE_PIECES
    SEED           = SEED

    PLACEMENT_DELAY   = PLACEMENT_DELAY
    STREAM_PLACEMENTS = STREAM_PLACEMENTS

    EVENT_HISTORY = EVENT_HISTORY

    SOLUTION_OUT = SOLUTION_OUT
    LAYOUT_HTML  = LAYOUT_HTML


__all__ = ["CFG", "BOARD_SIZE"]
