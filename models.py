from dataclasses import dataclass, field
from enum import Enum
from functools import lru_cache
from typing import Iterable, Sequence, Tuple

EMPTY = 0

Mask = Tuple[Tuple[bool, ...], ...]
Offset = Tuple[int, int]


def as_mask(rows: Iterable[Iterable[object]]) -> Mask:
    return tuple(tuple(bool(v) for v in row) for row in rows)


def rotate_mask(mask: Mask) -> Mask:
    """Rotate a mask 90° clockwise: ``rotated[c][R-1-r] = mask[r][c]``."""
    R = len(mask)
    C = len(mask[0]) if R else 0
    rotated = [[False] * R for _ in range(C)]
    for r in range(R):
        for c in range(C):
            rotated[c][R - 1 - r] = mask[r][c]
    return tuple(tuple(row) for row in rotated)


def mask_offsets(mask: Mask) -> Tuple[Offset, ...]:
    return tuple(
        (r, c)
        for r, row in enumerate(mask)
        for c, filled in enumerate(row)
        if filled
    )


@dataclass(frozen=True)
class Orientation:
    index: int
    mask: Mask
    offsets: Tuple[Offset, ...] = field(init=False, compare=False, repr=False)

    def __post_init__(self):
        object.__setattr__(self, "offsets", mask_offsets(self.mask))

    @property
    def height(self) -> int:
        return len(self.mask)

    @property
    def width(self) -> int:
        return len(self.mask[0]) if self.mask else 0


@dataclass(frozen=True)
class Piece:
    name: str
    mask: Mask

    @classmethod
    def from_rows(cls, name: str, rows: Sequence[Sequence[object]]) -> "Piece":
        return cls(name, as_mask(rows))

    @property
    def area(self) -> int:
        return sum(1 for row in self.mask for v in row if v)

    @property
    def orientations(self) -> Tuple[Orientation, ...]:
        return orientations_of(self)


@lru_cache(maxsize=None)
def orientations_of(piece: Piece) -> Tuple[Orientation, ...]:
    # Symmetric shapes keep all four entries; duplicates are searched again.
    out = [Orientation(0, piece.mask)]
    mask = piece.mask
    for i in range(1, 4):
        mask = rotate_mask(mask)
        out.append(Orientation(i, mask))
    return tuple(out)


class WorkerStatus(str, Enum):
    SEARCHING = "Searching"
    SOLVED = "Solved"
    NOT_SOLVED = "NotSolved"
    TIMED_OUT = "TimedOut"
    CANCELLED = "Cancelled"
    FAILED = "Failed"

    @property
    def terminal(self) -> bool:
        return self is not WorkerStatus.SEARCHING

    def __str__(self) -> str:
        return self.value


BoardRows = Tuple[Tuple[int, ...], ...]
