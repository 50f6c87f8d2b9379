from typing import Dict, Optional, Sequence, Tuple

from models import EMPTY

# Piece colours, cycled by piece id.
PALETTE = (
    "rgb(255,0,0)",
    "rgb(0,255,255)",
    "rgb(0,0,255)",
    "rgb(255,200,0)",
    "rgb(255,255,0)",
    "rgb(0,255,0)",
    "rgb(255,0,255)",
)
EMPTY_FILL = "rgb(255,240,245)"


def _color(piece_id: int) -> str:
    if piece_id == EMPTY:
        return EMPTY_FILL
    return PALETTE[(piece_id - 1) % len(PALETTE)]


def render_board(rows: Sequence[Sequence[int]], names: Optional[Sequence[str]] = None, scale: int = 48) -> Tuple[str, str]:
    """Return (svg, legend_html) for one board snapshot.

    ``names[i]`` labels piece id ``i + 1`` in the legend when given.
    """
    n = len(rows)
    svg_w = n * scale + 2
    svg_h = n * scale + 2

    used: Dict[int, str] = {}
    cells = []
    for r, row in enumerate(rows):
        for c, pid in enumerate(row):
            fill = _color(int(pid))
            if pid != EMPTY:
                used.setdefault(int(pid), fill)
            x = c * scale + 1
            y = r * scale + 1
            cells.append(
                f'<rect x="{x}" y="{y}" width="{scale}" height="{scale}" fill="{fill}" stroke="black" stroke-width="1"/>'
            )
            if pid != EMPTY:
                cells.append(f'<text x="{x+4}" y="{y+14}" font-size="12" fill="black">{pid}</text>')
    frame = f'<rect x="1" y="1" width="{svg_w-2}" height="{svg_h-2}" fill="none" stroke="black" stroke-width="2"/>'
    svg = (
        f'<svg class="board-svg" xmlns="http://www.w3.org/2000/svg" '
        f'width="{svg_w}" height="{svg_h}" '
        f'viewBox="0 0 {svg_w} {svg_h}" preserveAspectRatio="xMinYMin meet">'
        f'{"".join(cells)}{frame}</svg>'
    )

    def _label(pid: int) -> str:
        if names and 0 < pid <= len(names):
            return f"{pid} ({names[pid - 1]})"
        return str(pid)

    legend = "".join(
        f"<li><span class='swatch' style='background:{c}'></span>{_label(pid)}</li>"
        for pid, c in sorted(used.items())
    )
    return svg, legend
