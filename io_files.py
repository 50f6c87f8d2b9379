"""Helpers for writing solver outputs to disk."""

from __future__ import annotations

import os
from typing import Dict, Optional, Sequence

from config import CFG
from models import EMPTY


def _resolve_output_path(base_dir: str, configured_name: str, fallback: str) -> str:
    """Return the absolute path where an output artifact should be written."""

    name = (configured_name or "").strip() or fallback
    if os.path.isabs(name):
        return name
    return os.path.join(base_dir, name)


def write_solution(
    rows: Optional[Sequence[Sequence[int]]],
    statuses: Dict[int, str],
    base_dir: str,
    *,
    winner: Optional[int] = None,
) -> str:
    """Write the solved board (one line per row) and every worker's status."""

    path = _resolve_output_path(base_dir, CFG.SOLUTION_OUT, "solution.txt")
    os.makedirs(os.path.dirname(path), exist_ok=True)

    with open(path, "w", encoding="utf-8") as f:
        if not rows:
            f.write("No solution\n")
        else:
            width = max(len(str(v)) for row in rows for v in row)
            for row in rows:
                f.write(" ".join(("." if v == EMPTY else str(v)).rjust(width) for v in row) + "\n")
            if winner is not None:
                f.write(f"\nSolved by worker {winner}\n")
        f.write("\n")
        for wid in sorted(statuses):
            f.write(f"worker {wid}: {statuses[wid]}\n")
    return path


def write_layout_view_html(svg: str, legend_html: str, base_dir: str, *, title: str = "Board View") -> str:
    """Write the rendered SVG/legend preview to the configured HTML file."""

    path = _resolve_output_path(base_dir, CFG.LAYOUT_HTML, "layout_view.html")
    os.makedirs(os.path.dirname(path), exist_ok=True)

    with open(path, "w", encoding="utf-8") as vf:
        vf.write(
            f"""<!doctype html>
<html><head><meta charset='utf-8'><title>{title}</title></head>
<body class='container'>
<h1>{title}</h1>
<section class='card'>{svg}</section>
<section class='card'><h3>Pieces</h3><ul>{legend_html}</ul></section>
</body></html>"""
        )
    return path


__all__ = ["write_solution", "write_layout_view_html"]
