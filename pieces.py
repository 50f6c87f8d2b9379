# pieces.py — piece catalog and demand parser
from __future__ import annotations

import re
from typing import Any, Dict, Iterable, List, Optional, Tuple

from models import Piece, as_mask

# The seven tetrominoes, in input-form order.
CATALOG: Dict[str, Tuple[Tuple[int, ...], ...]] = {
    "Z": ((1, 1, 0), (0, 1, 1)),
    "I": ((1, 1, 1, 1),),
    "J": ((1, 0, 0), (1, 1, 1)),
    "L": ((0, 0, 1), (1, 1, 1)),
    "O": ((1, 1), (1, 1)),
    "S": ((0, 1, 1), (1, 1, 0)),
    "T": ((1, 1, 1), (0, 1, 0)),
}
FORM_ORDER: Tuple[str, ...] = tuple(CATALOG.keys())

Decoded = List[Tuple[str, int]]

# Accept keys like Z, qty_Z, q_o, count[T], piece-L.
_KEY_RE = re.compile(r"^(?:(?:q|qty|quantity|count|cnt|piece)[\s_\-\[]+)?(?P<name>[A-Za-z])\]?$")
_FILLED_CHARS = set("1#xX*")


def catalog_piece(name: str) -> Piece:
    key = name.strip().upper()
    if key not in CATALOG:
        raise KeyError(f"unknown piece {name!r}; expected one of {', '.join(FORM_ORDER)}")
    return Piece.from_rows(key, CATALOG[key])


def _to_int(x: Any) -> Optional[int]:
    try:
        return int(float(x))
    except (TypeError, ValueError):
        return None


def _first(val: Any) -> Any:
    if isinstance(val, (list, tuple)):
        return val[0] if val else None
    return val


def _parse_mask(raw: Any) -> Optional[Tuple[Tuple[bool, ...], ...]]:
    if not isinstance(raw, (list, tuple)) or not raw:
        return None
    rows: List[List[bool]] = []
    for row in raw:
        if isinstance(row, str):
            rows.append([ch in _FILLED_CHARS for ch in row.strip()])
        elif isinstance(row, (list, tuple)):
            vals = [_to_int(v) for v in row]
            if any(v is None for v in vals):
                return None
            rows.append([bool(v) for v in vals])
        else:
            return None
    if not rows or not rows[0] or len({len(r) for r in rows}) != 1:
        return None
    return as_mask(rows)


def _expand(bag: List[Tuple[Piece, int]]) -> Tuple[List[Piece], Decoded]:
    pieces: List[Piece] = []
    decoded: Decoded = []
    for piece, count in bag:
        pieces.extend([piece] * count)
        decoded.append((piece.name, count))
    return pieces, decoded


def _parse_piece_list(items: Iterable[Any]) -> Tuple[List[Tuple[Piece, int]], Optional[str]]:
    bag: List[Tuple[Piece, int]] = []
    for idx, item in enumerate(items, start=1):
        if not isinstance(item, dict):
            return [], f"piece entry {idx} is not an object"
        count = _to_int(item.get("count", 1))
        if count is None or count < 0:
            return [], f"piece entry {idx} has a bad count"
        if count == 0:
            continue
        name = str(item.get("name") or "").strip()
        if "mask" in item:
            mask = _parse_mask(item["mask"])
            if mask is None:
                return [], f"piece entry {idx} has an unreadable mask"
            bag.append((Piece(name or f"P{idx}", mask), count))
        elif name.upper() in CATALOG:
            bag.append((catalog_piece(name), count))
        else:
            return [], f"piece entry {idx} needs a mask or a catalog name"
    return bag, None


def _parse_counts(mapping: Any) -> List[Tuple[Piece, int]]:
    totals: Dict[str, int] = {}
    items = mapping.items() if hasattr(mapping, "items") else []
    for raw_key, raw_val in items:
        m = _KEY_RE.match(str(raw_key).strip())
        if not m:
            continue
        name = m.group("name").upper()
        if name not in CATALOG:
            continue
        count = _to_int(_first(raw_val))
        if count and count > 0:
            totals[name] = totals.get(name, 0) + count
    return [(catalog_piece(name), totals[name]) for name in FORM_ORDER if name in totals]


def parse_demand(form_like: Any) -> Tuple[List[Piece], Decoded, Optional[str]]:
    """
    Return (pieces, decoded_items, error_message_or_None).

    Accepted shapes:
      - {"pieces": [{"name": "O", "count": 4}, {"mask": [[1, 1], [1, 0]], "count": 2}]}
      - {"counts": {"Z": 1, "T": 2}}
      - flat count keys, e.g. {"Z": "1", "qty_T": ["2"]} (form posts)
    """
    if not form_like:
        return [], [], "nothing parsed from request"

    if isinstance(form_like, dict) and isinstance(form_like.get("pieces"), list):
        bag, err = _parse_piece_list(form_like["pieces"])
        if err:
            return [], [], err
        if bag:
            pieces, decoded = _expand(bag)
            return pieces, decoded, None

    if isinstance(form_like, dict) and isinstance(form_like.get("counts"), dict):
        bag = _parse_counts(form_like["counts"])
        if bag:
            pieces, decoded = _expand(bag)
            return pieces, decoded, None

    bag = _parse_counts(form_like)
    if bag:
        pieces, decoded = _expand(bag)
        return pieces, decoded, None

    return [], [], "nothing parsed from request"


def fmt_decoded_items(decoded: Decoded) -> Decoded:
    order = {name: i for i, name in enumerate(FORM_ORDER)}
    return sorted(decoded, key=lambda t: (order.get(t[0], len(order)), t[0]))


__all__ = ["CATALOG", "FORM_ORDER", "catalog_piece", "parse_demand", "fmt_decoded_items"]
