from __future__ import annotations

from typing import Any, Dict

from game_types import Color, Coord


def clamp_int(v: int, lo: int, hi: int) -> int:
    """Clamp v into [lo, hi]; level indices and counters go through here."""
    return max(lo, min(hi, v))


def clamp_float(v: float, lo: float, hi: float) -> float:
    return max(lo, min(hi, v))


def _hex_channel(text: str) -> int:
    return int(text, 16)


def as_color(value: Any, default: Color) -> Color:
    """Turn a theme or config color into an (r, g, b) tuple.

    Args:
        value: "#rrggbb" string, or a sequence whose first three items are channels.
        default: Returned when value cannot be read as a color.

    Returns:
        Channels clamped to [0, 255].
    """
    if isinstance(value, str):
        text = value.strip().lstrip("#")
        if len(text) != 6:
            return default
        try:
            return (_hex_channel(text[0:2]), _hex_channel(text[2:4]), _hex_channel(text[4:6]))
        except ValueError:
            return default
    if isinstance(value, (list, tuple)) and len(value) >= 3:
        try:
            r, g, b = (clamp_int(int(c), 0, 255) for c in value[:3])
        except (TypeError, ValueError):
            return default
        return (r, g, b)
    return default


def deep_get(d: Dict[str, Any], path: str, default: Any) -> Any:
    """Read a nested config value by dotted path, e.g. "window.width"."""
    node: Any = d
    for key in path.split("."):
        if not isinstance(node, dict):
            return default
        node = node.get(key, default)
        if node is default:
            return default
    return node


def manhattan(a: Coord, b: Coord) -> int:
    return abs(a[0] - b[0]) + abs(a[1] - b[1])


def point_key(cell: Coord) -> str:
    """Serialize a cell as "x,y" (used for replay/state keys and JSON dict keys)."""
    return f"{cell[0]},{cell[1]}"
