from __future__ import annotations

import json
import logging
import math
import re
from functools import lru_cache
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence, Tuple

from game_types import Coord
from models import (
    GRID_COLS,
    GRID_ROWS,
    PICKUP_TILES,
    PORTAL_TILES,
    Character,
    Level,
    LevelDefinition,
    LevelMetrics,
    TileKind,
)
from rules import iter_neighbors, tile_reader

logger = logging.getLogger(__name__)

_LEVEL_FOLDER_RE = re.compile(r"^level(\d+)$", re.IGNORECASE)


class LevelFormatError(ValueError):
    """A level map breaks the structural contract (size, symbols, spawn, exit)."""


def parse_level(definition: LevelDefinition) -> Level:
    """Parse a generated level definition into a read-only Level.

    Args:
        definition: Raw level with map rows.

    Returns:
        The parsed Level, spawn resolved to EMPTY and metrics computed.

    Raises:
        LevelFormatError: On wrong dimensions, unknown symbols, zero or
            multiple spawns, or a missing exit.
    """
    rows = list(definition.rows)
    label = f"level {definition.id}"
    if len(rows) != GRID_ROWS:
        raise LevelFormatError(f"{label}: expected {GRID_ROWS} rows, got {len(rows)}")

    tiles: List[Tuple[TileKind, ...]] = []
    spawns: List[Coord] = []
    exits = 0
    for y, row in enumerate(rows):
        if len(row) != GRID_COLS:
            raise LevelFormatError(
                f"{label}: row {y} has {len(row)} columns, expected {GRID_COLS}"
            )
        parsed: List[TileKind] = []
        for x, ch in enumerate(row):
            try:
                kind = TileKind.from_symbol(ch)
            except KeyError:
                raise LevelFormatError(f"{label}: unknown symbol {ch!r} at ({x}, {y})") from None
            if kind == TileKind.SPAWN:
                spawns.append((x, y))
                kind = TileKind.EMPTY
            elif kind == TileKind.EXIT:
                exits += 1
            parsed.append(kind)
        tiles.append(tuple(parsed))

    if len(spawns) != 1:
        raise LevelFormatError(f"{label}: expected exactly one spawn, found {len(spawns)}")
    if exits < 1:
        raise LevelFormatError(f"{label}: no exit tile")

    grid = tuple(tiles)
    return Level(
        id=definition.id,
        world=definition.world,
        stage=definition.stage,
        title=definition.title,
        snake_length=max(1, definition.snake_length),
        theme=definition.theme,
        character=definition.character,
        spawn=spawns[0],
        tiles=grid,
        metrics=compute_difficulty_metrics(grid),
    )


def compute_difficulty_metrics(tiles: Sequence[Sequence[TileKind]]) -> LevelMetrics:
    """Count the structural features of a grid and fold them into a 1..10 score."""
    tile_at = tile_reader(tiles)
    walkable = dead_ends = junctions = pickups = portals = obstacles = exits = 0

    for y, row in enumerate(tiles):
        for x, tile in enumerate(row):
            kind = TileKind(tile)
            if kind == TileKind.OBSTACLE:
                obstacles += 1
            if not kind.walkable:
                continue
            walkable += 1
            if kind in PICKUP_TILES:
                pickups += 1
            elif kind in PORTAL_TILES:
                portals += 1
            elif kind == TileKind.EXIT:
                exits += 1

            open_sides = sum(1 for n in iter_neighbors((x, y)) if tile_at(n).walkable)
            if open_sides <= 1:
                dead_ends += 1
            elif open_sides >= 3:
                junctions += 1

    density = walkable / float(GRID_COLS * GRID_ROWS)
    raw = (
        dead_ends * 0.07
        + junctions * 0.06
        + pickups * 0.34
        + portals * 0.75
        + obstacles * 0.05
        + (1 - density) * 5.5
    )
    # half-up rounding
    score = int(math.floor(1 + min(9.0, raw) + 0.5))

    return LevelMetrics(
        walkable=walkable,
        dead_ends=dead_ends,
        junctions=junctions,
        pickups=pickups,
        portals=portals,
        obstacles=obstacles,
        exits=exits,
        density=round(density, 3),
        score=max(1, min(10, score)),
    )


@lru_cache(maxsize=1)
def build_levels() -> Tuple[Level, ...]:
    """Generate and parse the full 100-level catalog (cached after the first call)."""
    from generate_levels import generate_all

    levels = tuple(parse_level(d) for d in generate_all())
    logger.debug("Built %s levels", len(levels))
    return levels


# ----------------------------
# Exported levels on disk
# ----------------------------


def read_level_lines(map_path: Path) -> List[str]:
    """Read grid lines from a .map file, dropping trailing blank lines."""
    lines = [line.rstrip("\r\n") for line in map_path.read_text(encoding="utf-8").splitlines()]
    while lines and not lines[-1].strip():
        lines.pop()
    return lines


def _character_from_dict(raw: Any) -> Optional[Character]:
    if not isinstance(raw, dict):
        return None
    try:
        return Character(**{k: raw[k] for k in Character.__dataclass_fields__})
    except (KeyError, TypeError):
        logger.debug("Ignoring malformed character block: %s", raw)
        return None


def load_level_folder(folder: Path) -> Level:
    """Load one exported level folder (levelN/levelN.map + optional levelN.json).

    Raises:
        FileNotFoundError: If the folder holds no .map file.
        LevelFormatError: If the map is malformed.
    """
    name = folder.name
    map_path = folder / f"{name}.map"
    if not map_path.exists():
        maps = sorted(folder.glob("*.map"))
        if not maps:
            raise FileNotFoundError(f"Level '{name}' not found.\n- Looked for {name}.map inside {folder}")
        map_path = maps[0]

    meta: Dict[str, Any] = {}
    json_path = folder / f"{name}.json"
    if json_path.exists():
        try:
            meta = json.loads(json_path.read_text(encoding="utf-8"))
        except json.JSONDecodeError as e:
            raise LevelFormatError(f"{json_path}: invalid JSON ({e})") from e

    m = _LEVEL_FOLDER_RE.match(name)
    number = int(meta.get("id", m.group(1) if m else 0))
    world = int(meta.get("world", (number - 1) // 10 + 1 if number > 0 else 1))
    stage = int(meta.get("stage", (number - 1) % 10 + 1 if number > 0 else 1))

    definition = LevelDefinition(
        id=number,
        world=world,
        stage=stage,
        title=str(meta.get("title", name)),
        snake_length=int(meta.get("snake_length", 1)),
        theme=int(meta.get("theme", (world - 1) % 6)),
        character=_character_from_dict(meta.get("character")),
        rows=tuple(read_level_lines(map_path)),
    )
    return parse_level(definition)


def load_levels_dir(levels_dir: Path) -> List[Level]:
    """Load every levelN folder under levels_dir, ordered by N."""
    if not levels_dir.exists():
        raise FileNotFoundError(f"Levels folder not found: {levels_dir}")

    folders = []
    for entry in levels_dir.iterdir():
        m = _LEVEL_FOLDER_RE.match(entry.name)
        if entry.is_dir() and m:
            folders.append((int(m.group(1)), entry))
    folders.sort(key=lambda pair: pair[0])

    levels = [load_level_folder(folder) for _, folder in folders]
    logger.info("Loaded %s levels from %s", len(levels), levels_dir)
    return levels
