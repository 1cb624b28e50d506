"""
rules.py

The single move-resolution rule set shared by live play (game.Game), the
offline solvability search (validate_levels) and the replay debugger.

resolve_move() never mutates its inputs. Callers that keep a mutable grid
(the engine, the replay debugger) apply the returned outcome themselves:
rewrite consumed tiles to EMPTY and commit the new segments.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Callable, Dict, Iterable, List, Optional, Sequence, Tuple

from game_types import Coord
from models import GRID_COLS, GRID_ROWS, PORTAL_TILES, PortalJump, TileKind

DIRECTIONS: Dict[str, Coord] = {
    "up": (0, -1),
    "down": (0, 1),
    "left": (-1, 0),
    "right": (1, 0),
}

ITEM_GROWTH: Dict[TileKind, int] = {
    TileKind.ITEM: 1,
    TileKind.BIG_ITEM: 2,
}

TileLookup = Callable[[Coord], TileKind]


def is_inside(cell: Coord) -> bool:
    x, y = cell
    return 0 <= x < GRID_COLS and 0 <= y < GRID_ROWS


def tile_reader(tiles: Sequence[Sequence[TileKind]]) -> TileLookup:
    """Return a lookup over a grid; cells outside the board read as WALL."""

    def tile_at(cell: Coord) -> TileKind:
        x, y = cell
        if not (0 <= y < len(tiles) and 0 <= x < len(tiles[y])):
            return TileKind.WALL
        return TileKind(tiles[y][x])

    return tile_at


def step(cell: Coord, direction: str) -> Optional[Coord]:
    d = DIRECTIONS.get(direction)
    if d is None:
        return None
    return (cell[0] + d[0], cell[1] + d[1])


def can_enter(tile: TileKind, star_moves: int) -> bool:
    if tile == TileKind.WALL:
        return False
    if tile == TileKind.OBSTACLE and star_moves <= 0:
        return False
    return True


def find_tiles(tiles: Sequence[Sequence[TileKind]], kind: TileKind) -> List[Coord]:
    """All cells of a kind, row-major."""
    return [
        (x, y)
        for y, row in enumerate(tiles)
        for x, tile in enumerate(row)
        if tile == kind
    ]


def build_portal_links(tiles: Sequence[Sequence[TileKind]]) -> Dict[Coord, Coord]:
    """Link the first PORTAL_A with the first PORTAL_B (row-major), both ways.

    Extra portal tiles beyond the first of each kind are never linked.
    """
    firsts = [find_tiles(tiles, kind) for kind in PORTAL_TILES]
    if not firsts[0] or not firsts[1]:
        return {}
    a, b = firsts[0][0], firsts[1][0]
    return {a: b, b: a}


def legal_directions(head: Coord, tile_at: TileLookup, star_moves: int) -> List[str]:
    result: List[str] = []
    for name in DIRECTIONS:
        nxt = step(head, name)
        if nxt is not None and can_enter(tile_at(nxt), star_moves):
            result.append(name)
    return result


@dataclass(frozen=True)
class MoveOutcome:
    accepted: bool
    candidate: Optional[Coord] = None
    tile: Optional[TileKind] = None
    blocked_reason: Optional[str] = None  # wall|obstacle|invalid
    segments: Tuple[Coord, ...] = ()
    growth: int = 0
    star_moves: int = 0
    star_activated: bool = False
    power_ended: bool = False
    consumed: Optional[TileKind] = None
    portal_jump: Optional[PortalJump] = None

    @property
    def head(self) -> Optional[Coord]:
        return self.segments[0] if self.segments else None


def _blocked(candidate: Optional[Coord], tile: Optional[TileKind], reason: str) -> MoveOutcome:
    return MoveOutcome(accepted=False, candidate=candidate, tile=tile, blocked_reason=reason)


def resolve_move(
    segments: Sequence[Coord],
    tile_at: TileLookup,
    star_moves: int,
    direction: str,
    portal_links: Dict[Coord, Coord],
    star_power_moves: int = 8,
    apply_growth: bool = True,
) -> MoveOutcome:
    """Resolve one move against the rule set.

    Order of effects: shift the body, apply the candidate tile's item effect
    (growth is appended at the pre-move tail), warp the head through a linked
    portal, then tick star power.

    Args:
        segments: Current body, head first. Must not be empty.
        tile_at: Tile lookup for the current grid.
        star_moves: Remaining star power before the move.
        direction: One of DIRECTIONS.
        portal_links: Symmetric portal link table.
        star_power_moves: Counter value granted by a StarItem.
        apply_growth: If False, growth is reported but the body keeps its length.

    Returns:
        A MoveOutcome; `accepted` is False when the move is blocked.
    """
    candidate = step(segments[0], direction)
    if candidate is None:
        return _blocked(None, None, "invalid")

    tile = tile_at(candidate)
    if not can_enter(tile, star_moves):
        return _blocked(candidate, tile, "obstacle" if tile == TileKind.OBSTACLE else "wall")

    tail = segments[-1]
    moved: List[Coord] = [candidate]
    moved.extend(segments[:-1])

    growth = ITEM_GROWTH.get(tile, 0)
    next_star = star_moves
    activated = False
    consumed: Optional[TileKind] = None
    if growth:
        consumed = tile
        if apply_growth:
            moved.extend([tail] * growth)
    elif tile == TileKind.STAR_ITEM:
        consumed = tile
        next_star = star_power_moves
        activated = True

    jump: Optional[PortalJump] = None
    if tile in PORTAL_TILES:
        destination = portal_links.get(candidate)
        if destination is not None and can_enter(tile_at(destination), next_star):
            moved[0] = destination
            jump = PortalJump(entrance=candidate, exit=destination)

    power_ended = False
    if next_star > 0 and not activated:
        next_star -= 1
        if next_star <= 0:
            next_star = 0
            power_ended = True

    return MoveOutcome(
        accepted=True,
        candidate=candidate,
        tile=tile,
        segments=tuple(moved),
        growth=growth,
        star_moves=next_star,
        star_activated=activated,
        power_ended=power_ended,
        consumed=consumed,
        portal_jump=jump,
    )


def iter_neighbors(cell: Coord) -> Iterable[Coord]:
    for dx, dy in DIRECTIONS.values():
        yield (cell[0] + dx, cell[1] + dy)
