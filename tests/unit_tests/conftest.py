import os
from collections import deque
from typing import Dict, Iterable, List, Optional, Sequence, Tuple

import pytest

os.environ.setdefault("SDL_VIDEODRIVER", "dummy")
os.environ.setdefault("SDL_AUDIODRIVER", "dummy")

from game import Game  # noqa: E402
from level_loader import parse_level  # noqa: E402
from models import GRID_COLS, GRID_ROWS, GameplayConfig, Level, LevelDefinition, TileKind  # noqa: E402
from rules import DIRECTIONS, step  # noqa: E402

Coord = Tuple[int, int]

# Moves are never held back by the move animation.
NO_ANIMATION = GameplayConfig(move_animation_ms=0)


def room_rows(marks: Dict[Coord, str]) -> Tuple[str, ...]:
    """A walled 20x15 room with single-character marks placed at (x, y)."""
    grid = []
    for y in range(GRID_ROWS):
        row = []
        for x in range(GRID_COLS):
            border = x in (0, GRID_COLS - 1) or y in (0, GRID_ROWS - 1)
            row.append("#" if border else ".")
        grid.append(row)
    for (x, y), ch in marks.items():
        grid[y][x] = ch
    return tuple("".join(r) for r in grid)


def make_level(
    marks: Dict[Coord, str],
    level_id: int = 1,
    snake_length: int = 1,
) -> Level:
    """Parse a room level; marks must include one 'S' and at least one 'E'."""
    return parse_level(
        LevelDefinition(
            id=level_id,
            world=1,
            stage=level_id,
            title=f"Test {level_id}",
            snake_length=snake_length,
            theme=0,
            character=None,
            rows=room_rows(marks),
        )
    )


def make_game(levels: Sequence[Level], gameplay: GameplayConfig = NO_ANIMATION, store=None) -> Game:
    """A game already playing the first level."""
    game = Game(levels=levels, store=store, gameplay=gameplay, clock=lambda: 0.0)
    assert game.start_game(from_beginning=True)
    game.drain_events()
    return game


def event_types(game: Game) -> List[str]:
    return [e.type for e in game.drain_events()]


def shortest_path(
    tiles: Sequence[Sequence[TileKind]],
    start: Coord,
    goal: Coord,
    avoid: Iterable[TileKind] = (
        TileKind.WALL,
        TileKind.OBSTACLE,
        TileKind.STAR_ITEM,
        TileKind.PORTAL_A,
        TileKind.PORTAL_B,
    ),
) -> Optional[List[str]]:
    """Direction names of a BFS shortest head path, or None if unreachable."""
    blocked = set(avoid)
    prev: Dict[Coord, Tuple[Coord, str]] = {}
    seen = {start}
    q = deque([start])
    while q:
        cell = q.popleft()
        if cell == goal:
            moves: List[str] = []
            while cell != start:
                cell, name = prev[cell]
                moves.append(name)
            moves.reverse()
            return moves
        for name in DIRECTIONS:
            nxt = step(cell, name)
            x, y = nxt
            if not (0 <= y < len(tiles) and 0 <= x < len(tiles[y])):
                continue
            if nxt in seen or (tiles[y][x] in blocked and nxt != goal):
                continue
            seen.add(nxt)
            prev[nxt] = (cell, name)
            q.append(nxt)
    return None


@pytest.fixture
def open_room() -> Level:
    return make_level({(1, 1): "S", (18, 13): "E"})
