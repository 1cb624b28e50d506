from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Iterator, List, Optional, Sequence, Set, Tuple

from game_types import Coord
from models import TileKind
from rules import DIRECTIONS, step, tile_reader

logger = logging.getLogger(__name__)

# Tie-break order for the initial placement search.
PLACEMENT_ORDER = ("right", "down", "left", "up")
# Upper bound on search steps; the longest chain found so far is used past it.
PLACEMENT_STEP_BUDGET = 20000


@dataclass(frozen=True)
class SnakeSnapshot:
    segments: Tuple[Coord, ...]
    direction: str


def build_initial_segments(
    spawn: Coord,
    length: int,
    tiles: Sequence[Sequence[TileKind]],
) -> List[Coord]:
    """Lay out a non-overlapping chain of `length` cells starting at spawn.

    Explicit-stack DFS; at every cell the open neighbors are tried in order of
    how many open neighbors they have themselves (most first), so the chain
    runs along corridors instead of curling into dead ends. If no chain of the
    full length exists, the longest chain found is padded by repeating its
    last cell.
    """
    tile_at = tile_reader(tiles)
    path: List[Coord] = [spawn]
    visited: Set[Coord] = {spawn}
    best: List[Coord] = list(path)

    def is_open(cell: Coord) -> bool:
        return tile_at(cell).walkable and cell not in visited

    def ranked_options(cell: Coord) -> Iterator[Coord]:
        options = []
        for name in PLACEMENT_ORDER:
            nxt = step(cell, name)
            if nxt is None or not is_open(nxt):
                continue
            score = sum(1 for n in PLACEMENT_ORDER if is_open(step(nxt, n)))  # type: ignore[arg-type]
            options.append((nxt, score))
        # sort is stable, so ties keep PLACEMENT_ORDER
        options.sort(key=lambda o: -o[1])
        return iter([cell for cell, _ in options])

    frames: List[Iterator[Coord]] = [ranked_options(spawn)]
    budget = PLACEMENT_STEP_BUDGET
    while frames and len(path) < length and budget > 0:
        budget -= 1
        nxt = next(frames[-1], None)
        if nxt is None:
            frames.pop()
            if frames:
                visited.discard(path.pop())
            continue

        visited.add(nxt)
        path.append(nxt)
        if len(path) > len(best):
            best = list(path)
        if len(path) >= length:
            break
        frames.append(ranked_options(nxt))

    chain = path if len(path) >= length else best
    if len(chain) < length:
        logger.debug("placement padded: reachable=%s required=%s", len(chain), length)
    while len(chain) < length:
        chain.append(chain[-1])
    return chain


class Snake:
    """Ordered body of grid cells, head first, plus a facing direction."""

    def __init__(
        self,
        spawn: Coord,
        length: int,
        tiles: Sequence[Sequence[TileKind]],
    ) -> None:
        self.segments: List[Coord] = build_initial_segments(spawn, max(1, length), tiles)
        self.direction = "right"

    def __len__(self) -> int:
        return len(self.segments)

    @property
    def head(self) -> Coord:
        return self.segments[0]

    @property
    def tail(self) -> Coord:
        return self.segments[-1]

    def clone_segments(self) -> List[Coord]:
        return list(self.segments)

    def snapshot(self) -> SnakeSnapshot:
        return SnakeSnapshot(segments=tuple(self.segments), direction=self.direction)

    def restore(self, snapshot: SnakeSnapshot) -> None:
        self.segments = list(snapshot.segments)
        self.direction = snapshot.direction

    def occupies(self, cell: Coord, ignore_tail: bool = False) -> bool:
        end = len(self.segments) - 1 if ignore_tail else len(self.segments)
        return cell in self.segments[:end]

    def move(self, direction: str) -> None:
        """Shift the body one cell; unknown directions are ignored."""
        if direction not in DIRECTIONS:
            return
        nxt = step(self.head, direction)
        self.segments.insert(0, nxt)  # type: ignore[arg-type]
        self.segments.pop()
        self.direction = direction

    def grow_from(self, position: Optional[Coord] = None) -> None:
        """Append one segment at `position` (defaults to the current tail)."""
        source = position if position is not None else self.segments[-1]
        self.segments.append((source[0], source[1]))

    def set_head(self, cell: Coord) -> None:
        self.segments[0] = cell

    def commit(self, segments: Sequence[Coord], direction: str) -> None:
        """Replace the whole body (used after rule resolution and undo)."""
        self.segments = list(segments)
        self.direction = direction


