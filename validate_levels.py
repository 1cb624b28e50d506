#!/usr/bin/env python3
"""
validate_levels.py

Breadth-first solvability check for every level.

State = (body segments, star power left). Tiles are treated as static: items
are not consumed and the body does not grow, which keeps the state space
finite. A level passes when some reachable state has its head on an exit.

Usage:
    python validate_levels.py            # all built-in levels
    python validate_levels.py --levels-dir levels
Exits with status 1 if any level fails.
"""

from __future__ import annotations

import argparse
import logging
from collections import deque
from dataclasses import dataclass
from pathlib import Path
from typing import Deque, Optional, Sequence, Set, Tuple

from game_types import Coord
from models import GameplayConfig, Level, TileKind
from rules import DIRECTIONS, build_portal_links, resolve_move, tile_reader
from snake import build_initial_segments
from utils import point_key

logger = logging.getLogger(__name__)

STATE_BUDGET = 350_000

SearchState = Tuple[Tuple[Coord, ...], int]


@dataclass(frozen=True)
class SolveResult:
    solved: bool
    steps: int = 0
    explored: int = 0
    timeout: bool = False


def state_key(segments: Sequence[Coord], star_moves: int) -> str:
    return "|".join(point_key(s) for s in segments) + f"#{star_moves}"


def solve_level(
    level: Level,
    budget: int = STATE_BUDGET,
    star_power_moves: int = GameplayConfig().star_power_moves,
) -> SolveResult:
    """Search for any move sequence that brings the head onto an exit.

    Args:
        level: Parsed level to check.
        budget: Maximum number of distinct visited states.
        star_power_moves: Star counter granted by a StarItem.

    Returns:
        SolveResult; `timeout` is set when the budget ran out first.
    """
    tiles = level.tiles
    tile_at = tile_reader(tiles)
    links = build_portal_links(tiles)
    start = tuple(build_initial_segments(level.spawn, level.snake_length, tiles))

    queue: Deque[Tuple[SearchState, int]] = deque([((start, 0), 0)])
    seen: Set[str] = {state_key(start, 0)}

    while queue:
        (segments, star), depth = queue.popleft()
        if tile_at(segments[0]) == TileKind.EXIT:
            return SolveResult(solved=True, steps=depth, explored=len(seen))
        if len(seen) > budget:
            return SolveResult(solved=False, explored=len(seen), timeout=True)

        for direction in DIRECTIONS:
            outcome = resolve_move(
                segments,
                tile_at,
                star,
                direction,
                links,
                star_power_moves=star_power_moves,
                apply_growth=False,
            )
            if not outcome.accepted:
                continue
            key = state_key(outcome.segments, outcome.star_moves)
            if key in seen:
                continue
            seen.add(key)
            queue.append(((outcome.segments, outcome.star_moves), depth + 1))

    return SolveResult(solved=False, explored=len(seen))


# ----------------------------
# CLI
# ----------------------------


def parse_args(argv: Optional[Sequence[str]] = None) -> argparse.Namespace:
    p = argparse.ArgumentParser(description="Check that every level can be completed.")
    p.add_argument(
        "--levels-dir",
        type=str,
        default=None,
        help="Validate exported levels from this folder instead of the built-in set.",
    )
    p.add_argument(
        "--budget",
        type=int,
        default=STATE_BUDGET,
        help=f"Visited-state limit per level (default: {STATE_BUDGET})",
    )
    return p.parse_args(argv)


def main(argv: Optional[Sequence[str]] = None) -> int:
    from level_loader import build_levels, load_levels_dir

    args = parse_args(argv)
    levels = load_levels_dir(Path(args.levels_dir)) if args.levels_dir else list(build_levels())

    failures = 0
    for level in levels:
        result = solve_level(level, budget=args.budget)
        if result.solved:
            print(f"[OK]   level {level.id:3d} steps={result.steps} explored={result.explored}")
        else:
            failures += 1
            reason = "timeout" if result.timeout else "unsolved"
            print(f"[FAIL] level {level.id:3d} {reason} explored={result.explored}")

    print(f"{len(levels) - failures}/{len(levels)} levels solvable")
    return 1 if failures else 0


if __name__ == "__main__":
    raise SystemExit(main())
