#!/usr/bin/env python3
"""
generate_levels.py

Expands the 10 hand-authored base stages into 100 worm-maze levels
(10 worlds x 10 stages).

Per (world, stage):
- Seeds random.Random from (world, stage), so regeneration is reproducible
- Finds the BFS safe path from S to E on the base template
- Carves short dead-end branches off the safe path (more and longer per world)
- Scatters obstacles 'X', growth items 'I', big growth items 'G' and
  star items 'T' on side cells (never on the safe path, never next to S/E)
- Places one portal pair 'P'/'Q' far apart on eligible stages

The safe path is never touched, so every level stays solvable; the
validate_levels.py search re-checks that independently.

Run as a script to export the levels:
    python generate_levels.py --out levels
writes levels/level{id}/level{id}.map and levels/level{id}/level{id}.json
"""

from __future__ import annotations

import argparse
import json
import logging
import random
from collections import deque
from dataclasses import asdict, dataclass
from pathlib import Path
from typing import Callable, Dict, List, Optional, Sequence, Tuple

from game_types import Coord
from models import Character, LevelDefinition
from utils import manhattan

logger = logging.getLogger(__name__)

WORLD_COUNT = 10
STAGES_PER_WORLD = 10
THEME_COUNT = 6

PASSABLE_DEFAULT = "."
WALL_TILE = "#"
BLOCKING_TILES = {"#", "X"}

SAFE_MARGIN = 2  # side cells must be farther than this from S and E
PORTAL_MIN_ANCHOR_DISTANCE = 6
PORTAL_MIN_SEPARATION = 8
PORTAL_SAMPLE_SIZE = 24

STAGE_TITLES = [
    "Warm-Up Lanes",
    "Bouncy S-Curves",
    "Branch Explorer",
    "Puzzle Rooms",
    "Tunnel Twists",
    "Crossroad Choice",
    "Spiral Surprise",
    "Long Adventure",
    "Dead-End Dodge",
    "World Challenge",
]

WORLD_TITLES = [
    "Sunny Start",
    "Candy Garden",
    "Warp Woods",
    "Star City",
    "Twisty Canyon",
    "Maze Factory",
    "Glow Castle",
    "Comet Road",
    "Trickster Land",
    "Grand Finale",
]

CHARACTER_MOODS = [
    "Brave",
    "Curious",
    "Cheerful",
    "Calm",
    "Quick",
    "Bold",
    "Focused",
    "Bright",
    "Smart",
    "Playful",
]

CHARACTER_PALETTES = [
    ("#ffda45", "#ffab2f", "#ff5a7f"),
    ("#66e07f", "#3bbf64", "#39a8ff"),
    ("#7cc2ff", "#3f91ff", "#ffd54c"),
    ("#ff9f5c", "#f4723c", "#5c7dff"),
    ("#be90ff", "#8b5ae2", "#7df29d"),
    ("#ff78ca", "#ea4ea9", "#69d5ff"),
]

# Stage shapes shared by every world. 'S' spawn, 'E' exit.
BASE_STAGE_MAPS: List[Tuple[str, ...]] = [
    (
        "####################",
        "#S....I............#",
        "#..................#",
        "#..######..........#",
        "#..#....#..........#",
        "#..#....#..........#",
        "#..#....######.....#",
        "#..#...............#",
        "#..######..........#",
        "#..................#",
        "#..........######..#",
        "#..........#....#..#",
        "#..........#....#E.#",
        "#..................#",
        "####################",
    ),
    (
        "####################",
        "#S.I..#####........#",
        "#.###.#...#.######.#",
        "#...#.#.#.#.#....#.#",
        "###.#.#.#.#.#.##.#.#",
        "#...#...#...#.#..#.#",
        "#.###########.#.##.#",
        "#...........#.#....#",
        "#.#########.#.######",
        "#.#.......#.#......#",
        "#.#.#####.#.######.#",
        "#.#.....#.#....#...#",
        "#.#####.#.####.#.E.#",
        "#.......#......#...#",
        "####################",
    ),
    (
        "####################",
        "#S....I............#",
        "#.######.#########.#",
        "#.#....#.....#.....#",
        "#.#.##.#####.#.###.#",
        "#.#.#......#.#...#.#",
        "#...#.####.#.###.#.#",
        "###.#.#..#.#...#.#.#",
        "#...#.#..#.###.#.#.#",
        "#.###.##.#.....#.#.#",
        "#.....#..#######.#.#",
        "#.#####........#.#.#",
        "#.#.....######.#.#E#",
        "#...####......#....#",
        "####################",
    ),
    (
        "####################",
        "#S....I........#...#",
        "#.###########..#.#.#",
        "#.#.........#..#.#.#",
        "#.#.#######.#..#.#.#",
        "#.#.#.....#.#..#.#.#",
        "#...#.XXX.#.#..#.#.#",
        "###.#.XXX.#.#..#.#.#",
        "#...#.XXX.#.#....#.#",
        "#.###.....#.######.#",
        "#...#######........#",
        "#.#########.######.#",
        "#.......#..........#",
        "#.#####.#.########E#",
        "####################",
    ),
    (
        "####################",
        "#S..#....I.........#",
        "#..#.#.##########..#",
        "#..#.#...........#.#",
        "#.##.###########.#.#",
        "#....#.........#.#.#",
        "####.#.#######.#.#.#",
        "#....#.#.....#.#.#.#",
        "#.####.#.###.#.#.#.#",
        "#.#....#...#.#.#.#.#",
        "#.#.######.#.#.#.#.#",
        "#.#......#.#.#...#.#",
        "#.######.#.#.#####.#",
        "#........#.....E...#",
        "####################",
    ),
    (
        "####################",
        "#S....I............#",
        "#.#########.######.#",
        "#.#.......#.#....#.#",
        "#.#.#####.#.#.##.#.#",
        "#.#.#...#.#.#.#..#.#",
        "#...#.#.#...#.#.##.#",
        "#####.#.#####.#....#",
        "#.....#.....#.#.####",
        "#.#########.#.#....#",
        "#.#.......#.#.##.#.#",
        "#.#.#####.#.#....#.#",
        "#.#.....#.#.######.#",
        "#.#####.#.#......E.#",
        "####################",
    ),
    (
        "####################",
        "#S....I............#",
        "#.################.#",
        "#.#..............#.#",
        "#.#.############.#.#",
        "#.#.#..........#.#.#",
        "#.#.#.########.#.#.#",
        "#.#.#.#......#.#.#.#",
        "#.#.#.#.####.#.#.#.#",
        "#.#.#.#....#.#.#.#.#",
        "#.#.#.####.#.#.#.#.#",
        "#.#.#......#.#.#.#.#",
        "#.#.########.#.#.#.#",
        "#.................E#",
        "####################",
    ),
    (
        "####################",
        "#S....#....I.......#",
        "#.##.#.#.#########.#",
        "#....#.#.......#...#",
        "#.####.#####.#.#.#.#",
        "#......#...#.#.#.#.#",
        "#.######.#.#.#.#.#.#",
        "#.#....#.#.#.#.#.#.#",
        "#.#.##.#.#.#.#.#.#.#",
        "#.#....#.#.#.#.#.#.#",
        "#.######.#.#.#.#.#.#",
        "#........#.#.#.#.#.#",
        "#.########.#.#.#.#.#",
        "#...............E..#",
        "####################",
    ),
    (
        "####################",
        "#S...I...#.........#",
        "#.#####.#.#.#####..#",
        "#.#...#.#.#.#...#..#",
        "#.#.#.#.#.#.#.#.#..#",
        "#...#...#...#.#.#..#",
        "###.#########.#.#..#",
        "#...#.......#.#.#..#",
        "#.###.#####.#.#.#..#",
        "#.#...#...#.#.#.#..#",
        "#.#.###.#.#.#.#.#..#",
        "#.#.....#.#.#...#..#",
        "#.#######.#.#####..#",
        "#...............E..#",
        "####################",
    ),
    (
        "####################",
        "#S....#....I.......#",
        "#.##.#.#.#########.#",
        "#....#.#.......#...#",
        "#.####.#####.#.#.#.#",
        "#......#...#.#.#.#.#",
        "#.######.#.#.#.#.#.#",
        "#.#....#.#.#.#.#.#.#",
        "#.#.##.#.#.#.#.#.#.#",
        "#.#....#.#.#.#.#.#.#",
        "#.######.#.#.#.#.#.#",
        "#........#.#.#.#.#.#",
        "#.########.#.#.#.#.#",
        "#...............E..#",
        "####################",
    ),
]


def level_seed(world: int, stage: int) -> int:
    return world * 100003 + stage * 17011 + 97


def level_id(world: int, stage: int) -> int:
    return (world - 1) * STAGES_PER_WORLD + stage


# ----------------------------
# Grid
# ----------------------------


class GridBuilder:
    def __init__(self, rows: Sequence[str]) -> None:
        self.height = len(rows)
        self.width = max((len(r) for r in rows), default=0)
        self.grid: List[List[str]] = [
            list(r.ljust(self.width, PASSABLE_DEFAULT)) for r in rows
        ]

    def get(self, x: int, y: int) -> str:
        if 0 <= x < self.width and 0 <= y < self.height:
            return self.grid[y][x]
        return WALL_TILE

    def set(self, x: int, y: int, ch: str) -> None:
        if 0 <= x < self.width and 0 <= y < self.height:
            self.grid[y][x] = ch

    def is_interior(self, x: int, y: int) -> bool:
        return 0 < x < self.width - 1 and 0 < y < self.height - 1

    def is_walkable(self, x: int, y: int) -> bool:
        return (
            0 <= x < self.width
            and 0 <= y < self.height
            and self.grid[y][x] not in BLOCKING_TILES
        )

    def find(self, ch: str) -> Optional[Coord]:
        for y, row in enumerate(self.grid):
            for x, c in enumerate(row):
                if c == ch:
                    return (x, y)
        return None

    def collect(self, predicate: Callable[[str, int, int], bool]) -> List[Coord]:
        return [
            (x, y)
            for y, row in enumerate(self.grid)
            for x, c in enumerate(row)
            if predicate(c, x, y)
        ]

    def rows(self) -> Tuple[str, ...]:
        return tuple("".join(r) for r in self.grid)


# ----------------------------
# Safe path (guaranteed route)
# ----------------------------

NEIGHBOR_STEPS: Tuple[Coord, ...] = ((1, 0), (-1, 0), (0, 1), (0, -1))


class SafePathFinder:
    """Breadth-first shortest route from spawn to exit over non-blocking cells."""

    def find(self, gb: GridBuilder, start: Optional[Coord], goal: Optional[Coord]) -> List[Coord]:
        if start is None or goal is None:
            return []

        q = deque([start])
        prev: Dict[Coord, Optional[Coord]] = {start: None}

        while q:
            node = q.popleft()
            if node == goal:
                path: List[Coord] = []
                cursor: Optional[Coord] = node
                while cursor is not None:
                    path.append(cursor)
                    cursor = prev[cursor]
                path.reverse()
                return path

            x, y = node
            for dx, dy in NEIGHBOR_STEPS:
                nxt = (x + dx, y + dy)
                if nxt in prev or not gb.is_walkable(*nxt):
                    continue
                prev[nxt] = node
                q.append(nxt)
        return []


# ----------------------------
# Branches (exploration surface)
# ----------------------------


class BranchCarver:
    """Carves short wall corridors off random safe-path cells."""

    def __init__(self, rng: random.Random) -> None:
        self.rng = rng

    @staticmethod
    def budget(world: int, stage: int) -> int:
        count = 1 + world // 2 + stage // 4
        if world >= 7:
            count += 2
        if world >= 9:
            count += 2
        return count

    @staticmethod
    def max_length(world: int) -> int:
        if world >= 8:
            return 6
        if world >= 6:
            return 5
        return 3

    def carve(self, gb: GridBuilder, safe_path: Sequence[Coord], world: int, stage: int) -> int:
        """Carve branches; returns how many branches were carved."""
        remaining = self.budget(world, stage)
        max_len = self.max_length(world)
        attempts = remaining * 14
        carved_branches = 0

        if len(safe_path) < 6:
            return 0

        for _ in range(attempts):
            if remaining <= 0:
                break
            origin = safe_path[2 + int(self.rng.random() * (len(safe_path) - 4))]
            dx, dy = NEIGHBOR_STEPS[int(self.rng.random() * len(NEIGHBOR_STEPS))]
            nx, ny = origin[0] + dx, origin[1] + dy

            if not gb.is_interior(nx, ny) or gb.get(nx, ny) != WALL_TILE:
                continue

            length = 1 + int(self.rng.random() * max_len)
            carved = 0
            for _ in range(length):
                if not gb.is_interior(nx, ny) or gb.get(nx, ny) != WALL_TILE:
                    break
                gb.set(nx, ny, PASSABLE_DEFAULT)
                carved += 1
                nx += dx
                ny += dy

            # a branch blocked on its first cell does not use up the budget
            if carved > 0:
                remaining -= 1
                carved_branches += 1
        return carved_branches


# ----------------------------
# Content: obstacles, items, stars, portals
# ----------------------------


@dataclass(frozen=True)
class ContentBudget:
    obstacles: int
    items: int
    big_items: int
    stars: int
    portals: bool

    @staticmethod
    def for_level(world: int, stage: int) -> "ContentBudget":
        obstacles = max(0, world - 3) + stage // 3
        if world >= 7:
            obstacles += 2 + stage // 2
        if world >= 9:
            obstacles += 2

        stars = 0
        if world >= 3:
            stars = 1
        if world >= 6:
            stars = 2
        if world >= 9:
            stars = 3

        portals = (world >= 2 and stage % 2 == 0) or world >= 5 or stage == 10

        return ContentBudget(
            obstacles=obstacles,
            items=min(16, 5 + world + stage // 2),
            big_items=min(5, 1 + (world + stage) // 5) if world >= 2 else 0,
            stars=stars,
            portals=portals,
        )


class ContentPlacer:
    def __init__(self, rng: random.Random) -> None:
        self.rng = rng

    def shuffle(self, items: List[Coord]) -> List[Coord]:
        """Fisher-Yates shuffle driven by the level generator's rng."""
        for i in range(len(items) - 1, 0, -1):
            j = int(self.rng.random() * (i + 1))
            items[i], items[j] = items[j], items[i]
        return items

    def place_symbols(self, gb: GridBuilder, symbol: str, count: int, candidates: Sequence[Coord]) -> int:
        """Randomized-then-greedy: shuffle, consume from the end, skip non-empty cells."""
        pool = self.shuffle(list(candidates))
        placed = 0
        while pool and placed < count:
            x, y = pool.pop()
            if gb.get(x, y) != PASSABLE_DEFAULT:
                continue
            gb.set(x, y, symbol)
            placed += 1
        return placed

    def place_portal_pair(
        self,
        gb: GridBuilder,
        candidates: Sequence[Coord],
        spawn: Coord,
        exit_cell: Coord,
    ) -> bool:
        """Place 'P'/'Q' on the most distant eligible pair; False if none qualifies."""
        eligible = [
            c
            for c in candidates
            if manhattan(c, spawn) >= PORTAL_MIN_ANCHOR_DISTANCE
            and manhattan(c, exit_cell) >= PORTAL_MIN_ANCHOR_DISTANCE
        ]
        if len(eligible) < 2:
            return False

        sample = self.shuffle(list(eligible))[:PORTAL_SAMPLE_SIZE]
        best: Optional[Tuple[Coord, Coord]] = None
        best_dist = -1
        for i, a in enumerate(sample):
            for b in sample[i + 1:]:
                d = manhattan(a, b)
                if d > best_dist:
                    best_dist = d
                    best = (a, b)

        if best is None or best_dist < PORTAL_MIN_SEPARATION:
            return False

        a, b = best
        if gb.get(*a) != PASSABLE_DEFAULT or gb.get(*b) != PASSABLE_DEFAULT:
            return False
        gb.set(a[0], a[1], "P")
        gb.set(b[0], b[1], "Q")
        return True


# ----------------------------
# Characters / titles
# ----------------------------

_ONES = ["", "One", "Two", "Three", "Four", "Five", "Six", "Seven", "Eight", "Nine"]
_TEENS = [
    "Ten",
    "Eleven",
    "Twelve",
    "Thirteen",
    "Fourteen",
    "Fifteen",
    "Sixteen",
    "Seventeen",
    "Eighteen",
    "Nineteen",
]
_TENS = ["", "", "Twenty", "Thirty", "Forty", "Fifty", "Sixty", "Seventy", "Eighty", "Ninety"]


def number_word(n: int) -> str:
    n = max(1, int(n))
    if n < 10:
        return _ONES[n]
    if n < 20:
        return _TEENS[n - 10]
    if n < 100:
        tens, ones = divmod(n, 10)
        return f"{_TENS[tens]}-{_ONES[ones]}" if ones else _TENS[tens]
    if n == 100:
        return "One Hundred"
    return f"No. {n}"


def create_character(number: int, world: int, stage: int) -> Character:
    primary, secondary, accent = CHARACTER_PALETTES[(number - 1) % len(CHARACTER_PALETTES)]
    name = number_word(number)
    if number == 1:
        shape = "Circle"
    elif number == 8:
        shape = "Octoblock"
    else:
        shape = "Block"
    return Character(
        number=number,
        id=f"num-{number}",
        name=name,
        display_name=f"{name} · #{number}",
        shape_hint=shape,
        mood=CHARACTER_MOODS[(number - 1) % len(CHARACTER_MOODS)],
        world=world,
        stage=stage,
        primary=primary,
        secondary=secondary,
        accent=accent,
    )


# ----------------------------
# Generator orchestration
# ----------------------------


class LevelGenerator:
    """Augments one base stage for a given (world, stage)."""

    def __init__(self, world: int, stage: int) -> None:
        self.world = world
        self.stage = stage
        self.rng = random.Random(level_seed(world, stage))
        self.path_finder = SafePathFinder()
        self.branches = BranchCarver(self.rng)
        self.content = ContentPlacer(self.rng)

    def enhance(self, base_rows: Sequence[str]) -> Tuple[str, ...]:
        gb = GridBuilder(base_rows)
        spawn = gb.find("S")
        exit_cell = gb.find("E")

        safe_path = self.path_finder.find(gb, spawn, exit_cell)
        if not safe_path or spawn is None or exit_cell is None:
            logger.warning("W%s-L%s: template has no safe path, using it unmodified", self.world, self.stage)
            return tuple(base_rows)

        self.branches.carve(gb, safe_path, self.world, self.stage)

        safe_path = self.path_finder.find(gb, spawn, exit_cell)
        if not safe_path:
            logger.warning("W%s-L%s: safe path lost after carving, using template", self.world, self.stage)
            return tuple(base_rows)
        safe_set = set(safe_path)

        def side_cells() -> List[Coord]:
            return gb.collect(
                lambda c, x, y: c == PASSABLE_DEFAULT
                and (x, y) not in safe_set
                and manhattan((x, y), spawn) > SAFE_MARGIN
                and manhattan((x, y), exit_cell) > SAFE_MARGIN
            )

        budget = ContentBudget.for_level(self.world, self.stage)

        self.content.place_symbols(gb, "X", budget.obstacles, side_cells())

        if budget.portals and not self.content.place_portal_pair(gb, side_cells(), spawn, exit_cell):
            logger.debug("W%s-L%s: no eligible portal pair, portals omitted", self.world, self.stage)

        candidates = side_cells()
        self.content.place_symbols(gb, "I", budget.items, candidates)
        self.content.place_symbols(gb, "G", budget.big_items, candidates)
        self.content.place_symbols(gb, "T", budget.stars, candidates)

        return gb.rows()


def build_level_definition(world: int, stage: int) -> LevelDefinition:
    number = level_id(world, stage)
    rows = LevelGenerator(world, stage).enhance(BASE_STAGE_MAPS[stage - 1])
    return LevelDefinition(
        id=number,
        world=world,
        stage=stage,
        title=f"W{world}-L{stage} {WORLD_TITLES[world - 1]} / {STAGE_TITLES[stage - 1]}",
        snake_length=2 if world >= 9 else 1,
        theme=(world - 1) % THEME_COUNT,
        character=create_character(number, world, stage),
        rows=rows,
    )


def generate_all() -> List[LevelDefinition]:
    return [
        build_level_definition(world, stage)
        for world in range(1, WORLD_COUNT + 1)
        for stage in range(1, STAGES_PER_WORLD + 1)
    ]


# ----------------------------
# Writer
# ----------------------------


@dataclass(frozen=True)
class LevelPaths:
    folder: Path
    json_path: Path
    map_path: Path


class LevelWriter:
    def __init__(self, levels_root: Path) -> None:
        self.levels_root = levels_root

    def paths_for(self, idx: int) -> LevelPaths:
        folder = self.levels_root / f"level{idx}"
        return LevelPaths(
            folder=folder,
            json_path=folder / f"level{idx}.json",
            map_path=folder / f"level{idx}.map",
        )

    def write(self, definition: LevelDefinition, overwrite: bool = False) -> LevelPaths:
        from level_loader import compute_difficulty_metrics, parse_level

        paths = self.paths_for(definition.id)
        paths.folder.mkdir(parents=True, exist_ok=overwrite)

        level = parse_level(definition)
        payload = {
            "id": definition.id,
            "world": definition.world,
            "stage": definition.stage,
            "title": definition.title,
            "snake_length": definition.snake_length,
            "theme": definition.theme,
            "character": asdict(definition.character) if definition.character else None,
            "metrics": asdict(compute_difficulty_metrics(level.tiles)),
        }
        paths.json_path.write_text(json.dumps(payload, indent=2), encoding="utf-8")
        paths.map_path.write_text("\n".join(definition.rows) + "\n", encoding="utf-8")
        return paths


# ----------------------------
# CLI
# ----------------------------


def parse_args(argv: Optional[Sequence[str]] = None) -> argparse.Namespace:
    p = argparse.ArgumentParser(description="Export the generated worm-maze levels as .map files.")
    p.add_argument(
        "--out",
        type=str,
        default="levels",
        help="Output folder (default: levels)",
    )
    p.add_argument(
        "--world",
        type=int,
        default=None,
        help="Only export one world (1-10).",
    )
    p.add_argument(
        "--overwrite",
        action="store_true",
        help="Replace existing level folders.",
    )
    return p.parse_args(argv)


def main(argv: Optional[Sequence[str]] = None) -> None:
    args = parse_args(argv)
    if args.world is not None and not 1 <= args.world <= WORLD_COUNT:
        raise SystemExit(f"--world must be within 1..{WORLD_COUNT}")

    writer = LevelWriter(Path(args.out))
    worlds = [args.world] if args.world else range(1, WORLD_COUNT + 1)
    for world in worlds:
        for stage in range(1, STAGES_PER_WORLD + 1):
            definition = build_level_definition(world, stage)
            paths = writer.write(definition, overwrite=args.overwrite)
            print(f"Generated level{definition.id}: {definition.title} -> {paths.map_path}")


if __name__ == "__main__":
    main()
