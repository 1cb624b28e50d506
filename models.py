from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum, IntEnum
from typing import Any, Dict, List, Optional, Tuple

from game_types import Coord
from utils import clamp_int

GRID_COLS = 20
GRID_ROWS = 15
STORAGE_VERSION = 3


class TileKind(IntEnum):
    EMPTY = 0
    WALL = 1
    EXIT = 2
    OBSTACLE = 3
    SPAWN = 4
    ITEM = 5
    BIG_ITEM = 6
    STAR_ITEM = 7
    PORTAL_A = 8
    PORTAL_B = 9

    @property
    def walkable(self) -> bool:
        return self not in (TileKind.WALL, TileKind.OBSTACLE)

    @property
    def symbol(self) -> str:
        return TILE_SYMBOLS[self]

    @classmethod
    def from_symbol(cls, ch: str) -> "TileKind":
        """Map a template character to a tile kind.

        Raises:
            KeyError: If the symbol is unknown.
        """
        return SYMBOL_TILES[ch]


TILE_SYMBOLS: Dict[TileKind, str] = {
    TileKind.EMPTY: ".",
    TileKind.WALL: "#",
    TileKind.EXIT: "E",
    TileKind.OBSTACLE: "X",
    TileKind.SPAWN: "S",
    TileKind.ITEM: "I",
    TileKind.BIG_ITEM: "G",
    TileKind.STAR_ITEM: "T",
    TileKind.PORTAL_A: "P",
    TileKind.PORTAL_B: "Q",
}
SYMBOL_TILES: Dict[str, TileKind] = {ch: kind for kind, ch in TILE_SYMBOLS.items()}

GROWTH_TILES = (TileKind.ITEM, TileKind.BIG_ITEM)
PICKUP_TILES = (TileKind.ITEM, TileKind.BIG_ITEM, TileKind.STAR_ITEM)
PORTAL_TILES = (TileKind.PORTAL_A, TileKind.PORTAL_B)


class GameState(str, Enum):
    TITLE = "title"
    LEVEL_SELECT = "level_select"
    PLAYING = "playing"
    PAUSED = "paused"
    LEVEL_COMPLETE = "level_complete"
    GAME_COMPLETE = "game_complete"


STATE_TRANSITIONS: Dict[GameState, Tuple[GameState, ...]] = {
    GameState.TITLE: (GameState.LEVEL_SELECT, GameState.PLAYING),
    GameState.LEVEL_SELECT: (GameState.TITLE, GameState.PLAYING),
    GameState.PLAYING: (
        GameState.PAUSED,
        GameState.LEVEL_COMPLETE,
        GameState.GAME_COMPLETE,
        GameState.TITLE,
    ),
    GameState.PAUSED: (GameState.PLAYING, GameState.TITLE, GameState.LEVEL_SELECT),
    GameState.LEVEL_COMPLETE: (
        GameState.PLAYING,
        GameState.TITLE,
        GameState.LEVEL_SELECT,
    ),
    GameState.GAME_COMPLETE: (
        GameState.PLAYING,
        GameState.TITLE,
        GameState.LEVEL_SELECT,
    ),
}


# ----------------------------
# Levels
# ----------------------------


@dataclass(frozen=True)
class LevelMetrics:
    walkable: int
    dead_ends: int
    junctions: int
    pickups: int
    portals: int
    obstacles: int
    exits: int
    density: float
    score: int  # 1..10, display only


@dataclass(frozen=True)
class Character:
    number: int
    id: str
    name: str
    display_name: str
    shape_hint: str
    mood: str
    world: int
    stage: int
    primary: str
    secondary: str
    accent: str


@dataclass(frozen=True)
class LevelDefinition:
    """Raw generated level: map rows before parsing."""

    id: int
    world: int
    stage: int
    title: str
    snake_length: int
    theme: int
    character: Optional[Character]
    rows: Tuple[str, ...]


@dataclass(frozen=True)
class Level:
    """Parsed, read-only level. Tiles are stored as a tuple of row tuples."""

    id: int
    world: int
    stage: int
    title: str
    snake_length: int
    theme: int
    character: Optional[Character]
    spawn: Coord
    tiles: Tuple[Tuple[TileKind, ...], ...]
    metrics: LevelMetrics

    def clone_tiles(self) -> List[List[TileKind]]:
        """Return a mutable per-play copy of the tile grid."""
        return [list(row) for row in self.tiles]


# ----------------------------
# Move history / replay
# ----------------------------


@dataclass(frozen=True)
class ConsumedItem:
    cell: Coord
    tile: TileKind


@dataclass(frozen=True)
class PortalJump:
    entrance: Coord
    exit: Coord


@dataclass
class HistoryDelta:
    """Minimal record needed to invert one accepted move."""

    move_count_before: int
    previous_direction: str
    tail: Coord
    direction: str
    input_at_ms: float
    level_items_before: int
    total_items_before: int
    star_moves_before: int
    growth: int = 0
    consumed_item: Optional[ConsumedItem] = None
    portal_jump: Optional[PortalJump] = None


@dataclass(frozen=True)
class HistoryCheckpoint:
    move_count: int
    segments: Tuple[Coord, ...]
    direction: str
    collected: int


@dataclass(frozen=True)
class ReplayMove:
    direction: str
    elapsed_ms: int
    move_index: int


@dataclass
class ReplayLog:
    level_id: int
    started_at: float
    moves: List[ReplayMove] = field(default_factory=list)


@dataclass(frozen=True)
class ReplayArchive:
    level_id: int
    move_count: int
    moves: Tuple[ReplayMove, ...]
    start_segments: Tuple[Coord, ...]
    start_tiles: Tuple[Tuple[TileKind, ...], ...]


# ----------------------------
# Config
# ----------------------------


@dataclass(frozen=True)
class GameplayConfig:
    move_animation_ms: int = 120
    blocked_feedback_ms: int = 260
    deadlock_hint_ms: int = 2500
    input_debounce_ms: int = 80
    history_limit: int = 300
    star_power_moves: int = 8
    shake_amplitude: float = 8.0
    shake_duration_ms: int = 180

    @staticmethod
    def from_dict(raw: Dict[str, Any]) -> "GameplayConfig":
        if not isinstance(raw, dict):
            raw = {}
        return GameplayConfig(
            move_animation_ms=max(0, int(raw.get("move_animation_ms", 120))),
            blocked_feedback_ms=max(0, int(raw.get("blocked_feedback_ms", 260))),
            deadlock_hint_ms=max(0, int(raw.get("deadlock_hint_ms", 2500))),
            input_debounce_ms=max(0, int(raw.get("input_debounce_ms", 80))),
            history_limit=clamp_int(int(raw.get("history_limit", 300)), 1, 100000),
            star_power_moves=clamp_int(int(raw.get("star_power_moves", 8)), 1, 999),
            shake_amplitude=float(raw.get("shake_amplitude", 8.0)),
            shake_duration_ms=max(1, int(raw.get("shake_duration_ms", 180))),
        )


BINDABLE_ACTIONS: Tuple[str, ...] = (
    "move_up",
    "move_down",
    "move_left",
    "move_right",
    "undo",
    "restart",
    "pause",
    "next",
    "level_select",
)


@dataclass
class GameSettings:
    sound_enabled: bool = True
    bgm_enabled: bool = True
    bgm_track: str = "retro"
    vibration_enabled: bool = True
    high_contrast: bool = False
    color_blind_assist: bool = False
    reduce_motion: bool = False
    handedness: str = "right"
    reset_progress_on_new_game: bool = False
    show_perf_overlay: bool = False
    show_move_hints: bool = False
    language: str = "ko"
    tutorial_completed: bool = False
    mobile_performance_mode: str = "auto"
    master_volume: float = 0.8
    sfx_volume: float = 0.8
    dpad_position: Dict[str, Optional[float]] = field(
        default_factory=lambda: {"x": None, "y": None}
    )
    replay_debug_enabled: bool = False
    custom_bindings: Dict[str, str] = field(
        default_factory=lambda: {action: "" for action in BINDABLE_ACTIONS}
    )
    version: int = STORAGE_VERSION


@dataclass
class Progress:
    unlocked_level_index: int = 0
    best_moves: Dict[int, int] = field(default_factory=dict)
    total_moves: int = 0
    clears: int = 0
    total_items: int = 0
    version: int = STORAGE_VERSION
