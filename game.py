from __future__ import annotations

import json
import logging
import math
import time
from collections import deque
from dataclasses import asdict, dataclass
from typing import Any, Callable, Deque, Dict, List, Optional, Sequence, Tuple

from config_parsing import merge_settings, normalize_key_token, settings_to_dict
from game_types import Coord
from models import (
    BINDABLE_ACTIONS,
    GROWTH_TILES,
    STATE_TRANSITIONS,
    Character,
    ConsumedItem,
    GameplayConfig,
    GameSettings,
    GameState,
    HistoryCheckpoint,
    HistoryDelta,
    Level,
    LevelMetrics,
    Progress,
    ReplayArchive,
    ReplayLog,
    ReplayMove,
    TileKind,
)
from progress_store import ProgressStore
from rules import (
    DIRECTIONS,
    build_portal_links,
    can_enter,
    legal_directions,
    resolve_move,
    tile_reader,
)
from snake import Snake
from utils import clamp_float, clamp_int

logger = logging.getLogger(__name__)

CHECKPOINT_INTERVAL = 20
CHECKPOINT_LIMIT = 12
PACING_GATE_RATIO = 0.7

MOVE_ACTIONS: Dict[str, str] = {
    "move_up": "up",
    "move_down": "down",
    "move_left": "left",
    "move_right": "right",
}

# Tokens are pygame.key.name() values.
DEFAULT_KEY_BINDINGS: Dict[str, Tuple[str, ...]] = {
    "move_up": ("up", "w"),
    "move_down": ("down", "s"),
    "move_left": ("left", "a"),
    "move_right": ("right", "d"),
    "undo": ("z",),
    "restart": ("r",),
    "pause": ("p", "escape"),
    "next": ("n",),
    "start": ("return", "space"),
    "level_select": ("l",),
}

ITEM_EVENT_KINDS: Dict[TileKind, str] = {
    TileKind.ITEM: "item",
    TileKind.BIG_ITEM: "big_item",
    TileKind.STAR_ITEM: "star",
}

STATE_LABELS: Dict[str, Dict[GameState, str]] = {
    "en": {
        GameState.TITLE: "Title",
        GameState.LEVEL_SELECT: "Level Select",
        GameState.PLAYING: "Playing",
        GameState.PAUSED: "Paused",
        GameState.LEVEL_COMPLETE: "Level Clear",
        GameState.GAME_COMPLETE: "Game Complete",
    },
    "ko": {
        GameState.TITLE: "타이틀",
        GameState.LEVEL_SELECT: "레벨 선택",
        GameState.PLAYING: "플레이 중",
        GameState.PAUSED: "일시정지",
        GameState.LEVEL_COMPLETE: "레벨 클리어",
        GameState.GAME_COMPLETE: "게임 완료",
    },
}


def wall_clock_ms() -> float:
    return time.monotonic() * 1000.0


# ----------------------------
# Query / event records
# ----------------------------


@dataclass(frozen=True)
class GameEvent:
    type: str
    payload: Optional[Dict[str, Any]] = None


@dataclass(frozen=True)
class BlockedFeedback:
    tile: Coord
    reason: str
    started_at: float
    until: float
    shake_until: float


@dataclass(frozen=True)
class MoveAnimation:
    from_segments: Tuple[Coord, ...]
    to_segments: Tuple[Coord, ...]
    start_at: float
    duration: float


@dataclass(frozen=True)
class RenderSnake:
    direction: str
    segments: Tuple[Tuple[float, float], ...]


@dataclass(frozen=True)
class ReplayDebugState:
    total_steps: int
    step: int
    direction: Optional[str]
    star_moves: int
    segments: Tuple[Coord, ...]


@dataclass(frozen=True)
class LevelSelectItem:
    index: int
    id: int
    world: int
    stage: int
    title: str
    locked: bool
    best_moves: int
    current: bool
    difficulty: int
    character: Optional[Character]
    tiles: Tuple[Tuple[TileKind, ...], ...]


@dataclass(frozen=True)
class PerfSnapshot:
    last_input_latency_ms: float
    history_size: int
    discarded_history_count: int
    checkpoint_count: int
    last_checkpoint_move: int


class Game:
    """Play session: state machine, move resolution, undo, replay and progress.

    Time is always supplied by the caller: `update(now_ms)` advances the
    animation clock that drives the pacing gate, feedback and hint windows.
    Input timestamps come from `clock` (milliseconds).
    """

    def __init__(
        self,
        levels: Optional[Sequence[Level]] = None,
        store: Optional[ProgressStore] = None,
        gameplay: Optional[GameplayConfig] = None,
        clock: Callable[[], float] = wall_clock_ms,
    ) -> None:
        if levels is None:
            from level_loader import build_levels

            levels = build_levels()
        if not levels:
            raise ValueError("Game needs at least one level.")

        self.levels: Tuple[Level, ...] = tuple(levels)
        self.store = store
        self.gameplay = gameplay or GameplayConfig()
        self.clock = clock
        self.state = GameState.TITLE

        self.level_index = 0
        self.unlocked_level_index = 0
        self.level: Optional[Level] = None
        self.tiles: List[List[TileKind]] = []
        self.snake: Optional[Snake] = None
        self.portal_links: Dict[Coord, Coord] = {}

        self.move_count = 0
        self.total_move_count = 0
        self.history: Deque[HistoryDelta] = deque(maxlen=self.gameplay.history_limit)
        self.history_checkpoints: Deque[HistoryCheckpoint] = deque(maxlen=CHECKPOINT_LIMIT)
        self.discarded_history_count = 0

        self.animation_time_ms = 0.0
        self.move_animation: Optional[MoveAnimation] = None
        self.feedback: Optional[BlockedFeedback] = None
        self.deadlock_hint_until = -1.0

        self.best_moves: Dict[int, int] = {}
        self.progress_clears = 0
        self.total_items_collected = 0
        self.level_collected_items = 0
        self.level_total_items = 0
        self.star_moves_remaining = 0

        self.replay_log: Optional[ReplayLog] = None
        self.replay_archive: Dict[int, ReplayArchive] = {}
        self.level_start_segments: Tuple[Coord, ...] = ()
        self.level_start_tiles: Tuple[Tuple[TileKind, ...], ...] = ()
        self._level_started_ms = 0.0

        self.last_input_at: Dict[str, float] = {}
        self.last_input_latency_ms = 0.0
        self.event_queue: List[GameEvent] = []

        self.settings = merge_settings(GameSettings(), self._load_settings_data())
        progress = self._load_progress_data()
        self.unlocked_level_index = clamp_int(progress.unlocked_level_index, 0, len(self.levels) - 1)
        self.level_index = self.unlocked_level_index
        self.best_moves = dict(progress.best_moves)
        self.total_move_count = progress.total_moves
        self.progress_clears = progress.clears
        self.total_items_collected = progress.total_items

        self.key_map = self._build_key_map()

    # ----------------------------
    # Events
    # ----------------------------

    def emit(self, event_type: str, payload: Optional[Dict[str, Any]] = None) -> None:
        """Queue one event for the next drain_events() call."""
        self.event_queue.append(GameEvent(event_type, payload))

    def drain_events(self) -> List[GameEvent]:
        """Return and clear every queued event."""
        items = self.event_queue
        self.event_queue = []
        return items

    # ----------------------------
    # Key bindings
    # ----------------------------

    def _build_key_map(self) -> Dict[str, str]:
        key_map: Dict[str, str] = {}
        for action, defaults in DEFAULT_KEY_BINDINGS.items():
            for token in defaults:
                key_map[token] = action
            custom = self.settings.custom_bindings.get(action, "")
            if custom:
                key_map[custom] = action
        return key_map

    def get_binding_token(self, action: str) -> str:
        """Custom key token for action ("" when unset)."""
        return self.settings.custom_bindings.get(action, "")

    def set_binding_token(self, action: str, raw_token: Any) -> bool:
        """Bind a custom key token to an action and persist settings.

        Args:
            action: One of BINDABLE_ACTIONS.
            raw_token: pygame key name; normalized, "" clears the binding.

        Returns:
            False if the action is unknown.
        """
        if action not in BINDABLE_ACTIONS:
            return False
        self.settings.custom_bindings[action] = normalize_key_token(raw_token)
        self.key_map = self._build_key_map()
        self._save_settings_data()
        return True

    def clear_binding_token(self, action: str) -> bool:
        """Remove the custom token of an action; defaults stay bound."""
        return self.set_binding_token(action, "")

    def get_action_from_key(self, raw_key: Any) -> Optional[str]:
        """Action bound to a key token, or None."""
        return self.key_map.get(normalize_key_token(raw_key))

    # ----------------------------
    # Persistence
    # ----------------------------

    def _load_progress_data(self) -> Progress:
        if self.store is None:
            return Progress()
        return self.store.load_progress()

    def _load_settings_data(self) -> Optional[Dict[str, Any]]:
        if self.store is None:
            return None
        return self.store.load_settings()

    def current_progress(self) -> Progress:
        """Progress record for the current session counters."""
        return Progress(
            unlocked_level_index=self.unlocked_level_index,
            best_moves=dict(self.best_moves),
            total_moves=self.total_move_count,
            clears=self.progress_clears,
            total_items=self.total_items_collected,
        )

    def save_progress_data(self) -> bool:
        """Persist progress through the store.

        Returns:
            False if the write failed (a storage_error event is queued).
        """
        if self.store is None:
            return True
        try:
            self.store.save_progress(self.current_progress())
        except OSError as e:
            logger.warning("Could not save progress: %s", e)
            self.emit("storage_error", {"operation": "save_progress"})
            return False
        return True

    def _save_settings_data(self) -> bool:
        if self.store is None:
            return True
        try:
            self.store.save_settings(settings_to_dict(self.settings))
        except OSError as e:
            logger.warning("Could not save settings: %s", e)
            self.emit("storage_error", {"operation": "save_settings"})
            return False
        return True

    def update_settings(self, patch: Dict[str, Any]) -> None:
        """Merge a settings patch, rebuild key bindings and persist."""
        self.settings = merge_settings(self.settings, patch)
        self.key_map = self._build_key_map()
        self._save_settings_data()
        self.emit("settings_changed", {"settings": settings_to_dict(self.settings)})

    def clear_progress(self) -> None:
        """Reset unlocks, best moves and cumulative counters."""
        self.unlocked_level_index = 0
        self.best_moves = {}
        self.total_move_count = 0
        self.progress_clears = 0
        self.total_items_collected = 0
        self.save_progress_data()

    # ----------------------------
    # State machine
    # ----------------------------

    def is_transition_allowed(self, next_state: GameState) -> bool:
        """True for self-transitions and those listed in STATE_TRANSITIONS."""
        return next_state == self.state or next_state in STATE_TRANSITIONS.get(self.state, ())

    def set_state(self, next_state: GameState) -> bool:
        """Change state if the transition table allows it; returns success."""
        if not self.is_transition_allowed(next_state):
            logger.debug("Rejected transition %s -> %s", self.state.value, next_state.value)
            return False
        self.state = next_state
        return True

    def start_game(self, from_beginning: bool = False) -> bool:
        """Enter play from the title or a completed game.

        Args:
            from_beginning: Start at level 0 instead of the highest unlocked level,
                clearing progress first when the settings ask for it.

        Returns:
            False if playing cannot be entered from the current state.
        """
        if not self.is_transition_allowed(GameState.PLAYING):
            return False
        if from_beginning and self.settings.reset_progress_on_new_game:
            self.clear_progress()

        self.level_index = 0 if from_beginning else self.unlocked_level_index
        self.load_level(self.level_index)
        self.set_state(GameState.PLAYING)
        self.emit("state", {"state": self.state.value})
        return True

    def open_level_select(self) -> bool:
        """Show level select from title, pause or a completed level."""
        if self.state in (
            GameState.TITLE,
            GameState.PAUSED,
            GameState.LEVEL_COMPLETE,
            GameState.GAME_COMPLETE,
        ):
            self.set_state(GameState.LEVEL_SELECT)
            self.emit("state", {"state": self.state.value})
            return True
        return False

    def close_level_select(self) -> bool:
        """Return from level select to the title."""
        if self.state != GameState.LEVEL_SELECT:
            return False
        self.set_state(GameState.TITLE)
        self.emit("state", {"state": self.state.value})
        return True

    def select_level(self, index: int, ignore_lock: bool = False, unlock_through: bool = False) -> bool:
        """Load a level and start playing it.

        Args:
            index: Level index; clamped to the level list.
            ignore_lock: Allow levels above the unlocked index.
            unlock_through: With ignore_lock, raise the unlocked index to this level.

        Returns:
            False if the level is locked or playing cannot be entered.
        """
        normalized = clamp_int(int(index), 0, len(self.levels) - 1)
        if not ignore_lock and normalized > self.unlocked_level_index:
            return False
        if not self.is_transition_allowed(GameState.PLAYING):
            return False

        if ignore_lock and unlock_through and normalized > self.unlocked_level_index:
            self.unlocked_level_index = normalized

        self.load_level(normalized)
        self.set_state(GameState.PLAYING)
        self.emit("state", {"state": self.state.value})
        self.save_progress_data()
        return True

    def restart_level(self) -> bool:
        """Reload the current level, archiving the replay of the abandoned attempt."""
        if self.level is None:
            return False
        if self.replay_log is not None and self.replay_log.moves:
            self._store_replay_archive()

        self.load_level(self.level_index)
        if self.state != GameState.TITLE:
            self.set_state(GameState.PLAYING)
        self.emit("restart", {"level_id": self.level.id})
        return True

    def next_level(self, force: bool = False) -> bool:
        """Advance one level; only after a clear unless force is set."""
        if not force and self.state != GameState.LEVEL_COMPLETE:
            return False
        target = clamp_int(self.level_index + 1, 0, len(self.levels) - 1)
        if target == self.level_index:
            return False
        return self.select_level(target, ignore_lock=True, unlock_through=True)

    def prev_level(self, force: bool = False) -> bool:
        """Go back one level; only after a clear unless force is set."""
        if not force and self.state != GameState.LEVEL_COMPLETE:
            return False
        target = clamp_int(self.level_index - 1, 0, len(self.levels) - 1)
        if target == self.level_index:
            return False
        return self.select_level(target, ignore_lock=True, unlock_through=False)

    def exit_to_title(self) -> bool:
        """Leave to the title screen; rejected while playing."""
        if self.state == GameState.PLAYING:
            return False
        if self.replay_log is not None and self.replay_log.moves:
            self._store_replay_archive()

        self.load_level(self.unlocked_level_index)
        self.set_state(GameState.TITLE)
        self.emit("state", {"state": self.state.value})
        return True

    def toggle_pause(self) -> bool:
        """Switch between playing and paused."""
        if self.state == GameState.PLAYING:
            self.set_state(GameState.PAUSED)
            self.emit("pause", {"paused": True})
            return True
        if self.state == GameState.PAUSED:
            self.set_state(GameState.PLAYING)
            self.emit("pause", {"paused": False})
            return True
        return False

    # ----------------------------
    # Level loading
    # ----------------------------

    def load_level(self, index: int) -> None:
        """Load a level and reset every per-play counter (history, items, star, replay)."""
        normalized = clamp_int(int(index), 0, len(self.levels) - 1)
        self.level_index = normalized
        self.level = self.levels[normalized]
        self.tiles = self.level.clone_tiles()
        self.snake = Snake(self.level.spawn, self.level.snake_length, self.tiles)

        self.move_count = 0
        self.history = deque(maxlen=self.gameplay.history_limit)
        self.history_checkpoints = deque(maxlen=CHECKPOINT_LIMIT)
        self.discarded_history_count = 0
        self.move_animation = None
        self.feedback = None
        self.deadlock_hint_until = -1.0
        self.level_collected_items = 0
        self.level_total_items = self._count_items()
        self.star_moves_remaining = 0
        self.portal_links = build_portal_links(self.tiles)

        self._level_started_ms = self.clock()
        self.replay_log = ReplayLog(level_id=self.level.id, started_at=time.time())
        self.level_start_segments = tuple(self.snake.segments)
        self.level_start_tiles = tuple(tuple(row) for row in self.tiles)
        logger.debug("Loaded level %s (%s)", self.level.id, self.level.title)

    def _count_items(self) -> int:
        return sum(1 for row in self.tiles for tile in row if tile in GROWTH_TILES)

    # ----------------------------
    # Moves
    # ----------------------------

    def _tile_at(self, cell: Coord) -> TileKind:
        return self.get_tile(cell)

    def _animation_duration(self) -> float:
        return 0.0 if self.settings.reduce_motion else float(self.gameplay.move_animation_ms)

    def _pacing_gate_closed(self) -> bool:
        anim = self.move_animation
        if anim is None or anim.duration <= 0:
            return False
        return self.animation_time_ms - anim.start_at < anim.duration * PACING_GATE_RATIO

    def _set_blocked_feedback(self, candidate: Coord, reason: str) -> None:
        now = self.animation_time_ms
        self.feedback = BlockedFeedback(
            tile=candidate,
            reason=reason,
            started_at=now,
            until=now + self.gameplay.blocked_feedback_ms,
            shake_until=now + self.gameplay.shake_duration_ms,
        )
        self.emit("blocked", {"reason": reason, "tile": candidate})

    def _start_move_animation(self, from_segments: Sequence[Coord], to_segments: Sequence[Coord]) -> None:
        self.move_animation = MoveAnimation(
            from_segments=tuple(from_segments),
            to_segments=tuple(to_segments),
            start_at=self.animation_time_ms,
            duration=self._animation_duration(),
        )

    def _push_history_delta(self, delta: HistoryDelta) -> None:
        if len(self.history) == self.history.maxlen:
            self.discarded_history_count += 1
        self.history.append(delta)

        if self.snake is not None and self.move_count > 0 and self.move_count % CHECKPOINT_INTERVAL == 0:
            self.history_checkpoints.append(
                HistoryCheckpoint(
                    move_count=self.move_count,
                    segments=tuple(self.snake.segments),
                    direction=self.snake.direction,
                    collected=self.level_collected_items,
                )
            )

    def try_move(self, direction: str, input_at_ms: Optional[float] = None) -> bool:
        """Attempt one move of the head.

        Args:
            direction: One of DIRECTIONS.
            input_at_ms: Time of the key press, for latency tracking. Defaults to clock().

        Returns:
            True if the move was accepted. A rejected move changes nothing but
            the blocked feedback.
        """
        if self.state != GameState.PLAYING or self.snake is None or self.level is None:
            return False
        if self._pacing_gate_closed():
            return False
        if direction not in DIRECTIONS:
            return False

        before = tuple(self.snake.segments)
        outcome = resolve_move(
            before,
            self._tile_at,
            self.star_moves_remaining,
            direction,
            self.portal_links,
            star_power_moves=self.gameplay.star_power_moves,
        )
        if not outcome.accepted:
            if outcome.candidate is not None and outcome.blocked_reason in ("wall", "obstacle"):
                self._set_blocked_feedback(outcome.candidate, outcome.blocked_reason)
            return False

        input_at = input_at_ms if input_at_ms is not None else self.clock()
        candidate = outcome.candidate
        assert candidate is not None
        delta = HistoryDelta(
            move_count_before=self.move_count,
            previous_direction=self.snake.direction,
            tail=before[-1],
            direction=direction,
            input_at_ms=input_at,
            level_items_before=self.level_collected_items,
            total_items_before=self.total_items_collected,
            star_moves_before=self.star_moves_remaining,
        )
        self._push_history_delta(delta)

        self.snake.commit(outcome.segments, direction)
        self._apply_item_effects(candidate, outcome.consumed, outcome.growth, delta)
        self.star_moves_remaining = outcome.star_moves

        if outcome.portal_jump is not None:
            delta.portal_jump = outcome.portal_jump
            self.emit(
                "portal_used",
                {"from": outcome.portal_jump.entrance, "to": outcome.portal_jump.exit},
            )
        if outcome.power_ended:
            self.emit("power_end", {"kind": "star"})

        self.move_count += 1
        self.total_move_count += 1
        self._start_move_animation(before, self.snake.segments)
        self._record_replay_move(direction)
        self.last_input_latency_ms = max(0.0, self.clock() - input_at)

        self.emit(
            "move",
            {
                "direction": direction,
                "move_count": self.move_count,
                "star_moves": self.star_moves_remaining,
            },
        )
        self._check_post_move_state()
        self.save_progress_data()
        return True

    def _apply_item_effects(
        self,
        cell: Coord,
        consumed: Optional[TileKind],
        growth: int,
        delta: HistoryDelta,
    ) -> None:
        if consumed is None:
            return
        x, y = cell
        self.tiles[y][x] = TileKind.EMPTY
        delta.consumed_item = ConsumedItem(cell=cell, tile=consumed)
        payload: Dict[str, Any] = {"kind": ITEM_EVENT_KINDS[consumed], "growth": growth, "x": x, "y": y}

        if consumed in GROWTH_TILES:
            delta.growth = growth
            self.level_collected_items += 1
            self.total_items_collected += 1
        else:
            self.emit("power_start", {"kind": "star", "turns": self.gameplay.star_power_moves})
            payload["star_turns"] = self.gameplay.star_power_moves

        assert self.snake is not None
        payload.update(
            length=len(self.snake),
            collected=self.level_collected_items,
            total=self.level_total_items,
        )
        self.emit("item_collected", payload)

    def has_any_valid_move(self) -> bool:
        """True if some direction is enterable from the head."""
        if self.snake is None:
            return False
        return bool(legal_directions(self.snake.head, self._tile_at, self.star_moves_remaining))

    def _check_post_move_state(self) -> None:
        assert self.snake is not None
        if self.get_tile(self.snake.head) == TileKind.EXIT:
            self._handle_level_clear()
        elif not self.has_any_valid_move():
            self.deadlock_hint_until = self.animation_time_ms + self.gameplay.deadlock_hint_ms
            self.emit("deadlock", None)

    def _handle_level_clear(self) -> None:
        assert self.level is not None
        level_id = self.level.id
        previous_best = self.best_moves.get(level_id, 0)
        if not previous_best or self.move_count < previous_best:
            self.best_moves[level_id] = self.move_count

        self._store_replay_archive()
        self.progress_clears += 1
        logger.info("Cleared level %s in %s moves", level_id, self.move_count)

        last_index = len(self.levels) - 1
        if self.level_index >= last_index:
            self.unlocked_level_index = last_index
            self.save_progress_data()
            self.set_state(GameState.GAME_COMPLETE)
            self.emit(
                "game_complete",
                {"move_count": self.move_count, "total_moves": self.total_move_count},
            )
            return

        self.unlocked_level_index = max(self.unlocked_level_index, self.level_index + 1)
        self.save_progress_data()
        self.set_state(GameState.LEVEL_COMPLETE)
        self.emit(
            "level_clear",
            {
                "level_id": level_id,
                "move_count": self.move_count,
                "best_moves": self.best_moves[level_id],
                "collected_items": self.level_collected_items,
                "total_items": self.level_total_items,
                "previous_best": previous_best,
            },
        )

    def undo(self) -> bool:
        """Invert the most recent accepted move exactly.

        Segments, facing, the consumed tile, item and star counters and the
        move count all return to their values before that move.

        Returns:
            False outside play or with an empty history.
        """
        if self.state != GameState.PLAYING or self.snake is None or not self.history:
            return False

        delta = self.history.pop()
        current = list(self.snake.segments)
        restore_end = max(1, len(current) - max(0, delta.growth))

        effective = current
        if delta.portal_jump is not None:
            effective = list(current)
            effective[0] = delta.portal_jump.entrance

        restored = effective[1:restore_end]
        restored.append(delta.tail)

        if delta.consumed_item is not None:
            x, y = delta.consumed_item.cell
            self.tiles[y][x] = delta.consumed_item.tile
            self.level_collected_items = delta.level_items_before
            self.total_items_collected = delta.total_items_before

        self.star_moves_remaining = max(0, delta.star_moves_before)
        self.snake.commit(restored, delta.previous_direction)
        self.move_count = delta.move_count_before
        if self.replay_log is not None and self.replay_log.moves:
            self.replay_log.moves.pop()
        self._start_move_animation(current, restored)

        self.emit("undo", {"move_count": self.move_count})
        return True

    # ----------------------------
    # Replay
    # ----------------------------

    def _record_replay_move(self, direction: str) -> None:
        if self.replay_log is None:
            return
        elapsed = max(0, int(round(self.clock() - self._level_started_ms)))
        self.replay_log.moves.append(
            ReplayMove(direction=direction, elapsed_ms=elapsed, move_index=self.move_count)
        )

    def _store_replay_archive(self) -> None:
        if self.replay_log is None or self.level is None:
            return
        self.replay_archive[self.level.id] = ReplayArchive(
            level_id=self.level.id,
            move_count=self.move_count,
            moves=tuple(self.replay_log.moves),
            start_segments=self.level_start_segments,
            start_tiles=self.level_start_tiles,
        )

    def get_replay_export(self) -> str:
        """Current replay log as pretty JSON ("" before any level is loaded)."""
        if self.replay_log is None:
            return ""
        return json.dumps(
            {
                "level_id": self.replay_log.level_id,
                "started_at": self.replay_log.started_at,
                "move_count": self.move_count,
                "collected_items": self.level_collected_items,
                "moves": [asdict(m) for m in self.replay_log.moves],
            },
            indent=2,
        )

    def get_replay_archive(self) -> Optional[ReplayArchive]:
        """Replay archived for the current level, if it was cleared or restarted."""
        level_id = self.level.id if self.level is not None else 0
        return self.replay_archive.get(level_id)

    def get_replay_debug_state(self, step_index: int = 0) -> Optional[ReplayDebugState]:
        """Re-simulate the archived replay of the current level.

        Args:
            step_index: Number of recorded moves to apply; clamped to the log.

        Returns:
            Body and star counter after that many moves, or None without an archive.
        """
        replay = self.get_replay_archive()
        if replay is None:
            return None

        steps = replay.moves
        capped = clamp_int(int(step_index or 0), 0, len(steps))
        tiles = [list(row) for row in replay.start_tiles]
        tile_at = tile_reader(tiles)
        links = build_portal_links(tiles)
        segments: Tuple[Coord, ...] = tuple(replay.start_segments)
        star_moves = 0

        for move in steps[:capped]:
            outcome = resolve_move(
                segments,
                tile_at,
                star_moves,
                move.direction,
                links,
                star_power_moves=self.gameplay.star_power_moves,
            )
            if not outcome.accepted:
                continue
            if outcome.consumed is not None and outcome.candidate is not None:
                cx, cy = outcome.candidate
                tiles[cy][cx] = TileKind.EMPTY
            segments = outcome.segments
            star_moves = outcome.star_moves

        return ReplayDebugState(
            total_steps=len(steps),
            step=capped,
            direction=steps[capped - 1].direction if capped > 0 else None,
            star_moves=star_moves,
            segments=segments,
        )

    # ----------------------------
    # Input
    # ----------------------------

    def _should_debounce(self, action: str, at_ms: float) -> bool:
        previous = self.last_input_at.get(action)
        if previous is not None and at_ms - previous < self.gameplay.input_debounce_ms:
            return True
        self.last_input_at[action] = at_ms
        return False

    def handle_action(self, action: str, input_at_ms: Optional[float] = None) -> bool:
        """Run a bound action.

        Args:
            action: Action name, e.g. "move_up", "undo" or "start".
            input_at_ms: Forwarded to try_move for move actions.

        Returns:
            True if the action changed anything.
        """
        if action in MOVE_ACTIONS:
            return self.try_move(MOVE_ACTIONS[action], input_at_ms)
        if action == "undo":
            return self.undo()
        if action == "restart":
            return self.restart_level()
        if action == "pause":
            return self.toggle_pause()
        if action == "next":
            return self.next_level(force=True)
        if action == "level_select":
            return self.open_level_select()

        if action == "start":
            if self.state == GameState.TITLE:
                return self.start_game(False)
            if self.state == GameState.LEVEL_SELECT:
                return self.close_level_select()
            if self.state == GameState.LEVEL_COMPLETE:
                return self.next_level()
            if self.state == GameState.GAME_COMPLETE:
                return self.start_game(True)
            if self.state == GameState.PAUSED:
                return self.toggle_pause()
        return False

    def handle_key(self, raw_key: Any, at_ms: Optional[float] = None) -> bool:
        """Map a pygame key name to its action; move actions are debounced per action."""
        if not raw_key:
            return False
        action = self.get_action_from_key(raw_key)
        if action is None:
            return False

        at = at_ms if at_ms is not None else self.clock()
        if action in MOVE_ACTIONS and self._should_debounce(action, at):
            return False
        return self.handle_action(action, at)

    def update(self, now_ms: float) -> None:
        """Advance the animation clock that drives pacing, feedback and hints."""
        self.animation_time_ms = float(now_ms or 0)
        anim = self.move_animation
        if anim is not None and anim.duration > 0:
            if self.animation_time_ms - anim.start_at > anim.duration:
                self.move_animation = None

    # ----------------------------
    # Queries
    # ----------------------------

    def get_tile(self, cell: Coord) -> TileKind:
        """Tile of the playable grid copy; outside the board reads as WALL."""
        x, y = cell
        if self.level is None or not (0 <= y < len(self.tiles) and 0 <= x < len(self.tiles[y])):
            return TileKind.WALL
        return self.tiles[y][x]

    def consume_feedback(self, now_ms: float) -> Optional[BlockedFeedback]:
        """Blocked-move feedback still visible at now_ms, clearing it once expired."""
        if self.feedback is None:
            return None
        if now_ms > self.feedback.until:
            self.feedback = None
            return None
        return self.feedback

    def get_render_snake(self, now_ms: float) -> Optional[RenderSnake]:
        """Segments interpolated between the last two body states."""
        if self.snake is None:
            return None
        settled = RenderSnake(
            direction=self.snake.direction,
            segments=tuple((float(x), float(y)) for x, y in self.snake.segments),
        )
        anim = self.move_animation
        if anim is None or anim.duration <= 0:
            return settled

        t = clamp_float((now_ms - anim.start_at) / anim.duration, 0.0, 1.0)
        src, dst = anim.from_segments, anim.to_segments
        if t >= 1 or not src or not dst:
            return settled

        count = max(len(src), len(dst))
        points = []
        for i in range(count):
            fx, fy = src[min(i, len(src) - 1)]
            tx, ty = dst[min(i, len(dst) - 1)]
            points.append((fx + (tx - fx) * t, fy + (ty - fy) * t))
        return RenderSnake(direction=self.snake.direction, segments=tuple(points))

    def get_screen_shake_offset(self, now_ms: float) -> Tuple[float, float]:
        """Pixel offset of the decaying shake after a blocked move."""
        fb = self.feedback
        if fb is None or now_ms > fb.shake_until or self.settings.reduce_motion:
            return (0.0, 0.0)
        remaining = fb.shake_until - now_ms
        ratio = clamp_float(remaining / self.gameplay.shake_duration_ms, 0.0, 1.0)
        amplitude = self.gameplay.shake_amplitude * ratio
        return (math.sin(now_ms * 0.18) * amplitude, math.cos(now_ms * 0.23) * amplitude * 0.4)

    def get_deadlock_hint_visible(self, now_ms: float) -> bool:
        """True while the deadlock hint window is open."""
        return now_ms <= self.deadlock_hint_until

    def get_item_progress(self) -> Tuple[int, int]:
        """(collected, total) growth items on the current level."""
        return (self.level_collected_items, self.level_total_items)

    def get_power_state(self) -> Dict[str, int]:
        return {"star_moves": self.star_moves_remaining}

    def get_current_snake_length(self) -> int:
        return len(self.snake) if self.snake is not None else 0

    def get_valid_move_directions(self) -> List[str]:
        """Directions the head may take right now."""
        if self.snake is None or self.state != GameState.PLAYING:
            return []
        return legal_directions(self.snake.head, self._tile_at, self.star_moves_remaining)

    def get_best_move_for_current_level(self) -> int:
        if self.level is None:
            return 0
        return self.best_moves.get(self.level.id, 0)

    def get_level_label(self) -> str:
        """Position in the level list, e.g. "3 / 100"."""
        if self.level is None:
            return "-"
        return f"{self.level.id} / {len(self.levels)}"

    def get_state_label(self) -> str:
        """Localized name of the current state."""
        labels = STATE_LABELS["en" if self.settings.language == "en" else "ko"]
        return labels[self.state]

    def get_current_level_metrics(self) -> Optional[LevelMetrics]:
        return self.level.metrics if self.level is not None else None

    def get_current_character(self) -> Optional[Character]:
        return self.level.character if self.level is not None else None

    def get_level_select_items(self) -> List[LevelSelectItem]:
        """One entry per level for the level select grid."""
        return [
            LevelSelectItem(
                index=i,
                id=level.id,
                world=level.world,
                stage=level.stage,
                title=level.title,
                locked=i > self.unlocked_level_index,
                best_moves=self.best_moves.get(level.id, 0),
                current=i == self.level_index,
                difficulty=level.metrics.score,
                character=level.character,
                tiles=level.tiles,
            )
            for i, level in enumerate(self.levels)
        ]

    def get_perf_snapshot(self) -> PerfSnapshot:
        """Input latency, history size and checkpoint diagnostics."""
        return PerfSnapshot(
            last_input_latency_ms=self.last_input_latency_ms,
            history_size=len(self.history),
            discarded_history_count=self.discarded_history_count,
            checkpoint_count=len(self.history_checkpoints),
            last_checkpoint_move=self.history_checkpoints[-1].move_count if self.history_checkpoints else 0,
        )

    def can_enter_cell(self, cell: Coord) -> bool:
        return can_enter(self.get_tile(cell), self.star_moves_remaining)
