import json

import pytest

from game import Game
from level_loader import build_levels
from models import GameplayConfig, GameState, TileKind
from rules import find_tiles

from conftest import NO_ANIMATION, event_types, make_game, make_level, shortest_path

END = (18, 13)

SCENARIO_AVOID = (
    TileKind.WALL,
    TileKind.OBSTACLE,
    TileKind.STAR_ITEM,
    TileKind.PORTAL_A,
    TileKind.PORTAL_B,
    TileKind.EXIT,
)


def room(**cells):
    """Room with spawn (1,1), exit (18,13) and extra marks given as name=(x, y, ch)."""
    marks = {(1, 1): "S", END: "E"}
    for x, y, ch in cells.values():
        marks[(x, y)] = ch
    return make_level(marks)


def state_of(game):
    return (
        tuple(game.snake.segments),
        game.snake.direction,
        game.move_count,
        game.star_moves_remaining,
        game.get_item_progress(),
        [list(row) for row in game.tiles],
    )


class TestBlockedMoves:
    """Moves into walls and obstacles are rejected without side effects."""

    def test_that_wall_move_fails_and_reports_wall(self, open_room):
        game = make_game([open_room])

        assert not game.try_move("up")

        assert game.snake.segments == [(1, 1)]
        assert game.move_count == 0
        events = game.drain_events()
        assert [e.type for e in events] == ["blocked"]
        assert events[0].payload["reason"] == "wall"
        assert game.feedback.tile == (1, 0)

    def test_that_obstacle_move_fails_without_star(self):
        game = make_game([room(x=(2, 1, "X"))])

        assert not game.try_move("right")

        assert game.snake.segments == [(1, 1)]
        assert game.drain_events()[0].payload["reason"] == "obstacle"

    def test_that_unknown_direction_is_ignored(self, open_room):
        game = make_game([open_room])

        assert not game.try_move("north")
        assert game.drain_events() == []

    def test_that_moves_need_the_playing_state(self, open_room):
        game = Game(levels=[open_room], gameplay=NO_ANIMATION)

        assert not game.try_move("right")
        game.start_game()
        game.toggle_pause()
        assert not game.try_move("right")


class TestItems:
    """Item, big item and star collection."""

    def test_that_item_grows_by_one_and_clears_tile(self):
        game = make_game([room(a=(2, 1, "I"), b=(9, 9, "T"))])
        assert game.get_item_progress() == (0, 1)

        assert game.try_move("right")

        assert game.snake.segments == [(2, 1), (1, 1)]
        assert game.get_tile((2, 1)) == TileKind.EMPTY
        assert game.get_item_progress() == (1, 1)
        assert game.total_items_collected == 1
        collected = [e for e in game.drain_events() if e.type == "item_collected"]
        assert collected[0].payload["kind"] == "item"
        assert collected[0].payload["growth"] == 1

    def test_that_big_item_grows_by_two_but_counts_once(self):
        game = make_game([room(a=(2, 1, "G"))])

        game.try_move("right")

        assert game.get_current_snake_length() == 3
        assert game.get_item_progress() == (1, 1)

    def test_that_star_sets_power_without_growth(self):
        game = make_game([room(a=(2, 1, "T"))])

        game.try_move("right")

        assert game.get_current_snake_length() == 1
        assert game.get_power_state() == {"star_moves": 8}
        assert "power_start" in event_types(game)

    def test_that_undo_puts_the_item_back(self):
        game = make_game([room(a=(2, 1, "I"))])
        game.try_move("right")

        assert game.undo()

        assert game.get_tile((2, 1)) == TileKind.ITEM
        assert game.get_item_progress() == (0, 1)
        assert game.total_items_collected == 0


class TestStarPower:
    """Star power decay."""

    def test_that_star_decays_once_per_move_and_ends_once(self):
        game = make_game([room(a=(2, 1, "T"), b=(4, 1, "X"))])
        counters = []
        ends = 0

        for _ in range(10):
            assert game.try_move("right")
            counters.append(game.star_moves_remaining)
            ends += event_types(game).count("power_end")

        assert counters == [8, 7, 6, 5, 4, 3, 2, 1, 0, 0]
        assert ends == 1
        assert game.snake.head == (11, 1)


class TestPortals:
    """Portal warps."""

    def test_that_entering_a_portal_moves_the_head_to_its_partner(self):
        game = make_game([room(a=(3, 1, "P"), b=(10, 5, "Q"))])

        game.try_move("right")
        game.try_move("right")

        assert game.snake.head == (10, 5)
        assert "portal_used" in event_types(game)

    def test_that_blocked_destination_keeps_the_head_on_the_portal(self):
        game = make_game([room(a=(3, 1, "P"), b=(10, 5, "Q"))])
        game.tiles[5][10] = TileKind.OBSTACLE

        game.try_move("right")
        game.try_move("right")

        assert game.snake.head == (3, 1)
        assert "portal_used" not in event_types(game)

    def test_that_undo_through_portal_and_growth_is_exact(self):
        game = make_game([room(a=(2, 1, "I"), b=(3, 1, "P"), c=(10, 5, "Q"))])

        game.try_move("right")
        game.try_move("right")
        assert game.snake.segments == [(10, 5), (2, 1)]

        game.undo()
        assert game.snake.segments == [(2, 1), (1, 1)]
        game.undo()
        assert game.snake.segments == [(1, 1)]


class TestUndo:
    """Undo is the exact inverse of accepted moves."""

    def test_that_undo_with_empty_history_fails(self, open_room):
        game = make_game([open_room])

        assert not game.undo()

    def test_that_undo_requires_playing(self, open_room):
        game = make_game([open_room])
        game.try_move("right")
        game.toggle_pause()

        assert not game.undo()

    def test_that_n_undos_restore_the_loaded_state(self):
        level = room(
            a=(2, 1, "I"),
            b=(3, 1, "G"),
            c=(4, 1, "T"),
            d=(5, 2, "X"),
            e=(6, 1, "P"),
            f=(10, 8, "Q"),
        )
        game = make_game([level])
        initial = state_of(game)
        moves = ["right", "right", "right", "right", "right", "down", "left", "left", "down", "right"]

        for direction in moves:
            assert game.try_move(direction)
        assert game.snake.head != (6, 1)

        for _ in moves:
            assert game.undo()

        assert state_of(game) == initial
        assert not game.undo()

    def test_that_undo_restores_direction_and_emits_event(self, open_room):
        game = make_game([open_room])
        game.try_move("down")
        game.drain_events()

        game.undo()

        assert game.snake.direction == "right"
        assert event_types(game) == ["undo"]

    def test_that_history_is_capped_and_discards_are_counted(self, open_room):
        game = make_game([open_room], gameplay=GameplayConfig(move_animation_ms=0, history_limit=3))

        for direction in ["right", "left", "right", "left", "right"]:
            game.try_move(direction)

        perf = game.get_perf_snapshot()
        assert perf.history_size == 3
        assert perf.discarded_history_count == 2
        assert [game.undo() for _ in range(4)] == [True, True, True, False]

    def test_that_checkpoints_are_taken_every_twenty_moves(self, open_room):
        game = make_game([open_room])

        for i in range(41):
            game.try_move("right" if i % 2 == 0 else "left")

        perf = game.get_perf_snapshot()
        assert perf.checkpoint_count == 2
        assert perf.last_checkpoint_move == 40
        assert [c.move_count for c in game.history_checkpoints] == [20, 40]

    def test_that_loading_a_level_clears_checkpoints(self, open_room):
        game = make_game([open_room])
        for i in range(21):
            game.try_move("right" if i % 2 == 0 else "left")
        assert game.get_perf_snapshot().checkpoint_count == 1

        game.restart_level()

        perf = game.get_perf_snapshot()
        assert perf.checkpoint_count == 0
        assert perf.last_checkpoint_move == 0


class TestDeadlock:
    """Deadlock hint when no legal move is left."""

    def test_that_expired_star_inside_obstacles_arms_the_hint(self):
        level = room(a=(2, 1, "T"), b=(3, 1, "X"), c=(4, 1, "X"), d=(5, 1, "X"), e=(4, 2, "X"))
        game = make_game([level], gameplay=GameplayConfig(move_animation_ms=0, star_power_moves=2))

        for _ in range(3):
            assert game.try_move("right")

        events = event_types(game)
        assert events[-2:] == ["move", "deadlock"]
        assert "power_end" in events
        assert game.get_valid_move_directions() == []
        assert game.get_deadlock_hint_visible(2500)
        assert not game.get_deadlock_hint_visible(2501)

        game.undo()
        assert game.star_moves_remaining == 1
        assert game.get_valid_move_directions()


class TestScenarios:
    """Walk-throughs on generated levels."""

    def test_that_undoing_a_walk_to_an_item_restores_level_one(self):
        level = build_levels()[0]
        game = make_game([level])
        initial = state_of(game)
        target = find_tiles(level.tiles, TileKind.ITEM)[0]
        path = shortest_path(level.tiles, level.spawn, target, avoid=SCENARIO_AVOID)
        assert path

        for direction in path:
            assert game.try_move(direction)
        assert game.snake.head == target
        assert game.get_item_progress()[0] >= 1

        for _ in path:
            assert game.undo()
        assert state_of(game) == initial

    def test_that_stepping_on_a_generated_portal_warps(self):
        for level in build_levels():
            portals_a = find_tiles(level.tiles, TileKind.PORTAL_A)
            portals_b = find_tiles(level.tiles, TileKind.PORTAL_B)
            if not portals_a or not portals_b:
                continue
            path = shortest_path(level.tiles, level.spawn, portals_a[0], avoid=SCENARIO_AVOID)
            if path:
                break
        else:
            pytest.fail("no generated level with a reachable portal")

        game = make_game([level])
        for direction in path:
            assert game.try_move(direction)

        assert game.snake.head == portals_b[0]
        assert game.snake.head != portals_a[0]


class TestReplay:
    """Replay log, archive and debug re-simulation."""

    def level(self):
        return make_level({(1, 1): "S", (2, 1): "I", (4, 1): "E"})

    def test_that_clear_archives_a_replayable_log(self):
        game = make_game([self.level(), make_level({(1, 1): "S", (2, 1): "E"}, level_id=2)])
        for _ in range(3):
            game.try_move("right")
        assert game.state == GameState.LEVEL_COMPLETE

        archive = game.get_replay_archive()
        assert archive.move_count == 3
        assert [m.move_index for m in archive.moves] == [1, 2, 3]

        final = game.get_replay_debug_state(3)
        assert final.segments == tuple(game.snake.segments)
        assert final.total_steps == 3
        assert game.get_replay_debug_state(1).segments == ((2, 1), (1, 1))
        start = game.get_replay_debug_state(0)
        assert start.segments == ((1, 1),)
        assert start.direction is None

    def test_that_export_is_json_and_undo_drops_the_move(self):
        game = make_game([self.level()])
        game.try_move("down")
        game.try_move("right")
        game.undo()

        exported = json.loads(game.get_replay_export())

        assert exported["move_count"] == 1
        assert [m["direction"] for m in exported["moves"]] == ["down"]

    def test_that_no_archive_means_no_debug_state(self):
        game = make_game([self.level()])

        assert game.get_replay_debug_state(2) is None


def two_levels():
    first = make_level({(1, 1): "S", (3, 1): "E"}, level_id=1)
    second = make_level({(1, 1): "S", (2, 1): "E"}, level_id=2)
    return [first, second]


class TestLevelFlow:
    """Clearing levels, unlocking and state transitions."""

    def test_that_reaching_the_exit_clears_and_unlocks(self):
        game = make_game(two_levels())

        game.try_move("right")
        game.try_move("right")

        assert game.state == GameState.LEVEL_COMPLETE
        assert game.unlocked_level_index == 1
        assert game.best_moves == {1: 2}
        clear = [e for e in game.drain_events() if e.type == "level_clear"][0]
        assert clear.payload["level_id"] == 1
        assert clear.payload["move_count"] == 2
        assert clear.payload["previous_best"] == 0
        assert not game.try_move("left")

    def test_that_the_last_level_completes_the_game(self):
        game = make_game(two_levels())
        game.try_move("right")
        game.try_move("right")

        assert game.next_level()
        assert game.state == GameState.PLAYING
        assert game.level.id == 2
        game.try_move("right")

        assert game.state == GameState.GAME_COMPLETE
        assert "game_complete" in event_types(game)

    def test_that_best_moves_only_improve(self):
        game = make_game(two_levels())
        game.try_move("right")
        game.try_move("right")

        assert game.select_level(0)
        for direction in ["right", "left", "right", "right"]:
            game.try_move(direction)
        game.drain_events()

        assert game.best_moves[1] == 2
        assert game.get_best_move_for_current_level() == 2

    def test_that_exit_to_title_is_rejected_while_playing(self, open_room):
        game = make_game([open_room])

        assert not game.exit_to_title()
        game.toggle_pause()
        assert game.exit_to_title()
        assert game.state == GameState.TITLE

    def test_that_illegal_transitions_are_rejected(self, open_room):
        game = Game(levels=[open_room], gameplay=NO_ANIMATION)

        assert not game.set_state(GameState.LEVEL_COMPLETE)
        assert game.state == GameState.TITLE

    def test_that_restart_resets_the_level_and_archives_the_replay(self, open_room):
        game = make_game([open_room])
        game.try_move("right")
        game.drain_events()

        assert game.restart_level()

        assert game.move_count == 0
        assert game.snake.segments == [(1, 1)]
        assert game.state == GameState.PLAYING
        assert event_types(game) == ["restart"]
        assert game.get_replay_archive().move_count == 1

    def test_that_locked_levels_need_ignore_lock(self):
        game = make_game(two_levels())
        game.toggle_pause()

        assert not game.select_level(1)
        assert game.select_level(1, ignore_lock=True)
        assert game.unlocked_level_index == 0

        game.toggle_pause()
        assert game.select_level(1, ignore_lock=True, unlock_through=True)
        assert game.unlocked_level_index == 1

    def test_that_prev_level_needs_force_while_playing(self):
        game = make_game(two_levels())
        game.toggle_pause()
        game.select_level(1, ignore_lock=True)

        assert not game.prev_level()
        assert game.prev_level(force=True)
        assert game.level_index == 0

    def test_that_level_select_opens_from_title_only_when_not_playing(self):
        game = Game(levels=two_levels(), gameplay=NO_ANIMATION)

        assert game.open_level_select()
        items = game.get_level_select_items()
        assert [item.locked for item in items] == [False, True]
        assert game.close_level_select()
        assert game.handle_action("start")
        assert game.state == GameState.PLAYING
        assert not game.open_level_select()


class TestInput:
    """Pacing gate, debounce and key bindings."""

    def test_that_moves_wait_for_most_of_the_animation(self, open_room):
        game = make_game([open_room], gameplay=GameplayConfig())
        game.update(0)

        assert game.try_move("right")
        assert not game.try_move("right")
        game.update(83)
        assert not game.try_move("right")
        game.update(84)
        assert game.try_move("right")

    def test_that_reduce_motion_removes_the_gate(self, open_room):
        game = make_game([open_room], gameplay=GameplayConfig())
        game.update_settings({"reduce_motion": True})

        assert game.try_move("right")
        assert game.try_move("right")

    def test_that_repeated_move_keys_are_debounced(self, open_room):
        game = make_game([open_room])

        assert game.handle_key("right", at_ms=1000)
        assert not game.handle_key("right", at_ms=1050)
        assert not game.handle_key("d", at_ms=1060)
        assert game.handle_key("down", at_ms=1060)
        assert game.handle_key("right", at_ms=1080)

    def test_that_unknown_keys_do_nothing(self, open_room):
        game = make_game([open_room])

        assert not game.handle_key("f12")
        assert not game.handle_key("")

    def test_that_escape_toggles_pause(self, open_room):
        game = make_game([open_room])

        assert game.handle_key("escape")
        assert game.state == GameState.PAUSED
        assert game.handle_key("p")
        assert game.state == GameState.PLAYING

    def test_that_custom_bindings_are_normalized_and_clearable(self, open_room):
        game = make_game([open_room])
        game.try_move("right")

        assert game.set_binding_token("undo", " U ")
        assert game.get_binding_token("undo") == "u"
        assert game.handle_key("u")
        assert game.snake.segments == [(1, 1)]

        assert game.clear_binding_token("undo")
        assert game.get_action_from_key("u") is None
        assert game.get_action_from_key("z") == "undo"
        assert not game.set_binding_token("fly", "f")


class TestPersistence:
    """Progress and settings through a ProgressStore."""

    def test_that_progress_survives_a_new_session(self, tmp_path):
        from progress_store import ProgressStore

        levels = two_levels()
        game = make_game(levels, store=ProgressStore(tmp_path, level_count=2))
        game.try_move("right")
        game.try_move("right")

        again = Game(levels=levels, store=ProgressStore(tmp_path, level_count=2), gameplay=NO_ANIMATION)

        assert again.unlocked_level_index == 1
        assert again.level_index == 1
        assert again.best_moves == {1: 2}

    def test_that_settings_survive_a_new_session(self, tmp_path, open_room):
        from progress_store import ProgressStore

        game = make_game([open_room], store=ProgressStore(tmp_path))
        game.update_settings({"language": "en"})
        assert "settings_changed" in event_types(game)

        again = Game(levels=[open_room], store=ProgressStore(tmp_path))

        assert again.settings.language == "en"
        assert again.get_state_label() == "Title"

    def test_that_a_failed_save_is_reported_and_play_continues(self, tmp_path, open_room):
        from progress_store import ProgressStore

        blocker = tmp_path / "blocker"
        blocker.write_text("not a directory")
        game = make_game([open_room], store=ProgressStore(blocker / "save"))

        assert game.try_move("right")

        errors = [e for e in game.drain_events() if e.type == "storage_error"]
        assert errors[0].payload == {"operation": "save_progress"}
        assert game.snake.head == (2, 1)

    def test_that_new_game_can_reset_progress(self, tmp_path):
        from progress_store import ProgressStore

        levels = two_levels()
        game = make_game(levels, store=ProgressStore(tmp_path, level_count=2))
        game.try_move("right")
        game.try_move("right")
        game.update_settings({"reset_progress_on_new_game": True})
        game.exit_to_title()

        assert game.start_game(from_beginning=True)
        assert game.unlocked_level_index == 0
        assert game.best_moves == {}


class TestQueries:
    """Read-only views used by the renderer."""

    def test_that_render_snake_interpolates_the_last_move(self, open_room):
        game = make_game([open_room], gameplay=GameplayConfig())
        game.update(0)
        game.try_move("right")

        assert game.get_render_snake(60).segments[0] == pytest.approx((1.5, 1.0))
        assert game.get_render_snake(120).segments[0] == (2.0, 1.0)

    def test_that_a_blocked_move_shakes_the_screen(self, open_room):
        game = make_game([open_room])
        assert game.get_screen_shake_offset(0) == (0.0, 0.0)

        game.try_move("up")

        assert game.get_screen_shake_offset(0) == pytest.approx((0.0, 3.2))
        assert game.consume_feedback(0) is not None
        game.update_settings({"reduce_motion": True})
        assert game.get_screen_shake_offset(0) == (0.0, 0.0)

    def test_that_labels_follow_level_and_language(self):
        game = make_game(two_levels())

        assert game.get_level_label() == "1 / 2"
        assert game.get_state_label() == "플레이 중"
        game.update_settings({"language": "en"})
        assert game.get_state_label() == "Playing"

    def test_that_valid_directions_exclude_walls(self, open_room):
        game = make_game([open_room])

        assert sorted(game.get_valid_move_directions()) == ["down", "right"]
        assert not game.can_enter_cell((0, 1))
