from __future__ import annotations

from dataclasses import dataclass, replace
from typing import List, Optional, Sequence, Tuple

import pygame

from game import Game
from game_types import Color
from models import GRID_COLS, GRID_ROWS, GameState, TileKind
from utils import as_color


@dataclass(frozen=True)
class Theme:
    name: str
    background: Color
    floor_a: Color
    floor_b: Color
    wall: Color
    obstacle: Color
    snake_head: Color
    snake_body: Color
    exit: Color
    item: Color
    big_item: Color = (255, 154, 0)
    star_item: Color = (255, 255, 255)
    portal_a: Color = (0, 243, 255)
    portal_b: Color = (255, 87, 208)
    text: Color = (255, 255, 255)


def _theme(name: str, *hexes: str) -> Theme:
    colors = [as_color(h, (255, 0, 255)) for h in hexes]
    return Theme(name, *colors)


THEMES: List[Theme] = [
    _theme("Mushroom Plains", "#67c6ff", "#c0edff", "#afdeff", "#cf5142", "#1f4d9c", "#ffdf4d", "#ffb530", "#9fffe3", "#ffe96f"),
    _theme("Pipe Garden", "#68db8a", "#d7ffe1", "#c7f8d5", "#2e9a44", "#ea6a35", "#ffd95a", "#ffbc45", "#fffab8", "#fff06f"),
    _theme("Brick Castle", "#7f87b5", "#d4d8ef", "#c3c8e3", "#7a3f34", "#3b4159", "#ffce4e", "#f5a83a", "#c2ff9f", "#fff06a"),
    _theme("Coin Carnival", "#ffb05e", "#ffe3b5", "#ffd597", "#d5592c", "#4754c9", "#fff058", "#ffca2f", "#c0ffe0", "#fff16a"),
    _theme("Night Raceway", "#7a82ff", "#dbe0ff", "#c9d0ff", "#3b4dbc", "#ff6f54", "#ffe44f", "#ffc436", "#afffe1", "#fff26f"),
    _theme("Rainbow Star Road", "#ff79bf", "#ffe0f2", "#ffd2ea", "#ed438d", "#2f79ff", "#ffe84d", "#ffc632", "#c9ff9d", "#fff26f"),
]


def high_contrast(theme: Theme) -> Theme:
    return replace(
        theme,
        name=f"{theme.name} HC",
        background=(16, 16, 16),
        floor_a=(26, 26, 26),
        floor_b=(35, 35, 35),
        wall=(242, 242, 242),
        obstacle=(255, 212, 0),
        snake_head=(0, 255, 170),
        snake_body=(0, 209, 255),
        exit=(255, 242, 0),
        item=(255, 242, 0),
    )


def theme_for(index: int, contrast: bool = False) -> Theme:
    base = THEMES[max(0, min(len(THEMES) - 1, index))]
    return high_contrast(base) if contrast else base


def board_origin(window_w: int, window_h: int, tile_size: int, hud_h: int) -> Tuple[int, int]:
    """Top-left pixel of the centered board below the HUD bar."""
    ox = max(0, (window_w - GRID_COLS * tile_size) // 2)
    oy = hud_h + max(0, (window_h - hud_h - GRID_ROWS * tile_size) // 2)
    return ox, oy


def draw_board(
    surf: pygame.Surface,
    tiles: Sequence[Sequence[TileKind]],
    theme: Theme,
    tile_size: int,
    origin: Tuple[float, float],
) -> None:
    """Draw floor checkerboard, walls and pickups."""
    ox, oy = origin
    ts = tile_size
    for y, row in enumerate(tiles):
        for x, tile in enumerate(row):
            r = pygame.Rect(int(ox + x * ts), int(oy + y * ts), ts, ts)
            if tile == TileKind.WALL:
                pygame.draw.rect(surf, theme.wall, r)
                continue
            pygame.draw.rect(surf, theme.floor_a if (x + y) % 2 == 0 else theme.floor_b, r)

            if tile == TileKind.OBSTACLE:
                pygame.draw.rect(surf, theme.obstacle, r.inflate(-ts // 6, -ts // 6), border_radius=4)
            elif tile == TileKind.EXIT:
                pygame.draw.rect(surf, theme.exit, r.inflate(-ts // 4, -ts // 4), border_radius=6)
            elif tile == TileKind.ITEM:
                pygame.draw.circle(surf, theme.item, r.center, int(ts * 0.22))
            elif tile == TileKind.BIG_ITEM:
                pygame.draw.circle(surf, theme.big_item, r.center, int(ts * 0.32))
            elif tile == TileKind.STAR_ITEM:
                pad = int(ts * 0.2)
                pts = [(r.centerx, r.top + pad), (r.right - pad, r.bottom - pad), (r.left + pad, r.bottom - pad)]
                pygame.draw.polygon(surf, theme.star_item, pts)
            elif tile in (TileKind.PORTAL_A, TileKind.PORTAL_B):
                color = theme.portal_a if tile == TileKind.PORTAL_A else theme.portal_b
                pygame.draw.circle(surf, color, r.center, int(ts * 0.36), width=max(2, ts // 10))


def draw_snake(
    surf: pygame.Surface,
    segments: Sequence[Tuple[float, float]],
    theme: Theme,
    tile_size: int,
    origin: Tuple[float, float],
    star_active: bool,
) -> None:
    """Draw the body tail-first so the head ends up on top."""
    ox, oy = origin
    ts = tile_size
    for i in range(len(segments) - 1, -1, -1):
        x, y = segments[i]
        r = pygame.Rect(int(ox + x * ts), int(oy + y * ts), ts, ts).inflate(-ts // 8, -ts // 8)
        color = theme.snake_head if i == 0 else theme.snake_body
        pygame.draw.rect(surf, color, r, border_radius=ts // 3)
        if i == 0 and star_active:
            pygame.draw.rect(surf, theme.star_item, r, width=2, border_radius=ts // 3)


def draw_blocked_marker(
    surf: pygame.Surface,
    cell: Tuple[int, int],
    tile_size: int,
    origin: Tuple[float, float],
) -> None:
    ox, oy = origin
    r = pygame.Rect(int(ox + cell[0] * tile_size), int(oy + cell[1] * tile_size), tile_size, tile_size)
    pygame.draw.rect(surf, (255, 70, 70), r, width=3)


def draw_hud(surf: pygame.Surface, hud_font: pygame.font.Font, game: Game) -> int:
    """Draw the top status bar; returns its height."""
    bar_height = hud_font.get_height() + 12
    bar = pygame.Surface((surf.get_width(), bar_height), pygame.SRCALPHA)
    bar.fill((0, 0, 0, 230))
    surf.blit(bar, (0, 0))

    collected, total = game.get_item_progress()
    star = game.get_power_state()["star_moves"]
    txt = (
        f"Level {game.get_level_label()} | Moves: {game.move_count} | Best: {game.get_best_move_for_current_level()} "
        f"| Items: {collected}/{total} | Star: {star} | Z: undo | R: restart | P: pause"
    )
    if game.settings.show_perf_overlay:
        perf = game.get_perf_snapshot()
        txt += (
            f" | Lag {perf.last_input_latency_ms:.0f}ms History {perf.history_size}"
            f" (-{perf.discarded_history_count}) Checkpoints {perf.checkpoint_count}@{perf.last_checkpoint_move}"
        )
    surf.blit(hud_font.render(txt, True, (255, 255, 255)), (12, 6))
    return bar_height


def draw_state_overlay(
    surf: pygame.Surface,
    title_font: pygame.font.Font,
    body_font: pygame.font.Font,
    game: Game,
) -> None:
    """Dim the board and show the state label for non-playing states."""
    if game.state == GameState.PLAYING:
        return
    shade = pygame.Surface(surf.get_size(), pygame.SRCALPHA)
    shade.fill((10, 26, 75, 165))
    surf.blit(shade, (0, 0))

    lines: List[str] = [game.get_state_label()]
    if game.level is not None:
        lines.append(game.level.title)
    if game.state == GameState.TITLE:
        lines.append("Enter: start | L: level select")
    elif game.state == GameState.LEVEL_SELECT:
        lines.append(f"Unlocked: {game.unlocked_level_index + 1} / {len(game.levels)} | Enter: back")
    elif game.state == GameState.PAUSED:
        lines.append("P or Enter: resume")
    elif game.state == GameState.LEVEL_COMPLETE:
        collected, total = game.get_item_progress()
        lines.append(f"Moves {game.move_count} | Best {game.get_best_move_for_current_level()} | Items {collected}/{total}")
        lines.append("N or Enter: next level")
    elif game.state == GameState.GAME_COMPLETE:
        lines.append(f"Total moves {game.total_move_count} | Clears {game.progress_clears}")
        lines.append("Enter: play again from the start")

    cx = surf.get_width() // 2
    y = surf.get_height() // 3
    for i, line in enumerate(lines):
        font = title_font if i == 0 else body_font
        text = font.render(line, True, (255, 255, 255))
        surf.blit(text, text.get_rect(midtop=(cx, y)))
        y += text.get_height() + 10


class GameRenderer:
    """Draws one frame of a Game onto a surface."""

    def __init__(self, window_w: int, window_h: int, tile_size: int, font: pygame.font.Font) -> None:
        self.window_w = window_w
        self.window_h = window_h
        self.tile_size = tile_size
        self.update_fonts(font)

    def update_fonts(self, font: pygame.font.Font) -> None:
        self.font = font
        self.hud_font = pygame.font.SysFont("monospace", max(12, font.get_height() - 8))
        self.title_font = pygame.font.SysFont("monospace", int(font.get_height() * 1.4))
        self.body_font = pygame.font.SysFont("monospace", font.get_height() - 4)

    def render_frame(self, screen: pygame.Surface, game: Game, now_ms: float, bg: Optional[Color] = None) -> None:
        level = game.level
        theme = theme_for(level.theme if level else 0, game.settings.high_contrast)
        screen.fill(bg if bg is not None else theme.background)

        hud_h = self.hud_font.get_height() + 12
        ox, oy = board_origin(self.window_w, self.window_h, self.tile_size, hud_h)
        sx, sy = game.get_screen_shake_offset(now_ms)
        origin = (ox + sx, oy + sy)

        if level is not None:
            draw_board(screen, game.tiles, theme, self.tile_size, origin)
            feedback = game.consume_feedback(now_ms)
            if feedback is not None:
                draw_blocked_marker(screen, feedback.tile, self.tile_size, origin)
            render_snake = game.get_render_snake(now_ms)
            if render_snake is not None:
                draw_snake(
                    screen,
                    render_snake.segments,
                    theme,
                    self.tile_size,
                    origin,
                    game.star_moves_remaining > 0,
                )

        draw_hud(screen, self.hud_font, game)
        if game.get_deadlock_hint_visible(now_ms):
            hint = self.body_font.render("No way forward - press Z to undo", True, (255, 220, 120))
            screen.blit(hint, hint.get_rect(midbottom=(self.window_w // 2, self.window_h - 8)))
        draw_state_overlay(screen, self.title_font, self.body_font, game)
