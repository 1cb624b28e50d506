from __future__ import annotations

import logging
from pathlib import Path
from typing import Any, Dict, List, Sequence

import pygame

from config_io import load_json_config
from config_parsing import parse_gameplay_config
from game import Game
from level_loader import build_levels, load_levels_dir
from models import Level
from progress_store import ProgressStore
from rendering import GameRenderer
from utils import as_color, deep_get

logger = logging.getLogger(__name__)

FPS = 60


def load_level_set(cfg: Dict[str, Any]) -> Sequence[Level]:
    """Exported levels from cfg["levels_dir"] when present, else the built-in set."""
    levels_dir_raw = cfg.get("levels_dir")
    if isinstance(levels_dir_raw, str) and levels_dir_raw:
        levels_dir = Path(levels_dir_raw)
        if levels_dir.exists():
            levels = load_levels_dir(levels_dir)
            if levels:
                return levels
            logger.info("No levels found in %s, using built-in levels", levels_dir)
    return build_levels()


class App:
    """pygame window, frame loop and keyboard input around a Game."""

    def __init__(self, cfg_path: Path) -> None:
        self.cfg = load_json_config(cfg_path)
        self.window_w = int(deep_get(self.cfg, "window.width", 1000))
        self.window_h = int(deep_get(self.cfg, "window.height", 760))
        self.title = str(deep_get(self.cfg, "window.title", "Worm Quest"))
        bg_raw = deep_get(self.cfg, "window.bg", None)
        # None lets the level theme pick the background
        self.bg = as_color(bg_raw, (18, 20, 28)) if bg_raw is not None else None
        self.tile_size = int(self.cfg.get("tile_size", 44))

        self._init_pygame()
        levels = load_level_set(self.cfg)
        store = ProgressStore(Path(str(self.cfg.get("save_dir", "save"))), level_count=len(levels))
        self.game = Game(
            levels=levels,
            store=store,
            gameplay=parse_gameplay_config(self.cfg.get("gameplay")),
            clock=lambda: float(pygame.time.get_ticks()),
        )
        self.game.load_level(self.game.level_index)
        self.renderer = GameRenderer(self.window_w, self.window_h, self.tile_size, self.font)

    # ----------------------------
    # Initialization
    # ----------------------------

    def _init_pygame(self) -> None:
        """Initialize pygame and create window + clock."""
        pygame.init()
        self.screen = pygame.display.set_mode((self.window_w, self.window_h))
        self.window_w, self.window_h = self.screen.get_size()
        pygame.display.set_caption(self.title)
        self.clock = pygame.time.Clock()
        self.font = pygame.font.Font(None, 28)

    # ----------------------------
    # Loop
    # ----------------------------

    def _handle_events(self, now_ms: float) -> bool:
        """Process pygame events.

        Returns:
            False if the app should exit, True otherwise.
        """
        for e in pygame.event.get():
            if e.type == pygame.QUIT:
                return False
            if e.type == pygame.KEYDOWN:
                if e.key == pygame.K_q and e.mod & pygame.KMOD_CTRL:
                    return False
                self.game.handle_key(pygame.key.name(e.key), now_ms)
        return True

    def _log_events(self) -> List[str]:
        names = []
        for event in self.game.drain_events():
            names.append(event.type)
            if event.type in ("level_clear", "game_complete", "storage_error"):
                logger.info("%s %s", event.type, event.payload)
            else:
                logger.debug("%s %s", event.type, event.payload)
        return names

    def run(self) -> None:
        """Run the main loop: poll input, advance the clock, drain events, draw."""
        running = True
        while running:
            self.clock.tick(FPS)
            now = float(pygame.time.get_ticks())
            self.game.update(now)
            running = self._handle_events(now)
            self._log_events()
            self.renderer.render_frame(self.screen, self.game, now, self.bg)
            pygame.display.flip()
        pygame.quit()


def main() -> None:
    """Entrypoint for running the game from the command line."""
    import sys

    logging.basicConfig(level=logging.INFO, format="%(levelname)s %(name)s: %(message)s")
    cfg_path = Path(sys.argv[1]) if len(sys.argv) >= 2 else Path("config.json")
    App(cfg_path).run()


if __name__ == "__main__":
    main()
