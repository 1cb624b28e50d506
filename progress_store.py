from __future__ import annotations

import json
import logging
from dataclasses import asdict
from pathlib import Path
from typing import Any, Dict, Optional

from config_io import read_json_file, write_json_file
from models import STORAGE_VERSION, Progress
from utils import clamp_int

logger = logging.getLogger(__name__)

PROGRESS_FILE = "progress.json"
PROGRESS_BACKUP_FILE = "progress.bak.json"
SETTINGS_FILE = "settings.json"
SETTINGS_BACKUP_FILE = "settings.bak.json"
LEGACY_PROGRESS_LEVEL_FILE = "progress_level.txt"


def _non_negative_int(raw: Any) -> int:
    try:
        return max(0, int(raw))
    except (TypeError, ValueError):
        return 0


def _parse_best_moves(raw: Any) -> Dict[int, int]:
    if not isinstance(raw, dict):
        return {}
    best: Dict[int, int] = {}
    for key, value in raw.items():
        try:
            best[int(key)] = int(value)
        except (TypeError, ValueError):
            continue
    return best


class ProgressStore:
    """Progress and settings as JSON files, each mirrored into a backup file.

    Loading falls back primary -> backup -> legacy level file -> defaults.
    Saving raises OSError; callers decide how to report it.
    """

    def __init__(self, save_dir: Path, level_count: int = 100) -> None:
        self.save_dir = save_dir
        self.level_count = max(1, level_count)

    def _path(self, name: str) -> Path:
        return self.save_dir / name

    def _read_first(self, *names: str) -> Optional[Dict[str, Any]]:
        """Return the first file that exists and decodes to a JSON object."""
        for name in names:
            path = self._path(name)
            if not path.exists():
                continue
            try:
                data = read_json_file(path)
            except (OSError, json.JSONDecodeError) as e:
                logger.info("Could not read %s (%s), trying fallback", path, e)
                continue
            if isinstance(data, dict):
                return data
            logger.info("Ignoring %s: not a JSON object", path)
        return None

    # ----------------------------
    # Progress
    # ----------------------------

    def parse_progress(self, raw: Dict[str, Any]) -> Progress:
        if raw.get("version") != STORAGE_VERSION:
            logger.debug("Migrating progress from version %s", raw.get("version"))
        return Progress(
            unlocked_level_index=clamp_int(
                _non_negative_int(raw.get("unlocked_level_index", raw.get("unlockedLevelIndex"))),
                0,
                self.level_count - 1,
            ),
            best_moves=_parse_best_moves(raw.get("best_moves", raw.get("bestMoves"))),
            total_moves=_non_negative_int(raw.get("total_moves", raw.get("totalMoves"))),
            clears=_non_negative_int(raw.get("clears")),
            total_items=_non_negative_int(raw.get("total_items", raw.get("totalItems"))),
        )

    def load_progress(self) -> Progress:
        raw = self._read_first(PROGRESS_FILE, PROGRESS_BACKUP_FILE)
        if raw is not None:
            return self.parse_progress(raw)

        progress = Progress()
        legacy = self._path(LEGACY_PROGRESS_LEVEL_FILE)
        if legacy.exists():
            try:
                value = int(legacy.read_text(encoding="utf-8").strip())
            except (OSError, ValueError):
                logger.info("Ignoring unreadable legacy progress file %s", legacy)
            else:
                progress.unlocked_level_index = clamp_int(value, 0, self.level_count - 1)
                logger.info("Migrated legacy progress: level index %s", progress.unlocked_level_index)
        return progress

    def save_progress(self, progress: Progress) -> None:
        data = asdict(progress)
        data["version"] = STORAGE_VERSION
        data["best_moves"] = {str(k): v for k, v in progress.best_moves.items()}
        write_json_file(self._path(PROGRESS_FILE), data)
        write_json_file(self._path(PROGRESS_BACKUP_FILE), data)

    # ----------------------------
    # Settings
    # ----------------------------

    def load_settings(self) -> Optional[Dict[str, Any]]:
        """Raw settings dict, or None when neither file is usable."""
        return self._read_first(SETTINGS_FILE, SETTINGS_BACKUP_FILE)

    def save_settings(self, data: Dict[str, Any]) -> None:
        write_json_file(self._path(SETTINGS_FILE), data)
        write_json_file(self._path(SETTINGS_BACKUP_FILE), data)
