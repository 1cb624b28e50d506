from __future__ import annotations

import math
from dataclasses import asdict
from typing import Any, Dict, Optional

from models import BINDABLE_ACTIONS, STORAGE_VERSION, GameplayConfig, GameSettings
from utils import clamp_float

BGM_TRACKS = ("retro", "arcade", "chill")
PERFORMANCE_MODES = ("auto", "battery", "quality")

# settings keys whose value is coerced with bool()
_BOOL_SETTINGS = (
    "sound_enabled",
    "bgm_enabled",
    "vibration_enabled",
    "high_contrast",
    "color_blind_assist",
    "reduce_motion",
    "reset_progress_on_new_game",
    "show_perf_overlay",
    "show_move_hints",
    "tutorial_completed",
    "replay_debug_enabled",
)

# camelCase names written by older saves
_LEGACY_KEYS = {
    "soundEnabled": "sound_enabled",
    "bgmEnabled": "bgm_enabled",
    "bgmTrack": "bgm_track",
    "vibrationEnabled": "vibration_enabled",
    "highContrast": "high_contrast",
    "colorBlindAssist": "color_blind_assist",
    "reduceMotion": "reduce_motion",
    "resetProgressOnNewGame": "reset_progress_on_new_game",
    "showPerfOverlay": "show_perf_overlay",
    "showMoveHints": "show_move_hints",
    "tutorialCompleted": "tutorial_completed",
    "mobilePerformanceMode": "mobile_performance_mode",
    "masterVolume": "master_volume",
    "sfxVolume": "sfx_volume",
    "dpadPosition": "dpad_position",
    "replayDebugEnabled": "replay_debug_enabled",
    "customBindings": "custom_bindings",
}


def parse_gameplay_config(raw: Any) -> GameplayConfig:
    """Parse the "gameplay" block of config.json.

    Args:
        raw: Dict containing gameplay constants (may be missing/None).

    Returns:
        GameplayConfig with defaults applied.
    """
    if not isinstance(raw, dict):
        raw = {}
    return GameplayConfig.from_dict(raw)


def normalize_key_token(raw: Any) -> str:
    """Normalize a key name into a binding token ("" when unset)."""
    if not isinstance(raw, str):
        return ""
    return raw.strip().lower()


def _parse_volume(raw: Any) -> float:
    try:
        value = float(raw)
    except (TypeError, ValueError):
        return 0.0
    if math.isnan(value):
        return 0.0
    return clamp_float(value, 0.0, 1.0)


def _parse_axis(raw: Any) -> Optional[float]:
    if raw is None or raw == "":
        return None
    try:
        value = float(raw)
    except (TypeError, ValueError):
        return None
    return value if math.isfinite(value) else None


def merge_settings(base: GameSettings, incoming: Any) -> GameSettings:
    """Return a copy of base with every recognized field of incoming applied.

    Unknown keys are dropped; enumerated fields fall back to their default
    choice when the incoming value is not one of the accepted values.
    """
    merged = settings_from_dict(settings_to_dict(base), base=GameSettings())
    if not isinstance(incoming, dict):
        return merged

    patch = {_LEGACY_KEYS.get(k, k): v for k, v in incoming.items()}

    for name in _BOOL_SETTINGS:
        if name in patch:
            setattr(merged, name, bool(patch[name]))

    if "bgm_track" in patch:
        track = str(patch["bgm_track"] or "")
        merged.bgm_track = track if track in BGM_TRACKS else "retro"
    if "handedness" in patch:
        merged.handedness = "left" if patch["handedness"] == "left" else "right"
    if "language" in patch:
        merged.language = "en" if patch["language"] == "en" else "ko"
    if "mobile_performance_mode" in patch:
        mode = patch["mobile_performance_mode"]
        merged.mobile_performance_mode = mode if mode in PERFORMANCE_MODES else "auto"
    if "master_volume" in patch:
        merged.master_volume = _parse_volume(patch["master_volume"])
    if "sfx_volume" in patch:
        merged.sfx_volume = _parse_volume(patch["sfx_volume"])

    dpad = patch.get("dpad_position")
    if isinstance(dpad, dict):
        merged.dpad_position = {
            "x": _parse_axis(dpad.get("x")),
            "y": _parse_axis(dpad.get("y")),
        }

    custom = patch.get("custom_bindings")
    if isinstance(custom, dict):
        for action in BINDABLE_ACTIONS:
            token = custom.get(action)
            if isinstance(token, str):
                merged.custom_bindings[action] = normalize_key_token(token)

    return merged


def settings_to_dict(settings: GameSettings) -> Dict[str, Any]:
    data = asdict(settings)
    data["version"] = STORAGE_VERSION
    return data


def settings_from_dict(raw: Dict[str, Any], base: Optional[GameSettings] = None) -> GameSettings:
    """Build settings from a plain dict without validation (trusted input only)."""
    settings = base if base is not None else GameSettings()
    for key, value in raw.items():
        if key == "dpad_position" and isinstance(value, dict):
            settings.dpad_position = dict(value)
        elif key == "custom_bindings" and isinstance(value, dict):
            settings.custom_bindings = {a: str(value.get(a, "")) for a in BINDABLE_ACTIONS}
        elif hasattr(settings, key):
            setattr(settings, key, value)
    return settings
