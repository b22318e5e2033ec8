from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Optional

from .state import DEFAULT_LANG, SUPPORTED_LANGS


@dataclass(frozen=True)
class MessengerConfig:
    max_attempts: int = 5
    lockout_s: int = 300
    watch_interval_s: float = 3.0
    simulated_action_s: float = 2.0
    device_label: str = "Unknown device"
    default_lang: str = DEFAULT_LANG
    state_path: Optional[str] = None

    @property
    def lockout_ms(self) -> int:
        return max(self.lockout_s, 0) * 1000


def _parse_positive_int(name: str, default: int) -> int:
    raw = os.environ.get(name)
    if raw is None or raw == "":
        return default
    try:
        parsed = int(raw)
    except ValueError as exc:
        raise ValueError(f"{name} must be an integer") from exc
    if parsed < 1:
        raise ValueError(f"{name} must be positive")
    return parsed


def _parse_positive_float(name: str, default: float) -> float:
    raw = os.environ.get(name)
    if raw is None or raw == "":
        return default
    try:
        parsed = float(raw)
    except ValueError as exc:
        raise ValueError(f"{name} must be a number") from exc
    if parsed <= 0:
        raise ValueError(f"{name} must be positive")
    return parsed


def load_config_from_env() -> MessengerConfig:
    lang = os.environ.get("KIT_MESSENGER_LANG") or DEFAULT_LANG
    if lang not in SUPPORTED_LANGS:
        raise ValueError(f"KIT_MESSENGER_LANG must be one of {', '.join(SUPPORTED_LANGS)}")
    return MessengerConfig(
        max_attempts=_parse_positive_int("KIT_MESSENGER_MAX_ATTEMPTS", 5),
        lockout_s=_parse_positive_int("KIT_MESSENGER_LOCKOUT_S", 300),
        watch_interval_s=_parse_positive_float("KIT_MESSENGER_WATCH_INTERVAL_S", 3.0),
        simulated_action_s=_parse_positive_float("KIT_MESSENGER_ACTION_DELAY_S", 2.0),
        device_label=os.environ.get("KIT_MESSENGER_DEVICE_LABEL") or "Unknown device",
        default_lang=lang,
        state_path=os.environ.get("KIT_MESSENGER_STATE_PATH") or None,
    )
