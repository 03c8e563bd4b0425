"""
Settings for Murmullo.

Precedence, lowest to highest:
    defaults < ./settings.json < ~/.murmullo/settings.json
API keys: ./.env < ~/.murmullo/.env < process environment

Sessions never read Config directly; they take a frozen ConfigSnapshot.
"""

import json
import logging
import os
from dataclasses import fields
from pathlib import Path
from typing import Any, Dict, Optional

from .types import ConfigSnapshot

logger = logging.getLogger(__name__)


LANGUAGES = ("es", "en", "auto")
PROCESSING_MODES = ("smart", "raw")
REASONING_PROVIDERS = ("anthropic", "openai")

# Defaults
DEFAULT_CONFIG: Dict[str, Any] = {
    # Transcription
    "language": "es",
    "transcription_model": "whisper-1",

    # Correction
    "processing_mode": "smart",
    "reasoning_provider": "anthropic",
    "anthropic_model": "claude-3-haiku-20240307",
    "openai_model": "gpt-4o-mini",

    # Repair ("" = look up ffmpeg on PATH)
    "ffmpeg_path": "",

    # Input
    "trigger_key": "f9",

    # Timeouts (seconds)
    "device_timeout": 5.0,
    "repair_timeout": 30.0,
    "request_timeout": 30.0,
    "paste_timeout": 5.0,

    # Retry
    "max_attempts": 3,

    # UI dwell before auto-reset to idle
    "success_dwell": 2.0,
    "failure_dwell": 5.0,
}

_ENUM_SETTINGS = {
    "language": LANGUAGES,
    "processing_mode": PROCESSING_MODES,
    "reasoning_provider": REASONING_PROVIDERS,
}

_ENV_KEYS = {
    "OPENAI_API_KEY": "openai_api_key",
    "ANTHROPIC_API_KEY": "anthropic_api_key",
}


def read_env_file(path: Path) -> Dict[str, str]:
    """KEY=value pairs from a dotenv file; quotes stripped, comments skipped."""
    pairs: Dict[str, str] = {}
    try:
        text = path.read_text(encoding="utf-8")
    except OSError as e:
        logger.warning("[Config] Could not read %s: %s", path, e)
        return pairs
    for raw in text.splitlines():
        entry = raw.strip()
        if entry.startswith("#") or "=" not in entry:
            continue
        name, _, value = entry.partition("=")
        pairs[name.strip()] = value.strip().strip("'\"")
    return pairs


def read_settings_file(path: Path) -> Dict[str, Any]:
    """Known settings from a JSON file, with bad values dropped and logged."""
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except (OSError, json.JSONDecodeError) as e:
        logger.warning("[Config] Could not read %s: %s", path, e)
        return {}
    if not isinstance(data, dict):
        logger.warning("[Config] %s is not a JSON object, ignored", path)
        return {}

    accepted: Dict[str, Any] = {}
    for name in DEFAULT_CONFIG.keys() & data.keys():
        expected = type(DEFAULT_CONFIG[name])
        raw = data[name]
        try:
            if expected is not str and isinstance(raw, bool):
                raise TypeError("booleans are not numbers")
            value = expected(raw)
        except (TypeError, ValueError):
            logger.warning("[Config] Invalid value for %s: %r", name, raw)
            continue
        # Attempts, timeouts and dwells are all counts or durations
        if expected is not str and not value > 0:
            logger.warning("[Config] %s must be positive, got %r", name, raw)
            continue
        choices = _ENUM_SETTINGS.get(name)
        if choices and value not in choices:
            logger.warning("[Config] %s must be one of %s, got %r", name, choices, value)
            continue
        accepted[name] = value
    return accepted


class Config:
    """
    Mutable settings holder for the running app.

    Usage:
        config = Config.load()
        snapshot = config.snapshot()
    """

    def __init__(self, data_dir: Optional[Path] = None):
        self.__dict__.update(DEFAULT_CONFIG)

        # Loaded from .env or the environment only; save_settings skips them
        self.openai_api_key: str = ""
        self.anthropic_api_key: str = ""

        self.data_dir: Path = data_dir or Path.home() / ".murmullo"
        self.settings_file = self.data_dir / "settings.json"
        self.env_file = self.data_dir / ".env"
        self.metrics_file = self.data_dir / "metrics.jsonl"
        self.history_file = self.data_dir / "history.jsonl"
        self.log_dir = self.data_dir / "logs"

    @classmethod
    def load(cls, data_dir: Optional[Path] = None) -> "Config":
        config = cls(data_dir)
        config.data_dir.mkdir(parents=True, exist_ok=True)

        for settings in (Path("settings.json"), config.settings_file):
            if settings.exists():
                config.__dict__.update(read_settings_file(settings))

        for env_file in (Path(".env"), config.env_file):
            if env_file.exists():
                config._apply_keys(read_env_file(env_file))
        config._apply_keys(os.environ)
        return config

    def _apply_keys(self, source) -> None:
        for env_name, attr in _ENV_KEYS.items():
            if env_name in source:
                setattr(self, attr, source[env_name])

    def save_settings(self) -> None:
        """Persist every non-secret setting to the user settings file."""
        self.data_dir.mkdir(parents=True, exist_ok=True)
        current = {name: getattr(self, name) for name in DEFAULT_CONFIG}
        self.settings_file.write_text(json.dumps(current, indent=2), encoding="utf-8")

    def snapshot(self) -> ConfigSnapshot:
        return ConfigSnapshot(**{f.name: getattr(self, f.name) for f in fields(ConfigSnapshot)})
