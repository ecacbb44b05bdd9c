"""Configuration for the accent teacher: JSON file merged over defaults, API key from env."""

import json
import logging
import os
from pathlib import Path

logger = logging.getLogger(__name__)

CONFIG_FILE = Path.home() / ".config" / "accent-teacher" / "config.json"

DEFAULT_CONFIG = {
    # Gemini
    "model": "gemini-2.0-flash",
    "api_base_url": "https://generativelanguage.googleapis.com/v1beta",
    "request_timeout": None,  # seconds; None waits indefinitely
    # Speech output
    "locale": "en-GB",
    "preferred_voice": "high",
    "voices_dir": str(Path.home() / ".local" / "share" / "accent-teacher" / "piper-voices"),
    "piper_cmd": "piper",
    "speech_rate": 1.0,
    "speech_pitch": 1.0,
    "max_utterance_length": 160,
    "initial_speech_delay": 0.2,
    "inter_chunk_delay": 0.05,
    # Speech input
    "whisper_model": "small",
    "max_listen_seconds": 15.0,
    # Diagnostics
    "event_log_dir": None,
    "log_level": "WARNING",
}


def load_config(path=None) -> dict:
    """Load configuration, falling back to defaults for anything missing.

    Args:
        path: Config file to read. Defaults to CONFIG_FILE.

    Returns:
        Dict with every key of DEFAULT_CONFIG present.
    """
    config_path = Path(path) if path else CONFIG_FILE
    if not config_path.exists():
        return dict(DEFAULT_CONFIG)

    try:
        with open(config_path) as f:
            loaded = json.load(f)
    except (OSError, json.JSONDecodeError) as e:
        logger.warning("Could not read config %s, using defaults: %s", config_path, e)
        return dict(DEFAULT_CONFIG)

    if not isinstance(loaded, dict):
        logger.warning("Config %s is not a JSON object, using defaults", config_path)
        return dict(DEFAULT_CONFIG)

    unknown = set(loaded) - set(DEFAULT_CONFIG)
    if unknown:
        logger.warning("Ignoring unknown config keys: %s", ", ".join(sorted(unknown)))
    return {**DEFAULT_CONFIG, **{k: v for k, v in loaded.items() if k in DEFAULT_CONFIG}}


def get_gemini_api_key():
    """Get the Gemini API key from the environment, or None."""
    return os.environ.get("GEMINI_API_KEY") or os.environ.get("GOOGLE_API_KEY")
