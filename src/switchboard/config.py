"""Configuration constants, config file loading, and environment overrides."""

from __future__ import annotations

import json
import logging
import os
from dataclasses import dataclass
from pathlib import Path

logger = logging.getLogger(__name__)

# Server defaults
DEFAULT_PORT = 2620
DEFAULT_HOST = "127.0.0.1"

# Agent defaults
DEFAULT_AGENT_PROVIDER = "claude"
DEFAULT_AGENT_MODEL = "claude-sonnet-4-20250514"
DEFAULT_CODEX_MODEL = "gpt-5-codex"
DEFAULT_WORK_DIR = "~/.switchboard"

# Session bookkeeping
BACKGROUND_REMOVAL_DELAY_SEC = 1.0
SESSION_MAX_AGE_SEC = 30 * 60

CONFIG_FILENAME = ".switchboard.json"


def _safe_int(value: str, default: int) -> int:
    try:
        return int(value)
    except ValueError:
        return default


def _safe_float(value: str, default: float) -> float:
    try:
        return float(value)
    except ValueError:
        return default


def get_data_dir() -> Path:
    env = os.environ.get("SWITCHBOARD_DATA_DIR")
    if env:
        return Path(env)
    return Path(DEFAULT_WORK_DIR).expanduser()


@dataclass
class Config:
    host: str = DEFAULT_HOST
    port: int = DEFAULT_PORT
    default_provider: str = DEFAULT_AGENT_PROVIDER
    default_model: str | None = None
    work_dir: str = DEFAULT_WORK_DIR
    background_removal_delay: float = BACKGROUND_REMOVAL_DELAY_SEC
    session_max_age: float = SESSION_MAX_AGE_SEC

    @property
    def api_url(self) -> str:
        return f"http://{self.host}:{self.port}"


def load_config(path: Path | None = None) -> Config:
    """Load config from the ``switchboard`` section of a JSON file, then apply env overrides."""
    config = Config()
    if path is None:
        path = Path.cwd() / CONFIG_FILENAME

    if path.exists():
        try:
            data = json.loads(path.read_text())
            section = data.get("switchboard", {})
            if "host" in section:
                config.host = section["host"]
            if "port" in section:
                config.port = int(section["port"])
            if "default_provider" in section:
                config.default_provider = section["default_provider"]
            if "default_model" in section:
                config.default_model = section["default_model"]
            if "work_dir" in section:
                config.work_dir = section["work_dir"]
            if "background_removal_delay" in section:
                config.background_removal_delay = float(section["background_removal_delay"])
            if "session_max_age" in section:
                config.session_max_age = float(section["session_max_age"])
        except (json.JSONDecodeError, OSError, AttributeError, TypeError, ValueError) as e:
            logger.warning(f"Failed to load config from {path}: {e}")

    # Env var overrides
    host_env = os.environ.get("SWITCHBOARD_HOST")
    if host_env:
        config.host = host_env
    port_env = os.environ.get("SWITCHBOARD_PORT")
    if port_env:
        config.port = _safe_int(port_env, config.port)
    provider_env = os.environ.get("AGENT_PROVIDER")
    if provider_env:
        config.default_provider = provider_env
    model_env = os.environ.get("AGENT_MODEL")
    if model_env:
        config.default_model = model_env
    work_dir_env = os.environ.get("AGENT_WORK_DIR")
    if work_dir_env:
        config.work_dir = work_dir_env
    delay_env = os.environ.get("SWITCHBOARD_BACKGROUND_REMOVAL_DELAY")
    if delay_env:
        config.background_removal_delay = _safe_float(delay_env, config.background_removal_delay)

    return config
