"""Run the API server under uvicorn and advertise its address in a lock file."""

from __future__ import annotations

import json
import logging
import os
import signal
from pathlib import Path
from typing import Any

from switchboard.config import Config, get_data_dir, load_config

logger = logging.getLogger(__name__)

LOCK_FILENAME = "server.lock"


def get_server_lock_path() -> Path:
    return get_data_dir() / LOCK_FILENAME


def write_server_lock(config: Config) -> Path:
    path = get_server_lock_path()
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps({"host": config.host, "port": config.port, "pid": os.getpid()}))
    return path


def read_server_lock() -> dict[str, Any] | None:
    """Contents of the lock file, or None when no usable lock exists."""
    path = get_server_lock_path()
    try:
        data = json.loads(path.read_text())
    except FileNotFoundError:
        return None
    except (json.JSONDecodeError, OSError) as e:
        logger.warning("Ignoring unreadable server lock %s: %s", path, e)
        return None
    if not isinstance(data, dict) or not isinstance(data.get("port"), int):
        return None
    return data


def remove_server_lock() -> None:
    get_server_lock_path().unlink(missing_ok=True)


def discover_api_url(config: Config | None = None) -> str:
    """Address of the locally running server, falling back to the configured one."""
    config = config or load_config()
    lock = read_server_lock()
    if lock is None:
        return config.api_url
    return f"http://{lock.get('host') or config.host}:{lock['port']}"


def run_server(config: Config | None = None, *, log_level: str = "info") -> None:
    import uvicorn

    from switchboard.server.app import create_app

    config = config or load_config()
    app = create_app(config)
    write_server_lock(config)

    previous = signal.getsignal(signal.SIGTERM)

    def on_sigterm(signum, frame):
        remove_server_lock()
        raise SystemExit(0)

    signal.signal(signal.SIGTERM, on_sigterm)
    logger.info("Serving switchboard API on %s", config.api_url)
    try:
        uvicorn.run(app, host=config.host, port=config.port, log_level=log_level)
    finally:
        remove_server_lock()
        signal.signal(signal.SIGTERM, previous)
