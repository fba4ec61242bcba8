"""Configuration and environment handling."""

import logging
import os
from dataclasses import dataclass
from pathlib import Path

from .backends import (
    ChannelBackend,
    HttpChannel,
    KeyValueBackend,
    PersistenceBackend,
    VideoScopedBackend,
)

logger = logging.getLogger("marginalia.config")

BACKENDS = ("keyvalue", "video", "remote")

DEFAULT_BACKEND = "video"
DEFAULT_DATA_DIR = "~/.marginalia"
DEFAULT_HIDE_DELAY_MS = 100
DEFAULT_SERVER_URL = "http://127.0.0.1:8766"


@dataclass
class Settings:
    backend: str = DEFAULT_BACKEND
    data_dir: Path = Path(DEFAULT_DATA_DIR).expanduser()
    hide_delay_ms: int = DEFAULT_HIDE_DELAY_MS
    server_url: str = DEFAULT_SERVER_URL

    @property
    def hide_delay(self) -> float:
        return self.hide_delay_ms / 1000.0


def _int_env(name: str, default: int) -> int:
    raw = os.environ.get(name)
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError:
        logger.warning("Ignoring %s=%r, expected an integer", name, raw)
        return default


def get_settings() -> Settings:
    """Read settings from the environment, loading a .env file first."""
    from dotenv import load_dotenv

    load_dotenv()

    backend = os.environ.get("MARGINALIA_BACKEND", DEFAULT_BACKEND).strip().lower()
    if backend not in BACKENDS:
        logger.warning("Unknown backend '%s', using '%s'", backend, DEFAULT_BACKEND)
        backend = DEFAULT_BACKEND

    return Settings(
        backend=backend,
        data_dir=Path(os.environ.get("MARGINALIA_DATA_DIR", DEFAULT_DATA_DIR)).expanduser(),
        hide_delay_ms=max(0, _int_env("MARGINALIA_HIDE_DELAY_MS", DEFAULT_HIDE_DELAY_MS)),
        server_url=os.environ.get("MARGINALIA_SERVER_URL", DEFAULT_SERVER_URL),
    )


def create_backend(settings: Settings) -> PersistenceBackend:
    """Build the persistence strategy the settings ask for."""
    if settings.backend == "keyvalue":
        return KeyValueBackend(settings.data_dir / "notes.db")
    if settings.backend == "remote":
        return ChannelBackend(HttpChannel(settings.server_url))
    return VideoScopedBackend(settings.data_dir / "notes.json")
