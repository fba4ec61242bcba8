"""
Persistence backends for the annotation store.

Every backend speaks the same contract: ``load()`` returns the whole
video-scoped state and ``save(state)`` writes the whole state back. No
partial writes. Failures surface as ``PersistenceError``.

The canonical state handed around is::

    {video_id: {"title": str, "notes": {note_id: {"time": float, "content": str}}}}

Backends are free to lay it out differently on disk; the flat key-value
backend stores one entry per note.
"""

import asyncio
import json
import os
import sqlite3
import tempfile
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Awaitable, Callable, Dict, Optional

from .logging import get_logger
from .models import PersistenceError

logger = get_logger(__name__)

DEFAULT_KEY = "marginalia.notes"
UNKNOWN_VIDEO_ID = "unknown"

Channel = Callable[[dict], Awaitable[dict]]


class PersistenceBackend(ABC):
    """Load/save contract shared by every storage strategy."""

    name = "backend"

    @abstractmethod
    async def load(self) -> dict:
        """Return the full state; an empty dict when nothing was stored yet."""

    @abstractmethod
    async def save(self, state: dict) -> None:
        """Replace the stored state with ``state``."""


# =============================================================================
# Flat key-value persistence
# =============================================================================

def flatten_state(state: dict) -> dict:
    """Video-scoped state -> ``{note_id: {time, content, videoId, title}}``."""
    flat = {}
    for video_id, video in state.items():
        for note_id, note in (video.get("notes") or {}).items():
            flat[note_id] = {
                "time": note.get("time", 0),
                "content": note.get("content", ""),
                "videoId": video_id,
                "title": video.get("title", ""),
            }
    return flat


def group_flat_state(flat: dict) -> dict:
    """Inverse of :func:`flatten_state`; entries without a video land under ``unknown``.

    Raises ValueError when ``flat`` is not an object.
    """
    if not isinstance(flat, dict):
        raise ValueError(f"expected a JSON object of notes, got {type(flat).__name__}")
    state: Dict[str, dict] = {}
    for note_id, note in flat.items():
        if not isinstance(note, dict):
            continue
        video_id = note.get("videoId") or UNKNOWN_VIDEO_ID
        video = state.setdefault(video_id, {"title": note.get("title", ""), "notes": {}})
        video["notes"][note_id] = {"time": note.get("time", 0), "content": note.get("content", "")}
    return state


class KeyValueBackend(PersistenceBackend):
    """
    SQLite-backed key-value store holding the flat note map under one key.

    Mirrors a browser's local storage: a single string value, rewritten in
    full on every save.
    """

    name = "keyvalue"

    def __init__(self, db_path: Optional[Path] = None, key: str = DEFAULT_KEY):
        if db_path is None:
            db_path = Path.home() / ".marginalia" / "notes.db"

        self.db_path = Path(db_path)
        self.key = key
        self._initialized = False

    def _init_db(self):
        """Initialize database schema."""
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        with sqlite3.connect(self.db_path) as conn:
            conn.execute("""
                CREATE TABLE IF NOT EXISTS kv (
                    key TEXT PRIMARY KEY,
                    value TEXT NOT NULL
                )
            """)
            conn.commit()
        self._initialized = True

    def _read(self) -> dict:
        if not self._initialized:
            self._init_db()
        with sqlite3.connect(self.db_path) as conn:
            row = conn.execute("SELECT value FROM kv WHERE key = ?", (self.key,)).fetchone()
        if row is None:
            return {}
        return group_flat_state(json.loads(row[0]))

    def _write(self, state: dict) -> None:
        if not self._initialized:
            self._init_db()
        value = json.dumps(flatten_state(state))
        with sqlite3.connect(self.db_path) as conn:
            conn.execute(
                "INSERT OR REPLACE INTO kv (key, value) VALUES (?, ?)",
                (self.key, value),
            )
            conn.commit()

    async def load(self) -> dict:
        try:
            return await asyncio.to_thread(self._read)
        except (sqlite3.Error, OSError, ValueError) as e:
            raise PersistenceError(f"key-value load failed: {e}") from e

    async def save(self, state: dict) -> None:
        try:
            await asyncio.to_thread(self._write, state)
        except (sqlite3.Error, OSError, TypeError) as e:
            raise PersistenceError(f"key-value save failed: {e}") from e
        logger.debug("Wrote %d video(s) to %s", len(state), self.db_path)


# =============================================================================
# Video-scoped file persistence
# =============================================================================

def _atomic_write_text(path: Path, text: str, encoding: str = "utf-8") -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_path = tempfile.mkstemp(prefix=".tmp_", dir=str(path.parent))
    try:
        with os.fdopen(fd, "w", encoding=encoding, newline="") as f:
            f.write(text)
            f.flush()
            os.fsync(f.fileno())
        os.replace(tmp_path, path)
    finally:
        if os.path.exists(tmp_path):
            os.remove(tmp_path)


def write_json(path: Path, payload: dict) -> None:
    _atomic_write_text(Path(path), json.dumps(payload, indent=2, ensure_ascii=False) + "\n")


class VideoScopedBackend(PersistenceBackend):
    """JSON file keyed by video id, each entry carrying its title and notes."""

    name = "video"

    def __init__(self, path: Optional[Path] = None):
        if path is None:
            path = Path.home() / ".marginalia" / "notes.json"
        self.path = Path(path)

    def _read(self) -> dict:
        if not self.path.exists():
            return {}
        data = json.loads(self.path.read_text(encoding="utf-8"))
        if not isinstance(data, dict):
            raise ValueError(f"expected a JSON object in {self.path}")
        for video_id, video in data.items():
            if not isinstance(video, dict) or not isinstance(video.get("notes", {}), dict):
                raise ValueError(f"malformed entry for video {video_id} in {self.path}")
        return data

    async def load(self) -> dict:
        try:
            return await asyncio.to_thread(self._read)
        except (OSError, ValueError) as e:
            raise PersistenceError(f"notes file load failed: {e}") from e

    async def save(self, state: dict) -> None:
        try:
            await asyncio.to_thread(write_json, self.path, state)
        except (OSError, TypeError, ValueError) as e:
            raise PersistenceError(f"notes file save failed: {e}") from e
        logger.debug("Wrote %d video(s) to %s", len(state), self.path)


# =============================================================================
# Channel persistence (background process)
# =============================================================================

class ChannelBackend(PersistenceBackend):
    """
    Forwards load/save to a background process over a request/response channel.

    The channel is any coroutine function taking a message dict and returning
    a response dict of the form ``{"success": bool, "data"?: ..., "error"?: str}``.
    """

    name = "remote"

    def __init__(self, channel: Channel):
        self.channel = channel

    async def _request(self, message: dict) -> dict:
        try:
            response = await self.channel(message)
        except PersistenceError:
            raise
        except Exception as e:
            raise PersistenceError(f"channel request '{message['action']}' failed: {e}") from e
        if not response or not response.get("success"):
            error = (response or {}).get("error") or "no response"
            raise PersistenceError(f"{message['action']} rejected: {error}")
        return response

    async def load(self) -> dict:
        response = await self._request({"action": "loadNotes"})
        return response.get("data") or {}

    async def save(self, state: dict) -> None:
        await self._request({"action": "saveNotes", "data": state})


class LocalChannel:
    """
    In-process channel to a :class:`~marginalia.background.NotesService`.

    ``on_update`` receives the service's ``notesUpdated`` messages for saves
    made by other pages; it may be set after construction.
    """

    def __init__(self, service, on_update: Optional[Callable[[dict], None]] = None):
        self.service = service
        self.on_update = on_update
        self.sender_id = service.subscribe(self._deliver)

    def _deliver(self, message: dict) -> None:
        if self.on_update is not None:
            self.on_update(message)

    async def __call__(self, message: dict) -> dict:
        return await self.service.handle(message, sender=self.sender_id)

    def close(self) -> None:
        self.service.unsubscribe(self.sender_id)


class HttpChannel:
    """Channel that posts messages to a running Marginalia server."""

    def __init__(self, base_url: str, timeout: float = 10.0):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout

    def _post(self, message: dict) -> dict:
        import requests

        try:
            response = requests.post(
                f"{self.base_url}/api/message", json=message, timeout=self.timeout
            )
            response.raise_for_status()
            return response.json()
        except requests.exceptions.RequestException as e:
            raise PersistenceError(f"could not reach {self.base_url}: {e}") from e

    async def __call__(self, message: dict) -> dict:
        return await asyncio.to_thread(self._post, message)
