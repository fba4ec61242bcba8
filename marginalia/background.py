"""
Background persistence service.

Pages talk to the service with small message dicts instead of touching
storage directly:

    {"action": "loadNotes"}                -> {"success": True, "data": {...}}
    {"action": "saveNotes", "data": {...}} -> {"success": True}

After a save every other subscribed page receives
``{"action": "notesUpdated", "data": {...}}`` so its views can catch up.
"""

import itertools
from pathlib import Path
from typing import Callable, Dict, Optional

from .backends import PersistenceBackend, write_json
from .logging import get_logger
from .models import PersistenceError

logger = get_logger(__name__)

BACKUP_FILE_NAME = "notes.json"


class NotesService:
    """Owns the cached note state and the backend behind it."""

    def __init__(self, backend: PersistenceBackend, backup_dir: Optional[Path] = None):
        self.backend = backend
        self.backup_dir = Path(backup_dir) if backup_dir else None
        self._cache: Dict[str, dict] = {}
        self._subscribers: Dict[int, Optional[Callable[[dict], None]]] = {}
        self._ids = itertools.count(1)

    @property
    def cache(self) -> dict:
        return self._cache

    # -------------------------------------------------------------------------
    # Subscriptions
    # -------------------------------------------------------------------------

    def subscribe(self, callback: Optional[Callable[[dict], None]] = None) -> int:
        subscriber_id = next(self._ids)
        self._subscribers[subscriber_id] = callback
        return subscriber_id

    def unsubscribe(self, subscriber_id: int) -> None:
        self._subscribers.pop(subscriber_id, None)

    def _broadcast(self, sender: Optional[int]) -> int:
        message = {"action": "notesUpdated", "data": self._cache}
        notified = 0
        for subscriber_id, callback in list(self._subscribers.items()):
            if subscriber_id == sender or callback is None:
                continue
            try:
                callback(message)
                notified += 1
            except Exception:
                # One broken page must not block the others
                logger.exception("Subscriber %d failed to handle notesUpdated", subscriber_id)
        return notified

    # -------------------------------------------------------------------------
    # Storage
    # -------------------------------------------------------------------------

    async def load(self) -> dict:
        """Return the cached state, reading the backend when the cache is empty."""
        if self._cache:
            return self._cache
        self._cache = await self.backend.load() or {}
        logger.debug("Loaded %d video(s) from %s backend", len(self._cache), self.backend.name)
        return self._cache

    async def save(self, data: dict, sender: Optional[int] = None) -> None:
        self._cache = data
        await self.backend.save(data)
        if self.backup_dir is not None:
            self._write_backup()
        notified = self._broadcast(sender)
        logger.info("Saved notes for %d video(s), notified %d page(s)", len(data), notified)

    def _write_backup(self) -> None:
        path = self.backup_dir / BACKUP_FILE_NAME
        try:
            write_json(path, self._cache)
        except OSError as e:
            logger.warning("Could not write backup %s: %s", path, e)

    # -------------------------------------------------------------------------
    # Messages
    # -------------------------------------------------------------------------

    async def handle(self, message: dict, sender: Optional[int] = None) -> dict:
        """Answer one page message; failures come back as ``success: False``."""
        action = (message or {}).get("action")

        if action == "loadNotes":
            try:
                return {"success": True, "data": await self.load()}
            except PersistenceError as e:
                logger.warning("loadNotes failed: %s", e)
                return {"success": False, "error": str(e)}

        if action == "saveNotes":
            data = message.get("data")
            if not isinstance(data, dict):
                return {"success": False, "error": "saveNotes requires a data object"}
            try:
                await self.save(data, sender=sender)
            except PersistenceError as e:
                logger.warning("saveNotes failed: %s", e)
                return {"success": False, "error": str(e)}
            return {"success": True}

        return {"success": False, "error": f"Unknown action: {action}"}
