"""Tests for background.py - the notes service and its message protocol."""

import asyncio
import json

from conftest import MemoryBackend
from marginalia.background import NotesService

STATE = {"vid-1": {"title": "Lecture 1", "notes": {"1": {"time": 5.0, "content": "x"}}}}


class TestLoadNotes:
    """Tests for the loadNotes action."""

    def test_load_returns_backend_state(self):
        """First load reads the backend."""
        service = NotesService(MemoryBackend(STATE))
        response = asyncio.run(service.handle({"action": "loadNotes"}))
        assert response == {"success": True, "data": STATE}

    def test_load_uses_cache(self):
        """Later loads are answered from the cache."""
        backend = MemoryBackend(STATE)
        service = NotesService(backend)
        asyncio.run(service.handle({"action": "loadNotes"}))
        asyncio.run(service.handle({"action": "loadNotes"}))
        assert backend.loads == 1

    def test_load_failure_is_reported(self):
        """A failing backend comes back as success: False."""
        service = NotesService(MemoryBackend(fail_load=True))
        response = asyncio.run(service.handle({"action": "loadNotes"}))
        assert response["success"] is False
        assert "load refused" in response["error"]


class TestSaveNotes:
    """Tests for the saveNotes action."""

    def test_save_writes_backend_and_cache(self):
        backend = MemoryBackend()
        service = NotesService(backend)

        response = asyncio.run(service.handle({"action": "saveNotes", "data": STATE}))

        assert response == {"success": True}
        assert backend.state == STATE
        assert service.cache == STATE

    def test_save_requires_data_object(self):
        service = NotesService(MemoryBackend())
        response = asyncio.run(service.handle({"action": "saveNotes", "data": "nope"}))
        assert response == {"success": False, "error": "saveNotes requires a data object"}

    def test_save_failure_is_reported(self):
        service = NotesService(MemoryBackend(fail_save=True))
        response = asyncio.run(service.handle({"action": "saveNotes", "data": STATE}))
        assert response == {"success": False, "error": "disk full"}

    def test_save_writes_backup_file(self, temp_dir):
        """With a backup dir every save also lands in notes.json."""
        service = NotesService(MemoryBackend(), backup_dir=temp_dir)
        asyncio.run(service.handle({"action": "saveNotes", "data": STATE}))

        backup = temp_dir / "notes.json"
        assert json.loads(backup.read_text(encoding="utf-8")) == STATE

    def test_unknown_action(self):
        service = NotesService(MemoryBackend())
        response = asyncio.run(service.handle({"action": "purge"}))
        assert response == {"success": False, "error": "Unknown action: purge"}


class TestBroadcast:
    """Tests for notesUpdated fan-out to other pages."""

    def test_other_pages_are_notified(self):
        service = NotesService(MemoryBackend())
        received = {"a": [], "b": []}
        page_a = service.subscribe(received["a"].append)
        service.subscribe(received["b"].append)

        asyncio.run(service.handle({"action": "saveNotes", "data": STATE}, sender=page_a))

        assert received["a"] == []
        assert received["b"] == [{"action": "notesUpdated", "data": STATE}]

    def test_unsubscribed_page_is_skipped(self):
        service = NotesService(MemoryBackend())
        received = []
        page = service.subscribe(received.append)
        service.unsubscribe(page)

        asyncio.run(service.save(STATE))

        assert received == []

    def test_broken_subscriber_does_not_block_others(self, caplog):
        """One failing page is logged and the rest still hear about the save."""
        service = NotesService(MemoryBackend())

        def broken(message):
            raise RuntimeError("page gone")

        received = []
        service.subscribe(broken)
        service.subscribe(received.append)

        with caplog.at_level("ERROR", logger="marginalia"):
            asyncio.run(service.save(STATE))

        assert len(received) == 1
        assert "failed to handle notesUpdated" in caplog.text
