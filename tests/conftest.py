"""Shared fixtures for marginalia tests."""

import asyncio
import logging
import shutil
import tempfile
from pathlib import Path

import pytest

from marginalia.backends import PersistenceBackend
from marginalia.models import NoteIdAllocator, PersistenceError
from marginalia.store import AnnotationStore
from marginalia.sync import SyncEngine


@pytest.fixture(autouse=True)
def reset_marginalia_logger():
    """setup_logging() stops propagation; restore it so caplog keeps working."""
    yield
    logger = logging.getLogger("marginalia")
    logger.handlers.clear()
    logger.propagate = True
    logger.setLevel(logging.NOTSET)
    logging.getLogger("werkzeug").setLevel(logging.NOTSET)


@pytest.fixture
def temp_dir():
    """Create a temporary directory for test files."""
    dirpath = tempfile.mkdtemp()
    yield Path(dirpath)
    shutil.rmtree(dirpath)


class MemoryBackend(PersistenceBackend):
    """Backend double that records saves and can be told to fail."""

    name = "memory"

    def __init__(self, state=None, fail_load=False, fail_save=False):
        self.state = state or {}
        self.fail_load = fail_load
        self.fail_save = fail_save
        self.saves = []
        self.loads = 0

    async def load(self):
        self.loads += 1
        if self.fail_load:
            raise PersistenceError("load refused")
        return self.state

    async def save(self, state):
        self.saves.append(state)
        if self.fail_save:
            raise PersistenceError("disk full")
        self.state = state


class FakeView:
    """Stands in for a rendered element; remembers what it shows."""

    def __init__(self, note_id, kind, time_text, content):
        self.note_id = note_id
        self.kind = kind
        self.time_text = time_text
        self.content = content
        self.visible = True
        self.destroyed = False
        self.destroys = 0
        self.renders = 0
        self.left = None

    def render(self, time_text, content):
        self.time_text = time_text
        self.content = content
        self.renders += 1

    def show(self):
        self.visible = True

    def hide(self):
        self.visible = False

    def destroy(self):
        self.destroyed = True
        self.destroys += 1
        self.visible = False

    def anchor(self, left):
        self.left = left


class FakeMarkerView:
    def __init__(self, note_id):
        self.note_id = note_id
        self.position = None
        self.moves = 0
        self.destroyed = False

    def move(self, position):
        self.position = position
        self.moves += 1

    def destroy(self):
        self.destroyed = True


class FakeFactory:
    """Records every element it creates."""

    def __init__(self):
        self.views = []
        self.markers = []

    def create_editor(self, note_id, kind, time_text, content):
        view = FakeView(note_id, kind, time_text, content)
        self.views.append(view)
        return view

    def create_card(self, note_id, time_text, content):
        view = FakeView(note_id, "card-readonly", time_text, content)
        self.views.append(view)
        return view

    def create_marker(self, note_id):
        marker = FakeMarkerView(note_id)
        self.markers.append(marker)
        return marker


class FakeHost:
    def __init__(self, video_id="vid-1", title="Lecture 1", position=65.4, duration=300.0):
        self._video_id = video_id
        self._title = title
        self.position = position
        self._duration = duration
        self.geometry = None

    def video_id(self):
        return self._video_id

    def video_title(self):
        return self._title

    def current_time(self):
        return self.position

    def duration(self):
        return self._duration

    def tooltip_geometry(self, note_id):
        return self.geometry


class ManualTimer:
    """call_later replacement driven by the test."""

    class Handle:
        def __init__(self, callback):
            self.callback = callback
            self.cancelled = False

        def cancel(self):
            self.cancelled = True

    def __init__(self):
        self.handles = []

    def __call__(self, delay, callback):
        handle = self.Handle(callback)
        self.handles.append(handle)
        return handle

    @property
    def pending(self):
        return [h for h in self.handles if not h.cancelled]

    def fire(self):
        for handle in self.pending:
            handle.cancelled = True
            handle.callback()


class ManualDefer:
    """Collects deferred render flushes until the test runs them."""

    def __init__(self):
        self.callbacks = []

    def __call__(self, callback):
        self.callbacks.append(callback)

    def run(self):
        callbacks, self.callbacks = self.callbacks, []
        for callback in callbacks:
            callback()


@pytest.fixture
def backend():
    return MemoryBackend()


@pytest.fixture
def factory():
    return FakeFactory()


@pytest.fixture
def host():
    return FakeHost()


@pytest.fixture
def timer():
    return ManualTimer()


@pytest.fixture
def make_engine(backend, factory, host, timer):
    """Build a loaded engine; extra keyword arguments go to SyncEngine."""
    def _make(loaded=True, **kwargs):
        store = AnnotationStore(backend)
        ids = iter(range(1000, 100000))
        engine = SyncEngine(
            store,
            host,
            factory,
            call_later=timer,
            ids=NoteIdAllocator(clock=lambda: next(ids)),
            **kwargs,
        )
        if loaded:
            asyncio.run(engine.load())
        return engine

    return _make
