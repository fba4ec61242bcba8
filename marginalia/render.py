"""
Fan-out of store state to every view of a note.

Render requests are queued per note and flushed together, optionally on a
deferred callback (the host's layout-settled hook). The flush reads the
store at flush time, so several rapid mutations of one note collapse into a
single render of its final state.
"""

from typing import Callable, Dict, Optional, Tuple

from .logging import get_logger

logger = get_logger(__name__)


class RenderQueue:
    """Coalescing per-note render scheduler."""

    def __init__(
        self,
        store,
        registry,
        markers,
        duration: Callable[[], Optional[float]],
        defer: Optional[Callable[[Callable[[], None]], object]] = None,
    ):
        self.store = store
        self.registry = registry
        self.markers = markers
        self.duration = duration
        self.defer = defer
        self._pending: Dict[Tuple[str, str], None] = {}
        self._scheduled = False

    @property
    def pending(self) -> int:
        return len(self._pending)

    def request(self, video_id: str, note_id: str) -> None:
        self._pending[(video_id, note_id)] = None
        if self.defer is None:
            self.flush()
        elif not self._scheduled:
            self._scheduled = True
            self.defer(self.flush)

    def flush(self) -> int:
        """Render every pending note from the store; returns views rendered."""
        pending = list(self._pending)
        self._pending.clear()
        self._scheduled = False

        rendered = 0
        for video_id, note_id in pending:
            record = self.store.get(video_id, note_id)
            if record is None:
                # Deleted before the flush; teardown already happened
                continue
            for binding in self.registry.bindings(note_id):
                binding.view.render(record.display_time, record.content)
                rendered += 1
            self.markers.reposition(note_id, record.time, self.duration())
        if pending:
            logger.debug("Rendered %d view(s) for %d note(s)", rendered, len(pending))
        return rendered
