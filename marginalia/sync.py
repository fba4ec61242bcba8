"""
Sync engine: keeps every view of a note consistent with the store.

Each note moves Draft -> Persisted -> Deleted:

- Draft: only an open editor exists, the store has no entry.
- Persisted: the store has an entry; any number of cards/editors may show it.
- Deleted: store entry, views and marker are gone.

Every mutation updates the store first, then fans the stored state out to
all views of the note. Persistence is optimistic: the in-memory change
stands even when the backend write fails, and the failure is reported in
the returned ``Outcome``.
"""

from typing import Dict, Optional, Protocol, Tuple

from . import timecode
from .backends import ChannelBackend, LocalChannel
from .logging import get_logger, log_outcome
from .markers import DEFAULT_HIDE_DELAY, MarkerLayer
from .models import (
    NoteIdAllocator,
    NoteRecord,
    Outcome,
    PersistenceError,
    PreconditionUnmet,
    StoreNotLoaded,
    ValidationError,
    is_blank,
)
from .render import RenderQueue
from .store import AnnotationStore
from .views import ViewBinding, ViewFactory, ViewKind, ViewRegistry

logger = get_logger(__name__)

PANEL = "panel"
TIMELINE = "timeline"


class Host(Protocol):
    """Queries answered by the page hosting the video."""

    def video_id(self) -> Optional[str]: ...

    def video_title(self) -> str: ...

    def current_time(self) -> Optional[float]: ...

    def duration(self) -> Optional[float]: ...


class SyncEngine:
    """Applies note mutations to the store and propagates them to views and markers."""

    def __init__(
        self,
        store: AnnotationStore,
        host: Host,
        factory: ViewFactory,
        registry: Optional[ViewRegistry] = None,
        defer=None,
        hide_delay: float = DEFAULT_HIDE_DELAY,
        call_later=None,
        ids: Optional[NoteIdAllocator] = None,
    ):
        self.store = store
        self.host = host
        self.factory = factory
        self.registry = registry or ViewRegistry()
        self.markers = MarkerLayer(
            factory,
            geometry=getattr(host, "tooltip_geometry", None),
            hide_delay=hide_delay,
            call_later=call_later,
            on_show=self._tooltip_shown,
            on_hide=self._tooltip_hidden,
        )
        self.renderer = RenderQueue(
            store, self.registry, self.markers, duration=self.host.duration, defer=defer
        )
        self.ids = ids or NoteIdAllocator()
        # note id -> (video id, time) for notes never saved
        self._drafts: Dict[str, Tuple[str, float]] = {}

    @classmethod
    def connect(cls, service, host: Host, factory: ViewFactory, **kwargs) -> "SyncEngine":
        """
        Engine for one page persisting through a shared notes service.

        Saves go through the service, and saves made by other pages come back
        as ``notesUpdated`` messages handled by :meth:`handle_message`.
        """
        channel = LocalChannel(service)
        engine = cls(AnnotationStore(ChannelBackend(channel)), host, factory, **kwargs)
        channel.on_update = engine.handle_message
        return engine

    # -------------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------------

    async def load(self) -> Outcome:
        """Load the store, then render the current video's notes."""
        outcome = await self.store.load()
        self.render_video()
        return outcome

    def render_video(self) -> int:
        """Ensure a card and a marker for every saved note of the current video."""
        video_id = self.host.video_id()
        if video_id is None or not self.store.loaded:
            return 0
        notes = self.store.notes_for(video_id)
        for record in notes:
            self._ensure_card(video_id, record.id)
            self._ensure_marker(video_id, record.id)
        return len(notes)

    def on_duration_change(self) -> None:
        """The host learned (or changed) the video duration."""
        duration = self.host.duration()
        placed = self.markers.retry_deferred(duration)
        if placed:
            logger.debug("Placed %d deferred marker(s)", len(placed))
        self.markers.relayout(duration)

    def is_draft(self, note_id: str) -> bool:
        return note_id in self._drafts

    # -------------------------------------------------------------------------
    # Transitions
    # -------------------------------------------------------------------------

    def create(self, origin: str = PANEL) -> Optional[ViewBinding]:
        """
        Open a Draft editor at the current playback offset.

        From the panel the Draft gets an inline editor; from the timeline it
        gets a marker whose pinned tooltip is the Draft's only editor. Returns
        None when the page has no video or no playback position yet.
        """
        video_id = self.host.video_id()
        position = self.host.current_time()
        if video_id is None or position is None:
            logger.debug("%s", PreconditionUnmet("no video to annotate"))
            return None

        note_id = self.ids.next_id()
        time_text = timecode.encode(position)
        self._drafts[note_id] = (video_id, float(position))

        if origin == TIMELINE:
            view = self.factory.create_editor(note_id, ViewKind.EDITOR_TOOLTIP, time_text, "")
            binding = self.registry.bind(note_id, ViewKind.EDITOR_TOOLTIP, view)
            self.markers.ensure(note_id, binding)
            self.markers.place(note_id, position, self.host.duration())
            self.markers.get(note_id).visibility.click()
        else:
            view = self.factory.create_editor(note_id, ViewKind.EDITOR_INLINE, time_text, "")
            binding = self.registry.bind(note_id, ViewKind.EDITOR_INLINE, view)

        logger.info("Started note %s at %s", note_id, time_text)
        return binding

    async def save(
        self,
        binding: ViewBinding,
        content: str,
        time: Optional[float] = None,
    ) -> Outcome:
        """Validate, store and persist an editor's content, then update every view."""
        if not binding.is_editor:
            return Outcome.rejected(ValidationError("only editors can save"))
        if not self.registry.is_bound(binding):
            return Outcome.rejected(PreconditionUnmet(f"editor for note {binding.note_id} is closed"))

        content = (content or "").strip()
        if is_blank(content):
            return Outcome.rejected(ValidationError("Note cannot be empty"))

        note_id = binding.note_id
        located = self._locate(note_id)
        if located is None:
            return Outcome.rejected(PreconditionUnmet(f"note {note_id} has no video"))
        video_id, stored_time = located
        if time is None:
            time = stored_time

        try:
            self.store.upsert(video_id, note_id, time, content, title=self.host.video_title())
        except StoreNotLoaded as e:
            return Outcome.rejected(e)
        self._drafts.pop(note_id, None)
        outcome = await self.store.persist()
        log_outcome(logger, "save", note_id, outcome)

        record = self.store.get(video_id, note_id)
        if record is None:
            # Deleted while the persist was in flight
            return outcome

        self.renderer.request(video_id, note_id)
        if self.registry.is_bound(binding):
            if binding.kind is ViewKind.EDITOR_INLINE:
                self._close_inline_editor(video_id, binding)
            else:
                self._close_tooltip(binding)
                if self.registry.first(note_id, ViewKind.EDITOR_INLINE) is None:
                    self._ensure_card(video_id, note_id)
        self._ensure_marker(video_id, note_id)
        return outcome.with_record(record)

    def cancel(self, binding: ViewBinding) -> Outcome:
        """Discard an editor's changes.

        A Persisted note reverts to its stored content; a Draft's editor is
        torn down since there is nothing to revert to.
        """
        if not binding.is_editor:
            return Outcome.rejected(ValidationError("only editors can cancel"))

        note_id = binding.note_id
        located = self._locate(note_id)
        record = self.store.get(located[0], note_id) if located else None

        if record is None:
            self._teardown(binding)
            if not self.registry.bindings(note_id):
                self._drafts.pop(note_id, None)
                self.markers.remove(note_id)
            logger.debug("Discarded draft %s", note_id)
            return Outcome.success()

        binding.view.render(record.display_time, record.content)
        if binding.kind is ViewKind.EDITOR_TOOLTIP:
            self._close_tooltip(binding)
        else:
            self._close_inline_editor(located[0], binding)
        return Outcome.success(record)

    async def delete(self, note_id: str) -> Outcome:
        """Remove a note from the store, every view and the timeline."""
        located = self._locate(note_id)
        video_id = located[0] if located else self.host.video_id()

        try:
            removed = self.store.remove(video_id, note_id) if video_id is not None else False
        except StoreNotLoaded as e:
            return Outcome.rejected(e)

        self._teardown_note(note_id)

        outcome = await self.store.persist() if removed else Outcome.success()
        log_outcome(logger, "delete", note_id, outcome)
        return outcome

    def edit(self, card: ViewBinding) -> Optional[ViewBinding]:
        """Swap a read-only card for an inline editor seeded from the store."""
        if card.kind is not ViewKind.CARD or not self.registry.is_bound(card):
            return None
        located = self._locate(card.note_id)
        record = self.store.get(located[0], card.note_id) if located else None
        if record is None:
            return None

        view = self.factory.create_editor(
            record.id, ViewKind.EDITOR_INLINE, record.display_time, record.content
        )
        editor = self.registry.bind(record.id, ViewKind.EDITOR_INLINE, view)
        self._teardown(card)
        return editor

    def handle_message(self, message: dict) -> bool:
        """Handle a message pushed by the notes service; True if it was applied."""
        if (message or {}).get("action") != "notesUpdated":
            return False
        try:
            self.apply_remote_update(message.get("data") or {})
        except PersistenceError as e:
            logger.warning("Ignored notesUpdated: %s", e)
            return False
        return True

    def apply_remote_update(self, state: dict) -> None:
        """Adopt a state saved by another page and bring every view in line.

        Raises PersistenceError for a malformed state, leaving views untouched.
        """
        self.store.replace_state(state)

        for note_id in set(self.registry.note_ids()) | set(self.markers.note_ids()):
            if note_id in self._drafts:
                continue
            if self._locate(note_id) is None:
                self._teardown_note(note_id)

        video_id = self.host.video_id()
        self.render_video()
        if video_id is not None:
            for record in self.store.notes_for(video_id):
                self.renderer.request(video_id, record.id)

    # -------------------------------------------------------------------------
    # Helpers
    # -------------------------------------------------------------------------

    def _locate(self, note_id: str) -> Optional[Tuple[str, float]]:
        """(video id, time) of a Draft or saved note; None if unknown."""
        if note_id in self._drafts:
            return self._drafts[note_id]
        current = self.host.video_id()
        if current is not None:
            record = self.store.get(current, note_id)
            if record is not None:
                return current, record.time
        for video in self.store.by_video.values():
            record = video.notes.get(note_id)
            if record is not None:
                return video.video_id, record.time
        return None

    def _record_view_args(self, video_id: str, note_id: str) -> Tuple[str, str]:
        record: NoteRecord = self.store.get(video_id, note_id)
        return record.display_time, record.content

    def _ensure_card(self, video_id: str, note_id: str) -> ViewBinding:
        card = self.registry.first(note_id, ViewKind.CARD)
        if card is not None:
            return card
        view = self.factory.create_card(note_id, *self._record_view_args(video_id, note_id))
        return self.registry.bind(note_id, ViewKind.CARD, view)

    def _ensure_marker(self, video_id: str, note_id: str) -> None:
        record = self.store.get(video_id, note_id)
        if record is None:
            return
        if note_id not in self.markers:
            # Bound only while shown; see _tooltip_shown
            view = self.factory.create_editor(
                note_id, ViewKind.EDITOR_TOOLTIP, record.display_time, record.content
            )
            view.hide()
            tooltip = ViewBinding(note_id=note_id, kind=ViewKind.EDITOR_TOOLTIP, view=view)
            self.markers.ensure(note_id, tooltip)
        self.markers.place(note_id, record.time, self.host.duration())

    def _tooltip_shown(self, entry) -> None:
        """Register a tooltip editor as it opens, rendered from the store."""
        self.registry.attach(entry.tooltip)
        located = self._locate(entry.note_id)
        record = self.store.get(located[0], entry.note_id) if located else None
        if record is not None:
            entry.tooltip.view.render(record.display_time, record.content)

    def _tooltip_hidden(self, entry) -> None:
        # A Draft's tooltip is its only editor, it stays bound until save/cancel
        if entry.note_id not in self._drafts:
            self.registry.unbind(entry.tooltip)

    def _close_inline_editor(self, video_id: str, editor: ViewBinding) -> None:
        """Replace a saved note's inline editor with its single card."""
        if self.registry.first(editor.note_id, ViewKind.CARD) is None:
            self._ensure_card(video_id, editor.note_id)
        self._teardown(editor)

    def _close_tooltip(self, tooltip: ViewBinding) -> None:
        entry = self.markers.get(tooltip.note_id)
        if entry is not None and entry.tooltip is tooltip:
            entry.visibility.close()
        else:
            tooltip.view.hide()

    def _teardown(self, binding: ViewBinding) -> None:
        self.registry.unbind(binding)
        entry = self.markers.get(binding.note_id)
        if entry is not None and entry.tooltip is binding:
            # Removing the marker destroys its tooltip
            self.markers.remove(binding.note_id)
        else:
            binding.view.destroy()

    def _teardown_note(self, note_id: str) -> None:
        self._drafts.pop(note_id, None)
        entry = self.markers.remove(note_id)
        for binding in self.registry.unbind_all(note_id):
            if entry is None or binding is not entry.tooltip:
                binding.view.destroy()
