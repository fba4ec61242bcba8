"""
Annotation store: the single writable owner of note data.

Mutations (``upsert``/``remove``) apply to memory immediately; ``persist``
ships the full state to the backend afterwards and reports failures without
rolling anything back. A failed persist leaves the newest data durable only
in memory until the next successful persist.
"""

from typing import Dict, List, Optional

from .backends import PersistenceBackend
from .logging import get_logger
from .models import (
    NoteRecord,
    Outcome,
    PersistenceError,
    StoreNotLoaded,
    VideoAnnotationSet,
)

logger = get_logger(__name__)

ORDERS = ("time", "recent", "oldest")


def _id_key(note: NoteRecord):
    # Ids are millisecond timestamps; fall back to string order for foreign ids
    return (0, int(note.id), "") if note.id.isdigit() else (1, 0, note.id)


def sort_notes(notes, order: str = "time") -> List[NoteRecord]:
    """Order notes for display: by playback time, newest first or oldest first."""
    if order not in ORDERS:
        raise ValueError(f"Unknown order: {order}")
    if order == "time":
        return sorted(notes, key=lambda n: (n.time, n.id))
    return sorted(notes, key=_id_key, reverse=(order == "recent"))


class AnnotationStore:
    """In-memory note state grouped by video, persisted through a backend."""

    def __init__(self, backend: PersistenceBackend):
        self.backend = backend
        self.by_video: Dict[str, VideoAnnotationSet] = {}
        self.loaded = False

    # -------------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------------

    async def load(self) -> Outcome:
        """Load state from the backend.

        A failing backend degrades to an empty store; the store is marked
        loaded either way so the UI never blocks on it.
        """
        try:
            state = await self.backend.load()
            by_video = self._parse_state(state)
        except PersistenceError as e:
            self.by_video = {}
            self.loaded = True
            logger.warning("Could not load notes from %s backend: %s", self.backend.name, e)
            return Outcome.degraded(e)

        self.by_video = by_video
        self.loaded = True
        logger.info(
            "Loaded %d note(s) across %d video(s)",
            sum(len(v.notes) for v in self.by_video.values()),
            len(self.by_video),
        )
        return Outcome.success()

    def replace_state(self, state: dict) -> None:
        """Adopt a full state pushed from elsewhere (another page saved).

        Raises PersistenceError for a malformed state; the current state is kept.
        """
        self.by_video = self._parse_state(state)
        self.loaded = True

    @staticmethod
    def _parse_state(state: dict) -> Dict[str, VideoAnnotationSet]:
        """Parse a stored state, raising PersistenceError when its shape is wrong."""
        if state is None:
            return {}
        if not isinstance(state, dict):
            raise PersistenceError(f"stored notes must be an object, got {type(state).__name__}")
        by_video = {}
        for video_id, data in state.items():
            try:
                video = VideoAnnotationSet.from_dict(video_id, data or {})
            except (AttributeError, TypeError, ValueError) as e:
                raise PersistenceError(f"malformed notes for video {video_id}: {e}") from e
            by_video[video.video_id] = video
        return by_video

    def to_state(self) -> dict:
        return {video_id: video.to_dict() for video_id, video in self.by_video.items()}

    def _require_loaded(self, action: str) -> None:
        if not self.loaded:
            logger.warning("Rejected %s before notes finished loading", action)
            raise StoreNotLoaded(f"cannot {action} before the store has loaded")

    # -------------------------------------------------------------------------
    # Mutations
    # -------------------------------------------------------------------------

    def upsert(
        self,
        video_id: str,
        note_id: str,
        time: float,
        content: str,
        title: Optional[str] = None,
    ) -> NoteRecord:
        """Insert or overwrite a note, creating the video's set on first use.

        Raises StoreNotLoaded when called before ``load()`` finished.
        """
        self._require_loaded("upsert")
        video = self.by_video.get(video_id)
        if video is None:
            video = VideoAnnotationSet(video_id=video_id, title=title or "")
            self.by_video[video_id] = video
        record = NoteRecord(id=note_id, time=max(0.0, float(time)), content=content)
        video.notes[note_id] = record
        return record

    def remove(self, video_id: str, note_id: str) -> bool:
        self._require_loaded("remove")
        video = self.by_video.get(video_id)
        if video is None or note_id not in video.notes:
            return False
        del video.notes[note_id]
        return True

    async def persist(self) -> Outcome:
        """Write the full current state through the backend."""
        if not self.loaded:
            error = StoreNotLoaded("cannot persist before the store has loaded")
            logger.warning("%s", error)
            return Outcome.rejected(error)
        state = self.to_state()
        try:
            await self.backend.save(state)
        except PersistenceError as e:
            logger.warning("Notes kept in memory only, persist failed: %s", e)
            return Outcome.degraded(e)
        return Outcome.success()

    # -------------------------------------------------------------------------
    # Queries
    # -------------------------------------------------------------------------

    def get(self, video_id: str, note_id: str) -> Optional[NoteRecord]:
        video = self.by_video.get(video_id)
        if video is None:
            return None
        return video.notes.get(note_id)

    def video(self, video_id: str) -> Optional[VideoAnnotationSet]:
        return self.by_video.get(video_id)

    def videos(self) -> List[VideoAnnotationSet]:
        return sorted(self.by_video.values(), key=lambda v: v.video_id)

    def notes_for(self, video_id: Optional[str] = None, order: str = "time") -> List[NoteRecord]:
        """
        Notes for the panel listing.

        Args:
            video_id: Restrict to one video; None lists every video's notes.
            order: "time" (playback order), "recent" (newest first) or "oldest".
        """
        if video_id is None:
            notes = [n for v in self.by_video.values() for n in v.notes.values()]
        else:
            video = self.by_video.get(video_id)
            notes = list(video.notes.values()) if video else []

        return sort_notes(notes, order)
