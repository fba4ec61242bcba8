"""
Core note data model for Marginalia.

A note is a timestamped, opaque formatted-text annotation on one video.
Times are canonical seconds; the ``m:ss`` display form is always derived
from them and never stored alongside.
"""

import re
import time as _time
from dataclasses import dataclass, field
from html import unescape
from typing import Dict, Optional

from . import timecode


# =============================================================================
# Errors
# =============================================================================

class MarginaliaError(Exception):
    """Base class for every error the note core reports."""


class ValidationError(MarginaliaError):
    """A mutation was rejected before touching any state (e.g. empty content)."""


class PersistenceError(MarginaliaError):
    """A backend failed to load or save; in-memory state stays authoritative."""


class PreconditionUnmet(MarginaliaError):
    """The host cannot serve the request yet (no video, no duration)."""


class StoreNotLoaded(MarginaliaError):
    """A write arrived before the store finished its initial load."""


# =============================================================================
# Records
# =============================================================================

@dataclass(frozen=True)
class NoteRecord:
    """
    One timestamped annotation.

    ``content`` is an opaque formatted-text payload (HTML in practice).
    """
    id: str
    time: float
    content: str

    @property
    def display_time(self) -> str:
        return timecode.encode(self.time)

    def to_dict(self) -> dict:
        return {"time": self.time, "content": self.content}

    @classmethod
    def from_dict(cls, note_id: str, data: dict) -> "NoteRecord":
        """Build a record from its stored form.

        Older stores kept the display string (``"1:05"``) in ``time``; those
        are decoded back to seconds.
        """
        raw_time = data.get("time", 0)
        if isinstance(raw_time, str):
            seconds = float(timecode.decode(raw_time))
        else:
            seconds = float(raw_time or 0)
        return cls(id=str(note_id), time=max(0.0, seconds), content=str(data.get("content", "")))


@dataclass
class VideoAnnotationSet:
    """All notes saved for one video, plus the title captured when the first was saved."""
    video_id: str
    title: str = ""
    notes: Dict[str, NoteRecord] = field(default_factory=dict)

    def sorted_notes(self) -> list:
        return sorted(self.notes.values(), key=lambda n: (n.time, n.id))

    def to_dict(self) -> dict:
        return {
            "title": self.title,
            "notes": {note_id: note.to_dict() for note_id, note in self.notes.items()},
        }

    @classmethod
    def from_dict(cls, video_id: str, data: dict) -> "VideoAnnotationSet":
        notes = {
            str(note_id): NoteRecord.from_dict(note_id, note)
            for note_id, note in (data.get("notes") or {}).items()
        }
        return cls(video_id=str(video_id), title=str(data.get("title") or ""), notes=notes)


# =============================================================================
# Outcomes
# =============================================================================

@dataclass
class Outcome:
    """
    Structured result of a store or sync operation.

    ``applied`` says whether the in-memory transition happened; ``ok`` says
    whether everything, persistence included, succeeded. A save whose
    persist failed is ``applied`` but not ``ok``.
    """
    ok: bool
    applied: bool = True
    error: Optional[MarginaliaError] = None
    record: Optional[NoteRecord] = None

    @property
    def reason(self) -> str:
        return str(self.error) if self.error else ""

    @classmethod
    def success(cls, record: Optional[NoteRecord] = None) -> "Outcome":
        return cls(ok=True, applied=True, record=record)

    @classmethod
    def rejected(cls, error: MarginaliaError) -> "Outcome":
        return cls(ok=False, applied=False, error=error)

    @classmethod
    def degraded(cls, error: MarginaliaError, record: Optional[NoteRecord] = None) -> "Outcome":
        return cls(ok=False, applied=True, error=error, record=record)

    def with_record(self, record: Optional[NoteRecord]) -> "Outcome":
        return Outcome(ok=self.ok, applied=self.applied, error=self.error, record=record)


# =============================================================================
# Helpers
# =============================================================================

class NoteIdAllocator:
    """Hands out millisecond-timestamp ids, bumped so they never repeat."""

    def __init__(self, clock=None):
        self._clock = clock or (lambda: _time.time_ns() // 1_000_000)
        self._last = 0

    def next_id(self) -> str:
        candidate = int(self._clock())
        if candidate <= self._last:
            candidate = self._last + 1
        self._last = candidate
        return str(candidate)


_TAG_RE = re.compile(r"<[^>]+>")
_BREAK_RE = re.compile(r"<br\s*/?>|</(?:p|div|li|h\d|blockquote|pre)>", re.IGNORECASE)


def strip_markup(content: str) -> str:
    """Drop tags and decode entities from a formatted-text payload."""
    text = _BREAK_RE.sub("\n", content or "")
    return unescape(_TAG_RE.sub("", text)).strip("\n")


def plain_text_length(content: str) -> int:
    """Character count shown beside the editor toolbar."""
    return len(strip_markup(content))


def is_blank(content: Optional[str]) -> bool:
    return not (content or "").strip()
