"""
Marginalia - Timestamped Notes for Video Pages

Notes pinned to playback moments, shown at once in a notes panel, in a
tooltip over a timeline marker and as saved cards:
- Annotation store with pluggable persistence (key-value, per-video file, background service)
- Sync engine keeping every view of a note identical after save/cancel/delete
- Timeline markers with deferred placement and hover/click tooltips
- WebVTT/SRT/JSON/Markdown export
"""

__version__ = "0.3.0"

from .backends import ChannelBackend, KeyValueBackend, VideoScopedBackend
from .models import (
    NoteRecord,
    Outcome,
    PersistenceError,
    PreconditionUnmet,
    StoreNotLoaded,
    ValidationError,
    VideoAnnotationSet,
)
from .store import AnnotationStore
from .sync import SyncEngine
from .timecode import decode, encode
from .views import ViewKind, ViewRegistry

__all__ = [
    "AnnotationStore",
    "ChannelBackend",
    "KeyValueBackend",
    "NoteRecord",
    "Outcome",
    "PersistenceError",
    "PreconditionUnmet",
    "StoreNotLoaded",
    "SyncEngine",
    "ValidationError",
    "VideoAnnotationSet",
    "VideoScopedBackend",
    "ViewKind",
    "ViewRegistry",
    "decode",
    "encode",
]
