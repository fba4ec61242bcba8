"""
Timeline markers: one per note, placed at ``time / duration`` on the track.

Placement waits for a usable duration instead of guessing; a marker parked
at 0 while the video metadata loads would point at the wrong moment.
Each marker also owns the hover/click state machine of its tooltip.
"""

import asyncio
import math
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, Dict, List, Optional, Protocol, Set

from .logging import get_logger
from .views import ViewBinding

logger = get_logger(__name__)

DEFAULT_HIDE_DELAY = 0.1  # seconds


class MarkerView(Protocol):
    """The marker handle drawn on the timeline track."""

    def move(self, position: float) -> None: ...

    def destroy(self) -> None: ...


@dataclass(frozen=True)
class TooltipGeometry:
    """On-screen layout needed to anchor a tooltip (pixels)."""
    marker_left: float
    marker_width: float
    track_width: float
    tooltip_width: float


def is_valid_duration(duration) -> bool:
    try:
        value = float(duration)
    except (TypeError, ValueError):
        return False
    return math.isfinite(value) and value > 0


def marker_position(time: float, duration: float) -> Optional[float]:
    """Normalized track position, or None while the duration is unknown."""
    if not is_valid_duration(duration):
        return None
    return min(max(float(time) / float(duration), 0.0), 1.0)


def tooltip_offset(
    marker_left: float,
    marker_width: float,
    track_width: float,
    tooltip_width: float,
) -> float:
    """Left offset centering the tooltip on the marker, kept inside the track."""
    center = marker_left + marker_width / 2.0
    left = center - tooltip_width / 2.0
    return max(0.0, min(left, track_width - tooltip_width))


def _call_later(delay: float, callback: Callable[[], None]):
    """Schedule on the running event loop.

    Hosts driving tooltips outside an event loop should inject their own
    ``call_later``; without one the hide runs at once, undebounced.
    """
    try:
        loop = asyncio.get_running_loop()
    except RuntimeError:
        logger.debug("No running event loop, hiding without the %.3fs delay", delay)
        callback()
        return None
    return loop.call_later(delay, callback)


# =============================================================================
# Tooltip visibility
# =============================================================================

class TooltipState(str, Enum):
    HIDDEN = "hidden"
    SHOWN_TRANSIENT = "shown-transient"
    SHOWN_PINNED = "shown-pinned"


class TooltipVisibility:
    """
    Hover/click visibility of one marker's tooltip.

    Hover shows the tooltip until the pointer leaves both the marker and the
    tooltip for ``hide_delay`` seconds; a click pins it open until the next
    click on the marker or a click outside.

    ``call_later(delay, callback)`` returns a handle with ``cancel()``; the
    default schedules on the running asyncio loop.
    """

    MARKER = "marker"
    TOOLTIP = "tooltip"

    def __init__(
        self,
        on_show: Callable[[], None],
        on_hide: Callable[[], None],
        hide_delay: float = DEFAULT_HIDE_DELAY,
        call_later=None,
    ):
        self._on_show = on_show
        self._on_hide = on_hide
        self.hide_delay = hide_delay
        self._call_later = call_later or _call_later
        self.state = TooltipState.HIDDEN
        self._hovered: Set[str] = set()
        self._hide_handle = None

    @property
    def visible(self) -> bool:
        return self.state is not TooltipState.HIDDEN

    @property
    def pinned(self) -> bool:
        return self.state is TooltipState.SHOWN_PINNED

    @property
    def hide_pending(self) -> bool:
        return self._hide_handle is not None

    def _cancel_hide(self) -> None:
        if self._hide_handle is not None:
            self._hide_handle.cancel()
            self._hide_handle = None

    def _show(self, state: TooltipState) -> None:
        self.state = state
        self._on_show()

    def hover_enter(self, target: str = MARKER) -> None:
        self._hovered.add(target)
        self._cancel_hide()
        if self.state is TooltipState.HIDDEN and target == self.MARKER:
            self._show(TooltipState.SHOWN_TRANSIENT)

    def hover_leave(self, target: str = MARKER) -> None:
        self._hovered.discard(target)
        if self.state is not TooltipState.SHOWN_TRANSIENT:
            return
        self._cancel_hide()
        self._hide_handle = self._call_later(self.hide_delay, self._hide_if_idle)

    def _hide_if_idle(self) -> None:
        self._hide_handle = None
        if not self._hovered and self.state is TooltipState.SHOWN_TRANSIENT:
            self.close()

    def click(self) -> None:
        if self.pinned:
            self.close()
        else:
            self._cancel_hide()
            self._show(TooltipState.SHOWN_PINNED)

    def outside_click(self) -> None:
        if self.visible:
            self.close()

    def close(self) -> None:
        self._cancel_hide()
        self.state = TooltipState.HIDDEN
        self._on_hide()

    def dispose(self) -> None:
        self._cancel_hide()
        self._hovered.clear()
        self.state = TooltipState.HIDDEN


# =============================================================================
# Marker layer
# =============================================================================

@dataclass(eq=False)
class MarkerEntry:
    note_id: str
    view: MarkerView
    tooltip: ViewBinding
    visibility: TooltipVisibility
    time: float = 0.0
    position: Optional[float] = None
    last_offset: Optional[float] = field(default=None)


class MarkerLayer:
    """
    note id -> marker, with deferred placement until the duration is known.

    ``on_show``/``on_hide`` are called with the entry around every tooltip
    visibility change, before the tooltip view is shown and after it is hidden.
    """

    def __init__(
        self,
        factory,
        geometry: Optional[Callable[[str], Optional[TooltipGeometry]]] = None,
        hide_delay: float = DEFAULT_HIDE_DELAY,
        call_later=None,
        on_show: Optional[Callable[["MarkerEntry"], None]] = None,
        on_hide: Optional[Callable[["MarkerEntry"], None]] = None,
    ):
        self.factory = factory
        self.geometry = geometry
        self.hide_delay = hide_delay
        self._call_later = call_later
        self._on_show = on_show
        self._on_hide = on_hide
        self._entries: Dict[str, MarkerEntry] = {}
        self._deferred: Set[str] = set()

    def __contains__(self, note_id: str) -> bool:
        return note_id in self._entries

    def __len__(self) -> int:
        return len(self._entries)

    def get(self, note_id: str) -> Optional[MarkerEntry]:
        return self._entries.get(note_id)

    def note_ids(self) -> List[str]:
        return list(self._entries)

    def position(self, note_id: str) -> Optional[float]:
        entry = self._entries.get(note_id)
        return entry.position if entry else None

    @property
    def deferred(self) -> Set[str]:
        return set(self._deferred)

    def ensure(self, note_id: str, tooltip: ViewBinding) -> MarkerEntry:
        """Return the note's marker, creating it with ``tooltip`` if absent."""
        entry = self._entries.get(note_id)
        if entry is not None:
            return entry
        visibility = TooltipVisibility(
            on_show=lambda: self._show_tooltip(note_id),
            on_hide=lambda: self._hide_tooltip(note_id),
            hide_delay=self.hide_delay,
            call_later=self._call_later,
        )
        entry = MarkerEntry(
            note_id=note_id,
            view=self.factory.create_marker(note_id),
            tooltip=tooltip,
            visibility=visibility,
        )
        self._entries[note_id] = entry
        logger.debug("Created marker for note %s", note_id)
        return entry

    def place(self, note_id: str, time: float, duration) -> Optional[float]:
        """Position an existing marker; returns None when placement is deferred."""
        entry = self._entries[note_id]
        entry.time = float(time)
        position = marker_position(time, duration)
        if position is None:
            self._deferred.add(note_id)
            logger.debug("Deferred marker %s until duration is known", note_id)
            return None
        self._deferred.discard(note_id)
        if entry.position != position:
            entry.position = position
            entry.view.move(position)
        return position

    def reposition(self, note_id: str, time: float, duration) -> Optional[float]:
        if note_id not in self._entries:
            return None
        return self.place(note_id, time, duration)

    def retry_deferred(self, duration) -> List[str]:
        """Place markers that were waiting for a duration; returns the placed ids."""
        if not is_valid_duration(duration):
            return []
        placed = []
        for note_id in sorted(self._deferred):
            entry = self._entries.get(note_id)
            if entry is None:
                self._deferred.discard(note_id)
                continue
            if self.place(note_id, entry.time, duration) is not None:
                placed.append(note_id)
        return placed

    def relayout(self, duration) -> None:
        """Recompute every marker after the duration changed."""
        for note_id, entry in list(self._entries.items()):
            self.place(note_id, entry.time, duration)

    def remove(self, note_id: str) -> Optional[MarkerEntry]:
        entry = self._entries.pop(note_id, None)
        self._deferred.discard(note_id)
        if entry is None:
            return None
        entry.visibility.dispose()
        # The tooltip lives inside the marker element
        entry.tooltip.view.destroy()
        entry.view.destroy()
        logger.debug("Removed marker for note %s", note_id)
        return entry

    def _show_tooltip(self, note_id: str) -> None:
        entry = self._entries.get(note_id)
        if entry is None:
            return
        if self._on_show is not None:
            self._on_show(entry)
        if self.geometry is not None:
            layout = self.geometry(note_id)
            if layout is not None:
                entry.last_offset = tooltip_offset(
                    layout.marker_left,
                    layout.marker_width,
                    layout.track_width,
                    layout.tooltip_width,
                )
                entry.tooltip.view.anchor(entry.last_offset)
        entry.tooltip.view.show()

    def _hide_tooltip(self, note_id: str) -> None:
        entry = self._entries.get(note_id)
        if entry is None:
            return
        entry.tooltip.view.hide()
        if self._on_hide is not None:
            self._on_hide(entry)

    def outside_click(self) -> None:
        """A click landed outside every marker and tooltip."""
        for entry in self._entries.values():
            entry.visibility.outside_click()
