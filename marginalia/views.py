"""
View bindings and the registry that tracks them.

A binding is one rendered occurrence of a note: an inline editor in the
notes panel, the editor inside a marker's tooltip, or a read-only card. The
registry is populated on bind/unbind so fan-out never has to search a
rendered tree for a note's views.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Dict, List, Optional, Protocol

from .logging import get_logger

logger = get_logger(__name__)


class ViewKind(str, Enum):
    """Where a note is rendered."""
    EDITOR_INLINE = "editor-inline"
    EDITOR_TOOLTIP = "editor-tooltip"
    CARD = "card-readonly"

    @property
    def is_editor(self) -> bool:
        return self is not ViewKind.CARD


class View(Protocol):
    """A rendered element owned by the host UI."""

    def render(self, time_text: str, content: str) -> None: ...

    def show(self) -> None: ...

    def hide(self) -> None: ...

    def destroy(self) -> None: ...

    def anchor(self, left: float) -> None:
        """Move a tooltip horizontally; only called on tooltip editors."""


class ViewFactory(Protocol):
    """Creates rendered elements for the sync engine and the marker layer."""

    def create_editor(self, note_id: str, kind: ViewKind, time_text: str, content: str) -> View: ...

    def create_card(self, note_id: str, time_text: str, content: str) -> View: ...

    def create_marker(self, note_id: str): ...


@dataclass(eq=False)
class ViewBinding:
    note_id: str
    kind: ViewKind
    view: View

    @property
    def is_editor(self) -> bool:
        return self.kind.is_editor


class ViewRegistry:
    """note id -> live bindings, in bind order."""

    def __init__(self):
        self._bindings: Dict[str, List[ViewBinding]] = {}

    def bind(self, note_id: str, kind: ViewKind, view: View) -> ViewBinding:
        return self.attach(ViewBinding(note_id=note_id, kind=kind, view=view))

    def attach(self, binding: ViewBinding) -> ViewBinding:
        """Register an existing binding, e.g. a tooltip editor being reopened."""
        if not self.is_bound(binding):
            self._bindings.setdefault(binding.note_id, []).append(binding)
            logger.debug("Bound %s view for note %s", binding.kind.value, binding.note_id)
        return binding

    def unbind(self, binding: ViewBinding) -> bool:
        bindings = self._bindings.get(binding.note_id)
        if not bindings or binding not in bindings:
            return False
        bindings.remove(binding)
        if not bindings:
            del self._bindings[binding.note_id]
        return True

    def bindings(self, note_id: str, kind: Optional[ViewKind] = None) -> List[ViewBinding]:
        bindings = self._bindings.get(note_id, [])
        if kind is None:
            return list(bindings)
        return [b for b in bindings if b.kind is kind]

    def first(self, note_id: str, kind: ViewKind) -> Optional[ViewBinding]:
        for binding in self._bindings.get(note_id, []):
            if binding.kind is kind:
                return binding
        return None

    def is_bound(self, binding: ViewBinding) -> bool:
        return binding in self._bindings.get(binding.note_id, [])

    def note_ids(self) -> List[str]:
        return list(self._bindings)

    def unbind_all(self, note_id: str) -> List[ViewBinding]:
        """Drop every binding of a note and return them for teardown."""
        return self._bindings.pop(note_id, [])

    def __len__(self) -> int:
        return sum(len(b) for b in self._bindings.values())
