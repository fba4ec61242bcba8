"""Tests for markers.py - placement, tooltip anchoring and visibility."""

import asyncio
import math

import pytest

from conftest import FakeFactory, FakeView, ManualTimer
from marginalia.markers import (
    MarkerLayer,
    TooltipGeometry,
    TooltipState,
    TooltipVisibility,
    marker_position,
    tooltip_offset,
)
from marginalia.views import ViewKind, ViewRegistry


class TestMarkerPosition:
    def test_fraction_of_duration(self):
        assert marker_position(90, 300) == pytest.approx(0.30)

    def test_start(self):
        assert marker_position(0, 300) == 0.0

    def test_clamps_past_end(self):
        assert marker_position(400, 300) == 1.0

    @pytest.mark.parametrize("duration", [None, 0, -5, math.nan, math.inf, "soon"])
    def test_unknown_duration_defers(self, duration):
        assert marker_position(10, duration) is None


class TestTooltipOffset:
    def test_centered_on_marker(self):
        # marker center at 500, tooltip 200 wide
        assert tooltip_offset(498, 4, 1000, 200) == 400

    def test_clamped_at_left_edge(self):
        assert tooltip_offset(10, 4, 1000, 200) == 0

    def test_clamped_at_right_edge(self):
        assert tooltip_offset(990, 4, 1000, 200) == 800


class TestTooltipVisibility:
    def make(self):
        timer = ManualTimer()
        events = []
        visibility = TooltipVisibility(
            on_show=lambda: events.append("show"),
            on_hide=lambda: events.append("hide"),
            call_later=timer,
        )
        return visibility, timer, events

    def test_hover_shows_transient(self):
        visibility, _, events = self.make()
        visibility.hover_enter()
        assert visibility.state is TooltipState.SHOWN_TRANSIENT
        assert events == ["show"]

    def test_leave_hides_after_debounce(self):
        visibility, timer, events = self.make()
        visibility.hover_enter()
        visibility.hover_leave()

        assert visibility.visible
        assert visibility.hide_pending

        timer.fire()
        assert visibility.state is TooltipState.HIDDEN
        assert events == ["show", "hide"]

    def test_crossing_to_tooltip_cancels_hide(self):
        visibility, timer, _ = self.make()
        visibility.hover_enter(TooltipVisibility.MARKER)
        visibility.hover_leave(TooltipVisibility.MARKER)
        visibility.hover_enter(TooltipVisibility.TOOLTIP)

        assert not visibility.hide_pending
        timer.fire()
        assert visibility.state is TooltipState.SHOWN_TRANSIENT

    def test_timer_does_not_hide_while_pointer_inside(self):
        visibility, timer, _ = self.make()
        visibility.hover_enter(TooltipVisibility.MARKER)
        visibility.hover_enter(TooltipVisibility.TOOLTIP)
        visibility.hover_leave(TooltipVisibility.MARKER)

        timer.fire()
        assert visibility.visible

    def test_click_pins(self):
        visibility, timer, _ = self.make()
        visibility.hover_enter()
        visibility.click()
        visibility.hover_leave()

        assert visibility.state is TooltipState.SHOWN_PINNED
        assert timer.pending == []

    def test_click_again_unpins(self):
        visibility, _, events = self.make()
        visibility.click()
        visibility.click()
        assert visibility.state is TooltipState.HIDDEN
        assert events == ["show", "hide"]

    def test_outside_click_hides_pinned(self):
        visibility, _, _ = self.make()
        visibility.click()
        visibility.outside_click()
        assert visibility.state is TooltipState.HIDDEN

    def test_outside_click_when_hidden_is_noop(self):
        visibility, _, events = self.make()
        visibility.outside_click()
        assert events == []


class TestDefaultTimer:
    """Tests for the built-in hide delay."""

    def test_hide_is_debounced_on_running_loop(self):
        events = []
        visibility = TooltipVisibility(
            on_show=lambda: events.append("show"),
            on_hide=lambda: events.append("hide"),
            hide_delay=0.01,
        )

        async def scenario():
            visibility.hover_enter()
            visibility.hover_leave()
            assert visibility.visible
            await asyncio.sleep(0.05)

        asyncio.run(scenario())

        assert visibility.state is TooltipState.HIDDEN
        assert events == ["show", "hide"]

    def test_without_loop_hides_at_once(self):
        """Hosts with no event loop get an immediate hide instead of an error."""
        visibility = TooltipVisibility(on_show=lambda: None, on_hide=lambda: None)

        visibility.hover_enter()
        visibility.hover_leave()

        assert visibility.state is TooltipState.HIDDEN
        assert not visibility.hide_pending


class TestMarkerLayer:
    def make(self, geometry=None):
        factory = FakeFactory()
        registry = ViewRegistry()
        layer = MarkerLayer(factory, geometry=geometry, call_later=ManualTimer())
        tooltip_view = FakeView("42", ViewKind.EDITOR_TOOLTIP, "1:30", "")
        tooltip = registry.bind("42", ViewKind.EDITOR_TOOLTIP, tooltip_view)
        return layer, factory, tooltip

    def test_ensure_is_lazy_and_unique(self):
        layer, factory, tooltip = self.make()
        first = layer.ensure("42", tooltip)
        second = layer.ensure("42", tooltip)
        assert first is second
        assert len(factory.markers) == 1

    def test_place_moves_marker(self):
        layer, factory, tooltip = self.make()
        layer.ensure("42", tooltip)

        assert layer.place("42", 90, 300) == pytest.approx(0.3)
        assert factory.markers[0].position == pytest.approx(0.3)

    def test_unknown_duration_defers_instead_of_zero(self):
        layer, factory, tooltip = self.make()
        layer.ensure("42", tooltip)

        assert layer.place("42", 90, None) is None
        assert factory.markers[0].position is None
        assert layer.deferred == {"42"}

        assert layer.retry_deferred(300) == ["42"]
        assert factory.markers[0].position == pytest.approx(0.3)
        assert layer.deferred == set()

    def test_retry_without_duration_keeps_waiting(self):
        layer, _, tooltip = self.make()
        layer.ensure("42", tooltip)
        layer.place("42", 90, None)
        assert layer.retry_deferred(math.nan) == []
        assert layer.deferred == {"42"}

    def test_reposition_is_idempotent(self):
        layer, factory, tooltip = self.make()
        layer.ensure("42", tooltip)
        layer.place("42", 90, 300)
        layer.reposition("42", 90, 300)
        assert factory.markers[0].moves == 1

    def test_relayout_after_duration_change(self):
        layer, factory, tooltip = self.make()
        layer.ensure("42", tooltip)
        layer.place("42", 90, 300)
        layer.relayout(900)
        assert factory.markers[0].position == pytest.approx(0.1)

    def test_reposition_unknown_note(self):
        layer, _, _ = self.make()
        assert layer.reposition("nope", 1, 10) is None

    def test_remove(self):
        layer, factory, tooltip = self.make()
        layer.ensure("42", tooltip)
        removed = layer.remove("42")
        assert removed.note_id == "42"
        assert factory.markers[0].destroyed
        assert "42" not in layer
        assert layer.remove("42") is None

    def test_show_recomputes_anchor_each_time(self):
        layout = {"geometry": TooltipGeometry(498, 4, 1000, 200)}
        layer, _, tooltip = self.make(geometry=lambda note_id: layout["geometry"])
        entry = layer.ensure("42", tooltip)

        entry.visibility.click()
        assert tooltip.view.left == 400
        entry.visibility.click()

        layout["geometry"] = TooltipGeometry(990, 4, 1000, 200)
        entry.visibility.hover_enter()
        assert tooltip.view.left == 800
        assert tooltip.view.visible

    def test_close_hides_tooltip_view(self):
        layer, _, tooltip = self.make()
        entry = layer.ensure("42", tooltip)
        entry.visibility.click()
        entry.visibility.close()
        assert not tooltip.view.visible
