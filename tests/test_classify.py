import pytest

from conftest import make_event
from watermap.markers.classify import (
    Classification,
    EventSummary,
    classify,
    density_weight,
    marker_size,
    summarize_events,
)
from watermap.markers.filters import DisplayFilters


def test_classification_follows_active_events():
    assert classify([]) is Classification.NORMAL
    assert classify([make_event("v1", "GA1", active=False, health_based=True)]) is Classification.NORMAL
    assert classify([make_event("v1", "GA1")]) is Classification.ELEVATED
    assert classify([make_event("v1", "GA1"), make_event("v2", "GA1", health_based=True)]) is Classification.SEVERE


def test_summary_counts_only_active_events():
    events = [
        make_event("v1", "GA1"),
        make_event("v2", "GA1", health_based=True),
        make_event("v3", "GA1", active=False, health_based=True),
    ]
    assert summarize_events(events) == EventSummary(active=2, health_based=1)


@pytest.mark.parametrize(
    "summary, weight",
    [
        (EventSummary(active=0, health_based=0), 0),
        (EventSummary(active=1, health_based=0), 1),
        (EventSummary(active=2, health_based=0), 2),
        (EventSummary(active=4, health_based=0), 3),
        (EventSummary(active=1, health_based=1), 5),
    ],
)
def test_density_weight(summary, weight):
    assert density_weight(summary) == weight


def test_marker_size_is_clamped():
    assert marker_size(0) == 8.0
    assert marker_size(100) == 8.0
    assert marker_size(40_000) == 20.0
    assert marker_size(10_000_000) == 25.0


def test_display_filters_gate_classifications():
    filters = DisplayFilters(show_compliant=False, show_critical=False)
    assert not filters.allows(Classification.NORMAL)
    assert filters.allows(Classification.ELEVATED)
    assert not filters.allows(Classification.SEVERE)
    assert Classification.SEVERE.label == "Critical Issues"


def test_display_filters_reject_unknown_flags():
    with pytest.raises(ValueError):
        DisplayFilters(show_everything=True)
