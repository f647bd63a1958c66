import asyncio

from conftest import make_entity, make_event
from watermap.markers.filters import DisplayFilters
from watermap.observability.metrics import MetricsRegistry
from watermap.resolve.cache import CoordinateCache
from watermap.resolve.keys import location_key
from watermap.resolve.records import CoordinateRecord, CoordinateSource
from watermap.zones.aggregate import summarize
from watermap.zones.selector import SelectorState, SpatialSelector

SQUARE = [(33.0, -84.5), (33.0, -84.4), (33.1, -84.4), (33.1, -84.5)]


def _place(cache, entity, latitude, longitude):
    record = CoordinateRecord(latitude=latitude, longitude=longitude, source=CoordinateSource.EXTERNAL, confidence=0.9)
    asyncio.run(cache.put(location_key(entity.descriptor()), record, persist=False))


def _scene():
    """Ten resolved entities, three of them inside SQUARE."""
    cache = CoordinateCache()
    entities = []
    for index in range(10):
        entity = make_entity(f"GA{index:03d}", name=f"System {index}", population=1000 * (index + 1))
        entities.append(entity)
        if index < 3:
            _place(cache, entity, 33.02 + index * 0.02, -84.45)
        else:
            _place(cache, entity, 34.0 + index * 0.01, -83.0)
    events = [
        make_event("v1", "GA000", health_based=True),
        make_event("v2", "GA001"),
        make_event("v3", "GA001", active=False),
        make_event("v4", "GA005"),
    ]
    return cache, entities, events


def test_state_machine_transitions():
    selector = SpatialSelector(CoordinateCache())
    assert selector.state is SelectorState.IDLE
    assert selector.cancel_drawing() is False
    assert selector.start_drawing() is True
    assert selector.start_drawing() is False
    assert selector.cancel_drawing() is True
    assert selector.state is SelectorState.IDLE
    assert selector.complete_drawing(SQUARE, [], []) is None

    selector.start_drawing()
    selection = selector.complete_drawing(SQUARE, [], [])
    assert selector.state is SelectorState.SELECTION_ACTIVE
    assert selector.active is selection
    assert selector.close() is True
    assert selector.state is SelectorState.IDLE
    assert selector.active is None
    assert selector.reselect(selection.selection_id) is selection
    assert selector.state is SelectorState.SELECTION_ACTIVE


def test_invalid_polygon_keeps_drawing():
    metrics = MetricsRegistry()
    selector = SpatialSelector(CoordinateCache(), metrics=metrics)
    selector.start_drawing()
    bowtie = [(33.0, -84.5), (33.1, -84.4), (33.0, -84.4), (33.1, -84.5)]
    assert selector.complete_drawing(bowtie, [], []) is None
    assert selector.state is SelectorState.DRAWING
    assert selector.last_rejection
    assert selector.selections == []
    assert metrics.get("polygons_rejected") == 1


def test_reselect_ignored_while_drawing():
    selector = SpatialSelector(CoordinateCache())
    selector.start_drawing()
    first = selector.complete_drawing(SQUARE, [], [])
    selector.start_drawing()
    assert selector.active is None
    assert selector.reselect(first.selection_id) is None
    assert selector.reselect("polygon_missing") is None


def test_selection_snapshots_contained_entities():
    cache, entities, events = _scene()
    selector = SpatialSelector(cache)
    selector.start_drawing()
    selection = selector.complete_drawing(SQUARE, entities, events)
    assert sorted(selection.entity_ids) == ["GA000", "GA001", "GA002"]
    assert [event.event_id for event in selection.events_inside] == ["v1", "v2"]
    assert 100 < selection.area_km2 < 108


def test_unresolved_entities_are_excluded():
    cache = CoordinateCache()
    inside = make_entity("IN")
    unresolved = make_entity("NOPE", name="Never Placed")
    _place(cache, inside, 33.05, -84.45)
    selector = SpatialSelector(cache)
    selector.start_drawing()
    selection = selector.complete_drawing(SQUARE, [inside, unresolved], [])
    assert selection.entity_ids == ["IN"]


def test_filters_apply_to_containment():
    cache, entities, events = _scene()
    selector = SpatialSelector(cache)
    selector.start_drawing()
    selection = selector.complete_drawing(SQUARE, entities, events, DisplayFilters(show_critical=False))
    assert sorted(selection.entity_ids) == ["GA001", "GA002"]


def test_summary_of_three_of_ten():
    cache, entities, events = _scene()
    selector = SpatialSelector(cache)
    selector.start_drawing()
    statistics = summarize(selector.complete_drawing(SQUARE, entities, events))
    assert statistics.total_systems == 3
    assert statistics.critical_systems == 1
    assert statistics.violation_systems == 1
    assert statistics.compliant_systems == 1
    assert statistics.active_violations == 2
    assert statistics.health_based_violations == 1
    assert statistics.total_population == 6000
    assert statistics.average_system_size == 2000
    assert abs(statistics.compliance_rate - 1 / 3) < 1e-9
    assert statistics.population_density > 0


def test_summary_of_empty_or_missing_selection_is_zero():
    selector = SpatialSelector(CoordinateCache())
    selector.start_drawing()
    empty = summarize(selector.complete_drawing(SQUARE, [], []))
    assert empty.total_systems == 0
    assert empty.average_system_size == 0
    assert empty.compliance_rate == 0
    assert empty.area_km2 > 0
    assert summarize(None).as_dict()["population_density"] == 0


def test_clear_all_forgets_selections():
    selector = SpatialSelector(CoordinateCache())
    selector.start_drawing()
    selector.complete_drawing(SQUARE, [], [])
    selector.clear_all()
    assert selector.selections == []
    assert selector.state is SelectorState.IDLE


def test_malformed_vertices_keep_drawing():
    selector = SpatialSelector(CoordinateCache())
    selector.start_drawing()
    with_altitude = [(33.0, -84.0, 0.0), (34.0, -84.0, 0.0), (34.0, -83.0, 0.0)]
    assert selector.complete_drawing(with_altitude, [], []) is None
    assert selector.state is SelectorState.DRAWING
    assert "malformed vertex" in selector.last_rejection
    assert selector.complete_drawing([(33.0, None), (34.0, -84.0), (34.0, -83.0)], [], []) is None
    assert selector.complete_drawing([("north", -84.0), (34.0, -84.0), (34.0, -83.0)], [], []) is None
    assert selector.state is SelectorState.DRAWING
    assert selector.selections == []


def test_collinear_polygon_keeps_drawing():
    selector = SpatialSelector(CoordinateCache())
    selector.start_drawing()
    assert selector.complete_drawing([(33.0, -84.5), (33.05, -84.45), (33.1, -84.4)], [], []) is None
    assert selector.state is SelectorState.DRAWING
    assert selector.last_rejection
