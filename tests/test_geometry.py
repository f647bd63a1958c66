import pytest

from watermap.zones.geometry import InvalidPolygonError, PolygonGeometry, format_area, geojson_vertices

SQUARE = [(33.0, -84.5), (33.0, -84.4), (33.1, -84.4), (33.1, -84.5)]


def test_contains_inside_outside_and_edges():
    polygon = PolygonGeometry(SQUARE)
    assert polygon.contains(33.05, -84.45)
    assert not polygon.contains(33.2, -84.45)
    assert not polygon.contains(33.05, -84.3)
    assert polygon.contains(33.0, -84.45)
    assert polygon.contains(33.1, -84.4)


def test_area_is_geodesic_square_kilometres():
    area = PolygonGeometry(SQUARE).area_km2()
    assert 100 < area < 108


def test_closed_ring_is_accepted():
    polygon = PolygonGeometry(SQUARE + [SQUARE[0]])
    assert polygon.vertices == SQUARE
    bounds = polygon.bounds()
    assert (bounds.south, bounds.north, bounds.west, bounds.east) == (33.0, 33.1, -84.5, -84.4)


def test_self_intersecting_polygon_is_rejected():
    bowtie = [(33.0, -84.5), (33.1, -84.4), (33.0, -84.4), (33.1, -84.5)]
    with pytest.raises(InvalidPolygonError):
        PolygonGeometry(bowtie)


def test_degenerate_polygons_are_rejected():
    with pytest.raises(InvalidPolygonError):
        PolygonGeometry([(33.0, -84.5), (33.1, -84.4)])
    with pytest.raises(InvalidPolygonError):
        PolygonGeometry([(33.0, -84.5), (33.0, -84.5), (33.1, -84.4), (33.1, -84.4)])
    with pytest.raises(InvalidPolygonError):
        PolygonGeometry([(33.0, -84.5), (33.05, -84.45), (33.1, -84.4)])


def test_small_polygons_are_accepted():
    tiny = PolygonGeometry([(33.0, -84.5), (33.0, -84.4999), (33.0001, -84.4999), (33.0001, -84.5)])
    assert 0 < tiny.area_km2() < 0.001


def test_malformed_vertices_are_rejected():
    with pytest.raises(InvalidPolygonError, match="malformed vertex"):
        PolygonGeometry([(33.0, -84.0, 0.0), (34.0, -84.0, 0.0), (34.0, -83.0, 0.0)])
    with pytest.raises(InvalidPolygonError):
        PolygonGeometry([(33.0, "west"), (34.0, -84.0), (34.0, -83.0)])


def test_geojson_round_trip():
    polygon = PolygonGeometry(SQUARE)
    feature = {"type": "Feature", "properties": {}, "geometry": polygon.to_geojson()}
    assert geojson_vertices(feature)[:4] == SQUARE
    assert PolygonGeometry.from_geojson({"type": "FeatureCollection", "features": [feature]}).vertices == SQUARE


def test_geojson_rejects_non_polygons():
    with pytest.raises(InvalidPolygonError):
        geojson_vertices({"type": "Point", "coordinates": [-84.4, 33.0]})


@pytest.mark.parametrize(
    "area, text",
    [(0.5, "500000 m²"), (12.346, "12.35 km²"), (1234.4, "1234 km²")],
)
def test_format_area(area, text):
    assert format_area(area) == text
