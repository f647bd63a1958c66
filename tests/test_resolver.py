import asyncio

from watermap.observability.metrics import MetricsRegistry
from watermap.resolve.cache import CoordinateCache
from watermap.resolve.geocoder import GeocodeCandidate
from watermap.resolve.records import CoordinateSource, LocationDescriptor
from watermap.resolve.resolver import CoordinateResolver
from watermap.settings import ResolverSettings

ACME = LocationDescriptor(region="Fulton", locality="Atlanta", name="Acme Water", entity_id="GA1210001")


class ScriptedGeocoder:
    def __init__(self, answers=None, default=None):
        self.answers = dict(answers or {})
        self.default = default
        self.queries = []

    async def geocode(self, query):
        self.queries.append(query)
        return self.answers.get(query, self.default)


class ExplodingGeocoder:
    def __init__(self):
        self.calls = 0

    async def geocode(self, query):
        self.calls += 1
        raise RuntimeError("provider exploded")


def test_external_result_is_cached_for_repeat_calls():
    geocoder = ScriptedGeocoder(default=GeocodeCandidate(33.749, -84.388, ("locality", "political"), partial_match=True))
    metrics = MetricsRegistry()
    resolver = CoordinateResolver(CoordinateCache(metrics=metrics), geocoder, metrics=metrics)

    first = asyncio.run(resolver.resolve(ACME))
    assert first.source is CoordinateSource.EXTERNAL
    assert first.confidence == 0.8
    assert len(geocoder.queries) == 1

    second = asyncio.run(resolver.resolve(ACME))
    assert second.source is CoordinateSource.CACHE
    assert (second.latitude, second.longitude, second.confidence) == (first.latitude, first.longitude, first.confidence)
    assert len(geocoder.queries) == 1
    assert metrics.get("cache_hits_memory") == 1


def test_confidence_combines_result_type_signals():
    resolver = CoordinateResolver(CoordinateCache(), None)
    assert resolver.confidence_for(GeocodeCandidate(33.0, -84.0, ("locality",), partial_match=False)) == 0.9
    assert resolver.confidence_for(GeocodeCandidate(33.0, -84.0, ("locality",))) == 0.8
    assert resolver.confidence_for(GeocodeCandidate(33.0, -84.0, ("administrative_area_level_2",), True)) == 0.7
    assert resolver.confidence_for(GeocodeCandidate(33.0, -84.0, ("establishment", "point_of_interest", "locality"))) == 1.0
    assert resolver.confidence_for(GeocodeCandidate(33.0, -84.0, (), True)) == 0.5


def test_escalates_to_next_query_when_first_misses():
    queries = CoordinateResolver(CoordinateCache(), None).queries_for(ACME)
    geocoder = ScriptedGeocoder({queries[1]: GeocodeCandidate(33.7, -84.4, ("locality",))})
    resolver = CoordinateResolver(CoordinateCache(), geocoder)
    record = asyncio.run(resolver.resolve(ACME))
    assert record.source is CoordinateSource.EXTERNAL
    assert geocoder.queries == queries[:2]


def test_out_of_bounds_results_fall_back():
    metrics = MetricsRegistry()
    geocoder = ScriptedGeocoder(default=GeocodeCandidate(40.71, -74.0, ("locality",)))
    resolver = CoordinateResolver(CoordinateCache(metrics=metrics), geocoder, metrics=metrics)
    record = asyncio.run(resolver.resolve(ACME))
    assert record.source is CoordinateSource.FALLBACK
    assert record.confidence == ResolverSettings().fallback_confidence
    assert metrics.get("geocode_rejected_out_of_bounds") == len(resolver.queries_for(ACME))
    assert metrics.get("resolved_fallback") == 1


def test_adapter_errors_fall_back_without_raising():
    geocoder = ExplodingGeocoder()
    resolver = CoordinateResolver(CoordinateCache(), geocoder)
    record = asyncio.run(resolver.resolve(ACME))
    assert record.source is CoordinateSource.FALLBACK
    assert geocoder.calls == len(resolver.queries_for(ACME))


def test_broken_cache_still_yields_a_record():
    class BrokenCache(CoordinateCache):
        async def get(self, key):
            raise RuntimeError("cache exploded")

        async def put(self, key, record, *, descriptor=None, persist=True):
            return False

    resolver = CoordinateResolver(BrokenCache(), ScriptedGeocoder())
    record = asyncio.run(resolver.resolve(ACME))
    assert record.source is CoordinateSource.FALLBACK


def test_fallback_is_deterministic_and_near_centroid():
    settings = ResolverSettings()
    first = CoordinateResolver(CoordinateCache(), None, settings=settings).fallback_for(ACME)
    second = CoordinateResolver(CoordinateCache(), None, settings=settings).fallback_for(ACME)
    other = CoordinateResolver(CoordinateCache(), None, settings=settings).fallback_for(
        LocationDescriptor(region="Fulton", entity_id="GA1210002")
    )
    assert (first.latitude, first.longitude) == (second.latitude, second.longitude)
    assert (first.latitude, first.longitude) != (other.latitude, other.longitude)
    centre_lat, centre_lng = settings.centroid
    assert abs(first.latitude - centre_lat) <= settings.fallback_spread
    assert abs(first.longitude - centre_lng) <= settings.fallback_spread


def test_fallback_is_not_persisted_and_later_external_wins():
    class RecordingStore:
        def __init__(self):
            self.rows = {}

        async def get(self, key):
            return self.rows.get(key)

        async def upsert(self, key, record, descriptor=None):
            self.rows[key] = record

    store = RecordingStore()
    cache = CoordinateCache(store)
    asyncio.run(CoordinateResolver(cache, None).resolve(ACME))
    assert store.rows == {}

    cache.clear()
    geocoder = ScriptedGeocoder(default=GeocodeCandidate(33.749, -84.388, ("locality",)))
    record = asyncio.run(CoordinateResolver(cache, geocoder).resolve(ACME))
    assert record.source is CoordinateSource.EXTERNAL
    assert list(store.rows) == ["fulton|atlanta|acme_water"]


def test_resolve_many_keys_by_location():
    resolver = CoordinateResolver(CoordinateCache(), None)
    other = LocationDescriptor(region="Bibb", locality="Macon", name="Macon Water")
    records = asyncio.run(resolver.resolve_many([ACME, other]))
    assert set(records) == {"fulton|atlanta|acme_water", "bibb|macon|macon_water"}


def test_explain_lists_plan_without_calls():
    geocoder = ScriptedGeocoder()
    plan = CoordinateResolver(CoordinateCache(), geocoder).explain(ACME)
    assert plan.key == "fulton|atlanta|acme_water"
    assert plan.queries[0] == "Acme Water, Atlanta, Fulton County, Georgia, USA"
    assert plan.fallback.source is CoordinateSource.FALLBACK
    assert geocoder.queries == []
