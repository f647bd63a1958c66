import asyncio

import httpx

from watermap.observability.metrics import MetricsRegistry
from watermap.resolve.geocoder import GoogleGeocoder

ENDPOINT = "https://geocode.test/json"


def _geocode(handler, query="Atlanta, Fulton County, Georgia, USA", *, api_key="secret", metrics=None):
    async def _run():
        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
            geocoder = GoogleGeocoder(client, api_key=api_key, endpoint=ENDPOINT, metrics=metrics)
            return await geocoder.geocode(query)

    return asyncio.run(_run())


def test_ok_response_returns_first_candidate():
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["address"] = request.url.params["address"]
        seen["key"] = request.url.params["key"]
        return httpx.Response(200, json={
            "status": "OK",
            "results": [
                {
                    "geometry": {"location": {"lat": 33.749, "lng": -84.388}},
                    "types": ["locality", "political"],
                    "formatted_address": "Atlanta, GA, USA",
                },
                {"geometry": {"location": {"lat": 0, "lng": 0}}, "types": []},
            ],
        })

    candidate = _geocode(handler)
    assert seen == {"address": "Atlanta, Fulton County, Georgia, USA", "key": "secret"}
    assert candidate.latitude == 33.749
    assert candidate.longitude == -84.388
    assert candidate.result_types == ("locality", "political")
    assert candidate.partial_match is None


def test_zero_results_returns_none():
    candidate = _geocode(lambda request: httpx.Response(200, json={"status": "ZERO_RESULTS", "results": []}))
    assert candidate is None


def test_http_error_returns_none_and_counts_failure():
    metrics = MetricsRegistry()
    candidate = _geocode(lambda request: httpx.Response(503, text="unavailable"), metrics=metrics)
    assert candidate is None
    assert metrics.get("geocode_failures") == 1
    assert metrics.get("geocode_requests") == 1


def test_malformed_payload_returns_none():
    metrics = MetricsRegistry()
    candidate = _geocode(
        lambda request: httpx.Response(200, json={"status": "OK", "results": [{"geometry": {}}]}),
        metrics=metrics,
    )
    assert candidate is None
    assert metrics.get("geocode_failures") == 1


def test_non_json_body_returns_none():
    assert _geocode(lambda request: httpx.Response(200, text="<html>")) is None


def test_missing_api_key_skips_network():
    calls = []

    def handler(request: httpx.Request) -> httpx.Response:
        calls.append(request)
        return httpx.Response(200, json={"status": "OK", "results": []})

    assert _geocode(handler, api_key=None) is None
    assert calls == []


def test_partial_match_flag_is_passed_through():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json={
            "status": "OK",
            "results": [{"geometry": {"location": {"lat": 33.7, "lng": -84.4}}, "types": [], "partial_match": True}],
        })

    assert _geocode(handler).partial_match is True
