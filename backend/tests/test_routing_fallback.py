from __future__ import annotations

import os
import unittest
from unittest.mock import MagicMock, patch

import requests

from app.integrations.maps.base import LatLng, RoutingProviderError
from app.integrations.maps.google_routes_provider import GoogleRoutesProvider
from app.models import Address, Order
from app.services.errors import PreconditionFailed
from app.services.routing_service import compute_route, quote_delivery
from app.utils.commission import delivery_fee_for_distance
from app.utils.geo import haversine_km
from lifecycle_support import BEIRUT, JOUNIEH, FixedRouteProvider, LifecycleTestCase


def _response(status_code: int, body: dict) -> MagicMock:
    res = MagicMock()
    res.status_code = status_code
    res.content = b"{}"
    res.json.return_value = body
    return res


class FakeRedis:
    def __init__(self):
        self.store = {}

    def get(self, key):
        entry = self.store.get(key)
        return entry[1] if entry else None

    def setex(self, key, ttl, value):
        self.store[key] = (ttl, value)


class GoogleRoutesProviderTestCase(unittest.TestCase):
    def setUp(self):
        self.provider = GoogleRoutesProvider(api_key="test-key", timeout_seconds=2)

    def test_parses_distance_duration_and_polyline(self):
        body = {"routes": [{"distanceMeters": 12345, "duration": "900s", "polyline": {"encodedPolyline": "abc"}}]}
        with patch("app.integrations.maps.google_routes_provider.requests.post", return_value=_response(200, body)) as post:
            result = self.provider.compute(LatLng(*BEIRUT), LatLng(*JOUNIEH))
        self.assertEqual(result.distance_km, 12.35)
        self.assertEqual(result.duration_minutes, 15)
        self.assertEqual(result.polyline, "abc")
        _, kwargs = post.call_args
        self.assertEqual(kwargs["timeout"], 2)
        self.assertEqual(kwargs["headers"]["X-Goog-Api-Key"], "test-key")

    def test_http_error_raises_provider_error(self):
        body = {"error": {"message": "quota exceeded"}}
        with patch("app.integrations.maps.google_routes_provider.requests.post", return_value=_response(429, body)):
            with self.assertRaises(RoutingProviderError):
                self.provider.compute(LatLng(*BEIRUT), LatLng(*JOUNIEH))

    def test_malformed_success_payload_raises_provider_error(self):
        bodies = [
            {"routes": [{"distanceMeters": "unknown"}]},
            {"routes": ["not-a-route"]},
            {"routes": {"distanceMeters": 1000}},
            {"routes": [{"distanceMeters": -5}]},
            {"routes": [{"distanceMeters": 1000, "polyline": "flat"}]},
            ["unexpected"],
        ]
        for body in bodies:
            with self.subTest(body=body):
                with patch(
                    "app.integrations.maps.google_routes_provider.requests.post",
                    return_value=_response(200, body),
                ):
                    with self.assertRaises(RoutingProviderError):
                        self.provider.compute(LatLng(*BEIRUT), LatLng(*JOUNIEH))

    def test_string_error_body_is_reported(self):
        with patch(
            "app.integrations.maps.google_routes_provider.requests.post",
            return_value=_response(403, {"error": "API key not valid"}),
        ):
            with self.assertRaises(RoutingProviderError) as ctx:
                self.provider.compute(LatLng(*BEIRUT), LatLng(*JOUNIEH))
        self.assertIn("API key not valid", str(ctx.exception))

    def test_empty_routes_raise_provider_error(self):
        with patch("app.integrations.maps.google_routes_provider.requests.post", return_value=_response(200, {})):
            with self.assertRaises(RoutingProviderError):
                self.provider.compute(LatLng(*BEIRUT), LatLng(*JOUNIEH))


class RoutingFallbackTestCase(LifecycleTestCase):
    env = dict(LifecycleTestCase.env, ROUTING_PROVIDER="google", GOOGLE_MAPS_API_KEY="test-key")

    def test_outage_falls_back_to_great_circle_estimate(self):
        with patch(
            "app.integrations.maps.google_routes_provider.requests.post",
            side_effect=requests.ConnectionError("down"),
        ):
            quote = compute_route(BEIRUT[0], BEIRUT[1], JOUNIEH[0], JOUNIEH[1])
        expected_km = round(haversine_km(BEIRUT[0], BEIRUT[1], JOUNIEH[0], JOUNIEH[1]), 2)
        self.assertTrue(quote.is_fallback)
        self.assertEqual(quote.provider, "haversine")
        self.assertEqual(quote.distance_km, expected_km)
        self.assertEqual(quote.duration_minutes, round(expected_km / 40 * 60))
        self.assertEqual(quote.delivery_fee, delivery_fee_for_distance(expected_km))

    def test_missing_api_key_falls_back(self):
        with patch.dict(os.environ, {"GOOGLE_MAPS_API_KEY": ""}):
            quote = compute_route(BEIRUT[0], BEIRUT[1], JOUNIEH[0], JOUNIEH[1])
        self.assertTrue(quote.is_fallback)

    def test_invalid_and_degenerate_input_is_rejected(self):
        with self.assertRaises(PreconditionFailed) as ctx:
            compute_route(123, 35.5, 33.9, 35.6)
        self.assertEqual(ctx.exception.code, "INVALID_COORDINATES")
        with self.assertRaises(PreconditionFailed) as ctx:
            compute_route(33.8886, 35.4955, 33.8889, 35.4951)
        self.assertEqual(ctx.exception.code, "DEGENERATE_ROUTE")

    def test_address_without_coordinates_gets_minimum_fee(self):
        buyer = self.make_user("Buyer")
        address = self.fresh(Address, self.make_address(buyer, coords=None))
        quote = quote_delivery(None, address)
        self.assertEqual(quote.delivery_fee, 1.0)
        self.assertTrue(quote.is_fallback)

    def test_order_placement_survives_routing_outage(self):
        world = self.marketplace()
        with patch(
            "app.integrations.maps.google_routes_provider.requests.post",
            side_effect=requests.Timeout("slow"),
        ):
            res = self.client.post(
                "/api/orders",
                json={"item_id": world["item"], "delivery_address_id": world["address"]},
                headers=self.auth(world["buyer"]),
            )
        self.assertEqual(res.status_code, 201, res.get_data(as_text=True))
        delivery = res.get_json()["data"]["delivery"]
        self.assertTrue(delivery["is_fallback_route"])
        self.assertGreater(delivery["distance_km"], 0)
        self.assertEqual(Order.query.count(), 1)

    def test_order_placement_survives_garbled_route_payload(self):
        world = self.marketplace()
        with patch(
            "app.integrations.maps.google_routes_provider.requests.post",
            return_value=_response(200, {"routes": [{"distanceMeters": "unknown"}]}),
        ):
            res = self.client.post(
                "/api/orders",
                json={"item_id": world["item"], "delivery_address_id": world["address"]},
                headers=self.auth(world["buyer"]),
            )
        self.assertEqual(res.status_code, 201, res.get_data(as_text=True))
        self.assertTrue(res.get_json()["data"]["delivery"]["is_fallback_route"])

    def test_provider_routes_are_cached_for_a_day(self):
        fake = FakeRedis()
        provider = FixedRouteProvider(8.0)
        with patch("app.utils.cache_layer._get_client", return_value=fake), self.routing(provider):
            first = compute_route(BEIRUT[0], BEIRUT[1], JOUNIEH[0], JOUNIEH[1])
            second = compute_route(BEIRUT[0] + 0.00001, BEIRUT[1], JOUNIEH[0], JOUNIEH[1])
        self.assertEqual(provider.calls, 1)
        self.assertEqual(first.delivery_fee, 2.0)
        self.assertEqual(second.distance_km, 8.0)
        self.assertFalse(second.is_fallback)
        self.assertEqual([ttl for ttl, _ in fake.store.values()], [86400])

    def test_quote_endpoint_reports_fallback_flag(self):
        user = self.make_user("Quoter")
        with patch(
            "app.integrations.maps.google_routes_provider.requests.post",
            side_effect=requests.ConnectionError("down"),
        ):
            res = self.client.post(
                "/api/deliveries/quote",
                json={
                    "origin_lat": BEIRUT[0],
                    "origin_lng": BEIRUT[1],
                    "destination_lat": JOUNIEH[0],
                    "destination_lng": JOUNIEH[1],
                },
                headers=self.auth(user),
            )
        self.assertEqual(res.status_code, 200)
        data = res.get_json()["data"]
        self.assertTrue(data["fallback_calculation"])
        self.assertGreaterEqual(data["delivery_fee"], 1.0)


if __name__ == "__main__":
    unittest.main()
