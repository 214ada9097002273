from __future__ import annotations

from app.integrations.maps.base import LatLng, RouteResult, RoutingProvider
from app.utils.geo import haversine_km, minutes_at_fallback_speed

# Roads are rarely straight; stretch the great-circle distance a little.
ROAD_FACTOR = 1.25


class MockRoutingProvider(RoutingProvider):
    name = "mock"

    def compute(self, origin: LatLng, destination: LatLng) -> RouteResult:
        km = round(haversine_km(origin.lat, origin.lng, destination.lat, destination.lng) * ROAD_FACTOR, 2)
        return RouteResult(
            distance_km=km,
            duration_minutes=minutes_at_fallback_speed(km),
            polyline=None,
            provider=self.name,
            raw={"origin": [origin.lat, origin.lng], "destination": [destination.lat, destination.lng]},
        )
