from __future__ import annotations

import math

import requests

from app.integrations.maps.base import LatLng, RouteResult, RoutingProvider, RoutingProviderError

ROUTES_URL = "https://routes.googleapis.com/directions/v2:computeRoutes"
FIELD_MASK = "routes.duration,routes.distanceMeters,routes.polyline.encodedPolyline"


def _waypoint(point: LatLng) -> dict:
    return {"location": {"latLng": {"latitude": point.lat, "longitude": point.lng}}}


def _error_message(body) -> str | None:
    if not isinstance(body, dict):
        return None
    error = body.get("error")
    if isinstance(error, dict):
        return error.get("message") or None
    return str(error) if error else None


def _parse_duration_seconds(raw) -> int:
    # Routes API encodes durations as "1234s".
    text = str(raw or "0s").strip().rstrip("s")
    try:
        return int(float(text))
    except ValueError:
        return 0


class GoogleRoutesProvider(RoutingProvider):
    name = "google"

    def __init__(self, api_key: str, timeout_seconds: float = 10.0):
        self.api_key = api_key
        self.timeout_seconds = timeout_seconds

    def compute(self, origin: LatLng, destination: LatLng) -> RouteResult:
        payload = {
            "origin": _waypoint(origin),
            "destination": _waypoint(destination),
            "travelMode": "DRIVE",
            "routingPreference": "TRAFFIC_AWARE",
            "computeAlternativeRoutes": False,
            "languageCode": "en-US",
            "units": "METRIC",
        }
        headers = {
            "Content-Type": "application/json",
            "X-Goog-Api-Key": self.api_key,
            "X-Goog-FieldMask": FIELD_MASK,
        }
        try:
            r = requests.post(ROUTES_URL, headers=headers, json=payload, timeout=self.timeout_seconds)
        except requests.RequestException as e:
            raise RoutingProviderError(f"ROUTES_UNREACHABLE:{e.__class__.__name__}") from e
        try:
            j = r.json() if r.content else {}
        except ValueError:
            j = {}
        if r.status_code < 200 or r.status_code >= 300:
            raise RoutingProviderError(f"ROUTES_HTTP_ERROR:{_error_message(j) or f'HTTP {r.status_code}'}")
        try:
            return self._parse(j)
        except (TypeError, ValueError, AttributeError, LookupError) as e:
            raise RoutingProviderError(f"ROUTES_BAD_PAYLOAD:{e.__class__.__name__}") from e

    def _parse(self, j) -> RouteResult:
        routes = j.get("routes") if isinstance(j, dict) else None
        if not routes:
            raise RoutingProviderError("ROUTES_NO_ROUTE")
        route = routes[0] or {}
        meters = route.get("distanceMeters")
        if meters is None:
            raise RoutingProviderError("ROUTES_NO_DISTANCE")
        distance_km = float(meters) / 1000.0
        if not math.isfinite(distance_km) or distance_km < 0:
            raise RoutingProviderError("ROUTES_BAD_DISTANCE")
        seconds = _parse_duration_seconds(route.get("duration"))
        return RouteResult(
            distance_km=round(distance_km, 2),
            duration_minutes=int(round(seconds / 60.0)),
            polyline=((route.get("polyline") or {}).get("encodedPolyline") or None),
            provider=self.name,
            raw=j,
        )
