from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True)
class LatLng:
    lat: float
    lng: float


@dataclass
class RouteResult:
    distance_km: float
    duration_minutes: int
    polyline: str | None = None
    provider: str = ""
    raw: dict | None = None


class RoutingProviderError(RuntimeError):
    pass


class RoutingProvider:
    name = "unknown"

    def compute(self, origin: LatLng, destination: LatLng) -> RouteResult:
        raise NotImplementedError
