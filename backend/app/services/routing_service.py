"""Road distance and delivery fee quotes.

The external routing provider is best effort: any failure degrades to a
great-circle estimate so order placement never fails because of it.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass

from app.integrations.common import IntegrationDisabledError, IntegrationMisconfiguredError
from app.integrations.maps.base import LatLng, RoutingProviderError
from app.integrations.maps.factory import build_routing_provider
from app.services.errors import PreconditionFailed
from app.utils.cache_layer import build_cache_key, get_json, route_cache_ttl_seconds, set_json
from app.utils.commission import delivery_fee_for_distance
from app.utils.geo import DEFAULT_ORIGIN, haversine_km, minutes_at_fallback_speed, same_point, valid_coordinate

logger = logging.getLogger(__name__)


@dataclass
class RouteQuote:
    distance_km: float
    duration_minutes: int
    delivery_fee: float
    polyline: str | None = None
    is_fallback: bool = False
    provider: str = ""

    def to_dict(self) -> dict:
        return {
            "distance_km": round(float(self.distance_km), 2),
            "duration_minutes": int(self.duration_minutes),
            "delivery_fee": round(float(self.delivery_fee), 2),
            "polyline": self.polyline,
            "fallback_calculation": bool(self.is_fallback),
            "provider": self.provider,
        }


def _route_cache_key(origin: LatLng, destination: LatLng) -> str:
    return build_cache_key(
        "route",
        {
            "olat": round(origin.lat, 4),
            "olng": round(origin.lng, 4),
            "dlat": round(destination.lat, 4),
            "dlng": round(destination.lng, 4),
        },
    )


def validate_route(origin_lat, origin_lng, dest_lat, dest_lng) -> tuple[LatLng, LatLng]:
    if not valid_coordinate(origin_lat, origin_lng):
        raise PreconditionFailed("Invalid origin coordinates", code="INVALID_COORDINATES")
    if not valid_coordinate(dest_lat, dest_lng):
        raise PreconditionFailed("Invalid destination coordinates", code="INVALID_COORDINATES")
    origin = LatLng(float(origin_lat), float(origin_lng))
    destination = LatLng(float(dest_lat), float(dest_lng))
    if same_point(origin.lat, origin.lng, destination.lat, destination.lng):
        raise PreconditionFailed("Origin and destination are the same location", code="DEGENERATE_ROUTE")
    return origin, destination


def haversine_quote(origin: LatLng, destination: LatLng) -> RouteQuote:
    km = round(haversine_km(origin.lat, origin.lng, destination.lat, destination.lng), 2)
    return RouteQuote(
        distance_km=km,
        duration_minutes=minutes_at_fallback_speed(km),
        delivery_fee=delivery_fee_for_distance(km),
        is_fallback=True,
        provider="haversine",
    )


def compute_route(origin_lat, origin_lng, dest_lat, dest_lng) -> RouteQuote:
    """Quote a route between two points.

    Raises PreconditionFailed only for invalid or degenerate input; provider
    failures fall back to the haversine estimate.
    """
    origin, destination = validate_route(origin_lat, origin_lng, dest_lat, dest_lng)

    cache_key = _route_cache_key(origin, destination)
    cached = get_json(cache_key)
    if isinstance(cached, dict) and "distance_km" in cached:
        return RouteQuote(
            distance_km=float(cached["distance_km"]),
            duration_minutes=int(cached.get("duration_minutes") or 0),
            delivery_fee=delivery_fee_for_distance(cached["distance_km"]),
            polyline=cached.get("polyline"),
            is_fallback=False,
            provider=str(cached.get("provider") or ""),
        )

    try:
        provider = build_routing_provider()
        result = provider.compute(origin, destination)
    except (IntegrationDisabledError, IntegrationMisconfiguredError) as e:
        logger.info("routing_provider_unavailable reason=%s", e)
        return haversine_quote(origin, destination)
    except RoutingProviderError as e:
        logger.warning(
            "routing_fallback reason=%s origin=%s,%s destination=%s,%s",
            e,
            origin.lat,
            origin.lng,
            destination.lat,
            destination.lng,
        )
        return haversine_quote(origin, destination)

    quote = RouteQuote(
        distance_km=round(float(result.distance_km), 2),
        duration_minutes=int(result.duration_minutes),
        delivery_fee=delivery_fee_for_distance(result.distance_km),
        polyline=result.polyline,
        is_fallback=False,
        provider=result.provider,
    )
    set_json(
        cache_key,
        {
            "distance_km": quote.distance_km,
            "duration_minutes": quote.duration_minutes,
            "polyline": quote.polyline,
            "provider": quote.provider,
        },
        route_cache_ttl_seconds(),
    )
    return quote


def minimum_quote() -> RouteQuote:
    return RouteQuote(
        distance_km=0.0,
        duration_minutes=0,
        delivery_fee=delivery_fee_for_distance(0),
        is_fallback=True,
        provider="none",
    )


def pickup_point(seller) -> tuple[float, float]:
    if seller is not None and seller.has_coordinates():
        return float(seller.latitude), float(seller.longitude)
    return DEFAULT_ORIGIN


def quote_delivery(seller, address) -> RouteQuote:
    """Quote from the seller's location to a delivery address. Never raises."""
    origin_lat, origin_lng = pickup_point(seller)
    if address is None or not address.has_coordinates():
        logger.info("route_quote_missing_destination address_id=%s", getattr(address, "id", None))
        return minimum_quote()
    try:
        return compute_route(origin_lat, origin_lng, address.latitude, address.longitude)
    except PreconditionFailed as e:
        logger.info("route_quote_rejected reason=%s address_id=%s", e.code, address.id)
        return minimum_quote()
