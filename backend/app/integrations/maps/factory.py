from __future__ import annotations

import os

from app.integrations.common import IntegrationDisabledError, IntegrationMisconfiguredError
from app.integrations.maps.base import RoutingProvider
from app.integrations.maps.google_routes_provider import GoogleRoutesProvider
from app.integrations.maps.mock_provider import MockRoutingProvider


def _timeout_seconds() -> float:
    raw = (os.getenv("ROUTING_TIMEOUT_SECONDS") or "").strip()
    try:
        value = float(raw) if raw else 10.0
    except ValueError:
        value = 10.0
    return max(1.0, min(value, 30.0))


def routing_provider_name() -> str:
    return (os.getenv("ROUTING_PROVIDER") or "google").strip().lower()


def build_routing_provider() -> RoutingProvider:
    provider = routing_provider_name()
    if provider == "disabled":
        raise IntegrationDisabledError("INTEGRATION_DISABLED:routing")
    if provider == "mock":
        return MockRoutingProvider()
    if provider != "google":
        raise IntegrationMisconfiguredError(f"INTEGRATION_MISCONFIGURED:routing_provider={provider}")
    api_key = (os.getenv("GOOGLE_MAPS_API_KEY") or "").strip()
    if not api_key:
        raise IntegrationMisconfiguredError("INTEGRATION_MISCONFIGURED:missing GOOGLE_MAPS_API_KEY")
    return GoogleRoutesProvider(api_key=api_key, timeout_seconds=_timeout_seconds())


def routing_health() -> dict:
    provider = routing_provider_name()
    missing = []
    if provider == "google" and not (os.getenv("GOOGLE_MAPS_API_KEY") or "").strip():
        missing.append("GOOGLE_MAPS_API_KEY")
    if provider == "disabled":
        status = "disabled"
    elif provider not in ("google", "mock"):
        status = "misconfigured"
    elif missing:
        status = "misconfigured"
    else:
        status = "configured"
    return {"status": status, "provider": provider, "missing": missing}
