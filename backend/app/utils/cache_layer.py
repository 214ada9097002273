from __future__ import annotations

import hashlib
import json
import logging
import os
import threading
from typing import Any

import redis

logger = logging.getLogger(__name__)

_LOCK = threading.Lock()
_CLIENT = None
_CLIENT_INIT_ATTEMPTED = False

_STATS = {
    "hits": 0,
    "misses": 0,
    "sets": 0,
    "errors": 0,
}


def _env_bool(name: str, default: bool) -> bool:
    raw = (os.getenv(name) or "").strip().lower()
    if not raw:
        return bool(default)
    return raw in ("1", "true", "yes", "on")


def _env_int(name: str, default: int, *, minimum: int = 1, maximum: int = 7 * 86400) -> int:
    raw = (os.getenv(name) or "").strip()
    try:
        value = int(raw) if raw else int(default)
    except ValueError:
        value = int(default)
    return max(minimum, min(value, maximum))


def cache_enabled(default: bool = False) -> bool:
    return _env_bool("ENABLE_CACHE", default)


def route_cache_ttl_seconds() -> int:
    return _env_int("ROUTE_CACHE_TTL_SECONDS", 86400)


def _cache_redis_url() -> str:
    return (os.getenv("CACHE_REDIS_URL") or os.getenv("REDIS_URL") or "").strip()


def _bump_stat(name: str, delta: int = 1) -> None:
    with _LOCK:
        _STATS[name] = int(_STATS.get(name, 0) or 0) + int(delta)


def _get_client():
    global _CLIENT, _CLIENT_INIT_ATTEMPTED
    if not cache_enabled(False):
        return None
    with _LOCK:
        if _CLIENT_INIT_ATTEMPTED:
            return _CLIENT
        _CLIENT_INIT_ATTEMPTED = True

    url = _cache_redis_url()
    if not url:
        return None
    try:
        client = redis.Redis.from_url(
            url,
            decode_responses=True,
            socket_timeout=0.75,
            socket_connect_timeout=0.75,
            health_check_interval=30,
        )
        client.ping()
    except redis.RedisError as e:
        _bump_stat("errors")
        logger.warning("cache_connect_failed err=%s", e)
        return None
    with _LOCK:
        _CLIENT = client
    return client


def build_cache_key(scope: str, params: dict[str, Any] | None = None) -> str:
    safe_scope = str(scope or "default").strip().lower().replace(" ", "_")
    payload = params or {}
    parts = [f"{key}={'' if payload[key] is None else payload[key]}" for key in sorted(payload)]
    joined = "&".join(parts)
    if len(joined) > 420:
        joined = hashlib.sha256(joined.encode("utf-8")).hexdigest()
    return f"v1:{safe_scope}:{joined}"


def get_json(key: str) -> dict | list | None:
    client = _get_client()
    if client is None:
        return None
    try:
        raw = client.get(str(key))
    except redis.RedisError:
        _bump_stat("errors")
        return None
    if not raw:
        _bump_stat("misses")
        return None
    try:
        parsed = json.loads(raw)
    except ValueError:
        _bump_stat("errors")
        return None
    _bump_stat("hits")
    return parsed


def set_json(key: str, value: Any, ttl_seconds: int) -> bool:
    client = _get_client()
    if client is None:
        return False
    try:
        client.setex(str(key), max(1, int(ttl_seconds)), json.dumps(value, separators=(",", ":"), default=str))
    except (redis.RedisError, TypeError, ValueError):
        _bump_stat("errors")
        return False
    _bump_stat("sets")
    return True


def cache_stats() -> dict:
    client = _get_client()
    base = {
        "enabled": bool(cache_enabled(False) and client is not None),
        "url_configured": bool(_cache_redis_url()),
    }
    with _LOCK:
        base.update({name: int(count or 0) for name, count in _STATS.items()})
    return base


def _reset_cache_state_for_tests() -> None:
    global _CLIENT, _CLIENT_INIT_ATTEMPTED
    with _LOCK:
        _CLIENT = None
        _CLIENT_INIT_ATTEMPTED = False
        for key in _STATS:
            _STATS[key] = 0
