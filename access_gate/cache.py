from __future__ import annotations

import json
import logging
import os
import time
from typing import Dict, Optional

from .models import Principal

logger = logging.getLogger(__name__)

CACHE_SCHEMA_VERSION = 1


class PrincipalCache:
    """
    Redis-backed cache of resolved principals with in-memory fallback.

    Entries live until their TTL or until invalidate() is called for the
    principal. Role and tier changes must call invalidate() so an upgrade is
    visible on the very next request.
    """

    def __init__(self, redis_url: Optional[str] = None, ttl_seconds: int = 300) -> None:
        self._ttl_seconds = ttl_seconds
        self._redis = None
        self._mem: Dict[str, tuple[int, dict]] = {}
        redis_url = redis_url or os.getenv("REDIS_URL")

        if redis_url:
            try:
                import redis

                self._redis = redis.from_url(redis_url, decode_responses=True)
                self._redis.ping()
            except Exception as e:
                logger.warning("Principal cache falling back to memory: %s", e)
                self._redis = None

    @staticmethod
    def _require_id(principal_id: str) -> str:
        normalized = str(principal_id).strip()
        if not normalized:
            raise ValueError("principal_id is required")
        return normalized

    @staticmethod
    def cache_key(principal_id: str) -> str:
        """Redis key holding the cached principal. Other processes delete it to invalidate."""
        return f"access_gate:principal:v{CACHE_SCHEMA_VERSION}:{principal_id}"

    @property
    def is_shared(self) -> bool:
        """True when entries live in Redis and are visible to every process."""
        return self._redis is not None

    def get(self, principal_id: str) -> Optional[Principal]:
        key = self.cache_key(self._require_id(principal_id))

        if self._redis is not None:
            raw = self._redis.get(key)
            if not raw:
                return None
            return _decode_principal(json.loads(raw))

        data = self._mem.get(key)
        if not data:
            return None

        cached_at, payload = data
        if int(time.time()) - cached_at > self._ttl_seconds:
            self._mem.pop(key, None)
            return None
        return _decode_principal(payload)

    def set(self, principal: Principal, *, ttl_seconds: Optional[int] = None) -> None:
        ttl = ttl_seconds or self._ttl_seconds
        key = self.cache_key(self._require_id(principal.id))
        payload = _encode_principal(principal)

        if self._redis is not None:
            self._redis.setex(key, ttl, json.dumps(payload))
            return

        now = int(time.time())
        self._prune_expired(now)
        self._mem[key] = (now, payload)

    def invalidate(self, principal_id: str) -> None:
        key = self.cache_key(self._require_id(principal_id))
        if self._redis is not None:
            self._redis.delete(key)
        self._mem.pop(key, None)

    def _prune_expired(self, now: int) -> None:
        expired = [k for k, (cached_at, _) in self._mem.items() if now - cached_at > self._ttl_seconds]
        for k in expired:
            del self._mem[k]


def _encode_principal(principal: Principal) -> dict:
    return {
        "schema_version": CACHE_SCHEMA_VERSION,
        "id": principal.id,
        "email": principal.email,
        "roles": sorted(principal.roles),
        "membership_tier": principal.membership_tier,
        "permissions": sorted(principal.permissions),
        "override_identity": principal.override_identity,
        "legacy_role": principal.legacy_role,
    }


def _decode_principal(raw: dict) -> Principal:
    if int(raw.get("schema_version", CACHE_SCHEMA_VERSION)) != CACHE_SCHEMA_VERSION:
        raise ValueError("Unsupported principal cache schema version")

    return Principal(
        id=raw["id"],
        email=raw.get("email"),
        roles=frozenset(raw["roles"]),
        membership_tier=raw["membership_tier"],
        permissions=frozenset(raw.get("permissions") or []),
        override_identity=bool(raw.get("override_identity", False)),
        legacy_role=raw.get("legacy_role"),
    )
