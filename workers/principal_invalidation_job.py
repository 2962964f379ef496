from __future__ import annotations

import json
import logging
import os
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Optional

import redis

from access_gate.audit import AccessAuditLogger
from access_gate.cache import PrincipalCache

logger = logging.getLogger(__name__)

ROLE_CHANGES_KEY = "access_gate:role_changes"


@dataclass
class InvalidationStats:
    started_at: str
    completed_at: Optional[str] = None
    events_read: int = 0
    invalidations: int = 0
    malformed_events: int = 0
    errors: int = 0


def publish_role_change(client: redis.Redis, principal_id: str, *, reason: str = "role_change",
                        queue_key: str = ROLE_CHANGES_KEY) -> None:
    """
    Drop the cached principal now and queue the change for the invalidation cycle.

    The synchronous delete makes the change visible on the very next request.
    The queued event lets the cycle audit it and retry when the delete fails.
    """
    try:
        client.delete(PrincipalCache.cache_key(principal_id))
    except redis.RedisError as e:
        logger.warning(
            "Immediate principal invalidation failed, relying on the queue",
            extra={"principal_id": principal_id, "error": str(e)},
        )
    client.rpush(queue_key, json.dumps({"principal_id": principal_id, "reason": reason}))


def _parse_event(raw) -> Optional[str]:
    if isinstance(raw, bytes):
        raw = raw.decode("utf-8")
    try:
        payload = json.loads(raw)
    except (TypeError, ValueError):
        return None
    if not isinstance(payload, dict):
        return None
    principal_id = str(payload.get("principal_id") or "").strip()
    return principal_id or None


def run_principal_invalidation_cycle(
    cache: Optional[PrincipalCache] = None,
    client: Optional[redis.Redis] = None,
    *,
    audit: Optional[AccessAuditLogger] = None,
    max_events: int = 500,
    queue_key: str = ROLE_CHANGES_KEY,
) -> InvalidationStats:
    """Drain role/tier change events and invalidate cached principals.

    Responsibilities:
    - drop the cached principal for every changed identity
    - the next request recomputes it from the identity store
    """

    if cache is None:
        cache = PrincipalCache()
    if client is None:
        client = redis.from_url(os.environ["REDIS_URL"], decode_responses=True)
    audit = audit or AccessAuditLogger()
    stats = InvalidationStats(started_at=datetime.now(timezone.utc).isoformat())

    while stats.events_read < max_events:
        try:
            raw = client.lpop(queue_key)
        except redis.RedisError as e:
            logger.error("Failed to read role change queue", extra={"error": str(e)})
            stats.errors += 1
            break
        if raw is None:
            break
        stats.events_read += 1

        principal_id = _parse_event(raw)
        if principal_id is None:
            logger.warning("Skipping malformed role change event", extra={"event": str(raw)[:200]})
            stats.malformed_events += 1
            continue

        try:
            cache.invalidate(principal_id)
        except Exception as e:
            logger.error(
                "Failed to invalidate cached principal",
                extra={"principal_id": principal_id, "error": str(e)},
            )
            stats.errors += 1
            continue
        audit.log_principal_invalidated(principal_id=principal_id, source="invalidation_job")
        stats.invalidations += 1

    stats.completed_at = datetime.now(timezone.utc).isoformat()
    logger.info("Principal invalidation cycle finished", extra=vars(stats))
    return stats


def run_forever(interval_seconds: int = 5) -> None:
    import time

    cache = PrincipalCache()
    client = redis.from_url(os.environ["REDIS_URL"], decode_responses=True)
    while True:
        run_principal_invalidation_cycle(cache, client)
        time.sleep(interval_seconds)
