from __future__ import annotations

from access_gate.audit import AccessAuditLogger, AuditAction
from access_gate.cache import PrincipalCache
from access_gate.models import RawIdentity
from access_gate.resolver import PrincipalResolver
from access_gate.settings import GateSettings
from access_gate.stores import InMemoryIdentityStore
from workers.principal_invalidation_job import (
    ROLE_CHANGES_KEY,
    publish_role_change,
    run_principal_invalidation_cycle,
)


def _cache(fake_redis):
    cache = PrincipalCache(ttl_seconds=300)
    cache._redis = fake_redis
    return cache


def test_cycle_invalidates_cached_principals(fake_redis, make_principal):
    cache = _cache(fake_redis)
    cache.set(make_principal("u1", ("user",)))
    cache.set(make_principal("u2", ("user",)))
    publish_role_change(fake_redis, "u1")
    events = []

    stats = run_principal_invalidation_cycle(cache, fake_redis, audit=AccessAuditLogger(events.append))

    assert stats.events_read == 1
    assert stats.invalidations == 1
    assert stats.errors == 0
    assert stats.completed_at is not None
    assert cache.get("u1") is None
    assert cache.get("u2") is not None
    assert [e.action for e in events] == [AuditAction.PRINCIPAL_INVALIDATED]


def test_malformed_events_are_skipped(fake_redis):
    fake_redis.rpush(ROLE_CHANGES_KEY, "not json")
    fake_redis.rpush(ROLE_CHANGES_KEY, '{"reason": "role_change"}')
    publish_role_change(fake_redis, "u3")

    stats = run_principal_invalidation_cycle(_cache(fake_redis), fake_redis, audit=AccessAuditLogger(lambda e: None))

    assert stats.events_read == 3
    assert stats.malformed_events == 2
    assert stats.invalidations == 1


def test_cycle_stops_at_max_events(fake_redis):
    for i in range(5):
        publish_role_change(fake_redis, f"u{i}")

    stats = run_principal_invalidation_cycle(
        _cache(fake_redis), fake_redis, audit=AccessAuditLogger(lambda e: None), max_events=3
    )

    assert stats.invalidations == 3
    assert len(fake_redis.lists[ROLE_CHANGES_KEY]) == 2


def test_queue_failure_is_counted(fake_redis):
    cache = PrincipalCache(ttl_seconds=300)
    fake_redis.fail = True

    stats = run_principal_invalidation_cycle(cache, fake_redis, audit=AccessAuditLogger(lambda e: None))

    assert stats.errors == 1
    assert stats.invalidations == 0


def test_published_role_change_is_visible_on_next_resolution(fake_redis, catalog):
    store = InMemoryIdentityStore()
    store.add_identity("tok-1", RawIdentity("u1", "u1@example.com"))
    store.assign_roles("u1", ["user"])
    resolver = PrincipalResolver(
        store, catalog=catalog, settings=GateSettings(), cache=_cache(fake_redis),
        audit=AccessAuditLogger(lambda e: None),
    )
    assert resolver.resolve_token("tok-1").membership_tier == "free"

    store.assign_roles("u1", ["premium_user"])
    publish_role_change(fake_redis, "u1")

    assert resolver.resolve_token("tok-1").membership_tier == "premium"
    assert len(fake_redis.lists[ROLE_CHANGES_KEY]) == 1
