from __future__ import annotations

import pytest
import redis

from access_gate.catalog import TierCatalog
from access_gate.engine import AccessDecisionEngine
from access_gate.models import Principal


class FakeRedis:
    def __init__(self):
        self.store = {}
        self.zsets = {}
        self.lists = {}
        self.fail = False

    def _check(self):
        if self.fail:
            raise redis.ConnectionError("redis is down")

    def ping(self):
        self._check()
        return True

    def get(self, key):
        self._check()
        return self.store.get(key)

    def setex(self, key, ttl, value):
        self._check()
        self.store[key] = value

    def delete(self, key):
        self._check()
        self.store.pop(key, None)

    def zadd(self, key, members, gt=False):
        self._check()
        z = self.zsets.setdefault(key, {})
        for member, score in members.items():
            current = z.get(member)
            if gt and current is not None and score <= current:
                continue
            z[member] = float(score)

    def zscore(self, key, member):
        self._check()
        return self.zsets.get(key, {}).get(member)

    def rpush(self, key, value):
        self._check()
        self.lists.setdefault(key, []).append(value)

    def lpop(self, key):
        self._check()
        items = self.lists.get(key)
        if not items:
            return None
        return items.pop(0)


@pytest.fixture
def fake_redis():
    return FakeRedis()


@pytest.fixture
def catalog():
    return TierCatalog()


@pytest.fixture
def engine(catalog):
    return AccessDecisionEngine(catalog)


@pytest.fixture
def make_principal(catalog):
    def _make(principal_id="user-1", roles=("user",), legacy_role=None, email=None):
        return Principal(
            id=principal_id,
            roles=frozenset(roles),
            membership_tier=catalog.tier_for(roles),
            permissions=catalog.permissions_for(roles),
            legacy_role=legacy_role,
            email=email,
        )

    return _make

