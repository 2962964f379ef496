"""
Collaborator interfaces and adapters.

The engine never talks to a process-wide client. Identity, content and
progress lookups are injected through these interfaces:

- IdentityStore:     token -> RawIdentity, role assignments, legacy role field
- ContentStore:      (kind, id) -> ContentDescriptor, or ContentNotFound
- ConsumptionStore:  per (principal, video) watched time, merged with max()

Adapters:
- InMemoryIdentityStore / SqlIdentityStore (SQLAlchemy)
- InMemoryContentStore / JsonContentStore (one JSON file per item)
- InMemoryConsumptionStore / RedisConsumptionStore (ZADD GT, never regresses)
"""

import json
import logging
import re
import threading
from datetime import datetime, timezone
from pathlib import Path
from typing import Callable, Dict, Iterable, List, Optional, Protocol, Tuple

import redis
from sqlalchemy import Column, MetaData, String, Table, select
from sqlalchemy.orm import Session

from access_gate.catalog import TierCatalog, default_catalog
from access_gate.errors import ContentNotFound, ContentStoreUnavailable, MalformedDescriptor
from access_gate.models import ConsumptionState, ContentDescriptor, ContentKind, RawIdentity

logger = logging.getLogger(__name__)


# =============================================================================
# Interfaces
# =============================================================================

class IdentityStore(Protocol):
    def resolve_identity(self, token: str) -> Optional[RawIdentity]:
        ...

    def get_role_assignments(self, identity_id: str) -> List[str]:
        ...

    def get_legacy_role(self, identity_id: str) -> Optional[str]:
        ...


class ContentStore(Protocol):
    def load_content_descriptor(self, kind: ContentKind, content_id: str) -> ContentDescriptor:
        ...


class ConsumptionStore(Protocol):
    def load_consumption(self, principal_id: str, content_id: str) -> Optional[ConsumptionState]:
        ...

    def save_consumption(self, state: ConsumptionState) -> ConsumptionState:
        ...


# =============================================================================
# Identity stores
# =============================================================================

class InMemoryIdentityStore:
    """Dict-backed identity store for tests and local development."""

    def __init__(
        self,
        tokens: Optional[Dict[str, RawIdentity]] = None,
        role_assignments: Optional[Dict[str, Iterable[str]]] = None,
        legacy_roles: Optional[Dict[str, str]] = None,
    ) -> None:
        self._tokens = dict(tokens or {})
        self._roles = {k: list(v) for k, v in (role_assignments or {}).items()}
        self._legacy = dict(legacy_roles or {})

    def add_identity(self, token: str, identity: RawIdentity) -> None:
        self._tokens[token] = identity

    def assign_roles(self, identity_id: str, roles: Iterable[str]) -> None:
        self._roles[identity_id] = list(roles)

    def set_legacy_role(self, identity_id: str, role: Optional[str]) -> None:
        if role is None:
            self._legacy.pop(identity_id, None)
        else:
            self._legacy[identity_id] = role

    def resolve_identity(self, token: str) -> Optional[RawIdentity]:
        return self._tokens.get(token)

    def get_role_assignments(self, identity_id: str) -> List[str]:
        return list(self._roles.get(identity_id, []))

    def get_legacy_role(self, identity_id: str) -> Optional[str]:
        return self._legacy.get(identity_id)


metadata = MetaData()

sessions_table = Table(
    "access_sessions",
    metadata,
    Column("token", String(255), primary_key=True),
    Column("user_id", String(64), nullable=False),
)

profiles_table = Table(
    "profiles",
    metadata,
    Column("id", String(64), primary_key=True),
    Column("email", String(320), nullable=True),
    # Historical single-role column, superseded by user_roles.
    Column("role", String(64), nullable=True),
)

user_roles_table = Table(
    "user_roles",
    metadata,
    Column("user_id", String(64), primary_key=True),
    Column("role_name", String(64), primary_key=True),
)


class SqlIdentityStore:
    """
    Identity store over the platform tables.

    Args:
        session_factory: Callable returning a SQLAlchemy Session. The session is
            closed after every lookup.
    """

    def __init__(self, session_factory: Callable[[], Session]) -> None:
        self._session_factory = session_factory

    def resolve_identity(self, token: str) -> Optional[RawIdentity]:
        db = self._session_factory()
        try:
            row = db.execute(
                select(profiles_table.c.id, profiles_table.c.email)
                .join(sessions_table, sessions_table.c.user_id == profiles_table.c.id)
                .where(sessions_table.c.token == token)
            ).first()
        finally:
            db.close()
        if row is None:
            return None
        return RawIdentity(id=row.id, email=row.email)

    def get_role_assignments(self, identity_id: str) -> List[str]:
        db = self._session_factory()
        try:
            rows = db.execute(
                select(user_roles_table.c.role_name)
                .where(user_roles_table.c.user_id == identity_id)
                .order_by(user_roles_table.c.role_name)
            ).scalars().all()
        finally:
            db.close()
        return list(rows)

    def get_legacy_role(self, identity_id: str) -> Optional[str]:
        db = self._session_factory()
        try:
            return db.execute(
                select(profiles_table.c.role).where(profiles_table.c.id == identity_id)
            ).scalar_one_or_none()
        finally:
            db.close()


# =============================================================================
# Content stores
# =============================================================================

class InMemoryContentStore:
    def __init__(self, descriptors: Iterable[ContentDescriptor] = ()) -> None:
        self._items: Dict[Tuple[ContentKind, str], ContentDescriptor] = {}
        for descriptor in descriptors:
            self.put(descriptor)

    def put(self, descriptor: ContentDescriptor) -> None:
        self._items[(descriptor.kind, descriptor.id)] = descriptor

    def load_content_descriptor(self, kind: ContentKind, content_id: str) -> ContentDescriptor:
        kind = ContentKind(kind)
        descriptor = self._items.get((kind, str(content_id).strip()))
        if descriptor is None:
            raise ContentNotFound(kind.value, content_id)
        return descriptor


_SAFE_ID = re.compile(r"^[A-Za-z0-9_.-]+$")
_ARTICLE_NUMBER = re.compile(r"(\d+)")


def article_level_from_number(article_id: str, catalog: Optional[TierCatalog] = None) -> Optional[str]:
    """
    Access level implied by the article number when the file carries none.

    Articles cycle in blocks of 20: the first 5 are free, the next 10 partial,
    the last 5 premium.
    """
    levels = (catalog or default_catalog()).access_levels
    match = _ARTICLE_NUMBER.search(article_id)
    if not match or len(levels) < 3:
        return None
    index = (int(match.group(1)) - 1) % 20
    if index < 5:
        return levels[0]
    if index < 15:
        return levels[1]
    return levels[-1]


class JsonContentStore:
    """
    Content store reading one JSON document per item from <root>/<kind>/<id>.json.

    Recognised fields: title, content/body, previewBody/preview, accessLevel,
    requiredTier, previewCapSeconds.
    """

    def __init__(self, root: str, catalog: Optional[TierCatalog] = None) -> None:
        self._root = Path(root)
        self._catalog = catalog or default_catalog()

    def load_content_descriptor(self, kind: ContentKind, content_id: str) -> ContentDescriptor:
        kind = ContentKind(kind)
        content_id = str(content_id).strip()
        if not _SAFE_ID.match(content_id) or content_id.startswith("."):
            raise ContentNotFound(kind.value, content_id)

        path = self._root / kind.value / f"{content_id}.json"
        try:
            with path.open("r", encoding="utf-8") as handle:
                raw = json.load(handle)
        except FileNotFoundError:
            raise ContentNotFound(kind.value, content_id) from None
        except json.JSONDecodeError as exc:
            raise MalformedDescriptor(content_id, f"invalid JSON: {exc}") from exc
        except OSError as exc:
            logger.error(
                "Failed to read content document",
                extra={"content_kind": kind.value, "content_id": content_id, "error": str(exc)},
            )
            raise ContentStoreUnavailable(str(exc), cause=exc) from exc

        if not isinstance(raw, dict):
            raise MalformedDescriptor(content_id, "document must be an object")
        try:
            return self._to_descriptor(kind, content_id, raw)
        except (AttributeError, TypeError, ValueError) as exc:
            raise MalformedDescriptor(content_id, f"invalid field value: {exc}") from exc

    def _to_descriptor(self, kind: ContentKind, content_id: str, raw: dict) -> ContentDescriptor:
        body = raw.get("content", raw.get("body", "")) or ""
        preview = raw.get("previewBody", raw.get("preview"))
        title = raw.get("title", "") or ""
        for field_name, value in (("content", body), ("preview", preview), ("title", title)):
            if value is not None and not isinstance(value, str):
                raise TypeError(f"{field_name} must be a string")

        if kind is ContentKind.ARTICLE:
            level = raw.get("accessLevel") or article_level_from_number(content_id, self._catalog)
            return ContentDescriptor(
                id=content_id, kind=kind, access_level=level,
                body=body, preview_body=preview, title=title,
            )
        if kind is ContentKind.VIDEO:
            if "previewCapSeconds" in raw:
                cap = raw["previewCapSeconds"]
            else:
                cap = self._catalog.preview_cap_for(self._catalog.lowest_tier)
            return ContentDescriptor(
                id=content_id, kind=kind,
                required_tier=raw.get("requiredTier") or self._catalog.lowest_tier,
                preview_cap_seconds=None if cap is None else float(cap),
                body=body, preview_body=preview, title=title,
            )
        return ContentDescriptor(id=content_id, kind=kind, body=body, title=title)


# =============================================================================
# Consumption stores
# =============================================================================

class InMemoryConsumptionStore:
    """Process-local progress store. save_consumption is a max-merge under a lock."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._states: Dict[Tuple[str, str], ConsumptionState] = {}

    def load_consumption(self, principal_id: str, content_id: str) -> Optional[ConsumptionState]:
        with self._lock:
            return self._states.get((principal_id, content_id))

    def save_consumption(self, state: ConsumptionState) -> ConsumptionState:
        key = (state.principal_id, state.content_id)
        with self._lock:
            existing = self._states.get(key)
            if existing is not None and existing.watched_seconds >= state.watched_seconds:
                return existing
            self._states[key] = state
            return state


class RedisConsumptionStore:
    """
    Redis-backed progress store.

    One sorted set per principal, scored by watched seconds. ZADD GT only ever
    raises a score, so out-of-order or duplicate reports cannot regress it.
    """

    KEY_PREFIX = "consumption:v1:"

    def __init__(self, client: Optional[redis.Redis] = None, redis_url: Optional[str] = None) -> None:
        if client is None:
            if not redis_url:
                raise ValueError("either client or redis_url is required")
            client = redis.from_url(
                redis_url,
                decode_responses=True,
                socket_connect_timeout=2,
                socket_timeout=2,
            )
        self._redis = client

    @classmethod
    def _key(cls, principal_id: str) -> str:
        return f"{cls.KEY_PREFIX}{principal_id}"

    def load_consumption(self, principal_id: str, content_id: str) -> Optional[ConsumptionState]:
        try:
            score = self._redis.zscore(self._key(principal_id), content_id)
        except redis.RedisError as exc:
            raise ContentStoreUnavailable("progress store read failed", cause=exc) from exc
        if score is None:
            return None
        return ConsumptionState(
            principal_id=principal_id, content_id=content_id, watched_seconds=float(score),
        )

    def save_consumption(self, state: ConsumptionState) -> ConsumptionState:
        key = self._key(state.principal_id)
        try:
            self._redis.zadd(key, {state.content_id: state.watched_seconds}, gt=True)
            score = self._redis.zscore(key, state.content_id)
        except redis.RedisError as exc:
            raise ContentStoreUnavailable("progress store write failed", cause=exc) from exc
        return ConsumptionState(
            principal_id=state.principal_id,
            content_id=state.content_id,
            watched_seconds=float(score if score is not None else state.watched_seconds),
            updated_at=datetime.now(timezone.utc),
        )
