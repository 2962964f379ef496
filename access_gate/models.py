from __future__ import annotations

import math
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import FrozenSet, Iterable, Optional

ADMIN_ROLE = "admin"
ADMIN_PANEL_PERMISSION = "admin_panel:access"


class ContentKind(str, Enum):
    ARTICLE = "article"
    VIDEO = "video"
    FORUM_THREAD = "forum_thread"


class Action(str, Enum):
    READ = "read"
    WRITE = "write"
    MODERATE = "moderate"


class Reason(str, Enum):
    """Closed set of machine-readable denial codes."""

    NOT_AUTHENTICATED = "not_authenticated"
    INSUFFICIENT_TIER = "insufficient_tier"
    INSUFFICIENT_ROLE = "insufficient_role"
    PREVIEW_EXHAUSTED = "preview_exhausted"
    CONTENT_NOT_FOUND = "content_not_found"


class RequiredAction(str, Enum):
    SIGN_IN = "sign_in"
    UPGRADE = "upgrade"
    WAIT = "wait"


def _normalize_names(values: Iterable[str]) -> FrozenSet[str]:
    return frozenset(str(v).strip().lower() for v in values if str(v).strip())


@dataclass(frozen=True)
class RawIdentity:
    """Authenticated identity as handed over by the identity store."""

    id: str
    email: Optional[str] = None

    def __post_init__(self) -> None:
        identity_id = str(self.id).strip()
        if not identity_id:
            raise ValueError("identity id is required")
        object.__setattr__(self, "id", identity_id)


@dataclass(frozen=True)
class Principal:
    """Resolved requester for one decision. Anonymous callers are None, not an empty Principal."""

    id: str
    roles: FrozenSet[str]
    membership_tier: str
    permissions: FrozenSet[str] = frozenset()
    email: Optional[str] = None
    override_identity: bool = False
    legacy_role: Optional[str] = None

    def __post_init__(self) -> None:
        principal_id = str(self.id).strip()
        if not principal_id:
            raise ValueError("principal id is required")
        roles = _normalize_names(self.roles)
        if not roles:
            raise ValueError("principal roles must be non-empty")
        if self.override_identity and ADMIN_ROLE not in roles:
            raise ValueError("override identity must carry the admin role")
        object.__setattr__(self, "id", principal_id)
        object.__setattr__(self, "roles", roles)
        object.__setattr__(self, "permissions", frozenset(self.permissions))
        object.__setattr__(self, "membership_tier", str(self.membership_tier).strip().lower())

    def has_role(self, role: str) -> bool:
        return role.strip().lower() in self.roles

    def has_any_role(self, roles: Iterable[str]) -> bool:
        return bool(self.roles.intersection(_normalize_names(roles)))

    def has_permission(self, permission: str) -> bool:
        return permission in self.permissions


@dataclass(frozen=True)
class ContentDescriptor:
    """
    Access requirements of one content item.

    Articles are gated by access_level, videos by required_tier plus an
    optional preview cap, forum threads by role only.
    """

    id: str
    kind: ContentKind
    access_level: Optional[str] = None
    required_tier: Optional[str] = None
    preview_cap_seconds: Optional[float] = None
    body: str = ""
    preview_body: Optional[str] = None
    title: str = ""

    def __post_init__(self) -> None:
        content_id = str(self.id).strip()
        if not content_id:
            raise ValueError("content id is required")
        object.__setattr__(self, "id", content_id)
        object.__setattr__(self, "kind", ContentKind(self.kind))
        if self.access_level is not None:
            object.__setattr__(self, "access_level", self.access_level.strip().lower())
        if self.required_tier is not None:
            object.__setattr__(self, "required_tier", self.required_tier.strip().lower())
        if self.preview_cap_seconds is not None and not self.preview_cap_seconds >= 0:
            raise ValueError("preview_cap_seconds must be >= 0")


@dataclass(frozen=True)
class ConsumptionState:
    """Watched time for one (principal, video) pair. Never decremented."""

    principal_id: str
    content_id: str
    watched_seconds: float = 0.0
    updated_at: Optional[datetime] = None

    def __post_init__(self) -> None:
        if not str(self.principal_id).strip():
            raise ValueError("principal_id is required")
        if not str(self.content_id).strip():
            raise ValueError("content_id is required")
        watched = float(self.watched_seconds)
        if math.isnan(watched) or watched < 0 or math.isinf(watched):
            raise ValueError("watched_seconds must be a finite value >= 0")
        object.__setattr__(self, "watched_seconds", watched)


@dataclass(frozen=True)
class AccessDecision:
    """Engine output, consumed identically by every enforcement surface."""

    allowed: bool
    preview_allowed: bool
    level: Optional[str]
    reason: Optional[Reason] = None
    required_action: Optional[RequiredAction] = None
    remaining_seconds: Optional[float] = None
    should_warn: bool = False
    recommended_tier: Optional[str] = None

    def __post_init__(self) -> None:
        if self.allowed and not self.preview_allowed:
            object.__setattr__(self, "preview_allowed", True)

    @property
    def is_preview(self) -> bool:
        return not self.allowed and self.preview_allowed

    @property
    def blocked(self) -> bool:
        return not self.allowed and not self.preview_allowed

    def to_dict(self) -> dict:
        remaining = self.remaining_seconds
        if remaining is not None and math.isinf(remaining):
            remaining = None
        return {
            "allowed": self.allowed,
            "previewAllowed": self.preview_allowed,
            "level": self.level,
            "reason": self.reason.value if self.reason else None,
            "requiredAction": self.required_action.value if self.required_action else None,
            "remainingSeconds": remaining,
            "unlimited": self.remaining_seconds is not None and math.isinf(self.remaining_seconds),
            "shouldWarn": self.should_warn,
            "recommendedTier": self.recommended_tier,
        }
