"""
Tier & role catalog.

Holds the two independent orders the engine compares against:
- membership tiers (video):   free < basic < premium < enterprise
- article access levels:      free < partial < premium

The orders share value names but are never unified: a video "premium" tier
says nothing about "premium" article access unless the role projections do.

The catalog also owns the role -> permission mapping, the role -> tier and
role -> access level projections, the legacy single-role mapping, and the
forum posting roles. Adding a tier or role is a catalog edit only.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Dict, FrozenSet, Iterable, Mapping, Optional, Tuple

from access_gate.errors import CatalogConfigError

DEFAULT_TIERS: Tuple[str, ...] = ("free", "basic", "premium", "enterprise")
DEFAULT_ACCESS_LEVELS: Tuple[str, ...] = ("free", "partial", "premium")

DEFAULT_ROLE_PERMISSIONS: Dict[str, Tuple[str, ...]] = {
    "user": ("article:read", "video:read", "forum:read"),
    "paid": ("article:read", "video:read", "forum:read", "forum:write"),
    "premium_user": ("article:read", "video:read", "forum:read", "forum:write"),
    "admin": (
        "article:read", "video:read", "forum:read", "forum:write", "forum:moderate",
        "admin_panel:access",
    ),
    "super_admin": (
        "article:read", "video:read", "forum:read", "forum:write", "forum:moderate",
        "admin_panel:access", "admin_panel:manage",
    ),
}

DEFAULT_ROLE_TIERS: Dict[str, str] = {
    "premium_user": "premium",
    "admin": "enterprise",
    "super_admin": "enterprise",
}

DEFAULT_ROLE_ACCESS_LEVELS: Dict[str, str] = {
    "premium_user": "premium",
    "admin": "premium",
    "super_admin": "premium",
}

DEFAULT_LEGACY_ROLES: Dict[str, Tuple[str, ...]] = {
    "paid": ("paid",),
    "admin": ("admin",),
    "free": ("user",),
    "user": ("user",),
}

DEFAULT_TIER_PREVIEW_CAPS: Dict[str, Optional[float]] = {
    "free": 300.0,
    "basic": None,
    "premium": None,
    "enterprise": None,
}


def _names(values: Iterable[str]) -> FrozenSet[str]:
    return frozenset(str(v).strip().lower() for v in values if str(v).strip())


@dataclass(frozen=True)
class TierCatalog:
    """Static tier/role configuration. Immutable once built."""

    tiers: Tuple[str, ...] = DEFAULT_TIERS
    access_levels: Tuple[str, ...] = DEFAULT_ACCESS_LEVELS
    role_permissions: Mapping[str, FrozenSet[str]] = field(
        default_factory=lambda: {k: frozenset(v) for k, v in DEFAULT_ROLE_PERMISSIONS.items()}
    )
    role_tiers: Mapping[str, str] = field(default_factory=lambda: dict(DEFAULT_ROLE_TIERS))
    role_access_levels: Mapping[str, str] = field(
        default_factory=lambda: dict(DEFAULT_ROLE_ACCESS_LEVELS)
    )
    authenticated_access_level: str = "partial"
    default_role: str = "user"
    legacy_roles: Mapping[str, FrozenSet[str]] = field(
        default_factory=lambda: {k: frozenset(v) for k, v in DEFAULT_LEGACY_ROLES.items()}
    )
    forum_poster_roles: FrozenSet[str] = frozenset({"premium_user", "admin", "super_admin"})
    legacy_forum_poster_roles: FrozenSet[str] = frozenset({"paid", "admin"})
    moderator_roles: FrozenSet[str] = frozenset({"admin", "super_admin"})
    tier_preview_caps: Mapping[str, Optional[float]] = field(
        default_factory=lambda: dict(DEFAULT_TIER_PREVIEW_CAPS)
    )
    warn_ratio: float = 0.8

    def __post_init__(self) -> None:
        tiers = tuple(str(t).strip().lower() for t in self.tiers)
        levels = tuple(str(a).strip().lower() for a in self.access_levels)
        if not tiers or len(set(tiers)) != len(tiers):
            raise CatalogConfigError("tiers must be a non-empty list of unique names")
        if not levels or len(set(levels)) != len(levels):
            raise CatalogConfigError("access_levels must be a non-empty list of unique names")

        role_permissions = {
            str(role).strip().lower(): frozenset(perms)
            for role, perms in self.role_permissions.items()
        }
        role_tiers = {str(r).strip().lower(): str(t).strip().lower() for r, t in self.role_tiers.items()}
        role_levels = {
            str(r).strip().lower(): str(a).strip().lower()
            for r, a in self.role_access_levels.items()
        }
        legacy = {str(k).strip().lower(): _names(v) for k, v in self.legacy_roles.items()}
        caps = {str(t).strip().lower(): c for t, c in self.tier_preview_caps.items()}

        for role, tier in role_tiers.items():
            if tier not in tiers:
                raise CatalogConfigError(f"role '{role}' projects to unknown tier '{tier}'")
        for role, level in role_levels.items():
            if level not in levels:
                raise CatalogConfigError(f"role '{role}' projects to unknown access level '{level}'")
        authenticated_level = self.authenticated_access_level.strip().lower()
        if authenticated_level not in levels:
            raise CatalogConfigError(f"unknown authenticated access level '{authenticated_level}'")
        default_role = self.default_role.strip().lower()
        if not default_role:
            raise CatalogConfigError("default_role is required")
        for tier, cap in caps.items():
            if tier not in tiers:
                raise CatalogConfigError(f"preview cap configured for unknown tier '{tier}'")
            if cap is not None and cap < 0:
                raise CatalogConfigError(f"preview cap for tier '{tier}' must be >= 0")
        for legacy_role, mapped in legacy.items():
            if not mapped:
                raise CatalogConfigError(f"legacy role '{legacy_role}' maps to no roles")
        if not 0 < self.warn_ratio <= 1:
            raise CatalogConfigError("warn_ratio must be in (0, 1]")

        object.__setattr__(self, "tiers", tiers)
        object.__setattr__(self, "access_levels", levels)
        object.__setattr__(self, "role_permissions", MappingProxyType(role_permissions))
        object.__setattr__(self, "role_tiers", MappingProxyType(role_tiers))
        object.__setattr__(self, "role_access_levels", MappingProxyType(role_levels))
        object.__setattr__(self, "authenticated_access_level", authenticated_level)
        object.__setattr__(self, "default_role", default_role)
        object.__setattr__(self, "legacy_roles", MappingProxyType(legacy))
        object.__setattr__(self, "forum_poster_roles", _names(self.forum_poster_roles))
        object.__setattr__(self, "legacy_forum_poster_roles", _names(self.legacy_forum_poster_roles))
        object.__setattr__(self, "moderator_roles", _names(self.moderator_roles))
        object.__setattr__(self, "tier_preview_caps", MappingProxyType(caps))

    # -- Orders -------------------------------------------------------------

    @property
    def lowest_tier(self) -> str:
        return self.tiers[0]

    @property
    def lowest_access_level(self) -> str:
        return self.access_levels[0]

    def is_tier(self, value: Optional[str]) -> bool:
        return value is not None and value in self.tiers

    def is_access_level(self, value: Optional[str]) -> bool:
        return value is not None and value in self.access_levels

    def tier_rank(self, tier: str) -> int:
        try:
            return self.tiers.index(tier)
        except ValueError:
            raise ValueError(f"unknown membership tier: {tier!r}") from None

    def access_level_rank(self, level: str) -> int:
        try:
            return self.access_levels.index(level)
        except ValueError:
            raise ValueError(f"unknown access level: {level!r}") from None

    def compare_tiers(self, a: str, b: str) -> int:
        """Comparator over membership tiers: negative, zero or positive."""
        return self.tier_rank(a) - self.tier_rank(b)

    def compare_access_levels(self, a: str, b: str) -> int:
        """Comparator over article access levels: negative, zero or positive."""
        return self.access_level_rank(a) - self.access_level_rank(b)

    # -- Role projections ---------------------------------------------------

    def permissions_for(self, roles: Iterable[str]) -> FrozenSet[str]:
        permissions: set[str] = set()
        for role in _names(roles):
            permissions.update(self.role_permissions.get(role, frozenset()))
        return frozenset(permissions)

    def tier_for(self, roles: Iterable[str]) -> str:
        """Highest tier any role projects to; the lowest tier when none does."""
        best = self.lowest_tier
        for role in _names(roles):
            tier = self.role_tiers.get(role)
            if tier is not None and self.compare_tiers(tier, best) > 0:
                best = tier
        return best

    def access_level_for(self, roles: Iterable[str]) -> str:
        """Highest article access level for an authenticated role set."""
        best = self.authenticated_access_level
        for role in _names(roles):
            level = self.role_access_levels.get(role)
            if level is not None and self.compare_access_levels(level, best) > 0:
                best = level
        return best

    def roles_from_legacy(self, legacy_role: Optional[str]) -> FrozenSet[str]:
        normalized = (legacy_role or "").strip().lower()
        if not normalized:
            return frozenset()
        return self.legacy_roles.get(normalized, frozenset({self.default_role}))

    def can_post_to_forum(self, roles: Iterable[str], legacy_role: Optional[str] = None) -> bool:
        if self.forum_poster_roles.intersection(_names(roles)):
            return True
        return (legacy_role or "").strip().lower() in self.legacy_forum_poster_roles

    def can_moderate_forum(self, roles: Iterable[str]) -> bool:
        return bool(self.moderator_roles.intersection(_names(roles)))

    # -- Previews & upgrades ------------------------------------------------

    def preview_cap_for(self, tier: str) -> Optional[float]:
        return self.tier_preview_caps.get(tier)

    def recommended_upgrade(self, current: str, required: str) -> Optional[str]:
        """
        Tier to suggest to a viewer below the requirement.

        A viewer on the lowest tier facing top-tier content is pointed one
        step below the top first; everyone else is pointed at the requirement.
        """
        if self.compare_tiers(current, required) >= 0:
            return None
        if len(self.tiers) > 2 and current == self.tiers[0] and required == self.tiers[-1]:
            return self.tiers[-2]
        return required


_default_catalog: Optional[TierCatalog] = None


def default_catalog() -> TierCatalog:
    global _default_catalog
    if _default_catalog is None:
        _default_catalog = TierCatalog()
    return _default_catalog


def compare_tiers(a: str, b: str, catalog: Optional[TierCatalog] = None) -> int:
    return (catalog or default_catalog()).compare_tiers(a, b)


def compare_access_levels(a: str, b: str, catalog: Optional[TierCatalog] = None) -> int:
    return (catalog or default_catalog()).compare_access_levels(a, b)
