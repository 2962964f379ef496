"""
Access decision engine.

Pure and synchronous: no I/O, no shared mutable state. All lookups
(principal, descriptor, consumption) happen at the enforcement surfaces
before decide() is called.

decide() is total for well-formed descriptors. The only exception it raises
is MalformedDescriptor, when the descriptor is missing the gating dimension
for its kind or names a tier/level the catalog does not know.
"""

from typing import Iterable, List, Mapping, Optional

from access_gate.catalog import TierCatalog, default_catalog
from access_gate.errors import MalformedDescriptor
from access_gate.meter import ConsumptionMeter
from access_gate.models import (
    AccessDecision,
    Action,
    ConsumptionState,
    ContentDescriptor,
    ContentKind,
    Principal,
    Reason,
    RequiredAction,
)

_REQUIRED_ACTIONS = {
    Reason.NOT_AUTHENTICATED: RequiredAction.SIGN_IN,
    Reason.INSUFFICIENT_TIER: RequiredAction.UPGRADE,
    Reason.INSUFFICIENT_ROLE: RequiredAction.UPGRADE,
}


def required_action_for(reason: Optional[Reason], kind: Optional[ContentKind] = None) -> Optional[RequiredAction]:
    """
    Closed mapping from denial reason to the action that would lift it.

    preview_exhausted only asks for an upgrade on time-boxed content; article
    previews never expire. content_not_found is not a gating outcome.
    """
    if reason is None or reason is Reason.CONTENT_NOT_FOUND:
        return None
    if reason is Reason.PREVIEW_EXHAUSTED:
        return RequiredAction.UPGRADE if kind is ContentKind.VIDEO else None
    return _REQUIRED_ACTIONS[reason]


class AccessDecisionEngine:
    def __init__(
        self,
        catalog: Optional[TierCatalog] = None,
        meter: Optional[ConsumptionMeter] = None,
    ) -> None:
        self._catalog = catalog or default_catalog()
        self._meter = meter or ConsumptionMeter(self._catalog)

    @property
    def catalog(self) -> TierCatalog:
        return self._catalog

    @property
    def meter(self) -> ConsumptionMeter:
        return self._meter

    def decide(
        self,
        principal: Optional[Principal],
        descriptor: ContentDescriptor,
        consumption: Optional[ConsumptionState] = None,
        *,
        action: Action = Action.READ,
    ) -> AccessDecision:
        action = Action(action)
        if descriptor.kind is not ContentKind.FORUM_THREAD and action is not Action.READ:
            # Articles and videos are read-only.
            return AccessDecision(
                allowed=False,
                preview_allowed=False,
                level=None,
                reason=Reason.INSUFFICIENT_ROLE,
                required_action=None,
            )
        if descriptor.kind is ContentKind.ARTICLE:
            return self._decide_article(principal, descriptor)
        if descriptor.kind is ContentKind.VIDEO:
            return self._decide_video(principal, descriptor, consumption)
        if descriptor.kind is ContentKind.FORUM_THREAD:
            return self._decide_forum(principal, action)
        raise MalformedDescriptor(descriptor.id, f"unsupported content kind {descriptor.kind!r}")

    def decide_many(
        self,
        principal: Optional[Principal],
        descriptors: Iterable[ContentDescriptor],
        consumptions: Optional[Mapping[str, ConsumptionState]] = None,
    ) -> List[AccessDecision]:
        """Decisions for a listing, in input order."""
        consumptions = consumptions or {}
        return [self.decide(principal, d, consumptions.get(d.id)) for d in descriptors]

    def decide_roles(
        self,
        principal: Optional[Principal],
        required_roles: Iterable[str] = (),
        *,
        required_permissions: Iterable[str] = (),
    ) -> AccessDecision:
        """
        Coarse role check for routes that are themselves the content.

        With no roles or permissions required, any authenticated principal
        passes. Otherwise one matching role or one matching permission is
        enough.
        """
        if principal is None:
            return self._deny(Reason.NOT_AUTHENTICATED, level=None)

        roles = list(required_roles)
        permissions = list(required_permissions)
        if not roles and not permissions:
            return AccessDecision(allowed=True, preview_allowed=True, level=None)
        if principal.has_any_role(roles) or any(principal.has_permission(p) for p in permissions):
            return AccessDecision(allowed=True, preview_allowed=True, level=None)
        return self._deny(Reason.INSUFFICIENT_ROLE, level=None)

    def recommended_upgrade(self, current: str, required: str) -> Optional[str]:
        return self._catalog.recommended_upgrade(current, required)

    # -- Branches -----------------------------------------------------------

    def _decide_article(self, principal: Optional[Principal], descriptor: ContentDescriptor) -> AccessDecision:
        level = descriptor.access_level
        if not self._catalog.is_access_level(level):
            raise MalformedDescriptor(descriptor.id, f"article access level {level!r} is not in the catalog")

        if principal is None:
            allowed = level == self._catalog.lowest_access_level
            if allowed:
                return AccessDecision(allowed=True, preview_allowed=True, level=level)
            top_level = self._catalog.access_levels[-1]
            return self._deny(
                Reason.NOT_AUTHENTICATED,
                level=level,
                kind=ContentKind.ARTICLE,
                preview_allowed=level != top_level,
            )

        effective = self._catalog.access_level_for(principal.roles)
        if self._catalog.compare_access_levels(effective, level) >= 0:
            return AccessDecision(allowed=True, preview_allowed=True, level=level)
        return self._deny(
            Reason.INSUFFICIENT_ROLE,
            level=level,
            kind=ContentKind.ARTICLE,
            preview_allowed=True,
        )

    def _decide_video(
        self,
        principal: Optional[Principal],
        descriptor: ContentDescriptor,
        consumption: Optional[ConsumptionState],
    ) -> AccessDecision:
        required = descriptor.required_tier
        if not self._catalog.is_tier(required):
            raise MalformedDescriptor(descriptor.id, f"video required tier {required!r} is not in the catalog")

        tier = principal.membership_tier if principal is not None else self._catalog.lowest_tier
        if not self._catalog.is_tier(tier):
            tier = self._catalog.lowest_tier

        remaining = self._meter.remaining(descriptor, consumption, tier)
        should_warn = self._meter.should_warn(descriptor, consumption, tier)

        if self._catalog.compare_tiers(tier, required) >= 0:
            return AccessDecision(
                allowed=True,
                preview_allowed=True,
                level=required,
                remaining_seconds=remaining,
            )

        recommended = self._catalog.recommended_upgrade(tier, required)
        cap = descriptor.preview_cap_seconds

        if cap is not None and consumption is not None:
            if consumption.watched_seconds < cap:
                # Inside the cap: temporary full access, not a truncated body.
                return AccessDecision(
                    allowed=True,
                    preview_allowed=True,
                    level=required,
                    remaining_seconds=remaining,
                    should_warn=should_warn,
                    recommended_tier=recommended,
                )
            return self._deny(
                Reason.PREVIEW_EXHAUSTED,
                level=required,
                kind=ContentKind.VIDEO,
                remaining_seconds=0.0,
                should_warn=should_warn,
                recommended_tier=recommended,
            )

        reason = Reason.NOT_AUTHENTICATED if principal is None else Reason.INSUFFICIENT_TIER
        return self._deny(
            reason,
            level=required,
            kind=ContentKind.VIDEO,
            preview_allowed=cap is not None,
            remaining_seconds=remaining if cap is not None else None,
            should_warn=should_warn,
            recommended_tier=recommended,
        )

    def _decide_forum(self, principal: Optional[Principal], action: Action) -> AccessDecision:
        if action is Action.READ:
            return AccessDecision(allowed=True, preview_allowed=True, level=None)
        if principal is None:
            return self._deny(Reason.NOT_AUTHENTICATED, level=None, kind=ContentKind.FORUM_THREAD)

        if action is Action.MODERATE:
            allowed = self._catalog.can_moderate_forum(principal.roles)
        else:
            allowed = self._catalog.can_post_to_forum(principal.roles, principal.legacy_role)
        if allowed:
            return AccessDecision(allowed=True, preview_allowed=True, level=None)
        return self._deny(Reason.INSUFFICIENT_ROLE, level=None, kind=ContentKind.FORUM_THREAD)

    @staticmethod
    def _deny(
        reason: Reason,
        *,
        level: Optional[str],
        kind: Optional[ContentKind] = None,
        preview_allowed: bool = False,
        remaining_seconds: Optional[float] = None,
        should_warn: bool = False,
        recommended_tier: Optional[str] = None,
    ) -> AccessDecision:
        return AccessDecision(
            allowed=False,
            preview_allowed=preview_allowed,
            level=level,
            reason=reason,
            required_action=required_action_for(reason, kind),
            remaining_seconds=remaining_seconds,
            should_warn=should_warn,
            recommended_tier=recommended_tier,
        )
