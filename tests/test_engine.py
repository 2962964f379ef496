from __future__ import annotations

import itertools
import math

import pytest

from access_gate.catalog import TierCatalog
from access_gate.engine import AccessDecisionEngine, required_action_for
from access_gate.errors import MalformedDescriptor
from access_gate.models import (
    Action,
    ConsumptionState,
    ContentDescriptor,
    ContentKind,
    Principal,
    Reason,
    RequiredAction,
)
from factories import article, thread, video


def _watched(seconds, principal_id="user-1", content_id="video-1"):
    return ConsumptionState(principal_id=principal_id, content_id=content_id, watched_seconds=seconds)


# -- Articles ---------------------------------------------------------------

def test_anonymous_free_article_is_allowed(engine):
    decision = engine.decide(None, article(level="free"))
    assert decision.allowed is True
    assert decision.reason is None


def test_anonymous_partial_article_is_preview_with_sign_in(engine):
    decision = engine.decide(None, article(level="partial"))
    assert decision.allowed is False
    assert decision.preview_allowed is True
    assert decision.reason is Reason.NOT_AUTHENTICATED
    assert decision.required_action is RequiredAction.SIGN_IN


def test_anonymous_premium_article_is_blocked(engine):
    decision = engine.decide(None, article(level="premium"))
    assert decision.blocked
    assert decision.reason is Reason.NOT_AUTHENTICATED


def test_authenticated_user_reads_partial_but_only_previews_premium(engine, make_principal):
    user = make_principal(roles=("user",))
    assert engine.decide(user, article(level="partial")).allowed is True

    decision = engine.decide(user, article(level="premium"))
    assert decision.allowed is False
    assert decision.preview_allowed is True
    assert decision.reason is Reason.INSUFFICIENT_ROLE
    assert decision.required_action is RequiredAction.UPGRADE


@pytest.mark.parametrize("role", ["premium_user", "admin", "super_admin"])
def test_premium_roles_read_premium_articles(engine, make_principal, role):
    assert engine.decide(make_principal(roles=(role,)), article(level="premium")).allowed is True


def test_lower_role_never_masks_higher_role(engine, make_principal):
    principal = make_principal(roles=("user", "premium_user"))
    assert engine.decide(principal, article(level="premium")).allowed is True


def test_video_tier_does_not_imply_article_access():
    custom = TierCatalog(role_tiers={"video_pass": "enterprise"})
    engine = AccessDecisionEngine(custom)
    holder = Principal(id="u1", roles=frozenset({"video_pass"}), membership_tier=custom.tier_for({"video_pass"}))
    assert holder.membership_tier == "enterprise"
    assert engine.decide(holder, video(tier="enterprise")).allowed is True
    assert engine.decide(holder, article(level="premium")).allowed is False


# -- Videos -----------------------------------------------------------------

def test_premium_user_below_required_tier_gets_preview(engine, make_principal):
    principal = make_principal(roles=("premium_user",))
    decision = engine.decide(principal, video(tier="enterprise", cap=300))
    assert decision.allowed is False
    assert decision.preview_allowed is True
    assert decision.reason is Reason.INSUFFICIENT_TIER
    assert decision.required_action is RequiredAction.UPGRADE
    assert decision.recommended_tier == "enterprise"


def test_watch_time_inside_cap_grants_temporary_full_access(engine, make_principal):
    principal = make_principal(roles=("premium_user",))
    decision = engine.decide(principal, video(tier="enterprise", cap=300), _watched(120))
    assert decision.allowed is True
    assert decision.remaining_seconds == 180
    assert decision.should_warn is False


def test_watch_time_past_cap_is_exhausted(engine, make_principal):
    principal = make_principal(roles=("premium_user",))
    decision = engine.decide(principal, video(tier="enterprise", cap=300), _watched(301))
    assert decision.allowed is False
    assert decision.preview_allowed is False
    assert decision.reason is Reason.PREVIEW_EXHAUSTED
    assert decision.required_action is RequiredAction.UPGRADE
    assert decision.remaining_seconds == 0


def test_exactly_at_cap_is_exhausted(engine, make_principal):
    principal = make_principal(roles=("user",))
    decision = engine.decide(principal, video(tier="premium", cap=300), _watched(300))
    assert decision.reason is Reason.PREVIEW_EXHAUSTED
    assert decision.should_warn is True


def test_warning_inside_last_fifth_of_cap(engine, make_principal):
    principal = make_principal(roles=("user",))
    decision = engine.decide(principal, video(tier="premium", cap=300), _watched(240))
    assert decision.allowed is True
    assert decision.should_warn is True


def test_video_without_cap_offers_no_preview(engine, make_principal):
    decision = engine.decide(make_principal(roles=("user",)), video(tier="premium", cap=None), _watched(10))
    assert decision.blocked
    assert decision.reason is Reason.INSUFFICIENT_TIER


def test_sufficient_tier_is_unbounded(engine, make_principal):
    principal = make_principal(roles=("admin",))
    decision = engine.decide(principal, video(tier="enterprise", cap=300), _watched(10_000))
    assert decision.allowed is True
    assert math.isinf(decision.remaining_seconds)
    assert decision.recommended_tier is None


def test_anonymous_video_preview_requires_sign_in(engine):
    decision = engine.decide(None, video(tier="basic", cap=300))
    assert decision.allowed is False
    assert decision.preview_allowed is True
    assert decision.reason is Reason.NOT_AUTHENTICATED
    assert decision.required_action is RequiredAction.SIGN_IN
    assert engine.decide(None, video(tier="free")).allowed is True


def test_upgrade_lifts_cap_without_touching_counter(engine, make_principal):
    watched = _watched(500)
    before = engine.decide(make_principal(roles=("user",)), video(tier="premium"), watched)
    after = engine.decide(make_principal(roles=("premium_user",)), video(tier="premium"), watched)
    assert before.reason is Reason.PREVIEW_EXHAUSTED
    assert after.allowed is True
    assert watched.watched_seconds == 500


# -- Forum ------------------------------------------------------------------

def test_forum_reading_is_public(engine):
    assert engine.decide(None, thread()).allowed is True


def test_forum_posting_requires_poster_role(engine, make_principal):
    anonymous = engine.decide(None, thread(), action=Action.WRITE)
    assert anonymous.blocked
    assert anonymous.reason is Reason.NOT_AUTHENTICATED

    plain = engine.decide(make_principal(roles=("user",)), thread(), action=Action.WRITE)
    assert plain.blocked
    assert plain.reason is Reason.INSUFFICIENT_ROLE

    premium = engine.decide(make_principal(roles=("premium_user",)), thread(), action=Action.WRITE)
    assert premium.allowed is True


def test_legacy_paid_role_can_post(engine, make_principal):
    principal = make_principal(roles=("paid",), legacy_role="paid")
    assert engine.decide(principal, thread(), action="write").allowed is True


def test_moderation_requires_moderator_role(engine, make_principal):
    assert engine.decide(make_principal(roles=("admin",)), thread(), action=Action.MODERATE).allowed
    assert engine.decide(make_principal(roles=("premium_user",)), thread(), action=Action.MODERATE).blocked


# -- Coarse route checks ----------------------------------------------------

def test_decide_roles(engine, make_principal):
    assert engine.decide_roles(None, ()).reason is Reason.NOT_AUTHENTICATED
    assert engine.decide_roles(make_principal(), ()).allowed is True
    assert engine.decide_roles(make_principal(), ("admin",)).reason is Reason.INSUFFICIENT_ROLE
    assert engine.decide_roles(make_principal(roles=("admin",)), ("admin",)).allowed is True
    assert engine.decide_roles(
        make_principal(roles=("super_admin",)), (), required_permissions=("admin_panel:access",)
    ).allowed is True


def test_decide_many_keeps_input_order(engine):
    descriptors = [article("a1", "free"), article("a2", "partial"), article("a3", "premium")]
    decisions = engine.decide_many(None, descriptors)
    assert [d.allowed for d in decisions] == [True, False, False]
    assert [d.preview_allowed for d in decisions] == [True, True, False]


# -- Reasons and malformed input --------------------------------------------

def test_required_action_mapping():
    assert required_action_for(Reason.NOT_AUTHENTICATED) is RequiredAction.SIGN_IN
    assert required_action_for(Reason.INSUFFICIENT_TIER) is RequiredAction.UPGRADE
    assert required_action_for(Reason.INSUFFICIENT_ROLE) is RequiredAction.UPGRADE
    assert required_action_for(Reason.PREVIEW_EXHAUSTED, ContentKind.VIDEO) is RequiredAction.UPGRADE
    assert required_action_for(Reason.PREVIEW_EXHAUSTED, ContentKind.ARTICLE) is None
    assert required_action_for(Reason.CONTENT_NOT_FOUND) is None
    assert required_action_for(None) is None


@pytest.mark.parametrize(
    "descriptor",
    [
        ContentDescriptor(id="a", kind=ContentKind.ARTICLE),
        ContentDescriptor(id="a", kind=ContentKind.ARTICLE, access_level="enterprise"),
        ContentDescriptor(id="v", kind=ContentKind.VIDEO, preview_cap_seconds=300),
        ContentDescriptor(id="v", kind=ContentKind.VIDEO, required_tier="partial"),
    ],
)
def test_descriptor_missing_gating_dimension_is_malformed(engine, descriptor):
    with pytest.raises(MalformedDescriptor):
        engine.decide(None, descriptor)


# -- Monotonicity -----------------------------------------------------------

ROLE_SETS = [("user",), ("paid",), ("premium_user",), ("admin",), ("super_admin",), ("user", "premium_user")]
DESCRIPTORS = [
    article(level="free"), article(level="partial"), article(level="premium"),
    video(tier="free"), video(tier="basic"), video(tier="premium"), video(tier="enterprise"),
    video(tier="enterprise", cap=None),
]


def _dominates(catalog, a, b):
    return (
        catalog.compare_tiers(a.membership_tier, b.membership_tier) >= 0
        and catalog.compare_access_levels(
            catalog.access_level_for(a.roles), catalog.access_level_for(b.roles)
        ) >= 0
    )


@pytest.mark.parametrize("consumption", [None, 0.0, 150.0, 400.0])
def test_dominating_principal_is_allowed_whenever_dominated_one_is(engine, catalog, make_principal, consumption):
    principals = [make_principal(roles=roles) for roles in ROLE_SETS]
    candidates = [None] + principals
    for descriptor in DESCRIPTORS:
        state = None if consumption is None else _watched(consumption, content_id=descriptor.id)
        for a, b in itertools.product(principals, candidates):
            if b is not None and not _dominates(catalog, a, b):
                continue
            b_state = state if b is not None else None
            if engine.decide(b, descriptor, b_state).allowed:
                assert engine.decide(a, descriptor, state).allowed, (a.roles, b, descriptor)


@pytest.mark.parametrize("descriptor", [article(level="free"), video(tier="free", cap=None)])
@pytest.mark.parametrize("action", [Action.WRITE, Action.MODERATE])
def test_articles_and_videos_are_read_only(engine, make_principal, descriptor, action):
    decision = engine.decide(make_principal(roles=("super_admin",)), descriptor, action=action)
    assert decision.blocked
    assert decision.reason is Reason.INSUFFICIENT_ROLE
    assert decision.required_action is None
