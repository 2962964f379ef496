"""
Tiered access control and consumption gating for content.

This package provides:
- TierCatalog / CatalogLoader: tier orders, role permissions and projections from config/access_catalog.json
- PrincipalResolver: identity -> Principal with legacy-role reconciliation and the audited override identity
- PrincipalCache: Redis-backed principal cache with explicit invalidation
- AccessDecisionEngine: pure allow / preview / deny decisions for articles, videos and forum threads
- ConsumptionMeter: time-boxed video preview accounting
- AccessRouteMiddleware: page route enforcement (redirects)
- require_access / require_roles: API guard dependencies (401/403 JSON)
- ContentAccessService: response shaping that never leaks a full body in a preview
- AccessAuditLogger: audit events for denials, previews and override identity use

Free-tier video preview: 300 seconds (configurable via preview_caps_seconds)
"""

from access_gate.audit import AccessAuditEvent, AccessAuditLogger, AuditAction
from access_gate.cache import PrincipalCache
from access_gate.catalog import TierCatalog, compare_access_levels, compare_tiers, default_catalog
from access_gate.content_service import ArticleView, ContentAccessService, VideoView, derive_preview
from access_gate.context import AccessContext
from access_gate.engine import AccessDecisionEngine, required_action_for
from access_gate.errors import (
    AccessDeniedError,
    AccessGateError,
    CatalogConfigError,
    ContentNotFound,
    ContentStoreUnavailable,
    MalformedDescriptor,
    UnresolvedIdentity,
)
from access_gate.guard import AuthorizedRequest, register_exception_handlers, require_access, require_roles
from access_gate.loader import CatalogLoader, load_catalog
from access_gate.meter import ConsumptionMeter, format_time, upgrade_message
from access_gate.middleware import AccessRouteMiddleware, ContentRouteRule, RouteRule
from access_gate.models import (
    AccessDecision,
    Action,
    ConsumptionState,
    ContentDescriptor,
    ContentKind,
    Principal,
    RawIdentity,
    Reason,
    RequiredAction,
)
from access_gate.resolver import PrincipalResolver
from access_gate.settings import GateSettings

__all__ = [
    # Catalog
    "TierCatalog",
    "CatalogLoader",
    "load_catalog",
    "default_catalog",
    "compare_tiers",
    "compare_access_levels",
    # Models
    "AccessDecision",
    "Action",
    "ConsumptionState",
    "ContentDescriptor",
    "ContentKind",
    "Principal",
    "RawIdentity",
    "Reason",
    "RequiredAction",
    # Resolution
    "PrincipalResolver",
    "PrincipalCache",
    "GateSettings",
    # Decisions
    "AccessDecisionEngine",
    "required_action_for",
    "ConsumptionMeter",
    "format_time",
    "upgrade_message",
    # Surfaces
    "AccessContext",
    "AccessRouteMiddleware",
    "RouteRule",
    "ContentRouteRule",
    "AuthorizedRequest",
    "require_access",
    "require_roles",
    "register_exception_handlers",
    "ContentAccessService",
    "ArticleView",
    "VideoView",
    "derive_preview",
    # Audit
    "AccessAuditLogger",
    "AccessAuditEvent",
    "AuditAction",
    # Errors
    "AccessGateError",
    "AccessDeniedError",
    "CatalogConfigError",
    "ContentNotFound",
    "ContentStoreUnavailable",
    "MalformedDescriptor",
    "UnresolvedIdentity",
]
