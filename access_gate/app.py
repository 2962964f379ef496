"""
FastAPI application factory.

Wires one AccessContext into every enforcement surface:
- AccessRouteMiddleware for page routes
- require_access / require_roles dependencies for the API
- ContentAccessService for response bodies
"""

import logging
from typing import Optional, Sequence

from fastapi import FastAPI

from access_gate.audit import AccessAuditLogger
from access_gate.context import APP_STATE_KEY, AccessContext
from access_gate.guard import register_exception_handlers
from access_gate.middleware import (
    DEFAULT_CONTENT_RULES,
    DEFAULT_ROUTE_RULES,
    AccessRouteMiddleware,
    ContentRouteRule,
    RouteRule,
)
from access_gate.routes import pages_router, router
from access_gate.settings import GateSettings
from access_gate.stores import ConsumptionStore, ContentStore, IdentityStore

logger = logging.getLogger(__name__)


def create_app(
    *,
    identity_store: IdentityStore,
    content_store: ContentStore,
    consumption_store: Optional[ConsumptionStore] = None,
    settings: Optional[GateSettings] = None,
    context: Optional[AccessContext] = None,
    audit: Optional[AccessAuditLogger] = None,
    route_rules: Sequence[RouteRule] = DEFAULT_ROUTE_RULES,
    content_rules: Sequence[ContentRouteRule] = DEFAULT_CONTENT_RULES,
) -> FastAPI:
    """
    Build the application.

    Args:
        identity_store: Token and role lookups
        content_store: Content descriptor lookups
        consumption_store: Video progress store (in-memory when omitted)
        settings: Static configuration (read from the environment when omitted)
        context: Prebuilt wiring; overrides the stores and settings above
        audit: Audit logger shared by all surfaces
        route_rules: Role-only page rules for the middleware
        content_rules: Content page rules for the middleware
    """
    if context is None:
        context = AccessContext.build(
            identity_store=identity_store,
            content_store=content_store,
            consumption_store=consumption_store,
            settings=settings,
            audit=audit,
        )

    app = FastAPI(title="Access Gate")
    setattr(app.state, APP_STATE_KEY, context)
    app.add_middleware(
        AccessRouteMiddleware,
        context=context,
        route_rules=route_rules,
        content_rules=content_rules,
    )
    register_exception_handlers(app)
    app.include_router(router)
    app.include_router(pages_router)

    logger.info(
        "Access gate application created",
        extra={
            "route_rules": [r.prefix for r in route_rules],
            "content_rules": [r.pattern for r in content_rules],
        },
    )
    return app
