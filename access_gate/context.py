"""
Shared wiring for the enforcement surfaces.

The route middleware, the API guard and the content service all read the
same AccessContext, so they resolve principals with the same resolver and
decide with the same engine.
"""

import logging
from dataclasses import dataclass, field
from typing import Optional

from starlette.requests import Request

from access_gate.audit import AccessAuditLogger
from access_gate.cache import PrincipalCache
from access_gate.catalog import TierCatalog
from access_gate.content_service import ContentAccessService
from access_gate.engine import AccessDecisionEngine
from access_gate.loader import load_catalog
from access_gate.meter import ConsumptionMeter
from access_gate.models import ConsumptionState, ContentDescriptor, ContentKind, Principal
from access_gate.resolver import PrincipalResolver
from access_gate.settings import GateSettings
from access_gate.stores import (
    ConsumptionStore,
    ContentStore,
    IdentityStore,
    InMemoryConsumptionStore,
)

logger = logging.getLogger(__name__)

APP_STATE_KEY = "access_context"


@dataclass
class AccessContext:
    settings: GateSettings
    catalog: TierCatalog
    resolver: PrincipalResolver
    engine: AccessDecisionEngine
    content_store: ContentStore
    consumption_store: ConsumptionStore
    audit: AccessAuditLogger
    content_service: ContentAccessService = field(init=False)

    def __post_init__(self) -> None:
        self.content_service = ContentAccessService(
            engine=self.engine,
            content_store=self.content_store,
            consumption_store=self.consumption_store,
            audit=self.audit,
            sign_in_path=self.settings.sign_in_path,
        )

    @classmethod
    def build(
        cls,
        *,
        identity_store: IdentityStore,
        content_store: ContentStore,
        consumption_store: Optional[ConsumptionStore] = None,
        settings: Optional[GateSettings] = None,
        catalog: Optional[TierCatalog] = None,
        audit: Optional[AccessAuditLogger] = None,
        principal_cache: Optional[PrincipalCache] = None,
    ) -> "AccessContext":
        settings = settings or GateSettings.from_env()
        catalog = catalog or load_catalog(settings.catalog_path)
        audit = audit or AccessAuditLogger()

        if principal_cache is None and settings.principal_cache_ttl > 0:
            principal_cache = PrincipalCache(
                redis_url=settings.redis_url,
                ttl_seconds=settings.principal_cache_ttl,
            )
            if not principal_cache.is_shared:
                # Invalidation events only reach a Redis-backed cache.
                raise ValueError(
                    "ACCESS_PRINCIPAL_CACHE_TTL > 0 requires a reachable REDIS_URL"
                )

        resolver = PrincipalResolver(
            identity_store,
            catalog=catalog,
            settings=settings,
            cache=principal_cache,
            audit=audit,
        )
        engine = AccessDecisionEngine(catalog, ConsumptionMeter(catalog))

        logger.info(
            "Access gate configured",
            extra={
                "tiers": list(catalog.tiers),
                "access_levels": list(catalog.access_levels),
                "principal_cache": principal_cache is not None,
                "override_identity_configured": settings.override_email is not None,
            },
        )
        return cls(
            settings=settings,
            catalog=catalog,
            resolver=resolver,
            engine=engine,
            content_store=content_store,
            consumption_store=consumption_store or InMemoryConsumptionStore(),
            audit=audit,
        )

    def load_consumption(
        self,
        principal: Optional[Principal],
        descriptor: ContentDescriptor,
    ) -> Optional[ConsumptionState]:
        """Progress for video content; None for anonymous callers and other kinds."""
        if principal is None or descriptor.kind is not ContentKind.VIDEO:
            return None
        return self.consumption_store.load_consumption(principal.id, descriptor.id)


def get_access_context(request: Request) -> AccessContext:
    context = getattr(request.app.state, APP_STATE_KEY, None)
    if context is None:
        raise RuntimeError("Access gate is not configured on this application")
    return context
