"""
Principal resolution.

Turns an authenticated identity into a normalized Principal:

1. Structured role assignments from the identity store.
2. If none, the legacy single-role field mapped through the catalog.
   Structured roles always win when both exist.
3. The configured override identity is forced to admin, and every use is audited.
4. Membership tier is projected from the role set (highest projection wins).

Identity-store failures raise UnresolvedIdentity. They are never treated
as "signed out".
"""

import logging
from typing import Optional, Set

from starlette.requests import Request

from access_gate.audit import AccessAuditLogger
from access_gate.cache import PrincipalCache
from access_gate.catalog import TierCatalog, default_catalog
from access_gate.errors import UnresolvedIdentity
from access_gate.models import ADMIN_ROLE, Principal, RawIdentity
from access_gate.settings import GateSettings
from access_gate.stores import IdentityStore

logger = logging.getLogger(__name__)

TOKEN_COOKIE_NAME = "access_token"
_REQUEST_STATE_KEY = "access_principal"


def extract_token(request: Request) -> Optional[str]:
    """Bearer token from the Authorization header, falling back to the session cookie."""
    auth_header = (request.headers.get("Authorization") or "").strip()
    if auth_header:
        parts = auth_header.split()
        if len(parts) == 2 and parts[0].lower() == "bearer" and parts[1].strip():
            return parts[1].strip()
        return None
    cookie = (request.cookies.get(TOKEN_COOKIE_NAME) or "").strip()
    return cookie or None


class PrincipalResolver:
    """Read-through principal resolution with optional cross-request cache."""

    def __init__(
        self,
        identity_store: IdentityStore,
        *,
        catalog: Optional[TierCatalog] = None,
        settings: Optional[GateSettings] = None,
        cache: Optional[PrincipalCache] = None,
        audit: Optional[AccessAuditLogger] = None,
    ) -> None:
        self._store = identity_store
        self._catalog = catalog or default_catalog()
        self._settings = settings or GateSettings()
        self._cache = cache
        self._audit = audit or AccessAuditLogger()

    @property
    def catalog(self) -> TierCatalog:
        return self._catalog

    def resolve(self, identity: Optional[RawIdentity]) -> Optional[Principal]:
        """Resolve an identity. None means anonymous browsing."""
        if identity is None:
            return None

        if self._cache is not None:
            try:
                cached = self._cache.get(identity.id)
            except Exception as e:
                logger.warning(
                    "Principal cache read failed",
                    extra={"principal_id": identity.id, "error": str(e)},
                )
                cached = None
            if cached is not None:
                if cached.override_identity:
                    self._audit.log_override_identity_used(principal_id=cached.id, email=cached.email)
                return cached

        principal = self._compute(identity)

        if self._cache is not None:
            try:
                self._cache.set(principal)
            except Exception as e:
                logger.warning(
                    "Principal cache write failed",
                    extra={"principal_id": principal.id, "error": str(e)},
                )
        return principal

    def resolve_token(self, token: Optional[str]) -> Optional[Principal]:
        if not token:
            return None
        try:
            identity = self._store.resolve_identity(token)
        except UnresolvedIdentity:
            raise
        except Exception as exc:
            logger.error("Identity lookup failed", extra={"error": str(exc)})
            raise UnresolvedIdentity(None, "token lookup failed", cause=exc) from exc
        if identity is None:
            logger.debug("Unknown token treated as anonymous")
        return self.resolve(identity)

    def resolve_request(self, request: Request) -> Optional[Principal]:
        """Resolve once per request; later calls reuse the result on request.state."""
        state = request.state
        if hasattr(state, _REQUEST_STATE_KEY):
            return getattr(state, _REQUEST_STATE_KEY)
        principal = self.resolve_token(extract_token(request))
        setattr(state, _REQUEST_STATE_KEY, principal)
        return principal

    def invalidate(self, principal_id: str) -> None:
        """Explicit signal that roles or tier changed for this principal."""
        if self._cache is not None:
            self._cache.invalidate(principal_id)
        self._audit.log_principal_invalidated(principal_id=principal_id, source="resolver")

    def _compute(self, identity: RawIdentity) -> Principal:
        legacy_role: Optional[str] = None
        try:
            roles: Set[str] = {
                str(r).strip().lower() for r in self._store.get_role_assignments(identity.id)
                if str(r).strip()
            }
            if not roles:
                legacy_role = self._store.get_legacy_role(identity.id)
                roles = set(self._catalog.roles_from_legacy(legacy_role))
        except UnresolvedIdentity:
            raise
        except Exception as exc:
            logger.error(
                "Role lookup failed",
                extra={"principal_id": identity.id, "error": str(exc)},
            )
            raise UnresolvedIdentity(identity.id, "role lookup failed", cause=exc) from exc

        override = self._settings.is_override_email(identity.email)
        if override:
            roles.add(ADMIN_ROLE)
            self._audit.log_override_identity_used(principal_id=identity.id, email=identity.email)

        if not roles:
            roles = {self._catalog.default_role}

        return Principal(
            id=identity.id,
            email=identity.email,
            roles=frozenset(roles),
            membership_tier=self._catalog.tier_for(roles),
            permissions=self._catalog.permissions_for(roles),
            override_identity=override,
            legacy_role=(legacy_role or "").strip().lower() or None,
        )
