"""
API guard dependencies.

FastAPI dependencies that block access when the engine denies a request.
Every gated API route declares the (resource, action) pair it serves:

    @router.get("/articles/{content_id}")
    def get_article(access: AuthorizedRequest = Depends(require_access(ContentKind.ARTICLE))):
        ...

Outcomes:
- full or preview access: the handler receives an AuthorizedRequest
- denied: 401 (not_authenticated) or 403 with {error, reason, requiredAction}
- unknown content id: 404 content_not_found, never folded into a denial
- identity or content store failure: 503
"""

import logging
from dataclasses import dataclass
from typing import Callable, Optional

from fastapi import Depends, FastAPI, Request
from fastapi.responses import JSONResponse

from access_gate.context import AccessContext, get_access_context
from access_gate.errors import AccessDeniedError, AccessGateError
from access_gate.models import (
    AccessDecision,
    Action,
    ConsumptionState,
    ContentDescriptor,
    ContentKind,
    Principal,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class AuthorizedRequest:
    """What a guarded handler receives once the engine lets the request through."""

    principal: Optional[Principal]
    decision: AccessDecision
    descriptor: Optional[ContentDescriptor] = None
    consumption: Optional[ConsumptionState] = None

    @property
    def is_preview(self) -> bool:
        return self.decision.is_preview


def get_principal(
    request: Request,
    context: AccessContext = Depends(get_access_context),
) -> Optional[Principal]:
    """Resolved principal for this request, or None for anonymous callers."""
    return context.resolver.resolve_request(request)


def require_access(
    resource: ContentKind,
    action: Action = Action.READ,
    *,
    id_param: str = "content_id",
) -> Callable:
    """
    Dependency factory guarding one content resource.

    Args:
        resource: Content kind the route serves
        action: Action the route performs on it
        id_param: Path parameter carrying the content id

    Returns:
        FastAPI dependency returning an AuthorizedRequest or raising
        AccessDeniedError / ContentNotFound / a 503 error

    Raises:
        ValueError: if the action is not valid for the content kind
    """
    kind = ContentKind(resource)
    action = Action(action)
    if kind is not ContentKind.FORUM_THREAD and action is not Action.READ:
        raise ValueError(f"{kind.value} content only supports the read action, got {action.value!r}")

    def _check(
        request: Request,
        context: AccessContext = Depends(get_access_context),
    ) -> AuthorizedRequest:
        principal = context.resolver.resolve_request(request)
        content_id = request.path_params.get(id_param)
        if content_id is None:
            raise RuntimeError(f"route has no path parameter named '{id_param}'")

        descriptor = context.content_store.load_content_descriptor(kind, content_id)
        consumption = context.load_consumption(principal, descriptor)
        decision = context.engine.decide(principal, descriptor, consumption, action=action)

        principal_id = principal.id if principal is not None else None
        if decision.blocked:
            logger.warning(
                "API access denied",
                extra={
                    "principal_id": principal_id,
                    "content_kind": kind.value,
                    "content_id": descriptor.id,
                    "access_action": action.value,
                    "reason": decision.reason.value if decision.reason else None,
                },
            )
            context.audit.log_access_denied(
                principal_id=principal_id,
                resource_type=kind.value,
                resource_id=descriptor.id,
                reason=decision.reason.value if decision.reason else None,
                required_action=decision.required_action.value if decision.required_action else None,
                surface="api_guard",
                path=request.url.path,
            )
            raise AccessDeniedError(decision)

        if decision.is_preview:
            context.audit.log_preview_granted(
                principal_id=principal_id,
                resource_type=kind.value,
                resource_id=descriptor.id,
                surface="api_guard",
            )
        return AuthorizedRequest(
            principal=principal,
            decision=decision,
            descriptor=descriptor,
            consumption=consumption,
        )

    return _check


def require_roles(*roles: str, permissions: tuple = ()) -> Callable:
    """
    Dependency requiring one of the given roles or permissions.

    Use on routes that are not tied to a content item, e.g. the admin panel:
    Depends(require_roles("admin", "super_admin"))
    """

    def _check(
        request: Request,
        context: AccessContext = Depends(get_access_context),
    ) -> AuthorizedRequest:
        principal = context.resolver.resolve_request(request)
        decision = context.engine.decide_roles(principal, roles, required_permissions=permissions)
        if decision.blocked:
            logger.warning(
                "API access denied: none of [%s] held",
                ",".join(roles + tuple(permissions)),
                extra={"principal_id": principal.id if principal is not None else None},
            )
            context.audit.log_access_denied(
                principal_id=principal.id if principal is not None else None,
                resource_type="route",
                resource_id=request.url.path,
                reason=decision.reason.value if decision.reason else None,
                required_action=decision.required_action.value if decision.required_action else None,
                surface="api_guard",
                path=request.url.path,
            )
            raise AccessDeniedError(decision)
        return AuthorizedRequest(principal=principal, decision=decision)

    return _check


async def _access_gate_error_handler(request: Request, exc: AccessGateError) -> JSONResponse:
    level = logging.ERROR if exc.http_status >= 500 else logging.INFO
    logger.log(
        level,
        "Access gate error",
        extra={
            "error_code": exc.error_code,
            "status_code": exc.http_status,
            "path": request.url.path,
            "method": request.method,
        },
    )
    return JSONResponse(status_code=exc.http_status, content=exc.to_dict())


def register_exception_handlers(app: FastAPI) -> None:
    """Render every AccessGateError as JSON with its own status and body."""
    app.add_exception_handler(AccessGateError, _access_gate_error_handler)
