"""
Route middleware for page-level access enforcement.

Runs before the page handler. Two kinds of rules:
- RouteRule: path prefix guarded by role membership only (the route itself
  is the content), e.g. /admin or /dashboard.
- ContentRouteRule: path pattern naming a content item; the descriptor is
  loaded and the full decision engine runs.

On deny the middleware redirects and never lets the page body render:
- anonymous callers go to the sign-in page with ?redirect=<path>
- principals lacking a role or tier go to the landing page

Full or preview access lets the request through with the decision on
request.state.access_decision. Identity or content store failures return
503 and are never turned into a redirect.
"""

import logging
import re
from dataclasses import dataclass
from typing import Callable, Optional, Sequence, Tuple
from urllib.parse import urlencode

from fastapi import Request, status
from fastapi.responses import JSONResponse, RedirectResponse
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.responses import Response

from access_gate.context import AccessContext
from access_gate.errors import AccessGateError, ContentNotFound
from access_gate.models import ADMIN_PANEL_PERMISSION, AccessDecision, Action, ContentKind, Principal, Reason

logger = logging.getLogger(__name__)

DECISION_STATE_KEY = "access_decision"


@dataclass(frozen=True)
class RouteRule:
    prefix: str
    required_roles: Tuple[str, ...] = ()
    required_permissions: Tuple[str, ...] = ()

    def matches(self, path: str) -> bool:
        prefix = self.prefix.rstrip("/") or "/"
        if prefix == "/":
            return True
        return path == prefix or path.startswith(prefix + "/")


@dataclass(frozen=True)
class ContentRouteRule:
    """
    Path pattern for a content page. The pattern must define a named group
    `content_id`, e.g. r"^/articles/(?P<content_id>[^/]+)$".
    """

    pattern: str
    kind: ContentKind
    action: Action = Action.READ

    def match(self, path: str) -> Optional[str]:
        found = re.match(self.pattern, path)
        if found is None:
            return None
        return found.group("content_id")


DEFAULT_ROUTE_RULES: Tuple[RouteRule, ...] = (
    RouteRule("/admin", required_permissions=(ADMIN_PANEL_PERMISSION,)),
    RouteRule("/dashboard"),
)

DEFAULT_CONTENT_RULES: Tuple[ContentRouteRule, ...] = (
    ContentRouteRule(r"^/education/(?P<content_id>[^/]+)$", ContentKind.ARTICLE),
    ContentRouteRule(r"^/videos/(?P<content_id>[^/]+)$", ContentKind.VIDEO),
)


class AccessRouteMiddleware(BaseHTTPMiddleware):
    """
    Starlette middleware enforcing route and content rules.

    Args:
        app: ASGI application
        context: Shared access gate wiring
        route_rules: Role-only rules, first match wins
        content_rules: Content page rules, first match wins
    """

    def __init__(
        self,
        app,
        context: AccessContext,
        route_rules: Sequence[RouteRule] = DEFAULT_ROUTE_RULES,
        content_rules: Sequence[ContentRouteRule] = DEFAULT_CONTENT_RULES,
    ):
        super().__init__(app)
        self.context = context
        self.route_rules = tuple(route_rules)
        self.content_rules = tuple(content_rules)

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        path = request.url.path
        settings = self.context.settings

        try:
            if path == settings.sign_in_path:
                return await self._handle_sign_in_page(request, call_next)

            rule = self._match_route_rule(path)
            if rule is not None:
                principal = self.context.resolver.resolve_request(request)
                decision = self.context.engine.decide_roles(
                    principal,
                    rule.required_roles,
                    required_permissions=rule.required_permissions,
                )
                if decision.blocked:
                    return self._redirect_denied(request, principal, decision, resource_type="route", resource_id=rule.prefix)
                setattr(request.state, DECISION_STATE_KEY, decision)
                return await call_next(request)

            content_rule, content_id = self._match_content_rule(path)
            if content_rule is not None:
                return await self._handle_content_page(request, call_next, content_rule, content_id)
        except AccessGateError as exc:
            # Exception handlers sit inside this middleware and never see these.
            level = logging.ERROR if exc.http_status >= 500 else logging.INFO
            logger.log(
                level,
                "Access check failed on route",
                extra={"path": path, "error_code": exc.error_code, "error": str(exc)},
            )
            return JSONResponse(status_code=exc.http_status, content=exc.to_dict())

        return await call_next(request)

    async def _handle_sign_in_page(self, request: Request, call_next: Callable) -> Response:
        principal = self.context.resolver.resolve_request(request)
        if principal is None:
            return await call_next(request)
        settings = self.context.settings
        if principal.has_permission(ADMIN_PANEL_PERMISSION):
            target = settings.admin_home_path
        else:
            target = settings.landing_path
        return RedirectResponse(url=target, status_code=status.HTTP_303_SEE_OTHER)

    async def _handle_content_page(
        self,
        request: Request,
        call_next: Callable,
        rule: ContentRouteRule,
        content_id: str,
    ) -> Response:
        principal = self.context.resolver.resolve_request(request)
        try:
            descriptor = self.context.content_store.load_content_descriptor(rule.kind, content_id)
        except ContentNotFound:
            # The page handler renders its own not-found response.
            return await call_next(request)

        consumption = self.context.load_consumption(principal, descriptor)
        decision = self.context.engine.decide(principal, descriptor, consumption, action=rule.action)
        if decision.blocked:
            return self._redirect_denied(
                request, principal, decision,
                resource_type=descriptor.kind.value, resource_id=descriptor.id,
            )

        if decision.is_preview:
            self.context.audit.log_preview_granted(
                principal_id=principal.id if principal is not None else None,
                resource_type=descriptor.kind.value,
                resource_id=descriptor.id,
                surface="middleware",
            )
        setattr(request.state, DECISION_STATE_KEY, decision)
        return await call_next(request)

    def _match_route_rule(self, path: str) -> Optional[RouteRule]:
        for rule in self.route_rules:
            if rule.matches(path):
                return rule
        return None

    def _match_content_rule(self, path: str) -> Tuple[Optional[ContentRouteRule], Optional[str]]:
        for rule in self.content_rules:
            content_id = rule.match(path)
            if content_id is not None:
                return rule, content_id
        return None, None

    def _redirect_denied(
        self,
        request: Request,
        principal: Optional[Principal],
        decision: AccessDecision,
        *,
        resource_type: str,
        resource_id: Optional[str],
    ) -> Response:
        settings = self.context.settings
        path = request.url.path
        if decision.reason is Reason.NOT_AUTHENTICATED:
            target = f"{settings.sign_in_path}?{urlencode({'redirect': path})}"
        else:
            target = settings.landing_path

        self.context.audit.log_access_denied(
            principal_id=principal.id if principal is not None else None,
            resource_type=resource_type,
            resource_id=resource_id,
            reason=decision.reason.value if decision.reason else None,
            required_action=decision.required_action.value if decision.required_action else None,
            surface="middleware",
            path=path,
        )
        logger.info(
            "Route access denied, redirecting",
            extra={
                "path": path,
                "reason": decision.reason.value if decision.reason else None,
                "redirect_to": target,
            },
        )
        return RedirectResponse(url=target, status_code=status.HTTP_303_SEE_OTHER)
