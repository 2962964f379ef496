"""
Access gate error hierarchy.

Provides:
- AccessGateError: base for all access gate failures
- UnresolvedIdentity: identity store failed while resolving a principal
- ContentNotFound: content id does not exist (never a gating decision)
- ContentStoreUnavailable: content or progress store failed
- MalformedDescriptor: descriptor is missing its gating dimension
- CatalogConfigError: tier/role catalog is invalid
- AccessDeniedError: the engine denied the request (401/403)

Infrastructure errors surface as 503 and are never folded into allow or deny.
"""

from typing import TYPE_CHECKING, Optional

from fastapi import status

if TYPE_CHECKING:
    from access_gate.models import AccessDecision


class AccessGateError(Exception):
    """Base exception for access gate failures."""

    error_code = "ACCESS_GATE_ERROR"
    http_status = status.HTTP_500_INTERNAL_SERVER_ERROR

    def __init__(self, message: str):
        self.message = message
        super().__init__(message)

    def to_dict(self) -> dict:
        return {"error": self.error_code, "message": self.message}


class UnresolvedIdentity(AccessGateError):
    """
    Raised when the identity store fails while resolving a principal.

    Propagates to the enforcement surface as a 5xx. It is never treated as
    "signed out".
    """

    error_code = "IDENTITY_UNAVAILABLE"
    http_status = status.HTTP_503_SERVICE_UNAVAILABLE

    def __init__(self, identity_id: Optional[str], detail: str, cause: Optional[Exception] = None):
        self.identity_id = identity_id
        self.detail = detail
        self.cause = cause
        super().__init__(f"Could not resolve identity {identity_id!r}: {detail}")

    def to_dict(self) -> dict:
        return {"error": self.error_code, "message": "Identity store unavailable"}


class ContentNotFound(AccessGateError):
    """Raised when a content id does not exist. Distinct from access denial."""

    error_code = "content_not_found"
    http_status = status.HTTP_404_NOT_FOUND

    def __init__(self, kind: str, content_id: str):
        self.kind = kind
        self.content_id = content_id
        super().__init__(f"{kind} with id '{content_id}' not found")

    def to_dict(self) -> dict:
        return {"error": "Not found", "reason": self.error_code, "requiredAction": None}


class ContentStoreUnavailable(AccessGateError):
    """Raised when the content or progress store cannot be reached."""

    error_code = "CONTENT_STORE_UNAVAILABLE"
    http_status = status.HTTP_503_SERVICE_UNAVAILABLE

    def __init__(self, detail: str, cause: Optional[Exception] = None):
        self.detail = detail
        self.cause = cause
        super().__init__(f"Content store unavailable: {detail}")

    def to_dict(self) -> dict:
        return {"error": self.error_code, "message": "Content store unavailable"}


class MalformedDescriptor(AccessGateError):
    """Raised when a descriptor lacks the gating dimension for its kind."""

    error_code = "MALFORMED_DESCRIPTOR"

    def __init__(self, content_id: str, detail: str):
        self.content_id = content_id
        self.detail = detail
        super().__init__(f"Malformed descriptor {content_id!r}: {detail}")


class CatalogConfigError(AccessGateError, ValueError):
    """Raised when the tier/role catalog fails validation."""

    error_code = "CATALOG_CONFIG_INVALID"


class AccessDeniedError(AccessGateError):
    """Raised by the API guard when the engine denies a request."""

    def __init__(self, decision: "AccessDecision"):
        self.decision = decision
        self.reason = decision.reason.value if decision.reason else None
        self.required_action = (
            decision.required_action.value if decision.required_action else None
        )
        self.error_code = self.reason or "access_denied"
        if self.reason == "not_authenticated":
            self.http_status = status.HTTP_401_UNAUTHORIZED
        else:
            self.http_status = status.HTTP_403_FORBIDDEN
        super().__init__(f"Access denied: {self.error_code}")

    def to_dict(self) -> dict:
        error = "Authentication required" if self.http_status == 401 else "Access denied"
        return {
            "error": error,
            "reason": self.reason,
            "requiredAction": self.required_action,
        }
