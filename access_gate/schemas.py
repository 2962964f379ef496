"""
Pydantic schemas for the access gate API.

Request and response models for the gated endpoints.
"""

from typing import List, Optional

from pydantic import BaseModel, Field


class PrincipalResponse(BaseModel):
    """Resolved principal for the current caller."""

    authenticated: bool = Field(..., description="False for anonymous callers")
    id: Optional[str] = Field(None, description="Principal identifier")
    roles: List[str] = Field(default_factory=list, description="Reconciled role set")
    membershipTier: Optional[str] = Field(None, description="Projected membership tier")
    permissions: List[str] = Field(default_factory=list, description="Union of role permissions")
    overrideIdentity: bool = Field(False, description="True when resolved through the override identity")


class AccessErrorResponse(BaseModel):
    """Body of 401/403/404 responses from the API guard."""

    error: str
    reason: Optional[str] = None
    requiredAction: Optional[str] = None


class ProgressReport(BaseModel):
    """Playback progress reported by the video player."""

    watchedSeconds: float = Field(..., ge=0, allow_inf_nan=False, description="Seconds watched so far")


class ForumPostRequest(BaseModel):
    body: str = Field(..., min_length=1, max_length=20000)


class ForumPostResponse(BaseModel):
    threadId: str
    authorId: str
    accepted: bool = True


class ModerationRequest(BaseModel):
    postId: str = Field(..., min_length=1)
    action: str = Field("hide", pattern="^(hide|restore|delete)$")


class ModerationResponse(BaseModel):
    threadId: str
    postId: str
    action: str
    moderatorId: str
