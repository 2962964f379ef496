"""
Gated content API.

Every content route is guarded by require_access and serves its body through
ContentAccessService, so the guard and the body shaping use one decision.
"""

from typing import Optional

from fastapi import APIRouter, Depends, Query, status

from access_gate.context import AccessContext, get_access_context
from access_gate.guard import AuthorizedRequest, get_principal, require_access, require_roles
from access_gate.models import ADMIN_PANEL_PERMISSION, Action, ContentKind, Principal
from access_gate.schemas import (
    AccessErrorResponse,
    ForumPostRequest,
    ForumPostResponse,
    ModerationRequest,
    ModerationResponse,
    PrincipalResponse,
    ProgressReport,
)

router = APIRouter(
    prefix="/api",
    tags=["access"],
    responses={
        401: {"model": AccessErrorResponse},
        403: {"model": AccessErrorResponse},
        404: {"model": AccessErrorResponse},
    },
)


@router.get("/access/me", response_model=PrincipalResponse)
def get_current_principal(principal: Optional[Principal] = Depends(get_principal)) -> PrincipalResponse:
    if principal is None:
        return PrincipalResponse(authenticated=False)
    return PrincipalResponse(
        authenticated=True,
        id=principal.id,
        roles=sorted(principal.roles),
        membershipTier=principal.membership_tier,
        permissions=sorted(principal.permissions),
        overrideIdentity=principal.override_identity,
    )


@router.get("/articles", response_model=dict)
def list_articles(
    ids: str = Query(..., description="Comma-separated article ids"),
    principal: Optional[Principal] = Depends(get_principal),
    context: AccessContext = Depends(get_access_context),
) -> dict:
    article_ids = [i.strip() for i in ids.split(",") if i.strip()]
    summaries = context.content_service.list_articles(principal, article_ids)
    return {"articles": [s.to_dict() for s in summaries]}


@router.get("/articles/{content_id}", response_model=dict)
def get_article(
    content_id: str,
    access: AuthorizedRequest = Depends(require_access(ContentKind.ARTICLE)),
    context: AccessContext = Depends(get_access_context),
) -> dict:
    """Article body, truncated to its preview unless access is granted in full."""
    view = context.content_service.get_article(access.principal, content_id)
    return view.to_dict()


@router.get("/videos/{content_id}", response_model=dict)
def get_video(
    content_id: str,
    access: AuthorizedRequest = Depends(require_access(ContentKind.VIDEO)),
    context: AccessContext = Depends(get_access_context),
) -> dict:
    view = context.content_service.get_video(access.principal, content_id)
    return view.to_dict()


@router.post("/videos/{content_id}/progress", response_model=dict)
def report_video_progress(
    content_id: str,
    report: ProgressReport,
    access: AuthorizedRequest = Depends(require_access(ContentKind.VIDEO)),
    context: AccessContext = Depends(get_access_context),
) -> dict:
    view = context.content_service.record_progress(access.principal, content_id, report.watchedSeconds)
    return view.to_dict()


@router.post(
    "/forum/threads/{content_id}/posts",
    response_model=ForumPostResponse,
    status_code=status.HTTP_201_CREATED,
)
def create_forum_post(
    content_id: str,
    post: ForumPostRequest,
    access: AuthorizedRequest = Depends(require_access(ContentKind.FORUM_THREAD, Action.WRITE)),
) -> ForumPostResponse:
    return ForumPostResponse(threadId=access.descriptor.id, authorId=access.principal.id)


@router.post("/forum/threads/{content_id}/moderation", response_model=ModerationResponse)
def moderate_forum_thread(
    content_id: str,
    moderation: ModerationRequest,
    access: AuthorizedRequest = Depends(require_access(ContentKind.FORUM_THREAD, Action.MODERATE)),
) -> ModerationResponse:
    return ModerationResponse(
        threadId=access.descriptor.id,
        postId=moderation.postId,
        action=moderation.action,
        moderatorId=access.principal.id,
    )


@router.get("/admin/overview", response_model=PrincipalResponse)
def admin_overview(
    access: AuthorizedRequest = Depends(require_roles(permissions=(ADMIN_PANEL_PERMISSION,))),
) -> PrincipalResponse:
    principal = access.principal
    return PrincipalResponse(
        authenticated=True,
        id=principal.id,
        roles=sorted(principal.roles),
        membershipTier=principal.membership_tier,
        permissions=sorted(principal.permissions),
        overrideIdentity=principal.override_identity,
    )


# Page endpoints. AccessRouteMiddleware has already decided by the time these
# run; they only shape the page payload.
pages_router = APIRouter(tags=["pages"])


@pages_router.get("/login", response_model=dict)
def sign_in_page() -> dict:
    return {"page": "sign_in"}


@pages_router.get("/dashboard", response_model=dict)
def dashboard_page(principal: Optional[Principal] = Depends(get_principal)) -> dict:
    return {"page": "dashboard", "principalId": principal.id if principal is not None else None}


@pages_router.get("/admin", response_model=dict)
def admin_page(principal: Optional[Principal] = Depends(get_principal)) -> dict:
    return {"page": "admin", "principalId": principal.id if principal is not None else None}


@pages_router.get("/education/{content_id}", response_model=dict)
def article_page(
    content_id: str,
    principal: Optional[Principal] = Depends(get_principal),
    context: AccessContext = Depends(get_access_context),
) -> dict:
    view = context.content_service.get_article(principal, content_id)
    payload = view.to_dict()
    payload["page"] = "article"
    payload["prompt"] = context.content_service.access_prompt(view.decision).to_dict()
    return payload


@pages_router.get("/videos/{content_id}", response_model=dict)
def video_page(
    content_id: str,
    principal: Optional[Principal] = Depends(get_principal),
    context: AccessContext = Depends(get_access_context),
) -> dict:
    view = context.content_service.get_video(principal, content_id)
    payload = view.to_dict()
    payload["page"] = "video"
    payload["prompt"] = context.content_service.access_prompt(view.decision).to_dict()
    return payload
