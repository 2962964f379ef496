"""
Content service: the enforcement surface that shapes response bodies.

For articles the body is cut down to the preview before a view object is
built, so the full text never reaches a serializer when access is not
granted. A blocked decision produces a view with no body at all.

Videos are time-boxed rather than content-boxed: the media reference is
returned whenever the decision is not blocked, together with the meter
signals the player needs (remaining time, warning, upgrade copy).
"""

import logging
import math
from dataclasses import dataclass
from typing import Iterable, List, Optional

from access_gate.audit import AccessAuditLogger
from access_gate.engine import AccessDecisionEngine
from access_gate.errors import AccessDeniedError, ContentNotFound
from access_gate.meter import format_time, upgrade_message
from access_gate.models import (
    AccessDecision,
    ConsumptionState,
    ContentDescriptor,
    ContentKind,
    Principal,
    RequiredAction,
)
from access_gate.stores import ConsumptionStore, ContentStore

logger = logging.getLogger(__name__)

PREVIEW_MIN_LINES = 30
PREVIEW_RATIO = 0.3
DEFAULT_UPGRADE_PATH = "/membership/upgrade"


def derive_preview(body: str, ratio: float = PREVIEW_RATIO, min_lines: int = PREVIEW_MIN_LINES) -> str:
    """
    First max(min_lines, ratio * lines) lines of the body.

    The result is always a strict prefix of a non-empty body. When the line
    rule would return the whole body (short articles), half of it is used.
    """
    if not body:
        return ""
    lines = body.split("\n")
    count = max(min_lines, int(len(lines) * ratio))
    preview = "\n".join(lines[:count])
    if len(preview) >= len(body):
        preview = body[: len(body) // 2]
    return preview


def _quotes_body(teaser: str, body: str) -> bool:
    return any(line.strip() and line.strip() in teaser for line in body.split("\n"))


@dataclass(frozen=True)
class AccessPrompt:
    title: str
    message: str
    cta_text: Optional[str] = None
    cta_link: Optional[str] = None

    def to_dict(self) -> dict:
        return {
            "title": self.title,
            "message": self.message,
            "ctaText": self.cta_text,
            "ctaLink": self.cta_link,
        }


@dataclass(frozen=True)
class ArticleView:
    id: str
    title: str
    decision: AccessDecision
    body: Optional[str] = None

    @property
    def allowed(self) -> bool:
        return self.decision.allowed

    @property
    def is_preview(self) -> bool:
        return self.decision.is_preview

    def to_dict(self) -> dict:
        payload = {
            "id": self.id,
            "title": self.title,
            "allowed": self.allowed,
            "isPreview": self.is_preview,
            "access": self.decision.to_dict(),
        }
        if self.body is not None:
            payload["body"] = self.body
        return payload


@dataclass(frozen=True)
class ArticleSummary:
    id: str
    title: str
    decision: AccessDecision

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "title": self.title,
            "allowed": self.decision.allowed,
            "previewAllowed": self.decision.preview_allowed,
            "level": self.decision.level,
            "requiredAction": (
                self.decision.required_action.value if self.decision.required_action else None
            ),
        }


@dataclass(frozen=True)
class VideoView:
    id: str
    title: str
    decision: AccessDecision
    media: Optional[str] = None
    watched_seconds: float = 0.0

    @property
    def allowed(self) -> bool:
        return self.decision.allowed

    @property
    def is_preview(self) -> bool:
        remaining = self.decision.remaining_seconds
        return not self.decision.blocked and remaining is not None and math.isfinite(remaining)

    def to_dict(self) -> dict:
        remaining = self.decision.remaining_seconds
        payload = {
            "id": self.id,
            "title": self.title,
            "allowed": self.allowed,
            "isPreview": self.is_preview,
            "watchedSeconds": self.watched_seconds,
            "remainingLabel": (
                format_time(remaining) if remaining is not None and math.isfinite(remaining) else None
            ),
            "upgradeMessage": upgrade_message(remaining) if self.is_preview or self.decision.blocked else "",
            "access": self.decision.to_dict(),
        }
        if self.media is not None:
            payload["media"] = self.media
        return payload


class ContentAccessService:
    """
    Loads content, decides access and returns response-ready views.

    Args:
        engine: Decision engine shared with the other surfaces
        content_store: Source of content descriptors
        consumption_store: Video progress store
        audit: Audit logger for denials and preview grants
    """

    def __init__(
        self,
        engine: AccessDecisionEngine,
        content_store: ContentStore,
        consumption_store: ConsumptionStore,
        audit: Optional[AccessAuditLogger] = None,
        *,
        sign_in_path: str = "/login",
        upgrade_path: str = DEFAULT_UPGRADE_PATH,
    ) -> None:
        self._engine = engine
        self._content = content_store
        self._consumption = consumption_store
        self._audit = audit or AccessAuditLogger()
        self._sign_in_path = sign_in_path
        self._upgrade_path = upgrade_path

    # -- Articles -----------------------------------------------------------

    def get_article(self, principal: Optional[Principal], article_id: str) -> ArticleView:
        descriptor = self._content.load_content_descriptor(ContentKind.ARTICLE, article_id)
        decision = self._engine.decide(principal, descriptor)
        self._audit_decision(principal, descriptor, decision)

        if decision.allowed:
            body: Optional[str] = descriptor.body
        elif decision.preview_allowed:
            body = self.preview_of(descriptor)
        else:
            body = None
        return ArticleView(id=descriptor.id, title=descriptor.title, decision=decision, body=body)

    def list_articles(self, principal: Optional[Principal], article_ids: Iterable[str]) -> List[ArticleSummary]:
        descriptors: List[ContentDescriptor] = []
        for article_id in article_ids:
            try:
                descriptors.append(self._content.load_content_descriptor(ContentKind.ARTICLE, article_id))
            except ContentNotFound:
                logger.debug("Skipping unknown article in listing", extra={"content_id": article_id})
        decisions = self._engine.decide_many(principal, descriptors)
        return [
            ArticleSummary(id=d.id, title=d.title, decision=decision)
            for d, decision in zip(descriptors, decisions)
        ]

    @staticmethod
    def preview_of(descriptor: ContentDescriptor) -> str:
        """
        Preview text for an article.

        A stored preview is used when it is a strict prefix of the body, or
        when it is a separate teaser that quotes no line of the body and is
        no longer than the derived preview. Anything else is replaced by a
        preview derived from the body.
        """
        body = descriptor.body
        stored = descriptor.preview_body
        if not body:
            return stored or ""
        derived = derive_preview(body)
        if stored:
            if stored != body and body.startswith(stored):
                return stored
            if len(stored) <= len(derived) and not _quotes_body(stored, body):
                return stored
            logger.debug(
                "Stored preview reveals article text, deriving one",
                extra={"content_id": descriptor.id},
            )
        return derived

    # -- Videos -------------------------------------------------------------

    def get_video(self, principal: Optional[Principal], video_id: str) -> VideoView:
        descriptor = self._content.load_content_descriptor(ContentKind.VIDEO, video_id)
        consumption = self._load_consumption(principal, descriptor)
        decision = self._engine.decide(principal, descriptor, consumption)
        self._audit_decision(principal, descriptor, decision)
        return self._video_view(descriptor, decision, consumption)

    def record_progress(self, principal: Optional[Principal], video_id: str, watched_seconds: float) -> VideoView:
        """Store a progress report and return the decision that follows from it."""
        if principal is None:
            raise AccessDeniedError(self._engine.decide_roles(None))
        descriptor = self._content.load_content_descriptor(ContentKind.VIDEO, video_id)
        state = self._engine.meter.record_progress(
            self._consumption, principal.id, descriptor.id, watched_seconds
        )
        decision = self._engine.decide(principal, descriptor, state)
        if decision.blocked:
            self._audit_decision(principal, descriptor, decision)
        return self._video_view(descriptor, decision, state)

    # -- Prompts ------------------------------------------------------------

    def access_prompt(self, decision: AccessDecision) -> AccessPrompt:
        """UI copy for a gated item. Empty when access is granted."""
        if decision.allowed:
            return AccessPrompt(title="", message="")
        if decision.required_action is RequiredAction.SIGN_IN:
            return AccessPrompt(
                title="Sign in required",
                message="Sign in to view this content.",
                cta_text="Sign in",
                cta_link=self._sign_in_path,
            )
        if decision.required_action is RequiredAction.UPGRADE:
            if decision.preview_allowed:
                return AccessPrompt(
                    title="Upgrade to keep going",
                    message="Upgrade your membership to unlock the full content and every premium item.",
                    cta_text="Upgrade to continue",
                    cta_link=self._upgrade_path,
                )
            return AccessPrompt(
                title="Members-only content",
                message="This content is available to premium members only.",
                cta_text="Upgrade",
                cta_link=self._upgrade_path,
            )
        return AccessPrompt(title="Not available", message="This content is not available to your account.")

    # -- Helpers ------------------------------------------------------------

    def _load_consumption(
        self,
        principal: Optional[Principal],
        descriptor: ContentDescriptor,
    ) -> Optional[ConsumptionState]:
        if principal is None:
            return None
        return self._consumption.load_consumption(principal.id, descriptor.id)

    @staticmethod
    def _video_view(
        descriptor: ContentDescriptor,
        decision: AccessDecision,
        consumption: Optional[ConsumptionState],
    ) -> VideoView:
        return VideoView(
            id=descriptor.id,
            title=descriptor.title,
            decision=decision,
            media=None if decision.blocked else descriptor.body,
            watched_seconds=consumption.watched_seconds if consumption is not None else 0.0,
        )

    def _audit_decision(
        self,
        principal: Optional[Principal],
        descriptor: ContentDescriptor,
        decision: AccessDecision,
    ) -> None:
        principal_id = principal.id if principal is not None else None
        if decision.blocked:
            self._audit.log_access_denied(
                principal_id=principal_id,
                resource_type=descriptor.kind.value,
                resource_id=descriptor.id,
                reason=decision.reason.value if decision.reason else None,
                required_action=decision.required_action.value if decision.required_action else None,
                surface="content_service",
            )
        elif decision.is_preview:
            self._audit.log_preview_granted(
                principal_id=principal_id,
                resource_type=descriptor.kind.value,
                resource_id=descriptor.id,
                surface="content_service",
            )
