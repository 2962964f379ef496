"""
Consumption meter for time-boxed video previews.

The meter only supplies signals (remaining time, upgrade warning) and the
merged ConsumptionState. It never flips a decision itself; the engine reads
the state it produces.

Unbounded previews are represented by math.inf, never by a large integer.
Stored watch time is never clamped. Clamping to [0, cap] happens only while
computing the remaining time, so a later upgrade still sees the true history.
"""

import logging
import math
from datetime import datetime, timezone
from typing import Optional

from access_gate.catalog import TierCatalog, default_catalog
from access_gate.models import ConsumptionState, ContentDescriptor
from access_gate.stores import ConsumptionStore

logger = logging.getLogger(__name__)

UNLIMITED = math.inf


class ConsumptionMeter:
    def __init__(self, catalog: Optional[TierCatalog] = None) -> None:
        self._catalog = catalog or default_catalog()

    def effective_cap(self, descriptor: ContentDescriptor, tier: Optional[str] = None) -> Optional[float]:
        """
        Cap that applies to a viewer on `tier`.

        A tier meeting the requirement has no cap, which is how an upgrade
        resets the cap without touching the counter.
        """
        if (
            tier is not None
            and descriptor.required_tier is not None
            and self._catalog.compare_tiers(tier, descriptor.required_tier) >= 0
        ):
            return None
        return descriptor.preview_cap_seconds

    def remaining(
        self,
        descriptor: ContentDescriptor,
        consumption: Optional[ConsumptionState],
        tier: Optional[str] = None,
    ) -> float:
        cap = self.effective_cap(descriptor, tier)
        if cap is None:
            return UNLIMITED
        watched = consumption.watched_seconds if consumption is not None else 0.0
        clamped = min(max(watched, 0.0), cap)
        return cap - clamped

    def should_warn(
        self,
        descriptor: ContentDescriptor,
        consumption: Optional[ConsumptionState],
        tier: Optional[str] = None,
    ) -> bool:
        """True once the warn ratio of the cap is consumed, including past the cap."""
        cap = self.effective_cap(descriptor, tier)
        if cap is None or cap <= 0:
            return False
        watched = consumption.watched_seconds if consumption is not None else 0.0
        return watched >= cap * self._catalog.warn_ratio

    def is_exhausted(
        self,
        descriptor: ContentDescriptor,
        consumption: Optional[ConsumptionState],
        tier: Optional[str] = None,
    ) -> bool:
        return self.remaining(descriptor, consumption, tier) <= 0

    @staticmethod
    def merge(
        existing: Optional[ConsumptionState],
        principal_id: str,
        content_id: str,
        reported_seconds: float,
    ) -> ConsumptionState:
        """Monotonic merge: the result is never below the existing value."""
        _validate_report(reported_seconds)
        watched = float(reported_seconds)
        if existing is not None and existing.watched_seconds > watched:
            watched = existing.watched_seconds
        return ConsumptionState(
            principal_id=principal_id,
            content_id=content_id,
            watched_seconds=watched,
            updated_at=datetime.now(timezone.utc),
        )

    def record_progress(
        self,
        store: ConsumptionStore,
        principal_id: str,
        content_id: str,
        reported_seconds: float,
    ) -> ConsumptionState:
        """Persist a progress report. The store keeps max(existing, reported)."""
        _validate_report(reported_seconds)
        state = ConsumptionState(
            principal_id=principal_id,
            content_id=content_id,
            watched_seconds=float(reported_seconds),
            updated_at=datetime.now(timezone.utc),
        )
        stored = store.save_consumption(state)
        if stored.watched_seconds > state.watched_seconds:
            logger.debug(
                "Stale progress report ignored",
                extra={
                    "principal_id": principal_id,
                    "content_id": content_id,
                    "reported_seconds": state.watched_seconds,
                    "stored_seconds": stored.watched_seconds,
                },
            )
        return stored


def _validate_report(reported_seconds: float) -> None:
    value = float(reported_seconds)
    if math.isnan(value) or math.isinf(value) or value < 0:
        raise ValueError("reported_seconds must be a finite value >= 0")


def format_time(seconds: float) -> str:
    """M:SS, or H:MM:SS past an hour. Non-finite or negative values render as 0:00."""
    if not math.isfinite(seconds) or seconds < 0:
        return "0:00"
    total = int(seconds)
    hours, rest = divmod(total, 3600)
    minutes, secs = divmod(rest, 60)
    if hours > 0:
        return f"{hours}:{minutes:02d}:{secs:02d}"
    return f"{minutes}:{secs:02d}"


def upgrade_message(remaining_seconds: float) -> str:
    if math.isinf(remaining_seconds):
        return ""
    if remaining_seconds <= 0:
        return "Your free preview has ended. Upgrade to continue watching!"
    if remaining_seconds <= 60:
        return f"Only {int(remaining_seconds)} seconds remaining in your free preview!"
    minutes = int(remaining_seconds // 60)
    return f"{minutes} minute{'s' if minutes != 1 else ''} remaining in your free preview"
