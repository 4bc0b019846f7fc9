"""
Human Review Queue.

Items that need an operator decision before the pipeline may continue:
- Quality decisions that require human review
- Unresolved pronunciation terms
- Controversial or off-topic content
"""

import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any

import structlog

from pipeline_guard.core.errors import ErrorCode, PipelineError
from pipeline_guard.storage.persistence import Persistence

logger = structlog.get_logger(__name__)

REVIEW_QUEUE_COLLECTION = "review-queue"


class ReviewItemType(str, Enum):
    PRONUNCIATION = "pronunciation"
    QUALITY = "quality"
    CONTROVERSIAL = "controversial"
    TOPIC = "topic"
    OTHER = "other"


class ReviewItemStatus(str, Enum):
    PENDING = "pending"
    RESOLVED = "resolved"
    DISMISSED = "dismissed"


class ReviewOutcome(str, Enum):
    APPROVED = "approved"
    REJECTED = "rejected"


# Pending items of these types block publishing
CRITICAL_REVIEW_TYPES = frozenset({ReviewItemType.PRONUNCIATION, ReviewItemType.QUALITY})


@dataclass
class ReviewItem:
    """An item waiting for (or resolved by) an operator."""

    type: ReviewItemType
    pipeline_id: str
    stage: str
    item: dict[str, Any] = field(default_factory=dict)
    context: dict[str, Any] = field(default_factory=dict)
    id: str = field(default_factory=lambda: str(uuid.uuid4()))
    created_at: str = field(default_factory=lambda: datetime.now(timezone.utc).isoformat())
    status: ReviewItemStatus = ReviewItemStatus.PENDING
    resolution: str | None = None
    outcome: ReviewOutcome | None = None
    resolved_at: str | None = None
    resolved_by: str | None = None

    @property
    def is_pending(self) -> bool:
        return self.status == ReviewItemStatus.PENDING

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "type": self.type.value,
            "pipeline_id": self.pipeline_id,
            "stage": self.stage,
            "item": self.item,
            "context": self.context,
            "created_at": self.created_at,
            "status": self.status.value,
            "resolution": self.resolution,
            "outcome": self.outcome.value if self.outcome else None,
            "resolved_at": self.resolved_at,
            "resolved_by": self.resolved_by,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "ReviewItem":
        return cls(
            id=data["id"],
            type=ReviewItemType(data["type"]),
            pipeline_id=data["pipeline_id"],
            stage=data["stage"],
            item=data.get("item") or {},
            context=data.get("context") or {},
            created_at=data["created_at"],
            status=ReviewItemStatus(data.get("status", ReviewItemStatus.PENDING.value)),
            resolution=data.get("resolution"),
            outcome=ReviewOutcome(data["outcome"]) if data.get("outcome") else None,
            resolved_at=data.get("resolved_at"),
            resolved_by=data.get("resolved_by"),
        )


class ReviewQueue:
    """
    Persistent human review queue.

    Usage:
        queue = ReviewQueue(persistence)
        review_id = await queue.add_item(ReviewItemType.QUALITY, "2026-01-22", "pre-publish", {...})
        await queue.resolve_item(review_id, "Looks good", "operator", ReviewOutcome.APPROVED)
    """

    def __init__(self, persistence: Persistence):
        self._persistence = persistence

    async def add_item(
        self,
        type: ReviewItemType,
        pipeline_id: str,
        stage: str,
        item: dict[str, Any] | None = None,
        context: dict[str, Any] | None = None,
    ) -> str:
        """Add an item and return its ID."""
        review_item = ReviewItem(
            type=ReviewItemType(type),
            pipeline_id=pipeline_id,
            stage=stage,
            item=item or {},
            context=context or {},
        )
        await self._persistence.set_document(
            REVIEW_QUEUE_COLLECTION, review_item.id, review_item.to_dict()
        )
        logger.info(
            "Review item added",
            review_id=review_item.id,
            type=review_item.type.value,
            pipeline_id=pipeline_id,
            stage=stage,
        )
        return review_item.id

    async def get_item(self, review_id: str) -> ReviewItem | None:
        doc = await self._persistence.get_document(REVIEW_QUEUE_COLLECTION, review_id)
        return ReviewItem.from_dict(doc) if doc else None

    async def get_queue(
        self,
        status: ReviewItemStatus | None = ReviewItemStatus.PENDING,
        type: ReviewItemType | None = None,
        pipeline_id: str | None = None,
    ) -> list[ReviewItem]:
        """List items matching the filters, oldest first."""
        items = [
            ReviewItem.from_dict(doc)
            for doc in await self._persistence.list_documents(REVIEW_QUEUE_COLLECTION)
        ]
        if status is not None:
            items = [i for i in items if i.status == status]
        if type is not None:
            items = [i for i in items if i.type == type]
        if pipeline_id is not None:
            items = [i for i in items if i.pipeline_id == pipeline_id]
        return sorted(items, key=lambda i: i.created_at)

    async def _require_pending(self, review_id: str) -> ReviewItem:
        item = await self.get_item(review_id)
        if item is None:
            raise PipelineError.critical(
                ErrorCode.REVIEW_ITEM_NOT_FOUND,
                f"Review item not found: {review_id}",
                context={"review_id": review_id},
            )
        if not item.is_pending:
            raise PipelineError.critical(
                ErrorCode.REVIEW_ITEM_ALREADY_RESOLVED,
                f"Review item {review_id} is already {item.status.value}",
                context={"review_id": review_id, "status": item.status.value},
            )
        return item

    async def _close(
        self,
        item: ReviewItem,
        status: ReviewItemStatus,
        resolution: str,
        resolved_by: str,
        outcome: ReviewOutcome | None,
    ) -> ReviewItem:
        item.status = status
        item.resolution = resolution
        item.outcome = outcome
        item.resolved_by = resolved_by
        item.resolved_at = datetime.now(timezone.utc).isoformat()
        await self._persistence.set_document(REVIEW_QUEUE_COLLECTION, item.id, item.to_dict())
        logger.info(
            "Review item closed",
            review_id=item.id,
            status=status.value,
            outcome=outcome.value if outcome else None,
            resolved_by=resolved_by,
        )
        return item

    async def resolve_item(
        self,
        review_id: str,
        resolution: str,
        resolved_by: str,
        outcome: ReviewOutcome | None = None,
    ) -> ReviewItem:
        """Resolve a pending item."""
        item = await self._require_pending(review_id)
        return await self._close(item, ReviewItemStatus.RESOLVED, resolution, resolved_by, outcome)

    async def dismiss_item(self, review_id: str, reason: str, dismissed_by: str) -> ReviewItem:
        """Dismiss a pending item without acting on it."""
        item = await self._require_pending(review_id)
        return await self._close(item, ReviewItemStatus.DISMISSED, reason, dismissed_by, None)

    async def pending_count(self, type: ReviewItemType | None = None) -> int:
        return len(await self.get_queue(status=ReviewItemStatus.PENDING, type=type))

    async def has_pending_critical_reviews(self, pipeline_id: str) -> bool:
        """Whether a pending quality or pronunciation review blocks this pipeline."""
        pending = await self.get_queue(status=ReviewItemStatus.PENDING, pipeline_id=pipeline_id)
        return any(i.type in CRITICAL_REVIEW_TYPES for i in pending)
