"""Human review queue."""

from pipeline_guard.review.manager import (
    CRITICAL_REVIEW_TYPES,
    REVIEW_QUEUE_COLLECTION,
    ReviewItem,
    ReviewItemStatus,
    ReviewItemType,
    ReviewOutcome,
    ReviewQueue,
)

__all__ = [
    "CRITICAL_REVIEW_TYPES",
    "REVIEW_QUEUE_COLLECTION",
    "ReviewItem",
    "ReviewItemStatus",
    "ReviewItemType",
    "ReviewOutcome",
    "ReviewQueue",
]
