"""
Queue item type definitions.

Python attributes are snake_case; the stored document keeps the camelCase
field names through pydantic aliases.
"""

from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from message_queue.constants import (
    DEFAULT_PRIORITY,
    FIELD_MESSAGE,
    MAX_PRIORITY,
    MIN_PRIORITY,
    Outcome,
)


def utc_now() -> datetime:
    """Current time as a timezone-aware UTC datetime."""
    return datetime.now(UTC)


class ReleaseRecord(BaseModel):
    """
    One entry of an item's release history.
    Appended on every release or reject.
    """

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    retry_count: int = Field(default=0, alias="retryCount")
    received_time: datetime | None = Field(default=None, alias="receivedTime")
    released_time: datetime = Field(alias="releasedTime")
    released_reason: str | None = Field(default=None, alias="releasedReason")


class QueueItem(BaseModel):
    """
    A unit of persisted work.

    Workers receive the claimed item and may set ``released_reason``,
    ``next_receivable_time`` and ``rejection_reason`` before returning an
    outcome; those values are read when the outcome is applied.
    """

    model_config = ConfigDict(
        populate_by_name=True,
        arbitrary_types_allowed=True,
        extra="ignore",
    )

    id: Any = Field(default=None, alias="_id")
    type: str
    message: Any = None
    priority: int = Field(default=DEFAULT_PRIORITY, ge=MIN_PRIORITY, le=MAX_PRIORITY)
    date_created: datetime | None = Field(default=None, alias="dateCreated")
    received_time: datetime | None = Field(default=None, alias="receivedTime")
    next_receivable_time: datetime | None = Field(
        default=None, alias="nextReceivableTime"
    )
    retry_count: int | None = Field(default=None, alias="retryCount")
    rejected_time: datetime | None = Field(default=None, alias="rejectedTime")
    rejection_reason: str | None = Field(default=None, alias="rejectionReason")
    released_reason: str | None = Field(default=None, alias="releasedReason")
    release_history: list[ReleaseRecord] = Field(
        default_factory=list, alias="releaseHistory"
    )

    @classmethod
    def from_document(cls, document: dict[str, Any]) -> "QueueItem":
        """Build an item from a stored document."""
        return cls.model_validate(document)

    def to_document(self) -> dict[str, Any]:
        """Serialize to the stored document shape, omitting unset fields."""
        document = self.model_dump(by_alias=True, exclude_none=True)
        # The payload is kept even when it is None
        document.setdefault(FIELD_MESSAGE, self.message)
        return document

    def is_available(
        self,
        processing_timeout: timedelta,
        now: datetime | None = None,
    ) -> bool:
        """
        Check whether the item may be claimed.

        Args:
            processing_timeout: Visibility timeout for claimed items.
            now: Reference time. Defaults to the current UTC time.

        Returns:
            True if the item is neither rejected, deferred, nor leased.
        """
        now = now or utc_now()
        if self.rejected_time is not None:
            return False
        if self.next_receivable_time is not None and self.next_receivable_time > now:
            return False
        if self.received_time is not None and self.received_time + processing_timeout > now:
            return False
        return True


class EnqueueOptions(BaseModel):
    """Optional settings for a newly enqueued item."""

    model_config = ConfigDict(populate_by_name=True)

    next_receivable_time: datetime | None = Field(
        default=None, alias="nextReceivableTime"
    )
    priority: int = Field(default=DEFAULT_PRIORITY, ge=MIN_PRIORITY, le=MAX_PRIORITY)


@dataclass
class DispatchResult:
    """
    Outcome of processing a single item.

    ``affected`` is the number of documents the resulting store write
    touched (0 or 1).
    """

    item_id: Any
    item_type: str
    outcome: Outcome
    affected: int
