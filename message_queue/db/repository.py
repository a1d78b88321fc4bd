"""
Queue item repository.
Translates queue operations into store adapter calls.
"""

import asyncio
import logging
from collections.abc import Collection, Mapping
from datetime import datetime, timedelta
from typing import Any

from message_queue.config import get_settings
from message_queue.constants import (
    DEFAULT_INDEXES,
    FIELD_DATE_CREATED,
    FIELD_ID,
    FIELD_MESSAGE,
    FIELD_NEXT_RECEIVABLE_TIME,
    FIELD_PRIORITY,
    FIELD_RECEIVED_TIME,
    FIELD_REJECTED_TIME,
    FIELD_REJECTION_REASON,
    FIELD_RELEASE_HISTORY,
    FIELD_RELEASED_REASON,
    FIELD_RELEASED_TIME,
    FIELD_RETRY_COUNT,
    FIELD_TYPE,
)
from message_queue.db.adapter import Document, SortSpec, StoreAdapter
from message_queue.exceptions import StoreUnavailable
from message_queue.types.item import QueueItem, utc_now

logger = logging.getLogger(__name__)

# Highest priority first, then oldest, then insertion order of ids
CLAIM_SORT: SortSpec = [
    (FIELD_PRIORITY, 1),
    (FIELD_DATE_CREATED, 1),
    (FIELD_ID, 1),
]


def build_available_filter(
    types: Collection[str],
    now: datetime,
    processing_timeout: timedelta,
) -> Document:
    """
    Build the filter matching items that may be claimed.

    An item is available when it is not rejected, its next receivable
    time is absent or reached, and it is either unclaimed or its lease
    has lapsed.
    """
    return {
        FIELD_TYPE: {"$in": list(types)},
        FIELD_REJECTED_TIME: {"$exists": False},
        "$and": [
            {
                "$or": [
                    {FIELD_NEXT_RECEIVABLE_TIME: {"$lte": now}},
                    {FIELD_NEXT_RECEIVABLE_TIME: {"$exists": False}},
                ]
            },
            {
                "$or": [
                    {FIELD_RECEIVED_TIME: {"$lte": now - processing_timeout}},
                    {FIELD_RECEIVED_TIME: {"$exists": False}},
                ]
            },
        ],
    }


def build_item_filter(item_type: str, message_filter: Mapping[str, Any] | None) -> Document:
    """Match items of a type whose ``message.<key>`` fields equal the filter values."""
    query: Document = {FIELD_TYPE: item_type}
    for key, value in (message_filter or {}).items():
        query[f"{FIELD_MESSAGE}.{key}"] = value
    return query


def build_message_update(
    message_update: Mapping[str, Any] | None,
    next_receivable_time: datetime | None = None,
) -> Document:
    """
    Build a ``$set`` update over ``message.<key>`` fields.

    Raises:
        ValueError: If there is nothing to update.
    """
    fields: Document = {}
    if next_receivable_time is not None:
        fields[FIELD_NEXT_RECEIVABLE_TIME] = next_receivable_time
    for key, value in (message_update or {}).items():
        fields[f"{FIELD_MESSAGE}.{key}"] = value
    if not fields:
        raise ValueError("Update requires message fields or a next receivable time")
    return {"$set": fields}


def _release_record(item: QueueItem, now: datetime) -> Document:
    return {
        FIELD_RETRY_COUNT: item.retry_count or 0,
        FIELD_RECEIVED_TIME: item.received_time,
        FIELD_RELEASED_TIME: now,
        FIELD_RELEASED_REASON: item.released_reason,
    }


class ItemRepository:
    """
    Repository for queue item store operations.

    Implements atomic operations for:
    - Item submission
    - Claiming with a visibility timeout (single find-and-modify)
    - Completion, release and rejection transitions
    - Ad-hoc removal and message updates by type and message filter
    """

    def __init__(
        self,
        store: StoreAdapter | None,
        processing_timeout: timedelta | None = None,
    ):
        """
        Initialize the repository.

        Args:
            store: The store adapter. Operations fail with StoreUnavailable
                while this is None.
            processing_timeout: Visibility timeout for claimed items.
        """
        self.store = store
        if processing_timeout is None:
            processing_timeout = timedelta(
                milliseconds=get_settings().queue_processing_timeout_ms
            )
        self.processing_timeout = processing_timeout

    def _require_store(self) -> StoreAdapter:
        if self.store is None:
            raise StoreUnavailable()
        return self.store

    async def insert(self, item: QueueItem) -> QueueItem:
        """
        Persist a new item.

        Args:
            item: The item to store. ``date_created`` is set if missing.

        Returns:
            The stored item including its generated id.
        """
        store = self._require_store()
        if item.date_created is None:
            item.date_created = utc_now()

        stored = await store.insert_one(item.to_document())
        created = QueueItem.from_document(stored)

        logger.debug(
            "Inserted queue item",
            extra={"item_id": str(created.id), "type": created.type}
        )
        return created

    async def claim(self, types: Collection[str]) -> QueueItem | None:
        """
        Atomically claim one available item.

        This is the critical path for work distribution. The match, sort
        and ``receivedTime`` write happen in one find-and-modify, so two
        claimers never receive the same item.

        Args:
            types: Item types that may be claimed.

        Returns:
            The claimed item as stored after the update, or None.
        """
        store = self._require_store()
        if not types:
            return None

        now = utc_now()
        document = await store.find_one_and_update(
            build_available_filter(types, now, self.processing_timeout),
            {"$set": {FIELD_RECEIVED_TIME: now}},
            sort=CLAIM_SORT,
            return_updated=True,
        )
        if document is None:
            return None

        item = QueueItem.from_document(document)
        logger.debug(
            "Claimed queue item",
            extra={
                "item_id": str(item.id),
                "type": item.type,
                "retry_count": item.retry_count or 0,
            }
        )
        return item

    async def complete(self, item_id: Any) -> int:
        """
        Delete a completed item.

        Returns:
            Number of removed items (0 or 1).
        """
        store = self._require_store()
        return await store.delete_one({FIELD_ID: item_id})

    async def release(self, item: QueueItem) -> int:
        """
        Return an item to the queue after a transient failure.

        Clears the lease, increments the retry count, defers the item until
        its ``next_receivable_time`` (or now) and appends a history record
        holding the pre-release retry count.

        Returns:
            Number of modified items (0 or 1).
        """
        store = self._require_store()
        now = utc_now()
        update = {
            "$unset": {FIELD_RECEIVED_TIME: ""},
            "$set": {
                FIELD_RETRY_COUNT: (item.retry_count or 0) + 1,
                FIELD_NEXT_RECEIVABLE_TIME: item.next_receivable_time or now,
            },
            "$push": {FIELD_RELEASE_HISTORY: _release_record(item, now)},
        }

        modified = await store.update_one({FIELD_ID: item.id}, update)
        logger.info(
            "Released queue item",
            extra={
                "item_id": str(item.id),
                "type": item.type,
                "retry_count": (item.retry_count or 0) + 1,
                "reason": item.released_reason,
            }
        )
        return modified

    async def reject(self, item: QueueItem) -> int:
        """
        Permanently reject an item.

        The record is kept with ``rejectedTime`` set, which excludes it
        from every future claim.

        Returns:
            Number of modified items (0 or 1).
        """
        store = self._require_store()
        now = utc_now()
        update = {
            "$unset": {FIELD_RECEIVED_TIME: "", FIELD_NEXT_RECEIVABLE_TIME: ""},
            "$set": {
                FIELD_REJECTED_TIME: now,
                FIELD_REJECTION_REASON: item.rejection_reason,
            },
            "$push": {FIELD_RELEASE_HISTORY: _release_record(item, now)},
        }

        modified = await store.update_one({FIELD_ID: item.id}, update)
        logger.warning(
            "Rejected queue item",
            extra={
                "item_id": str(item.id),
                "type": item.type,
                "reason": item.rejection_reason,
            }
        )
        return modified

    async def remove_one(
        self,
        item_type: str,
        message_filter: Mapping[str, Any] | None = None,
    ) -> int:
        """Delete the first item of a type matching the message filter."""
        store = self._require_store()
        return await store.delete_one(build_item_filter(item_type, message_filter))

    async def remove_many(
        self,
        item_type: str,
        message_filter: Mapping[str, Any] | None = None,
    ) -> int:
        """Delete every item of a type matching the message filter."""
        store = self._require_store()
        return await store.delete_many(build_item_filter(item_type, message_filter))

    async def update_one(
        self,
        item_type: str,
        message_filter: Mapping[str, Any] | None,
        message_update: Mapping[str, Any] | None,
        next_receivable_time: datetime | None = None,
    ) -> int:
        """
        Update message fields of the first matching item.

        Args:
            item_type: The item type.
            message_filter: Equality filter over ``message`` fields.
            message_update: Values to set on ``message`` fields.
            next_receivable_time: Optional new next receivable time.

        Returns:
            Number of modified items (0 or 1).
        """
        store = self._require_store()
        return await store.update_one(
            build_item_filter(item_type, message_filter),
            build_message_update(message_update, next_receivable_time),
        )

    async def update_many(
        self,
        item_type: str,
        message_filter: Mapping[str, Any] | None,
        message_update: Mapping[str, Any] | None,
        next_receivable_time: datetime | None = None,
    ) -> int:
        """Update message fields of every matching item; see ``update_one``."""
        store = self._require_store()
        return await store.update_many(
            build_item_filter(item_type, message_filter),
            build_message_update(message_update, next_receivable_time),
        )

    async def count(
        self,
        item_type: str,
        message_filter: Mapping[str, Any] | None = None,
    ) -> int:
        """Count items of a type matching the message filter."""
        store = self._require_store()
        return await store.count_documents(build_item_filter(item_type, message_filter))

    async def ensure_indexes(
        self,
        key_patterns: list[SortSpec] | None = None,
        **options: Any,
    ) -> list[str]:
        """
        Create indexes on the queue collection.

        Args:
            key_patterns: Index key patterns. Defaults to the claim index.
            **options: Passed through to the store (e.g. ``background``).

        Returns:
            Names of the ensured indexes.
        """
        store = self._require_store()
        patterns = DEFAULT_INDEXES if key_patterns is None else key_patterns
        return list(
            await asyncio.gather(
                *(store.create_index(pattern, **options) for pattern in patterns)
            )
        )
