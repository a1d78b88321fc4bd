"""
Application constants.
Centralized location for all constant values used across the application.
"""

from enum import StrEnum


class Outcome(StrEnum):
    """
    Result a worker reports for a claimed item.

    Outcome transitions:
    - COMPLETED -> item deleted
    - RETRY -> item released (available again, retry count incremented)
    - REJECTED -> item rejected (kept, never claimable again)
    """

    COMPLETED = "Completed"
    RETRY = "Retry"
    REJECTED = "Rejected"


# Priority range, 1 being the highest
MIN_PRIORITY = 1
MAX_PRIORITY = 10
DEFAULT_PRIORITY = 1

# Default values
DEFAULT_COLLECTION_NAME = "_queue"
DEFAULT_POLLING_INTERVAL_MS = 1000
DEFAULT_PROCESSING_TIMEOUT_MS = 30 * 1000
DEFAULT_MAX_CONCURRENCY = 5

# Stored document field names
FIELD_ID = "_id"
FIELD_TYPE = "type"
FIELD_MESSAGE = "message"
FIELD_PRIORITY = "priority"
FIELD_DATE_CREATED = "dateCreated"
FIELD_RECEIVED_TIME = "receivedTime"
FIELD_NEXT_RECEIVABLE_TIME = "nextReceivableTime"
FIELD_RETRY_COUNT = "retryCount"
FIELD_REJECTED_TIME = "rejectedTime"
FIELD_REJECTION_REASON = "rejectionReason"
FIELD_RELEASED_REASON = "releasedReason"
FIELD_RELEASE_HISTORY = "releaseHistory"
FIELD_RELEASED_TIME = "releasedTime"

# Indexes backing the claim query
DEFAULT_INDEXES: list[list[tuple[str, int]]] = [
    [
        (FIELD_TYPE, 1),
        (FIELD_REJECTED_TIME, 1),
        (FIELD_PRIORITY, 1),
        (FIELD_DATE_CREATED, 1),
    ],
]

# Metrics names
METRIC_ITEMS_ENQUEUED = "queue_items_enqueued_total"
METRIC_ITEMS_CLAIMED = "queue_items_claimed_total"
METRIC_ITEMS_PROCESSED = "queue_items_processed_total"
METRIC_PROCESSING_DURATION = "queue_processing_duration_seconds"
METRIC_ACTIVE_WORKERS = "queue_active_workers"
METRIC_POLL_ERRORS = "queue_poll_errors_total"

# Trace span names
SPAN_ENQUEUE = "enqueue"
SPAN_CLAIM = "claim"
SPAN_PROCESS_ITEM = "process_item"
