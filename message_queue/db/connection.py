"""
Store connection management.
Handles the pymongo asyncio client and the queue collection adapter.
"""

import logging

from pymongo import AsyncMongoClient

from message_queue.config import get_settings
from message_queue.db.adapter import MongoStoreAdapter
from message_queue.exceptions import StoreUnavailable

logger = logging.getLogger(__name__)

# Global client instance
_client: AsyncMongoClient | None = None
_store: MongoStoreAdapter | None = None


def get_client() -> AsyncMongoClient:
    """
    Get or create the MongoDB client.

    Returns:
        AsyncMongoClient: The pymongo asyncio client instance.
    """
    global _client
    if _client is None:
        settings = get_settings()
        _client = AsyncMongoClient(
            settings.mongodb_url,
            tz_aware=True,
            serverSelectionTimeoutMS=settings.mongodb_server_selection_timeout_ms,
        )
    return _client


def create_store(
    client: AsyncMongoClient,
    database: str,
    collection_name: str,
) -> MongoStoreAdapter:
    """
    Create a store adapter for a collection on an existing client.

    Args:
        client: The MongoDB client.
        database: Database name.
        collection_name: Queue collection name.

    Returns:
        MongoStoreAdapter: Adapter bound to the collection.
    """
    return MongoStoreAdapter(client[database][collection_name])


async def init_store(collection_name: str | None = None) -> MongoStoreAdapter:
    """
    Initialize the store connection and the queue collection adapter.
    Should be called on application startup.

    Args:
        collection_name: Queue collection. Defaults to the configured one.

    Returns:
        MongoStoreAdapter: The adapter for the queue collection.
    """
    global _store
    settings = get_settings()
    _store = create_store(
        get_client(),
        settings.mongodb_database,
        collection_name or settings.queue_collection_name,
    )
    logger.info(
        "Store connection initialized",
        extra={
            "database": settings.mongodb_database,
            "collection": _store.collection_name,
        }
    )
    return _store


async def close_store() -> None:
    """
    Close the store connection.
    Should be called on application shutdown.
    """
    global _client, _store
    if _client is not None:
        await _client.close()
        _client = None
        _store = None
        logger.info("Store connection closed")


def get_store() -> MongoStoreAdapter:
    """
    Get the initialized store adapter.

    Returns:
        MongoStoreAdapter: The queue collection adapter.

    Raises:
        StoreUnavailable: If the store is not initialized.
    """
    if _store is None:
        raise StoreUnavailable("Store not initialized. Call init_store() first.")
    return _store
