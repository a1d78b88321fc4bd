"""
Store module.
Contains the store adapter, connection management and the item repository.
"""

from message_queue.db.adapter import MongoStoreAdapter, StoreAdapter
from message_queue.db.connection import (
    close_store,
    create_store,
    get_client,
    get_store,
    init_store,
)
from message_queue.db.repository import ItemRepository

__all__ = [
    "StoreAdapter",
    "MongoStoreAdapter",
    "ItemRepository",
    "get_client",
    "create_store",
    "init_store",
    "close_store",
    "get_store",
]
