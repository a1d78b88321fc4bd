"""
Store adapter contract and its MongoDB implementation.

The repository only talks to a ``StoreAdapter``. Filters and updates use
MongoDB query/update syntax (``$set``, ``$unset``, ``$push``, ``$exists``,
``$lt``, ``$in``, ``$and``, ``$or``).
"""

import logging
from collections.abc import Iterator, Sequence
from contextlib import contextmanager
from typing import Any, Protocol, runtime_checkable

from pymongo import ReturnDocument
from pymongo.asynchronous.collection import AsyncCollection
from pymongo.errors import ConnectionFailure

from message_queue.exceptions import StoreUnavailable

logger = logging.getLogger(__name__)

Document = dict[str, Any]
SortSpec = Sequence[tuple[str, int]]


@runtime_checkable
class StoreAdapter(Protocol):
    """Capabilities the queue requires from a document store."""

    async def insert_one(self, document: Document) -> Document:
        """Insert a document and return it with its generated ``_id``."""
        ...

    async def find_one_and_update(
        self,
        filter: Document,
        update: Document,
        *,
        sort: SortSpec | None = None,
        return_updated: bool = True,
    ) -> Document | None:
        """Atomically update the first matching document."""
        ...

    async def delete_one(self, filter: Document) -> int:
        ...

    async def delete_many(self, filter: Document) -> int:
        ...

    async def update_one(self, filter: Document, update: Document) -> int:
        ...

    async def update_many(self, filter: Document, update: Document) -> int:
        ...

    async def count_documents(self, filter: Document) -> int:
        ...

    async def create_index(self, keys: SortSpec, **options: Any) -> str:
        ...


@contextmanager
def _translate_errors() -> Iterator[None]:
    """Surface an unreachable server as StoreUnavailable."""
    try:
        yield
    except ConnectionFailure as e:
        raise StoreUnavailable(f"Store unreachable: {e}") from e


class MongoStoreAdapter:
    """
    StoreAdapter backed by a pymongo asyncio collection.

    ``find_one_and_update`` maps directly onto MongoDB's atomic
    findAndModify, which is what keeps concurrent claimers from
    receiving the same item.
    """

    def __init__(self, collection: AsyncCollection):
        """
        Initialize the adapter.

        Args:
            collection: The queue collection.
        """
        self._collection = collection

    @property
    def collection_name(self) -> str:
        return self._collection.name

    async def insert_one(self, document: Document) -> Document:
        with _translate_errors():
            result = await self._collection.insert_one(dict(document))
        return {**document, "_id": result.inserted_id}

    async def find_one_and_update(
        self,
        filter: Document,
        update: Document,
        *,
        sort: SortSpec | None = None,
        return_updated: bool = True,
    ) -> Document | None:
        return_document = ReturnDocument.AFTER if return_updated else ReturnDocument.BEFORE
        with _translate_errors():
            return await self._collection.find_one_and_update(
                filter,
                update,
                sort=list(sort) if sort else None,
                return_document=return_document,
            )

    async def delete_one(self, filter: Document) -> int:
        with _translate_errors():
            result = await self._collection.delete_one(filter)
        return result.deleted_count

    async def delete_many(self, filter: Document) -> int:
        with _translate_errors():
            result = await self._collection.delete_many(filter)
        return result.deleted_count

    async def update_one(self, filter: Document, update: Document) -> int:
        with _translate_errors():
            result = await self._collection.update_one(filter, update)
        return result.modified_count

    async def update_many(self, filter: Document, update: Document) -> int:
        with _translate_errors():
            result = await self._collection.update_many(filter, update)
        return result.modified_count

    async def count_documents(self, filter: Document) -> int:
        with _translate_errors():
            return await self._collection.count_documents(filter)

    async def create_index(self, keys: SortSpec, **options: Any) -> str:
        with _translate_errors():
            name = await self._collection.create_index(list(keys), **options)
        logger.info(
            "Ensured index",
            extra={"collection": self._collection.name, "index": name}
        )
        return name
