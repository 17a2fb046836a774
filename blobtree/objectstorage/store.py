"""
Contract for the object stores that blobtree can run on.

A store is a flat key/value namespace. Folders do not exist at this level; see blobtree.hierarchy.
"""

from abc import ABC, abstractmethod
from datetime import datetime
from typing import AsyncIterable, AsyncIterator

from typing_extensions import TypedDict


class StoreError(Exception):
    """A store operation failed. The message never contains backend credentials or endpoints."""


class ObjectNotFound(StoreError):
    pass


class MissingBlocks(StoreError):
    """commit_block_list was given block ids that were never staged"""

    def __init__(self, key: str, block_ids: list[str]):
        super().__init__(f"{len(block_ids)} block(s) missing for {key}")
        self.key = key
        self.block_ids = block_ids


class ObjectInfo(TypedDict):
    key: str
    size: int
    created_at: datetime | None
    content_type: str | None


class StoredObject:
    """An object being read from the store. body yields the content and must be consumed or closed."""

    def __init__(self, info: ObjectInfo, body: AsyncIterator[bytes]):
        self.info = info
        self.body = body

    @property
    def key(self) -> str:
        return self.info["key"]

    @property
    def size(self) -> int:
        return self.info["size"]

    @property
    def content_type(self) -> str:
        return self.info["content_type"] or "application/octet-stream"

    async def read(self) -> bytes:
        """Read the whole body. Only meant for small objects and tests."""
        return b"".join([chunk async for chunk in self.body])

    async def close(self):
        aclose = getattr(self.body, "aclose", None)
        if aclose is not None:
            await aclose()


class ObjectStore(ABC):
    #: keys starting with this prefix hold internal state (e.g. staged blocks) and are not user objects
    reserved_prefix: str | None = None

    def is_reserved(self, key: str) -> bool:
        if not self.reserved_prefix:
            return False
        return key.startswith(self.reserved_prefix)

    @abstractmethod
    async def put(self, key: str, chunks: AsyncIterable[bytes], content_type: str) -> int:
        """
        Store the streamed content at key and return the number of bytes written.
        If the stream fails halfway, nothing may become visible at key.
        """

    @abstractmethod
    async def stage_block(self, key: str, block_id: str, data: bytes) -> None:
        """Stage one block for a later commit_block_list on the same key. Re-staging an id replaces it."""

    @abstractmethod
    async def commit_block_list(self, key: str, block_ids: list[str], content_type: str) -> int:
        """
        Assemble the staged blocks, in the given order, into the object at key and discard the staging state.
        Raises MissingBlocks (and leaves key untouched) if any id was not staged.
        """

    @abstractmethod
    async def get(self, key: str) -> StoredObject:
        """Raises ObjectNotFound if the key does not exist"""

    @abstractmethod
    async def head(self, key: str) -> ObjectInfo | None:
        """Object metadata, or None if the key does not exist"""

    async def exists(self, key: str) -> bool:
        return await self.head(key) is not None

    @abstractmethod
    async def delete(self, key: str) -> None:
        pass

    @abstractmethod
    async def copy(self, source: str, destination: str) -> None:
        """Server side copy. Raises ObjectNotFound if source does not exist."""

    @abstractmethod
    def list_objects(self, prefix: str | None = None) -> AsyncIterator[ObjectInfo]:
        """Yield all objects whose key starts with prefix, in lexicographic key order"""

    async def close(self) -> None:
        pass
