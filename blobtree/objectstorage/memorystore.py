"""
Process-local object store.

Used by the test suite and for running the API without S3 (BLOBTREE_STORAGE=memory).
Contents are lost when the process exits.
"""

from datetime import UTC, datetime
from typing import AsyncIterable, AsyncIterator

from blobtree.objectstorage.store import (
    MissingBlocks,
    ObjectInfo,
    ObjectNotFound,
    ObjectStore,
    StoredObject,
)

READ_CHUNK_SIZE = 64 * 1024


class _MemoryObject:
    def __init__(self, data: bytes, content_type: str, created_at: datetime | None = None):
        self.data = data
        self.content_type = content_type
        self.created_at = created_at or datetime.now(UTC)

    def info(self, key: str) -> ObjectInfo:
        return ObjectInfo(key=key, size=len(self.data), created_at=self.created_at, content_type=self.content_type)


class MemoryObjectStore(ObjectStore):
    def __init__(self):
        self._objects: dict[str, _MemoryObject] = {}
        self._staged: dict[str, dict[str, bytes]] = {}

    async def put(self, key: str, chunks: AsyncIterable[bytes], content_type: str) -> int:
        # the object is only assigned once the stream is fully read
        buffer = bytearray()
        async for chunk in chunks:
            buffer.extend(chunk)
        self._objects[key] = _MemoryObject(bytes(buffer), content_type)
        return len(buffer)

    async def stage_block(self, key: str, block_id: str, data: bytes) -> None:
        self._staged.setdefault(key, {})[block_id] = bytes(data)

    async def commit_block_list(self, key: str, block_ids: list[str], content_type: str) -> int:
        staged = self._staged.get(key, {})
        if missing := [b for b in block_ids if b not in staged]:
            raise MissingBlocks(key, missing)
        data = b"".join(staged[b] for b in block_ids)
        self._objects[key] = _MemoryObject(data, content_type)
        del self._staged[key]
        return len(data)

    def staged_block_ids(self, key: str) -> list[str]:
        return sorted(self._staged.get(key, {}))

    async def get(self, key: str) -> StoredObject:
        obj = self._objects.get(key)
        if obj is None:
            raise ObjectNotFound(f"Object {key} not found")
        return StoredObject(obj.info(key), _iter_bytes(obj.data))

    async def head(self, key: str) -> ObjectInfo | None:
        obj = self._objects.get(key)
        return obj.info(key) if obj else None

    async def delete(self, key: str) -> None:
        self._objects.pop(key, None)

    async def copy(self, source: str, destination: str) -> None:
        obj = self._objects.get(source)
        if obj is None:
            raise ObjectNotFound(f"Object {source} not found")
        self._objects[destination] = _MemoryObject(obj.data, obj.content_type)

    async def list_objects(self, prefix: str | None = None) -> AsyncIterator[ObjectInfo]:
        for key in sorted(self._objects):
            if prefix and not key.startswith(prefix):
                continue
            # the object may have been deleted while the caller was consuming the listing
            if obj := self._objects.get(key):
                yield obj.info(key)


async def _iter_bytes(data: bytes) -> AsyncIterator[bytes]:
    for i in range(0, len(data), READ_CHUNK_SIZE):
        yield data[i : i + READ_CHUNK_SIZE]
