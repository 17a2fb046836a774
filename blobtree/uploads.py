"""
Uploading objects, either streamed in one request or as separately uploaded chunks.

Chunked uploads keep no state in this process. Chunk i of an upload is staged in the store under
a block id derived from i alone, so chunks can arrive in any order and from concurrent requests.
The commit rebuilds the ordered list of block ids for 0..total_chunks-1 and asks the store to
assemble them. The store refuses (and leaves the target untouched) if any block is missing, so a
half-finished upload can never appear as a complete object.
"""

import base64
import logging
from typing import AsyncIterable

from blobtree.errors import IncompleteUpload, UpstreamFailure, ValidationError
from blobtree.objectstorage.store import MissingBlocks, ObjectStore, StoreError
from blobtree.paths import is_marker, normalize

BLOCK_ID_WIDTH = 6
MAX_CHUNKS = 10**BLOCK_ID_WIDTH
DEFAULT_CONTENT_TYPE = "application/octet-stream"


def block_id(index: int) -> str:
    """The block id for chunk index, e.g. 3 -> base64('chunk-000003')"""
    return base64.b64encode(f"chunk-{index:0{BLOCK_ID_WIDTH}d}".encode("ascii")).decode("ascii")


def validate_key(key: str | None, store: ObjectStore | None = None) -> str:
    """The normalized key, or ValidationError if it is missing or cannot hold a user file"""
    key = normalize(key)
    if not key:
        raise ValidationError("Missing filename")
    if is_marker(key):
        raise ValidationError(f"{key} is not a valid file name")
    if store is not None and store.is_reserved(key):
        raise ValidationError(f"{key} is in a reserved part of the store")
    return key


def _parse_count(value: int | str | None, name: str) -> int:
    if value is None or value == "":
        raise ValidationError(f"Missing {name}")
    if isinstance(value, bool):
        raise ValidationError(f"{name} should be an integer, got {value!r}")
    try:
        return value if isinstance(value, int) else int(str(value).strip(), 10)
    except ValueError:
        raise ValidationError(f"{name} should be an integer, got {value!r}")


class ChunkedUploadCoordinator:
    def __init__(self, store: ObjectStore, max_chunks: int = MAX_CHUNKS, max_chunk_bytes: int | None = None):
        if not 0 < max_chunks <= MAX_CHUNKS:
            raise ValueError(f"max_chunks should be between 1 and {MAX_CHUNKS}")
        self.store = store
        self.max_chunks = max_chunks
        self.max_chunk_bytes = max_chunk_bytes

    def _total(self, total_chunks: int | str | None) -> int:
        total = _parse_count(total_chunks, "totalChunks")
        if not 0 < total <= self.max_chunks:
            raise ValidationError(f"totalChunks should be between 1 and {self.max_chunks}, got {total}")
        return total

    def validate_chunk(
        self, key: str | None, chunk_index: int | str | None, total_chunks: int | str | None
    ) -> tuple[str, int, int]:
        key = validate_key(key, self.store)
        index = _parse_count(chunk_index, "chunkIndex")
        total = self._total(total_chunks)
        if not 0 <= index < total:
            raise ValidationError(f"chunkIndex should be between 0 and {total - 1}, got {index}")
        return key, index, total

    async def stage_chunk(
        self, key: str | None, chunk_index: int | str | None, total_chunks: int | str | None, data: bytes
    ) -> tuple[int, str]:
        """
        Stage one chunk of the upload to key.
        Staging the same index twice replaces the earlier bytes, so retrying a chunk is safe.
        :return: the chunk index and the block id it was staged under
        """
        key, index, _total = self.validate_chunk(key, chunk_index, total_chunks)
        if self.max_chunk_bytes is not None and len(data) > self.max_chunk_bytes:
            raise ValidationError(f"Chunk {index} is {len(data)} bytes, the maximum is {self.max_chunk_bytes}")
        bid = block_id(index)
        try:
            await self.store.stage_block(key, bid, data)
        except StoreError as e:
            raise UpstreamFailure(f"Failed to stage chunk {index} of {key}", step="stage") from e
        return index, bid

    async def commit(self, key: str | None, total_chunks: int | str | None, content_type: str | None = None) -> int:
        """
        Assemble chunks 0..total_chunks-1 into the object at key.
        :return: the size of the committed object
        """
        key = validate_key(key, self.store)
        total = self._total(total_chunks)
        block_ids = [block_id(i) for i in range(total)]
        logging.info(f"Committing {total} chunks for {key}")
        try:
            size = await self.store.commit_block_list(key, block_ids, content_type or DEFAULT_CONTENT_TYPE)
        except MissingBlocks as e:
            index_of = {bid: i for i, bid in enumerate(block_ids)}
            raise IncompleteUpload(key, sorted(index_of[bid] for bid in e.block_ids)) from e
        except StoreError as e:
            raise UpstreamFailure(f"Failed to finalize upload of {key}", step="commit") from e
        logging.info(f"Chunked upload completed: {key} ({size} bytes)")
        return size


async def stream_upload(
    store: ObjectStore, key: str | None, chunks: AsyncIterable[bytes], content_type: str | None = None
) -> int:
    """
    Stream an upload straight into the store. If the stream breaks off, no object is created at key.
    :return: the number of bytes stored
    """
    key = validate_key(key, store)
    logging.info(f"Starting upload: {key} ({content_type or DEFAULT_CONTENT_TYPE})")
    try:
        size = await store.put(key, chunks, content_type or DEFAULT_CONTENT_TYPE)
    except StoreError as e:
        raise UpstreamFailure(f"Failed to upload {key}", step="put") from e
    logging.info(f"Upload completed: {key} ({size} bytes)")
    return size
