"""
Object store on S3-compatible storage (e.g., AWS S3, MinIO, SeaweedFS, Cloudflare R2).

Staged blocks of chunked uploads are kept as ordinary objects under a staging prefix
(default .staging/) that is hidden from listings. Committing assembles them through a
single multipart upload, so the final object only becomes visible when S3 completes it.
Abandoned staging objects should be expired with a bucket lifecycle rule on that prefix.
"""

import contextlib
import logging
from typing import AsyncIterable, AsyncIterator

from botocore.exceptions import ClientError
from types_aiobotocore_s3.client import S3Client
from types_aiobotocore_s3.type_defs import CompletedPartTypeDef, ObjectIdentifierTypeDef

from blobtree.objectstorage.store import (
    MissingBlocks,
    ObjectInfo,
    ObjectNotFound,
    ObjectStore,
    StoredObject,
    StoreError,
)

# S3 refuses multipart parts below 5 MiB (except the last one) and single copies above 5 GiB
MIN_PART_SIZE = 5 * 1024 * 1024
MAX_COPY_SIZE = 5 * 1024 * 1024 * 1024
READ_CHUNK_SIZE = 1024 * 1024
DELETE_BATCH_SIZE = 1000

NOT_FOUND_CODES = {"404", "NoSuchKey", "NotFound"}


def _error_code(e: ClientError) -> str | None:
    return e.response.get("Error", {}).get("Code")


def _store_error(e: ClientError, operation: str, key: str) -> StoreError:
    """Wrap a ClientError so callers never see endpoints or request ids. The original is logged at DEBUG."""
    logging.debug(f"S3 {operation} failed for key={key}: {e}")
    code = _error_code(e) or "Unknown"
    if code in NOT_FOUND_CODES:
        return ObjectNotFound(f"Object {key} not found")
    return StoreError(f"S3 {operation} failed for key={key}: {code}")


async def _parts(chunks: AsyncIterable[bytes], part_size: int) -> AsyncIterator[bytes]:
    """Regroup a byte stream into pieces of at least part_size bytes (the last one may be smaller)"""
    buffer = bytearray()
    async for chunk in chunks:
        buffer.extend(chunk)
        if len(buffer) >= part_size:
            yield bytes(buffer)
            buffer.clear()
    if buffer:
        yield bytes(buffer)


class S3ObjectStore(ObjectStore):
    def __init__(
        self,
        client: S3Client,
        bucket: str,
        staging_prefix: str = ".staging/",
        part_size: int = 8 * 1024 * 1024,
    ):
        if part_size < MIN_PART_SIZE:
            raise ValueError(f"part_size must be at least {MIN_PART_SIZE} bytes, got {part_size}")
        if not staging_prefix.strip("/"):
            raise ValueError("staging_prefix cannot be empty")
        self._client = client
        self.bucket = bucket
        self.staging_prefix = staging_prefix.strip("/") + "/"
        self.reserved_prefix = self.staging_prefix
        self.part_size = part_size

    async def ensure_bucket(self) -> None:
        try:
            await self._client.head_bucket(Bucket=self.bucket)
        except ClientError as e:
            if _error_code(e) in ("404", "NoSuchBucket"):
                logging.info(f"Creating bucket {self.bucket}")
                await self._client.create_bucket(Bucket=self.bucket)
            else:
                raise _store_error(e, "head bucket", self.bucket) from e

    def _staging_key(self, key: str, block_id: str) -> str:
        return f"{self.staging_prefix}{key}/{block_id}"

    ## Writing

    async def put(self, key: str, chunks: AsyncIterable[bytes], content_type: str) -> int:
        parts = _parts(chunks, self.part_size)
        first = await anext(parts, b"")
        second = await anext(parts, None)
        if second is None:
            # Fits in one part, so a single (atomic) put is enough
            try:
                await self._client.put_object(Bucket=self.bucket, Key=key, Body=first, ContentType=content_type)
            except ClientError as e:
                raise _store_error(e, "put", key) from e
            return len(first)

        async def all_parts() -> AsyncIterator[bytes]:
            yield first
            yield second
            async for part in parts:
                yield part

        return await self._multipart_upload(key, all_parts(), content_type)

    async def _multipart_upload(self, key: str, parts: AsyncIterable[bytes], content_type: str) -> int:
        try:
            upload = await self._client.create_multipart_upload(Bucket=self.bucket, Key=key, ContentType=content_type)
        except ClientError as e:
            raise _store_error(e, "create multipart upload", key) from e
        upload_id = upload["UploadId"]
        completed: list[CompletedPartTypeDef] = []
        total = 0
        try:
            async for part in parts:
                number = len(completed) + 1
                res = await self._client.upload_part(
                    Bucket=self.bucket, Key=key, UploadId=upload_id, PartNumber=number, Body=part
                )
                completed.append({"ETag": res["ETag"], "PartNumber": number})
                total += len(part)
            if not completed:
                # S3 needs at least one part, even for an empty object
                res = await self._client.upload_part(Bucket=self.bucket, Key=key, UploadId=upload_id, PartNumber=1, Body=b"")
                completed.append({"ETag": res["ETag"], "PartNumber": 1})
            await self._client.complete_multipart_upload(
                Bucket=self.bucket, Key=key, UploadId=upload_id, MultipartUpload={"Parts": completed}
            )
        except BaseException as e:
            logging.warning(f"Aborting multipart upload of {key} after {len(completed)} part(s)")
            with contextlib.suppress(ClientError):
                await self._client.abort_multipart_upload(Bucket=self.bucket, Key=key, UploadId=upload_id)
            if isinstance(e, ClientError):
                raise _store_error(e, "multipart upload", key) from e
            raise
        return total

    async def stage_block(self, key: str, block_id: str, data: bytes) -> None:
        try:
            await self._client.put_object(Bucket=self.bucket, Key=self._staging_key(key, block_id), Body=data)
        except ClientError as e:
            raise _store_error(e, "stage block", key) from e

    async def commit_block_list(self, key: str, block_ids: list[str], content_type: str) -> int:
        staging_dir = self._staging_key(key, "")
        # keys of deeper objects (e.g. "key/sub") share this prefix, so only keep direct children
        present = {obj["key"] async for obj in self._scan(staging_dir) if "/" not in obj["key"][len(staging_dir) :]}
        if missing := [b for b in block_ids if self._staging_key(key, b) not in present]:
            raise MissingBlocks(key, missing)

        # TODO: use upload_part_copy instead of streaming through this process when all blocks are >= 5 MiB
        staged = [self._staging_key(key, b) for b in block_ids]
        total = await self._multipart_upload(key, _parts(self._read_objects(staged), self.part_size), content_type)

        try:
            await self._delete_keys(sorted(present))
        except StoreError:
            # The object is committed; leftovers are removed by the staging lifecycle rule
            logging.exception(f"Could not remove staged blocks for {key}")
        return total

    async def _read_objects(self, keys: list[str]) -> AsyncIterator[bytes]:
        for key in keys:
            obj = await self.get(key)
            try:
                async for chunk in obj.body:
                    yield chunk
            finally:
                await obj.close()

    ## Reading

    async def get(self, key: str) -> StoredObject:
        try:
            res = await self._client.get_object(Bucket=self.bucket, Key=key)
        except ClientError as e:
            raise _store_error(e, "get", key) from e
        info = ObjectInfo(
            key=key,
            size=res["ContentLength"],
            created_at=res.get("LastModified"),
            content_type=res.get("ContentType"),
        )
        return StoredObject(info, self._iter_body(key, res["Body"]))

    async def _iter_body(self, key: str, body) -> AsyncIterator[bytes]:
        try:
            async for chunk in body.iter_chunks(READ_CHUNK_SIZE):
                yield chunk
        except ClientError as e:
            raise _store_error(e, "read", key) from e
        finally:
            body.close()

    async def head(self, key: str) -> ObjectInfo | None:
        try:
            res = await self._client.head_object(Bucket=self.bucket, Key=key)
        except ClientError as e:
            if _error_code(e) in NOT_FOUND_CODES:
                return None
            raise _store_error(e, "head", key) from e
        return ObjectInfo(
            key=key,
            size=res["ContentLength"],
            created_at=res.get("LastModified"),
            content_type=res.get("ContentType"),
        )

    async def list_objects(self, prefix: str | None = None) -> AsyncIterator[ObjectInfo]:
        async for obj in self._scan(prefix or ""):
            if not obj["key"].startswith(self.staging_prefix):
                yield obj

    async def _scan(self, prefix: str, page_size=1000) -> AsyncIterator[ObjectInfo]:
        paginator = self._client.get_paginator("list_objects_v2")
        try:
            async for page in paginator.paginate(
                Bucket=self.bucket, Prefix=prefix, PaginationConfig={"PageSize": page_size}
            ):
                for content in page.get("Contents", []):
                    if "Key" in content:
                        yield ObjectInfo(
                            key=content["Key"],
                            size=content.get("Size", 0),
                            created_at=content.get("LastModified"),
                            content_type=None,
                        )
        except ClientError as e:
            raise _store_error(e, "list", prefix) from e

    ## Deleting and copying

    async def delete(self, key: str) -> None:
        try:
            await self._client.delete_object(Bucket=self.bucket, Key=key)
        except ClientError as e:
            raise _store_error(e, "delete", key) from e

    async def _delete_keys(self, keys: list[str]) -> None:
        for i in range(0, len(keys), DELETE_BATCH_SIZE):
            to_delete: list[ObjectIdentifierTypeDef] = [{"Key": key} for key in keys[i : i + DELETE_BATCH_SIZE]]
            try:
                await self._client.delete_objects(Bucket=self.bucket, Delete={"Objects": to_delete})
            except ClientError as e:
                raise _store_error(e, "delete", to_delete[0]["Key"]) from e

    async def copy(self, source: str, destination: str) -> None:
        info = await self.head(source)
        if info is None:
            raise ObjectNotFound(f"Object {source} not found")
        copy_source = {"Bucket": self.bucket, "Key": source}
        if info["size"] <= MAX_COPY_SIZE:
            try:
                await self._client.copy_object(Bucket=self.bucket, Key=destination, CopySource=copy_source)
            except ClientError as e:
                raise _store_error(e, "copy", source) from e
            return
        await self._multipart_copy(copy_source, destination, info)

    async def _multipart_copy(self, copy_source: dict, destination: str, info: ObjectInfo) -> None:
        """Copy objects larger than the single copy limit part by part, still without leaving the server"""
        content_type = info["content_type"] or "application/octet-stream"
        try:
            upload = await self._client.create_multipart_upload(
                Bucket=self.bucket, Key=destination, ContentType=content_type
            )
        except ClientError as e:
            raise _store_error(e, "create multipart copy", destination) from e
        upload_id = upload["UploadId"]
        part_size = max(self.part_size, 512 * 1024 * 1024)
        completed: list[CompletedPartTypeDef] = []
        try:
            for number, start in enumerate(range(0, info["size"], part_size), start=1):
                end = min(start + part_size, info["size"]) - 1
                res = await self._client.upload_part_copy(
                    Bucket=self.bucket,
                    Key=destination,
                    UploadId=upload_id,
                    PartNumber=number,
                    CopySource=copy_source,  # type: ignore
                    CopySourceRange=f"bytes={start}-{end}",
                )
                completed.append({"ETag": res["CopyPartResult"]["ETag"], "PartNumber": number})
            await self._client.complete_multipart_upload(
                Bucket=self.bucket, Key=destination, UploadId=upload_id, MultipartUpload={"Parts": completed}
            )
        except BaseException as e:
            with contextlib.suppress(ClientError):
                await self._client.abort_multipart_upload(Bucket=self.bucket, Key=destination, UploadId=upload_id)
            if isinstance(e, ClientError):
                raise _store_error(e, "multipart copy", destination) from e
            raise
