import base64
import random

import pytest

from blobtree.errors import IncompleteUpload, UpstreamFailure, ValidationError
from blobtree.objectstorage.memorystore import MemoryObjectStore
from blobtree.objectstorage.store import StoreError
from blobtree.uploads import ChunkedUploadCoordinator, block_id, stream_upload


@pytest.fixture()
def chunks(store) -> ChunkedUploadCoordinator:
    return ChunkedUploadCoordinator(store, max_chunks=100, max_chunk_bytes=16)


async def _stream(*parts: bytes):
    for part in parts:
        yield part


def test_block_id():
    assert base64.b64decode(block_id(3)) == b"chunk-000003"
    assert base64.b64decode(block_id(999_999)) == b"chunk-999999"
    # all block ids of an upload have the same length
    assert len({len(block_id(i)) for i in [0, 9, 10, 12345, 999_999]}) == 1


@pytest.mark.anyio
async def test_out_of_order(store, chunks):
    assert await chunks.stage_chunk("docs/x.txt", 1, 3, b"B") == (1, block_id(1))
    await chunks.stage_chunk("docs/x.txt", 0, 3, b"A")
    await chunks.stage_chunk("docs/x.txt", "2", "3", b"C")
    assert not await store.exists("docs/x.txt")

    assert await chunks.commit("docs/x.txt", 3, "text/plain") == 3
    obj = await store.get("docs/x.txt")
    assert await obj.read() == b"ABC"
    assert obj.content_type == "text/plain"
    assert store.staged_block_ids("docs/x.txt") == []


@pytest.mark.anyio
async def test_random_order(store, chunks):
    parts = [f"{i:02d}".encode() for i in range(40)]
    order = list(range(40))
    random.shuffle(order)
    for i in order:
        await chunks.stage_chunk("big.bin", i, 40, parts[i])
    assert await chunks.commit("big.bin", 40) == 80
    obj = await store.get("big.bin")
    assert await obj.read() == b"".join(parts)
    assert obj.content_type == "application/octet-stream"


@pytest.mark.anyio
async def test_restage_replaces(store, chunks):
    await chunks.stage_chunk("x", 0, 2, b"old")
    await chunks.stage_chunk("x", 1, 2, b"!")
    await chunks.stage_chunk("x", 0, 2, b"new")
    await chunks.commit("x", 2)
    assert await (await store.get("x")).read() == b"new!"


@pytest.mark.anyio
async def test_missing_chunk(store, chunks):
    await chunks.stage_chunk("x", 0, 3, b"A")
    await chunks.stage_chunk("x", 2, 3, b"C")
    with pytest.raises(IncompleteUpload) as e:
        await chunks.commit("x", 3)
    assert e.value.missing == [1]
    assert isinstance(e.value, ValidationError)
    assert not await store.exists("x")

    # the staged chunks survive, so the client can send the missing one and commit again
    await chunks.stage_chunk("x", 1, 3, b"B")
    assert await chunks.commit("x", 3) == 3
    assert await (await store.get("x")).read() == b"ABC"


@pytest.mark.anyio
async def test_commit_without_chunks(store, chunks):
    with pytest.raises(IncompleteUpload) as e:
        await chunks.commit("x", 2)
    assert e.value.missing == [0, 1]


@pytest.mark.anyio
@pytest.mark.parametrize(
    "key,index,total",
    [
        (None, 0, 1),
        ("", 0, 1),
        ("docs/.keep", 0, 1),
        ("x", None, 1),
        ("x", -1, 3),
        ("x", 3, 3),
        ("x", "abc", 3),
        ("x", 0, None),
        ("x", 0, 0),
        ("x", 0, 101),
        ("x", True, 3),
    ],
)
async def test_invalid_chunk(store, chunks, key, index, total):
    with pytest.raises(ValidationError):
        await chunks.stage_chunk(key, index, total, b"data")
    assert store.staged_block_ids("x") == []


@pytest.mark.anyio
async def test_chunk_too_large(store, chunks):
    with pytest.raises(ValidationError):
        await chunks.stage_chunk("x", 0, 1, b"x" * 17)
    await chunks.stage_chunk("x", 0, 1, b"x" * 16)


@pytest.mark.anyio
async def test_invalid_commit(chunks):
    with pytest.raises(ValidationError):
        await chunks.commit(None, 1)
    with pytest.raises(ValidationError):
        await chunks.commit("x", 0)


@pytest.mark.anyio
async def test_reserved_key(store, chunks):
    store.reserved_prefix = ".staging/"
    with pytest.raises(ValidationError):
        await chunks.stage_chunk(".staging/x/chunk", 0, 1, b"data")
    with pytest.raises(ValidationError):
        await chunks.commit(".staging/x", 1)
    with pytest.raises(ValidationError):
        await stream_upload(store, "/.staging/x", _stream(b"data"))
    assert store.staged_block_ids(".staging/x/chunk") == []
    assert not await store.exists(".staging/x")


def test_max_chunks(store):
    with pytest.raises(ValueError):
        ChunkedUploadCoordinator(store, max_chunks=0)
    with pytest.raises(ValueError):
        ChunkedUploadCoordinator(store, max_chunks=10**6 + 1)


@pytest.mark.anyio
async def test_stage_failure(store, chunks, monkeypatch):
    async def fail(*args, **kargs):
        raise StoreError("Connection reset")

    monkeypatch.setattr(store, "stage_block", fail)
    with pytest.raises(UpstreamFailure) as e:
        await chunks.stage_chunk("x", 0, 1, b"A")
    assert e.value.step == "stage"


@pytest.mark.anyio
async def test_stream_upload(store):
    assert await stream_upload(store, "/docs/a.txt", _stream(b"hello ", b"world"), "text/plain") == 11
    obj = await store.get("docs/a.txt")
    assert await obj.read() == b"hello world"
    with pytest.raises(ValidationError):
        await stream_upload(store, "docs/.keep", _stream(b""))


@pytest.mark.anyio
async def test_broken_stream_creates_nothing():
    store = MemoryObjectStore()

    async def broken():
        yield b"first part"
        raise ConnectionError("client went away")

    with pytest.raises(ConnectionError):
        await stream_upload(store, "a.txt", broken())
    assert not await store.exists("a.txt")
