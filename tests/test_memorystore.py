import pytest

from blobtree.objectstorage.store import MissingBlocks, ObjectNotFound


async def _stream(*parts: bytes):
    for part in parts:
        yield part


async def _keys(store, prefix=None) -> list[str]:
    return [obj["key"] async for obj in store.list_objects(prefix)]


@pytest.mark.anyio
async def test_put_get(store):
    assert await store.put("a/b.txt", _stream(b"ab", b"c"), "text/plain") == 3
    info = await store.head("a/b.txt")
    assert info["size"] == 3
    assert info["content_type"] == "text/plain"
    assert info["created_at"] is not None
    obj = await store.get("a/b.txt")
    assert obj.key == "a/b.txt"
    assert obj.size == 3
    assert await obj.read() == b"abc"
    assert await store.exists("a/b.txt")


@pytest.mark.anyio
async def test_large_object_is_streamed(store):
    data = bytes(range(256)) * 1024
    await store.put("big", _stream(data), "application/octet-stream")
    obj = await store.get("big")
    parts = [part async for part in obj.body]
    assert len(parts) > 1
    assert b"".join(parts) == data


@pytest.mark.anyio
async def test_missing(store):
    assert await store.head("nope") is None
    assert not await store.exists("nope")
    with pytest.raises(ObjectNotFound):
        await store.get("nope")
    with pytest.raises(ObjectNotFound):
        await store.copy("nope", "other")
    await store.delete("nope")


@pytest.mark.anyio
async def test_list_copy_delete(store):
    for key in ["b.txt", "a/2.txt", "a/1.txt", "ab.txt"]:
        await store.put(key, _stream(b"x"), "text/plain")
    assert await _keys(store) == ["a/1.txt", "a/2.txt", "ab.txt", "b.txt"]
    assert await _keys(store, "a/") == ["a/1.txt", "a/2.txt"]

    await store.copy("b.txt", "c/b.txt")
    assert await (await store.get("c/b.txt")).read() == b"x"
    assert await store.exists("b.txt")

    await store.delete("b.txt")
    assert await _keys(store) == ["a/1.txt", "a/2.txt", "ab.txt", "c/b.txt"]


@pytest.mark.anyio
async def test_blocks(store):
    await store.stage_block("k", "b2", b"2")
    await store.stage_block("k", "b1", b"1")
    # staged blocks are not objects
    assert await _keys(store) == []
    with pytest.raises(MissingBlocks) as e:
        await store.commit_block_list("k", ["b1", "b2", "b3"], "text/plain")
    assert e.value.block_ids == ["b3"]
    assert store.staged_block_ids("k") == ["b1", "b2"]

    assert await store.commit_block_list("k", ["b1", "b2"], "text/plain") == 2
    assert await (await store.get("k")).read() == b"12"
    assert store.staged_block_ids("k") == []


def test_reserved_prefix(store):
    assert not store.is_reserved(".staging/x")
    store.reserved_prefix = ".staging/"
    assert store.is_reserved(".staging/x/chunk-0")
    assert not store.is_reserved(".staging")
    assert not store.is_reserved("docs/.staging/x")
