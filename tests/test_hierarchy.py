from datetime import datetime

from blobtree.hierarchy import build_hierarchy, contains_key, folder_prefix
from blobtree.objectstorage.store import ObjectInfo

CREATED = datetime(2024, 1, 1, 12, 0, 0)


def objects(*keys: str, size=3) -> list[ObjectInfo]:
    return [ObjectInfo(key=k, size=size, created_at=CREATED, content_type="text/plain") for k in keys]


def names(entries) -> list[str]:
    return [e.name for e in entries]


def test_folder_prefix():
    assert folder_prefix("") == ""
    assert folder_prefix("/docs/") == "docs/"


def test_root_listing():
    h = build_hierarchy(
        objects("z.txt", "docs/sub/c.txt", "a.txt", "docs/b.txt", "docs/.keep", "empty/.keep", ".keep")
    )
    assert names(h.files) == ["a.txt", "z.txt"]
    assert names(h.folders) == ["docs", "empty"]
    docs, empty = h.folders
    assert docs.path == "docs"
    # docs/.keep is the marker of docs itself and is not counted
    assert docs.children == 2
    assert empty.children == 0
    assert h.files[0].full_path == "a.txt"
    assert h.files[0].size == 3
    assert h.files[0].created == CREATED


def test_nested_listing():
    h = build_hierarchy(objects("docs/b.txt", "docs/sub/c.txt", "docs/sub/.keep", "other/d.txt"), "/docs/")
    assert names(h.files) == ["b.txt"]
    assert h.files[0].full_path == "docs/b.txt"
    assert [(f.name, f.path, f.children) for f in h.folders] == [("sub", "docs/sub", 1)]


def test_nested_markers_are_counted():
    h = build_hierarchy(objects("x/y/.keep", "x/.keep"))
    assert [(f.name, f.children) for f in h.folders] == [("x", 1)]
    assert h.files == []


def test_markers_are_never_files():
    h = build_hierarchy(objects("docs/.keep"), "docs")
    assert h.files == []
    assert h.folders == []


def test_prefix_is_a_folder_boundary():
    h = build_hierarchy(objects("docs/a.txt", "docsextra/b.txt", "docs.txt"), "docs")
    assert names(h.files) == ["a.txt"]
    assert h.folders == []


def test_contains_key():
    keys = ["docs/sub/c.txt", "a.txt"]
    assert contains_key(keys, "")
    assert contains_key([], "")
    assert contains_key(keys, "docs")
    assert contains_key(keys, "docs/sub/")
    assert not contains_key(keys, "doc")
    assert not contains_key(keys, "a.txt")


def test_empty_segments_are_skipped():
    h = build_hierarchy(objects("docs//a.txt", "docs/b.txt"), "docs")
    assert names(h.files) == ["b.txt"]
    assert h.folders == []
    # at the root the first segment is "a", the empty one only shows when listing a
    h = build_hierarchy(objects("a//b.txt"))
    assert [(f.name, f.children) for f in h.folders] == [("a", 1)]
    assert build_hierarchy(objects("a//b.txt"), "a").folders == []
