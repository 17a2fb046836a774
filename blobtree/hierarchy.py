"""
Derive a folder/file tree from the flat list of object keys.

There are no folder objects. A folder exists as long as some key has it as a prefix,
and an otherwise empty folder is kept alive by a zero-byte "<folder>/.keep" marker.

A listing shows one level: keys directly in the folder become files, and keys further down
are counted towards the folder named by their first path segment below the listed folder.
The folder's own marker is not counted, but markers of nested folders are, so children is
an approximation of the number of objects below a folder rather than an exact file count.

Keys with an empty segment directly below the listed folder (e.g. "docs//a.txt") cannot be
reached through a folder path, so they are left out of the listing.

Folders and files are both sorted by name, whatever order the store enumerated them in.
"""

from typing import Iterable

from blobtree.models import FileEntry, FolderEntry, Hierarchy
from blobtree.objectstorage.store import ObjectInfo
from blobtree.paths import MARKER_NAME, is_marker, join, normalize


def folder_prefix(folder_path: str) -> str:
    """The key prefix of all objects inside a folder ('' for the root)"""
    folder_path = normalize(folder_path)
    return folder_path + "/" if folder_path else ""


def build_hierarchy(objects: Iterable[ObjectInfo], folder_path: str = "") -> Hierarchy:
    folder_path = normalize(folder_path)
    prefix = folder_prefix(folder_path)
    children: dict[str, int] = {}
    files: list[FileEntry] = []

    for obj in objects:
        key = normalize(obj["key"])
        if not key.startswith(prefix):
            continue
        relative = key[len(prefix) :]
        name, sep, rest = relative.partition("/")
        if sep and not name:
            continue
        if sep:
            children.setdefault(name, 0)
            if rest != MARKER_NAME:
                children[name] += 1
        elif relative and not is_marker(relative):
            files.append(FileEntry(name=relative, full_path=key, size=obj["size"], created=obj["created_at"]))

    folders = [FolderEntry(name=name, path=join(folder_path, name), children=n) for name, n in children.items()]
    return Hierarchy(
        folders=sorted(folders, key=lambda f: f.name),
        files=sorted(files, key=lambda f: f.name),
    )


def contains_key(keys: Iterable[str], folder_path: str) -> bool:
    """A folder exists iff some key lies below it. The root always exists."""
    prefix = folder_prefix(folder_path)
    return not prefix or any(normalize(k).startswith(prefix) for k in keys)
