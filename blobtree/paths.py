"""
Path helpers shared by the hierarchy, upload and file operation code.

These do NOT collapse repeated slashes or resolve "." and ".." segments.
Object keys are opaque to the store, so traversal is not a concern of this module.
"""

MARKER_NAME = ".keep"


def normalize(path: str | None) -> str:
    """Strip all leading and trailing slashes"""
    if not path:
        return ""
    return path.strip("/")


def folder_of(path: str) -> str:
    """Return the part before the last slash, or '' for a top level name"""
    normalized = normalize(path)
    head, sep, _ = normalized.rpartition("/")
    return head if sep else ""


def base_name(path: str) -> str:
    """Return the part after the last slash, or the whole path"""
    return normalize(path).rpartition("/")[2]


def join(folder: str | None, name: str | None) -> str:
    folder = normalize(folder)
    name = normalize(name)
    if not name:
        return folder
    return f"{folder}/{name}" if folder else name


def marker_key(folder: str) -> str:
    return join(folder, MARKER_NAME)


def is_marker(key: str) -> bool:
    return key == MARKER_NAME or key.endswith("/" + MARKER_NAME)
