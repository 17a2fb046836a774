"""
File and folder operations on top of an object store.

Store failures are reported as UpstreamFailure with the step that failed. Move and rename are a
server side copy followed by a delete of the source: if the delete fails, both copies exist, which
is reported as a failure of the "delete-source" step. Retrying them is therefore not always safe.
"""

import logging
from typing import AsyncIterable

from blobtree.errors import Conflict, NotFound, UpstreamFailure, ValidationError
from blobtree.hierarchy import build_hierarchy, contains_key, folder_prefix
from blobtree.models import FolderListing
from blobtree.objectstorage.store import ObjectNotFound, ObjectStore, StoredObject, StoreError
from blobtree.paths import folder_of, join, marker_key, normalize
from blobtree.uploads import ChunkedUploadCoordinator, stream_upload, validate_key


async def _no_content() -> AsyncIterable[bytes]:
    return
    yield


class FileOperations:
    def __init__(self, store: ObjectStore, chunks: ChunkedUploadCoordinator | None = None):
        self.store = store
        self.chunks = chunks or ChunkedUploadCoordinator(store)

    ## Objects

    async def list(self, folder_path: str | None = None) -> FolderListing:
        folder_path = normalize(folder_path)
        try:
            objects = [obj async for obj in self.store.list_objects(folder_prefix(folder_path) or None)]
        except StoreError as e:
            raise UpstreamFailure("Failed to list files", step="list") from e
        hierarchy = build_hierarchy(objects, folder_path)
        return FolderListing(current_path=folder_path or "/", folders=hierarchy.folders, files=hierarchy.files)

    async def exists(self, key: str | None) -> bool:
        key = normalize(key)
        if not key:
            raise ValidationError("A file path is required")
        if self.store.is_reserved(key):
            return False
        try:
            return await self.store.exists(key)
        except StoreError as e:
            raise UpstreamFailure(f"Failed to check whether {key} exists", step="exists") from e

    async def open(self, key: str | None) -> StoredObject:
        """Open an object for download. The caller must consume or close the returned body."""
        key = normalize(key)
        if not key:
            raise ValidationError("A file path is required")
        if self.store.is_reserved(key):
            raise NotFound(f"File {key} not found")
        try:
            return await self.store.get(key)
        except ObjectNotFound as e:
            raise NotFound(f"File {key} not found") from e
        except StoreError as e:
            raise UpstreamFailure(f"Failed to download {key}", step="get") from e

    async def upload(self, key: str | None, chunks: AsyncIterable[bytes], content_type: str | None = None) -> int:
        return await stream_upload(self.store, key, chunks, content_type)

    async def delete(self, key: str | None) -> str:
        key = normalize(key)
        if not await self.exists(key):
            raise NotFound(f"File {key} not found")
        try:
            await self.store.delete(key)
        except StoreError as e:
            raise UpstreamFailure(f"Failed to delete {key}", step="delete") from e
        logging.info(f"Deleted {key}")
        return key

    async def move(self, source_path: str | None, destination_path: str | None) -> tuple[str, str]:
        source, destination = normalize(source_path), normalize(destination_path)
        if not source or not destination:
            raise ValidationError("sourcePath and destinationPath are required")
        validate_key(destination, self.store)
        return await self._move(source, destination)

    async def rename(self, old_path: str | None, new_name: str | None) -> tuple[str, str]:
        """Rename a file within its folder"""
        old, name = normalize(old_path), normalize(new_name)
        if not old or not name:
            raise ValidationError("oldPath and newName are required")
        if "/" in name:
            raise ValidationError(f"newName cannot contain a slash: {new_name!r}, use move instead")
        new = validate_key(join(folder_of(old), name), self.store)
        return await self._move(old, new)

    async def _move(self, source: str, destination: str) -> tuple[str, str]:
        if not await self.exists(source):
            raise NotFound(f"File {source} not found")
        if source == destination:
            return source, destination
        logging.info(f"Moving {source} -> {destination}")
        try:
            await self.store.copy(source, destination)
        except ObjectNotFound as e:
            raise NotFound(f"File {source} not found") from e
        except StoreError as e:
            raise UpstreamFailure(f"Failed to copy {source} to {destination}", step="copy") from e
        try:
            await self.store.delete(source)
        except StoreError as e:
            raise UpstreamFailure(
                f"Copied {source} to {destination}, but could not delete the original", step="delete-source"
            ) from e
        return source, destination

    ## Folders

    async def folder_exists(self, folder_path: str | None) -> bool:
        folder_path = normalize(folder_path)
        try:
            async for obj in self.store.list_objects(folder_prefix(folder_path) or None):
                if contains_key([obj["key"]], folder_path):
                    return True
        except StoreError as e:
            raise UpstreamFailure(f"Failed to check whether folder {folder_path} exists", step="list") from e
        return not folder_path

    async def create_folder(self, folder_path: str | None) -> str:
        """Create an (empty) folder by writing its .keep marker"""
        folder_path = normalize(folder_path)
        if not folder_path:
            raise ValidationError("folderPath is required")
        if self.store.is_reserved(folder_prefix(folder_path)):
            raise ValidationError(f"{folder_path} is in a reserved part of the store")
        logging.info(f"Creating folder: {folder_path}")
        try:
            await self.store.put(marker_key(folder_path), _no_content(), "application/octet-stream")
        except StoreError as e:
            raise UpstreamFailure(f"Failed to create folder {folder_path}", step="put") from e
        return folder_path

    async def delete_folder(self, folder_path: str | None) -> bool:
        """
        Delete an empty folder, i.e. remove its marker. Never deletes any content.
        Raises Conflict if anything other than the marker is stored below the folder.
        :return: whether a marker was removed
        """
        folder_path = normalize(folder_path)
        if not folder_path:
            raise ValidationError("folderPath is required")
        if self.store.is_reserved(folder_prefix(folder_path)):
            raise ValidationError(f"{folder_path} is in a reserved part of the store")
        marker = marker_key(folder_path)
        has_marker = False
        try:
            async for obj in self.store.list_objects(folder_prefix(folder_path)):
                if obj["key"] != marker:
                    raise Conflict(f"Folder {folder_path} is not empty")
                has_marker = True
            if has_marker:
                await self.store.delete(marker)
        except StoreError as e:
            raise UpstreamFailure(f"Failed to delete folder {folder_path}", step="delete-folder") from e
        logging.info(f"Deleted folder {folder_path} (marker removed: {has_marker})")
        return has_marker
