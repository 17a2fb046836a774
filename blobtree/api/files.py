"""API Endpoints for files and folders."""

import logging
import time
from typing import AsyncIterator
from urllib.parse import quote

from fastapi import APIRouter, Depends, File, Query, UploadFile, status
from fastapi.responses import StreamingResponse

from blobtree.api.auth import authenticated_roles, optional_roles
from blobtree.api.common import Services, services
from blobtree.authorization import Operation
from blobtree.errors import NotFound, ValidationError
from blobtree.models import (
    ChunkResponse,
    CommitBody,
    CreateFolderBody,
    DeleteFolderResponse,
    DeleteResponse,
    DownloadTokenBody,
    DownloadTokenResponse,
    ExistsResponse,
    FolderListing,
    FolderResponse,
    MoveBody,
    MoveResponse,
    RenameBody,
    RenameResponse,
    RoleFlags,
    UploadResponse,
)
from blobtree.objectstorage.store import StoredObject
from blobtree.paths import base_name, join, normalize

app_files = APIRouter(prefix="/api/files", tags=["files"])

# Routes are matched in order: all fixed paths must be registered before the /{path:path} catch-alls


@app_files.get("")
async def list_files(
    folder: str | None = Query(None, description="Folder to list, the root if omitted"),
    roles: RoleFlags = Depends(authenticated_roles),
    svc: Services = Depends(services),
) -> FolderListing:
    """List the direct files and subfolders of a folder."""
    svc.gate.check(roles, Operation.LIST)
    return await svc.files.list(folder)


@app_files.get("/exists/{path:path}")
async def file_exists(
    path: str, roles: RoleFlags = Depends(authenticated_roles), svc: Services = Depends(services)
) -> ExistsResponse:
    svc.gate.check(roles, Operation.EXISTS)
    return ExistsResponse(exists=await svc.files.exists(path))


@app_files.get("/folders/exists/{path:path}")
async def folder_exists(
    path: str, roles: RoleFlags = Depends(authenticated_roles), svc: Services = Depends(services)
) -> ExistsResponse:
    svc.gate.check(roles, Operation.EXISTS)
    return ExistsResponse(exists=await svc.files.folder_exists(path))


@app_files.post("/folders/create", status_code=status.HTTP_201_CREATED)
async def create_folder(
    body: CreateFolderBody, roles: RoleFlags = Depends(authenticated_roles), svc: Services = Depends(services)
) -> FolderResponse:
    svc.gate.check(roles, Operation.CREATE_FOLDER)
    folder_path = await svc.files.create_folder(body.folder_path)
    return FolderResponse(message="Folder created successfully", folder_path=folder_path)


@app_files.delete("/folders/{path:path}")
async def delete_folder(
    path: str, roles: RoleFlags = Depends(authenticated_roles), svc: Services = Depends(services)
) -> DeleteFolderResponse:
    """Delete an empty folder. Fails with 409 Conflict if the folder still contains anything."""
    svc.gate.check(roles, Operation.DELETE_FOLDER)
    marker_deleted = await svc.files.delete_folder(path)
    return DeleteFolderResponse(
        message="Folder deleted successfully", folder_path=normalize(path), marker_deleted=marker_deleted
    )


@app_files.post("/chunked/commit")
async def commit_chunks(
    body: CommitBody, roles: RoleFlags = Depends(authenticated_roles), svc: Services = Depends(services)
) -> UploadResponse:
    """Assemble the staged chunks 0..totalChunks-1 into the final file."""
    svc.gate.check(roles, Operation.COMMIT_CHUNKS)
    key = _upload_key(body.folder, body.filename or body.upload_id)
    size = await svc.chunks.commit(key, body.total_chunks, body.content_type)
    return UploadResponse(message="File uploaded successfully", filename=base_name(key), path=key, size=size)


@app_files.post("/chunked")
async def upload_chunk(
    file: UploadFile | None = File(None, description="The bytes of this chunk"),
    filename: str | None = Query(None),
    upload_id: str | None = Query(None, alias="uploadId", description="Alias for filename"),
    chunk_index: str | None = Query(None, alias="chunkIndex"),
    total_chunks: str | None = Query(None, alias="totalChunks"),
    folder: str | None = Query(None),
    roles: RoleFlags = Depends(authenticated_roles),
    svc: Services = Depends(services),
) -> ChunkResponse:
    """
    Stage one chunk of a chunked upload. Chunks can be sent in any order and retried,
    the file appears only when the upload is committed.
    """
    svc.gate.check(roles, Operation.STAGE_CHUNK)
    key, index, total = svc.chunks.validate_chunk(
        _upload_key(folder, filename or upload_id), chunk_index, total_chunks
    )
    if file is None:
        raise ValidationError("No file provided")
    if file.size is not None and file.size > svc.settings.max_chunk_bytes:
        raise ValidationError(f"Chunk {index} is {file.size} bytes, the maximum is {svc.settings.max_chunk_bytes}")
    data = await file.read()
    index, block_id = await svc.chunks.stage_chunk(key, index, total, data)
    return ChunkResponse(message=f"Chunk {index} uploaded successfully", chunk_index=index, block_id=block_id)


@app_files.post("/move")
async def move_file(
    body: MoveBody, roles: RoleFlags = Depends(authenticated_roles), svc: Services = Depends(services)
) -> MoveResponse:
    svc.gate.check(roles, Operation.MOVE)
    source, destination = await svc.files.move(body.source_path, body.destination_path)
    return MoveResponse(message="File moved successfully", from_path=source, to_path=destination)


@app_files.post("/rename")
async def rename_file(
    body: RenameBody, roles: RoleFlags = Depends(authenticated_roles), svc: Services = Depends(services)
) -> RenameResponse:
    """Rename a file, keeping it in the same folder."""
    svc.gate.check(roles, Operation.RENAME)
    old, new = await svc.files.rename(body.old_path, body.new_name)
    return RenameResponse(message="File renamed successfully", old_path=old, new_path=new)


@app_files.post("/download-token")
async def create_download_token(
    body: DownloadTokenBody, roles: RoleFlags = Depends(authenticated_roles), svc: Services = Depends(services)
) -> DownloadTokenResponse:
    """
    Create a short-lived token to download a single file without authentication,
    e.g. from a plain link in a browser.
    """
    svc.gate.check(roles, Operation.ISSUE_TOKEN)
    path = normalize(body.path)
    if not await svc.files.exists(path):
        raise NotFound(f"File {path} not found")
    issued = svc.tokens.issue(path)
    url = f"{svc.settings.host.rstrip('/')}/api/files/download/{quote(issued['path'])}?dt={issued['token']}"
    return DownloadTokenResponse(
        token=issued["token"], expires_in=svc.tokens.ttl, expires_at=issued["expires_at"], download_url=url
    )


@app_files.get("/download/{path:path}")
async def download_with_token(
    path: str,
    dt: str | None = Query(None, description="Download token, see /api/files/download-token"),
    roles: RoleFlags | None = Depends(optional_roles),
    svc: Services = Depends(services),
):
    """Download a file with either a download token or a bearer token."""
    svc.gate.check(roles, Operation.DOWNLOAD, key=path, token=dt)
    return _download_response(await svc.files.open(path))


@app_files.get("/{path:path}")
async def download_file(path: str, roles: RoleFlags = Depends(authenticated_roles), svc: Services = Depends(services)):
    svc.gate.check(roles, Operation.DOWNLOAD, key=path)
    return _download_response(await svc.files.open(path))


@app_files.post("", status_code=status.HTTP_201_CREATED)
async def upload_file(
    file: UploadFile | None = File(None, description="The file to upload"),
    folder: str | None = Query(None, description="Folder to upload into"),
    roles: RoleFlags = Depends(authenticated_roles),
    svc: Services = Depends(services),
) -> UploadResponse:
    """Upload a file in a single request. Use the chunked upload for large files."""
    svc.gate.check(roles, Operation.UPLOAD)
    if file is None:
        raise ValidationError("No file provided")
    filename = file.filename or f"upload_{int(time.time() * 1000)}"
    key = _upload_key(folder, filename)
    size = await svc.files.upload(key, _read_upload(file, svc.settings.upload_part_size), file.content_type)
    return UploadResponse(message="File uploaded successfully", filename=base_name(key), path=normalize(key), size=size)


@app_files.delete("/{path:path}")
async def delete_file(
    path: str, roles: RoleFlags = Depends(authenticated_roles), svc: Services = Depends(services)
) -> DeleteResponse:
    svc.gate.check(roles, Operation.DELETE)
    key = await svc.files.delete(path)
    return DeleteResponse(message="File deleted successfully", filename=key)


def _upload_key(folder: str | None, filename: str | None) -> str:
    # without a name, joining would give the key of the folder itself
    if not normalize(filename):
        raise ValidationError("Missing filename")
    return join(folder, filename)


async def _read_upload(file: UploadFile, size: int) -> AsyncIterator[bytes]:
    while chunk := await file.read(size):
        yield chunk


def content_disposition(filename: str) -> str:
    fallback = filename.encode("ascii", "replace").decode("ascii").replace('"', "_").replace("?", "_")
    if fallback == filename:
        return f'attachment; filename="{filename}"'
    return f"attachment; filename=\"{fallback}\"; filename*=UTF-8''{quote(filename)}"


def _download_response(obj: StoredObject) -> StreamingResponse:
    logging.debug(f"Streaming {obj.key} ({obj.size} bytes)")
    headers = {"Content-Disposition": content_disposition(base_name(obj.key)), "Content-Length": str(obj.size)}
    return StreamingResponse(obj.body, media_type=obj.content_type, headers=headers)
