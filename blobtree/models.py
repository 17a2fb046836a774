from datetime import datetime
from enum import IntEnum
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class CamelModel(BaseModel):
    """Models exchanged with clients use camelCase names on the wire"""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


######################## ROLES #########################


class Roles(IntEnum):
    NONE = 0
    READER = 10
    UPLOADER = 20
    ADMIN = 30


class RoleFlags(BaseModel):
    """For internal use only. The roles of the caller, as derived from their group memberships."""

    is_reader: bool = False
    is_uploader: bool = False
    is_admin: bool = False

    @classmethod
    def everything(cls) -> "RoleFlags":
        return cls(is_reader=True, is_uploader=True, is_admin=True)

    def highest(self) -> Roles:
        if self.is_admin:
            return Roles.ADMIN
        if self.is_uploader:
            return Roles.UPLOADER
        if self.is_reader:
            return Roles.READER
        return Roles.NONE


######################## HIERARCHY #########################


class FileEntry(CamelModel):
    name: str
    full_path: str
    size: int
    created: datetime | None = None
    type: Literal["file"] = "file"


class FolderEntry(CamelModel):
    name: str
    path: str
    children: int = Field(0, description="Number of objects below this folder (nested folder markers included)")
    type: Literal["folder"] = "folder"


class Hierarchy(CamelModel):
    folders: list[FolderEntry] = []
    files: list[FileEntry] = []


class FolderListing(Hierarchy):
    current_path: str = Field(description="The listed folder, or / for the root")


######################## REQUEST BODIES #########################


class CreateFolderBody(CamelModel):
    folder_path: str | None = None


class MoveBody(CamelModel):
    source_path: str | None = None
    destination_path: str | None = None


class RenameBody(CamelModel):
    old_path: str | None = None
    new_name: str | None = None


class CommitBody(CamelModel):
    filename: str | None = None
    upload_id: str | None = Field(None, description="Alias for filename, as sent by the chunked upload client")
    total_chunks: int | None = None
    content_type: str | None = None
    folder: str | None = None


class DownloadTokenBody(CamelModel):
    path: str | None = None


######################## RESPONSES #########################


class MessageResponse(CamelModel):
    message: str


class UploadResponse(MessageResponse):
    filename: str
    path: str
    size: int


class ChunkResponse(MessageResponse):
    chunk_index: int
    block_id: str


class ExistsResponse(CamelModel):
    exists: bool


class DeleteResponse(MessageResponse):
    filename: str


class MoveResponse(MessageResponse):
    from_path: str = Field(alias="from")
    to_path: str = Field(alias="to")


class RenameResponse(MessageResponse):
    old_path: str
    new_path: str


class FolderResponse(MessageResponse):
    folder_path: str


class DeleteFolderResponse(FolderResponse):
    marker_deleted: bool


class DownloadTokenResponse(CamelModel):
    token: str
    expires_in: int
    expires_at: int
    download_url: str
