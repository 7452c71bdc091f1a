"""文件管理：请求体与响应模型。"""

from typing import Any, List, Optional

from pydantic import BaseModel, Field

from app.packages.drive.api.v1.schemas.common import ResponseEnvelope


class FileNodeData(BaseModel):
    id: str
    name: str
    path: str
    mime_type: Optional[str] = None
    size: int
    is_directory: bool
    parent_id: Optional[str] = None
    owner_id: int
    checksum: Optional[str] = None
    version: int
    is_trashed: bool
    trashed_at: Optional[str] = None
    created_at: Optional[str] = None
    updated_at: Optional[str] = None


class FileListData(BaseModel):
    files: List[FileNodeData]
    total_count: int
    path: str
    current_parent_id: Optional[str] = None


class FileContentsData(BaseModel):
    files: List[FileNodeData]


class FileVersionData(BaseModel):
    version: int
    size: int
    checksum: str
    created_at: Optional[str] = None


class StorageStatsData(BaseModel):
    used_space: int
    quota: int
    file_count: int
    folder_count: int
    percentage: float


class PurgeResultData(BaseModel):
    purged: int
    freed_space: int


class FolderCreateBody(BaseModel):
    name: str = Field(..., min_length=1, max_length=255)
    parent_id: Optional[str] = None


class RenameBody(BaseModel):
    name: str = Field(..., min_length=1, max_length=255)


class MoveBody(BaseModel):
    destination_id: Optional[str] = None
    new_name: Optional[str] = Field(None, max_length=255)


class CopyBody(BaseModel):
    destination_id: Optional[str] = None
    new_name: Optional[str] = Field(None, max_length=255)


FileNodeResponse = ResponseEnvelope[FileNodeData]
FileNodeListResponse = ResponseEnvelope[List[FileNodeData]]
FileListResponse = ResponseEnvelope[FileListData]
FileContentsResponse = ResponseEnvelope[FileContentsData]
FileVersionListResponse = ResponseEnvelope[List[FileVersionData]]
StorageStatsResponse = ResponseEnvelope[StorageStatsData]
PurgeResultResponse = ResponseEnvelope[PurgeResultData]
MessageResponse = ResponseEnvelope[Any]
