"""文件与文件夹操作路由（按 id 寻址）。

变更类接口在业务提交成功后写入活动记录；列表/详情类接口不记录，避免噪音。
"""

from __future__ import annotations

from typing import Optional
from urllib.parse import quote

from fastapi import APIRouter, Depends, File, Form, Query, Request, Response, UploadFile
from fastapi.responses import StreamingResponse
from sqlalchemy.orm import Session

from app.packages.drive.api.v1.schemas.files import (
    CopyBody,
    FileContentsResponse,
    FileListResponse,
    FileNodeListResponse,
    FileNodeResponse,
    FileVersionListResponse,
    FolderCreateBody,
    MessageResponse,
    MoveBody,
    RenameBody,
)
from app.packages.drive.core.constants import HTTP_STATUS_CREATED, HTTP_STATUS_OK
from app.packages.drive.core.dependencies import get_current_active_user, get_db
from app.packages.drive.core.enums import ActivityTypeEnum
from app.packages.drive.core.responses import create_response
from app.packages.drive.core.timezone import to_http_date, to_iso
from app.packages.drive.crud.file_nodes import file_node_crud
from app.packages.drive.models.user import User
from app.packages.drive.services.activity_service import activity_service
from app.packages.drive.services.blob_store import iter_blob
from app.packages.drive.services.namespace_service import namespace_service
from app.packages.drive.services.trash_service import trash_service
from app.packages.drive.utils.path_utils import norm_abs_path

router = APIRouter(tags=["files"])


@router.get("/files", response_model=FileListResponse)
def list_files(
    path: str = Query("/", description="目录路径，形如 /docs/2024"),
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_active_user),
):
    directory, children = namespace_service.list_by_path(db, current_user, path)
    data = {
        "files": namespace_service.serialize_many(db, children),
        "total_count": file_node_crud.count_live(db, owner_id=current_user.id, directories=False)
        + file_node_crud.count_live(db, owner_id=current_user.id, directories=True),
        "path": norm_abs_path(path),
        "current_parent_id": directory.id if directory is not None else None,
    }
    return create_response("获取成功", data, HTTP_STATUS_OK)


@router.get("/files/search", response_model=FileNodeListResponse)
def search_files(
    q: str = Query("", description="名称子串，不区分大小写"),
    limit: int = Query(100, ge=1, le=500),
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_active_user),
):
    nodes = namespace_service.search(db, current_user, q, limit=limit)
    return create_response("获取成功", namespace_service.serialize_many(db, nodes), HTTP_STATUS_OK)


@router.post("/files/upload", response_model=FileNodeResponse)
def upload_file(
    request: Request,
    response: Response,
    file: UploadFile = File(...),
    parent_id: Optional[str] = Form(None),
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_active_user),
):
    """上传文件；同名文件存在时覆盖并保留历史版本（200），否则新建（201）。"""
    node, created = namespace_service.upload(
        db,
        current_user,
        parent_id=parent_id,
        name=file.filename or "",
        stream=file.file,
        size_hint=getattr(file, "size", None),
    )
    activity_service.record(
        db,
        type=ActivityTypeEnum.FILE_CREATED if created else ActivityTypeEnum.FILE_UPDATED,
        actor_id=current_user.id,
        target_id=node.id,
        target_name=node.name,
        details={"size": node.size, "version": node.version},
        request=request,
    )
    code = HTTP_STATUS_CREATED if created else HTTP_STATUS_OK
    response.status_code = code
    return create_response("上传成功" if created else "文件已更新", namespace_service.serialize(db, node), code)


@router.post("/files/folder", response_model=FileNodeResponse)
def create_folder(
    request: Request,
    response: Response,
    payload: FolderCreateBody,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_active_user),
):
    node = namespace_service.create_directory(db, current_user, parent_id=payload.parent_id, name=payload.name)
    activity_service.record(
        db,
        type=ActivityTypeEnum.FOLDER_CREATED,
        actor_id=current_user.id,
        target_id=node.id,
        target_name=node.name,
        request=request,
    )
    response.status_code = HTTP_STATUS_CREATED
    return create_response("文件夹创建成功", namespace_service.serialize(db, node), HTTP_STATUS_CREATED)


@router.get("/files/{file_id}", response_model=FileNodeResponse)
def get_file(
    file_id: str,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_active_user),
):
    node = namespace_service.get(db, current_user, file_id)
    return create_response("获取成功", namespace_service.serialize(db, node), HTTP_STATUS_OK)


@router.get("/files/{file_id}/contents", response_model=FileContentsResponse)
def get_folder_contents(
    file_id: str,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_active_user),
):
    children = namespace_service.list(db, current_user, file_id)
    return create_response("获取成功", {"files": namespace_service.serialize_many(db, children)}, HTTP_STATUS_OK)


@router.get("/files/{file_id}/versions", response_model=FileVersionListResponse)
def list_versions(
    file_id: str,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_active_user),
):
    node = namespace_service.get(db, current_user, file_id)
    data = [
        {
            "version": item.version,
            "size": item.size,
            "checksum": item.checksum,
            "created_at": to_iso(item.created_at),
        }
        for item in namespace_service.versions(db, node)
    ]
    return create_response("获取成功", data, HTTP_STATUS_OK)


@router.get("/files/{file_id}/download")
def download_file(
    file_id: str,
    request: Request,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_active_user),
):
    node = namespace_service.get_live(db, current_user, file_id)
    handle = namespace_service.open_content(node)
    headers = {
        "Content-Disposition": f"attachment; filename*=UTF-8''{quote(node.name)}",
        "Content-Length": str(node.size),
        "ETag": f'"{node.checksum}"',
        "Last-Modified": to_http_date(node.updated_at),
    }
    media_type = node.mime_type or namespace_service.blob_store.mime_type(node.name)
    activity_service.record(
        db,
        type=ActivityTypeEnum.FILE_DOWNLOADED,
        actor_id=current_user.id,
        target_id=node.id,
        target_name=node.name,
        request=request,
    )
    return StreamingResponse(iter_blob(handle), media_type=media_type, headers=headers)


@router.put("/files/{file_id}/rename", response_model=FileNodeResponse)
def rename_file(
    file_id: str,
    payload: RenameBody,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_active_user),
):
    node = namespace_service.get(db, current_user, file_id)
    node = namespace_service.rename(db, node, payload.name)
    return create_response("重命名成功", namespace_service.serialize(db, node), HTTP_STATUS_OK)


@router.put("/files/{file_id}/move", response_model=FileNodeResponse)
def move_file(
    file_id: str,
    request: Request,
    payload: MoveBody,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_active_user),
):
    node = namespace_service.get(db, current_user, file_id)
    node = namespace_service.move(db, current_user, node, payload.destination_id, payload.new_name)
    activity_service.record(
        db,
        type=ActivityTypeEnum.FILE_MOVED,
        actor_id=current_user.id,
        target_id=node.id,
        target_name=node.name,
        details={"destination_id": payload.destination_id},
        request=request,
    )
    return create_response("移动成功", namespace_service.serialize(db, node), HTTP_STATUS_OK)


@router.post("/files/{file_id}/copy", response_model=FileNodeResponse)
def copy_file(
    file_id: str,
    request: Request,
    response: Response,
    payload: CopyBody,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_active_user),
):
    node = namespace_service.get(db, current_user, file_id)
    clone = namespace_service.copy(db, current_user, node, payload.destination_id, payload.new_name)
    activity_service.record(
        db,
        type=ActivityTypeEnum.FILE_COPIED,
        actor_id=current_user.id,
        target_id=clone.id,
        target_name=clone.name,
        details={"source_id": file_id},
        request=request,
    )
    response.status_code = HTTP_STATUS_CREATED
    return create_response("复制成功", namespace_service.serialize(db, clone), HTTP_STATUS_CREATED)


@router.delete("/files/{file_id}/trash", response_model=FileNodeResponse)
def trash_file(
    file_id: str,
    request: Request,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_active_user),
):
    node = namespace_service.get(db, current_user, file_id)
    node = trash_service.trash(db, current_user, node)
    activity_service.record(
        db,
        type=ActivityTypeEnum.FILE_TRASHED,
        actor_id=current_user.id,
        target_id=node.id,
        target_name=node.name,
        request=request,
    )
    return create_response("已移入回收站", namespace_service.serialize(db, node), HTTP_STATUS_OK)


@router.post("/files/{file_id}/restore", response_model=FileNodeResponse)
def restore_file(
    file_id: str,
    request: Request,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_active_user),
):
    node = namespace_service.get(db, current_user, file_id)
    node = trash_service.restore(db, current_user, node)
    activity_service.record(
        db,
        type=ActivityTypeEnum.FILE_RESTORED,
        actor_id=current_user.id,
        target_id=node.id,
        target_name=node.name,
        request=request,
    )
    return create_response("恢复成功", namespace_service.serialize(db, node), HTTP_STATUS_OK)


@router.delete("/files/{file_id}", response_model=MessageResponse)
def delete_file(
    file_id: str,
    request: Request,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_active_user),
):
    """彻底删除（目录连同子树），立即释放存储空间。"""
    node = namespace_service.get(db, current_user, file_id)
    node_id, node_name = node.id, node.name
    result = trash_service.purge(db, current_user, node)
    activity_service.record(
        db,
        type=ActivityTypeEnum.FILE_DELETED,
        actor_id=current_user.id,
        target_id=node_id,
        target_name=node_name,
        details=result,
        request=request,
    )
    return create_response("已彻底删除", result, HTTP_STATUS_OK)
