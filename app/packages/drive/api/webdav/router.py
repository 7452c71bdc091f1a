"""WebDAV 协议适配层：把按路径寻址的动词翻译为命名空间/回收站服务调用。

所有错误由全局异常处理器转换为不带响应体的裸状态码。LOCK 仅签发建议性令牌，
其他动词不会检查锁，因此无法阻止并发写入。
"""

from __future__ import annotations

import io
import uuid
from typing import Optional, Tuple
from urllib.parse import quote, unquote, urlsplit

from fastapi import APIRouter, Depends, Request, Response
from fastapi.responses import StreamingResponse
from sqlalchemy.orm import Session
from starlette.concurrency import run_in_threadpool

from app.packages.drive.api.webdav.multistatus import (
    XML_CONTENT_TYPE,
    render_lock_discovery,
    render_multistatus,
)
from app.packages.drive.core.config import get_settings
from app.packages.drive.core.constants import (
    DEFAULT_MIME_TYPE,
    HTTP_STATUS_CREATED,
    HTTP_STATUS_MULTI_STATUS,
    HTTP_STATUS_NO_CONTENT,
    HTTP_STATUS_OK,
    WEBDAV_ALLOWED_METHODS,
    WEBDAV_LOCK_TIMEOUT,
)
from app.packages.drive.core.dependencies import get_db, get_webdav_user
from app.packages.drive.core.enums import ActivityTypeEnum
from app.packages.drive.core.exceptions import (
    CycleError,
    ForbiddenError,
    InvalidReferenceError,
    NotFoundError,
    PreconditionFailedError,
)
from app.packages.drive.core.logger import logger
from app.packages.drive.core.timezone import to_http_date
from app.packages.drive.crud.file_nodes import file_node_crud
from app.packages.drive.models.file_node import FileNode
from app.packages.drive.models.user import User
from app.packages.drive.services.activity_service import activity_service, extract_client_ip
from app.packages.drive.services.blob_store import iter_blob
from app.packages.drive.services.namespace_service import namespace_service
from app.packages.drive.services.trash_service import trash_service
from app.packages.drive.utils.path_utils import norm_abs_path

settings = get_settings()
MOUNT = settings.webdav_mount

router = APIRouter(prefix=MOUNT)

NO_CACHE = "no-cache, no-store, must-revalidate"


def dav_route(method: str):
    """同时注册挂载点本身与其下任意路径。"""

    def decorator(func):
        for route_path in ("", "/{path:path}"):
            router.add_api_route(route_path, func, methods=[method], include_in_schema=False)
        return func

    return decorator


def _request_path(request: Request) -> str:
    path = norm_abs_path(request.path_params.get("path", ""))
    logger.debug("WebDAV request", extra={"method": request.method, "path": path})
    return path


def _destination_path(request: Request) -> str:
    """解析 ``Destination`` 头：去掉协议、主机与挂载前缀，只保留命名空间路径。"""
    raw = request.headers.get("destination")
    if not raw:
        raise InvalidReferenceError("缺少 Destination 头")
    path = unquote(urlsplit(raw).path)
    if path != MOUNT and not path.startswith(MOUNT + "/"):
        raise InvalidReferenceError(f"目标不在 WebDAV 挂载点下: {raw}")
    return norm_abs_path(path[len(MOUNT):])


def _allow_overwrite(request: Request) -> bool:
    return request.headers.get("overwrite", "T").strip().upper() != "F"


def _resolve_existing(db: Session, user: User, path: str) -> FileNode:
    node = namespace_service.resolve(db, user, path)
    if node is None:
        raise ForbiddenError("不能对根目录执行该操作")
    return node


def _multistatus(db: Session, user: User, path: str, target: Optional[FileNode], depth: str = "1") -> Response:
    children = []
    if depth != "0" and (target is None or target.is_directory):
        children = namespace_service.list(db, user, target.id if target is not None else None)
    body = render_multistatus(MOUNT, path, target, children)
    return Response(
        content=body,
        status_code=HTTP_STATUS_MULTI_STATUS,
        media_type=XML_CONTENT_TYPE,
        headers={"Cache-Control": NO_CACHE},
    )


def _file_headers(node: FileNode) -> dict:
    return {
        "Content-Type": node.mime_type or DEFAULT_MIME_TYPE,
        "Content-Length": str(node.size),
        "ETag": f'"{node.checksum}"',
        "Last-Modified": to_http_date(node.updated_at),
        "Accept-Ranges": "bytes",
    }


def _prepare_destination(
    db: Session,
    user: User,
    request: Request,
    source: FileNode,
) -> Tuple[Optional[str], str, Optional[FileNode]]:
    """解析目标父目录与名称，并按 ``Overwrite`` 返回需要被覆盖的现有节点。

    覆盖目标在这里只做检查，实际删除由命名空间服务与写入在同一事务中完成。
    """
    dest_parent, dest_name = namespace_service.resolve_parent(db, user, _destination_path(request))
    dest_key = dest_parent.id if dest_parent is not None else None
    if namespace_service.is_within(db, dest_key, source):
        raise CycleError()

    existing = file_node_crud.get_live_child(db, owner_id=user.id, parent_id=dest_key, name=dest_name)
    if existing is None:
        return dest_key, dest_name, None
    if existing.id == source.id or namespace_service.is_within(db, source.id, existing):
        raise ForbiddenError("目标与源重叠")
    if not _allow_overwrite(request):
        raise PreconditionFailedError()
    return dest_key, dest_name, existing


@dav_route("OPTIONS")
def options(user: User = Depends(get_webdav_user)):
    return Response(
        status_code=HTTP_STATUS_OK,
        headers={
            "Allow": WEBDAV_ALLOWED_METHODS,
            "DAV": "1, 2",
            "MS-Author-Via": "DAV",
            "Cache-Control": NO_CACHE,
        },
    )


@dav_route("PROPFIND")
def propfind(
    request: Request,
    db: Session = Depends(get_db),
    user: User = Depends(get_webdav_user),
):
    path = _request_path(request)
    target = namespace_service.resolve(db, user, path)
    depth = (request.headers.get("depth") or "1").strip().lower()
    return _multistatus(db, user, path, target, depth)


@dav_route("HEAD")
def head(
    request: Request,
    db: Session = Depends(get_db),
    user: User = Depends(get_webdav_user),
):
    path = _request_path(request)
    node = namespace_service.resolve(db, user, path)
    if node is None or node.is_directory:
        return Response(status_code=HTTP_STATUS_OK, media_type=XML_CONTENT_TYPE)
    return Response(status_code=HTTP_STATUS_OK, headers=_file_headers(node))


@dav_route("GET")
def get(
    request: Request,
    db: Session = Depends(get_db),
    user: User = Depends(get_webdav_user),
):
    """文件返回内容流；集合（或以斜杠结尾的路径）返回与 PROPFIND 相同的列表。"""
    path = _request_path(request)
    node = namespace_service.resolve(db, user, path)
    if node is None or node.is_directory:
        return _multistatus(db, user, path, node)
    if request.url.path.endswith("/"):
        raise NotFoundError(f"路径不是集合: {path}")

    handle = namespace_service.open_content(node)
    activity_service.record(
        db,
        type=ActivityTypeEnum.FILE_DOWNLOADED,
        actor_id=user.id,
        target_id=node.id,
        target_name=node.name,
        details={"via": "webdav"},
        request=request,
    )
    headers = _file_headers(node)
    headers["Content-Disposition"] = f"inline; filename*=UTF-8''{quote(node.name)}"
    headers["Cache-Control"] = "no-cache"
    media_type = headers.pop("Content-Type")
    return StreamingResponse(iter_blob(handle), media_type=media_type, headers=headers)


def _put(request: Request, db: Session, user: User, path: str, body: bytes) -> Response:
    if not body:
        # 部分客户端（如 Windows 资源管理器）会先发送空 PUT 探测，不创建任何记录
        try:
            namespace_service.resolve(db, user, path)
        except NotFoundError:
            return Response(status_code=HTTP_STATUS_CREATED)
        return Response(status_code=HTTP_STATUS_NO_CONTENT)

    parent, name = namespace_service.resolve_parent(db, user, path)
    node, created = namespace_service.upload(
        db,
        user,
        parent_id=parent.id if parent is not None else None,
        name=name,
        stream=io.BytesIO(body),
        size_hint=len(body),
    )
    activity_service.record(
        db,
        type=ActivityTypeEnum.FILE_CREATED if created else ActivityTypeEnum.FILE_UPDATED,
        actor_id=user.id,
        target_id=node.id,
        target_name=node.name,
        details={"size": node.size, "version": node.version, "via": "webdav"},
        request=request,
    )
    return Response(status_code=HTTP_STATUS_CREATED if created else HTTP_STATUS_NO_CONTENT)


@dav_route("PUT")
async def put(
    request: Request,
    db: Session = Depends(get_db),
    user: User = Depends(get_webdav_user),
):
    path = _request_path(request)
    body = await request.body()
    return await run_in_threadpool(_put, request, db, user, path, body)


@dav_route("MKCOL")
def mkcol(
    request: Request,
    db: Session = Depends(get_db),
    user: User = Depends(get_webdav_user),
):
    path = _request_path(request)
    parent, name = namespace_service.resolve_parent(db, user, path)
    node = namespace_service.create_directory(
        db, user, parent_id=parent.id if parent is not None else None, name=name
    )
    activity_service.record(
        db,
        type=ActivityTypeEnum.FOLDER_CREATED,
        actor_id=user.id,
        target_id=node.id,
        target_name=node.name,
        details={"via": "webdav"},
        request=request,
    )
    return Response(status_code=HTTP_STATUS_CREATED)


@dav_route("DELETE")
def delete(
    request: Request,
    db: Session = Depends(get_db),
    user: User = Depends(get_webdav_user),
):
    """WebDAV 没有回收站阶段，直接彻底删除并释放配额。"""
    path = _request_path(request)
    node = _resolve_existing(db, user, path)
    node_id, node_name = node.id, node.name
    result = trash_service.purge(db, user, node)
    activity_service.record(
        db,
        type=ActivityTypeEnum.FILE_DELETED,
        actor_id=user.id,
        target_id=node_id,
        target_name=node_name,
        details=dict(result, via="webdav"),
        request=request,
    )
    return Response(status_code=HTTP_STATUS_NO_CONTENT)


@dav_route("MOVE")
def move(
    request: Request,
    db: Session = Depends(get_db),
    user: User = Depends(get_webdav_user),
):
    path = _request_path(request)
    source = _resolve_existing(db, user, path)
    dest_key, dest_name, existing = _prepare_destination(db, user, request, source)
    node = namespace_service.move(db, user, source, dest_key, dest_name, replace=existing)
    activity_service.record(
        db,
        type=ActivityTypeEnum.FILE_MOVED,
        actor_id=user.id,
        target_id=node.id,
        target_name=node.name,
        details={"from": path, "destination_id": dest_key, "via": "webdav"},
        request=request,
    )
    return Response(status_code=HTTP_STATUS_NO_CONTENT if existing is not None else HTTP_STATUS_CREATED)


@dav_route("COPY")
def copy(
    request: Request,
    db: Session = Depends(get_db),
    user: User = Depends(get_webdav_user),
):
    path = _request_path(request)
    source = _resolve_existing(db, user, path)
    if source.is_directory:
        raise ForbiddenError("不支持复制文件夹")
    dest_key, dest_name, existing = _prepare_destination(db, user, request, source)
    clone = namespace_service.copy(db, user, source, dest_key, dest_name, replace=existing)
    activity_service.record(
        db,
        type=ActivityTypeEnum.FILE_COPIED,
        actor_id=user.id,
        target_id=clone.id,
        target_name=clone.name,
        details={"source_id": source.id, "via": "webdav"},
        request=request,
    )
    return Response(status_code=HTTP_STATUS_NO_CONTENT if existing is not None else HTTP_STATUS_CREATED)


@dav_route("LOCK")
def lock(request: Request, user: User = Depends(get_webdav_user)):
    path = _request_path(request)
    token = f"opaquelocktoken:{uuid.uuid4()}"
    body = render_lock_discovery(MOUNT + quote(path, safe="/"), token, extract_client_ip(request))
    return Response(
        content=body,
        status_code=HTTP_STATUS_OK,
        media_type=XML_CONTENT_TYPE,
        headers={"Lock-Token": f"<{token}>", "Timeout": WEBDAV_LOCK_TIMEOUT},
    )


@dav_route("UNLOCK")
def unlock(user: User = Depends(get_webdav_user)):
    return Response(status_code=HTTP_STATUS_NO_CONTENT)
