"""回收站路由：列出与清空。"""

from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from app.packages.drive.api.v1.schemas.files import FileNodeListResponse, PurgeResultResponse
from app.packages.drive.core.constants import HTTP_STATUS_OK
from app.packages.drive.core.dependencies import get_current_active_user, get_db
from app.packages.drive.core.responses import create_response
from app.packages.drive.models.user import User
from app.packages.drive.services.namespace_service import namespace_service
from app.packages.drive.services.trash_service import trash_service

router = APIRouter(prefix="/trash", tags=["trash"])


@router.get("", response_model=FileNodeListResponse)
def list_trash(
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_active_user),
):
    """按放入回收站的时间倒序返回。"""
    nodes = trash_service.list_trash(db, current_user)
    return create_response("获取成功", namespace_service.serialize_many(db, nodes), HTTP_STATUS_OK)


@router.delete("", response_model=PurgeResultResponse)
def empty_trash(
    older_than_days: Optional[int] = Query(None, ge=0, description="只清理超过指定天数的项"),
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_active_user),
):
    if older_than_days is None:
        result = trash_service.empty_trash(db, current_user)
    else:
        result = trash_service.purge_expired(db, current_user, older_than_days=older_than_days)
    return create_response("回收站已清空", result, HTTP_STATUS_OK)
