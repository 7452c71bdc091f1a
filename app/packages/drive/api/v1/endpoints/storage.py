"""存储用量路由。"""

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from app.packages.drive.api.v1.schemas.files import StorageStatsResponse
from app.packages.drive.core.constants import HTTP_STATUS_OK
from app.packages.drive.core.dependencies import get_current_active_user, get_db
from app.packages.drive.core.responses import create_response
from app.packages.drive.models.user import User
from app.packages.drive.services.namespace_service import namespace_service

router = APIRouter(prefix="/storage", tags=["storage"])


@router.get("/stats", response_model=StorageStatsResponse)
def storage_stats(
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_active_user),
):
    return create_response("获取成功", namespace_service.usage(db, current_user), HTTP_STATUS_OK)
