"""活动记录路由：当前用户最近的操作流水。"""

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from app.packages.drive.api.v1.schemas.common import ResponseEnvelope
from app.packages.drive.core.constants import HTTP_STATUS_OK
from app.packages.drive.core.dependencies import get_current_active_user, get_db
from app.packages.drive.core.responses import create_response
from app.packages.drive.models.user import User
from app.packages.drive.services.activity_service import activity_service

router = APIRouter(prefix="/activities", tags=["activities"])


@router.get("", response_model=ResponseEnvelope[list[dict]])
def list_activities(
    limit: int = Query(50, ge=1, le=200),
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_active_user),
):
    return create_response(
        "获取成功",
        activity_service.list_recent(db, user_id=current_user.id, limit=limit),
        HTTP_STATUS_OK,
    )
