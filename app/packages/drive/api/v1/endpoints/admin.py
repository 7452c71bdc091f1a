"""管理员路由：用户管理与全站活动记录，仅限管理员访问。"""

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from app.packages.drive.api.v1.schemas.admin import (
    ActivityListResponse,
    AdminUserListResponse,
    AdminUserResponse,
    AdminUserUpdateRequest,
    UserDeletionResponse,
)
from app.packages.drive.core.dependencies import get_current_admin_user, get_db
from app.packages.drive.models.user import User
from app.packages.drive.services.admin_service import admin_service

router = APIRouter(prefix="/admin", tags=["admin"])


@router.get("/users", response_model=AdminUserListResponse)
def list_users(
    db: Session = Depends(get_db),
    _: User = Depends(get_current_admin_user),
):
    return admin_service.list_users(db)


@router.get("/users/{user_id}", response_model=AdminUserResponse)
def get_user(
    user_id: int,
    db: Session = Depends(get_db),
    _: User = Depends(get_current_admin_user),
):
    return admin_service.get_user(db, user_id)


@router.put("/users/{user_id}", response_model=AdminUserResponse)
def update_user(
    user_id: int,
    payload: AdminUserUpdateRequest,
    db: Session = Depends(get_db),
    current_admin: User = Depends(get_current_admin_user),
):
    """修改显示名称、邮箱、配额以及激活与管理员状态。"""
    return admin_service.update_user(
        db,
        admin=current_admin,
        user_id=user_id,
        changes=payload.model_dump(exclude_unset=True),
    )


@router.delete("/users/{user_id}", response_model=UserDeletionResponse)
def delete_user(
    user_id: int,
    db: Session = Depends(get_db),
    current_admin: User = Depends(get_current_admin_user),
):
    """删除用户及其全部文件与活动记录。"""
    return admin_service.delete_user(db, admin=current_admin, user_id=user_id)


@router.get("/activities", response_model=ActivityListResponse)
def list_activities(
    limit: int = Query(100, ge=1, le=500),
    db: Session = Depends(get_db),
    _: User = Depends(get_current_admin_user),
):
    return admin_service.list_activities(db, limit=limit)
