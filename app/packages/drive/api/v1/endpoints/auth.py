"""认证相关路由定义。"""

from fastapi import APIRouter, Depends, Request
from sqlalchemy.orm import Session

from app.packages.drive.api.v1.schemas.auth import (
    LoginRequest,
    LogoutResponse,
    PasswordChangeRequest,
    PasswordChangeResponse,
    ProfileUpdateRequest,
    RegisterRequest,
    TokenResponse,
    UserResponse,
)
from app.packages.drive.core.constants import HTTP_STATUS_OK
from app.packages.drive.core.dependencies import get_current_active_user, get_db
from app.packages.drive.core.responses import create_response
from app.packages.drive.core.security import get_current_session_id
from app.packages.drive.models.user import User
from app.packages.drive.services.auth_service import auth_service, serialize_user

router = APIRouter(prefix="/auth", tags=["auth"])


@router.post("/register", response_model=UserResponse)
def register(payload: RegisterRequest, db: Session = Depends(get_db)):
    """注册新用户，默认配额取自配置。"""
    return auth_service.register_user(
        db,
        username=payload.username,
        email=payload.email,
        password=payload.password,
        display_name=payload.display_name,
    )


@router.post("/login", response_model=TokenResponse)
def login(payload: LoginRequest, request: Request, db: Session = Depends(get_db)):
    """校验凭证并签发访问令牌。"""
    return auth_service.login(db, username=payload.username, password=payload.password, request=request)


@router.post("/logout", response_model=LogoutResponse)
def logout(
    request: Request,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_active_user),
):
    """退出登录，前端需删除本地缓存的令牌。"""
    return auth_service.logout(db, user=current_user, session_id=get_current_session_id(), request=request)


@router.get("/me", response_model=UserResponse)
def me(current_user: User = Depends(get_current_active_user)):
    return create_response("获取成功", serialize_user(current_user), HTTP_STATUS_OK)


@router.put("/profile", response_model=UserResponse)
def update_profile(
    payload: ProfileUpdateRequest,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_active_user),
):
    return auth_service.update_profile(
        db,
        user=current_user,
        display_name=payload.display_name,
        email=payload.email,
    )


@router.put("/password", response_model=PasswordChangeResponse)
def change_password(
    payload: PasswordChangeRequest,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_active_user),
):
    """校验当前密码后设置新密码，已签发的令牌保持有效。"""
    return auth_service.change_password(
        db,
        user=current_user,
        current_password=payload.current_password,
        new_password=payload.new_password,
    )
