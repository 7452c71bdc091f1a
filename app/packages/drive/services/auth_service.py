"""认证服务：封装注册、登录与退出等核心流程。"""

from typing import Optional

from fastapi import Request
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from app.packages.drive.core.config import get_settings
from app.packages.drive.core.constants import (
    ACCESS_TOKEN_TYPE,
    HTTP_STATUS_CONFLICT,
    HTTP_STATUS_FORBIDDEN,
    HTTP_STATUS_OK,
    HTTP_STATUS_UNAUTHORIZED,
)
from app.packages.drive.core.enums import ActivityTypeEnum
from app.packages.drive.core.exceptions import AppException
from app.packages.drive.core.logger import logger
from app.packages.drive.core.responses import create_response
from app.packages.drive.core.security import (
    create_access_token,
    get_password_hash,
    store_refreshed_token,
    verify_password,
)
from app.packages.drive.core.session import create_session, delete_session
from app.packages.drive.core.timezone import to_iso
from app.packages.drive.crud.users import user_crud
from app.packages.drive.models.user import User
from app.packages.drive.services.activity_service import activity_service


def serialize_user(user: User) -> dict:
    return {
        "id": user.id,
        "username": user.username,
        "email": user.email,
        "display_name": user.display_name,
        "quota": user.quota,
        "used_space": user.used_space,
        "is_admin": user.is_admin,
        "is_active": user.is_active,
        "created_at": to_iso(user.created_at),
    }


class AuthService:
    """负责处理用户注册与登录流程，并保持逻辑聚合。"""

    def register_user(
        self,
        db: Session,
        *,
        username: str,
        email: str,
        password: str,
        display_name: Optional[str] = None,
    ) -> dict:
        """创建新用户，配额取配置中的默认值。"""
        if user_crud.get_by_username(db, username):
            raise AppException(msg="用户名已存在", code=HTTP_STATUS_CONFLICT)
        if user_crud.get_by_email(db, email):
            raise AppException(msg="邮箱已被注册", code=HTTP_STATUS_CONFLICT)

        try:
            user = user_crud.create(
                db,
                {
                    "username": username,
                    "email": email.strip().lower(),
                    "hashed_password": get_password_hash(password),
                    "display_name": display_name or username,
                    "quota": get_settings().default_quota_bytes,
                    "used_space": 0,
                },
            )
        except IntegrityError as exc:
            db.rollback()
            raise AppException(msg="用户名或邮箱已存在", code=HTTP_STATUS_CONFLICT) from exc
        return create_response("注册成功", serialize_user(user), HTTP_STATUS_OK)

    def login(self, db: Session, *, username: str, password: str, request: Optional[Request] = None) -> dict:
        """校验用户凭证（用户名或邮箱），签发访问令牌并记录登录活动。"""
        user = user_crud.get_by_login(db, username)
        if user is None or not verify_password(password, user.hashed_password):
            raise AppException(msg="用户名或密码错误", code=HTTP_STATUS_UNAUTHORIZED)
        if not user.is_active:
            raise AppException(msg="用户未激活", code=HTTP_STATUS_FORBIDDEN)

        ttl_seconds = max(get_settings().access_token_expire_minutes, 1) * 60
        session_id = create_session(user.id, ttl_seconds)
        access_token = create_access_token({"user_id": user.id, "username": user.username, "sid": session_id})

        activity_service.record(db, type=ActivityTypeEnum.USER_LOGIN, actor_id=user.id, request=request)

        # 将签发的访问令牌通过上下文传递，便于响应阶段统一在 body.meta 与响应头返回
        store_refreshed_token(access_token)
        return create_response(
            "登录成功",
            {"access_token": access_token, "token_type": ACCESS_TOKEN_TYPE},
            HTTP_STATUS_OK,
        )

    def logout(self, db: Session, *, user: User, session_id: Optional[str], request: Optional[Request] = None) -> dict:
        if session_id:
            delete_session(session_id)
        # 退出后不再回传续期令牌
        store_refreshed_token(None)
        activity_service.record(db, type=ActivityTypeEnum.USER_LOGOUT, actor_id=user.id, request=request)
        return create_response("退出登录成功", None, HTTP_STATUS_OK)

    def update_profile(
        self,
        db: Session,
        *,
        user: User,
        display_name: Optional[str] = None,
        email: Optional[str] = None,
    ) -> dict:
        """更新显示名称与邮箱；邮箱被其他账号占用时返回 409。"""
        if email is not None:
            normalized = email.strip().lower()
            holder = user_crud.get_by_email(db, normalized)
            if holder is not None and holder.id != user.id:
                raise AppException(msg="邮箱已被注册", code=HTTP_STATUS_CONFLICT)
            user.email = normalized
        if display_name is not None:
            user.display_name = display_name
        try:
            user_crud.save(db, user)
        except IntegrityError as exc:
            db.rollback()
            raise AppException(msg="邮箱已被注册", code=HTTP_STATUS_CONFLICT) from exc
        return create_response("资料已更新", serialize_user(user), HTTP_STATUS_OK)

    def change_password(self, db: Session, *, user: User, current_password: str, new_password: str) -> dict:
        if not verify_password(current_password, user.hashed_password):
            raise AppException(msg="当前密码错误", code=HTTP_STATUS_UNAUTHORIZED)
        user.hashed_password = get_password_hash(new_password)
        user_crud.save(db, user)
        logger.info("Password changed", extra={"user_id": user.id})
        return create_response("密码已修改", None, HTTP_STATUS_OK)


auth_service = AuthService()
