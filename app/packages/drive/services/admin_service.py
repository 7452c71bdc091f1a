"""管理员服务：用户管理与全站活动查询。

管理员不能撤销自己的管理员身份，也不能删除自己；删除用户时连同其全部节点、
历史版本与活动记录一起清除，Blob 在事务提交后回收。
"""

from __future__ import annotations

from typing import Any, Dict, List, Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from app.packages.drive.core.constants import (
    HTTP_STATUS_CONFLICT,
    HTTP_STATUS_FORBIDDEN,
    HTTP_STATUS_NOT_FOUND,
    HTTP_STATUS_OK,
)
from app.packages.drive.core.exceptions import AppException
from app.packages.drive.core.logger import logger
from app.packages.drive.core.responses import create_response
from app.packages.drive.core.timezone import to_iso
from app.packages.drive.crud.activities import activity_crud
from app.packages.drive.crud.file_nodes import file_node_crud
from app.packages.drive.crud.users import user_crud
from app.packages.drive.models.activity import Activity
from app.packages.drive.models.user import User
from app.packages.drive.services.auth_service import serialize_user
from app.packages.drive.services.trash_service import TrashService, trash_service


def serialize_activity(item: Activity) -> dict:
    return {
        "id": item.id,
        "user_id": item.user_id,
        "type": item.type,
        "file_id": item.file_id,
        "file_name": item.file_name,
        "details": item.details,
        "ip_address": item.ip_address,
        "user_agent": item.user_agent,
        "created_at": to_iso(item.created_at),
    }


class AdminService:
    def __init__(self, lifecycle: Optional[TrashService] = None) -> None:
        self.lifecycle = lifecycle or trash_service

    def list_users(self, db: Session) -> dict:
        users = user_crud.query(db).order_by(User.created_at.desc(), User.id.desc()).all()
        return create_response("获取成功", [serialize_user(user) for user in users], HTTP_STATUS_OK)

    def get_user(self, db: Session, user_id: int) -> dict:
        return create_response("获取成功", serialize_user(self._require_user(db, user_id)), HTTP_STATUS_OK)

    def update_user(self, db: Session, *, admin: User, user_id: int, changes: Dict[str, Any]) -> dict:
        """只更新 ``changes`` 中出现的字段。"""
        user = self._require_user(db, user_id)
        if user.id == admin.id and changes.get("is_admin") is False:
            raise AppException(msg="不能撤销自己的管理员身份", code=HTTP_STATUS_FORBIDDEN)

        email = changes.get("email")
        if email is not None:
            email = email.strip().lower()
            holder = user_crud.get_by_email(db, email)
            if holder is not None and holder.id != user.id:
                raise AppException(msg="邮箱已被注册", code=HTTP_STATUS_CONFLICT)
            user.email = email
        for field in ("display_name", "quota", "is_active", "is_admin"):
            if changes.get(field) is not None:
                setattr(user, field, changes[field])

        try:
            user_crud.save(db, user)
        except IntegrityError as exc:
            db.rollback()
            raise AppException(msg="邮箱已被注册", code=HTTP_STATUS_CONFLICT) from exc
        logger.info("User %s updated by admin %s", user.id, admin.id, extra={"fields": sorted(changes)})
        return create_response("用户已更新", serialize_user(user), HTTP_STATUS_OK)

    def delete_user(self, db: Session, *, admin: User, user_id: int) -> dict:
        if user_id == admin.id:
            raise AppException(msg="不能删除自己", code=HTTP_STATUS_FORBIDDEN)
        user = self._require_user(db, user_id)

        purged = 0
        freed = 0
        refs: List[str] = []
        try:
            for node in file_node_crud.list_roots(db, owner_id=user.id):
                result, node_refs = self.lifecycle.detach(db, user, node)
                purged += result["purged"]
                freed += result["freed_space"]
                refs.extend(node_refs)
            activity_crud.delete_for_user(db, user_id=user.id)
            db.delete(user)
            db.commit()
        except Exception:
            db.rollback()
            raise

        self.lifecycle.reclaim(refs)
        logger.info(
            "User %s deleted by admin %s, purged %s node(s)",
            user_id,
            admin.id,
            purged,
            extra={"freed_space": freed},
        )
        return create_response(
            "用户已删除",
            {"user_id": user_id, "purged": purged, "freed_space": freed},
            HTTP_STATUS_OK,
        )

    def list_activities(self, db: Session, *, limit: int = 100) -> dict:
        return create_response(
            "获取成功",
            [serialize_activity(item) for item in activity_crud.list_all(db, limit=limit)],
            HTTP_STATUS_OK,
        )

    @staticmethod
    def _require_user(db: Session, user_id: int) -> User:
        user = user_crud.get(db, user_id)
        if user is None:
            raise AppException(msg="用户不存在", code=HTTP_STATUS_NOT_FOUND)
        return user


admin_service = AdminService()
