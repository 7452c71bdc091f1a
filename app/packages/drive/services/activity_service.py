"""活动记录服务：尽力而为地写入审计流水，失败绝不影响触发它的业务操作。"""

from __future__ import annotations

import json
from typing import Any, List, Optional

from fastapi import Request
from sqlalchemy.orm import Session

from app.packages.drive.core.enums import ActivityTypeEnum
from app.packages.drive.core.logger import logger
from app.packages.drive.core.timezone import to_iso
from app.packages.drive.crud.activities import activity_crud
from app.packages.drive.models.activity import Activity


def extract_client_ip(request: Optional[Request]) -> Optional[str]:
    if request is None:
        return None
    for key in ("x-forwarded-for", "x-real-ip", "x-client-ip"):
        raw = request.headers.get(key)
        if raw:
            return raw.split(",")[0].strip()
    if request.client:
        return request.client.host
    return None


class ActivityService:
    def record(
        self,
        db: Session,
        *,
        type: ActivityTypeEnum,
        actor_id: int,
        target_id: Optional[str] = None,
        target_name: Optional[str] = None,
        details: Optional[Any] = None,
        request: Optional[Request] = None,
    ) -> Optional[Activity]:
        """写入一条活动记录；任何异常只记 WARNING 并回滚，返回 ``None``。"""
        try:
            payload = {
                "user_id": actor_id,
                "type": ActivityTypeEnum(type).value,
                "file_id": target_id,
                "file_name": target_name,
                "details": details if details is None or isinstance(details, str) else json.dumps(details, ensure_ascii=False, default=str),
                "ip_address": extract_client_ip(request),
                "user_agent": (request.headers.get("user-agent") or "")[:512] if request is not None else None,
            }
            return activity_crud.create(db, payload)
        except Exception as exc:  # pragma: no cover - 审计失败不影响主流程
            logger.warning("Failed to record activity %s for user %s: %s", type, actor_id, exc)
            db.rollback()
            return None

    def list_recent(self, db: Session, *, user_id: int, limit: int = 50) -> List[dict]:
        return [
            {
                "id": item.id,
                "type": item.type,
                "file_id": item.file_id,
                "file_name": item.file_name,
                "details": item.details,
                "ip_address": item.ip_address,
                "user_agent": item.user_agent,
                "created_at": to_iso(item.created_at),
            }
            for item in activity_crud.list_for_user(db, user_id=user_id, limit=limit)
        ]


activity_service = ActivityService()
