"""配额服务：校验并原子地维护用户已用空间。

``authorize`` 只是提前拒绝明显超额的请求；真正的约束在 ``commit`` 中：
正向增量通过带 ``used_space + delta <= quota`` 条件的单条 UPDATE 落库，
并发上传即使都通过了预检，也只有不超额的那一个能提交成功。
"""

from __future__ import annotations

from typing import Optional

from sqlalchemy import case, update
from sqlalchemy.orm import Session

from app.packages.drive.core.exceptions import QuotaExceededError
from app.packages.drive.core.logger import logger
from app.packages.drive.models.user import User


class QuotaService:
    def remaining(self, owner: User) -> int:
        return max(int(owner.quota or 0) - int(owner.used_space or 0), 0)

    def authorize(self, owner: User, additional_bytes: int) -> None:
        """``used_space + additional_bytes`` 超过 ``quota`` 时抛出 ``QuotaExceededError``。"""
        if additional_bytes <= 0:
            return
        if int(owner.used_space or 0) + additional_bytes > int(owner.quota or 0):
            raise QuotaExceededError(
                data={
                    "quota": owner.quota,
                    "used_space": owner.used_space,
                    "requested": additional_bytes,
                }
            )

    def commit(self, db: Session, owner: User, delta: int) -> None:
        """在当前事务中对 ``used_space`` 应用有符号增量；不提交事务。"""
        if delta == 0:
            return
        stmt = update(User).where(User.id == owner.id)
        if delta > 0:
            stmt = stmt.where(User.used_space + delta <= User.quota)
            new_value = User.used_space + delta
        else:
            # 释放空间时不让计数器跌破 0
            new_value = case((User.used_space + delta < 0, 0), else_=User.used_space + delta)
        result = db.execute(stmt.values(used_space=new_value).execution_options(synchronize_session=False))
        if result.rowcount == 0:
            if delta > 0:
                raise QuotaExceededError(data={"quota": owner.quota, "requested": delta})
            logger.warning("Quota release matched no user row", extra={"owner_id": owner.id})
        if owner in db:
            db.expire(owner, ["used_space"])

    def usage(self, owner: User, *, file_count: int, folder_count: int) -> dict:
        quota = int(owner.quota or 0)
        used = int(owner.used_space or 0)
        percentage: Optional[float] = round(used * 100.0 / quota, 2) if quota > 0 else 0.0
        return {
            "used_space": used,
            "quota": quota,
            "file_count": file_count,
            "folder_count": folder_count,
            "percentage": percentage,
        }


quota_service = QuotaService()
