"""Activity CRUD。"""

from __future__ import annotations

from typing import List

from sqlalchemy.orm import Session

from app.packages.drive.crud.base import CRUDBase
from app.packages.drive.models.activity import Activity


class CRUDActivity(CRUDBase[Activity]):
    def list_for_user(self, db: Session, *, user_id: int, limit: int = 50) -> List[Activity]:
        return (
            self.query(db)
            .filter(Activity.user_id == user_id)
            .order_by(Activity.created_at.desc(), Activity.id.desc())
            .limit(limit)
            .all()
        )

    def list_all(self, db: Session, *, limit: int = 100) -> List[Activity]:
        return self.query(db).order_by(Activity.created_at.desc(), Activity.id.desc()).limit(limit).all()

    def delete_for_user(self, db: Session, *, user_id: int) -> int:
        """删除某用户的全部活动记录，只 flush 不提交。"""
        count = self.query(db).filter(Activity.user_id == user_id).delete(synchronize_session=False)
        db.flush()
        return count


activity_crud = CRUDActivity(Activity)
