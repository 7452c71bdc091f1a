"""用户 CRUD：集中管理用户相关的数据操作。"""

from typing import Optional

from sqlalchemy import func, or_
from sqlalchemy.orm import Session

from app.packages.drive.crud.base import CRUDBase
from app.packages.drive.models.user import User


class CRUDUser(CRUDBase[User]):
    def get_by_username(self, db: Session, username: str) -> Optional[User]:
        return self.query(db).filter(User.username == username).first()

    def get_by_email(self, db: Session, email: str) -> Optional[User]:
        return self.query(db).filter(func.lower(User.email) == email.strip().lower()).first()

    def get_by_login(self, db: Session, login: str) -> Optional[User]:
        """按用户名或邮箱查找，供 WebDAV Basic 认证使用。"""
        normalized = login.strip()
        return (
            self.query(db)
            .filter(or_(User.username == normalized, func.lower(User.email) == normalized.lower()))
            .first()
        )


user_crud = CRUDUser(User)
