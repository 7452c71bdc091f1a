"""FileNode CRUD：同级查找、子节点列表、子树收集等查询。"""

from __future__ import annotations

from datetime import datetime
from typing import Iterable, List, Optional

from sqlalchemy import func
from sqlalchemy.orm import Session

from app.packages.drive.crud.base import CRUDBase
from app.packages.drive.models.file_node import FileNode
from app.packages.drive.models.file_version import FileVersion


class CRUDFileNode(CRUDBase[FileNode]):
    def get_owned(self, db: Session, *, owner_id: int, node_id: str) -> Optional[FileNode]:
        """按 id 获取节点（包括回收站中的节点），限定所属用户。"""
        return (
            self.query(db)
            .filter(FileNode.id == node_id, FileNode.owner_id == owner_id)
            .first()
        )

    def get_live_child(
        self, db: Session, *, owner_id: int, parent_id: Optional[str], name: str
    ) -> Optional[FileNode]:
        return (
            self._children(db, owner_id=owner_id, parent_id=parent_id)
            .filter(FileNode.name == name)
            .first()
        )

    def list_live_children(
        self, db: Session, *, owner_id: int, parent_id: Optional[str]
    ) -> List[FileNode]:
        # 目录在前，其次按名称升序
        return (
            self._children(db, owner_id=owner_id, parent_id=parent_id)
            .order_by(FileNode.is_directory.desc(), FileNode.name.asc())
            .all()
        )

    def list_all_children(self, db: Session, *, parent_ids: Iterable[str]) -> List[FileNode]:
        """不区分回收站状态地列出子节点，用于彻底删除整棵子树。"""
        ids = list(parent_ids)
        if not ids:
            return []
        return self.query(db).filter(FileNode.parent_id.in_(ids)).all()

    def list_roots(self, db: Session, *, owner_id: int) -> List[FileNode]:
        """列出用户根目录下的全部节点（包括回收站中的节点）。"""
        return (
            self.query(db)
            .filter(FileNode.owner_id == owner_id, FileNode.parent_id.is_(None))
            .all()
        )

    def list_trashed(self, db: Session, *, owner_id: int) -> List[FileNode]:
        return (
            self.query(db)
            .filter(FileNode.owner_id == owner_id, FileNode.is_trashed.is_(True))
            .order_by(FileNode.trashed_at.desc(), FileNode.name.asc())
            .all()
        )

    def list_trashed_before(self, db: Session, *, owner_id: int, cutoff: datetime) -> List[FileNode]:
        return (
            self.query(db)
            .filter(
                FileNode.owner_id == owner_id,
                FileNode.is_trashed.is_(True),
                FileNode.trashed_at < cutoff,
            )
            .all()
        )

    def search(self, db: Session, *, owner_id: int, keyword: str, limit: int = 100) -> List[FileNode]:
        pattern = "%" + keyword.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_") + "%"
        return (
            self.query(db)
            .filter(FileNode.owner_id == owner_id, FileNode.is_trashed.is_(False))
            .filter(FileNode.name.ilike(pattern, escape="\\"))
            .order_by(FileNode.is_directory.desc(), FileNode.name.asc())
            .limit(limit)
            .all()
        )

    def count_live(self, db: Session, *, owner_id: int, directories: bool) -> int:
        return (
            db.query(func.count(FileNode.id))
            .filter(
                FileNode.owner_id == owner_id,
                FileNode.is_trashed.is_(False),
                FileNode.is_directory.is_(directories),
            )
            .scalar()
            or 0
        )

    def sum_live_size(self, db: Session, *, owner_id: int) -> int:
        return (
            db.query(func.coalesce(func.sum(FileNode.size), 0))
            .filter(
                FileNode.owner_id == owner_id,
                FileNode.is_trashed.is_(False),
                FileNode.is_directory.is_(False),
            )
            .scalar()
            or 0
        )

    def list_versions(self, db: Session, *, file_ids: Iterable[str]) -> List[FileVersion]:
        ids = list(file_ids)
        if not ids:
            return []
        return (
            db.query(FileVersion)
            .filter(FileVersion.file_id.in_(ids))
            .order_by(FileVersion.file_id, FileVersion.version.desc())
            .all()
        )

    def _children(self, db: Session, *, owner_id: int, parent_id: Optional[str]):
        query = self.query(db).filter(FileNode.owner_id == owner_id, FileNode.is_trashed.is_(False))
        if parent_id is None:
            return query.filter(FileNode.parent_id.is_(None))
        return query.filter(FileNode.parent_id == parent_id)


file_node_crud = CRUDFileNode(FileNode)
