"""回收站与生命周期：软删除、恢复与彻底删除。

- 放入回收站不会级联到子节点：子节点保持原状，只是随父目录一起从路径解析与列表中消失；
- 配额只统计未删除的文件，因此放入回收站释放空间，恢复时重新校验并占用；
- 彻底删除先提交元数据删除，再回收 Blob；Blob 回收失败只产生孤儿 Blob，记录 ERROR 日志。
"""

from __future__ import annotations

from datetime import timedelta
from typing import Iterable, List, Optional, Tuple

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from app.packages.drive.core.config import get_settings
from app.packages.drive.core.exceptions import AppException, ConflictError, NotFoundError
from app.packages.drive.core.logger import logger
from app.packages.drive.core.timezone import utcnow
from app.packages.drive.crud.file_nodes import file_node_crud
from app.packages.drive.db import session as db_session
from app.packages.drive.models.file_node import FileNode
from app.packages.drive.models.file_version import FileVersion
from app.packages.drive.models.user import User
from app.packages.drive.services.blob_store import BlobStore, get_blob_store
from app.packages.drive.services.quota_service import QuotaService, quota_service


class TrashService:
    def __init__(self, blob_store: Optional[BlobStore] = None, quota: Optional[QuotaService] = None) -> None:
        self._blob_store = blob_store
        self.quota = quota or quota_service

    @property
    def blob_store(self) -> BlobStore:
        if self._blob_store is None:
            self._blob_store = get_blob_store()
        return self._blob_store

    def list_trash(self, db: Session, owner: User) -> List[FileNode]:
        return file_node_crud.list_trashed(db, owner_id=owner.id)

    def trash(self, db: Session, owner: User, node: FileNode) -> FileNode:
        if node.is_trashed:
            return node
        node.is_trashed = True
        node.trashed_at = utcnow()
        db.flush()
        if not node.is_directory:
            self.quota.commit(db, owner, -node.size)
        db.commit()
        db.refresh(node)
        return node

    def restore(self, db: Session, owner: User, node: FileNode) -> FileNode:
        """恢复到原父目录；期间出现同名节点时抛出 ``ConflictError``。"""
        if not node.is_trashed:
            raise NotFoundError("回收站中不存在该项")
        sibling = file_node_crud.get_live_child(db, owner_id=owner.id, parent_id=node.parent_id, name=node.name)
        if sibling is not None:
            raise ConflictError(f"原位置已存在同名项: {node.name}")
        if not node.is_directory:
            self.quota.authorize(owner, node.size)
        try:
            node.is_trashed = False
            node.trashed_at = None
            db.flush()
            if not node.is_directory:
                self.quota.commit(db, owner, node.size)
            db.commit()
        except IntegrityError as exc:
            db.rollback()
            raise ConflictError(f"原位置已存在同名项: {node.name}") from exc
        except Exception:
            db.rollback()
            raise
        db.refresh(node)
        return node

    def purge(self, db: Session, owner: User, node: FileNode) -> dict:
        """彻底删除节点（目录连同整棵子树）及其全部历史版本。"""
        try:
            result, refs = self.detach(db, owner, node)
            db.commit()
        except Exception:
            db.rollback()
            raise

        self.reclaim(refs)
        logger.info(
            "Purged %s node(s), released %s bytes",
            result["purged"],
            result["freed_space"],
            extra={"owner_id": owner.id, "node_id": result["node_id"]},
        )
        return {"purged": result["purged"], "freed_space": result["freed_space"]}

    def detach(self, db: Session, owner: User, node: FileNode) -> Tuple[dict, List[str]]:
        """在当前事务中删除节点子树与历史版本并释放配额，不提交。

        返回 ``(统计, 待回收的 Blob 引用)``；引用只能在事务提交后回收。
        """
        levels = self._collect_subtree(db, node)
        nodes = [item for level in levels for item in level]
        node_ids = [item.id for item in nodes]

        versions = file_node_crud.list_versions(db, file_ids=node_ids)
        refs = [item.storage_ref for item in nodes if not item.is_directory and item.storage_ref]
        refs.extend(version.storage_ref for version in versions)
        released = self._counted(nodes)

        db.query(FileVersion).filter(FileVersion.file_id.in_(node_ids)).delete(synchronize_session=False)
        for level in reversed(levels):
            for item in level:
                db.delete(item)
            db.flush()
        self.quota.commit(db, owner, -released)
        return {"purged": len(nodes), "freed_space": released, "node_id": node.id}, refs

    def counted_size(self, db: Session, node: FileNode) -> int:
        """子树中仍计入配额的字节数。"""
        return self._counted(item for level in self._collect_subtree(db, node) for item in level)

    @staticmethod
    def _counted(nodes: Iterable[FileNode]) -> int:
        # 回收站中的文件已经释放过配额
        return sum(item.size for item in nodes if not item.is_directory and not item.is_trashed)

    def empty_trash(self, db: Session, owner: User) -> dict:
        return self._purge_many(db, owner, self.list_trash(db, owner))

    def purge_expired(self, db: Session, owner: User, *, older_than_days: int) -> dict:
        """清理放入回收站超过 ``older_than_days`` 天的节点。"""
        cutoff = utcnow() - timedelta(days=max(older_than_days, 0))
        return self._purge_many(db, owner, file_node_crud.list_trashed_before(db, owner_id=owner.id, cutoff=cutoff))

    def sweep_expired(self, db: Session, *, older_than_days: int) -> dict:
        """对所有用户执行过期清理，启动时按 ``TRASH_RETENTION_DAYS`` 调用。"""
        purged = 0
        freed = 0
        for owner in db.query(User).order_by(User.id).all():
            result = self.purge_expired(db, owner, older_than_days=older_than_days)
            purged += result["purged"]
            freed += result["freed_space"]
        return {"purged": purged, "freed_space": freed}

    def _purge_many(self, db: Session, owner: User, candidates: List[FileNode]) -> dict:
        candidate_ids = [item.id for item in candidates]
        purged = 0
        freed = 0
        for node_id in candidate_ids:
            # 前面的目录清理可能已连带删除该节点
            node = file_node_crud.get_owned(db, owner_id=owner.id, node_id=node_id)
            if node is None:
                continue
            result = self.purge(db, owner, node)
            purged += result["purged"]
            freed += result["freed_space"]
        return {"purged": purged, "freed_space": freed}

    def _collect_subtree(self, db: Session, node: FileNode) -> List[List[FileNode]]:
        """按层收集子树，第 0 层为节点自身。"""
        levels = [[node]]
        frontier = [node.id] if node.is_directory else []
        seen = {node.id}
        while frontier:
            children = [child for child in file_node_crud.list_all_children(db, parent_ids=frontier) if child.id not in seen]
            if not children:
                break
            seen.update(child.id for child in children)
            levels.append(children)
            frontier = [child.id for child in children if child.is_directory]
        return levels

    def reclaim(self, refs: Iterable[str]) -> None:
        """回收 ``detach`` 返回的 Blob 引用，须在事务提交之后调用。"""
        for ref in refs:
            self._reclaim(ref)

    def _reclaim(self, storage_ref: str) -> None:
        try:
            self.blob_store.delete(storage_ref)
        except (AppException, OSError):
            logger.exception(
                "Blob reclaim failed after delete, blob leaked: %s",
                storage_ref,
                extra={"storage_ref": storage_ref},
            )


trash_service = TrashService()


def sweep_trash_on_startup() -> None:
    """启动钩子：``TRASH_RETENTION_DAYS`` 大于 0 时清理所有用户的过期回收站条目。"""
    days = get_settings().trash_retention_days
    if days <= 0:
        return
    with db_session.SessionLocal() as db:
        result = trash_service.sweep_expired(db, older_than_days=days)
    if result["purged"]:
        logger.info("Trash retention sweep purged %s node(s), freed %s bytes", result["purged"], result["freed_space"])
