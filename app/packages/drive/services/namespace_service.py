"""命名空间服务：维护文件/目录树，负责路径解析、重名规则与移动/重命名/复制语义。

约定：
- ``parent_id`` 是层级关系的唯一来源，``path`` 在读取时沿祖先链推导，移动目录无需改写子孙；
- 同级重名检查是"先查后写"，并发时以数据库部分唯一索引兜底，``IntegrityError`` 统一转为 ``ConflictError``；
- 先写 Blob 再写元数据；元数据失败时补偿删除 Blob，补偿失败记 ERROR 日志（孤儿 Blob）。
"""

from __future__ import annotations

import io
import uuid
from typing import BinaryIO, Dict, Iterable, List, Optional, Tuple

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from app.packages.drive.core.config import get_settings
from app.packages.drive.core.constants import INVALID_NAME_CHARS
from app.packages.drive.core.enums import NodeKind
from app.packages.drive.core.exceptions import (
    AppException,
    ConflictError,
    CycleError,
    ForbiddenError,
    InvalidNameError,
    InvalidReferenceError,
    NotFoundError,
    PayloadTooLargeError,
    QuotaExceededError,
)
from app.packages.drive.core.logger import logger
from app.packages.drive.core.timezone import to_iso
from app.packages.drive.crud.file_nodes import file_node_crud
from app.packages.drive.models.file_node import FileNode
from app.packages.drive.models.file_version import FileVersion
from app.packages.drive.models.user import User
from app.packages.drive.services.blob_store import BlobStore, SavedBlob, get_blob_store
from app.packages.drive.services.quota_service import QuotaService, quota_service
from app.packages.drive.services.trash_service import TrashService, trash_service
from app.packages.drive.utils.path_utils import join_path, split_parent, split_segments


def validate_name(name: Optional[str]) -> str:
    """校验节点名称：非空、首尾无空白、不是 '.'/'..'、不含 ``/ \\ : * ? " < > |``。"""
    if name is None or not name.strip():
        raise InvalidNameError("名称不能为空")
    if name != name.strip():
        raise InvalidNameError("名称首尾不能包含空白字符")
    if name in (".", ".."):
        raise InvalidNameError("名称不能为 '.' 或 '..'")
    if len(name) > 255:
        raise InvalidNameError("名称过长")
    bad = sorted({ch for ch in name if ch in INVALID_NAME_CHARS})
    if bad:
        raise InvalidNameError(f"名称包含非法字符: {' '.join(bad)}")
    return name


def parse_node_id(raw: Optional[str]) -> Optional[str]:
    """把外部传入的 id 规范化为 uuid 字符串；空值表示根目录。"""
    if raw is None or raw == "":
        return None
    try:
        return str(uuid.UUID(str(raw)))
    except (ValueError, AttributeError) as exc:
        raise InvalidReferenceError(f"无效的节点 ID: {raw}") from exc


class NamespaceService:
    """文件树的核心操作集合。``blob_store`` 缺省时使用按配置构建的共享实例。"""

    def __init__(
        self,
        blob_store: Optional[BlobStore] = None,
        quota: Optional[QuotaService] = None,
        lifecycle: Optional[TrashService] = None,
    ) -> None:
        self._blob_store = blob_store
        self.quota = quota or quota_service
        # 覆盖目标时由回收站服务删除被替换的子树并在提交后回收其 Blob
        self.lifecycle = lifecycle or trash_service

    @property
    def blob_store(self) -> BlobStore:
        if self._blob_store is None:
            self._blob_store = get_blob_store()
        return self._blob_store

    # ------------------------------------------------------------------
    # 查询
    # ------------------------------------------------------------------

    def get(self, db: Session, owner: User, node_id: Optional[str]) -> FileNode:
        """按 id 获取节点；回收站中的节点同样可以取到。"""
        parsed = parse_node_id(node_id)
        if parsed is None:
            raise InvalidReferenceError("缺少节点 ID")
        node = file_node_crud.get_owned(db, owner_id=owner.id, node_id=parsed)
        if node is None:
            raise NotFoundError("文件或文件夹不存在")
        return node

    def get_live(self, db: Session, owner: User, node_id: Optional[str]) -> FileNode:
        node = self.get(db, owner, node_id)
        if node.is_trashed:
            raise NotFoundError("文件或文件夹已在回收站中")
        return node

    def get_directory(self, db: Session, owner: User, parent_id: Optional[str]) -> Optional[FileNode]:
        """返回未删除的目录节点；``parent_id`` 为空表示根目录，返回 ``None``。"""
        if parse_node_id(parent_id) is None:
            return None
        node = self.get_live(db, owner, parent_id)
        if not node.is_directory:
            raise InvalidReferenceError("目标不是文件夹")
        return node

    def resolve(self, db: Session, owner: User, path: Optional[str]) -> Optional[FileNode]:
        """按路径逐段解析到未删除的节点；``"/"`` 解析为根作用域（``None``）。"""
        node: Optional[FileNode] = None
        segments = split_segments(path)
        for index, segment in enumerate(segments):
            parent_id = node.id if node is not None else None
            node = file_node_crud.get_live_child(db, owner_id=owner.id, parent_id=parent_id, name=segment)
            if node is None:
                raise NotFoundError(f"路径不存在: {path}")
            if index < len(segments) - 1 and not node.is_directory:
                raise NotFoundError(f"路径不存在: {path}")
        return node

    def resolve_parent(self, db: Session, owner: User, path: Optional[str]) -> Tuple[Optional[FileNode], str]:
        """解析目标路径的父目录，返回 ``(父目录节点或 None, 叶子名)``。

        父目录缺失或不是目录时抛出 ``ConflictError``，与 WebDAV 对中间集合缺失的约定一致。
        """
        parent_path, leaf = split_parent(path)
        if leaf is None:
            raise InvalidReferenceError("不能对根目录执行该操作")
        try:
            parent = self.resolve(db, owner, parent_path)
        except NotFoundError as exc:
            raise ConflictError(f"父目录不存在: {parent_path}") from exc
        if parent is not None and not parent.is_directory:
            raise ConflictError(f"父级不是文件夹: {parent_path}")
        return parent, leaf

    def path_of(self, db: Session, node: FileNode, cache: Optional[Dict[Optional[str], str]] = None) -> str:
        """节点所在目录的路径（不含自身名称），沿 ``parent_id`` 链推导。"""
        cache = cache if cache is not None else {}
        if node.parent_id in cache:
            return cache[node.parent_id]
        names: List[str] = []
        seen = set()
        current_id = node.parent_id
        while current_id is not None:
            if current_id in seen:
                raise CycleError("目录层级存在环")
            seen.add(current_id)
            parent = db.get(FileNode, current_id)
            if parent is None:
                break
            names.append(parent.name)
            current_id = parent.parent_id
        path = "/" + "/".join(reversed(names)) if names else "/"
        cache[node.parent_id] = path
        return path

    def full_path(self, db: Session, node: FileNode, cache: Optional[Dict[Optional[str], str]] = None) -> str:
        return join_path(self.path_of(db, node, cache), node.name)

    def list(self, db: Session, owner: User, parent_id: Optional[str]) -> List[FileNode]:
        """列出目录下未删除的子节点：目录在前，名称升序。"""
        parent = self.get_directory(db, owner, parent_id)
        return file_node_crud.list_live_children(
            db, owner_id=owner.id, parent_id=parent.id if parent is not None else None
        )

    def list_by_path(self, db: Session, owner: User, path: Optional[str]) -> Tuple[Optional[FileNode], List[FileNode]]:
        directory = self.resolve(db, owner, path)
        if directory is not None and not directory.is_directory:
            raise InvalidReferenceError("目标不是文件夹")
        children = file_node_crud.list_live_children(
            db, owner_id=owner.id, parent_id=directory.id if directory is not None else None
        )
        return directory, children

    def search(self, db: Session, owner: User, keyword: Optional[str], *, limit: int = 100) -> List[FileNode]:
        keyword = (keyword or "").strip()
        if not keyword:
            raise InvalidReferenceError("搜索关键字不能为空")
        return file_node_crud.search(db, owner_id=owner.id, keyword=keyword, limit=limit)

    def versions(self, db: Session, node: FileNode) -> List[FileVersion]:
        if node.is_directory:
            return []
        return file_node_crud.list_versions(db, file_ids=[node.id])

    def usage(self, db: Session, owner: User) -> dict:
        db.refresh(owner)
        return self.quota.usage(
            owner,
            file_count=file_node_crud.count_live(db, owner_id=owner.id, directories=False),
            folder_count=file_node_crud.count_live(db, owner_id=owner.id, directories=True),
        )

    def is_within(self, db: Session, directory_id: Optional[str], node: FileNode) -> bool:
        """目录 ``directory_id`` 是否就是 ``node`` 或位于其子树内。"""
        if directory_id is None or not node.is_directory:
            return False
        return node.id in self._ancestor_ids(db, directory_id)

    def open_content(self, node: FileNode) -> BinaryIO:
        if node.is_directory or not node.storage_ref:
            raise InvalidReferenceError("文件夹没有可下载的内容")
        return self.blob_store.open(node.storage_ref)

    # ------------------------------------------------------------------
    # 变更
    # ------------------------------------------------------------------

    def create(self, db: Session, owner: User, parent_id: Optional[str], name: str, kind: NodeKind) -> FileNode:
        """创建空文件或目录；同级已有同名节点时抛出 ``ConflictError``，不做任何写入。"""
        if NodeKind(kind) is NodeKind.DIRECTORY:
            return self.create_directory(db, owner, parent_id=parent_id, name=name)
        name = validate_name(name)
        parent = self.get_directory(db, owner, parent_id)
        parent_key = parent.id if parent is not None else None
        self._ensure_name_free(db, owner.id, parent_key, name)

        saved = self.blob_store.save(owner.id, io.BytesIO(b""), filename=name, max_bytes=0)
        node = self._commit_new_file(db, owner, parent_key, name, saved)
        logger.info("Empty file created", extra={"owner_id": owner.id, "node_id": node.id})
        return node

    def create_directory(self, db: Session, owner: User, *, parent_id: Optional[str], name: str) -> FileNode:
        name = validate_name(name)
        parent = self.get_directory(db, owner, parent_id)
        parent_key = parent.id if parent is not None else None
        self._ensure_name_free(db, owner.id, parent_key, name)
        node = FileNode(
            owner_id=owner.id,
            parent_id=parent_key,
            name=name,
            is_directory=True,
            size=0,
            version=1,
        )
        db.add(node)
        self._commit_or_conflict(db)
        db.refresh(node)
        logger.info("Directory created", extra={"owner_id": owner.id, "node_id": node.id})
        return node

    def upload(
        self,
        db: Session,
        owner: User,
        *,
        parent_id: Optional[str],
        name: str,
        stream: BinaryIO,
        size_hint: Optional[int] = None,
    ) -> Tuple[FileNode, bool]:
        """写入文件内容；同名文件存在时覆盖并生成历史版本。返回 ``(节点, 是否新建)``。"""
        name = validate_name(name)
        parent = self.get_directory(db, owner, parent_id)
        parent_key = parent.id if parent is not None else None

        max_upload = get_settings().max_upload_size
        if max_upload and size_hint is not None and size_hint > max_upload:
            raise PayloadTooLargeError(data={"max_upload_size": max_upload})

        existing = file_node_crud.get_live_child(db, owner_id=owner.id, parent_id=parent_key, name=name)
        if existing is not None and existing.is_directory:
            raise ConflictError("同名文件夹已存在")
        old_size = existing.size if existing is not None else 0
        if size_hint is not None:
            self.quota.authorize(owner, size_hint - old_size)

        # 流长度未知时以剩余配额为上限，写入过程中超限立即中止
        quota_limit = self.quota.remaining(owner) + old_size
        capped_by_upload = bool(max_upload) and max_upload < quota_limit
        limit = max_upload if capped_by_upload else quota_limit
        try:
            saved = self.blob_store.save(owner.id, stream, filename=name, max_bytes=limit)
        except QuotaExceededError as exc:
            if capped_by_upload:
                raise PayloadTooLargeError(data={"max_upload_size": max_upload}) from exc
            raise

        try:
            # Blob 写入期间可能有并发请求改动了同级节点，这里重新读取
            existing = file_node_crud.get_live_child(db, owner_id=owner.id, parent_id=parent_key, name=name)
            if existing is not None and existing.is_directory:
                raise ConflictError("同名文件夹已存在")
            if existing is not None:
                node = self._overwrite(db, owner, existing, saved)
            else:
                node = self._insert_file(db, owner, parent_key, name, saved)
            db.commit()
        except IntegrityError as exc:
            db.rollback()
            self._discard_blob(saved.storage_ref)
            raise ConflictError() from exc
        except Exception:
            db.rollback()
            self._discard_blob(saved.storage_ref)
            raise
        db.refresh(node)
        logger.info(
            "File %s (v%s, %s bytes)",
            "overwritten" if existing is not None else "created",
            node.version,
            node.size,
            extra={"owner_id": owner.id, "node_id": node.id, "storage_ref": node.storage_ref},
        )
        return node, existing is None

    def rename(self, db: Session, node: FileNode, new_name: str) -> FileNode:
        new_name = validate_name(new_name)
        if node.is_trashed:
            raise NotFoundError("文件或文件夹已在回收站中")
        if new_name == node.name:
            return node
        self._ensure_name_free(db, node.owner_id, node.parent_id, new_name, exclude_id=node.id)
        node.name = new_name
        if not node.is_directory:
            node.mime_type = self.blob_store.mime_type(new_name)
        self._commit_or_conflict(db)
        db.refresh(node)
        return node

    def move(
        self,
        db: Session,
        owner: User,
        node: FileNode,
        new_parent_id: Optional[str],
        new_name: Optional[str] = None,
        *,
        replace: Optional[FileNode] = None,
    ) -> FileNode:
        """移动到新父目录（可同时改名）；目标位于自身子树内时抛出 ``CycleError``，树保持不变。

        ``replace`` 为目标位置上要被覆盖的节点，它的删除与移动在同一事务中提交。
        """
        if node.is_trashed:
            raise NotFoundError("文件或文件夹已在回收站中")
        destination = self.get_directory(db, owner, new_parent_id)
        dest_key = destination.id if destination is not None else None
        name = validate_name(new_name) if new_name is not None else node.name

        if self.is_within(db, dest_key, node):
            raise CycleError()
        self._check_replaceable(db, node, replace)

        if dest_key == node.parent_id and name == node.name:
            return node
        self._ensure_name_free(db, owner.id, dest_key, name, exclude_id=self._id_of(replace, node))
        refs: List[str] = []
        try:
            if replace is not None:
                _, refs = self.lifecycle.detach(db, owner, replace)
            node.parent_id = dest_key
            if name != node.name:
                node.name = name
                if not node.is_directory:
                    node.mime_type = self.blob_store.mime_type(name)
            db.commit()
        except IntegrityError as exc:
            db.rollback()
            raise ConflictError() from exc
        except Exception:
            db.rollback()
            raise
        self.lifecycle.reclaim(refs)
        db.refresh(node)
        return node

    def copy(
        self,
        db: Session,
        owner: User,
        node: FileNode,
        dest_parent_id: Optional[str],
        new_name: Optional[str] = None,
        *,
        replace: Optional[FileNode] = None,
    ) -> FileNode:
        """复制文件（不支持目录）：复制 Blob、新建版本号为 1 且无历史的节点。

        ``replace`` 为目标位置上要被覆盖的节点；配额按覆盖后的净增量校验，
        任何一步失败时被覆盖的节点保持原样。
        """
        if node.is_directory:
            raise ForbiddenError("不支持复制文件夹")
        if node.is_trashed:
            raise NotFoundError("文件已在回收站中")
        destination = self.get_directory(db, owner, dest_parent_id)
        dest_key = destination.id if destination is not None else None
        name = validate_name(new_name) if new_name else node.name
        self._check_replaceable(db, node, replace)
        self._ensure_name_free(db, owner.id, dest_key, name, exclude_id=self._id_of(replace))
        released = self.lifecycle.counted_size(db, replace) if replace is not None else 0
        self.quota.authorize(owner, node.size - released)

        new_ref = self.blob_store.copy(node.storage_ref)
        saved = SavedBlob(storage_ref=new_ref, size=node.size, checksum=node.checksum)
        return self._commit_new_file(db, owner, dest_key, name, saved, mime_type=node.mime_type, replace=replace)

    # ------------------------------------------------------------------
    # 序列化
    # ------------------------------------------------------------------

    def serialize(self, db: Session, node: FileNode, cache: Optional[Dict[Optional[str], str]] = None) -> dict:
        return {
            "id": node.id,
            "name": node.name,
            "path": self.path_of(db, node, cache),
            "mime_type": node.mime_type,
            "size": node.size,
            "is_directory": node.is_directory,
            "parent_id": node.parent_id,
            "owner_id": node.owner_id,
            "checksum": node.checksum,
            "version": node.version,
            "is_trashed": node.is_trashed,
            "trashed_at": to_iso(node.trashed_at),
            "created_at": to_iso(node.created_at),
            "updated_at": to_iso(node.updated_at),
        }

    def serialize_many(self, db: Session, nodes: Iterable[FileNode]) -> List[dict]:
        cache: Dict[Optional[str], str] = {}
        return [self.serialize(db, node, cache) for node in nodes]

    # ------------------------------------------------------------------
    # 内部辅助
    # ------------------------------------------------------------------

    def _insert_file(
        self,
        db: Session,
        owner: User,
        parent_key: Optional[str],
        name: str,
        saved: SavedBlob,
        *,
        mime_type: Optional[str] = None,
    ) -> FileNode:
        node = FileNode(
            owner_id=owner.id,
            parent_id=parent_key,
            name=name,
            is_directory=False,
            storage_ref=saved.storage_ref,
            mime_type=mime_type or self.blob_store.mime_type(name),
            size=saved.size,
            checksum=saved.checksum,
            version=1,
        )
        db.add(node)
        db.flush()
        self.quota.commit(db, owner, saved.size)
        return node

    def _commit_new_file(
        self,
        db: Session,
        owner: User,
        parent_key: Optional[str],
        name: str,
        saved: SavedBlob,
        *,
        mime_type: Optional[str] = None,
        replace: Optional[FileNode] = None,
    ) -> FileNode:
        """插入新文件节点并提交；失败时回滚并回收已写入的 Blob。"""
        refs: List[str] = []
        try:
            if replace is not None:
                _, refs = self.lifecycle.detach(db, owner, replace)
            node = self._insert_file(db, owner, parent_key, name, saved, mime_type=mime_type)
            db.commit()
        except IntegrityError as exc:
            db.rollback()
            self._discard_blob(saved.storage_ref)
            raise ConflictError() from exc
        except Exception:
            db.rollback()
            self._discard_blob(saved.storage_ref)
            raise
        self.lifecycle.reclaim(refs)
        db.refresh(node)
        return node

    def _check_replaceable(self, db: Session, node: FileNode, replace: Optional[FileNode]) -> None:
        """被覆盖的节点不能是源节点本身、源的祖先或源子树中的节点。"""
        if replace is None:
            return
        if replace.id == node.id or self.is_within(db, node.id, replace) or self.is_within(db, replace.id, node):
            raise ForbiddenError("目标与源重叠")

    @staticmethod
    def _id_of(*nodes: Optional[FileNode]) -> Optional[str]:
        for item in nodes:
            if item is not None:
                return item.id
        return None

    def _overwrite(self, db: Session, owner: User, node: FileNode, saved: SavedBlob) -> FileNode:
        # 先落旧版本快照，再更新节点字段
        db.add(
            FileVersion(
                file_id=node.id,
                version=node.version,
                storage_ref=node.storage_ref,
                size=node.size,
                checksum=node.checksum,
            )
        )
        delta = saved.size - node.size
        node.storage_ref = saved.storage_ref
        node.size = saved.size
        node.checksum = saved.checksum
        node.mime_type = self.blob_store.mime_type(node.name)
        node.version = node.version + 1
        db.flush()
        self.quota.commit(db, owner, delta)
        return node

    def _ensure_name_free(
        self,
        db: Session,
        owner_id: int,
        parent_key: Optional[str],
        name: str,
        *,
        exclude_id: Optional[str] = None,
    ) -> None:
        sibling = file_node_crud.get_live_child(db, owner_id=owner_id, parent_id=parent_key, name=name)
        if sibling is not None and sibling.id != exclude_id:
            raise ConflictError(f"同一目录下已存在同名项: {name}")

    def _ancestor_ids(self, db: Session, start_id: str) -> List[str]:
        """从 ``start_id`` 自身开始向上收集祖先 id，直到根目录。"""
        ids: List[str] = []
        current_id: Optional[str] = start_id
        while current_id is not None and current_id not in ids:
            ids.append(current_id)
            parent = db.get(FileNode, current_id)
            current_id = parent.parent_id if parent is not None else None
        return ids

    def _commit_or_conflict(self, db: Session) -> None:
        try:
            db.commit()
        except IntegrityError as exc:
            db.rollback()
            raise ConflictError() from exc

    def _discard_blob(self, storage_ref: str) -> None:
        """补偿删除：元数据写入失败后回收刚写入的 Blob，失败只记录日志。"""
        try:
            self.blob_store.delete(storage_ref)
        except (AppException, OSError):
            logger.exception(
                "Compensating blob delete failed, blob leaked: %s",
                storage_ref,
                extra={"storage_ref": storage_ref},
            )


namespace_service = NamespaceService()
