"""文件系统节点模型（文件与目录合并为一张表）。

存储规则：
- parent_id 是层级关系的唯一权威来源，表中不保存物化路径；路径在读取时沿祖先链推导；
- 同一用户、同一父目录下，未进入回收站的节点名称唯一（区分大小写），由部分唯一索引保证；
- 目录的 storage_ref / checksum 为 NULL，size 恒为 0。
"""

import uuid
from datetime import datetime
from typing import Optional

from sqlalchemy import BigInteger, Boolean, DateTime, ForeignKey, Index, Integer, String, false, func
from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy.sql import expression

from app.packages.drive.models.base import Base, TimestampMixin


def _new_id() -> str:
    return str(uuid.uuid4())


class FileNode(TimestampMixin, Base):
    __tablename__ = "file_nodes"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    owner_id: Mapped[int] = mapped_column(Integer, ForeignKey("users.id"), index=True)
    # NULL 表示位于用户根目录
    parent_id: Mapped[Optional[str]] = mapped_column(
        String(36), ForeignKey("file_nodes.id"), nullable=True, index=True
    )
    name: Mapped[str] = mapped_column(String(255))
    is_directory: Mapped[bool] = mapped_column(Boolean, default=False)

    storage_ref: Mapped[Optional[str]] = mapped_column(String(512), nullable=True)
    mime_type: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    size: Mapped[int] = mapped_column(BigInteger, default=0, server_default=expression.text("0"))
    checksum: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    version: Mapped[int] = mapped_column(Integer, default=1, server_default=expression.text("1"))

    is_trashed: Mapped[bool] = mapped_column(
        Boolean, default=False, server_default=expression.false(), index=True
    )
    trashed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    def __repr__(self) -> str:  # pragma: no cover - debug helper
        kind = "dir" if self.is_directory else "file"
        return f"<FileNode {kind} id={self.id} name={self.name!r} parent={self.parent_id}>"


# 根目录下 parent_id 为 NULL，唯一索引中 NULL 互不相等，因此用 COALESCE 归一
Index(
    "uq_file_nodes_live_sibling",
    FileNode.owner_id,
    func.coalesce(FileNode.parent_id, ""),
    FileNode.name,
    unique=True,
    sqlite_where=FileNode.is_trashed == false(),
    postgresql_where=FileNode.is_trashed == false(),
)
