"""用户模型：账号信息与存储配额计数。"""

from typing import Optional

from sqlalchemy import BigInteger, Boolean, CheckConstraint, Integer, String
from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy.sql import expression

from app.packages.drive.core.constants import DEFAULT_USER_QUOTA
from app.packages.drive.models.base import Base, TimestampMixin


class User(TimestampMixin, Base):
    """网盘用户。``used_space`` 只通过配额服务的原子更新维护，不在请求中重算。"""

    __tablename__ = "users"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    username: Mapped[str] = mapped_column(String(50), unique=True, index=True)
    email: Mapped[str] = mapped_column(String(255), unique=True, index=True)
    hashed_password: Mapped[str] = mapped_column(String(255))
    display_name: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    quota: Mapped[int] = mapped_column(BigInteger, default=DEFAULT_USER_QUOTA, nullable=False)
    used_space: Mapped[int] = mapped_column(
        BigInteger, default=0, server_default=expression.text("0"), nullable=False
    )
    is_admin: Mapped[bool] = mapped_column(Boolean, default=False, server_default=expression.false())
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, server_default=expression.true())

    __table_args__ = (
        CheckConstraint("used_space >= 0", name="used_space_non_negative"),
    )
