"""管理员接口的请求与响应模型。"""

from typing import List, Optional

from pydantic import BaseModel, Field

from app.packages.drive.api.v1.schemas.auth import UserData
from app.packages.drive.api.v1.schemas.common import ResponseEnvelope


class AdminUserUpdateRequest(BaseModel):
    display_name: Optional[str] = Field(None, max_length=100)
    email: Optional[str] = Field(None, max_length=255, pattern=r"^[^@\s]+@[^@\s]+\.[^@\s]+$")
    quota: Optional[int] = Field(None, ge=0)
    is_active: Optional[bool] = None
    is_admin: Optional[bool] = None


class UserDeletionData(BaseModel):
    user_id: int
    purged: int
    freed_space: int


class ActivityData(BaseModel):
    id: int
    user_id: int
    type: str
    file_id: Optional[str] = None
    file_name: Optional[str] = None
    details: Optional[str] = None
    ip_address: Optional[str] = None
    user_agent: Optional[str] = None
    created_at: Optional[str] = None


AdminUserListResponse = ResponseEnvelope[List[UserData]]
AdminUserResponse = ResponseEnvelope[UserData]
UserDeletionResponse = ResponseEnvelope[UserDeletionData]
ActivityListResponse = ResponseEnvelope[List[ActivityData]]
