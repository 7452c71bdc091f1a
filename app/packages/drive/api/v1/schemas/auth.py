"""认证相关的请求与响应模型。"""

from typing import Literal, Optional

from pydantic import BaseModel, Field

from app.packages.drive.api.v1.schemas.common import ResponseEnvelope


class RegisterRequest(BaseModel):
    username: str = Field(..., min_length=3, max_length=50, pattern=r"^[A-Za-z0-9_.-]+$")
    email: str = Field(..., max_length=255, pattern=r"^[^@\s]+@[^@\s]+\.[^@\s]+$")
    password: str = Field(..., min_length=6, max_length=128)
    display_name: Optional[str] = Field(None, max_length=100)


class LoginRequest(BaseModel):
    """``username`` 也接受邮箱。"""

    username: str = Field(..., min_length=3, max_length=255)
    password: str = Field(..., min_length=6, max_length=128)


class ProfileUpdateRequest(BaseModel):
    """未提供的字段保持不变。"""

    display_name: Optional[str] = Field(None, max_length=100)
    email: Optional[str] = Field(None, max_length=255, pattern=r"^[^@\s]+@[^@\s]+\.[^@\s]+$")


class PasswordChangeRequest(BaseModel):
    current_password: str = Field(..., min_length=1, max_length=128)
    new_password: str = Field(..., min_length=6, max_length=128)


class UserData(BaseModel):
    id: int
    username: str
    email: str
    display_name: Optional[str] = None
    quota: int
    used_space: int
    is_admin: bool
    is_active: bool
    created_at: Optional[str] = None


class TokenResponseData(BaseModel):
    access_token: str
    token_type: Literal["bearer"]


UserResponse = ResponseEnvelope[UserData]
TokenResponse = ResponseEnvelope[TokenResponseData]
LogoutResponse = ResponseEnvelope[None]
PasswordChangeResponse = ResponseEnvelope[None]
