"""User Domain Model

users 表保存账户信息；logins 表记录登录会话（登出或过期后 token 失效）。
UserProfile 是对外视图，字段名与前端约定一致（_id、avatar、createdAt ...）。
"""

from datetime import datetime

from pydantic import BaseModel, Field

from .enums import UserRole


class User(BaseModel):
    """User 数据模型（存储层）"""

    user_id: str = Field(description="唯一标识，ULID 格式")
    name: str = Field(description="显示名")
    email: str = Field(description="登录邮箱，唯一")
    password_hash: str = Field(description="bcrypt 哈希")
    role: UserRole = Field(default=UserRole.USER, description="角色")
    avatar_url: str = Field(default="", description="头像访问 URL")
    avatar_ref: str = Field(default="", description="头像存储引用")
    reset_token: str | None = Field(default=None, description="密码重置令牌")
    reset_token_expiry: datetime | None = Field(default=None, description="重置令牌过期时间")
    created_at: datetime = Field(description="创建时间")
    updated_at: datetime = Field(description="更新时间")


class UserProfile(BaseModel):
    """对外用户视图 -- 不含密码哈希、重置令牌与存储引用"""

    user_id: str = Field(serialization_alias="_id")
    name: str
    email: str
    role: UserRole
    avatar: str = ""
    created_at: datetime = Field(serialization_alias="createdAt")
    updated_at: datetime = Field(serialization_alias="updatedAt")

    @classmethod
    def from_user(cls, user: User) -> "UserProfile":
        return cls(
            user_id=user.user_id,
            name=user.name,
            email=user.email,
            role=user.role,
            avatar=user.avatar_url,
            created_at=user.created_at,
            updated_at=user.updated_at,
        )

    def to_payload(self) -> dict:
        return self.model_dump(mode="json", by_alias=True)


class LoginSession(BaseModel):
    """登录会话 -- 每个用户一条，重新登录时刷新 expire_at"""

    user_id: str
    login_at: list[datetime] = Field(default_factory=list, description="历次登录时间")
    is_deleted: bool = Field(default=False, description="是否已登出")
    expire_at: datetime = Field(description="会话过期时间")

    def is_active(self, now: datetime) -> bool:
        return not self.is_deleted and self.expire_at > now
