"""用户路由 -- /api/v1/users

POST   /create-user               注册（multipart，含头像）
POST   /login                     登录，返回 token
POST   /send-reset-password-mail  发送密码重置邮件
PATCH  /reset-password            使用重置令牌设置新密码
PATCH  /change-password           修改密码
PATCH  /update-user               修改资料
PATCH  /update-avatar             更换头像（multipart）
GET    /user-profile              当前用户资料
POST   /logout                    登出
"""

from fastapi import APIRouter, BackgroundTasks, Depends, File, Form, UploadFile
from pydantic import BaseModel, ConfigDict, Field
from taskhub.core.models import User, UserProfile

from ..deps import get_current_user, get_email_sender, get_user_service
from ..services.email_service import (
    EmailSender,
    build_reset_password_email,
    build_welcome_email,
    send_quietly,
)
from ..services.user_service import UserService

router = APIRouter(prefix="/api/v1/users")


class _CamelModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True)


class LoginRequest(_CamelModel):
    """登录请求体"""

    email: str
    password: str


class ResetMailRequest(_CamelModel):
    """重置邮件请求体"""

    email: str
    reset_link: str = Field(alias="resetLink", min_length=1, description="前端重置页面地址")


class ResetPasswordRequest(_CamelModel):
    """重置密码请求体"""

    email: str
    reset_token: str = Field(alias="resetToken", min_length=1)
    new_password: str = Field(alias="newPassword")


class ChangePasswordRequest(_CamelModel):
    """修改密码请求体"""

    old_password: str = Field(alias="oldPassword")
    new_password: str = Field(alias="newPassword")


class UpdateUserRequest(_CamelModel):
    """修改资料请求体"""

    name: str
    email: str
    role: str


def _profile(user: User) -> dict:
    return UserProfile.from_user(user).to_payload()


@router.post("/create-user", status_code=201)
async def create_user(
    background_tasks: BackgroundTasks,
    name: str = Form(...),
    email: str = Form(...),
    password: str = Form(...),
    role: str = Form("user"),
    avatar: UploadFile | None = File(default=None),
    user_service: UserService = Depends(get_user_service),
    email_sender: EmailSender = Depends(get_email_sender),
):
    """注册新用户，欢迎邮件在响应后发送"""
    content = await avatar.read() if avatar is not None else None
    user = await user_service.create_user(
        name=name,
        email=email,
        password=password,
        role=role,
        avatar=content,
        avatar_filename=avatar.filename if avatar is not None else None,
    )
    background_tasks.add_task(send_quietly, email_sender, build_welcome_email(user.email, user.name))
    return {"message": "user created successfully", "user": _profile(user)}


@router.post("/login")
async def login(
    body: LoginRequest,
    user_service: UserService = Depends(get_user_service),
):
    user, token = await user_service.login(body.email, body.password)
    return {"message": "user logged in successfully", "user": _profile(user), "token": token}


@router.post("/send-reset-password-mail")
async def send_reset_password_mail(
    body: ResetMailRequest,
    background_tasks: BackgroundTasks,
    user_service: UserService = Depends(get_user_service),
    email_sender: EmailSender = Depends(get_email_sender),
):
    """生成重置令牌并发送邮件（令牌只通过邮件下发，不在响应中返回）"""
    user, token = await user_service.request_password_reset(body.email)
    background_tasks.add_task(
        send_quietly,
        email_sender,
        build_reset_password_email(user.email, body.reset_link, token),
    )
    return {"message": "mail sent successfully."}


@router.patch("/reset-password")
async def reset_password(
    body: ResetPasswordRequest,
    user_service: UserService = Depends(get_user_service),
):
    await user_service.reset_password(body.email, body.reset_token, body.new_password)
    return {"message": "password reset successfully."}


@router.patch("/change-password")
async def change_password(
    body: ChangePasswordRequest,
    user: User = Depends(get_current_user),
    user_service: UserService = Depends(get_user_service),
):
    await user_service.change_password(user, body.old_password, body.new_password)
    return {"message": "password changed successfully."}


@router.patch("/update-user")
async def update_user(
    body: UpdateUserRequest,
    user: User = Depends(get_current_user),
    user_service: UserService = Depends(get_user_service),
):
    updated = await user_service.update_user(user, body.name, body.email, body.role)
    return {"message": "user updated successfully.", "user": _profile(updated)}


@router.patch("/update-avatar")
async def update_avatar(
    avatar: UploadFile = File(...),
    user: User = Depends(get_current_user),
    user_service: UserService = Depends(get_user_service),
):
    content = await avatar.read()
    updated = await user_service.update_avatar(user, content, avatar.filename)
    return {"message": "avatar updated successfully.", "user": _profile(updated)}


@router.get("/user-profile")
async def user_profile(user: User = Depends(get_current_user)):
    return {"message": "user profile fetched.", "user": _profile(user)}


@router.post("/logout")
async def logout(
    user: User = Depends(get_current_user),
    user_service: UserService = Depends(get_user_service),
):
    await user_service.logout(user)
    return {"message": "user logged out successfully."}
