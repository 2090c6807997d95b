"""在线状态诊断路由

GET /api/v1/presence/{userId}: 管理员查询某用户当前是否在线（不暴露连接标识）。
"""

from fastapi import APIRouter, Depends
from taskhub.core.models import User, UserRole

from ..deps import get_presence_registry, require_roles
from ..services.presence import PresenceRegistry

router = APIRouter(prefix="/api/v1/presence")


@router.get("/{user_id}")
async def get_presence(
    user_id: str,
    _: User = Depends(require_roles(UserRole.ADMIN)),
    registry: PresenceRegistry = Depends(get_presence_registry),
):
    return {"userId": user_id, "online": registry.lookup(user_id) is not None}
