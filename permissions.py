"""
基于角色的访问控制。

角色是封闭枚举 standard / admin / super_admin，每个角色对应一组固定权限。
所有写操作以及前端的界面开关都通过这里查询权限。
"""

import logging
from dataclasses import dataclass, asdict
from enum import Enum
from typing import Dict, Union

from errors import AuthorizationError

logger = logging.getLogger(__name__)


class Role(str, Enum):
    STANDARD = 'standard'
    ADMIN = 'admin'
    SUPER_ADMIN = 'super_admin'


class Capability(str, Enum):
    VIEW = 'view'
    CREATE = 'create'
    UPDATE = 'update'
    DELETE = 'delete'
    MANAGE_USERS = 'manage_users'
    DELETE_USERS = 'delete_users'


@dataclass(frozen=True)
class Permissions:
    """单个角色的权限集合"""
    can_view: bool
    can_create: bool
    can_update: bool
    can_delete: bool
    can_manage_users: bool
    can_delete_users: bool

    def allows(self, capability: Capability) -> bool:
        return getattr(self, f"can_{Capability(capability).value}")

    def to_dict(self) -> Dict[str, bool]:
        return asdict(self)


ROLE_PERMISSIONS: Dict[Role, Permissions] = {
    Role.STANDARD: Permissions(
        can_view=True,
        can_create=False,
        can_update=False,
        can_delete=False,
        can_manage_users=False,
        can_delete_users=False,
    ),
    Role.ADMIN: Permissions(
        can_view=True,
        can_create=True,
        can_update=True,
        can_delete=True,
        can_manage_users=False,
        can_delete_users=False,
    ),
    Role.SUPER_ADMIN: Permissions(
        can_view=True,
        can_create=True,
        can_update=True,
        can_delete=True,
        can_manage_users=True,
        can_delete_users=True,
    ),
}


def parse_role(value: Union[Role, str, None]) -> Role:
    """将字符串解析为角色，无法识别的角色按最低权限 standard 处理"""
    if isinstance(value, Role):
        return value
    try:
        return Role(value)
    except ValueError:
        logger.warning(f"无法识别的角色: {value!r}，按 standard 处理")
        return Role.STANDARD


def permissions_for(role: Union[Role, str, None]) -> Permissions:
    return ROLE_PERMISSIONS[parse_role(role)]


def authorize(role: Union[Role, str, None], capability: Capability) -> bool:
    return permissions_for(role).allows(capability)


def require_permission(role: Union[Role, str, None], capability: Capability) -> None:
    """
    校验角色是否具备某项权限

    Raises:
        AuthorizationError: 权限不足
    """
    if not authorize(role, capability):
        logger.info(f"权限不足: role={role!r}, capability={Capability(capability).value}")
        raise AuthorizationError(f"权限不足，无法执行 {Capability(capability).value} 操作")


def ensure_not_self(actor_id: str, target_id: str, action: str) -> None:
    """禁止用户对自己的账户执行删除、停用、修改角色等操作"""
    if str(actor_id) == str(target_id):
        raise AuthorizationError(f"不能对自己的账户执行{action}操作")


def can_assign_role(actor_role: Union[Role, str, None]) -> bool:
    """只有超级管理员可以创建管理员账户或修改任何账户的角色"""
    return parse_role(actor_role) is Role.SUPER_ADMIN
