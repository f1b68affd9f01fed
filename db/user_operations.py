from dataclasses import asdict
from typing import List, Dict, Optional, Any
import logging

from biblio_utils.objectid import new_object_id, is_valid_object_id
from biblio_utils.security import get_password_hash, verify_password
from config import SUPABASE_CONFIG, AUTH_CONFIG
from errors import (
    AuthenticationError,
    AuthorizationError,
    ConflictError,
    NotFoundError,
    RetrievalError,
    ValidationError,
)
from permissions import (
    Capability,
    Role,
    can_assign_role,
    ensure_not_self,
    require_permission,
)
from schemas import UserAccount, UserPreferences, UserStatistics, utc_now

logger = logging.getLogger(__name__)


def _parse_new_role(role) -> Role:
    try:
        return Role(role)
    except ValueError:
        raise ValidationError("无效的角色", field='role')


class UserOperations:
    """用户账户数据库操作类"""

    def __init__(self, supabase, table: Optional[str] = None):
        self.supabase = supabase
        self.table = table or SUPABASE_CONFIG['users_table']

    def _table(self):
        return self.supabase.table(self.table)

    def _select_one(self, column: str, value: Any) -> Optional[UserAccount]:
        try:
            result = self._table().select('*').eq(column, value).limit(1).execute()
        except Exception as e:
            logger.error(f"查询用户失败: {column}={value}, {e}")
            raise RetrievalError("查询用户失败") from e
        return UserAccount.from_record(result.data[0]) if result.data else None

    def _update(self, user_id: str, update_data: Dict[str, Any]) -> UserAccount:
        try:
            result = self._table().update(update_data).eq('id', user_id).execute()
        except Exception as e:
            logger.error(f"更新用户失败: {user_id}, {e}")
            raise RetrievalError("更新用户失败") from e
        if not result.data:
            raise NotFoundError("用户不存在")
        return UserAccount.from_record(result.data[0])

    def get_user_by_id(self, user_id: str) -> Optional[UserAccount]:
        if not is_valid_object_id(user_id):
            return None
        return self._select_one('id', user_id.lower())

    def get_user_by_email(self, email: str) -> Optional[UserAccount]:
        if not email:
            return None
        return self._select_one('email', email.strip().lower())

    def require_user(self, user_id: str) -> UserAccount:
        """
        Raises:
            NotFoundError: 用户不存在
        """
        user = self.get_user_by_id(user_id)
        if not user:
            raise NotFoundError("用户不存在")
        return user

    def create_user(self, name: str, email: str, password: str, role=Role.STANDARD,
                    created_by: Optional[UserAccount] = None) -> UserAccount:
        """
        创建用户账户

        Args:
            name: 用户名
            email: 邮箱（不区分大小写，必须唯一）
            password: 明文密码，保存为bcrypt哈希
            role: 角色，默认 standard
            created_by: 创建者；注册时为 None

        Returns:
            UserAccount: 新建的用户

        Raises:
            ValidationError: 必填字段缺失或密码过短
            AuthorizationError: 非超级管理员尝试创建管理员账户
            ConflictError: 邮箱已被注册
        """
        for field_name, value in (('name', name), ('email', email), ('password', password)):
            if value is not None and not isinstance(value, str):
                raise ValidationError(f"{field_name} 必须是字符串", field=field_name)
            if not value or not value.strip():
                raise ValidationError(f"{field_name} 不能为空", field=field_name)
        if len(password) < AUTH_CONFIG['min_password_length']:
            raise ValidationError(
                f"密码长度不能少于 {AUTH_CONFIG['min_password_length']} 位", field='password'
            )

        role = _parse_new_role(role or Role.STANDARD)
        if role is not Role.STANDARD and (created_by is None or not can_assign_role(created_by.role)):
            raise AuthorizationError("只有超级管理员可以创建管理员账户")

        email = email.strip().lower()
        if self.get_user_by_email(email):
            raise ConflictError("该邮箱已被注册", field='email')

        now = utc_now().isoformat()
        user_data = {
            'id': new_object_id(),
            'email': email,
            'name': name.strip(),
            'password_hash': get_password_hash(password),
            'role': role.value,
            'is_active': True,
            'preferences': asdict(UserPreferences()),
            'statistics': asdict(UserStatistics(created_at=now, last_login=now)),
            'created_by': created_by.id if created_by else None,
            'created_at': now,
            'updated_at': now,
        }
        try:
            result = self._table().insert(user_data).execute()
        except Exception as e:
            logger.error(f"创建用户失败: {email}, {e}")
            raise RetrievalError("创建用户失败") from e

        logger.info(f"用户创建成功: {user_data['id']} ({email}), 角色: {role.value}")
        return UserAccount.from_record(result.data[0] if result.data else user_data)

    def authenticate(self, email: str, password: str) -> UserAccount:
        """
        校验邮箱和密码，成功后刷新最近登录时间

        Raises:
            AuthenticationError: 邮箱或密码错误，或账户已停用
        """
        if not isinstance(email, str) or not isinstance(password, str):
            raise AuthenticationError("邮箱或密码错误")
        user = self.get_user_by_email(email)
        if not user or not verify_password(password, user.password_hash):
            raise AuthenticationError("邮箱或密码错误")
        if not user.is_active:
            raise AuthenticationError("账户已停用")
        return self.update_last_login(user.id)

    def update_last_login(self, user_id: str) -> UserAccount:
        user = self.require_user(user_id)
        statistics = asdict(user.statistics)
        statistics['last_login'] = utc_now().isoformat()
        return self._update(user.id, {'statistics': statistics})

    def increment_bibliography_count(self, user_id: str) -> None:
        """书目创建成功后累加用户统计，失败只记录日志"""
        try:
            user = self.require_user(user_id)
            statistics = asdict(user.statistics)
            statistics['total_bibliographies'] = user.statistics.total_bibliographies + 1
            self._update(user.id, {'statistics': statistics, 'updated_at': utc_now().isoformat()})
        except Exception as e:
            logger.error(f"更新用户书目统计失败: {user_id}, {e}")

    def update_user(self, user_id: str, updates: Dict[str, Any], actor: UserAccount) -> UserAccount:
        """
        修改用户的 name、email、is_active

        Raises:
            AuthorizationError: 权限不足或尝试停用自己
            NotFoundError: 用户不存在
            ConflictError: 新邮箱已被其他账户使用
        """
        require_permission(actor.role, Capability.MANAGE_USERS)
        target = self.require_user(user_id)

        update_data = {}
        for field_name in ('name', 'email'):
            if updates.get(field_name) is not None and not isinstance(updates[field_name], str):
                raise ValidationError(f"{field_name} 必须是字符串", field=field_name)
        if updates.get('name') is not None:
            if not str(updates['name']).strip():
                raise ValidationError("name 不能为空", field='name')
            update_data['name'] = str(updates['name']).strip()
        if updates.get('email') is not None:
            email = str(updates['email']).strip().lower()
            if not email:
                raise ValidationError("email 不能为空", field='email')
            existing = self.get_user_by_email(email)
            if existing and existing.id != target.id:
                raise ConflictError("该邮箱已被注册", field='email')
            update_data['email'] = email
        if updates.get('is_active') is not None:
            is_active = bool(updates['is_active'])
            if not is_active:
                ensure_not_self(actor.id, target.id, "停用")
                require_permission(actor.role, Capability.DELETE_USERS)
            update_data['is_active'] = is_active

        update_data['updated_at'] = utc_now().isoformat()
        return self._update(target.id, update_data)

    def change_role(self, user_id: str, new_role, actor: UserAccount) -> UserAccount:
        """
        修改用户角色，记录修改人和修改时间

        Raises:
            ValidationError: 角色无效
            AuthorizationError: 非超级管理员、修改自己的角色
            NotFoundError: 目标用户不存在
        """
        new_role = _parse_new_role(new_role)
        ensure_not_self(actor.id, user_id, "修改角色")
        require_permission(actor.role, Capability.MANAGE_USERS)
        if not can_assign_role(actor.role):
            raise AuthorizationError("只有超级管理员可以修改用户角色")

        target = self.require_user(user_id)
        if target.role is Role.SUPER_ADMIN and actor.role is not Role.SUPER_ADMIN:
            raise AuthorizationError("只有超级管理员可以修改超级管理员的角色")

        now = utc_now().isoformat()
        user = self._update(target.id, {
            'role': new_role.value,
            'role_changed_by': actor.id,
            'role_changed_at': now,
            'updated_at': now,
        })
        logger.info(f"用户角色已修改: {target.id} {target.role.value} -> {new_role.value}, 操作者: {actor.id}")
        return user

    def deactivate_user(self, user_id: str, actor: UserAccount) -> bool:
        """
        停用用户（软删除）

        Raises:
            AuthorizationError: 权限不足、停用自己或非超级管理员停用超级管理员
            NotFoundError: 目标用户不存在
        """
        ensure_not_self(actor.id, user_id, "停用")
        require_permission(actor.role, Capability.DELETE_USERS)

        target = self.require_user(user_id)
        if target.role is Role.SUPER_ADMIN and actor.role is not Role.SUPER_ADMIN:
            raise AuthorizationError("只有超级管理员可以停用超级管理员账户")

        self._update(target.id, {'is_active': False, 'updated_at': utc_now().isoformat()})
        logger.info(f"用户已停用: {target.id}, 操作者: {actor.id}")
        return True

    def update_preferences(self, user_id: str, preferences: Dict[str, Any]) -> UserAccount:
        """合并更新用户偏好设置"""
        user = self.require_user(user_id)
        merged = asdict(user.preferences)
        for key in ('language', 'timezone'):
            if preferences.get(key):
                merged[key] = str(preferences[key])
        notifications = preferences.get('notifications') or {}
        for key in ('email', 'browser'):
            if key in notifications:
                merged['notifications'][key] = bool(notifications[key])

        return self._update(user.id, {'preferences': merged, 'updated_at': utc_now().isoformat()})

    def list_active_users(self, role=None) -> List[UserAccount]:
        """获取所有未停用的用户，可按角色筛选"""
        try:
            query = self._table().select('*').eq('is_active', True)
            if role is not None:
                query = query.eq('role', _parse_new_role(role).value)
            result = query.order('id').execute()
        except ValidationError:
            raise
        except Exception as e:
            logger.error(f"获取用户列表失败: {e}")
            raise RetrievalError("获取用户列表失败") from e
        return [UserAccount.from_record(row) for row in result.data or []]

    def list_users_by_role(self, role) -> List[UserAccount]:
        return self.list_active_users(role=role)
