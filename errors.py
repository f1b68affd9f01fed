"""
BiblioRef 错误类型。

业务层抛出以下几类异常，Web层根据 status_code 统一转换为HTTP响应：

- ValidationError: 必填字段缺失或为空（400）
- AuthenticationError: 未登录或令牌无效（401）
- AuthorizationError: 角色权限不足或对自身的禁止操作（403）
- NotFoundError: 目标书目或账户不存在（404）
- ConflictError: 注册时邮箱重复（409）
- RetrievalError: 底层数据库调用失败（500）
"""

from typing import Any, Dict, Optional


class BiblioError(Exception):
    """所有业务异常的基类"""
    status_code = 500

    def __init__(self, message: str, field: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.field = field

    def to_dict(self) -> Dict[str, Any]:
        payload = {
            'status': 'error',
            'message': self.message,
        }
        if self.field:
            payload['field'] = self.field
        return payload


class ValidationError(BiblioError):
    status_code = 400


class AuthenticationError(BiblioError):
    status_code = 401


class AuthorizationError(BiblioError):
    status_code = 403


class NotFoundError(BiblioError):
    status_code = 404


class ConflictError(BiblioError):
    status_code = 409


class RetrievalError(BiblioError):
    status_code = 500
