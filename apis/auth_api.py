from functools import wraps

from flask import Blueprint, g, jsonify, request
import logging

from biblio_utils.security import create_access_token, decode_access_token
from db.supabase_client import get_supabase
from db.user_operations import UserOperations
from errors import AuthenticationError, ValidationError
from permissions import permissions_for, require_permission
from schemas import UserAccount

logger = logging.getLogger(__name__)

auth_bp = Blueprint('auth', __name__, url_prefix='/api/auth')


def get_json_body() -> dict:
    """读取JSON请求体，必须是对象"""
    data = request.get_json(silent=True)
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ValidationError("请求体必须是JSON对象")
    return data


def get_current_user() -> UserAccount:
    """
    根据 Authorization header 中的令牌获取当前用户

    Returns:
        UserAccount: 当前用户（每次请求从数据库读取，角色以数据库为准）

    Raises:
        AuthenticationError: 未登录、令牌无效或账户已停用
    """
    auth_header = request.headers.get('Authorization', '')
    if not auth_header.startswith('Bearer '):
        raise AuthenticationError("用户未登录")

    token = auth_header[len('Bearer '):].strip()
    if not token:
        raise AuthenticationError("用户未登录")

    payload = decode_access_token(token)
    user = UserOperations(get_supabase()).get_user_by_id(payload['sub'])
    if not user or not user.is_active:
        logger.warning(f"用户认证失败: {payload['sub']}")
        raise AuthenticationError("用户不存在或已停用")
    return user


def login_required(capability=None):
    """要求登录；指定 capability 时同时校验角色权限"""
    def decorator(view):
        @wraps(view)
        def wrapper(*args, **kwargs):
            user = get_current_user()
            if capability is not None:
                require_permission(user.role, capability)
            g.current_user = user
            return view(*args, **kwargs)
        return wrapper
    return decorator


@auth_bp.route('/health', methods=['GET'])
def check_health():
    """认证模块健康检查"""
    return jsonify({
        'module': 'auth',
        'status': 'healthy',
        'message': '认证模块运行正常'
    })


@auth_bp.route('/register', methods=['POST'])
def register():
    """用户注册，新用户默认为 standard 角色"""
    data = get_json_body()
    user = UserOperations(get_supabase()).create_user(
        name=data.get('name'),
        email=data.get('email'),
        password=data.get('password'),
    )
    return jsonify({
        'status': 'success',
        'message': '注册成功',
        'user': user.to_public_dict()
    }), 201


@auth_bp.route('/login', methods=['POST'])
def login():
    """用户登录"""
    data = get_json_body()
    email = data.get('email')
    password = data.get('password')

    if not email or not password:
        raise ValidationError("邮箱和密码不能为空", field='email' if not email else 'password')

    user = UserOperations(get_supabase()).authenticate(email, password)
    logger.info(f"用户登录成功: {user.id}")
    return jsonify({
        'status': 'success',
        'message': '登录成功',
        'user': user.to_public_dict(),
        'session': {
            'access_token': create_access_token(user.id),
            'token_type': 'bearer'
        }
    }), 200


@auth_bp.route('/user', methods=['GET'])
@login_required()
def get_user():
    """获取当前用户信息"""
    return jsonify({
        'status': 'success',
        'user': g.current_user.to_public_dict()
    }), 200


@auth_bp.route('/permissions', methods=['GET'])
@login_required()
def get_permissions():
    """当前用户的角色和权限，用于前端界面控制"""
    return jsonify({
        'status': 'success',
        'role': g.current_user.role.value,
        'permissions': permissions_for(g.current_user.role).to_dict()
    }), 200
