from flask import Blueprint, g, jsonify, request
import logging

from apis.auth_api import get_json_body, login_required
from db.supabase_client import get_supabase
from db.user_operations import UserOperations
from permissions import Capability

logger = logging.getLogger(__name__)

users_bp = Blueprint('users', __name__, url_prefix='/api/users')


@users_bp.route('', methods=['GET'])
@login_required(Capability.MANAGE_USERS)
def list_users():
    """获取未停用的用户列表，可通过 role 参数筛选"""
    user_ops = UserOperations(get_supabase())
    role = request.args.get('role')
    users = user_ops.list_users_by_role(role) if role else user_ops.list_active_users()
    return jsonify({'users': [user.to_public_dict() for user in users]}), 200


@users_bp.route('', methods=['POST'])
@login_required(Capability.MANAGE_USERS)
def create_user():
    """管理员创建用户"""
    data = get_json_body()
    user = UserOperations(get_supabase()).create_user(
        name=data.get('name'),
        email=data.get('email'),
        password=data.get('password'),
        role=data.get('role') or 'standard',
        created_by=g.current_user,
    )
    return jsonify({'user': user.to_public_dict()}), 201


@users_bp.route('/me/preferences', methods=['PUT'])
@login_required()
def update_my_preferences():
    """修改当前用户的偏好设置"""
    user = UserOperations(get_supabase()).update_preferences(g.current_user.id, get_json_body())
    return jsonify({'user': user.to_public_dict()}), 200


@users_bp.route('/<user_id>', methods=['GET'])
@login_required(Capability.MANAGE_USERS)
def get_user(user_id):
    user = UserOperations(get_supabase()).require_user(user_id)
    return jsonify({'user': user.to_public_dict()}), 200


@users_bp.route('/<user_id>', methods=['PATCH'])
@login_required(Capability.MANAGE_USERS)
def update_user(user_id):
    """修改用户信息；请求中包含 role 时修改角色"""
    data = get_json_body()
    user_ops = UserOperations(get_supabase())

    user = None
    if data.get('role') is not None:
        user = user_ops.change_role(user_id, data['role'], actor=g.current_user)

    fields = {key: data[key] for key in ('name', 'email', 'is_active') if data.get(key) is not None}
    if fields or user is None:
        user = user_ops.update_user(user_id, fields, actor=g.current_user)

    return jsonify({'user': user.to_public_dict()}), 200


@users_bp.route('/<user_id>', methods=['DELETE'])
@login_required(Capability.DELETE_USERS)
def deactivate_user(user_id):
    """停用用户"""
    UserOperations(get_supabase()).deactivate_user(user_id, actor=g.current_user)
    return jsonify({'message': '用户已停用'}), 200
