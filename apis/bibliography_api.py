from flask import Blueprint, Response, current_app, g, jsonify, request
import logging

from apis.auth_api import get_json_body, login_required
from config import SEARCH_CONFIG
from db.bibliography_operations import BibliographyOperations, FILTER_FIELDS
from db.supabase_client import get_supabase
from db.user_operations import UserOperations
from permissions import Capability
from schemas import SearchQuery

logger = logging.getLogger(__name__)

bibliography_bp = Blueprint('bibliography', __name__, url_prefix='/api/bibliography')


def _int_arg(name: str, default: int) -> int:
    """读取正整数查询参数，无效时使用默认值"""
    try:
        value = int(request.args.get(name, default))
    except (TypeError, ValueError):
        return default
    return value if value > 0 else default


def _filters_from_args() -> dict:
    return {key: request.args[key] for key in FILTER_FIELDS if request.args.get(key, '').strip()}


def _invalidate_dashboard_cache():
    cache = current_app.extensions.get('dashboard_cache')
    if cache is not None:
        cache.invalidate()


@bibliography_bp.route('', methods=['GET'])
@login_required(Capability.VIEW)
def list_bibliographies():
    """分页获取书目列表"""
    result = BibliographyOperations(get_supabase()).list_bibliographies(
        page=_int_arg('page', 1),
        limit=_int_arg('limit', SEARCH_CONFIG['default_page_size']),
        sort_by=request.args.get('sortBy'),
        sort_order=request.args.get('sortOrder', 'desc'),
    )
    return jsonify(result.to_dict()), 200


@bibliography_bp.route('', methods=['POST'])
@login_required(Capability.CREATE)
def create_bibliography():
    """新建书目"""
    data = get_json_body()
    user = g.current_user
    bibliography = BibliographyOperations(get_supabase()).create_bibliography(data, created_by=user.id)

    UserOperations(get_supabase()).increment_bibliography_count(user.id)
    _invalidate_dashboard_cache()
    return jsonify(bibliography.to_dict()), 201


@bibliography_bp.route('/search', methods=['GET'])
@login_required(Capability.VIEW)
def search_bibliographies():
    """
    检索书目

    请求参数:
        q: 自由文本，匹配 title/author/keywords/publication/biblio_name
        year: "2019" 或 "2018-2020"
        其余字段过滤: publication, publisher, language_published, ...
        page, limit, sortBy, sortOrder
    """
    query = SearchQuery(
        term=request.args.get('q', ''),
        filters=_filters_from_args(),
        page=_int_arg('page', 1),
        limit=_int_arg('limit', SEARCH_CONFIG['default_page_size']),
        sort_by=request.args.get('sortBy'),
        sort_order=request.args.get('sortOrder', 'desc'),
    )
    result = BibliographyOperations(get_supabase()).search(query)
    return jsonify(result.to_dict()), 200


@bibliography_bp.route('/export', methods=['GET'])
@login_required(Capability.VIEW)
def export_bibliographies():
    """按字段过滤条件导出CSV"""
    csv_data = BibliographyOperations(get_supabase()).export_csv(_filters_from_args())
    return Response(
        csv_data,
        mimetype='text/csv',
        headers={'Content-Disposition': 'attachment; filename="bibliography_export.csv"'}
    )


@bibliography_bp.route('/<bibliography_id>', methods=['GET'])
@login_required(Capability.VIEW)
def get_bibliography(bibliography_id):
    bibliography = BibliographyOperations(get_supabase()).get_bibliography(bibliography_id)
    return jsonify(bibliography.to_dict()), 200


@bibliography_bp.route('/<bibliography_id>', methods=['PUT', 'PATCH'])
@login_required(Capability.UPDATE)
def update_bibliography(bibliography_id):
    bibliography = BibliographyOperations(get_supabase()).update_bibliography(
        bibliography_id, get_json_body(), updated_by=g.current_user.id
    )
    _invalidate_dashboard_cache()
    return jsonify(bibliography.to_dict()), 200


@bibliography_bp.route('/<bibliography_id>', methods=['DELETE'])
@login_required(Capability.DELETE)
def delete_bibliography(bibliography_id):
    BibliographyOperations(get_supabase()).delete_bibliography(bibliography_id, deleted_by=g.current_user.id)
    _invalidate_dashboard_cache()
    return jsonify({
        'status': 'success',
        'message': '书目删除成功'
    }), 200


@bibliography_bp.route('/<bibliography_id>/next', methods=['GET'])
@login_required(Capability.VIEW)
def get_next_bibliography(bibliography_id):
    bibliography = BibliographyOperations(get_supabase()).get_next_bibliography(bibliography_id)
    return jsonify({'data': bibliography.to_dict() if bibliography else None}), 200


@bibliography_bp.route('/<bibliography_id>/previous', methods=['GET'])
@login_required(Capability.VIEW)
def get_previous_bibliography(bibliography_id):
    bibliography = BibliographyOperations(get_supabase()).get_previous_bibliography(bibliography_id)
    return jsonify({'data': bibliography.to_dict() if bibliography else None}), 200
