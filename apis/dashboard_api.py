from flask import Blueprint, current_app, jsonify, request
import logging

from apis.auth_api import login_required
from config import CACHE_CONFIG
from db.dashboard_operations import DashboardOperations
from db.supabase_client import get_supabase
from permissions import Capability

logger = logging.getLogger(__name__)

dashboard_bp = Blueprint('dashboard', __name__, url_prefix='/api/dashboard')


def _cached(key, loader):
    cache = current_app.extensions.get('dashboard_cache')
    if cache is None:
        return loader()
    return cache.get_or_load(key, loader)


@dashboard_bp.route('/stats', methods=['GET'])
@login_required(Capability.VIEW)
def get_stats():
    """总记录数、今年记录数、语言数、国家数"""
    stats = _cached('stats', lambda: DashboardOperations(get_supabase()).get_stats())
    return jsonify(stats), 200


@dashboard_bp.route('/languages', methods=['GET'])
@login_required(Capability.VIEW)
def get_languages():
    languages = _cached('languages', lambda: DashboardOperations(get_supabase()).get_language_distribution())
    return jsonify({'languages': languages}), 200


@dashboard_bp.route('/trends', methods=['GET'])
@login_required(Capability.VIEW)
def get_trends():
    trends = _cached('trends', lambda: DashboardOperations(get_supabase()).get_publication_trends())
    return jsonify({'trends': trends}), 200


@dashboard_bp.route('/recent', methods=['GET'])
@login_required(Capability.VIEW)
def get_recent():
    try:
        limit = max(int(request.args.get('limit', 5)), 1)
    except ValueError:
        limit = 5
    limit = min(limit, CACHE_CONFIG['recent_max_limit'])
    recent = _cached(('recent', limit),
                     lambda: DashboardOperations(get_supabase()).get_recent_bibliographies(limit))
    return jsonify({'data': recent}), 200
