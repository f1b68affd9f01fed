from flask import Flask, jsonify
from flask_cors import CORS
from werkzeug.exceptions import HTTPException
from datetime import datetime
import logging

from biblio_utils.cache import TTLCache
from config import CACHE_CONFIG, FLASK_CONFIG, LOG_CONFIG
from errors import BiblioError

logger = logging.getLogger(__name__)


def configure_logging():
    logging.basicConfig(level=LOG_CONFIG['level'], format=LOG_CONFIG['format'])


def create_app(supabase_client=None, dashboard_cache=None):
    """
    创建Flask应用

    Args:
        supabase_client: 数据库客户端；为空时在首次使用时按配置创建
        dashboard_cache: 仪表盘缓存；为空时按 CACHE_CONFIG 创建
    """
    app = Flask(__name__)
    CORS(app)

    if supabase_client is not None:
        app.extensions['supabase'] = supabase_client
    app.extensions['dashboard_cache'] = dashboard_cache or TTLCache(ttl=CACHE_CONFIG['dashboard_ttl'])

    from apis.auth_api import auth_bp
    from apis.bibliography_api import bibliography_bp
    from apis.dashboard_api import dashboard_bp
    from apis.users_api import users_bp

    app.register_blueprint(auth_bp)
    app.register_blueprint(bibliography_bp)
    app.register_blueprint(users_bp)
    app.register_blueprint(dashboard_bp)

    @app.errorhandler(BiblioError)
    def handle_biblio_error(e):
        if e.status_code >= 500:
            logger.error(f"请求处理失败: {e.message}", exc_info=e.__cause__ or e)
        return jsonify(e.to_dict()), e.status_code

    @app.errorhandler(Exception)
    def handle_unexpected_error(e):
        if isinstance(e, HTTPException):
            return e
        logger.error(f"服务器内部错误: {e}", exc_info=True)
        return jsonify({'status': 'error', 'message': '服务器内部错误'}), 500

    @app.route('/api/health', methods=['GET'])
    def health_check():
        """基础健康检查"""
        return jsonify({
            'status': 'healthy',
            'message': 'Welcome to BiblioRef API',
            'timestamp': datetime.now().isoformat()
        })

    return app


if __name__ == '__main__':
    configure_logging()
    app = create_app()
    app.run(host=FLASK_CONFIG.get('host'), port=FLASK_CONFIG.get('port'), debug=FLASK_CONFIG.get('debug'))
