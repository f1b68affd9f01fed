# 配置文件
import os
from dotenv import load_dotenv

env_path = os.getenv('BIBLIOREF_ENV_FILE', '.env')
load_dotenv(env_path)

SUPABASE_CONFIG = {
    'url': os.getenv('SUPABASE_PUBLIC_URL'),
    'key': os.getenv('ANON_KEY'),
    'service_key': os.getenv('SERVICE_ROLE_KEY'),
    'bibliography_table': os.getenv('BIBLIOGRAPHY_TABLE', 'bibliographies'),
    'users_table': os.getenv('USERS_TABLE', 'users'),
    # PostgREST 单次返回的最大行数
    'page_fetch_size': int(os.getenv('SUPABASE_PAGE_FETCH_SIZE', 1000)),
}

# 认证配置
AUTH_CONFIG = {
    'jwt_secret': os.getenv('JWT_SECRET_KEY', 'bibliorefdev-secret-change-me'),
    'jwt_algorithm': os.getenv('JWT_ALGORITHM', 'HS256'),
    'token_expire_minutes': int(os.getenv('ACCESS_TOKEN_EXPIRE_MINUTES', 60 * 24)),
    'bcrypt_rounds': int(os.getenv('BCRYPT_ROUNDS', 12)),
    'min_password_length': 6,
}

# 检索配置
SEARCH_CONFIG = {
    'default_page_size': int(os.getenv('DEFAULT_PAGE_SIZE', 20)),
}

# 仪表盘缓存配置（秒）
CACHE_CONFIG = {
    'dashboard_ttl': float(os.getenv('DASHBOARD_CACHE_TTL', 5 * 60)),
    # 最近添加列表的最大条数，limit 参数超出时截断
    'recent_max_limit': int(os.getenv('DASHBOARD_RECENT_MAX_LIMIT', 50)),
}

# 时间戳回填脚本配置
MIGRATION_CONFIG = {
    'batch_size': int(os.getenv('MIGRATION_BATCH_SIZE', 100)),
    'delay_between_batches': float(os.getenv('MIGRATION_DELAY', 0.1)),
    'max_retries': int(os.getenv('MIGRATION_MAX_RETRIES', 3)),
    'retry_delay': float(os.getenv('MIGRATION_RETRY_DELAY', 1.0)),
    'concurrency': int(os.getenv('MIGRATION_CONCURRENCY', 10)),
}

# Flask配置
FLASK_CONFIG = {
    'host': os.getenv('FLASK_HOST', '0.0.0.0'),
    'port': int(os.getenv('FLASK_PORT', 5000)),
    'debug': os.getenv('FLASK_DEBUG', 'False').lower() == 'true'
}

# 日志配置
LOG_CONFIG = {
    'level': os.getenv('LOG_LEVEL', 'INFO').upper(),
    'format': '%(asctime)s - %(name)s - %(levelname)s - %(message)s',
}
