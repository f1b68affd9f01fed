import threading

from flask import current_app, has_app_context
from supabase import create_client, Client
from config import SUPABASE_CONFIG
import logging

logger = logging.getLogger(__name__)

_lock = threading.Lock()
_process_client = None


class SupabaseInitializer:
    def __init__(self, supabase_url=None, ANON_KEY=None, SERVICE_ROLE_KEY=None):
        # 读取配置
        self.supabase_url = supabase_url if supabase_url else SUPABASE_CONFIG.get('url')
        self.ANON_KEY = ANON_KEY if ANON_KEY else SUPABASE_CONFIG.get('key')
        self.SERVICE_ROLE_KEY = SERVICE_ROLE_KEY if SERVICE_ROLE_KEY else SUPABASE_CONFIG.get('service_key')

        if not self.supabase_url:
            raise RuntimeError("未配置 SUPABASE_PUBLIC_URL")

        # 权限校验由本服务完成，服务端统一使用 SERVICE_ROLE_KEY；未配置时退回 ANON_KEY
        self.supabase: Client = create_client(self.supabase_url, self.SERVICE_ROLE_KEY or self.ANON_KEY)
        logger.info(f"Supabase client initialized with URL: {self.supabase_url}")


def get_supabase():
    """
    获取Supabase客户端

    在Flask应用上下文中优先使用 app.extensions['supabase']；首次使用时创建客户端，
    之后整个进程复用同一个实例。
    """
    global _process_client
    if has_app_context():
        client = current_app.extensions.get('supabase')
        if client is not None:
            return client

    with _lock:
        if _process_client is None:
            _process_client = SupabaseInitializer().supabase
        client = _process_client

    if has_app_context():
        current_app.extensions['supabase'] = client
    return client
