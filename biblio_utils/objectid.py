"""ObjectId 工具函数：生成书目ID、从ID中解析创建时间"""

import logging
import re
from datetime import datetime, timezone
from typing import Optional

from bson import ObjectId

logger = logging.getLogger(__name__)

# ObjectId 的前4个字节（8个十六进制字符）是秒级Unix时间戳
_TIMESTAMP_PREFIX = re.compile(r'^[0-9a-fA-F]{8}')


def new_object_id() -> str:
    """生成新的24位十六进制ID，按创建时间单调递增"""
    return str(ObjectId())


def is_valid_object_id(value) -> bool:
    return isinstance(value, str) and ObjectId.is_valid(value)


def extract_timestamp(object_id) -> datetime:
    """
    从ObjectId中解析创建时间

    Args:
        object_id: 24位十六进制ID（至少需要前8位）

    Returns:
        datetime: UTC时间；ID格式错误时返回当前时间
    """
    if not isinstance(object_id, str) or not _TIMESTAMP_PREFIX.match(object_id):
        logger.warning(f"无法从ObjectId解析时间戳: {object_id!r}，使用当前时间")
        return datetime.now(timezone.utc)

    seconds = int(object_id[:8], 16)
    return datetime.fromtimestamp(seconds, tz=timezone.utc)


def relative_time(object_id, now: Optional[datetime] = None) -> str:
    """根据ObjectId的创建时间返回相对时间描述"""
    created = extract_timestamp(object_id)
    now = now or datetime.now(timezone.utc)
    diff_seconds = abs((now - created).total_seconds())
    # 向上取整到天
    diff_days = int(-(-diff_seconds // 86400))

    if diff_days <= 1:
        return "昨天" if diff_days == 1 else "今天"
    if diff_days < 7:
        return f"{diff_days} 天前"
    if diff_days < 30:
        return f"{-(-diff_days // 7)} 周前"
    if diff_days < 365:
        return f"{-(-diff_days // 30)} 个月前"
    return f"{-(-diff_days // 365)} 年前"
