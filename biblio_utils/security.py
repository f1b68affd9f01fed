from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional

import bcrypt
from jose import JWTError, jwt

from config import AUTH_CONFIG
from errors import AuthenticationError


def get_password_hash(password: str) -> str:
    """Hash password with configurable rounds (BCRYPT_ROUNDS in .env)"""
    # Bcrypt has a 72 byte limit - truncate password if necessary
    password_bytes = password.encode('utf-8')[:72]
    hashed = bcrypt.hashpw(password_bytes, bcrypt.gensalt(rounds=AUTH_CONFIG['bcrypt_rounds']))
    return hashed.decode('utf-8')


def verify_password(plain_password: str, hashed_password: Optional[str]) -> bool:
    if not hashed_password:
        return False
    password_bytes = plain_password.encode('utf-8')[:72]
    return bcrypt.checkpw(password_bytes, hashed_password.encode('utf-8'))


def create_access_token(user_id: str, expires_delta: Optional[timedelta] = None) -> str:
    """签发访问令牌，令牌中只保存用户ID，角色每次请求时从数据库读取"""
    expire = datetime.now(timezone.utc) + (
        expires_delta or timedelta(minutes=AUTH_CONFIG['token_expire_minutes'])
    )
    to_encode = {'sub': str(user_id), 'exp': expire, 'type': 'access'}
    return jwt.encode(to_encode, AUTH_CONFIG['jwt_secret'], algorithm=AUTH_CONFIG['jwt_algorithm'])


def decode_access_token(token: str) -> Dict[str, Any]:
    """
    Decode JWT token

    Raises:
        AuthenticationError: 令牌无效或已过期
    """
    try:
        payload = jwt.decode(token, AUTH_CONFIG['jwt_secret'], algorithms=[AUTH_CONFIG['jwt_algorithm']])
    except JWTError:
        raise AuthenticationError("令牌无效或已过期")

    if payload.get('type') != 'access' or not payload.get('sub'):
        raise AuthenticationError("令牌无效或已过期")
    return payload
