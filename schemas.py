"""
Database Schema Models for BiblioRef.

This module defines the data models that correspond to the database tables
defined in db/init_tables.sql. These classes are used for validation,
serialization/deserialization of Supabase rows, and documentation purposes.
"""

from typing import Optional, List, Dict, Any
from dataclasses import dataclass, field, fields, asdict
from datetime import datetime, timezone

from config import SEARCH_CONFIG
from permissions import Role, parse_role


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def to_iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if isinstance(value, datetime) else value


# 用户可以编辑的书目字段
BIBLIOGRAPHY_FIELDS = (
    'title',
    'author',
    'year',
    'publication',
    'publisher',
    'biblio_name',
    'language_published',
    'language_researched',
    'country_of_research',
    'keywords',
    'isbn',
    'issn',
    'url',
    'date_of_entry',
    'language_family',
    'source',
)


@dataclass
class Bibliography:
    """One catalogued publication entry with descriptive metadata."""
    id: str
    title: str
    author: str
    year: Optional[str] = None
    publication: Optional[str] = None
    publisher: Optional[str] = None
    biblio_name: Optional[str] = None
    language_published: Optional[str] = None
    language_researched: Optional[str] = None
    country_of_research: Optional[str] = None
    keywords: Optional[str] = None
    isbn: Optional[str] = None
    issn: Optional[str] = None
    url: Optional[str] = None
    date_of_entry: Optional[str] = None
    language_family: Optional[str] = None
    source: Optional[str] = None
    created_at: Optional[str] = None
    updated_at: Optional[str] = None
    created_by: Optional[str] = None
    is_deleted: bool = False
    deleted_at: Optional[str] = None
    deleted_by: Optional[str] = None

    @classmethod
    def from_record(cls, record: Dict[str, Any]) -> 'Bibliography':
        known = {f.name for f in fields(cls)}
        data = {key: value for key, value in record.items() if key in known}
        if data.get('year') is not None:
            data['year'] = str(data['year'])
        data['is_deleted'] = bool(data.get('is_deleted'))
        return cls(**data)

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        for key in ('is_deleted', 'deleted_at', 'deleted_by'):
            data.pop(key)
        return data


@dataclass
class NotificationSettings:
    email: bool = True
    browser: bool = False


@dataclass
class UserPreferences:
    language: str = 'en'
    timezone: str = 'UTC'
    notifications: NotificationSettings = field(default_factory=NotificationSettings)

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> 'UserPreferences':
        data = data or {}
        return cls(
            language=data.get('language', 'en'),
            timezone=data.get('timezone', 'UTC'),
            notifications=NotificationSettings(**(data.get('notifications') or {})),
        )


@dataclass
class UserStatistics:
    total_bibliographies: int = 0
    last_login: Optional[str] = None
    created_at: Optional[str] = None

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> 'UserStatistics':
        data = data or {}
        return cls(
            total_bibliographies=int(data.get('total_bibliographies') or 0),
            last_login=data.get('last_login'),
            created_at=data.get('created_at'),
        )


@dataclass
class UserAccount:
    """User account, role and preferences. password_hash is never serialized."""
    id: str
    email: str
    name: str
    role: Role = Role.STANDARD
    is_active: bool = True
    password_hash: Optional[str] = None
    preferences: UserPreferences = field(default_factory=UserPreferences)
    statistics: UserStatistics = field(default_factory=UserStatistics)
    role_changed_by: Optional[str] = None
    role_changed_at: Optional[str] = None
    created_by: Optional[str] = None
    created_at: Optional[str] = None
    updated_at: Optional[str] = None

    @classmethod
    def from_record(cls, record: Dict[str, Any]) -> 'UserAccount':
        return cls(
            id=record['id'],
            email=record['email'],
            name=record.get('name') or '',
            role=parse_role(record.get('role')),
            is_active=bool(record.get('is_active', True)),
            password_hash=record.get('password_hash'),
            preferences=UserPreferences.from_dict(record.get('preferences')),
            statistics=UserStatistics.from_dict(record.get('statistics')),
            role_changed_by=record.get('role_changed_by'),
            role_changed_at=record.get('role_changed_at'),
            created_by=record.get('created_by'),
            created_at=record.get('created_at'),
            updated_at=record.get('updated_at'),
        )

    def to_public_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data.pop('password_hash')
        data['role'] = self.role.value
        return data


@dataclass
class SearchQuery:
    """Free-text term plus named field filters, paging and sorting for one request."""
    term: str = ''
    filters: Dict[str, str] = field(default_factory=dict)
    page: int = 1
    limit: int = SEARCH_CONFIG['default_page_size']
    sort_by: Optional[str] = None
    sort_order: str = 'desc'


@dataclass
class SearchPage:
    """One page of search results plus the total match count."""
    records: List[Bibliography]
    total: int
    page: int
    limit: int

    @property
    def total_pages(self) -> int:
        return (self.total + self.limit - 1) // self.limit if self.limit > 0 else 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            'data': [record.to_dict() for record in self.records],
            'pagination': {
                'current_page': self.page,
                'page_size': self.limit,
                'total_count': self.total,
                'total_pages': self.total_pages,
                'has_next': self.page < self.total_pages,
                'has_prev': self.page > 1,
            },
        }
