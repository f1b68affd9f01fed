from typing import List, Dict, Optional, Any, Tuple
import logging

from biblio_utils.csv_export import bibliographies_to_csv
from biblio_utils.objectid import new_object_id, is_valid_object_id
from config import SUPABASE_CONFIG, SEARCH_CONFIG
from errors import NotFoundError, RetrievalError, ValidationError
from schemas import Bibliography, BIBLIOGRAPHY_FIELDS, SearchPage, SearchQuery, utc_now

logger = logging.getLogger(__name__)

# 自由文本检索匹配的字段（任一字段包含即命中）
TEXT_SEARCH_FIELDS = ('title', 'author', 'keywords', 'publication', 'biblio_name')

# 支持的字段过滤条件（条件之间为AND）
FILTER_FIELDS = (
    'year',
    'publication',
    'publisher',
    'language_published',
    'language_researched',
    'country_of_research',
    'keywords',
    'biblio_name',
    'source',
    'language_family',
)

# 由 year 生成的整数列（见 init_tables.sql）
YEAR_NUMBER_FIELD = 'year_num'

DEFAULT_SORT_FIELD = 'id'
SORTABLE_FIELDS = ('id', 'created_at', 'updated_at') + BIBLIOGRAPHY_FIELDS


def _escape_like(value: str) -> str:
    """转义LIKE通配符，使用户输入按字面匹配"""
    return value.replace('\\', '\\\\').replace('%', '\\%').replace('_', '\\_')


def like_pattern(value: str) -> str:
    return f"%{_escape_like(value)}%"


def _quote_or_value(value: str) -> str:
    """PostgREST or() 条件中的值需要加双引号，避免逗号、括号等保留字符"""
    return '"' + value.replace('\\', '\\\\').replace('"', '\\"') + '"'


def normalize_filters(filters: Optional[Dict[str, Any]]) -> Dict[str, str]:
    """只保留支持的字段，去掉首尾空格和空值"""
    cleaned = {}
    for key, value in (filters or {}).items():
        if key not in FILTER_FIELDS or value is None:
            continue
        value = str(value).strip()
        if value:
            cleaned[key] = value
    return cleaned


def parse_year_filter(value: str) -> Optional[Tuple[int, int]]:
    """
    解析年份过滤条件

    Args:
        value: "2019" 或 "2018-2020"

    Returns:
        (起始年, 结束年) 闭区间；无法解析时返回 None，该条件被忽略
    """
    value = value.strip()
    try:
        if '-' in value:
            parts = value.split('-')
            start, end = int(parts[0].strip()), int(parts[1].strip())
            if start <= end:
                return start, end
            return None
        year = int(value)
        return year, year
    except ValueError:
        logger.info(f"忽略无法解析的年份条件: {value!r}")
        return None


class BibliographyOperations:
    """书目数据库操作类"""

    def __init__(self, supabase, table: Optional[str] = None):
        self.supabase = supabase
        self.table = table or SUPABASE_CONFIG['bibliography_table']

    def _table(self):
        return self.supabase.table(self.table)

    @staticmethod
    def _active(query):
        # 软删除的记录不参与任何读写
        return query.eq('is_deleted', False)

    @staticmethod
    def _apply_text_search(query, term: str):
        term = (term or '').strip()
        if not term:
            return query
        pattern = _quote_or_value(like_pattern(term))
        return query.or_(','.join(f"{field}.ilike.{pattern}" for field in TEXT_SEARCH_FIELDS))

    @staticmethod
    def _apply_field_filters(query, filters: Dict[str, str]):
        for field, value in normalize_filters(filters).items():
            if field != 'year':
                query = query.ilike(field, like_pattern(value))
                continue

            year_range = parse_year_filter(value)
            if year_range is None:
                continue
            start, end = year_range
            # year 按文本存储，数值比较使用生成列 year_num
            if start == end:
                query = query.eq(YEAR_NUMBER_FIELD, start)
            else:
                query = query.gte(YEAR_NUMBER_FIELD, start).lte(YEAR_NUMBER_FIELD, end)
        return query

    @staticmethod
    def _apply_substring_filters(query, filters: Dict[str, str]):
        for field, value in normalize_filters(filters).items():
            query = query.ilike(field, like_pattern(value))
        return query

    @staticmethod
    def _resolve_sort(sort_by: Optional[str], sort_order: Optional[str]) -> Tuple[str, bool]:
        if sort_by and sort_by not in SORTABLE_FIELDS:
            logger.warning(f"不支持的排序字段: {sort_by}，使用默认排序")
            sort_by = None
        if not sort_by:
            return DEFAULT_SORT_FIELD, (sort_order or 'desc').lower() != 'asc'
        return sort_by, (sort_order or 'asc').lower() == 'desc'

    def search(self, search_query: SearchQuery) -> SearchPage:
        """
        检索书目：自由文本 + 字段过滤 + 排序 + 分页

        Args:
            search_query: 检索条件

        Returns:
            SearchPage: 当前页的记录和总数
        """
        page = max(int(search_query.page or 1), 1)
        limit = int(search_query.limit or 0)
        if limit <= 0:
            limit = SEARCH_CONFIG['default_page_size']
        skip = (page - 1) * limit
        sort_field, descending = self._resolve_sort(search_query.sort_by, search_query.sort_order)

        def build(query):
            query = self._active(query)
            query = self._apply_text_search(query, search_query.term)
            return self._apply_field_filters(query, search_query.filters)

        try:
            count_result = build(self._table().select('id', count='exact')).limit(1).execute()
            total = count_result.count or 0

            rows = []
            # 超出最后一页时直接返回空列表
            if skip < total:
                query = build(self._table().select('*')).order(sort_field, desc=descending)
                if sort_field != DEFAULT_SORT_FIELD:
                    query = query.order(DEFAULT_SORT_FIELD, desc=descending)
                result = query.range(skip, skip + limit - 1).execute()
                rows = result.data or []
        except Exception as e:
            logger.error(f"检索书目失败: {e}", exc_info=True)
            raise RetrievalError("检索书目失败") from e

        logger.info(f"检索书目: term={search_query.term!r}, 命中 {total} 条, 第 {page} 页")
        return SearchPage(
            records=[Bibliography.from_record(row) for row in rows],
            total=total,
            page=page,
            limit=limit,
        )

    def list_bibliographies(self, page: int = 1, limit: Optional[int] = None,
                            sort_by: Optional[str] = None, sort_order: str = 'desc') -> SearchPage:
        """分页获取全部书目"""
        return self.search(SearchQuery(
            page=page,
            limit=limit or SEARCH_CONFIG['default_page_size'],
            sort_by=sort_by,
            sort_order=sort_order,
        ))

    def fetch_all(self, columns: str = '*', filters: Optional[Dict[str, Any]] = None) -> List[Dict]:
        """按 page_fetch_size 分块读取全部匹配记录（字段过滤均为不区分大小写的包含匹配）"""
        chunk_size = SUPABASE_CONFIG['page_fetch_size']
        rows = []
        offset = 0
        try:
            while True:
                query = self._active(self._table().select(columns))
                query = self._apply_substring_filters(query, filters or {})
                result = query.order('id').range(offset, offset + chunk_size - 1).execute()
                batch = result.data or []
                rows.extend(batch)
                if len(batch) < chunk_size:
                    break
                offset += chunk_size
        except Exception as e:
            logger.error(f"读取书目失败: {e}", exc_info=True)
            raise RetrievalError("读取书目失败") from e
        return rows

    def export_csv(self, filters: Optional[Dict[str, Any]] = None) -> str:
        """导出匹配过滤条件的全部书目为CSV"""
        rows = self.fetch_all(filters=filters)
        logger.info(f"导出CSV: {len(rows)} 条记录, 过滤条件: {normalize_filters(filters)}")
        return bibliographies_to_csv(rows)

    def get_bibliography(self, bibliography_id: str) -> Bibliography:
        """
        根据ID获取书目

        Raises:
            NotFoundError: ID格式错误、不存在或已删除
        """
        if not is_valid_object_id(bibliography_id):
            raise NotFoundError("书目不存在")
        try:
            result = self._active(self._table().select('*').eq('id', bibliography_id.lower())).execute()
        except Exception as e:
            logger.error(f"获取书目失败: {e}")
            raise RetrievalError("获取书目失败") from e
        if not result.data:
            raise NotFoundError("书目不存在")
        return Bibliography.from_record(result.data[0])

    def _get_adjacent(self, bibliography_id: str, newer: bool) -> Optional[Bibliography]:
        if not is_valid_object_id(bibliography_id):
            raise NotFoundError("书目不存在")
        bibliography_id = bibliography_id.lower()
        try:
            query = self._active(self._table().select('*'))
            if newer:
                query = query.gt('id', bibliography_id).order('id')
            else:
                query = query.lt('id', bibliography_id).order('id', desc=True)
            result = query.limit(1).execute()
        except Exception as e:
            logger.error(f"获取相邻书目失败: {e}")
            raise RetrievalError("获取相邻书目失败") from e
        return Bibliography.from_record(result.data[0]) if result.data else None

    def get_next_bibliography(self, bibliography_id: str) -> Optional[Bibliography]:
        return self._get_adjacent(bibliography_id, newer=True)

    def get_previous_bibliography(self, bibliography_id: str) -> Optional[Bibliography]:
        return self._get_adjacent(bibliography_id, newer=False)

    @staticmethod
    def _clean_fields(data: Dict[str, Any]) -> Dict[str, Any]:
        """只保留可编辑字段，系统字段（id、created_at等）被忽略"""
        cleaned = {key: value for key, value in (data or {}).items() if key in BIBLIOGRAPHY_FIELDS}
        if cleaned.get('year') is not None:
            cleaned['year'] = str(cleaned['year']).strip()
        return cleaned

    @staticmethod
    def _require_text(record: Dict[str, Any], field: str):
        if not str(record.get(field) or '').strip():
            raise ValidationError(f"{field} 不能为空", field=field)

    def create_bibliography(self, data: Dict[str, Any], created_by: Optional[str] = None) -> Bibliography:
        """
        新建书目

        Args:
            data: 书目字段
            created_by: 创建者用户ID

        Returns:
            Bibliography: 新建的书目

        Raises:
            ValidationError: title、author 为空或缺少 year
        """
        record = self._clean_fields(data)
        self._require_text(record, 'title')
        self._require_text(record, 'author')
        self._require_text(record, 'year')

        record.update({
            'id': new_object_id(),
            'created_at': utc_now().isoformat(),
            'updated_at': None,
            'created_by': created_by,
            'is_deleted': False,
        })
        try:
            result = self._table().insert(record).execute()
        except Exception as e:
            logger.error(f"新建书目失败: {e}", exc_info=True)
            raise RetrievalError("新建书目失败") from e

        logger.info(f"书目创建成功: {record['id']}")
        return Bibliography.from_record(result.data[0] if result.data else record)

    def update_bibliography(self, bibliography_id: str, updates: Dict[str, Any],
                            updated_by: Optional[str] = None) -> Bibliography:
        """
        部分更新书目字段，并刷新 updated_at

        Raises:
            NotFoundError: 书目不存在
            ValidationError: 更新后 title 或 author 为空
        """
        changes = self._clean_fields(updates)
        existing = self.get_bibliography(bibliography_id)

        merged = {**existing.to_dict(), **changes}
        self._require_text(merged, 'title')
        self._require_text(merged, 'author')

        changes['updated_at'] = utc_now().isoformat()
        try:
            result = self._active(
                self._table().update(changes).eq('id', existing.id)
            ).execute()
        except Exception as e:
            logger.error(f"更新书目失败: {bibliography_id}, {e}")
            raise RetrievalError("更新书目失败") from e

        if not result.data:
            raise NotFoundError("书目不存在")
        logger.info(f"书目已更新: {existing.id}, 操作者: {updated_by}")
        return Bibliography.from_record(result.data[0])

    def delete_bibliography(self, bibliography_id: str, deleted_by: Optional[str] = None) -> bool:
        """
        删除书目（软删除：标记 is_deleted 并记录删除时间）

        Raises:
            NotFoundError: 书目不存在或已删除
        """
        if not is_valid_object_id(bibliography_id):
            raise NotFoundError("书目不存在")
        now = utc_now().isoformat()
        try:
            result = self._active(
                self._table().update({
                    'is_deleted': True,
                    'deleted_at': now,
                    'deleted_by': deleted_by,
                    'updated_at': now,
                }).eq('id', bibliography_id.lower())
            ).execute()
        except Exception as e:
            logger.error(f"删除书目失败: {bibliography_id}, {e}")
            raise RetrievalError("删除书目失败") from e

        if not result.data:
            raise NotFoundError("书目不存在")
        logger.info(f"书目已删除: {bibliography_id}, 操作者: {deleted_by}")
        return True
