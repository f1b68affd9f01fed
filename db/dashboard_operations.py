from typing import List, Dict, Optional, Any
import logging

import pandas as pd

from biblio_utils.objectid import extract_timestamp, relative_time
from db.bibliography_operations import BibliographyOperations
from schemas import utc_now

logger = logging.getLogger(__name__)


def _non_blank(series: pd.Series) -> pd.Series:
    values = series.dropna().astype(str).str.strip()
    return values[values != ""]


class DashboardOperations:
    """仪表盘统计，数据读取后用pandas聚合"""

    def __init__(self, supabase, table: Optional[str] = None):
        self.bibliography_ops = BibliographyOperations(supabase, table)

    def _frame(self, columns: List[str]) -> pd.DataFrame:
        rows = self.bibliography_ops.fetch_all(columns=','.join(columns))
        return pd.DataFrame(rows, columns=columns)

    def get_stats(self, current_year: Optional[int] = None) -> Dict[str, int]:
        """
        汇总统计

        Returns:
            dict: 总记录数、年份为今年的记录数、出版语言数、研究国家数
        """
        data = self._frame(['id', 'year', 'language_published', 'country_of_research'])
        current_year = str(current_year or utc_now().year)

        stats = {
            'total_records': len(data),
            'this_year': int((_non_blank(data['year']) == current_year).sum()),
            'languages': int(_non_blank(data['language_published']).nunique()),
            'countries': int(_non_blank(data['country_of_research']).nunique()),
        }
        logger.info(f"仪表盘统计: {stats}")
        return stats

    def get_language_distribution(self, limit: int = 10) -> List[Dict[str, Any]]:
        """出版语言分布（前 limit 个语言及其占比）"""
        data = self._frame(['language_published'])
        counts = _non_blank(data['language_published']).value_counts().head(limit)
        total = int(counts.sum())

        return [
            {
                'language': language,
                'count': int(count),
                'percentage': int(count * 100 / total + 0.5) if total else 0,
            }
            for language, count in counts.items()
        ]

    def get_publication_trends(self) -> List[Dict[str, Any]]:
        """按年份统计书目数量，年份升序"""
        data = self._frame(['year'])
        counts = _non_blank(data['year']).value_counts().sort_index()
        return [{'year': year, 'count': int(count)} for year, count in counts.items()]

    def get_recent_bibliographies(self, limit: int = 5) -> List[Dict[str, Any]]:
        """最近添加的书目"""
        page = self.bibliography_ops.list_bibliographies(page=1, limit=limit)
        now = utc_now()
        return [
            {
                'id': record.id,
                'title': record.title,
                'author': record.author,
                'year': record.year,
                'created_at': record.created_at or extract_timestamp(record.id).isoformat(),
                'relative_time': relative_time(record.id, now=now),
            }
            for record in page.records
        ]
