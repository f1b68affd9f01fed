#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
书目创建时间回填脚本

对缺少 created_at 的记录，从ID（ObjectId）中解析创建时间写入 created_at，
并将 updated_at 置空。按ID顺序分批处理，每批内并发执行，单条记录失败时按固定间隔重试。

用法:
    python -m scripts.migrate_timestamps            # 执行回填
    python -m scripts.migrate_timestamps --check    # 只统计还有多少记录缺少 created_at
"""

import argparse
import logging
import sys
import time
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional

from biblio_utils.objectid import extract_timestamp, is_valid_object_id
from config import LOG_CONFIG, MIGRATION_CONFIG, SUPABASE_CONFIG

logger = logging.getLogger(__name__)


def validate_config(config: Dict[str, Any]) -> None:
    if not 1 <= config['batch_size'] <= 1000:
        raise ValueError("MIGRATION_BATCH_SIZE 必须在 1 到 1000 之间")
    if config['delay_between_batches'] < 0:
        raise ValueError("MIGRATION_DELAY 不能小于 0")
    if config['max_retries'] < 0:
        raise ValueError("MIGRATION_MAX_RETRIES 不能小于 0")
    if config['concurrency'] < 1:
        raise ValueError("MIGRATION_CONCURRENCY 必须大于 0")


@dataclass
class MigrationResult:
    total_documents: int = 0
    processed_documents: int = 0
    success_count: int = 0
    error_count: int = 0
    batches_processed: int = 0
    errors: List[Dict[str, Any]] = field(default_factory=list)
    start_time: datetime = field(default_factory=datetime.now)
    end_time: Optional[datetime] = None

    @property
    def duration(self) -> Optional[float]:
        if self.end_time is None:
            return None
        return (self.end_time - self.start_time).total_seconds()


class TimestampMigration:
    """从ObjectId回填 created_at"""

    def __init__(self, supabase, config: Optional[Dict[str, Any]] = None, table: Optional[str] = None,
                 sleep: Callable[[float], None] = time.sleep):
        self.supabase = supabase
        self.config = {**MIGRATION_CONFIG, **(config or {})}
        self.table = table or SUPABASE_CONFIG['bibliography_table']
        self._sleep = sleep

    def _table(self):
        return self.supabase.table(self.table)

    def count_missing(self) -> int:
        result = self._table().select('id', count='exact').is_('created_at', 'null').limit(1).execute()
        return result.count or 0

    def check(self) -> Dict[str, int]:
        """统计回填进度"""
        total = self._table().select('id', count='exact').limit(1).execute().count or 0
        missing = self.count_missing()
        return {
            'total_documents': total,
            'missing_created_at': missing,
            'migrated': total - missing,
        }

    def _fetch_batch(self, after_id: Optional[str]) -> List[Dict[str, Any]]:
        query = self._table().select('id,created_at').is_('created_at', 'null')
        if after_id:
            query = query.gt('id', after_id)
        result = query.order('id').limit(self.config['batch_size']).execute()
        return result.data or []

    def _process_document(self, document: Dict[str, Any]) -> Dict[str, Any]:
        """
        处理单条记录，失败时重试

        Returns:
            dict: success, error, retries
        """
        document_id = document.get('id')
        if document.get('created_at'):
            return {'success': True, 'retries': 0}
        if not is_valid_object_id(document_id):
            return {'success': False, 'error': "ObjectId格式无效", 'retries': 0}

        update_data = {
            'created_at': extract_timestamp(document_id).isoformat(),
            'updated_at': None,
        }

        last_error = None
        retries = 0
        while retries <= self.config['max_retries']:
            try:
                result = self._table().update(update_data).eq('id', document_id).execute()
                if not result.data:
                    raise RuntimeError("记录未被修改")
                return {'success': True, 'retries': retries}
            except Exception as e:
                last_error = str(e)
                retries += 1
                if retries <= self.config['max_retries']:
                    logger.debug(f"回填失败，准备重试: {document_id}, 第 {retries} 次, 错误: {e}")
                    self._sleep(self.config['retry_delay'])

        return {
            'success': False,
            'error': f"重试 {self.config['max_retries']} 次后仍失败: {last_error}",
            'retries': retries,
        }

    def _process_batch(self, documents: List[Dict[str, Any]], result: MigrationResult) -> None:
        with ThreadPoolExecutor(max_workers=self.config['concurrency']) as executor:
            futures = {executor.submit(self._process_document, document): document for document in documents}
            for future in as_completed(futures):
                document = futures[future]
                outcome = future.result()
                result.processed_documents += 1
                if outcome['success']:
                    result.success_count += 1
                else:
                    result.error_count += 1
                    result.errors.append({
                        'document_id': document.get('id'),
                        'error': outcome['error'],
                        'retries': outcome['retries'],
                    })

    def migrate(self) -> MigrationResult:
        """执行回填"""
        validate_config(self.config)
        result = MigrationResult()
        result.total_documents = self.count_missing()
        logger.info(f"开始回填创建时间: 表 {self.table}, 待处理 {result.total_documents} 条")

        last_id = None
        while True:
            documents = self._fetch_batch(last_id)
            if not documents:
                break

            self._process_batch(documents, result)
            result.batches_processed += 1
            last_id = documents[-1]['id']
            logger.info(
                f"第 {result.batches_processed} 批完成: 已处理 {result.processed_documents}/{result.total_documents}, "
                f"成功 {result.success_count}, 失败 {result.error_count}"
            )

            if len(documents) < self.config['batch_size']:
                break
            self._sleep(self.config['delay_between_batches'])

        result.end_time = datetime.now()
        logger.info(f"回填完成: 成功 {result.success_count}, 失败 {result.error_count}, 耗时 {result.duration:.2f} 秒")
        for error in result.errors:
            logger.error(f"回填失败: {error['document_id']}, {error['error']}")
        return result


def main(argv=None) -> int:
    parser = argparse.ArgumentParser(description="从ObjectId回填书目的 created_at")
    parser.add_argument('--check', action='store_true', help="只检查回填进度，不修改数据")
    parser.add_argument('--batch-size', type=int, default=None, help="每批处理的记录数")
    args = parser.parse_args(argv)

    logging.basicConfig(level=LOG_CONFIG['level'], format=LOG_CONFIG['format'])

    from db.supabase_client import SupabaseInitializer
    supabase = SupabaseInitializer().supabase

    config = {}
    if args.batch_size is not None:
        config['batch_size'] = args.batch_size
    migration = TimestampMigration(supabase, config=config)

    if args.check:
        status = migration.check()
        logger.info(
            f"共 {status['total_documents']} 条记录, 已回填 {status['migrated']} 条, "
            f"缺少 created_at {status['missing_created_at']} 条"
        )
        return 0 if status['missing_created_at'] == 0 else 1

    result = migration.migrate()
    return 0 if result.error_count == 0 else 1


if __name__ == "__main__":
    sys.exit(main())
