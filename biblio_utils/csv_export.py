import csv
from typing import Any, Dict, Iterable, List

import pandas as pd

# 导出列顺序：(表头, 字段名)
CSV_COLUMNS = [
    ("Author", "author"),
    ("Year", "year"),
    ("Title", "title"),
    ("Publication", "publication"),
    ("Publisher", "publisher"),
    ("Biblio Name", "biblio_name"),
    ("Language Published", "language_published"),
    ("Language Researched", "language_researched"),
    ("Country of Research", "country_of_research"),
    ("Keywords", "keywords"),
    ("ISBN", "isbn"),
    ("ISSN", "issn"),
    ("URL", "url"),
    ("Date of Entry", "date_of_entry"),
    ("Source", "source"),
    ("Language Family", "language_family"),
]

CSV_HEADER = ",".join(header for header, _ in CSV_COLUMNS)


def _cell(value: Any) -> str:
    if value is None:
        return ""
    return str(value)


def bibliographies_to_csv(records: Iterable[Dict[str, Any]]) -> str:
    """
    将书目记录转换为CSV文本

    参数:
        records: 书目记录（字典）列表

    返回:
        CSV字符串：表头一行，之后每条记录一行，所有值都加双引号，缺失字段输出 ""
    """
    rows: List[List[str]] = [
        [_cell(record.get(field)) for _, field in CSV_COLUMNS]
        for record in records
    ]
    if not rows:
        return CSV_HEADER

    data = pd.DataFrame(rows, columns=[header for header, _ in CSV_COLUMNS], dtype=str)
    body = data.to_csv(index=False, header=False, quoting=csv.QUOTE_ALL, lineterminator="\n")
    return CSV_HEADER + "\n" + body.rstrip("\n")
