"""
BiblioRef - Test Configuration and Fixtures
"""
import copy
import os
import re

import pytest

# Set testing environment
os.environ['BIBLIOREF_ENV_FILE'] = os.devnull
os.environ['BCRYPT_ROUNDS'] = '4'
os.environ['JWT_SECRET_KEY'] = 'test-jwt-secret-key-for-testing'
os.environ['MIGRATION_DELAY'] = '0'
os.environ['MIGRATION_RETRY_DELAY'] = '0'

from api import create_app
from biblio_utils.security import create_access_token
from db.bibliography_operations import BibliographyOperations
from db.user_operations import UserOperations
from permissions import Role


def make_id(n: int) -> str:
    """按序号生成ObjectId，序号越大创建时间越晚"""
    return f"{1700000000 + n * 60:08x}" + "0" * 16


def _like_to_regex(pattern: str):
    out = []
    i = 0
    while i < len(pattern):
        ch = pattern[i]
        if ch == '\\' and i + 1 < len(pattern):
            out.append(re.escape(pattern[i + 1]))
            i += 2
            continue
        if ch == '%':
            out.append('.*')
        elif ch == '_':
            out.append('.')
        else:
            out.append(re.escape(ch))
        i += 1
    return re.compile(''.join(out), re.IGNORECASE | re.DOTALL)


def _parse_or(expression: str):
    """解析 PostgREST or() 表达式: col.op.value,col.op."quoted value" """
    conditions = []
    i, n = 0, len(expression)
    while i < n:
        j = expression.index('.', i)
        k = expression.index('.', j + 1)
        column, op = expression[i:j], expression[j + 1:k]
        i = k + 1
        if i < n and expression[i] == '"':
            i += 1
            value = []
            while expression[i] != '"':
                if expression[i] == '\\':
                    i += 1
                value.append(expression[i])
                i += 1
            i += 1
            value = ''.join(value)
        else:
            end = expression.find(',', i)
            end = n if end == -1 else end
            value = expression[i:end]
            i = end
        conditions.append((column, op, value))
        if i < n and expression[i] == ',':
            i += 1
    return conditions


_YEAR_PATTERN = re.compile(r'^\s*-?\d+\s*$')


def _value(row, column):
    """读取列值；year_num 与数据库中的生成列一致，由 year 计算"""
    if column == 'year_num':
        year = row.get('year')
        if isinstance(year, int):
            return year
        if isinstance(year, str) and _YEAR_PATTERN.match(year):
            return int(year.strip())
        return None
    return row.get(column)


class FakeResult:
    def __init__(self, data, count=None):
        self.data = data
        self.count = count


class FakeQuery:
    """内存中的 PostgREST 查询构造器，只实现本项目用到的方法"""

    def __init__(self, db, table):
        self._db = db
        self._table = table
        self._action = 'select'
        self._columns = '*'
        self._count = None
        self._payload = None
        self._filters = []
        self._orders = []
        self._offset = 0
        self._limit = None

    def select(self, *columns, count=None):
        self._action = 'select'
        self._columns = ','.join(columns) if columns else '*'
        self._count = count
        return self

    def insert(self, data):
        self._action = 'insert'
        self._payload = data
        return self

    def update(self, data):
        self._action = 'update'
        self._payload = data
        return self

    def delete(self):
        self._action = 'delete'
        return self

    def _add(self, predicate):
        self._filters.append(predicate)
        return self

    def eq(self, column, value):
        return self._add(lambda row: _value(row, column) == value)

    def neq(self, column, value):
        return self._add(lambda row: _value(row, column) != value)

    def gt(self, column, value):
        return self._add(lambda row: _value(row, column) is not None and _value(row, column) > value)

    def lt(self, column, value):
        return self._add(lambda row: _value(row, column) is not None and _value(row, column) < value)

    def gte(self, column, value):
        return self._add(lambda row: _value(row, column) is not None and _value(row, column) >= value)

    def lte(self, column, value):
        return self._add(lambda row: _value(row, column) is not None and _value(row, column) <= value)

    def ilike(self, column, pattern):
        regex = _like_to_regex(pattern)
        return self._add(lambda row: _value(row, column) is not None
                         and regex.fullmatch(str(_value(row, column))) is not None)

    def in_(self, column, values):
        values = list(values)
        return self._add(lambda row: _value(row, column) in values)

    def is_(self, column, value):
        assert value in ('null', None)
        return self._add(lambda row: _value(row, column) is None)

    def or_(self, expression):
        conditions = _parse_or(expression)

        def matches(row):
            for column, op, value in conditions:
                if op == 'ilike' and row.get(column) is not None \
                        and _like_to_regex(value).fullmatch(str(row[column])):
                    return True
                if op == 'eq' and str(row.get(column)) == value:
                    return True
            return False

        self._db.or_expressions.append(expression)
        return self._add(matches)

    def order(self, column, desc=False):
        self._orders.append((column, desc))
        return self

    def limit(self, size):
        self._limit = size
        return self

    def range(self, start, end):
        self._offset = start
        self._limit = end - start + 1
        return self

    def execute(self):
        self._db.calls.append((self._table, self._action))
        if self._db.error is not None:
            raise self._db.error

        rows = self._db.tables.setdefault(self._table, [])
        if self._action == 'insert':
            payload = self._payload if isinstance(self._payload, list) else [self._payload]
            inserted = [copy.deepcopy(item) for item in payload]
            rows.extend(inserted)
            return FakeResult(copy.deepcopy(inserted))

        matched = [row for row in rows if all(predicate(row) for predicate in self._filters)]
        if self._action == 'update':
            for row in matched:
                row.update(copy.deepcopy(self._payload))
            return FakeResult(copy.deepcopy(matched))
        if self._action == 'delete':
            self._db.tables[self._table] = [row for row in rows if row not in matched]
            return FakeResult(copy.deepcopy(matched))

        total = len(matched)
        for column, desc in reversed(self._orders):
            matched.sort(
                key=lambda row: (row.get(column) is None, row.get(column) if row.get(column) is not None else ''),
                reverse=desc,
            )
        end = None if self._limit is None else self._offset + self._limit
        matched = matched[self._offset:end]
        if self._columns != '*':
            columns = [column.strip() for column in self._columns.split(',')]
            matched = [{column: row.get(column) for column in columns} for row in matched]
        return FakeResult(copy.deepcopy(matched), count=total if self._count else None)


class FakeSupabase:
    """测试用的内存数据库"""

    def __init__(self):
        self.tables = {}
        self.calls = []
        self.or_expressions = []
        self.error = None

    def table(self, name):
        return FakeQuery(self, name)


@pytest.fixture
def fake_supabase():
    return FakeSupabase()


@pytest.fixture
def app(fake_supabase):
    app = create_app(supabase_client=fake_supabase)
    app.config['TESTING'] = True
    return app


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def bibliography_ops(fake_supabase):
    return BibliographyOperations(fake_supabase)


@pytest.fixture
def user_ops(fake_supabase):
    return UserOperations(fake_supabase)


@pytest.fixture
def seed_bibliographies(fake_supabase, bibliography_ops):
    """直接写入书目记录，按顺序分配递增的ID"""
    def seed(records):
        rows = []
        for n, record in enumerate(records, start=1):
            row = {
                'id': make_id(n),
                'created_at': None,
                'updated_at': None,
                'is_deleted': False,
                **record,
            }
            rows.append(row)
        fake_supabase.tables.setdefault(bibliography_ops.table, []).extend(rows)
        return rows
    return seed


@pytest.fixture
def make_user(fake_supabase, user_ops):
    """创建指定角色的用户"""
    def make(role=Role.STANDARD, email=None, password='password123'):
        role = Role(role)
        email = email or f"{role.value}@example.com"
        user = user_ops.create_user(name=role.value.title(), email=email, password=password)
        if role is not Role.STANDARD:
            for row in fake_supabase.tables[user_ops.table]:
                if row['id'] == user.id:
                    row['role'] = role.value
            user = user_ops.get_user_by_id(user.id)
        return user
    return make


@pytest.fixture
def users(make_user):
    return {
        Role.STANDARD: make_user(Role.STANDARD),
        Role.ADMIN: make_user(Role.ADMIN),
        Role.SUPER_ADMIN: make_user(Role.SUPER_ADMIN),
    }


@pytest.fixture
def auth_headers(users):
    return {
        role: {'Authorization': f"Bearer {create_access_token(user.id)}"}
        for role, user in users.items()
    }
