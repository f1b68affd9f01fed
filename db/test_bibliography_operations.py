"""
Unit Tests for BibliographyOperations: search, filters, paging, CSV export, CRUD
"""
import pytest

from config import SUPABASE_CONFIG
from db.bibliography_operations import parse_year_filter, normalize_filters
from errors import NotFoundError, RetrievalError, ValidationError
from schemas import SearchQuery


@pytest.fixture
def catalogue(seed_bibliographies):
    return seed_bibliographies([
        {'title': 'Grammar of Quechua', 'author': 'Ruiz', 'year': '2017',
         'keywords': 'andes', 'language_published': 'Spanish', 'country_of_research': 'Peru'},
        {'title': 'Aymara Phonology', 'author': 'Lopez', 'year': '2018',
         'keywords': 'phonology', 'language_published': 'English', 'country_of_research': 'Bolivia'},
        {'title': 'Field Notes', 'author': 'Smith', 'year': '2019',
         'keywords': 'morphology, verbs', 'language_published': 'English', 'country_of_research': 'Peru'},
        {'title': 'Language Contact', 'author': 'Garcia', 'year': '2020',
         'publication': 'Journal of Morphology', 'language_published': 'Spanish'},
        {'title': 'Kichwa Dictionary', 'author': 'Perez', 'year': '2021',
         'biblio_name': 'Andean Collection', 'language_published': 'Spanish'},
    ])


def titles(page):
    return [record.title for record in page.records]


class TestParseYearFilter:

    def test_range(self):
        assert parse_year_filter("2018-2020") == (2018, 2020)
        assert parse_year_filter(" 2018 - 2020 ") == (2018, 2020)

    def test_single_year(self):
        assert parse_year_filter("2019") == (2019, 2019)

    def test_reversed_range_is_dropped(self):
        assert parse_year_filter("2020-2018") is None

    @pytest.mark.parametrize('value', ["not-a-year", "abc", "2019-", "-2019", "19x9"])
    def test_unparsable_is_dropped(self, value):
        assert parse_year_filter(value) is None


def test_normalize_filters_drops_blank_and_unknown():
    assert normalize_filters({'year': ' 2019 ', 'source': '  ', 'title': 'x', 'keywords': None}) == {'year': '2019'}


class TestSearch:

    def test_default_sort_is_newest_first(self, bibliography_ops, catalogue):
        page = bibliography_ops.search(SearchQuery())

        assert page.total == 5
        assert titles(page) == ['Kichwa Dictionary', 'Language Contact', 'Field Notes',
                                'Aymara Phonology', 'Grammar of Quechua']

    def test_text_matches_keywords_only_field(self, bibliography_ops, catalogue):
        page = bibliography_ops.search(SearchQuery(term='VERBS'))

        assert titles(page) == ['Field Notes']

    def test_text_is_or_across_fields(self, bibliography_ops, catalogue):
        page = bibliography_ops.search(SearchQuery(term='morphology'))

        # keywords 命中 Field Notes，publication 命中 Language Contact
        assert sorted(titles(page)) == ['Field Notes', 'Language Contact']

    def test_text_matches_biblio_name(self, bibliography_ops, catalogue):
        page = bibliography_ops.search(SearchQuery(term='andean'))

        assert titles(page) == ['Kichwa Dictionary']

    def test_text_and_filter_are_anded(self, bibliography_ops, catalogue):
        page = bibliography_ops.search(SearchQuery(term='verbs', filters={'country_of_research': 'Bolivia'}))

        assert page.total == 0
        assert page.records == []

    def test_blank_term_is_ignored(self, bibliography_ops, catalogue, fake_supabase):
        page = bibliography_ops.search(SearchQuery(term='   '))

        assert page.total == 5
        assert fake_supabase.or_expressions == []

    def test_field_filter_is_case_insensitive_substring(self, bibliography_ops, catalogue):
        page = bibliography_ops.search(SearchQuery(filters={'language_published': 'span'}))

        assert sorted(titles(page)) == ['Grammar of Quechua', 'Kichwa Dictionary', 'Language Contact']

    def test_multiple_filters_are_anded(self, bibliography_ops, catalogue):
        page = bibliography_ops.search(SearchQuery(filters={'language_published': 'english',
                                                            'country_of_research': 'peru'}))

        assert titles(page) == ['Field Notes']

    def test_year_range(self, bibliography_ops, catalogue):
        page = bibliography_ops.search(SearchQuery(filters={'year': '2018-2020'}))

        assert sorted(record.year for record in page.records) == ['2018', '2019', '2020']

    def test_year_exact(self, bibliography_ops, catalogue):
        page = bibliography_ops.search(SearchQuery(filters={'year': '2019'}))

        assert titles(page) == ['Field Notes']

    def test_wide_year_range_is_a_numeric_bound(self, bibliography_ops, seed_bibliographies, monkeypatch):
        from conftest import FakeQuery
        seed_bibliographies([
            {'title': 'Old', 'author': 'A', 'year': '1605'},
            {'title': 'New', 'author': 'B', 'year': ' 2021 '},
            {'title': 'Undated', 'author': 'C', 'year': 'n.d.'},
        ])
        in_values = []
        original_in = FakeQuery.in_

        def spy_in(self, column, values):
            in_values.append(list(values))
            return original_in(self, column, in_values[-1])

        monkeypatch.setattr(FakeQuery, 'in_', spy_in)

        page = bibliography_ops.search(SearchQuery(filters={'year': '0-20000000'}))

        assert sorted(titles(page)) == ['New', 'Old']
        assert in_values == []

    def test_year_range_bounds_are_inclusive(self, bibliography_ops, catalogue):
        page = bibliography_ops.search(SearchQuery(filters={'year': '2017-2017'}))

        assert titles(page) == ['Grammar of Quechua']

    def test_unparsable_year_is_ignored(self, bibliography_ops, catalogue):
        page = bibliography_ops.search(SearchQuery(filters={'year': 'not-a-year'}))

        assert page.total == 5

    def test_term_with_like_wildcards_is_literal(self, bibliography_ops, seed_bibliographies):
        seed_bibliographies([
            {'title': '100% Coverage', 'author': 'A', 'year': '2000'},
            {'title': '100 Years', 'author': 'B', 'year': '2001'},
        ])

        page = bibliography_ops.search(SearchQuery(term='100%'))

        assert titles(page) == ['100% Coverage']

    def test_term_with_reserved_characters(self, bibliography_ops, seed_bibliographies):
        seed_bibliographies([
            {'title': 'Verbs, Nouns (and "Particles")', 'author': 'A', 'year': '2000'},
            {'title': 'Verbs', 'author': 'B', 'year': '2001'},
        ])

        page = bibliography_ops.search(SearchQuery(term='nouns (and "particles")'))

        assert titles(page) == ['Verbs, Nouns (and "Particles")']

    def test_sort_by_field_ascending(self, bibliography_ops, catalogue):
        page = bibliography_ops.search(SearchQuery(sort_by='author', sort_order='asc'))

        assert [record.author for record in page.records] == ['Garcia', 'Lopez', 'Perez', 'Ruiz', 'Smith']

    def test_sort_by_field_descending(self, bibliography_ops, catalogue):
        page = bibliography_ops.search(SearchQuery(sort_by='year', sort_order='desc'))

        assert [record.year for record in page.records] == ['2021', '2020', '2019', '2018', '2017']

    def test_unknown_sort_field_falls_back_to_default(self, bibliography_ops, catalogue):
        page = bibliography_ops.search(SearchQuery(sort_by='password', sort_order='asc'))

        assert titles(page)[0] == 'Grammar of Quechua'

    def test_soft_deleted_records_are_excluded(self, bibliography_ops, catalogue):
        bibliography_ops.delete_bibliography(catalogue[0]['id'])

        page = bibliography_ops.search(SearchQuery(term='quechua'))
        assert page.total == 0

    def test_persistence_failure_raises_retrieval_error(self, bibliography_ops, catalogue, fake_supabase):
        fake_supabase.error = RuntimeError("connection timed out")

        with pytest.raises(RetrievalError):
            bibliography_ops.search(SearchQuery(term='grammar'))


class TestPagination:

    @pytest.fixture
    def many(self, seed_bibliographies):
        return seed_bibliographies([
            {'title': f'Record {n}', 'author': 'Author', 'year': '2000'} for n in range(45)
        ])

    def test_total_pages(self, bibliography_ops, many):
        page = bibliography_ops.search(SearchQuery(page=1, limit=20))

        assert page.total == 45
        assert page.total_pages == 3
        assert len(page.records) == 20

    def test_last_page_is_partial(self, bibliography_ops, many):
        page = bibliography_ops.search(SearchQuery(page=3, limit=20))

        assert len(page.records) == 5
        assert page.to_dict()['pagination']['has_next'] is False

    def test_page_past_end_is_empty(self, bibliography_ops, many):
        page = bibliography_ops.search(SearchQuery(page=4, limit=20))

        assert page.records == []
        assert page.total == 45

    def test_default_limit(self, bibliography_ops, many):
        page = bibliography_ops.list_bibliographies()

        assert page.limit == 20
        assert len(page.records) == 20


class TestExportCsv:

    def test_export_with_no_records(self, bibliography_ops):
        csv_text = bibliography_ops.export_csv({})

        assert csv_text.count("\n") == 0
        assert len(csv_text.split(",")) == 16

    def test_export_filters_are_substring_matches(self, bibliography_ops, catalogue):
        csv_text = bibliography_ops.export_csv({'language_published': 'english', 'year': '201'})

        lines = csv_text.split("\n")
        assert len(lines) == 3
        assert lines[1].startswith('"Lopez","2018"')
        assert lines[2].startswith('"Smith","2019"')

    def test_export_reads_in_chunks(self, bibliography_ops, catalogue, monkeypatch):
        monkeypatch.setitem(SUPABASE_CONFIG, 'page_fetch_size', 2)

        csv_text = bibliography_ops.export_csv()

        assert len(csv_text.split("\n")) == 6

    def test_export_missing_field_is_empty_quoted(self, bibliography_ops, seed_bibliographies):
        seed_bibliographies([{'title': 'No ISBN', 'author': 'Nobody', 'year': '1999'}])

        row = bibliography_ops.export_csv().split("\n")[1].split(",")
        assert row[10] == '""'


class TestCrud:

    def test_create_sets_system_fields(self, bibliography_ops):
        record = bibliography_ops.create_bibliography(
            {'title': 'New Entry', 'author': 'Someone', 'year': 2024, 'id': 'ignored', 'updated_at': 'x'},
            created_by='user-1',
        )

        assert len(record.id) == 24
        assert record.year == '2024'
        assert record.created_at is not None
        assert record.updated_at is None
        assert record.created_by == 'user-1'
        assert bibliography_ops.get_bibliography(record.id).title == 'New Entry'

    @pytest.mark.parametrize('missing', ['title', 'author', 'year'])
    def test_create_requires_fields(self, bibliography_ops, missing):
        data = {'title': 'T', 'author': 'A', 'year': '2020'}
        data[missing] = '  '

        with pytest.raises(ValidationError) as exc_info:
            bibliography_ops.create_bibliography(data)
        assert exc_info.value.field == missing

    def test_update_is_partial_and_refreshes_updated_at(self, bibliography_ops, catalogue):
        record_id = catalogue[1]['id']

        updated = bibliography_ops.update_bibliography(record_id, {'publisher': 'UCL Press', 'created_at': 'x'})

        assert updated.publisher == 'UCL Press'
        assert updated.title == 'Aymara Phonology'
        assert updated.created_at is None
        assert updated.updated_at is not None

    def test_update_is_idempotent(self, bibliography_ops, catalogue):
        record_id = catalogue[2]['id']
        changes = {'keywords': 'morphology', 'source': 'library'}

        first = bibliography_ops.update_bibliography(record_id, changes).to_dict()
        second = bibliography_ops.update_bibliography(record_id, changes).to_dict()

        first.pop('updated_at')
        second.pop('updated_at')
        assert first == second

    def test_update_rejects_empty_title(self, bibliography_ops, catalogue):
        with pytest.raises(ValidationError):
            bibliography_ops.update_bibliography(catalogue[0]['id'], {'title': ''})

    def test_update_unknown_record(self, bibliography_ops):
        with pytest.raises(NotFoundError):
            bibliography_ops.update_bibliography('5f5e1000' + '0' * 16, {'title': 'x'})

    def test_get_malformed_id(self, bibliography_ops):
        with pytest.raises(NotFoundError):
            bibliography_ops.get_bibliography('not-an-id')

    def test_delete_is_soft(self, bibliography_ops, catalogue, fake_supabase):
        record_id = catalogue[0]['id']

        assert bibliography_ops.delete_bibliography(record_id, deleted_by='admin-1') is True

        row = next(row for row in fake_supabase.tables['bibliographies'] if row['id'] == record_id)
        assert row['is_deleted'] is True
        assert row['deleted_by'] == 'admin-1'
        with pytest.raises(NotFoundError):
            bibliography_ops.get_bibliography(record_id)
        with pytest.raises(NotFoundError):
            bibliography_ops.delete_bibliography(record_id)

    def test_next_and_previous(self, bibliography_ops, catalogue):
        middle = catalogue[2]['id']

        assert bibliography_ops.get_next_bibliography(middle).title == 'Language Contact'
        assert bibliography_ops.get_previous_bibliography(middle).title == 'Aymara Phonology'
        assert bibliography_ops.get_next_bibliography(catalogue[-1]['id']) is None
        assert bibliography_ops.get_previous_bibliography(catalogue[0]['id']) is None
