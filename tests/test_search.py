"""Search and resolution.

Trigram, full text and coordinate queries need PostgreSQL with pg_trgm and
only run when TEST_DATABASE_URL is set. Table lookups by id also run on
SQLite.
"""

import math

import pytest

from models import DataTable, DataTableDataset, Dataset, Geography, SummaryLevel, Year
from services.search import EARTH_RADIUS_KM, SearchService, spherical_distance_km
from sources.loading import insert_or_skip


def seed_catalog(session_factory):
    with session_factory.get_session() as session:
        insert_or_skip(session, Year, [{'year': 2022}, {'year': 2023}], 'year')
        year_ids = {year.year: year.id for year in session.query(Year)}

        insert_or_skip(session, Dataset, [
            {'dataset_id': dataset_id, 'name': dataset_id, 'description': '', 'type': 'aggregate',
             'year_id': year_ids[year]}
            for dataset_id, year in (
                ('ACSDT5Y2023', 2023), ('ACSDT1Y2022', 2022), ('ACSDT5Y2022', 2022),
            )
        ], 'dataset_id')
        dataset_ids = {dataset.dataset_id: dataset.id for dataset in session.query(Dataset)}

        insert_or_skip(session, DataTable, [
            {'data_table_id': 'B01001', 'label': 'Sex by Age'},
            {'data_table_id': 'B01001A', 'label': 'Sex by Age (White Alone)'},
            {'data_table_id': 'B19013', 'label': 'Median Household Income'},
        ], 'data_table_id')
        table_ids = {table.data_table_id: table.id for table in session.query(DataTable)}

        insert_or_skip(session, DataTableDataset, [
            {'data_table_id': table_ids[table], 'dataset_id': dataset_ids[dataset], 'label': label}
            for table, dataset, label in (
                ('B01001', 'ACSDT5Y2023', 'Sex by Age'),
                ('B01001', 'ACSDT1Y2022', ' SEX BY AGE '),
                ('B01001', 'ACSDT5Y2022', 'Sex by Age'),
                ('B01001A', 'ACSDT5Y2022', 'Sex by Age (White Alone)'),
                ('B19013', 'ACSDT5Y2022', 'Median Household Income'),
                ('B19013', 'ACSDT5Y2023', 'Median Household Income (2023 Dollars)'),
            )
        ], ['dataset_id', 'data_table_id'])


class TestSphericalDistance:

    def test_known_distance(self):
        los_angeles_to_san_francisco = spherical_distance_km(34.0522, -118.2437, 37.7749, -122.4194)
        assert los_angeles_to_san_francisco == pytest.approx(559, rel=0.01)

    def test_same_point(self):
        assert spherical_distance_km(40.7128, -74.006, 40.7128, -74.006) == pytest.approx(0.0, abs=1e-3)

    def test_antipodes(self):
        assert spherical_distance_km(0, 0, 0, 180) == pytest.approx(math.pi * EARTH_RADIUS_KM)

    def test_symmetric(self):
        assert spherical_distance_km(10, 20, 30, 40) == pytest.approx(spherical_distance_km(30, 40, 10, 20))


class TestSearchDataTables:

    @pytest.fixture
    def search(self, session_factory):
        seed_catalog(session_factory)
        return SearchService(session_factory)

    def test_prefix_match(self, search):
        results = search.search_data_tables(data_table_id='B01001')
        assert [table['data_table_id'] for table in results] == ['B01001', 'B01001A']

    def test_prefix_match_is_case_insensitive(self, search):
        assert [table['data_table_id'] for table in search.search_data_tables(data_table_id='b19')] == ['B19013']

    def test_datasets_ordered_by_year(self, search):
        table = search.search_data_tables(data_table_id='B01001')[0]

        assert table['label'] == 'Sex by Age'
        assert [entry['year'] for entry in table['datasets']] == [2022, 2022, 2023]
        assert [entry['dataset_id'] for entry in table['datasets']] == [
            'ACSDT1Y2022', 'ACSDT5Y2022', 'ACSDT5Y2023',
        ]

    def test_label_only_when_it_differs(self, search):
        sex_by_age = search.search_data_tables(data_table_id='B01001')[0]
        income = search.search_data_tables(data_table_id='B19013')[0]

        assert all('label' not in entry for entry in sex_by_age['datasets'])
        assert income['datasets'] == [
            {'dataset_id': 'ACSDT5Y2022', 'year': 2022},
            {'dataset_id': 'ACSDT5Y2023', 'year': 2023,
             'label': 'Median Household Income (2023 Dollars)'},
        ]

    def test_scoped_to_dataset(self, search):
        results = search.search_data_tables(dataset_id='ACSDT5Y2023')

        assert [table['data_table_id'] for table in results] == ['B01001', 'B19013']
        assert all(len(table['datasets']) == 1 for table in results)

    def test_limit(self, search):
        assert len(search.search_data_tables(data_table_id='B', limit=2)) == 2

    def test_no_match(self, search):
        assert search.search_data_tables(data_table_id='S2701') == []

    @pytest.mark.parametrize('pattern', ['B0100_', 'B%', '%', '_01001'])
    def test_wildcards_are_literal(self, search, pattern):
        assert search.search_data_tables(data_table_id=pattern) == []

    def test_requires_a_parameter(self, search):
        with pytest.raises(ValueError):
            search.search_data_tables()


@pytest.fixture
def pg_search(postgres_factory):
    with postgres_factory.get_session() as session:
        insert_or_skip(session, SummaryLevel, [
            {'name': name, 'get_variable': variable, 'query_name': query, 'on_spine': True,
             'code': code, 'hierarchy_level': level}
            for name, variable, query, code, level in (
                ('United States', 'NATION', 'us', '010', 1),
                ('State', 'STATE', 'state', '040', 2),
                ('County', 'COUNTY', 'county', '050', 4),
                ('Place', 'PLACE', 'place', '160', 3),
            )
        ], 'code')
        insert_or_skip(session, Geography, [
            {'name': name, 'full_name': full_name, 'ucgid_code': ucgid, 'summary_level_code': level,
             'state_code': state, 'latitude': lat, 'longitude': lon, 'population': population,
             'for_param': for_param}
            for name, full_name, ucgid, level, state, lat, lon, population, for_param in (
                ('California', None, '0400000US06', '040', '06', 37.155, -119.543, 39029342, 'state:06'),
                ('Los Angeles County, California', 'Los Angeles County', '0500000US06037', '050',
                 '06', 34.196, -118.262, 9721138, 'county:037'),
                ('Los Angeles city, California', 'Los Angeles', '1600000US0644000', '160',
                 '06', 34.019, -118.411, 3822238, 'place:44000'),
                ('San Francisco city, California', 'San Francisco', '1600000US0667000', '160',
                 '06', 37.727, -123.032, 808437, 'place:67000'),
                ('Portland city, Oregon', 'Portland', '1600000US4159000', '160',
                 '41', 45.537, -122.650, 635067, 'place:59000'),
            )
        ], 'ucgid_code')
    return SearchService(postgres_factory)


class TestPostgresSearch:

    def test_full_text_places(self, pg_search):
        results = pg_search.search_places('Los Angeles')

        assert {row['name'] for row in results} >= {
            'Los Angeles County, California', 'Los Angeles city, California',
        }

    def test_full_text_filters(self, pg_search):
        results = pg_search.search_places('Los Angeles', type_filter=['160'])
        assert [row['ucgid_code'] for row in results] == ['1600000US0644000']
        assert pg_search.search_places('Portland', state_filter='06') == []

    def test_fuzzy_places_tolerate_misspelling(self, pg_search):
        results = pg_search.fuzzy_search_places('San Fransisco')
        assert results[0]['name'] == 'San Francisco city, California'

    def test_resolve_by_coordinates(self, pg_search):
        results = pg_search.resolve_by_coordinates(34.05, -118.25, max_distance_km=50)

        assert [row['ucgid_code'] for row in results] == ['1600000US0644000', '0500000US06037']
        assert results[0]['distance_km'] <= results[1]['distance_km'] <= 50

    def test_resolve_by_coordinates_exact_point(self, pg_search):
        results = pg_search.resolve_by_coordinates(34.019, -118.411, max_distance_km=1)
        assert results[0]['distance_km'] == pytest.approx(0.0, abs=1e-3)

    def test_search_by_summary_level(self, pg_search):
        results = pg_search.search_geographies_by_summary_level('Los Angeles', '160')
        assert [row['name'] for row in results] == ['Los Angeles city, California']
        assert results[0]['summary_level_name'] == 'Place'

    def test_search_geographies_prefers_common_levels(self, pg_search):
        results = pg_search.search_geographies('California')
        assert results[0]['name'] == 'California'

    @pytest.mark.parametrize('term, code', [
        ('50', '050'),
        ('160', '160'),
        ('state', '040'),
        ('Count', '050'),
    ])
    def test_search_summary_levels(self, pg_search, term, code):
        assert pg_search.search_summary_levels(term)[0]['code'] == code


def add_places(factory, places):
    with factory.get_session() as session:
        insert_or_skip(session, Geography, [
            {'name': name, 'ucgid_code': ucgid, 'summary_level_code': level, 'state_code': state,
             'population': population, 'for_param': for_param}
            for name, ucgid, level, state, population, for_param in places
        ], 'ucgid_code')


class TestPostgresFuzzyRanking:

    def test_exact_name_ranks_first(self, pg_search, postgres_factory):
        add_places(postgres_factory, [
            ('Philadelphia County', '0500000US42101', '050', '42', 1550542, 'county:101'),
            ('Philadelphia', '1600000US4260000', '160', '42', 1550542, 'place:60000'),
        ])
        results = pg_search.fuzzy_search_places('Philadelphia')

        assert [row['name'] for row in results] == ['Philadelphia', 'Philadelphia County']
        assert results[0]['similarity_score'] > results[1]['similarity_score']

    def test_ties_broken_by_population(self, pg_search, postgres_factory):
        add_places(postgres_factory, [
            ('Springfield', '1600000US1772000', '160', '17', 114394, 'place:72000'),
            ('Springfield', '1600000US2970000', '160', '29', 169176, 'place:70000'),
            ('Springfield', '1600000US2567000', '160', '25', 155929, 'place:67000'),
        ])
        results = pg_search.fuzzy_search_places('Springfield')

        assert [row['population'] for row in results] == [169176, 155929, 114394]
        assert len({row['similarity_score'] for row in results}) == 1


class TestPostgresTableLabelSearch:

    @pytest.fixture
    def pg_tables(self, postgres_factory):
        seed_catalog(postgres_factory)
        return SearchService(postgres_factory)

    def test_canonical_label_ranked_by_similarity(self, pg_tables):
        results = pg_tables.search_data_tables(label_query='Sex by Age')

        assert [table['data_table_id'] for table in results] == ['B01001', 'B01001A']
        # ' SEX BY AGE ' matches the canonical label once case and spacing are ignored
        assert all('label' not in entry for entry in results[0]['datasets'])
        assert [entry['dataset_id'] for entry in results[0]['datasets']] == [
            'ACSDT1Y2022', 'ACSDT5Y2022', 'ACSDT5Y2023',
        ]

    def test_scoped_label_matches_dataset_label(self, pg_tables):
        results = pg_tables.search_data_tables(
            label_query='Median Household Income 2023 Dollars', dataset_id='ACSDT5Y2023',
        )

        assert results == [{
            'data_table_id': 'B19013',
            'label': 'Median Household Income',
            'datasets': [{'dataset_id': 'ACSDT5Y2023', 'year': 2023,
                          'label': 'Median Household Income (2023 Dollars)'}],
        }]

    def test_scoped_label_excludes_other_datasets(self, pg_tables):
        results = pg_tables.search_data_tables(label_query='Sex by Age', dataset_id='ACSDT1Y2022')

        assert [table['data_table_id'] for table in results] == ['B01001']
        assert results[0]['datasets'] == [{'dataset_id': 'ACSDT1Y2022', 'year': 2022}]
