"""End-to-end geography imports against a fake geoinfo endpoint."""

import logging

import pytest
from sqlalchemy import func, select
from sqlalchemy.orm import aliased

from conftest import FakeHttpClient
from core.exceptions import ExternalFetchError, ValidationError
from models import Geography, GeographyYear, Year
from sources.base import PipelineContext
from sources.geography import IMPORT_ORDER, GEOGRAPHY_TYPES
from sources.geography.base import GeographySource, region_for_division
from sources.loading import insert_or_skip
from sources.registry import get_registry

# Canned geoinfo rows keyed by the "for" predicate name; keys are API field names
GEOINFO = {
    'us': [
        {'NAME': 'United States', 'SUMLEVEL': '010', 'GEO_ID': '0100000US',
         'INTPTLAT': '39.8283', 'INTPTLON': '-98.5795'},
    ],
    'region': [
        {'NAME': 'Northeast Region', 'SUMLEVEL': '020', 'GEO_ID': '0200000US1', 'REGION': '1',
         'INTPTLAT': '41.6', 'INTPTLON': '-74.3'},
        {'NAME': 'West Region', 'SUMLEVEL': '020', 'GEO_ID': '0200000US4', 'REGION': '4',
         'INTPTLAT': '40.1', 'INTPTLON': '-115.8'},
    ],
    'division': [
        {'NAME': 'Middle Atlantic Division', 'SUMLEVEL': '030', 'GEO_ID': '0300000US2',
         'DIVISION': '2', 'INTPTLAT': '41.1', 'INTPTLON': '-76.4'},
        {'NAME': 'Pacific Division', 'SUMLEVEL': '030', 'GEO_ID': '0300000US9',
         'DIVISION': '9', 'INTPTLAT': '41.2', 'INTPTLON': '-120.9'},
    ],
    'state': [
        {'NAME': 'California', 'SUMLEVEL': '040', 'GEO_ID': '0400000US06', 'STATE': '06',
         'INTPTLAT': '37.1551773', 'INTPTLON': '-119.5434183'},
        {'NAME': 'New York', 'SUMLEVEL': '040', 'GEO_ID': '0400000US36', 'STATE': '36',
         'INTPTLAT': '42.9133974', 'INTPTLON': '-75.5962723'},
        {'NAME': 'Puerto Rico', 'SUMLEVEL': '040', 'GEO_ID': '0400000US72', 'STATE': '72',
         'INTPTLAT': '18.2176480', 'INTPTLON': '-66.4107992'},
    ],
    'county': [
        {'NAME': 'Los Angeles County, California', 'SUMLEVEL': '050', 'GEO_ID': '0500000US06037',
         'STATE': '06', 'COUNTY': '037', 'INTPTLAT': '34.1963983', 'INTPTLON': '-118.2618616'},
        {'NAME': 'Kings County, New York', 'SUMLEVEL': '050', 'GEO_ID': '0500000US36047',
         'STATE': '36', 'COUNTY': '047', 'INTPTLAT': '40.6355000', 'INTPTLON': '-73.9501000'},
    ],
    'county subdivision': [
        {'NAME': 'Long Beach CCD, Los Angeles County, California', 'SUMLEVEL': '060',
         'GEO_ID': '0600000US0603791400', 'STATE': '06', 'COUNTY': '037', 'COUSUB': '91400',
         'INTPTLAT': '33.8', 'INTPTLON': '-118.2'},
        {'NAME': 'Brooklyn borough, Kings County, New York', 'SUMLEVEL': '060',
         'GEO_ID': '0600000US3604710022', 'STATE': '36', 'COUNTY': '047', 'COUSUB': '10022',
         'INTPTLAT': '40.6', 'INTPTLON': '-73.9'},
    ],
    'place': [
        {'NAME': 'Los Angeles city, California', 'SUMLEVEL': '160', 'GEO_ID': '1600000US0644000',
         'STATE': '06', 'PLACE': '44000', 'INTPTLAT': '34.0194', 'INTPTLON': '-118.4108'},
    ],
    'zip code tabulation area': [
        {'NAME': 'ZCTA5 90012', 'SUMLEVEL': '860', 'GEO_ID': '860Z200US90012', 'ZCTA': '90012',
         'INTPTLAT': '34.0614', 'INTPTLON': '-118.2385'},
    ],
}


def geoinfo_responder(overrides=None):
    """Serve GEOINFO in the API's header-plus-rows shape, honoring get= and in=state:."""
    data = {**GEOINFO, **(overrides or {})}

    def respond(url, params):
        fields = params['get'].split(',')
        predicate = params['for'].split(':')[0]
        rows = data[predicate]

        if 'in' in params:
            state = params['in'].split(':')[1]
            rows = [row for row in rows if row.get('STATE') == state]

        return [fields] + [[row.get(field, '') for field in fields] for row in rows]

    return respond


@pytest.fixture
def container(make_container):
    def _container(responder=None, territories=('72',), **source_config):
        sources = {name: {'enabled': True, **source_config.get(name, {})} for name in IMPORT_ORDER}
        http_client = FakeHttpClient(responder or geoinfo_responder())
        return make_container(sources=sources, http_client=http_client, years=[2023],
                              territories=list(territories))
    return _container


def run(container, name, context=None):
    source = get_registry().create_source(name, container)
    return source.run(context or PipelineContext(year=2023))


def import_all(container, names=IMPORT_ORDER):
    return {name: run(container, name) for name in names}


def find(session, ucgid):
    return session.execute(select(Geography).where(Geography.ucgid_code == ucgid)).scalar_one()


def parent_ucgid(session, ucgid):
    parent = aliased(Geography)
    return session.execute(
        select(parent.ucgid_code)
        .join(Geography, Geography.parent_geography_id == parent.id)
        .where(Geography.ucgid_code == ucgid)
    ).scalar_one_or_none()


class TestImportPipeline:

    def test_full_import(self, container, session_factory):
        results = import_all(container())

        assert all(result['success'] for result in results.values()), results
        assert results['state']['inserted'] == 3
        assert results['county']['inserted'] == 2
        assert results['state']['associated'] == 3

        with session_factory.get_session() as session:
            county = find(session, '0500000US06037')
            assert county.for_param == 'county:037'
            assert county.in_param == 'state:06'
            assert county.region_code == '4'
            assert county.division_code == '9'
            assert county.year == 2023
            assert county.latitude == pytest.approx(34.1963983)

            division = find(session, '0300000US9')
            assert division.region_code == '4'
            assert division.for_param == 'division:9'

            cousub = find(session, '0600000US3604710022')
            assert cousub.for_param == 'county%20subdivision:10022'
            assert cousub.in_param == 'state:36%20county:047'

            zcta = find(session, '860Z200US90012')
            assert zcta.for_param == 'zip%20code%20tabulation%20area:90012'
            assert zcta.in_param is None

            assert find(session, '0100000US').for_param == 'us:*'

    def test_parent_links(self, container, session_factory):
        import_all(container())

        with session_factory.get_session() as session:
            assert parent_ucgid(session, '0100000US') is None
            assert parent_ucgid(session, '0200000US4') == '0100000US'
            assert parent_ucgid(session, '0300000US9') == '0200000US4'
            assert parent_ucgid(session, '0400000US06') == '0300000US9'
            assert parent_ucgid(session, '0500000US06037') == '0400000US06'
            assert parent_ucgid(session, '0600000US0603791400') == '0500000US06037'
            assert parent_ucgid(session, '1600000US0644000') == '0400000US06'
            assert parent_ucgid(session, '860Z200US90012') == '0100000US'

    def test_configured_territory_has_no_region_and_links_to_nation(self, container, session_factory,
                                                                     caplog):
        with caplog.at_level(logging.WARNING):
            import_all(container())

        assert 'Loading territory 72 without region/division (state 0400000US72)' in caplog.text
        with session_factory.get_session() as session:
            puerto_rico = find(session, '0400000US72')
            assert puerto_rico.region_code is None
            assert puerto_rico.division_code is None
            assert parent_ucgid(session, '0400000US72') == '0100000US'

    def test_rerun_is_idempotent(self, container, session_factory):
        first = import_all(container())
        second = import_all(container())

        for name in IMPORT_ORDER:
            assert second[name]['success'], second[name]
            assert second[name]['inserted'] == 0
            assert second[name]['associated'] == 0
            assert second[name]['total'] == first[name]['total']
            assert second[name]['linked'] == first[name]['linked']

        with session_factory.get_session() as session:
            geographies = session.execute(select(func.count(Geography.id))).scalar_one()
            associations = session.execute(select(func.count(GeographyYear.id))).scalar_one()
        assert geographies == sum(len(rows) for rows in GEOINFO.values())
        assert associations == geographies

    def test_new_vintage_associates_existing_geographies(self, container, session_factory):
        states = container()
        run(states, 'state')
        result = run(states, 'state', PipelineContext(year=2022))

        assert result['inserted'] == 0
        assert result['associated'] == 3
        with session_factory.get_session() as session:
            years = session.execute(select(Year.year).order_by(Year.year)).scalars().all()
        assert years == [2022, 2023]

    def test_request_parameters(self, container):
        app = container()
        run(app, 'county')

        url, params = app.get_http_client().calls[0]
        assert url == 'https://api.census.gov/data/2023/geoinfo'
        assert params['get'] == 'NAME,SUMLEVEL,GEO_ID,STATE,COUNTY,INTPTLAT,INTPTLON'
        assert params['for'] == 'county:*'
        assert 'in' not in params

    def test_configured_base_url(self, container):
        app = container(nation={'api': {'base_url': 'http://localhost:9000/data/'}})
        run(app, 'nation')

        url, params = app.get_http_client().calls[0]
        assert url == 'http://localhost:9000/data/2023/geoinfo'
        assert params['for'] == 'us:*'


class TestPerStateFanOut:

    def test_configured_states(self, container, session_factory):
        app = container(county_subdivision={'states': [6, '36']})
        result = run(app, 'county_subdivision')

        assert result['success'], result
        assert result['inserted'] == 2
        in_params = [params['in'] for _, params in app.get_http_client().calls]
        assert in_params == ['state:06', 'state:36']

    def test_stored_states_for_the_year(self, container):
        rows = GEOINFO['county subdivision'] + [
            {'NAME': 'Adjuntas barrio-pueblo, Adjuntas Municipio, Puerto Rico', 'SUMLEVEL': '060',
             'GEO_ID': '0600000US7200100247', 'STATE': '72', 'COUNTY': '001', 'COUSUB': '00247',
             'INTPTLAT': '18.16', 'INTPTLON': '-66.72'},
        ]
        app = container(geoinfo_responder({'county subdivision': rows}))
        run(app, 'state')
        result = run(app, 'county_subdivision')

        assert result['success'], result
        assert result['inserted'] == 3
        in_params = [params['in'] for _, params in app.get_http_client().calls if 'in' in params]
        assert in_params == ['state:06', 'state:36', 'state:72']

    def test_state_without_rows_is_skipped(self, container, session_factory, caplog):
        app = container()
        run(app, 'state')
        with caplog.at_level(logging.INFO):
            result = run(app, 'county_subdivision')

        assert result['success'], result
        assert result['inserted'] == 2
        in_params = [params['in'] for _, params in app.get_http_client().calls if 'in' in params]
        assert in_params == ['state:06', 'state:36', 'state:72']
        assert 'No county_subdivision geographies in state 72' in caplog.text

    def test_no_content_response_is_skipped(self, container):
        respond = geoinfo_responder()

        def no_content_for_new_york(url, params):
            return None if params.get('in') == 'state:36' else respond(url, params)

        app = container(no_content_for_new_york, county_subdivision={'states': ['06', '36']})
        result = run(app, 'county_subdivision')

        assert result['success'], result
        assert result['inserted'] == 1

    def test_all_states_when_none_stored(self, container):
        def one_subdivision_per_state(url, params):
            state = params['in'].split(':')[1]
            fields = params['get'].split(',')
            row = {'NAME': f"Subdivision {state}", 'SUMLEVEL': '060',
                   'GEO_ID': f"0600000US{state}00100001", 'STATE': state, 'COUNTY': '001',
                   'COUSUB': '00001', 'INTPTLAT': '40.0', 'INTPTLON': '-90.0'}
            return [fields, [row[field] for field in fields]]

        app = container(one_subdivision_per_state)
        result = run(app, 'county_subdivision')

        in_params = [params['in'] for _, params in app.get_http_client().calls]
        assert len(in_params) == 51
        assert in_params[0] == 'state:01'
        assert 'state:11' in in_params
        assert 'state:72' not in in_params
        assert result['inserted'] == 51

    def test_context_state_overrides_plan(self, container):
        app = container(county_subdivision={'states': ['06', '36']})
        run(app, 'county_subdivision', PipelineContext(year=2023, state_code='36'))

        assert [params['in'] for _, params in app.get_http_client().calls] == ['state:36']

    def test_one_bad_state_rolls_back_whole_run(self, container, session_factory):
        bad_rows = GEOINFO['county subdivision'] + [
            {'NAME': 'Bad CCD', 'SUMLEVEL': '060', 'GEO_ID': '0600000US3604799999', 'STATE': '36',
             'COUNTY': '047', 'COUSUB': '99999', 'INTPTLAT': '95.0', 'INTPTLON': '-73.9'},
        ]
        app = container(
            geoinfo_responder({'county subdivision': bad_rows}),
            county_subdivision={'states': ['06', '36']},
        )
        result = run(app, 'county_subdivision')

        assert result['success'] is False
        assert result['error_code'] == 'VALIDATION_ERROR'
        with session_factory.get_session() as session:
            assert session.execute(select(func.count(Geography.id))).scalar_one() == 0
            assert session.execute(select(func.count(Year.id))).scalar_one() == 0


class TestFailures:

    def test_fetch_failure_is_reported(self, container, session_factory):
        def unavailable(url, params):
            raise ExternalFetchError(f"API request failed: 503 for {url}", url=url, status_code=503)

        result = run(container(unavailable), 'state')

        assert result['success'] is False
        assert result['error_code'] == 'EXTERNAL_FETCH_ERROR'
        with session_factory.get_session() as session:
            assert session.execute(select(func.count(Geography.id))).scalar_one() == 0

    def test_execute_raises(self, container):
        source = get_registry().create_source('state', container(lambda url, params: [['NAME']]))
        with pytest.raises(ValidationError) as excinfo:
            source.execute(PipelineContext(year=2023))
        assert excinfo.value.rule == 'min_rows'

    def test_year_is_required(self, container):
        result = run(container(), 'county', PipelineContext())
        assert result['success'] is False
        assert result['error_code'] == 'VALIDATION_ERROR'

    def test_duplicate_ucgids_are_dropped(self, container, caplog):
        duplicated = GEOINFO['state'] + GEOINFO['state'][:1]
        with caplog.at_level(logging.WARNING):
            result = run(container(geoinfo_responder({'state': duplicated})), 'state')

        assert result['total'] == 3
        assert 'Duplicate UCGID in response: 0400000US06' in caplog.text

    def test_region_requires_known_division(self):
        assert region_for_division('9') == '4'
        with pytest.raises(ValidationError) as excinfo:
            region_for_division('0')
        assert excinfo.value.rule == 'division_region'
        with pytest.raises(ValidationError):
            region_for_division(None)

    def test_unmapped_state_is_fatal(self, container, session_factory):
        result = run(container(territories=()), 'state')

        assert result['success'] is False
        assert result['error_code'] == 'VALIDATION_ERROR'
        assert 'state 72' in result['error']
        with session_factory.get_session() as session:
            assert session.execute(select(func.count(Geography.id))).scalar_one() == 0

    def test_unmapped_state_rule(self, container):
        source = get_registry().create_source('county', container(territories=()))
        with pytest.raises(ValidationError) as excinfo:
            source.assign_derived_fields([
                {'ucgid_code': '0500000US72001', 'state_code': '72', 'county_code': '001'},
            ])
        assert excinfo.value.rule == 'state_region'

    def test_single_request_with_no_rows_still_fails(self, container):
        result = run(container(lambda url, params: None), 'state')
        assert result['success'] is False
        assert result['error_code'] == 'VALIDATION_ERROR'

    def test_state_contained_records_need_state_code(self, container):
        source = get_registry().create_source('county', container())
        with pytest.raises(ValidationError) as excinfo:
            source.assign_derived_fields([{'ucgid_code': '0500000US00001', 'state_code': None}])
        assert excinfo.value.rule == 'state_code'


def test_default_contexts_follow_configured_years(container):
    app = container(place={'years': [2021, '2022']})
    place = get_registry().create_source('place', app)
    county = get_registry().create_source('county', app)

    assert [ctx.year for ctx in place.default_contexts()] == [2021, 2022]
    assert [ctx.year for ctx in county.default_contexts()] == [2023]


def test_every_geography_type_is_registered():
    registered = get_registry().get_all()
    for name in GEOGRAPHY_TYPES:
        assert name in registered
        assert registered[name].geography_type == name


def test_default_contexts_follow_years_flagged_for_import(container, session_factory):
    with session_factory.get_session() as session:
        insert_or_skip(session, Year, [
            {'year': 2020, 'import_geographies': True},
            {'year': 2021, 'import_geographies': False},
            {'year': 2022, 'import_geographies': True},
        ], 'year')

    app = container(place={'years': [2021]})
    county = get_registry().create_source('county', app)
    place = get_registry().create_source('place', app)

    assert [ctx.year for ctx in county.default_contexts()] == [2020, 2022]
    assert [ctx.year for ctx in place.default_contexts()] == [2021]


def test_geography_sources_must_build_for_param(container):
    class WithoutForParam(GeographySource):
        name = 'county'
        description = 'Counties without a for builder'
        geography_type = 'county'

    with pytest.raises(TypeError):
        WithoutForParam(container())
