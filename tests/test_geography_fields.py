"""Validation and mapping of geoinfo responses."""

import pytest

from core.exceptions import ValidationError
from sources.geography.fields import GEOGRAPHY_TYPES, transform_geography_rows

COUNTY_HEADER = ['NAME', 'SUMLEVEL', 'GEO_ID', 'STATE', 'COUNTY', 'INTPTLAT', 'INTPTLON', 'state', 'county']


def county_row(**overrides):
    row = {
        'NAME': 'Los Angeles County, California',
        'SUMLEVEL': '050',
        'GEO_ID': '0500000US06037',
        'STATE': '06',
        'COUNTY': '037',
        'INTPTLAT': '34.1963983',
        'INTPTLON': '-118.2618616',
        'state': '06',
        'county': '037',
    }
    row.update(overrides)
    return [row[header] for header in COUNTY_HEADER]


class TestTransformGeographyRows:

    def test_maps_fields_to_columns(self):
        records = transform_geography_rows([COUNTY_HEADER, county_row()], 'county')

        assert len(records) == 1
        record = records[0]
        assert record['name'] == 'Los Angeles County, California'
        assert record['ucgid_code'] == '0500000US06037'
        assert record['summary_level_code'] == '050'
        assert record['state_code'] == '06'
        assert record['county_code'] == '037'
        assert record['latitude'] == pytest.approx(34.1963983)
        assert record['longitude'] == pytest.approx(-118.2618616)
        assert record['created_at'] == record['updated_at']

    def test_ignores_unmapped_filter_columns(self):
        record = transform_geography_rows([COUNTY_HEADER, county_row()], 'county')[0]
        assert 'state' not in record
        assert 'county' not in record

    def test_header_order_does_not_matter(self):
        header = list(reversed(COUNTY_HEADER))
        row = list(reversed(county_row()))
        record = transform_geography_rows([header, row], 'county')[0]
        assert record['county_code'] == '037'

    def test_requires_header_and_data_row(self):
        with pytest.raises(ValidationError) as excinfo:
            transform_geography_rows([COUNTY_HEADER], 'county')
        assert excinfo.value.rule == 'min_rows'
        assert excinfo.value.geography_type == 'county'

    def test_rejects_non_tabular_response(self):
        with pytest.raises(ValidationError) as excinfo:
            transform_geography_rows({'error': 'unknown variable'}, 'county')
        assert excinfo.value.rule == 'response_shape'

    def test_missing_required_header(self):
        header = [h for h in COUNTY_HEADER if h != 'INTPTLAT']
        row = county_row()
        del row[COUNTY_HEADER.index('INTPTLAT')]

        with pytest.raises(ValidationError) as excinfo:
            transform_geography_rows([header, row], 'county')
        assert excinfo.value.rule == 'required_fields'
        assert 'INTPTLAT' in str(excinfo.value)

    def test_row_cardinality_mismatch(self):
        with pytest.raises(ValidationError) as excinfo:
            transform_geography_rows([COUNTY_HEADER, county_row(), county_row()[:-1]], 'county')
        assert excinfo.value.rule == 'row_cardinality'
        assert 'Row 2' in str(excinfo.value)

    @pytest.mark.parametrize('field, value', [
        ('NAME', ''),
        ('GEO_ID', '   '),
        ('STATE', '6'),
        ('COUNTY', '37'),
        ('INTPTLAT', '91.0'),
        ('INTPTLON', '-180.5'),
        ('INTPTLAT', 'north'),
    ])
    def test_field_constraints(self, field, value):
        with pytest.raises(ValidationError) as excinfo:
            transform_geography_rows([COUNTY_HEADER, county_row(**{field: value})], 'county')
        assert excinfo.value.rule == field

    def test_summary_level_must_match_type(self):
        with pytest.raises(ValidationError) as excinfo:
            transform_geography_rows([COUNTY_HEADER, county_row(SUMLEVEL='040')], 'county')
        assert excinfo.value.rule == 'SUMLEVEL'

    def test_one_bad_row_fails_whole_batch(self):
        rows = [COUNTY_HEADER, county_row(), county_row(GEO_ID='0500000US06001', COUNTY='1')]
        with pytest.raises(ValidationError):
            transform_geography_rows(rows, 'county')

    def test_boundary_coordinates_accepted(self):
        record = transform_geography_rows(
            [COUNTY_HEADER, county_row(INTPTLAT='-90', INTPTLON='180')], 'county'
        )[0]
        assert record['latitude'] == -90.0
        assert record['longitude'] == 180.0

    def test_unknown_geography_type(self):
        with pytest.raises(ValidationError) as excinfo:
            transform_geography_rows([COUNTY_HEADER, county_row()], 'tract')
        assert excinfo.value.rule == 'geography_type'


class TestGeographyTypes:

    def test_every_type_requires_base_fields(self):
        for geography in GEOGRAPHY_TYPES.values():
            assert {'NAME', 'SUMLEVEL', 'GEO_ID'} <= set(geography.required_fields)

    def test_sub_national_types_require_coordinates(self):
        for name in ('state', 'county', 'county_subdivision', 'place', 'zip_code_tabulation_area'):
            assert {'INTPTLAT', 'INTPTLON'} <= set(GEOGRAPHY_TYPES[name].required_fields)

    def test_summary_levels(self):
        assert GEOGRAPHY_TYPES['county_subdivision'].summary_level == '060'
        assert GEOGRAPHY_TYPES['zip_code_tabulation_area'].summary_level == '860'
