"""Census geoinfo response validation and mapping to geography records.

The geoinfo endpoint answers with a JSON array of rows: the first row names
the fields, every following row holds one geography with the same number of
columns. Validation is all-or-nothing; a single bad row fails the batch.
"""

import logging
import re
from dataclasses import dataclass
from typing import Any, Callable

from core.exceptions import ValidationError
from models import utcnow

logger = logging.getLogger(__name__)

# Census API field name -> geographies column
GEOGRAPHY_MAPPINGS = {
    'NAME': 'name',
    'GEO_ID': 'ucgid_code',
    'SUMLEVEL': 'summary_level_code',
    'REGION': 'region_code',
    'DIVISION': 'division_code',
    'STATE': 'state_code',
    'COUNTY': 'county_code',
    'COUSUB': 'county_subdivision_code',
    'PLACE': 'place_code',
    'ZCTA': 'zip_code_tabulation_area',
    'INTPTLAT': 'latitude',
    'INTPTLON': 'longitude',
}

COORDINATE_FIELDS = ('INTPTLAT', 'INTPTLON')
BASE_FIELDS = ('NAME', 'SUMLEVEL', 'GEO_ID')


@dataclass(frozen=True)
class GeographyType:
    """Static description of one importable geography type."""
    name: str
    summary_level: str
    required_fields: tuple[str, ...]
    # Census API "for" predicate, e.g. "county subdivision"
    query_name: str


GEOGRAPHY_TYPES: dict[str, GeographyType] = {
    'nation': GeographyType('nation', '010', BASE_FIELDS, 'us'),
    'region': GeographyType('region', '020', BASE_FIELDS, 'region'),
    'division': GeographyType('division', '030', BASE_FIELDS, 'division'),
    'state': GeographyType(
        'state', '040', BASE_FIELDS + ('STATE',) + COORDINATE_FIELDS, 'state'
    ),
    'county': GeographyType(
        'county', '050', BASE_FIELDS + ('STATE', 'COUNTY') + COORDINATE_FIELDS, 'county'
    ),
    'county_subdivision': GeographyType(
        'county_subdivision', '060',
        BASE_FIELDS + ('STATE', 'COUNTY', 'COUSUB') + COORDINATE_FIELDS,
        'county subdivision',
    ),
    'place': GeographyType(
        'place', '160', BASE_FIELDS + ('STATE', 'PLACE') + COORDINATE_FIELDS, 'place'
    ),
    'zip_code_tabulation_area': GeographyType(
        'zip_code_tabulation_area', '860', BASE_FIELDS + ('ZCTA',) + COORDINATE_FIELDS,
        'zip code tabulation area',
    ),
}


def _non_empty(label: str) -> Callable[[str], Any]:
    def check(value: str) -> str:
        if not value or not value.strip():
            raise ValueError(f"{label} is required")
        return value.strip()
    return check


def _digits(width: int, label: str) -> Callable[[str], Any]:
    pattern = re.compile(rf"^\d{{{width}}}$")

    def check(value: str) -> str:
        if not pattern.match(value or ''):
            raise ValueError(f"{label} must be exactly {width} digits")
        return value
    return check


def _coordinate(bound: float, label: str) -> Callable[[str], Any]:
    def check(value: str) -> float:
        try:
            number = float(value)
        except (TypeError, ValueError):
            raise ValueError(f"Invalid number for {label}: {value!r}")
        if not -bound <= number <= bound:
            raise ValueError(f"{label} {number} outside [-{bound:g}, {bound:g}]")
        return number
    return check


FIELD_VALIDATORS: dict[str, Callable[[str], Any]] = {
    'NAME': _non_empty('Name'),
    'GEO_ID': _non_empty('UCGID code'),
    'SUMLEVEL': _digits(3, 'Summary level'),
    'REGION': _digits(1, 'Region code'),
    'DIVISION': _digits(1, 'Division code'),
    'STATE': _digits(2, 'State code'),
    'COUNTY': _digits(3, 'County code'),
    'COUSUB': _digits(5, 'County subdivision code'),
    'PLACE': _digits(5, 'Place code'),
    'ZCTA': _digits(5, 'ZCTA code'),
    'INTPTLAT': _coordinate(90, 'Latitude'),
    'INTPTLON': _coordinate(180, 'Longitude'),
}


def get_geography_type(geography_type: str) -> GeographyType:
    try:
        return GEOGRAPHY_TYPES[geography_type]
    except KeyError:
        raise ValidationError(
            f"Unknown geography type '{geography_type}'",
            geography_type=geography_type,
            rule='geography_type',
        )


def transform_geography_rows(raw_rows: Any, geography_type: str) -> list[dict[str, Any]]:
    """Validate a geoinfo response and map it to geography records.

    Args:
        raw_rows: Header row followed by data rows, as returned by the API.
        geography_type: Key of GEOGRAPHY_TYPES.

    Returns:
        One dict per data row keyed by geographies column, with
        created_at/updated_at set. for_param/in_param are left to the source.

    Raises:
        ValidationError: On any structural or field-level violation.
    """
    geo = get_geography_type(geography_type)
    logger.info(f"Transforming {geography_type} data from Census API...")

    if not isinstance(raw_rows, list) or not all(isinstance(row, list) for row in raw_rows):
        raise ValidationError(
            f"{geography_type}: Census API response must be a list of rows",
            geography_type=geography_type, rule='response_shape',
        )

    if len(raw_rows) < 2:
        raise ValidationError(
            f"{geography_type}: Census API response must have at least header row and one data row",
            geography_type=geography_type, rule='min_rows',
        )

    headers = [str(header) for header in raw_rows[0]]
    data_rows = raw_rows[1:]

    missing = [field for field in geo.required_fields if field not in headers]
    if missing:
        raise ValidationError(
            f"Missing required headers for {geography_type}: {', '.join(missing)}",
            geography_type=geography_type, rule='required_fields',
        )

    logger.info(f"Processing {len(data_rows)} records with headers: {', '.join(headers)}")

    # Unmapped headers (the trailing "us", "state" filter columns) are ignored
    mapped = [(index, header) for index, header in enumerate(headers) if header in GEOGRAPHY_MAPPINGS]

    now = utcnow()
    records = []
    errors: list[tuple[str, str]] = []

    for row_number, row in enumerate(data_rows, start=1):
        if len(row) != len(headers):
            raise ValidationError(
                f"{geography_type}: Row {row_number} has {len(row)} values but expected {len(headers)}",
                geography_type=geography_type, rule='row_cardinality',
            )

        record: dict[str, Any] = {}
        for index, header in mapped:
            value = row[index]
            value = '' if value is None else str(value)
            try:
                record[GEOGRAPHY_MAPPINGS[header]] = FIELD_VALIDATORS[header](value)
            except ValueError as e:
                errors.append((header, f"Row {row_number}, field {header}: {e}"))

        if record.get('summary_level_code') not in (None, geo.summary_level):
            errors.append((
                'SUMLEVEL',
                f"Row {row_number}: summary level {record['summary_level_code']} "
                f"does not match {geography_type} ({geo.summary_level})",
            ))

        record['created_at'] = now
        record['updated_at'] = now
        records.append(record)

    if errors:
        logger.error(f"{geography_type} validation failed with {len(errors)} error(s):")
        for _, message in errors[:5]:
            logger.error(message)
        if len(errors) > 5:
            logger.error(f"... and {len(errors) - 5} more validation errors")

        field, message = errors[0]
        raise ValidationError(
            f"{geography_type} validation failed: {message}",
            geography_type=geography_type, rule=field,
        )

    logger.info(f"Successfully validated {len(records)} {geography_type} records")
    return records
