"""Geography importers, one per summary level."""

from typing import Any

from core.exceptions import ValidationError

from ..registry import register
from .base import FetchPlan, GeographySource, StateContainedSource, region_for_division
from .fields import BASE_FIELDS

COORDINATES = ('INTPTLAT', 'INTPTLON')


@register
class NationSource(GeographySource):
    name = "nation"
    description = "Nation (010)"
    geography_type = "nation"

    def for_param(self, record: dict[str, Any]) -> str:
        return 'us:*'


@register
class RegionSource(GeographySource):
    name = "region"
    description = "Census Regions (020)"
    geography_type = "region"
    fields = BASE_FIELDS + ('REGION',) + COORDINATES

    def assign_derived_fields(self, records: list[dict[str, Any]]) -> None:
        for record in records:
            if not record.get('region_code'):
                raise ValidationError(f"Missing region_code for region: {record['ucgid_code']}",
                                      geography_type=self.geography_type, rule='region_code')

    def for_param(self, record: dict[str, Any]) -> str:
        return f"region:{record['region_code']}"


@register
class DivisionSource(GeographySource):
    """Divisions; the API omits their region, which is assigned from the lookup."""

    name = "division"
    description = "Census Divisions (030)"
    geography_type = "division"
    fields = BASE_FIELDS + ('DIVISION',) + COORDINATES

    def assign_derived_fields(self, records: list[dict[str, Any]]) -> None:
        for record in records:
            record['region_code'] = region_for_division(record.get('division_code'))

    def for_param(self, record: dict[str, Any]) -> str:
        return f"division:{record['division_code']}"


@register
class StateSource(StateContainedSource):
    name = "state"
    description = "States (040)"
    geography_type = "state"
    fields = BASE_FIELDS + ('STATE',) + COORDINATES

    def for_param(self, record: dict[str, Any]) -> str:
        return f"state:{record['state_code']}"


@register
class CountySource(StateContainedSource):
    name = "county"
    description = "Counties (050)"
    geography_type = "county"
    fields = BASE_FIELDS + ('STATE', 'COUNTY') + COORDINATES

    def for_param(self, record: dict[str, Any]) -> str:
        return f"county:{record['county_code']}"

    def in_param(self, record: dict[str, Any]) -> str | None:
        return f"state:{record['state_code']}"


@register
class CountySubdivisionSource(StateContainedSource):
    """County subdivisions, requested one state at a time."""

    name = "county_subdivision"
    description = "County Subdivisions (060)"
    geography_type = "county_subdivision"
    fetch_plan = FetchPlan.PER_STATE
    fields = BASE_FIELDS + ('STATE', 'COUNTY', 'COUSUB') + COORDINATES

    def for_param(self, record: dict[str, Any]) -> str:
        return f"county%20subdivision:{record['county_subdivision_code']}"

    def in_param(self, record: dict[str, Any]) -> str | None:
        return f"state:{record['state_code']}%20county:{record['county_code']}"


@register
class PlaceSource(StateContainedSource):
    name = "place"
    description = "Places (160)"
    geography_type = "place"
    fields = BASE_FIELDS + ('STATE', 'PLACE') + COORDINATES

    def for_param(self, record: dict[str, Any]) -> str:
        return f"place:{record['place_code']}"

    def in_param(self, record: dict[str, Any]) -> str | None:
        return f"state:{record['state_code']}"


@register
class ZipCodeTabulationAreaSource(GeographySource):
    name = "zip_code_tabulation_area"
    description = "ZIP Code Tabulation Areas (860)"
    geography_type = "zip_code_tabulation_area"
    fields = BASE_FIELDS + COORDINATES + ('ZCTA',)

    def for_param(self, record: dict[str, Any]) -> str:
        return f"zip%20code%20tabulation%20area:{record['zip_code_tabulation_area']}"


# Dependency order: every type's parent level is imported before it
IMPORT_ORDER = (
    'nation', 'region', 'division', 'state', 'county',
    'county_subdivision', 'place', 'zip_code_tabulation_area',
)
