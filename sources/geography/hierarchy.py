"""Post-load parent link backfill.

Runs after every insert of a geography type, never interleaved with it.
Each type is linked with a single bulk UPDATE against rows that are already
stored, so the order in which types are imported does not matter as long as
the coarser level exists by the time the backfill runs. Re-running derives
the same links.
"""

from dataclasses import dataclass

from sqlalchemy import and_, func, select, update
from sqlalchemy.orm import Session, aliased

from core.exceptions import ValidationError
from models import Geography

from .fields import get_geography_type

NATION_LEVEL = '010'


@dataclass(frozen=True)
class ParentLink:
    """Parent summary level and the containment columns that must match."""
    parent_level: str
    match_columns: tuple[str, ...] = ()
    fallback_to_nation: bool = False


PARENT_LINKS: dict[str, ParentLink] = {
    'region': ParentLink(NATION_LEVEL),
    'division': ParentLink('020', ('region_code',)),
    'state': ParentLink('030', ('division_code',), fallback_to_nation=True),
    'county': ParentLink('040', ('state_code',)),
    'county_subdivision': ParentLink('050', ('state_code', 'county_code')),
    'place': ParentLink('040', ('state_code',)),
    'zip_code_tabulation_area': ParentLink(NATION_LEVEL),
}


def _parent_subquery(parent_level: str, match_columns: tuple[str, ...]):
    parent = aliased(Geography, name='parent')
    conditions = [parent.summary_level_code == parent_level]
    conditions.extend(
        getattr(parent, column) == getattr(Geography, column) for column in match_columns
    )
    return (
        select(parent.id)
        .where(and_(*conditions))
        .order_by(parent.id)
        .limit(1)
        .correlate(Geography)
        .scalar_subquery()
    )


def backfill_parent_links(session: Session, geography_type: str) -> int:
    """Set parent_geography_id for every stored geography of one type.

    Returns:
        Number of geographies of that type that have a parent afterwards.
    """
    level = get_geography_type(geography_type).summary_level
    link = PARENT_LINKS.get(geography_type)
    if link is None:
        if geography_type == 'nation':
            return 0
        raise ValidationError(
            f"No parent link defined for {geography_type}",
            geography_type=geography_type, rule='parent_link',
        )

    parent_id = _parent_subquery(link.parent_level, link.match_columns)
    if link.fallback_to_nation:
        parent_id = func.coalesce(parent_id, _parent_subquery(NATION_LEVEL, ()))

    session.execute(
        update(Geography)
        .where(Geography.summary_level_code == level)
        .values(parent_geography_id=parent_id)
        .execution_options(synchronize_session=False)
    )

    return session.execute(
        select(func.count(Geography.id)).where(
            Geography.summary_level_code == level,
            Geography.parent_geography_id.is_not(None),
        )
    ).scalar_one()
