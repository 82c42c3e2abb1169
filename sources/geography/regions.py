"""Census region/division membership.

The geoinfo endpoint does not return region or division codes for
sub-national geographies, so they are assigned from this table.
"""

# division code -> (region code, member state FIPS codes)
DIVISIONS: dict[str, tuple[str, tuple[str, ...]]] = {
    '1': ('1', ('09', '23', '25', '33', '44', '50')),                    # New England
    '2': ('1', ('34', '36', '42')),                                      # Middle Atlantic
    '3': ('2', ('17', '18', '26', '39', '55')),                          # East North Central
    '4': ('2', ('19', '20', '27', '29', '31', '38', '46')),              # West North Central
    '5': ('3', ('10', '11', '12', '13', '24', '37', '45', '51', '54')),  # South Atlantic
    '6': ('3', ('01', '21', '28', '47')),                                # East South Central
    '7': ('3', ('05', '22', '40', '48')),                                # West South Central
    '8': ('4', ('04', '08', '16', '30', '32', '35', '49', '56')),        # Mountain
    '9': ('4', ('02', '06', '15', '41', '53')),                          # Pacific
}

DIVISION_TO_REGION: dict[str, str] = {
    division: region for division, (region, _) in DIVISIONS.items()
}

STATE_TO_REGION_DIVISION: dict[str, tuple[str, str]] = {
    state: (region, division)
    for division, (region, states) in DIVISIONS.items()
    for state in states
}

# The 50 states plus DC, in FIPS order
STATE_CODES: tuple[str, ...] = tuple(sorted(STATE_TO_REGION_DIVISION))
