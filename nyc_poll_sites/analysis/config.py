from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, List


@dataclass(frozen=True)
class Columns:
    # Poll-site file
    site_id: str = "SITE_NUMBER"
    site_name: str = "SITE_NAME"
    borough: str = "BOROUGH"
    street_number: str = "STREET_NUMBER"
    street_name: str = "STREET_NAME"
    city: str = "CITY"
    postcode: str = "POSTCODE"
    lat: str = "Latitude"
    lon: str = "Longitude"
    address: str = "ADDRESS"

    # Census tables
    geoid: str = "GEOID"
    name: str = "NAME"
    variable: str = "variable"
    estimate: str = "estimate"
    moe: str = "moe"

    # Derived
    poll_site_count: str = "poll_site_count"
    race_total: str = "race_total"
    income_to_poverty: str = "income_to_poverty"

    @property
    def poll_site_columns(self) -> List[str]:
        return [
            self.site_id, self.site_name, self.borough, self.street_number,
            self.street_name, self.city, self.postcode, self.lat, self.lon,
        ]


COLS = Columns()


class RaceCategory(Enum):
    """ACS B03002 categories; mutually exclusive, so they sum to the table total."""
    NH_WHITE = "nh_white"
    NH_BLACK = "nh_black"
    NH_NATIVE = "nh_native"
    NH_ASIAN = "nh_asian"
    NH_PACIFIC = "nh_pacific"
    NH_OTHER = "nh_other"
    NH_TWO_OR_MORE = "nh_two_or_more"
    HISPANIC = "hispanic"

    @property
    def estimate_col(self) -> str:
        return f"est_{self.value}"

    @property
    def pct_col(self) -> str:
        return f"pct_{self.value}"


@dataclass(frozen=True)
class CensusVariables:
    population: str = "B01003_001"
    income_to_poverty: str = "C17002_008"
    race: Dict[str, RaceCategory] = field(default_factory=lambda: {
        "B03002_003": RaceCategory.NH_WHITE,
        "B03002_004": RaceCategory.NH_BLACK,
        "B03002_005": RaceCategory.NH_NATIVE,
        "B03002_006": RaceCategory.NH_ASIAN,
        "B03002_007": RaceCategory.NH_PACIFIC,
        "B03002_008": RaceCategory.NH_OTHER,
        "B03002_009": RaceCategory.NH_TWO_OR_MORE,
        "B03002_012": RaceCategory.HISPANIC,
    })

    @property
    def demographic(self) -> List[str]:
        return [self.income_to_poverty] + list(self.race)


CENSUS_VARS = CensusVariables()

RACE_PCT_COLS: List[str] = [c.pct_col for c in RaceCategory]
RACE_EST_COLS: List[str] = [c.estimate_col for c in RaceCategory]

# The eight shares sum to 100, so one is left out of the regression as the reference group.
RACE_REFERENCE = RaceCategory.NH_WHITE
RACE_MODEL_COLS: List[str] = [c.pct_col for c in RaceCategory if c is not RACE_REFERENCE]


@dataclass(frozen=True)
class ModelParams:
    response: str = COLS.poll_site_count
    population: List[str] = field(default_factory=lambda: [COLS.estimate])
    full: List[str] = field(default_factory=lambda: (
        [COLS.estimate, COLS.income_to_poverty] + RACE_MODEL_COLS
    ))
    race_reference: RaceCategory = RACE_REFERENCE
    alpha: float = 0.05
