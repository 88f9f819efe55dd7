import os
from pathlib import Path

from dotenv import load_dotenv
from loguru import logger

# Load environment variables from .env file if it exists
load_dotenv()

# Paths
PROJ_ROOT = Path(__file__).resolve().parents[1]
logger.info(f"PROJ_ROOT path is: {PROJ_ROOT}")

DATA_DIR = PROJ_ROOT / "data"
RAW_DATA_DIR = DATA_DIR / "raw"
INTERIM_DATA_DIR = DATA_DIR / "interim"
PROCESSED_DATA_DIR = DATA_DIR / "processed"
EXTERNAL_DATA_DIR = DATA_DIR / "external"

REPORTS_DIR = PROJ_ROOT / "reports"
FIGURES_DIR = REPORTS_DIR / "figures"
MODEL_ARTIFACTS_DIR = REPORTS_DIR / "models"

POLL_SITES_CSV = RAW_DATA_DIR / "poll_sites.csv"
ADDRESS_CORRECTIONS_FILE = Path(
    os.getenv("ADDRESS_CORRECTIONS_FILE", str(EXTERNAL_DATA_DIR / "address_corrections.json"))
)

GEOCODED_SITES_PARQUET = INTERIM_DATA_DIR / "poll_sites_geocoded.parquet"
TRACTS_PARQUET = INTERIM_DATA_DIR / "tracts_population.parquet"
DEMOGRAPHICS_PARQUET = INTERIM_DATA_DIR / "tract_demographics_long.parquet"
TRACT_SUMMARY_PARQUET = PROCESSED_DATA_DIR / "tract_summary.parquet"
TRACT_SUMMARY_CSV = PROCESSED_DATA_DIR / "tract_summary.csv"
REPORT_MD = REPORTS_DIR / "poll_site_report.md"

# Census
CENSUS_API_BASE_URL = "https://api.census.gov/data"
CENSUS_API_KEY = os.getenv("CENSUS_API_KEY") or None
ACS_YEAR = int(os.getenv("ACS_YEAR", "2021"))
ACS_DATASET = "acs/acs5"
TRACT_SHAPES_URL = "https://www2.census.gov/geo/tiger/GENZ{year}/shp/cb_{year}_{state}_tract_500k.zip"

STATE_FIPS = "36"
STATE_ABBR = "NY"

# Borough label (as written in the poll-site file) -> county FIPS
BOROUGH_COUNTY_FIPS = {
    "BRONX": "005",
    "BROOKLYN": "047",
    "MANHATTAN": "061",
    "QUEENS": "081",
    "STATEN ISLAND": "085",
}
BOROUGHS = tuple(BOROUGH_COUNTY_FIPS)

# Geocoding
GEOCODER_URL = "https://geocoding.geo.census.gov/geocoder/locations/onelineaddress"
GEOCODER_BENCHMARK = os.getenv("GEOCODER_BENCHMARK", "Public_AR_Current")
GEOCODE_SLEEP_S = float(os.getenv("GEOCODE_SLEEP_S", "0.2") or "0.2")
# Census Geocoder and poll-site file coordinates are NAD83 longitude/latitude
SITE_CRS = "EPSG:4269"

# Choropleth class breaks for tract population
POPULATION_BREAKS = [0, 1000, 2000, 3000, 5000, 10000, 15000, 20000]

# If tqdm is installed, configure loguru with tqdm.write
# https://github.com/Delgan/loguru/issues/135
try:
    from tqdm import tqdm

    logger.remove(0)
    logger.add(lambda msg: tqdm.write(msg, end=""), colorize=True)
except ModuleNotFoundError:
    pass
