"""Constants for catalog endpoints, data sources and workflow defaults."""

DEFAULT_DATA_DIR = "./data"
DEFAULT_OUTPUT_DIR = "./output"
DEFAULT_HTTP_TIMEOUT = 300.0
DEFAULT_OSM_TIMEOUT = 180
DEFAULT_DOWNLOAD_RETRIES = 3
DEFAULT_RETRY_DELAY = 2.0
DOWNLOAD_CHUNK_SIZE = 8192

DEFAULT_STAC_API_URL = "https://planetarycomputer.microsoft.com/api/stac/v1"
DEFAULT_STAC_PROVIDER = "planetary-computer"

DEFAULT_BASINS_ARCHIVE_URL = "https://data.hydrosheds.org/file/HydroBASINS/standard/hybas_af_lev06_v1c.zip"
DEFAULT_OUTLET_LON = -5.93
DEFAULT_OUTLET_LAT = 34.18
DEFAULT_POINT_CRS = "EPSG:4326"

BOUNDARY_POLICY_ERROR = "error"
BOUNDARY_POLICY_FIRST = "first"
BOUNDARY_SELECTION_POLICIES = (BOUNDARY_POLICY_ERROR, BOUNDARY_POLICY_FIRST)
DEFAULT_BOUNDARY_SELECTION_POLICY = BOUNDARY_POLICY_ERROR

DEFAULT_RIVER_NAME = "Sebou"
DEFAULT_RIVER_TAG = "river"
RIVER_NAME_COLUMNS = ("name", "name:en", "name:fr")

DEFAULT_ELEVATION_COLLECTION = "nasadem"
DEFAULT_ELEVATION_NODATA = -32768

DEFAULT_CLIMATE_COLLECTION = "nasa-nex-gddp-cmip6"
DEFAULT_CLIMATE_MODEL = "ACCESS-CM2"
DEFAULT_CLIMATE_SCENARIO = "ssp585"
DEFAULT_CLIMATE_VARIABLE = "tas"
DEFAULT_CLIMATE_DATETIME = "2050-01-01/2050-12-31"
CLIMATE_MODEL_PROPERTY = "cmip6:model"
CLIMATE_SCENARIO_PROPERTY = "cmip6:scenario"

ITEM_SELECTION_FIRST = "first"
ITEM_SELECTION_ALL = "all"
ITEM_SELECTION_MODES = (ITEM_SELECTION_FIRST, ITEM_SELECTION_ALL)
DEFAULT_ITEM_SELECTION = ITEM_SELECTION_FIRST

ELEVATION_ASSET_PREFERENCES: list[str] = ["elevation", "data"]

KELVIN_OFFSET = 273.15

DEFAULT_BASEMAP_TILES = "OpenStreetMap"
ELEVATION_COLORMAP = "terrain"
CLIMATE_COLORMAP = "coolwarm"
