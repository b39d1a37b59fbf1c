"""Constants for detection defaults, band roles and S3 paths."""

DEFAULT_TMP_DIR = "/tmp"
DEFAULT_PARTITION_START_DATE = "2020-01-26"
DEFAULT_CLOUD_COVER_THRESHOLD = 10
DEFAULT_SUN_ELEVATION_THRESHOLD = 20
# Zero-based; most dates have a single scene over a lake-sized ROI
DEFAULT_IMAGE_INDEX = 0

DEFAULT_STAC_COLLECTION = "sentinel-2-l1c"

# Reflectance scaling and literature thresholds (Moussavi et al., 2020)
REFLECTANCE_SCALE = 10000
CLOUD_SWIR_THRESHOLD = 0.1
CLOUD_CIRRUS_THRESHOLD = 0.01
SURFACE_INDEX_THRESHOLD = 0.85
SURFACE_BLUE_THRESHOLD = 0.4
WATER_INDEX_THRESHOLD = 0.18
WATER_GREEN_RED_THRESHOLD = 0.09
DENOMINATOR_EPSILON = 1e-12

LAKE_BAND_NAME = "LakeMask"
DEFAULT_TARGET_RESOLUTION = 10.0
DEFAULT_TARGET_CRS = "EPSG:4326"
DEFAULT_CONNECTIVITY = 8
DEFAULT_TILE_SIZE = 1024
DEFAULT_TILE_SCALE = 16
DEFAULT_MAX_PIXELS = 10_000_000_000
DEFAULT_MAX_COARSEN_FACTOR = 16
DEFAULT_SIMPLIFY_TOLERANCE = 0.25

SENTINEL2_BAND_ROLES: dict[str, str] = {
    "blue": "B2",
    "green": "B3",
    "red": "B4",
    "swir": "B11",
    "cirrus": "B10",
}

# Asset keys differ between STAC providers; first match wins
LAKE_BAND_PREFERENCES: dict[str, list[str]] = {
    "blue": ["B02", "blue", "B2"],
    "green": ["B03", "green", "B3"],
    "red": ["B04", "red", "B4"],
    "swir": ["B11", "swir16"],
    "cirrus": ["B10", "cirrus"],
}

AWS_S3_PIPELINE_STATICDATA_ROI_PENDING_KEY = "raw_catalog/roi/staging"
AWS_S3_PIPELINE_STATICDATA_ROI_PROCESSED_KEY = "raw_catalog/roi/processed"
AWS_S3_PIPELINE_STATICDATA_ROI_FALLBACK_KEY = "raw_catalog/config/roi.geojson"
AWS_S3_PIPELINE_OUTPUTS_KEY = "pipeline-outputs"
