"""Settings resource for managing configuration from environment variables."""

import os
from pathlib import Path
from typing import Any, Union, get_args, get_origin, get_type_hints

from dagster import ConfigurableResource, EnvVar

from lake_detection.config.constants import (
    CLOUD_CIRRUS_THRESHOLD,
    CLOUD_SWIR_THRESHOLD,
    DEFAULT_CLOUD_COVER_THRESHOLD,
    DEFAULT_IMAGE_INDEX,
    DEFAULT_PARTITION_START_DATE,
    DEFAULT_STAC_COLLECTION,
    DEFAULT_SUN_ELEVATION_THRESHOLD,
    DEFAULT_TARGET_CRS,
    DEFAULT_TARGET_RESOLUTION,
    DEFAULT_TMP_DIR,
    SURFACE_BLUE_THRESHOLD,
    SURFACE_INDEX_THRESHOLD,
    WATER_GREEN_RED_THRESHOLD,
    WATER_INDEX_THRESHOLD,
)
from lake_detection.config.detection_config import DetectionConfig

# Used when the environment variable is unset
OPTIONAL_DEFAULTS: dict[str, Any] = {
    "tmp_dir": DEFAULT_TMP_DIR,
    "partition_start_date": DEFAULT_PARTITION_START_DATE,
    "stac_collection": DEFAULT_STAC_COLLECTION,
    "cloud_cover_threshold": DEFAULT_CLOUD_COVER_THRESHOLD,
    "sun_elevation_threshold": DEFAULT_SUN_ELEVATION_THRESHOLD,
    "image_index": DEFAULT_IMAGE_INDEX,
    "cloud_swir_threshold": CLOUD_SWIR_THRESHOLD,
    "cloud_cirrus_threshold": CLOUD_CIRRUS_THRESHOLD,
    "surface_index_threshold": SURFACE_INDEX_THRESHOLD,
    "surface_blue_threshold": SURFACE_BLUE_THRESHOLD,
    "water_index_threshold": WATER_INDEX_THRESHOLD,
    "water_green_red_threshold": WATER_GREEN_RED_THRESHOLD,
    "target_resolution": DEFAULT_TARGET_RESOLUTION,
    "target_crs": DEFAULT_TARGET_CRS,
}


class SettingsResource(ConfigurableResource[Any]):
    """Settings resource using EnvVar for runtime resolution in Dagster."""

    aws_region: str = EnvVar("AWS_REGION")
    aws_s3_endpoint: str = EnvVar("AWS_S3_ENDPOINT")
    aws_s3_pipeline_bucket_name: str = EnvVar("AWS_S3_PIPELINE_BUCKET_NAME")
    aws_s3_use_ssl: bool = False
    tmp_dir: str = EnvVar("TMP_DIR")
    stac_api_url: str = EnvVar("STAC_API_URL")
    stac_collection: str = DEFAULT_STAC_COLLECTION
    partition_start_date: str = EnvVar("DAGSTER_PARTITION_START_DATE")
    cloud_cover_threshold: int = DEFAULT_CLOUD_COVER_THRESHOLD
    sun_elevation_threshold: float = DEFAULT_SUN_ELEVATION_THRESHOLD
    image_index: int = DEFAULT_IMAGE_INDEX
    cloud_swir_threshold: float = CLOUD_SWIR_THRESHOLD
    cloud_cirrus_threshold: float = CLOUD_CIRRUS_THRESHOLD
    surface_index_threshold: float = SURFACE_INDEX_THRESHOLD
    surface_blue_threshold: float = SURFACE_BLUE_THRESHOLD
    water_index_threshold: float = WATER_INDEX_THRESHOLD
    water_green_red_threshold: float = WATER_GREEN_RED_THRESHOLD
    target_resolution: float = DEFAULT_TARGET_RESOLUTION
    target_crs: str = DEFAULT_TARGET_CRS

    @staticmethod
    def create(swallow_errors: bool = False) -> "SettingsResource":
        """Create SettingsResource from environment variables.

        :param swallow_errors: If True, ignore validation errors
        :returns: SettingsResource instance
        """
        env_values: dict[str, Any] = {}
        for attr_name, attr_type in get_type_hints(SettingsResource).items():
            raw = os.environ.get(attr_name.upper())
            if raw is None:
                env_values[attr_name] = OPTIONAL_DEFAULTS.get(attr_name)
            elif attr_type is bool:
                env_values[attr_name] = raw.strip().lower() in ("true", "1", "yes", "y", "on")
            elif attr_type is int:
                env_values[attr_name] = int(raw) if raw else OPTIONAL_DEFAULTS.get(attr_name)
            elif attr_type is float:
                env_values[attr_name] = float(raw) if raw else OPTIONAL_DEFAULTS.get(attr_name)
            else:
                env_values[attr_name] = raw

        settings = SettingsResource(**{k: v for k, v in env_values.items() if v is not None})
        try:
            settings._post_init()
        except (TypeError, ValueError):
            if not swallow_errors:
                raise
        return settings

    def create_tmp_dir(self) -> None:
        """Create temporary directory if missing."""
        tmp_dir_value = self.tmp_dir.get_value() if isinstance(self.tmp_dir, EnvVar) else self.tmp_dir
        if tmp_dir_value:
            Path(tmp_dir_value).mkdir(parents=True, exist_ok=True)

    def get_detection_config(self) -> DetectionConfig:
        """Build the immutable pipeline config from these settings.

        :returns: DetectionConfig with thresholds, resolution and CRS
        """
        return DetectionConfig(
            cloud_swir_threshold=self.cloud_swir_threshold,
            cloud_cirrus_threshold=self.cloud_cirrus_threshold,
            surface_index_threshold=self.surface_index_threshold,
            surface_blue_threshold=self.surface_blue_threshold,
            water_index_threshold=self.water_index_threshold,
            water_green_red_threshold=self.water_green_red_threshold,
            target_resolution=self.target_resolution,
            target_crs=self.target_crs,
        )

    def validate_settings(self) -> None:
        """Validate all required settings are present."""
        missing_vars = []
        for attr_name, attr_type in get_type_hints(self.__class__).items():
            attr_value = getattr(self, attr_name, None)
            if isinstance(attr_value, EnvVar):
                is_optional = get_origin(attr_type) is Union and type(None) in get_args(attr_type)
                if not is_optional and attr_value.get_value() is None:
                    missing_vars.append(attr_value.env_var_name)
        if missing_vars:
            raise ValueError(f"Missing mandatory environment variables: {', '.join(missing_vars)}")

    def _post_init(self) -> None:
        self.create_tmp_dir()
        self.validate_settings()
