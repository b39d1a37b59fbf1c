"""Immutable parameters for the lake detection pipeline."""

from typing import Literal

from pydantic import BaseModel, ConfigDict, Field as PydanticField, field_validator

from lake_detection.config.constants import (
    CLOUD_CIRRUS_THRESHOLD,
    CLOUD_SWIR_THRESHOLD,
    DEFAULT_CONNECTIVITY,
    DEFAULT_MAX_COARSEN_FACTOR,
    DEFAULT_MAX_PIXELS,
    DEFAULT_SIMPLIFY_TOLERANCE,
    DEFAULT_TARGET_CRS,
    DEFAULT_TARGET_RESOLUTION,
    DEFAULT_TILE_SCALE,
    DEFAULT_TILE_SIZE,
    DENOMINATOR_EPSILON,
    LAKE_BAND_NAME,
    REFLECTANCE_SCALE,
    SENTINEL2_BAND_ROLES,
    SURFACE_BLUE_THRESHOLD,
    SURFACE_INDEX_THRESHOLD,
    WATER_GREEN_RED_THRESHOLD,
    WATER_INDEX_THRESHOLD,
)

BAND_ROLES = ("blue", "green", "red", "swir", "cirrus")


class DetectionConfig(BaseModel):
    """Thresholds, band roles and vectorization controls.

    Defaults follow the Sentinel-2 supraglacial lake literature values.
    Resolutions are ground distances in metres, converted to degrees for
    geographic CRSs.
    """

    model_config = ConfigDict(frozen=True)

    reflectance_scale: float = PydanticField(REFLECTANCE_SCALE, gt=0, description="Digital number divisor")
    cloud_swir_threshold: float = PydanticField(CLOUD_SWIR_THRESHOLD, description="SWIR reflectance above which cloud")
    cloud_cirrus_threshold: float = PydanticField(CLOUD_CIRRUS_THRESHOLD, description="Cirrus reflectance above which cloud")
    surface_index_threshold: float = PydanticField(SURFACE_INDEX_THRESHOLD, description="Green/SWIR index ceiling for rock/sea")
    surface_blue_threshold: float = PydanticField(SURFACE_BLUE_THRESHOLD, description="Blue reflectance ceiling for rock/sea")
    water_index_threshold: float = PydanticField(WATER_INDEX_THRESHOLD, description="Blue/red NDWI above which lake")
    water_green_red_threshold: float = PydanticField(WATER_GREEN_RED_THRESHOLD, description="Green minus red above which lake")
    denominator_epsilon: float = PydanticField(DENOMINATOR_EPSILON, ge=0, description="Degenerate index denominator")

    band_roles: dict[str, str] = PydanticField(default_factory=lambda: dict(SENTINEL2_BAND_ROLES))
    lake_band_name: str = PydanticField(LAKE_BAND_NAME, min_length=1)

    target_resolution: float = PydanticField(DEFAULT_TARGET_RESOLUTION, gt=0)
    target_crs: str = DEFAULT_TARGET_CRS
    vector_crs: str | None = PydanticField(default=None, description="Vector CRS, None uses target_crs")
    connectivity: Literal[4, 8] = DEFAULT_CONNECTIVITY

    best_effort: bool = True
    tile_size: int = PydanticField(DEFAULT_TILE_SIZE, gt=0)
    tile_scale: int = PydanticField(DEFAULT_TILE_SCALE, ge=1)
    max_pixels: int = PydanticField(DEFAULT_MAX_PIXELS, gt=0)
    max_coarsen_factor: int = PydanticField(DEFAULT_MAX_COARSEN_FACTOR, ge=1)
    simplify_tolerance: float = PydanticField(DEFAULT_SIMPLIFY_TOLERANCE, ge=0, description="In pixels")

    @field_validator("band_roles")
    @classmethod
    def _check_band_roles(cls, value: dict[str, str]) -> dict[str, str]:
        missing = [role for role in BAND_ROLES if role not in value]
        if missing:
            raise ValueError(f"band_roles is missing role(s): {', '.join(missing)}")
        return value

    def band_for(self, role: str) -> str:
        """Get the platform band name for a logical role.

        :param role: One of blue, green, red, swir, cirrus
        :returns: Band name in the image
        """
        return self.band_roles[role]
