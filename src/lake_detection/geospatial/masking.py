"""Band-algebra stages: reflectance scaling, cloud and surface masks, lake detection.

Each stage is a pure ``RasterImage -> RasterImage`` transform. Masks only
ever remove validity, so stage outputs are monotonic in the valid-pixel set.
"""

import numpy as np

from lake_detection.config.detection_config import DetectionConfig
from lake_detection.geospatial.raster_ops import normalized_difference
from lake_detection.models.models import LakeMask, RasterImage


def scale_reflectance(image: RasterImage, scale: float = 10000) -> RasterImage:
    """Convert digital numbers to reflectance.

    Reflectance is float64 so that threshold literals such as 0.1 compare
    exactly against scaled integers.

    :param image: Image with unscaled digital numbers
    :param scale: Divisor
    :returns: Image with reflectance bands
    """
    if scale <= 0:
        raise ValueError(f"Scale must be positive, got {scale}")
    return image.with_bands({name: np.asarray(values, dtype="float64") / scale for name, values in image.bands.items()})


def cloud_predicate(image: RasterImage, config: DetectionConfig) -> np.ndarray:
    """Pixels matching the two-band cloud signature."""
    swir = image.band(config.band_for("swir"))
    cirrus = image.band(config.band_for("cirrus"))
    return (swir > config.cloud_swir_threshold) & (cirrus > config.cloud_cirrus_threshold)


def mask_clouds(image: RasterImage, config: DetectionConfig) -> RasterImage:
    """Invalidate cloudy pixels.

    :param image: Scaled image
    :param config: Detection config
    :returns: Image with clouds masked out
    """
    return image.with_valid(~cloud_predicate(image, config))


def rock_sea_predicate(image: RasterImage, config: DetectionConfig) -> tuple[np.ndarray, np.ndarray]:
    """Non-target surface pixels and where the green/SWIR index is defined.

    :returns: Tuple of (non_target, defined)
    """
    green = image.band(config.band_for("green"))
    swir = image.band(config.band_for("swir"))
    blue = image.band(config.band_for("blue"))
    ndsi, defined = normalized_difference(green, swir, config.denominator_epsilon)
    with np.errstate(invalid="ignore"):
        non_target = defined & (ndsi < config.surface_index_threshold) & (blue < config.surface_blue_threshold)
    return non_target, defined


def mask_rock_and_sea(image: RasterImage, config: DetectionConfig) -> RasterImage:
    """Invalidate bare rock, ice and open ocean.

    Pixels where green + SWIR is degenerate are invalidated as well.

    :param image: Scaled image
    :param config: Detection config
    :returns: Image with non-target surfaces masked out
    """
    non_target, defined = rock_sea_predicate(image, config)
    return image.with_valid(defined & ~non_target)


def classify_lakes(image: RasterImage, config: DetectionConfig) -> LakeMask:
    """Classify valid pixels as lake using the blue/red water index.

    :param image: Masked image
    :param config: Detection config
    :returns: LakeMask on the image grid
    """
    blue = image.band(config.band_for("blue"))
    green = image.band(config.band_for("green"))
    red = image.band(config.band_for("red"))

    ndwi, defined = normalized_difference(blue, red, config.denominator_epsilon)
    evaluated = image.valid & defined
    with np.errstate(invalid="ignore"):
        lake = evaluated & (ndwi > config.water_index_threshold) & ((green - red) > config.water_green_red_threshold)

    return LakeMask(lake=lake, evaluated=evaluated, transform=image.transform, crs=image.crs)


def add_lake_band(image: RasterImage, lake_mask: LakeMask, band_name: str) -> RasterImage:
    """Merge the lake mask into the image as a sparse band.

    :param image: Image to extend
    :param lake_mask: Lake classification on the image grid
    :param band_name: Name of the new band
    :returns: Image with the band, valid only where lake
    """
    return image.add_band(band_name, lake_mask.to_uint8(), mask=lake_mask.lake)


def detect_lakes(image: RasterImage, config: DetectionConfig) -> RasterImage:
    """Classify lakes and add the lake band under ``config.lake_band_name``.

    :param image: Masked image
    :param config: Detection config
    :returns: Image including the lake band
    """
    return add_lake_band(image, classify_lakes(image, config), config.lake_band_name)
