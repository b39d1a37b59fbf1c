"""Lake detection pipeline: scale, mask clouds, mask rock/sea, detect lakes, vectorize."""

from lake_detection.config.detection_config import BAND_ROLES, DetectionConfig
from lake_detection.errors import BandNameCollisionError, CrsMismatchError, MissingBandError
from lake_detection.geospatial.masking import (
    add_lake_band,
    classify_lakes,
    mask_clouds,
    mask_rock_and_sea,
    scale_reflectance,
)
from lake_detection.geospatial.raster_ops import same_crs
from lake_detection.geospatial.vector_ops import polygonize_lake_mask
from lake_detection.models.models import LakeDetectionResult, RasterImage, RegionOfInterest


def validate_inputs(image: RasterImage, roi: RegionOfInterest, config: DetectionConfig) -> None:
    """Check preconditions before any stage runs.

    Grid shapes are already enforced by RasterImage.

    :param image: Input image
    :param roi: Region of interest
    :param config: Detection config
    :raises MissingBandError: If a band role is not in the image
    :raises CrsMismatchError: If the ROI and image CRS differ
    :raises BandNameCollisionError: If the lake band name is taken
    """
    for role in BAND_ROLES:
        band = config.band_for(role)
        if band not in image.bands:
            raise MissingBandError(band, image.band_names)
    if not same_crs(image.crs, roi.crs):
        raise CrsMismatchError(image.crs, roi.crs)
    if config.lake_band_name in image.bands:
        raise BandNameCollisionError(config.lake_band_name)


def run_lake_detection(
    image: RasterImage,
    roi: RegionOfInterest,
    config: DetectionConfig | None = None,
) -> LakeDetectionResult:
    """Run the full pipeline on one unscaled image.

    Vectors use ``config.vector_crs`` at ``config.target_resolution``. The
    default is ``config.target_crs``, the CRS of the exported mask raster.

    :param image: Image with digital-number bands, already clipped to the ROI
    :param roi: Region of interest in the image CRS
    :param config: Detection config
    :returns: LakeDetectionResult
    """
    config = config or DetectionConfig()
    validate_inputs(image, roi, config)

    scaled = scale_reflectance(image, config.reflectance_scale)
    cloud_free = mask_clouds(scaled, config)
    masked = mask_rock_and_sea(cloud_free, config)
    lake_mask = classify_lakes(masked, config)
    detected = add_lake_band(masked, lake_mask, config.lake_band_name)

    vectors = polygonize_lake_mask(
        lake_mask,
        roi,
        crs=config.vector_crs or config.target_crs,
        resolution=config.target_resolution,
        config=config,
    )
    return LakeDetectionResult(image=detected, lake_mask=lake_mask, vectors=vectors)
