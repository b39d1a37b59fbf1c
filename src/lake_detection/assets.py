"""Dagster assets for the lake detection pipeline."""

import os
from typing import Any

from dagster import (
    AssetExecutionContext,
    AutoMaterializePolicy,
    DailyPartitionsDefinition,
    Output,
    asset,
)

from lake_detection.config.constants import (
    AWS_S3_PIPELINE_STATICDATA_ROI_FALLBACK_KEY,
    AWS_S3_PIPELINE_STATICDATA_ROI_PENDING_KEY,
    AWS_S3_PIPELINE_STATICDATA_ROI_PROCESSED_KEY,
    DEFAULT_PARTITION_START_DATE,
    LAKE_BAND_PREFERENCES,
)
from lake_detection.config.detection_config import DetectionConfig
from lake_detection.connectors.s3_client import S3Resource
from lake_detection.connectors.settings import SettingsResource
from lake_detection.connectors.stac_client import STACResource
from lake_detection.geospatial.raster_ops import read_raster_image, same_crs
from lake_detection.geospatial.stac_ops import (
    search_sentinel_items,
    select_and_sign_band_urls,
    select_item_by_index,
)
from lake_detection.models.models import LakeDetectionResult, LakeSummary, RegionOfInterest
from lake_detection.pipeline import run_lake_detection
from lake_detection.storage import load_roi_from_s3, save_lake_outputs_to_s3

daily_partitions = DailyPartitionsDefinition(
    start_date=os.getenv("DAGSTER_PARTITION_START_DATE", DEFAULT_PARTITION_START_DATE)
)


@asset(auto_materialize_policy=AutoMaterializePolicy.eager())
def roi(context: AssetExecutionContext, s3: S3Resource, settings: SettingsResource) -> RegionOfInterest:
    """Load the region of interest from the S3 raw catalog.

    A newly staged polygon replaces the current one; otherwise the newest
    processed polygon is kept, then the config fallback.

    :param context: Dagster context
    :param s3: S3 resource
    :param settings: Settings resource
    :returns: RegionOfInterest instance
    """
    region = load_roi_from_s3(
        context,
        s3,
        settings,
        AWS_S3_PIPELINE_STATICDATA_ROI_PROCESSED_KEY,
        AWS_S3_PIPELINE_STATICDATA_ROI_PENDING_KEY,
        fallback_key=AWS_S3_PIPELINE_STATICDATA_ROI_FALLBACK_KEY,
    )

    if region is None:
        raise ValueError("No ROI found in staging, processed, or config locations")

    context.log.info(f"Using ROI {region.id} ({region.geom['type']}, {region.crs})")
    return region


@asset(
    partitions_def=daily_partitions,
    auto_materialize_policy=AutoMaterializePolicy.eager(),
    deps=[roi],
)
def lake_detection(
    context: AssetExecutionContext,
    s3: S3Resource,
    stac: STACResource,
    settings: SettingsResource,
    roi: RegionOfInterest,
) -> Output[LakeSummary]:
    """Detect lakes in the selected Sentinel-2 scene of the partition date.

    Searches scenes over the ROI, picks one by ``image_index``, reads and
    masks its bands, runs the detection pipeline and uploads the lake mask
    raster, lake vectors and RGB preview.

    :param context: Dagster context
    :param s3: S3 resource
    :param stac: STAC resource
    :param settings: Settings resource
    :param roi: Region of interest
    :returns: Output with the run summary
    """
    date_str = context.partition_key
    config = settings.get_detection_config()
    roi_wgs84 = roi if same_crs(roi.crs, "EPSG:4326") else roi.to_crs("EPSG:4326")

    context.log.info(f"Detecting lakes in ROI {roi.id} on {date_str}")

    items = search_sentinel_items(
        context,
        stac.create_client(),
        roi_wgs84.geom,
        start_date=date_str,
        end_date=date_str,
        collection=settings.stac_collection,
        cloud_cover_lt=settings.cloud_cover_threshold,
        sun_elevation_gt=settings.sun_elevation_threshold,
    )
    try:
        item = select_item_by_index(items, settings.image_index)
    except IndexError as e:
        context.log.info(str(e))
        return _create_error_output(roi, date_str, str(e))

    band_urls, error_output = _prepare_band_urls(context, item, roi, date_str)
    if error_output is not None:
        return error_output

    assert band_urls is not None, "Unexpected: band_urls is None after successful preparation"

    image = read_raster_image(band_urls, config.band_roles, roi=roi_wgs84, properties=dict(item.properties))
    image_roi = roi if same_crs(roi.crs, image.crs) else roi.to_crs(image.crs)

    result = run_lake_detection(image, image_roi, config)
    context.log.info(
        f"Scene {item.id}: {result.lake_mask.pixel_count} lake pixel(s), {len(result.vectors)} lake polygon(s)"
    )

    outputs = save_lake_outputs_to_s3(
        context=context,
        s3=s3,
        roi=image_roi,
        date_str=date_str,
        result=result,
        config=config,
        scene_id=item.id,
    )
    return _create_success_output(roi, date_str, item.id, result, outputs, config)


def _prepare_band_urls(
    context: AssetExecutionContext,
    item: Any,
    roi: RegionOfInterest,
    date_str: str,
) -> tuple[dict[str, str] | None, Output[LakeSummary] | None]:
    """Select and sign band URLs from STAC item.

    :param context: Dagster context
    :param item: STAC item
    :param roi: Region of interest
    :param date_str: Date string
    :returns: Tuple of (band_urls or None, error_output or None)
    """
    band_urls, available_assets, missing = select_and_sign_band_urls(item, LAKE_BAND_PREFERENCES)

    if band_urls is None:
        context.log.error(f"Could not find required bands {missing}. Available: {available_assets}")
        error_output = _create_error_output(
            roi,
            date_str,
            f"Could not find required bands {missing}. Available assets: {available_assets}",
            scene_id=item.id,
        )
        return None, error_output

    return band_urls, None


def _create_error_output(
    roi: RegionOfInterest,
    date_str: str,
    error: str,
    scene_id: str | None = None,
) -> Output[LakeSummary]:
    """Create error Output when no detection could run.

    :param roi: Region of interest
    :param date_str: Date string
    :param error: Error message
    :param scene_id: Optional scene id
    :returns: Output with error metadata
    """
    return Output(
        LakeSummary(roi_id=roi.id, date=date_str, scene_id=scene_id, error=error),
        metadata={
            "success": False,
            "error": error,
            "scene_id": scene_id,
        },
    )


def _create_success_output(
    roi: RegionOfInterest,
    date_str: str,
    scene_id: str,
    result: LakeDetectionResult,
    outputs: dict[str, str],
    config: DetectionConfig,
) -> Output[LakeSummary]:
    """Create success Output for a detection run.

    :param roi: Region of interest
    :param date_str: Date string
    :param scene_id: Selected scene id
    :param result: Pipeline result
    :param outputs: Output name to s3:// URI
    :param config: Detection config used
    :returns: Output with summary metadata
    """
    summary = LakeSummary(
        roi_id=roi.id,
        date=date_str,
        scene_id=scene_id,
        lake_count=len(result.vectors),
        lake_pixel_count=result.lake_mask.pixel_count,
        lake_area=result.vectors.total_area,
        outputs=outputs,
    )
    return Output(
        summary,
        metadata={
            "success": True,
            "error": None,
            "scene_id": scene_id,
            "lake_count": summary.lake_count,
            "lake_pixel_count": summary.lake_pixel_count,
            "lake_area": summary.lake_area,
            "vectors_approximate": result.vectors.approximate,
            "water_index_threshold": config.water_index_threshold,
            **{f"{name}_path": uri for name, uri in outputs.items()},
        },
    )
