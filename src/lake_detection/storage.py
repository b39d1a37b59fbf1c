"""Storage operations for the ROI catalog and lake detection outputs on S3."""

import json
from typing import Any

import geopandas as gpd
from dagster import AssetExecutionContext, OpExecutionContext
from dagster_aws.s3 import S3PickleIOManager, S3Resource as DagsterS3Resource

from lake_detection.config.constants import AWS_S3_PIPELINE_OUTPUTS_KEY
from lake_detection.config.detection_config import DetectionConfig
from lake_detection.connectors.s3_client import S3Resource, s3_credentials
from lake_detection.connectors.settings import SettingsResource
from lake_detection.geospatial.exports import lake_mask_to_geotiff_bytes, rgb_to_geotiff_bytes
from lake_detection.models.models import LakeDetectionResult, RegionOfInterest

# Raised by malformed, empty or non-polygonal ROI files
ROI_READ_ERRORS = (KeyError, TypeError, ValueError, UnicodeDecodeError)


def list_geojson_objects(s3_client: Any, bucket: str, prefix: str) -> list[dict[str, Any]]:
    """List GeoJSON objects under a prefix, newest first.

    :param s3_client: S3 client
    :param bucket: Bucket name
    :param prefix: S3 prefix
    :returns: ``list_objects_v2`` entries for ``.geojson`` keys
    """
    objects: list[dict[str, Any]] = []
    request = {"Bucket": bucket, "Prefix": prefix}
    while True:
        response = s3_client.list_objects_v2(**request)
        objects.extend(obj for obj in response.get("Contents", []) if obj["Key"].endswith(".geojson"))
        if not response.get("IsTruncated"):
            break
        request["ContinuationToken"] = response["NextContinuationToken"]
    return sorted(objects, key=lambda obj: str(obj.get("LastModified", "")), reverse=True)


def read_geojson(s3_client: Any, bucket: str, key: str) -> dict[str, Any]:
    body = s3_client.get_object(Bucket=bucket, Key=key)["Body"].read()
    return json.loads(body.decode("utf-8"))


def _geodataframe_from_geojson(content: dict[str, Any]) -> gpd.GeoDataFrame:
    """Build a GeoDataFrame from a FeatureCollection, honouring a legacy ``crs`` member."""
    crs = content.get("crs", {}).get("properties", {}).get("name", "EPSG:4326")
    return gpd.GeoDataFrame.from_features(content.get("features", []), crs=crs)


def parse_roi_geojson(content: dict[str, Any]) -> RegionOfInterest:
    """Dissolve a GeoJSON FeatureCollection into one region of interest.

    :param content: GeoJSON dictionary
    :returns: RegionOfInterest
    :raises ValueError: If there are no features or the geometry is not polygonal
    """
    gdf = _geodataframe_from_geojson(content)
    if gdf.empty:
        raise ValueError("GeoJSON has no features")
    return RegionOfInterest.from_geodataframe(gdf)


def archive_s3_objects(
    s3_client: Any,
    bucket: str,
    keys: list[str],
    source_prefix: str,
    dest_prefix: str,
) -> list[str]:
    """Move objects from one prefix to another, keeping their relative keys.

    :returns: Destination keys
    """
    archived = []
    for key in keys:
        dest_key = dest_prefix + key[len(source_prefix) :]
        s3_client.copy_object(Bucket=bucket, CopySource={"Bucket": bucket, "Key": key}, Key=dest_key)
        s3_client.delete_object(Bucket=bucket, Key=key)
        archived.append(dest_key)
    return archived


def _first_valid_roi(
    context: OpExecutionContext | AssetExecutionContext,
    s3_client: Any,
    bucket: str,
    objects: list[dict[str, Any]],
) -> RegionOfInterest | None:
    for obj in objects:
        try:
            roi = parse_roi_geojson(read_geojson(s3_client, bucket, obj["Key"]))
        except ROI_READ_ERRORS as e:
            context.log.error(f"Skipping ROI file {obj['Key']}: {e}")
            continue
        context.log.info(f"Loaded ROI {roi.id} from {obj['Key']}")
        return roi
    return None


def load_roi_from_s3(
    context: OpExecutionContext | AssetExecutionContext,
    s3: S3Resource,
    settings: SettingsResource,
    processed_prefix: str,
    staging_prefix: str,
    fallback_key: str | None = None,
) -> RegionOfInterest | None:
    """Load the current region of interest.

    The newest valid staged file wins; every staged file is then archived to
    the processed prefix. Without a staged ROI the newest valid processed
    file is used, then the fallback key.

    :param context: Dagster context
    :param s3: S3 resource
    :param settings: Settings resource
    :param processed_prefix: Processed prefix
    :param staging_prefix: Staging prefix
    :param fallback_key: Optional fallback key
    :returns: RegionOfInterest if found, None otherwise
    """
    bucket = settings.aws_s3_pipeline_bucket_name
    s3_client = s3.get_client()

    staged = list_geojson_objects(s3_client, bucket, staging_prefix)
    roi = _first_valid_roi(context, s3_client, bucket, staged)
    if staged:
        archived = archive_s3_objects(s3_client, bucket, [obj["Key"] for obj in staged], staging_prefix, processed_prefix)
        context.log.debug(f"Archived {len(archived)} staged ROI file(s) to {processed_prefix}")

    if roi is None:
        roi = _first_valid_roi(context, s3_client, bucket, list_geojson_objects(s3_client, bucket, processed_prefix))

    if roi is None and fallback_key:
        try:
            content = read_geojson(s3_client, bucket, fallback_key)
        except s3_client.exceptions.NoSuchKey:
            context.log.warning(f"Could not load from fallback {fallback_key}: key does not exist")
            return None
        roi = parse_roi_geojson(content)
        context.log.info(f"Loaded ROI {roi.id} from {fallback_key} (fallback)")

    return roi


def output_prefix(roi: RegionOfInterest, date_str: str) -> str:
    """S3 prefix for one ROI and acquisition date."""
    return f"{AWS_S3_PIPELINE_OUTPUTS_KEY}/{roi.id}/{date_str}"


def save_lake_outputs_to_s3(
    context: OpExecutionContext | AssetExecutionContext,
    s3: S3Resource,
    roi: RegionOfInterest,
    date_str: str,
    result: LakeDetectionResult,
    config: DetectionConfig,
    scene_id: str | None = None,
    s3_client: Any | None = None,
) -> dict[str, str]:
    """Upload the lake mask raster, lake vectors and RGB preview.

    The roi must be in the result image CRS.

    :param context: Dagster context
    :param s3: S3 resource
    :param roi: Region of interest in the image CRS
    :param date_str: Acquisition date string
    :param result: Pipeline result
    :param config: Detection config
    :param scene_id: Optional scene identifier used in file names
    :param s3_client: Optional S3 client
    :returns: Output name to s3:// URI
    """
    prefix = output_prefix(roi, date_str)
    suffix = f"_{scene_id}" if scene_id else ""
    if s3_client is None:
        s3_client = s3.get_client()

    uris = {
        "lake_mask": s3.upload_bytes(
            f"{prefix}/LakeMask{suffix}.tif",
            lake_mask_to_geotiff_bytes(result.lake_mask, roi, config),
            "image/tiff; application=geotiff",
            s3_client=s3_client,
        ),
        "lake_vectors": s3.upload_bytes(
            f"{prefix}/LakeVectors{suffix}.geojson",
            result.vectors.to_geojson().encode("utf-8"),
            "application/geo+json",
            s3_client=s3_client,
        ),
        "rgb": s3.upload_bytes(
            f"{prefix}/RGB{suffix}.tif",
            rgb_to_geotiff_bytes(result.image, config),
            "image/tiff; application=geotiff",
            s3_client=s3_client,
        ),
    }

    for name, uri in uris.items():
        context.log.info(f"Written {name} to {uri}")
    return uris



def create_s3_io_manager(settings_resource: SettingsResource) -> S3PickleIOManager:
    """Create an S3PickleIOManager on the pipeline bucket.

    Asset values (ROI, daily summaries) persist across pod restarts.

    :param settings_resource: Settings resource with S3 configuration
    :returns: Configured S3PickleIOManager instance
    """
    s3_resource = DagsterS3Resource(
        region_name=settings_resource.aws_region,
        endpoint_url=settings_resource.aws_s3_endpoint or None,
        use_ssl=settings_resource.aws_s3_use_ssl,
        **s3_credentials(),
    )
    return S3PickleIOManager(
        s3_resource=s3_resource,
        s3_bucket=settings_resource.aws_s3_pipeline_bucket_name,
        s3_prefix="dagster/lake_detection",
    )
