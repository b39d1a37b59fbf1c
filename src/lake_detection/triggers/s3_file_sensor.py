"""Sensor that requests an ROI refresh when a polygon is staged on S3."""

import json
from collections.abc import Generator
from typing import Any

from dagster import (
    DefaultSensorStatus,
    RunRequest,
    SensorEvaluationContext,
    SkipReason,
    sensor,
)

from lake_detection.config.constants import AWS_S3_PIPELINE_STATICDATA_ROI_PENDING_KEY
from lake_detection.connectors.s3_client import S3Resource
from lake_detection.connectors.settings import SettingsResource
from lake_detection.storage import ROI_READ_ERRORS, list_geojson_objects, parse_roi_geojson, read_geojson
from lake_detection.triggers.jobs import roi_job


def _staged_roi_requests(
    context: SensorEvaluationContext,
    s3: S3Resource,
    settings: SettingsResource,
    prefix: str,
) -> Generator[RunRequest | SkipReason, None, None]:
    """Request a run for each new or re-uploaded ROI polygon.

    The cursor maps staged keys to their ETag, so overwriting a file with new
    content triggers again. Files that do not parse to a polygon are logged
    and never requested.

    :param context: Sensor evaluation context
    :param s3: S3 resource
    :param settings: Settings resource
    :param prefix: Staging prefix to watch
    :yields: RunRequest per valid changed file, or a SkipReason
    """
    s3_client = s3.get_client()
    bucket = settings.aws_s3_pipeline_bucket_name

    current = {obj["Key"]: obj.get("ETag", "") for obj in list_geojson_objects(s3_client, bucket, prefix)}
    seen = json.loads(context.cursor) if context.cursor else {}
    changed = sorted(key for key, etag in current.items() if seen.get(key) != etag)
    context.update_cursor(json.dumps(current, sort_keys=True))

    if not changed:
        yield SkipReason(f"No new ROI files in {prefix}")
        return

    for key in changed:
        try:
            roi = parse_roi_geojson(read_geojson(s3_client, bucket, key))
        except ROI_READ_ERRORS as e:
            context.log.warning(f"Ignoring staged file {key}: {e}")
            continue
        context.log.info(f"Staged ROI {roi.id} in {key}")
        yield RunRequest(
            run_key=f"{key}:{current[key]}",
            tags={"roi_id": str(roi.id), "roi_source_key": key},
        )


def create_roi_sensor(job: Any, prefix: str, name: str) -> Any:
    """Create a sensor on an ROI staging prefix.

    :param job: Asset job to trigger
    :param prefix: S3 prefix to watch
    :param name: Sensor name
    :returns: Configured sensor function
    """

    @sensor(job=job, minimum_interval_seconds=30, default_status=DefaultSensorStatus.RUNNING, name=name)
    def sensor_fn(
        context: SensorEvaluationContext, s3: S3Resource, settings: SettingsResource
    ) -> Generator[RunRequest | SkipReason, None, None]:
        yield from _staged_roi_requests(context, s3, settings, prefix)

    return sensor_fn


s3_roi_sensor = create_roi_sensor(
    job=roi_job,
    prefix=AWS_S3_PIPELINE_STATICDATA_ROI_PENDING_KEY,
    name="s3_roi_sensor",
)
