"""Dagster definitions for the lake detection pipeline."""

from dagster import Definitions, load_assets_from_modules

from lake_detection import assets  # noqa: TID252
from lake_detection.connectors.s3_client import S3Resource
from lake_detection.connectors.settings import SettingsResource
from lake_detection.connectors.stac_client import STACResource
from lake_detection.storage import create_s3_io_manager
from lake_detection.triggers.jobs import roi_job
from lake_detection.triggers.s3_file_sensor import s3_roi_sensor

all_assets = load_assets_from_modules([assets])

settings = SettingsResource.create(swallow_errors=True)
s3 = S3Resource(settings=settings)

s3_io_manager = create_s3_io_manager(settings)

defs = Definitions(
    assets=all_assets,
    jobs=[roi_job],
    sensors=[s3_roi_sensor],
    resources={
        "s3": s3,
        "stac": STACResource(settings=settings),
        "settings": settings,
        "io_manager": s3_io_manager,
    },
)
