import io
import json
from types import SimpleNamespace

import pytest
from dagster import RunRequest, SkipReason

from lake_detection.triggers import s3_file_sensor

PREFIX = "raw_catalog/roi/staging"


class FakeContext:
    def __init__(self, cursor=None):
        self.cursor = cursor
        self.updated_cursor = None
        self.logs = []

    def update_cursor(self, cursor):
        self.updated_cursor = cursor

    @property
    def log(self):
        return SimpleNamespace(
            info=lambda *args, **kwargs: self.logs.append(("info", args, kwargs)),
            warning=lambda *args, **kwargs: self.logs.append(("warning", args, kwargs)),
        )


class FakeS3Client:
    def __init__(self, files):
        # key -> (etag, body)
        self.files = files

    def list_objects_v2(self, **kwargs):
        contents = [
            {"Key": key, "ETag": etag, "LastModified": "2024-07-01"}
            for key, (etag, _) in self.files.items()
            if key.startswith(kwargs["Prefix"])
        ]
        return {"Contents": contents}

    def get_object(self, Bucket, Key):
        return {"Body": io.BytesIO(self.files[Key][1])}


class FakeS3Resource:
    def __init__(self, files):
        self.client = FakeS3Client(files)

    def get_client(self):
        return self.client


@pytest.fixture
def fake_settings() -> SimpleNamespace:
    return SimpleNamespace(aws_s3_pipeline_bucket_name="test-bucket")


def _polygon(size: float) -> bytes:
    ring = [[0, 0], [size, 0], [size, size], [0, size], [0, 0]]
    return json.dumps(
        {
            "type": "FeatureCollection",
            "features": [{"type": "Feature", "properties": {}, "geometry": {"type": "Polygon", "coordinates": [ring]}}],
        }
    ).encode("utf-8")


def _evaluate(context, files, settings):
    return list(s3_file_sensor._staged_roi_requests(context, FakeS3Resource(files), settings, PREFIX))


def test_staged_polygon_requests_run_tagged_with_roi(fake_settings: SimpleNamespace) -> None:
    """
    Test that a newly staged polygon requests an ROI run.

    Verifies:
    - Run key combines object key and ETag
    - Run is tagged with the ROI id and the source key
    - Cursor records the ETag of every staged file
    """
    key = f"{PREFIX}/roi1.geojson"
    context = FakeContext()

    results = _evaluate(context, {key: ('"e1"', _polygon(1))}, fake_settings)

    assert len(results) == 1
    request = results[0]
    assert isinstance(request, RunRequest)
    assert request.run_key == f'{key}:"e1"'
    assert request.tags["roi_source_key"] == key
    assert len(request.tags["roi_id"]) == 36
    assert json.loads(context.updated_cursor) == {key: '"e1"'}


def test_unchanged_files_skip(fake_settings: SimpleNamespace) -> None:
    key = f"{PREFIX}/roi1.geojson"
    context = FakeContext(cursor=json.dumps({key: '"e1"'}))

    results = _evaluate(context, {key: ('"e1"', _polygon(1))}, fake_settings)

    assert len(results) == 1
    assert isinstance(results[0], SkipReason)


def test_reuploaded_file_triggers_again(fake_settings: SimpleNamespace) -> None:
    """
    Test that overwriting a staged key with new content requests a new run.
    """
    key = f"{PREFIX}/roi1.geojson"
    context = FakeContext(cursor=json.dumps({key: '"e1"'}))

    results = _evaluate(context, {key: ('"e2"', _polygon(2))}, fake_settings)

    assert [r.run_key for r in results] == [f'{key}:"e2"']
    assert json.loads(context.updated_cursor) == {key: '"e2"'}


def test_non_polygon_files_are_logged_not_requested(fake_settings: SimpleNamespace) -> None:
    """
    Test that point-only or malformed GeoJSON never reaches the ROI job.
    """
    point = json.dumps(
        {
            "type": "FeatureCollection",
            "features": [{"type": "Feature", "properties": {}, "geometry": {"type": "Point", "coordinates": [0, 0]}}],
        }
    ).encode("utf-8")
    files = {
        f"{PREFIX}/point.geojson": ('"p"', point),
        f"{PREFIX}/broken.geojson": ('"b"', b"{not json"),
        f"{PREFIX}/good.geojson": ('"g"', _polygon(1)),
    }
    context = FakeContext()

    results = _evaluate(context, files, fake_settings)

    assert [r.tags["roi_source_key"] for r in results] == [f"{PREFIX}/good.geojson"]
    assert [level for level, _, _ in context.logs].count("warning") == 2
    assert set(json.loads(context.updated_cursor)) == set(files)


def test_roi_sensor_targets_roi_job() -> None:
    assert s3_file_sensor.s3_roi_sensor.name == "s3_roi_sensor"
    assert s3_file_sensor.s3_roi_sensor.job_name == "roi_job"
