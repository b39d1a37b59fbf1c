import io
import json
from types import SimpleNamespace
from typing import Any

import numpy as np
import pytest
from affine import Affine
from shapely.geometry import box

from lake_detection import storage
from lake_detection.config.detection_config import DetectionConfig
from lake_detection.models.models import (
    LakeDetectionResult,
    LakeFeature,
    LakeMask,
    LakeVectors,
    RasterImage,
    RegionOfInterest,
)

TRANSFORM = Affine(10, 0, 500000, 0, -10, 4600000)
CRS = "EPSG:32633"


class NoSuchKey(Exception):
    pass


class FakeS3Client:
    def __init__(self, objects: dict[str, bytes] | None = None) -> None:
        self.objects = objects or {}
        self.modified: dict[str, str] = {}
        self.put_calls: list[dict[str, Any]] = []
        self.exceptions = SimpleNamespace(NoSuchKey=NoSuchKey)

    def put_object(self, **kwargs: Any) -> dict[str, Any]:
        self.put_calls.append(kwargs)
        return {"ResponseMetadata": {"HTTPStatusCode": 200}}

    def get_object(self, Bucket: str, Key: str) -> dict[str, Any]:
        if Key not in self.objects:
            raise NoSuchKey(Key)
        return {"Body": io.BytesIO(self.objects[Key])}

    def copy_object(self, Bucket: str, CopySource: dict[str, str], Key: str) -> None:
        self.objects[Key] = self.objects[CopySource["Key"]]
        self.modified[Key] = self.modified.get(CopySource["Key"], "")

    def delete_object(self, Bucket: str, Key: str) -> None:
        del self.objects[Key]

    def list_objects_v2(self, **kwargs: Any) -> dict[str, Any]:
        keys = [key for key in self.objects if key.startswith(kwargs["Prefix"])]
        contents = [{"Key": key, "LastModified": self.modified.get(key, "")} for key in keys]
        return {"Contents": contents} if contents else {}


class FakeS3Resource:
    def __init__(self, objects: dict[str, bytes] | None = None) -> None:
        self.client = FakeS3Client(objects)

    def get_client(self) -> FakeS3Client:
        return self.client

    def upload_bytes(self, key: str, body: bytes, content_type: str, s3_client: Any | None = None) -> str:
        (s3_client or self.client).put_object(Bucket="test-bucket", Key=key, Body=body, ContentType=content_type)
        return f"s3://test-bucket/{key}"


@pytest.fixture
def fake_settings() -> Any:
    return SimpleNamespace(aws_s3_pipeline_bucket_name="test-bucket")


@pytest.fixture
def fake_context() -> Any:
    return SimpleNamespace(
        log=SimpleNamespace(
            info=lambda *_, **__: None,
            debug=lambda *_, **__: None,
            warning=lambda *_, **__: None,
            error=lambda *_, **__: None,
        )
    )


def _roi_geojson(bounds: tuple[float, float, float, float]) -> dict[str, Any]:
    minx, miny, maxx, maxy = bounds
    return {
        "type": "FeatureCollection",
        "features": [
            {
                "type": "Feature",
                "properties": {"name": "roi"},
                "geometry": {
                    "type": "Polygon",
                    "coordinates": [[[minx, miny], [maxx, miny], [maxx, maxy], [minx, maxy], [minx, miny]]],
                },
            }
        ],
    }


def _make_result() -> tuple[RegionOfInterest, LakeDetectionResult]:
    lake = np.zeros((4, 4), dtype=bool)
    lake[1:3, 1:3] = True
    lake_mask = LakeMask(lake=lake, evaluated=np.ones((4, 4), dtype=bool), transform=TRANSFORM, crs=CRS)
    image = RasterImage(
        bands={name: np.full((4, 4), 0.3) for name in ("B2", "B3", "B4", "B11", "B10")},
        transform=TRANSFORM,
        crs=CRS,
    )
    geometry = box(500010, 4599970, 500030, 4599990)
    vectors = LakeVectors(
        features=[LakeFeature(id=1, geometry=geometry, pixel_count=4, area=geometry.area)],
        crs=CRS,
        resolution=10.0,
    )
    roi = RegionOfInterest.from_geometry(box(500000, 4599960, 500040, 4600000), CRS)
    return roi, LakeDetectionResult(image=image, lake_mask=lake_mask, vectors=vectors)


def test_save_lake_outputs_to_s3_writes_three_objects(fake_context: Any) -> None:
    """
    Test that save_lake_outputs_to_s3 uploads mask, vectors and RGB preview.

    Verifies:
    - Correct S3 key format per ROI and date
    - Correct content types
    - Vector payload is a FeatureCollection with the lake polygon
    """
    s3_resource = FakeS3Resource()
    roi, result = _make_result()

    uris = storage.save_lake_outputs_to_s3(
        context=fake_context,
        s3=s3_resource,
        roi=roi,
        date_str="2024-07-01",
        result=result,
        config=DetectionConfig(),
        scene_id="S2A_TEST",
    )

    prefix = f"pipeline-outputs/{roi.id}/2024-07-01"
    assert uris == {
        "lake_mask": f"s3://test-bucket/{prefix}/LakeMask_S2A_TEST.tif",
        "lake_vectors": f"s3://test-bucket/{prefix}/LakeVectors_S2A_TEST.geojson",
        "rgb": f"s3://test-bucket/{prefix}/RGB_S2A_TEST.tif",
    }
    calls = {call["Key"]: call for call in s3_resource.client.put_calls}
    assert calls[f"{prefix}/LakeMask_S2A_TEST.tif"]["ContentType"].startswith("image/tiff")
    assert calls[f"{prefix}/LakeVectors_S2A_TEST.geojson"]["ContentType"] == "application/geo+json"

    collection = json.loads(calls[f"{prefix}/LakeVectors_S2A_TEST.geojson"]["Body"])
    assert collection["type"] == "FeatureCollection"
    assert len(collection["features"]) == 1
    assert isinstance(calls[f"{prefix}/RGB_S2A_TEST.tif"]["Body"], bytes | bytearray)


def test_save_lake_outputs_to_s3_keeps_original_roi_id(fake_context: Any) -> None:
    """
    Test that outputs for a reprojected ROI land under the loaded ROI id.
    """
    s3_resource = FakeS3Resource()
    image_roi, result = _make_result()
    loaded = image_roi.to_crs("EPSG:4326")

    uris = storage.save_lake_outputs_to_s3(
        context=fake_context,
        s3=s3_resource,
        roi=loaded.to_crs(CRS),
        date_str="2024-07-01",
        result=result,
        config=DetectionConfig(),
    )

    assert all(f"pipeline-outputs/{loaded.id}/2024-07-01/" in uri for uri in uris.values())


def _put_geojson(client: FakeS3Client, key: str, content: Any, modified: str) -> None:
    body = content if isinstance(content, bytes) else json.dumps(content).encode("utf-8")
    client.objects[key] = body
    client.modified[key] = modified


def test_load_roi_from_s3_prefers_staging_and_archives_it(fake_settings: Any, fake_context: Any) -> None:
    """
    Test that a newly staged ROI wins over the processed one.

    Verifies:
    - The newest staged polygon is returned
    - Every staged file is moved under the processed prefix
    """
    s3_resource = FakeS3Resource()
    client = s3_resource.client
    _put_geojson(client, "processed/old.geojson", _roi_geojson((0, 0, 1, 1)), "2024-06-01")
    _put_geojson(client, "staging/older.geojson", _roi_geojson((0, 0, 3, 3)), "2024-07-01")
    _put_geojson(client, "staging/new.geojson", _roi_geojson((0, 0, 2, 2)), "2024-07-02")

    roi = storage.load_roi_from_s3(
        context=fake_context,
        s3=s3_resource,
        settings=fake_settings,
        processed_prefix="processed",
        staging_prefix="staging",
    )

    assert roi is not None
    assert roi.shape.area == pytest.approx(4.0)
    assert sorted(client.objects) == ["processed/new.geojson", "processed/old.geojson", "processed/older.geojson"]


def test_load_roi_from_s3_uses_newest_processed(fake_settings: Any, fake_context: Any) -> None:
    s3_resource = FakeS3Resource()
    _put_geojson(s3_resource.client, "processed/a.geojson", _roi_geojson((0, 0, 1, 1)), "2024-06-01")
    _put_geojson(s3_resource.client, "processed/b.geojson", _roi_geojson((0, 0, 2, 2)), "2024-06-02")

    roi = storage.load_roi_from_s3(
        context=fake_context,
        s3=s3_resource,
        settings=fake_settings,
        processed_prefix="processed",
        staging_prefix="staging",
    )

    assert roi is not None
    assert roi.shape.area == pytest.approx(4.0)


def test_load_roi_from_s3_skips_non_polygon_files(fake_settings: Any, fake_context: Any) -> None:
    """
    Test that unreadable or point-only staged files do not replace the ROI.
    """
    point = {
        "type": "FeatureCollection",
        "features": [{"type": "Feature", "properties": {}, "geometry": {"type": "Point", "coordinates": [0, 0]}}],
    }
    s3_resource = FakeS3Resource()
    client = s3_resource.client
    _put_geojson(client, "processed/current.geojson", _roi_geojson((0, 0, 1, 1)), "2024-06-01")
    _put_geojson(client, "staging/point.geojson", point, "2024-07-02")
    _put_geojson(client, "staging/broken.geojson", b"{not json", "2024-07-03")
    _put_geojson(client, "staging/readme.txt", b"ignored", "2024-07-04")

    roi = storage.load_roi_from_s3(
        context=fake_context,
        s3=s3_resource,
        settings=fake_settings,
        processed_prefix="processed",
        staging_prefix="staging",
    )

    assert roi is not None
    assert roi.shape.area == pytest.approx(1.0)
    assert "staging/point.geojson" not in client.objects
    assert "staging/readme.txt" in client.objects


def test_load_roi_from_s3_uses_fallback(fake_settings: Any, fake_context: Any) -> None:
    s3_resource = FakeS3Resource({"config/roi.geojson": json.dumps(_roi_geojson((0, 0, 1, 1))).encode("utf-8")})

    roi = storage.load_roi_from_s3(
        context=fake_context,
        s3=s3_resource,
        settings=fake_settings,
        processed_prefix="processed",
        staging_prefix="staging",
        fallback_key="config/roi.geojson",
    )

    assert roi is not None
    assert roi.crs == "EPSG:4326"


def test_load_roi_from_s3_missing_fallback_returns_none(fake_settings: Any, fake_context: Any) -> None:
    roi = storage.load_roi_from_s3(
        context=fake_context,
        s3=FakeS3Resource(),
        settings=fake_settings,
        processed_prefix="processed",
        staging_prefix="staging",
        fallback_key="config/roi.geojson",
    )
    assert roi is None


def test_list_geojson_objects_follows_pagination() -> None:
    pages = {
        None: {"Contents": [{"Key": "p/a.geojson", "LastModified": "1"}], "IsTruncated": True, "NextContinuationToken": "t"},
        "t": {"Contents": [{"Key": "p/b.geojson", "LastModified": "2"}, {"Key": "p/c.txt"}]},
    }
    client = SimpleNamespace(list_objects_v2=lambda **kwargs: pages[kwargs.get("ContinuationToken")])

    objects = storage.list_geojson_objects(client, "test-bucket", "p")

    assert [obj["Key"] for obj in objects] == ["p/b.geojson", "p/a.geojson"]


def test_parse_roi_geojson_rejects_empty_collection() -> None:
    with pytest.raises(ValueError):
        storage.parse_roi_geojson({"type": "FeatureCollection", "features": []})
