import numpy as np
import pytest
from affine import Affine
from shapely.geometry import box

from lake_detection.config.detection_config import DetectionConfig
from lake_detection.errors import CrsMismatchError
from lake_detection.geospatial import exports
from lake_detection.models.models import LakeMask, RasterImage, RegionOfInterest

TRANSFORM = Affine(10, 0, 500000, 0, -10, 4600000)
CRS = "EPSG:32633"


@pytest.fixture
def lake_mask() -> LakeMask:
    lake = np.zeros((6, 6), dtype=bool)
    lake[1:3, 1:3] = True
    return LakeMask(lake=lake, evaluated=np.ones((6, 6), dtype=bool), transform=TRANSFORM, crs=CRS)


@pytest.fixture
def roi() -> RegionOfInterest:
    return RegionOfInterest.from_geometry(box(500000, 4599940, 500060, 4600000), CRS)


def test_lake_mask_to_raster_on_native_grid(lake_mask: LakeMask, roi: RegionOfInterest) -> None:
    """
    Test that exporting at the native CRS and resolution keeps the grid.
    """
    values, transform = exports.lake_mask_to_raster(lake_mask, roi, CRS, 10.0)

    assert transform == TRANSFORM
    np.testing.assert_array_equal(values, lake_mask.to_uint8())


def test_lake_mask_to_raster_clips_to_roi(lake_mask: LakeMask) -> None:
    half = RegionOfInterest.from_geometry(box(500000, 4599940, 500020, 4600000), CRS)
    values, _ = exports.lake_mask_to_raster(lake_mask, half, CRS, 10.0)

    assert values.sum() == 2
    assert values[1:3, 1].all()


def test_lake_mask_to_raster_rejects_roi_in_other_crs(lake_mask: LakeMask) -> None:
    roi = RegionOfInterest.from_geometry(box(14.9, 41.5, 15.1, 41.6), "EPSG:4326")
    with pytest.raises(CrsMismatchError):
        exports.lake_mask_to_raster(lake_mask, roi, CRS, 10.0)


def test_lake_mask_to_geotiff_bytes_default_target(lake_mask: LakeMask, roi: RegionOfInterest) -> None:
    """
    Test that the default export is a uint8 EPSG:4326 GeoTIFF at ~10 m.

    Verifies:
    - CRS and pixel size in degrees
    - Values are binary with lake pixels present
    """
    config = DetectionConfig()
    content = exports.lake_mask_to_geotiff_bytes(lake_mask, roi, config)
    data, transform, crs = exports.read_geotiff_bytes(content)

    assert crs == "EPSG:4326"
    assert data.shape[0] == 1
    assert data.dtype == np.uint8
    assert set(np.unique(data)) <= {0, 1}
    assert data.sum() > 0
    assert transform.a == pytest.approx(10.0 / 111_319.49079327357)


def test_rgb_to_geotiff_bytes_zeroes_invalid_pixels() -> None:
    image = RasterImage(
        bands={
            "B2": np.full((2, 2), 0.5),
            "B3": np.full((2, 2), 0.4),
            "B4": np.full((2, 2), 0.3),
            "B11": np.zeros((2, 2)),
            "B10": np.zeros((2, 2)),
        },
        valid=np.array([[True, False], [True, True]]),
        transform=TRANSFORM,
        crs=CRS,
    )
    data, transform, crs = exports.read_geotiff_bytes(exports.rgb_to_geotiff_bytes(image, DetectionConfig()))

    assert crs == CRS
    assert transform == TRANSFORM
    assert data.shape == (3, 2, 2)
    np.testing.assert_allclose(data[:, 0, 0], [0.3, 0.4, 0.5], rtol=1e-6)
    assert (data[:, 0, 1] == 0).all()
