from pathlib import Path

import numpy as np
import pytest
import rasterio
from affine import Affine
from numpy.typing import NDArray
from shapely.geometry import box

from lake_detection.geospatial import raster_ops
from lake_detection.models.models import RegionOfInterest


def _write_geotiff(
    path: Path,
    data: NDArray[np.number],
    crs: str = "EPSG:4326",
    transform: Affine | None = None,
    nodata: float | None = None,
) -> None:
    """
    Helper function to write a GeoTIFF file for testing.

    Args:
      path: Path to write the GeoTIFF
      data: NumPy array with raster data
      crs: Coordinate reference system
      transform: Affine transform (defaults to simple scale)
      nodata: Optional nodata value
    """
    height, width = data.shape
    transform = transform or Affine.translation(0, 0) * Affine.scale(1, -1)
    with rasterio.open(
        path,
        "w",
        driver="GTiff",
        height=height,
        width=width,
        count=1,
        dtype=data.dtype,
        crs=crs,
        transform=transform,
        nodata=nodata,
    ) as dst:
        dst.write(data, 1)


def test_normalized_difference_marks_degenerate_pixels() -> None:
    """
    Test that pixels with a zero denominator are NaN and flagged undefined.
    """
    a = np.array([[3.0, 0.0, 1.0]])
    b = np.array([[1.0, 0.0, -1.0]])
    index, defined = raster_ops.normalized_difference(a, b)

    np.testing.assert_array_equal(defined, [[True, False, False]])
    np.testing.assert_allclose(index[0, 0], 0.5)
    assert np.isnan(index[0, 1:]).all()


def test_normalized_difference_respects_epsilon() -> None:
    a = np.array([[1e-9, 0.5]])
    b = np.array([[0.0, 0.5]])
    _, defined = raster_ops.normalized_difference(a, b, epsilon=1e-6)
    np.testing.assert_array_equal(defined, [[False, True]])


def test_read_raster_image_masks_to_roi(tmp_path: Path) -> None:
    """
    Test that read_raster_image clips bands to the ROI and marks validity.

    Verifies that only pixels within the ROI bounds are returned
    and that bands are stored under their image names.
    """
    blue = np.array([[1, 2], [3, 4]], dtype="uint16")
    red = np.array([[5, 6], [7, 8]], dtype="uint16")
    _write_geotiff(tmp_path / "blue.tif", blue)
    _write_geotiff(tmp_path / "red.tif", red)

    # ROI covers only the top-left pixel
    roi = RegionOfInterest.from_geometry(box(0, -1, 1, 0), "EPSG:4326")
    image = raster_ops.read_raster_image(
        {"blue": str(tmp_path / "blue.tif"), "red": str(tmp_path / "red.tif")},
        {"blue": "B2", "red": "B4"},
        roi=roi,
        properties={"id": "scene"},
    )

    assert image.shape == (1, 1)
    assert image.band_names == ["B2", "B4"]
    np.testing.assert_allclose(image.band("B2"), [[1.0]])
    np.testing.assert_allclose(image.band("B4"), [[5.0]])
    assert image.valid.all()
    assert image.properties == {"id": "scene"}
    assert image.transform.c == pytest.approx(0.0)
    assert image.transform.f == pytest.approx(0.0)


def test_read_raster_image_invalidates_nodata(tmp_path: Path) -> None:
    data = np.array([[0, 2], [3, 4]], dtype="uint16")
    _write_geotiff(tmp_path / "blue.tif", data, nodata=0)

    image = raster_ops.read_raster_image({"blue": str(tmp_path / "blue.tif")}, {"blue": "B2"})

    np.testing.assert_array_equal(image.valid, [[False, True], [True, True]])
    assert image.band("B2")[0, 0] == 0


def test_read_raster_image_resamples_coarse_band(tmp_path: Path) -> None:
    """
    Test that a coarser band is resampled onto the first band's grid.

    Verifies that when bands have different resolutions,
    the coarse band is resampled to match the reference grid.
    """
    green = np.array([[4, 4], [4, 4]], dtype="float32")
    swir = np.array([[2]], dtype="float32")
    _write_geotiff(tmp_path / "green.tif", green)
    _write_geotiff(tmp_path / "swir.tif", swir, transform=Affine.translation(0, 0) * Affine.scale(2, -2))

    roi = RegionOfInterest.from_geometry(box(0, -2, 2, 0), "EPSG:4326")
    image = raster_ops.read_raster_image(
        {"green": str(tmp_path / "green.tif"), "swir": str(tmp_path / "swir.tif")},
        {"green": "B3", "swir": "B11"},
        roi=roi,
    )

    assert image.shape == (2, 2)
    swir_values = image.band("B11")[image.valid]
    assert swir_values.size > 0, "Should have at least some valid pixels"
    np.testing.assert_allclose(swir_values, 2.0, rtol=1e-2, atol=1e-2)


def test_read_raster_image_requires_a_band() -> None:
    with pytest.raises(ValueError):
        raster_ops.read_raster_image({}, {})


def test_resolution_in_crs_units() -> None:
    assert raster_ops.resolution_in_crs_units(10.0, "EPSG:32633") == 10.0
    assert raster_ops.resolution_in_crs_units(10.0, "EPSG:4326") == pytest.approx(10.0 / raster_ops.METRES_PER_DEGREE)


def test_same_crs_ignores_spelling() -> None:
    assert raster_ops.same_crs("EPSG:4326", "epsg:4326")
    assert not raster_ops.same_crs("EPSG:4326", "EPSG:32633")


def test_regrid_binary_keeps_values_binary() -> None:
    values = np.zeros((4, 4), dtype=np.uint8)
    values[:2, :2] = 1
    transform = Affine(10, 0, 500000, 0, -10, 4600000)

    regridded, new_transform = raster_ops.regrid_binary(values, transform, "EPSG:32633", "EPSG:32633", 5.0)

    assert set(np.unique(regridded)) <= {0, 1}
    assert regridded[:4, :4].all()
    assert not regridded[4:, 4:].any()
    assert new_transform.a == pytest.approx(5.0)
