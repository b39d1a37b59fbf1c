"""Raster and vector export encodings for lake detection outputs."""

from typing import Any

import numpy as np
from affine import Affine
from numpy.typing import NDArray
from rasterio.io import MemoryFile

from lake_detection.config.detection_config import DetectionConfig
from lake_detection.errors import CrsMismatchError
from lake_detection.geospatial.raster_ops import (
    is_same_grid,
    regrid_binary,
    resolution_in_crs_units,
    same_crs,
)
from lake_detection.geospatial.vector_ops import roi_pixel_mask
from lake_detection.models.models import LakeMask, RasterImage, RegionOfInterest


def lake_mask_to_raster(
    lake_mask: LakeMask,
    roi: RegionOfInterest,
    crs: str,
    resolution: float,
) -> tuple[NDArray[np.uint8], Affine]:
    """Render the lake mask as a dense uint8 grid clipped to the ROI.

    No-data and non-lake pixels are 0, lake pixels are 1.

    :param lake_mask: Lake classification
    :param roi: Region of interest in the mask CRS
    :param crs: Output CRS
    :param resolution: Output ground resolution in metres
    :returns: Tuple of (values, transform)
    """
    if not same_crs(roi.crs, lake_mask.crs):
        raise CrsMismatchError(lake_mask.crs, roi.crs)

    inside = roi_pixel_mask(roi, lake_mask.transform, lake_mask.shape)
    values = (lake_mask.to_uint8() * inside).astype(np.uint8)
    transform = lake_mask.transform

    pixel_size = resolution_in_crs_units(resolution, crs)
    if not is_same_grid(transform, lake_mask.crs, crs, pixel_size):
        values, transform = regrid_binary(values, transform, lake_mask.crs, crs, pixel_size)
        target_roi = roi if same_crs(crs, roi.crs) else roi.to_crs(crs)
        values = (values * roi_pixel_mask(target_roi, transform, values.shape)).astype(np.uint8)
    return values, transform


def _write_geotiff_bytes(
    data: NDArray[Any],
    transform: Affine,
    crs: str,
    nodata: float | None = None,
    descriptions: list[str] | None = None,
    tags: dict[str, Any] | None = None,
) -> bytes:
    """Encode a (bands, rows, cols) array as a GeoTIFF in memory."""
    count, height, width = data.shape
    profile = {
        "driver": "GTiff",
        "height": height,
        "width": width,
        "count": count,
        "dtype": data.dtype.name,
        "crs": crs,
        "transform": transform,
        "nodata": nodata,
        "compress": "deflate",
    }
    with MemoryFile() as memfile:
        with memfile.open(**profile) as dst:
            dst.write(data)
            for index, description in enumerate(descriptions or [], start=1):
                dst.set_band_description(index, description)
            if tags:
                dst.update_tags(**tags)
        return bytes(memfile.read())


def lake_mask_to_geotiff_bytes(
    lake_mask: LakeMask,
    roi: RegionOfInterest,
    config: DetectionConfig,
) -> bytes:
    """Encode the lake mask as a single-band uint8 GeoTIFF.

    Uses ``config.target_crs`` and ``config.target_resolution``; nodata is 0.

    :param lake_mask: Lake classification
    :param roi: Region of interest in the mask CRS
    :param config: Detection config
    :returns: GeoTIFF bytes
    """
    values, transform = lake_mask_to_raster(lake_mask, roi, config.target_crs, config.target_resolution)
    return _write_geotiff_bytes(
        values[np.newaxis, ...],
        transform,
        config.target_crs,
        nodata=0,
        descriptions=[config.lake_band_name],
        tags={
            "water_index_threshold": config.water_index_threshold,
            "water_green_red_threshold": config.water_green_red_threshold,
        },
    )


def rgb_to_geotiff_bytes(image: RasterImage, config: DetectionConfig) -> bytes:
    """Encode the red, green and blue reflectance bands as a GeoTIFF.

    Invalid pixels are written as 0.

    :param image: Scaled image
    :param config: Detection config
    :returns: GeoTIFF bytes on the image grid
    """
    names = [config.band_for("red"), config.band_for("green"), config.band_for("blue")]
    data = np.stack([np.where(image.valid, image.band(name), 0.0) for name in names]).astype("float32")
    return _write_geotiff_bytes(data, image.transform, image.crs, descriptions=names)


def read_geotiff_bytes(content: bytes) -> tuple[NDArray[Any], Affine, str]:
    """Decode GeoTIFF bytes.

    :param content: GeoTIFF bytes
    :returns: Tuple of (data, transform, crs)
    """
    with MemoryFile(content) as memfile, memfile.open() as src:
        return src.read(), src.transform, src.crs.to_string()

