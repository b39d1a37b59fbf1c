"""Raster reading, regridding and normalized-difference operations."""

import math
from typing import Any

import numpy as np
import rasterio
import rasterio.warp
from affine import Affine
from numpy.typing import NDArray
from rasterio.crs import CRS
from rasterio.enums import Resampling
from rasterio.features import geometry_mask
from rasterio.transform import array_bounds
from rasterio.windows import from_bounds
from shapely.geometry import mapping, shape

from lake_detection.models.models import RasterImage, RegionOfInterest

METRES_PER_DEGREE = 111_319.49079327357


def _get_geom_dict(roi_geom: Any) -> dict[str, Any] | None:
    """Convert geometry to dictionary format.

    :param roi_geom: Geometry dict or shapely object
    :returns: Geometry dictionary or None
    """
    if roi_geom is None:
        return None
    if isinstance(roi_geom, dict):
        return roi_geom
    return mapping(roi_geom)


def normalized_difference(
    a: NDArray[np.floating], b: NDArray[np.floating], epsilon: float = 0.0
) -> tuple[NDArray[np.floating], NDArray[np.bool_]]:
    """Compute (a - b) / (a + b).

    Pixels whose denominator magnitude is at most ``epsilon`` are undefined:
    they are NaN in the index and False in the returned mask.

    :param a: First band
    :param b: Second band
    :param epsilon: Degenerate denominator tolerance
    :returns: Tuple of (index, defined_mask)
    """
    a = np.asarray(a, dtype="float64")
    b = np.asarray(b, dtype="float64")
    denominator = a + b
    defined = np.abs(denominator) > epsilon
    index = np.full(denominator.shape, np.nan, dtype="float64")
    np.divide(a - b, denominator, out=index, where=defined)
    return index, defined


def resample_band_to_match(
    source_data: NDArray[np.floating],
    source_transform: Any,
    source_crs: str,
    target_shape: tuple[int, ...],
    target_transform: Any,
    target_crs: str,
    roi_transformed_shape: Any = None,
    resampling: Resampling = Resampling.bilinear,
) -> NDArray[np.floating]:
    """Resample source band to match target shape and transform.

    Used when bands have different resolutions (e.g., B2 10m vs B11 20m vs B10 60m).

    :param source_data: Source band array
    :param source_transform: Source transform
    :param source_crs: Source CRS
    :param target_shape: Target shape
    :param target_transform: Target transform
    :param target_crs: Target CRS
    :param roi_transformed_shape: Optional ROI shape in the target CRS
    :param resampling: Resampling method
    :returns: Resampled array
    """
    dst_data = np.full(target_shape, np.nan, dtype="float32")
    rasterio.warp.reproject(
        source=source_data,
        destination=dst_data,
        src_transform=source_transform,
        src_crs=source_crs,
        dst_transform=target_transform,
        dst_crs=target_crs,
        src_nodata=np.nan,
        dst_nodata=np.nan,
        resampling=resampling,
    )

    if roi_transformed_shape is not None:
        mask = geometry_mask(
            [roi_transformed_shape],
            transform=target_transform,
            invert=True,
            out_shape=target_shape,
        )
        dst_data[~mask] = np.nan

    return dst_data


def _read_and_mask_band(
    src: Any, geom_dict: dict[str, Any] | None, geom_crs: str
) -> tuple[NDArray[np.floating], Any, Any]:
    """Read and mask band from raster source.

    Nodata samples and pixels outside the geometry become NaN.

    :param src: Raster source
    :param geom_dict: Geometry dictionary or None
    :param geom_crs: Geometry CRS
    :returns: Tuple of (data, transform, roi_shape)
    """
    if geom_dict:
        roi_transformed = rasterio.warp.transform_geom(src_crs=geom_crs, dst_crs=src.crs, geom=geom_dict)
        roi_shape = shape(roi_transformed)
        window = from_bounds(*roi_shape.bounds, transform=src.transform).round_offsets().round_lengths()
        data = src.read(1, window=window, boundless=True, fill_value=src.nodata or 0).astype("float32")
        window_transform = src.window_transform(window)
        mask = geometry_mask([roi_shape], transform=window_transform, invert=True, out_shape=data.shape)
        if src.nodata is not None:
            data[data == src.nodata] = np.nan
        data[~mask] = np.nan
        return data, window_transform, roi_shape
    data = src.read(1).astype("float32")
    if src.nodata is not None:
        data[data == src.nodata] = np.nan
    return data, src.transform, None


def read_raster_image(
    band_urls: dict[str, str],
    band_roles: dict[str, str],
    roi: RegionOfInterest | None = None,
    properties: dict[str, Any] | None = None,
) -> RasterImage:
    """Read role-keyed band COGs into a single-grid RasterImage.

    The first band in ``band_urls`` defines the grid; other bands are
    resampled onto it. Pixels that are NaN in any band, or outside the ROI,
    are invalid.

    :param band_urls: Band role to COG URL
    :param band_roles: Band role to image band name
    :param roi: Optional region of interest
    :param properties: Acquisition metadata to attach
    :returns: RasterImage in the reference band's CRS
    """
    geom_dict = _get_geom_dict(roi.geom) if roi is not None else None
    geom_crs = roi.crs if roi is not None else "EPSG:4326"

    bands: dict[str, NDArray[np.floating]] = {}
    reference: tuple[tuple[int, ...], Any, Any, Any] | None = None

    for role, url in band_urls.items():
        with rasterio.open(url) as src:
            data, transform, roi_shape = _read_and_mask_band(src, geom_dict, geom_crs)
            if reference is None:
                reference = (data.shape, transform, src.crs, roi_shape)
            else:
                target_shape, target_transform, target_crs, target_roi = reference
                if data.shape != target_shape or transform != target_transform or src.crs != target_crs:
                    data = resample_band_to_match(
                        source_data=data,
                        source_transform=transform,
                        source_crs=src.crs,
                        target_shape=target_shape,
                        target_transform=target_transform,
                        target_crs=target_crs,
                        roi_transformed_shape=target_roi,
                    )
        bands[band_roles[role]] = data

    if reference is None:
        raise ValueError("No band URLs given")

    valid = np.logical_and.reduce([~np.isnan(values) for values in bands.values()])
    return RasterImage(
        bands={name: np.nan_to_num(values, nan=0.0) for name, values in bands.items()},
        valid=valid,
        transform=reference[1],
        crs=reference[2].to_string(),
        properties=properties or {},
    )


def resolution_in_crs_units(resolution: float, crs: str) -> float:
    """Convert a ground resolution in metres to units of ``crs``.

    Geographic CRSs use the degree length on the WGS84 equator.

    :param resolution: Ground resolution in metres
    :param crs: Target CRS
    :returns: Pixel size in CRS units
    """
    if CRS.from_user_input(crs).is_geographic:
        return resolution / METRES_PER_DEGREE
    return resolution


def same_crs(first: str, second: str) -> bool:
    """Compare two CRS definitions regardless of how they are spelled."""
    return bool(CRS.from_user_input(first) == CRS.from_user_input(second))


def is_same_grid(transform: Affine, crs: str, target_crs: str, pixel_size: float) -> bool:
    """Check whether a north-up grid already has the target CRS and pixel size."""
    if not same_crs(crs, target_crs):
        return False
    if transform.b != 0 or transform.d != 0:
        return False
    return math.isclose(abs(transform.a), pixel_size, rel_tol=1e-9) and math.isclose(
        abs(transform.e), pixel_size, rel_tol=1e-9
    )


def regrid_binary(
    values: NDArray[np.uint8],
    transform: Affine,
    crs: str,
    target_crs: str,
    pixel_size: float,
) -> tuple[NDArray[np.uint8], Affine]:
    """Reproject a 0/1 grid onto a north-up grid of ``pixel_size`` in ``target_crs``.

    Nearest-neighbour resampling keeps the output binary.

    :param values: Binary grid
    :param transform: Source transform
    :param crs: Source CRS
    :param target_crs: Target CRS
    :param pixel_size: Target pixel size in target CRS units
    :returns: Tuple of (regridded values, target transform)
    """
    height, width = values.shape
    left, bottom, right, top = array_bounds(height, width, transform)
    dst_transform, dst_width, dst_height = rasterio.warp.calculate_default_transform(
        crs, target_crs, width, height, left, bottom, right, top, resolution=pixel_size
    )
    destination = np.zeros((dst_height, dst_width), dtype=np.uint8)
    rasterio.warp.reproject(
        source=np.ascontiguousarray(values, dtype=np.uint8),
        destination=destination,
        src_transform=transform,
        src_crs=crs,
        dst_transform=dst_transform,
        dst_crs=target_crs,
        src_nodata=None,
        dst_nodata=None,
        resampling=Resampling.nearest,
    )
    return destination, dst_transform
