"""Raster-to-vector conversion of lake masks."""

import math
from collections import defaultdict

import numpy as np
from affine import Affine
from dagster import get_dagster_logger
from numpy.typing import NDArray
from rasterio.features import geometry_mask, shapes
from scipy import ndimage
from shapely import make_valid
from shapely.affinity import affine_transform
from shapely.geometry import shape
from shapely.geometry.base import BaseGeometry
from shapely.ops import unary_union

from lake_detection.config.detection_config import DetectionConfig
from lake_detection.errors import CrsMismatchError, PolygonizationError
from lake_detection.geospatial.raster_ops import (
    is_same_grid,
    regrid_binary,
    resolution_in_crs_units,
    same_crs,
)
from lake_detection.models.models import LakeFeature, LakeMask, LakeVectors, RegionOfInterest


def roi_pixel_mask(roi: RegionOfInterest, transform: Affine, out_shape: tuple[int, int]) -> NDArray[np.bool_]:
    """Rasterize the ROI: True for pixels whose centre lies inside it.

    :param roi: Region of interest in the grid CRS
    :param transform: Grid transform
    :param out_shape: Grid shape
    :returns: Boolean grid
    """
    return geometry_mask([roi.shape], transform=transform, invert=True, out_shape=out_shape)


def coarsen_mask(mask: NDArray[np.bool_], transform: Affine, factor: int) -> tuple[NDArray[np.bool_], Affine]:
    """Aggregate ``factor`` x ``factor`` blocks by majority.

    :param mask: Boolean grid
    :param transform: Grid transform
    :param factor: Block size in pixels
    :returns: Tuple of (coarse mask, coarse transform)
    """
    if factor <= 1:
        return mask, transform
    height, width = mask.shape
    padded = np.pad(mask, ((0, -height % factor), (0, -width % factor)))
    blocks = padded.reshape(padded.shape[0] // factor, factor, padded.shape[1] // factor, factor)
    return blocks.mean(axis=(1, 3)) >= 0.5, transform * Affine.scale(factor)


def label_regions(mask: NDArray[np.bool_], connectivity: int = 8) -> tuple[NDArray[np.int32], int]:
    """Label connected regions of True pixels.

    :param mask: Boolean grid
    :param connectivity: 4 (edges) or 8 (edges and corners)
    :returns: Tuple of (labels, region count); labels follow row-major order
    """
    if connectivity not in (4, 8):
        raise ValueError(f"Connectivity must be 4 or 8, got {connectivity}")
    structure = ndimage.generate_binary_structure(2, 2 if connectivity == 8 else 1)
    labels, count = ndimage.label(mask, structure=structure)
    return labels.astype(np.int32), int(count)


def _polygonize_tiles(
    labels: NDArray[np.int32], tile_size: int, connectivity: int
) -> dict[int, list[BaseGeometry]]:
    """Polygonize a label grid tile by tile in pixel coordinates.

    Pixel coordinates are integers, so pieces of one region from
    neighbouring tiles share exact edges and union cleanly.

    :param labels: Region labels, 0 for background
    :param tile_size: Tile side in pixels
    :param connectivity: 4 or 8
    :returns: Label to polygon pieces
    """
    pieces: dict[int, list[BaseGeometry]] = defaultdict(list)
    height, width = labels.shape
    for row in range(0, height, tile_size):
        for col in range(0, width, tile_size):
            tile = np.ascontiguousarray(labels[row : row + tile_size, col : col + tile_size])
            if not tile.any():
                continue
            for geom, value in shapes(
                tile, mask=tile > 0, connectivity=connectivity, transform=Affine.translation(col, row)
            ):
                pieces[int(value)].append(make_valid(shape(geom)))
    return pieces


def _to_world(geometry: BaseGeometry, transform: Affine) -> BaseGeometry:
    return affine_transform(geometry, [transform.a, transform.b, transform.d, transform.e, transform.c, transform.f])


def polygonize_lake_mask(
    lake_mask: LakeMask,
    roi: RegionOfInterest,
    crs: str | None = None,
    resolution: float | None = None,
    config: DetectionConfig | None = None,
) -> LakeVectors:
    """Convert lake pixels inside the ROI into one polygon per connected region.

    Pixels outside the ROI are dropped before regions are grouped. Regions
    are labelled on the full grid, then polygonized in tiles whose pieces are
    merged by label, so tile seams never split a region. In best-effort mode
    the grid may be coarsened to respect ``max_pixels`` and geometries are
    simplified.

    :param lake_mask: Lake classification
    :param roi: Region of interest in the mask CRS
    :param crs: Output CRS, defaults to the mask CRS
    :param resolution: Output ground resolution in metres, defaults to the mask pixel size
    :param config: Detection config
    :returns: LakeVectors in ``crs``
    :raises CrsMismatchError: If the ROI is not in the mask CRS
    :raises PolygonizationError: If resource limits cannot be met
    """
    logger = get_dagster_logger()
    config = config or DetectionConfig()
    if not same_crs(roi.crs, lake_mask.crs):
        raise CrsMismatchError(lake_mask.crs, roi.crs)

    target_crs = crs or lake_mask.crs
    if resolution is None:
        if not same_crs(target_crs, lake_mask.crs):
            raise ValueError("A resolution is required when changing CRS")
        pixel_size = abs(lake_mask.transform.a)
    else:
        pixel_size = resolution_in_crs_units(resolution, target_crs)

    inside = roi_pixel_mask(roi, lake_mask.transform, lake_mask.shape)
    lake = lake_mask.lake & inside
    transform = lake_mask.transform

    if not is_same_grid(transform, lake_mask.crs, target_crs, pixel_size):
        values, transform = regrid_binary(lake.astype(np.uint8), transform, lake_mask.crs, target_crs, pixel_size)
        target_roi = roi if same_crs(target_crs, roi.crs) else roi.to_crs(target_crs)
        inside = roi_pixel_mask(target_roi, transform, values.shape)
        lake = (values == 1) & inside

    approximate = False
    considered = int(np.count_nonzero(inside))
    if considered > config.max_pixels:
        if not config.best_effort:
            raise PolygonizationError(
                f"ROI covers {considered} pixels, more than max_pixels={config.max_pixels}; enable best_effort"
            )
        factor = math.ceil(math.sqrt(considered / config.max_pixels))
        if factor > config.max_coarsen_factor:
            raise PolygonizationError(
                f"ROI covers {considered} pixels; coarsening by {factor} exceeds "
                f"max_coarsen_factor={config.max_coarsen_factor}"
            )
        logger.warning(f"ROI covers {considered} pixels; coarsening grid by a factor of {factor}")
        lake, transform = coarsen_mask(lake, transform, factor)
        approximate = True

    if not lake.any():
        logger.info("No lake pixels inside the ROI")
        return LakeVectors(features=[], crs=target_crs, resolution=abs(transform.a), approximate=approximate)

    labels, count = label_regions(lake, config.connectivity)
    tile_size = max(1, config.tile_size // config.tile_scale) if config.best_effort else config.tile_size
    pieces = _polygonize_tiles(labels, tile_size, config.connectivity)
    pixel_counts = np.bincount(labels.ravel(), minlength=count + 1)

    features = []
    for label in range(1, count + 1):
        geometry = unary_union(pieces[label])
        if config.best_effort and config.simplify_tolerance > 0:
            geometry = geometry.simplify(config.simplify_tolerance, preserve_topology=True)
            approximate = True
        geometry = _to_world(geometry, transform)
        features.append(
            LakeFeature(id=label, geometry=geometry, pixel_count=int(pixel_counts[label]), area=float(geometry.area))
        )

    logger.info(f"Vectorized {count} lake region(s) with {tile_size}px tiles")
    return LakeVectors(features=features, crs=target_crs, resolution=abs(transform.a), approximate=approximate)
