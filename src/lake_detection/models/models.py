"""Data models for lake detection."""

import json
import uuid
from typing import Any
from uuid import UUID

import geopandas as gpd
import numpy as np
from affine import Affine
from numpy.typing import NDArray
from pydantic import BaseModel, ConfigDict, Field as PydanticField, field_validator, model_validator
from shapely.geometry import mapping, shape
from shapely.geometry.base import BaseGeometry

from lake_detection.errors import BandNameCollisionError, GridShapeMismatchError, MissingBandError


def _frozen(array: Any, dtype: Any = None) -> NDArray[Any]:
    """Copy an array and make the copy read-only."""
    frozen = np.array(array, dtype=dtype, copy=True)
    frozen.setflags(write=False)
    return frozen


def _as_affine(value: Any) -> Affine:
    """Accept an Affine or its (a, b, c, d, e, f) coefficients."""
    if isinstance(value, Affine):
        return value
    coefficients = tuple(value)
    if len(coefficients) not in (6, 9):
        raise ValueError(f"Expected an affine transform, got {value!r}")
    return Affine(*coefficients[:6])


class RegionOfInterest(BaseModel):
    """Region of interest model with geometry, CRS and UUID.

    :param id: UUID derived from geometry
    :param geom: GeoJSON geometry dictionary (Polygon or MultiPolygon)
    :param crs: CRS of the geometry
    """

    model_config = ConfigDict(frozen=True)

    id: UUID = PydanticField(..., description="UUIDv5 derived from the geometry")
    geom: dict[str, Any] = PydanticField(..., description="GeoJSON representation of the geometry")
    crs: str = PydanticField("EPSG:4326", description="CRS of the geometry")

    @field_validator("geom")
    @classmethod
    def _check_polygonal(cls, value: dict[str, Any]) -> dict[str, Any]:
        if value.get("type") not in ("Polygon", "MultiPolygon"):
            raise ValueError(f"ROI must be a Polygon or MultiPolygon, got {value.get('type')}")
        return value

    @property
    def shape(self) -> BaseGeometry:
        return shape(self.geom)

    @staticmethod
    def get_id_from_geom(geometry: Any) -> UUID:
        """Generate UUIDv5 from geometry.

        :param geometry: Geometry object
        :returns: UUIDv5
        """
        geojson = json.dumps(mapping(geometry), sort_keys=True)
        return uuid.uuid5(uuid.NAMESPACE_URL, geojson)

    @classmethod
    def from_geometry(cls, geometry: BaseGeometry, crs: str) -> "RegionOfInterest":
        """Create RegionOfInterest from a shapely geometry.

        :param geometry: Polygon or MultiPolygon
        :param crs: CRS of the geometry
        :returns: RegionOfInterest instance
        """
        return cls(id=cls.get_id_from_geom(geometry), geom=mapping(geometry), crs=crs)

    @classmethod
    def from_geodataframe(cls, gdf: gpd.GeoDataFrame) -> "RegionOfInterest":
        """Create RegionOfInterest from GeoDataFrame.

        All geometries are dissolved into one region.

        :param gdf: GeoDataFrame
        :returns: RegionOfInterest instance
        """
        geometry = gdf.geometry.union_all() if len(gdf) > 1 else gdf.geometry.iloc[0]
        crs = gdf.crs.to_string() if gdf.crs is not None else "EPSG:4326"
        return cls.from_geometry(geometry, crs)

    def to_crs(self, crs: str) -> "RegionOfInterest":
        """Reproject the region into another CRS.

        The id is kept, so outputs stay addressable by the original ROI id.

        :param crs: Target CRS
        :returns: New RegionOfInterest in ``crs``
        """
        gdf = gpd.GeoDataFrame(geometry=[self.shape], crs=self.crs).to_crs(crs)
        return RegionOfInterest(id=self.id, geom=mapping(gdf.geometry.iloc[0]), crs=crs)


class RasterImage(BaseModel):
    """Multispectral image on a single georeferenced grid.

    Every stage returns a new image; arrays are read-only copies.

    :param bands: Band name to 2-D sample grid
    :param valid: Image validity mask, True where the pixel holds data
    :param band_masks: Extra per-band validity for sparse bands
    :param transform: Affine geotransform shared by all bands
    :param crs: Coordinate reference system shared by all bands
    :param properties: Acquisition metadata, carried through unchanged
    """

    model_config = ConfigDict(arbitrary_types_allowed=True, frozen=True)

    bands: dict[str, Any]
    valid: Any = None
    band_masks: dict[str, Any] = PydanticField(default_factory=dict)
    transform: Any
    crs: str
    properties: dict[str, Any] = PydanticField(default_factory=dict)

    @model_validator(mode="before")
    @classmethod
    def _freeze_arrays(cls, data: Any) -> Any:
        if not isinstance(data, dict):
            return data
        data = dict(data)
        bands = {name: _frozen(values) for name, values in (data.get("bands") or {}).items()}
        if not bands:
            raise ValueError("RasterImage requires at least one band")
        data["bands"] = bands
        data["band_masks"] = {name: _frozen(mask, bool) for name, mask in (data.get("band_masks") or {}).items()}
        if data.get("valid") is None:
            data["valid"] = np.ones(next(iter(bands.values())).shape, dtype=bool)
        data["valid"] = _frozen(data["valid"], bool)
        return data

    @field_validator("transform", mode="before")
    @classmethod
    def _check_transform(cls, value: Any) -> Affine:
        return _as_affine(value)

    @model_validator(mode="after")
    def _check_grid(self) -> "RasterImage":
        expected = self.valid.shape
        if len(expected) != 2:
            raise ValueError(f"Bands must be 2-D, got shape {expected}")
        for name, values in self.bands.items():
            if values.shape != expected:
                raise GridShapeMismatchError(name, values.shape, expected)
        for name, mask in self.band_masks.items():
            if name not in self.bands:
                raise MissingBandError(name, self.band_names)
            if mask.shape != expected:
                raise GridShapeMismatchError(name, mask.shape, expected)
        return self

    @property
    def shape(self) -> tuple[int, int]:
        return self.valid.shape

    @property
    def band_names(self) -> list[str]:
        return list(self.bands)

    def band(self, name: str) -> NDArray[Any]:
        """Get a band by name.

        :param name: Band name
        :returns: Band samples
        :raises MissingBandError: If the band does not exist
        """
        try:
            return self.bands[name]
        except KeyError:
            raise MissingBandError(name, self.band_names) from None

    def band_validity(self, name: str) -> NDArray[np.bool_]:
        """Validity of one band, combining image and per-band masks."""
        self.band(name)
        if name in self.band_masks:
            return self.valid & self.band_masks[name]
        return self.valid

    def with_valid(self, mask: NDArray[np.bool_]) -> "RasterImage":
        """Restrict validity to ``mask``; pixels already invalid stay invalid.

        :param mask: Boolean grid, True where the pixel remains valid
        :returns: New RasterImage
        """
        if mask.shape != self.shape:
            raise GridShapeMismatchError("mask", mask.shape, self.shape)
        return RasterImage(
            bands=self.bands,
            valid=self.valid & mask,
            band_masks=self.band_masks,
            transform=self.transform,
            crs=self.crs,
            properties=self.properties,
        )

    def with_bands(self, bands: dict[str, NDArray[Any]]) -> "RasterImage":
        """Replace band samples keeping masks, grid and properties."""
        return RasterImage(
            bands=bands,
            valid=self.valid,
            band_masks=self.band_masks,
            transform=self.transform,
            crs=self.crs,
            properties=self.properties,
        )

    def add_band(self, name: str, data: NDArray[Any], mask: NDArray[np.bool_] | None = None) -> "RasterImage":
        """Add a new band.

        :param name: Band name, must not exist yet
        :param data: Band samples on the image grid
        :param mask: Optional per-band validity
        :returns: New RasterImage with the band
        :raises BandNameCollisionError: If ``name`` already exists
        """
        if name in self.bands:
            raise BandNameCollisionError(name)
        band_masks = dict(self.band_masks)
        if mask is not None:
            band_masks[name] = mask
        return RasterImage(
            bands={**self.bands, name: data},
            valid=self.valid,
            band_masks=band_masks,
            transform=self.transform,
            crs=self.crs,
            properties=self.properties,
        )


class LakeMask(BaseModel):
    """Lake classification on an image grid.

    ``evaluated`` marks pixels the water test ran on; ``lake`` is only ever
    True inside it. Outside ``evaluated`` the pixel is no-data, not "not lake".

    :param lake: True where classified as lake
    :param evaluated: True where the pixel was classified
    :param transform: Affine geotransform
    :param crs: Coordinate reference system
    """

    model_config = ConfigDict(arbitrary_types_allowed=True, frozen=True)

    lake: Any
    evaluated: Any
    transform: Any
    crs: str

    @model_validator(mode="before")
    @classmethod
    def _freeze_arrays(cls, data: Any) -> Any:
        if isinstance(data, dict):
            data = dict(data)
            data["lake"] = _frozen(data["lake"], bool)
            data["evaluated"] = _frozen(data["evaluated"], bool)
        return data

    @field_validator("transform", mode="before")
    @classmethod
    def _check_transform(cls, value: Any) -> Affine:
        return _as_affine(value)

    @model_validator(mode="after")
    def _check_grid(self) -> "LakeMask":
        if self.lake.shape != self.evaluated.shape:
            raise GridShapeMismatchError("lake", self.lake.shape, self.evaluated.shape)
        if np.any(self.lake & ~self.evaluated):
            raise ValueError("Lake pixels must lie inside the evaluated area")
        return self

    @property
    def shape(self) -> tuple[int, int]:
        return self.lake.shape

    @property
    def pixel_count(self) -> int:
        return int(np.count_nonzero(self.lake))

    def as_band(self) -> np.ma.MaskedArray:
        """Sparse uint8 band: 1 where lake, masked elsewhere."""
        return np.ma.MaskedArray(self.lake.astype(np.uint8), mask=~self.lake)

    def to_uint8(self) -> NDArray[np.uint8]:
        """Dense uint8 grid: 1 where lake, 0 for non-lake and no-data."""
        return self.lake.astype(np.uint8)


class LakeFeature(BaseModel):
    """One connected lake region.

    :param id: Component label, 1-based
    :param geometry: Polygon or MultiPolygon
    :param pixel_count: Pixels in the region on the vectorization grid
    :param area: Geometry area in CRS units
    """

    model_config = ConfigDict(arbitrary_types_allowed=True, frozen=True)

    id: int
    geometry: BaseGeometry
    pixel_count: int
    area: float


class LakeVectors(BaseModel):
    """Ordered collection of lake polygons."""

    model_config = ConfigDict(arbitrary_types_allowed=True, frozen=True)

    features: list[LakeFeature] = PydanticField(default_factory=list)
    crs: str
    resolution: float
    approximate: bool = False

    def __len__(self) -> int:
        return len(self.features)

    @property
    def is_empty(self) -> bool:
        return not self.features

    @property
    def total_area(self) -> float:
        return float(sum(f.area for f in self.features))

    def to_geodataframe(self) -> gpd.GeoDataFrame:
        """Convert to GeoDataFrame.

        :returns: GeoDataFrame with id, pixel_count and area columns
        """
        return gpd.GeoDataFrame(
            {
                "id": [f.id for f in self.features],
                "pixel_count": [f.pixel_count for f in self.features],
                "area": [f.area for f in self.features],
            },
            geometry=[f.geometry for f in self.features],
            crs=self.crs,
        )

    def to_geojson(self) -> str:
        """Serialize as a GeoJSON FeatureCollection."""
        if self.is_empty:
            return json.dumps({"type": "FeatureCollection", "features": []})
        return str(self.to_geodataframe().to_json())


class LakeDetectionResult(BaseModel):
    """Outputs of one pipeline run.

    :param image: Final image including the lake mask band
    :param lake_mask: Lake classification
    :param vectors: Lake polygons
    """

    model_config = ConfigDict(arbitrary_types_allowed=True, frozen=True)

    image: RasterImage
    lake_mask: LakeMask
    vectors: LakeVectors


class LakeSummary(BaseModel):
    """Summary of one partition run, persisted as the asset value.

    :param roi_id: ROI UUID
    :param date: Partition date
    :param scene_id: Selected STAC item id
    :param lake_count: Number of lake polygons
    :param lake_pixel_count: Lake pixels on the image grid
    :param lake_area: Total polygon area in vector CRS units
    :param outputs: Output name to s3:// URI
    :param error: Reason no detection was produced
    """

    roi_id: UUID
    date: str
    scene_id: str | None = None
    lake_count: int = 0
    lake_pixel_count: int = 0
    lake_area: float = 0.0
    outputs: dict[str, str] = PydanticField(default_factory=dict)
    error: str | None = None
