"""Errors raised by the lake detection pipeline."""


class LakeDetectionError(Exception):
    """Base class for lake detection failures.

    Not a ValueError, so pydantic validators propagate subclasses unchanged.
    """


class MissingBandError(LakeDetectionError, LookupError):
    """A band required by a pipeline stage is not present in the image."""

    def __init__(self, band: str, available: list[str] | None = None) -> None:
        self.band = band
        self.available = available or []
        super().__init__(f"Missing required band {band!r}. Available bands: {self.available}")


class GridShapeMismatchError(LakeDetectionError):
    """A band or mask does not share the image grid shape."""

    def __init__(self, band: str, shape: tuple[int, ...], expected: tuple[int, ...]) -> None:
        self.band = band
        self.shape = shape
        self.expected = expected
        super().__init__(f"Band {band!r} has shape {shape}, expected {expected}")


class CrsMismatchError(LakeDetectionError):
    """The region of interest is not expressed in the image CRS."""

    def __init__(self, image_crs: str, roi_crs: str) -> None:
        self.image_crs = image_crs
        self.roi_crs = roi_crs
        super().__init__(f"ROI CRS {roi_crs} does not match image CRS {image_crs}")


class BandNameCollisionError(LakeDetectionError):
    """An output band name is already used by the image."""

    def __init__(self, band: str) -> None:
        self.band = band
        super().__init__(f"Band {band!r} already exists in image")


class PolygonizationError(LakeDetectionError, RuntimeError):
    """Vectorization could not complete within the configured resource limits."""
