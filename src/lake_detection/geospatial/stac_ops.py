"""STAC operations for searching and selecting Sentinel-2 scenes."""

from typing import Any

from dagster import AssetExecutionContext, OpExecutionContext
from planetary_computer import sign

from lake_detection.config.constants import (
    DEFAULT_CLOUD_COVER_THRESHOLD,
    DEFAULT_STAC_COLLECTION,
    DEFAULT_SUN_ELEVATION_THRESHOLD,
)


def _acquisition_key(item: Any) -> str:
    """Sort key: product generation time, falling back to acquisition datetime."""
    properties = item.properties
    return str(properties.get("s2:generation_time") or properties.get("datetime") or "")


def search_sentinel_items(
    context: OpExecutionContext | AssetExecutionContext,
    stac_client: Any,
    intersects: dict[str, Any],
    start_date: str,
    end_date: str,
    collection: str = DEFAULT_STAC_COLLECTION,
    cloud_cover_lt: float = DEFAULT_CLOUD_COVER_THRESHOLD,
    sun_elevation_gt: float = DEFAULT_SUN_ELEVATION_THRESHOLD,
) -> list[Any]:
    """Search Sentinel-2 items and return candidates in acquisition order.

    Items reporting a sun elevation at or below ``sun_elevation_gt`` are
    dropped; items without the property are kept.

    :param context: Dagster context
    :param stac_client: STAC client
    :param intersects: ROI geometry dictionary (EPSG:4326)
    :param start_date: First date, inclusive
    :param end_date: Last date, inclusive
    :param collection: STAC collection id
    :param cloud_cover_lt: Maximum scene cloud cover percentage
    :param sun_elevation_gt: Minimum sun elevation in degrees
    :returns: Items sorted by generation time
    """
    items = list(
        stac_client.search(
            collections=[collection],
            intersects=intersects,
            datetime=f"{start_date}/{end_date}",
            query={"eo:cloud_cover": {"lt": cloud_cover_lt}},
        ).items()
    )

    candidates = [
        item
        for item in items
        if item.properties.get("view:sun_elevation") is None
        or item.properties["view:sun_elevation"] > sun_elevation_gt
    ]
    candidates.sort(key=_acquisition_key)

    context.log.info(
        f"Found {len(items)} {collection} item(s) for {start_date}/{end_date}, "
        f"{len(candidates)} above {sun_elevation_gt} deg sun elevation"
    )
    return candidates


def select_item_by_index(items: list[Any], image_index: int) -> Any:
    """Pick one scene from the ordered candidates.

    :param items: Candidate items
    :param image_index: Zero-based position
    :returns: Selected item
    :raises IndexError: If there is no item at ``image_index``
    """
    if not 0 <= image_index < len(items):
        raise IndexError(f"No scene at index {image_index}; {len(items)} candidate(s) available")
    return items[image_index]


def select_and_sign_band_urls(
    item: Any,
    band_preferences: dict[str, list[str]],
) -> tuple[dict[str, str] | None, list[str], list[str]]:
    """Select and sign band URLs based on preferences.

    :param item: STAC item
    :param band_preferences: Band role to candidate asset keys
    :returns: Tuple of (signed_urls or None, available_assets, missing_roles)
    """
    available_assets = list(item.assets.keys())
    signed_urls = {}
    missing = []

    for role, candidates in band_preferences.items():
        for asset_key in candidates:
            if asset_key in item.assets:
                signed_urls[role] = sign(item.assets[asset_key].href)
                break
        else:
            missing.append(role)

    return (None, available_assets, missing) if missing else (signed_urls, available_assets, missing)
