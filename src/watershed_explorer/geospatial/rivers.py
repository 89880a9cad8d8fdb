"""Best-effort river network retrieval from OpenStreetMap."""

import geopandas as gpd
import osmnx as ox
import requests
from dagster import AssetExecutionContext, OpExecutionContext
from osmnx._errors import InsufficientResponseError

from watershed_explorer.config.constants import DEFAULT_OSM_TIMEOUT, DEFAULT_RIVER_TAG, RIVER_NAME_COLUMNS

_LINE_TYPES = ("LineString", "MultiLineString")


def _empty_network() -> gpd.GeoDataFrame:
    return gpd.GeoDataFrame({"name": []}, geometry=[], crs="EPSG:4326")


def filter_river_features(features: gpd.GeoDataFrame, name: str | None) -> gpd.GeoDataFrame:
    """Keep line features whose name contains ``name`` (case-insensitive).

    :param features: OSM features
    :param name: Name filter, or None to keep every line
    :returns: Filtered line features
    """
    if features.empty:
        return _empty_network()

    lines = features[features.geometry.geom_type.isin(_LINE_TYPES)]
    if name:
        needle = name.casefold()
        matched = None
        for column in RIVER_NAME_COLUMNS:
            if column not in lines.columns:
                continue
            hits = lines[column].fillna("").astype(str).str.casefold().str.contains(needle, regex=False)
            matched = hits if matched is None else matched | hits
        if matched is None:
            return _empty_network()
        lines = lines[matched]

    columns = [c for c in ("name", "waterway") if c in lines.columns]
    return lines[columns + [lines.geometry.name]].reset_index(drop=True)


def fetch_river_network(
    context: OpExecutionContext | AssetExecutionContext,
    bbox: tuple[float, float, float, float],
    name: str | None,
    waterway: str = DEFAULT_RIVER_TAG,
    timeout: int = DEFAULT_OSM_TIMEOUT,
) -> gpd.GeoDataFrame:
    """Fetch named waterway lines inside a bounding box.

    The result is neither complete nor topologically connected and is meant
    for display only. An empty response or a timeout yields an empty frame.

    :param context: Dagster context
    :param bbox: (west, south, east, north) in EPSG:4326
    :param name: River name filter
    :param waterway: OSM waterway tag value
    :param timeout: Overpass request timeout in seconds
    :returns: GeoDataFrame of line geometries in EPSG:4326
    """
    context.log.info(f"Fetching waterway={waterway} features named {name!r} within {bbox}")

    previous_timeout = ox.settings.requests_timeout
    ox.settings.requests_timeout = timeout
    try:
        features = ox.features_from_bbox(bbox=bbox, tags={"waterway": waterway})
    except InsufficientResponseError:
        context.log.info("No waterway features returned by OpenStreetMap")
        return _empty_network()
    except requests.exceptions.Timeout as e:
        context.log.warning(f"OpenStreetMap request timed out after {timeout}s: {e}")
        return _empty_network()
    finally:
        ox.settings.requests_timeout = previous_timeout

    rivers = filter_river_features(features, name)
    context.log.info(f"Found {len(rivers)} river segments")
    return rivers
