"""Basin boundary loading and point-in-polygon selection."""

from pathlib import Path

import geopandas as gpd
from dagster import AssetExecutionContext, OpExecutionContext
from shapely.geometry import Point
from shapely.validation import make_valid

from watershed_explorer.config.constants import (
    BOUNDARY_POLICY_ERROR,
    BOUNDARY_POLICY_FIRST,
    DEFAULT_DOWNLOAD_RETRIES,
    DEFAULT_HTTP_TIMEOUT,
    DEFAULT_POINT_CRS,
)
from watershed_explorer.exceptions import AmbiguousSelectionError, NoContainingPolygonError
from watershed_explorer.models.models import BasinBoundary
from watershed_explorer.storage import download_file, extract_archive, filename_from_url, find_vector_layer

_POLYGON_TYPES = ("Polygon", "MultiPolygon")


def load_basins(
    context: OpExecutionContext | AssetExecutionContext,
    archive_url: str,
    data_dir: Path,
    overwrite: bool = False,
    timeout: float = DEFAULT_HTTP_TIMEOUT,
    retries: int = DEFAULT_DOWNLOAD_RETRIES,
) -> gpd.GeoDataFrame:
    """Download, extract and read the basin polygon layer.

    :param context: Dagster context
    :param archive_url: URL of the zipped shapefile
    :param data_dir: Base directory for downloads
    :param overwrite: Re-download and re-extract existing files
    :param timeout: HTTP timeout in seconds
    :param retries: Number of download attempts
    :returns: GeoDataFrame of basin polygons
    """
    archive_path = Path(data_dir) / "basins" / filename_from_url(archive_url, default="basins.zip")
    download_file(context, archive_url, archive_path, overwrite=overwrite, timeout=timeout, retries=retries)
    layer_dir = extract_archive(context, archive_path, overwrite=overwrite)
    layer_path = find_vector_layer(layer_dir)

    gdf = gpd.read_file(layer_path)
    context.log.info(f"Loaded {len(gdf)} basin polygons from {layer_path.name} (crs={gdf.crs})")
    return gdf


def repair_geometries(gdf: gpd.GeoDataFrame) -> gpd.GeoDataFrame:
    """Repair invalid geometries, keeping only their polygonal parts.

    :param gdf: Polygon GeoDataFrame
    :returns: Copy with valid geometries
    """
    repaired = gdf.copy()
    invalid = ~repaired.geometry.is_valid
    if invalid.any():
        repaired.loc[invalid, repaired.geometry.name] = repaired.geometry[invalid].apply(_polygonal_make_valid)
    return repaired


def _polygonal_make_valid(geometry):
    fixed = make_valid(geometry)
    if fixed.geom_type in _POLYGON_TYPES:
        return fixed
    if fixed.geom_type == "GeometryCollection":
        polygons = [part for part in fixed.geoms if part.geom_type in _POLYGON_TYPES]
        if polygons:
            return gpd.GeoSeries(polygons).union_all()
    return fixed


def point_in_layer_crs(lon: float, lat: float, point_crs: str, layer_crs) -> Point:
    """Express a point in the CRS of the polygon layer.

    :param lon: X coordinate (longitude for geographic CRS)
    :param lat: Y coordinate (latitude for geographic CRS)
    :param point_crs: CRS of the point
    :param layer_crs: CRS of the layer, or None to use the point as is
    :returns: Point in the layer CRS
    """
    point = gpd.GeoSeries([Point(lon, lat)], crs=point_crs)
    if layer_crs is not None and point.crs != layer_crs:
        point = point.to_crs(layer_crs)
    return point.iloc[0]


def select_containing_polygon(
    context: OpExecutionContext | AssetExecutionContext,
    gdf: gpd.GeoDataFrame,
    lon: float,
    lat: float,
    point_crs: str = DEFAULT_POINT_CRS,
    policy: str = BOUNDARY_POLICY_ERROR,
) -> BasinBoundary:
    """Select the polygon containing a point.

    Geometries are repaired before the test. Points on a polygon edge count
    as contained, so a point on a shared edge is ambiguous. With
    ``policy="first"`` the lowest row in file order wins when several
    polygons match.

    :param context: Dagster context
    :param gdf: Basin polygons
    :param lon: Point X coordinate
    :param lat: Point Y coordinate
    :param point_crs: CRS of the point
    :param policy: "error" or "first"
    :returns: Selected boundary
    :raises NoContainingPolygonError: If no polygon contains the point
    :raises AmbiguousSelectionError: If several polygons match and policy is "error"
    """
    if policy not in (BOUNDARY_POLICY_ERROR, BOUNDARY_POLICY_FIRST):
        raise ValueError(f"Unknown boundary selection policy: {policy}")

    params = {"lon": lon, "lat": lat, "point_crs": point_crs, "polygons": len(gdf)}
    valid = repair_geometries(gdf)
    point = point_in_layer_crs(lon, lat, point_crs, valid.crs)
    matches = valid[valid.geometry.covers(point)]

    if matches.empty:
        raise NoContainingPolygonError("boundary", "No basin polygon contains the point", params)

    if len(matches) > 1:
        if policy == BOUNDARY_POLICY_ERROR:
            raise AmbiguousSelectionError(
                "boundary",
                f"{len(matches)} basin polygons contain the point",
                {**params, "matching_rows": matches.index.tolist()},
            )
        context.log.warning(
            f"{len(matches)} basin polygons contain ({lon}, {lat}); keeping row {matches.index[0]} (file order)"
        )

    selected = matches.iloc[[0]].reset_index(drop=True)
    boundary = BasinBoundary.from_geodataframe(selected)
    context.log.info(f"Selected basin {boundary.id} with bounds {boundary.bounds}")
    return boundary


def load_boundary(
    context: OpExecutionContext | AssetExecutionContext,
    archive_url: str,
    data_dir: Path,
    lon: float,
    lat: float,
    point_crs: str = DEFAULT_POINT_CRS,
    policy: str = BOUNDARY_POLICY_ERROR,
    overwrite: bool = False,
    timeout: float = DEFAULT_HTTP_TIMEOUT,
    retries: int = DEFAULT_DOWNLOAD_RETRIES,
) -> BasinBoundary:
    """Download the basin layer and select the polygon containing a point.

    :param context: Dagster context
    :param archive_url: URL of the zipped shapefile
    :param data_dir: Base directory for downloads
    :param lon: Point X coordinate
    :param lat: Point Y coordinate
    :param point_crs: CRS of the point
    :param policy: Ambiguity policy
    :param overwrite: Re-download existing files
    :param timeout: HTTP timeout in seconds
    :param retries: Number of download attempts
    :returns: Selected boundary
    """
    gdf = load_basins(context, archive_url, data_dir, overwrite=overwrite, timeout=timeout, retries=retries)
    return select_containing_polygon(context, gdf, lon, lat, point_crs=point_crs, policy=policy)
