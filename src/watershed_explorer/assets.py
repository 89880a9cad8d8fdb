"""Dagster assets for the watershed elevation and climate workflow."""

from pathlib import Path
from typing import Any

import geopandas as gpd
from dagster import AssetExecutionContext, Output, asset
from shapely.geometry import mapping

from watershed_explorer.config.constants import (
    CLIMATE_COLORMAP,
    CLIMATE_MODEL_PROPERTY,
    CLIMATE_SCENARIO_PROPERTY,
    ELEVATION_ASSET_PREFERENCES,
    ELEVATION_COLORMAP,
)
from watershed_explorer.connectors.settings import SettingsResource
from watershed_explorer.connectors.stac_client import STACResource
from watershed_explorer.geospatial.asset_resolver import download_item_assets, get_signer, sign_item_assets
from watershed_explorer.geospatial.boundary import load_boundary
from watershed_explorer.geospatial.raster_ops import (
    RasterGrid,
    clip_to_polygon,
    crop_grid,
    grid_statistics,
    kelvin_to_celsius,
    mosaic_grids,
    open_grid,
    stack_grids,
    temporal_mean,
)
from watershed_explorer.geospatial.rivers import fetch_river_network
from watershed_explorer.geospatial.stac_ops import require_items, search_items, select_items
from watershed_explorer.models.models import BasinBoundary, GridStatistics, MapProducts
from watershed_explorer.presentation.maps import render_maps

TEMPERATURE_VARIABLES = ("tas", "tasmin", "tasmax")


def _boundary_wgs84(boundary: BasinBoundary) -> gpd.GeoDataFrame:
    """Boundary layer in EPSG:4326, as required by STAC and OSM queries.

    :param boundary: Basin boundary
    :returns: Single-row GeoDataFrame in EPSG:4326
    """
    gdf = boundary.gdf
    if gdf.crs is None or gdf.crs.to_epsg() == 4326:
        return gdf
    return gdf.to_crs("EPSG:4326")


def _boundary_bounds(boundary: BasinBoundary) -> tuple[float, float, float, float]:
    """(west, south, east, north) of the boundary in EPSG:4326."""
    west, south, east, north = (float(v) for v in _boundary_wgs84(boundary).total_bounds)
    return west, south, east, north


def _boundary_polygon_in(boundary: BasinBoundary, crs: Any) -> Any:
    """Boundary polygon reprojected to the CRS of a grid.

    :param boundary: Basin boundary
    :param crs: Target CRS
    :returns: Shapely geometry
    """
    return boundary.gdf.to_crs(crs.to_wkt()).geometry.iloc[0]


def _metadata_value(value: float | None) -> float | str:
    return "n/a" if value is None else round(value, 3)


def _grid_metadata(grid: RasterGrid, statistics: GridStatistics, **extra: Any) -> dict[str, Any]:
    """Build Output metadata describing a grid.

    :param grid: Raster grid
    :param statistics: Grid statistics
    :param extra: Additional metadata entries
    :returns: Metadata dictionary
    """
    return {
        "crs": grid.crs.to_string(),
        "bounds": ", ".join(f"{v:.4f}" for v in grid.bounds),
        "shape": f"{grid.count}x{grid.height}x{grid.width}",
        "valid_pixel_count": statistics.valid_pixel_count,
        "mean": _metadata_value(statistics.mean),
        "min": _metadata_value(statistics.min),
        "max": _metadata_value(statistics.max),
        **extra,
    }


@asset
def basin_boundary(context: AssetExecutionContext, settings: SettingsResource) -> Output[BasinBoundary]:
    """Download the sub-basin layer and select the basin containing the outlet point.

    :param context: Dagster context
    :param settings: Settings resource
    :returns: Output with the selected boundary
    """
    boundary = load_boundary(
        context,
        archive_url=settings.basins_archive_url,
        data_dir=Path(settings.data_dir),
        lon=settings.outlet_lon,
        lat=settings.outlet_lat,
        point_crs=settings.point_crs,
        policy=settings.boundary_selection_policy,
        overwrite=settings.overwrite_downloads,
        timeout=settings.http_timeout,
        retries=settings.download_retries,
    )
    return Output(
        boundary,
        metadata={"boundary_id": str(boundary.id), "crs": boundary.crs, "bounds": str(boundary.bounds)},
    )


@asset
def river_network(
    context: AssetExecutionContext,
    settings: SettingsResource,
    basin_boundary: BasinBoundary,
) -> Output[gpd.GeoDataFrame]:
    """Fetch the named river inside the basin bounding box from OpenStreetMap.

    :param context: Dagster context
    :param settings: Settings resource
    :param basin_boundary: Selected basin
    :returns: Output with river line features
    """
    rivers = fetch_river_network(
        context,
        bbox=_boundary_bounds(basin_boundary),
        name=settings.river_name,
        waterway=settings.river_tag,
        timeout=settings.osm_timeout,
    )
    return Output(rivers, metadata={"segments": len(rivers), "river_name": settings.river_name})


def _search_for_boundary(
    context: AssetExecutionContext,
    stac: STACResource,
    boundary: BasinBoundary,
    stage: str,
    collection: str,
    datetime: str | None = None,
    filters: dict[str, Any] | None = None,
) -> list[Any]:
    """Run a catalog search over the basin and require at least one item.

    :param context: Dagster context
    :param stac: STAC resource
    :param boundary: Selected basin
    :param stage: Stage name used in errors
    :param collection: Collection ID
    :param datetime: Datetime filter
    :param filters: Attribute equality filters
    :returns: Items in server order
    """
    intersects = mapping(_boundary_wgs84(boundary).geometry.iloc[0])
    items = require_items(
        search_items(
            context,
            stac.create_client(),
            collection,
            intersects=intersects,
            datetime=datetime,
            filters=filters,
        ),
        stage=stage,
        params={"collection": collection, "datetime": datetime, "filters": filters, "boundary": str(boundary.id)},
    )
    context.log.info(f"{len(items)} {collection} item(s) intersect the basin")
    return items


@asset
def elevation_grid(
    context: AssetExecutionContext,
    settings: SettingsResource,
    stac: STACResource,
    basin_boundary: BasinBoundary,
) -> Output[RasterGrid]:
    """Mosaic every elevation tile intersecting the basin and clip it to the basin.

    :param context: Dagster context
    :param settings: Settings resource
    :param stac: STAC resource
    :param basin_boundary: Selected basin
    :returns: Output with the clipped elevation grid
    """
    items = _search_for_boundary(context, stac, basin_boundary, "elevation", settings.elevation_collection)
    hrefs = sign_item_assets(context, items, ELEVATION_ASSET_PREFERENCES, get_signer(settings.stac_provider))

    bounds = _boundary_bounds(basin_boundary)
    tiles = [open_grid(href, bounds=bounds) for href in hrefs]
    mosaic = mosaic_grids(tiles, nodata=settings.elevation_nodata)
    context.log.info(f"Mosaicked {len(tiles)} elevation tile(s) into bounds {mosaic.bounds}")

    polygon = _boundary_polygon_in(basin_boundary, mosaic.crs)
    clipped = clip_to_polygon(mosaic, polygon, mosaic.crs, nodata=settings.elevation_nodata)
    statistics = grid_statistics(clipped)
    context.log.info(f"Elevation statistics: {statistics.model_dump()}")

    return Output(clipped, metadata=_grid_metadata(clipped, statistics, items=len(items)))


@asset
def climate_grid(
    context: AssetExecutionContext,
    settings: SettingsResource,
    stac: STACResource,
    basin_boundary: BasinBoundary,
) -> Output[RasterGrid]:
    """Download projected climate data for the basin and reduce it to a clipped temporal mean.

    Temperature variables are converted from Kelvin to Celsius.

    :param context: Dagster context
    :param settings: Settings resource
    :param stac: STAC resource
    :param basin_boundary: Selected basin
    :returns: Output with the clipped climate grid
    """
    filters = {
        CLIMATE_MODEL_PROPERTY: settings.climate_model,
        CLIMATE_SCENARIO_PROPERTY: settings.climate_scenario,
    }
    items = _search_for_boundary(
        context,
        stac,
        basin_boundary,
        "climate",
        settings.climate_collection,
        datetime=settings.climate_datetime,
        filters=filters,
    )
    selected = select_items(items, settings.item_selection)
    context.log.info(f"Using {len(selected)} of {len(items)} climate item(s) (selection={settings.item_selection})")

    variable = settings.climate_variable
    paths = download_item_assets(
        context,
        selected,
        [variable],
        get_signer(settings.stac_provider),
        dest_dir=Path(settings.data_dir) / "stac",
        overwrite=settings.overwrite_downloads,
        timeout=settings.http_timeout,
        retries=settings.download_retries,
    )
    bounds = _boundary_bounds(basin_boundary)
    grids = []
    for path in paths:
        grid = open_grid(str(path), variable=variable, bounds=bounds)
        # basin window only, before stacking years
        grids.append(crop_grid(grid, _boundary_polygon_in(basin_boundary, grid.crs), grid.crs))
    stacked = stack_grids(grids) if len(grids) > 1 else grids[0]

    mean = temporal_mean(stacked)
    if variable in TEMPERATURE_VARIABLES:
        mean = kelvin_to_celsius(mean)

    polygon = _boundary_polygon_in(basin_boundary, mean.crs)
    clipped = clip_to_polygon(mean, polygon, mean.crs)
    statistics = grid_statistics(clipped)
    context.log.info(f"Climate statistics ({variable}): {statistics.model_dump()}")

    return Output(
        clipped,
        metadata=_grid_metadata(
            clipped,
            statistics,
            items=len(selected),
            bands_averaged=stacked.count,
            model=settings.climate_model,
            scenario=settings.climate_scenario,
        ),
    )


def _render(
    context: AssetExecutionContext,
    settings: SettingsResource,
    grid: RasterGrid,
    boundary: BasinBoundary,
    rivers: gpd.GeoDataFrame,
    name: str,
    title: str,
    cmap: str,
    legend_label: str,
) -> Output[MapProducts]:
    """Render static and interactive maps for a grid.

    :param context: Dagster context
    :param settings: Settings resource
    :param grid: Clipped grid
    :param boundary: Selected basin
    :param rivers: River features
    :param name: Output file stem
    :param title: Map title
    :param cmap: Colormap name
    :param legend_label: Legend caption
    :returns: Output with the rendered products
    """
    paths = render_maps(
        grid,
        boundary.gdf.to_crs(grid.crs.to_wkt()),
        rivers,
        name=name,
        title=title,
        cmap=cmap,
        legend_label=legend_label,
        output_dir=Path(settings.output_dir),
    )
    products = MapProducts(**paths, statistics=grid_statistics(grid))
    context.log.info(f"Rendered {products.static_path} and {products.interactive_path}")
    return Output(products, metadata={"static_path": products.static_path, "interactive_path": products.interactive_path})


@asset
def elevation_maps(
    context: AssetExecutionContext,
    settings: SettingsResource,
    elevation_grid: RasterGrid,
    basin_boundary: BasinBoundary,
    river_network: gpd.GeoDataFrame,
) -> Output[MapProducts]:
    """Render the clipped elevation grid with the basin and river overlays."""
    return _render(
        context,
        settings,
        elevation_grid,
        basin_boundary,
        river_network,
        name="elevation",
        title=f"Elevation ({settings.elevation_collection})",
        cmap=ELEVATION_COLORMAP,
        legend_label="Elevation (m)",
    )


@asset
def climate_maps(
    context: AssetExecutionContext,
    settings: SettingsResource,
    climate_grid: RasterGrid,
    basin_boundary: BasinBoundary,
    river_network: gpd.GeoDataFrame,
) -> Output[MapProducts]:
    """Render the clipped climate grid with the basin and river overlays."""
    variable = settings.climate_variable
    unit = "°C" if variable in TEMPERATURE_VARIABLES else "native units"
    return _render(
        context,
        settings,
        climate_grid,
        basin_boundary,
        river_network,
        name=f"climate_{variable}",
        title=f"Mean {variable}, {settings.climate_model} {settings.climate_scenario} ({settings.climate_datetime})",
        cmap=CLIMATE_COLORMAP,
        legend_label=f"Mean {variable} ({unit})",
    )
