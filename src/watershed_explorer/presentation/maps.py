"""Static and interactive rendering of clipped grids with vector overlays."""

from pathlib import Path
from typing import Any

import folium
import geopandas as gpd
import numpy as np
from branca.colormap import LinearColormap
from folium.utilities import mercator_transform
from matplotlib import colormaps
from matplotlib.colors import Normalize, to_hex
from matplotlib.figure import Figure
from numpy.typing import NDArray

from watershed_explorer.config.constants import DEFAULT_BASEMAP_TILES
from watershed_explorer.exceptions import RasterAssemblyError
from watershed_explorer.geospatial.raster_ops import RasterGrid, crs_equal, valid_mask

_OVERLAY_COLORS = ("black", "#1f78b4", "#e31a1c", "#33a02c")
_LEGEND_STEPS = 8


def value_range(grid: RasterGrid) -> tuple[float, float]:
    """Minimum and maximum over valid cells of the first band.

    :param grid: Raster grid
    :returns: Tuple of (vmin, vmax); (0, 1) when no cell is valid
    """
    values = grid.data[0][valid_mask(grid)[0]]
    if values.size == 0:
        return 0.0, 1.0
    vmin, vmax = float(values.min()), float(values.max())
    if vmin == vmax:
        vmax = vmin + 1.0
    return vmin, vmax


def colorize_grid(grid: RasterGrid, cmap: str, vmin: float, vmax: float) -> NDArray[np.uint8]:
    """Map the first band to RGBA, fully transparent at nodata cells.

    :param grid: Raster grid
    :param cmap: Matplotlib colormap name
    :param vmin: Value mapped to the low end of the colormap
    :param vmax: Value mapped to the high end of the colormap
    :returns: uint8 array shaped (rows, cols, 4)
    """
    valid = valid_mask(grid)[0]
    values = np.where(valid, grid.data[0], vmin).astype("float64")
    rgba = colormaps[cmap](Normalize(vmin=vmin, vmax=vmax, clip=True)(values))
    rgba[~valid, 3] = 0.0
    return (rgba * 255).round().astype("uint8")


def overlay_image(grid: RasterGrid, cmap: str, vmin: float, vmax: float) -> NDArray[np.uint8]:
    """Colorized first band resampled from equal-latitude rows to Web Mercator rows.

    :param grid: Raster grid in EPSG:4326
    :param cmap: Matplotlib colormap name
    :param vmin: Value mapped to the low end of the colormap
    :param vmax: Value mapped to the high end of the colormap
    :returns: uint8 array shaped (rows, cols, 4)
    """
    _, south, _, north = grid.bounds
    projected = mercator_transform(colorize_grid(grid, cmap, vmin, vmax), (south, north), origin="upper")
    # interpolated floats back to 0..255 uint8
    return np.clip(projected, 0, 255).round().astype("uint8")


def plot_static_map(
    grid: RasterGrid,
    overlays: list[gpd.GeoDataFrame] | None,
    title: str,
    cmap: str,
    legend_label: str,
    output_path: Path,
) -> Path:
    """Render a grid and vector overlays to a PNG file.

    :param grid: Raster grid
    :param overlays: Vector layers drawn on top, in the grid CRS
    :param title: Figure title
    :param cmap: Matplotlib colormap name
    :param legend_label: Colorbar label
    :param output_path: PNG path
    :returns: Path to the written file
    """
    vmin, vmax = value_range(grid)
    west, south, east, north = grid.bounds
    masked = np.ma.masked_array(grid.data[0], mask=~valid_mask(grid)[0])

    fig = Figure(figsize=(10, 8))
    ax = fig.add_subplot()
    image = ax.imshow(masked, cmap=cmap, vmin=vmin, vmax=vmax, extent=(west, east, south, north), origin="upper")
    for index, overlay in enumerate(overlays or []):
        if overlay is None or overlay.empty:
            continue
        layer = overlay if crs_equal(overlay.crs, grid.crs) else overlay.to_crs(grid.crs.to_wkt())
        color = _OVERLAY_COLORS[index % len(_OVERLAY_COLORS)]
        if layer.geometry.geom_type.isin(("Polygon", "MultiPolygon")).all():
            layer.boundary.plot(ax=ax, color=color, linewidth=1.2)
        else:
            layer.plot(ax=ax, color=color, linewidth=1.0)

    fig.colorbar(image, ax=ax, label=legend_label, shrink=0.8)
    ax.set_title(title)
    ax.set_xlabel("Longitude" if grid.crs.is_geographic else "X")
    ax.set_ylabel("Latitude" if grid.crs.is_geographic else "Y")
    ax.set_xlim(west, east)
    ax.set_ylim(south, north)

    output_path = Path(output_path)
    output_path.parent.mkdir(parents=True, exist_ok=True)
    fig.savefig(output_path, dpi=150, bbox_inches="tight")
    return output_path


def build_interactive_map(
    grid: RasterGrid,
    overlays: dict[str, gpd.GeoDataFrame] | None,
    cmap: str,
    legend_label: str,
    tiles: str = DEFAULT_BASEMAP_TILES,
    opacity: float = 0.7,
) -> folium.Map:
    """Build a slippy map with a basemap, vector overlays and the grid.

    :param grid: Raster grid in EPSG:4326
    :param overlays: Vector layers by display name
    :param cmap: Matplotlib colormap name
    :param legend_label: Legend caption
    :param tiles: Basemap tile layer name or URL
    :param opacity: Raster overlay opacity
    :returns: folium Map
    :raises RasterAssemblyError: If the grid is not in EPSG:4326
    """
    if not crs_equal(grid.crs, "EPSG:4326"):
        raise RasterAssemblyError(
            "render", "Interactive maps need an EPSG:4326 grid; reproject explicitly", {"crs": grid.crs.to_string()}
        )

    vmin, vmax = value_range(grid)
    west, south, east, north = grid.bounds

    m = folium.Map(location=[(south + north) / 2, (west + east) / 2], tiles=tiles)
    folium.raster_layers.ImageOverlay(
        image=overlay_image(grid, cmap, vmin, vmax),
        bounds=[[south, west], [north, east]],
        opacity=opacity,
        name=legend_label,
    ).add_to(m)

    for index, (name, overlay) in enumerate((overlays or {}).items()):
        if overlay is None or overlay.empty:
            continue
        color = _OVERLAY_COLORS[index % len(_OVERLAY_COLORS)]
        folium.GeoJson(
            overlay.to_crs("EPSG:4326").to_json(),
            name=name,
            style_function=lambda _feature, color=color: {"color": color, "weight": 2, "fillOpacity": 0},
        ).add_to(m)

    legend_colors = [to_hex(colormaps[cmap](step / (_LEGEND_STEPS - 1))) for step in range(_LEGEND_STEPS)]
    legend = LinearColormap(legend_colors, vmin=vmin, vmax=vmax, caption=legend_label)
    legend.add_to(m)

    folium.LayerControl().add_to(m)
    m.fit_bounds([[south, west], [north, east]])
    return m


def save_interactive_map(folium_map: folium.Map, output_path: Path) -> Path:
    """Write a folium map to an HTML file.

    :param folium_map: Map to save
    :param output_path: HTML path
    :returns: Path to the written file
    """
    output_path = Path(output_path)
    output_path.parent.mkdir(parents=True, exist_ok=True)
    folium_map.save(str(output_path))
    return output_path


def render_maps(
    grid: RasterGrid,
    boundary: gpd.GeoDataFrame,
    rivers: gpd.GeoDataFrame | None,
    name: str,
    title: str,
    cmap: str,
    legend_label: str,
    output_dir: Path,
) -> dict[str, Any]:
    """Render both map products for a grid.

    :param grid: Raster grid
    :param boundary: Basin boundary layer
    :param rivers: River layer (may be empty)
    :param name: File stem for the outputs
    :param title: Static map title
    :param cmap: Matplotlib colormap name
    :param legend_label: Legend caption
    :param output_dir: Output directory
    :returns: Dictionary with "static_path" and "interactive_path"
    """
    output_dir = Path(output_dir)
    static_path = plot_static_map(
        grid, [boundary, rivers], title, cmap, legend_label, output_dir / f"{name}.png"
    )
    folium_map = build_interactive_map(grid, {"Basin": boundary, "River": rivers}, cmap, legend_label)
    interactive_path = save_interactive_map(folium_map, output_dir / f"{name}.html")
    return {"static_path": str(static_path), "interactive_path": str(interactive_path)}
