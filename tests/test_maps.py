from pathlib import Path

import geopandas as gpd
import numpy as np
import pytest
from affine import Affine
from shapely.geometry import LineString, box

from watershed_explorer.exceptions import RasterAssemblyError
from watershed_explorer.geospatial.raster_ops import RasterGrid
from watershed_explorer.presentation import maps


@pytest.fixture
def grid() -> RasterGrid:
    data = np.array([[100, 200, -9999], [300, 400, 500]], dtype="float32")
    return RasterGrid(data=data, transform=Affine(0.5, 0, -6.0, 0, -0.5, 35.0), crs="EPSG:4326", nodata=-9999)


@pytest.fixture
def basin() -> gpd.GeoDataFrame:
    return gpd.GeoDataFrame({"HYBAS_ID": [1]}, geometry=[box(-6.0, 34.0, -4.5, 35.0)], crs="EPSG:4326")


@pytest.fixture
def river() -> gpd.GeoDataFrame:
    return gpd.GeoDataFrame(
        {"name": ["Sebou"], "waterway": ["river"]}, geometry=[LineString([(-5.9, 34.1), (-4.6, 34.9)])], crs="EPSG:4326"
    )


def test_value_range_ignores_nodata(grid: RasterGrid) -> None:
    assert maps.value_range(grid) == (100.0, 500.0)


def test_colorize_grid_makes_nodata_transparent(grid: RasterGrid) -> None:
    rgba = maps.colorize_grid(grid, "terrain", 100.0, 500.0)
    assert rgba.shape == (2, 3, 4)
    assert rgba.dtype == np.uint8
    assert rgba[0, 2, 3] == 0
    assert (rgba[1, :, 3] == 255).all()


def test_overlay_image_stretches_rows_toward_the_pole() -> None:
    # one column, row value equals its center latitude
    latitudes = np.arange(59.5, 0, -1.0, dtype="float32").reshape(60, 1)
    tall = RasterGrid(data=latitudes, transform=Affine(1.0, 0, 10.0, 0, -1.0, 60.0), crs="EPSG:4326", nodata=None)

    flat = maps.colorize_grid(tall, "gray", 0.0, 60.0)
    projected = maps.overlay_image(tall, "gray", 0.0, 60.0)

    assert projected.shape == (60, 1, 4)
    assert projected.dtype == np.uint8
    # the middle Mercator row sits near 34.7N rather than 29.5N
    assert abs(int(flat[30, 0, 0]) - 125) <= 1
    assert int(projected[30, 0, 0]) > int(flat[30, 0, 0]) + 15
    assert (projected[:, 0, 3] == 255).all()


def test_plot_static_map_writes_png(
    tmp_path: Path, grid: RasterGrid, basin: gpd.GeoDataFrame, river: gpd.GeoDataFrame
) -> None:
    empty = gpd.GeoDataFrame({"name": []}, geometry=[], crs="EPSG:4326")

    path = maps.plot_static_map(
        grid, [basin, river, empty], "Elevation", "terrain", "Elevation (m)", tmp_path / "maps" / "elevation.png"
    )
    assert path.exists()
    assert path.read_bytes()[:8] == b"\x89PNG\r\n\x1a\n"


def test_build_interactive_map_requires_geographic_grid(grid: RasterGrid) -> None:
    projected = RasterGrid(data=grid.data, transform=grid.transform, crs="EPSG:3857", nodata=grid.nodata)
    with pytest.raises(RasterAssemblyError) as exc_info:
        maps.build_interactive_map(projected, None, "terrain", "Elevation (m)")
    assert exc_info.value.stage == "render"


def test_render_maps_writes_static_and_interactive_outputs(
    tmp_path: Path, grid: RasterGrid, basin: gpd.GeoDataFrame, river: gpd.GeoDataFrame
) -> None:
    """
    Test that both map products are written with the legend caption.
    """
    paths = maps.render_maps(
        grid,
        basin,
        river,
        name="elevation",
        title="Elevation (nasadem)",
        cmap="terrain",
        legend_label="Elevation (m)",
        output_dir=tmp_path,
    )
    assert paths == {
        "static_path": str(tmp_path / "elevation.png"),
        "interactive_path": str(tmp_path / "elevation.html"),
    }
    html = Path(paths["interactive_path"]).read_text()
    assert "Elevation (m)" in html
    assert "Sebou" in html
