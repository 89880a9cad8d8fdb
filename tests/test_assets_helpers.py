from types import SimpleNamespace
from typing import Any

import geopandas as gpd
import numpy as np
import pytest
from affine import Affine
from shapely.geometry import box

from watershed_explorer import assets
from watershed_explorer.exceptions import NoDataAvailableError
from watershed_explorer.geospatial.raster_ops import RasterGrid, grid_statistics
from watershed_explorer.models.models import BasinBoundary


def make_context() -> SimpleNamespace:
    """
    Create a fake Dagster context for testing.

    Returns:
      SimpleNamespace mimicking AssetExecutionContext
    """
    logger = SimpleNamespace(
        info=lambda *_, **__: None,
        error=lambda *_, **__: None,
        warning=lambda *_, **__: None,
    )
    return SimpleNamespace(log=logger)


def make_boundary(crs: str = "EPSG:4326", geometry: Any = None) -> BasinBoundary:
    gdf = gpd.GeoDataFrame({"HYBAS_ID": [1]}, geometry=[geometry or box(-6.0, 34.0, -5.0, 35.0)], crs=crs)
    return BasinBoundary.from_geodataframe(gdf)


class FakeClient:
    def __init__(self, items: list[Any]) -> None:
        self.items = items
        self.calls: list[dict[str, Any]] = []

    def search(self, **kwargs: Any) -> SimpleNamespace:
        self.calls.append(kwargs)
        return SimpleNamespace(items=lambda: iter(self.items))


def test_boundary_wgs84_reprojects_projected_boundaries() -> None:
    geographic = make_boundary()
    assert assets._boundary_wgs84(geographic) is geographic.gdf

    projected = make_boundary(crs="EPSG:3857", geometry=box(0, 0, 100_000, 100_000))
    wgs84 = assets._boundary_wgs84(projected)
    assert wgs84.crs.to_epsg() == 4326
    west, south, east, north = wgs84.total_bounds
    assert west == pytest.approx(0.0)
    assert 0.8 < east < 1.0


def test_boundary_polygon_in_grid_crs() -> None:
    boundary = make_boundary()
    grid = RasterGrid(data=np.zeros((2, 2), dtype="float32"), transform=Affine(1, 0, 0, 0, -1, 2), crs="EPSG:3857")

    polygon = assets._boundary_polygon_in(boundary, grid.crs)
    assert polygon.bounds[0] == pytest.approx(-667916.94, rel=1e-4)


def test_grid_metadata_handles_empty_statistics() -> None:
    grid = RasterGrid(
        data=np.full((2, 3), -9999, dtype="float32"),
        transform=Affine(1, 0, 0, 0, -1, 2),
        crs="EPSG:4326",
        nodata=-9999,
    )

    metadata = assets._grid_metadata(grid, grid_statistics(grid), items=2)
    assert metadata["shape"] == "1x2x3"
    assert metadata["valid_pixel_count"] == 0
    assert metadata["mean"] == "n/a"
    assert metadata["items"] == 2
    assert assets._metadata_value(12.34567) == 12.346


def test_search_for_boundary_sends_wgs84_geometry() -> None:
    """
    Test that catalog searches use the boundary geometry in EPSG:4326.

    Verifies that the search is limited to the basin and that an empty
    result raises NoDataAvailableError naming the stage.
    """
    client = FakeClient([SimpleNamespace(id="tile-1", properties={})])
    stac = SimpleNamespace(create_client=lambda: client)
    boundary = make_boundary()

    items = assets._search_for_boundary(make_context(), stac, boundary, "elevation", "nasadem")
    assert [item.id for item in items] == ["tile-1"]
    assert client.calls[0]["intersects"]["type"] == "Polygon"
    assert client.calls[0]["collections"] == ["nasadem"]

    client.items = []
    with pytest.raises(NoDataAvailableError) as exc_info:
        assets._search_for_boundary(make_context(), stac, boundary, "climate", "nasa-nex-gddp-cmip6")
    assert exc_info.value.stage == "climate"
    assert exc_info.value.params["boundary"] == str(boundary.id)
