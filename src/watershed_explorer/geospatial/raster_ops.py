"""Raster operations: open, rotate, mosaic, crop, mask and summarize grids."""

import math
from contextlib import ExitStack
from typing import Any

import numpy as np
import rasterio
import rasterio.warp
from affine import Affine
from numpy.typing import NDArray
from pydantic import BaseModel, ConfigDict, Field as PydanticField, field_validator
from pyproj import CRS as ProjCRS
from rasterio.crs import CRS
from rasterio.enums import Resampling
from rasterio.errors import RasterioError
from rasterio.features import geometry_mask
from rasterio.io import MemoryFile
from rasterio.merge import merge
from rasterio.transform import array_bounds
from rasterio.windows import Window, from_bounds
from shapely.geometry import mapping

from watershed_explorer.config.constants import KELVIN_OFFSET
from watershed_explorer.exceptions import RasterAssemblyError
from watershed_explorer.models.models import GridStatistics

_EDGE_TOLERANCE = 1e-9


class RasterGrid(BaseModel):
    """Band-stacked raster held in memory.

    :param data: Array shaped (bands, rows, cols)
    :param transform: Affine transform of the upper-left corner
    :param crs: Coordinate reference system
    :param nodata: Nodata sentinel, None when the grid has none
    """

    model_config = ConfigDict(arbitrary_types_allowed=True)

    data: Any = PydanticField(..., description="Cell values shaped (bands, rows, cols)")
    transform: Any = PydanticField(..., description="Affine transform")
    crs: Any = PydanticField(..., description="Coordinate reference system")
    nodata: float | None = PydanticField(default=None, description="Nodata sentinel")

    @field_validator("data")
    @classmethod
    def validate_data(cls, v: Any) -> NDArray[Any]:
        """Ensure data is a 3-D array."""
        array = np.asarray(v)
        if array.ndim == 2:
            array = array[np.newaxis, ...]
        if array.ndim != 3:
            raise ValueError(f"Grid data must be 2-D or 3-D, got {array.ndim}-D")
        return array

    @field_validator("crs")
    @classmethod
    def validate_crs(cls, v: Any) -> CRS:
        """Normalize the CRS to a rasterio CRS."""
        if v is None:
            raise ValueError("Grid CRS is required")
        return v if isinstance(v, CRS) else CRS.from_user_input(v)

    @property
    def count(self) -> int:
        return int(self.data.shape[0])

    @property
    def height(self) -> int:
        return int(self.data.shape[1])

    @property
    def width(self) -> int:
        return int(self.data.shape[2])

    @property
    def res(self) -> tuple[float, float]:
        return abs(self.transform.a), abs(self.transform.e)

    @property
    def bounds(self) -> tuple[float, float, float, float]:
        """(west, south, east, north) of the grid."""
        return tuple(float(v) for v in array_bounds(self.height, self.width, self.transform))


def crs_equal(first: Any, second: Any) -> bool:
    """Compare two CRS definitions ignoring axis order.

    :param first: CRS (rasterio, pyproj or user input)
    :param second: CRS (rasterio, pyproj or user input)
    :returns: True if equivalent
    """
    if first is None or second is None:
        return False
    first = first.to_wkt() if isinstance(first, CRS) else first
    second = second.to_wkt() if isinstance(second, CRS) else second
    return ProjCRS.from_user_input(first).equals(ProjCRS.from_user_input(second), ignore_axis_order=True)


def _is_nan(value: float | None) -> bool:
    return value is not None and isinstance(value, float) and math.isnan(value)


def _resolve_nodata(grid: RasterGrid, fallback: float | None, stage: str) -> float:
    """Return the nodata value to write into a grid.

    The grid's own sentinel wins; otherwise the fallback; otherwise NaN for
    floating-point grids.
    """
    value = grid.nodata if grid.nodata is not None else fallback
    is_float = np.issubdtype(grid.data.dtype, np.floating)
    if value is None:
        if is_float:
            return float("nan")
        raise RasterAssemblyError(
            stage, "Integer grid has no nodata value; pass one explicitly", {"dtype": str(grid.data.dtype)}
        )
    if _is_nan(value) and not is_float:
        raise RasterAssemblyError(stage, "NaN nodata is not valid for integer grids", {"dtype": str(grid.data.dtype)})
    return value


def _ensure_same_crs(grid: RasterGrid, polygon_crs: Any, stage: str) -> None:
    if not crs_equal(grid.crs, polygon_crs):
        raise RasterAssemblyError(
            stage,
            "Polygon CRS differs from grid CRS; reproject explicitly first",
            {"grid_crs": grid.crs.to_string(), "polygon_crs": str(polygon_crs)},
        )


def valid_mask(grid: RasterGrid) -> NDArray[np.bool_]:
    """Boolean mask of cells holding a valid measurement.

    :param grid: Raster grid
    :returns: Array shaped like grid.data, True where valid
    """
    data = grid.data
    valid = np.ones(data.shape, dtype=bool)
    if np.issubdtype(data.dtype, np.floating):
        valid &= ~np.isnan(data)
    if grid.nodata is not None and not _is_nan(grid.nodata):
        valid &= data != grid.nodata
    return valid


def open_grid(
    href: str,
    variable: str | None = None,
    assume_crs: str = "EPSG:4326",
    bounds: tuple[float, float, float, float] | None = None,
    bounds_crs: Any = "EPSG:4326",
) -> RasterGrid:
    """Open a raster asset (remote or local) into memory.

    NetCDF assets are read through the ``variable`` subdataset. With
    ``bounds`` only the window covering them is read, padded outward to whole
    cells. Geographic grids reaching past 180 degrees east are rotated to
    -180..180.

    :param href: URL or local path
    :param variable: NetCDF variable name, or None for single-dataset rasters
    :param assume_crs: CRS used when the asset carries none
    :param bounds: (west, south, east, north) to read, or None for the whole raster
    :param bounds_crs: CRS of ``bounds``
    :returns: Raster grid
    :raises RasterAssemblyError: If the asset cannot be read or misses ``bounds``
    """
    path = f'netcdf:"{href}":{variable}' if variable else href
    params = {"href": href, "variable": variable, "bounds": bounds}
    try:
        with rasterio.open(path) as src:
            crs = src.crs or CRS.from_user_input(assume_crs)
            window = _read_window(src, crs, bounds, bounds_crs, params) if bounds is not None else None
            grid = RasterGrid(
                data=src.read(window=window),
                transform=src.window_transform(window) if window is not None else src.transform,
                crs=crs,
                nodata=src.nodata,
            )
    except RasterioError as e:
        raise RasterAssemblyError("open", f"Cannot read raster: {e}", params) from e

    if grid.crs.is_geographic and grid.bounds[2] > 180:
        grid = rotate_longitudes(grid)
    return grid


def _read_window(
    src: Any, crs: CRS, bounds: tuple[float, ...], bounds_crs: Any, params: dict[str, Any]
) -> Window | None:
    """Window of ``src`` covering ``bounds``, padded to whole cells and clamped to the raster.

    Returns None (read everything) when geographic bounds straddle the prime
    meridian of a 0..360 raster.
    """
    west, south, east, north = bounds
    if not crs_equal(crs, bounds_crs):
        from_crs = bounds_crs.to_wkt() if isinstance(bounds_crs, CRS) else bounds_crs
        west, south, east, north = rasterio.warp.transform_bounds(from_crs, crs, west, south, east, north)

    if crs.is_geographic and src.bounds.right > 180 and west < src.bounds.left:
        if east > src.bounds.left:
            return None
        west, east = west + 360.0, east + 360.0

    window = from_bounds(west, south, east, north, transform=src.transform)
    col_start = max(0, math.floor(window.col_off + _EDGE_TOLERANCE))
    row_start = max(0, math.floor(window.row_off + _EDGE_TOLERANCE))
    col_stop = min(src.width, math.ceil(window.col_off + window.width - _EDGE_TOLERANCE))
    row_stop = min(src.height, math.ceil(window.row_off + window.height - _EDGE_TOLERANCE))
    if col_start >= col_stop or row_start >= row_stop:
        raise RasterAssemblyError(
            "open", "Requested bounds do not overlap the raster", {**params, "raster_bounds": tuple(src.bounds)}
        )
    return Window(col_start, row_start, col_stop - col_start, row_stop - row_start)


def rotate_longitudes(grid: RasterGrid) -> RasterGrid:
    """Rotate a 0..360 longitude grid to -180..180.

    Grids lying entirely east of 180 are shifted; grids crossing 180 must
    span the full globe so the two halves can be swapped.

    :param grid: Geographic raster grid
    :returns: Rotated grid
    :raises RasterAssemblyError: If the grid crosses 180 without global width
    """
    transform = grid.transform
    x0, x_res = transform.c, transform.a
    centers = x0 + (np.arange(grid.width) + 0.5) * x_res
    split = int(np.searchsorted(centers, 180.0))

    if split >= grid.width:
        return grid
    if split == 0:
        shifted = Affine(transform.a, transform.b, x0 - 360.0, transform.d, transform.e, transform.f)
        return grid.model_copy(update={"transform": shifted})

    if not math.isclose(grid.width * x_res, 360.0, rel_tol=1e-6):
        raise RasterAssemblyError(
            "open", "Grid crosses 180 degrees but does not span the globe", {"bounds": grid.bounds}
        )

    data = np.concatenate([grid.data[..., split:], grid.data[..., :split]], axis=-1)
    rotated = Affine(transform.a, transform.b, x0 + split * x_res - 360.0, transform.d, transform.e, transform.f)
    return grid.model_copy(update={"data": data, "transform": rotated})


def _open_in_memory(stack: ExitStack, grid: RasterGrid, nodata: float) -> Any:
    memfile = stack.enter_context(MemoryFile())
    with memfile.open(
        driver="GTiff",
        height=grid.height,
        width=grid.width,
        count=grid.count,
        dtype=grid.data.dtype.name,
        crs=grid.crs,
        transform=grid.transform,
        nodata=grid.nodata if grid.nodata is not None else nodata,
    ) as dst:
        dst.write(grid.data)
    return stack.enter_context(memfile.open())


def mosaic_grids(grids: list[RasterGrid], nodata: float | None = None) -> RasterGrid:
    """Combine grids into one continuous grid.

    Where grids overlap the first grid in the list wins (first-writer rule).
    Cells covered by no grid are nodata.

    :param grids: Grids sharing CRS, resolution and band count
    :param nodata: Fallback nodata for grids without one
    :returns: Mosaicked grid
    :raises RasterAssemblyError: If grids are missing or incompatible
    """
    if not grids:
        raise RasterAssemblyError("mosaic", "No grids to mosaic")

    reference = grids[0]
    for index, grid in enumerate(grids[1:], start=1):
        if not crs_equal(grid.crs, reference.crs):
            raise RasterAssemblyError(
                "mosaic",
                "Grids do not share a CRS",
                {"index": index, "expected": reference.crs.to_string(), "found": grid.crs.to_string()},
            )
        if not np.allclose(grid.res, reference.res):
            raise RasterAssemblyError(
                "mosaic",
                "Grids do not share a resolution",
                {"index": index, "expected": reference.res, "found": grid.res},
            )
        if grid.count != reference.count:
            raise RasterAssemblyError(
                "mosaic",
                "Grids do not share a band count",
                {"index": index, "expected": reference.count, "found": grid.count},
            )

    fill = _resolve_nodata(reference, nodata, stage="mosaic")
    if len(grids) == 1:
        return reference.model_copy(update={"nodata": fill})

    with ExitStack() as stack:
        datasets = [_open_in_memory(stack, grid, fill) for grid in grids]
        data, transform = merge(datasets, nodata=fill, method="first")

    return RasterGrid(data=data, transform=transform, crs=reference.crs, nodata=fill)


def crop_grid(grid: RasterGrid, polygon: Any, polygon_crs: Any) -> RasterGrid:
    """Restrict a grid to the rows and columns intersecting a polygon's bounds.

    :param grid: Raster grid
    :param polygon: Shapely polygon
    :param polygon_crs: CRS of the polygon
    :returns: Cropped grid
    :raises RasterAssemblyError: On CRS mismatch or when the polygon misses the grid
    """
    _ensure_same_crs(grid, polygon_crs, stage="crop")

    minx, miny, maxx, maxy = polygon.bounds
    inverse = ~grid.transform
    col_a, row_a = inverse @ (minx, maxy)
    col_b, row_b = inverse @ (maxx, miny)

    col_start = max(0, math.floor(min(col_a, col_b) + _EDGE_TOLERANCE))
    col_stop = min(grid.width, math.ceil(max(col_a, col_b) - _EDGE_TOLERANCE))
    row_start = max(0, math.floor(min(row_a, row_b) + _EDGE_TOLERANCE))
    row_stop = min(grid.height, math.ceil(max(row_a, row_b) - _EDGE_TOLERANCE))

    if col_start >= col_stop or row_start >= row_stop:
        raise RasterAssemblyError(
            "crop", "Polygon does not overlap the grid", {"grid_bounds": grid.bounds, "polygon_bounds": polygon.bounds}
        )

    data = grid.data[:, row_start:row_stop, col_start:col_stop].copy()
    transform = grid.transform @ Affine.translation(col_start, row_start)
    return grid.model_copy(update={"data": data, "transform": transform})


def mask_grid(grid: RasterGrid, polygon: Any, polygon_crs: Any, nodata: float | None = None) -> RasterGrid:
    """Set cells whose center lies outside a polygon to nodata.

    The grid extent is unchanged. The grid's own nodata is kept; ``nodata``
    is only used when the grid has none.

    :param grid: Raster grid
    :param polygon: Shapely polygon
    :param polygon_crs: CRS of the polygon
    :param nodata: Fallback nodata value
    :returns: Masked grid
    """
    _ensure_same_crs(grid, polygon_crs, stage="mask")
    fill = _resolve_nodata(grid, nodata, stage="mask")

    outside = geometry_mask(
        [mapping(polygon)],
        out_shape=(grid.height, grid.width),
        transform=grid.transform,
        all_touched=False,
        invert=False,
    )
    data = grid.data.copy()
    data[:, outside] = fill
    return grid.model_copy(update={"data": data, "nodata": fill})


def clip_to_polygon(grid: RasterGrid, polygon: Any, polygon_crs: Any, nodata: float | None = None) -> RasterGrid:
    """Crop a grid to a polygon's bounds, then mask cells outside it.

    :param grid: Raster grid
    :param polygon: Shapely polygon
    :param polygon_crs: CRS of the polygon
    :param nodata: Fallback nodata value
    :returns: Clipped grid
    """
    return mask_grid(crop_grid(grid, polygon, polygon_crs), polygon, polygon_crs, nodata=nodata)


def reproject_grid(
    grid: RasterGrid,
    dst_crs: Any,
    resampling: Resampling = Resampling.nearest,
    nodata: float | None = None,
) -> RasterGrid:
    """Reproject a grid to another CRS.

    :param grid: Raster grid
    :param dst_crs: Target CRS
    :param resampling: Resampling method
    :param nodata: Fallback nodata value
    :returns: Reprojected grid
    """
    dst_crs = dst_crs if isinstance(dst_crs, CRS) else CRS.from_user_input(dst_crs)
    if crs_equal(grid.crs, dst_crs):
        return grid

    fill = _resolve_nodata(grid, nodata, stage="reproject")
    transform, width, height = rasterio.warp.calculate_default_transform(
        grid.crs, dst_crs, grid.width, grid.height, *grid.bounds
    )
    destination = np.full((grid.count, height, width), fill, dtype=grid.data.dtype)
    rasterio.warp.reproject(
        source=grid.data,
        destination=destination,
        src_transform=grid.transform,
        src_crs=grid.crs,
        dst_transform=transform,
        dst_crs=dst_crs,
        src_nodata=fill,
        dst_nodata=fill,
        resampling=resampling,
    )
    return RasterGrid(data=destination, transform=transform, crs=dst_crs, nodata=fill)


def stack_grids(grids: list[RasterGrid]) -> RasterGrid:
    """Concatenate the bands of aligned grids (e.g. successive years).

    :param grids: Grids with identical CRS, transform and shape
    :returns: Grid holding every band in input order
    :raises RasterAssemblyError: If grids are not aligned
    """
    if not grids:
        raise RasterAssemblyError("stack", "No grids to stack")
    reference = grids[0]
    for index, grid in enumerate(grids[1:], start=1):
        aligned = (
            crs_equal(grid.crs, reference.crs)
            and grid.data.shape[1:] == reference.data.shape[1:]
            and grid.transform.almost_equals(reference.transform)
        )
        if not aligned:
            raise RasterAssemblyError("stack", "Grids are not aligned", {"index": index})
    data = np.concatenate([grid.data for grid in grids], axis=0)
    return reference.model_copy(update={"data": data})


def temporal_mean(grid: RasterGrid) -> RasterGrid:
    """Average every band per cell, ignoring nodata cells.

    Cells without any valid band become nodata (NaN unless the grid defines
    a sentinel).

    :param grid: Band-stacked grid
    :returns: Single-band float32 grid
    """
    valid = valid_mask(grid)
    values = np.where(valid, grid.data, 0).astype("float64")
    counts = valid.sum(axis=0)
    fill = float("nan") if grid.nodata is None else float(grid.nodata)

    with np.errstate(invalid="ignore", divide="ignore"):
        mean = np.where(counts > 0, values.sum(axis=0) / np.maximum(counts, 1), fill)
    return grid.model_copy(update={"data": mean.astype("float32")[np.newaxis, ...], "nodata": fill})


def kelvin_to_celsius(grid: RasterGrid) -> RasterGrid:
    """Convert a temperature grid from Kelvin to Celsius, keeping nodata cells.

    :param grid: Grid in Kelvin
    :returns: Float32 grid in Celsius
    """
    valid = valid_mask(grid)
    fill = float("nan") if grid.nodata is None else float(grid.nodata)
    data = np.where(valid, grid.data.astype("float32") - KELVIN_OFFSET, fill).astype("float32")
    return grid.model_copy(update={"data": data, "nodata": fill})


def grid_statistics(grid: RasterGrid) -> GridStatistics:
    """Summary statistics over valid cells only.

    :param grid: Raster grid
    :returns: Statistics
    """
    return GridStatistics.from_values(grid.data[valid_mask(grid)])
