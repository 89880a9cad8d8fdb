"""Data models for the watershed workflow."""

import json
import uuid
from typing import Any
from uuid import UUID

import geopandas as gpd
import numpy as np
from pydantic import BaseModel, Field as PydanticField
from shapely.geometry import mapping, shape


class BasinBoundary(BaseModel):
    """Basin polygon selected by point-in-polygon test.

    :param id: UUID derived from geometry
    :param geom: GeoJSON geometry dictionary in the layer CRS
    :param crs: CRS of the geometry
    :param bounds: Bounding box (minx, miny, maxx, maxy) in the layer CRS
    :param attributes: Attribute row of the selected polygon
    :param gdf: Single-row GeoDataFrame holding the polygon
    """

    id: UUID = PydanticField(..., description="UUIDv5 derived from the geometry")
    geom: dict[str, Any] = PydanticField(..., description="GeoJSON representation of the geometry")
    crs: str = PydanticField(..., description="CRS of the boundary geometry")
    bounds: tuple[float, float, float, float] = PydanticField(..., description="minx, miny, maxx, maxy")
    attributes: dict[str, Any] = PydanticField(default_factory=dict, description="Attributes of the polygon")
    gdf: Any = PydanticField(..., description="GeoDataFrame containing the boundary")

    @staticmethod
    def get_id_from_geom(geometry: Any) -> UUID:
        """Generate UUIDv5 from geometry.

        :param geometry: Geometry object
        :returns: UUIDv5
        """
        geojson = json.dumps(mapping(geometry), sort_keys=True)
        return uuid.uuid5(uuid.NAMESPACE_URL, geojson)

    @classmethod
    def from_geodataframe(cls, gdf: gpd.GeoDataFrame) -> "BasinBoundary":
        """Create BasinBoundary from a single-row GeoDataFrame.

        :param gdf: GeoDataFrame
        :returns: BasinBoundary instance
        """
        geometry = gdf.geometry.iloc[0]
        attributes = {
            key: (value.item() if isinstance(value, np.generic) else value)
            for key, value in gdf.drop(columns=gdf.geometry.name).iloc[0].to_dict().items()
        }
        return cls(
            id=cls.get_id_from_geom(geometry),
            geom=mapping(geometry),
            crs=gdf.crs.to_string() if gdf.crs is not None else "",
            bounds=tuple(float(v) for v in geometry.bounds),
            attributes=attributes,
            gdf=gdf,
        )

    @property
    def polygon(self) -> Any:
        return shape(self.geom)


class CollectionSummary(BaseModel):
    """Collection identifier and descriptive metadata."""

    id: str = PydanticField(..., description="Collection identifier")
    title: str | None = PydanticField(default=None, description="Collection title")
    description: str | None = PydanticField(default=None, description="Collection description")


class GridStatistics(BaseModel):
    """Summary statistics over the valid (non-nodata) cells of a grid.

    :param mean: Mean value
    :param std: Standard deviation
    :param min: Minimum value
    :param max: Maximum value
    :param valid_pixel_count: Valid pixel count
    """

    mean: float | None = PydanticField(..., description="Mean of valid cells")
    std: float | None = PydanticField(..., description="Standard deviation of valid cells")
    min: float | None = PydanticField(..., description="Minimum of valid cells")
    max: float | None = PydanticField(..., description="Maximum of valid cells")
    valid_pixel_count: int = PydanticField(..., description="Number of valid cells")

    @classmethod
    def from_values(cls, values: Any) -> "GridStatistics":
        """Create statistics from a 1-D array of valid values.

        Statistics are None when there is no valid cell.

        :param values: Valid cell values
        :returns: GridStatistics instance
        """
        values = np.asarray(values, dtype="float64")
        if values.size == 0:
            return cls(mean=None, std=None, min=None, max=None, valid_pixel_count=0)
        return cls(
            mean=float(np.mean(values)),
            std=float(np.std(values)),
            min=float(np.min(values)),
            max=float(np.max(values)),
            valid_pixel_count=int(values.size),
        )


class MapProducts(BaseModel):
    """Rendered outputs of the presentation layer."""

    static_path: str = PydanticField(..., description="Path of the static PNG map")
    interactive_path: str = PydanticField(..., description="Path of the interactive HTML map")
    statistics: GridStatistics = PydanticField(..., description="Statistics of the rendered grid")
