"""Settings resource for managing configuration from environment variables."""

import os
from pathlib import Path
from typing import Any, get_type_hints

from dagster import ConfigurableResource

from watershed_explorer.config.constants import (
    BOUNDARY_SELECTION_POLICIES,
    DEFAULT_BASINS_ARCHIVE_URL,
    DEFAULT_BOUNDARY_SELECTION_POLICY,
    DEFAULT_CLIMATE_COLLECTION,
    DEFAULT_CLIMATE_DATETIME,
    DEFAULT_CLIMATE_MODEL,
    DEFAULT_CLIMATE_SCENARIO,
    DEFAULT_CLIMATE_VARIABLE,
    DEFAULT_DATA_DIR,
    DEFAULT_DOWNLOAD_RETRIES,
    DEFAULT_ELEVATION_COLLECTION,
    DEFAULT_ELEVATION_NODATA,
    DEFAULT_HTTP_TIMEOUT,
    DEFAULT_ITEM_SELECTION,
    DEFAULT_OSM_TIMEOUT,
    DEFAULT_OUTLET_LAT,
    DEFAULT_OUTLET_LON,
    DEFAULT_OUTPUT_DIR,
    DEFAULT_POINT_CRS,
    DEFAULT_RIVER_NAME,
    DEFAULT_RIVER_TAG,
    DEFAULT_STAC_API_URL,
    DEFAULT_STAC_PROVIDER,
    ITEM_SELECTION_MODES,
)

_TRUE_VALUES = ("true", "1", "yes", "y", "on")


class SettingsResource(ConfigurableResource[Any]):
    """Workflow settings; every field can be overridden by the upper-cased environment variable."""

    stac_api_url: str = DEFAULT_STAC_API_URL
    stac_provider: str = DEFAULT_STAC_PROVIDER
    data_dir: str = DEFAULT_DATA_DIR
    output_dir: str = DEFAULT_OUTPUT_DIR
    overwrite_downloads: bool = False
    http_timeout: float = DEFAULT_HTTP_TIMEOUT
    download_retries: int = DEFAULT_DOWNLOAD_RETRIES
    osm_timeout: int = DEFAULT_OSM_TIMEOUT
    basins_archive_url: str = DEFAULT_BASINS_ARCHIVE_URL
    outlet_lon: float = DEFAULT_OUTLET_LON
    outlet_lat: float = DEFAULT_OUTLET_LAT
    point_crs: str = DEFAULT_POINT_CRS
    boundary_selection_policy: str = DEFAULT_BOUNDARY_SELECTION_POLICY
    river_name: str = DEFAULT_RIVER_NAME
    river_tag: str = DEFAULT_RIVER_TAG
    elevation_collection: str = DEFAULT_ELEVATION_COLLECTION
    elevation_nodata: float = DEFAULT_ELEVATION_NODATA
    climate_collection: str = DEFAULT_CLIMATE_COLLECTION
    climate_model: str = DEFAULT_CLIMATE_MODEL
    climate_scenario: str = DEFAULT_CLIMATE_SCENARIO
    climate_variable: str = DEFAULT_CLIMATE_VARIABLE
    climate_datetime: str = DEFAULT_CLIMATE_DATETIME
    item_selection: str = DEFAULT_ITEM_SELECTION

    @staticmethod
    def create(swallow_errors: bool = False) -> "SettingsResource":
        """Create SettingsResource from environment variables.

        Variables that are unset keep the field default.

        :param swallow_errors: If True, ignore validation errors
        :returns: SettingsResource instance
        """
        env_values: dict[str, Any] = {}
        for attr_name, attr_type in get_type_hints(SettingsResource).items():
            raw = os.environ.get(attr_name.upper())
            if raw is None or raw == "":
                continue
            if attr_type is bool:
                env_values[attr_name] = raw.strip().lower() in _TRUE_VALUES
            elif attr_type is int:
                env_values[attr_name] = int(raw)
            elif attr_type is float:
                env_values[attr_name] = float(raw)
            else:
                env_values[attr_name] = raw

        settings = SettingsResource(**env_values)
        try:
            settings._post_init()
        except (TypeError, ValueError):
            if not swallow_errors:
                raise
        return settings

    def create_data_dirs(self) -> None:
        """Create data and output directories if missing."""
        for directory in (self.data_dir, self.output_dir):
            if directory:
                Path(directory).mkdir(parents=True, exist_ok=True)

    def validate_settings(self) -> None:
        """Validate policy names and coordinate ranges."""
        errors = []
        if self.boundary_selection_policy not in BOUNDARY_SELECTION_POLICIES:
            errors.append(
                f"BOUNDARY_SELECTION_POLICY must be one of {BOUNDARY_SELECTION_POLICIES}, "
                f"got {self.boundary_selection_policy!r}"
            )
        if self.item_selection not in ITEM_SELECTION_MODES:
            errors.append(f"ITEM_SELECTION must be one of {ITEM_SELECTION_MODES}, got {self.item_selection!r}")
        if self.point_crs.upper() == "EPSG:4326":
            if not -180 <= self.outlet_lon <= 180:
                errors.append(f"OUTLET_LON out of range: {self.outlet_lon}")
            if not -90 <= self.outlet_lat <= 90:
                errors.append(f"OUTLET_LAT out of range: {self.outlet_lat}")
        if self.http_timeout <= 0 or self.osm_timeout <= 0:
            errors.append("Timeouts must be positive")
        if errors:
            raise ValueError("; ".join(errors))

    def _post_init(self) -> None:
        self.validate_settings()
        self.create_data_dirs()
