"""Dagster definitions for the watershed explorer pipeline."""

from dagster import Definitions, load_assets_from_modules

from watershed_explorer import assets  # noqa: TID252
from watershed_explorer.connectors.settings import SettingsResource
from watershed_explorer.connectors.stac_client import STACResource
from watershed_explorer.storage import create_io_manager
from watershed_explorer.triggers.jobs import climate_job, elevation_job, watershed_job

all_assets = load_assets_from_modules([assets])

settings = SettingsResource.create(swallow_errors=True)

resources = {
    "stac": STACResource(settings=settings),
    "settings": settings,
    "io_manager": create_io_manager(settings),
}

defs = Definitions(
    assets=all_assets,
    jobs=[watershed_job, elevation_job, climate_job],
    resources=resources,
)
