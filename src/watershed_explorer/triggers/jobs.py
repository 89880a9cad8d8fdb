"""Dagster job definitions for asset materialization."""

from dagster import define_asset_job

watershed_job = define_asset_job(name="watershed_job", selection="*")
elevation_job = define_asset_job(
    name="elevation_job",
    selection=["basin_boundary", "river_network", "elevation_grid", "elevation_maps"],
)
climate_job = define_asset_job(
    name="climate_job",
    selection=["basin_boundary", "river_network", "climate_grid", "climate_maps"],
)
