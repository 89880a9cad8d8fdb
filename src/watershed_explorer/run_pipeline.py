#!/usr/bin/env python3
"""Materialize every asset of the watershed pipeline once, outside the Dagster UI."""

from dagster import materialize

from watershed_explorer.definitions import all_assets, resources

if __name__ == "__main__":
    result = materialize(all_assets, resources=resources)
    if not result.success:
        raise SystemExit(1)
