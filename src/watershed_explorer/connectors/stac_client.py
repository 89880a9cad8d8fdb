"""STAC client connector for STAC API operations."""

from typing import Any

from dagster import ConfigurableResource
from pystac_client import Client
from pystac_client.exceptions import APIError

from watershed_explorer.connectors.settings import SettingsResource
from watershed_explorer.exceptions import CatalogQueryError


class STACResource(ConfigurableResource[Any]):
    """STAC resource for creating STAC API clients."""

    settings: SettingsResource

    def create_client(self) -> Any:
        """Create STAC client.

        Asset signing is left to the asset resolver so the provider can be swapped.

        :returns: Configured STAC client
        :raises CatalogQueryError: If the STAC API cannot be opened
        """
        url = self.settings.stac_api_url
        try:
            return Client.open(url)
        except APIError as e:
            raise CatalogQueryError("catalog", f"Cannot open STAC API: {e}", {"url": url}) from e
