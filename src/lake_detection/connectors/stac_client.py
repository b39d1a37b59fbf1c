"""STAC client connector for scene search."""

from typing import Any

import planetary_computer
from dagster import ConfigurableResource
from pystac_client import Client

from lake_detection.connectors.settings import SettingsResource

PLANETARY_COMPUTER_HOST = "planetarycomputer.microsoft.com"


class STACResource(ConfigurableResource[Any]):
    """STAC resource for creating STAC API clients."""

    settings: SettingsResource

    def create_client(self) -> Any:
        """Create STAC client.

        Planetary Computer catalogs sign asset hrefs on access.

        :returns: Configured STAC client
        """
        url = self.settings.stac_api_url
        if PLANETARY_COMPUTER_HOST in str(url):
            return Client.open(url, modifier=planetary_computer.sign_inplace)
        return Client.open(url)
