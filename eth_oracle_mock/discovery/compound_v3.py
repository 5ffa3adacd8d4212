"""Compound V3 (Comet) feed discovery.

Each Comet market stores the price feed of a collateral asset
in its ``AssetInfo`` struct, returned by ``getAssetInfoByAddress()``.
"""

import logging

from eth_oracle_mock.abi import ZERO_ADDRESS
from eth_oracle_mock.discovery.types import DetectFeedConfig, FeedInfo, ProtocolAdapter, read_feed_info

logger = logging.getLogger(__name__)

#: Bundled Comet ABI
COMET_ABI_FILE = "Comet.json"


class CompoundV3Adapter(ProtocolAdapter):
    """Read the collateral price feed from a Comet market."""

    name = "Compound V3"
    protocol_type = "compound-v3"

    async def can_handle(self, config: DetectFeedConfig) -> bool:
        # Only Comet has baseToken()
        await config.client.read_contract(config.protocol_address, COMET_ABI_FILE, "baseToken")
        return True

    async def discover_feed(self, config: DetectFeedConfig) -> FeedInfo:
        try:
            asset_info = await config.client.read_contract(
                config.protocol_address,
                COMET_ABI_FILE,
                "getAssetInfoByAddress",
                [config.asset_address],
            )
            # offset, asset, priceFeed, scale, ...
            feed_address = asset_info[2]
            if not feed_address or feed_address == ZERO_ADDRESS:
                raise ValueError("Asset not found in Comet or no price feed configured")

            feed = await read_feed_info(config.client, feed_address, config.asset_address)
        except Exception as e:
            raise ValueError(f"Failed to discover feed: {e}") from e

        logger.info("Comet %s uses feed %s (%s) for %s", config.protocol_address, feed.address, feed.description, config.asset_address)
        return feed
