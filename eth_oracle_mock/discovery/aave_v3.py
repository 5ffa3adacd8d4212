"""Aave V3 feed discovery.

``AaveOracle.getSourceOfAsset()`` returns the Chainlink aggregator
configured for a reserve.
"""

import logging

from eth_oracle_mock.abi import ZERO_ADDRESS
from eth_oracle_mock.discovery.types import DetectFeedConfig, FeedInfo, ProtocolAdapter, read_feed_info

logger = logging.getLogger(__name__)

#: Bundled AaveOracle ABI
AAVE_ORACLE_ABI_FILE = "AaveOracle.json"


class AaveV3Adapter(ProtocolAdapter):
    """Read the price source of a reserve from ``AaveOracle``."""

    name = "Aave V3"
    protocol_type = "aave-v3"

    async def can_handle(self, config: DetectFeedConfig) -> bool:
        await config.client.read_contract(config.protocol_address, AAVE_ORACLE_ABI_FILE, "getSourceOfAsset", [config.asset_address])
        return True

    async def discover_feed(self, config: DetectFeedConfig) -> FeedInfo:
        feed_address = await config.client.read_contract(
            config.protocol_address,
            AAVE_ORACLE_ABI_FILE,
            "getSourceOfAsset",
            [config.asset_address],
        )
        if feed_address == ZERO_ADDRESS:
            raise ValueError(f"AaveOracle has no source for asset {config.asset_address}")

        feed = await read_feed_info(config.client, feed_address, config.asset_address)
        logger.info("AaveOracle %s uses feed %s for %s", config.protocol_address, feed.address, config.asset_address)
        return feed
