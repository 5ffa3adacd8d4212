"""Fallback feed discovery: the protocol address is the feed."""

from eth_oracle_mock.discovery.types import DetectFeedConfig, FeedInfo, ProtocolAdapter, read_feed_info


class GenericAdapter(ProtocolAdapter):
    """Treat the given protocol address as a Chainlink aggregator."""

    name = "Generic"
    protocol_type = "generic"

    async def can_handle(self, config: DetectFeedConfig) -> bool:
        return True

    async def discover_feed(self, config: DetectFeedConfig) -> FeedInfo:
        return await read_feed_info(config.client, config.protocol_address, config.asset_address)
