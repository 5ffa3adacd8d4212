"""Morpho Blue feed discovery.

Morpho Blue markets are identified by a ``bytes32`` market id. The market
parameters name an oracle contract, usually a ``MorphoChainlinkOracleV2``,
which combines up to two base and two quote Chainlink feeds.

We resolve the first base feed, or the first quote feed when the market
has no base feed. Whether this feed is the numerator or the denominator
of the oracle price is not known here, see
:py:func:`eth_oracle_mock.mock.price_setter.set_price_with_bidirectional_factor`.
"""

import logging

from eth_oracle_mock.abi import ZERO_ADDRESS
from eth_oracle_mock.discovery.types import DetectFeedConfig, FeedInfo, ProtocolAdapter, read_feed_info

logger = logging.getLogger(__name__)

#: Bundled Morpho Blue ABI
MORPHO_BLUE_ABI_FILE = "MorphoBlue.json"

#: Bundled MorphoChainlinkOracleV2 ABI
MORPHO_ORACLE_ABI_FILE = "MorphoChainlinkOracleV2.json"


async def get_market_oracle(client, morpho_address: str, market_id: bytes) -> str:
    """Resolve the oracle of a Morpho Blue market.

    :raise ValueError:
        Market does not exist
    """
    # loanToken, collateralToken, oracle, irm, lltv
    params = await client.read_contract(morpho_address, MORPHO_BLUE_ABI_FILE, "idToMarketParams", [market_id])
    oracle = params[2]
    if oracle == ZERO_ADDRESS:
        raise ValueError(f"Morpho market {market_id.hex()} not found or has no oracle")
    return oracle


class MorphoAdapter(ProtocolAdapter):
    """Read the Chainlink feed behind a Morpho Blue market oracle.

    Only picked when the caller hints ``protocol_type="morpho"``,
    because Morpho Blue cannot be probed without a market id.
    """

    name = "Morpho Blue"
    protocol_type = "morpho"

    async def can_handle(self, config: DetectFeedConfig) -> bool:
        return config.protocol_type == "morpho"

    async def discover_feed(self, config: DetectFeedConfig) -> FeedInfo:
        if not config.market_id:
            raise ValueError("Morpho adapter requires market ID. Pass market_id for the Morpho Blue market.")

        client = config.client
        oracle = await get_market_oracle(client, config.protocol_address, config.market_id)

        feed_address = await client.read_contract(oracle, MORPHO_ORACLE_ABI_FILE, "BASE_FEED_1")
        if feed_address == ZERO_ADDRESS:
            logger.info("Morpho oracle %s has no base feed, using the quote feed", oracle)
            feed_address = await client.read_contract(oracle, MORPHO_ORACLE_ABI_FILE, "QUOTE_FEED_1")

        if feed_address == ZERO_ADDRESS:
            raise ValueError(f"Morpho oracle {oracle} has no Chainlink feeds")

        feed = await read_feed_info(client, feed_address, config.asset_address)
        logger.info("Morpho market %s oracle %s uses feed %s", config.market_id.hex(), oracle, feed.address)
        return feed
