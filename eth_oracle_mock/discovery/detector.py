"""Run protocol adapters until one finds the feed.

Example:

.. code-block:: python

    from eth_oracle_mock.discovery.detector import detect_price_feed
    from eth_oracle_mock.discovery.types import DetectFeedConfig

    feed = await detect_price_feed(
        DetectFeedConfig(
            client=client,
            # Compound V3 USDC on Base
            protocol_address="0xb125E6687d4313864e53df431d5425969c15Eb2F",
            # WETH
            asset_address="0x4200000000000000000000000000000000000006",
        )
    )
    print(feed.address, feed.decimals, feed.description)
"""

import logging

from eth_oracle_mock.discovery.aave_v3 import AaveV3Adapter
from eth_oracle_mock.discovery.compound_v3 import CompoundV3Adapter
from eth_oracle_mock.discovery.generic import GenericAdapter
from eth_oracle_mock.discovery.morpho import MorphoAdapter
from eth_oracle_mock.discovery.types import DetectFeedConfig, FeedInfo, ProtocolAdapter

logger = logging.getLogger(__name__)

#: Adapters in the priority order, generic fallback last
DEFAULT_ADAPTERS: tuple[ProtocolAdapter, ...] = (
    CompoundV3Adapter(),
    AaveV3Adapter(),
    MorphoAdapter(),
    GenericAdapter(),
)


class FeedDiscoveryError(Exception):
    """No adapter could discover the feed.

    The message lists every adapter failure.
    """

    def __init__(self, message: str, failures: list[tuple[str, str]]):
        super().__init__(message)
        #: List of (adapter name, error message)
        self.failures = failures


async def detect_price_feed(
    config: DetectFeedConfig,
    adapters: tuple[ProtocolAdapter, ...] | list[ProtocolAdapter] = DEFAULT_ADAPTERS,
) -> FeedInfo:
    """Find the price feed of an asset.

    - Adapters are tried in order

    - An adapter whose ``can_handle()`` returns false, or raises, is skipped

    - The first ``discover_feed()`` that succeeds wins

    :raise FeedDiscoveryError:
        No adapter succeeded
    """
    failures = []

    for adapter in adapters:
        try:
            handles = await adapter.can_handle(config)
        except Exception as e:
            logger.debug("%s can_handle() failed for %s: %s", adapter.name, config.protocol_address, e)
            handles = False

        if not handles:
            continue

        try:
            feed = await adapter.discover_feed(config)
        except Exception as e:
            logger.debug("%s could not discover feed: %s", adapter.name, e)
            failures.append((adapter.name, str(e)))
            continue

        logger.info("%s discovered feed %s, %d decimals", adapter.name, feed.address, feed.decimals)
        return feed

    lines = "\n".join(f"  - {name}: {message}" for name, message in failures)
    raise FeedDiscoveryError(f"Failed to detect price feed. Tried {len(adapters)} adapters:\n{lines}", failures)
