"""Discovery data types and the protocol adapter interface."""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import TYPE_CHECKING, Literal, Optional

from eth_typing import HexAddress

from eth_oracle_mock.abi import AGGREGATOR_ABI_FILE, ERC20_ABI_FILE
from eth_oracle_mock.price import SUPPORTED_DECIMALS

if TYPE_CHECKING:
    from eth_oracle_mock.client import ChainClient

logger = logging.getLogger(__name__)

#: Protocol kinds we know how to read prices from
ProtocolType = Literal["compound-v3", "aave-v3", "morpho", "generic"]


@dataclass(slots=True, frozen=True)
class FeedInfo:
    """A discovered price feed."""

    #: Feed contract address
    address: HexAddress

    #: 8 or 18
    decimals: int

    #: Feed ``description()``, e.g. ``ETH / USD``, if the feed has one
    description: Optional[str] = None

    #: ERC-20 ``symbol()`` of the priced asset, if it has one
    asset_symbol: Optional[str] = None


@dataclass(slots=True)
class DetectFeedConfig:
    """Input for feed discovery."""

    #: Chain connection
    client: "ChainClient"

    #: Comet, AaveOracle, Morpho Blue or the feed itself
    protocol_address: HexAddress

    #: Asset we want the feed for
    asset_address: HexAddress

    #: Optional hint which adapter should pick this up
    protocol_type: Optional[ProtocolType] = None

    #: Morpho Blue market id, 32 bytes
    market_id: Optional[bytes] = None


class ProtocolAdapter(ABC):
    """Discovers price feeds for one protocol family.

    Adapters are stateless and are tried in a priority order
    by :py:func:`eth_oracle_mock.discovery.detector.detect_price_feed`.
    """

    #: Human readable name used in error reports
    name: str

    #: Which protocol kind this adapter serves
    protocol_type: ProtocolType

    @abstractmethod
    async def can_handle(self, config: DetectFeedConfig) -> bool:
        """Does the protocol address look like something this adapter understands."""

    @abstractmethod
    async def discover_feed(self, config: DetectFeedConfig) -> FeedInfo:
        """Resolve the feed.

        :raise Exception:
            Any failure, with a human readable message
        """

    def __repr__(self):
        return f"<{self.__class__.__name__} {self.name}>"


async def read_feed_info(
    client: "ChainClient",
    feed_address: HexAddress | str,
    asset_address: Optional[HexAddress | str] = None,
) -> FeedInfo:
    """Read decimals and description from a feed.

    Description and asset symbol are best effort.

    :param asset_address:
        Label the feed with the ``symbol()`` of this token

    :raise ValueError:
        The feed precision is not 8 or 18
    """
    decimals = await client.read_contract(feed_address, AGGREGATOR_ABI_FILE, "decimals")
    if decimals not in SUPPORTED_DECIMALS:
        raise ValueError(f"Unsupported feed decimals: {decimals} (expected 8 or 18)")

    try:
        description = await client.read_contract(feed_address, AGGREGATOR_ABI_FILE, "description")
    except Exception as e:
        logger.debug("Feed %s has no description(): %s", feed_address, e)
        description = None

    asset_symbol = None
    if asset_address:
        try:
            asset_symbol = await client.read_contract(asset_address, ERC20_ABI_FILE, "symbol")
        except Exception as e:
            logger.debug("Asset %s has no symbol(): %s", asset_address, e)

    return FeedInfo(address=feed_address, decimals=decimals, description=description, asset_symbol=asset_symbol)
