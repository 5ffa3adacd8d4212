"""High level oracle manipulation.

:py:class:`OracleManipulator` strings together feed discovery, mock injection,
price setting and verification, and remembers the original price of each
manipulated feed so it can be restored.

Example:

.. code-block:: python

    from eth_oracle_mock.api import create_oracle_manipulator

    manipulator = create_oracle_manipulator("http://127.0.0.1:8545", network="base")

    # Crash WETH by 20% on Compound V3 USDC market on Base
    result = await manipulator.set_oracle_price(
        protocol="compound-v3",
        protocol_address="0xb125E6687d4313864e53df431d5425969c15Eb2F",
        asset_address="0x4200000000000000000000000000000000000006",
        price_change_percent=-20,
    )
    print(result.message)

    # ... run liquidations ...

    await manipulator.reset_oracle_price(
        protocol="compound-v3",
        protocol_address="0xb125E6687d4313864e53df431d5425969c15Eb2F",
        asset_address="0x4200000000000000000000000000000000000006",
    )
"""

import logging
import os
from dataclasses import dataclass
from decimal import Decimal
from fractions import Fraction
from typing import Optional

from eth_typing import HexAddress
from web3 import Web3

from eth_oracle_mock.artifacts import MockArtifactCache
from eth_oracle_mock.client import ANVIL_DEFAULT_PRIVATE_KEY, ChainClient, create_chain_client
from eth_oracle_mock.discovery.detector import detect_price_feed
from eth_oracle_mock.discovery.types import DetectFeedConfig, FeedInfo
from eth_oracle_mock.mock.deployer import MockFeedHandle, deploy_mock_at_address
from eth_oracle_mock.mock.price_setter import (
    PriceVerificationError,
    get_current_price,
    set_price,
    set_price_with_percentage_change,
)
from eth_oracle_mock.price import format_price, parse_price, validate_decimals
from eth_oracle_mock.validation.price_verifier import verify_price_change
from eth_oracle_mock.validation.protocol_verifier import get_price_reader, verify_protocol_sees_price

logger = logging.getLogger(__name__)

#: Environment variable overriding the signer of :py:func:`create_oracle_manipulator`
PRIVATE_KEY_ENV = "ORACLE_MOCK_PRIVATE_KEY"


class OriginalPriceError(Exception):
    """Reset was asked for a feed we have never manipulated."""


@dataclass(slots=True)
class SetOraclePriceResult:
    """Outcome of :py:meth:`OracleManipulator.set_oracle_price`."""

    success: bool

    #: The feed we replaced
    feed_address: HexAddress

    #: Raw answer before the manipulation
    old_price: int

    #: Raw answer after the manipulation
    new_price: int

    #: Realised change, two decimals, ``None`` when the old price was zero
    price_change_percent: Optional[Decimal]

    #: The protocol reads the new price
    verified: bool

    message: str


class OriginalPriceCache:
    """First seen price per ``network:protocol:asset``.

    An entry is never overwritten, so repeated manipulations
    can always be reset to the pre-manipulation price.
    The feed precision used for the first manipulation is kept with it.
    """

    def __init__(self):
        self.prices: dict[str, int] = {}
        self.decimals: dict[str, int] = {}

    @staticmethod
    def make_key(network: str, protocol_address: str, asset_address: str) -> str:
        return f"{network}:{Web3.to_checksum_address(protocol_address)}:{Web3.to_checksum_address(asset_address)}"

    def __contains__(self, key: str) -> bool:
        return key in self.prices

    def __len__(self):
        return len(self.prices)

    def get(self, key: str) -> Optional[int]:
        return self.prices.get(key)

    def get_decimals(self, key: str) -> Optional[int]:
        return self.decimals.get(key)

    def remember(self, key: str, price: int, decimals: Optional[int] = None) -> bool:
        """Store the price unless we already have one.

        :param decimals:
            Precision the price was read and manipulated at

        :return:
            True if stored
        """
        if key in self.prices:
            return False
        self.prices[key] = price
        if decimals is not None:
            self.decimals[key] = decimals
        return True

    def clear(self):
        self.prices.clear()
        self.decimals.clear()


def calculate_price_change_percent(old_price: int, new_price: int) -> Optional[Decimal]:
    """Realised change in percent, truncated to two decimals."""
    if old_price == 0:
        return None
    basis_points = int(Fraction((new_price - old_price) * 10000, old_price))
    return Decimal(basis_points) / 100


class OracleManipulator:
    """Force Chainlink style feeds to report our prices on a fork.

    Holds the artifact cache and the original price cache for its lifetime.
    """

    def __init__(
        self,
        client: ChainClient,
        network: str,
        artifacts: Optional[MockArtifactCache] = None,
        original_prices: Optional[OriginalPriceCache] = None,
    ):
        """
        :param client:
            Connection to the fork node with a signing account

        :param network:
            Network preset name, used in the original price keys

        :param artifacts:
            Mock artifact cache, a fresh one if not given

        :param original_prices:
            Share original prices between manipulators
        """
        self.client = client
        self.network = network
        self.artifacts = artifacts or MockArtifactCache()
        self.original_prices = original_prices if original_prices is not None else OriginalPriceCache()

    def __repr__(self):
        return f"<OracleManipulator {self.network} {self.client}>"

    async def discover_feed(
        self,
        protocol_address: HexAddress | str,
        asset_address: HexAddress | str,
        protocol: Optional[str] = None,
        market_id: Optional[bytes] = None,
    ) -> FeedInfo:
        """Find the feed the protocol reads for an asset.

        :raise eth_oracle_mock.discovery.detector.FeedDiscoveryError:
            No adapter found it
        """
        config = DetectFeedConfig(
            client=self.client,
            protocol_address=protocol_address,
            asset_address=asset_address,
            protocol_type=protocol,
            market_id=market_id,
        )
        return await detect_price_feed(config)

    async def deploy_mock_feed(
        self,
        feed_address: HexAddress | str,
        decimals: int,
        initial_price: Optional[int] = None,
    ) -> MockFeedHandle:
        """Inject the mock and optionally set its first answer."""
        handle = await deploy_mock_at_address(self.client, feed_address, decimals, self.artifacts)
        if initial_price is not None:
            await set_price(self.client, feed_address, initial_price, decimals)
        return handle

    async def verify_price(self, feed_address: HexAddress | str, expected_price: int, decimals: int = 8) -> bool:
        """Does the feed report exactly ``expected_price``."""
        result = await verify_price_change(self.client, feed_address, expected_price, decimals)
        return result.match

    async def set_oracle_price(
        self,
        protocol: str,
        protocol_address: HexAddress | str,
        asset_address: HexAddress | str,
        new_price: Optional[int | str | Decimal] = None,
        price_change_percent: Optional[int | str | Decimal] = None,
        decimals: Optional[int] = None,
        market_id: Optional[bytes] = None,
    ) -> SetOraclePriceResult:
        """Make the protocol see a new price for an asset.

        Give either ``new_price`` or ``price_change_percent``.

        Steps:

        1. Discover the feed
        2. Remember its current answer as the original price
        3. Inject the mock at the feed address and carry over the current answer
        4. Write the new answer
        5. Verify the feed and the protocol

        :param protocol:
            ``compound-v3``, ``aave-v3``, ``morpho`` or ``generic``

        :param new_price:
            A string or ``Decimal`` is a human readable price, e.g. ``"2000.50"``.
            An integer is a raw feed answer.

        :param price_change_percent:
            E.g. ``-20`` for a 20% crash

        :param decimals:
            Override the feed precision, 8 or 18

        :param market_id:
            Morpho Blue market

        :raise ValueError:
            Bad arguments

        :raise PriceVerificationError:
            The feed does not report the new price after the write
        """
        if (new_price is None) == (price_change_percent is None):
            raise ValueError("Give exactly one of new_price or price_change_percent")

        if decimals is not None:
            validate_decimals(decimals)

        # Fail on unknown protocols before touching the chain
        get_price_reader(protocol)

        client = self.client

        feed = await self.discover_feed(protocol_address, asset_address, protocol, market_id)
        feed_decimals = decimals or feed.decimals
        logger.info("Manipulating %s %s for asset %s, feed %s", protocol, protocol_address, feed.asset_symbol or asset_address, feed.address)

        old_price = await get_current_price(client, feed.address)
        key = OriginalPriceCache.make_key(self.network, protocol_address, asset_address)
        if self.original_prices.remember(key, old_price, feed_decimals):
            logger.info("Remembered original price %s for %s", format_price(old_price, feed_decimals), key)

        await deploy_mock_at_address(client, feed.address, feed_decimals, self.artifacts)

        # The mock reads its answer from a slot the aggregator used for something else
        injected_price = await get_current_price(client, feed.address)
        if injected_price != old_price:
            logger.info("Seeding mock at %s with the pre-injection price %d", feed.address, old_price)
            await set_price(client, feed.address, old_price, feed_decimals)

        if price_change_percent is not None:
            result = await set_price_with_percentage_change(client, feed.address, price_change_percent, feed_decimals)
        else:
            raw_price = new_price if isinstance(new_price, int) else parse_price(new_price, feed_decimals)
            result = await set_price(client, feed.address, raw_price, feed_decimals)

        final_price = result.new_price

        feed_verification = await verify_price_change(client, feed.address, final_price, feed_decimals)
        if not feed_verification.match:
            raise PriceVerificationError(f"Feed verification failed: {feed_verification.message}")

        protocol_verification = await verify_protocol_sees_price(
            client,
            protocol_address,
            asset_address,
            final_price,
            protocol,
            decimals=feed_decimals,
            market_id=market_id,
        )
        if not protocol_verification.match:
            logger.warning("Protocol verification issue: %s", protocol_verification.message)

        change = calculate_price_change_percent(old_price, final_price)
        message = f"Price changed from {format_price(old_price, feed_decimals)} to {format_price(final_price, feed_decimals)}"
        if change is not None:
            message += f" ({'+' if change > 0 else ''}{change:.2f}%)"
        logger.info(message)

        return SetOraclePriceResult(
            success=True,
            feed_address=feed.address,
            old_price=old_price,
            new_price=final_price,
            price_change_percent=change,
            verified=protocol_verification.match,
            message=message,
        )

    async def reset_oracle_price(
        self,
        protocol: str,
        protocol_address: HexAddress | str,
        asset_address: HexAddress | str,
        market_id: Optional[bytes] = None,
        decimals: Optional[int] = None,
    ) -> SetOraclePriceResult:
        """Restore the price seen before the first manipulation.

        The mock is injected at the precision of the first manipulation,
        so a ``decimals`` override carries over to the reset.

        :param decimals:
            Override the remembered precision

        :raise OriginalPriceError:
            :py:meth:`set_oracle_price` was never called for this protocol and asset
        """
        key = OriginalPriceCache.make_key(self.network, protocol_address, asset_address)
        original_price = self.original_prices.get(key)
        if original_price is None:
            raise OriginalPriceError(f"No original price found for {key}. Set price first before resetting.")

        decimals = decimals or self.original_prices.get_decimals(key)
        logger.info("Resetting %s to the original price %d", key, original_price)
        return await self.set_oracle_price(
            protocol,
            protocol_address,
            asset_address,
            new_price=original_price,
            decimals=decimals,
            market_id=market_id,
        )


def create_oracle_manipulator(
    json_rpc_url: str,
    network: str,
    private_key: Optional[str] = None,
) -> OracleManipulator:
    """Connect to a fork node.

    :param private_key:
        Signer. Defaults to ``ORACLE_MOCK_PRIVATE_KEY``, then Anvil's first dev account.
    """
    private_key = private_key or os.environ.get(PRIVATE_KEY_ENV) or ANVIL_DEFAULT_PRIVATE_KEY
    client = create_chain_client(json_rpc_url, network=network, private_key=private_key)
    return OracleManipulator(client, network)
