"""Protocol level verification.

Reads the price the way the lending protocol itself sees it, so we know
the protocol actually consumes the feed we manipulated.

Price readers are async callables ``(client, protocol_address, asset_address, market_id)``
registered per protocol kind in :py:data:`PROTOCOL_PRICE_READERS`.
"""

import logging
from dataclasses import dataclass
from typing import Awaitable, Callable, Optional

from eth_typing import HexAddress

from eth_oracle_mock.client import ChainClient
from eth_oracle_mock.discovery.aave_v3 import AAVE_ORACLE_ABI_FILE
from eth_oracle_mock.discovery.compound_v3 import COMET_ABI_FILE
from eth_oracle_mock.discovery.morpho import MORPHO_ORACLE_ABI_FILE, get_market_oracle
from eth_oracle_mock.mock.price_setter import get_current_price
from eth_oracle_mock.price import format_price
from eth_oracle_mock.validation.price_verifier import calculate_tolerance

logger = logging.getLogger(__name__)

PriceReader = Callable[[ChainClient, str, str, Optional[bytes]], Awaitable[int]]


@dataclass(slots=True)
class ProtocolPriceResult:
    """Did the protocol see what we expected."""

    #: The protocol price could be read
    success: bool

    protocol_address: HexAddress

    asset_address: HexAddress

    expected_price: int

    #: ``0`` if the read failed
    actual_price: int

    match: bool

    message: str

    #: Protocol display name
    protocol: str


async def read_compound_v3_price(client: ChainClient, comet: str, asset: str, market_id: Optional[bytes] = None) -> int:
    """Comet ``getPrice(priceFeed)`` for the asset's configured feed."""
    asset_info = await client.read_contract(comet, COMET_ABI_FILE, "getAssetInfoByAddress", [asset])
    return await client.read_contract(comet, COMET_ABI_FILE, "getPrice", [asset_info[2]])


async def read_aave_v3_price(client: ChainClient, aave_oracle: str, asset: str, market_id: Optional[bytes] = None) -> int:
    """``AaveOracle.getAssetPrice(asset)``"""
    return await client.read_contract(aave_oracle, AAVE_ORACLE_ABI_FILE, "getAssetPrice", [asset])


async def read_morpho_price(client: ChainClient, protocol: str, asset: str, market_id: Optional[bytes] = None) -> int:
    """Morpho oracle ``price()``.

    With a market id ``protocol`` is Morpho Blue and the oracle is resolved
    from the market. Without one ``protocol`` must be the oracle itself.

    The oracle price is scaled to 1e36 and is a ratio of feeds,
    so it is comparable to a feed answer only in special setups.
    """
    oracle = await get_market_oracle(client, protocol, market_id) if market_id else protocol
    return await client.read_contract(oracle, MORPHO_ORACLE_ABI_FILE, "price")


async def read_generic_price(client: ChainClient, feed: str, asset: str, market_id: Optional[bytes] = None) -> int:
    """The feed itself is the protocol."""
    return await get_current_price(client, feed)


#: Protocol kind -> (display name, price reader)
PROTOCOL_PRICE_READERS: dict[str, tuple[str, PriceReader]] = {
    "compound-v3": ("Compound V3", read_compound_v3_price),
    "aave-v3": ("Aave V3", read_aave_v3_price),
    "morpho": ("Morpho", read_morpho_price),
    "generic": ("Generic", read_generic_price),
}


def get_price_reader(protocol_type: str) -> tuple[str, PriceReader]:
    """Look up the reader for a protocol kind.

    :raise ValueError:
        Unknown protocol kind
    """
    try:
        return PROTOCOL_PRICE_READERS[protocol_type]
    except KeyError:
        raise ValueError(f"Unsupported protocol: {protocol_type}. Supported: {', '.join(PROTOCOL_PRICE_READERS)}")


async def verify_protocol_price_with_tolerance(
    client: ChainClient,
    protocol_address: HexAddress | str,
    asset_address: HexAddress | str,
    expected_price: int,
    protocol_type: str,
    tolerance_percent: int | float | str = 0,
    decimals: int = 8,
    market_id: Optional[bytes] = None,
) -> ProtocolPriceResult:
    """Check the protocol reads ``expected_price`` within a percentage band.

    Read failures become non-matching results.

    :raise ValueError:
        Unknown protocol kind
    """
    name, reader = get_price_reader(protocol_type)

    try:
        actual_price = await reader(client, protocol_address, asset_address, market_id)
    except Exception as e:
        message = f"Failed to verify {name} price: {e}"
        logger.warning(message)
        return ProtocolPriceResult(False, protocol_address, asset_address, expected_price, 0, False, message, name)

    tolerance = calculate_tolerance(expected_price, tolerance_percent)
    match = abs(actual_price - expected_price) <= tolerance
    if match:
        message = f"{name} sees correct price: {format_price(actual_price, decimals)}"
    else:
        message = f"{name} price mismatch: expected {format_price(expected_price, decimals)}, got {format_price(actual_price, decimals)}"

    logger.info(message)
    return ProtocolPriceResult(True, protocol_address, asset_address, expected_price, actual_price, match, message, name)


async def verify_protocol_sees_price(
    client: ChainClient,
    protocol_address: HexAddress | str,
    asset_address: HexAddress | str,
    expected_price: int,
    protocol_type: str,
    decimals: int = 8,
    market_id: Optional[bytes] = None,
) -> ProtocolPriceResult:
    """Check the protocol reads exactly ``expected_price``."""
    return await verify_protocol_price_with_tolerance(
        client,
        protocol_address,
        asset_address,
        expected_price,
        protocol_type,
        tolerance_percent=0,
        decimals=decimals,
        market_id=market_id,
    )
