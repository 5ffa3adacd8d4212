"""Feed level verification.

Mismatches are reported as :py:class:`PriceVerificationResult`, not raised.
"""

import logging
from dataclasses import dataclass
from decimal import Decimal
from fractions import Fraction

from eth_typing import HexAddress

from eth_oracle_mock.client import ChainClient
from eth_oracle_mock.mock.price_setter import get_current_price
from eth_oracle_mock.price import format_price

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class PriceVerificationResult:
    """Did the feed report what we expected."""

    #: The feed could be read
    success: bool

    feed_address: HexAddress

    expected_price: int

    #: ``0`` if the read failed
    actual_price: int

    #: Exact or within the tolerance
    match: bool

    #: Human readable summary
    message: str


def calculate_tolerance(expected_price: int, tolerance_percent: int | float | str | Decimal) -> int:
    """Allowed deviation in raw units.

    ``floor(|expected| * tolerance / 100)``
    """
    tolerance = Fraction(str(tolerance_percent))
    assert tolerance >= 0, f"Negative tolerance {tolerance_percent}"
    return int(abs(expected_price) * tolerance // 100)


async def _verify(
    client: ChainClient,
    feed_address: HexAddress | str,
    expected_price: int,
    tolerance: int,
    decimals: int,
) -> PriceVerificationResult:
    try:
        actual_price = await get_current_price(client, feed_address)
    except Exception as e:
        message = f"Failed to read price from {feed_address}: {e}"
        logger.warning(message)
        return PriceVerificationResult(False, feed_address, expected_price, 0, False, message)

    match = abs(actual_price - expected_price) <= tolerance
    if match:
        message = f"Price verified at {feed_address}: {format_price(actual_price, decimals)}"
    else:
        message = f"Price mismatch at {feed_address}: expected {format_price(expected_price, decimals)}, got {format_price(actual_price, decimals)}"
        if tolerance:
            message += f", tolerance {format_price(tolerance, decimals)}"

    logger.info(message)
    return PriceVerificationResult(True, feed_address, expected_price, actual_price, match, message)


async def verify_price_change(
    client: ChainClient,
    feed_address: HexAddress | str,
    expected_price: int,
    decimals: int = 8,
) -> PriceVerificationResult:
    """Check the feed reports exactly ``expected_price``."""
    return await _verify(client, feed_address, expected_price, 0, decimals)


async def verify_price_change_with_tolerance(
    client: ChainClient,
    feed_address: HexAddress | str,
    expected_price: int,
    tolerance_percent: int | float | str | Decimal = "0.01",
    decimals: int = 8,
) -> PriceVerificationResult:
    """Check the feed reports ``expected_price`` within a percentage band.

    :param tolerance_percent:
        E.g. ``0.1`` allows 1000 to read as 999..1001
    """
    tolerance = calculate_tolerance(expected_price, tolerance_percent)
    return await _verify(client, feed_address, expected_price, tolerance, decimals)
