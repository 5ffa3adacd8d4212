"""Set the answer of an injected mock feed.

All writes go through the mock's ``setLatestAnswer(int256)``, are waited
until included in a block and then read back.

- :py:func:`set_price` sets an absolute raw answer

- :py:func:`set_price_with_percentage_change` moves the current answer by a percentage

- :py:func:`set_price_with_bidirectional_factor` handles composite oracles
  where we do not know if the feed is a numerator or a denominator

Percentages can be given as ``int``, ``Decimal`` or a decimal string.
They are converted with :py:class:`fractions.Fraction` so the resulting
answer is exact and never goes through floating point.
"""

import logging
from dataclasses import dataclass
from decimal import Decimal
from fractions import Fraction
from typing import Awaitable, Callable, Literal, Optional

from eth_typing import HexAddress
from hexbytes import HexBytes

from eth_oracle_mock.abi import AGGREGATOR_ABI_FILE
from eth_oracle_mock.client import ChainClient
from eth_oracle_mock.price import format_price

logger = logging.getLogger(__name__)

#: The mock ABI with ``setLatestAnswer()``. Same for both precisions.
MOCK_ABI_FILE = "MockFeedDec8.json"

#: Async callable reading whatever downstream value the caller watches
OracleValidator = Callable[[], Awaitable[int]]

#: Which hypothesis moved the observed price
Direction = Literal["forward", "inverse", "unknown"]

Percent = int | float | str | Decimal | Fraction


class PriceSetError(Exception):
    """The ``setLatestAnswer()`` transaction failed."""


class PriceVerificationError(Exception):
    """The feed did not report the answer we just wrote."""


class ZeroPriceError(Exception):
    """Percentage change was requested on a zero answer."""


@dataclass(slots=True)
class PriceChangeResult:
    """Outcome of a price write."""

    #: Answer before the write
    old_price: int

    #: Answer after the write
    new_price: int

    #: The last transaction we broadcasted
    transaction_hash: HexBytes

    success: bool


@dataclass(slots=True)
class BidirectionalPriceChangeResult(PriceChangeResult):
    """Outcome of :py:func:`set_price_with_bidirectional_factor`."""

    #: ``forward``: the factor was applied as is.
    #: ``inverse``: the reciprocal factor was applied.
    #: ``unknown``: no observer, or nothing worked.
    direction: Direction


def _to_fraction(percent: Percent) -> Fraction:
    # str() so that floats are taken by their shortest repr, 0.1 -> 1/10
    return Fraction(str(percent))


async def get_decimals(client: ChainClient, feed_address: HexAddress | str) -> int:
    return await client.read_contract(feed_address, AGGREGATOR_ABI_FILE, "decimals")


async def get_current_price(client: ChainClient, feed_address: HexAddress | str) -> int:
    """Read the current answer of a feed.

    Uses ``latestRoundData()`` and falls back to the legacy ``latestAnswer()``.

    :raise ValueError:
        Neither read works
    """
    try:
        round_data = await client.read_contract(feed_address, AGGREGATOR_ABI_FILE, "latestRoundData")
        return round_data[1]
    except Exception as e:
        logger.debug("latestRoundData() failed at %s, trying latestAnswer(): %s", feed_address, e)

    try:
        return await client.read_contract(feed_address, AGGREGATOR_ABI_FILE, "latestAnswer")
    except Exception as e:
        raise ValueError(f"Failed to get current price from {feed_address}: {e}") from e


async def set_price(
    client: ChainClient,
    feed_address: HexAddress | str,
    new_price: int,
    decimals: int,
) -> PriceChangeResult:
    """Write an absolute raw answer to a mock feed.

    :param new_price:
        Raw answer, scaled by ``10 ** decimals``

    :raise PriceSetError:
        Transaction could not be sent or reverted

    :raise PriceVerificationError:
        Read back answer differs from ``new_price``
    """
    old_price = await get_current_price(client, feed_address)

    logger.info(
        "Setting price at %s: %s -> %s",
        feed_address,
        format_price(old_price, decimals),
        format_price(new_price, decimals),
    )

    try:
        tx_hash = await client.write_contract(feed_address, MOCK_ABI_FILE, "setLatestAnswer", [new_price])
        receipt = await client.wait_for_transaction_receipt(tx_hash)
    except Exception as e:
        raise PriceSetError(f"setLatestAnswer({new_price}) failed at {feed_address}: {e}") from e

    if receipt["status"] != 1:
        raise PriceSetError(f"setLatestAnswer({new_price}) reverted at {feed_address}, tx {tx_hash.hex()}")

    actual = await get_current_price(client, feed_address)
    if actual != new_price:
        raise PriceVerificationError(f"Price verification failed at {feed_address}: expected {new_price}, got {actual}")

    return PriceChangeResult(
        old_price=old_price,
        new_price=new_price,
        transaction_hash=tx_hash,
        success=True,
    )


async def set_price_with_percentage_change(
    client: ChainClient,
    feed_address: HexAddress | str,
    percent: Percent,
    decimals: int,
) -> PriceChangeResult:
    """Move the current answer by a percentage.

    ``new = floor(old * (100 + percent) / 100)``

    :param percent:
        E.g. ``-20`` for a 20% drop

    :raise ZeroPriceError:
        Current answer is zero
    """
    old_price = await get_current_price(client, feed_address)
    if old_price == 0:
        raise ZeroPriceError(f"Cannot apply percentage change: current price is 0 at {feed_address}")

    new_price = (old_price * (100 + _to_fraction(percent))) // 100
    logger.info("Applying %s%% change at %s", percent, feed_address)
    return await set_price(client, feed_address, int(new_price), decimals)


def _moved_as_requested(before: int, after: int, percent: Fraction) -> bool:
    if percent < 0:
        return after < before
    elif percent > 0:
        return after > before
    return after == before


async def set_price_with_bidirectional_factor(
    client: ChainClient,
    feed_address: HexAddress | str,
    percent: Percent,
    decimals: int,
    oracle_validator: Optional[OracleValidator] = None,
) -> BidirectionalPriceChangeResult:
    """Apply a percentage change through a composite oracle.

    A protocol oracle may compute ``base / quote`` out of several feeds.
    Lowering a quote feed raises the protocol price. When we do not know
    which side our feed is on, we try both:

    1. Write ``old * factor`` and ask ``oracle_validator`` if the protocol
       price moved the requested way. If it did, we are done (``forward``).

    2. Restore ``old``, write ``old / factor`` and ask again (``inverse``).

    3. Restore ``old``.

    Without ``oracle_validator`` nothing can be checked. The forward
    value is then written and reported as ``success=True`` with
    ``direction="unknown"``, even though the protocol price may have moved
    the wrong way.

    :param percent:
        Requested protocol price change, e.g. ``-10``.
        Must be above -100.

    :param oracle_validator:
        Async callable returning the protocol price the caller cares about

    :raise ValueError:
        Percent is -100 or below, or so close to it the price would floor to zero

    :raise ZeroPriceError:
        Current answer is zero
    """
    percent = _to_fraction(percent)
    if percent <= -100:
        raise ValueError(f"Percentage change must be above -100, got {percent}")

    scale = 10**decimals
    factor = int(scale * (100 + percent) // 100)
    if factor == 0:
        raise ValueError(f"Percentage change {float(percent)}% rounds the price to zero at {decimals} decimals")

    old_price = await get_current_price(client, feed_address)
    if old_price == 0:
        raise ZeroPriceError(f"Cannot apply percentage change: current price is 0 at {feed_address}")

    candidate_a = old_price * factor // scale
    candidate_b = old_price * scale // factor

    observed_before = await oracle_validator() if oracle_validator else None

    logger.info("Trying forward direction at %s: %s -> %s", feed_address, format_price(old_price, decimals), format_price(candidate_a, decimals))
    result = await set_price(client, feed_address, candidate_a, decimals)

    if oracle_validator:
        observed = await oracle_validator()
        if observed_before is not None and _moved_as_requested(observed_before, observed, percent):
            logger.info("Forward direction moved the oracle price %d -> %d", observed_before, observed)
            return BidirectionalPriceChangeResult(old_price, candidate_a, result.transaction_hash, True, "forward")

    await set_price(client, feed_address, old_price, decimals)

    logger.info("Trying inverse direction at %s: %s -> %s", feed_address, format_price(old_price, decimals), format_price(candidate_b, decimals))
    result = await set_price(client, feed_address, candidate_b, decimals)

    if oracle_validator:
        observed = await oracle_validator()
        if observed_before is not None and _moved_as_requested(observed_before, observed, percent):
            logger.info("Inverse direction moved the oracle price %d -> %d", observed_before, observed)
            return BidirectionalPriceChangeResult(old_price, candidate_b, result.transaction_hash, True, "inverse")

    result = await set_price(client, feed_address, old_price, decimals)

    if not oracle_validator:
        logger.info("No oracle validator given, applying the forward direction at %s", feed_address)
        result = await set_price(client, feed_address, candidate_a, decimals)
        return BidirectionalPriceChangeResult(old_price, candidate_a, result.transaction_hash, True, "unknown")

    logger.warning("Neither direction moved the oracle price as requested, restored %s at %s", old_price, feed_address)
    return BidirectionalPriceChangeResult(old_price, old_price, result.transaction_hash, False, "unknown")


async def reset_price(client: ChainClient, feed_address: HexAddress | str, decimals: int) -> PriceChangeResult:
    """Set the mock answer to zero."""
    return await set_price(client, feed_address, 0, decimals)
