"""Fixed-point price conversion.

Chainlink style feeds report prices as integers scaled by ``10 ** decimals``.
The engine supports the two decimal precisions used by the live feeds,
8 (USD denominated) and 18 (ETH denominated).

Example:

.. code-block:: python

    assert format_price(200050000000, 8) == "2000.50000000"
    assert parse_price("2000.50", 8) == 200050000000
"""

from decimal import Decimal

#: Feed precisions we can mock
SUPPORTED_DECIMALS = (8, 18)


def validate_decimals(decimals: int) -> int:
    """Check the feed precision is one we have a mock for.

    :raise ValueError:
        Decimals is not 8 or 18
    """
    if decimals not in SUPPORTED_DECIMALS:
        raise ValueError(f"Unsupported feed decimals: {decimals} (expected 8 or 18)")
    return decimals


def format_price(price: int, decimals: int) -> str:
    """Render a raw feed answer as a human readable decimal string.

    Always prints all ``decimals`` fractional digits.
    """
    sign = "-" if price < 0 else ""
    whole, fraction = divmod(abs(price), 10**decimals)
    return f"{sign}{whole}.{fraction:0{decimals}d}"


def parse_price(text: str | Decimal | int, decimals: int) -> int:
    """Convert a human readable price to the raw feed answer.

    Fractional digits beyond ``decimals`` are truncated.

    :param text:
        E.g. ``"2000.50"``. A :py:class:`Decimal` may be in exponent form,
        e.g. ``Decimal("2E+3")``.

    :raise ValueError:
        Not a decimal number
    """
    if isinstance(text, Decimal):
        # str() would give 1E-8
        text = format(text, "f")
    text = str(text).strip()
    negative = text.startswith("-")
    if negative:
        text = text[1:]

    whole, _, fraction = text.partition(".")
    if not whole:
        whole = "0"

    if not (whole.isdigit() and (fraction.isdigit() or fraction == "")):
        raise ValueError(f"Not a decimal price: {text}")

    fraction = fraction.ljust(decimals, "0")[0:decimals]
    value = int(whole) * 10**decimals + int(fraction or "0")
    return -value if negative else value
