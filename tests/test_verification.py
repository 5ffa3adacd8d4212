"""Feed and protocol level price verification."""

import pytest

from eth_oracle_mock.validation.price_verifier import (
    calculate_tolerance,
    verify_price_change,
    verify_price_change_with_tolerance,
)
from eth_oracle_mock.validation.protocol_verifier import (
    PROTOCOL_PRICE_READERS,
    verify_protocol_price_with_tolerance,
    verify_protocol_sees_price,
)

from conftest import AAVE_ORACLE, CBETH_ETH_FEED, COMET, ETH_PRICE, ETH_USD_FEED, MARKET_ID, MORPHO, MORPHO_ORACLE, WETH


def test_calculate_tolerance():
    assert calculate_tolerance(1000, "0.1") == 1
    assert calculate_tolerance(1000, "0.01") == 0
    assert calculate_tolerance(-1000, 10) == 100
    assert calculate_tolerance(2000_00000000, 0.5) == 10_00000000


@pytest.mark.asyncio
async def test_exact_match(client, mock_feed):
    result = await verify_price_change(client, ETH_USD_FEED, ETH_PRICE)
    assert result.success
    assert result.match
    assert result.actual_price == ETH_PRICE
    assert "2000.00000000" in result.message


@pytest.mark.asyncio
async def test_exact_mismatch(client, mock_feed):
    result = await verify_price_change(client, ETH_USD_FEED, ETH_PRICE + 1)
    assert result.success
    assert not result.match
    assert "mismatch" in result.message


@pytest.mark.asyncio
async def test_tolerance_band(client, mock_feed):
    mock_feed.storage[0] = 1001
    assert (await verify_price_change_with_tolerance(client, ETH_USD_FEED, 1000, "0.1")).match
    assert (await verify_price_change_with_tolerance(client, ETH_USD_FEED, 1000, 0.1)).match
    assert not (await verify_price_change_with_tolerance(client, ETH_USD_FEED, 1000, "0.01")).match

    mock_feed.storage[0] = 999
    assert (await verify_price_change_with_tolerance(client, ETH_USD_FEED, 1000, "0.1")).match


@pytest.mark.asyncio
async def test_read_failure_is_a_result(client):
    nowhere = "0x000000000000000000000000000000000000dEaD"
    result = await verify_price_change(client, nowhere, 1)
    assert not result.success
    assert not result.match
    assert result.actual_price == 0
    assert "Failed to read price" in result.message


def test_protocol_readers():
    assert set(PROTOCOL_PRICE_READERS) == {"compound-v3", "aave-v3", "morpho", "generic"}


@pytest.mark.asyncio
async def test_compound_v3_sees_price(client, mock_feed):
    result = await verify_protocol_sees_price(client, COMET, WETH, ETH_PRICE, "compound-v3")
    assert result.success
    assert result.match
    assert result.protocol == "Compound V3"


@pytest.mark.asyncio
async def test_aave_v3_sees_price(client, mock_feed):
    mock_feed.storage[0] = 1500_00000000
    result = await verify_protocol_sees_price(client, AAVE_ORACLE, WETH, ETH_PRICE, "aave-v3")
    assert result.success
    assert not result.match
    assert result.actual_price == 1500_00000000


@pytest.mark.asyncio
async def test_morpho_sees_price(client):
    expected = 10**36 * 1_100000000000000000
    result = await verify_protocol_sees_price(client, MORPHO, WETH, expected, "morpho", decimals=18, market_id=MARKET_ID)
    assert result.match

    # Oracle address given directly
    result = await verify_protocol_sees_price(client, MORPHO_ORACLE, WETH, expected, "morpho", decimals=18)
    assert result.match


@pytest.mark.asyncio
async def test_generic_sees_price(client):
    result = await verify_protocol_price_with_tolerance(client, CBETH_ETH_FEED, WETH, 1_100000000000000001, "generic", tolerance_percent="0.01", decimals=18)
    assert result.match


@pytest.mark.asyncio
async def test_protocol_read_failure(client):
    result = await verify_protocol_sees_price(client, ETH_USD_FEED, WETH, ETH_PRICE, "compound-v3")
    assert not result.success
    assert not result.match
    assert result.message.startswith("Failed to verify Compound V3 price")


@pytest.mark.asyncio
async def test_unknown_protocol(client):
    with pytest.raises(ValueError, match="Unsupported protocol: euler"):
        await verify_protocol_sees_price(client, COMET, WETH, ETH_PRICE, "euler")
