"""Crash WETH price on Compound V3 USDC market on a Base mainnet fork.

Start a Base fork first:

.. code-block:: shell

    anvil --fork-url $JSON_RPC_BASE --port 8545

Then:

.. code-block:: shell

    export JSON_RPC_URL=http://127.0.0.1:8545
    python scripts/crash-eth-price.py

Example output::

    Connected to chain 8453: Base
    Feed: 0x71041dddad3595F9CEd3DcCFBe3D1F4b0a16Bb70
    Price changed from 3120.45000000 to 2496.36000000 (-20.00%)
    Comet sees the new price: True
    Reset back to 3120.45000000

"""

import asyncio
import os

from eth_oracle_mock.api import create_oracle_manipulator
from eth_oracle_mock.chain import get_chain_name
from eth_oracle_mock.price import format_price
from eth_oracle_mock.utils import setup_console_logging

# Compound V3 USDC on Base
COMET = "0xb125E6687d4313864e53df431d5425969c15Eb2F"

# WETH on Base
WETH = "0x4200000000000000000000000000000000000006"


async def main():
    json_rpc_url = os.environ.get("JSON_RPC_URL", "http://127.0.0.1:8545")
    percent = os.environ.get("PRICE_CHANGE_PERCENT", "-20")

    manipulator = create_oracle_manipulator(json_rpc_url, network="base")
    chain_id = await manipulator.client.web3.eth.chain_id
    print(f"Connected to chain {chain_id}: {get_chain_name(chain_id)}")

    result = await manipulator.set_oracle_price(
        protocol="compound-v3",
        protocol_address=COMET,
        asset_address=WETH,
        price_change_percent=percent,
    )
    print(f"Feed: {result.feed_address}")
    print(result.message)
    print(f"Comet sees the new price: {result.verified}")

    reset = await manipulator.reset_oracle_price("compound-v3", COMET, WETH)
    print(f"Reset back to {format_price(reset.new_price, 8)}")


if __name__ == "__main__":
    setup_console_logging(default_log_level="warning")
    asyncio.run(main())
