"""ABI loading from the bundled JSON files.

Provides functions to load ABI files shipped in ``eth_oracle_mock/abi``
and to construct :py:class:`web3.contract.AsyncContract` proxies.
The results are cached for the speedup.

The bundle contains only the minimal interfaces the engine reads:
Chainlink aggregators, Compound V3 Comet, AaveOracle and Morpho Blue,
plus the compiled mock feed artifacts.
"""

import json
from functools import lru_cache
from pathlib import Path

from eth_typing import HexAddress
from web3 import AsyncWeb3, Web3
from web3.contract import AsyncContract

# How big is our ABI cache
_CACHE_SIZE = 64

#: Ethereum 0x0000000000000000000000000000000000000000 address
ZERO_ADDRESS = "0x0000000000000000000000000000000000000000"

#: Where bundled ABI files live
ABI_FOLDER = Path(__file__).resolve().parent / "abi"

#: Chainlink AggregatorV3Interface with the legacy V2 ``latestAnswer()``
AGGREGATOR_ABI_FILE = "ChainlinkAggregatorV2V3Interface.json"

#: Just enough ERC-20 to label assets
ERC20_ABI_FILE = "ERC20.json"


@lru_cache(maxsize=_CACHE_SIZE)
def get_abi_by_filename(fname: str | Path) -> dict | list:
    """Reads a embedded ABI file and returns it.

    Example::

        abi = get_abi_by_filename("Comet.json")

    Loaded ABI files are cached in in-process memory.

    :param fname:
        JSON filename in the bundled ``abi`` folder,
        or an absolute path to a Hardhat/Foundry artifact.

    :return:
        Etherscan style ABI list or a compiler artifact dict
    """
    path = Path(fname)
    if not path.is_absolute():
        path = ABI_FOLDER / path

    with open(path, "rt", encoding="utf-8") as f:
        return json.load(f)


def get_abi(fname: str | Path) -> list[dict]:
    """Get the ABI list from a bundled file, whatever its format.

    - Etherscan copy-paste files are the ABI list itself

    - Solc/Hardhat artifacts carry the list under the ``abi`` key
    """
    contract_interface = get_abi_by_filename(fname)
    if type(contract_interface) == list:
        return contract_interface
    return contract_interface["abi"]


def get_deployed_contract(
    web3: AsyncWeb3,
    fname: str | Path,
    address: HexAddress | str,
) -> AsyncContract:
    """Get an async Contract proxy for a contract deployed at a specific address.

    :param web3:
        AsyncWeb3 instance

    :param fname:
        Bundled ABI filename

    :param address:
        Address of the deployed contract

    :return:
        `web3.contract.AsyncContract` proxy
    """
    assert isinstance(web3, AsyncWeb3), f"Got {type(web3)} instead of AsyncWeb3"
    assert address, "get_deployed_contract() address was None"
    return web3.eth.contract(address=Web3.to_checksum_address(address), abi=get_abi(fname))


def get_function_names(abi: list[dict]) -> list[str]:
    """List the function names declared in an ABI."""
    return [item["name"] for item in abi if item.get("type") == "function"]
