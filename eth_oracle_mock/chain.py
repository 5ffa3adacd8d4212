"""Network presets.

Maps the short network names used by the facade to EVM chain ids.
A forked Anvil pipes through the chain id of the chain it forks,
so transactions are signed for the parent chain id.
"""

from typing import Literal

#: Network names accepted by :py:class:`eth_oracle_mock.api.OracleManipulator`
SupportedNetwork = Literal["base", "ethereum", "arbitrum", "optimism", "polygon", "localhost"]

#: Network name -> chain id
NETWORK_CHAIN_IDS: dict[str, int] = {
    "ethereum": 1,
    "optimism": 10,
    "polygon": 137,
    "base": 8453,
    "arbitrum": 42161,
    # Anvil and Hardhat default dev chain
    "localhost": 31337,
}

#: Manually maintained shorthand names for different EVM chains
CHAIN_NAMES = {chain_id: name.capitalize() for name, chain_id in NETWORK_CHAIN_IDS.items()}


def get_chain_id_by_network(network: str) -> int:
    """Resolve a network preset to its chain id.

    :raise ValueError:
        Unknown network name
    """
    chain_id = NETWORK_CHAIN_IDS.get(network.lower())
    if chain_id is None:
        raise ValueError(f"Unsupported network: {network}. Supported networks are: {', '.join(NETWORK_CHAIN_IDS)}")
    return chain_id


def get_chain_name(chain_id: int) -> str:
    """Get chain name.

    :return:
        Human-readable name, or ``Unknown chain <id>``
    """
    return CHAIN_NAMES.get(chain_id, f"Unknown chain {chain_id}")

