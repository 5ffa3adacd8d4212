"""Storage slot helpers.

Solidity lays out a ``mapping(key => value)`` declared at slot ``p``
so that the value for ``key`` lives at ``keccak256(pad32(key) . pad32(p))``.

:py:func:`calculate_storage_slot` computes that location so a test
can overwrite mapping entries directly with the node's debug API.
"""

import logging

from eth_typing import HexAddress
from eth_utils import keccak, to_bytes
from hexbytes import HexBytes
from web3 import Web3

from eth_oracle_mock.client import ChainClient
from eth_oracle_mock.provider.anvil import set_storage_slot

logger = logging.getLogger(__name__)


def _pad32(value: str | int | bytes) -> bytes:
    """Left-pad an address, integer or byte string to 32 bytes."""
    if isinstance(value, int):
        assert value >= 0, f"Storage keys must be unsigned, got {value}"
        return value.to_bytes(32, "big")

    if isinstance(value, str):
        value = to_bytes(hexstr=value)

    assert len(value) <= 32, f"Key does not fit a storage word: {len(value)} bytes"
    return value.rjust(32, b"\x00")


def calculate_storage_slot(key: HexAddress | str | int, base_slot: int) -> HexBytes:
    """Compute the storage location of a mapping entry.

    Pure function.

    :param key:
        Mapping key, an address or an unsigned integer

    :param base_slot:
        Declaration slot of the mapping

    :return:
        32 bytes slot
    """
    return HexBytes(keccak(_pad32(key) + _pad32(base_slot)))


def _to_word(value: str | int | bytes) -> str:
    return Web3.to_hex(_pad32(value))


async def get_storage_at(client: ChainClient, address: HexAddress | str, slot: str | int | bytes) -> HexBytes:
    """Read a raw storage word.

    :param slot:
        Slot index as an integer or 32 byte hex
    """
    if not isinstance(slot, int):
        slot = int.from_bytes(_pad32(slot), "big")
    return HexBytes(await client.get_storage_at(address, slot))


async def set_storage_at(
    client: ChainClient,
    address: HexAddress | str,
    slot: str | int | bytes,
    value: str | int | bytes,
):
    """Overwrite a raw storage word through the node debug API.

    :param slot:
        Slot index as an integer or 32 byte hex

    :param value:
        New word as an unsigned integer or hex
    """
    # Hardhat wants the position as a quantity without leading zeros
    slot_hex = hex(int.from_bytes(_pad32(slot), "big"))
    value_hex = _to_word(value)
    logger.debug("Setting storage %s slot %s to %s", address, slot_hex, value_hex)
    await set_storage_slot(client, address, slot_hex, value_hex)
