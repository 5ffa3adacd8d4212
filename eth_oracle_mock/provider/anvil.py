"""Anvil and Hardhat node integration.

_ ..anvil:

The engine talks to a local fork node through its JSON-RPC endpoint.
Besides the standard Ethereum API it needs two debug extensions:

- overwriting the executable code of an address (``*_setCode``)

- overwriting a raw storage slot (``*_setStorageAt``)

Hardhat Network exposes these as ``hardhat_setCode`` / ``hardhat_setStorageAt``.
`Anvil <https://book.getfoundry.sh/reference/anvil/>`__ exposes them as
``anvil_setCode`` / ``anvil_setStorageAt`` (and accepts the Hardhat names as aliases).

This module also carries :py:func:`launch_anvil` which spins up a bare Anvil
process for the integration test suite. Forking, snapshots and mining
are left for the node and the test harness.
"""

import logging
import os
import shutil
import sys
import time
import warnings
from dataclasses import dataclass
from subprocess import DEVNULL, PIPE
from typing import TYPE_CHECKING, Any, Literal, Optional

import aiohttp
import psutil
import requests
from eth_typing import HexAddress
from web3 import AsyncWeb3, HTTPProvider, Web3
from web3.types import RPCEndpoint

from eth_oracle_mock.abi import ZERO_ADDRESS
from eth_oracle_mock.utils import find_free_port, shutdown_hard

if TYPE_CHECKING:
    from eth_oracle_mock.client import ChainClient

logger = logging.getLogger(__name__)

#: Which naming convention the node uses for its debug extensions
NodeDialect = Literal["hardhat", "anvil"]


class InvalidArgumentWarning(Warning):
    """Unknown Anvil command line setting."""


class RPCRequestError(Exception):
    """JSON-RPC node returned an error or could not be reached."""


#: Mappings between Anvil command line parameters and our internal argument names
CLI_FLAGS = {
    "port": "--port",
    "host": "--host",
    "fork": "--fork-url",
    "fork_block_number": "--fork-block-number",
    "hardfork": "--hardfork",
    "chain_id": "--chain-id",
    "gas_limit": "--gas-limit",
    "block_time": "--block-time",
}


def _launch(cmd: str, **kwargs) -> tuple[psutil.Popen, list[str]]:
    """Start the node subprocess.

    :param kwargs:
        Keys of :py:data:`CLI_FLAGS`, falsy values are left out
    """
    cmd_list = cmd.split(" ")
    for key, value in [(k, v) for k, v in kwargs.items() if v]:
        try:
            cmd_list.extend([CLI_FLAGS[key], str(value)])
        except KeyError:
            warnings.warn(
                f'Ignoring invalid commandline setting for anvil: "{key}" with value "{value}".',
                InvalidArgumentWarning,
            )

    logger.info("Launching anvil: %s", " ".join(cmd_list))
    out = DEVNULL if sys.platform == "win32" else PIPE
    env = os.environ.copy()
    env["RUST_BACKTRACE"] = "1"  # Get tracebacks from crashed anvil
    return psutil.Popen(cmd_list, stdin=DEVNULL, stdout=out, stderr=out, env=env), cmd_list


@dataclass
class AnvilLaunch:
    """A running background ``anvil`` process."""

    #: JSON-RPC port
    port: int

    #: Full command line
    cmd: list[str]

    #: E.g. ``http://localhost:20001``
    json_rpc_url: str

    #: The subprocess
    process: psutil.Popen

    def close(self, log_level: Optional[int] = None, block=True, block_timeout=30) -> tuple[bytes, bytes]:
        """Kill the node, see :py:func:`eth_oracle_mock.utils.shutdown_hard`.

        :return:
            Node stdout, stderr
        """
        stdout, stderr = shutdown_hard(
            self.process,
            log_level=log_level,
            block=block,
            block_timeout=block_timeout,
            check_port=self.port,
        )
        logger.info("Anvil shutdown %s", self.json_rpc_url)
        return stdout, stderr


def launch_anvil(
    fork_url: Optional[str] = None,
    cmd="anvil",
    port: int | tuple = (19999, 29999, 25),
    launch_wait_seconds=20.0,
    attempts=3,
    hardfork: str | None = "cancun",
    gas_limit: Optional[int] = None,
    chain_id: Optional[int] = None,
    fork_block_number: Optional[int] = None,
    test_request_timeout=3.0,
) -> AnvilLaunch:
    """Start an ``anvil`` node in a subprocess for integration tests.

    Call :py:meth:`AnvilLaunch.close` when done, see ``tests/test_anvil_integration.py``.

    :param fork_url:
        Fork this JSON-RPC endpoint, e.g. a Base mainnet node.
        Without it the node starts with an empty chain.

    :param port:
        A fixed port, or (min port, max port, attempts) for :py:func:`find_free_port`

    :param launch_wait_seconds:
        How long one launch may take to answer ``eth_blockNumber``

    :param attempts:
        Relaunch this many times, a throttled fork upstream can make
        the node hang silently on startup

    :param fork_block_number:
        Pin the fork to a block, needs ``fork_url``

    :param test_request_timeout:
        Timeout of each ``eth_blockNumber`` poll
    """
    assert shutil.which(cmd), f"{cmd} command not in PATH {os.environ.get('PATH')}"
    assert attempts >= 1, f"attempts must be positive, got {attempts}"

    if isinstance(port, tuple):
        port = find_free_port(*port)

    if fork_block_number:
        assert fork_url, f"fork_block_number {fork_block_number} given without fork_url"

    url = f"http://localhost:{port}"
    args = dict(
        port=port,
        fork=fork_url,
        fork_block_number=fork_block_number,
        hardfork=hardfork,
        gas_limit=gas_limit,
        chain_id=chain_id,
    )

    # Sync client, only used to poll for startup
    web3 = Web3(HTTPProvider(url, request_kwargs={"timeout": test_request_timeout}))

    for attempt in range(1, attempts + 1):
        process, final_cmd = _launch(cmd, **args)
        block_number = _wait_block_number(web3, launch_wait_seconds)
        if block_number is not None:
            logger.info("anvil is up at %s, block %d, attempt %d", url, block_number, attempt)
            return AnvilLaunch(port, final_cmd, url, process)

        logger.error("anvil at %s did not answer in %f seconds, attempt %d/%d", url, launch_wait_seconds, attempt, attempts)
        stdout, stderr = shutdown_hard(process, log_level=logging.ERROR, block=True, check_port=port)
        # A node that printed something crashed for real, retrying won't help
        if stdout:
            break

    raise AssertionError(f"Could not launch {cmd} at {url} after {attempt} attempts, stdout is {len(stdout)} bytes, stderr is {len(stderr)} bytes")


def _wait_block_number(web3: Web3, timeout: float) -> Optional[int]:
    deadline = time.time() + timeout
    while time.time() < deadline:
        try:
            return web3.eth.block_number
        except (requests.exceptions.ConnectionError, requests.exceptions.ReadTimeout):
            time.sleep(0.1)
    return None


async def make_anvil_custom_rpc_request(web3: AsyncWeb3, method: str, args: Optional[list] = None) -> Any:
    """Make a request to special named EVM JSON-RPC endpoint.

    - `See the Anvil custom RPC methods here <https://book.getfoundry.sh/reference/anvil/>`__.

    :param method:
        RPC endpoint name

    :param args:
        JSON-RPC call arguments

    :return:
        RPC result

    :raise RPCRequestError:
        In the case RPC method errors
    """

    if args is None:
        args = []

    try:
        response = await web3.provider.make_request(RPCEndpoint(method), list(args))
    except aiohttp.ClientConnectionError as e:
        raise RPCRequestError(f"Web3 is not connected: {e}") from e

    if "result" in response:
        return response["result"]

    error = response.get("error")
    if isinstance(error, dict):
        raise RPCRequestError(error.get("message", str(error)))
    raise RPCRequestError(str(error))


async def detect_node_dialect(client: "ChainClient", probe_address: HexAddress | str = ZERO_ADDRESS) -> NodeDialect:
    """Detect whether we are talking to Hardhat Network or Anvil.

    Probes ``hardhat_setCode`` by writing back the code that already sits
    at ``probe_address``, so the probe does not change the chain state.
    Any RPC failure means we assume Anvil.

    The result is remembered in :py:attr:`ChainClient.node_dialect`
    for later storage writes on the same node.
    """
    current_code = await client.get_code(probe_address)
    try:
        await client.make_request("hardhat_setCode", [probe_address, Web3.to_hex(current_code)])
        dialect = "hardhat"
    except RPCRequestError as e:
        logger.debug("hardhat_setCode probe failed, assuming Anvil: %s", e)
        dialect = "anvil"

    client.node_dialect = dialect
    return dialect


async def set_code(client: "ChainClient", address: HexAddress | str, bytecode: str, dialect: NodeDialect) -> None:
    """Replace the executable code at ``address``.

    :param bytecode:
        Runtime bytecode as 0x prefixed hex
    """
    assert bytecode.startswith("0x"), f"Bytecode must be 0x prefixed hex, got {bytecode[0:10]}"
    await client.make_request(f"{dialect}_setCode", [address, bytecode])


async def set_storage_slot(client: "ChainClient", address: HexAddress | str, slot: str, value: str) -> None:
    """Overwrite a raw 32 byte storage slot.

    Uses the dialect the client detected earlier, probing the node if none is known yet.

    :param slot:
        32 bytes 0x prefixed hex

    :param value:
        32 bytes 0x prefixed hex
    """
    dialect = client.node_dialect or await detect_node_dialect(client)
    await client.make_request(f"{dialect}_setStorageAt", [address, slot, value])

