"""Chain client.

Wraps an ``AsyncWeb3`` JSON-RPC connection and a local signing account
into the handful of operations the oracle manipulation engine needs:

- contract reads (``eth_call``)

- signed contract writes and waiting for their inclusion

- raw code and storage reads

- raw JSON-RPC requests for the node's debug extensions

Example:

.. code-block:: python

    from eth_oracle_mock.client import create_chain_client

    client = create_chain_client("http://127.0.0.1:8545", network="base")
    decimals = await client.read_contract(feed_address, "ChainlinkAggregatorV2V3Interface.json", "decimals")

"""

import logging
from typing import Any, Optional

from eth_account import Account
from eth_account.signers.local import LocalAccount
from eth_typing import HexAddress
from hexbytes import HexBytes
from web3 import AsyncHTTPProvider, AsyncWeb3, Web3
from web3.types import TxReceipt

from eth_oracle_mock.abi import get_deployed_contract
from eth_oracle_mock.chain import get_chain_id_by_network
from eth_oracle_mock.provider.anvil import NodeDialect, make_anvil_custom_rpc_request

logger = logging.getLogger(__name__)

#: The first prefunded dev account of Anvil and Hardhat.
#:
#: Well known and public, only usable on local test nodes.
#:
ANVIL_DEFAULT_PRIVATE_KEY = "0xac0974bec39a17e36ba4a6b4d238ff944bacb478cbed5efcae784d7bf4f2ff80"


class ChainClient:
    """Typed read and write access to one JSON-RPC node.

    - Reads go through ``eth_call`` using the bundled ABI files.

    - Writes are signed locally with :py:attr:`account` for :py:attr:`chain_id`
      and broadcast with ``eth_sendRawTransaction``.

    - :py:attr:`node_dialect` remembers which debug extension naming
      the node uses, once detected.
    """

    def __init__(
        self,
        web3: AsyncWeb3,
        account: Optional[LocalAccount] = None,
        chain_id: Optional[int] = None,
    ):
        """Create a client.

        :param web3:
            Async web3 connection

        :param account:
            Signer for transactions. Read-only client if not given.

        :param chain_id:
            Chain id to sign for.
            If not given, read from the node on the first write.
        """
        assert isinstance(web3, AsyncWeb3), f"Got {type(web3)}"
        self.web3 = web3
        self.account = account
        self.chain_id = chain_id

        #: Set by :py:func:`eth_oracle_mock.provider.anvil.detect_node_dialect`
        self.node_dialect: Optional[NodeDialect] = None

    def __repr__(self):
        address = self.account.address if self.account else None
        return f"<ChainClient chain:{self.chain_id} account:{address} dialect:{self.node_dialect}>"

    async def get_chain_id(self) -> int:
        """Chain id we sign for."""
        if self.chain_id is None:
            self.chain_id = await self.web3.eth.chain_id
        return self.chain_id

    async def read_contract(
        self,
        address: HexAddress | str,
        abi_file: str,
        function_name: str,
        args: tuple | list = (),
    ) -> Any:
        """Call a view function.

        :param abi_file:
            Bundled ABI file name, see :py:mod:`eth_oracle_mock.abi`

        :return:
            Decoded return value. Multiple outputs are returned as a list.
        """
        contract = get_deployed_contract(self.web3, abi_file, address)
        func = getattr(contract.functions, function_name)(*args)
        return await func.call()

    async def write_contract(
        self,
        address: HexAddress | str,
        abi_file: str,
        function_name: str,
        args: tuple | list = (),
    ) -> HexBytes:
        """Sign and broadcast a state-changing call.

        Does not wait for the inclusion, see :py:meth:`wait_for_transaction_receipt`.

        :return:
            Transaction hash
        """
        assert self.account is not None, "ChainClient was created without a signing account"

        contract = get_deployed_contract(self.web3, abi_file, address)
        func = getattr(contract.functions, function_name)(*args)

        nonce = await self.web3.eth.get_transaction_count(self.account.address, "pending")
        tx = await func.build_transaction(
            {
                "from": self.account.address,
                "nonce": nonce,
                "chainId": await self.get_chain_id(),
            }
        )
        signed = self.account.sign_transaction(tx)
        tx_hash = await self.web3.eth.send_raw_transaction(signed.raw_transaction)
        logger.debug("Broadcasted %s.%s() as %s, nonce %d", address, function_name, tx_hash.hex(), nonce)
        return tx_hash

    async def wait_for_transaction_receipt(self, tx_hash: HexBytes) -> TxReceipt:
        """Block until the transaction is included in a block."""
        return await self.web3.eth.wait_for_transaction_receipt(tx_hash)

    async def get_code(self, address: HexAddress | str) -> HexBytes:
        """Read the executable code at an address."""
        return await self.web3.eth.get_code(Web3.to_checksum_address(address))

    async def get_storage_at(self, address: HexAddress | str, slot: int) -> HexBytes:
        """Read a raw 32 byte storage slot."""
        return await self.web3.eth.get_storage_at(Web3.to_checksum_address(address), slot)

    async def make_request(self, method: str, params: Optional[list] = None) -> Any:
        """Raw JSON-RPC request.

        :raise eth_oracle_mock.provider.anvil.RPCRequestError:
            The node returned an error
        """
        return await make_anvil_custom_rpc_request(self.web3, method, params)


def create_chain_client(
    json_rpc_url: str,
    network: Optional[str] = None,
    private_key: Optional[str] = ANVIL_DEFAULT_PRIVATE_KEY,
    request_timeout: float = 30.0,
) -> ChainClient:
    """Create a client for a local fork node.

    :param json_rpc_url:
        Node JSON-RPC URL, e.g. ``http://127.0.0.1:8545``

    :param network:
        Network preset name, see :py:mod:`eth_oracle_mock.chain`.

        If not given, the chain id is read from the node.

    :param private_key:
        Signer for writes. Defaults to Anvil's first dev account.
        Pass ``None`` for a read-only client.
    """
    web3 = AsyncWeb3(AsyncHTTPProvider(json_rpc_url, request_kwargs={"timeout": request_timeout}))
    account = Account.from_key(private_key) if private_key else None
    chain_id = get_chain_id_by_network(network) if network else None
    return ChainClient(web3, account=account, chain_id=chain_id)
