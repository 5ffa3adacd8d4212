"""In-memory chain for unit tests.

:py:class:`FakeChainClient` quacks like :py:class:`eth_oracle_mock.client.ChainClient`,
but keeps contracts as Python objects. Installing the mock feed bytecode with
``*_setCode`` swaps the contract object for :py:class:`FakeMockFeed`
that keeps the storage of the replaced contract, like a real node does.
"""

from typing import Optional

import pytest
from hexbytes import HexBytes

from eth_oracle_mock.abi import ZERO_ADDRESS
from eth_oracle_mock.artifacts import get_mock_bytecode
from eth_oracle_mock.provider.anvil import RPCRequestError

#: Compound V3 USDC on Base
COMET = "0xb125E6687d4313864e53df431d5425969c15Eb2F"

#: Aave V3 oracle on Base
AAVE_ORACLE = "0x2Cc0Fc26eD4563A5ce5e8bdcfe1A2878676Ae156"

#: Morpho Blue
MORPHO = "0xBBBBBbbBBb9cC5e90e3b3Af64bdAF62C37EEFFCb"

MORPHO_ORACLE = "0x4756c26E01E61c7c2F86b10C5D5Da74d4fF11b46"

#: WETH on Base
WETH = "0x4200000000000000000000000000000000000006"

#: cbETH on Base
CBETH = "0x2Ae3F1Ec7F1F5012CFEab0185bfc7aa3cf0DEc22"

#: Chainlink ETH / USD on Base
ETH_USD_FEED = "0x71041dddad3595F9CEd3DcCFBe3D1F4b0a16Bb70"

#: Chainlink cbETH / ETH on Base
CBETH_ETH_FEED = "0x806b4Ac04501c29769051e42783cF04dCE41440b"

MARKET_ID = bytes.fromhex("c54d7acf14de29e0e5527cabd7a576506870346a78a11a6762e2cca66322ec41")

#: ETH at 2000 USD
ETH_PRICE = 2000_00000000

#: What the aggregator happens to keep in slot 0
AGGREGATOR_SLOT_0 = 0x1234


class FakeRevert(Exception):
    """eth_call reverted."""


class FakeContract:
    """Base for fake contracts.

    Functions are plain methods taking the call arguments.
    """

    code = b"\x60\x80"

    def __init__(self):
        self.storage: dict[int, int] = {}

    def call(self, function_name: str, args: tuple | list):
        func = getattr(self, function_name, None)
        if func is None:
            raise FakeRevert(f"execution reverted: {self.__class__.__name__}.{function_name}()")
        return func(*args)


class FakeAggregator(FakeContract):
    """Live Chainlink aggregator proxy."""

    code = b"\x60\x80\x60\x40\x52"

    def __init__(self, answer: int, decimals: int = 8, description: Optional[str] = "ETH / USD"):
        super().__init__()
        self.answer = answer
        self._decimals = decimals
        self._description = description
        self.storage[0] = AGGREGATOR_SLOT_0

    def decimals(self):
        return self._decimals

    def description(self):
        if self._description is None:
            raise FakeRevert("no description")
        return self._description

    def version(self):
        return 4

    def latestAnswer(self):
        return self.answer

    def latestRoundData(self):
        return [110680464442257320000, self.answer, 1700000000, 1700000000, 110680464442257320000]


class FakeMockFeed(FakeContract):
    """The installed mock, answer in slot 0."""

    def __init__(self, decimals: int, code: bytes, storage: dict[int, int]):
        super().__init__()
        self._decimals = decimals
        self.code = code
        self.storage = storage
        #: Simulate a broken mock that drops writes
        self.ignore_writes = False

    def decimals(self):
        return self._decimals

    def latestAnswer(self):
        return self.storage.get(0, 0)

    def latestRoundData(self):
        round_id = self.storage.get(2, 0)
        updated_at = self.storage.get(1, 0)
        return [round_id, self.storage.get(0, 0), updated_at, updated_at, round_id]

    def setLatestAnswer(self, answer: int):
        if self.ignore_writes:
            return
        self.storage[0] = answer
        self.storage[1] = 1700000000
        self.storage[2] = self.storage.get(2, 0) + 1


class FakeERC20(FakeContract):
    def __init__(self, symbol: str, decimals: int = 18):
        super().__init__()
        self._symbol = symbol
        self._decimals = decimals

    def symbol(self):
        return self._symbol

    def decimals(self):
        return self._decimals


class FakeComet(FakeContract):
    def __init__(self, client: "FakeChainClient", feeds: dict[str, str]):
        super().__init__()
        self.client = client
        self.feeds = {k.lower(): v for k, v in feeds.items()}

    def baseToken(self):
        return "0x833589fCD6eDb6E08f4c7C32D4f71b54bdA02913"

    def getAssetInfoByAddress(self, asset: str):
        feed = self.feeds.get(asset.lower())
        if feed is None:
            raise FakeRevert("BadAsset()")
        return [0, asset, feed, 10**18, 0, 0, 0, 0]

    def getPrice(self, feed: str):
        return self.client.contracts[feed.lower()].call("latestAnswer", [])


class FakeAaveOracle(FakeContract):
    def __init__(self, client: "FakeChainClient", sources: dict[str, str]):
        super().__init__()
        self.client = client
        self.sources = {k.lower(): v for k, v in sources.items()}

    def getSourceOfAsset(self, asset: str):
        return self.sources.get(asset.lower(), ZERO_ADDRESS)

    def getAssetPrice(self, asset: str):
        return self.client.contracts[self.sources[asset.lower()].lower()].call("latestAnswer", [])


class FakeMorpho(FakeContract):
    def __init__(self, markets: dict[bytes, str]):
        super().__init__()
        self.markets = markets

    def idToMarketParams(self, market_id: bytes):
        oracle = self.markets.get(market_id, ZERO_ADDRESS)
        return [WETH, CBETH, oracle, ZERO_ADDRESS, 860000000000000000]


class FakeMorphoOracle(FakeContract):
    """Oracle price is base / quote, scaled to 1e36."""

    def __init__(self, client: "FakeChainClient", base_feed: str, quote_feed: str):
        super().__init__()
        self.client = client
        self.base_feed = base_feed
        self.quote_feed = quote_feed

    def _answer(self, feed: str) -> int:
        return self.client.contracts[feed.lower()].call("latestAnswer", [])

    def BASE_FEED_1(self):
        return self.base_feed

    def QUOTE_FEED_1(self):
        return self.quote_feed

    def price(self):
        base = self._answer(self.base_feed) if self.base_feed != ZERO_ADDRESS else 1
        quote = self._answer(self.quote_feed) if self.quote_feed != ZERO_ADDRESS else 1
        return 10**36 * base // quote


class FakeChainClient:
    """In-memory stand-in for :py:class:`eth_oracle_mock.client.ChainClient`."""

    def __init__(self, dialect: str = "anvil"):
        #: Which setCode naming the fake node understands
        self.dialect = dialect
        self.node_dialect = None
        self.contracts: dict[str, FakeContract] = {}
        #: (method, params) of every raw request
        self.requests: list[tuple[str, list]] = []
        #: (address, function, args) of every write
        self.writes: list[tuple[str, str, list]] = []
        self.receipt_status = 1
        self.tx_count = 0
        self.mock_bytecodes = {
            HexBytes(get_mock_bytecode(8)): 8,
            HexBytes(get_mock_bytecode(18)): 18,
        }

    def deploy(self, address: str, contract: FakeContract) -> FakeContract:
        self.contracts[address.lower()] = contract
        return contract

    def get_contract(self, address: str) -> FakeContract:
        return self.contracts[address.lower()]

    async def get_chain_id(self) -> int:
        return 8453

    async def read_contract(self, address, abi_file, function_name, args=()):
        contract = self.contracts.get(address.lower())
        if contract is None:
            raise FakeRevert(f"No contract at {address}")
        return contract.call(function_name, args)

    async def write_contract(self, address, abi_file, function_name, args=()):
        await self.read_contract(address, abi_file, function_name, args)
        self.writes.append((address, function_name, list(args)))
        self.tx_count += 1
        return HexBytes(self.tx_count.to_bytes(32, "big"))

    async def wait_for_transaction_receipt(self, tx_hash):
        return {"status": self.receipt_status, "transactionHash": tx_hash}

    async def get_code(self, address) -> HexBytes:
        contract = self.contracts.get(address.lower())
        return HexBytes(contract.code if contract else b"")

    async def get_storage_at(self, address, slot: int) -> HexBytes:
        contract = self.contracts.get(address.lower())
        value = contract.storage.get(slot, 0) if contract else 0
        return HexBytes(value.to_bytes(32, "big"))

    async def make_request(self, method: str, params=None):
        params = params or []
        self.requests.append((method, params))
        prefix, _, name = method.partition("_")
        if prefix != self.dialect:
            raise RPCRequestError(f"Method {method} not found")

        if name == "setCode":
            self._set_code(*params)
        elif name == "setStorageAt":
            address, slot, value = params
            contract = self.contracts.setdefault(address.lower(), FakeContract())
            contract.storage[int(slot, 16)] = int(value, 16)
        else:
            raise RPCRequestError(f"Method {method} not found")
        return True

    def _set_code(self, address: str, bytecode: str):
        code = HexBytes(bytecode)
        existing = self.contracts.get(address.lower())
        if existing is not None and HexBytes(existing.code) == code:
            return

        decimals = self.mock_bytecodes.get(code)
        storage = existing.storage if existing else {}
        if decimals is None:
            contract = FakeContract()
            contract.code = bytes(code)
            contract.storage = storage
        else:
            contract = FakeMockFeed(decimals, bytes(code), storage)
        self.contracts[address.lower()] = contract


@pytest.fixture()
def client() -> FakeChainClient:
    """Fake Base fork with ETH / USD feed behind Compound V3, Aave V3 and Morpho Blue."""
    client = FakeChainClient()
    client.deploy(WETH, FakeERC20("WETH"))
    client.deploy(ETH_USD_FEED, FakeAggregator(ETH_PRICE, 8, "ETH / USD"))
    client.deploy(CBETH_ETH_FEED, FakeAggregator(1_100000000000000000, 18, "cbETH / ETH"))
    client.deploy(COMET, FakeComet(client, {WETH: ETH_USD_FEED}))
    client.deploy(AAVE_ORACLE, FakeAaveOracle(client, {WETH: ETH_USD_FEED}))
    client.deploy(MORPHO, FakeMorpho({MARKET_ID: MORPHO_ORACLE}))
    client.deploy(MORPHO_ORACLE, FakeMorphoOracle(client, CBETH_ETH_FEED, ZERO_ADDRESS))
    return client


@pytest.fixture()
def mock_feed(client) -> FakeMockFeed:
    """ETH / USD feed already swapped for the mock, answering 2000 USD."""
    storage = {0: ETH_PRICE}
    return client.deploy(ETH_USD_FEED, FakeMockFeed(8, get_mock_bytecode(8), storage))
