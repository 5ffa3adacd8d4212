"""Inject the mock feed at a live feed address.

Instead of deploying a new contract and repointing the protocol, we replace
the executable code of the feed the protocol already reads with the mock's
runtime bytecode, using the node's ``setCode`` debug extension.
The protocol keeps calling the same address and now sees our answers.

The existing storage of the address survives the code swap. The mock keeps
its answer in slot 0, so right after the injection the feed reports
whatever the old aggregator had in that slot, see
:py:meth:`eth_oracle_mock.api.OracleManipulator.set_oracle_price`
for seeding the mock with the pre-injection answer.
"""

import logging
from dataclasses import dataclass
from typing import Optional

from eth_typing import HexAddress

from eth_oracle_mock.abi import AGGREGATOR_ABI_FILE
from eth_oracle_mock.artifacts import MockArtifactCache, get_default_cache
from eth_oracle_mock.client import ChainClient
from eth_oracle_mock.mock.price_setter import get_current_price
from eth_oracle_mock.price import validate_decimals
from eth_oracle_mock.provider.anvil import detect_node_dialect, set_code

logger = logging.getLogger(__name__)


class MockDeploymentError(Exception):
    """The mock could not be installed, or does not behave after the install."""


@dataclass(slots=True, frozen=True)
class MockFeedHandle:
    """An address now running the mock feed code."""

    address: HexAddress

    #: 8 or 18
    decimals: int


@dataclass(slots=True, frozen=True)
class MockFeedInfo:
    """What an injected feed reports."""

    decimals: int

    #: Raw answer
    current_price: int

    #: The mock has no ``description()``, so this is usually ``None``
    description: Optional[str] = None

    version: Optional[int] = None


async def _validate_deployment(client: ChainClient, feed_address: HexAddress | str, decimals: int):
    try:
        deployed_decimals = await client.read_contract(feed_address, AGGREGATOR_ABI_FILE, "decimals")
        if deployed_decimals != decimals:
            raise ValueError(f"Decimals mismatch: expected {decimals}, got {deployed_decimals}")
        answer = await client.read_contract(feed_address, AGGREGATOR_ABI_FILE, "latestAnswer")
    except Exception as e:
        raise MockDeploymentError(f"Mock validation failed at {feed_address}: {e}") from e

    logger.info("Mock validated at %s: decimals=%d, initial answer=%d", feed_address, deployed_decimals, answer)


async def deploy_mock_at_address(
    client: ChainClient,
    feed_address: HexAddress | str,
    decimals: int,
    artifacts: Optional[MockArtifactCache] = None,
) -> MockFeedHandle:
    """Replace the code at ``feed_address`` with the mock feed.

    Running this again on an already injected address is harmless.

    :param decimals:
        8 or 18, must match what the protocol expects from this feed

    :param artifacts:
        Artifact cache. Defaults to the process wide one.

    :raise ValueError:
        Decimals is not 8 or 18

    :raise MockDeploymentError:
        ``setCode`` failed or the installed mock does not answer
    """
    validate_decimals(decimals)

    artifacts = artifacts or get_default_cache()
    bytecode = artifacts.get_mock_bytecode(decimals)

    # Probe every time, the same client may be pointed to a different node
    dialect = await detect_node_dialect(client, feed_address)
    logger.info("Deploying %d-decimal mock at %s using %s", decimals, feed_address, dialect)

    try:
        await set_code(client, feed_address, bytecode, dialect)
    except Exception as e:
        raise MockDeploymentError(f"Failed to deploy mock at {feed_address}: {e}") from e

    await _validate_deployment(client, feed_address, decimals)
    return MockFeedHandle(address=feed_address, decimals=decimals)


async def is_mock_deployed(client: ChainClient, feed_address: HexAddress | str) -> bool:
    """Does the address answer like a feed.

    Any read failure means no.
    """
    try:
        await client.read_contract(feed_address, AGGREGATOR_ABI_FILE, "decimals")
        await client.read_contract(feed_address, AGGREGATOR_ABI_FILE, "latestAnswer")
        return True
    except Exception as e:
        logger.debug("No working feed at %s: %s", feed_address, e)
        return False


async def get_mock_feed_info(client: ChainClient, feed_address: HexAddress | str) -> MockFeedInfo:
    """Inspect an injected feed.

    Decimals and the answer must be readable, description and version are best effort.
    """
    decimals = await client.read_contract(feed_address, AGGREGATOR_ABI_FILE, "decimals")
    current_price = await get_current_price(client, feed_address)

    try:
        description = await client.read_contract(feed_address, AGGREGATOR_ABI_FILE, "description")
    except Exception:
        description = None

    try:
        version = await client.read_contract(feed_address, AGGREGATOR_ABI_FILE, "version")
    except Exception:
        version = None

    return MockFeedInfo(decimals=decimals, current_price=current_price, description=description, version=version)
