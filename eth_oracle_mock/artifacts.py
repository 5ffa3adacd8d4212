"""Compiled mock feed artifacts.

The mock feeds ``MockFeedDec8`` and ``MockFeedDec18`` ship as Hardhat style
compiler artifacts in the bundled ``abi`` folder. A different build can be
supplied by pointing ``ORACLE_MOCK_ARTIFACT_PATH`` to a Hardhat ``artifacts``
folder; it is searched before the bundled copies.

Loaded artifacts are kept in a :py:class:`MockArtifactCache`.
"""

import json
import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from eth_oracle_mock.abi import ABI_FOLDER, get_function_names
from eth_oracle_mock.price import SUPPORTED_DECIMALS, validate_decimals

logger = logging.getLogger(__name__)

#: Environment variable for an extra artifact search folder
ARTIFACT_PATH_ENV = "ORACLE_MOCK_ARTIFACT_PATH"


class ArtifactNotFound(Exception):
    """No artifact file for the requested mock."""


class InvalidArtifact(Exception):
    """Artifact file exists, but lacks bytecode or ABI."""


@dataclass(slots=True, frozen=True)
class MockFeedArtifact:
    """A loaded mock feed compiler artifact."""

    #: E.g. ``MockFeedDec8``
    contract_name: str

    #: 8 or 18
    decimals: int

    #: ABI list
    abi: list[dict]

    #: Runtime bytecode, 0x prefixed.
    #:
    #: This is what ``setCode`` installs.
    #:
    deployed_bytecode: str

    #: Creation bytecode, 0x prefixed, may be empty
    bytecode: str

    #: Where we loaded this from
    path: Path


def get_artifact_name(decimals: int) -> str:
    """Contract name of the mock for a precision."""
    return f"MockFeedDec{decimals}"


def get_search_paths(decimals: int, extra_folder: Optional[str | Path] = None) -> list[Path]:
    """List candidate artifact files in the search order.

    :param extra_folder:
        Override folder. Defaults to ``ORACLE_MOCK_ARTIFACT_PATH``.
    """
    name = get_artifact_name(decimals)
    paths = []

    extra_folder = extra_folder or os.environ.get(ARTIFACT_PATH_ENV)
    if extra_folder:
        extra = Path(extra_folder).expanduser()
        paths += [
            extra / f"{name}.json",
            extra / "contracts" / f"{name}.sol" / f"{name}.json",
        ]

    paths.append(ABI_FOLDER / f"{name}.json")
    return paths


def _with_prefix(code: str | None) -> str:
    if not code:
        return ""
    return code if code.startswith("0x") else "0x" + code


def load_artifact(decimals: int, extra_folder: Optional[str | Path] = None) -> MockFeedArtifact:
    """Read a mock feed artifact from the disk.

    No caching, see :py:class:`MockArtifactCache`.

    :raise ArtifactNotFound:
        None of the search paths exist

    :raise InvalidArtifact:
        Not JSON, or bytecode or ABI missing
    """
    validate_decimals(decimals)
    name = get_artifact_name(decimals)
    candidates = get_search_paths(decimals, extra_folder)

    path = next((p for p in candidates if p.exists()), None)
    if path is None:
        searched = "\n".join(f"  - {p}" for p in candidates)
        raise ArtifactNotFound(f"Could not find artifact for {name}.\nSearched in:\n{searched}")

    try:
        with open(path, "rt", encoding="utf-8") as f:
            data = json.load(f)
    except json.JSONDecodeError as e:
        raise InvalidArtifact(f"Failed to load artifact for {name} from {path}: {e}") from e

    deployed_bytecode = _with_prefix(data.get("deployedBytecode"))
    bytecode = _with_prefix(data.get("bytecode"))
    # Runtime code is what we install, creation code is only a last resort
    if deployed_bytecode in ("", "0x"):
        deployed_bytecode = bytecode

    if deployed_bytecode in ("", "0x"):
        raise InvalidArtifact(f"Artifact missing bytecode fields: {path}")

    abi = data.get("abi")
    if not isinstance(abi, list):
        raise InvalidArtifact(f"Artifact missing or invalid ABI: {path}")

    logger.debug("Loaded %s from %s", name, path)
    return MockFeedArtifact(
        contract_name=data.get("contractName", name),
        decimals=decimals,
        abi=abi,
        deployed_bytecode=deployed_bytecode,
        bytecode=bytecode,
        path=path,
    )


class MockArtifactCache:
    """Loaded mock artifacts, keyed by decimals.

    Lives as long as its owner. :py:class:`eth_oracle_mock.api.OracleManipulator`
    holds one for the process.
    """

    def __init__(self, extra_folder: Optional[str | Path] = None):
        self.extra_folder = extra_folder
        self.artifacts: dict[int, MockFeedArtifact] = {}

    def __contains__(self, decimals: int) -> bool:
        return decimals in self.artifacts

    def get(self, decimals: int) -> MockFeedArtifact:
        """Load once, then serve from memory."""
        artifact = self.artifacts.get(decimals)
        if artifact is None:
            artifact = load_artifact(decimals, self.extra_folder)
            self.artifacts[decimals] = artifact
        return artifact

    def clear(self):
        self.artifacts.clear()

    def get_mock_bytecode(self, decimals: int) -> str:
        """Runtime bytecode of the mock, ready for ``setCode``."""
        return self.get(decimals).deployed_bytecode

    def get_mock_abi(self, decimals: int) -> list[dict]:
        return self.get(decimals).abi

    def validate_artifacts(self) -> tuple[bool, list[int]]:
        """Check all mocks can be loaded.

        :return:
            Tuple (all valid, missing decimals)
        """
        missing = []
        for decimals in SUPPORTED_DECIMALS:
            try:
                self.get(decimals)
            except (ArtifactNotFound, InvalidArtifact) as e:
                logger.warning("Mock artifact for %d decimals unusable: %s", decimals, e)
                missing.append(decimals)
        return len(missing) == 0, missing

    def get_artifact_info(self, decimals: int) -> dict:
        """Human readable summary, for diagnostics."""
        artifact = self.get(decimals)
        return {
            "contract_name": artifact.contract_name,
            "decimals": artifact.decimals,
            "path": str(artifact.path),
            "bytecode_size": (len(artifact.deployed_bytecode) - 2) // 2,
            "functions": get_function_names(artifact.abi),
        }


#: Shared cache used when callers do not bring their own
_default_cache = MockArtifactCache()


def get_default_cache() -> MockArtifactCache:
    return _default_cache


def get_mock_bytecode(decimals: int) -> str:
    """Runtime bytecode of the mock for ``decimals``, from the shared cache.

    :raise ValueError:
        Decimals not 8 or 18
    """
    return _default_cache.get_mock_bytecode(decimals)


def get_mock_abi(decimals: int) -> list[dict]:
    return _default_cache.get_mock_abi(decimals)


def validate_artifacts() -> tuple[bool, list[int]]:
    return _default_cache.validate_artifacts()
