"""Mock feed artifact loading."""

import json

import pytest

from eth_oracle_mock.artifacts import (
    ARTIFACT_PATH_ENV,
    ArtifactNotFound,
    InvalidArtifact,
    MockArtifactCache,
    get_search_paths,
    load_artifact,
)


def test_load_bundled_artifacts():
    artifact = load_artifact(8)
    assert artifact.contract_name == "MockFeedDec8"
    assert artifact.deployed_bytecode.startswith("0x")
    # decimals, latestAnswer, latestRoundData, setLatestAnswer selectors
    for selector in ("313ce567", "50d25bcd", "feaf968c", "04ea97b0"):
        assert selector in artifact.deployed_bytecode

    artifact_18 = load_artifact(18)
    assert artifact_18.deployed_bytecode != artifact.deployed_bytecode


def test_unsupported_decimals():
    with pytest.raises(ValueError):
        load_artifact(6)


def test_cache_loads_once():
    cache = MockArtifactCache()
    assert 8 not in cache
    first = cache.get(8)
    assert 8 in cache
    assert cache.get(8) is first
    cache.clear()
    assert 8 not in cache


def test_validate_artifacts():
    cache = MockArtifactCache()
    assert cache.validate_artifacts() == (True, [])


def test_artifact_info():
    info = MockArtifactCache().get_artifact_info(18)
    assert info["contract_name"] == "MockFeedDec18"
    assert set(info["functions"]) == {"decimals", "latestAnswer", "latestRoundData", "setLatestAnswer"}
    assert info["bytecode_size"] > 0


def test_override_folder_searched_first(tmp_path):
    hardhat_layout = tmp_path / "contracts" / "MockFeedDec8.sol"
    hardhat_layout.mkdir(parents=True)
    (hardhat_layout / "MockFeedDec8.json").write_text(
        json.dumps(
            {
                "contractName": "MockFeedDec8",
                "abi": [],
                "bytecode": "0x00",
                "deployedBytecode": "6000",
            }
        )
    )

    artifact = MockArtifactCache(tmp_path).get(8)
    # Prefix added
    assert artifact.deployed_bytecode == "0x6000"
    assert artifact.path == hardhat_layout / "MockFeedDec8.json"

    # 18 decimals falls back to the bundled copy
    assert MockArtifactCache(tmp_path).get(18).path.parent.name == "abi"


def test_override_folder_from_environment(tmp_path, monkeypatch):
    monkeypatch.setenv(ARTIFACT_PATH_ENV, str(tmp_path))
    assert get_search_paths(8)[0] == tmp_path / "MockFeedDec8.json"


def test_invalid_artifact(tmp_path):
    (tmp_path / "MockFeedDec8.json").write_text(json.dumps({"abi": [], "bytecode": "", "deployedBytecode": "0x"}))
    with pytest.raises(InvalidArtifact, match="missing bytecode"):
        load_artifact(8, tmp_path)

    (tmp_path / "MockFeedDec8.json").write_text("{not json")
    with pytest.raises(InvalidArtifact):
        load_artifact(8, tmp_path)

    (tmp_path / "MockFeedDec8.json").write_text(json.dumps({"deployedBytecode": "0x6000"}))
    with pytest.raises(InvalidArtifact, match="ABI"):
        load_artifact(8, tmp_path)


def test_missing_artifact(monkeypatch, tmp_path):
    monkeypatch.setattr("eth_oracle_mock.artifacts.ABI_FOLDER", tmp_path)
    with pytest.raises(ArtifactNotFound, match="MockFeedDec18"):
        load_artifact(18)

    cache = MockArtifactCache()
    assert cache.validate_artifacts() == (False, [8, 18])


def test_module_level_helpers():
    from eth_oracle_mock.artifacts import get_mock_abi, get_mock_bytecode, validate_artifacts

    assert get_mock_bytecode(18).startswith("0x")
    assert any(item["name"] == "setLatestAnswer" for item in get_mock_abi(8))
    assert validate_artifacts() == (True, [])
