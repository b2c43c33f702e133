from __future__ import annotations

import json
import os
from pathlib import Path

import pytest

from reservoir.env import load_dotenv_if_present, reset_dotenv_state
from reservoir.runtime import engine_config as ec
from reservoir.runtime.executor import ReservoirExecutor


@pytest.fixture(autouse=True)
def _clean_env(monkeypatch: pytest.MonkeyPatch) -> None:
    for var in list(ec._ENV_KEYS.values()) + ["RESERVOIR_CONFIG_PATH"]:
        monkeypatch.delenv(var, raising=False)


def _write(tmp_path: Path, obj: dict) -> str:
    p = tmp_path / "engine.json"
    p.write_text(json.dumps(obj), encoding="utf-8")
    return str(p)


def test_engine_address_is_derived_from_chain_id() -> None:
    a = ec.derive_engine_address("reservoir-a")
    assert a == ec.derive_engine_address("reservoir-a")
    assert a != ec.derive_engine_address("reservoir-b")
    assert a.startswith("0x") and len(a) == 42


def test_default_config_requires_a_keyring(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.chdir(tmp_path)
    with pytest.raises(ValueError):
        ec.load_engine_config()

    (tmp_path / "keyring.json").write_text("{}", encoding="utf-8")
    cfg = ec.load_engine_config()
    assert cfg.mode == "prod"
    assert cfg.allow_unsigned_txs is False


def test_file_config_with_env_overrides(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    path = _write(
        tmp_path,
        {"chain_id": "reservoir-test", "mode": "dev", "db_path": ":memory:", "allow_unsigned_txs": True, "keyring_path": None},
    )
    monkeypatch.setenv("RESERVOIR_CONFIG_PATH", path)
    monkeypatch.setenv("RESERVOIR_API_PORT", "9001")
    monkeypatch.setenv("RESERVOIR_LOG_LEVEL", "debug")

    cfg = ec.load_engine_config()
    assert cfg.chain_id == "reservoir-test"
    assert cfg.engine_address == ec.derive_engine_address("reservoir-test")
    assert cfg.db_path is None
    assert cfg.api_port == 9001
    assert cfg.log_level == "DEBUG"

    ex = ReservoirExecutor.from_config(cfg)
    assert ex.engine_address == cfg.engine_address
    assert ex.view().engine_address == cfg.engine_address


@pytest.mark.parametrize(
    "raw",
    [
        {"mode": "prod", "allow_unsigned_txs": True, "keyring_path": None},
        {"mode": "staging", "allow_unsigned_txs": True},
        {"mode": "dev", "allow_unsigned_txs": True, "engine_address": "0x1234"},
        {"mode": "dev", "allow_unsigned_txs": True, "engine_address": "0x" + "0" * 40},
        {"mode": "dev", "allow_unsigned_txs": True, "api_port": 70000},
        {"mode": "dev", "allow_unsigned_txs": True, "log_level": "CHATTY"},
        {"mode": "dev", "allow_unsigned_txs": False, "keyring_path": "/nonexistent/keyring.json"},
    ],
)
def test_invalid_configs_fail_fast(tmp_path: Path, raw: dict) -> None:
    with pytest.raises(ValueError):
        ec.load_engine_config(config_path=_write(tmp_path, raw))


def test_dev_config_is_in_memory_and_unsigned() -> None:
    cfg = ec.dev_engine_config(chain_id="reservoir-dev")
    assert cfg.db_path is None
    assert cfg.allow_unsigned_txs is True
    assert cfg.mode == "dev"


def test_dotenv_is_loaded_once_without_overriding(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    env_file = tmp_path / ".env"
    env_file.write_text("RESERVOIR_API_PORT=7777\nRESERVOIR_CHAIN_ID=from-file\n", encoding="utf-8")
    monkeypatch.setenv("RESERVOIR_CHAIN_ID", "from-env")
    monkeypatch.delenv("RESERVOIR_API_PORT", raising=False)

    reset_dotenv_state()
    try:
        assert load_dotenv_if_present(str(env_file)) is True
        assert load_dotenv_if_present(str(env_file)) is False
    finally:
        reset_dotenv_state()

    assert os.environ["RESERVOIR_API_PORT"] == "7777"
    assert os.environ["RESERVOIR_CHAIN_ID"] == "from-env"
