# src/reservoir/runtime/engine_config.py
from __future__ import annotations

import hashlib
import json
import os
import re
from dataclasses import dataclass, replace
from pathlib import Path
from typing import Any, Dict, Optional

from reservoir.ledger.constants import ZERO_ADDRESS

Json = Dict[str, Any]

_ADDRESS_RE = re.compile(r"^0x[0-9a-f]{40}$")


def _as_int(v: Any, default: int) -> int:
    try:
        return int(v)
    except (TypeError, ValueError):
        return int(default)


def _as_str(v: Any, default: str) -> str:
    if v is None:
        return str(default)
    s = str(v)
    return s if s.strip() else str(default)


def _as_bool(v: Any, default: bool) -> bool:
    if v is None:
        return bool(default)
    if isinstance(v, bool):
        return v
    s = str(v).strip().lower()
    if s in {"1", "true", "yes", "y", "on"}:
        return True
    if s in {"0", "false", "no", "n", "off"}:
        return False
    return bool(default)


def derive_engine_address(chain_id: str) -> str:
    """Deterministic engine address for a chain id (last 20 bytes of sha256)."""
    return "0x" + hashlib.sha256(f"reservoir:{chain_id}".encode("utf-8")).hexdigest()[-40:]


@dataclass(frozen=True)
class EngineConfig:
    chain_id: str
    mode: str  # "dev" | "testnet" | "prod"

    # SQLite DB file for the ledger snapshot + event log; None keeps state in memory.
    db_path: Optional[str]

    # The engine's own ledger address; also the initial reward pool.
    engine_address: str

    api_host: str
    api_port: int

    allow_unsigned_txs: bool
    keyring_path: Optional[str]

    log_level: str


_ALLOWED_MODES = {"dev", "testnet", "prod"}
_ALLOWED_LOG_LEVELS = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}


def validate_engine_config(cfg: EngineConfig) -> None:
    """Fail-fast validation for operator config."""

    if not isinstance(cfg.chain_id, str) or not cfg.chain_id.strip():
        raise ValueError("chain_id must be a non-empty string")

    mode = str(cfg.mode or "").strip().lower()
    if mode not in _ALLOWED_MODES:
        raise ValueError(f"mode must be one of {_ALLOWED_MODES}; got: {cfg.mode!r}")

    if cfg.db_path is not None and (not isinstance(cfg.db_path, str) or not cfg.db_path.strip()):
        raise ValueError("db_path must be a non-empty string or null")

    if not _ADDRESS_RE.match(str(cfg.engine_address or "")) or cfg.engine_address == ZERO_ADDRESS:
        raise ValueError(f"engine_address must be a non-null 0x-prefixed 20-byte hex address; got: {cfg.engine_address!r}")

    if int(cfg.api_port) <= 0 or int(cfg.api_port) > 65535:
        raise ValueError(f"api_port must be 1..65535; got: {cfg.api_port}")

    if str(cfg.log_level).upper() not in _ALLOWED_LOG_LEVELS:
        raise ValueError(f"log_level must be one of {sorted(_ALLOWED_LOG_LEVELS)}; got: {cfg.log_level!r}")

    if mode == "prod" and cfg.allow_unsigned_txs:
        raise ValueError("allow_unsigned_txs is not permitted in prod mode")

    if not cfg.allow_unsigned_txs:
        if not cfg.keyring_path:
            raise ValueError("keyring_path is required when unsigned txs are not allowed")
        if not Path(cfg.keyring_path).is_file():
            raise ValueError(f"keyring_path does not exist or is not a file: {cfg.keyring_path!r}")


def default_engine_config() -> EngineConfig:
    chain_id = "reservoir-dev"
    return EngineConfig(
        chain_id=chain_id,
        # Without an explicit config file we stay in the production posture:
        # signatures required, FULL sqlite sync.
        mode="prod",
        db_path="./data/reservoir.db",
        engine_address=derive_engine_address(chain_id),
        api_host="127.0.0.1",
        api_port=8000,
        allow_unsigned_txs=False,
        keyring_path="./keyring.json",
        log_level="INFO",
    )


def _from_mapping(raw: Json, d: EngineConfig) -> EngineConfig:
    chain_id = _as_str(raw.get("chain_id"), d.chain_id)
    engine_default = d.engine_address if chain_id == d.chain_id else derive_engine_address(chain_id)

    db_path: Optional[str] = d.db_path
    if "db_path" in raw:
        db_path = None if raw.get("db_path") in (None, "", ":memory:") else str(raw.get("db_path"))

    keyring_path: Optional[str] = d.keyring_path
    if "keyring_path" in raw:
        keyring_path = str(raw["keyring_path"]) if raw.get("keyring_path") else None

    return EngineConfig(
        chain_id=chain_id,
        mode=_as_str(raw.get("mode"), d.mode).strip().lower(),
        db_path=db_path,
        engine_address=_as_str(raw.get("engine_address"), engine_default).strip().lower(),
        api_host=_as_str(raw.get("api_host"), d.api_host),
        api_port=_as_int(raw.get("api_port"), d.api_port),
        allow_unsigned_txs=_as_bool(raw.get("allow_unsigned_txs"), d.allow_unsigned_txs),
        keyring_path=keyring_path,
        log_level=_as_str(raw.get("log_level"), d.log_level).strip().upper(),
    )


def read_engine_config_file(path: str) -> EngineConfig:
    raw = json.loads(Path(path).read_text(encoding="utf-8"))
    if not isinstance(raw, dict):
        raise ValueError("engine config must be a JSON object")
    return _from_mapping(raw, default_engine_config())


_ENV_KEYS = {
    "chain_id": "RESERVOIR_CHAIN_ID",
    "mode": "RESERVOIR_MODE",
    "db_path": "RESERVOIR_DB_PATH",
    "engine_address": "RESERVOIR_ENGINE_ADDRESS",
    "api_host": "RESERVOIR_API_HOST",
    "api_port": "RESERVOIR_API_PORT",
    "allow_unsigned_txs": "RESERVOIR_ALLOW_UNSIGNED_TXS",
    "keyring_path": "RESERVOIR_KEYRING_PATH",
    "log_level": "RESERVOIR_LOG_LEVEL",
}


def _env_overrides() -> Json:
    out: Json = {}
    for field_name, var in _ENV_KEYS.items():
        v = os.environ.get(var)
        if v is not None:
            out[field_name] = v
    return out


def load_engine_config(*, config_path: Optional[str] = None) -> EngineConfig:
    """File (RESERVOIR_CONFIG_PATH) over defaults, then RESERVOIR_* env overrides, then validate."""
    p = config_path or os.environ.get("RESERVOIR_CONFIG_PATH")
    base = read_engine_config_file(p) if p else default_engine_config()

    overrides = _env_overrides()
    cfg = _from_mapping(overrides, base) if overrides else base
    validate_engine_config(cfg)
    return cfg


def dev_engine_config(**changes: Any) -> EngineConfig:
    """In-memory, unsigned config for local runs and tests."""
    cfg = replace(
        default_engine_config(),
        mode="dev",
        db_path=None,
        allow_unsigned_txs=True,
        keyring_path=None,
        log_level="DEBUG",
    )
    if changes:
        cfg = replace(cfg, **changes)
    validate_engine_config(cfg)
    return cfg


__all__ = [
    "EngineConfig",
    "default_engine_config",
    "derive_engine_address",
    "dev_engine_config",
    "load_engine_config",
    "read_engine_config_file",
    "validate_engine_config",
]
