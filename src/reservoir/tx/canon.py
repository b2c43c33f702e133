# src/reservoir/tx/canon.py
from __future__ import annotations

import hashlib
from dataclasses import dataclass
from functools import lru_cache
from pathlib import Path
from typing import Any, Dict, List, Optional, TypedDict

import yaml


class CanonError(RuntimeError):
    pass


class CanonTxType(TypedDict, total=False):
    """
    Canonical TxType entry.

    total=False so we can carry extra forward-compatible fields
    while validating required fields at load-time.
    """
    id: int
    name: str
    domain: str
    gate: str
    payload: List[str]
    optional: List[str]
    notes: str


DEFAULT_CANON_PATH = Path(__file__).with_name("tx_canon.yaml")


@dataclass(frozen=True)
class TxIndex:
    """
    Normalized TxType index.

    by_id uses int keys; by_name is what admission looks things up by.
    """
    tx_types: List[CanonTxType]
    by_name: Dict[str, CanonTxType]
    by_id: Dict[int, CanonTxType]
    meta: Dict[str, Any]
    source_sha256: str

    def get(self, name: str) -> Optional[CanonTxType]:
        return self.by_name.get(str(name or "").strip().upper())

    def get_by_id(self, tx_id: int) -> Optional[CanonTxType]:
        return self.by_id.get(int(tx_id))

    def names(self) -> List[str]:
        return [t["name"] for t in self.tx_types]

    @classmethod
    def load_from_file(cls, path: str | Path) -> "TxIndex":
        return load_tx_index_yaml(path)


def _sha256_bytes(data: bytes) -> str:
    h = hashlib.sha256()
    h.update(data)
    return h.hexdigest()


def _str_list(v: Any, *, where: str) -> List[str]:
    if v is None:
        return []
    if not isinstance(v, list) or not all(isinstance(x, str) and x for x in v):
        raise CanonError(f"{where} must be a list of non-empty strings")
    return list(v)


def _validate_entry(tx: Any) -> CanonTxType:
    if not isinstance(tx, dict):
        raise CanonError("tx entry must be an object")

    name = tx.get("name")
    if not isinstance(name, str) or not name:
        raise CanonError("tx entry 'name' must be non-empty string")

    tx_id = tx.get("id")
    if isinstance(tx_id, bool) or not isinstance(tx_id, int):
        raise CanonError(f"tx '{name}' id must be int")

    gate = str(tx.get("gate") or "").strip().upper()
    if not gate:
        raise CanonError(f"tx '{name}' missing required field: gate")

    out: CanonTxType = dict(tx)  # type: ignore[assignment]
    out["name"] = name.strip().upper()
    out["gate"] = gate
    out["payload"] = _str_list(tx.get("payload"), where=f"{name}.payload")
    out["optional"] = _str_list(tx.get("optional"), where=f"{name}.optional")
    return out


def load_tx_index_yaml(path: str | Path = DEFAULT_CANON_PATH) -> TxIndex:
    p = Path(path)
    if not p.exists():
        raise CanonError(f"canon artifact not found: {p}")

    raw = p.read_bytes()
    try:
        obj = yaml.safe_load(raw.decode("utf-8"))
    except yaml.YAMLError as e:
        raise CanonError(f"failed to parse {p.name}: {e}") from e

    if not isinstance(obj, dict) or not isinstance(obj.get("tx_types"), list):
        raise CanonError("canon must be a mapping with a 'tx_types' list")

    tx_list: List[CanonTxType] = []
    by_name: Dict[str, CanonTxType] = {}
    by_id: Dict[int, CanonTxType] = {}

    for it in obj["tx_types"]:
        tx = _validate_entry(it)
        name = tx["name"]
        tx_id = int(tx["id"])
        if name in by_name:
            raise CanonError(f"duplicate tx name in canon: {name}")
        if tx_id in by_id:
            raise CanonError(f"duplicate tx id in canon: {tx_id}")
        by_name[name] = tx
        by_id[tx_id] = tx
        tx_list.append(tx)

    tx_list.sort(key=lambda x: int(x["id"]))
    meta = {k: v for k, v in obj.items() if k != "tx_types"}
    meta.setdefault("_source", str(p))

    return TxIndex(
        tx_types=tx_list,
        by_name=by_name,
        by_id=by_id,
        meta=meta,
        source_sha256=_sha256_bytes(raw),
    )


@lru_cache(maxsize=1)
def default_index() -> TxIndex:
    return load_tx_index_yaml(DEFAULT_CANON_PATH)


__all__ = ["CanonError", "CanonTxType", "DEFAULT_CANON_PATH", "TxIndex", "default_index", "load_tx_index_yaml"]
