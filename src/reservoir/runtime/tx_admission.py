from __future__ import annotations

import json
import os
from typing import Any, Dict, Optional, Tuple

from reservoir.crypto.sig import Keyring, verify_tx_sig_against_keyring
from reservoir.runtime.logic import LogicVersion
from reservoir.runtime.tx_admission_types import TxEnvelope, TxVerdict
from reservoir.tx.canon import TxIndex

Json = Dict[str, Any]

# Fields every envelope may carry regardless of tx type.
_ENVELOPE_KEYS = {"tx_type", "signer", "nonce", "payload", "sig"}


def _env_int(name: str, default: int) -> int:
    v = os.getenv(name)
    if v is None:
        return int(default)
    try:
        return int(str(v).strip())
    except ValueError:
        return int(default)


def _json_size_bytes(obj: Any) -> int:
    """Compute JSON byte size. If not serializable, return -1 (unknown)."""
    try:
        return len(json.dumps(obj, separators=(",", ":"), ensure_ascii=False, sort_keys=True).encode("utf-8"))
    except (TypeError, ValueError):
        return -1


def _validate_payload_limits(payload: Any) -> Optional[TxVerdict]:
    """Generic payload validation (shape + size caps)."""
    if payload is None:
        return TxVerdict.reject("invalid_input", "payload_required", {"expected": "object"})
    if not isinstance(payload, dict):
        return TxVerdict.reject("invalid_input", "payload_must_be_object", {"type": str(type(payload))})

    max_payload_bytes = _env_int("RESERVOIR_MAX_TX_PAYLOAD_BYTES", 8 * 1024)
    max_payload_keys = _env_int("RESERVOIR_MAX_TX_PAYLOAD_KEYS", 32)
    max_string_bytes = _env_int("RESERVOIR_MAX_TX_STRING_BYTES", 1024)

    if len(payload) > int(max_payload_keys):
        return TxVerdict.reject(
            "invalid_input",
            "payload_too_many_keys",
            {"keys": len(payload), "max_keys": int(max_payload_keys)},
        )

    payload_bytes = _json_size_bytes(payload)
    if payload_bytes < 0:
        return TxVerdict.reject("invalid_input", "payload_not_json", {})
    if payload_bytes > int(max_payload_bytes):
        return TxVerdict.reject(
            "invalid_input",
            "payload_exceeds_size_limit",
            {"bytes": int(payload_bytes), "max_bytes": int(max_payload_bytes)},
        )

    for k, v in payload.items():
        if not isinstance(k, str):
            return TxVerdict.reject("invalid_input", "invalid_key_type", {"key_type": str(type(k))})
        if isinstance(v, (dict, list)):
            return TxVerdict.reject("invalid_input", "nested_value_not_allowed", {"field": k})
        if isinstance(v, str) and len(v.encode("utf-8", errors="ignore")) > int(max_string_bytes):
            return TxVerdict.reject(
                "invalid_input",
                "string_too_large",
                {"field": k, "max_bytes": int(max_string_bytes)},
            )

    return None


def _validate_against_canon(txdef: Dict[str, Any], payload: Json) -> Optional[TxVerdict]:
    required = list(txdef.get("payload") or [])
    optional = list(txdef.get("optional") or [])

    for key in required:
        if key not in payload or payload.get(key) is None:
            return TxVerdict.reject("invalid_input", f"missing_{key}", {"missing": key})

    allowed = set(required) | set(optional)
    extra = sorted(k for k in payload if k not in allowed)
    if extra:
        return TxVerdict.reject("invalid_input", "unexpected_fields", {"fields": extra, "allowed": sorted(allowed)})
    return None


def _check_nonce(env: TxEnvelope, last_nonce: Optional[int]) -> Optional[TxVerdict]:
    if last_nonce is None:
        return None
    if int(env.nonce) <= int(last_nonce):
        return TxVerdict.reject(
            "invalid_input",
            "stale_nonce",
            {"nonce": int(env.nonce), "last_nonce": int(last_nonce)},
        )
    return None


def admit_tx(
    env: TxEnvelope,
    *,
    canon: TxIndex,
    logic: Optional[LogicVersion] = None,
    keyring: Optional[Keyring] = None,
    require_sig: bool = False,
    last_nonce: Optional[int] = None,
) -> TxVerdict:
    """Stateless pre-checks run before an envelope reaches the appliers.

    - the tx type is in the canon, or is handled by the active logic version
    - the payload is a small flat object with exactly the canon fields
    - when ``require_sig`` is set, the Ed25519 signature verifies against the
      signer's keyring entry and the nonce is strictly increasing

    Authorization (owner/role) is not checked here; the gates in the appliers
    own that so apply_tx() stays safe when called directly.
    """
    t = str(env.tx_type or "").strip().upper()
    if not t:
        return TxVerdict.reject("invalid_input", "missing_tx_type", {})

    if not str(env.signer or "").strip():
        return TxVerdict.reject("invalid_input", "missing_signer", {"tx_type": t})

    v = _validate_payload_limits(env.payload)
    if v is not None:
        return v

    txdef = canon.get(t)
    if txdef is not None:
        v = _validate_against_canon(dict(txdef), env.payload)
        if v is not None:
            return v
    elif logic is None or not logic.handles(t):
        return TxVerdict.reject("tx_unimplemented", "unknown_tx_type", {"tx_type": t})

    if require_sig:
        ok, info = verify_tx_sig_against_keyring(
            keyring=keyring or {},
            tx_type=t,
            signer=env.signer,
            nonce=int(env.nonce),
            payload=env.payload,
            sig=env.sig,
        )
        if not ok:
            return TxVerdict.reject("unauthorized", str(info.get("reason") or "invalid_signature"), {"tx_type": t})
        v = _check_nonce(env, last_nonce)
        if v is not None:
            return v

    return TxVerdict.admit()


def split_envelope(raw: Any) -> Tuple[Optional[TxEnvelope], Optional[TxVerdict]]:
    """Parse a raw JSON envelope; unknown top-level keys are rejected."""
    if not isinstance(raw, dict):
        return None, TxVerdict.reject("invalid_input", "envelope_must_be_object", {"type": str(type(raw))})
    extra = sorted(k for k in raw if k not in _ENVELOPE_KEYS)
    if extra:
        return None, TxVerdict.reject("invalid_input", "unexpected_envelope_fields", {"fields": extra})
    try:
        return TxEnvelope.from_json(raw), None
    except (TypeError, ValueError) as e:
        return None, TxVerdict.reject("invalid_input", "malformed_envelope", {"error": str(e)})


__all__ = ["admit_tx", "split_envelope"]
