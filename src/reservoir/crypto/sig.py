# src/reservoir/crypto/sig.py
from __future__ import annotations

import base64
import json
from pathlib import Path
from typing import Any, Dict, List, Tuple

from cryptography.exceptions import InvalidSignature
from cryptography.hazmat.primitives.asymmetric.ed25519 import Ed25519PrivateKey, Ed25519PublicKey
from cryptography.hazmat.primitives.serialization import Encoding, PublicFormat

Json = Dict[str, Any]
Keyring = Dict[str, List[str]]


def _decode_bytes(s: str) -> bytes:
    s = s.strip()
    if not s:
        raise ValueError("empty string")
    # hex
    try:
        return bytes.fromhex(s)
    except ValueError:
        pass
    # base64 / base64url
    try:
        padding = "=" * (-len(s) % 4)
        s2 = (s + padding).replace("-", "+").replace("_", "/")
        return base64.b64decode(s2)
    except Exception as e:
        raise ValueError("not hex or base64") from e


def canonical_tx_message(*, tx_type: str, signer: str, nonce: int, payload: Json) -> bytes:
    obj: Json = {
        "tx_type": str(tx_type).strip().upper(),
        "signer": str(signer).strip().lower(),
        "nonce": int(nonce),
        "payload": payload if isinstance(payload, dict) else {},
    }
    return json.dumps(obj, sort_keys=True, separators=(",", ":"), ensure_ascii=False).encode("utf-8")


def verify_ed25519_signature(*, message: bytes, sig: str, pubkey: str) -> bool:
    try:
        sig_b = _decode_bytes(sig)
        pk_b = _decode_bytes(pubkey)
        key = Ed25519PublicKey.from_public_bytes(pk_b)
        key.verify(sig_b, message)
        return True
    except (InvalidSignature, ValueError):
        return False


def sign_ed25519(*, message: bytes, privkey: str, encoding: str = "hex") -> str:
    """Sign a message with an Ed25519 private key.

    privkey: hex or base64/base64url string representing the 32-byte seed.
    encoding: "hex" (default) or "b64".
    """
    pk_b = _decode_bytes(privkey)
    if len(pk_b) == 64:
        pk_b = pk_b[:32]
    if len(pk_b) != 32:
        raise ValueError("ed25519 privkey must be 32-byte seed (or 64-byte expanded key)")

    key = Ed25519PrivateKey.from_private_bytes(pk_b)
    sig_b = key.sign(message)
    if encoding == "hex":
        return sig_b.hex()
    if encoding in {"b64", "base64"}:
        return base64.b64encode(sig_b).decode("ascii")
    raise ValueError("unsupported encoding")


def pubkey_from_privkey(privkey: str) -> str:
    pk_b = _decode_bytes(privkey)[:32]
    pub = Ed25519PrivateKey.from_private_bytes(pk_b).public_key()
    return pub.public_bytes(Encoding.Raw, PublicFormat.Raw).hex()


def sign_tx_envelope_dict(*, tx: Json, privkey: str, encoding: str = "hex") -> Json:
    """Return a copy of tx with its 'sig' field populated.

    Expected shape (extra keys allowed):
      {"tx_type": str, "signer": str, "nonce": int, "payload": dict}
    """
    tx_type = str(tx.get("tx_type") or "")
    signer = str(tx.get("signer") or "")
    nonce = int(tx.get("nonce") or 0)
    payload = tx.get("payload") if isinstance(tx.get("payload"), dict) else {}

    msg = canonical_tx_message(tx_type=tx_type, signer=signer, nonce=nonce, payload=payload)
    out = dict(tx)
    out["tx_type"] = tx_type
    out["signer"] = signer
    out["nonce"] = nonce
    out["payload"] = payload
    out["sig"] = sign_ed25519(message=msg, privkey=privkey, encoding=encoding)
    return out


def load_keyring(path: str | Path) -> Keyring:
    """
    Load a keyring JSON file:

      {"0x<address>": ["<pubkey hex|b64>", ...], ...}

    A single string value is accepted in place of a list.
    """
    obj = json.loads(Path(path).read_text(encoding="utf-8"))
    if not isinstance(obj, dict):
        raise ValueError("keyring must be a JSON object")

    out: Keyring = {}
    for acct, keys in obj.items():
        if isinstance(keys, str):
            keys = [keys]
        if not isinstance(keys, list):
            raise ValueError(f"keyring entry for {acct} must be a list of pubkeys")
        out[str(acct).strip().lower()] = [str(k).strip() for k in keys if str(k).strip()]
    return out


def verify_tx_sig_against_keyring(
    *,
    keyring: Keyring,
    tx_type: str,
    signer: str,
    nonce: int,
    payload: Json,
    sig: str,
) -> Tuple[bool, Dict[str, Any]]:
    keys = keyring.get(str(signer).strip().lower()) or []
    if not keys:
        return False, {"reason": "no_active_keys"}
    if not str(sig or "").strip():
        return False, {"reason": "missing_signature"}

    msg = canonical_tx_message(tx_type=tx_type, signer=signer, nonce=nonce, payload=payload)
    for pk in keys:
        if verify_ed25519_signature(message=msg, sig=sig, pubkey=pk):
            return True, {"pubkey": pk}

    return False, {"reason": "invalid_signature"}


__all__ = [
    "Keyring",
    "canonical_tx_message",
    "load_keyring",
    "pubkey_from_privkey",
    "sign_ed25519",
    "sign_tx_envelope_dict",
    "verify_ed25519_signature",
    "verify_tx_sig_against_keyring",
]
