from __future__ import annotations

import json

import pytest

from reservoir.crypto.sig import load_keyring, pubkey_from_privkey, sign_tx_envelope_dict
from reservoir.ledger.constants import UNIT
from reservoir.runtime.errors import ApplyError
from reservoir.runtime.logic import V1
from reservoir.runtime.tx_admission import admit_tx, split_envelope
from reservoir.runtime.tx_admission_types import TxEnvelope
from reservoir.tx.canon import default_index

from token_fixtures import ADMIN, ALICE, BOB, RESERVOIR, TREASURY, new_executor, ready_executor, tx

TREASURY_KEY = "11" * 32
ADMIN_KEY = "22" * 32
ALICE_KEY = "33" * 32


def _env(tx_type: str, payload: dict, signer: str = ALICE) -> TxEnvelope:
    return TxEnvelope(tx_type=tx_type, signer=signer, nonce=0, payload=payload)


def test_canon_covers_every_v1_operation() -> None:
    idx = default_index()
    assert set(idx.names()) == set(V1.tx_types) | {"AUTHORIZE_UPGRADE"}
    assert idx.get("transfer")["payload"] == ["to", "amount"]
    assert idx.get_by_id(1)["name"] == "INITIALIZE"
    assert len(idx.source_sha256) == 64


def test_admission_rejects_missing_and_unexpected_fields() -> None:
    canon = default_index()

    v = admit_tx(_env("TRANSFER", {"to": BOB}), canon=canon, logic=V1)
    assert (v.ok, v.code, v.reason) == (False, "invalid_input", "missing_amount")

    v = admit_tx(_env("TRANSFER", {"to": BOB, "amount": 1, "memo": "x"}), canon=canon, logic=V1)
    assert (v.ok, v.reason) == (False, "unexpected_fields")
    assert v.details["fields"] == ["memo"]

    ok, rej = admit_tx(_env("TRANSFER", {"to": BOB, "amount": 1}), canon=canon, logic=V1)
    assert ok and rej is None


def test_admission_rejects_unknown_type_and_nested_payload() -> None:
    canon = default_index()

    v = admit_tx(_env("MINT", {"amount": 1}), canon=canon, logic=V1)
    assert (v.code, v.reason) == ("tx_unimplemented", "unknown_tx_type")

    v = admit_tx(_env("TRANSFER", {"to": {"nested": True}, "amount": 1}), canon=canon, logic=V1)
    assert v.reason == "nested_value_not_allowed"

    v = admit_tx(TxEnvelope("TRANSFER", "", 0, {"to": BOB, "amount": 1}), canon=canon, logic=V1)
    assert v.reason == "missing_signer"


def test_payload_limits_follow_env(monkeypatch) -> None:
    monkeypatch.setenv("RESERVOIR_MAX_TX_STRING_BYTES", "8")
    v = admit_tx(_env("TRANSFER", {"to": BOB, "amount": 1}), canon=default_index(), logic=V1)
    assert v.reason == "string_too_large"


def test_split_envelope_rejects_unknown_top_level_keys() -> None:
    env, verdict = split_envelope({"tx_type": "TRANSFER", "signer": ALICE, "payload": {}, "extra": 1})
    assert env is None
    assert verdict is not None and verdict.reason == "unexpected_envelope_fields"

    env, verdict = split_envelope(["not", "a", "dict"])
    assert env is None and verdict is not None and verdict.reason == "envelope_must_be_object"


def test_executor_surfaces_admission_rejections() -> None:
    ex = ready_executor()
    with pytest.raises(ApplyError) as e:
        ex.submit(tx("TRANSFER", ALICE, {"to": BOB, "amount": 1, "note": "x"}))
    assert e.value.code == "invalid_input"
    assert e.value.reason == "unexpected_fields"


def _signed_executor(tmp_path):
    keyring_path = tmp_path / "keyring.json"
    keyring_path.write_text(
        json.dumps(
            {
                TREASURY: [pubkey_from_privkey(TREASURY_KEY)],
                ADMIN: pubkey_from_privkey(ADMIN_KEY),
                ALICE: [pubkey_from_privkey(ALICE_KEY)],
            }
        ),
        encoding="utf-8",
    )
    ex = new_executor(keyring=load_keyring(keyring_path), allow_unsigned_txs=False)
    init = tx(
        "INITIALIZE",
        TREASURY,
        {"name": "Reservoir", "symbol": "RSV", "treasury": TREASURY, "reservoir": RESERVOIR, "tax_bps": 200},
        nonce=1,
    )
    ex.submit(sign_tx_envelope_dict(tx=init, privkey=TREASURY_KEY))
    return ex


def test_signed_submission_is_accepted(tmp_path) -> None:
    ex = _signed_executor(tmp_path)
    assert ex.view().initialized
    assert ex.read_state()["meta"]["nonces"] == {TREASURY: 1}

    op = tx("TRANSFER", TREASURY, {"to": ALICE, "amount": UNIT}, nonce=2)
    ex.submit(sign_tx_envelope_dict(tx=op, privkey=TREASURY_KEY))
    assert ex.view().balance_of(ALICE) == UNIT


def test_unsigned_and_badly_signed_submissions_are_unauthorized(tmp_path) -> None:
    ex = _signed_executor(tmp_path)
    op = tx("TRANSFER", TREASURY, {"to": ALICE, "amount": UNIT}, nonce=2)

    with pytest.raises(ApplyError) as e:
        ex.submit(op)
    assert (e.value.code, e.value.reason) == ("unauthorized", "missing_signature")

    with pytest.raises(ApplyError) as e:
        ex.submit(sign_tx_envelope_dict(tx=op, privkey=ALICE_KEY))
    assert (e.value.code, e.value.reason) == ("unauthorized", "invalid_signature")

    signed = sign_tx_envelope_dict(tx=op, privkey=TREASURY_KEY)
    signed["payload"] = {"to": ALICE, "amount": 2 * UNIT}
    with pytest.raises(ApplyError) as e:
        ex.submit(signed)
    assert e.value.reason == "invalid_signature"

    stranger = tx("TRANSFER", BOB, {"to": ALICE, "amount": 1}, nonce=1)
    with pytest.raises(ApplyError) as e:
        ex.submit(sign_tx_envelope_dict(tx=stranger, privkey=ALICE_KEY))
    assert e.value.reason == "no_active_keys"

    assert ex.view().balance_of(ALICE) == 0


def test_replayed_nonce_is_rejected(tmp_path) -> None:
    ex = _signed_executor(tmp_path)
    op = sign_tx_envelope_dict(
        tx=tx("TRANSFER", TREASURY, {"to": ALICE, "amount": UNIT}, nonce=5), privkey=TREASURY_KEY
    )
    ex.submit(op)

    with pytest.raises(ApplyError) as e:
        ex.submit(op)
    assert (e.value.code, e.value.reason) == ("invalid_input", "stale_nonce")
    assert ex.view().balance_of(ALICE) == UNIT
