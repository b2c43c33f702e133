# tests/test_apply_fail_closed.py
from __future__ import annotations

from typing import Any, Dict, Optional

import pytest

from reservoir.ledger.migrations import BASE_LAYOUT
from reservoir.runtime.apply.ledger import LEDGER_TX_TYPES, apply_ledger
from reservoir.runtime.domain_dispatch import apply_tx, resolve_logic
from reservoir.runtime.errors import ApplyError
from reservoir.runtime.logic import LogicRegistry, LogicVersion
from reservoir.runtime.tx_admission_types import TxEnvelope
from reservoir.tx.canon import default_index

from token_fixtures import ALICE, BOB


def _registry(*appliers) -> LogicRegistry:
    return LogicRegistry(
        [
            LogicVersion(
                ref="reservoir.partial",
                version=1,
                layout=BASE_LAYOUT,
                appliers=tuple(appliers),
                tx_types=frozenset(LEDGER_TX_TYPES),
            )
        ]
    )


def test_apply_fails_closed_for_canon_types_the_logic_does_not_handle() -> None:
    reg = _registry(apply_ledger)
    # Find a tx type that exists in canon but that this logic has no applier for.
    unimpl = next(t["name"] for t in default_index().tx_types if t["name"] not in LEDGER_TX_TYPES | {"AUTHORIZE_UPGRADE"})

    env = TxEnvelope(tx_type=unimpl, signer=ALICE, nonce=1, payload={}, sig="deadbeef")
    with pytest.raises(ApplyError) as e:
        apply_tx({}, env, reg)

    err = e.value
    assert err.code == "tx_unimplemented"
    assert err.reason == "tx_type_not_implemented"
    assert err.details["logic"] == "reservoir.partial"


def test_apply_fails_closed_for_unknown_tx_type() -> None:
    with pytest.raises(ApplyError) as e:
        apply_tx({}, {"tx_type": "MINT", "signer": ALICE, "nonce": 0, "payload": {}})
    assert e.value.code == "tx_unimplemented"

    with pytest.raises(ApplyError) as e:
        apply_tx({}, {"tx_type": "", "signer": ALICE, "nonce": 0, "payload": {}})
    assert e.value.reason == "missing_tx_type"


def test_unexpected_applier_exception_becomes_domain_error() -> None:
    def apply_broken(state: Dict[str, Any], env: TxEnvelope) -> Optional[Dict[str, Any]]:
        raise KeyError("boom")

    with pytest.raises(ApplyError) as e:
        apply_tx({}, TxEnvelope("TRANSFER", ALICE, 0, {"to": BOB, "amount": 1}), _registry(apply_broken))
    assert e.value.code == "domain_error"
    assert e.value.reason == "KeyError"
    assert e.value.details["domain"] == "apply_broken"


def test_unknown_active_logic_is_an_invariant_violation() -> None:
    with pytest.raises(ApplyError) as e:
        resolve_logic({"logic": {"ref": "reservoir.gone"}})
    assert e.value.code == "invariant_violation"
    assert e.value.reason == "unknown_active_logic"
