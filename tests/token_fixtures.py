# tests/token_fixtures.py
from __future__ import annotations

from typing import Any, Dict, Optional

from reservoir.ledger.constants import REWARD_MANAGER, UNIT
from reservoir.runtime.executor import ReservoirExecutor

Json = Dict[str, Any]


def addr(n: int) -> str:
    return "0x" + f"{n:040x}"


ENGINE = addr(0xE0E0)
TREASURY = addr(0x7001)  # also the owner
RESERVOIR = addr(0x7002)
ADMIN = addr(0xAD01)
MANAGER = addr(0x3A01)
ALICE = addr(0xA11CE)
BOB = addr(0xB0B)
CAROL = addr(0xCA201)

CTX = "0x" + "11" * 32


def tx(tx_type: str, signer: str, payload: Optional[Json] = None, nonce: int = 0) -> Json:
    return {"tx_type": tx_type, "signer": signer, "nonce": nonce, "payload": dict(payload or {})}


def new_executor(**kw: Any) -> ReservoirExecutor:
    kw.setdefault("engine_address", ENGINE)
    return ReservoirExecutor(**kw)


def initialize(ex: ReservoirExecutor, *, tax_bps: int = 200) -> Json:
    out = ex.submit(
        tx(
            "INITIALIZE",
            TREASURY,
            {
                "name": "Reservoir",
                "symbol": "RSV",
                "treasury": TREASURY,
                "reservoir": RESERVOIR,
                "tax_bps": tax_bps,
                "admin": ADMIN,
            },
        )
    )
    ex.submit(tx("GRANT_ROLE", ADMIN, {"role": REWARD_MANAGER, "account": MANAGER}))
    return out


def ready_executor(*, tax_bps: int = 200, **kw: Any) -> ReservoirExecutor:
    ex = new_executor(**kw)
    initialize(ex, tax_bps=tax_bps)
    return ex


def give(ex: ReservoirExecutor, account: str, tokens: int) -> None:
    """Untaxed credit from the (exempt) treasury."""
    ex.submit(tx("TRANSFER", TREASURY, {"to": account, "amount": tokens * UNIT}))


def balance(ex: ReservoirExecutor, account: str) -> int:
    return ex.view().balance_of(account)


def event_names(out: Json) -> list:
    return [e["event"] for e in out["events"]]
