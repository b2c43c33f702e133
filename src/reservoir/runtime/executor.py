from __future__ import annotations

import copy
import logging
import threading
import time
from typing import Any, Dict, List, Optional, Protocol

from reservoir.crypto.sig import Keyring, load_keyring
from reservoir.ledger.accounts import normalize_address
from reservoir.ledger.migrations import migrate_state_dict
from reservoir.ledger.state import LedgerView
from reservoir.runtime import events as ev
from reservoir.runtime.apply.rescue import EXTERNAL_CALL_KEY
from reservoir.runtime.domain_dispatch import apply_tx, resolve_logic
from reservoir.runtime.engine_config import EngineConfig, load_engine_config
from reservoir.runtime.errors import ApplyError, ExternalCallFailed, InvalidInput
from reservoir.runtime.logic import LogicRegistry, default_registry
from reservoir.runtime.metrics import inc_counter, set_gauge
from reservoir.runtime.runtime_logging import log_event
from reservoir.runtime.sqlite_db import SqliteDB, SqliteLedgerStore
from reservoir.runtime.state_invariants import check_invariants
from reservoir.runtime.tx_admission import admit_tx, split_envelope
from reservoir.runtime.tx_admission_types import TxEnvelope
from reservoir.tx.canon import TxIndex, default_index

Json = Dict[str, Any]

log = logging.getLogger("reservoir.executor")

MAX_EVENTS_PAGE = 1000


def _now_ms() -> int:
    return int(time.time() * 1000)


def _safe_int(v: Any, default: int) -> int:
    try:
        return int(v)
    except (TypeError, ValueError):
        return int(default)


class ForeignAsset(Protocol):
    """Another token ledger the engine may hold a balance on."""

    def transfer(self, to: str, amount: int) -> bool: ...


class ExecutorError(RuntimeError):
    pass


class ReservoirExecutor:
    """Single-sequencer executor for the reservoir ledger.

    Every submission runs under one re-entrant lock:

      admit -> copy committed state -> apply -> check invariants -> commit

    A failure anywhere before commit discards the working copy, so an
    operation either fully applies or leaves no trace. External calls
    (foreign-asset rescue) run after commit; a callback that re-enters
    submit() from the same thread sees the committed state.
    """

    def __init__(
        self,
        *,
        engine_address: str,
        chain_id: str = "reservoir-dev",
        db_path: Optional[str] = None,
        registry: Optional[LogicRegistry] = None,
        canon: Optional[TxIndex] = None,
        keyring: Optional[Keyring] = None,
        allow_unsigned_txs: bool = True,
    ) -> None:
        self.chain_id = str(chain_id)
        self.engine_address = normalize_address(engine_address, field="engine_address")
        self.registry = registry or default_registry()
        self.tx_index: TxIndex = canon or default_index()
        self.keyring: Keyring = dict(keyring or {})
        self.allow_unsigned_txs = bool(allow_unsigned_txs)

        self._lock = threading.RLock()
        self._foreign_assets: Dict[str, ForeignAsset] = {}
        self._mem_events: List[Json] = []

        self._store: Optional[SqliteLedgerStore] = None
        if db_path:
            self._store = SqliteLedgerStore(db=SqliteDB(path=str(db_path)))

        if self._store is not None and self._store.exists():
            self.state = migrate_state_dict(self._store.read())
            self._check_loaded_state_fail_closed()
        else:
            self.state = self._initial_state()
            if self._store is not None:
                self._store.commit(self.state, [])

        log_event(
            log,
            "executor_ready",
            chain_id=self.chain_id,
            engine_address=self.engine_address,
            persistent=self._store is not None,
            op_seq=_safe_int(self.state.get("op_seq"), 0),
            logic_ref=str(self.state.get("logic", {}).get("ref") or ""),
        )

    def _initial_state(self) -> Json:
        st = migrate_state_dict({})
        st["meta"]["engine_address"] = self.engine_address
        st["meta"]["chain_id"] = self.chain_id
        st["meta"]["created_ms"] = _now_ms()
        default = self.registry.default
        st["logic"] = {"ref": default.ref, "version": int(default.version), "history": []}
        return st

    def _check_loaded_state_fail_closed(self) -> None:
        meta = self.state.get("meta") or {}
        st_chain = str(meta.get("chain_id") or "").strip()
        if st_chain and st_chain != self.chain_id:
            raise ExecutorError(f"chain_id mismatch: db={st_chain!r} executor={self.chain_id!r}. Refuse to start.")

        st_engine = str(meta.get("engine_address") or "").strip()
        if st_engine and st_engine != self.engine_address:
            raise ExecutorError(
                f"engine_address mismatch: db={st_engine!r} executor={self.engine_address!r}. Refuse to start."
            )

        assert self._store is not None
        persisted = self._store.max_event_seq()
        expected = _safe_int(self.state.get("event_seq"), 0)
        if persisted != expected:
            raise ExecutorError(
                f"db_invariant_violation: snapshot event_seq {expected} but event log ends at {persisted}. "
                "Refuse to start."
            )

        try:
            self.registry.resolve(self.state)
        except LookupError as e:
            raise ExecutorError(f"{e}. Refuse to start.") from e

    # ----------------------------
    # Read side
    # ----------------------------

    def read_state(self) -> Json:
        with self._lock:
            return copy.deepcopy(self.state)

    def view(self) -> LedgerView:
        with self._lock:
            return LedgerView.from_ledger(self.state)

    def events(self, *, after: int = 0, limit: int = 100) -> List[Json]:
        lim = max(1, min(int(limit), MAX_EVENTS_PAGE))
        with self._lock:
            if self._store is not None:
                return self._store.read_events(after=int(after), limit=lim)
            return [copy.deepcopy(e) for e in self._mem_events if int(e["seq"]) > int(after)][:lim]

    # ----------------------------
    # Foreign assets
    # ----------------------------

    def register_foreign_asset(self, address: str, asset: ForeignAsset) -> None:
        addr = normalize_address(address, field="asset")
        if addr == self.engine_address:
            raise InvalidInput("self_asset", {"asset": addr})
        with self._lock:
            self._foreign_assets[addr] = asset

    # ----------------------------
    # Submission
    # ----------------------------

    def _last_nonce(self, signer: str) -> Optional[int]:
        if self.allow_unsigned_txs:
            return None
        nonces = (self.state.get("meta") or {}).get("nonces")
        if not isinstance(nonces, dict):
            return 0
        return _safe_int(nonces.get(signer), 0)

    def _coerce_envelope(self, env: Any) -> TxEnvelope:
        if isinstance(env, TxEnvelope):
            return env
        parsed, verdict = split_envelope(env)
        if verdict is not None:
            raise ApplyError(verdict.code, verdict.reason, verdict.details)
        assert parsed is not None
        return parsed

    def submit(self, env: Any) -> Json:
        """Admit, apply and commit one operation; raises ApplyError on failure."""
        with self._lock:
            started = time.monotonic()
            tx = self._coerce_envelope(env)
            t = str(tx.tx_type or "").strip().upper()
            signer = str(tx.signer or "").strip().lower()

            logic = resolve_logic(self.state, self.registry)
            verdict = admit_tx(
                tx,
                canon=self.tx_index,
                logic=logic,
                keyring=self.keyring,
                require_sig=not self.allow_unsigned_txs,
                last_nonce=self._last_nonce(signer),
            )
            if not verdict.ok:
                inc_counter("tx_rejected_total")
                log_event(log, "tx_rejected", level=logging.WARNING, tx_type=t, signer=signer, code=verdict.code, reason=verdict.reason)
                raise ApplyError(verdict.code, verdict.reason, verdict.details)

            before = self.state
            working: Json = copy.deepcopy(before)
            working["op_seq"] = _safe_int(working.get("op_seq"), 0) + 1

            try:
                result = apply_tx(working, tx, self.registry)
                check_invariants(before, working, tx_type=t, pool_tx_types=logic.pool_tx_types)

                external = result.pop(EXTERNAL_CALL_KEY, None)
                asset: Optional[ForeignAsset] = None
                if external is not None:
                    asset = self._foreign_assets.get(str(external.get("asset") or ""))
                    if asset is None:
                        raise InvalidInput("unknown_asset", {"asset": external.get("asset")})
            except ApplyError as e:
                inc_counter("tx_failed_total")
                log_event(
                    log,
                    "tx_failed",
                    level=logging.WARNING,
                    tx_type=t,
                    signer=signer,
                    code=e.code,
                    reason=e.reason,
                    details=e.details,
                )
                raise

            emitted = ev.drain_pending(working)
            if not self.allow_unsigned_txs:
                nonces = working["meta"].setdefault("nonces", {})
                nonces[signer] = int(tx.nonce)

            if self._store is not None:
                self._store.commit(working, emitted)
            else:
                self._mem_events.extend(emitted)
            self.state = working

            inc_counter("tx_applied_total")
            set_gauge("op_seq", _safe_int(working.get("op_seq"), 0))
            set_gauge("event_seq", _safe_int(working.get("event_seq"), 0))
            log_event(
                log,
                "tx_applied",
                tx_type=t,
                signer=signer,
                op_seq=working["op_seq"],
                events=len(emitted),
                duration_ms=int((time.monotonic() - started) * 1000),
            )

            if external is not None and asset is not None:
                self._perform_external_transfer(asset, external, committed_op_seq=working["op_seq"])

            return {"ok": True, "op_seq": working["op_seq"], "result": result, "events": emitted}

    def _perform_external_transfer(self, asset: ForeignAsset, call: Json, *, committed_op_seq: int) -> None:
        """Run a foreign-asset transfer for an operation that is already committed.

        A failure is reported with committed_op_seq: the engine-side operation
        stays applied and only the foreign transfer did not happen.
        """
        to = str(call.get("to") or "")
        amount = int(call.get("amount") or 0)
        details = {"asset": call.get("asset"), "to": to, "amount": amount, "committed_op_seq": int(committed_op_seq)}
        try:
            ok = asset.transfer(to, amount)
        except ApplyError:
            raise
        except Exception as e:
            inc_counter("external_call_failed_total")
            log_event(log, "external_call_failed", level=logging.ERROR, error=str(e), **details)
            raise ExternalCallFailed("foreign_transfer_failed", {**details, "error": str(e)}) from e

        if ok is False:
            inc_counter("external_call_failed_total")
            log_event(log, "external_call_failed", level=logging.ERROR, error="returned_false", **details)
            raise ExternalCallFailed("foreign_transfer_failed", details)
        log_event(log, "external_call_ok", **details)

    # ----------------------------
    # Construction
    # ----------------------------

    @classmethod
    def from_config(cls, cfg: EngineConfig, *, registry: Optional[LogicRegistry] = None) -> "ReservoirExecutor":
        keyring: Keyring = load_keyring(cfg.keyring_path) if cfg.keyring_path else {}
        return cls(
            engine_address=cfg.engine_address,
            chain_id=cfg.chain_id,
            db_path=cfg.db_path,
            registry=registry,
            keyring=keyring,
            allow_unsigned_txs=cfg.allow_unsigned_txs,
        )

    @classmethod
    def from_env(cls) -> "ReservoirExecutor":
        return cls.from_config(load_engine_config())


__all__ = ["ExecutorError", "ForeignAsset", "ReservoirExecutor"]
