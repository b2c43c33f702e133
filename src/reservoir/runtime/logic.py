# src/reservoir/runtime/logic.py
from __future__ import annotations

"""
Logic versions.

Persisted ledger state is separate from the code that mutates it. A
LogicVersion bundles the appliers for one version of the rules together with
the state layout it expects. The state records which version is active
(state["logic"]["ref"]); the dispatcher resolves it through a LogicRegistry
on every operation, so an authorized upgrade takes effect on the very next
operation without touching balances, allowances, roles or configuration.
"""

import copy
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, FrozenSet, List, Mapping, Optional, Tuple

from reservoir.ledger.migrations import BASE_LAYOUT
from reservoir.runtime.apply.init import INIT_TX_TYPES, apply_init
from reservoir.runtime.apply.ledger import LEDGER_TX_TYPES, apply_ledger
from reservoir.runtime.apply.rescue import RESCUE_TX_TYPES, apply_rescue
from reservoir.runtime.apply.reward_pool import REWARD_POOL_TX_TYPES, apply_reward_pool
from reservoir.runtime.apply.roles import ROLES_TX_TYPES, apply_roles
from reservoir.runtime.apply.tax import TAX_TX_TYPES, apply_tax
from reservoir.runtime.state_invariants import POOL_TX_TYPES
from reservoir.runtime.tx_admission_types import TxEnvelope

Json = Dict[str, Any]
ApplyFn = Callable[[Json, TxEnvelope], Optional[Json]]

UPGRADE_TX_TYPES: FrozenSet[str] = frozenset({"AUTHORIZE_UPGRADE"})


@dataclass(frozen=True)
class LogicVersion:
    ref: str
    version: int
    layout: Tuple[str, ...]
    appliers: Tuple[ApplyFn, ...]
    tx_types: FrozenSet[str]
    # Initial values for fields this version appends to the layout.
    defaults: Mapping[str, Any] = field(default_factory=dict)
    pool_tx_types: FrozenSet[str] = POOL_TX_TYPES

    def initial_value(self, field_name: str) -> Any:
        return copy.deepcopy(self.defaults.get(field_name))

    def handles(self, tx_type: str) -> bool:
        t = str(tx_type or "").strip().upper()
        return t in self.tx_types or t in UPGRADE_TX_TYPES


V1_TX_TYPES: FrozenSet[str] = frozenset(
    set(INIT_TX_TYPES)
    | set(LEDGER_TX_TYPES)
    | set(TAX_TX_TYPES)
    | set(REWARD_POOL_TX_TYPES)
    | set(ROLES_TX_TYPES)
    | set(RESCUE_TX_TYPES)
)

V1 = LogicVersion(
    ref="reservoir.v1",
    version=1,
    layout=BASE_LAYOUT,
    appliers=(apply_init, apply_ledger, apply_tax, apply_reward_pool, apply_roles, apply_rescue),
    tx_types=V1_TX_TYPES,
)


class LogicRegistry:
    """Known logic versions, keyed by ref. The first one registered is the default."""

    def __init__(self, versions: Optional[List[LogicVersion]] = None) -> None:
        self._by_ref: Dict[str, LogicVersion] = {}
        self._default_ref = ""
        for lv in versions or []:
            self.register(lv)

    def register(self, logic: LogicVersion) -> LogicVersion:
        ref = str(logic.ref or "").strip()
        if not ref:
            raise ValueError("logic ref must be non-empty")
        if ref in self._by_ref and self._by_ref[ref] is not logic:
            raise ValueError(f"logic ref already registered: {ref}")
        self._by_ref[ref] = logic
        if not self._default_ref:
            self._default_ref = ref
        return logic

    def get(self, ref: str) -> Optional[LogicVersion]:
        return self._by_ref.get(str(ref or "").strip())

    @property
    def default(self) -> LogicVersion:
        if not self._default_ref:
            raise LookupError("no logic versions registered")
        return self._by_ref[self._default_ref]

    def refs(self) -> List[str]:
        return sorted(self._by_ref)

    def resolve(self, state: Json) -> LogicVersion:
        """Active logic for ``state``; falls back to the default before any is recorded."""
        logic = state.get("logic") if isinstance(state.get("logic"), dict) else {}
        ref = str(logic.get("ref") or "").strip()
        if not ref:
            return self.default
        lv = self.get(ref)
        if lv is None:
            raise LookupError(f"active logic ref is not registered: {ref}")
        return lv


def default_registry() -> LogicRegistry:
    return LogicRegistry([V1])


__all__ = ["ApplyFn", "LogicRegistry", "LogicVersion", "UPGRADE_TX_TYPES", "V1", "default_registry"]
