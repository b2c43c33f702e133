from __future__ import annotations

from dataclasses import dataclass, field
import copy
from typing import Any, Dict, List

from reservoir.ledger.constants import ROLE_IDS, ZERO_ADDRESS

Json = Dict[str, Any]


def _as_int(v: Any, default: int = 0) -> int:
    try:
        return int(v)
    except Exception:
        return default


@dataclass(frozen=True, slots=True)
class LedgerView:
    """
    Immutable read-only ledger view used by admission and the HTTP API.
    """

    meta: Dict[str, Any] = field(default_factory=dict)
    total_supply: int = 0
    balances: Dict[str, int] = field(default_factory=dict)
    allowances: Dict[str, Dict[str, int]] = field(default_factory=dict)
    tax: Dict[str, Any] = field(default_factory=dict)
    exempt: Dict[str, bool] = field(default_factory=dict)
    reward_pool: Dict[str, Any] = field(default_factory=dict)
    roles: Dict[str, List[str]] = field(default_factory=dict)
    owner: str = ""
    logic: Dict[str, Any] = field(default_factory=dict)
    op_seq: int = 0

    @classmethod
    def from_ledger(cls, state: Dict[str, Any]) -> "LedgerView":
        def _d(key: str) -> Dict[str, Any]:
            v = state.get(key)
            return copy.deepcopy(v) if isinstance(v, dict) else {}

        return cls(
            meta=_d("meta"),
            total_supply=_as_int(state.get("total_supply"), 0),
            balances=_d("balances"),
            allowances=_d("allowances"),
            tax=_d("tax"),
            exempt=_d("exempt"),
            reward_pool=_d("reward_pool"),
            roles=_d("roles"),
            owner=str(state.get("owner") or ""),
            logic=_d("logic"),
            op_seq=_as_int(state.get("op_seq"), 0),
        )

    @property
    def initialized(self) -> bool:
        return bool(self.meta.get("initialized", False))

    @property
    def engine_address(self) -> str:
        return str(self.meta.get("engine_address") or "")

    def balance_of(self, account: str) -> int:
        return _as_int(self.balances.get(account), 0)

    def allowance(self, owner: str, spender: str) -> int:
        by_owner = self.allowances.get(owner)
        if not isinstance(by_owner, dict):
            return 0
        return _as_int(by_owner.get(spender), 0)

    def is_exempt(self, account: str) -> bool:
        return bool(self.exempt.get(account, False))

    @property
    def tax_rate_bps(self) -> int:
        return _as_int(self.tax.get("rate_bps"), 0)

    @property
    def reservoir(self) -> str:
        return str(self.tax.get("reservoir") or ZERO_ADDRESS)

    @property
    def pool_account(self) -> str:
        return str(self.reward_pool.get("account") or "")

    @property
    def pool_balance(self) -> int:
        acct = self.pool_account
        return self.balance_of(acct) if acct else 0

    def pool_status(self, account: str | None = None) -> str:
        acct = account or self.pool_account
        designations = self.reward_pool.get("designations")
        if not isinstance(designations, dict):
            return "unfunded"
        rec = designations.get(acct)
        if not isinstance(rec, dict):
            return "unfunded"
        return str(rec.get("status") or "unfunded")

    def role_members(self, role: str) -> List[str]:
        members = self.roles.get(role)
        return [str(m) for m in members] if isinstance(members, list) else []

    def roles_of(self, account: str) -> List[str]:
        return [r for r in ROLE_IDS if account in self.role_members(r)]

    @property
    def logic_ref(self) -> str:
        return str(self.logic.get("ref") or "")

    @property
    def logic_version(self) -> int:
        return _as_int(self.logic.get("version"), 0)
