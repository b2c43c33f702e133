# src/reservoir/runtime/domain_dispatch.py

from __future__ import annotations

from typing import Any, Dict, Optional

from reservoir.runtime.apply.upgrade import apply_upgrade
from reservoir.runtime.errors import ApplyError
from reservoir.runtime.logic import LogicRegistry, LogicVersion, default_registry
from reservoir.runtime.state_invariants import ensure_state
from reservoir.runtime.tx_admission_types import TxEnvelope

Json = Dict[str, Any]


def _get(env: Any, key: str, default: Any = None) -> Any:
    """Read a field from either a TxEnvelope-like object or a dict.

    Tests and tools pass raw dict envelopes directly into apply_tx(), while
    the executor passes a TxEnvelope object.
    """

    if isinstance(env, dict):
        return env.get(key, default)
    return getattr(env, key, default)


def _tx_type(env: Any) -> str:
    return str(_get(env, "tx_type", "") or "").strip().upper()


def _wrap(e: Exception, t: str, domain: str) -> ApplyError:
    code = getattr(e, "code", None)
    reason = getattr(e, "reason", None)
    details = getattr(e, "details", None)

    if code is not None or reason is not None:
        return ApplyError(
            str(code or "domain_error"),
            str(reason or type(e).__name__),
            details if details is not None else {"tx_type": t, "domain": domain},
        )

    return ApplyError(
        "domain_error",
        type(e).__name__,
        {"tx_type": t, "domain": domain, "error": str(e)},
    )


def resolve_logic(state: Json, registry: Optional[LogicRegistry] = None) -> LogicVersion:
    reg = registry or default_registry()
    try:
        return reg.resolve(state)
    except LookupError as e:
        raise ApplyError("invariant_violation", "unknown_active_logic", {"error": str(e)}) from e


def apply_tx(state: Json, env: Any, registry: Optional[LogicRegistry] = None) -> Json:
    """Dispatch a TxEnvelope to the active logic version's appliers.

    AUTHORIZE_UPGRADE is handled ahead of the logic's own appliers since it
    is what selects them. The first applier that claims the tx type wins.
    """

    ensure_state(state)
    reg = registry or default_registry()

    env_norm: Any = env
    if isinstance(env, dict):
        env_norm = TxEnvelope.from_json(env)

    t = _tx_type(env_norm)
    if not t:
        raise ApplyError("invalid_input", "missing_tx_type", {"tx_type": t})

    try:
        out = apply_upgrade(state, env_norm, reg)
    except ApplyError:
        raise
    except Exception as e:
        raise _wrap(e, t, "apply_upgrade") from e
    if out is not None:
        return out

    logic = resolve_logic(state, reg)
    for fn in logic.appliers:
        try:
            out = fn(state, env_norm)
        except ApplyError:
            raise
        except Exception as e:
            raise _wrap(e, t, getattr(fn, "__name__", "applier")) from e

        if out is not None:
            return out

    raise ApplyError("tx_unimplemented", "tx_type_not_implemented", {"tx_type": t, "logic": logic.ref})


__all__ = ["apply_tx", "resolve_logic"]
