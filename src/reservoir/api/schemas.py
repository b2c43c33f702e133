from __future__ import annotations

"""Pydantic request schemas for the public API.

The canonical per-operation payload fields live in tx/tx_canon.yaml and are
enforced by admission; these models only validate the HTTP envelope shape.
"""

from typing import Any, Dict

from pydantic import BaseModel, Field


class TxSubmitRequest(BaseModel):
    tx_type: str = Field(..., min_length=1, description="Operation name, e.g. TRANSFER")
    signer: str = Field(..., min_length=1, description="0x-prefixed caller address")
    nonce: int = Field(default=0, ge=0, description="Per-signer nonce; strictly increasing when signatures are required")
    payload: Dict[str, Any] = Field(default_factory=dict)
    sig: str = Field(default="", description="Hex or base64 Ed25519 signature over the canonical tx message")

    model_config = {"extra": "forbid"}

    def to_envelope_json(self) -> Dict[str, Any]:
        return {
            "tx_type": self.tx_type,
            "signer": self.signer,
            "nonce": int(self.nonce),
            "payload": dict(self.payload),
            "sig": self.sig,
        }
