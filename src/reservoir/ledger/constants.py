# src/reservoir/ledger/constants.py
from __future__ import annotations

"""Monetary and policy constants for the reservoir token.

- Fixed supply: 1,000,000,000 tokens, divisible to 1e-18
- Tax rate in basis points, hard-capped at 10%
- Two role sets (ROOT_ADMIN, REWARD_MANAGER) plus a single owner account
"""

# Monetary precision (1 token = 1e18 units)
DECIMALS: int = 18
UNIT: int = 10**DECIMALS

# Fixed supply, minted once at initialization
TOTAL_SUPPLY_TOKENS: int = 1_000_000_000
TOTAL_SUPPLY: int = TOTAL_SUPPLY_TOKENS * UNIT

# Tax (basis points: 1/10000)
BPS_DENOMINATOR: int = 10_000
MAX_TAX_BPS: int = 1_000  # 10%

# Addresses are 0x-prefixed, 20 bytes
ADDRESS_HEX_LEN: int = 40
ZERO_ADDRESS: str = "0x" + "0" * ADDRESS_HEX_LEN

# Activity contexts are 0x-prefixed, 32 bytes
CONTEXT_HEX_LEN: int = 64
ZERO_CONTEXT: str = "0x" + "0" * CONTEXT_HEX_LEN

# Role identifiers
ROOT_ADMIN: str = "ROOT_ADMIN"
REWARD_MANAGER: str = "REWARD_MANAGER"
ROLE_IDS = (ROOT_ADMIN, REWARD_MANAGER)

# Upgradeable layout headroom (number of fields a future logic may append)
RESERVED_STATE_SLOTS: int = 50
