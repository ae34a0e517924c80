"""
Core types for the lending market ledger.

This module provides the foundational data structures and protocols:
1. Protocols: MarketView for read-only market access
2. Immutable data structures: AccountPosition, AccountSnapshot
3. Exceptions: LedgerError and its precondition / arithmetic branches
4. Enums: MigrationState

Nothing in this module mutates market state. Stateful behaviour lives in
market.py (the owning market) and checkpoints.py (historical balances).
"""

from __future__ import annotations
from dataclasses import dataclass
from enum import Enum
from typing import Any, Iterable, Protocol, Tuple, runtime_checkable


# ============================================================================
# CONSTANTS
# ============================================================================

# Fixed-point scale: ratios, exchange rates and indices are integers scaled
# by 1e18 (a "mantissa").
EXP_SCALE = 10**18

# Largest representable unsigned value. Results above it are overflows.
UINT_MAX = 2**256 - 1

# Error code reported by a healthy account snapshot. Any other value means the
# source market could not produce a consistent view of the account.
NO_ERROR = 0

# Borrow index every market starts from (1.0 in fixed point).
INITIAL_BORROW_INDEX = EXP_SCALE


# ============================================================================
# EXCEPTIONS
# ============================================================================

class LedgerError(Exception):
    """Base exception for all market-ledger errors."""
    pass


class PreconditionViolation(LedgerError):
    """Raised when a call is made in a state that does not permit it."""
    pass


class ArithmeticViolation(LedgerError):
    """Raised when unsigned fixed-point arithmetic cannot be completed."""
    pass


class ArithmeticUnderflow(ArithmeticViolation):
    """Raised when a subtraction would produce a negative result."""
    pass


class ArithmeticOverflow(ArithmeticViolation):
    """Raised when a result would exceed UINT_MAX."""
    pass


class DivisionByZero(ArithmeticViolation):
    """Raised when a fixed-point ratio has a zero denominator."""
    pass


class FutureBlockQuery(PreconditionViolation):
    """Raised when a historical query targets the current or a future block."""
    pass


class CheckpointOrderViolation(PreconditionViolation):
    """Raised when a checkpoint write arrives for a block older than the last one."""
    pass


class Unauthorized(PreconditionViolation):
    """Raised when an administrative call is made by anyone but the admin."""
    pass


class AlreadyMigrated(PreconditionViolation):
    """Raised when the insolvency migration is invoked a second time."""
    pass


class NonZeroDestinationBalance(PreconditionViolation):
    """Raised when a migrated account already holds supply in the destination."""
    pass


class SnapshotError(PreconditionViolation):
    """Raised when the source market reports a nonzero snapshot error code."""
    pass


class IncompleteAccountList(PreconditionViolation):
    """Raised when captured snapshots do not add up to the source market totals."""
    pass


class InsufficientBalance(PreconditionViolation):
    """Raised when a withdraw, transfer or repay exceeds the account's position."""
    pass


# ============================================================================
# VALIDATION
# ============================================================================

def require_uint(value: Any, name: str) -> int:
    """
    Validate that value is an unsigned integer within UINT_MAX.

    bool is rejected even though it subclasses int.

    Raises:
        ValueError: If value is not an int, is negative, or exceeds UINT_MAX
    """
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValueError(f"{name} must be int, got {type(value).__name__}")
    if value < 0:
        raise ValueError(f"{name} must be non-negative, got {value}")
    if value > UINT_MAX:
        raise ValueError(f"{name} exceeds UINT_MAX")
    return value


# ============================================================================
# ENUMS
# ============================================================================

class MigrationState(Enum):
    """
    Lifecycle of the one-shot insolvency migration.

    PENDING: The destination market has not been migrated into yet.
    COMPLETED: Migration has run; any further attempt fails permanently.
    """
    PENDING = "pending"
    COMPLETED = "completed"


# ============================================================================
# CORE DATA STRUCTURES
# ============================================================================

@dataclass(frozen=True, slots=True)
class AccountPosition:
    """
    An account's position in a single market.

    Attributes:
        supplied_tokens: Market tokens held (claim on supplied underlying).
        borrow_principal: Underlying owed as of borrow_interest_index.
        borrow_interest_index: Market borrow index when principal was last set.

    Supply and borrow are independent: an account may hold both at once.
    Positions are replaced, never mutated, when the market changes them.
    """
    supplied_tokens: int = 0
    borrow_principal: int = 0
    borrow_interest_index: int = 0

    def __post_init__(self):
        require_uint(self.supplied_tokens, "supplied_tokens")
        require_uint(self.borrow_principal, "borrow_principal")
        require_uint(self.borrow_interest_index, "borrow_interest_index")

    def is_empty(self) -> bool:
        """Return True if the account neither supplies nor borrows."""
        return self.supplied_tokens == 0 and self.borrow_principal == 0


@dataclass(frozen=True, slots=True)
class AccountSnapshot:
    """
    Point-in-time view of one account as reported by a market.

    Mirrors the (error, tokens, borrow balance, exchange rate) tuple a market
    exposes to integrators. Borrowed amount is in underlying units with
    interest applied up to the market's current borrow index.
    """
    error_code: int
    supplied_tokens: int
    borrowed_underlying: int
    exchange_rate_mantissa: int

    def __post_init__(self):
        require_uint(self.error_code, "error_code")
        require_uint(self.supplied_tokens, "supplied_tokens")
        require_uint(self.borrowed_underlying, "borrowed_underlying")
        require_uint(self.exchange_rate_mantissa, "exchange_rate_mantissa")

    def as_tuple(self) -> Tuple[int, int, int, int]:
        return (
            self.error_code,
            self.supplied_tokens,
            self.borrowed_underlying,
            self.exchange_rate_mantissa,
        )


# ============================================================================
# PROTOCOLS
# ============================================================================

@runtime_checkable
class MarketView(Protocol):
    """
    Read-only interface to a lending market.

    The insolvency migrator reads its source market exclusively through this
    protocol. Market implements it; tests use FakeMarket, which serves fixed
    snapshots.
    """

    def get_account_snapshot(self, account: str) -> AccountSnapshot:
        """Return the account's supply/borrow snapshot at the current block."""
        ...

    def total_supply(self) -> int:
        """Return total market tokens outstanding."""
        ...

    def total_borrows(self) -> int:
        """Return total underlying borrowed, interest included."""
        ...

    def list_accounts(self) -> Iterable[str]:
        """Return every account that has ever held a position."""
        ...
