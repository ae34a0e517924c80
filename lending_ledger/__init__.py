"""
lending_ledger - Accounting core for a collateralized lending market

Two subsystems share an unsigned 1e18 fixed-point substrate:

- Checkpoints: per-account (block, value) history answering "what was this
  balance as of block N" by binary search.
- Insolvency migration: a one-shot procedure that moves every account out of
  a market with a shortfall into a repaired market, haircutting net creditors
  by a single global multiplier and carrying net debt over exactly.

Usage:
    from lending_ledger import Market, migrate

    broken = Market("cETH-v1", admin="gov", verbose=False)
    broken.supply("alice", 1_000)
    broken.supply("bob", 500)
    broken.borrow("bob", 900)

    repaired = Market("cETH-v2", admin="gov", verbose=False)
    report = migrate(repaired, broken, ["alice", "bob"], caller="gov")
    report.summary.multiplier_mantissa
"""

# Core types
from .core import (
    MarketView,
    AccountPosition,
    AccountSnapshot,
    MigrationState,
    LedgerError,
    PreconditionViolation,
    ArithmeticViolation,
    ArithmeticUnderflow,
    ArithmeticOverflow,
    DivisionByZero,
    FutureBlockQuery,
    CheckpointOrderViolation,
    Unauthorized,
    AlreadyMigrated,
    NonZeroDestinationBalance,
    SnapshotError,
    IncompleteAccountList,
    InsufficientBalance,
    EXP_SCALE,
    UINT_MAX,
    NO_ERROR,
    INITIAL_BORROW_INDEX,
)

# Fixed-point arithmetic
from .fixed_point import (
    add_u, sub_u, mul_u, div_u,
    mul_scalar_truncate,
    div_scalar_by_exp,
    fraction,
    scale_by_index,
)

# Checkpoints
from .checkpoints import (
    Checkpoint,
    CheckpointStore,
    binary_lookup,
    linear_lookup,
)

# Market
from .market import Market

# Insolvency migration
from .migration import (
    NetPosition,
    ShortfallSummary,
    AccountMigration,
    MigrationPlan,
    MigrationReport,
    compute_net_outlay,
    compute_shortfall,
    compute_account_migration,
    capture_snapshots,
    check_completeness,
    plan_migration,
    migrate,
)

__all__ = [
    # Core
    'MarketView', 'AccountPosition', 'AccountSnapshot', 'MigrationState',
    'LedgerError', 'PreconditionViolation', 'ArithmeticViolation',
    'ArithmeticUnderflow', 'ArithmeticOverflow', 'DivisionByZero',
    'FutureBlockQuery', 'CheckpointOrderViolation', 'Unauthorized',
    'AlreadyMigrated', 'NonZeroDestinationBalance', 'SnapshotError',
    'IncompleteAccountList', 'InsufficientBalance',
    'EXP_SCALE', 'UINT_MAX', 'NO_ERROR', 'INITIAL_BORROW_INDEX',
    # Fixed point
    'add_u', 'sub_u', 'mul_u', 'div_u', 'mul_scalar_truncate',
    'div_scalar_by_exp', 'fraction', 'scale_by_index',
    # Checkpoints
    'Checkpoint', 'CheckpointStore', 'binary_lookup', 'linear_lookup',
    # Market
    'Market',
    # Migration
    'NetPosition', 'ShortfallSummary', 'AccountMigration', 'MigrationPlan',
    'MigrationReport', 'compute_net_outlay', 'compute_shortfall',
    'compute_account_migration', 'capture_snapshots', 'check_completeness',
    'plan_migration', 'migrate',
]

__version__ = '1.0.0'
