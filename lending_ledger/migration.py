"""
migration.py - One-shot Insolvency Migration

Moves every account out of a market carrying a shortfall into a repaired
market, socializing the shortfall across net creditors while carrying net
debt over exactly.

ARCHITECTURE (Pure Function Pattern):
=====================================

1. FROZEN DATACLASSES (explicit inputs and outputs):
   - NetPosition: one account's captured snapshot and net outlay
   - ShortfallSummary: aggregate outlays, haircut and survival multiplier
   - AccountMigration: what a single account receives in the destination
   - MigrationPlan / MigrationReport: the full computed result

2. PURE CALCULATION FUNCTIONS:
   - compute_net_outlay(snapshot) -> (underlying_supplied, outlay, is_creditor)
   - compute_shortfall(positions) -> ShortfallSummary

3. ADAPTER FUNCTIONS (the ONLY places that read markets):
   - capture_snapshots(source, accounts): reads the source exactly once per
     account; both passes run on the captured tuple
   - plan_migration(destination, positions, summary): reads destination
     rates and checks each account starts clean

4. ENTRY POINT:
   - migrate(): guard, pass 1, pass 2, then a single apply step

Key Formulas:
    underlying_supplied = supplied_tokens * exchange_rate / 1e18
    missing_funds       = total_positive_outlay - total_negative_outlay
    haircut             = missing_funds * 1e18 / total_positive_outlay
    multiplier          = 1e18 - haircut
    creditor tokens     = (outlay * multiplier / 1e18) * 1e18 / dest_exchange_rate
    debtor principal    = outlay   (debt is never haircut)

Every precondition and every arithmetic step is evaluated while building the
plan. The destination is written only once the plan is complete, so a failed
migration leaves it exactly as it was.
"""

from __future__ import annotations
from dataclasses import dataclass
from typing import Iterable, Tuple

from .core import (
    AccountSnapshot, MarketView, MigrationState,
    EXP_SCALE, NO_ERROR,
    AlreadyMigrated, IncompleteAccountList, LedgerError,
    NonZeroDestinationBalance, SnapshotError, Unauthorized,
)
from .fixed_point import (
    add_u, div_scalar_by_exp, fraction, mul_scalar_truncate, sub_u, to_display,
)
from .market import Market


# ============================================================================
# FROZEN DATACLASSES
# ============================================================================

@dataclass(frozen=True, slots=True)
class NetPosition:
    """
    An account's snapshot as captured in pass 1, netted to a single outlay.

    is_creditor is True when supplied underlying strictly exceeds the borrow;
    an exact wash is a debtor with zero outlay.
    """
    account: str
    snapshot: AccountSnapshot
    underlying_supplied: int
    net_outlay: int
    is_creditor: bool


@dataclass(frozen=True, slots=True)
class ShortfallSummary:
    """Aggregate result of pass 1."""
    total_positive_outlay: int
    total_negative_outlay: int
    missing_funds: int
    haircut_mantissa: int
    multiplier_mantissa: int

    def __repr__(self) -> str:
        return (
            f"ShortfallSummary(credit={self.total_positive_outlay}, "
            f"debt={self.total_negative_outlay}, missing={self.missing_funds}, "
            f"haircut={to_display(self.haircut_mantissa)}, "
            f"multiplier={to_display(self.multiplier_mantissa)})"
        )


@dataclass(frozen=True, slots=True)
class AccountMigration:
    """
    What one account receives in the destination market.

    Creditors get new_tokens (recovered_underlying at the destination exchange
    rate); debtors get borrow_principal. The other side is always zero.
    """
    account: str
    net_outlay: int
    is_creditor: bool
    recovered_underlying: int
    new_tokens: int
    borrow_principal: int


@dataclass(frozen=True, slots=True)
class MigrationPlan:
    """Fully computed migration, ready to be applied to the destination."""
    summary: ShortfallSummary
    entries: Tuple[AccountMigration, ...]
    exchange_rate_mantissa: int
    borrow_index: int

    @property
    def total_new_tokens(self) -> int:
        return sum(e.new_tokens for e in self.entries)

    @property
    def total_recovered_underlying(self) -> int:
        return sum(e.recovered_underlying for e in self.entries)

    @property
    def total_borrow_principal(self) -> int:
        return sum(e.borrow_principal for e in self.entries)


@dataclass(frozen=True, slots=True)
class MigrationReport:
    """Record returned by migrate() once the destination has been written."""
    plan: MigrationPlan
    destination: str
    block: int
    total_supply_after: int
    total_borrows_after: int

    @property
    def summary(self) -> ShortfallSummary:
        return self.plan.summary

    @property
    def entries(self) -> Tuple[AccountMigration, ...]:
        return self.plan.entries

    def entry_for(self, account: str) -> AccountMigration:
        for entry in self.plan.entries:
            if entry.account == account:
                return entry
        raise KeyError(account)


# ============================================================================
# PURE CALCULATION FUNCTIONS
# ============================================================================

def compute_net_outlay(snapshot: AccountSnapshot) -> Tuple[int, int, bool]:
    """
    Net an account's supply against its borrow, in underlying units.

    Returns:
        (underlying_supplied, outlay, is_creditor)

    Example:
        Supplied 100 tokens at rate 1.0, borrowed 100 -> (100, 0, False)
        Supplied 500 tokens at rate 1.0, borrowed 0   -> (500, 500, True)
    """
    underlying_supplied = mul_scalar_truncate(
        snapshot.supplied_tokens, snapshot.exchange_rate_mantissa
    )
    if underlying_supplied > snapshot.borrowed_underlying:
        return underlying_supplied, sub_u(underlying_supplied, snapshot.borrowed_underlying), True
    return underlying_supplied, sub_u(snapshot.borrowed_underlying, underlying_supplied), False


def compute_shortfall(positions: Iterable[NetPosition]) -> ShortfallSummary:
    """
    Aggregate net outlays and derive the haircut every creditor absorbs.

    Raises:
        ArithmeticUnderflow: If debt exceeds credit (the market is solvent)
        DivisionByZero: If there is no creditor to absorb the shortfall
    """
    total_positive = 0
    total_negative = 0
    for position in positions:
        if position.is_creditor:
            total_positive = add_u(total_positive, position.net_outlay)
        else:
            total_negative = add_u(total_negative, position.net_outlay)

    missing_funds = sub_u(total_positive, total_negative)
    haircut = fraction(missing_funds, total_positive)
    multiplier = sub_u(EXP_SCALE, haircut)

    return ShortfallSummary(
        total_positive_outlay=total_positive,
        total_negative_outlay=total_negative,
        missing_funds=missing_funds,
        haircut_mantissa=haircut,
        multiplier_mantissa=multiplier,
    )


def compute_account_migration(
    position: NetPosition,
    multiplier_mantissa: int,
    exchange_rate_mantissa: int,
) -> AccountMigration:
    """Apply the survival multiplier to a creditor, or carry a debtor's outlay over in full."""
    if position.is_creditor:
        recovered = mul_scalar_truncate(position.net_outlay, multiplier_mantissa)
        return AccountMigration(
            account=position.account,
            net_outlay=position.net_outlay,
            is_creditor=True,
            recovered_underlying=recovered,
            new_tokens=div_scalar_by_exp(recovered, exchange_rate_mantissa),
            borrow_principal=0,
        )
    return AccountMigration(
        account=position.account,
        net_outlay=position.net_outlay,
        is_creditor=False,
        recovered_underlying=0,
        new_tokens=0,
        borrow_principal=position.net_outlay,
    )


# ============================================================================
# ADAPTER FUNCTIONS
# ============================================================================

def capture_snapshots(source: MarketView, accounts: Iterable[str]) -> Tuple[NetPosition, ...]:
    """
    Read each account's snapshot from source once and net it.

    The returned tuple is the only view of the source that later steps use.

    Raises:
        ValueError: If an account appears more than once
        SnapshotError: If source reports a nonzero error code
    """
    seen = set()
    captured = []
    for account in accounts:
        if account in seen:
            raise ValueError(f"Account {account} listed more than once")
        seen.add(account)

        snapshot = source.get_account_snapshot(account)
        if snapshot.error_code != NO_ERROR:
            raise SnapshotError(
                f"{account}: source snapshot failed with error code {snapshot.error_code}"
            )
        underlying, outlay, is_creditor = compute_net_outlay(snapshot)
        captured.append(NetPosition(account, snapshot, underlying, outlay, is_creditor))
    return tuple(captured)


def check_completeness(source: MarketView, positions: Iterable[NetPosition]) -> None:
    """
    Compare captured positions against the source market's recorded totals.

    Catches an account list that leaves holders out. Borrow totals may carry
    index-rounding dust, so borrows only need to be covered within one unit
    per captured borrower.

    Raises:
        IncompleteAccountList: If captured supply or borrows fall short
    """
    positions = tuple(positions)
    captured_tokens = sum(p.snapshot.supplied_tokens for p in positions)
    captured_borrows = sum(p.snapshot.borrowed_underlying for p in positions)

    if captured_tokens != source.total_supply():
        raise IncompleteAccountList(
            f"captured supply {captured_tokens} != source total supply {source.total_supply()}"
        )
    borrowers = sum(1 for p in positions if p.snapshot.borrowed_underlying > 0)
    if captured_borrows + borrowers < source.total_borrows():
        raise IncompleteAccountList(
            f"captured borrows {captured_borrows} < source total borrows {source.total_borrows()}"
        )


def plan_migration(
    destination: Market,
    positions: Tuple[NetPosition, ...],
    summary: ShortfallSummary,
) -> MigrationPlan:
    """
    Compute every account's destination position (pass 2) without writing.

    Raises:
        NonZeroDestinationBalance: If an account already supplies to destination
    """
    exchange_rate = destination.exchange_rate_mantissa
    entries = []
    for position in positions:
        existing = destination.balance_of(position.account)
        if existing != 0:
            raise NonZeroDestinationBalance(
                f"{position.account} already holds {existing} tokens in {destination.name}"
            )
        entries.append(
            compute_account_migration(position, summary.multiplier_mantissa, exchange_rate)
        )

    return MigrationPlan(
        summary=summary,
        entries=tuple(entries),
        exchange_rate_mantissa=exchange_rate,
        borrow_index=destination.borrow_index,
    )


# ============================================================================
# ENTRY POINT
# ============================================================================

def migrate(
    destination: Market,
    source: MarketView,
    accounts: Iterable[str],
    caller: str,
    require_complete: bool = False,
) -> MigrationReport:
    """
    Migrate every listed account from source into destination, once.

    Args:
        destination: Repaired market receiving the positions
        source: Market with the shortfall (read only, via MarketView)
        accounts: Every affected account; omissions are not detected unless
                  require_complete is set
        caller: Identity making the call; must be destination.admin
        require_complete: Check captured totals against the source's totals

    Returns:
        MigrationReport describing the shortfall and each account's result

    Raises:
        AlreadyMigrated: If destination has already been migrated into
        Unauthorized: If caller is not destination.admin
        SnapshotError, IncompleteAccountList, NonZeroDestinationBalance
        ArithmeticViolation: Underflow (solvent source) or division by zero
            (no creditors)
    """
    try:
        if destination.migration_state is not MigrationState.PENDING:
            raise AlreadyMigrated(f"{destination.name} has already been migrated")
        if caller != destination.admin:
            raise Unauthorized(f"{caller} is not the admin of {destination.name}")

        positions = capture_snapshots(source, accounts)
        if require_complete:
            check_completeness(source, positions)
        summary = compute_shortfall(positions)
        plan = plan_migration(destination, positions, summary)

        destination.apply_migration(plan)
    except LedgerError as e:
        if destination.verbose:
            print(f"✗ [{destination.name}#{destination.current_block}] REJECTED: migration: {e}")
        raise

    return MigrationReport(
        plan=plan,
        destination=destination.name,
        block=destination.current_block,
        total_supply_after=destination.total_supply(),
        total_borrows_after=destination.total_borrows(),
    )
