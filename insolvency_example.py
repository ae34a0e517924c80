"""
insolvency_example.py - Insolvency Recovery Tutorial

This tutorial walks through recovering a lending market that has lost part of
the cash its suppliers are owed, and shows how historical balances remain
readable before and after the recovery.

THE TWO SUBSYSTEMS:
===================

1. CHECKPOINTS - "WHAT WAS THE BALANCE AT BLOCK N?"
   - Every change to an account's supplied tokens writes (block, balance)
   - Several changes in one block keep only the closing balance
   - get_prior_balance() answers for any finalized block by binary search
   - Use when: snapshot voting, reward distribution, audits

2. migrate() - ONE-SHOT INSOLVENCY MIGRATION
   - Pass 1: net every account's supply against its debt, sum credit and debt
   - Shortfall: haircut = (credit - debt) / credit, multiplier = 1 - haircut
   - Pass 2: creditors receive outlay * multiplier, debtors keep their full debt
   - The repaired market accepts exactly one migration

SCENARIO: Drained USDC Market
=============================

An exploit drained the cash sitting in cUSDC. Loans are still outstanding, so
borrowers owe the market 1,100 USDC, but suppliers have claims on 1,650.
Governance deploys cUSDC-v2 and migrates every account into it: suppliers
share the 550 USDC loss pro rata, borrowers carry their debt over in full.

Run:
    python insolvency_example.py
"""

from typing import Tuple

from lending_ledger import (
    Market, migrate,
    MigrationReport,
    AlreadyMigrated,
    EXP_SCALE,
)
from lending_ledger.fixed_point import to_display


GOVERNANCE = "governance"


# =============================================================================
# SCENARIO SETUP: The Drained Market
# =============================================================================

def create_drained_market() -> Tuple[Market, int]:
    """
    Build cUSDC up to the moment of the exploit.

    Returns:
        market: The drained market
        pre_exploit_block: Last block before the exploit
    """
    market = Market("cUSDC", admin=GOVERNANCE, verbose=True)

    # Block 1: suppliers arrive
    market.supply("alice", 1_000)
    market.supply("carol", 500)
    market.supply("dave", 200)

    # Block 5: loans go out
    market.advance_to(5)
    market.borrow("bob", 600)
    market.borrow("dave", 500)

    # Block 10: interest accrues (index 1.2), supply tokens appreciate (rate 1.1)
    market.advance_to(10)
    market.accrue_interest(1_200_000_000_000_000_000)
    market.set_exchange_rate(1_100_000_000_000_000_000)

    # Block 12: alice sends some tokens to carol just before the exploit
    market.advance_to(12)
    market.transfer("alice", "carol", 100)
    market.transfer("carol", "alice", 100)
    pre_exploit_block = market.current_block

    market.advance_to(13)
    return market, pre_exploit_block


# =============================================================================
# USE CASE 1: HISTORICAL BALANCES
# =============================================================================

def demonstrate_history(market: Market, block: int):
    """Read supplied balances as of a past block."""
    print("=" * 70)
    print("USE CASE 1: HISTORICAL BALANCES")
    print("=" * 70)
    print(f"""
    Balances as of block {block} (current block {market.current_block}).
    Block 12 saw two transfers; only the closing balances were recorded.
    """)
    for account in market.list_accounts():
        history = market.checkpoints.checkpoints(account)
        print(f"    {account:8s} prior={market.get_prior_balance(account, block):>6}  "
              f"checkpoints={list(history)}")
    print()


# =============================================================================
# USE CASE 2: THE MIGRATION
# =============================================================================

def demonstrate_migration(source: Market) -> Tuple[Market, MigrationReport]:
    """Migrate every account into a fresh market and explain the numbers."""
    print("=" * 70)
    print("USE CASE 2: INSOLVENCY MIGRATION")
    print("=" * 70)

    repaired = Market("cUSDC-v2", admin=GOVERNANCE, verbose=True)
    report = migrate(repaired, source, source.list_accounts(), caller=GOVERNANCE,
                     require_complete=True)

    summary = report.summary
    print(f"""
    Pass 1:
        total credit   = {summary.total_positive_outlay}
        total debt     = {summary.total_negative_outlay}
        missing funds  = {summary.missing_funds}
        haircut        = {to_display(summary.haircut_mantissa)}
        multiplier     = {to_display(summary.multiplier_mantissa)}

    Pass 2:""")
    for entry in report.entries:
        if entry.is_creditor:
            print(f"        {entry.account:8s} creditor {entry.net_outlay:>5} -> "
                  f"{entry.recovered_underlying:>5} underlying ({entry.new_tokens} tokens)")
        elif entry.borrow_principal:
            print(f"        {entry.account:8s} debtor   {entry.net_outlay:>5} -> "
                  f"{entry.borrow_principal:>5} owed")
        else:
            print(f"        {entry.account:8s} wash: nothing migrated")
    print()
    return repaired, report


# =============================================================================
# USE CASE 3: LIFE AFTER MIGRATION
# =============================================================================

def demonstrate_recovery(repaired: Market, source: Market):
    """The repaired market operates normally and refuses a second migration."""
    print("=" * 70)
    print("USE CASE 3: LIFE AFTER MIGRATION")
    print("=" * 70)

    migration_block = repaired.current_block
    repaired.advance_blocks(1)
    repaired.withdraw("alice", 233)
    repaired.repay("bob", 220)

    try:
        migrate(repaired, source, source.list_accounts(), caller=GOVERNANCE)
    except AlreadyMigrated:
        print("\n    Second migration refused.")

    repaired.advance_blocks(1)
    print(f"""
    alice at migration block {migration_block}: {repaired.get_prior_balance("alice", migration_block)}
    alice now:                  {repaired.balance_of("alice")}
    bob owes:                   {repaired.borrow_balance("bob")}
    """)


def verify_totals(repaired: Market):
    """Check that market totals match the sum of positions."""
    print("=" * 70)
    print("VERIFICATION: TOTALS")
    print("=" * 70)
    result = repaired.verify_totals()
    status = "✓" if result['valid'] else "✗"
    print(f"""
    {status} total supply  {result['total_supply']} (sum {result['sum_supplied']})
    {status} total borrows {result['total_borrows']} (sum {result['sum_borrowed']})
    """)


def main():
    print()
    print("#" * 70)
    print("#  INSOLVENCY RECOVERY TUTORIAL")
    print("#" * 70)
    print()

    source, pre_exploit_block = create_drained_market()
    source.verbose = False
    print()

    demonstrate_history(source, pre_exploit_block)
    repaired, report = demonstrate_migration(source)
    demonstrate_recovery(repaired, source)
    verify_totals(repaired)

    recovered = report.plan.total_recovered_underlying
    print(f"Suppliers recovered {recovered} of {report.summary.total_positive_outlay} "
          f"({recovered * 100 // report.summary.total_positive_outlay}%), "
          f"exchange rate {report.plan.exchange_rate_mantissa // EXP_SCALE}.0")


if __name__ == "__main__":
    main()
