"""
market.py - Stateful Lending Market

The Market class owns every AccountPosition in one lending market and is the
only module that mutates them. It carries the three primitives the rest of
the system consumes:

    - per-account snapshots (supplied tokens, borrow balance, exchange rate)
    - an append-only borrow interest index
    - a block height clock

Key responsibilities:
    - Implements MarketView for read-only access (the migrator's source side)
    - Validates every operation before applying it (all-or-nothing)
    - Writes a balance checkpoint whenever an account's supplied tokens change
    - Receives the one-shot insolvency migration (the migrator's destination side)

Exchange rates and borrow indices are supplied from outside via
set_exchange_rate() and accrue_interest(); no rate curve lives here.
"""

from __future__ import annotations
from typing import TYPE_CHECKING, Any, Dict, List

from .checkpoints import CheckpointStore
from .core import (
    # Types
    AccountPosition, AccountSnapshot, MigrationState,
    # Constants
    EXP_SCALE, INITIAL_BORROW_INDEX, NO_ERROR,
    # Exceptions
    InsufficientBalance,
    # Helpers
    require_uint,
)
from .fixed_point import add_u, mul_scalar_truncate, scale_by_index, sub_u, to_display

if TYPE_CHECKING:
    from .migration import MigrationPlan


# Series key under which the borrow index history is checkpointed.
BORROW_INDEX_SERIES = "borrow_index"


class Market:
    """
    Single-asset lending market with historical balance checkpoints.

    Implements the MarketView protocol. Operations run to completion one at a
    time; each either applies fully or raises before touching state.

    Thread Safety:
        Not thread-safe. Each thread should maintain its own Market instance.

    Example:
        market = Market("cDAI", admin="governance", verbose=False)
        market.supply("alice", 1_000)
        market.advance_blocks(1)
        market.borrow("bob", 400)
        market.get_prior_balance("alice", market.current_block - 1)  # -> 1000
    """

    def __init__(
        self,
        name: str,
        admin: str,
        initial_exchange_rate_mantissa: int = EXP_SCALE,
        initial_block: int = 1,
        verbose: bool = True,
    ):
        """
        Create a market.

        Args:
            name: Market identifier
            admin: Account allowed to run administrative calls (migration)
            initial_exchange_rate_mantissa: Underlying per token, scaled by 1e18
            initial_block: Starting block height
            verbose: Print applied and rejected operations (default: True)
        """
        require_uint(initial_block, "initial_block")
        if require_uint(initial_exchange_rate_mantissa, "initial_exchange_rate_mantissa") == 0:
            raise ValueError("initial_exchange_rate_mantissa must be positive")
        if not admin or not admin.strip():
            raise ValueError("Market admin cannot be empty")

        self.name = name
        self.admin = admin
        self.verbose = verbose
        self.positions: Dict[str, AccountPosition] = {}
        self.checkpoints = CheckpointStore()
        self._current_block = initial_block
        self._exchange_rate_mantissa = initial_exchange_rate_mantissa
        self._borrow_index = INITIAL_BORROW_INDEX
        self._borrow_index_history = CheckpointStore()
        self._borrow_index_history.write(BORROW_INDEX_SERIES, INITIAL_BORROW_INDEX, initial_block)
        self._total_supply = 0
        self._total_borrows = 0
        self._migration_state = MigrationState.PENDING

    # ========================================================================
    # MarketView PROTOCOL IMPLEMENTATION (read-only methods)
    # ========================================================================

    def get_account_snapshot(self, account: str) -> AccountSnapshot:
        """
        Return (error, tokens, borrow balance, exchange rate) for an account.

        Unknown accounts report an empty position rather than an error.
        """
        position = self.get_position(account)
        return AccountSnapshot(
            error_code=NO_ERROR,
            supplied_tokens=position.supplied_tokens,
            borrowed_underlying=self.borrow_balance(account),
            exchange_rate_mantissa=self._exchange_rate_mantissa,
        )

    def total_supply(self) -> int:
        return self._total_supply

    def total_borrows(self) -> int:
        return self._total_borrows

    def list_accounts(self) -> List[str]:
        """List every account with a recorded position, sorted."""
        return sorted(self.positions)

    # ========================================================================
    # READS
    # ========================================================================

    @property
    def current_block(self) -> int:
        return self._current_block

    @property
    def exchange_rate_mantissa(self) -> int:
        return self._exchange_rate_mantissa

    @property
    def borrow_index(self) -> int:
        return self._borrow_index

    @property
    def migration_state(self) -> MigrationState:
        return self._migration_state

    def get_position(self, account: str) -> AccountPosition:
        """Return the account's position (an empty one if never touched)."""
        return self.positions.get(account, AccountPosition())

    def balance_of(self, account: str) -> int:
        """Supplied market tokens held by account."""
        return self.get_position(account).supplied_tokens

    def underlying_balance(self, account: str) -> int:
        """Supplied tokens converted to underlying at the current exchange rate."""
        return mul_scalar_truncate(self.balance_of(account), self._exchange_rate_mantissa)

    def borrow_balance(self, account: str) -> int:
        """
        Current borrow balance including accrued interest.

        principal * borrow_index / borrow_interest_index, or 0 with no principal.
        """
        position = self.get_position(account)
        if position.borrow_principal == 0:
            return 0
        return scale_by_index(
            position.borrow_principal,
            self._borrow_index,
            position.borrow_interest_index,
        )

    def get_prior_balance(self, account: str, block_number: int) -> int:
        """
        Supplied tokens account held as of block_number.

        Raises:
            FutureBlockQuery: If block_number is not strictly in the past
        """
        return self.checkpoints.query(account, block_number, self._current_block)

    def get_current_balance(self, account: str) -> int:
        """Latest checkpointed balance (equals balance_of for tracked accounts)."""
        return self.checkpoints.latest(account)

    def borrow_index_at(self, block_number: int) -> int:
        """
        Borrow index in effect at the end of block_number (0 before the market existed).

        Raises:
            FutureBlockQuery: If block_number is not strictly in the past
        """
        return self._borrow_index_history.query(
            BORROW_INDEX_SERIES, block_number, self._current_block
        )

    def verify_totals(self) -> Dict[str, Any]:
        """
        Check that market totals agree with the sum of account positions.

        Supply must match exactly. Borrows may differ from the market total
        by one unit of index rounding per borrower in either direction;
        anything beyond that is flagged.

        Returns:
            Dict with keys:
            - 'valid': bool
            - 'total_supply', 'sum_supplied': int
            - 'total_borrows', 'sum_borrowed': int
            - 'borrow_gap': total_borrows - sum_borrowed (negative when
              accounts owe more than the market records)
            - 'discrepancies': List[Dict] describing any mismatch
        """
        sum_supplied = sum(p.supplied_tokens for p in self.positions.values())
        borrowers = [a for a, p in self.positions.items() if p.borrow_principal]
        sum_borrowed = sum(self.borrow_balance(a) for a in borrowers)
        discrepancies = []

        if sum_supplied != self._total_supply:
            discrepancies.append({
                'field': 'total_supply',
                'expected': sum_supplied,
                'actual': self._total_supply,
            })
        borrow_gap = self._total_borrows - sum_borrowed
        if abs(borrow_gap) > len(borrowers):
            discrepancies.append({
                'field': 'total_borrows',
                'expected': sum_borrowed,
                'actual': self._total_borrows,
            })

        return {
            'valid': len(discrepancies) == 0,
            'total_supply': self._total_supply,
            'sum_supplied': sum_supplied,
            'total_borrows': self._total_borrows,
            'sum_borrowed': sum_borrowed,
            'borrow_gap': borrow_gap,
            'discrepancies': discrepancies,
        }

    # ========================================================================
    # BLOCK CLOCK
    # ========================================================================

    def advance_blocks(self, count: int = 1) -> int:
        """Move the block height forward by count. Returns the new height."""
        require_uint(count, "count")
        self._current_block += count
        return self._current_block

    def advance_to(self, block: int) -> None:
        """
        Move the block height to block.

        Raises:
            ValueError: If block is before the current block
        """
        require_uint(block, "block")
        if block < self._current_block:
            raise ValueError(
                f"Cannot move block height backwards: {block} < {self._current_block}"
            )
        self._current_block = block

    # ========================================================================
    # EXTERNAL PRIMITIVES (Mutating)
    # ========================================================================

    def set_exchange_rate(self, mantissa: int) -> None:
        """Set underlying-per-token exchange rate (scaled by 1e18)."""
        if require_uint(mantissa, "mantissa") == 0:
            raise ValueError("exchange rate must be positive")
        self._exchange_rate_mantissa = mantissa
        self._log("✓", f"exchange rate -> {to_display(mantissa)}")

    def accrue_interest(self, new_borrow_index: int) -> None:
        """
        Advance the borrow index and grow total borrows proportionally.

        The index is append-only: it may stay put but never decrease.

        Raises:
            ValueError: If new_borrow_index is below the current index
        """
        require_uint(new_borrow_index, "new_borrow_index")
        if new_borrow_index < self._borrow_index:
            self._reject(f"borrow index cannot decrease: {new_borrow_index} < {self._borrow_index}")
            raise ValueError(
                f"borrow index cannot decrease: {new_borrow_index} < {self._borrow_index}"
            )
        new_total = scale_by_index(self._total_borrows, new_borrow_index, self._borrow_index)

        self._borrow_index_history.write(BORROW_INDEX_SERIES, new_borrow_index, self._current_block)
        self._total_borrows = new_total
        self._borrow_index = new_borrow_index
        self._log("✓", f"borrow index -> {to_display(new_borrow_index)}")

    # ========================================================================
    # LEDGER OPERATIONS (Mutating)
    # ========================================================================

    def supply(self, account: str, tokens: int) -> AccountPosition:
        """Credit account with newly minted market tokens."""
        self._require_amount(tokens, "supply")
        position = self.get_position(account)
        new_supplied = add_u(position.supplied_tokens, tokens)
        new_total = add_u(self._total_supply, tokens)

        self._total_supply = new_total
        updated = self._set_supplied(account, position, new_supplied)
        self._log("✓", f"SUPPLY {account} +{tokens} tokens")
        return updated

    def withdraw(self, account: str, tokens: int) -> AccountPosition:
        """
        Burn account's market tokens.

        Raises:
            InsufficientBalance: If account holds fewer than tokens
        """
        self._require_amount(tokens, "withdraw")
        position = self.get_position(account)
        if tokens > position.supplied_tokens:
            self._reject(f"{account} withdraw {tokens} > balance {position.supplied_tokens}")
            raise InsufficientBalance(
                f"{account}: withdraw {tokens} exceeds balance {position.supplied_tokens}"
            )
        new_total = sub_u(self._total_supply, tokens)

        self._total_supply = new_total
        updated = self._set_supplied(account, position, position.supplied_tokens - tokens)
        self._log("✓", f"WITHDRAW {account} -{tokens} tokens")
        return updated

    def transfer(self, source: str, dest: str, tokens: int) -> None:
        """
        Move market tokens between accounts. Total supply is unchanged.

        Raises:
            ValueError: If source and dest are the same account
            InsufficientBalance: If source holds fewer than tokens
        """
        if source == dest:
            raise ValueError("Source and dest must be different")
        self._require_amount(tokens, "transfer")
        src_position = self.get_position(source)
        if tokens > src_position.supplied_tokens:
            self._reject(f"{source} transfer {tokens} > balance {src_position.supplied_tokens}")
            raise InsufficientBalance(
                f"{source}: transfer {tokens} exceeds balance {src_position.supplied_tokens}"
            )
        dst_position = self.get_position(dest)
        new_dst = add_u(dst_position.supplied_tokens, tokens)

        self._set_supplied(source, src_position, src_position.supplied_tokens - tokens)
        self._set_supplied(dest, dst_position, new_dst)
        self._log("✓", f"TRANSFER {tokens} tokens: {source}→{dest}")

    def borrow(self, account: str, amount: int) -> AccountPosition:
        """Add amount of underlying to account's debt at the current borrow index."""
        self._require_amount(amount, "borrow")
        new_principal = add_u(self.borrow_balance(account), amount)
        new_total = add_u(self._total_borrows, amount)

        self._total_borrows = new_total
        updated = self._set_borrow(account, new_principal)
        self._log("✓", f"BORROW {account} +{amount}")
        return updated

    def repay(self, account: str, amount: int) -> AccountPosition:
        """
        Reduce account's debt by amount of underlying.

        Raises:
            InsufficientBalance: If amount exceeds the current borrow balance
        """
        self._require_amount(amount, "repay")
        owed = self.borrow_balance(account)
        if amount > owed:
            self._reject(f"{account} repay {amount} > owed {owed}")
            raise InsufficientBalance(f"{account}: repay {amount} exceeds borrow balance {owed}")
        # Per-account balances round independently of the market total, so the
        # total may trail the sum of balances by a few units of dust.
        new_total = sub_u(self._total_borrows, min(amount, self._total_borrows))

        self._total_borrows = new_total
        updated = self._set_borrow(account, owed - amount)
        self._log("✓", f"REPAY {account} -{amount}")
        return updated

    # ========================================================================
    # MIGRATION TARGET
    # ========================================================================

    def apply_migration(self, plan: MigrationPlan) -> None:
        """
        Write a fully validated migration plan into this market.

        Migration-only: migration.migrate() calls this once the plan has
        passed every precondition. Other callers should go through migrate(),
        which owns the one-shot guard and the account checks.

        New positions and totals are computed before any of them is assigned,
        so an overflow here leaves the market untouched.
        """
        new_positions: Dict[str, AccountPosition] = {}
        supply_delta = 0
        borrow_delta = 0
        for entry in plan.entries:
            position = new_positions.get(entry.account, self.get_position(entry.account))
            supplied = add_u(position.supplied_tokens, entry.new_tokens)
            if entry.borrow_principal:
                principal = add_u(self.borrow_balance(entry.account), entry.borrow_principal)
                index = self._borrow_index
            else:
                principal = position.borrow_principal
                index = position.borrow_interest_index
            new_positions[entry.account] = AccountPosition(supplied, principal, index)
            supply_delta = add_u(supply_delta, entry.new_tokens)
            borrow_delta = add_u(borrow_delta, entry.borrow_principal)

        new_total_supply = add_u(self._total_supply, supply_delta)
        new_total_borrows = add_u(self._total_borrows, borrow_delta)

        for account, position in new_positions.items():
            old_supplied = self.get_position(account).supplied_tokens
            self.positions[account] = position
            if position.supplied_tokens != old_supplied:
                self.checkpoints.write(account, position.supplied_tokens, self._current_block)
        self._total_supply = new_total_supply
        self._total_borrows = new_total_borrows
        self._migration_state = MigrationState.COMPLETED

        summary = plan.summary
        self._log(
            "✓",
            f"MIGRATED {len(plan.entries)} accounts: haircut {to_display(summary.haircut_mantissa)}, "
            f"multiplier {to_display(summary.multiplier_mantissa)}, "
            f"+{supply_delta} tokens, +{borrow_delta} borrows",
        )

    # ========================================================================
    # INTERNALS
    # ========================================================================

    def _require_amount(self, amount: int, op: str) -> None:
        require_uint(amount, f"{op} amount")
        if amount == 0:
            raise ValueError(f"{op} amount must be positive")

    def _set_supplied(self, account: str, position: AccountPosition, supplied: int) -> AccountPosition:
        updated = AccountPosition(supplied, position.borrow_principal, position.borrow_interest_index)
        self.positions[account] = updated
        self.checkpoints.write(account, supplied, self._current_block)
        return updated

    def _set_borrow(self, account: str, principal: int) -> AccountPosition:
        position = self.get_position(account)
        index = self._borrow_index if principal else 0
        updated = AccountPosition(position.supplied_tokens, principal, index)
        self.positions[account] = updated
        return updated

    def _log(self, icon: str, message: str) -> None:
        if self.verbose:
            print(f"{icon} [{self.name}#{self._current_block}] {message}")

    def _reject(self, reason: str) -> None:
        self._log("✗", f"REJECTED: {reason}")

    # ========================================================================
    # CLONING
    # ========================================================================

    def clone(self) -> Market:
        """
        Create an independent copy of this market.

        Positions and checkpoints are frozen values, so copying the containers
        is enough for full independence.
        """
        cloned = Market.__new__(Market)
        cloned.name = self.name
        cloned.admin = self.admin
        cloned.verbose = self.verbose
        cloned.positions = dict(self.positions)
        cloned.checkpoints = self.checkpoints.clone()
        cloned._current_block = self._current_block
        cloned._exchange_rate_mantissa = self._exchange_rate_mantissa
        cloned._borrow_index = self._borrow_index
        cloned._borrow_index_history = self._borrow_index_history.clone()
        cloned._total_supply = self._total_supply
        cloned._total_borrows = self._total_borrows
        cloned._migration_state = self._migration_state
        return cloned

    def __repr__(self) -> str:
        return (
            f"Market({self.name!r}, block={self._current_block}, "
            f"supply={self._total_supply}, borrows={self._total_borrows}, "
            f"{self._migration_state.value})"
        )

