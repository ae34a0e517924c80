"""
Temporal Conformance Tests

INVARIANT: A historical query returns the value in force at the end of the
queried block, and only finalized blocks may be queried.

    ∀ account a, block b < current_block:
        query(a, b) = value written by the last write to a at a block <= b
                      (0 if there is none)

This ensures:
- Binary search agrees with a linear scan for every history and every block
- Each block contributes at most one checkpoint per account
- The present and future are never observable through query()
"""

import pytest
from hypothesis import given, settings
from hypothesis import strategies as st

from lending_ledger import (
    Checkpoint, CheckpointStore, Market, binary_lookup, linear_lookup,
    FutureBlockQuery, CheckpointOrderViolation,
)

from tests.fake_market import ADMIN


# =============================================================================
# STRATEGIES FOR PROPERTY-BASED TESTING
# =============================================================================

@st.composite
def checkpoint_sequence(draw, max_size: int = 12):
    """Generate a strictly ascending checkpoint sequence."""
    blocks = draw(st.lists(st.integers(min_value=0, max_value=200), unique=True, max_size=max_size))
    return tuple(
        Checkpoint(block, draw(st.integers(min_value=0, max_value=10**24)))
        for block in sorted(blocks)
    )


@st.composite
def write_sequence(draw):
    """Generate (block, value) writes with non-decreasing blocks, repeats allowed."""
    steps = draw(st.lists(
        st.tuples(st.integers(min_value=0, max_value=3), st.integers(min_value=0, max_value=10**6)),
        max_size=20,
    ))
    writes = []
    block = 1
    for advance, value in steps:
        block += advance
        writes.append((block, value))
    return writes


@st.composite
def balance_operations(draw):
    """Generate (blocks_to_advance, op, account, other, amount) tuples."""
    accounts = ["alice", "bob", "carol"]
    return draw(st.lists(
        st.tuples(
            st.integers(min_value=0, max_value=3),
            st.sampled_from(["supply", "withdraw", "transfer"]),
            st.sampled_from(accounts),
            st.sampled_from(accounts),
            st.integers(min_value=1, max_value=1000),
        ),
        max_size=25,
    ))


class TestCheckpointLookupProperties:
    """Property-based lookup tests."""

    @given(checkpoint_sequence(max_size=4))
    @settings(max_examples=50)
    def test_binary_matches_linear_short_histories(self, sequence):
        """
        PROPERTY: For 0 to 4 checkpoints, binary search equals a linear scan
        at every block, including before the first and after the last.
        """
        for block in range(0, 206):
            assert binary_lookup(sequence, block) == linear_lookup(sequence, block)

    @given(checkpoint_sequence(max_size=40), st.integers(min_value=0, max_value=300))
    @settings(max_examples=50)
    def test_binary_matches_linear_long_histories(self, sequence, block):
        """
        PROPERTY: Binary search equals a linear scan on longer histories.
        """
        assert binary_lookup(sequence, block) == linear_lookup(sequence, block)

    @given(write_sequence())
    @settings(max_examples=50)
    def test_one_checkpoint_per_block(self, writes):
        """
        PROPERTY: Repeated writes in a block collapse to one checkpoint
        holding the last value written in that block.
        """
        store = CheckpointStore()
        last_in_block = {}
        for block, value in writes:
            store.write("alice", value, current_block=block)
            last_in_block[block] = value

        stored = store.checkpoints("alice")
        assert [cp.from_block for cp in stored] == sorted(last_in_block)
        assert all(cp.value == last_in_block[cp.from_block] for cp in stored)

    @given(write_sequence(), st.integers(min_value=0, max_value=20))
    @settings(max_examples=50)
    def test_present_and_future_never_observable(self, writes, offset):
        """
        PROPERTY: Any block at or after current_block is rejected.
        """
        store = CheckpointStore()
        for block, value in writes:
            store.write("alice", value, current_block=block)
        current = writes[-1][0] if writes else 1

        with pytest.raises(FutureBlockQuery):
            store.query("alice", current + offset, current_block=current)

    @given(checkpoint_sequence(max_size=8))
    @settings(max_examples=50)
    def test_zero_before_first_checkpoint(self, sequence):
        """
        PROPERTY: Every block before the first checkpoint reads as 0.
        """
        if not sequence:
            return
        for block in range(0, sequence[0].from_block):
            assert binary_lookup(sequence, block) == 0


class TestMarketHistoryProperties:
    """Balance history through Market operations."""

    @given(balance_operations())
    @settings(max_examples=50)
    def test_prior_balance_matches_end_of_block_model(self, operations):
        """
        PROPERTY: get_prior_balance(a, b) equals a's balance at the end of
        block b, for every account and every finalized block.
        """
        market = Market("cTEST", admin=ADMIN, verbose=False)
        balances = {}
        history = {}

        for advance, op, account, other, amount in operations:
            market.advance_blocks(advance)
            held = balances.get(account, 0)
            if op == "supply":
                market.supply(account, amount)
                balances[account] = held + amount
            elif op == "withdraw":
                if held == 0:
                    continue
                amount = min(amount, held)
                market.withdraw(account, amount)
                balances[account] = held - amount
            else:
                if held == 0 or other == account:
                    continue
                amount = min(amount, held)
                market.transfer(account, other, amount)
                balances[account] = held - amount
                balances[other] = balances.get(other, 0) + amount
                history.setdefault(other, {})[market.current_block] = balances[other]
            history.setdefault(account, {})[market.current_block] = balances[account]

        market.advance_blocks(1)
        for account, by_block in history.items():
            for block in range(0, market.current_block):
                written = [b for b in by_block if b <= block]
                expected = by_block[max(written)] if written else 0
                assert market.get_prior_balance(account, block) == expected


class TestCheckpointExamples:
    """Explicit temporal examples."""

    def test_write_into_the_past_rejected(self):
        store = CheckpointStore()
        store.write("alice", 5, current_block=10)
        with pytest.raises(CheckpointOrderViolation):
            store.write("alice", 6, current_block=3)

    def test_history_survives_later_writes(self):
        store = CheckpointStore()
        store.write("alice", 100, current_block=10)
        store.write("alice", 0, current_block=20)
        assert store.query("alice", 15, current_block=30) == 100
        assert store.query("alice", 20, current_block=30) == 0

    def test_block_clock_only_moves_forward(self):
        market = Market("cTEST", admin=ADMIN, verbose=False)
        market.advance_to(10)
        with pytest.raises(ValueError):
            market.advance_to(9)
        assert market.current_block == 10
