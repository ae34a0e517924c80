"""
checkpoints.py - Historical balance checkpoints

Stores, per account, an append-only sequence of (from_block, value) pairs and
answers "what was this account's value as of block N".

Sequence invariants:
    - Strictly ascending by from_block (no duplicate block heights)
    - A second write in the same block overwrites the trailing entry
    - Entries are never deleted; superseded entries are read-only

Lookups:
    - binary_lookup(): O(log n) search with an O(1) fast path for the latest
      entry. This is what CheckpointStore.query() uses.
    - linear_lookup(): reference scan, newest to oldest. binary_lookup()
      must agree with it for every sequence and every block.
"""

from __future__ import annotations
from bisect import bisect_right
from dataclasses import dataclass
from typing import Dict, List, Sequence, Set, Tuple

from .core import CheckpointOrderViolation, FutureBlockQuery, require_uint


@dataclass(frozen=True, slots=True)
class Checkpoint:
    """A value that takes effect from a given block height onwards."""
    from_block: int
    value: int

    def __post_init__(self):
        require_uint(self.from_block, "from_block")
        require_uint(self.value, "value")

    def __repr__(self) -> str:
        return f"Checkpoint(#{self.from_block}: {self.value})"


# ============================================================================
# PURE LOOKUPS
# ============================================================================

def linear_lookup(checkpoints: Sequence[Checkpoint], block_number: int) -> int:
    """
    Walk checkpoints newest to oldest and return the first value whose
    from_block is at or before block_number, or 0 if there is none.
    """
    for checkpoint in reversed(checkpoints):
        if checkpoint.from_block <= block_number:
            return checkpoint.value
    return 0


def binary_lookup(checkpoints: Sequence[Checkpoint], block_number: int) -> int:
    """
    Return the value of the checkpoint with the greatest from_block that is
    <= block_number, or 0 if block_number precedes every checkpoint.

    Assumes checkpoints are strictly ascending by from_block.
    """
    if not checkpoints:
        return 0

    # Most queries target the present: check the latest entry first
    if checkpoints[-1].from_block <= block_number:
        return checkpoints[-1].value

    if checkpoints[0].from_block > block_number:
        return 0

    idx = bisect_right(checkpoints, block_number, key=lambda cp: cp.from_block)
    return checkpoints[idx - 1].value


# ============================================================================
# STORE
# ============================================================================

class CheckpointStore:
    """
    Per-account checkpoint sequences.

    The store does not own a clock: callers pass the current block to
    write() and query(). Market does this with its own block height.

    Example:
        store = CheckpointStore()
        store.write("alice", 100, current_block=10)
        store.write("alice", 250, current_block=15)
        store.query("alice", 12, current_block=20)   # -> 100
        store.query("alice", 9, current_block=20)    # -> 0
    """

    def __init__(self):
        self._checkpoints: Dict[str, List[Checkpoint]] = {}

    def write(self, account: str, new_value: int, current_block: int) -> Checkpoint:
        """
        Record new_value for account as of current_block.

        Overwrites the trailing checkpoint when it was written in the same
        block, otherwise appends a new one.

        Returns:
            The checkpoint now holding new_value

        Raises:
            CheckpointOrderViolation: If current_block precedes the account's
                latest checkpoint
        """
        require_uint(new_value, "new_value")
        require_uint(current_block, "current_block")
        sequence = self._checkpoints.setdefault(account, [])

        if sequence:
            last = sequence[-1]
            if current_block < last.from_block:
                raise CheckpointOrderViolation(
                    f"{account}: write at block {current_block} precedes "
                    f"latest checkpoint at block {last.from_block}"
                )
            if last.from_block == current_block:
                sequence[-1] = Checkpoint(current_block, new_value)
                return sequence[-1]

        checkpoint = Checkpoint(current_block, new_value)
        sequence.append(checkpoint)
        return checkpoint

    def query(self, account: str, block_number: int, current_block: int) -> int:
        """
        Return account's value as of block_number.

        Only finalized blocks may be queried: block_number must be strictly
        less than current_block.

        Raises:
            FutureBlockQuery: If block_number >= current_block
        """
        require_uint(block_number, "block_number")
        if block_number >= current_block:
            raise FutureBlockQuery(
                f"block {block_number} not yet determined (current block {current_block})"
            )
        return binary_lookup(self._checkpoints.get(account, ()), block_number)

    def latest(self, account: str) -> int:
        """Return account's most recent value (0 if it has no checkpoints)."""
        sequence = self._checkpoints.get(account)
        return sequence[-1].value if sequence else 0

    def num_checkpoints(self, account: str) -> int:
        return len(self._checkpoints.get(account, ()))

    def checkpoints(self, account: str) -> Tuple[Checkpoint, ...]:
        """Return an immutable copy of account's checkpoint sequence."""
        return tuple(self._checkpoints.get(account, ()))

    def accounts(self) -> Set[str]:
        return set(self._checkpoints)

    def clone(self) -> CheckpointStore:
        """Create an independent copy. Checkpoints are frozen, so lists are copied shallowly."""
        cloned = CheckpointStore()
        cloned._checkpoints = {
            account: list(sequence) for account, sequence in self._checkpoints.items()
        }
        return cloned

    def __repr__(self) -> str:
        total = sum(len(seq) for seq in self._checkpoints.values())
        return f"CheckpointStore({len(self._checkpoints)} accounts, {total} checkpoints)"
