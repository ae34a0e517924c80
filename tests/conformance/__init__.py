"""
Conformance Test Suite

This suite defines the NORMATIVE behavior of lending_ledger.
Any compliant implementation MUST pass these tests.

The tests are organized by invariant:
1. conservation.py - Debt carried over exactly, credit scaled by one multiplier
2. atomicity.py - Failed operations and migrations leave no trace
3. idempotency.py - Migration happens at most once per destination
4. determinism.py - Identical inputs give identical migrations
5. temporal.py - Checkpoint lookups agree with a linear scan of history

These tests use hypothesis for property-based testing.
"""
