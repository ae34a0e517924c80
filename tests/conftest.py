"""
conftest.py - Shared pytest fixtures for lending_ledger tests

Provides common fixtures used across unit, conformance and functional tests:
- Empty markets (source side and repaired destination side)
- An insolvent market with creditors, debtors and a wash account
- A FakeMarket serving the same positions
"""

import pytest

from lending_ledger import Market

from tests.fake_market import ADMIN, INSOLVENT_POSITIONS, FakeMarket, build_market


# =============================================================================
# FIXTURES
# =============================================================================

@pytest.fixture
def market():
    """Fresh market at block 1 with a 1.0 exchange rate."""
    return Market("cTEST", admin=ADMIN, verbose=False)


@pytest.fixture
def repaired_market():
    """Clean destination market for migrations."""
    return Market("cTEST-v2", admin=ADMIN, verbose=False)


@pytest.fixture
def insolvent_market():
    """Market holding INSOLVENT_POSITIONS."""
    return build_market(INSOLVENT_POSITIONS)


@pytest.fixture
def insolvent_fake():
    """FakeMarket serving INSOLVENT_POSITIONS."""
    return FakeMarket(INSOLVENT_POSITIONS)
