"""
conftest.py - Shared pytest fixtures for raffle ledger tests

Provides common fixtures used across unit, conformance and functional tests:
- Empty stores and services
- Services with USDC/ETH pools and funded, approved accounts
- Services with an open raffle
"""

import pytest

from raffle_ledger import LedgerStore, InMemoryTransferService

from tests.helpers import UNIT, fund, make_service, pools_ready


@pytest.fixture
def store():
    """Open, quiet store; closed at teardown."""
    with LedgerStore(verbose=False) as s:
        yield s


@pytest.fixture
def transfers():
    return InMemoryTransferService()


@pytest.fixture
def service(transfers):
    """Service with no pools."""
    return make_service(transfers=transfers)


@pytest.fixture
def lending(transfers):
    """
    Service with USDC and ETH pools and funded accounts.

    alice: 10,000 USDC
    bob:   10,000 ETH
    carol: 10,000 USDC and 10,000 ETH
    """
    svc = pools_ready(make_service(transfers=transfers))
    fund(transfers, "alice", "USDC", 10_000 * UNIT)
    fund(transfers, "bob", "ETH", 10_000 * UNIT)
    fund(transfers, "carol", "USDC", 10_000 * UNIT)
    fund(transfers, "carol", "ETH", 10_000 * UNIT)
    return svc


@pytest.fixture
def lending_with_raffle(lending):
    """lending plus an open one-winner raffle."""
    lending.start_new_raffle(1)
    return lending
