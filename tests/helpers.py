"""
helpers.py - Shared builders for raffle ledger tests
"""

from datetime import datetime

from raffle_ledger import (
    LendingService, InMemoryTransferService, SequenceRandomSource, DEFAULT_TOKEN_UNIT,
)


UNIT = DEFAULT_TOKEN_UNIT
START = datetime(2024, 1, 1)


def fund(transfers: InMemoryTransferService, account: str, asset: str, quantity: int) -> None:
    """Mint tokens to an account and approve the ledger to pull all of them."""
    transfers.mint(account, asset, quantity)
    transfers.approve(account, asset, transfers.allowance(account, asset) + quantity)


def make_service(random_values=None, **kwargs) -> LendingService:
    """Service on a fresh store and transfer book, quiet by default."""
    kwargs.setdefault("verbose", False)
    kwargs.setdefault("initial_time", START)
    kwargs.setdefault("transfers", InMemoryTransferService())
    if random_values is not None:
        kwargs["random_source"] = SequenceRandomSource(random_values)
    return LendingService(**kwargs)


def pools_ready(service: LendingService) -> LendingService:
    """Create the USDC and ETH pools used throughout the suite."""
    service.create_pool("USDC", collateral_factor=15000, borrow_rate=500)
    service.create_pool("ETH", collateral_factor=15000, borrow_rate=300)
    return service


def assert_pool_invariants(service: LendingService, asset: str) -> None:
    """Totals match the records, borrows never exceed deposits, utilization is derived."""
    pool = service.get_pool(asset)
    store = service.store
    deposits = sum(d.amount for (_, a), d in store.deposits.items() if a == asset)
    borrows = sum(b.amount for (_, a), b in store.borrows.items() if a == asset)
    assert pool.total_deposits == deposits
    assert pool.total_borrows == borrows
    assert pool.total_borrows <= pool.total_deposits
    expected = 0 if pool.total_deposits == 0 else pool.total_borrows * 10000 // pool.total_deposits
    assert pool.utilization_rate == expected
