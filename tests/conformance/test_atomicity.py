"""
Atomicity Conformance Tests

INVARIANT: Operations are all-or-nothing.

    ∀ operation O:
        O succeeds ⟹ every record change and every transfer of O is applied
        O fails ⟹ no record changes and no transfers of O are applied

Components only describe changes; the store commits them after the
transfer batch succeeds, so partial application is impossible by
construction.
"""

import pytest
from hypothesis import given, settings
from hypothesis import strategies as st

from raffle_ledger import (
    LedgerError, TransferFailed, InsufficientCollateral, InsufficientLiquidity,
    AmountExceedsDebt, InsufficientBalance,
)

from tests.helpers import UNIT, fund, make_service, pools_ready


def snapshot(service):
    """State hash, audit trail length and every transfer balance."""
    balances = {
        (account, asset): qty
        for account, assets in service.transfers.balances.items()
        for asset, qty in assets.items()
        if qty
    }
    return service.store.state_hash(), len(service.store.operation_log), balances


class TestAtomicityProperties:
    """Property-based atomicity tests."""

    @given(
        deposit=st.integers(min_value=1, max_value=10_000),
        borrow=st.integers(min_value=1, max_value=20_000),
        collateral=st.integers(min_value=0, max_value=40_000),
    )
    @settings(max_examples=60, deadline=None)
    def test_borrow_all_or_nothing(self, deposit, borrow, collateral):
        """
        PROPERTY: A borrow either applies fully or leaves no trace.
        """
        service = pools_ready(make_service())
        fund(service.transfers, "alice", "USDC", deposit * UNIT)
        fund(service.transfers, "bob", "ETH", 20_000 * UNIT)
        service.deposit("alice", "USDC", deposit * UNIT)

        before = snapshot(service)
        try:
            service.borrow("bob", "USDC", borrow * UNIT, "ETH", collateral * UNIT)
        except LedgerError:
            assert snapshot(service) == before
        else:
            info = service.get_user_borrow_info("bob", "USDC")
            assert info.amount == borrow * UNIT
            assert service.transfers.balance_of("bob", "USDC") == borrow * UNIT
            assert service.transfers.balance_of("bob", "ETH") == (20_000 - collateral) * UNIT

    @given(st.integers(min_value=1, max_value=2_000))
    @settings(max_examples=40, deadline=None)
    def test_withdraw_all_or_nothing(self, amount):
        """
        PROPERTY: A withdrawal either applies fully or leaves no trace.
        """
        service = pools_ready(make_service())
        fund(service.transfers, "alice", "USDC", 1_000 * UNIT)
        fund(service.transfers, "bob", "ETH", 1_000 * UNIT)
        service.deposit("alice", "USDC", 1_000 * UNIT)
        service.borrow("bob", "USDC", 400 * UNIT, "ETH", 600 * UNIT)

        before = snapshot(service)
        try:
            service.withdraw("alice", "USDC", amount * UNIT)
        except (InsufficientBalance, InsufficientLiquidity):
            assert amount > 600
            assert snapshot(service) == before
        else:
            assert amount <= 600
            assert service.get_user_deposit_info("alice", "USDC").amount == (1_000 - amount) * UNIT


class TestAtomicityExamples:
    """Explicit atomicity examples."""

    def test_transfer_failure_rolls_back_deposit(self):
        """Missing allowance rejects the deposit before any record changes."""
        service = pools_ready(make_service())
        service.start_new_raffle(1)
        service.transfers.mint("alice", "USDC", 100 * UNIT)

        before = snapshot(service)
        with pytest.raises(TransferFailed):
            service.deposit("alice", "USDC", 100 * UNIT)
        assert snapshot(service) == before
        assert service.get_participant_tickets(1, "alice") == 0
        assert service.get_pool("USDC").total_deposits == 0

    def test_transfer_failure_rolls_back_borrow(self):
        """Collateral without allowance: no collateral pulled, nothing lent."""
        service = pools_ready(make_service())
        fund(service.transfers, "alice", "USDC", 1_000 * UNIT)
        service.deposit("alice", "USDC", 1_000 * UNIT)
        service.transfers.mint("bob", "ETH", 750 * UNIT)

        with pytest.raises(TransferFailed):
            service.borrow("bob", "USDC", 500 * UNIT, "ETH", 750 * UNIT)
        assert service.get_pool("USDC").total_borrows == 0
        assert service.transfers.balance_of("bob", "USDC") == 0
        assert service.transfers.balance_of("bob", "ETH") == 750 * UNIT

    def test_failed_repay_does_not_fund_raffle(self):
        """A rejected repayment adds nothing to the reward pool."""
        service = pools_ready(make_service())
        fund(service.transfers, "alice", "USDC", 1_000 * UNIT)
        fund(service.transfers, "bob", "ETH", 750 * UNIT)
        service.deposit("alice", "USDC", 1_000 * UNIT)
        service.borrow("bob", "USDC", 500 * UNIT, "ETH", 750 * UNIT)
        service.start_new_raffle(1)
        service.advance_time(service.current_time.replace(year=service.current_time.year + 1))

        with pytest.raises(AmountExceedsDebt):
            service.repay("bob", "USDC", 10_000 * UNIT)
        with pytest.raises(TransferFailed):
            # bob holds 500 USDC and never approved the ledger for USDC
            service.repay("bob", "USDC", 100 * UNIT)
        assert service.get_raffle_info(1).total_reward_pool == 0
        assert service.get_user_borrow_info("bob", "USDC").amount == 500 * UNIT

    def test_insufficient_collateral_leaves_no_record(self):
        service = pools_ready(make_service())
        fund(service.transfers, "alice", "USDC", 1_000 * UNIT)
        service.deposit("alice", "USDC", 1_000 * UNIT)
        with pytest.raises(InsufficientCollateral):
            service.borrow("bob", "USDC", 500 * UNIT, "ETH", 700 * UNIT)
        assert service.store.get_borrow("bob", "USDC") is None
