"""
test_lending_scenarios.py - End-to-end lending and raffle scenarios

Each test drives LendingService through a full user story with real
transfers on an InMemoryTransferService:
- Pool creation and first deposit
- Collateralized borrow and utilization
- A year of interest and repayment funding the raffle
- Raffle lifecycle: start, tickets, draw, next raffle
"""

import pytest
from datetime import timedelta

from raffle_ledger import (
    InsufficientCollateral, PreviousRaffleNotDrawn, AlreadyDrawn, RaffleNotEnded,
    NoParticipants, PoolNotActive, LEDGER_ACCOUNT, RAFFLE_DURATION,
    SequenceRandomSource,
)

from tests.helpers import UNIT, assert_pool_invariants, fund, make_service, pools_ready


YEAR = timedelta(days=365)


class TestLendingScenarios:
    """Deposit, borrow and repay stories."""

    def test_first_deposit(self, lending):
        """1000 USDC on day zero earns 1000 tickets; nothing is lent."""
        tickets = lending.deposit("alice", "USDC", 1000 * UNIT)
        assert tickets == 1000

        pool = lending.get_pool("USDC")
        assert pool.total_deposits == 1000 * UNIT
        assert pool.utilization_rate == 0
        assert lending.transfers.balance_of(LEDGER_ACCOUNT, "USDC") == 1000 * UNIT

        info = lending.get_user_deposit_info("alice", "USDC")
        assert info.amount == 1000 * UNIT
        assert info.raffle_tickets == 1000
        assert info.deposit_time == lending.current_time

    def test_borrow_half_the_pool(self, lending):
        """750 ETH secures 500 USDC; the pool is 50% utilized."""
        lending.deposit("alice", "USDC", 1000 * UNIT)
        lending.borrow("bob", "USDC", 500 * UNIT, "ETH", 750 * UNIT)

        pool = lending.get_pool("USDC")
        assert pool.total_borrows == 500 * UNIT
        assert pool.utilization_rate == 5000
        assert lending.transfers.balance_of("bob", "USDC") == 500 * UNIT
        assert lending.transfers.balance_of(LEDGER_ACCOUNT, "ETH") == 750 * UNIT

    def test_undercollateralized_borrow(self, lending):
        lending.deposit("alice", "USDC", 1000 * UNIT)
        with pytest.raises(InsufficientCollateral) as exc:
            lending.borrow("bob", "USDC", 500 * UNIT, "ETH", 700 * UNIT)
        assert (exc.value.required, exc.value.provided) == (750 * UNIT, 700 * UNIT)

    def test_one_year_of_interest(self, lending):
        """500 USDC at 500 bps for 365 days accrues 25 USDC."""
        lending.deposit("alice", "USDC", 1000 * UNIT)
        lending.borrow("bob", "USDC", 500 * UNIT, "ETH", 750 * UNIT)
        lending.advance_time(lending.current_time + YEAR)

        assert lending.calculate_borrow_interest("bob", "USDC") == 25 * UNIT
        info = lending.get_user_borrow_info("bob", "USDC")
        assert info.interest_accrued == 25 * UNIT
        assert info.total_debt == 525 * UNIT
        assert info.collateral_asset == "ETH"

    def test_full_repayment_funds_raffle(self, lending_with_raffle, transfers):
        """Repaying debt returns collateral and sends 10% of interest to the raffle."""
        service = lending_with_raffle
        service.deposit("alice", "USDC", 1000 * UNIT)
        service.borrow("bob", "USDC", 500 * UNIT, "ETH", 750 * UNIT)
        service.advance_time(service.current_time + YEAR)

        fund(transfers, "bob", "USDC", 25 * UNIT)
        transfers.approve("bob", "USDC", 525 * UNIT)
        breakdown = service.repay("bob", "USDC", 525 * UNIT)

        assert breakdown.interest == 25 * UNIT
        assert breakdown.protocol_fee == 25 * UNIT // 10
        assert service.get_raffle_info(1).total_reward_pool == 25 * UNIT // 10

        info = service.get_user_borrow_info("bob", "USDC")
        assert info.amount == 0
        assert info.collateral_amount == 0
        assert info.collateral_asset is None
        assert transfers.balance_of("bob", "ETH") == 10_000 * UNIT
        assert service.get_pool("USDC").total_borrows == 0
        assert transfers.balance_of(LEDGER_ACCOUNT, "USDC") == 1025 * UNIT

    def test_dust_repayments_do_not_clear_interest(self, lending_with_raffle, transfers):
        """Repaying 1 smallest unit leaves the year's interest owed."""
        service = lending_with_raffle
        service.deposit("alice", "USDC", 1000 * UNIT)
        service.borrow("bob", "USDC", 500 * UNIT, "ETH", 750 * UNIT)
        service.advance_time(service.current_time + YEAR)
        transfers.approve("bob", "USDC", 3)

        for _ in range(3):
            breakdown = service.repay("bob", "USDC", 1)
            assert breakdown.interest_paid == 1
            assert service.calculate_borrow_interest("bob", "USDC") == 25 * UNIT

        assert service.get_user_borrow_info("bob", "USDC").amount == 500 * UNIT
        assert service.get_raffle_info(1).total_reward_pool == 0

    def test_partial_then_full_repayment(self, lending):
        """Collateral comes back in step with retired principal."""
        lending.deposit("carol", "ETH", 2000 * UNIT)
        lending.deposit("alice", "USDC", 1000 * UNIT)
        lending.borrow("carol", "USDC", 100 * UNIT, "ETH", 150 * UNIT)
        lending.repay("carol", "USDC", 40 * UNIT)

        info = lending.get_user_borrow_info("carol", "USDC")
        assert info.amount == 60 * UNIT
        assert info.collateral_amount == 90 * UNIT

        lending.repay("carol", "USDC", 60 * UNIT)
        assert lending.get_user_borrow_info("carol", "USDC").collateral_asset is None
        assert_pool_invariants(lending, "USDC")
        assert_pool_invariants(lending, "ETH")

    def test_paused_pool(self, lending):
        """Deposits stop when a pool is paused; withdrawals continue."""
        lending.deposit("alice", "USDC", 100 * UNIT)
        lending.set_pool_active("USDC", False)
        with pytest.raises(PoolNotActive):
            lending.deposit("alice", "USDC", 100 * UNIT)
        lending.withdraw("alice", "USDC", 100 * UNIT)
        assert lending.transfers.balance_of("alice", "USDC") == 10_000 * UNIT


class TestRaffleScenarios:
    """Raffle lifecycle stories."""

    def test_second_raffle_while_first_open(self, lending):
        assert lending.start_new_raffle(1) == 1
        with pytest.raises(PreviousRaffleNotDrawn):
            lending.start_new_raffle(1)

    def test_weighted_draw_selects_bob(self, transfers):
        """{alice: 700, bob: 300} with r = 750 picks bob."""
        service = pools_ready(make_service(transfers=transfers, random_values=[750]))
        fund(transfers, "alice", "USDC", 700 * UNIT)
        fund(transfers, "bob", "USDC", 300 * UNIT)
        raffle_id = service.start_new_raffle(1)
        service.deposit("alice", "USDC", 700 * UNIT)
        service.deposit("bob", "USDC", 300 * UNIT)

        assert service.get_participants(raffle_id) == ["alice", "bob"]
        service.advance_time(service.current_time + RAFFLE_DURATION)
        winners, reward = service.draw_raffle(raffle_id)

        assert winners == ["bob"]
        assert reward == 0
        assert service.get_raffle_winners(raffle_id) == ["bob"]
        assert service.get_raffle_info(raffle_id).drawn

    def test_full_raffle_cycle(self, lending):
        """Draw, reject a second draw, then open the next raffle."""
        lending.random_source = SequenceRandomSource([0])
        lending.start_new_raffle(1)
        lending.deposit("alice", "USDC", 10 * UNIT)

        with pytest.raises(RaffleNotEnded):
            lending.draw_raffle(1)
        lending.advance_time(lending.current_time + RAFFLE_DURATION)
        assert lending.draw_raffle(1) == (["alice"], 0)
        with pytest.raises(AlreadyDrawn):
            lending.draw_raffle(1)

        assert lending.start_new_raffle(2) == 2
        assert lending.current_raffle_id == 2
        lending.deposit("alice", "USDC", 5 * UNIT)
        assert lending.get_participant_tickets(2, "alice") == 5
        assert lending.get_participant_tickets(1, "alice") == 10

    def test_empty_raffle_cannot_be_drawn(self, lending):
        lending.start_new_raffle(1)
        lending.advance_time(lending.current_time + RAFFLE_DURATION)
        with pytest.raises(NoParticipants):
            lending.draw_raffle(1)

    def test_deposits_without_raffle_still_earn_record_tickets(self, lending):
        """With no raffle open, tickets land on the deposit record only."""
        assert lending.deposit("alice", "USDC", 3 * UNIT) == 3
        assert lending.current_raffle_id == 0
        assert lending.get_user_deposit_info("alice", "USDC").raffle_tickets == 3

    def test_withdraw_does_not_touch_raffle_tickets(self, lending_with_raffle):
        service = lending_with_raffle
        service.deposit("alice", "USDC", 100 * UNIT)
        service.withdraw("alice", "USDC", 100 * UNIT)
        assert service.get_participant_tickets(1, "alice") == 100
        assert service.get_user_deposit_info("alice", "USDC").raffle_tickets == 0
