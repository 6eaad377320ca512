"""
test_raffle.py - Tests for the weekly raffle

Tests:
- Cumulative-weight winner selection
- Drawing with replacement
- RaffleEngine state machine: start, tickets, funding, draw
"""

import pytest
from datetime import datetime, timedelta

from raffle_ledger import (
    Raffle, RaffleEngine, SequenceRandomSource,
    cumulative_tickets, select_winner, draw_winners,
    PreviousRaffleNotDrawn, RaffleNotFound, AlreadyDrawn, RaffleNotEnded,
    NoParticipants, InvalidAmount, ArithmeticOverflow,
    RAFFLE_DURATION, MAX_UINT256,
)

from tests.fake_store import FakeStore


NOW = datetime(2024, 1, 1)
AFTER_END = NOW + RAFFLE_DURATION


def open_raffle(tickets=None, reward=0, winners=1, raffle_id=1):
    tickets = dict(tickets or {})
    return Raffle(
        id=raffle_id,
        end_time=AFTER_END,
        number_of_winners=winners,
        total_reward_pool=reward,
        tickets=tickets,
        total_tickets=sum(tickets.values()),
    )


# =============================================================================
# PURE FUNCTION TESTS
# =============================================================================

class TestSelectWinner:
    """Tests for select_winner."""

    def setup_method(self):
        self.participants, self.cumulative = cumulative_tickets({'alice': 700, 'bob': 300})

    def test_cumulative_order(self):
        assert self.participants == ['alice', 'bob']
        assert self.cumulative == [700, 1000]

    def test_r_in_second_bucket(self):
        """r = 750 passes alice (700) and lands on bob (1000)."""
        assert select_winner(self.participants, self.cumulative, 750) == 'bob'

    def test_first_bucket_boundaries(self):
        """alice wins 0..699, bob wins from 700."""
        assert select_winner(self.participants, self.cumulative, 0) == 'alice'
        assert select_winner(self.participants, self.cumulative, 699) == 'alice'
        assert select_winner(self.participants, self.cumulative, 700) == 'bob'

    def test_r_at_total_falls_back_to_last(self):
        assert select_winner(self.participants, self.cumulative, 1000) == 'bob'

    def test_zero_ticket_participant_never_selected(self):
        participants, cumulative = cumulative_tickets({'alice': 5, 'ghost': 0, 'bob': 5})
        winners = {select_winner(participants, cumulative, r) for r in range(10)}
        assert winners == {'alice', 'bob'}

    def test_empty(self):
        with pytest.raises(ValueError):
            select_winner([], [], 0)


class TestDrawWinners:
    """Tests for draw_winners."""

    def test_repeat_winner_allowed(self):
        """Winners are drawn with replacement."""
        winners, total = draw_winners({'alice': 700, 'bob': 300}, 2, SequenceRandomSource([10, 20]))
        assert winners == ('alice', 'alice')
        assert total == 1000

    def test_capped_by_participants(self):
        source = SequenceRandomSource([0, 0, 0])
        winners, _ = draw_winners({'alice': 1}, 3, source)
        assert winners == ('alice',)
        assert source.remaining == 2


# =============================================================================
# ENGINE TESTS
# =============================================================================

class TestStartNewRaffle:
    """Tests for RaffleEngine.start_new_raffle."""

    def test_first_raffle(self):
        """Raffle ids start at 1 and end seven days out."""
        update = RaffleEngine(FakeStore()).start_new_raffle(3, NOW)
        raffle = update.new_raffle
        assert raffle.id == 1
        assert raffle.end_time == NOW + timedelta(days=7)
        assert raffle.number_of_winners == 3
        assert raffle.total_reward_pool == 0
        assert raffle.participants == []

    def test_previous_not_drawn(self):
        store = FakeStore(raffles=[open_raffle()])
        with pytest.raises(PreviousRaffleNotDrawn) as exc:
            RaffleEngine(store).start_new_raffle(1, NOW)
        assert exc.value.raffle_id == 1

    def test_after_draw(self):
        drawn = open_raffle()
        drawn.drawn = True
        update = RaffleEngine(FakeStore(raffles=[drawn])).start_new_raffle(1, NOW)
        assert update.new_raffle.id == 2

    def test_zero_winners_rejected(self):
        with pytest.raises(InvalidAmount):
            RaffleEngine(FakeStore()).start_new_raffle(0, NOW)


class TestAddTickets:
    """Tests for RaffleEngine.add_tickets."""

    def test_grant_for_open_raffle(self):
        grant = RaffleEngine(FakeStore(raffles=[open_raffle()])).add_tickets('alice', 10)
        assert (grant.raffle_id, grant.account, grant.tickets) == (1, 'alice', 10)

    def test_no_raffle(self):
        assert RaffleEngine(FakeStore()).add_tickets('alice', 10) is None

    def test_drawn_raffle(self):
        raffle = open_raffle()
        raffle.drawn = True
        assert RaffleEngine(FakeStore(raffles=[raffle])).add_tickets('alice', 10) is None

    def test_zero_tickets_not_recorded(self):
        assert RaffleEngine(FakeStore(raffles=[open_raffle()])).add_tickets('alice', 0) is None

    def test_total_overflow(self):
        store = FakeStore(raffles=[open_raffle({'alice': MAX_UINT256})])
        with pytest.raises(ArithmeticOverflow):
            RaffleEngine(store).add_tickets('bob', 1)


class TestFundCurrentRaffle:
    """Tests for RaffleEngine.fund_current_raffle."""

    def test_funds_open_raffle(self):
        funding = RaffleEngine(FakeStore(raffles=[open_raffle()])).fund_current_raffle(5)
        assert (funding.raffle_id, funding.amount) == (1, 5)

    def test_no_open_raffle(self):
        assert RaffleEngine(FakeStore()).fund_current_raffle(5) is None

    def test_zero_fee(self):
        assert RaffleEngine(FakeStore(raffles=[open_raffle()])).fund_current_raffle(0) is None


class TestDraw:
    """Tests for RaffleEngine.draw."""

    def test_weighted_draw(self):
        """r = 750 over {alice: 700, bob: 300} selects bob."""
        store = FakeStore(raffles=[open_raffle({'alice': 700, 'bob': 300}, reward=99)])
        update = RaffleEngine(store).draw(1, SequenceRandomSource([750]), AFTER_END)
        assert update.draw.winners == ('bob',)
        assert update.draw.reward_per_winner == 99
        assert update.draw.total_tickets == 1000

    def test_reward_split_floors(self):
        """Remainder of the reward pool stays undistributed."""
        store = FakeStore(raffles=[open_raffle({'alice': 1, 'bob': 1}, reward=101, winners=2)])
        update = RaffleEngine(store).draw(1, SequenceRandomSource([0, 1]), AFTER_END)
        assert update.draw.winners == ('alice', 'bob')
        assert update.draw.reward_per_winner == 50

    def test_not_ended(self):
        store = FakeStore(raffles=[open_raffle({'alice': 1})])
        with pytest.raises(RaffleNotEnded):
            RaffleEngine(store).draw(1, SequenceRandomSource([0]), AFTER_END - timedelta(seconds=1))

    def test_no_participants(self):
        with pytest.raises(NoParticipants):
            RaffleEngine(FakeStore(raffles=[open_raffle()])).draw(1, SequenceRandomSource([0]), AFTER_END)

    def test_already_drawn(self):
        raffle = open_raffle({'alice': 1})
        raffle.drawn = True
        with pytest.raises(AlreadyDrawn):
            RaffleEngine(FakeStore(raffles=[raffle])).draw(1, SequenceRandomSource([0]), AFTER_END)

    def test_unknown_raffle(self):
        with pytest.raises(RaffleNotFound):
            RaffleEngine(FakeStore()).draw(7, SequenceRandomSource([0]), AFTER_END)
