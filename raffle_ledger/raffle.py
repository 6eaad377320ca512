"""
raffle.py - Weekly weighted raffle

=== STATE MACHINE ===

    Open -> Drawn (terminal)

Exactly one raffle is current. A new raffle can only start once the
current one is drawn. While a raffle is open:
    - every deposit credits the depositor's earned tickets
    - every repayment adds its protocol fee to the reward pool

=== WINNER SELECTION ===

For each winner slot, draw r uniformly from [0, total_tickets) and scan
participants in first-contribution order, accumulating ticket counts.
The winner is the first participant whose cumulative count exceeds r
(the last participant if r is not below the total).

Winners are drawn with replacement: a participant's tickets stay in the
pool after they win, so the same account can win several slots.

The scan is done with prefix sums and bisect_right, which returns the
same participant as the linear scan in O(log n) per slot.
"""

from __future__ import annotations
from bisect import bisect_right
from datetime import datetime
from itertools import accumulate
from typing import List, Mapping, Optional, Sequence, Tuple

from .core import (
    Raffle, PendingUpdate, TicketGrant, RewardFunding, DrawResult,
    RAFFLE_DURATION, NO_RAFFLE,
    AlreadyDrawn, NoParticipants, PreviousRaffleNotDrawn, RaffleNotEnded, RaffleNotFound,
    require_positive,
)
from .fixed_point import checked_add
from .randomness import RandomSource


# =============================================================================
# PURE FUNCTIONS
# =============================================================================

def cumulative_tickets(tickets: Mapping[str, int]) -> Tuple[List[str], List[int]]:
    """
    Participants in stored order with their running ticket totals.

    Example:
        cumulative_tickets({'alice': 700, 'bob': 300})
        -> (['alice', 'bob'], [700, 1000])
    """
    participants = list(tickets)
    return participants, list(accumulate(tickets[p] for p in participants))


def select_winner(participants: Sequence[str], cumulative: Sequence[int], r: int) -> str:
    """
    Pick the first participant whose cumulative ticket count exceeds r.

    Args:
        participants: Participants in first-contribution order
        cumulative: Running ticket totals aligned with participants
        r: Random value in [0, total)

    Returns:
        The selected participant; the last one if r >= total.

    Example:
        select_winner(['alice', 'bob'], [700, 1000], 750) == 'bob'
    """
    if not participants:
        raise ValueError("Cannot select a winner from no participants")
    index = bisect_right(cumulative, r)
    if index >= len(participants):
        return participants[-1]
    return participants[index]


def draw_winners(
    tickets: Mapping[str, int],
    number_of_winners: int,
    random_source: RandomSource,
) -> Tuple[Tuple[str, ...], int]:
    """
    Draw min(number_of_winners, participant count) winners with replacement.

    Returns:
        (winners in draw order, total tickets)
    """
    participants, cumulative = cumulative_tickets(tickets)
    total = cumulative[-1] if cumulative else 0
    winners_count = min(number_of_winners, len(participants))
    winners = []
    for _ in range(winners_count):
        r = random_source.uniform(0, total)
        winners.append(select_winner(participants, cumulative, r))
    return tuple(winners), total


# =============================================================================
# RAFFLE ENGINE
# =============================================================================

class RaffleEngine:
    """Manages the current raffle and the history of drawn raffles."""

    def __init__(self, store):
        self.store = store

    def get(self, raffle_id: int) -> Raffle:
        raffle = self.store.get_raffle(raffle_id)
        if raffle is None:
            raise RaffleNotFound(raffle_id)
        return raffle

    def current(self) -> Optional[Raffle]:
        """The current raffle, or None before the first raffle starts."""
        if self.store.current_raffle_id == NO_RAFFLE:
            return None
        return self.store.get_raffle(self.store.current_raffle_id)

    def open_raffle(self) -> Optional[Raffle]:
        """The current raffle if it still accepts tickets and fees."""
        raffle = self.current()
        if raffle is None or raffle.drawn:
            return None
        return raffle

    def start_new_raffle(self, number_of_winners: int, now: datetime) -> PendingUpdate:
        """
        Prepare a new raffle ending RAFFLE_DURATION from now.

        Raises:
            InvalidAmount: If number_of_winners < 1.
            PreviousRaffleNotDrawn: If the current raffle is still open.
        """
        require_positive(number_of_winners, "number_of_winners")
        current = self.current()
        if current is not None and not current.drawn:
            raise PreviousRaffleNotDrawn(current.id)

        raffle = Raffle(
            id=self.store.raffle_counter + 1,
            end_time=now + RAFFLE_DURATION,
            number_of_winners=number_of_winners,
        )
        return PendingUpdate(
            operation="start_raffle",
            timestamp=now,
            new_raffle=raffle,
            details={'raffle_id': raffle.id, 'end_time': raffle.end_time,
                     'number_of_winners': number_of_winners},
        )

    def add_tickets(self, account: str, tickets_earned: int) -> Optional[TicketGrant]:
        """
        Credit tickets to the open raffle.

        Returns None when no raffle is open or nothing was earned; a
        participant is only recorded once they hold at least one ticket.
        """
        raffle = self.open_raffle()
        if raffle is None or tickets_earned <= 0:
            return None
        # Validate now so commit cannot overflow
        checked_add(raffle.total_tickets, tickets_earned)
        checked_add(raffle.tickets.get(account, 0), tickets_earned)
        return TicketGrant(raffle_id=raffle.id, account=account, tickets=tickets_earned)

    def fund_current_raffle(self, amount: int) -> Optional[RewardFunding]:
        """Add a protocol fee to the open raffle's reward pool, if there is one."""
        raffle = self.open_raffle()
        if raffle is None or amount <= 0:
            return None
        checked_add(raffle.total_reward_pool, amount)
        return RewardFunding(raffle_id=raffle.id, amount=amount)

    def draw(self, raffle_id: int, random_source: RandomSource, now: datetime) -> PendingUpdate:
        """
        Prepare the draw of a raffle.

        Raises:
            RaffleNotFound: If the id was never allocated.
            AlreadyDrawn: If the raffle was drawn before.
            RaffleNotEnded: If now is before the raffle's end time.
            NoParticipants: If no tickets were credited.
        """
        raffle = self.get(raffle_id)
        if raffle.drawn:
            raise AlreadyDrawn(raffle_id)
        if now < raffle.end_time:
            raise RaffleNotEnded(raffle_id, raffle.end_time, now)
        if not raffle.tickets or raffle.total_tickets == 0:
            raise NoParticipants(raffle_id)

        winners, total = draw_winners(raffle.tickets, raffle.number_of_winners, random_source)
        reward_per_winner = raffle.total_reward_pool // len(winners)
        result = DrawResult(
            raffle_id=raffle_id,
            winners=winners,
            reward_per_winner=reward_per_winner,
            total_tickets=total,
        )
        return PendingUpdate(
            operation="draw_raffle",
            timestamp=now,
            draw=result,
            details={'raffle_id': raffle_id, 'winners': list(winners),
                     'reward_per_winner': reward_per_winner},
        )
