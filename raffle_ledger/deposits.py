"""
deposits.py - Deposit ledger and raffle ticket issuance

=== TICKET MODEL ===

Depositors earn raffle tickets instead of yield:

    tickets = amount * TICKETS_PER_TOKEN_PER_DAY * (days_elapsed + 1) // token_unit

A deposit of exactly one whole token held zero full days earns 1 ticket.

On deposit:
    1. Tickets are computed with days_elapsed = 0 and ADDED to the record
    2. The amount is added and deposit_time is reset to now
    3. The earned tickets are returned for the raffle engine

On withdrawal:
    1. The amount is subtracted
    2. raffle_tickets is OVERWRITTEN with the formula applied to the
       remaining amount and the whole days since deposit_time
    3. deposit_time is reset to now

Tickets already credited to a raffle are not affected by a withdrawal;
only the deposit record's own ticket count is recomputed.
"""

from __future__ import annotations
from dataclasses import replace
from datetime import datetime
from typing import Optional, Tuple

from .core import (
    UserDeposit, PendingUpdate,
    DEFAULT_TOKEN_UNIT, LEDGER_ACCOUNT, TICKETS_PER_TOKEN_PER_DAY,
    InsufficientBalance, InsufficientLiquidity,
    require_asset, require_positive,
)
from .fixed_point import checked_add, checked_mul, checked_sub
from .pools import PoolRegistry, adjust_totals, free_liquidity
from .transfers import Transfer


# =============================================================================
# PURE FUNCTIONS
# =============================================================================

def calculate_raffle_tickets(
    amount: int,
    days_elapsed: int,
    token_unit: int = DEFAULT_TOKEN_UNIT,
) -> int:
    """
    Tickets for holding `amount` smallest units for `days_elapsed` whole days.

    Args:
        amount: Deposit size in smallest units
        days_elapsed: Whole days held (negative values count as zero)
        token_unit: Smallest-unit scale of one whole token

    Returns:
        floor(amount * 1 * (days_elapsed + 1) / token_unit)

    Example:
        calculate_raffle_tickets(1000 * 10**18, 0) == 1000
        calculate_raffle_tickets(1000 * 10**18, 6) == 7000
    """
    days = max(0, days_elapsed)
    weighted = checked_mul(checked_mul(amount, TICKETS_PER_TOKEN_PER_DAY), days + 1)
    return weighted // token_unit


def days_elapsed(since: Optional[datetime], now: datetime) -> int:
    """Whole days between two times, 0 if `since` is unset or in the future."""
    if since is None or now <= since:
        return 0
    return (now - since).days


# =============================================================================
# DEPOSIT LEDGER
# =============================================================================

class DepositLedger:
    """Per-(account, asset) deposit state."""

    def __init__(self, store, pools: PoolRegistry):
        self.store = store
        self.pools = pools

    def get(self, account: str, asset: str) -> UserDeposit:
        """Return the deposit record, or an empty one if the account never deposited."""
        record = self.store.get_deposit(account, asset)
        if record is None:
            return UserDeposit(account=account, asset=asset)
        return record

    def deposit(
        self,
        account: str,
        asset: str,
        amount: int,
        now: datetime,
    ) -> Tuple[PendingUpdate, int]:
        """
        Prepare a deposit.

        Args:
            account: Depositor
            asset: Pool asset
            amount: Smallest units to deposit (> 0)
            now: Operation time

        Returns:
            (PendingUpdate, tickets_earned). The update pulls `amount` from
            the account into custody and credits the deposit and pool.

        Raises:
            InvalidAmount: If amount <= 0.
            PoolNotActive: If the pool is missing or inactive.
            ArithmeticOverflow: If a total would overflow.
        """
        require_asset(asset)
        require_positive(amount)
        pool = self.pools.require_active(asset)

        tickets_earned = calculate_raffle_tickets(amount, 0, pool.token_unit)

        record = self.get(account, asset)
        new_record = replace(
            record,
            amount=checked_add(record.amount, amount),
            deposit_time=now,
            raffle_tickets=checked_add(record.raffle_tickets, tickets_earned),
        )
        new_pool = adjust_totals(pool, deposit_delta=amount)

        update = PendingUpdate(
            operation="deposit",
            timestamp=now,
            account=account,
            asset=asset,
            pools=(new_pool,),
            deposits=(new_record,),
            transfers=(Transfer(amount, asset, account, LEDGER_ACCOUNT, f"deposit:{account}"),),
            details={'amount': amount, 'tickets_earned': tickets_earned},
        )
        return update, tickets_earned

    def withdraw(
        self,
        account: str,
        asset: str,
        amount: int,
        now: datetime,
    ) -> PendingUpdate:
        """
        Prepare a withdrawal.

        The deposit record's tickets are recomputed from the remaining
        amount and the whole days since the last deposit mutation.

        Raises:
            InvalidAmount: If amount <= 0.
            PoolNotActive: If the pool was never created.
            InsufficientBalance: If amount exceeds the deposited amount.
            InsufficientLiquidity: If the pool's free liquidity is below amount.
        """
        require_asset(asset)
        require_positive(amount)
        pool = self.pools.require_exists(asset)

        record = self.get(account, asset)
        if amount > record.amount:
            raise InsufficientBalance(amount, record.amount)
        available = free_liquidity(pool)
        if available < amount:
            raise InsufficientLiquidity(asset, amount, available)

        remaining = checked_sub(record.amount, amount)
        held_days = days_elapsed(record.deposit_time, now)
        new_record = replace(
            record,
            amount=remaining,
            deposit_time=now,
            raffle_tickets=calculate_raffle_tickets(remaining, held_days, pool.token_unit),
        )
        new_pool = adjust_totals(pool, deposit_delta=-amount)

        return PendingUpdate(
            operation="withdraw",
            timestamp=now,
            account=account,
            asset=asset,
            pools=(new_pool,),
            deposits=(new_record,),
            transfers=(Transfer(amount, asset, LEDGER_ACCOUNT, account, f"withdraw:{account}"),),
            details={'amount': amount, 'raffle_tickets': new_record.raffle_tickets},
        )
