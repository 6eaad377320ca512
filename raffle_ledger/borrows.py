"""
borrows.py - Collateralized borrowing and repayment

=== BORROW MODEL ===

A borrow takes liquidity out of one pool against collateral in another
asset. Collateral must cover the borrowed amount at the collateral pool's
collateral factor:

    required_collateral = borrow_amount * collateral_factor // 10000

Repeated borrows of the same asset pair accumulate principal and
collateral, and reset borrow_time. Interest is simple interest on the
whole outstanding principal since borrow_time:

    interest = (amount * borrow_rate // 10000) * elapsed_seconds // SECONDS_PER_YEAR

so every borrow restarts the clock for the entire balance.

=== REPAYMENT ===

A repayment services interest first:

    principal_repaid = amount - interest   if amount > interest
                     = 0                   otherwise

A repayment that covers all interest restarts the clock at the repayment
time. One that does not leaves principal and borrow_time unchanged, so the
interest keeps accruing from the original borrow_time. A protocol fee of
interest_paid * protocol_fee_rate // 10000 funds the current raffle, where

    interest_paid = min(amount, interest)

Collateral is released in proportion to the principal retired:

    released = collateral                                  if principal reaches 0
             = collateral * principal_repaid // principal_before   otherwise
"""

from __future__ import annotations
from dataclasses import dataclass, replace
from datetime import datetime
from typing import Optional, Tuple

from .core import (
    Pool, UserBorrow, PendingUpdate,
    LEDGER_ACCOUNT,
    AmountExceedsDebt, CollateralAssetMismatch, InsufficientCollateral,
    InsufficientLiquidity, InvalidAmount, NoActiveBorrow,
    require_asset, require_positive,
)
from .fixed_point import basis_points_of, checked_add, checked_sub, mul_div, scale_by_time
from .pools import PoolRegistry, adjust_totals, free_liquidity
from .transfers import Transfer


@dataclass(frozen=True, slots=True)
class RepaymentBreakdown:
    """How a repayment was applied."""
    amount: int
    interest: int
    interest_paid: int
    protocol_fee: int
    principal_repaid: int
    collateral_released: int
    remaining_principal: int


# =============================================================================
# PURE FUNCTIONS
# =============================================================================

def calculate_interest(
    principal: int,
    borrow_rate: int,
    borrow_time: Optional[datetime],
    now: datetime,
) -> int:
    """
    Simple interest accrued on principal since borrow_time.

    Args:
        principal: Outstanding principal in smallest units
        borrow_rate: Annual rate in basis points
        borrow_time: Last mutation of the borrow (None for no borrow)
        now: Current time

    Returns:
        scale_by_time(principal * rate // 10000, seconds since borrow_time)

    Example:
        # 500 tokens at 500 bps for 365 days -> 25 tokens
        calculate_interest(500 * 10**18, 500, t0, t0 + timedelta(days=365))
    """
    if principal == 0 or borrow_time is None:
        return 0
    elapsed = int((now - borrow_time).total_seconds())
    return scale_by_time(basis_points_of(principal, borrow_rate), elapsed)


def compute_required_collateral(borrow_amount: int, collateral_factor: int) -> int:
    """Minimum collateral for a borrow, e.g. 500 at 15000 bps -> 750."""
    return basis_points_of(borrow_amount, collateral_factor)


def compute_collateral_release(
    collateral: int,
    principal_before: int,
    principal_repaid: int,
) -> int:
    """
    Collateral to return for retiring part of the principal.

    All collateral is released when the principal is fully retired;
    otherwise the release is proportional to the fraction of the
    pre-repayment principal being retired.
    """
    if principal_repaid == 0:
        return 0
    if principal_repaid >= principal_before:
        return collateral
    return mul_div(collateral, principal_repaid, principal_before)


# =============================================================================
# BORROW LEDGER
# =============================================================================

class BorrowLedger:
    """Per-(account, asset) borrow state."""

    def __init__(self, store, pools: PoolRegistry):
        self.store = store
        self.pools = pools

    def get(self, account: str, asset: str) -> UserBorrow:
        """Return the borrow record, or an empty one if the account never borrowed."""
        record = self.store.get_borrow(account, asset)
        if record is None:
            return UserBorrow(account=account, asset=asset)
        return record

    def interest_accrued(self, account: str, asset: str, now: datetime) -> int:
        """Interest owed on the open borrow, 0 if there is none."""
        record = self.get(account, asset)
        if not record.is_open:
            return 0
        pool = self.store.get_pool(asset)
        if pool is None:
            return 0
        return calculate_interest(record.amount, pool.borrow_rate, record.borrow_time, now)

    def borrow(
        self,
        account: str,
        borrow_asset: str,
        borrow_amount: int,
        collateral_asset: str,
        collateral_amount: int,
        now: datetime,
    ) -> PendingUpdate:
        """
        Prepare a borrow.

        Args:
            account: Borrower
            borrow_asset: Asset to borrow
            borrow_amount: Smallest units to borrow (> 0)
            collateral_asset: Asset posted as collateral
            collateral_amount: Smallest units of collateral posted
            now: Operation time

        Returns:
            PendingUpdate pulling collateral into custody and paying out
            the borrowed amount.

        Raises:
            PoolNotActive: If either pool is missing or inactive.
            InvalidAmount: If borrow_amount <= 0 or collateral_amount is not an integer.
            InsufficientCollateral: If collateral is below the required amount.
            InsufficientLiquidity: If the borrow pool cannot cover the amount.
            CollateralAssetMismatch: If an open borrow uses a different collateral asset.
        """
        require_asset(borrow_asset)
        require_asset(collateral_asset)
        borrow_pool = self.pools.require_active(borrow_asset)
        collateral_pool = self.pools.require_active(collateral_asset)
        require_positive(borrow_amount, "borrow_amount")
        if isinstance(collateral_amount, bool) or not isinstance(collateral_amount, int) \
                or collateral_amount < 0:
            raise InvalidAmount(collateral_amount, "collateral_amount")

        required = compute_required_collateral(borrow_amount, collateral_pool.collateral_factor)
        if collateral_amount < required:
            raise InsufficientCollateral(required, collateral_amount)

        available = free_liquidity(borrow_pool)
        if available < borrow_amount:
            raise InsufficientLiquidity(borrow_asset, borrow_amount, available)

        record = self.get(account, borrow_asset)
        if record.is_open and record.collateral_asset != collateral_asset:
            raise CollateralAssetMismatch(record.collateral_asset, collateral_asset)

        new_record = replace(
            record,
            amount=checked_add(record.amount, borrow_amount),
            borrow_time=now,
            collateral_amount=checked_add(record.collateral_amount, collateral_amount),
            collateral_asset=collateral_asset,
        )
        new_pool = adjust_totals(borrow_pool, borrow_delta=borrow_amount)

        transfers = []
        if collateral_amount > 0:
            transfers.append(Transfer(
                collateral_amount, collateral_asset, account, LEDGER_ACCOUNT,
                f"borrow_collateral:{account}",
            ))
        transfers.append(Transfer(
            borrow_amount, borrow_asset, LEDGER_ACCOUNT, account, f"borrow:{account}",
        ))

        return PendingUpdate(
            operation="borrow",
            timestamp=now,
            account=account,
            asset=borrow_asset,
            pools=(new_pool,),
            borrows=(new_record,),
            transfers=tuple(transfers),
            details={
                'amount': borrow_amount,
                'collateral_asset': collateral_asset,
                'collateral_amount': collateral_amount,
                'required_collateral': required,
            },
        )

    def repay(
        self,
        account: str,
        asset: str,
        amount: int,
        protocol_fee_rate: int,
        now: datetime,
    ) -> Tuple[PendingUpdate, RepaymentBreakdown]:
        """
        Prepare a repayment.

        Args:
            account: Borrower
            asset: Borrowed asset
            amount: Smallest units to repay (> 0, <= principal + interest)
            protocol_fee_rate: Share of interest funding the raffle, in bps
            now: Operation time

        Returns:
            (PendingUpdate, RepaymentBreakdown). The caller forwards
            breakdown.protocol_fee to the raffle engine.

        Raises:
            InvalidAmount: If amount <= 0.
            NoActiveBorrow: If the account has no open borrow of the asset.
            AmountExceedsDebt: If amount exceeds principal plus interest.
        """
        require_asset(asset)
        require_positive(amount)
        record = self.get(account, asset)
        if not record.is_open:
            raise NoActiveBorrow(account, asset)
        pool: Pool = self.pools.require_exists(asset)

        interest = calculate_interest(record.amount, pool.borrow_rate, record.borrow_time, now)
        total_debt = checked_add(record.amount, interest)
        if amount > total_debt:
            raise AmountExceedsDebt(amount, total_debt)

        interest_paid = min(amount, interest)
        protocol_fee = basis_points_of(interest_paid, protocol_fee_rate)
        principal_repaid = amount - interest if amount > interest else 0
        remaining = checked_sub(record.amount, principal_repaid)
        released = compute_collateral_release(record.collateral_amount, record.amount, principal_repaid)

        if remaining == 0:
            new_record = replace(
                record,
                amount=0,
                borrow_time=now,
                collateral_amount=0,
                collateral_asset=None,
            )
        else:
            new_record = replace(
                record,
                amount=remaining,
                borrow_time=now if amount >= interest else record.borrow_time,
                collateral_amount=checked_sub(record.collateral_amount, released),
            )
        new_pool = adjust_totals(pool, borrow_delta=-principal_repaid)

        transfers = [Transfer(amount, asset, account, LEDGER_ACCOUNT, f"repay:{account}")]
        if released > 0:
            transfers.append(Transfer(
                released, record.collateral_asset, LEDGER_ACCOUNT, account,
                f"release_collateral:{account}",
            ))

        breakdown = RepaymentBreakdown(
            amount=amount,
            interest=interest,
            interest_paid=interest_paid,
            protocol_fee=protocol_fee,
            principal_repaid=principal_repaid,
            collateral_released=released,
            remaining_principal=remaining,
        )
        update = PendingUpdate(
            operation="repay",
            timestamp=now,
            account=account,
            asset=asset,
            pools=(new_pool,),
            borrows=(new_record,),
            transfers=tuple(transfers),
            details={
                'amount': amount,
                'interest': interest,
                'interest_paid': interest_paid,
                'protocol_fee': protocol_fee,
                'principal_repaid': principal_repaid,
                'collateral_released': released,
            },
        )
        return update, breakdown
