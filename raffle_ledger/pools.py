"""
pools.py - Per-asset pool registry

A Pool tracks total deposits and total borrows for one asset. Its
utilization rate is a derived value:

    utilization_rate = 0                                   if total_deposits == 0
                     = total_borrows * 10000 // total_deposits  otherwise

Every change to the totals goes through adjust_totals(), which always
recomputes utilization, so the derived value cannot drift.
"""

from __future__ import annotations
from dataclasses import replace
from datetime import datetime
from typing import Optional

from .core import (
    Pool, PendingUpdate,
    BASIS_POINTS, DEFAULT_TOKEN_UNIT,
    InvalidCollateralFactor, InvalidFeeRate, PoolAlreadyExists, PoolNotActive,
    require_asset, require_positive,
)
from .fixed_point import checked_add, checked_sub, mul_div


# =============================================================================
# PURE FUNCTIONS
# =============================================================================

def compute_utilization(total_deposits: int, total_borrows: int) -> int:
    """Utilization in basis points, 0 for an empty pool."""
    if total_deposits == 0:
        return 0
    return mul_div(total_borrows, BASIS_POINTS, total_deposits)


def recompute_utilization(pool: Pool) -> Pool:
    """Return the pool with utilization_rate derived from its current totals."""
    return replace(pool, utilization_rate=compute_utilization(pool.total_deposits, pool.total_borrows))


def free_liquidity(pool: Pool) -> int:
    """Deposits not currently lent out."""
    return pool.total_deposits - pool.total_borrows


def adjust_totals(pool: Pool, deposit_delta: int = 0, borrow_delta: int = 0) -> Pool:
    """
    Apply signed changes to a pool's totals and recompute utilization.

    Raises:
        ArithmeticOverflow: If a total would leave the unsigned 256-bit range.
    """
    total_deposits = pool.total_deposits
    total_borrows = pool.total_borrows
    if deposit_delta >= 0:
        total_deposits = checked_add(total_deposits, deposit_delta)
    else:
        total_deposits = checked_sub(total_deposits, -deposit_delta)
    if borrow_delta >= 0:
        total_borrows = checked_add(total_borrows, borrow_delta)
    else:
        total_borrows = checked_sub(total_borrows, -borrow_delta)
    return recompute_utilization(
        replace(pool, total_deposits=total_deposits, total_borrows=total_borrows)
    )


def _require_rate(rate: int) -> int:
    if isinstance(rate, bool) or not isinstance(rate, int) or rate < 0:
        raise InvalidFeeRate(rate)
    return rate


# =============================================================================
# REGISTRY
# =============================================================================

class PoolRegistry:
    """
    Owns the per-asset Pool records.

    Reads come from the store; every change is returned as a PendingUpdate
    for the caller to commit.
    """

    def __init__(self, store):
        self.store = store

    def get(self, asset: str) -> Optional[Pool]:
        return self.store.get_pool(asset)

    def require_active(self, asset: str) -> Pool:
        """
        Return the pool for an asset if it is active.

        Raises:
            PoolNotActive: If the pool does not exist or has been deactivated.
        """
        pool = self.store.get_pool(asset)
        if pool is None or not pool.is_active:
            raise PoolNotActive(asset)
        return pool

    def require_exists(self, asset: str) -> Pool:
        pool = self.store.get_pool(asset)
        if pool is None:
            raise PoolNotActive(asset)
        return pool

    def create_pool(
        self,
        asset: str,
        collateral_factor: int,
        borrow_rate: int,
        now: datetime,
        token_unit: int = DEFAULT_TOKEN_UNIT,
    ) -> PendingUpdate:
        """
        Create a zeroed, active pool.

        Args:
            asset: Asset identifier (must not be the null asset)
            collateral_factor: Required collateral in bps (>= 10000)
            borrow_rate: Annual borrow rate in bps
            now: Operation time
            token_unit: Smallest-unit scale of one whole token

        Raises:
            InvalidAsset: If asset is the null identifier.
            PoolAlreadyExists: If an active pool exists for the asset.
            InvalidCollateralFactor: If collateral_factor < 10000.
        """
        require_asset(asset)
        existing = self.store.get_pool(asset)
        if existing is not None and existing.is_active:
            raise PoolAlreadyExists(asset)
        if isinstance(collateral_factor, bool) or not isinstance(collateral_factor, int) \
                or collateral_factor < BASIS_POINTS:
            raise InvalidCollateralFactor(collateral_factor)
        _require_rate(borrow_rate)
        require_positive(token_unit, "token_unit")

        pool = Pool(
            asset=asset,
            collateral_factor=collateral_factor,
            borrow_rate=borrow_rate,
            token_unit=token_unit,
        )
        if existing is not None:
            # Re-creating a deactivated pool keeps its totals so they stay
            # equal to the sum of the deposit and borrow records.
            pool = recompute_utilization(replace(
                pool,
                total_deposits=existing.total_deposits,
                total_borrows=existing.total_borrows,
            ))
        return PendingUpdate(
            operation="create_pool",
            timestamp=now,
            asset=asset,
            pools=(pool,),
            details={'collateral_factor': collateral_factor, 'borrow_rate': borrow_rate},
        )

    def recompute_utilization(self, asset: str, now: datetime) -> PendingUpdate:
        """Re-derive a stored pool's utilization from its totals."""
        pool = self.require_exists(asset)
        updated = recompute_utilization(pool)
        return PendingUpdate(
            operation="recompute_utilization",
            timestamp=now,
            asset=asset,
            pools=(updated,),
            details={'utilization_rate': updated.utilization_rate},
        )

    def set_borrow_rate(self, asset: str, borrow_rate: int, now: datetime) -> PendingUpdate:
        """
        Change a pool's annual borrow rate.

        Open borrows are charged the new rate from the next interest read on.
        """
        pool = self.require_exists(asset)
        _require_rate(borrow_rate)
        return PendingUpdate(
            operation="set_borrow_rate",
            timestamp=now,
            asset=asset,
            pools=(replace(pool, borrow_rate=borrow_rate),),
            details={'old': pool.borrow_rate, 'new': borrow_rate},
        )

    def set_active(self, asset: str, is_active: bool, now: datetime) -> PendingUpdate:
        """Pause or resume deposits and borrows for a pool."""
        pool = self.require_exists(asset)
        return PendingUpdate(
            operation="set_pool_active",
            timestamp=now,
            asset=asset,
            pools=(replace(pool, is_active=bool(is_active)),),
            details={'is_active': bool(is_active)},
        )
