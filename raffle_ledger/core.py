"""
Core types for the raffle lending ledger.

This module provides the foundational data structures for the ledger:
1. Constants: basis points, raffle duration, token unit, custody account
2. Exceptions: LedgerError and one subclass per rejected precondition
3. Records: Pool, UserDeposit, UserBorrow (frozen), Raffle (ordered ticket map)
4. Pending changes: PendingUpdate and the raffle deltas it carries
5. Read models: frozen snapshots returned by queries

Components never mutate state. They describe intended changes as a
PendingUpdate, and LedgerStore.commit() is the only place those changes
are applied.
"""

from __future__ import annotations
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Dict, List, Optional, Tuple, Any, Mapping


# ============================================================================
# CONSTANTS
# ============================================================================

# 10000 basis points = 100%
BASIS_POINTS = 10000

# Raffles accept tickets for one week before they can be drawn.
RAFFLE_DURATION = timedelta(days=7)

TICKETS_PER_TOKEN_PER_DAY = 1

# 10% of every interest payment funds the current raffle.
DEFAULT_PROTOCOL_FEE_RATE = 1000

SECONDS_PER_DAY = 86400
SECONDS_PER_YEAR = 365 * SECONDS_PER_DAY

# Smallest-unit scale of an asset with 18 decimals.
DEFAULT_TOKEN_UNIT = 10 ** 18

# All amounts are unsigned 256-bit integers.
MAX_UINT256 = 2 ** 256 - 1

# Account that holds deposits and collateral on the transfer service side.
LEDGER_ACCOUNT = "lending_ledger"

# The null asset identifier.
NULL_ASSET = ""

# Sentinel for "no current raffle".
NO_RAFFLE = 0


# ============================================================================
# TYPE ALIASES
# ============================================================================

# (account, asset) key for deposit and borrow records.
PositionKey = Tuple[str, str]


# ============================================================================
# EXCEPTIONS
# ============================================================================

class LedgerError(Exception):
    """Base exception for all ledger-related errors."""
    pass


class InvalidAsset(LedgerError):
    """Raised when an operation names the null asset."""

    def __init__(self, asset: str):
        self.asset = asset
        super().__init__(f"Invalid asset identifier: {asset!r}")


class PoolAlreadyExists(LedgerError):
    """Raised when creating a pool for an asset that already has an active pool."""

    def __init__(self, asset: str):
        self.asset = asset
        super().__init__(f"Pool for {asset} already exists")


class InvalidCollateralFactor(LedgerError):
    """Raised when a collateral factor is below 100%."""

    def __init__(self, collateral_factor: int, minimum: int = BASIS_POINTS):
        self.collateral_factor = collateral_factor
        self.minimum = minimum
        super().__init__(
            f"Collateral factor {collateral_factor} bps is below minimum {minimum} bps"
        )


class PoolNotActive(LedgerError):
    """Raised when operating on a pool that does not exist or is inactive."""

    def __init__(self, asset: str):
        self.asset = asset
        super().__init__(f"Pool for {asset} is not active")


class InvalidAmount(LedgerError):
    """Raised when an amount is not a positive integer."""

    def __init__(self, amount: Any, name: str = "amount"):
        self.amount = amount
        self.name = name
        super().__init__(f"{name} must be a positive integer, got {amount!r}")


class InsufficientBalance(LedgerError):
    """Raised when withdrawing more than the deposited amount."""

    def __init__(self, requested: int, available: int):
        self.requested = requested
        self.available = available
        super().__init__(f"Insufficient balance: requested {requested}, deposited {available}")


class InsufficientLiquidity(LedgerError):
    """Raised when a pool's free liquidity cannot cover a withdrawal or borrow."""

    def __init__(self, asset: str, requested: int, available: int):
        self.asset = asset
        self.requested = requested
        self.available = available
        super().__init__(
            f"Insufficient {asset} liquidity: requested {requested}, free {available}"
        )


class InsufficientCollateral(LedgerError):
    """Raised when posted collateral is below the pool's collateral factor."""

    def __init__(self, required: int, provided: int):
        self.required = required
        self.provided = provided
        super().__init__(f"Insufficient collateral: required {required}, provided {provided}")


class CollateralAssetMismatch(LedgerError):
    """Raised when adding to an open borrow with a different collateral asset."""

    def __init__(self, existing: str, provided: str):
        self.existing = existing
        self.provided = provided
        super().__init__(
            f"Open borrow is collateralized in {existing}, cannot add {provided} collateral"
        )


class NoActiveBorrow(LedgerError):
    """Raised when repaying without an open borrow."""

    def __init__(self, account: str, asset: str):
        self.account = account
        self.asset = asset
        super().__init__(f"{account} has no active {asset} borrow")


class AmountExceedsDebt(LedgerError):
    """Raised when a repayment is larger than principal plus interest."""

    def __init__(self, amount: int, total_debt: int):
        self.amount = amount
        self.total_debt = total_debt
        super().__init__(f"Repayment {amount} exceeds total debt {total_debt}")


class PreviousRaffleNotDrawn(LedgerError):
    """Raised when starting a raffle while the current one is still open."""

    def __init__(self, raffle_id: int):
        self.raffle_id = raffle_id
        super().__init__(f"Raffle {raffle_id} has not been drawn")


class RaffleNotFound(LedgerError):
    """Raised when a raffle id was never allocated."""

    def __init__(self, raffle_id: int):
        self.raffle_id = raffle_id
        super().__init__(f"Raffle {raffle_id} does not exist")


class AlreadyDrawn(LedgerError):
    """Raised when drawing a raffle twice."""

    def __init__(self, raffle_id: int):
        self.raffle_id = raffle_id
        super().__init__(f"Raffle {raffle_id} was already drawn")


class RaffleNotEnded(LedgerError):
    """Raised when drawing before the raffle's end time."""

    def __init__(self, raffle_id: int, end_time: datetime, now: datetime):
        self.raffle_id = raffle_id
        self.end_time = end_time
        self.now = now
        super().__init__(f"Raffle {raffle_id} ends at {end_time}, current time is {now}")


class NoParticipants(LedgerError):
    """Raised when drawing a raffle that holds no tickets."""

    def __init__(self, raffle_id: int):
        self.raffle_id = raffle_id
        super().__init__(f"Raffle {raffle_id} has no participants")


class ArithmeticOverflow(LedgerError):
    """Raised when an unsigned 256-bit computation would overflow or underflow."""

    def __init__(self, operation: str, left: int, right: int):
        self.operation = operation
        self.left = left
        self.right = right
        super().__init__(f"Arithmetic overflow: {left} {operation} {right}")


class InvalidFeeRate(LedgerError):
    """Raised when a fee or rate falls outside 0..10000 basis points."""

    def __init__(self, rate: Any):
        self.rate = rate
        super().__init__(f"Rate must be between 0 and {BASIS_POINTS} bps, got {rate!r}")


class ReentrantOperation(LedgerError):
    """Raised when an operation re-enters a lock already held by the calling thread."""

    def __init__(self, key: str):
        self.key = key
        super().__init__(f"Reentrant operation on {key}")


class StoreClosed(LedgerError):
    """Raised when the store is used outside its open/close lifecycle."""
    pass


# ============================================================================
# RECORDS
# ============================================================================

@dataclass(frozen=True, slots=True)
class Pool:
    """
    Per-asset liquidity pool.

    Attributes:
        asset: Asset identifier.
        collateral_factor: Required collateral in bps of the borrowed amount (>= 10000).
        borrow_rate: Annual borrow rate in bps.
        token_unit: Smallest-unit scale of the asset (one whole token).
        total_deposits: Sum of all deposits, in smallest units.
        total_borrows: Sum of all outstanding principal, in smallest units.
        utilization_rate: Derived, total_borrows * 10000 // total_deposits.
        is_active: Whether deposits and borrows are accepted.

    utilization_rate is never set directly; pools.recompute_utilization()
    derives it from the totals.
    """
    asset: str
    collateral_factor: int
    borrow_rate: int
    token_unit: int = DEFAULT_TOKEN_UNIT
    total_deposits: int = 0
    total_borrows: int = 0
    utilization_rate: int = 0
    is_active: bool = True


@dataclass(frozen=True, slots=True)
class UserDeposit:
    """Deposit state for one (account, asset) pair."""
    account: str
    asset: str
    amount: int = 0
    deposit_time: Optional[datetime] = None
    raffle_tickets: int = 0

    @property
    def key(self) -> PositionKey:
        return (self.account, self.asset)


@dataclass(frozen=True, slots=True)
class UserBorrow:
    """
    Borrow state for one (account, asset) pair.

    Interest is computed from borrow_time alone; any mutation resets it.
    """
    account: str
    asset: str
    amount: int = 0
    borrow_time: Optional[datetime] = None
    collateral_amount: int = 0
    collateral_asset: Optional[str] = None

    @property
    def key(self) -> PositionKey:
        return (self.account, self.asset)

    @property
    def is_open(self) -> bool:
        return self.amount > 0


@dataclass(slots=True)
class Raffle:
    """
    A weekly weighted raffle.

    tickets is an insertion-ordered map from participant to ticket count.
    Its key order is the participant order used by the cumulative-weight
    scan; participants are appended on first contribution and never
    reordered or removed. total_tickets is maintained alongside it and
    always equals sum(tickets.values()).

    Raffle is the one mutable record: ticket accrual touches a single
    entry, so copying an unbounded participant map per deposit is avoided.
    Only LedgerStore mutates it.
    """
    id: int
    end_time: datetime
    number_of_winners: int
    total_reward_pool: int = 0
    tickets: Dict[str, int] = field(default_factory=dict)
    total_tickets: int = 0
    winners: List[str] = field(default_factory=list)
    reward_per_winner: int = 0
    drawn: bool = False

    @property
    def participants(self) -> List[str]:
        return list(self.tickets)


# ============================================================================
# PENDING CHANGES
# ============================================================================

@dataclass(frozen=True, slots=True)
class TicketGrant:
    """Tickets to credit to an account in a raffle."""
    raffle_id: int
    account: str
    tickets: int


@dataclass(frozen=True, slots=True)
class RewardFunding:
    """Protocol fee to add to a raffle's reward pool."""
    raffle_id: int
    amount: int


@dataclass(frozen=True, slots=True)
class DrawResult:
    """
    Outcome of a raffle draw.

    Winners are in draw order and may repeat. reward_per_winner is the
    floor of total_reward_pool / len(winners); the remainder stays
    undistributed.
    """
    raffle_id: int
    winners: Tuple[str, ...]
    reward_per_winner: int
    total_tickets: int


@dataclass(frozen=True, slots=True)
class PendingUpdate:
    """
    A set of state changes before commit - represents INTENT.

    Built by the ledger components from a read of current state, then
    committed by LedgerStore.commit(). Nothing is mutated until commit,
    so a rejected operation never leaves partial state behind.

    Attributes:
        operation: Operation name for the audit trail (e.g. "deposit").
        timestamp: The single `now` read by the operation.
        account: Account that initiated the operation (None for admin operations).
        asset: Primary asset of the operation.
        pools: New Pool records, keyed by their asset on commit.
        deposits: New UserDeposit records, keyed by (account, asset).
        borrows: New UserBorrow records, keyed by (account, asset).
        transfers: Asset movements to run before commit.
        new_raffle: Raffle to allocate (becomes the current raffle).
        ticket_grants: Tickets to credit.
        reward_funding: Fees to add to reward pools.
        draw: Draw outcome to record.
        protocol_fee_rate: New protocol fee rate, in bps.
        details: Free-form values for the audit trail.
    """
    operation: str
    timestamp: datetime
    account: Optional[str] = None
    asset: Optional[str] = None
    pools: Tuple[Pool, ...] = ()
    deposits: Tuple[UserDeposit, ...] = ()
    borrows: Tuple[UserBorrow, ...] = ()
    transfers: Tuple[Any, ...] = ()
    new_raffle: Optional[Raffle] = None
    ticket_grants: Tuple[TicketGrant, ...] = ()
    reward_funding: Tuple[RewardFunding, ...] = ()
    draw: Optional[DrawResult] = None
    protocol_fee_rate: Optional[int] = None
    details: Mapping[str, Any] = field(default_factory=dict)

    def is_empty(self) -> bool:
        """Return True if committing this update would change nothing."""
        return not (
            self.pools or self.deposits or self.borrows or self.transfers
            or self.new_raffle or self.ticket_grants or self.reward_funding
            or self.draw or self.protocol_fee_rate is not None
        )

    def __repr__(self) -> str:
        return (
            f"PendingUpdate({self.operation}, {len(self.pools)} pools, "
            f"{len(self.deposits)} deposits, {len(self.borrows)} borrows, "
            f"{len(self.transfers)} transfers)"
        )


@dataclass(frozen=True, slots=True)
class OperationRecord:
    """
    An executed, immutable audit record - represents FACT.

    Created by LedgerStore.commit() for every committed PendingUpdate.
    """
    sequence_number: int
    operation: str
    timestamp: datetime
    account: Optional[str]
    asset: Optional[str]
    details: Mapping[str, Any]

    def __repr__(self) -> str:
        who = f" {self.account}" if self.account else ""
        what = f" {self.asset}" if self.asset else ""
        return f"#{self.sequence_number} {self.timestamp} {self.operation}{who}{what} {dict(self.details)}"


# ============================================================================
# READ MODELS
# ============================================================================

@dataclass(frozen=True, slots=True)
class DepositInfo:
    amount: int
    deposit_time: Optional[datetime]
    raffle_tickets: int


@dataclass(frozen=True, slots=True)
class BorrowInfo:
    amount: int
    borrow_time: Optional[datetime]
    collateral_amount: int
    collateral_asset: Optional[str]
    interest_accrued: int
    total_debt: int


@dataclass(frozen=True, slots=True)
class RaffleInfo:
    id: int
    total_reward_pool: int
    end_time: datetime
    number_of_winners: int
    participant_count: int
    total_tickets: int
    drawn: bool
    reward_per_winner: int


def require_positive(amount: Any, name: str = "amount") -> int:
    """
    Validate that an amount is a positive integer.

    bool is rejected even though it is an int subclass.

    Raises:
        InvalidAmount: If amount is not an int or is <= 0.
    """
    if isinstance(amount, bool) or not isinstance(amount, int) or amount <= 0:
        raise InvalidAmount(amount, name)
    return amount


def require_asset(asset: Any) -> str:
    """
    Validate an asset identifier.

    Raises:
        InvalidAsset: If asset is None, not a string, or the null asset.
    """
    if not isinstance(asset, str) or not asset.strip() or asset == NULL_ASSET:
        raise InvalidAsset(asset)
    return asset
