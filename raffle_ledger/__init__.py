"""
raffle_ledger - Raffle-based lending ledger

Depositors earn weekly raffle tickets instead of interest; borrowers post
over-collateralized positions and pay simple interest, part of which funds
the raffle's reward pool.

Usage:
    from raffle_ledger import LendingService, InMemoryTransferService

    transfers = InMemoryTransferService()
    service = LendingService(transfers=transfers)
    service.create_pool("USDC", collateral_factor=15000, borrow_rate=500)
    service.start_new_raffle(number_of_winners=1)

    transfers.mint("alice", "USDC", 1000 * 10**18)
    transfers.approve("alice", "USDC", 1000 * 10**18)
    tickets = service.deposit("alice", "USDC", 1000 * 10**18)   # 1000
"""

# Core types
from .core import (
    Pool,
    UserDeposit,
    UserBorrow,
    Raffle,
    TicketGrant,
    RewardFunding,
    DrawResult,
    PendingUpdate,
    OperationRecord,
    DepositInfo,
    BorrowInfo,
    RaffleInfo,
    LedgerError,
    InvalidAsset,
    PoolAlreadyExists,
    InvalidCollateralFactor,
    PoolNotActive,
    InvalidAmount,
    InsufficientBalance,
    InsufficientLiquidity,
    InsufficientCollateral,
    CollateralAssetMismatch,
    NoActiveBorrow,
    AmountExceedsDebt,
    PreviousRaffleNotDrawn,
    RaffleNotFound,
    AlreadyDrawn,
    RaffleNotEnded,
    NoParticipants,
    ArithmeticOverflow,
    InvalidFeeRate,
    ReentrantOperation,
    StoreClosed,
    BASIS_POINTS,
    RAFFLE_DURATION,
    TICKETS_PER_TOKEN_PER_DAY,
    DEFAULT_PROTOCOL_FEE_RATE,
    SECONDS_PER_YEAR,
    DEFAULT_TOKEN_UNIT,
    MAX_UINT256,
    LEDGER_ACCOUNT,
    NULL_ASSET,
    NO_RAFFLE,
)

# Arithmetic
from .fixed_point import (
    checked_add, checked_sub, checked_mul, mul_div, basis_points_of, scale_by_time,
)

# Components
from .pools import PoolRegistry, compute_utilization, free_liquidity, adjust_totals
from .deposits import DepositLedger, calculate_raffle_tickets, days_elapsed
from .borrows import (
    BorrowLedger, RepaymentBreakdown,
    calculate_interest, compute_required_collateral, compute_collateral_release,
)
from .raffle import RaffleEngine, select_winner, draw_winners, cumulative_tickets

# Collaborators
from .randomness import RandomSource, SecureRandomSource, SequenceRandomSource
from .transfers import Transfer, TransferFailed, AssetTransferService, InMemoryTransferService

# State and service
from .store import LedgerStore
from .service import LendingService, LockRegistry


__all__ = [
    # Core types
    'Pool', 'UserDeposit', 'UserBorrow', 'Raffle',
    'TicketGrant', 'RewardFunding', 'DrawResult', 'PendingUpdate', 'OperationRecord',
    'DepositInfo', 'BorrowInfo', 'RaffleInfo',
    # Errors
    'LedgerError', 'InvalidAsset', 'PoolAlreadyExists', 'InvalidCollateralFactor',
    'PoolNotActive', 'InvalidAmount', 'InsufficientBalance', 'InsufficientLiquidity',
    'InsufficientCollateral', 'CollateralAssetMismatch', 'NoActiveBorrow',
    'AmountExceedsDebt', 'PreviousRaffleNotDrawn', 'RaffleNotFound', 'AlreadyDrawn',
    'RaffleNotEnded', 'NoParticipants', 'ArithmeticOverflow', 'InvalidFeeRate',
    'ReentrantOperation', 'StoreClosed', 'TransferFailed',
    # Constants
    'BASIS_POINTS', 'RAFFLE_DURATION', 'TICKETS_PER_TOKEN_PER_DAY',
    'DEFAULT_PROTOCOL_FEE_RATE', 'SECONDS_PER_YEAR', 'DEFAULT_TOKEN_UNIT',
    'MAX_UINT256', 'LEDGER_ACCOUNT', 'NULL_ASSET', 'NO_RAFFLE',
    # Arithmetic
    'checked_add', 'checked_sub', 'checked_mul', 'mul_div', 'basis_points_of', 'scale_by_time',
    # Pools
    'PoolRegistry', 'compute_utilization', 'free_liquidity', 'adjust_totals',
    # Deposits
    'DepositLedger', 'calculate_raffle_tickets', 'days_elapsed',
    # Borrows
    'BorrowLedger', 'RepaymentBreakdown', 'calculate_interest',
    'compute_required_collateral', 'compute_collateral_release',
    # Raffle
    'RaffleEngine', 'select_winner', 'draw_winners', 'cumulative_tickets',
    # Collaborators
    'RandomSource', 'SecureRandomSource', 'SequenceRandomSource',
    'Transfer', 'AssetTransferService', 'InMemoryTransferService',
    # State and service
    'LedgerStore', 'LendingService', 'LockRegistry',
]

__version__ = '1.0.0'
