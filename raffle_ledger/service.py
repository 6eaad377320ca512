"""
service.py - LendingService, the public face of the raffle lending ledger

Every mutating operation follows the same path:

    1. Take the locks for every key it touches (sorted, no re-entry)
    2. Read `now` once
    3. Build a PendingUpdate through the owning component (no mutation)
    4. Run the update's transfers through the AssetTransferService
    5. Commit the update to the LedgerStore

A failure in steps 3 or 4 leaves the store untouched.

Lock keys:
    account:<account>:<asset>   deposit/borrow record of one pair
    pool:<asset>                one pool's totals
    raffle                      the raffle records and counters

Queries take no operation locks; the store lock alone guarantees they
never see a half-committed update.
"""

from __future__ import annotations
import threading
from contextlib import contextmanager
from dataclasses import replace
from datetime import datetime
from typing import Dict, Iterable, Iterator, List, Optional, Tuple

from .core import (
    Pool, PendingUpdate, DepositInfo, BorrowInfo, RaffleInfo, OperationRecord,
    DEFAULT_PROTOCOL_FEE_RATE, DEFAULT_TOKEN_UNIT,
    LedgerError, ReentrantOperation,
)
from .borrows import BorrowLedger, RepaymentBreakdown, calculate_interest
from .deposits import DepositLedger, calculate_raffle_tickets
from .fixed_point import checked_add
from .pools import PoolRegistry
from .raffle import RaffleEngine
from .randomness import RandomSource, SecureRandomSource
from .store import LedgerStore
from .transfers import AssetTransferService, InMemoryTransferService


RAFFLE_KEY = "raffle"


def account_key(account: str, asset: str) -> str:
    return f"account:{account}:{asset}"


def pool_key(asset: str) -> str:
    return f"pool:{asset}"


class LockRegistry:
    """
    Named exclusive locks, created on first use and dropped once no thread
    holds or waits for them.

    acquire() takes a set of keys in sorted order, so two operations
    sharing keys cannot deadlock. A thread that asks for a key it already
    holds gets ReentrantOperation.
    """

    def __init__(self):
        self._locks: Dict[str, List] = {}
        self._guard = threading.Lock()
        self._held = threading.local()

    def _checkout(self, key: str) -> threading.Lock:
        with self._guard:
            entry = self._locks.get(key)
            if entry is None:
                # [lock, holders and waiters]
                entry = self._locks[key] = [threading.Lock(), 0]
            entry[1] += 1
            return entry[0]

    def _checkin(self, key: str) -> None:
        with self._guard:
            entry = self._locks[key]
            entry[1] -= 1
            if entry[1] == 0:
                del self._locks[key]

    def tracked_keys(self) -> set:
        """Keys currently held or waited on."""
        with self._guard:
            return set(self._locks)

    def held_keys(self) -> set:
        held = getattr(self._held, "keys", None)
        if held is None:
            held = self._held.keys = set()
        return held

    @contextmanager
    def acquire(self, keys: Iterable[str]) -> Iterator[None]:
        ordered = sorted(set(keys))
        held = self.held_keys()
        for key in ordered:
            if key in held:
                raise ReentrantOperation(key)

        acquired: List[Tuple[str, threading.Lock]] = []
        try:
            for key in ordered:
                lock = self._checkout(key)
                lock.acquire()
                acquired.append((key, lock))
                held.add(key)
            yield
        finally:
            for key, lock in reversed(acquired):
                held.discard(key)
                lock.release()
                self._checkin(key)


class LendingService:
    """
    Raffle-based lending ledger.

    Depositors earn raffle tickets instead of yield. Borrowers post
    over-collateralized positions and pay simple interest, a share of
    which funds the weekly raffle's reward pool.

    Example:
        transfers = InMemoryTransferService()
        service = LendingService(transfers=transfers, verbose=False)
        service.create_pool("USDC", 15000, 500)
        service.create_pool("ETH", 15000, 300)
        service.start_new_raffle(1)

        transfers.mint("alice", "USDC", 1000 * 10**18)
        transfers.approve("alice", "USDC", 1000 * 10**18)
        service.deposit("alice", "USDC", 1000 * 10**18)   # -> 1000 tickets
    """

    def __init__(
        self,
        store: Optional[LedgerStore] = None,
        transfers: Optional[AssetTransferService] = None,
        random_source: Optional[RandomSource] = None,
        initial_time: Optional[datetime] = None,
        protocol_fee_rate: int = DEFAULT_PROTOCOL_FEE_RATE,
        verbose: bool = True,
    ):
        """
        Create a lending service.

        Args:
            store: Durable state (default: a new open LedgerStore)
            transfers: Asset custody collaborator (default: InMemoryTransferService)
            random_source: Source for raffle draws (default: SecureRandomSource)
            initial_time: Starting logical time (default: 1970-01-01)
            protocol_fee_rate: Share of interest funding raffles, in bps;
                only used when a new store is created
            verbose: Print a line per committed or rejected operation
        """
        self.store = store if store is not None else LedgerStore(
            protocol_fee_rate=protocol_fee_rate, verbose=verbose,
        )
        self.transfers = transfers if transfers is not None else InMemoryTransferService()
        self.random_source = random_source if random_source is not None else SecureRandomSource()
        self.verbose = verbose
        self._current_time: datetime = initial_time or datetime(1970, 1, 1)
        self._clock_lock = threading.Lock()
        self._locks = LockRegistry()

        self.pools = PoolRegistry(self.store)
        self.deposits = DepositLedger(self.store, self.pools)
        self.borrows = BorrowLedger(self.store, self.pools)
        self.raffle = RaffleEngine(self.store)

    # ========================================================================
    # TIME
    # ========================================================================

    @property
    def current_time(self) -> datetime:
        return self._current_time

    def advance_time(self, new_time: datetime) -> None:
        """
        Move the logical clock forward.

        Raises:
            ValueError: If new_time is earlier than the current time.
        """
        with self._clock_lock:
            if new_time < self._current_time:
                raise ValueError(
                    f"Cannot go back in time: {new_time} < {self._current_time}"
                )
            self._current_time = new_time

    def _now(self) -> datetime:
        with self._clock_lock:
            return self._current_time

    # ========================================================================
    # OPERATION PLUMBING
    # ========================================================================

    @contextmanager
    def _operation(self, name: str, keys: Iterable[str]) -> Iterator[None]:
        try:
            with self.store.operation(), self._locks.acquire(keys):
                yield
        except LedgerError as e:
            if self.verbose:
                print(f"✗ REJECTED {name}: {e}")
            raise

    def _apply(self, update: PendingUpdate) -> Optional[OperationRecord]:
        if update.transfers:
            self.transfers.execute(update.transfers)
        return self.store.commit(update)

    # ========================================================================
    # ADMIN OPERATIONS
    # ========================================================================

    def create_pool(
        self,
        asset: str,
        collateral_factor: int,
        borrow_rate: int,
        token_unit: int = DEFAULT_TOKEN_UNIT,
    ) -> Pool:
        """
        Create an active pool for an asset.

        Raises:
            InvalidAsset, PoolAlreadyExists, InvalidCollateralFactor, InvalidFeeRate
        """
        with self._operation("create_pool", [pool_key(asset)]):
            update = self.pools.create_pool(
                asset, collateral_factor, borrow_rate, self._now(), token_unit=token_unit,
            )
            self._apply(update)
            return update.pools[0]

    def start_new_raffle(self, number_of_winners: int) -> int:
        """
        Open a new raffle ending seven days from now.

        Returns:
            The new raffle id.

        Raises:
            InvalidAmount: If number_of_winners < 1.
            PreviousRaffleNotDrawn: If the current raffle has not been drawn.
        """
        with self._operation("start_raffle", [RAFFLE_KEY]):
            update = self.raffle.start_new_raffle(number_of_winners, self._now())
            self._apply(update)
            return update.new_raffle.id

    def draw_raffle(self, raffle_id: int) -> Tuple[List[str], int]:
        """
        Draw the winners of an ended raffle.

        Returns:
            (winners in draw order, reward_per_winner). Winners may repeat.

        Raises:
            RaffleNotFound, AlreadyDrawn, RaffleNotEnded, NoParticipants
        """
        with self._operation("draw_raffle", [RAFFLE_KEY]):
            update = self.raffle.draw(raffle_id, self.random_source, self._now())
            self._apply(update)
            return list(update.draw.winners), update.draw.reward_per_winner

    def set_protocol_fee_rate(self, rate: int) -> None:
        """Set the share of interest funding the raffle (0..10000 bps)."""
        with self._operation("set_protocol_fee_rate", [RAFFLE_KEY]):
            self.store.set_protocol_fee_rate(rate, self._now())

    def set_borrow_rate(self, asset: str, borrow_rate: int) -> None:
        with self._operation("set_borrow_rate", [pool_key(asset)]):
            self._apply(self.pools.set_borrow_rate(asset, borrow_rate, self._now()))

    def set_pool_active(self, asset: str, is_active: bool) -> None:
        with self._operation("set_pool_active", [pool_key(asset)]):
            self._apply(self.pools.set_active(asset, is_active, self._now()))

    def recompute_utilization(self, asset: str) -> int:
        """Re-derive a pool's utilization rate and return it."""
        with self._operation("recompute_utilization", [pool_key(asset)]):
            update = self.pools.recompute_utilization(asset, self._now())
            self._apply(update)
            return update.pools[0].utilization_rate

    # ========================================================================
    # USER OPERATIONS
    # ========================================================================

    def deposit(self, account: str, asset: str, amount: int) -> int:
        """
        Deposit into a pool and earn raffle tickets.

        Returns:
            Tickets earned. They are credited to the open raffle, if any.

        Raises:
            InvalidAmount, PoolNotActive, TransferFailed
        """
        keys = [account_key(account, asset), pool_key(asset), RAFFLE_KEY]
        with self._operation("deposit", keys):
            update, tickets_earned = self.deposits.deposit(account, asset, amount, self._now())
            grant = self.raffle.add_tickets(account, tickets_earned)
            if grant is not None:
                update = replace(update, ticket_grants=(grant,))
            self._apply(update)
            return tickets_earned

    def withdraw(self, account: str, asset: str, amount: int) -> None:
        """
        Withdraw from a pool.

        Raises:
            InvalidAmount, InsufficientBalance, InsufficientLiquidity, TransferFailed
        """
        with self._operation("withdraw", [account_key(account, asset), pool_key(asset)]):
            self._apply(self.deposits.withdraw(account, asset, amount, self._now()))

    def borrow(
        self,
        account: str,
        borrow_asset: str,
        borrow_amount: int,
        collateral_asset: str,
        collateral_amount: int,
    ) -> None:
        """
        Borrow against collateral in another pool's asset.

        Raises:
            PoolNotActive, InvalidAmount, InsufficientCollateral,
            InsufficientLiquidity, CollateralAssetMismatch, TransferFailed
        """
        keys = [account_key(account, borrow_asset), pool_key(borrow_asset), pool_key(collateral_asset)]
        with self._operation("borrow", keys):
            self._apply(self.borrows.borrow(
                account, borrow_asset, borrow_amount, collateral_asset, collateral_amount,
                self._now(),
            ))

    def repay(self, account: str, asset: str, amount: int) -> RepaymentBreakdown:
        """
        Repay interest and principal; release collateral for retired principal.

        The protocol fee on the interest funds the current raffle when it
        is still open.

        Raises:
            InvalidAmount, NoActiveBorrow, AmountExceedsDebt, TransferFailed
        """
        keys = [account_key(account, asset), pool_key(asset), RAFFLE_KEY]
        with self._operation("repay", keys):
            update, breakdown = self.borrows.repay(
                account, asset, amount, self.store.protocol_fee_rate, self._now(),
            )
            funding = self.raffle.fund_current_raffle(breakdown.protocol_fee)
            if funding is not None:
                update = replace(update, reward_funding=(funding,))
            self._apply(update)
            return breakdown

    # ========================================================================
    # QUERIES
    # ========================================================================

    @property
    def current_raffle_id(self) -> int:
        return self.store.current_raffle_id

    @property
    def protocol_fee_rate(self) -> int:
        return self.store.protocol_fee_rate

    @property
    def operation_log(self) -> List[OperationRecord]:
        return list(self.store.operation_log)

    def get_pool(self, asset: str) -> Optional[Pool]:
        return self.store.get_pool(asset)

    def get_user_deposit_info(self, account: str, asset: str) -> DepositInfo:
        record = self.deposits.get(account, asset)
        return DepositInfo(
            amount=record.amount,
            deposit_time=record.deposit_time,
            raffle_tickets=record.raffle_tickets,
        )

    def get_user_borrow_info(self, account: str, asset: str) -> BorrowInfo:
        """Borrow record with interest computed at the current time."""
        now = self._now()
        record = self.borrows.get(account, asset)
        pool = self.store.get_pool(asset)
        interest = 0
        if record.is_open and pool is not None:
            interest = calculate_interest(record.amount, pool.borrow_rate, record.borrow_time, now)
        return BorrowInfo(
            amount=record.amount,
            borrow_time=record.borrow_time,
            collateral_amount=record.collateral_amount,
            collateral_asset=record.collateral_asset,
            interest_accrued=interest,
            total_debt=checked_add(record.amount, interest),
        )

    def calculate_borrow_interest(self, account: str, asset: str) -> int:
        return self.borrows.interest_accrued(account, asset, self._now())

    @staticmethod
    def calculate_raffle_tickets(
        amount: int,
        days_deposited: int,
        token_unit: int = DEFAULT_TOKEN_UNIT,
    ) -> int:
        return calculate_raffle_tickets(amount, days_deposited, token_unit)

    def get_raffle_info(self, raffle_id: int) -> RaffleInfo:
        """
        Raises:
            RaffleNotFound: If the id was never allocated.
        """
        raffle = self.store.snapshot_raffle(raffle_id)
        return RaffleInfo(
            id=raffle.id,
            total_reward_pool=raffle.total_reward_pool,
            end_time=raffle.end_time,
            number_of_winners=raffle.number_of_winners,
            participant_count=len(raffle.tickets),
            total_tickets=raffle.total_tickets,
            drawn=raffle.drawn,
            reward_per_winner=raffle.reward_per_winner,
        )

    def get_raffle_winners(self, raffle_id: int) -> List[str]:
        """Winners in draw order; empty until the raffle is drawn."""
        return list(self.store.snapshot_raffle(raffle_id).winners)

    def get_participant_tickets(self, raffle_id: int, account: str) -> int:
        return self.store.snapshot_raffle(raffle_id).tickets.get(account, 0)

    def get_participants(self, raffle_id: int) -> List[str]:
        """Participants in first-contribution order."""
        return self.store.snapshot_raffle(raffle_id).participants

    # ========================================================================
    # LIFECYCLE
    # ========================================================================

    def close(self) -> None:
        self.store.close()

    def __enter__(self) -> LendingService:
        self.store.open()
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    def __repr__(self) -> str:
        return f"LendingService({self.store!r}, time={self._current_time})"
