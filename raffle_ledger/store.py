"""
store.py - Process-wide ledger state

LedgerStore holds every durable record:

    pools            asset -> Pool
    deposits         (account, asset) -> UserDeposit
    borrows          (account, asset) -> UserBorrow
    raffles          raffle_id -> Raffle
    raffle_counter   last allocated raffle id
    current_raffle_id
    protocol_fee_rate

commit() is the only method that changes these records. It applies a
PendingUpdate in full under the store lock and appends an OperationRecord
to the audit trail, so readers never observe a half-applied update.

The store has an explicit lifecycle: it is open on construction, close()
tears it down, and any use while closed raises StoreClosed. Mutating
operations run inside operation(); a close() that arrives while one is in
flight takes effect when the last one finishes.
"""

from __future__ import annotations
import copy
import hashlib
import threading
from contextlib import contextmanager
from dataclasses import fields, is_dataclass
from datetime import datetime
from typing import Any, Dict, Iterator, List, Optional

from .core import (
    Pool, UserDeposit, UserBorrow, Raffle, PendingUpdate, OperationRecord,
    PositionKey, DEFAULT_PROTOCOL_FEE_RATE, BASIS_POINTS, NO_RAFFLE,
    InvalidFeeRate, RaffleNotFound, StoreClosed,
)
from .fixed_point import checked_add


def _canonicalize(value: Any) -> str:
    """
    Canonical string form of a value for hashing.

    Mapping keys are sorted; sequences keep their order. Dataclasses are
    serialized field by field.
    """
    if value is None:
        return "null"
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, int):
        return f"N:{value}"
    if isinstance(value, str):
        return f"S:{value}"
    if isinstance(value, datetime):
        return f"T:{value.isoformat()}"
    if is_dataclass(value):
        return _canonicalize({f.name: getattr(value, f.name) for f in fields(value)})
    if isinstance(value, dict):
        items = sorted(value.items(), key=lambda kv: str(kv[0]))
        serialized = ",".join(f"{_canonicalize(k)}:{_canonicalize(v)}" for k, v in items)
        return f"{{{serialized}}}"
    if isinstance(value, (list, tuple)):
        serialized = ",".join(_canonicalize(item) for item in value)
        return f"[{serialized}]"
    return f"R:{repr(value)}"


class LedgerStore:
    """
    Durable state of the lending ledger.

    Example:
        with LedgerStore(verbose=False) as store:
            service = LendingService(store=store)
            ...
    """

    def __init__(
        self,
        protocol_fee_rate: int = DEFAULT_PROTOCOL_FEE_RATE,
        verbose: bool = True,
    ):
        self.pools: Dict[str, Pool] = {}
        self.deposits: Dict[PositionKey, UserDeposit] = {}
        self.borrows: Dict[PositionKey, UserBorrow] = {}
        self.raffles: Dict[int, Raffle] = {}
        self.raffle_counter: int = 0
        self.current_raffle_id: int = NO_RAFFLE
        self.protocol_fee_rate: int = self._validate_fee_rate(protocol_fee_rate)
        self.operation_log: List[OperationRecord] = []
        self.verbose = verbose
        self._next_sequence: int = 0
        self._lock = threading.RLock()
        self._open = True
        self._active_operations = 0
        self._close_requested = False

    # ========================================================================
    # LIFECYCLE
    # ========================================================================

    @property
    def is_open(self) -> bool:
        return self._open

    def open(self) -> LedgerStore:
        """Reopen a closed store. Records survive a close/open cycle."""
        with self._lock:
            self._open = True
            self._close_requested = False
        return self

    def close(self) -> None:
        """
        Close the store.

        While operations are in flight the close is deferred until the last
        one finishes, so an operation that has moved assets always commits.
        New operations are refused from the moment close() is called.
        """
        with self._lock:
            if self._active_operations:
                self._close_requested = True
            else:
                self._open = False

    @contextmanager
    def operation(self) -> Iterator[None]:
        """
        Admit one mutating operation.

        Raises:
            StoreClosed: If the store is closed or closing.
        """
        with self._lock:
            if self._close_requested:
                raise StoreClosed("Ledger store is closing")
            self.ensure_open()
            self._active_operations += 1
        try:
            yield
        finally:
            with self._lock:
                self._active_operations -= 1
                if self._active_operations == 0 and self._close_requested:
                    self._close_requested = False
                    self._open = False

    def __enter__(self) -> LedgerStore:
        return self.open()

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    def ensure_open(self) -> None:
        if not self._open:
            raise StoreClosed("Ledger store is closed")

    # ========================================================================
    # READS
    # ========================================================================

    def get_pool(self, asset: str) -> Optional[Pool]:
        with self._lock:
            self.ensure_open()
            return self.pools.get(asset)

    def get_deposit(self, account: str, asset: str) -> Optional[UserDeposit]:
        with self._lock:
            self.ensure_open()
            return self.deposits.get((account, asset))

    def get_borrow(self, account: str, asset: str) -> Optional[UserBorrow]:
        with self._lock:
            self.ensure_open()
            return self.borrows.get((account, asset))

    def get_raffle(self, raffle_id: int) -> Optional[Raffle]:
        """
        Return the live Raffle record.

        Callers outside a raffle-locked operation should use
        snapshot_raffle() instead.
        """
        with self._lock:
            self.ensure_open()
            return self.raffles.get(raffle_id)

    def snapshot_raffle(self, raffle_id: int) -> Raffle:
        """
        Return an independent copy of a raffle.

        Raises:
            RaffleNotFound: If the id was never allocated.
        """
        with self._lock:
            self.ensure_open()
            raffle = self.raffles.get(raffle_id)
            if raffle is None:
                raise RaffleNotFound(raffle_id)
            return copy.deepcopy(raffle)

    # ========================================================================
    # WRITES
    # ========================================================================

    @staticmethod
    def _validate_fee_rate(rate: int) -> int:
        if isinstance(rate, bool) or not isinstance(rate, int) or not 0 <= rate <= BASIS_POINTS:
            raise InvalidFeeRate(rate)
        return rate

    def set_protocol_fee_rate(self, rate: int, now: datetime) -> OperationRecord:
        """
        Change the share of interest that funds the raffle.

        Raises:
            InvalidFeeRate: If rate is outside 0..10000 bps.
        """
        self._validate_fee_rate(rate)
        with self._lock:
            return self.commit(PendingUpdate(
                operation="set_protocol_fee_rate",
                timestamp=now,
                protocol_fee_rate=rate,
                details={'old': self.protocol_fee_rate, 'new': rate},
            ))

    def commit(self, pending: PendingUpdate) -> Optional[OperationRecord]:
        """
        Apply a PendingUpdate.

        Transfers carried by the update must already have been executed by
        the caller. Raffle changes are applied in order: new raffle, ticket
        grants, reward funding, draw.

        Returns:
            The OperationRecord appended to the audit trail, or None for an
            empty update.

        Raises:
            StoreClosed: If the store is closed.
            RaffleNotFound: If a raffle delta names an unknown raffle.
        """
        if pending.is_empty():
            return None

        with self._lock:
            self.ensure_open()

            # Resolve every raffle a delta touches before changing anything
            for grant in pending.ticket_grants:
                self._raffle_for(grant.raffle_id, pending.new_raffle)
            for funding in pending.reward_funding:
                self._raffle_for(funding.raffle_id, pending.new_raffle)
            if pending.draw is not None:
                self._raffle_for(pending.draw.raffle_id, pending.new_raffle)
            if pending.protocol_fee_rate is not None:
                self._validate_fee_rate(pending.protocol_fee_rate)

            for pool in pending.pools:
                self.pools[pool.asset] = pool
            for deposit in pending.deposits:
                self.deposits[deposit.key] = deposit
            for borrow in pending.borrows:
                self.borrows[borrow.key] = borrow

            if pending.new_raffle is not None:
                raffle = pending.new_raffle
                self.raffles[raffle.id] = raffle
                self.raffle_counter = raffle.id
                self.current_raffle_id = raffle.id

            for grant in pending.ticket_grants:
                raffle = self.raffles[grant.raffle_id]
                # First contribution appends the participant
                raffle.tickets[grant.account] = checked_add(
                    raffle.tickets.get(grant.account, 0), grant.tickets
                )
                raffle.total_tickets = checked_add(raffle.total_tickets, grant.tickets)

            for funding in pending.reward_funding:
                raffle = self.raffles[funding.raffle_id]
                raffle.total_reward_pool = checked_add(raffle.total_reward_pool, funding.amount)

            if pending.draw is not None:
                raffle = self.raffles[pending.draw.raffle_id]
                raffle.winners = list(pending.draw.winners)
                raffle.reward_per_winner = pending.draw.reward_per_winner
                raffle.drawn = True

            if pending.protocol_fee_rate is not None:
                self.protocol_fee_rate = pending.protocol_fee_rate

            return self._record(
                pending.operation, pending.timestamp, pending.account, pending.asset,
                pending.details,
            )

    def _raffle_for(self, raffle_id: int, new_raffle: Optional[Raffle]) -> None:
        if raffle_id in self.raffles:
            return
        if new_raffle is not None and new_raffle.id == raffle_id:
            return
        raise RaffleNotFound(raffle_id)

    def _record(self, operation, timestamp, account, asset, details) -> OperationRecord:
        record = OperationRecord(
            sequence_number=self._next_sequence,
            operation=operation,
            timestamp=timestamp,
            account=account,
            asset=asset,
            details=dict(details),
        )
        self._next_sequence += 1
        # Audit trail is mandatory
        self.operation_log.append(record)
        if self.verbose:
            print(f"✓ {record!r}")
        return record

    # ========================================================================
    # SNAPSHOTS
    # ========================================================================

    def clone(self) -> LedgerStore:
        """
        Create an independent copy of this store.

        Pools, deposits and borrows are frozen and shared; raffles are
        deep-copied. The clone is open regardless of this store's state.
        """
        with self._lock:
            cloned = LedgerStore.__new__(LedgerStore)
            cloned.pools = dict(self.pools)
            cloned.deposits = dict(self.deposits)
            cloned.borrows = dict(self.borrows)
            cloned.raffles = {rid: copy.deepcopy(r) for rid, r in self.raffles.items()}
            cloned.raffle_counter = self.raffle_counter
            cloned.current_raffle_id = self.current_raffle_id
            cloned.protocol_fee_rate = self.protocol_fee_rate
            cloned.operation_log = list(self.operation_log)
            cloned.verbose = self.verbose
            cloned._next_sequence = self._next_sequence
            cloned._lock = threading.RLock()
            cloned._open = True
            cloned._active_operations = 0
            cloned._close_requested = False
            return cloned

    def state_hash(self) -> str:
        """
        SHA-256 of the canonical serialization of all durable records.

        Raffle participants are serialized in their stored order, since
        that order decides draws. The operation log is not included.
        """
        with self._lock:
            raffles = {}
            for rid, raffle in self.raffles.items():
                raffles[rid] = {
                    'end_time': raffle.end_time,
                    'number_of_winners': raffle.number_of_winners,
                    'total_reward_pool': raffle.total_reward_pool,
                    'tickets': [list(item) for item in raffle.tickets.items()],
                    'total_tickets': raffle.total_tickets,
                    'winners': raffle.winners,
                    'reward_per_winner': raffle.reward_per_winner,
                    'drawn': raffle.drawn,
                }
            content = _canonicalize({
                'pools': self.pools,
                'deposits': {f"{a}|{s}": d for (a, s), d in self.deposits.items()},
                'borrows': {f"{a}|{s}": b for (a, s), b in self.borrows.items()},
                'raffles': raffles,
                'raffle_counter': self.raffle_counter,
                'current_raffle_id': self.current_raffle_id,
                'protocol_fee_rate': self.protocol_fee_rate,
            })
        return hashlib.sha256(content.encode()).hexdigest()

    def __repr__(self) -> str:
        state = "open" if self._open else "closed"
        return (
            f"LedgerStore({state}, {len(self.pools)} pools, {len(self.deposits)} deposits, "
            f"{len(self.borrows)} borrows, {len(self.raffles)} raffles)"
        )
