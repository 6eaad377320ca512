"""
transfers.py - Asset custody collaborator

The lending ledger does not hold assets itself. Value moves between owner
accounts and the ledger's custody account (LEDGER_ACCOUNT) through an
AssetTransferService, which may reject a transfer for insufficient
balance or allowance.

Classes:
- Transfer: A single movement of an asset between two accounts
- AssetTransferService: Protocol the ledger depends on
- InMemoryTransferService: Balance/allowance book for tests and simulations

A batch of transfers is all-or-nothing: either every transfer applies or
TransferFailed is raised and nothing changes.
"""

from __future__ import annotations
import threading
from collections import defaultdict
from dataclasses import dataclass
from typing import Dict, Iterable, List, Protocol, Sequence, Tuple, runtime_checkable

from .core import LedgerError, LEDGER_ACCOUNT


class TransferFailed(LedgerError):
    """Raised when the transfer service rejects a batch."""

    def __init__(self, reason: str, transfer: "Transfer" = None):
        self.reason = reason
        self.transfer = transfer
        super().__init__(f"Transfer failed: {reason}")


@dataclass(frozen=True, slots=True)
class Transfer:
    """
    A single transfer of an asset between two accounts.

    Attributes:
        quantity: Amount in the asset's smallest unit (positive).
        asset: Asset identifier.
        source: Account debited.
        dest: Account credited.
        reference: Identifier of the operation producing this transfer.
    """
    quantity: int
    asset: str
    source: str
    dest: str
    reference: str

    def __post_init__(self):
        if not self.source or not self.source.strip():
            raise ValueError("Transfer source cannot be empty")
        if not self.dest or not self.dest.strip():
            raise ValueError("Transfer dest cannot be empty")
        if not self.asset or not self.asset.strip():
            raise ValueError("Transfer asset cannot be empty")
        if isinstance(self.quantity, bool) or not isinstance(self.quantity, int):
            raise ValueError(f"Transfer quantity must be int, got {type(self.quantity)}")
        if self.quantity <= 0:
            raise ValueError(f"Transfer quantity must be positive, got {self.quantity}")
        if self.source == self.dest:
            raise ValueError("Source and dest must be different")

    def __repr__(self) -> str:
        return f"Transfer({self.quantity} {self.asset}: {self.source}→{self.dest})"


@runtime_checkable
class AssetTransferService(Protocol):
    """
    Protocol for moving assets in and out of ledger custody.

    execute() must be atomic over the batch and raise TransferFailed
    (leaving balances unchanged) if any transfer cannot be made.
    """

    def execute(self, transfers: Sequence[Transfer]) -> None:
        ...


class InMemoryTransferService:
    """
    Transfer service backed by in-memory balances and allowances.

    Owner accounts must approve the custody account before the ledger can
    pull funds from them, mirroring token allowance semantics. The custody
    account itself spends freely up to its balance.

    Example:
        transfers = InMemoryTransferService()
        transfers.mint("alice", "USDC", 1000)
        transfers.approve("alice", "USDC", 1000)
        transfers.execute([Transfer(100, "USDC", "alice", LEDGER_ACCOUNT, "deposit")])
    """

    def __init__(self, custody_account: str = LEDGER_ACCOUNT):
        self.custody_account = custody_account
        self.balances: Dict[str, Dict[str, int]] = defaultdict(lambda: defaultdict(int))
        self.allowances: Dict[Tuple[str, str], int] = defaultdict(int)
        self.history: List[Transfer] = []
        self._lock = threading.Lock()

    def balance_of(self, account: str, asset: str) -> int:
        return self.balances[account][asset]

    def allowance(self, owner: str, asset: str) -> int:
        return self.allowances[(owner, asset)]

    def mint(self, account: str, asset: str, quantity: int) -> None:
        """Credit an account out of thin air (test and simulation funding)."""
        if quantity < 0:
            raise ValueError(f"mint quantity cannot be negative, got {quantity}")
        with self._lock:
            self.balances[account][asset] += quantity

    def approve(self, owner: str, asset: str, quantity: int) -> None:
        """Set the amount the custody account may pull from owner."""
        if quantity < 0:
            raise ValueError(f"allowance cannot be negative, got {quantity}")
        self.allowances[(owner, asset)] = quantity

    def total_supply(self, asset: str) -> int:
        """Sum of balances across all accounts, sorted for deterministic accumulation."""
        return sum(self.balances[a][asset] for a in sorted(self.balances))

    def _validate(self, transfers: Iterable[Transfer]) -> None:
        net: Dict[Tuple[str, str], int] = defaultdict(int)
        spent: Dict[Tuple[str, str], int] = defaultdict(int)
        for t in transfers:
            net[(t.source, t.asset)] -= t.quantity
            net[(t.dest, t.asset)] += t.quantity
            if t.source != self.custody_account:
                spent[(t.source, t.asset)] += t.quantity
                if spent[(t.source, t.asset)] > self.allowances[(t.source, t.asset)]:
                    raise TransferFailed(
                        f"insufficient allowance: {t.source} approved "
                        f"{self.allowances[(t.source, t.asset)]} {t.asset}, "
                        f"needs {spent[(t.source, t.asset)]}",
                        t,
                    )
            # Check running balances in batch order
            if self.balances[t.source][t.asset] + net[(t.source, t.asset)] < 0:
                raise TransferFailed(
                    f"insufficient balance: {t.source} holds "
                    f"{self.balances[t.source][t.asset]} {t.asset}, needs {t.quantity}",
                    t,
                )

    def execute(self, transfers: Sequence[Transfer]) -> None:
        """
        Apply a batch of transfers atomically.

        Raises:
            TransferFailed: If any transfer lacks balance or allowance.
        """
        transfers = list(transfers)
        with self._lock:
            self._validate(transfers)
            for t in transfers:
                self.balances[t.source][t.asset] -= t.quantity
                self.balances[t.dest][t.asset] += t.quantity
                if t.source != self.custody_account:
                    self.allowances[(t.source, t.asset)] -= t.quantity
                self.history.append(t)

    def __repr__(self) -> str:
        return f"InMemoryTransferService({len(self.balances)} accounts, {len(self.history)} transfers)"
