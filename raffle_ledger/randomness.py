"""
randomness.py - Random sources for raffle draws

Classes:
- RandomSource: Protocol defining the draw interface
- SecureRandomSource: Cryptographically secure draws (secrets module)
- SequenceRandomSource: Replays a fixed sequence of values

The raffle engine only ever asks for uniform(0, total_tickets) and
expects an integer in [low, high).
"""

from __future__ import annotations
import secrets
from typing import Iterable, List, Protocol, runtime_checkable


@runtime_checkable
class RandomSource(Protocol):
    """
    Protocol for random sources.

    Implementations return an integer r with low <= r < high.
    """

    def uniform(self, low: int, high: int) -> int:
        ...


class SecureRandomSource:
    """Random source backed by the operating system's CSPRNG."""

    def uniform(self, low: int, high: int) -> int:
        if high <= low:
            raise ValueError(f"Empty range [{low}, {high})")
        return low + secrets.randbelow(high - low)

    def __repr__(self):
        return "SecureRandomSource()"


class SequenceRandomSource:
    """
    Random source that replays recorded values in order.

    Used to reproduce a past draw from its recorded values, and in tests.
    Values are returned as-is and must fall inside the requested range.

    Example:
        source = SequenceRandomSource([750])
        source.uniform(0, 1000)  # -> 750
    """

    def __init__(self, values: Iterable[int]):
        self.values: List[int] = list(values)
        self.position = 0

    @property
    def remaining(self) -> int:
        return len(self.values) - self.position

    def uniform(self, low: int, high: int) -> int:
        if self.position >= len(self.values):
            raise ValueError("SequenceRandomSource exhausted")
        value = self.values[self.position]
        if not low <= value < high:
            raise ValueError(f"Recorded value {value} outside [{low}, {high})")
        self.position += 1
        return value

    def __repr__(self):
        return f"SequenceRandomSource({self.remaining} of {len(self.values)} remaining)"
