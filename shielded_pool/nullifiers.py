"""
The set of spent notes.

A nullifier, once recorded, is consumed forever. Inserts happen a batch at a
time: the whole batch is checked against the ledger and against itself before
any of it is recorded.
"""

from dataclasses import dataclass, field
from typing import Iterable

from .errors import NullifierConflict


@dataclass
class NullifierLedger:
    nullifiers: set[int] = field(default_factory=set)

    def __contains__(self, nullifier: int) -> bool:
        return nullifier in self.nullifiers

    def __len__(self) -> int:
        return len(self.nullifiers)

    def is_spent(self, nullifier: int) -> bool:
        return nullifier in self

    def find_conflict(self, nullifiers: Iterable[int]) -> NullifierConflict | None:
        seen = set()
        for nf in nullifiers:
            if nf in self.nullifiers:
                return NullifierConflict(nf, duplicate_in_batch=False)
            if nf in seen:
                return NullifierConflict(nf, duplicate_in_batch=True)
            seen.add(nf)
        return None

    def check_and_reserve(self, nullifiers: Iterable[int]) -> "Reservation":
        """
        Records every nullifier or none of them.

        Raises NullifierConflict for the first nullifier that is either already
        spent or repeated within `nullifiers`.
        """
        nullifiers = tuple(nullifiers)
        if conflict := self.find_conflict(nullifiers):
            raise conflict
        self.nullifiers.update(nullifiers)
        return Reservation(self, nullifiers)


@dataclass
class Reservation:
    """
    Nullifiers inserted by `check_and_reserve` that can still be rolled back
    until the batch that reserved them is committed.
    """

    ledger: NullifierLedger
    nullifiers: tuple[int, ...]
    committed: bool = False
    released: bool = False

    def commit(self):
        if self.released:
            raise RuntimeError("reservation was already released")
        self.committed = True

    def release(self):
        if self.committed:
            raise RuntimeError("committed nullifiers can not be released")
        if not self.released:
            self.ledger.nullifiers.difference_update(self.nullifiers)
            self.released = True
