"""
Token movements in and out of the pool.

The pool only tells a `TokenTransfer` to pull value from an address or to pay
value out to an address. Balances, approvals and the token standards
themselves live behind this interface.
"""

from abc import ABC, abstractmethod
from collections import defaultdict
from dataclasses import dataclass, field

from .note import TokenData


class TokenTransfer(ABC):
    @abstractmethod
    def transfer_in(self, token: TokenData, from_address: str, amount: int) -> bool:
        """Moves `amount` of `token` from `from_address` into the pool"""

    @abstractmethod
    def transfer_out(self, token: TokenData, to_address: str, amount: int) -> bool:
        """Moves `amount` of `token` from the pool to `to_address`"""


@dataclass
class InMemoryTokenLedger(TokenTransfer):
    """
    Balances kept in a dict, transfers fail instead of overdrawing.
    """

    pool_address: str
    balances: dict[tuple[TokenData, str], int] = field(
        default_factory=lambda: defaultdict(int)
    )

    def mint(self, token: TokenData, address: str, amount: int):
        self.balances[(token, address)] += amount

    def balance_of(self, token: TokenData, address: str) -> int:
        return self.balances.get((token, address), 0)

    def pool_balance(self, token: TokenData) -> int:
        return self.balance_of(token, self.pool_address)

    def transfer(self, token: TokenData, src: str, dst: str, amount: int) -> bool:
        if amount < 0 or self.balance_of(token, src) < amount:
            return False
        self.balances[(token, src)] -= amount
        self.balances[(token, dst)] += amount
        return True

    def transfer_in(self, token: TokenData, from_address: str, amount: int) -> bool:
        return self.transfer(token, from_address, self.pool_address, amount)

    def transfer_out(self, token: TokenData, to_address: str, amount: int) -> bool:
        return self.transfer(token, self.pool_address, to_address, amount)
