"""
Basis point fee arithmetic, integers only.

A fee can be quoted two ways:
- on top of a base amount: total = base + fee_on_base(base, bps)
- included in a total: (base, fee) = split_total(total, bps)

split_total inverts fee_on_base exactly whenever base * bps is a multiple of
BASIS_POINTS. Otherwise the base it returns satisfies
base + fee_on_base(base) <= total <= base + 1 + fee_on_base(base + 1)
and whatever is left over goes to the fee. This upper bound is the intended
one. The tighter total < base + fee_on_base(base + 1) does not hold: at 25 bps
a total of 10025 splits into base = 10000, and base + fee_on_base(base + 1)
is also 10025.
"""

from dataclasses import dataclass, replace

from .note import TokenType

BASIS_POINTS = 10_000


def _check(amount: int, bps: int):
    if amount < 0:
        raise ValueError(f"negative amount {amount}")
    if not 0 <= bps <= BASIS_POINTS:
        raise ValueError(f"fee of {bps} bps is out of range")


def fee_on_base(base: int, bps: int) -> int:
    _check(base, bps)
    return base * bps // BASIS_POINTS


def split_total(total: int, bps: int) -> tuple[int, int]:
    _check(total, bps)
    base = total * BASIS_POINTS // (BASIS_POINTS + bps)
    return base, total - base


def get_base_and_fee(amount: int, bps: int, is_total_inclusive: bool) -> tuple[int, int]:
    if is_total_inclusive:
        return split_total(amount, bps)
    return amount, fee_on_base(amount, bps)


@dataclass(frozen=True)
class FeeConfig:
    deposit_fee_bps: int
    withdraw_fee_bps: int
    nft_fee_bps: int
    treasury: str

    def __post_init__(self):
        for bps in (self.deposit_fee_bps, self.withdraw_fee_bps, self.nft_fee_bps):
            _check(0, bps)

    def bps_for(self, token_type: TokenType, is_deposit: bool) -> int:
        if token_type == TokenType.NFT:
            return self.nft_fee_bps
        return self.deposit_fee_bps if is_deposit else self.withdraw_fee_bps

    def replace(self, **kwarg) -> "FeeConfig":
        return replace(self, **kwarg)
