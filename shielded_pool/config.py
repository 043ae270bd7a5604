from __future__ import annotations

from dataclasses import dataclass, field, replace

import dacite
import yaml

from .fees import FeeConfig
from .merkle import DEFAULT_DEPTH


@dataclass
class PoolConfig:
    # The only address allowed to change fees and the treasury
    owner: str
    # Address holding the tokens backing the pool's commitments
    pool_address: str
    fees: FeeSettings
    tree: TreeConfig = field(default_factory=lambda: TreeConfig())
    limits: LimitsConfig = field(default_factory=lambda: LimitsConfig())

    @classmethod
    def load(cls, yaml_path: str) -> PoolConfig:
        with open(yaml_path, "r") as f:
            data = yaml.safe_load(f)
        config = dacite.from_dict(
            data_class=PoolConfig,
            data=data,
            config=dacite.Config(strict=True),
        )
        config.validate()
        return config

    @staticmethod
    def default(owner: str, treasury: str, pool_address: str) -> PoolConfig:
        return PoolConfig(
            owner=owner,
            pool_address=pool_address,
            fees=FeeSettings(treasury=treasury),
        )

    def validate(self):
        assert self.owner
        assert self.pool_address
        self.fees.validate()
        self.tree.validate()
        self.limits.validate()

    def replace(self, **kwarg) -> PoolConfig:
        return replace(self, **kwarg)


@dataclass
class FeeSettings:
    treasury: str
    # Fees in basis points, 10000 bps = 100%
    deposit_fee_bps: int = 0
    withdraw_fee_bps: int = 0
    nft_fee_bps: int = 0

    def validate(self):
        assert self.treasury
        self.fee_config()

    def fee_config(self) -> FeeConfig:
        return FeeConfig(
            deposit_fee_bps=self.deposit_fee_bps,
            withdraw_fee_bps=self.withdraw_fee_bps,
            nft_fee_bps=self.nft_fee_bps,
            treasury=self.treasury,
        )


@dataclass
class TreeConfig:
    # Each tree instance holds 2**depth commitments
    depth: int = DEFAULT_DEPTH
    # How many roots older than the latest one a proof may still reference.
    # 0 means a proof must be built against the latest root.
    root_history: int = 0

    def validate(self):
        assert 0 < self.depth <= 32
        assert self.root_history >= 0


@dataclass
class LimitsConfig:
    # Largest circuit the verifier accepts
    max_nullifiers: int = 10
    max_commitments: int = 3
    # Threads used to verify the proofs of a batch, 1 verifies in the calling thread
    verifier_workers: int = 1

    def validate(self):
        assert self.max_nullifiers > 0
        assert self.max_commitments > 0
        assert self.verifier_workers > 0
