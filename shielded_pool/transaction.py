from dataclasses import dataclass, field

from .note import TokenType
from .proof import Proof, PublicInputs

ZERO_ADDRESS = "0x" + "00" * 20


@dataclass(frozen=True)
class SharedFields:
    adaptor_contract: str = ZERO_ADDRESS
    adaptor_parameters: int = 0
    deposit_amount: int = 0
    withdraw_amount: int = 0
    token_type: TokenType = TokenType.FUNGIBLE
    token_sub_id: int = 0
    token_field: int = 0
    output_address: str = ZERO_ADDRESS


@dataclass(frozen=True)
class JoinFields:
    """The notes being spent, identified only by their nullifiers"""

    tree_number: int
    merkle_root: int
    nullifiers: tuple[int, ...] = ()


@dataclass(frozen=True)
class SplitFields:
    """The notes being created"""

    commitments_out: tuple[int, ...] = ()


@dataclass(frozen=True)
class TransitionRequest:
    """
    One proof-backed state transition, built off-ledger by a prover.

    It is applied in full together with the rest of its batch, or not at all.
    """

    proof: Proof
    shared: SharedFields
    join: JoinFields
    split: SplitFields = field(default_factory=SplitFields)

    def public_inputs(self) -> PublicInputs:
        return public_inputs(self.shared, self.join, self.split)


def public_inputs(shared: SharedFields, join: JoinFields, split: SplitFields) -> PublicInputs:
    return PublicInputs(
        adaptor_contract=shared.adaptor_contract,
        adaptor_parameters=shared.adaptor_parameters,
        deposit_amount=shared.deposit_amount,
        withdraw_amount=shared.withdraw_amount,
        output_token_field=shared.token_field,
        output_address=shared.output_address,
        tree_number=join.tree_number,
        merkle_root=join.merkle_root,
        nullifiers=tuple(join.nullifiers),
        commitments=tuple(split.commitments_out),
    )
