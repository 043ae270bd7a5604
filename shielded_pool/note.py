"""
Notes and the public values derived from them.

A note never touches the ledger. Its owner keeps it, together with the
spending key, and only two hashes of it ever become public:
- the commitment, appended to the commitment tree when the note is created
- the nullifier, recorded when the note is spent
"""

from dataclasses import dataclass
from enum import IntEnum

from .crypto import HASH, SNARK_SCALAR_FIELD, HashOracle, prf, random_field_element

MAX_AMOUNT = 2**120 - 1


class TokenType(IntEnum):
    FUNGIBLE = 0
    NFT = 1


def address_to_field(address: str) -> int:
    return int(address, 16)


def field_to_address(value: int) -> str:
    return f"0x{value:040x}"


@dataclass(frozen=True)
class TokenData:
    token_type: TokenType
    token_address: str
    token_sub_id: int = 0

    @staticmethod
    def fungible(token_address: str) -> "TokenData":
        return TokenData(TokenType.FUNGIBLE, token_address, 0)

    def token_field(self, oracle: HashOracle = HASH) -> int:
        """
        The value identifying this token inside proofs.

        Plain fungible tokens are identified by their address, everything else
        by a hash of the full token description.
        """
        if self.token_type == TokenType.FUNGIBLE and self.token_sub_id == 0:
            return address_to_field(self.token_address)
        return prf(
            "SHIELDED_POOL_TOKEN",
            int(self.token_type),
            address_to_field(self.token_address),
            self.token_sub_id,
            oracle=oracle,
        )


@dataclass(frozen=True)
class SpendingKey:
    secret: int

    @staticmethod
    def random() -> "SpendingKey":
        return SpendingKey(random_field_element())

    def public_key(self, oracle: HashOracle = HASH) -> int:
        return prf("SHIELDED_POOL_PK", self.secret, oracle=oracle)

    def nullifying_key(self, oracle: HashOracle = HASH) -> int:
        return prf("SHIELDED_POOL_NK", self.secret, oracle=oracle)


@dataclass(frozen=True)
class Note:
    owner_public_key: int
    amount: int
    token: TokenData
    random: int  # blinding factor, hides the other fields in the commitment

    def __post_init__(self):
        assert 0 <= self.amount <= MAX_AMOUNT, f"amount {self.amount} out of range"
        assert 0 <= self.random < SNARK_SCALAR_FIELD

    @staticmethod
    def generate(owner_public_key: int, amount: int, token: TokenData) -> "Note":
        return Note(owner_public_key, amount, token, random_field_element())


def commitment_hash(note: Note, oracle: HashOracle = HASH) -> int:
    return oracle.hash(
        [
            note.owner_public_key,
            note.random,
            note.amount,
            address_to_field(note.token.token_address),
            int(note.token.token_type),
            note.token.token_sub_id,
        ]
    )


def nullifier_hash(note: Note, spending_key: SpendingKey, oracle: HashOracle = HASH) -> int:
    """
    The nullifier that must be published when spending `note`, along with a
    proof that `spending_key` is the key behind the note's owner public key.
    """
    return oracle.hash(
        [spending_key.nullifying_key(oracle), commitment_hash(note, oracle)]
    )


@dataclass(frozen=True)
class DepositRequest:
    """
    A deposit that does not need a proof: the depositor reveals the note
    fields and the pool computes the commitment itself.
    """

    owner_public_key: int
    random: int
    amount: int
    token: TokenData

    @staticmethod
    def for_note(note: Note) -> "DepositRequest":
        return DepositRequest(note.owner_public_key, note.random, note.amount, note.token)

    def note(self) -> Note:
        return Note(self.owner_public_key, self.amount, self.token, self.random)
