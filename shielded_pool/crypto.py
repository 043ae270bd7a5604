"""
Hash oracle used for commitments, nullifiers and tree nodes.

!Important! The field and hash here must be in agreement with the proving system
that backs the pool. Proofs over BN254 (circom/Groth16, noir/Barretenberg) work
over the BN254 scalar field, which is the base field of the Grumpkin curve.
"""

from abc import ABC, abstractmethod
from hashlib import sha256
from typing import Sequence

from keum import grumpkin
import poseidon


Field = grumpkin.Fq

SNARK_SCALAR_FIELD = Field.ORDER


def to_field(x: int) -> Field:
    return Field(int(x) % Field.ORDER)


class HashOracle(ABC):
    """
    A deterministic multi-input hash onto the scalar field.

    There is one implementation per cryptographic suite, every derivation in
    this package takes the oracle it should use as an explicit argument.
    """

    @abstractmethod
    def hash(self, inputs: Sequence[int]) -> int:
        pass

    def hash_pair(self, left: int, right: int) -> int:
        return self.hash([left, right])


class Sha256FieldHash(HashOracle):
    """
    HACK: we fake the algebraic hash using sha256(data) % Field.ORDER

    Cheap to compute and good enough to exercise the ledger, but a real
    circuit would not be able to prove statements about it.
    """

    def hash(self, inputs: Sequence[int]) -> int:
        data = b"".join(to_field(x).v.to_bytes(256 // 8, "big") for x in inputs)
        return to_field(int(sha256(data).hexdigest(), 16)).v


class PoseidonHash(HashOracle):
    """
    Poseidon over the scalar field.

    Inputs of arbitrary length are absorbed `input_rate - 1` elements at a time,
    chaining the previous digest into the first slot of each permutation.
    """

    def __init__(self, security_level=128, alpha=5, input_rate=3, t=9):
        self._h = poseidon.Poseidon(
            p=Field.ORDER,
            security_level=security_level,
            alpha=alpha,
            input_rate=input_rate,
            t=t,
        )

    def hash(self, inputs: Sequence[int]) -> int:
        chunk = self._h.input_rate - 1
        data = [to_field(x).v for x in inputs] or [0]
        if len(data) % chunk:
            data += [0] * (chunk - len(data) % chunk)

        digest = 0
        for i in range(0, len(data), chunk):
            digest = int(self._h.run_hash([digest, *data[i : i + chunk]]))
        return to_field(digest).v


HASH: HashOracle = Sha256FieldHash()


def prf(domain: str, *elements: int, oracle: HashOracle = HASH) -> int:
    return oracle.hash([*_str_to_vec(domain), *elements])


def random_field_element() -> int:
    return Field.random().v


def _str_to_vec(s: str) -> list[int]:
    return [ord(c) for c in s]
