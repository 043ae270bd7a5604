"""
The interface between the pool and the proving system.

The pool never looks inside a proof. It hands the proof and the public inputs
of a transition to a `ProofVerifier` and gets back a yes or a no.

The public input layout is fixed:
  adaptor_contract, adaptor_parameters, deposit_amount, withdraw_amount,
  output_token_field, output_address, tree_number, merkle_root,
  nullifiers, commitments
"""

import shutil
from abc import ABC, abstractmethod
from dataclasses import dataclass
from pathlib import Path

import portalocker
import sh
import toml

from .crypto import HASH, HashOracle, prf
from .note import address_to_field


@dataclass(frozen=True)
class PublicInputs:
    adaptor_contract: str
    adaptor_parameters: int
    deposit_amount: int
    withdraw_amount: int
    output_token_field: int
    output_address: str
    tree_number: int
    merkle_root: int
    nullifiers: tuple[int, ...]
    commitments: tuple[int, ...]

    def as_tuple(self) -> tuple:
        return (
            self.adaptor_contract,
            self.adaptor_parameters,
            self.deposit_amount,
            self.withdraw_amount,
            self.output_token_field,
            self.output_address,
            self.tree_number,
            self.merkle_root,
            self.nullifiers,
            self.commitments,
        )

    def flatten(self) -> list[int]:
        """
        The public inputs as a vector of field elements, list fields are
        prefixed by their length.
        """
        return [
            address_to_field(self.adaptor_contract),
            self.adaptor_parameters,
            self.deposit_amount,
            self.withdraw_amount,
            self.output_token_field,
            address_to_field(self.output_address),
            self.tree_number,
            self.merkle_root,
            len(self.nullifiers),
            *self.nullifiers,
            len(self.commitments),
            *self.commitments,
        ]


class Proof:
    pass


class ProofVerifier(ABC):
    @abstractmethod
    def verify(self, proof: Proof, public_inputs: PublicInputs) -> bool:
        pass


@dataclass(frozen=True)
class MockProof(Proof):
    binding: int


class MockProver:
    """
    Stands in for a real prover in tests and simulations.

    A mock proof is a hash of the public inputs it was produced for, so it
    verifies against exactly those inputs. It says nothing about the notes
    being spent, that is what the real circuit is for.
    """

    def __init__(self, oracle: HashOracle = HASH):
        self.oracle = oracle

    def prove(self, public_inputs: PublicInputs) -> MockProof:
        return MockProof(_bind(public_inputs, self.oracle))


class MockProofVerifier(ProofVerifier):
    def __init__(self, oracle: HashOracle = HASH):
        self.oracle = oracle

    def verify(self, proof: Proof, public_inputs: PublicInputs) -> bool:
        if not isinstance(proof, MockProof):
            return False
        return proof.binding == _bind(public_inputs, self.oracle)


def _bind(public_inputs: PublicInputs, oracle: HashOracle) -> int:
    return prf("SHIELDED_POOL_MOCK_PROOF", *public_inputs.flatten(), oracle=oracle)


@dataclass(frozen=True)
class NoirProof(Proof):
    proof: str


class NoirProofVerifier(ProofVerifier):
    """
    Verifies proofs of a circuit written in noir by shelling out to `nargo`.

    The circuit is expected as a noir package at `<noir_dir>/crates/<circuit>/`.
    Only one nargo action runs at a time across `noir_dir`.
    """

    def __init__(self, circuit: str, noir_dir: Path):
        self.circuit = circuit
        self.noir_dir = Path(noir_dir)
        if shutil.which("nargo") is None:
            raise RuntimeError("nargo is not installed")
        self._nargo_cmd = sh.Command("nargo")
        assert self.package_dir.is_dir(), f"{self.package_dir} is not a noir package"

    @property
    def package_dir(self) -> Path:
        return self.noir_dir / "crates" / self.circuit

    @property
    def lock_file(self) -> Path:
        return self.noir_dir / ".pool.lock"

    def verify(self, proof: Proof, public_inputs: PublicInputs) -> bool:
        """
        1. Write the public inputs to the package's Verifier.toml
        2. Write the proof where nargo expects it
        3. Run `nargo verify` and check its exit code
        """
        if not isinstance(proof, NoirProof):
            return False

        with portalocker.TemporaryFileLock(self.lock_file):
            with open(self.package_dir / "Verifier.toml", "w") as verifier_f:
                toml.dump(noir_params(public_inputs), verifier_f)

            proof_path = self.noir_dir / "proofs" / f"{self.circuit}.proof"
            proof_path.parent.mkdir(exist_ok=True)
            with open(proof_path, "w") as proof_f:
                proof_f.write(proof.proof)

            res = self._nargo("verify", _ok_code=[0, 1], _return_cmd=True)
            return res.exit_code == 0

    def _nargo(self, *args, **kwargs):
        return self._nargo_cmd(*args, **kwargs, _cwd=self.package_dir)


def noir_params(public_inputs: PublicInputs) -> dict:
    """Public inputs in the shape nargo reads from Verifier.toml"""
    return {
        "adaptor_contract": str(address_to_field(public_inputs.adaptor_contract)),
        "adaptor_parameters": str(public_inputs.adaptor_parameters),
        "deposit_amount": str(public_inputs.deposit_amount),
        "withdraw_amount": str(public_inputs.withdraw_amount),
        "output_token_field": str(public_inputs.output_token_field),
        "output_address": str(address_to_field(public_inputs.output_address)),
        "tree_number": str(public_inputs.tree_number),
        "merkle_root": str(public_inputs.merkle_root),
        "nullifiers": [str(nf) for nf in public_inputs.nullifiers],
        "commitments": [str(cm) for cm in public_inputs.commitments],
    }
