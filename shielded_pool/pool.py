"""
The pool: the ledger state and the only code allowed to change it.

A batch goes through the following steps and is either applied in full or
rejected with no change to the state:
1. shape and root checks on every request
2. proof verification of every request
3. check-and-reserve of all nullifiers of the batch
4. token movements: deposits in, withdrawals out, fees to the treasury
5. a single append of every new commitment, in request order, then the
   commit of the nullifiers

Any failure before the nullifiers are committed, including an exception from
one of the collaborators, releases the reserved nullifiers and reverses the
token movements already made.

Batches are applied one at a time.
"""

import logging
import threading
from collections import defaultdict, deque
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import Sequence

from .config import PoolConfig
from .crypto import HASH, SNARK_SCALAR_FIELD, HashOracle
from .errors import (
    FeeConfigUnauthorized,
    MalformedRequest,
    NullifierConflict,
    ProofInvalid,
    ProofVerificationError,
    ShieldedPoolError,
    StaleRoot,
    TokenTransferFailed,
)
from .fees import FeeConfig, fee_on_base, get_base_and_fee, split_total
from .merkle import IncrementalMerkleTree
from .note import (
    MAX_AMOUNT,
    DepositRequest,
    TokenData,
    TokenType,
    address_to_field,
    commitment_hash,
    field_to_address,
)
from .nullifiers import NullifierLedger, Reservation
from .proof import ProofVerifier
from .tokens import TokenTransfer
from .transaction import ZERO_ADDRESS, TransitionRequest

logger = logging.getLogger(__name__)


@dataclass
class PoolState:
    tree: IncrementalMerkleTree
    nullifiers: NullifierLedger
    fees: FeeConfig
    # tokens whose token field is a hash rather than their address
    tokens: dict[int, TokenData] = field(default_factory=dict)
    # (tree number, root) pairs a proof may be built against, latest last
    roots: deque = field(default_factory=deque)

    @staticmethod
    def genesis(config: PoolConfig, oracle: HashOracle = HASH) -> "PoolState":
        tree = IncrementalMerkleTree(config.tree.depth, oracle)
        state = PoolState(
            tree=tree,
            nullifiers=NullifierLedger(),
            fees=config.fees.fee_config(),
            roots=deque(maxlen=config.tree.root_history + 1),
        )
        state.roots.append((tree.tree_number, tree.root))
        return state


@dataclass(frozen=True)
class BatchResult:
    tree_number: int
    # position of the first new commitment in its tree
    start_index: int
    root: int
    commitments: tuple[int, ...]
    nullifiers: tuple[int, ...]
    fees: dict[TokenData, int]


@dataclass(frozen=True)
class _Movement:
    incoming: bool
    token: TokenData
    address: str
    amount: int


class ShieldedPool:
    def __init__(
        self,
        config: PoolConfig,
        verifier: ProofVerifier,
        token_transfer: TokenTransfer,
        oracle: HashOracle = HASH,
        state: PoolState | None = None,
    ):
        config.validate()
        self.config = config
        self.verifier = verifier
        self.token_transfer = token_transfer
        self.oracle = oracle
        self.state = state if state is not None else PoolState.genesis(config, oracle)
        self._lock = threading.Lock()

    # -- Queries

    def current_root(self) -> int:
        return self.state.tree.root

    def current_tree_number(self) -> int:
        return self.state.tree.tree_number

    def next_free_index(self) -> int:
        return self.state.tree.next_free_index

    def is_known_root(self, tree_number: int, root: int) -> bool:
        return (tree_number, root) in self.state.roots

    def is_spent(self, nullifier: int) -> bool:
        return self.state.nullifiers.is_spent(nullifier)

    def get_base_and_fee(self, amount: int, is_total_inclusive: bool) -> tuple[int, int]:
        return get_base_and_fee(
            amount, self.state.fees.deposit_fee_bps, is_total_inclusive
        )

    # -- Administration

    def change_fee(self, caller: str, deposit_bps: int, withdraw_bps: int, nft_bps: int):
        with self._lock:
            self._authorize(caller)
            self.state.fees = self.state.fees.replace(
                deposit_fee_bps=deposit_bps,
                withdraw_fee_bps=withdraw_bps,
                nft_fee_bps=nft_bps,
            )
            logger.info(
                "fees changed to deposit=%d withdraw=%d nft=%d bps",
                deposit_bps,
                withdraw_bps,
                nft_bps,
            )

    def change_treasury(self, caller: str, treasury: str):
        with self._lock:
            self._authorize(caller)
            self.state.fees = self.state.fees.replace(treasury=treasury)
            logger.info("treasury changed to %s", treasury)

    def _authorize(self, caller: str):
        if caller != self.config.owner:
            logger.warning("rejected configuration change from %s", caller)
            raise FeeConfigUnauthorized(caller)

    # -- State transitions

    def transact(self, requests: Sequence[TransitionRequest], sender: str) -> BatchResult:
        """
        Applies a batch of proof-backed transitions.

        `sender` pays the deposits of the batch.
        """
        requests = list(requests)
        with self._lock:
            try:
                return self._transact(requests, sender)
            except ShieldedPoolError as e:
                logger.warning("rejected batch of %d requests: %s", len(requests), e)
                raise
            except Exception:
                logger.exception("aborted batch of %d requests", len(requests))
                raise

    def generate_deposit(self, deposits: Sequence[DepositRequest], sender: str) -> BatchResult:
        """
        Deposits without a proof: the depositor reveals the notes and pays
        their amounts plus the deposit fee on top.
        """
        deposits = list(deposits)
        with self._lock:
            try:
                return self._generate_deposit(deposits, sender)
            except ShieldedPoolError as e:
                logger.warning("rejected deposit of %d notes: %s", len(deposits), e)
                raise
            except Exception:
                logger.exception("aborted deposit of %d notes", len(deposits))
                raise

    def _transact(self, requests: list[TransitionRequest], sender: str) -> BatchResult:
        if not requests:
            raise MalformedRequest("empty batch")
        for i, request in enumerate(requests):
            self._check_shape(i, request)

        commitments = [cm for r in requests for cm in r.split.commitments_out]
        self._check_capacity(len(commitments))

        for i, request in enumerate(requests):
            join = request.join
            if not self.is_known_root(join.tree_number, join.merkle_root):
                raise StaleRoot(join.tree_number, join.merkle_root, i)

        self._verify_proofs(requests)

        spent = [(i, nf) for i, r in enumerate(requests) for nf in r.join.nullifiers]
        reservation = self._reserve(spent)

        journal: list[_Movement] = []
        fees = defaultdict(int)
        try:
            for i, request in enumerate(requests):
                self._apply_transfers(i, request, sender, journal, fees)
            start_index = self._append(commitments)
        except BaseException:
            reservation.release()
            self._unwind(journal)
            raise

        reservation.commit()
        return self._result(start_index, commitments, reservation.nullifiers, dict(fees))

    def _generate_deposit(self, deposits: list[DepositRequest], sender: str) -> BatchResult:
        if not deposits:
            raise MalformedRequest("empty batch")
        for i, deposit in enumerate(deposits):
            self._check_deposit(i, deposit)
        self._check_capacity(len(deposits))

        commitments = [commitment_hash(d.note(), self.oracle) for d in deposits]
        token_fields = [d.token.token_field(self.oracle) for d in deposits]

        journal: list[_Movement] = []
        fees = defaultdict(int)
        try:
            for i, deposit in enumerate(deposits):
                bps = self.state.fees.bps_for(deposit.token.token_type, is_deposit=True)
                fee = fee_on_base(deposit.amount, bps)
                self._move(journal, i, True, deposit.token, sender, deposit.amount + fee)
                self._move(journal, i, False, deposit.token, self.state.fees.treasury, fee)
                fees[deposit.token] += fee
            start_index = self._append(commitments)
        except BaseException:
            self._unwind(journal)
            raise

        for deposit, token_field in zip(deposits, token_fields):
            self._register_token(deposit.token, token_field)
        return self._result(start_index, commitments, (), dict(fees))

    # -- Validation

    def _check_shape(self, i: int, request: TransitionRequest):
        shared, join, split = request.shared, request.join, request.split
        limits = self.config.limits

        if len(join.nullifiers) > limits.max_nullifiers:
            raise MalformedRequest(f"more than {limits.max_nullifiers} nullifiers", i)
        if len(split.commitments_out) > limits.max_commitments:
            raise MalformedRequest(f"more than {limits.max_commitments} commitments", i)
        for h in (*join.nullifiers, *split.commitments_out, join.merkle_root):
            if not 0 <= h < SNARK_SCALAR_FIELD:
                raise MalformedRequest(f"{h:#x} is not a field element", i)

        for amount in (shared.deposit_amount, shared.withdraw_amount):
            if not 0 <= amount <= MAX_AMOUNT:
                raise MalformedRequest(f"amount {amount} out of range", i)
        if shared.withdraw_amount > 0 and shared.output_address == ZERO_ADDRESS:
            raise MalformedRequest("withdrawal without an output address", i)
        if (shared.deposit_amount or shared.withdraw_amount) and not self._is_known_token(shared):
            raise MalformedRequest(f"unknown token field {shared.token_field:#x}", i)

    def _check_deposit(self, i: int, deposit: DepositRequest):
        if not 0 < deposit.amount <= MAX_AMOUNT:
            raise MalformedRequest(f"amount {deposit.amount} out of range", i)
        for v in (deposit.random, deposit.owner_public_key):
            if not 0 <= v < SNARK_SCALAR_FIELD:
                raise MalformedRequest(f"{v:#x} is not a field element", i)
        try:
            address_to_field(deposit.token.token_address)
        except ValueError:
            raise MalformedRequest(f"bad token address {deposit.token.token_address}", i)

    def _check_capacity(self, count: int):
        if count > self.state.tree.capacity:
            raise MalformedRequest(
                f"{count} commitments do not fit in a tree of depth {self.state.tree.depth}"
            )

    def _verify_proofs(self, requests: list[TransitionRequest]):
        workers = self.config.limits.verifier_workers
        jobs = list(enumerate(requests))
        if workers == 1 or len(requests) == 1:
            results = [self._verify_proof(job) for job in jobs]
        else:
            with ThreadPoolExecutor(max_workers=workers) as executor:
                results = list(executor.map(self._verify_proof, jobs))

        for i, valid in enumerate(results):
            if not valid:
                raise ProofInvalid(i)

    def _verify_proof(self, job: tuple[int, TransitionRequest]) -> bool:
        i, request = job
        try:
            return self.verifier.verify(request.proof, request.public_inputs())
        except Exception as e:
            raise ProofVerificationError(i) from e

    def _reserve(self, spent: list[tuple[int, int]]) -> Reservation:
        try:
            return self.state.nullifiers.check_and_reserve(nf for _, nf in spent)
        except NullifierConflict as conflict:
            positions = [i for i, nf in spent if nf == conflict.nullifier]
            # a duplicate is blamed on the request repeating the nullifier
            conflict.request_index = positions[1 if conflict.duplicate_in_batch else 0]
            raise

    # -- Tokens

    def _is_known_token(self, shared) -> bool:
        if shared.token_type == TokenType.FUNGIBLE and shared.token_sub_id == 0:
            return shared.token_field < 2**160
        token = self.state.tokens.get(shared.token_field)
        return (
            token is not None
            and token.token_type == shared.token_type
            and token.token_sub_id == shared.token_sub_id
        )

    def _resolve_token(self, shared) -> TokenData:
        if shared.token_type == TokenType.FUNGIBLE and shared.token_sub_id == 0:
            return TokenData.fungible(field_to_address(shared.token_field))
        return self.state.tokens[shared.token_field]

    def _register_token(self, token: TokenData, token_field: int):
        if token_field != address_to_field(token.token_address):
            self.state.tokens.setdefault(token_field, token)

    def _apply_transfers(self, i, request, sender, journal, fees):
        shared = request.shared
        if not (shared.deposit_amount or shared.withdraw_amount):
            return

        token = self._resolve_token(shared)
        treasury = self.state.fees.treasury

        if shared.deposit_amount > 0:
            bps = self.state.fees.bps_for(token.token_type, is_deposit=True)
            _, fee = split_total(shared.deposit_amount, bps)
            self._move(journal, i, True, token, sender, shared.deposit_amount)
            self._move(journal, i, False, token, treasury, fee)
            fees[token] += fee

        if shared.withdraw_amount > 0:
            bps = self.state.fees.bps_for(token.token_type, is_deposit=False)
            base, fee = split_total(shared.withdraw_amount, bps)
            self._move(journal, i, False, token, shared.output_address, base)
            self._move(journal, i, False, token, treasury, fee)
            fees[token] += fee

    def _move(self, journal, i, incoming: bool, token: TokenData, address: str, amount: int):
        if amount == 0:
            return
        if incoming:
            ok = self.token_transfer.transfer_in(token, address, amount)
        else:
            ok = self.token_transfer.transfer_out(token, address, amount)
        if not ok:
            raise TokenTransferFailed(token, address, amount, i)
        journal.append(_Movement(incoming, token, address, amount))

    def _unwind(self, journal: list[_Movement]):
        for m in reversed(journal):
            if m.incoming:
                ok = self.token_transfer.transfer_out(m.token, m.address, m.amount)
            else:
                ok = self.token_transfer.transfer_in(m.token, m.address, m.amount)
            if not ok:
                raise RuntimeError(f"could not reverse {m} while unwinding a batch")

    # -- Tree

    def _append(self, commitments: list[int]) -> int:
        """Inserts the batch's commitments and returns the index of the first one"""
        tree = self.state.tree
        if not commitments:
            return tree.next_free_index

        start_index = tree.next_free_index if tree.fits(len(commitments)) else 0
        tree.insert_leaves(commitments)
        self.state.roots.append((tree.tree_number, tree.root))
        return start_index

    def _result(self, start_index, commitments, nullifiers, fees) -> BatchResult:
        tree = self.state.tree
        logger.info(
            "applied batch: %d commitments from index %d, %d nullifiers, tree %d root %#x",
            len(commitments),
            start_index,
            len(nullifiers),
            tree.tree_number,
            tree.root,
        )
        return BatchResult(
            tree_number=tree.tree_number,
            start_index=start_index,
            root=tree.root,
            commitments=tuple(commitments),
            nullifiers=tuple(nullifiers),
            fees=fees,
        )
