from .config import LimitsConfig, PoolConfig, TreeConfig
from .crypto import Sha256FieldHash
from .merkle import DEFAULT_DEPTH, MerkleTree
from .note import Note, SpendingKey, TokenData, commitment_hash, nullifier_hash
from .pool import ShieldedPool
from .proof import MockProofVerifier, MockProver, ProofVerifier
from .tokens import InMemoryTokenLedger
from .transaction import (
    ZERO_ADDRESS,
    JoinFields,
    SharedFields,
    SplitFields,
    TransitionRequest,
    public_inputs,
)

OWNER = "0x" + "01" * 20
TREASURY = "0x" + "02" * 20
POOL = "0x" + "03" * 20
ALICE = "0x" + "0a" * 20
BOB = "0x" + "0b" * 20

TOKEN = TokenData.fungible("0x" + "7e" * 20)


def mk_config(
    deposit_fee_bps=0,
    withdraw_fee_bps=0,
    nft_fee_bps=0,
    depth=DEFAULT_DEPTH,
    root_history=0,
    **limits,
) -> PoolConfig:
    config = PoolConfig.default(owner=OWNER, treasury=TREASURY, pool_address=POOL)
    config.fees.deposit_fee_bps = deposit_fee_bps
    config.fees.withdraw_fee_bps = withdraw_fee_bps
    config.fees.nft_fee_bps = nft_fee_bps
    return config.replace(
        tree=TreeConfig(depth=depth, root_history=root_history),
        limits=LimitsConfig(**limits),
    )


def mk_pool(
    config: PoolConfig | None = None,
    verifier: ProofVerifier | None = None,
    funds: int = 10**9,
) -> tuple[ShieldedPool, InMemoryTokenLedger]:
    config = config or mk_config()
    tokens = InMemoryTokenLedger(pool_address=config.pool_address)
    tokens.mint(TOKEN, ALICE, funds)
    pool = ShieldedPool(config, verifier or MockProofVerifier(), tokens)
    return pool, tokens


def mk_note(key: SpendingKey, amount: int, token: TokenData = TOKEN) -> Note:
    return Note.generate(key.public_key(), amount, token)


def mk_request(
    pool: ShieldedPool,
    nullifiers=(),
    commitments=(),
    deposit=0,
    withdraw=0,
    output_address=ZERO_ADDRESS,
    token: TokenData = TOKEN,
    tree_number: int | None = None,
    merkle_root: int | None = None,
    prover: MockProver | None = None,
) -> TransitionRequest:
    """
    Builds a transition against the pool's current root and proves it with the
    mock prover.
    """
    shared = SharedFields(
        deposit_amount=deposit,
        withdraw_amount=withdraw,
        token_type=token.token_type,
        token_sub_id=token.token_sub_id,
        token_field=token.token_field(),
        output_address=output_address,
    )
    join = JoinFields(
        tree_number=pool.current_tree_number() if tree_number is None else tree_number,
        merkle_root=pool.current_root() if merkle_root is None else merkle_root,
        nullifiers=tuple(nullifiers),
    )
    split = SplitFields(commitments_out=tuple(commitments))
    proof = (prover or MockProver()).prove(public_inputs(shared, join, split))
    return TransitionRequest(proof=proof, shared=shared, join=join, split=split)


def mk_spend(pool: ShieldedPool, key: SpendingKey, notes: list[Note], outputs: list[Note], **kwargs):
    return mk_request(
        pool,
        nullifiers=[nullifier_hash(n, key) for n in notes],
        commitments=[commitment_hash(n) for n in outputs],
        **kwargs,
    )


def replay(*batches: list[int], depth=DEFAULT_DEPTH) -> MerkleTree:
    """Replays commitment insertions off-ledger, the way a prover tracks the pool"""
    tree = MerkleTree(depth)
    for batch in batches:
        tree.insert_leaves(batch)
    return tree


class FailingOracle(Sha256FieldHash):
    """Hashes like the default oracle until `calls_left` drops to zero, then times out"""

    def __init__(self):
        self.calls_left = None

    def hash(self, inputs):
        if self.calls_left is not None:
            if self.calls_left == 0:
                raise TimeoutError("hash oracle did not answer")
            self.calls_left -= 1
        return super().hash(inputs)
