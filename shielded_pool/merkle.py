"""
Fixed depth binary merkle trees over note commitments.

`IncrementalMerkleTree` is the accumulator held by the ledger: it only keeps the
frontier of each level, enough to append leaves and recompute the root.
`MerkleTree` keeps every node, it is what provers use to replay the ledger's
insertions and to build inclusion paths for the notes they want to spend.

Both trees treat positions that have not been filled yet as empty leaves, so
the root is well defined for any number of leaves. For a fixed oracle and an
ordered leaf sequence both trees produce the same root.
"""

import functools
import logging
from dataclasses import dataclass
from typing import Sequence

from .crypto import HASH, SNARK_SCALAR_FIELD, HashOracle, prf

logger = logging.getLogger(__name__)

DEFAULT_DEPTH = 16


@functools.cache
def zero_hashes(oracle: HashOracle = HASH, depth: int = DEFAULT_DEPTH) -> tuple[int, ...]:
    """
    The root of an empty subtree of every height from 0 (an empty leaf) to
    `depth` (an empty tree).
    """
    zeros = [prf("SHIELDED_POOL_ZERO", oracle=oracle)]
    for _ in range(depth):
        zeros.append(oracle.hash_pair(zeros[-1], zeros[-1]))
    return tuple(zeros)


def _check_leaves(leaves: Sequence[int]):
    for leaf in leaves:
        if not 0 <= leaf < SNARK_SCALAR_FIELD:
            raise ValueError(f"leaf {leaf} is not a field element")


class IncrementalMerkleTree:
    """
    Append only accumulator, chained across tree instances.

    When a batch of leaves does not fit in the remaining capacity of the
    active tree, a new tree instance is opened and the whole batch goes there.
    """

    def __init__(self, depth: int = DEFAULT_DEPTH, oracle: HashOracle = HASH):
        assert depth > 0
        self.depth = depth
        self.oracle = oracle
        self.zeros = zero_hashes(oracle, depth)
        self.tree_number = 0
        self._reset()

    @property
    def capacity(self) -> int:
        return 2**self.depth

    def fits(self, count: int) -> bool:
        return self.next_free_index + count <= self.capacity

    def _reset(self):
        self.next_free_index = 0
        self.root = self.zeros[self.depth]
        # the most recent left node written on each level
        self.filled_subtrees = list(self.zeros[: self.depth])

    def new_tree(self):
        self.tree_number += 1
        self._reset()
        logger.info("opened commitment tree %d", self.tree_number)

    def insert_leaves(self, leaves: Sequence[int]) -> int:
        """
        Appends `leaves` in order and returns the new root.

        The tree is only updated once every node of the new path is hashed,
        an oracle failure leaves it as it was.
        """
        if not leaves:
            return self.root
        if len(leaves) > self.capacity:
            raise ValueError(
                f"{len(leaves)} leaves can not fit a tree of depth {self.depth}"
            )
        _check_leaves(leaves)

        rollover = not self.fits(len(leaves))
        start = 0 if rollover else self.next_free_index
        if rollover:
            filled_subtrees = list(self.zeros[: self.depth])
        else:
            filled_subtrees = list(self.filled_subtrees)

        position = start
        nodes = list(leaves)
        for level in range(self.depth):
            if position % 2 == 1:
                # the left sibling of the first new node is complete
                nodes.insert(0, filled_subtrees[level])
                position -= 1

            if len(nodes) % 2 == 1:
                filled_subtrees[level] = nodes[-1]
                nodes.append(self.zeros[level])
            else:
                filled_subtrees[level] = nodes[-2]

            nodes = [
                self.oracle.hash_pair(nodes[i], nodes[i + 1])
                for i in range(0, len(nodes), 2)
            ]
            position //= 2

        assert len(nodes) == 1
        if rollover:
            self.new_tree()
        self.filled_subtrees = filled_subtrees
        self.next_free_index = start + len(leaves)
        self.root = nodes[0]
        return self.root


@dataclass(frozen=True)
class MerkleProof:
    leaf: int
    index: int
    # sibling of the node on the path at every level, leaf level first
    siblings: tuple[int, ...]
    root: int


def verify_merkle_proof(proof: MerkleProof, oracle: HashOracle = HASH) -> bool:
    node = proof.leaf
    index = proof.index
    for sibling in proof.siblings:
        if index % 2 == 0:
            node = oracle.hash_pair(node, sibling)
        else:
            node = oracle.hash_pair(sibling, node)
        index //= 2
    return node == proof.root


class MerkleTree:
    """
    A single tree instance that remembers every leaf.

    Usage:
        tree = MerkleTree()
        tree.insert_leaves([cm_1, cm_2])
        tree.root
        tree.proof(1)
    """

    def __init__(self, depth: int = DEFAULT_DEPTH, oracle: HashOracle = HASH):
        self.depth = depth
        self.oracle = oracle
        self.zeros = zero_hashes(oracle, depth)
        # levels[0] holds the leaves, levels[depth] the root
        self.levels: list[list[int]] = [[] for _ in range(depth + 1)]

    @property
    def leaves(self) -> list[int]:
        return self.levels[0]

    @property
    def root(self) -> int:
        if not self.leaves:
            return self.zeros[self.depth]
        return self.levels[self.depth][0]

    def insert_leaves(self, leaves: Sequence[int]) -> int:
        if len(self.leaves) + len(leaves) > 2**self.depth:
            raise ValueError("tree is full")
        _check_leaves(leaves)
        self.levels[0].extend(leaves)
        self._rebuild()
        return self.root

    def index_of(self, leaf: int) -> int:
        return self.leaves.index(leaf)

    def proof(self, index: int) -> MerkleProof:
        if not 0 <= index < len(self.leaves):
            raise IndexError(f"no leaf at {index}")

        siblings = []
        position = index
        for level in range(self.depth):
            sibling = position ^ 1
            nodes = self.levels[level]
            siblings.append(nodes[sibling] if sibling < len(nodes) else self.zeros[level])
            position //= 2

        return MerkleProof(
            leaf=self.leaves[index],
            index=index,
            siblings=tuple(siblings),
            root=self.root,
        )

    def _rebuild(self):
        nodes = self.leaves
        for level in range(self.depth):
            padded = nodes + [self.zeros[level]] if len(nodes) % 2 else nodes
            nodes = [
                self.oracle.hash_pair(padded[i], padded[i + 1])
                for i in range(0, len(padded), 2)
            ]
            self.levels[level + 1] = nodes
