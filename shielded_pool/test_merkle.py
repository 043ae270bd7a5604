from unittest import TestCase

from hypothesis import given, settings, strategies as st

from .crypto import HASH, SNARK_SCALAR_FIELD
from .merkle import (
    IncrementalMerkleTree,
    MerkleProof,
    MerkleTree,
    verify_merkle_proof,
    zero_hashes,
)
from .test_common import FailingOracle

leaf = st.integers(min_value=0, max_value=SNARK_SCALAR_FIELD - 1)


class TestZeroHashes(TestCase):
    def test_levels_chain(self):
        zeros = zero_hashes(HASH, 4)
        assert len(zeros) == 5
        for level in range(4):
            assert zeros[level + 1] == HASH.hash_pair(zeros[level], zeros[level])

    def test_cached(self):
        assert zero_hashes(HASH, 4) is zero_hashes(HASH, 4)

    def test_empty_roots(self):
        assert IncrementalMerkleTree(4).root == zero_hashes(HASH, 4)[4]
        assert MerkleTree(4).root == zero_hashes(HASH, 4)[4]


class TestIncrementalMerkleTree(TestCase):
    def test_matches_full_tree(self):
        leaves = list(range(1, 12))
        tree = IncrementalMerkleTree(4)
        full = MerkleTree(4)
        for i in range(0, len(leaves), 3):
            assert tree.insert_leaves(leaves[i : i + 3]) == full.insert_leaves(leaves[i : i + 3])
        assert tree.next_free_index == 11

    @given(batches=st.lists(st.lists(leaf, min_size=1, max_size=5), max_size=6))
    @settings(max_examples=30, deadline=None)
    def test_batching_does_not_change_root(self, batches):
        batched = IncrementalMerkleTree(5)
        single = IncrementalMerkleTree(5)
        for batch in batches:
            batched.insert_leaves(batch)
            for x in batch:
                single.insert_leaves([x])

        flat = [x for batch in batches for x in batch]
        assert batched.root == single.root == MerkleTree(5).insert_leaves(flat)

    def test_deterministic(self):
        t1, t2 = IncrementalMerkleTree(), IncrementalMerkleTree()
        t1.insert_leaves([1, 2, 3])
        t2.insert_leaves([1, 2, 3])
        assert t1.root == t2.root

    def test_order_sensitive(self):
        t1, t2 = IncrementalMerkleTree(), IncrementalMerkleTree()
        t1.insert_leaves([1, 2, 3])
        t2.insert_leaves([2, 1, 3])
        assert t1.root != t2.root

    def test_empty_insert_is_noop(self):
        tree = IncrementalMerkleTree(3)
        root = tree.root
        assert tree.insert_leaves([]) == root
        assert tree.next_free_index == 0

    def test_rollover_when_batch_does_not_fit(self):
        tree = IncrementalMerkleTree(2)
        tree.insert_leaves([1, 2, 3])
        assert tree.tree_number == 0

        root = tree.insert_leaves([4, 5])

        # the whole batch moved to a fresh tree
        assert tree.tree_number == 1
        assert tree.next_free_index == 2
        assert root == MerkleTree(2).insert_leaves([4, 5])

    def test_rollover_when_full(self):
        tree = IncrementalMerkleTree(2)
        tree.insert_leaves([1, 2, 3, 4])
        assert tree.tree_number == 0
        assert not tree.fits(1)

        tree.insert_leaves([5])
        assert tree.tree_number == 1
        assert tree.next_free_index == 1

    def test_batch_larger_than_tree(self):
        tree = IncrementalMerkleTree(2)
        with self.assertRaises(ValueError):
            tree.insert_leaves([1, 2, 3, 4, 5])
        assert tree.tree_number == 0

    def test_rejects_non_field_leaves(self):
        tree = IncrementalMerkleTree(2)
        root = tree.root
        with self.assertRaises(ValueError):
            tree.insert_leaves([1, SNARK_SCALAR_FIELD])
        assert tree.root == root
        assert tree.next_free_index == 0

    def test_oracle_failure_leaves_tree_unchanged(self):
        oracle = FailingOracle()
        tree = IncrementalMerkleTree(4, oracle)
        tree.insert_leaves([1, 2, 3])
        state = (tree.tree_number, tree.next_free_index, tree.root, list(tree.filled_subtrees))

        # fails after the first level of a three leaf batch was hashed
        oracle.calls_left = 2
        with self.assertRaises(TimeoutError):
            tree.insert_leaves([4, 5, 6])
        assert (tree.tree_number, tree.next_free_index, tree.root, tree.filled_subtrees) == state

        oracle.calls_left = None
        assert tree.insert_leaves([4, 5, 6]) == MerkleTree(4).insert_leaves([1, 2, 3, 4, 5, 6])

    def test_oracle_failure_during_rollover(self):
        oracle = FailingOracle()
        tree = IncrementalMerkleTree(2, oracle)
        tree.insert_leaves([1, 2, 3])

        oracle.calls_left = 1
        with self.assertRaises(TimeoutError):
            tree.insert_leaves([4, 5])
        assert tree.tree_number == 0
        assert tree.next_free_index == 3

        oracle.calls_left = None
        assert tree.insert_leaves([4, 5]) == MerkleTree(2).insert_leaves([4, 5])
        assert tree.tree_number == 1


class TestMerkleTree(TestCase):
    def test_inclusion_proof(self):
        tree = MerkleTree(4)
        tree.insert_leaves([10, 20, 30])
        for i in range(3):
            proof = tree.proof(i)
            assert proof.root == tree.root
            assert verify_merkle_proof(proof)

    def test_tampered_proof(self):
        tree = MerkleTree(4)
        tree.insert_leaves([10, 20, 30])
        proof = tree.proof(2)
        assert not verify_merkle_proof(MerkleProof(31, proof.index, proof.siblings, proof.root))
        assert not verify_merkle_proof(MerkleProof(30, 1, proof.siblings, proof.root))

    def test_proof_stale_after_insert(self):
        tree = MerkleTree(4)
        tree.insert_leaves([10])
        proof = tree.proof(0)
        tree.insert_leaves([20])
        assert proof.root != tree.root
        assert verify_merkle_proof(tree.proof(0))

    def test_index_of(self):
        tree = MerkleTree(3)
        tree.insert_leaves([7, 8, 9])
        assert tree.index_of(8) == 1

    def test_missing_leaf(self):
        tree = MerkleTree(3)
        with self.assertRaises(IndexError):
            tree.proof(0)

    def test_full(self):
        tree = MerkleTree(1)
        tree.insert_leaves([1, 2])
        with self.assertRaises(ValueError):
            tree.insert_leaves([3])
