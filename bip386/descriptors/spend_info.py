"""
Taproot spending information.

The data needed to spend a Taproot output (output key, Merkle root and a control
block for each leaf) is derived from the descriptor using a Merkle tree builder, and
memoized per descriptor.
"""

import logging
import threading

from ..utils.taproot import (
    TAPROOT_CONTROL_MAX_NODE_COUNT,
    TAPROOT_LEAF_MASK,
    TAPROOT_LEAF_TAPSCRIPT,
    tapbranch_hash,
    tapleaf_hash,
    taproot_tweak,
)


logger = logging.getLogger(__name__)


class TaprootBuilderError(ValueError):
    def __init__(self, message):
        self.message = message


class LeafInfo:
    """A leaf of the tree being built, along with its path to the root."""

    def __init__(self, script, leaf_version):
        self.script = bytes(script)
        self.leaf_version = leaf_version
        # The hashes of the siblings on the path to the root, from the leaf up.
        self.merkle_branch = []


class NodeInfo:
    """A (sub)tree being built: its hash and all the leaves under it."""

    def __init__(self, node_hash, leaves):
        self.hash = node_hash
        self.leaves = leaves

    @staticmethod
    def new_leaf(script, leaf_version):
        leaf = LeafInfo(script, leaf_version)
        return NodeInfo(tapleaf_hash(leaf.script, leaf_version), [leaf])

    @staticmethod
    def combine(a, b):
        """Make two subtrees siblings under a new branch."""
        for leaf in a.leaves:
            leaf.merkle_branch.append(b.hash)
        for leaf in b.leaves:
            leaf.merkle_branch.append(a.hash)
        return NodeInfo(tapbranch_hash(a.hash, b.hash), a.leaves + b.leaves)


class TaprootBuilder:
    """Build a Taproot Merkle tree out of leaves given in depth-first order."""

    def __init__(self):
        # The node at each depth which is waiting for its sibling, if any.
        self.branch = []

    def add_leaf(self, depth, script, leaf_version=TAPROOT_LEAF_TAPSCRIPT):
        """Add a leaf at the given depth. Leaves must be given in DFS order.

        :returns: the builder itself.
        """
        if leaf_version & TAPROOT_LEAF_MASK != leaf_version:
            raise TaprootBuilderError(f"Invalid leaf version {leaf_version}")
        return self._insert(NodeInfo.new_leaf(script, leaf_version), depth)

    def _insert(self, node, depth):
        if depth > TAPROOT_CONTROL_MAX_NODE_COUNT:
            raise TaprootBuilderError(f"Invalid Merkle tree depth {depth}")
        # A leaf can't be inserted higher than an unfinished deeper branch.
        if depth + 1 < len(self.branch):
            raise TaprootBuilderError("Leaves were not added in DFS order")

        # Combine with the siblings waiting at this depth, as far up as possible.
        while len(self.branch) == depth + 1:
            sibling = self.branch.pop()
            if sibling is None:
                self.branch.append(None)
                break
            if depth == 0:
                raise TaprootBuilderError("Tree is over complete, cannot combine at the root")
            node = NodeInfo.combine(node, sibling)
            depth -= 1

        if len(self.branch) < depth + 1:
            self.branch.extend([None] * (depth + 1 - len(self.branch)))
        self.branch[depth] = node
        return self

    def is_finalizable(self):
        return len(self.branch) == 1 and self.branch[0] is not None

    def finalize(self, internal_key):
        """Get the spending information for this tree under the given internal key.

        :param internal_key: the x-only internal key, as bytes.
        """
        if not self.branch:
            raise TaprootBuilderError("Cannot finalize an empty tree")
        if not self.is_finalizable():
            raise TaprootBuilderError("Tree is incomplete, some branches miss a child")
        root = self.branch[0]
        logger.debug(
            "Finalizing Taproot tree with %d leaves, Merkle root %s",
            len(root.leaves),
            root.hash.hex(),
        )
        return TaprootSpendInfo.from_node_info(internal_key, root)


class TaprootSpendInfo:
    """Everything needed to spend a Taproot output."""

    def __init__(self, internal_key, merkle_root, output_key, output_key_parity, script_map):
        self.internal_key = internal_key
        # None for a key-path only output.
        self.merkle_root = merkle_root
        self.output_key = output_key
        self.output_key_parity = output_key_parity
        # Mapping from (script, leaf version) to the list of Merkle branches it can be
        # proven with. A script may appear more than once in the tree.
        self.script_map = script_map

    def __repr__(self):
        merkle_root = None if self.merkle_root is None else self.merkle_root.hex()
        return (
            f"TaprootSpendInfo(internal_key: {self.internal_key.hex()}, merkle_root: "
            f"{merkle_root}, output_key: {self.output_key.hex()}, parity: "
            f"{self.output_key_parity})"
        )

    @staticmethod
    def new_key_spend(internal_key, merkle_root=None):
        assert isinstance(internal_key, bytes) and len(internal_key) == 32
        output_key = taproot_tweak(internal_key, merkle_root)
        return TaprootSpendInfo(
            internal_key, merkle_root, output_key.format(), int(output_key.parity), {}
        )

    @staticmethod
    def from_node_info(internal_key, node):
        info = TaprootSpendInfo.new_key_spend(internal_key, node.hash)
        for leaf in node.leaves:
            info.script_map.setdefault((leaf.script, leaf.leaf_version), []).append(
                list(leaf.merkle_branch)
            )
        return info

    def control_block(self, script, leaf_version=TAPROOT_LEAF_TAPSCRIPT):
        """Get the control block for spending this script, or None if it isn't in the tree.

        If the script is present more than once, use the shortest proof.
        """
        branches = self.script_map.get((bytes(script), leaf_version))
        if not branches:
            return None
        merkle_branch = min(branches, key=len)
        return (
            bytes([leaf_version | self.output_key_parity])
            + self.internal_key
            + b"".join(merkle_branch)
        )


class SpendInfoCache:
    """Compute the spending information once and remember it.

    The lock only guards reading and writing the slot. Concurrent first callers may
    compute the value more than once, the first value stored is the one returned to
    all callers. An exception during the computation leaves the slot empty.
    """

    def __init__(self, compute, value=None):
        self._compute = compute
        self._lock = threading.Lock()
        self._value = value

    def peek(self):
        """The cached value, or None if it wasn't computed yet."""
        with self._lock:
            return self._value

    def get(self):
        value = self.peek()
        if value is not None:
            return value

        value = self._compute()
        with self._lock:
            if self._value is None:
                self._value = value
            return self._value

    def copy(self, compute=None):
        """Get an independent cache, holding the value already computed if any."""
        return SpendInfoCache(
            self._compute if compute is None else compute, value=self.peek()
        )
