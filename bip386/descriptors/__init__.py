import copy
import logging

from embit.networks import NETWORKS
from embit.script import Script
from functools import total_ordering

from ..key import DescriptorKey
from ..miniscript.errors import MiniscriptPropertyError
from ..policy import Key, Policy
from ..utils.script import CScript, OP_1
from ..utils.taproot import TAPROOT_CONTROL_MAX_NODE_COUNT

from . import planning
from .checksum import descsum_create
from .errors import (
    CouldNotSatisfyError,
    DescriptorError,
    DescriptorParsingError,
    MaxDepthExceededError,
)
from .parsing import descriptor_from_str
from .spend_info import SpendInfoCache, TaprootBuilder, TaprootBuilderError, TaprootSpendInfo
from .taptree import TapTree


logger = logging.getLogger(__name__)


class Descriptor:
    """A Bitcoin Output Script Descriptor."""

    @staticmethod
    def from_str(desc_str, strict=False, key_parser=None):
        """Parse a Bitcoin Output Script Descriptor from its string representation.

        :param strict: whether to require the presence of a checksum.
        :param key_parser: a function creating a key from its string representation.
        """
        desc = descriptor_from_str(desc_str, strict, key_parser)

        # BIP389 prescribes that no two multipath key expressions in a single descriptor
        # have different length.
        multipath_len = None
        for key in desc.keys:
            if isinstance(key, DescriptorKey) and key.is_multipath():
                m_len = len(key.path.paths)
                if multipath_len is None:
                    multipath_len = m_len
                elif multipath_len != m_len:
                    raise DescriptorParsingError(
                        f"Descriptor contains multipath key expressions with varying length: '{desc_str}'."
                    )

        return desc

    @property
    def script_pubkey(self):
        """Get the ScriptPubKey (output 'locking' Script) for this descriptor."""
        # To be implemented by derived classes
        raise NotImplementedError

    @property
    def keys(self):
        """Get the list of all keys from this descriptor, in order of apparition."""
        # To be implemented by derived classes
        raise NotImplementedError

    def is_multipath(self):
        """Whether this descriptor contains multipath key expression(s)."""
        return any(
            isinstance(k, DescriptorKey) and k.is_multipath() for k in self.keys
        )


@total_ordering
class TrDescriptor(Descriptor):
    """A Pay-to-Taproot Output Script Descriptor.

    It is immutable: deriving or translating its keys create new descriptors.
    """

    def __init__(self, internal_key, tree=None):
        if isinstance(internal_key, DescriptorKey) and not internal_key.x_only:
            raise DescriptorError(f"Internal key '{internal_key}' must be x-only")
        assert tree is None or isinstance(tree, TapTree)
        if tree is not None and tree.height > TAPROOT_CONTROL_MAX_NODE_COUNT:
            raise MaxDepthExceededError(
                f"Taproot tree height {tree.height} exceeds the maximum of "
                f"{TAPROOT_CONTROL_MAX_NODE_COUNT}"
            )

        self._internal_key = internal_key
        self._tree = tree
        self._spend_info = SpendInfoCache(self._compute_spend_info)

    @property
    def internal_key(self):
        return self._internal_key

    @property
    def tap_tree(self):
        return self._tree

    def iter_scripts(self):
        """Iterate over the (depth, Miniscript) of all the leaves, in depth-first order."""
        if self._tree is None:
            return iter([])
        return self._tree.iter_leaves()

    @property
    def keys(self):
        leaves_keys = [] if self._tree is None else self._tree.keys()
        return [self._internal_key] + leaves_keys

    def for_each_key(self, pred):
        """Whether the predicate holds for the keys of all the leaves and for the
        internal key. Stops at the first failure."""
        return all(
            ms.for_each_key(pred) for _, ms in self.iter_scripts()
        ) and pred(self._internal_key)

    def translate_pk(self, mapper):
        """Get the same descriptor with each key replaced by mapper(key)."""
        tree = None if self._tree is None else self._tree.translate_keys(mapper)
        return TrDescriptor(mapper(self._internal_key), tree)

    def derive(self, index):
        """Get this descriptor with its wildcard keys derived at the given index.

        Will start from 2**31 for "hardened wildcard" keys.
        """
        assert isinstance(index, int)
        return self.translate_pk(lambda key: key.derived(index))

    def lift(self):
        """Get the semantic policy of this descriptor: the key path, or any of the
        leaves. Only the policy of the tree is normalized.
        """
        if self._tree is None:
            return Key(self._internal_key)
        return Policy.or_(Key(self._internal_key), self._tree.lift())

    def sanity_check(self):
        """Raise a DescriptorError if any leaf isn't safe to use."""
        for _, ms in self.iter_scripts():
            try:
                ms.sanity_check()
            except MiniscriptPropertyError as e:
                raise DescriptorError(f"Insane Tapscript leaf: {e.message}")

    def _compute_spend_info(self):
        internal_key = self._internal_key.bytes()
        if self._tree is None:
            logger.debug("Computing key-path only spend info for '%s'", self._internal_key)
            return TaprootSpendInfo.new_key_spend(internal_key)

        logger.debug("Computing spend info for a tree of height %d", self._tree.height)
        builder = TaprootBuilder()
        try:
            for depth, ms in self._tree.iter_leaves():
                builder.add_leaf(depth, ms.script)
            return builder.finalize(internal_key)
        except TaprootBuilderError as e:
            raise AssertionError(f"Could not build the tree of a valid descriptor: {e.message}")

    def spend_info(self):
        """Get the output key, Merkle root and control blocks to spend this descriptor.

        Computed once, on first use.
        """
        return self._spend_info.get()

    def output_key(self):
        return self.spend_info().output_key

    @property
    def script_pubkey(self):
        return CScript([OP_1, self.output_key()])

    def address(self, network="main"):
        """Get the bech32m address for this descriptor.

        :param network: one of 'main', 'test', 'regtest' or 'signet'.
        """
        if network not in NETWORKS:
            raise DescriptorError(f"Unknown network '{network}'")
        return Script(bytes(self.script_pubkey)).address(NETWORKS[network])

    def plan_satisfaction(self, provider):
        """Get a non-malleable spending plan, whose witness is None if unavailable.

        :param provider: an AssetProvider telling what material is available.
        """
        return planning.best_tap_spend(self, provider, allow_malleable=False)

    def plan_satisfaction_mall(self, provider):
        """Get a spending plan, which may be malleable."""
        return planning.best_tap_spend(self, provider, allow_malleable=True)

    def _complete(self, plan, satisfier):
        stack = plan.try_completing(satisfier)
        if stack is None:
            raise CouldNotSatisfyError(f"Could not satisfy '{self}'")
        return stack, b""

    def get_satisfaction(self, satisfier):
        """Get the witness stack and scriptSig to spend this descriptor non-malleably.

        :param satisfier: a Satisfier with the material to spend from the key path or
                          any of the leaves.
        """
        return self._complete(self.plan_satisfaction(satisfier), satisfier)

    def get_satisfaction_mall(self, satisfier):
        """Get the witness stack and scriptSig to spend this descriptor."""
        return self._complete(self.plan_satisfaction_mall(satisfier), satisfier)

    def max_weight_to_satisfy(self):
        return planning.max_weight_to_satisfy(self)

    def max_satisfaction_weight(self):
        return planning.max_satisfaction_weight(self)

    def __copy__(self):
        desc = TrDescriptor(self._internal_key, self._tree)
        desc._spend_info = self._spend_info.copy(desc._compute_spend_info)
        return desc

    def copy(self):
        return copy.copy(self)

    def to_string(self, checksum=False):
        if self._tree is None:
            desc_str = f"tr({self._internal_key})"
        else:
            desc_str = f"tr({self._internal_key},{self._tree})"
        return descsum_create(desc_str) if checksum else desc_str

    def __repr__(self):
        return self.to_string(checksum=True)

    def __eq__(self, other):
        if not isinstance(other, TrDescriptor):
            return NotImplemented
        return self.to_string() == other.to_string()

    def __lt__(self, other):
        if not isinstance(other, TrDescriptor):
            return NotImplemented
        return self.to_string() < other.to_string()

    def __hash__(self):
        return hash(self.to_string())
