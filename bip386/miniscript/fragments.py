"""
Miniscript AST elements, in a Tapscript context.

Each element correspond to a Bitcoin Script fragment, and has various type properties.
See the Miniscript website for the specification of the type system: https://bitcoin.sipa.be/miniscript/.

Keys are x-only, and the CHECKMULTISIG-based multi() is replaced by multi_a().

Fragments may be nested deeper than the recursion limit allows, so the operations on
a whole Miniscript are folds over the tree (see Node._fold()): each fragment only
implements the step combining the results of its subs.
"""

import copy

from .. import policy
from ..key import DescriptorKey
from ..plan import HashKind, Placeholder
from ..utils.hashes import hash160
from ..utils.script import (
    CScript,
    OP_1,
    OP_0,
    OP_ADD,
    OP_BOOLAND,
    OP_BOOLOR,
    OP_DUP,
    OP_ELSE,
    OP_ENDIF,
    OP_EQUAL,
    OP_EQUALVERIFY,
    OP_FROMALTSTACK,
    OP_IFDUP,
    OP_IF,
    OP_CHECKLOCKTIMEVERIFY,
    OP_CHECKSEQUENCEVERIFY,
    OP_CHECKSIG,
    OP_CHECKSIGADD,
    OP_CHECKSIGVERIFY,
    OP_HASH160,
    OP_HASH256,
    OP_NOTIF,
    OP_NUMEQUAL,
    OP_NUMEQUALVERIFY,
    OP_RIPEMD160,
    OP_SHA256,
    OP_SIZE,
    OP_SWAP,
    OP_TOALTSTACK,
    OP_VERIFY,
    OP_0NOTEQUAL,
)
from ..utils.taproot import tapleaf_hash
from ..utils.traversal import fold_post_order

from . import parsing
from .errors import MiniscriptNodeCreationError, MiniscriptPropertyError
from .property import Property
from .satisfaction import (
    EMPTY_ELEM_SIZE,
    SIG_ELEM_SIZE,
    ExecutionInfo,
    Satisfaction,
    SatisfactionContext,
)


# Threshold for nLockTime: below this value it is interpreted as block number,
# otherwise as UNIX timestamp.
LOCKTIME_THRESHOLD = 500000000  # Tue Nov  5 00:53:20 1985 UTC

# If CTxIn::nSequence encodes a relative lock-time and this flag
# is set, the relative lock-time has units of 512 seconds,
# otherwise it specifies blocks with a granularity of 1.
SEQUENCE_LOCKTIME_TYPE_FLAG = 1 << 22

# Standardness limit on the number of keys in a multi_a().
MAX_PUBKEYS_PER_MULTI_A = 999


def _no_timelock_mix(node):
    return not (
        node.abs_heightlocks
        and node.abs_timelocks
        or node.rel_heightlocks
        and node.rel_timelocks
    )


class Node:
    """A Miniscript fragment."""

    # The fragment's type and properties
    p = None
    # List of all sub fragments
    subs = []
    # Whether any satisfaction for this fragment require a signature
    needs_sig = None
    # Whether any dissatisfaction for this fragment requires a signature
    is_forced = None
    # Whether this fragment has a unique unconditional satisfaction, and all conditional
    # ones require a signature.
    is_expressive = None
    # Whether for any possible way to satisfy this fragment (may be none), a
    # non-malleable satisfaction exists.
    is_nonmalleable = None
    # Whether this node or any of its subs contains an absolute heightlock
    abs_heightlocks = None
    # Whether this node or any of its subs contains a relative heightlock
    rel_heightlocks = None
    # Whether this node or any of its subs contains an absolute timelock
    abs_timelocks = None
    # Whether this node or any of its subs contains a relative timelock
    rel_timelocks = None
    # Whether this node does not contain a mix of timelock or heightlock of different types.
    no_timelock_mix = None
    # Information about this Miniscript execution (satisfaction cost, etc..)
    exec_info = None

    def __init__(self, *args, **kwargs):
        # Needs to be implemented by derived classes.
        raise NotImplementedError

    @staticmethod
    def from_str(ms_str, key_parser=None):
        """Parse a Miniscript fragment from its string representation.

        :param key_parser: a function creating a key from its string representation.
                           Defaults to x-only DescriptorKey's.
        """
        assert isinstance(ms_str, str)
        return parsing.miniscript_from_str(ms_str, key_parser)

    @staticmethod
    def from_tree(tree, key_parser=None):
        """Parse a Miniscript fragment from an already tokenized expression tree."""
        return parsing.miniscript_from_tree(tree, key_parser)

    def _fold(self, combine):
        """Compute combine(node, values of its subs) for each fragment, subs first."""
        return fold_post_order(self, lambda node: node.subs, combine)

    @property
    def _script(self):
        # A list of Script elements, a CScript is created all at once in the script() method.
        return self._fold(lambda node, subs: node._fragment_script(subs))

    @property
    def script(self):
        return CScript(self._script)

    def script_size(self):
        return len(self.script)

    def leaf_hash(self):
        """The hash of the Tapleaf made of this Miniscript."""
        return tapleaf_hash(self.script)

    @property
    def keys(self):
        """Get the list of all keys from this Miniscript, in order of apparition."""
        return self._fold(lambda node, sub_keys: node._fragment_keys(sub_keys))

    def _fragment_keys(self, sub_keys):
        # Overriden by fragments that actually have keys.
        return [key for keys in sub_keys for key in keys]

    def for_each_key(self, pred):
        """Whether the predicate holds for every key. Stops at the first failure."""
        return all(pred(key) for key in self.keys)

    def translate_pk(self, mapper):
        """Get a copy of this Miniscript with each key replaced by mapper(key)."""
        return self._fold(lambda node, subs: node._translated(mapper, subs))

    def _translated(self, mapper, subs):
        node = copy.copy(self)
        node.subs = subs
        return node

    def lift(self):
        """Get the semantic policy of this fragment."""
        return self._fold(lambda node, subs: node._fragment_lift(subs))

    def __repr__(self):
        return self._fold(lambda node, subs: node._fragment_repr(subs))

    def max_satisfaction_witness_elements(self):
        """The maximum number of witness elements needed to satisfy this Miniscript."""
        if not self.exec_info.is_satisfiable():
            raise MiniscriptPropertyError(f"'{self}' cannot be satisfied")
        return self.exec_info.sat_elems

    def max_satisfaction_size(self):
        """The maximum size of the witness elements (with their length prefix) needed
        to satisfy this Miniscript."""
        if not self.exec_info.is_satisfiable():
            raise MiniscriptPropertyError(f"'{self}' cannot be satisfied")
        return self.exec_info.sat_size

    def sanity_check(self):
        """Raise a MiniscriptPropertyError if this Miniscript is not safe to use as a
        top-level Script."""
        if not self.p.B:
            raise MiniscriptPropertyError(f"'{self}' is not of type B")
        if not self.needs_sig:
            raise MiniscriptPropertyError(f"'{self}' can be spent without a signature")
        if not self.is_nonmalleable:
            raise MiniscriptPropertyError(f"'{self}' is malleable")
        if not self.no_timelock_mix:
            raise MiniscriptPropertyError(f"'{self}' contains a mix of timelocks")

    def build_template(self, provider):
        """Get a plan for the smallest non-malleable satisfaction of this fragment.

        :param provider: an AssetProvider telling what data is available.
        """
        return self.satisfaction(SatisfactionContext(provider, self.leaf_hash()))

    def build_template_mall(self, provider):
        """Get a plan for the smallest satisfaction of this fragment, even if malleable."""
        ctx = SatisfactionContext(provider, self.leaf_hash(), malleable=True)
        return self.satisfaction(ctx)

    def satisfy(self, satisfier):
        """Get the witness of the smallest non-malleable satisfaction for this fragment,
        if one exists.

        :param satisfier: a Satisfier containing available data to satisfy challenges.
        """
        return self.build_template(satisfier).try_completing(satisfier)

    def satisfaction(self, ctx):
        """Get the satisfaction for this fragment.

        :param ctx: a SatisfactionContext.
        """

        def sat_dissat(node, subs):
            sats = [sat for sat, _ in subs]
            dissats = [dissat for _, dissat in subs]
            return (
                node._fragment_satisfaction(ctx, sats, dissats),
                node._fragment_dissatisfaction(dissats),
            )

        return self._fold(sat_dissat)[0]

    def dissatisfaction(self):
        """Get the dissatisfaction for this fragment."""
        return self._fold(lambda node, dissats: node._fragment_dissatisfaction(dissats))

    # The methods below combine the results of the subs of a fragment, and need to be
    # implemented by derived classes.

    def _fragment_script(self, sub_scripts):
        raise NotImplementedError

    def _fragment_lift(self, sub_policies):
        raise NotImplementedError

    def _fragment_repr(self, sub_strs):
        raise NotImplementedError

    def _fragment_satisfaction(self, ctx, sats, dissats):
        raise NotImplementedError

    def _fragment_dissatisfaction(self, dissats):
        raise NotImplementedError


class Just0(Node):
    def __init__(self):

        self.p = Property("Bzud")
        self.needs_sig = False
        self.is_forced = False
        self.is_expressive = True
        self.is_nonmalleable = True
        self.abs_heightlocks = False
        self.rel_heightlocks = False
        self.abs_timelocks = False
        self.rel_timelocks = False
        self.no_timelock_mix = True
        self.exec_info = ExecutionInfo(None, 0, None, 0)

    def _fragment_script(self, sub_scripts):
        return [OP_0]

    def _fragment_satisfaction(self, ctx, sats, dissats):
        return Satisfaction.unavailable()

    def _fragment_dissatisfaction(self, dissats):
        return Satisfaction.empty()

    def _fragment_lift(self, sub_policies):
        return policy.Unsatisfiable()

    def _fragment_repr(self, sub_strs):
        return "0"


class Just1(Node):
    def __init__(self):

        self.p = Property("Bzu")
        self.needs_sig = False
        self.is_forced = True  # No dissat
        self.is_expressive = False  # No dissat
        self.is_nonmalleable = True
        self.abs_heightlocks = False
        self.rel_heightlocks = False
        self.abs_timelocks = False
        self.rel_timelocks = False
        self.no_timelock_mix = True
        self.exec_info = ExecutionInfo(0, None, 0, None)

    def _fragment_script(self, sub_scripts):
        return [OP_1]

    def _fragment_satisfaction(self, ctx, sats, dissats):
        return Satisfaction.empty()

    def _fragment_dissatisfaction(self, dissats):
        return Satisfaction.unavailable()

    def _fragment_lift(self, sub_policies):
        return policy.Trivial()

    def _fragment_repr(self, sub_strs):
        return "1"


class PkNode(Node):
    """A virtual class for nodes containing a single public key.

    Should not be instanced directly, use Pk() or Pkh().
    """

    def __init__(self, pubkey):

        # Raw keys are wrapped, any other key type (as created by the parser) is kept.
        if isinstance(pubkey, bytes):
            try:
                pubkey = DescriptorKey(pubkey)
            except ValueError as e:
                raise MiniscriptNodeCreationError(f"Invalid public key: {e}")
        if pubkey is None:
            raise MiniscriptNodeCreationError("Invalid public key")
        self.pubkey = pubkey

        self.needs_sig = True
        self.is_forced = False
        self.is_expressive = True
        self.is_nonmalleable = True
        self.abs_heightlocks = False
        self.rel_heightlocks = False
        self.abs_timelocks = False
        self.rel_timelocks = False
        self.no_timelock_mix = True

    def _fragment_keys(self, sub_keys):
        return [self.pubkey]

    def _translated(self, mapper, subs):
        node = copy.copy(self)
        node.pubkey = mapper(self.pubkey)
        return node

    def _fragment_lift(self, sub_policies):
        return policy.Key(self.pubkey)

    def sig(self, ctx):
        size = ctx.provider.provider_lookup_tap_leaf_script_sig(self.pubkey, ctx.leaf_hash)
        if size is None:
            return Satisfaction.unavailable()
        return Satisfaction(
            [Placeholder.leaf_sig(self.pubkey, ctx.leaf_hash, size)], has_sig=True
        )


class Pk(PkNode):
    def __init__(self, pubkey):
        PkNode.__init__(self, pubkey)

        self.p = Property("Konud")
        self.exec_info = ExecutionInfo(0, 0, 0, 0)

    def _fragment_script(self, sub_scripts):
        return [self.pubkey.bytes()]

    def _fragment_satisfaction(self, ctx, sats, dissats):
        return self.sig(ctx)

    def _fragment_dissatisfaction(self, dissats):
        return Satisfaction.push_zero()

    def _fragment_repr(self, sub_strs):
        return f"pk_k({self.pubkey})"


class Pkh(PkNode):
    def __init__(self, pubkey):
        PkNode.__init__(self, pubkey)

        self.p = Property("Knud")
        # The x-only key is pushed along with the signature.
        self.exec_info = ExecutionInfo(1, 1, 33, 33)

    def _fragment_script(self, sub_scripts):
        return [OP_DUP, OP_HASH160, self.pk_hash(), OP_EQUALVERIFY]

    def _fragment_satisfaction(self, ctx, sats, dissats):
        return self.sig(ctx) + Satisfaction([Placeholder.pubkey_push(self.pubkey)])

    def _fragment_dissatisfaction(self, dissats):
        return Satisfaction([Placeholder.push_zero(), Placeholder.pubkey_push(self.pubkey)])

    def _fragment_repr(self, sub_strs):
        return f"pk_h({self.pubkey})"

    def pk_hash(self):
        return hash160(self.pubkey.bytes())


class Older(Node):
    def __init__(self, value):
        if not 0 < value < 2 ** 31:
            raise MiniscriptNodeCreationError(f"Invalid relative timelock {value}")

        self.value = value

        self.p = Property("Bz")
        self.needs_sig = False
        self.is_forced = True
        self.is_expressive = False  # No dissat
        self.is_nonmalleable = True
        self.rel_timelocks = bool(value & SEQUENCE_LOCKTIME_TYPE_FLAG)
        self.rel_heightlocks = not self.rel_timelocks
        self.abs_heightlocks = False
        self.abs_timelocks = False
        self.no_timelock_mix = True
        self.exec_info = ExecutionInfo(0, None, 0, None)

    def _fragment_script(self, sub_scripts):
        return [self.value, OP_CHECKSEQUENCEVERIFY]

    def _fragment_satisfaction(self, ctx, sats, dissats):
        if not ctx.provider.check_older(self.value):
            return Satisfaction.unavailable()
        return Satisfaction(witness=[], relative_timelock=self.value)

    def _fragment_dissatisfaction(self, dissats):
        return Satisfaction.unavailable()

    def _fragment_lift(self, sub_policies):
        return policy.Older(self.value)

    def _fragment_repr(self, sub_strs):
        return f"older({self.value})"


class After(Node):
    def __init__(self, value):
        if not 0 < value < 2 ** 31:
            raise MiniscriptNodeCreationError(f"Invalid absolute timelock {value}")

        self.value = value

        self.p = Property("Bz")
        self.needs_sig = False
        self.is_forced = True
        self.is_expressive = False  # No dissat
        self.is_nonmalleable = True
        self.abs_heightlocks = value < LOCKTIME_THRESHOLD
        self.abs_timelocks = not self.abs_heightlocks
        self.rel_heightlocks = False
        self.rel_timelocks = False
        self.no_timelock_mix = True
        self.exec_info = ExecutionInfo(0, None, 0, None)

    def _fragment_script(self, sub_scripts):
        return [self.value, OP_CHECKLOCKTIMEVERIFY]

    def _fragment_satisfaction(self, ctx, sats, dissats):
        if not ctx.provider.check_after(self.value):
            return Satisfaction.unavailable()
        return Satisfaction(witness=[], absolute_timelock=self.value)

    def _fragment_dissatisfaction(self, dissats):
        return Satisfaction.unavailable()

    def _fragment_lift(self, sub_policies):
        return policy.After(self.value)

    def _fragment_repr(self, sub_strs):
        return f"after({self.value})"


class HashNode(Node):
    """A virtual class for fragments with hashlock semantics.

    Should not be instanced directly, use concrete fragments instead.
    """

    hash_kind = None
    digest_len = 32

    def __init__(self, digest, hash_op):
        if not isinstance(digest, bytes) or len(digest) != self.digest_len:
            raise MiniscriptNodeCreationError(
                f"{self.hash_kind.value}() takes a {self.digest_len} bytes digest"
            )

        self.digest = digest
        self.hash_op = hash_op

        self.p = Property("Bonud")
        self.needs_sig = False
        self.is_forced = False
        self.is_expressive = False
        self.is_nonmalleable = True
        self.abs_heightlocks = False
        self.rel_heightlocks = False
        self.abs_timelocks = False
        self.rel_timelocks = False
        self.no_timelock_mix = True
        # A 32 bytes preimage. The only dissatisfaction is malleable.
        self.exec_info = ExecutionInfo(1, None, 33, None)

    def _fragment_script(self, sub_scripts):
        return [OP_SIZE, 32, OP_EQUALVERIFY, self.hash_op, self.digest, OP_EQUAL]

    def _fragment_satisfaction(self, ctx, sats, dissats):
        if not ctx.provider.provider_lookup_preimage(self.hash_kind, self.digest):
            return Satisfaction.unavailable()
        return Satisfaction(witness=[Placeholder.preimage(self.hash_kind, self.digest)])

    def _fragment_dissatisfaction(self, dissats):
        return Satisfaction.unavailable()

    def _fragment_lift(self, sub_policies):
        return policy.Hash(self.hash_kind, self.digest)

    def _fragment_repr(self, sub_strs):
        return f"{self.hash_kind.value}({self.digest.hex()})"


class Sha256(HashNode):
    hash_kind = HashKind.SHA256

    def __init__(self, digest):
        HashNode.__init__(self, digest, OP_SHA256)


class Hash256(HashNode):
    hash_kind = HashKind.HASH256

    def __init__(self, digest):
        HashNode.__init__(self, digest, OP_HASH256)


class Ripemd160(HashNode):
    hash_kind = HashKind.RIPEMD160
    digest_len = 20

    def __init__(self, digest):
        HashNode.__init__(self, digest, OP_RIPEMD160)


class Hash160(HashNode):
    hash_kind = HashKind.HASH160
    digest_len = 20

    def __init__(self, digest):
        HashNode.__init__(self, digest, OP_HASH160)


class MultiA(Node):
    """A k-of-n multisig using BIP342's CHECKSIGADD."""

    def __init__(self, k, keys):
        if not 1 <= k <= len(keys) <= MAX_PUBKEYS_PER_MULTI_A:
            raise MiniscriptNodeCreationError(
                f"Invalid multi_a() threshold {k} for {len(keys)} keys"
            )

        self.k = k
        self.pubkeys = keys

        self.p = Property("Bdu")
        self.needs_sig = True
        self.is_forced = False
        self.is_expressive = True
        self.is_nonmalleable = True
        self.abs_heightlocks = False
        self.rel_heightlocks = False
        self.abs_timelocks = False
        self.rel_timelocks = False
        self.no_timelock_mix = True
        n = len(keys)
        self.exec_info = ExecutionInfo(
            n, n, k * SIG_ELEM_SIZE + (n - k) * EMPTY_ELEM_SIZE, n * EMPTY_ELEM_SIZE
        )

    def _fragment_keys(self, sub_keys):
        return list(self.pubkeys)

    def _translated(self, mapper, subs):
        node = copy.copy(self)
        node.pubkeys = [mapper(key) for key in self.pubkeys]
        return node

    def _fragment_script(self, sub_scripts):
        script = [self.pubkeys[0].bytes(), OP_CHECKSIG]
        for key in self.pubkeys[1:]:
            script += [key.bytes(), OP_CHECKSIGADD]
        return script + [self.k, OP_NUMEQUAL]

    def _fragment_satisfaction(self, ctx, sats, dissats):
        # One element per key, the first key's one being on top of the stack. Sign
        # with the first k keys we can sign for.
        elems = []
        n_sigs = 0
        for key in self.pubkeys:
            size = None
            if n_sigs < self.k:
                size = ctx.provider.provider_lookup_tap_leaf_script_sig(key, ctx.leaf_hash)
            if size is None:
                elems.append(Placeholder.push_zero())
            else:
                elems.append(Placeholder.leaf_sig(key, ctx.leaf_hash, size))
                n_sigs += 1
        if n_sigs < self.k:
            return Satisfaction.unavailable()
        return Satisfaction(witness=elems[::-1], has_sig=True)

    def _fragment_dissatisfaction(self, dissats):
        return Satisfaction(witness=[Placeholder.push_zero() for _ in self.pubkeys])

    def _fragment_lift(self, sub_policies):
        return policy.Thresh(self.k, [policy.Key(key) for key in self.pubkeys])

    def _fragment_repr(self, sub_strs):
        return f"multi_a({','.join([str(self.k)] + [str(k) for k in self.pubkeys])})"


class AndV(Node):
    def __init__(self, sub_x, sub_y):
        if not sub_x.p.V:
            raise MiniscriptNodeCreationError(f"and_v(): X must be of type V, got '{sub_x}'")
        if not sub_y.p.has_any("BKV"):
            raise MiniscriptNodeCreationError(
                f"and_v(): Y must be of type B, K or V, got '{sub_y}'"
            )

        self.subs = [sub_x, sub_y]

        self.p = Property(
            sub_y.p.type()
            + ("z" if sub_x.p.z and sub_y.p.z else "")
            + ("o" if sub_x.p.z and sub_y.p.o or sub_x.p.o and sub_y.p.z else "")
            + ("n" if sub_x.p.n or sub_x.p.z and sub_y.p.n else "")
            + ("u" if sub_y.p.u else "")
        )
        self.needs_sig = any(sub.needs_sig for sub in self.subs)
        self.is_forced = any(sub.needs_sig for sub in self.subs)
        self.is_expressive = False  # Not 'd'
        self.is_nonmalleable = all(sub.is_nonmalleable for sub in self.subs)
        self.abs_heightlocks = any(sub.abs_heightlocks for sub in self.subs)
        self.rel_heightlocks = any(sub.rel_heightlocks for sub in self.subs)
        self.abs_timelocks = any(sub.abs_timelocks for sub in self.subs)
        self.rel_timelocks = any(sub.rel_timelocks for sub in self.subs)
        self.no_timelock_mix = _no_timelock_mix(self)
        self.exec_info = ExecutionInfo.from_concat(
            sub_x.exec_info, sub_y.exec_info
        ).set_undissatisfiable()  # it's V.

    def _fragment_script(self, sub_scripts):
        return sub_scripts[0] + sub_scripts[1]

    def _fragment_satisfaction(self, ctx, sats, dissats):
        return Satisfaction.from_concat(ctx, sats, dissats)

    def _fragment_dissatisfaction(self, dissats):
        return Satisfaction.unavailable()  # it's V.

    def _fragment_lift(self, sub_policies):
        return policy.Policy.and_(*sub_policies)

    def _fragment_repr(self, sub_strs):
        return f"and_v({','.join(sub_strs)})"


class AndB(Node):
    def __init__(self, sub_x, sub_y):
        if not (sub_x.p.B and sub_y.p.W):
            raise MiniscriptNodeCreationError(
                f"and_b(): expected B and W subs, got '{sub_x}' and '{sub_y}'"
            )

        self.subs = [sub_x, sub_y]

        self.p = Property(
            "Bu"
            + ("z" if sub_x.p.z and sub_y.p.z else "")
            + ("o" if sub_x.p.z and sub_y.p.o or sub_x.p.o and sub_y.p.z else "")
            + ("n" if sub_x.p.n or sub_x.p.z and sub_y.p.n else "")
            + ("d" if sub_x.p.d and sub_y.p.d else "")
        )
        self.needs_sig = any(sub.needs_sig for sub in self.subs)
        self.is_forced = (
            sub_x.is_forced
            and sub_y.is_forced
            or any(sub.is_forced and sub.needs_sig for sub in self.subs)
        )
        self.is_expressive = all(sub.is_forced and sub.needs_sig for sub in self.subs)
        self.is_nonmalleable = all(sub.is_nonmalleable for sub in self.subs)
        self.abs_heightlocks = any(sub.abs_heightlocks for sub in self.subs)
        self.rel_heightlocks = any(sub.rel_heightlocks for sub in self.subs)
        self.abs_timelocks = any(sub.abs_timelocks for sub in self.subs)
        self.rel_timelocks = any(sub.rel_timelocks for sub in self.subs)
        self.no_timelock_mix = _no_timelock_mix(self)
        self.exec_info = ExecutionInfo.from_concat(sub_x.exec_info, sub_y.exec_info)

    def _fragment_script(self, sub_scripts):
        return sub_scripts[0] + sub_scripts[1] + [OP_BOOLAND]

    def _fragment_satisfaction(self, ctx, sats, dissats):
        return Satisfaction.from_concat(ctx, sats, dissats)

    def _fragment_dissatisfaction(self, dissats):
        return dissats[1] + dissats[0]

    def _fragment_lift(self, sub_policies):
        return policy.Policy.and_(*sub_policies)

    def _fragment_repr(self, sub_strs):
        return f"and_b({','.join(sub_strs)})"


class OrB(Node):
    def __init__(self, sub_x, sub_z):
        if not sub_x.p.has_all("Bd"):
            raise MiniscriptNodeCreationError(f"or_b(): X must be Bd, got '{sub_x}'")
        if not sub_z.p.has_all("Wd"):
            raise MiniscriptNodeCreationError(f"or_b(): Z must be Wd, got '{sub_z}'")

        self.subs = [sub_x, sub_z]

        self.p = Property(
            "Bdu"
            + ("z" if sub_x.p.z and sub_z.p.z else "")
            + ("o" if sub_x.p.z and sub_z.p.o or sub_x.p.o and sub_z.p.z else "")
        )
        self.needs_sig = all(sub.needs_sig for sub in self.subs)
        self.is_forced = False  # Both subs are 'd'
        self.is_expressive = all(sub.is_expressive for sub in self.subs)
        self.is_nonmalleable = all(
            sub.is_nonmalleable and sub.is_expressive for sub in self.subs
        ) and any(sub.needs_sig for sub in self.subs)
        self.abs_heightlocks = any(sub.abs_heightlocks for sub in self.subs)
        self.rel_heightlocks = any(sub.rel_heightlocks for sub in self.subs)
        self.abs_timelocks = any(sub.abs_timelocks for sub in self.subs)
        self.rel_timelocks = any(sub.rel_timelocks for sub in self.subs)
        self.no_timelock_mix = all(sub.no_timelock_mix for sub in self.subs)
        self.exec_info = ExecutionInfo.from_concat(
            sub_x.exec_info, sub_z.exec_info, disjunction=True
        )

    def _fragment_script(self, sub_scripts):
        return sub_scripts[0] + sub_scripts[1] + [OP_BOOLOR]

    def _fragment_satisfaction(self, ctx, sats, dissats):
        return Satisfaction.from_concat(ctx, sats, dissats, disjunction=True)

    def _fragment_dissatisfaction(self, dissats):
        return dissats[1] + dissats[0]

    def _fragment_lift(self, sub_policies):
        return policy.Policy.or_(*sub_policies)

    def _fragment_repr(self, sub_strs):
        return f"or_b({','.join(sub_strs)})"


class OrC(Node):
    def __init__(self, sub_x, sub_z):
        if not (sub_x.p.has_all("Bdu") and sub_z.p.V):
            raise MiniscriptNodeCreationError(
                f"or_c(): expected Bdu and V subs, got '{sub_x}' and '{sub_z}'"
            )

        self.subs = [sub_x, sub_z]

        self.p = Property(
            "V"
            + ("z" if sub_x.p.z and sub_z.p.z else "")
            + ("o" if sub_x.p.o and sub_z.p.z else "")
        )
        self.needs_sig = all(sub.needs_sig for sub in self.subs)
        self.is_forced = True  # Because sub_z is 'V'
        self.is_expressive = False  # V
        self.is_nonmalleable = (
            all(sub.is_nonmalleable for sub in self.subs)
            and any(sub.needs_sig for sub in self.subs)
            and sub_x.is_expressive
        )
        self.abs_heightlocks = any(sub.abs_heightlocks for sub in self.subs)
        self.rel_heightlocks = any(sub.rel_heightlocks for sub in self.subs)
        self.abs_timelocks = any(sub.abs_timelocks for sub in self.subs)
        self.rel_timelocks = any(sub.rel_timelocks for sub in self.subs)
        self.no_timelock_mix = all(sub.no_timelock_mix for sub in self.subs)
        self.exec_info = ExecutionInfo.from_or_uneven(
            sub_x.exec_info, sub_z.exec_info
        ).set_undissatisfiable()  # it's V.

    def _fragment_script(self, sub_scripts):
        return sub_scripts[0] + [OP_NOTIF] + sub_scripts[1] + [OP_ENDIF]

    def _fragment_satisfaction(self, ctx, sats, dissats):
        return Satisfaction.from_or_uneven(ctx, sats, dissats)

    def _fragment_dissatisfaction(self, dissats):
        return Satisfaction.unavailable()  # it's V.

    def _fragment_lift(self, sub_policies):
        return policy.Policy.or_(*sub_policies)

    def _fragment_repr(self, sub_strs):
        return f"or_c({','.join(sub_strs)})"


class OrD(Node):
    def __init__(self, sub_x, sub_z):
        if not sub_x.p.has_all("Bdu"):
            raise MiniscriptNodeCreationError(f"or_d(): X must be Bdu, got '{sub_x}'")
        if not sub_z.p.B:
            raise MiniscriptNodeCreationError(f"or_d(): Z must be B, got '{sub_z}'")

        self.subs = [sub_x, sub_z]

        self.p = Property(
            "B"
            + ("z" if sub_x.p.z and sub_z.p.z else "")
            + ("o" if sub_x.p.o and sub_z.p.z else "")
            + ("d" if sub_z.p.d else "")
            + ("u" if sub_z.p.u else "")
        )
        self.needs_sig = all(sub.needs_sig for sub in self.subs)
        self.is_forced = all(sub.is_forced for sub in self.subs)
        self.is_expressive = all(sub.is_expressive for sub in self.subs)
        self.is_nonmalleable = (
            all(sub.is_nonmalleable for sub in self.subs)
            and any(sub.needs_sig for sub in self.subs)
            and sub_x.is_expressive
        )
        self.abs_heightlocks = any(sub.abs_heightlocks for sub in self.subs)
        self.rel_heightlocks = any(sub.rel_heightlocks for sub in self.subs)
        self.abs_timelocks = any(sub.abs_timelocks for sub in self.subs)
        self.rel_timelocks = any(sub.rel_timelocks for sub in self.subs)
        self.no_timelock_mix = all(sub.no_timelock_mix for sub in self.subs)
        self.exec_info = ExecutionInfo.from_or_uneven(sub_x.exec_info, sub_z.exec_info)

    def _fragment_script(self, sub_scripts):
        return sub_scripts[0] + [OP_IFDUP, OP_NOTIF] + sub_scripts[1] + [OP_ENDIF]

    def _fragment_satisfaction(self, ctx, sats, dissats):
        return Satisfaction.from_or_uneven(ctx, sats, dissats)

    def _fragment_dissatisfaction(self, dissats):
        return dissats[1] + dissats[0]

    def _fragment_lift(self, sub_policies):
        return policy.Policy.or_(*sub_policies)

    def _fragment_repr(self, sub_strs):
        return f"or_d({','.join(sub_strs)})"


class OrI(Node):
    def __init__(self, sub_x, sub_z):
        if not (sub_x.p.type() == sub_z.p.type() and sub_x.p.has_any("BKV")):
            raise MiniscriptNodeCreationError(
                "or_i(): subs must be of the same type B, K or V, got "
                f"'{sub_x}' and '{sub_z}'"
            )

        self.subs = [sub_x, sub_z]

        self.p = Property(
            sub_x.p.type()
            + ("o" if sub_x.p.z and sub_z.p.z else "")
            + ("d" if sub_x.p.d or sub_z.p.d else "")
            + ("u" if sub_x.p.u and sub_z.p.u else "")
        )
        self.needs_sig = all(sub.needs_sig for sub in self.subs)
        self.is_forced = all(sub.is_forced for sub in self.subs)
        self.is_expressive = (
            sub_x.is_expressive
            and sub_z.is_forced
            or sub_x.is_forced
            and sub_z.is_expressive
        )
        self.is_nonmalleable = all(sub.is_nonmalleable for sub in self.subs) and any(
            sub.needs_sig for sub in self.subs
        )
        self.abs_heightlocks = any(sub.abs_heightlocks for sub in self.subs)
        self.rel_heightlocks = any(sub.rel_heightlocks for sub in self.subs)
        self.abs_timelocks = any(sub.abs_timelocks for sub in self.subs)
        self.rel_timelocks = any(sub.rel_timelocks for sub in self.subs)
        self.no_timelock_mix = all(sub.no_timelock_mix for sub in self.subs)
        self.exec_info = ExecutionInfo.from_or_even(sub_x.exec_info, sub_z.exec_info)

    def _fragment_script(self, sub_scripts):
        return [OP_IF] + sub_scripts[0] + [OP_ELSE] + sub_scripts[1] + [OP_ENDIF]

    def _fragment_satisfaction(self, ctx, sats, dissats):
        return ctx.choose(
            sats[0] + Satisfaction.push_one(), sats[1] + Satisfaction.push_zero()
        )

    def _fragment_dissatisfaction(self, dissats):
        return (dissats[0] + Satisfaction.push_one()) | (
            dissats[1] + Satisfaction.push_zero()
        )

    def _fragment_lift(self, sub_policies):
        return policy.Policy.or_(*sub_policies)

    def _fragment_repr(self, sub_strs):
        return f"or_i({','.join(sub_strs)})"


class AndOr(Node):
    def __init__(self, sub_x, sub_y, sub_z):
        if not sub_x.p.has_all("Bdu"):
            raise MiniscriptNodeCreationError(f"andor(): X must be Bdu, got '{sub_x}'")
        if not (sub_y.p.type() == sub_z.p.type() and sub_y.p.has_any("BKV")):
            raise MiniscriptNodeCreationError(
                "andor(): Y and Z must be of the same type B, K or V, got "
                f"'{sub_y}' and '{sub_z}'"
            )

        self.subs = [sub_x, sub_y, sub_z]

        self.p = Property(
            sub_y.p.type()
            + ("z" if sub_x.p.z and sub_y.p.z and sub_z.p.z else "")
            + (
                "o"
                if sub_x.p.z
                and sub_y.p.o
                and sub_z.p.o
                or sub_x.p.o
                and sub_y.p.z
                and sub_z.p.z
                else ""
            )
            + ("d" if sub_z.p.d else "")
            + ("u" if sub_y.p.u and sub_z.p.u else "")
        )
        self.needs_sig = sub_x.needs_sig and (sub_y.needs_sig or sub_z.needs_sig)
        self.is_forced = sub_z.is_forced and (sub_x.needs_sig or sub_y.is_forced)
        self.is_expressive = (
            sub_x.is_expressive
            and sub_z.is_expressive
            and (sub_x.needs_sig or sub_y.is_forced)
        )
        self.is_nonmalleable = (
            all(sub.is_nonmalleable for sub in self.subs)
            and any(sub.needs_sig for sub in self.subs)
            and sub_x.is_expressive
        )
        self.abs_heightlocks = any(sub.abs_heightlocks for sub in self.subs)
        self.rel_heightlocks = any(sub.rel_heightlocks for sub in self.subs)
        self.abs_timelocks = any(sub.abs_timelocks for sub in self.subs)
        self.rel_timelocks = any(sub.rel_timelocks for sub in self.subs)
        # X and Y, or Z. So we have a mix if any contain a timelock mix, or
        # there is a mix between X and Y.
        self.no_timelock_mix = all(sub.no_timelock_mix for sub in self.subs) and not (
            any(sub.rel_timelocks for sub in [sub_x, sub_y])
            and any(sub.rel_heightlocks for sub in [sub_x, sub_y])
            or any(sub.abs_timelocks for sub in [sub_x, sub_y])
            and any(sub.abs_heightlocks for sub in [sub_x, sub_y])
        )
        self.exec_info = ExecutionInfo.from_andor_uneven(
            sub_x.exec_info, sub_y.exec_info, sub_z.exec_info
        )

    def _fragment_script(self, sub_scripts):
        return (
            sub_scripts[0]
            + [OP_NOTIF]
            + sub_scripts[2]
            + [OP_ELSE]
            + sub_scripts[1]
            + [OP_ENDIF]
        )

    def _fragment_satisfaction(self, ctx, sats, dissats):
        # (A and B) or (!A and C)
        return ctx.choose(sats[1] + sats[0], sats[2] + dissats[0])

    def _fragment_dissatisfaction(self, dissats):
        # Dissatisfy X and Z
        return dissats[2] + dissats[0]

    def _fragment_lift(self, sub_policies):
        return policy.Policy.or_(
            policy.Policy.and_(sub_policies[0], sub_policies[1]), sub_policies[2]
        )

    def _fragment_repr(self, sub_strs):
        return f"andor({','.join(sub_strs)})"


class AndN(AndOr):
    def __init__(self, sub_x, sub_y):
        AndOr.__init__(self, sub_x, sub_y, Just0())

    def _fragment_lift(self, sub_policies):
        return policy.Policy.and_(sub_policies[0], sub_policies[1])

    def _fragment_repr(self, sub_strs):
        return f"and_n({sub_strs[0]},{sub_strs[1]})"


class Thresh(Node):
    def __init__(self, k, subs):
        n = len(subs)
        if not 1 <= k <= n:
            raise MiniscriptNodeCreationError(f"Invalid thresh() threshold {k} for {n} subs")

        self.k = k
        self.subs = subs

        for i, sub in enumerate(subs):
            expected = "Bdu" if i == 0 else "Wdu"
            if not sub.p.has_all(expected):
                raise MiniscriptNodeCreationError(
                    f"thresh(): sub number {i} must be {expected}, got '{sub}'"
                )
        non_z = [sub for sub in subs if not sub.p.z]
        all_e = all(sub.is_expressive for sub in subs)
        all_m = all(sub.is_nonmalleable for sub in subs)
        s_count = sum(1 for sub in subs if sub.needs_sig)

        self.p = Property(
            "Bdu"
            + ("z" if len(non_z) == 0 else "")
            + ("o" if len(non_z) == 1 and non_z[0].p.o else "")
        )
        self.needs_sig = s_count >= n - k + 1
        self.is_forced = False  # All subs need to be 'd'
        self.is_expressive = all_e and s_count == n
        self.is_nonmalleable = all_e and all_m and s_count >= n - k
        self.abs_heightlocks = any(sub.abs_heightlocks for sub in subs)
        self.rel_heightlocks = any(sub.rel_heightlocks for sub in subs)
        self.abs_timelocks = any(sub.abs_timelocks for sub in subs)
        self.rel_timelocks = any(sub.rel_timelocks for sub in subs)
        # If k == 1, only one of the subs is ever used.
        self.no_timelock_mix = all(sub.no_timelock_mix for sub in subs) and (
            k == 1 or _no_timelock_mix(self)
        )
        self.exec_info = ExecutionInfo.from_thresh(k, [sub.exec_info for sub in subs])

    def _fragment_script(self, sub_scripts):
        script = list(sub_scripts[0])
        for sub_script in sub_scripts[1:]:
            script += sub_script + [OP_ADD]
        return script + [self.k, OP_EQUAL]

    def _fragment_satisfaction(self, ctx, sats, dissats):
        return Satisfaction.from_thresh(ctx, self.k, sats, dissats)

    def _fragment_dissatisfaction(self, dissats):
        return sum(dissats[::-1], start=Satisfaction.empty())

    def _fragment_lift(self, sub_policies):
        return policy.Thresh(self.k, sub_policies)

    def _fragment_repr(self, sub_strs):
        return f"thresh({self.k},{','.join(sub_strs)})"


class WrapperNode(Node):
    """A virtual base class for wrappers.

    Don't instanciate it directly, use concret wrapper fragments instead.
    """

    def __init__(self, sub):
        self.subs = [sub]

        # Properties for most wrappers are directly inherited. When it's not, they
        # are overriden in the fragment's __init__.
        self.needs_sig = sub.needs_sig
        self.is_forced = sub.is_forced
        self.is_expressive = sub.is_expressive
        self.is_nonmalleable = sub.is_nonmalleable
        self.abs_heightlocks = sub.abs_heightlocks
        self.rel_heightlocks = sub.rel_heightlocks
        self.abs_timelocks = sub.abs_timelocks
        self.rel_timelocks = sub.rel_timelocks
        self.no_timelock_mix = sub.no_timelock_mix

    def _fragment_satisfaction(self, ctx, sats, dissats):
        # Most wrappers are satisfied this way, for special cases it's overriden.
        return sats[0]

    def _fragment_dissatisfaction(self, dissats):
        # Most wrappers are satisfied this way, for special cases it's overriden.
        return dissats[0]

    def _fragment_lift(self, sub_policies):
        return sub_policies[0]

    def skip_colon(self):
        # We need to check this because of the pk() and pkh() aliases.
        if isinstance(self.subs[0], WrapC) and isinstance(
            self.subs[0].subs[0], (Pk, Pkh)
        ):
            return False
        return isinstance(self.subs[0], WrapperNode)

    def wrapped_repr(self, letter, sub_str):
        # Don't duplicate colons
        if self.skip_colon():
            return f"{letter}{sub_str}"
        return f"{letter}:{sub_str}"


class WrapA(WrapperNode):
    def __init__(self, sub):
        if not sub.p.B:
            raise MiniscriptNodeCreationError(f"a: wrapper requires a B sub, got '{sub}'")
        WrapperNode.__init__(self, sub)

        self.p = Property("W" + "".join(c for c in "ud" if getattr(sub.p, c)))
        self.exec_info = ExecutionInfo.from_wrap(sub.exec_info)

    def _fragment_script(self, sub_scripts):
        return [OP_TOALTSTACK] + sub_scripts[0] + [OP_FROMALTSTACK]

    def _fragment_repr(self, sub_strs):
        return self.wrapped_repr("a", sub_strs[0])


class WrapS(WrapperNode):
    def __init__(self, sub):
        if not sub.p.has_all("Bo"):
            raise MiniscriptNodeCreationError(f"s: wrapper requires a Bo sub, got '{sub}'")
        WrapperNode.__init__(self, sub)

        self.p = Property("W" + "".join(c for c in "ud" if getattr(sub.p, c)))
        self.exec_info = ExecutionInfo.from_wrap(sub.exec_info)

    def _fragment_script(self, sub_scripts):
        return [OP_SWAP] + sub_scripts[0]

    def _fragment_repr(self, sub_strs):
        return self.wrapped_repr("s", sub_strs[0])


class WrapC(WrapperNode):
    def __init__(self, sub):
        if not sub.p.K:
            raise MiniscriptNodeCreationError(f"c: wrapper requires a K sub, got '{sub}'")
        WrapperNode.__init__(self, sub)

        self.p = Property("Bu" + "".join(c for c in "dno" if getattr(sub.p, c)))
        self.exec_info = ExecutionInfo.from_wrap(
            sub.exec_info,
            sat=1,
            dissat=1,
            sat_size=SIG_ELEM_SIZE,
            dissat_size=EMPTY_ELEM_SIZE,
        )

    def _fragment_script(self, sub_scripts):
        return sub_scripts[0] + [OP_CHECKSIG]

    def _fragment_repr(self, sub_strs):
        # Special case of aliases
        if isinstance(self.subs[0], Pk):
            return f"pk({self.subs[0].pubkey})"
        if isinstance(self.subs[0], Pkh):
            return f"pkh({self.subs[0].pubkey})"
        return self.wrapped_repr("c", sub_strs[0])


class WrapT(AndV, WrapperNode):
    def __init__(self, sub):
        AndV.__init__(self, sub, Just1())

    def _fragment_lift(self, sub_policies):
        return sub_policies[0]

    def _fragment_repr(self, sub_strs):
        return self.wrapped_repr("t", sub_strs[0])


class WrapD(WrapperNode):
    def __init__(self, sub):
        if not sub.p.has_all("Vz"):
            raise MiniscriptNodeCreationError(f"d: wrapper requires a Vz sub, got '{sub}'")
        WrapperNode.__init__(self, sub)

        # MINIMALIF is consensus in Tapscript, which makes d: a unit.
        self.p = Property("Bondu")
        self.is_forced = True  # sub is V
        self.is_expressive = True  # sub is V, and we add a single dissat
        self.exec_info = ExecutionInfo.from_wrap_dissat(
            sub.exec_info, sat=1, sat_size=2, dissat=1, dissat_size=EMPTY_ELEM_SIZE
        )

    def _fragment_script(self, sub_scripts):
        return [OP_DUP, OP_IF] + sub_scripts[0] + [OP_ENDIF]

    def _fragment_satisfaction(self, ctx, sats, dissats):
        return sats[0] + Satisfaction.push_one()

    def _fragment_dissatisfaction(self, dissats):
        return Satisfaction.push_zero()

    def _fragment_repr(self, sub_strs):
        return self.wrapped_repr("d", sub_strs[0])


class WrapV(WrapperNode):
    def __init__(self, sub):
        if not sub.p.B:
            raise MiniscriptNodeCreationError(f"v: wrapper requires a B sub, got '{sub}'")
        WrapperNode.__init__(self, sub)

        self.p = Property("V" + "".join(c for c in "zon" if getattr(sub.p, c)))
        self.is_forced = True  # V
        self.is_expressive = False  # V
        self.exec_info = ExecutionInfo.from_wrap(sub.exec_info).set_undissatisfiable()

    def _fragment_script(self, sub_scripts):
        script = sub_scripts[0]
        if script[-1] == OP_CHECKSIG:
            return script[:-1] + [OP_CHECKSIGVERIFY]
        elif script[-1] == OP_NUMEQUAL:
            return script[:-1] + [OP_NUMEQUALVERIFY]
        elif script[-1] == OP_EQUAL:
            return script[:-1] + [OP_EQUALVERIFY]
        return script + [OP_VERIFY]

    def _fragment_dissatisfaction(self, dissats):
        return Satisfaction.unavailable()  # It's V.

    def _fragment_repr(self, sub_strs):
        return self.wrapped_repr("v", sub_strs[0])


class WrapJ(WrapperNode):
    def __init__(self, sub):
        if not sub.p.has_all("Bn"):
            raise MiniscriptNodeCreationError(f"j: wrapper requires a Bn sub, got '{sub}'")
        WrapperNode.__init__(self, sub)

        self.p = Property("Bnd" + "".join(c for c in "ou" if getattr(sub.p, c)))
        self.is_forced = False  # d
        self.is_expressive = sub.is_forced
        self.exec_info = ExecutionInfo.from_wrap_dissat(
            sub.exec_info, dissat=1, dissat_size=EMPTY_ELEM_SIZE
        )

    def _fragment_script(self, sub_scripts):
        return [OP_SIZE, OP_0NOTEQUAL, OP_IF, *sub_scripts[0], OP_ENDIF]

    def _fragment_dissatisfaction(self, dissats):
        return Satisfaction.push_zero()

    def _fragment_repr(self, sub_strs):
        return self.wrapped_repr("j", sub_strs[0])


class WrapN(WrapperNode):
    def __init__(self, sub):
        if not sub.p.B:
            raise MiniscriptNodeCreationError(f"n: wrapper requires a B sub, got '{sub}'")
        WrapperNode.__init__(self, sub)

        self.p = Property("Bu" + "".join(c for c in "zond" if getattr(sub.p, c)))
        self.exec_info = ExecutionInfo.from_wrap(sub.exec_info)

    def _fragment_script(self, sub_scripts):
        return [*sub_scripts[0], OP_0NOTEQUAL]

    def _fragment_repr(self, sub_strs):
        return self.wrapped_repr("n", sub_strs[0])


class WrapL(OrI, WrapperNode):
    def __init__(self, sub):
        OrI.__init__(self, Just0(), sub)

    def _fragment_lift(self, sub_policies):
        return sub_policies[1]

    def skip_colon(self):
        sub = self.subs[1]
        if isinstance(sub, WrapC) and isinstance(sub.subs[0], (Pk, Pkh)):
            return False
        return isinstance(sub, WrapperNode)

    def _fragment_repr(self, sub_strs):
        return self.wrapped_repr("l", sub_strs[1])


class WrapU(OrI, WrapperNode):
    def __init__(self, sub):
        OrI.__init__(self, sub, Just0())

    def _fragment_lift(self, sub_policies):
        return sub_policies[0]

    def _fragment_repr(self, sub_strs):
        return self.wrapped_repr("u", sub_strs[0])
