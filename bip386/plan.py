"""
Spending plans.

A plan is a witness template made of placeholders, built from an
``AssetProvider`` which only tells what could be provided (and, for signatures,
at which size). A ``Satisfier`` is an asset provider that can also hand out the
actual data, which is used to complete a template into a witness.
"""

from enum import Enum, auto


# Size of a BIP340 signature using SIGHASH_DEFAULT. An explicit sighash type
# appends one byte.
SCHNORR_SIG_SIZE = 64
MAX_SCHNORR_SIG_SIZE = SCHNORR_SIG_SIZE + 1


class HashKind(Enum):
    SHA256 = "sha256"
    HASH256 = "hash256"
    RIPEMD160 = "ripemd160"
    HASH160 = "hash160"


class AssetProvider:
    """What spending material is available.

    Every lookup defaults to "not available"; subclasses override the ones they
    know about. Keys are the descriptor keys as they appear in the descriptor.
    """

    def provider_lookup_tap_key_spend_sig(self, pubkey):
        """The size of a key path signature for this internal key, or None."""
        return None

    def provider_lookup_tap_leaf_script_sig(self, pubkey, leaf_hash):
        """The size of a signature for this key in the leaf with this hash, or None."""
        return None

    def provider_lookup_preimage(self, hash_kind, digest):
        """Whether the preimage of this digest is available."""
        return False

    def check_older(self, value):
        """Whether the spending input's nSequence satisfies ``older(value)``."""
        return False

    def check_after(self, value):
        """Whether the spending transaction's nLockTime satisfies ``after(value)``."""
        return False


class Assets(AssetProvider):
    """An asset provider for planning, without any concrete signing material."""

    def __init__(
        self,
        keys=(),
        keypath_keys=(),
        leaf_keys=(),
        preimages=(),
        max_sequence=0,
        max_lock_time=0,
        sig_size=SCHNORR_SIG_SIZE,
    ):
        """
        :param keys: Keys we can sign for in any leaf.
        :param keypath_keys: Internal keys we can sign for on the key path.
        :param leaf_keys: (key, leaf hash) pairs we can sign for.
        :param preimages: Digests whose preimage we know.
        :param max_sequence: The maximum relative timelock possible (coin age).
        :param max_lock_time: The maximum absolute timelock possible.
        :param sig_size: The size of the signatures we'd produce.
        """
        self.keys = set(keys)
        self.keypath_keys = set(keypath_keys)
        self.leaf_keys = set(leaf_keys)
        self.preimages = set(preimages)
        self.max_sequence = max_sequence
        self.max_lock_time = max_lock_time
        self.sig_size = sig_size

    def provider_lookup_tap_key_spend_sig(self, pubkey):
        if pubkey in self.keypath_keys:
            return self.sig_size
        return None

    def provider_lookup_tap_leaf_script_sig(self, pubkey, leaf_hash):
        if pubkey in self.keys or (pubkey, leaf_hash) in self.leaf_keys:
            return self.sig_size
        return None

    def provider_lookup_preimage(self, hash_kind, digest):
        return digest in self.preimages

    def check_older(self, value):
        return self.max_sequence >= value

    def check_after(self, value):
        return self.max_lock_time >= value

    def __repr__(self):
        return (
            f"Assets(keys: {len(self.keys)}, keypath_keys: {len(self.keypath_keys)}, "
            f"leaf_keys: {len(self.leaf_keys)}, preimages: {len(self.preimages)}, "
            f"max_sequence: {self.max_sequence}, max_lock_time: {self.max_lock_time})"
        )


class Satisfier(AssetProvider):
    """An asset provider which can also provide the data itself."""

    def lookup_tap_key_spend_sig(self, pubkey):
        return None

    def lookup_tap_leaf_script_sig(self, pubkey, leaf_hash):
        return None

    def lookup_preimage(self, hash_kind, digest):
        return None

    def provider_lookup_tap_key_spend_sig(self, pubkey):
        sig = self.lookup_tap_key_spend_sig(pubkey)
        return None if sig is None else len(sig)

    def provider_lookup_tap_leaf_script_sig(self, pubkey, leaf_hash):
        sig = self.lookup_tap_leaf_script_sig(pubkey, leaf_hash)
        return None if sig is None else len(sig)

    def provider_lookup_preimage(self, hash_kind, digest):
        return self.lookup_preimage(hash_kind, digest) is not None


class SatisfactionMaterial(Satisfier):
    """Data that may be needed in order to satisfy a Taproot descriptor."""

    def __init__(
        self,
        preimages=None,
        signatures=None,
        keypath_signatures=None,
        max_sequence=2 ** 32,
        max_lock_time=2 ** 32,
    ):
        """
        :param preimages: Mapping from a hash (as bytes), to its 32-bytes preimage.
        :param signatures: Mapping from an x-only public key (as bytes), or a tuple of
                           (x-only public key, leaf hash), to a signature for this key.
        :param keypath_signatures: Mapping from an internal key (as bytes) to a key
                                   path signature.
        :param max_sequence: The maximum relative timelock possible (coin age).
        :param max_lock_time: The maximum absolute timelock possible (block height).
        """
        self.preimages = {} if preimages is None else preimages
        self.signatures = {} if signatures is None else signatures
        self.keypath_signatures = {} if keypath_signatures is None else keypath_signatures
        self.max_sequence = max_sequence
        self.max_lock_time = max_lock_time

    def lookup_tap_key_spend_sig(self, pubkey):
        return self.keypath_signatures.get(pubkey.bytes())

    def lookup_tap_leaf_script_sig(self, pubkey, leaf_hash):
        key = pubkey.bytes()
        sig = self.signatures.get((key, leaf_hash))
        if sig is None:
            sig = self.signatures.get(key)
        return sig

    def lookup_preimage(self, hash_kind, digest):
        return self.preimages.get(digest)

    def check_older(self, value):
        return self.max_sequence >= value

    def check_after(self, value):
        return self.max_lock_time >= value

    def __repr__(self):
        return (
            f"SatisfactionMaterial(preimages: {len(self.preimages)}, signatures: "
            f"{len(self.signatures)}, keypath_signatures: {len(self.keypath_signatures)}, "
            f"max_sequence: {self.max_sequence}, max_lock_time: {self.max_lock_time})"
        )


class PlaceholderKind(Enum):
    KEY_SPEND_SIG = auto()
    LEAF_SIG = auto()
    PREIMAGE = auto()
    PUBKEY = auto()
    PUSH_ONE = auto()
    PUSH_ZERO = auto()
    TAP_SCRIPT = auto()
    TAP_CONTROL_BLOCK = auto()


class Placeholder:
    """A witness stack element whose value may not be known yet."""

    def __init__(self, kind, size, pubkey=None, leaf_hash=None, merkle_root=None,
                 hash_kind=None, digest=None, data=None):
        self.kind = kind
        # Size of the element, without its length prefix.
        self._size = size
        self.pubkey = pubkey
        self.leaf_hash = leaf_hash
        self.merkle_root = merkle_root
        self.hash_kind = hash_kind
        self.digest = digest
        self.data = data

    @staticmethod
    def key_spend_sig(pubkey, merkle_root, size):
        return Placeholder(PlaceholderKind.KEY_SPEND_SIG, size, pubkey=pubkey,
                           merkle_root=merkle_root)

    @staticmethod
    def leaf_sig(pubkey, leaf_hash, size):
        return Placeholder(PlaceholderKind.LEAF_SIG, size, pubkey=pubkey, leaf_hash=leaf_hash)

    @staticmethod
    def preimage(hash_kind, digest):
        return Placeholder(PlaceholderKind.PREIMAGE, 32, hash_kind=hash_kind, digest=digest)

    @staticmethod
    def pubkey_push(pubkey):
        return Placeholder(PlaceholderKind.PUBKEY, 32, pubkey=pubkey)

    @staticmethod
    def push_one():
        return Placeholder(PlaceholderKind.PUSH_ONE, 1, data=b"\x01")

    @staticmethod
    def push_zero():
        return Placeholder(PlaceholderKind.PUSH_ZERO, 0, data=b"")

    @staticmethod
    def tap_script(script):
        return Placeholder(PlaceholderKind.TAP_SCRIPT, len(script), data=bytes(script))

    @staticmethod
    def tap_control_block(control_block):
        return Placeholder(PlaceholderKind.TAP_CONTROL_BLOCK, len(control_block),
                           data=control_block)

    def size(self):
        return self._size

    def satisfy_self(self, satisfier):
        """Get the concrete value for this placeholder, or None if the satisfier
        doesn't have it."""
        if self.kind == PlaceholderKind.KEY_SPEND_SIG:
            return satisfier.lookup_tap_key_spend_sig(self.pubkey)
        if self.kind == PlaceholderKind.LEAF_SIG:
            return satisfier.lookup_tap_leaf_script_sig(self.pubkey, self.leaf_hash)
        if self.kind == PlaceholderKind.PREIMAGE:
            return satisfier.lookup_preimage(self.hash_kind, self.digest)
        if self.kind == PlaceholderKind.PUBKEY:
            return self.pubkey.bytes()
        return self.data

    def __eq__(self, other):
        if not isinstance(other, Placeholder):
            return NotImplemented
        return (self.kind, self._size, self.pubkey, self.leaf_hash, self.digest, self.data) == (
            other.kind, other._size, other.pubkey, other.leaf_hash, other.digest, other.data
        )

    def __hash__(self):
        return hash((self.kind, self._size, self.digest, self.data))

    def __repr__(self):
        if self.kind == PlaceholderKind.PUBKEY:
            return f"pubkey({self.pubkey})"
        if self.kind in (PlaceholderKind.KEY_SPEND_SIG, PlaceholderKind.LEAF_SIG):
            return f"{self.kind.name}({self.pubkey}, {self._size})"
        if self.kind == PlaceholderKind.PREIMAGE:
            return f"{self.hash_kind.value}_preimage({self.digest.hex()})"
        return f"{self.kind.name}({self.data.hex()})"
