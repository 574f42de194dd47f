"""Taproot (BIP341) commitment primitives."""

import coincurve

from .hashes import tagged_hash


TAPROOT_LEAF_TAPSCRIPT = 0xC0
TAPROOT_LEAF_MASK = 0xFE
TAPROOT_CONTROL_BASE_SIZE = 33
TAPROOT_CONTROL_NODE_SIZE = 32
TAPROOT_CONTROL_MAX_NODE_COUNT = 128


def varint_len(n):
    """The size of the compact size encoding of this integer."""
    if n < 253:
        return 1
    if n < 2 ** 16:
        return 3
    if n < 2 ** 32:
        return 5
    return 9


def compact_size(byte_arr):
    """The size prefix for this byte array encoded as little-endian.

    See https://en.bitcoin.it/wiki/Protocol_documentation#Variable_length_integer.
    """
    size = len(byte_arr)
    if size < 253:
        return size.to_bytes(1, "little")
    if size < 2 ** 16:
        return b"\xfd" + size.to_bytes(2, "little")
    if size < 2 ** 32:
        return b"\xfe" + size.to_bytes(4, "little")
    return b"\xff" + size.to_bytes(8, "little")


def tapleaf_hash(script, leaf_version=TAPROOT_LEAF_TAPSCRIPT):
    """Compute the hash of a Taproot leaf as defined in BIP341."""
    script = bytes(script)
    return tagged_hash("TapLeaf", bytes([leaf_version]) + compact_size(script) + script)


def tapbranch_hash(left_hash, right_hash):
    """Compute the Taproot branch hash for left and right child hashes.
    This takes care of the sorting as per BIP341.
    """
    assert all(isinstance(h, bytes) for h in (left_hash, right_hash))
    if right_hash < left_hash:
        return tagged_hash("TapBranch", right_hash + left_hash)
    return tagged_hash("TapBranch", left_hash + right_hash)


def taproot_tweak(pubkey_bytes, merkle_root):
    """Compute the output key of a Taproot, as per BIP341.

    :param merkle_root: the root of the script tree, or None for a key-path only output.
    :returns: the tweaked key as a coincurve.PublicKeyXOnly, whose ``parity`` is set.
    """
    assert isinstance(pubkey_bytes, bytes) and len(pubkey_bytes) == 32
    assert merkle_root is None or isinstance(merkle_root, bytes)

    # "If the spending conditions do not require a script path, the output key
    # should commit to an unspendable script path" (see BIP341, BIP386)
    t = tagged_hash("TapTweak", pubkey_bytes + (merkle_root or b""))
    xonly_pubkey = coincurve.PublicKeyXOnly(pubkey_bytes)
    xonly_pubkey.tweak_add(t)

    return xonly_pubkey


def control_block_len(depth):
    """The size of a control block for a leaf at this depth."""
    assert 0 <= depth <= TAPROOT_CONTROL_MAX_NODE_COUNT
    return TAPROOT_CONTROL_BASE_SIZE + TAPROOT_CONTROL_NODE_SIZE * depth


def witness_size(stack):
    """The serialized size of a witness stack, including the number of items.

    :param stack: a list of elements which each are either bytes or have a ``size()``.
    """
    size = varint_len(len(stack))
    for elem in stack:
        elem_size = len(elem) if isinstance(elem, (bytes, bytearray)) else elem.size()
        size += varint_len(elem_size) + elem_size
    return size
