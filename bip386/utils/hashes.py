"""
Common Bitcoin hashes.
"""

import hashlib

from embit.util.py_ripemd160 import ripemd160 as ripemd160_fallback


def sha256(data):
    """{data} must be bytes, returns sha256(data)"""
    assert isinstance(data, bytes)
    return hashlib.sha256(data).digest()


def hash256(data):
    """{data} must be bytes, returns sha256(sha256(data))"""
    return sha256(sha256(data))


def ripemd160(data):
    """{data} must be bytes, returns ripemd160(data)"""
    assert isinstance(data, bytes)
    try:
        return hashlib.new("ripemd160", data).digest()
    except ValueError:
        # OpenSSL 3 without the legacy provider doesn't have it.
        return ripemd160_fallback(data)


def hash160(data):
    """{data} must be bytes, returns ripemd160(sha256(data))"""
    return ripemd160(sha256(data))


def tagged_hash(tag, data):
    """BIP340 tagged hash: sha256(sha256(tag) || sha256(tag) || data)."""
    assert isinstance(tag, str) and isinstance(data, bytes)
    ss = hashlib.sha256(tag.encode("utf-8")).digest()
    ss += ss
    ss += data
    return hashlib.sha256(ss).digest()
