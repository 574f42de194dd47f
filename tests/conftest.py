import pytest

from bip32 import BIP32

from bip386.key import DescriptorKey
from bip386.utils.hashes import sha256


def xonly_key(seed_byte):
    return DescriptorKey(BIP32.from_seed(bytes([seed_byte]) * 32).pubkey[1:])


@pytest.fixture
def keys():
    """Deterministic x-only keys, by name."""
    return {name: xonly_key(i + 1) for i, name in enumerate("KABCDE")}


@pytest.fixture
def xpub():
    return BIP32.from_seed(b"\x42" * 32).get_xpub()


@pytest.fixture
def preimages():
    """Mapping from sha256 digest to its preimage."""
    return {sha256(p): p for p in (b"\x01" * 32, b"\x02" * 32, b"\x03" * 32)}
