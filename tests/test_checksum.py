import pytest

from bip386.descriptors.checksum import descsum_check, descsum_create
from bip386.descriptors.errors import DescriptorParsingError


def test_known_checksums():
    assert descsum_create(
        "tr(cc8a4bc64d897bddc5fbc2f670f7a8ba0b386779106cf1223c6fc5d7cd6fc115,{0,1})"
    ).endswith("#pxx8z3sd")
    assert descsum_check(
        "tr(a34b99f22c790c4e36b2b3c2c35a36db06226e41c692fc82b8b56ac1c540c5bd)#dh4fyxrd"
    )


def test_check():
    desc = descsum_create("tr(K,{pk(A),pk(B)})")
    assert descsum_check(desc)
    assert not descsum_check(desc[:-1] + ("x" if desc[-1] != "x" else "y"))
    assert not descsum_check(desc.replace("pk(A)", "pk(C)"))
    assert not descsum_check("tr(K)")
    assert not descsum_check("#")
    # Not in the checksum character set.
    assert not descsum_check(desc[:-1] + "b")


def test_invalid_character():
    with pytest.raises(DescriptorParsingError, match="Invalid character"):
        descsum_create("tr(K,pk(é))")
