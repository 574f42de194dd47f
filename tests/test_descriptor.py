import pytest

from bip386.descriptors import Descriptor, TrDescriptor
from bip386.descriptors.errors import DescriptorError
from bip386.key import DescriptorKey, KeyPathKind


def test_for_each_key(keys):
    K, A, B = keys["K"], keys["A"], keys["B"]
    desc = Descriptor.from_str(f"tr({K},{{pk({A}),multi_a(1,{B},{A})}})")

    seen = []

    def record(key):
        seen.append(key)
        return True

    assert desc.for_each_key(record)
    # Leaf keys first, then the internal key.
    assert seen == [A, B, A, K]

    seen.clear()

    def reject(key):
        seen.append(key)
        return False

    assert not desc.for_each_key(reject)
    assert seen == [A]

    assert not desc.for_each_key(lambda key: key != K)
    assert Descriptor.from_str(f"tr({K})").for_each_key(lambda key: key == K)


def test_keys(keys):
    K, A, B = keys["K"], keys["A"], keys["B"]
    desc = Descriptor.from_str(f"tr({K},{{pk({A}),pk({B})}})")
    assert desc.keys == [K, A, B]
    assert desc.internal_key == K


def test_translate_pk(keys):
    mapping = {name: str(key) for name, key in keys.items()}
    abstract = Descriptor.from_str(
        "tr(K,{pk(A),{and_v(v:pk(B),older(10)),multi_a(2,A,B,C)}})", key_parser=str
    )
    translated = abstract.translate_pk(lambda key: DescriptorKey(mapping[key]))
    K, A, B, C = (str(keys[n]) for n in "KABC")
    expected = Descriptor.from_str(
        f"tr({K},{{pk({A}),{{and_v(v:pk({B}),older(10)),multi_a(2,{A},{B},{C})}}}})"
    )
    assert translated == expected
    assert translated.output_key() == expected.output_key()
    # The original is untouched.
    assert abstract.keys == ["K", "A", "B", "A", "B", "C"]

    with pytest.raises(KeyError):
        abstract.translate_pk(lambda key: {"K": key}[key])


def test_derive(xpub, keys):
    desc_str = f"tr({xpub}/0/*,{{pk({keys['A']}),pk({xpub}/1/*)}})"
    desc = Descriptor.from_str(desc_str)
    derived = desc.derive(7)

    # Deriving creates a new descriptor.
    assert str(desc) == str(Descriptor.from_str(desc_str))
    assert derived != desc

    internal, leaf_a, leaf_x = derived.keys
    assert internal.path is None and leaf_x.path is None
    assert internal.origin.path == [0, 7]
    assert leaf_x.origin.path == [1, 7]
    assert leaf_a == keys["A"]
    assert desc.keys[0].path.kind == KeyPathKind.WILDCARD_UNHARDENED

    assert derived.output_key() != desc.derive(8).output_key()
    assert derived.output_key() == desc.derive(7).output_key()


def test_lift():
    desc = Descriptor.from_str(
        "tr(K,{pk(A),{and_v(v:pk(B),older(10)),multi_a(2,A,B)}})", key_parser=str
    )
    assert str(desc.lift()) == "or(pk(K),or(pk(A),and(pk(B),older(10)),and(pk(A),pk(B))))"
    policy = Descriptor.from_str("tr(K,multi_a(1,A,B))", key_parser=str).lift()
    assert str(policy) == "or(pk(K),or(pk(A),pk(B)))"
    policy = Descriptor.from_str("tr(K,or_i(0,pk(A)))", key_parser=str).lift()
    assert str(policy) == "or(pk(K),pk(A))"


def test_sanity_check(keys):
    K, A = keys["K"], keys["A"]
    Descriptor.from_str(f"tr({K})").sanity_check()
    Descriptor.from_str(f"tr({K},{{pk({A}),and_v(v:pk({A}),older(10))}})").sanity_check()

    for leaf in [
        "older(10)",
        f"or_i(pk({A}),older(10))",
        f"and_v(v:pk({A}),and_v(v:after(100),after(500000001)))",
    ]:
        desc = Descriptor.from_str(f"tr({K},{{pk({A}),{leaf}}})")
        with pytest.raises(DescriptorError):
            desc.sanity_check()


def test_equality_and_ordering(keys):
    K, A, B = keys["K"], keys["A"], keys["B"]
    a = Descriptor.from_str(f"tr({K},{{pk({A}),pk({B})}})")
    b = Descriptor.from_str(f"tr({K},{{pk({A}),pk({B})}})")
    c = Descriptor.from_str(f"tr({K},{{pk({B}),pk({A})}})")
    assert a == b and hash(a) == hash(b)
    assert a != c
    assert len({a, b, c}) == 2
    assert sorted([c, a]) == sorted([a, c])
    assert (a < c) == (a.to_string() < c.to_string())


def test_rendering(keys):
    desc = Descriptor.from_str(f"tr({keys['K']},pk({keys['A']}))")
    assert desc.to_string() == f"tr({keys['K']},pk({keys['A']}))"
    assert repr(desc) == desc.to_string(checksum=True)
    assert str(desc).startswith(desc.to_string() + "#")
    assert len(str(desc)) == len(desc.to_string()) + 9


def test_internal_key_must_be_x_only(keys):
    with pytest.raises(DescriptorError):
        TrDescriptor(DescriptorKey("02" + str(keys["K"]), x_only=False))
