import pytest

from bip386.descriptors import Descriptor
from bip386.descriptors.errors import CouldNotSatisfyError
from bip386.plan import Assets, PlaceholderKind, SatisfactionMaterial
from bip386.utils.taproot import varint_len, witness_size


def kinds(witness):
    return [placeholder.kind for placeholder in witness]


def test_key_path_preferred(keys):
    K, A = keys["K"], keys["A"]
    desc = Descriptor.from_str(f"tr({K},pk({A}))")

    plan = desc.plan_satisfaction(Assets(keys=[A], keypath_keys=[K]))
    assert kinds(plan.witness) == [PlaceholderKind.KEY_SPEND_SIG]
    assert plan.witness[0].pubkey == K
    assert plan.witness[0].merkle_root == desc.spend_info().merkle_root
    assert plan.has_sig
    assert witness_size(plan.witness) == 1 + 1 + 64

    # Even for a key-path only descriptor, and with a sighash type appended.
    desc = Descriptor.from_str(f"tr({K})")
    plan = desc.plan_satisfaction_mall(Assets(keypath_keys=[K], sig_size=65))
    assert plan.witness[0].size() == 65


def test_script_path(keys):
    K, A = keys["K"], keys["A"]
    desc = Descriptor.from_str(f"tr({K},{{pk({A}),pk({keys['B']})}})")
    plan = desc.plan_satisfaction(Assets(keys=[A]))
    assert kinds(plan.witness) == [
        PlaceholderKind.LEAF_SIG,
        PlaceholderKind.TAP_SCRIPT,
        PlaceholderKind.TAP_CONTROL_BLOCK,
    ]
    leaf = next(ms for _, ms in desc.iter_scripts())
    assert plan.witness[0].pubkey == A
    assert plan.witness[0].leaf_hash == leaf.leaf_hash()
    assert plan.witness[1].data == bytes(leaf.script)
    assert plan.witness[2].data == desc.spend_info().control_block(leaf.script)
    assert len(plan.witness[2].data) == 65


def test_no_spending_path(keys):
    desc = Descriptor.from_str(f"tr({keys['K']},pk({keys['A']}))")
    for plan in (
        desc.plan_satisfaction(Assets()),
        desc.plan_satisfaction_mall(Assets(keys=[keys["B"]])),
    ):
        assert plan.witness is None and plan.is_unavailable()

    with pytest.raises(CouldNotSatisfyError):
        desc.get_satisfaction(SatisfactionMaterial())
    with pytest.raises(CouldNotSatisfyError):
        Descriptor.from_str(f"tr({keys['K']})").get_satisfaction_mall(SatisfactionMaterial())


def test_tie_goes_to_first_leaf(keys):
    K, A, B = keys["K"], keys["A"], keys["B"]
    for first, second in ((A, B), (B, A)):
        desc = Descriptor.from_str(f"tr({K},{{pk({first}),pk({second})}})")
        plan = desc.plan_satisfaction(Assets(keys=[A, B]))
        assert plan.witness[0].pubkey == first


def test_smallest_witness_wins(keys):
    K, A, B, C = keys["K"], keys["A"], keys["B"], keys["C"]
    desc = Descriptor.from_str(f"tr({K},{{and_v(v:pk({A}),pk({B})),pk({C})}})")
    plan = desc.plan_satisfaction(Assets(keys=[A, B, C]))
    assert plan.witness[0].pubkey == C
    assert len(plan.witness) == 3

    # A shallower leaf is cheaper to prove.
    desc = Descriptor.from_str(f"tr({K},{{{{pk({A}),pk({B})}},pk({C})}})")
    plan = desc.plan_satisfaction(Assets(keys=[A, C]))
    assert plan.witness[0].pubkey == C
    assert len(plan.witness[-1].data) == 65

    # Only the available one is considered, even if deeper.
    plan = desc.plan_satisfaction(Assets(keys=[B]))
    assert plan.witness[0].pubkey == B
    assert len(plan.witness[-1].data) == 97


def test_leaf_specific_signatures(keys):
    K, A = keys["K"], keys["A"]
    desc = Descriptor.from_str(f"tr({K},{{pk({A}),and_v(v:pk({A}),older(10))}})")
    scripts = [ms for _, ms in desc.iter_scripts()]
    # We can only sign for A in the second leaf.
    assets = Assets(leaf_keys=[(A, scripts[1].leaf_hash())], max_sequence=10)
    plan = desc.plan_satisfaction(assets)
    assert plan.witness[0].leaf_hash == scripts[1].leaf_hash()
    assert plan.relative_timelock == 10


def test_malleable_planning(keys, preimages):
    K, A = keys["K"], keys["A"]
    h1, h2 = list(preimages)[:2]
    desc = Descriptor.from_str(
        f"tr({K},or_d(pk({A}),and_v(v:sha256({h1.hex()}),sha256({h2.hex()}))))"
    )
    assets = Assets(keys=[A], preimages=[h1, h2])

    # Without malleability, prefer the satisfaction that doesn't need a signature.
    plan = desc.plan_satisfaction(assets)
    assert kinds(plan.witness)[:-2] == [
        PlaceholderKind.PREIMAGE,
        PlaceholderKind.PREIMAGE,
        PlaceholderKind.PUSH_ZERO,
    ]
    assert plan.witness[0].digest == h2 and plan.witness[1].digest == h1
    assert not plan.has_sig

    # Otherwise, use the smallest witness.
    plan = desc.plan_satisfaction_mall(assets)
    assert kinds(plan.witness)[:-2] == [PlaceholderKind.LEAF_SIG]
    assert plan.has_sig


def test_timelocks(keys):
    K, A = keys["K"], keys["A"]
    desc = Descriptor.from_str(
        f"tr({K},{{and_v(v:pk({A}),older(144)),and_v(v:pk({A}),after(800000))}})"
    )
    plan = desc.plan_satisfaction(Assets(keys=[A], max_sequence=144))
    assert plan.relative_timelock == 144 and plan.absolute_timelock is None

    plan = desc.plan_satisfaction(Assets(keys=[A], max_lock_time=800000))
    assert plan.absolute_timelock == 800000 and plan.relative_timelock is None

    plan = desc.plan_satisfaction(Assets(keys=[A], max_sequence=143, max_lock_time=799999))
    assert plan.witness is None


def test_get_satisfaction(keys, preimages):
    K, A, B = keys["K"], keys["A"], keys["B"]
    sig_a, sig_k = b"\xaa" * 64, b"\x11" * 65
    desc = Descriptor.from_str(f"tr({K},{{pk({A}),pk({B})}})")
    info = desc.spend_info()
    leaf_a = next(ms for _, ms in desc.iter_scripts())

    stack, script_sig = desc.get_satisfaction(SatisfactionMaterial(signatures={A.bytes(): sig_a}))
    assert script_sig == b""
    assert stack == [sig_a, bytes(leaf_a.script), info.control_block(leaf_a.script)]

    # Signatures may be given per leaf.
    material = SatisfactionMaterial(signatures={(A.bytes(), leaf_a.leaf_hash()): sig_a})
    assert desc.get_satisfaction_mall(material)[0][0] == sig_a

    material = SatisfactionMaterial(
        signatures={A.bytes(): sig_a}, keypath_signatures={K.bytes(): sig_k}
    )
    assert desc.get_satisfaction(material) == ([sig_k], b"")

    # Hash preimages.
    digest, preimage = next(iter(preimages.items()))
    desc = Descriptor.from_str(f"tr({K},and_v(v:pk({A}),sha256({digest.hex()})))")
    material = SatisfactionMaterial(preimages=preimages, signatures={A.bytes(): sig_a})
    stack, _ = desc.get_satisfaction(material)
    assert stack[:2] == [preimage, sig_a]


def test_multi_a_witness(keys):
    K, A, B, C = keys["K"], keys["A"], keys["B"], keys["C"]
    desc = Descriptor.from_str(f"tr({K},multi_a(2,{A},{B},{C}))")
    sigs = {A.bytes(): b"\xaa" * 64, C.bytes(): b"\xcc" * 64}
    stack, _ = desc.get_satisfaction(SatisfactionMaterial(signatures=sigs))
    # The first key's signature is on top of the stack.
    assert stack[:3] == [b"\xcc" * 64, b"", b"\xaa" * 64]

    # Only the first k available keys sign.
    sigs[B.bytes()] = b"\xbb" * 64
    stack, _ = desc.get_satisfaction(SatisfactionMaterial(signatures=sigs))
    assert stack[:3] == [b"", b"\xbb" * 64, b"\xaa" * 64]


@pytest.mark.parametrize("sig_size", [64, 65])
def test_plan_within_estimate(keys, preimages, sig_size):
    K, A, B, C = keys["K"], keys["A"], keys["B"], keys["C"]
    h = next(iter(preimages)).hex()
    assets = Assets(keys=[A, B, C], preimages=list(preimages), max_sequence=2 ** 16, sig_size=sig_size)
    for desc_str in [
        f"tr({K},pk({A}))",
        f"tr({K},{{pk({A}),{{pk({B}),pk({C})}}}})",
        f"tr({K},{{multi_a(2,{A},{B},{C}),and_v(v:pk({A}),older(144))}})",
        f"tr({K},or_d(pk({A}),and_v(v:pk({B}),sha256({h}))))",
        f"tr({K},thresh(2,pk({A}),s:pk({B}),sln:older(12)))",
        f"tr({K},andor(pk({A}),pk({B}),or_i(pk({C}),and_v(v:pk({A}),older(1)))))",
    ]:
        desc = Descriptor.from_str(desc_str)
        estimate = desc.max_weight_to_satisfy()
        for plan in (desc.plan_satisfaction(assets), desc.plan_satisfaction_mall(assets)):
            assert plan.witness is not None
            assert witness_size(plan.witness) - varint_len(0) <= estimate

    # The key path is used whenever possible, even when a leaf is cheaper.
    keypath_assets = Assets(keypath_keys=[K], sig_size=sig_size)
    for desc_str in [f"tr({K})", f"tr({K},older(1))", f"tr({K},{{pk({A}),sha256({h})}})"]:
        desc = Descriptor.from_str(desc_str)
        plan = desc.plan_satisfaction(keypath_assets)
        assert len(plan.witness) == 1
        assert witness_size(plan.witness) - varint_len(0) <= desc.max_weight_to_satisfy()
