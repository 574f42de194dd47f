import pytest

from bip386.descriptors import Descriptor, TrDescriptor
from bip386.descriptors.taptree import TapTree
from bip386.miniscript import Node
from bip386.policy import Key, Thresh


def leaf(ms_str):
    return TapTree.leaf(Node.from_str(ms_str, key_parser=str))


def test_iter_leaves_depth_first():
    desc = Descriptor.from_str("tr(K,{{pk(A),pk(B)},pk(C)})", key_parser=str)
    leaves = [(depth, str(ms)) for depth, ms in desc.iter_scripts()]
    assert leaves == [(2, "pk(A)"), (2, "pk(B)"), (1, "pk(C)")]

    # Restartable, and the same through the tree directly.
    assert [(d, str(ms)) for d, ms in desc.tap_tree.iter_leaves()] == leaves
    assert [(d, str(ms)) for d, ms in desc.tap_tree] == leaves


def test_no_tree():
    desc = Descriptor.from_str("tr(K)", key_parser=str)
    assert desc.tap_tree is None
    assert list(desc.iter_scripts()) == []


def test_height():
    assert leaf("pk(A)").height == 0
    tree = TapTree.combine(TapTree.combine(leaf("pk(A)"), leaf("pk(B)")), leaf("pk(C)"))
    assert tree.height == 2
    assert not tree.is_leaf and tree.left.height == 1 and tree.right.is_leaf


def test_repr_and_equality():
    tree = TapTree.combine(leaf("pk(A)"), TapTree.combine(leaf("pk(B)"), leaf("pk(C)")))
    assert str(tree) == "{pk(A),{pk(B),pk(C)}}"
    same = TapTree.combine(leaf("pk(A)"), TapTree.combine(leaf("pk(B)"), leaf("pk(C)")))
    assert tree == same and hash(tree) == hash(same)
    assert tree != TapTree.combine(leaf("pk(A)"), leaf("pk(B)"))
    assert leaf("pk(A)") < leaf("pk(B)")


def test_subtrees_are_shared():
    sub = TapTree.combine(leaf("pk(A)"), leaf("pk(B)"))
    tree = TapTree.combine(sub, leaf("pk(C)"))
    assert tree.left is sub
    # Translating creates a new tree, the original is untouched.
    translated = tree.translate_keys(str.lower)
    assert str(translated) == "{{pk(a),pk(b)},pk(c)}"
    assert str(tree) == "{{pk(A),pk(B)},pk(C)}"


def test_translate_keys_propagates_errors():
    def mapper(key):
        if key == "B":
            raise KeyError(key)
        return key

    tree = TapTree.combine(leaf("pk(A)"), leaf("pk(B)"))
    with pytest.raises(KeyError):
        tree.translate_keys(mapper)


def test_lift():
    tree = TapTree.combine(leaf("pk(A)"), TapTree.combine(leaf("pk(B)"), leaf("pk(C)")))
    # The shape of the tree doesn't show in its policy.
    assert tree.lift() == Thresh(1, [Key("A"), Key("B"), Key("C")])
    other = TapTree.combine(TapTree.combine(leaf("pk(A)"), leaf("pk(B)")), leaf("pk(C)"))
    assert other.lift() == tree.lift()
    assert TapTree.combine(leaf("0"), leaf("pk(A)")).lift() == Key("A")

    # The key path is kept apart from the leaves.
    desc = TrDescriptor("K", tree)
    assert str(desc.lift()) == "or(pk(K),or(pk(A),pk(B),pk(C)))"
    assert str(desc.lift().normalized()) == "or(pk(K),pk(A),pk(B),pk(C))"
    assert str(TrDescriptor("K").lift()) == "pk(K)"


def test_very_deep_tree():
    # Operations on the tree must not recurse.
    tree = leaf("pk(A)")
    for _ in range(2000):
        tree = TapTree.combine(tree, leaf("pk(B)"))
    assert tree.height == 2000
    leaves = list(tree.iter_leaves())
    assert len(leaves) == 2001
    assert leaves[0][0] == 2000 and leaves[-1][0] == 1
    assert str(tree).startswith("{" * 2000 + "pk(A),pk(B)}")
    assert len(tree.translate_keys(str.lower).keys()) == 2001


def test_keys_order():
    desc = Descriptor.from_str("tr(K,{multi_a(1,A,B),pk(C)})", key_parser=str)
    assert desc.tap_tree.keys() == ["A", "B", "C"]
    assert desc.keys == ["K", "A", "B", "C"]
