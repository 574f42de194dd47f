import pytest

from bip386.expression import MAX_EXPRESSION_DEPTH, ExpressionError, Parens, Tree


def test_tokenize():
    tree = Tree.from_str("tr(K,{pk(A),and_v(v:pk(B),older(10))})")
    assert tree.name == "tr" and tree.parens == Parens.ROUND
    key, branch = tree.children
    assert key.name == "K" and key.parens == Parens.NONE
    assert branch.name == "" and branch.parens == Parens.CURLY
    assert [c.name for c in branch.children] == ["pk", "and_v"]
    assert branch.children[1].parent is branch
    assert tree.to_str() == "tr(K,{pk(A),and_v(v:pk(B),older(10))})"
    assert branch.to_str() == "{pk(A),and_v(v:pk(B),older(10))}"


def test_pre_order():
    tree = Tree.from_str("a(b(c,d),e)")
    assert [n.name for n in tree.pre_order_iter()] == ["a", "b", "c", "d", "e"]
    assert [n.index for n in tree.pre_order_iter()] == [0, 1, 2, 3, 4]

    names = []
    nodes = tree.pre_order_iter()
    for node in nodes:
        names.append(node.name)
        if node.name == "b":
            nodes.skip_descendants()
    assert names == ["a", "b", "e"]


def test_verify():
    tree = Tree.from_str("tr(K,x)")
    tree.verify_toplevel("tr", 1, 2)
    assert tree.children[0].verify_terminal("key") == "K"
    with pytest.raises(ExpressionError):
        tree.verify_toplevel("wsh", 1, 2)
    with pytest.raises(ExpressionError):
        tree.verify_n_children("tr", 1, 1)
    with pytest.raises(ExpressionError):
        Tree.from_str("a(b(c))").children[0].verify_terminal("key")


def test_malformed():
    for expr in ["", "a(", "a)", "a(b))", "a(b,)", "a(,b)", "{a,b)", "a{b}", "a(b)c", "a,b"]:
        with pytest.raises(ExpressionError):
            Tree.from_str(expr)


def test_max_depth():
    depth = MAX_EXPRESSION_DEPTH
    Tree.from_str("a(" * depth + "b" + ")" * depth)
    with pytest.raises(ExpressionError, match="depth"):
        Tree.from_str("a(" * (depth + 1) + "b" + ")" * (depth + 1))
