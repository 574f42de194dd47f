"""
Utilities to parse Miniscript from its string representation.
"""

from ..expression import ExpressionError, Parens, Tree
from ..key import DescriptorKey, DescriptorKeyError
from ..miniscript import fragments
from ..miniscript.errors import MiniscriptMalformed
from ..utils.traversal import fold_post_order


WRAPPERS = {
    "a": lambda sub: fragments.WrapA(sub),
    "s": lambda sub: fragments.WrapS(sub),
    "c": lambda sub: fragments.WrapC(sub),
    "t": lambda sub: fragments.WrapT(sub),
    "d": lambda sub: fragments.WrapD(sub),
    "v": lambda sub: fragments.WrapV(sub),
    "j": lambda sub: fragments.WrapJ(sub),
    "n": lambda sub: fragments.WrapN(sub),
    "l": lambda sub: fragments.WrapL(sub),
    "u": lambda sub: fragments.WrapU(sub),
}

HASHES = {
    "sha256": lambda digest: fragments.Sha256(digest),
    "hash256": lambda digest: fragments.Hash256(digest),
    "ripemd160": lambda digest: fragments.Ripemd160(digest),
    "hash160": lambda digest: fragments.Hash160(digest),
}

# Connectives with a fixed number of subs.
CONNECTIVES = {
    "and_v": (2, lambda subs: fragments.AndV(*subs)),
    "and_b": (2, lambda subs: fragments.AndB(*subs)),
    "and_n": (2, lambda subs: fragments.AndN(*subs)),
    "or_b": (2, lambda subs: fragments.OrB(*subs)),
    "or_c": (2, lambda subs: fragments.OrC(*subs)),
    "or_d": (2, lambda subs: fragments.OrD(*subs)),
    "or_i": (2, lambda subs: fragments.OrI(*subs)),
    "andor": (3, lambda subs: fragments.AndOr(*subs)),
}


def default_key_parser(key_str):
    return DescriptorKey(key_str, x_only=True)


def split_wrappers(name):
    """Split a fragment name such as 'vc:pk_k' into its wrappers and the fragment name."""
    wrappers = ""
    while ":" in name:
        prefix, name = name.split(":", 1)
        if not prefix or any(w not in WRAPPERS for w in prefix):
            raise MiniscriptMalformed(f"Unknown wrapper(s) '{prefix}'")
        wrappers += prefix
    if not name:
        raise MiniscriptMalformed("Missing fragment after wrappers")
    return wrappers, name


def parse_int(tree, what):
    name = tree.verify_terminal(what)
    # Only plain ASCII decimal numbers, without leading zeros.
    if not (name.isascii() and name.isdecimal()) or (len(name) > 1 and name[0] == "0"):
        raise MiniscriptMalformed(f"Invalid {what}: '{name}'")
    return int(name)


def parse_key(tree, key_parser):
    key_str = tree.verify_terminal("key")
    try:
        return key_parser(key_str)
    except DescriptorKeyError as e:
        raise MiniscriptMalformed(f"Invalid key '{key_str}': {e.message}")


def parse_fragment(name, tree, subs, key_parser):
    """Parse the fragment {name} whose arguments are the children of {tree}.

    :param subs: the already parsed sub fragments, as found by fragment_children().
    """

    # Just0 and Just1 are the only fragments without a function syntax.
    if name in ("0", "1"):
        if tree.parens != Parens.NONE:
            raise MiniscriptMalformed(f"'{name}' does not take arguments")
        return fragments.Just0() if name == "0" else fragments.Just1()

    if tree.parens != Parens.ROUND:
        raise MiniscriptMalformed(f"Unknown fragment '{name}'")

    if name in ("pk", "pkh", "pk_k", "pk_h"):
        tree.verify_n_children(name, 1, 1)
        key = parse_key(tree.children[0], key_parser)
        if name == "pk":
            return fragments.WrapC(fragments.Pk(key))
        if name == "pkh":
            return fragments.WrapC(fragments.Pkh(key))
        if name == "pk_k":
            return fragments.Pk(key)
        return fragments.Pkh(key)

    if name in ("older", "after"):
        tree.verify_n_children(name, 1, 1)
        value = parse_int(tree.children[0], "timelock")
        if name == "older":
            return fragments.Older(value)
        return fragments.After(value)

    if name in HASHES:
        tree.verify_n_children(name, 1, 1)
        digest_str = tree.children[0].verify_terminal("digest")
        try:
            digest = bytes.fromhex(digest_str)
        except ValueError:
            raise MiniscriptMalformed(f"Invalid hex digest '{digest_str}'")
        return HASHES[name](digest)

    if name == "multi":
        raise MiniscriptMalformed("multi() is not valid in Tapscript, use multi_a()")

    if name == "multi_a":
        tree.verify_n_children(name, 2, fragments.MAX_PUBKEYS_PER_MULTI_A + 1)
        k = parse_int(tree.children[0], "threshold")
        keys = [parse_key(child, key_parser) for child in tree.children[1:]]
        return fragments.MultiA(k, keys)

    if name == "thresh":
        k = parse_int(tree.children[0], "threshold")
        return fragments.Thresh(k, subs)

    if name in CONNECTIVES:
        _, constructor = CONNECTIVES[name]
        return constructor(subs)

    raise MiniscriptMalformed(f"Unknown fragment '{name}'")


def fragment_children(tree):
    """Get the children of {tree} which are Miniscript fragments themselves."""
    if tree.parens == Parens.CURLY:
        raise MiniscriptMalformed(f"Unexpected curly braces in '{tree.to_str()}'")
    _, name = split_wrappers(tree.name)
    if tree.parens != Parens.ROUND:
        return []
    if name == "thresh":
        tree.verify_n_children(name, 2, len(tree.children))
        return tree.children[1:]
    if name in CONNECTIVES:
        n_subs, _ = CONNECTIVES[name]
        tree.verify_n_children(name, n_subs, n_subs)
        return tree.children
    return []


def parse_node(tree, key_parser):
    """Read a node and all its subs from an expression tree, the subs first."""

    def build_node(tree, subs):
        wrappers, name = split_wrappers(tree.name)
        node = parse_fragment(name, tree, subs, key_parser)
        # The wrapper closest to the fragment is applied first.
        for wrapper in reversed(wrappers):
            node = WRAPPERS[wrapper](node)
        return node

    return fold_post_order(tree, fragment_children, build_node)


def miniscript_from_tree(tree, key_parser=None):
    """Construct a miniscript node from an expression tree."""
    assert isinstance(tree, Tree)
    if key_parser is None:
        key_parser = default_key_parser
    try:
        return parse_node(tree, key_parser)
    except ExpressionError as e:
        raise MiniscriptMalformed(e.message)


def miniscript_from_str(ms_str, key_parser=None):
    """Construct miniscript node from string representation"""
    try:
        tree = Tree.from_str(ms_str)
    except ExpressionError as e:
        raise MiniscriptMalformed(e.message)
    return miniscript_from_tree(tree, key_parser)
