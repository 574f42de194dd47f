import logging

from .. import descriptors
from ..expression import ExpressionError, Parens, Tree
from ..key import DescriptorKey, DescriptorKeyError
from ..miniscript import Node
from ..miniscript.errors import (
    MiniscriptMalformed,
    MiniscriptNodeCreationError,
    MiniscriptPropertyError,
)

from .checksum import descsum_check
from .errors import DescriptorParsingError, NonTopLevelScriptError
from .taptree import TapTree


logger = logging.getLogger(__name__)


def split_checksum(desc_str, strict=False):
    """Removes and check the provided checksum.
    If not told otherwise, this won't fail on a missing checksum.

    :param strict: whether to require the presence of the checksum.
    """
    desc_split = desc_str.split("#")
    if len(desc_split) != 2:
        if strict:
            raise DescriptorParsingError("Missing checksum")
        if len(desc_split) > 2:
            raise DescriptorParsingError("Multiple '#' symbols")
        return desc_split[0]

    descriptor, checksum = desc_split
    if not descsum_check(desc_str):
        raise DescriptorParsingError(
            f"Checksum '{checksum}' is invalid for '{descriptor}'"
        )

    return descriptor


class TreeStack:
    """The subtrees parsed so far, each tagged with the expression node its parent is.

    Pushing a subtree whose parent is the same as the one on top of the stack means
    they are the two children of the same branch: they get combined, and the result
    is tagged with the branch's own parent. This goes on until the top of the stack
    is not a sibling anymore.
    """

    def __init__(self):
        self.stack = []

    def push(self, parent, tree):
        while self.stack and self.stack[-1][0] is parent:
            _, left = self.stack.pop()
            tree = TapTree.combine(left, tree)
            parent = parent.parent
        self.stack.append((parent, tree))

    def pop_final(self):
        """Get the completed tree, once all the leaves were pushed."""
        assert len(self.stack) == 1, f"Unreduced Taproot tree stack: {self.stack}"
        return self.stack.pop()[1]


def parse_leaf(node, key_parser):
    try:
        ms = Node.from_tree(node, key_parser)
    except (
        MiniscriptMalformed,
        MiniscriptNodeCreationError,
        MiniscriptPropertyError,
    ) as e:
        raise DescriptorParsingError(f"Invalid Tapscript leaf '{node.to_str()}': {e.message}")
    if not ms.p.B:
        raise NonTopLevelScriptError(
            f"Tapscript leaf '{ms}' is of type '{ms.p.type()}', not a top-level 'B'"
        )
    return ms


def taptree_from_expression(root, key_parser=None):
    """Parse a Taproot script tree of the form '{A,{B,C}}' from its expression tree."""
    stack = TreeStack()
    nodes = root.pre_order_iter()
    for node in nodes:
        if node.parens == Parens.CURLY:
            if node.name:
                raise DescriptorParsingError(f"Unexpected name '{node.name}' for a tree branch")
            try:
                node.verify_n_children("Taproot tree branch", 2, 2)
            except ExpressionError as e:
                raise DescriptorParsingError(e.message)
            continue

        stack.push(node.parent, TapTree.leaf(parse_leaf(node, key_parser)))
        nodes.skip_descendants()

    return stack.pop_final()


def parse_internal_key(key_str, key_parser):
    try:
        if key_parser is not None:
            return key_parser(key_str)
        return DescriptorKey(key_str, x_only=True)
    except DescriptorKeyError as e:
        raise DescriptorParsingError(f"Invalid internal key '{key_str}': {e.message}")


def descriptor_from_str(desc_str, strict=False, key_parser=None):
    """Parse a Bitcoin Output Script Descriptor from its string representation.

    :param strict: whether to require the presence of a checksum.
    :param key_parser: a function creating a key from its string representation.
                       Defaults to x-only DescriptorKey's.
    """
    desc_str = split_checksum(desc_str, strict=strict)

    try:
        expr = Tree.from_str(desc_str)
        if expr.name != "tr":
            raise DescriptorParsingError(f"Unknown descriptor fragment: {desc_str}")
        expr.verify_toplevel("tr", 1, 2)
        key_str = expr.children[0].verify_terminal("internal key")
    except ExpressionError as e:
        raise DescriptorParsingError(e.message)

    internal_key = parse_internal_key(key_str, key_parser)
    tree = None
    if len(expr.children) == 2:
        tree = taptree_from_expression(expr.children[1], key_parser)
        logger.debug("Parsed Taproot tree of height %d", tree.height)

    return descriptors.TrDescriptor(internal_key, tree)
