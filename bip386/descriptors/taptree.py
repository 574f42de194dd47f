"""The script tree of a Taproot descriptor."""

from functools import total_ordering

from ..miniscript import Node
from ..policy import Policy
from ..utils.traversal import fold_post_order


@total_ordering
class TapTree:
    """A binary tree of Tapscript leaves.

    A TapTree is either a leaf holding a Miniscript, or a branch with exactly two
    children. It is never modified once created, so subtrees are shared between trees.
    """

    def __init__(self, ms=None, left=None, right=None):
        if ms is not None:
            assert isinstance(ms, Node) and left is None and right is None
            self._height = 0
        else:
            assert isinstance(left, TapTree) and isinstance(right, TapTree)
            self._height = 1 + max(left.height, right.height)
        self._ms = ms
        self._left = left
        self._right = right

    @staticmethod
    def leaf(ms):
        return TapTree(ms=ms)

    @staticmethod
    def combine(left, right):
        """Create a branch out of two trees."""
        return TapTree(left=left, right=right)

    @property
    def height(self):
        """The number of branches between the root and the deepest leaf."""
        return self._height

    @property
    def is_leaf(self):
        return self._ms is not None

    @property
    def ms(self):
        return self._ms

    @property
    def left(self):
        return self._left

    @property
    def right(self):
        return self._right

    def iter_leaves(self):
        """Iterate over the leaves in depth-first order, left child first.

        Yields tuples of (depth, Miniscript).
        """
        stack = [(0, self)]
        while stack:
            depth, node = stack.pop()
            if node.is_leaf:
                yield depth, node.ms
            else:
                stack.append((depth + 1, node.right))
                stack.append((depth + 1, node.left))

    def __iter__(self):
        return self.iter_leaves()

    def fold(self, on_leaf, on_branch):
        """Compute a value for the tree from the values of its leaves, combining them
        pairwise with the shape of the tree. Leaves are visited in depth-first order.
        """
        return fold_post_order(
            self,
            lambda node: [] if node.is_leaf else [node.left, node.right],
            lambda node, values: on_leaf(node.ms) if node.is_leaf else on_branch(*values),
        )

    def translate_keys(self, mapper):
        """Get the same tree with all the keys of the leaves replaced by mapper(key).

        An exception raised by mapper is propagated as soon as it happens.
        """
        return self.fold(
            lambda ms: TapTree.leaf(ms.translate_pk(mapper)), TapTree.combine
        )

    def lift(self):
        """Get the semantic policy for this tree: any of the leaves.

        The policy is normalized, so the shape of the tree doesn't show in it.
        """
        return self.fold(lambda ms: ms.lift(), Policy.or_).normalized()

    def keys(self):
        return [key for _, ms in self.iter_leaves() for key in ms.keys]

    def __repr__(self):
        return self.fold(str, lambda left, right: f"{{{left},{right}}}")

    def __eq__(self, other):
        if not isinstance(other, TapTree):
            return NotImplemented
        return str(self) == str(other)

    def __lt__(self, other):
        if not isinstance(other, TapTree):
            return NotImplemented
        return str(self) < str(other)

    def __hash__(self):
        return hash(str(self))
