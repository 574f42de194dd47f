"""
Generic descriptor expression trees.

A descriptor string such as ``tr(K,{pk(A),and_v(v:pk(B),older(10))})`` is first
tokenized into a tree of named nodes, each of which may have round or curly
parenthesized children. Fragment-specific parsers then walk this tree.
"""

from enum import Enum

from .utils.traversal import fold_post_order


# Maximum nesting depth of an expression. Deeper than any valid Taproot descriptor.
MAX_EXPRESSION_DEPTH = 402


class ExpressionError(ValueError):
    def __init__(self, message):
        self.message = message


class Parens(Enum):
    NONE = ""
    ROUND = "()"
    CURLY = "{}"


class Tree:
    """A node in an expression tree."""

    def __init__(self, parent=None, index=0):
        self.name = ""
        self.parens = Parens.NONE
        self.children = []
        self.parent = parent
        # Position of this node in a pre-order walk of the whole tree.
        self.index = index

    def __repr__(self):
        return f"Tree({self.to_str()!r})"

    @staticmethod
    def from_str(expr_str):
        """Tokenize an expression string. The whole string must be consumed."""
        assert isinstance(expr_str, str)
        if not expr_str:
            raise ExpressionError("Empty expression")

        count = 1
        root = Tree()
        cur = root
        # Nodes whose parenthesis are still open.
        open_nodes = []
        name_start = 0
        # Whether the current node's children were just closed, in which case
        # only a separator or a closing parenthesis may follow.
        closed = False

        for i, char in enumerate(expr_str):
            if char in "({":
                if closed:
                    raise ExpressionError(f"Unexpected '{char}' at position {i}")
                if char == "{" and i != name_start:
                    raise ExpressionError(
                        f"Curly brace must not be preceded by a name, at position {i}"
                    )
                cur.name = expr_str[name_start:i]
                cur.parens = Parens.ROUND if char == "(" else Parens.CURLY
                open_nodes.append(cur)
                if len(open_nodes) > MAX_EXPRESSION_DEPTH:
                    raise ExpressionError(
                        f"Expression exceeds maximum nesting depth of {MAX_EXPRESSION_DEPTH}"
                    )
                child = Tree(cur, count)
                count += 1
                cur.children.append(child)
                cur, name_start = child, i + 1

            elif char == ",":
                if not open_nodes:
                    raise ExpressionError(f"Unexpected ',' at top level, position {i}")
                if not closed:
                    cur.name = expr_str[name_start:i]
                    if not cur.name:
                        raise ExpressionError(f"Empty expression at position {i}")
                parent = open_nodes[-1]
                child = Tree(parent, count)
                count += 1
                parent.children.append(child)
                cur, name_start, closed = child, i + 1, False

            elif char in ")}":
                if not open_nodes:
                    raise ExpressionError(f"Unmatched '{char}' at position {i}")
                parent = open_nodes.pop()
                expected = ")" if parent.parens == Parens.ROUND else "}"
                if char != expected:
                    raise ExpressionError(
                        f"Mismatched parenthesis at position {i}: expected '{expected}'"
                    )
                if not closed:
                    cur.name = expr_str[name_start:i]
                    if not cur.name:
                        raise ExpressionError(f"Empty expression at position {i}")
                cur, closed = parent, True

            elif closed:
                raise ExpressionError(f"Unexpected '{char}' at position {i}")

        if open_nodes:
            raise ExpressionError("Unclosed parenthesis")
        if not closed:
            root.name = expr_str[name_start:]
            if not root.name:
                raise ExpressionError("Empty expression")

        return root

    def to_str(self):
        """Serialize this subtree back to its string representation."""

        def serialize(node, children):
            if node.parens == Parens.NONE:
                return node.name
            opening, closing = node.parens.value
            return f"{node.name}{opening}{','.join(children)}{closing}"

        return fold_post_order(self, lambda node: node.children, serialize)

    def pre_order_iter(self):
        """Walk this subtree, parents before children and left to right."""
        return PreOrderIter(self)

    def verify_toplevel(self, name, min_children, max_children):
        """Check this node is ``name(...)`` with an acceptable number of children."""
        if self.name != name or self.parens != Parens.ROUND:
            raise ExpressionError(f"Expected '{name}(...)', got '{self.name}'")
        self.verify_n_children(name, min_children, max_children)

    def verify_n_children(self, what, min_children, max_children):
        n_children = len(self.children)
        if not min_children <= n_children <= max_children:
            if min_children == max_children:
                expected = str(min_children)
            else:
                expected = f"between {min_children} and {max_children}"
            raise ExpressionError(
                f"{what} must have {expected} children, got {n_children}"
            )

    def verify_terminal(self, what):
        """Check this node has no children and return its name."""
        if self.parens != Parens.NONE:
            raise ExpressionError(f"Expected a {what}, got '{self.to_str()}'")
        return self.name


class PreOrderIter:
    """Pre-order iterator over an expression tree which can be told to not
    descend into the node it last returned."""

    def __init__(self, root):
        self._stack = [root]
        self._last = None

    def __iter__(self):
        return self

    def __next__(self):
        if self._last is not None:
            self._stack.extend(reversed(self._last.children))
            self._last = None
        if not self._stack:
            raise StopIteration
        self._last = self._stack.pop()
        return self._last

    def skip_descendants(self):
        """Don't yield the children of the last returned node."""
        self._last = None
