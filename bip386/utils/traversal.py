"""Walking trees without recursion.

Miniscript fragments, policies and script trees may nest as deep as the parser
allows, which is deeper than Python's recursion limit comfortably permits.
"""


def fold_post_order(root, children, combine):
    """Compute combine(node, values) for every node of the tree under root, where
    values are the results for the node's children, in order. Children are always
    computed before their parent.

    :param children: a function returning the list of children of a node.
    :returns: the value computed for root.
    """
    values = []
    stack = [(root, False)]
    while stack:
        node, children_done = stack.pop()
        subs = children(node)
        if children_done or not subs:
            start = len(values) - len(subs)
            sub_values = values[start:]
            del values[start:]
            values.append(combine(node, sub_values))
        else:
            stack.append((node, True))
            stack.extend((sub, False) for sub in reversed(subs))
    assert len(values) == 1
    return values[0]
