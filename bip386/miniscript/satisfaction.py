"""
Miniscript satisfaction.

This module contains logic for planning the spend of a Tapscript Miniscript
(constructing a witness template that meets the conditions set by the Script, using
placeholders for the data that isn't known yet) and analysis of such satisfaction(s)
(eg the maximum size of a witness).
Both non-malleable satisfaction and malleable satisfaction (simply the smallest
witness) are supported. We take shortcuts to not care about non-canonical
(dis)satisfactions.
"""

from ..plan import MAX_SCHNORR_SIG_SIZE, Placeholder
from ..utils.taproot import varint_len


# The size of a maximum-sized Schnorr signature, with its length prefix.
SIG_ELEM_SIZE = 1 + MAX_SCHNORR_SIG_SIZE
# The size of the empty vector, with its length prefix.
EMPTY_ELEM_SIZE = 1


def add_optional(a, b):
    """Add two numbers (or lists) that may be None together."""
    if a is None or b is None:
        return None
    return a + b


def max_optional(a, b):
    """Return the maximum of two numbers that may be None."""
    if a is None:
        return b
    if b is None:
        return a
    return max(a, b)


class SatisfactionContext:
    """What is needed to satisfy the fragments of a single Tapscript leaf."""

    def __init__(self, provider, leaf_hash, malleable=False):
        """
        :param provider: an AssetProvider answering what data is available.
        :param leaf_hash: the hash of the leaf the Miniscript is in, signatures commit to it.
        :param malleable: whether to produce the smallest witness, regardless of
                          whether a third party could malleate it.
        """
        self.provider = provider
        self.leaf_hash = leaf_hash
        self.malleable = malleable

    def choose(self, a, b):
        """Choose between two satisfactions according to the satisfaction strategy."""
        if self.malleable:
            return Satisfaction.smallest(a, b)
        return a | b


class Satisfaction:
    """All information about a satisfaction."""

    def __init__(self, witness, has_sig=False, absolute_timelock=None, relative_timelock=None):
        """
        :param witness: a list of Placeholder (bottom of the stack first), or None if
                        this satisfaction is not available.
        """
        assert isinstance(witness, list) or witness is None
        self.witness = witness
        self.has_sig = has_sig
        self.absolute_timelock = absolute_timelock
        self.relative_timelock = relative_timelock

    def __repr__(self):
        return (
            f"Satisfaction(witness: {self.witness}, has_sig: {self.has_sig}, "
            f"absolute_timelock: {self.absolute_timelock}, relative_timelock: "
            f"{self.relative_timelock})"
        )

    def __add__(self, other):
        """Concatenate two satisfactions together."""
        return Satisfaction(
            add_optional(self.witness, other.witness),
            self.has_sig or other.has_sig,
            max_optional(self.absolute_timelock, other.absolute_timelock),
            max_optional(self.relative_timelock, other.relative_timelock),
        )

    def __or__(self, other):
        """Choose between two (dis)satisfactions, without introducing malleability."""
        assert isinstance(other, Satisfaction)

        # If one isn't available, return the other one.
        if self.witness is None:
            return other
        if other.witness is None:
            return self

        # > If instead exactly one does not have the HASSIG marker, return that solution
        # > because of reason 2.
        if self.has_sig and not other.has_sig:
            return other
        if not self.has_sig and other.has_sig:
            return self

        # > Otherwise, all not-DONTUSE options are valid, so return the smallest one (in
        # > terms of witness size).
        if self.size() > other.size():
            return other
        return self

    @staticmethod
    def smallest(a, b):
        """Choose the smallest of two (dis)satisfactions. Ties keep the first one."""
        if a.witness is None:
            return b
        if b.witness is None:
            return a
        if b.size() < a.size():
            return b
        return a

    @staticmethod
    def unavailable():
        return Satisfaction(witness=None)

    @staticmethod
    def empty():
        return Satisfaction(witness=[])

    @staticmethod
    def push_one():
        return Satisfaction(witness=[Placeholder.push_one()])

    @staticmethod
    def push_zero():
        return Satisfaction(witness=[Placeholder.push_zero()])

    def is_unavailable(self):
        return self.witness is None

    def size(self):
        """The size of the witness elements, including their length prefix."""
        return sum(varint_len(elem.size()) + elem.size() for elem in self.witness)

    def try_completing(self, satisfier):
        """Replace the placeholders by the actual data from the satisfier.

        :returns: the list of witness elements as bytes, or None if any is missing.
        """
        if self.witness is None:
            return None
        stack = []
        for placeholder in self.witness:
            elem = placeholder.satisfy_self(satisfier)
            if elem is None:
                return None
            stack.append(elem)
        return stack

    @staticmethod
    def from_concat(ctx, sats, dissats, disjunction=False):
        """Get the satisfaction for a Miniscript whose Script corresponds to a
        concatenation of two subscripts A and B.

        :param sats: The satisfactions of A and B.
        :param dissats: The dissatisfactions of A and B.
        :param disjunction: Whether this fragment has an 'or()' semantic.
        """
        (sat_a, sat_b), (dissat_a, dissat_b) = sats, dissats
        if disjunction:
            return ctx.choose(dissat_b + sat_a, sat_b + dissat_a)
        return sat_b + sat_a

    @staticmethod
    def from_or_uneven(ctx, sats, dissats):
        """Get the satisfaction for a Miniscript which unconditionally executes a first
        sub A and only executes B if A was dissatisfied.

        :param sats: The satisfactions of A and B.
        :param dissats: The dissatisfactions of A and B.
        """
        return ctx.choose(sats[0], sats[1] + dissats[0])

    @staticmethod
    def from_thresh(ctx, k, sats, dissats):
        """Get the satisfaction for a Miniscript which satisfies k of its subs,
        and dissatisfies all the others.

        :param k: The number of subs that need to be satisfied.
        :param sats: The satisfactions of all the subs of the threshold.
        :param dissats: The dissatisfactions of all the subs of the threshold.
        """
        # Pick the k sub-fragments to satisfy, prefering (in order):
        # 1. Fragments that don't require a signature to be satisfied (unless malleable)
        # 2. Fragments whose satisfaction's size is smaller
        # Record the unavailable (in either way) ones as we go.
        arbitrage, unsatisfiable, undissatisfiable = [], [], []
        for i, (sat, dissat) in enumerate(zip(sats, dissats)):
            if sat.witness is None:
                unsatisfiable.append(i)
            elif dissat.witness is None:
                undissatisfiable.append(i)
            else:
                sig_cost = 0 if ctx.malleable else int(sat.has_sig)
                arbitrage.append((sig_cost, sat.size() - dissat.size(), i))

        # If not enough (dis)satisfactions are available, fail.
        if len(unsatisfiable) > len(sats) - k or len(undissatisfiable) > k:
            return Satisfaction.unavailable()

        # Otherwise, satisfy the k most optimal ones.
        arbitrage = sorted(arbitrage, key=lambda x: x[:2])
        optimal_sat = undissatisfiable + [a[2] for a in arbitrage] + unsatisfiable
        to_satisfy = set(optimal_sat[:k])
        return sum(
            [
                sats[i] if i in to_satisfy else dissats[i]
                for i in reversed(range(len(sats)))
            ],
            start=Satisfaction.empty(),
        )


class ExecutionInfo:
    """Worst-case witness cost of a Miniscript.

    Sizes are in bytes and include the length prefix of each element, counting a
    signature as the largest possible Schnorr signature. A value of None means the
    fragment cannot be (non-malleably) satisfied, or dissatisfied.
    """

    def __init__(self, sat_elems, dissat_elems, sat_size, dissat_size):
        # The *maximum* number of stack elements to satisfy this Miniscript fragment.
        self.sat_elems = sat_elems
        # The *maximum* number of stack elements to dissatisfy this Miniscript fragment.
        self.dissat_elems = dissat_elems
        # The *maximum* size of the stack elements to satisfy this Miniscript fragment.
        self.sat_size = sat_size
        # The *maximum* size of the stack elements to dissatisfy this Miniscript fragment.
        self.dissat_size = dissat_size

    def __repr__(self):
        return (
            f"ExecutionInfo(sat: {self.sat_elems} elems / {self.sat_size} bytes, "
            f"dissat: {self.dissat_elems} elems / {self.dissat_size} bytes)"
        )

    def is_satisfiable(self):
        return self.sat_elems is not None

    def is_dissatisfiable(self):
        """Whether the Miniscript is *non-malleably* dissatisfiable."""
        return self.dissat_elems is not None

    def set_undissatisfiable(self):
        """Set the Miniscript as being impossible to dissatisfy."""
        self.dissat_elems = None
        self.dissat_size = None
        return self

    @staticmethod
    def from_concat(sub_a, sub_b, disjunction=False):
        """Compute the execution info from a Miniscript whose Script corresponds to
        a concatenation of two subscript A and B.

        :param disjunction: Whether this fragment has an 'or()' semantic.
        """
        # If this is an 'or', only one needs to be satisfied. Pick the most expensive
        # satisfaction/dissatisfaction pair.
        # If not, both need to be anyways.
        if disjunction:
            sat_elems = max_optional(
                add_optional(sub_a.sat_elems, sub_b.dissat_elems),
                add_optional(sub_a.dissat_elems, sub_b.sat_elems),
            )
            sat_size = max_optional(
                add_optional(sub_a.sat_size, sub_b.dissat_size),
                add_optional(sub_a.dissat_size, sub_b.sat_size),
            )
        else:
            sat_elems = add_optional(sub_a.sat_elems, sub_b.sat_elems)
            sat_size = add_optional(sub_a.sat_size, sub_b.sat_size)
        # In any case dissatisfying the fragment requires dissatisfying both concatenated
        # subs.
        return ExecutionInfo(
            sat_elems,
            add_optional(sub_a.dissat_elems, sub_b.dissat_elems),
            sat_size,
            add_optional(sub_a.dissat_size, sub_b.dissat_size),
        )

    @staticmethod
    def from_or_uneven(sub_a, sub_b):
        """Compute the execution info from a Miniscript which always executes A and only
        executes B depending on the outcome of A's execution.
        """
        # Either we satisfy A, or satisfy B (and thereby dissatisfy A). Pick the most
        # expensive.
        return ExecutionInfo(
            max_optional(sub_a.sat_elems, add_optional(sub_a.dissat_elems, sub_b.sat_elems)),
            add_optional(sub_a.dissat_elems, sub_b.dissat_elems),
            max_optional(sub_a.sat_size, add_optional(sub_a.dissat_size, sub_b.sat_size)),
            add_optional(sub_a.dissat_size, sub_b.dissat_size),
        )

    @staticmethod
    def from_or_even(sub_a, sub_b):
        """Compute the execution info from a Miniscript which executes either A or B, but
        never both. A is selected by pushing 1, B by pushing the empty vector.
        """
        return ExecutionInfo(
            add_optional(max_optional(sub_a.sat_elems, sub_b.sat_elems), 1),
            add_optional(max_optional(sub_a.dissat_elems, sub_b.dissat_elems), 1),
            max_optional(
                add_optional(sub_a.sat_size, 2), add_optional(sub_b.sat_size, EMPTY_ELEM_SIZE)
            ),
            max_optional(
                add_optional(sub_a.dissat_size, 2),
                add_optional(sub_b.dissat_size, EMPTY_ELEM_SIZE),
            ),
        )

    @staticmethod
    def from_andor_uneven(sub_a, sub_b, sub_c):
        """Compute the execution info from a Miniscript which always executes A, and then
        executes B if A returned True else executes C. Semantic: or(and(A,B), C).
        """
        return ExecutionInfo(
            max_optional(
                add_optional(sub_a.sat_elems, sub_b.sat_elems),
                add_optional(sub_a.dissat_elems, sub_c.sat_elems),
            ),
            # The only canonical dissatisfaction is dissatisfying A and C.
            add_optional(sub_a.dissat_elems, sub_c.dissat_elems),
            max_optional(
                add_optional(sub_a.sat_size, sub_b.sat_size),
                add_optional(sub_a.dissat_size, sub_c.sat_size),
            ),
            add_optional(sub_a.dissat_size, sub_c.dissat_size),
        )

    @staticmethod
    def _worst_thresh(k, sats, dissats):
        """The worst case cost of satisfying k of the subs and dissatisfying the others."""
        arbitrage, unsatisfiable, undissatisfiable = [], [], []
        for sat, dissat in zip(sats, dissats):
            if sat is None:
                unsatisfiable.append((sat, dissat))
            elif dissat is None:
                undissatisfiable.append((sat, dissat))
            else:
                arbitrage.append((sat - dissat, (sat, dissat)))
        if len(unsatisfiable) > len(sats) - k or len(undissatisfiable) > k:
            return None
        # Simulate satisfying first the subs that must be (no dissatisfaction) then the
        # most expensive ones, and then dissatisfy all the others.
        arbitrage = sorted(arbitrage, key=lambda x: x[0], reverse=True)
        worst = undissatisfiable + [a[1] for a in arbitrage] + unsatisfiable
        return sum(s for s, _ in worst[:k]) + sum(d for _, d in worst[k:])

    @staticmethod
    def from_thresh(k, subs):
        """Compute the execution info from a Miniscript 'thresh()' fragment.

        :param k: The actual threshold of the 'thresh()' fragment.
        :param subs: The execution information of all the subs.
        """
        undissatisfiable = not all(sub.is_dissatisfiable() for sub in subs)
        return ExecutionInfo(
            ExecutionInfo._worst_thresh(
                k, [s.sat_elems for s in subs], [s.dissat_elems for s in subs]
            ),
            None if undissatisfiable else sum(s.dissat_elems for s in subs),
            ExecutionInfo._worst_thresh(
                k, [s.sat_size for s in subs], [s.dissat_size for s in subs]
            ),
            None if undissatisfiable else sum(s.dissat_size for s in subs),
        )

    @staticmethod
    def from_wrap(sub, sat=0, dissat=0, sat_size=0, dissat_size=0):
        """Compute the execution info from a Miniscript which always executes a subscript
        but adds some logic around.

        :param sat: The added number of satisfaction stack elements added on top.
        :param dissat: The added number of dissatisfaction stack elements added on top.
        :param sat_size: The size of the added satisfaction elements.
        :param dissat_size: The size of the added dissatisfaction elements.
        """
        return ExecutionInfo(
            add_optional(sub.sat_elems, sat),
            add_optional(sub.dissat_elems, dissat),
            add_optional(sub.sat_size, sat_size),
            add_optional(sub.dissat_size, dissat_size),
        )

    @staticmethod
    def from_wrap_dissat(sub, sat=0, sat_size=0, dissat=0, dissat_size=0):
        """Same as from_wrap, but the dissatisfaction does not depend on the subscript."""
        return ExecutionInfo(
            add_optional(sub.sat_elems, sat),
            dissat,
            add_optional(sub.sat_size, sat_size),
            dissat_size,
        )
