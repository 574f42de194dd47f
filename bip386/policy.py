"""
Semantic policies.

A policy only describes the spending conditions of a Script, abstracting away how
they are encoded. Miniscript fragments and descriptors are "lifted" to a policy
for analysis (e.g. to list the keys that could be used to spend an output).
"""

from .utils.traversal import fold_post_order


class Policy:
    """Base class for semantic policies."""

    # Only thresholds have sub policies.
    subs = []

    @staticmethod
    def or_(a, b):
        return Thresh(1, [a, b])

    @staticmethod
    def and_(a, b):
        return Thresh(2, [a, b])

    def _fold(self, combine):
        return fold_post_order(self, lambda policy: policy.subs, combine)

    def normalized(self):
        """Flatten nested disjunctions and conjunctions, and remove trivial branches."""
        return self._fold(lambda policy, subs: policy._normalized(subs))

    def _normalized(self, subs):
        return self

    def keys(self):
        return self._fold(lambda policy, sub_keys: policy._keys(sub_keys))

    def _keys(self, sub_keys):
        return [key for keys in sub_keys for key in keys]

    def __repr__(self):
        return self._fold(lambda policy, subs: policy._repr(subs))

    def __eq__(self, other):
        if not isinstance(other, Policy):
            return NotImplemented
        return str(self) == str(other)

    def __hash__(self):
        return hash(str(self))


class Unsatisfiable(Policy):
    def _repr(self, subs):
        return "UNSATISFIABLE"


class Trivial(Policy):
    def _repr(self, subs):
        return "TRIVIAL"


class Key(Policy):
    def __init__(self, key):
        self.key = key

    def _keys(self, sub_keys):
        return [self.key]

    def _repr(self, subs):
        return f"pk({self.key})"


class After(Policy):
    def __init__(self, value):
        self.value = value

    def _repr(self, subs):
        return f"after({self.value})"


class Older(Policy):
    def __init__(self, value):
        self.value = value

    def _repr(self, subs):
        return f"older({self.value})"


class Hash(Policy):
    def __init__(self, hash_kind, digest):
        self.hash_kind = hash_kind
        self.digest = digest

    def _repr(self, subs):
        return f"{self.hash_kind.value}({self.digest.hex()})"


class Thresh(Policy):
    """At least k of the sub policies must be satisfied."""

    def __init__(self, k, subs):
        assert 0 < k <= len(subs)
        self.k = k
        self.subs = subs

    def is_or(self):
        return self.k == 1

    def is_and(self):
        return self.k == len(self.subs)

    def _normalized(self, subs):
        if self.is_or() or self.is_and():
            flat = []
            for sub in subs:
                # or(a, or(b, c)) == or(a, b, c), and the same for and().
                if (
                    isinstance(sub, Thresh)
                    and (self.is_or() and sub.is_or() or self.is_and() and sub.is_and())
                ):
                    flat.extend(sub.subs)
                else:
                    flat.append(sub)

            if self.is_or():
                if any(isinstance(s, Trivial) for s in flat):
                    return Trivial()
                flat = [s for s in flat if not isinstance(s, Unsatisfiable)]
                if not flat:
                    return Unsatisfiable()
                return flat[0] if len(flat) == 1 else Thresh(1, flat)

            if any(isinstance(s, Unsatisfiable) for s in flat):
                return Unsatisfiable()
            flat = [s for s in flat if not isinstance(s, Trivial)]
            if not flat:
                return Trivial()
            return flat[0] if len(flat) == 1 else Thresh(len(flat), flat)

        return Thresh(self.k, subs)

    def _repr(self, subs):
        subs = ",".join(subs)
        if self.is_or():
            return f"or({subs})"
        if self.is_and():
            return f"and({subs})"
        return f"thresh({self.k},{subs})"
