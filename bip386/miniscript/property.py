# Copyright (c) 2020 The Bitcoin Core developers
# Copyright (c) 2021 Antoine Poinsot
# Distributed under the MIT software license, see the accompanying
# file LICENSE or http://www.opensource.org/licenses/mit-license.php.

from .errors import MiniscriptPropertyError


# (type/property, must have all of, must have none of)
CONFLICTS = [
    ("K", "u", ""),
    ("V", "", "du"),
    ("z", "", "o"),
    ("n", "", "z"),
]


class Property:
    """The type and type properties of a Miniscript expression.

    Types are "B" (base), "V" (verify), "K" (key) and "W" (wrapped). Properties are
    "z" (consumes no stack element), "o" (consumes exactly one), "n" (nonzero top
    element), "d" (dissatisfiable) and "u" (leaves exactly 1 on success).
    """

    types = "BVKW"
    props = "zondu"

    def __init__(self, property_str=""):
        allowed = self.types + self.props
        invalid = set(property_str) - set(allowed)
        if invalid:
            raise MiniscriptPropertyError(
                f"Invalid property/type character(s) '{''.join(sorted(invalid))}'"
                f" (allowed: '{allowed}')"
            )
        self._chars = frozenset(property_str)
        self.check_valid()

    def __getattr__(self, name):
        if len(name) == 1 and name in self.types + self.props:
            return name in self._chars
        raise AttributeError(name)

    def __repr__(self):
        return "".join(c for c in self.types + self.props if c in self._chars)

    def __eq__(self, other):
        if not isinstance(other, Property):
            return NotImplemented
        return self._chars == other._chars

    def __hash__(self):
        return hash(self._chars)

    def has_all(self, properties):
        """Given a str of types and properties, return whether we have all of them"""
        return all(c in self._chars for c in properties)

    def has_any(self, properties):
        """Given a str of types and properties, return whether we have at least one of them"""
        return any(c in self._chars for c in properties)

    def check_valid(self):
        """Raises a MiniscriptPropertyError if the types/properties conflict"""
        if len(self.type()) != 1:
            raise MiniscriptPropertyError(
                f"A Miniscript fragment must be of exactly one type, got '{self.type()}'"
            )

        conflicts = []
        for attr, must_be, must_not_be in CONFLICTS:
            if attr not in self._chars:
                continue
            if not self.has_all(must_be):
                conflicts.append(f"{attr} must be {must_be}")
            if self.has_any(must_not_be):
                conflicts.append(f"{attr} must not be {must_not_be}")
        if conflicts:
            raise MiniscriptPropertyError(
                f"Conflicting types and properties: {', '.join(conflicts)}"
            )

    def type(self):
        return "".join(c for c in self.types if c in self._chars)

    def properties(self):
        return "".join(c for c in self.props if c in self._chars)
