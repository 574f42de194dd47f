"""
All the exceptions raised when dealing with Miniscript.
"""


class MiniscriptMalformed(ValueError):
    """The string representation of a Miniscript could not be parsed."""

    def __init__(self, message):
        self.message = message


class MiniscriptNodeCreationError(ValueError):
    """A fragment was given arguments it does not accept (wrong type of sub, bad key, ...)."""

    def __init__(self, message):
        self.message = message


class MiniscriptPropertyError(ValueError):
    """A Miniscript does not have a property it was required to have."""

    def __init__(self, message):
        self.message = message
