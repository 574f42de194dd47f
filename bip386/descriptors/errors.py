class DescriptorError(ValueError):
    """Base class for errors with a Taproot Output Script Descriptor"""

    def __init__(self, message):
        self.message = message


class DescriptorParsingError(DescriptorError):
    """Error while parsing a Bitcoin Output Descriptor from its string representation"""


class NonTopLevelScriptError(DescriptorParsingError):
    """A Tapscript leaf is not a valid top-level (type B) Miniscript"""


class MaxDepthExceededError(DescriptorError):
    """The script tree is deeper than what a control block can commit to"""


class ImpossibleSatisfactionError(DescriptorError):
    """There is no way to satisfy this descriptor, not even in theory"""


class CouldNotSatisfyError(DescriptorError):
    """The available material was not enough to satisfy this descriptor"""
