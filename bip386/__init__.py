"""
Taproot Output Script Descriptors (BIP386), with Tapscript Miniscript leaves.
"""

__version__ = "0.1.0"
