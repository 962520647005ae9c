"""tokensign - sign and verify files with keys held on PKCS#11 hardware tokens.

The private key never leaves the token: signing and verification run on the
device through a session opened for a single operation.
"""

__version__ = "0.1.0"
__author__ = "tokensign Contributors"

from tokensign.config import Settings, get_settings

__all__ = ["Settings", "get_settings", "__version__"]
