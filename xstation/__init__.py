"""
xstation: async client for the XTB xStation 5 remote trading API.

Subpackages:
- api: client, connections, reply correlation and wire framing
- lib: constants, configuration, logging and time helpers
"""

from xstation.api import XApiClient
from xstation.lib.config import XApiConfig, load_config

__version__ = "0.1.0"

__all__ = [
    "XApiClient",
    "XApiConfig",
    "load_config",
    "__version__",
]
