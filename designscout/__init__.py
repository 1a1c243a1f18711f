"""
design-scout - browser automation for finding design references

Version: 0.1.0
"""

__version__ = "0.1.0"

from designscout.core.config import ScoutConfig, load_config

__all__ = [
    "ScoutConfig",
    "load_config",
    "__version__",
]
