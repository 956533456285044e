"""Version string for the shield package."""

__version__ = "0.1.0"

# Bumped whenever the public-signal order or the relation itself changes.
PROTOCOL_VERSION = 1

__all__ = ["__version__", "PROTOCOL_VERSION"]
