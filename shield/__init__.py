"""
shield package.

Private message gate: a sender proves, without revealing them, that an
amount, a recipient and a one-time secret satisfy the privacy relation
(optionally with a public compliance threshold); the gate verifies the
Groth16 proof, records the nullifier hash exactly once and hands the payload
to a transport.

Public surface:
- __version__ / PROTOCOL_VERSION
- errors: the ShieldError hierarchy
"""

from . import errors  # re-export error hierarchy
from .version import PROTOCOL_VERSION, __version__

__all__ = ["__version__", "PROTOCOL_VERSION", "errors"]
