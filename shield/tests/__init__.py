"""
Common helpers for the shield test-suite.

    from shield.tests import REF_WITNESS, address
"""

from __future__ import annotations

from typing import Dict

REF_WITNESS: Dict[str, int] = {
    "secret": 123456789,
    "nullifier": 987654321,
    "recipient": 555555555,
    "amount": 1000,
}

COMPLIANCE_WITNESS: Dict[str, int] = dict(REF_WITNESS, amount=7500)
THRESHOLD = 10000


def address(byte: int) -> str:
    """20-byte hex address made of one repeated byte."""
    return "0x" + bytes([byte]).hex() * 20


def with_nullifier(base: Dict[str, int], nullifier: int) -> Dict[str, int]:
    return dict(base, nullifier=nullifier)


__all__ = ["REF_WITNESS", "COMPLIANCE_WITNESS", "THRESHOLD", "address", "with_nullifier"]
