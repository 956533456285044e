"""
shield.zk: field arithmetic, Poseidon, the constraint system and Groth16
over BN254.

Only the light modules are re-exported here; import `shield.zk.backend` and
`shield.zk.serialization` directly.
"""

from . import circuit, field, groth16_bn254, poseidon

__all__ = ["circuit", "field", "groth16_bn254", "poseidon"]
