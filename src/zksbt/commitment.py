"""
commitments binding an owner identity to private attributes.

commitment = poseidon(owner, attr_1, ..., attr_n), the same hasher the
comparator circuit evaluates, so a minted commitment can later be matched
inside a proof without revealing the attributes.
"""

from typing import Optional, Sequence

from zksbt.errors import ArityMismatch, InputValidationError, ValueOutOfRange
from zksbt.identity import address_to_scalar
from zksbt.poseidon import MAX_INPUTS, SNARK_SCALAR_FIELD, PoseidonHash, default_hasher

MAX_ATTRIBUTES = MAX_INPUTS - 1


class CommitmentGenerator:
    """fixed-arity commitment over (owner, attributes)"""

    def __init__(self, num_attributes: int, hasher: Optional[PoseidonHash] = None):
        if not 1 <= num_attributes <= MAX_ATTRIBUTES:
            raise ArityMismatch(f"attribute count must be between 1 and {MAX_ATTRIBUTES}")
        self.num_attributes = num_attributes
        self.poseidon = hasher or default_hasher()

    @property
    def arity(self) -> int:
        return self.num_attributes + 1

    def commit(self, owner: str, attributes: Sequence[int]) -> int:
        """
        Derive the commitment for an owner and its attributes.

        Args:
            owner: checksum or lowercase address
            attributes: exactly num_attributes non-negative integers, circuit order

        Returns:
            commitment scalar
        """
        if len(attributes) != self.num_attributes:
            raise ArityMismatch(
                f"expected {self.num_attributes} attributes, got {len(attributes)}"
            )
        values = []
        for attr in attributes:
            try:
                value = int(attr)
            except (TypeError, ValueError) as exc:
                raise ValueOutOfRange(f"attribute {attr!r} is not an integer") from exc
            if value < 0 or value >= SNARK_SCALAR_FIELD:
                raise ValueOutOfRange(f"attribute {attr} is outside the scalar field")
            values.append(value)
        return self.poseidon.hash(address_to_scalar(owner), *values)


def commit(owner: str, attributes: Sequence[int]) -> int:
    """commitment with the arity taken from the attributes themselves"""
    return CommitmentGenerator(len(attributes)).commit(owner, attributes)


def commitment_to_hex(commitment: int) -> str:
    return "0x" + commitment.to_bytes(32, byteorder="big").hex()


def commitment_to_bytes(commitment: int) -> bytes:
    return commitment.to_bytes(32, byteorder="big")


def commitment_from_hex(value: str) -> int:
    """parse a commitment, accepting unpadded hex like "0x" + n.toString(16)"""
    stripped = value.strip().lower()
    if stripped.startswith("0x"):
        stripped = stripped[2:]
    try:
        commitment = int(stripped, 16)
    except ValueError as exc:
        raise InputValidationError(f"commitment is not hex: {value!r}") from exc
    if commitment >= SNARK_SCALAR_FIELD:
        raise ValueOutOfRange("commitment is outside the scalar field")
    return commitment
