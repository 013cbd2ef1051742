"""
comparator circuit: the constraint semantics behind every eligibility proof.

public signals: commitment, owner, operator, threshold, attributeIndex
private signals: attributes[num_attributes]

the circuit is satisfiable iff
1. poseidon(owner, attributes...) == commitment
2. attributes[attributeIndex] <operator> threshold

calculate_witness evaluates exactly these constraints in python, so an
unsatisfiable statement is rejected before a proving backend is ever invoked.
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence, Tuple, Union

from zksbt.commitment import CommitmentGenerator
from zksbt.errors import (
    ArityMismatch,
    InvalidPublicSignals,
    ValueOutOfRange,
    WitnessGenerationFailed,
)
from zksbt.identity import address_to_scalar, normalize_address, scalar_to_address
from zksbt.operators import Operator
from zksbt.poseidon import SNARK_SCALAR_FIELD

logger = logging.getLogger(__name__)

PUBLIC_SIGNALS = ("commitment", "owner", "operator", "threshold", "attributeIndex")

# circomlib LessThan(n) is sound for n <= 252
DEFAULT_COMPARATOR_BITS = 252


def _as_int(name: str, value: Any) -> int:
    try:
        return int(value)
    except (TypeError, ValueError) as exc:
        raise ValueOutOfRange(f"{name} {value!r} is not an integer") from exc


@dataclass(frozen=True)
class ComparatorInput:
    """every signal the comparator circuit needs for one proof"""
    owner: str
    operator: Union[Operator, int, str]
    threshold: int
    attributes: Tuple[int, ...]
    commitment: Optional[int] = None
    attribute_index: int = 0


@dataclass(frozen=True)
class PublicStatement:
    commitment: int
    owner: str
    operator: Operator
    threshold: int
    attribute_index: int

    def describe(self) -> str:
        return f"attribute[{self.attribute_index}] {self.operator.symbol} {self.threshold}"


@dataclass
class Witness:
    public_signals: List[int]
    attributes: List[int] = field(repr=False)


class ComparatorCircuit:
    """threshold comparison over one of num_attributes committed attributes"""

    def __init__(self, num_attributes: int = 1, comparator_bits: int = DEFAULT_COMPARATOR_BITS):
        if not 1 <= comparator_bits <= DEFAULT_COMPARATOR_BITS:
            raise ValueError(f"comparator_bits must be between 1 and {DEFAULT_COMPARATOR_BITS}")
        self.hasher = CommitmentGenerator(num_attributes)
        self.num_attributes = num_attributes
        self.comparator_bits = comparator_bits

    @property
    def n_public(self) -> int:
        return len(PUBLIC_SIGNALS)

    def _check_range(self, name: str, value: int) -> int:
        value = _as_int(name, value)
        if value < 0 or value >= 1 << self.comparator_bits:
            raise ValueOutOfRange(f"{name} {value} does not fit in {self.comparator_bits} bits")
        return value

    def validate(self, signals: ComparatorInput) -> Tuple[Operator, List[int], int, int]:
        """input checks that must pass before any constraint is evaluated"""
        operator = Operator.parse(signals.operator)
        try:
            count = len(signals.attributes)
        except TypeError as exc:
            raise ArityMismatch("attributes must be a sequence") from exc
        if count != self.num_attributes:
            raise ArityMismatch(f"circuit takes {self.num_attributes} attributes, got {count}")
        index = _as_int("attribute index", signals.attribute_index)
        if not 0 <= index < self.num_attributes:
            raise ValueOutOfRange(f"attribute index {index} out of range")
        attributes = [self._check_range("attribute", a) for a in signals.attributes]
        threshold = self._check_range("threshold", signals.threshold)
        normalize_address(signals.owner)
        if signals.commitment is not None:
            commitment = _as_int("commitment", signals.commitment)
            if not 0 <= commitment < SNARK_SCALAR_FIELD:
                raise ValueOutOfRange("commitment is outside the scalar field")
        return operator, attributes, threshold, index

    def calculate_witness(self, signals: ComparatorInput) -> Witness:
        """
        Evaluate the circuit constraints for the given signals.

        Args:
            signals: full comparator input

        Returns:
            Witness with public signals in declaration order

        Raises:
            WitnessGenerationFailed: a constraint is not satisfiable
        """
        operator, attributes, threshold, index = self.validate(signals)

        commitment = self.hasher.commit(signals.owner, attributes)
        if signals.commitment is not None and commitment != int(signals.commitment):
            raise WitnessGenerationFailed("attributes do not hash to the supplied commitment")

        value = attributes[index]
        if not operator.holds(value, threshold):
            raise WitnessGenerationFailed(
                f"relation attribute[{index}] {operator.symbol} {threshold} does not hold"
            )

        logger.debug("witness satisfied for %s %s %d", signals.owner, operator.symbol, threshold)
        return Witness(
            public_signals=[
                commitment,
                address_to_scalar(signals.owner),
                int(operator),
                threshold,
                index,
            ],
            attributes=attributes,
        )

    def circuit_inputs(self, signals: ComparatorInput) -> Dict[str, Any]:
        """circom input.json for the compiled circuit (decimal strings)"""
        operator, attributes, threshold, index = self.validate(signals)
        if signals.commitment is None:
            commitment = self.hasher.commit(signals.owner, attributes)
        else:
            commitment = int(signals.commitment)
        return {
            "commitment": str(commitment),
            "owner": str(address_to_scalar(signals.owner)),
            "operator": str(int(operator)),
            "threshold": str(threshold),
            "attributeIndex": str(index),
            "attributes": [str(a) for a in attributes],
        }

    def read_public_signals(self, public_signals: Sequence[int]) -> PublicStatement:
        """decode public signals into the statement they prove"""
        if len(public_signals) != len(PUBLIC_SIGNALS):
            raise InvalidPublicSignals(
                f"expected {len(PUBLIC_SIGNALS)} public signals, got {len(public_signals)}"
            )
        values = [int(s) for s in public_signals]
        for value in values:
            if not 0 <= value < SNARK_SCALAR_FIELD:
                raise InvalidPublicSignals("public signal is outside the scalar field")
        commitment, owner, operator, threshold, index = values
        try:
            return PublicStatement(
                commitment=commitment,
                owner=scalar_to_address(owner),
                operator=Operator.parse(operator),
                threshold=threshold,
                attribute_index=index,
            )
        except (ValueError, LookupError) as exc:
            raise InvalidPublicSignals(f"cannot decode public signals: {exc}") from exc
