"""
Groth16 over BN254 (alt_bn128), in the json layout snarkjs reads and writes.

verification is the usual pairing product

    e(-A, B) * e(alpha, beta) * e(vk_x, gamma) * e(C, delta) == 1
    vk_x = IC[0] + sum(x_i * IC[i + 1])

computed with py_ecc. DevelopmentSetup plays the trusted setup for tests and
local runs: it keeps the toxic waste and can answer any statement, so it must
only ever back a circuit whose witness is checked natively first.
"""

import json
import logging
import random
import threading
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence, Union

from py_ecc.optimized_bn128 import (
    FQ,
    FQ2,
    FQ12,
    G1,
    G2,
    add,
    b,
    b2,
    curve_order,
    field_modulus,
    final_exponentiate,
    is_inf,
    is_on_curve,
    multiply,
    neg,
    normalize,
    pairing,
)

from zksbt.errors import InputValidationError, InvalidPublicSignals

logger = logging.getLogger(__name__)

G1Point = tuple
G2Point = tuple


def _coordinate(value: Any) -> int:
    try:
        number = int(value)
    except (TypeError, ValueError) as exc:
        raise InputValidationError(f"coordinate is not an integer: {value!r}") from exc
    if not 0 <= number < field_modulus:
        raise InputValidationError("coordinate is outside the base field")
    return number


def _as_int(element: Any) -> int:
    # FQ exposes .n; FQ2 coefficients are FQ or plain ints depending on py_ecc version
    return int(getattr(element, "n", element))


def g1_from_json(point: Sequence[Any]) -> G1Point:
    """[x, y, z] decimal strings -> projective G1 point"""
    if len(point) != 3:
        raise InputValidationError("G1 point needs three coordinates")
    x, y, z = (_coordinate(c) for c in point)
    if z == 0:
        return (FQ.one(), FQ.one(), FQ.zero())
    return (FQ(x), FQ(y), FQ(z))


def g2_from_json(point: Sequence[Sequence[Any]]) -> G2Point:
    """[[x0, x1], [y0, y1], [z0, z1]] -> projective G2 point"""
    if len(point) != 3 or any(len(c) != 2 for c in point):
        raise InputValidationError("G2 point needs three pairs of coordinates")
    x, y, z = ([_coordinate(c[0]), _coordinate(c[1])] for c in point)
    if z == [0, 0]:
        return (FQ2.one(), FQ2.one(), FQ2.zero())
    return (FQ2(x), FQ2(y), FQ2(z))


def g1_to_json(point: G1Point) -> List[str]:
    if is_inf(point):
        return ["0", "1", "0"]
    x, y = normalize(point)
    return [str(_as_int(x)), str(_as_int(y)), "1"]


def g2_to_json(point: G2Point) -> List[List[str]]:
    if is_inf(point):
        return [["0", "0"], ["1", "0"], ["0", "0"]]
    x, y = normalize(point)
    return [
        [str(_as_int(c)) for c in x.coeffs],
        [str(_as_int(c)) for c in y.coeffs],
        ["1", "0"],
    ]


def g1_affine(point: G1Point) -> List[int]:
    """[x, y] integers, infinity as [0, 0]"""
    if is_inf(point):
        return [0, 0]
    x, y = normalize(point)
    return [_as_int(x), _as_int(y)]


def g2_affine(point: G2Point) -> List[List[int]]:
    """[[x0, x1], [y0, y1]] integers, infinity as zeros"""
    if is_inf(point):
        return [[0, 0], [0, 0]]
    x, y = normalize(point)
    return [[_as_int(c) for c in x.coeffs], [_as_int(c) for c in y.coeffs]]


@dataclass(frozen=True)
class VerificationKey:
    alpha1: G1Point
    beta2: G2Point
    gamma2: G2Point
    delta2: G2Point
    ic: tuple

    @property
    def n_public(self) -> int:
        return len(self.ic) - 1

    @classmethod
    def from_json(cls, data: Dict[str, Any]) -> "VerificationKey":
        """parse a snarkjs verification_key.json document"""
        if data.get("protocol", "groth16") != "groth16":
            raise InputValidationError(f"unsupported protocol {data.get('protocol')!r}")
        try:
            vk = cls(
                alpha1=g1_from_json(data["vk_alpha_1"]),
                beta2=g2_from_json(data["vk_beta_2"]),
                gamma2=g2_from_json(data["vk_gamma_2"]),
                delta2=g2_from_json(data["vk_delta_2"]),
                ic=tuple(g1_from_json(p) for p in data["IC"]),
            )
        except (KeyError, TypeError) as exc:
            raise InputValidationError(f"malformed verification key: {exc}") from exc
        if "nPublic" in data and int(data["nPublic"]) != vk.n_public:
            raise InputValidationError("nPublic does not match the number of IC points")
        return vk

    def to_json(self) -> Dict[str, Any]:
        return {
            "protocol": "groth16",
            "curve": "bn128",
            "nPublic": self.n_public,
            "vk_alpha_1": g1_to_json(self.alpha1),
            "vk_beta_2": g2_to_json(self.beta2),
            "vk_gamma_2": g2_to_json(self.gamma2),
            "vk_delta_2": g2_to_json(self.delta2),
            "IC": [g1_to_json(p) for p in self.ic],
        }

    @classmethod
    def load(cls, path: Union[str, Path]) -> "VerificationKey":
        with open(path, "r") as f:
            return cls.from_json(json.load(f))

    def save(self, path: Union[str, Path]) -> None:
        with open(path, "w") as f:
            json.dump(self.to_json(), f, indent=2)


@dataclass(frozen=True)
class Groth16Proof:
    a: G1Point
    b: G2Point
    c: G1Point

    @classmethod
    def from_json(cls, data: Dict[str, Any]) -> "Groth16Proof":
        """parse a snarkjs proof.json document"""
        try:
            return cls(
                a=g1_from_json(data["pi_a"]),
                b=g2_from_json(data["pi_b"]),
                c=g1_from_json(data["pi_c"]),
            )
        except (KeyError, TypeError) as exc:
            raise InputValidationError(f"malformed proof: {exc}") from exc

    def to_json(self) -> Dict[str, Any]:
        return {
            "pi_a": g1_to_json(self.a),
            "pi_b": g2_to_json(self.b),
            "pi_c": g1_to_json(self.c),
            "protocol": "groth16",
            "curve": "bn128",
        }


def _in_g2_subgroup(point: G2Point) -> bool:
    return is_inf(multiply(point, curve_order))


def verify(vk: VerificationKey, proof: Groth16Proof, public_signals: Sequence[int]) -> bool:
    """
    Run the Groth16 pairing check.

    Args:
        vk: verification key of the circuit
        proof: proof points
        public_signals: public inputs, circuit order

    Returns:
        True iff the proof is valid for these public signals

    Raises:
        InvalidPublicSignals: wrong count or a signal outside the scalar field
    """
    if len(public_signals) != vk.n_public:
        raise InvalidPublicSignals(
            f"verification key expects {vk.n_public} public signals, got {len(public_signals)}"
        )
    signals = [int(s) for s in public_signals]
    if any(not 0 <= s < curve_order for s in signals):
        raise InvalidPublicSignals("public signal is outside the scalar field")

    if not (is_on_curve(proof.a, b) and is_on_curve(proof.c, b) and is_on_curve(proof.b, b2)):
        logger.debug("proof point is not on the curve")
        return False
    if not _in_g2_subgroup(proof.b):
        logger.debug("proof point B is not in the G2 subgroup")
        return False

    vk_x = vk.ic[0]
    for signal, point in zip(signals, vk.ic[1:]):
        vk_x = add(vk_x, multiply(point, signal))

    product = FQ12.one()
    for g2_point, g1_point in (
        (proof.b, neg(proof.a)),
        (vk.beta2, vk.alpha1),
        (vk.gamma2, vk_x),
        (vk.delta2, proof.c),
    ):
        product = product * pairing(g2_point, g1_point, final_exponentiate=False)
    return final_exponentiate(product) == FQ12.one()


class DevelopmentSetup:
    """
    Local trusted setup holding its own trapdoor.

    prove() answers any public statement, so callers must check the witness
    before asking for a proof. never use it for anything that leaves the machine.
    """

    def __init__(self, n_public: int, seed: Optional[int] = None):
        if n_public < 1:
            raise ValueError("n_public must be positive")
        self._rng = random.Random(seed) if seed is not None else random.SystemRandom()
        self._lock = threading.Lock()
        self._alpha, self._beta, self._gamma, self._delta = (
            self._scalar() for _ in range(4)
        )
        self._ic = [self._scalar() for _ in range(n_public + 1)]
        self.verification_key = VerificationKey(
            alpha1=multiply(G1, self._alpha),
            beta2=multiply(G2, self._beta),
            gamma2=multiply(G2, self._gamma),
            delta2=multiply(G2, self._delta),
            ic=tuple(multiply(G1, u) for u in self._ic),
        )

    def _scalar(self) -> int:
        return self._rng.randrange(1, curve_order)

    def prove(self, public_signals: Sequence[int]) -> Groth16Proof:
        """proof for the given public signals, accepted by verify()"""
        if len(public_signals) != len(self._ic) - 1:
            raise InvalidPublicSignals(
                f"setup expects {len(self._ic) - 1} public signals, got {len(public_signals)}"
            )
        v = self._ic[0]
        for signal, u in zip(public_signals, self._ic[1:]):
            v = (v + int(signal) * u) % curve_order

        with self._lock:
            r = self._scalar()
            s = self._scalar()
        c = (r * s - self._alpha * self._beta - v * self._gamma) * pow(self._delta, -1, curve_order)
        return Groth16Proof(
            a=multiply(G1, r),
            b=multiply(G2, s),
            c=multiply(G1, c % curve_order),
        )
