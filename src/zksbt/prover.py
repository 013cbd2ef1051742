"""
proof builder: comparator input -> witness -> groth16 proof -> call layout.

two proving backends:
- SnarkjsBackend drives a compiled circom circuit through node + snarkjs
- DevelopmentBackend proves in-process against a DevelopmentSetup

the serialized proof is (a[2], b[2][2], c[2], public_signals), the order an
exported solidity verifier takes. b holds G2 coordinates imaginary part first.
"""

import json
import logging
import subprocess
import tempfile
import time
from abc import ABC, abstractmethod
from concurrent.futures import Executor, Future, ThreadPoolExecutor
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence, Tuple, Union

import pydantic
from tqdm import tqdm

from zksbt.circuit import ComparatorCircuit, ComparatorInput, Witness
from zksbt.errors import (
    InputValidationError,
    ProvingFailed,
    WitnessGenerationFailed,
    ZKSBTError,
)
from zksbt.groth16 import (
    DevelopmentSetup,
    Groth16Proof,
    g1_affine,
    g1_from_json,
    g2_affine,
    g2_from_json,
)

logger = logging.getLogger(__name__)

# a0, a1, b00, b01, b10, b11, c0, c1
PROOF_ELEMENTS = 8


def _to_hex_signal(value: int) -> str:
    return "0x" + format(int(value), "064x")


def _parse_scalar(value: Any) -> int:
    if isinstance(value, int):
        return value
    text = str(value).strip()
    return int(text, 16) if text[:2].lower() == "0x" else int(text)


class Proof(pydantic.BaseModel):
    """proof and public signals in verifier call layout"""

    model_config = pydantic.ConfigDict(frozen=True)

    a: Tuple[int, int]
    b: Tuple[Tuple[int, int], Tuple[int, int]]
    c: Tuple[int, int]
    public_signals: Tuple[int, ...]

    def flatten(self) -> List[str]:
        """a0, a1, b00, b01, b10, b11, c0, c1, then public signals, as 0x hex"""
        values = [*self.a, *self.b[0], *self.b[1], *self.c, *self.public_signals]
        return [_to_hex_signal(v) for v in values]

    @classmethod
    def from_flat(cls, values: Sequence[Union[str, int]]) -> "Proof":
        if len(values) < PROOF_ELEMENTS:
            raise InputValidationError(
                f"call data needs at least {PROOF_ELEMENTS} elements, got {len(values)}"
            )
        try:
            v = [_parse_scalar(x) for x in values]
        except ValueError as exc:
            raise InputValidationError(f"call data element is not a number: {exc}") from exc
        return cls(
            a=(v[0], v[1]),
            b=((v[2], v[3]), (v[4], v[5])),
            c=(v[6], v[7]),
            public_signals=tuple(v[PROOF_ELEMENTS:]),
        )

    @classmethod
    def from_calldata(cls, text: str) -> "Proof":
        """parse the `snarkjs zkey export soliditycalldata` string"""
        try:
            a, b, c, signals = json.loads("[" + text + "]")
        except (json.JSONDecodeError, ValueError) as exc:
            raise InputValidationError("cannot parse solidity call data") from exc
        return cls.from_flat([*a, *b[0], *b[1], *c, *signals])

    @classmethod
    def from_snarkjs(cls, proof_json: Dict[str, Any], public_json: Sequence[Any]) -> "Proof":
        """convert snarkjs proof.json + public.json, swapping G2 coordinate order"""
        try:
            pi_a, pi_b, pi_c = proof_json["pi_a"], proof_json["pi_b"], proof_json["pi_c"]
            return cls(
                a=(int(pi_a[0]), int(pi_a[1])),
                b=(
                    (int(pi_b[0][1]), int(pi_b[0][0])),
                    (int(pi_b[1][1]), int(pi_b[1][0])),
                ),
                c=(int(pi_c[0]), int(pi_c[1])),
                public_signals=tuple(int(s) for s in public_json),
            )
        except (KeyError, IndexError, TypeError, ValueError) as exc:
            raise InputValidationError(f"malformed snarkjs proof: {exc}") from exc

    def to_groth16(self) -> Groth16Proof:
        def g1(xy):
            return g1_from_json([xy[0], xy[1], 0 if xy == (0, 0) else 1])

        (b00, b01), (b10, b11) = self.b
        z = [0, 0] if self.b == ((0, 0), (0, 0)) else [1, 0]
        return Groth16Proof(
            a=g1(self.a),
            b=g2_from_json([[b01, b00], [b11, b10], z]),
            c=g1(self.c),
        )

    @classmethod
    def from_groth16(cls, proof: Groth16Proof, public_signals: Sequence[int]) -> "Proof":
        (x0, x1), (y0, y1) = g2_affine(proof.b)
        return cls(
            a=tuple(g1_affine(proof.a)),
            b=((x1, x0), (y1, y0)),
            c=tuple(g1_affine(proof.c)),
            public_signals=tuple(int(s) for s in public_signals),
        )


class ProvingBackend(ABC):
    """runs the succinct proving algorithm for one satisfied witness"""

    @abstractmethod
    def prove(self, circuit: ComparatorCircuit, signals: ComparatorInput, witness: Witness) -> Proof:
        ...


class DevelopmentBackend(ProvingBackend):
    """in-process prover backed by a DevelopmentSetup trapdoor"""

    def __init__(self, setup: DevelopmentSetup):
        self.setup = setup

    @property
    def verification_key(self):
        return self.setup.verification_key

    def prove(self, circuit: ComparatorCircuit, signals: ComparatorInput, witness: Witness) -> Proof:
        groth16_proof = self.setup.prove(witness.public_signals)
        return Proof.from_groth16(groth16_proof, witness.public_signals)


class SnarkjsBackend(ProvingBackend):
    """
    Prove with a compiled circom circuit.

    Needs node on PATH and the snarkjs cli; artifacts are the wasm witness
    calculator, its generate_witness.js and the final zkey.
    """

    def __init__(
        self,
        wasm_path: Path,
        zkey_path: Path,
        witness_generator: Optional[Path] = None,
        witness_timeout: int = 60,
        prove_timeout: int = 120,
        node: str = "node",
        snarkjs: str = "snarkjs",
    ):
        self.wasm_path = Path(wasm_path)
        self.zkey_path = Path(zkey_path)
        self.witness_generator = (
            Path(witness_generator) if witness_generator
            else self.wasm_path.parent / "generate_witness.js"
        )
        self.witness_timeout = witness_timeout
        self.prove_timeout = prove_timeout
        self.node = node
        self.snarkjs = snarkjs

    @classmethod
    def from_settings(cls, settings) -> "SnarkjsBackend":
        if settings.circuit_dir is None:
            raise InputValidationError("circuit_dir is not configured")
        return cls(
            wasm_path=settings.wasm_path,
            zkey_path=settings.zkey_path,
            witness_generator=settings.witness_generator,
            witness_timeout=settings.witness_timeout,
            prove_timeout=settings.prove_timeout,
            node=settings.node,
        )

    def _run(self, command: List[str], timeout: int, error_cls):
        try:
            result = subprocess.run(command, capture_output=True, text=True, timeout=timeout)
        except subprocess.TimeoutExpired as exc:
            raise error_cls(f"{command[0]} timed out after {timeout}s") from exc
        except OSError as exc:
            raise ProvingFailed(f"cannot run {command[0]}: {exc}") from exc
        if result.returncode != 0:
            raise error_cls(result.stderr.strip() or f"{command[0]} exited with {result.returncode}")

    def prove(self, circuit: ComparatorCircuit, signals: ComparatorInput, witness: Witness) -> Proof:
        circuit_inputs = circuit.circuit_inputs(signals)

        with tempfile.TemporaryDirectory(prefix="zksbt-") as scratch:
            scratch = Path(scratch)
            input_path = scratch / "input.json"
            witness_path = scratch / "witness.wtns"
            proof_path = scratch / "proof.json"
            public_path = scratch / "public.json"

            with input_path.open("w") as f:
                json.dump(circuit_inputs, f)

            self._run(
                [self.node, str(self.witness_generator), str(self.wasm_path),
                 str(input_path), str(witness_path)],
                self.witness_timeout,
                WitnessGenerationFailed,
            )
            self._run(
                [self.snarkjs, "groth16", "prove", str(self.zkey_path),
                 str(witness_path), str(proof_path), str(public_path)],
                self.prove_timeout,
                ProvingFailed,
            )

            with proof_path.open("r") as pf:
                proof_json = json.load(pf)
            with public_path.open("r") as sf:
                public_json = json.load(sf)

        return Proof.from_snarkjs(proof_json, public_json)


@dataclass
class BatchResult:
    index: int
    proof: Optional[Proof] = None
    error: Optional[ZKSBTError] = None

    @property
    def ok(self) -> bool:
        return self.error is None


class ProofBuilder:
    """Builds verifier-ready proofs for one comparator circuit."""

    def __init__(self, circuit: ComparatorCircuit, backend: ProvingBackend):
        self.circuit = circuit
        self.backend = backend

    def build_proof(self, signals: ComparatorInput) -> Proof:
        """
        Build a proof for one comparator input.

        Args:
            signals: owner, operator, threshold, attributes and commitment

        Returns:
            Proof in verifier call layout

        Raises:
            InvalidOperatorCode, ArityMismatch, ValueOutOfRange: bad input
            WitnessGenerationFailed: the claim is false
            ProvingFailed: the backend failed or disagreed on public signals
        """
        start = time.perf_counter()
        witness = self.circuit.calculate_witness(signals)
        proof = self.backend.prove(self.circuit, signals, witness)

        if [int(s) for s in proof.public_signals] != witness.public_signals:
            raise ProvingFailed("backend public signals do not match the witness")

        logger.info(
            "built proof for %s (operator %s, threshold %d) in %.1f ms",
            signals.owner, witness.public_signals[2], witness.public_signals[3],
            (time.perf_counter() - start) * 1000.0,
        )
        return proof

    def submit(self, executor: Executor, signals: ComparatorInput) -> Future:
        """schedule one proof; the returned future can be cancelled on its own"""
        return executor.submit(self.build_proof, signals)

    def build_proofs(
        self,
        inputs: Sequence[ComparatorInput],
        max_workers: int = 4,
        progress: bool = False,
    ) -> List[BatchResult]:
        """build many proofs in parallel; one failure does not stop the rest"""
        results = [BatchResult(index=i) for i in range(len(inputs))]
        with ThreadPoolExecutor(max_workers=max_workers) as executor:
            futures = {self.submit(executor, signals): i for i, signals in enumerate(inputs)}
            iterator = tqdm(futures, total=len(futures), desc="proving", disable=not progress)
            for future in iterator:
                index = futures[future]
                try:
                    results[index].proof = future.result()
                except ZKSBTError as exc:
                    logger.warning("proof %d failed: %s", index, exc)
                    results[index].error = exc
        return results
