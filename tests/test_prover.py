"""Tests for the proof builder and proof serialization."""

import json
import subprocess
from pathlib import Path

import pytest

from zksbt.circuit import ComparatorInput
from zksbt.commitment import commit
from zksbt.errors import (
    InputValidationError,
    InvalidOperatorCode,
    ProvingFailed,
    ValueOutOfRange,
    WitnessGenerationFailed,
)
from zksbt.groth16 import verify
from zksbt.operators import Operator
from zksbt.prover import (
    PROOF_ELEMENTS,
    DevelopmentBackend,
    Proof,
    ProofBuilder,
    ProvingBackend,
    SnarkjsBackend,
)

SNARKJS_PROOF = {
    "pi_a": ["1", "2", "1"],
    "pi_b": [["3", "4"], ["5", "6"], ["1", "0"]],
    "pi_c": ["7", "8", "1"],
    "protocol": "groth16",
    "curve": "bn128",
}


def _signals(owner, operator=Operator.GTE, threshold=40, value=45):
    return ComparatorInput(
        owner=owner.address,
        operator=operator,
        threshold=threshold,
        attributes=(value,),
        commitment=commit(owner.address, [value]),
    )


class TestProofLayout:
    def test_from_snarkjs_swaps_g2_coordinates(self) -> None:
        proof = Proof.from_snarkjs(SNARKJS_PROOF, ["9", "10"])
        assert proof.a == (1, 2)
        assert proof.b == ((4, 3), (6, 5))
        assert proof.c == (7, 8)
        assert proof.public_signals == (9, 10)

    def test_flatten_order(self) -> None:
        flat = Proof.from_snarkjs(SNARKJS_PROOF, ["9", "10"]).flatten()
        assert [int(x, 16) for x in flat] == [1, 2, 4, 3, 6, 5, 7, 8, 9, 10]
        assert all(x.startswith("0x") and len(x) == 66 for x in flat)

    def test_from_flat_splits_at_eight(self) -> None:
        proof = Proof.from_flat([hex(i) for i in range(1, 11)])
        assert proof.a == (1, 2)
        assert proof.b == ((3, 4), (5, 6))
        assert proof.c == (7, 8)
        assert proof.public_signals == (9, 10)

    def test_from_flat_too_short(self) -> None:
        with pytest.raises(InputValidationError):
            Proof.from_flat(["0x1"] * (PROOF_ELEMENTS - 1))

    def test_from_calldata(self) -> None:
        text = '["0x01", "0x02"],[["0x03", "0x04"],["0x05", "0x06"]],["0x07", "0x08"],["0x09"]'
        proof = Proof.from_calldata(text)
        assert proof.b == ((3, 4), (5, 6))
        assert proof.public_signals == (9,)

    def test_malformed_snarkjs(self) -> None:
        with pytest.raises(InputValidationError):
            Proof.from_snarkjs({"pi_a": ["1"]}, [])


class TestProofBuilder:
    def test_built_proof_verifies(self, owner, builder, dev_setup) -> None:
        proof = builder.build_proof(_signals(owner))
        assert len(proof.flatten()) == PROOF_ELEMENTS + 5
        assert Proof.from_flat(proof.flatten()) == proof
        assert verify(dev_setup.verification_key, proof.to_groth16(), list(proof.public_signals))

    def test_false_claim(self, owner, builder) -> None:
        with pytest.raises(WitnessGenerationFailed):
            builder.build_proof(_signals(owner, operator=Operator.GT, threshold=45))

    def test_invalid_operator(self, owner, builder) -> None:
        with pytest.raises(InvalidOperatorCode):
            builder.build_proof(_signals(owner, operator=6))

    def test_backend_signal_mismatch(self, owner, circuit) -> None:
        class LyingBackend(ProvingBackend):
            def prove(self, circuit, signals, witness):
                return Proof(a=(0, 0), b=((0, 0), (0, 0)), c=(0, 0), public_signals=(1, 2, 3, 4, 5))

        with pytest.raises(ProvingFailed):
            ProofBuilder(circuit, LyingBackend()).build_proof(_signals(owner))

    def test_batch_keeps_order_and_isolates_failures(self, owner, builder) -> None:
        inputs = [
            _signals(owner, threshold=40),
            _signals(owner, operator=Operator.LT, threshold=40),
            _signals(owner, operator=Operator.EQ, threshold=45),
        ]
        results = builder.build_proofs(inputs, max_workers=3)
        assert [r.index for r in results] == [0, 1, 2]
        assert [r.ok for r in results] == [True, False, True]
        assert isinstance(results[1].error, WitnessGenerationFailed)
        assert results[0].proof.public_signals[3] == 40
        assert results[2].proof.public_signals[3] == 45

    def test_batch_isolates_malformed_input(self, owner, builder) -> None:
        malformed = ComparatorInput(
            owner=owner.address,
            operator=Operator.GTE,
            threshold="forty",
            attributes=(45,),
        )
        results = builder.build_proofs([_signals(owner), malformed], max_workers=2)
        assert [r.ok for r in results] == [True, False]
        assert isinstance(results[1].error, ValueOutOfRange)
        assert "forty" in str(results[1].error)


class TestSnarkjsBackend:
    @pytest.fixture
    def backend(self, tmp_path):
        return SnarkjsBackend(
            wasm_path=tmp_path / "comparator_js" / "comparator.wasm",
            zkey_path=tmp_path / "comparator_final.zkey",
        )

    def test_generator_defaults_next_to_wasm(self, backend, tmp_path) -> None:
        assert backend.witness_generator == tmp_path / "comparator_js" / "generate_witness.js"

    def test_runs_witness_then_prove(self, owner, circuit, backend, monkeypatch) -> None:
        signals = _signals(owner)
        expected = circuit.calculate_witness(signals).public_signals
        calls = []

        def fake_run(command, capture_output, text, timeout):
            calls.append(command)
            if command[0] == "node":
                with open(command[3]) as f:
                    assert json.load(f)["threshold"] == "40"
            else:
                Path(command[5]).write_text(json.dumps(SNARKJS_PROOF))
                Path(command[6]).write_text(json.dumps([str(s) for s in expected]))
            return subprocess.CompletedProcess(command, 0, stdout="", stderr="")

        monkeypatch.setattr("zksbt.prover.subprocess.run", fake_run)
        proof = ProofBuilder(circuit, backend).build_proof(signals)

        assert [c[0] for c in calls] == ["node", "snarkjs"]
        assert calls[1][1:3] == ["groth16", "prove"]
        assert list(proof.public_signals) == expected
        # scratch files are removed
        assert not Path(calls[0][3]).exists()

    def test_witness_failure(self, owner, circuit, backend, monkeypatch) -> None:
        signals = _signals(owner)

        def fake_run(command, capture_output, text, timeout):
            return subprocess.CompletedProcess(command, 1, stdout="", stderr="Assert Failed")

        monkeypatch.setattr("zksbt.prover.subprocess.run", fake_run)
        with pytest.raises(WitnessGenerationFailed, match="Assert Failed"):
            ProofBuilder(circuit, backend).build_proof(signals)

    def test_prove_failure(self, owner, circuit, backend, monkeypatch) -> None:
        signals = _signals(owner)

        def fake_run(command, capture_output, text, timeout):
            code = 0 if command[0] == "node" else 1
            return subprocess.CompletedProcess(command, code, stdout="", stderr="zkey mismatch")

        monkeypatch.setattr("zksbt.prover.subprocess.run", fake_run)
        with pytest.raises(ProvingFailed, match="zkey mismatch"):
            ProofBuilder(circuit, backend).build_proof(signals)

    def test_missing_toolchain(self, owner, circuit, backend, monkeypatch) -> None:
        signals = _signals(owner)

        def fake_run(command, capture_output, text, timeout):
            raise FileNotFoundError(command[0])

        monkeypatch.setattr("zksbt.prover.subprocess.run", fake_run)
        with pytest.raises(ProvingFailed):
            ProofBuilder(circuit, backend).build_proof(signals)

    def test_timeout(self, owner, circuit, backend, monkeypatch) -> None:
        signals = _signals(owner)

        def fake_run(command, capture_output, text, timeout):
            raise subprocess.TimeoutExpired(command, timeout)

        monkeypatch.setattr("zksbt.prover.subprocess.run", fake_run)
        with pytest.raises(WitnessGenerationFailed, match="timed out"):
            ProofBuilder(circuit, backend).build_proof(signals)


class TestDevelopmentBackend:
    def test_exposes_verification_key(self, dev_setup) -> None:
        assert DevelopmentBackend(dev_setup).verification_key is dev_setup.verification_key
