"""Benchmark harness for the issue -> prove -> verify pipeline.

Seeds an in-memory registry with synthetic credit reports, then times each
phase per holder (commitment, encryption, mint, witness + proof, verification)
and writes the rows to artifacts/metrics/proof_metrics.csv.
"""

from __future__ import annotations

import argparse
import sys
import time
from pathlib import Path
from typing import Dict, List

import numpy as np
import pandas as pd
from faker import Faker

sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from zksbt.circuit import ComparatorCircuit
from zksbt.commitment import CommitmentGenerator
from zksbt.demo import demo_keypair, random_report
from zksbt.ecies import encrypt_value
from zksbt.errors import WitnessGenerationFailed
from zksbt.groth16 import DevelopmentSetup
from zksbt.issuer import CREDIT_REPORT_SCHEMA, AttestationIssuer, Holder
from zksbt.operators import Operator
from zksbt.prover import DevelopmentBackend, ProofBuilder
from zksbt.registry import AttestationRegistry
from zksbt.verifier import Verifier


METRICS_DIR = Path("artifacts/metrics")
PROOF_CSV = METRICS_DIR / "proof_metrics.csv"


def timed(rows: List[Dict[str, object]], holder: int, phase: str, fn, notes: str = ""):
    """Run fn, append a timing row and return its result."""

    start = time.perf_counter()
    result = fn()
    rows.append(
        {
            "holder": holder,
            "phase": phase,
            "duration_ms": round((time.perf_counter() - start) * 1000.0, 3),
            "notes": notes,
        }
    )
    return result


def run(holders: int, threshold: int, operator: Operator, seed: int) -> pd.DataFrame:
    rows: List[Dict[str, object]] = []

    admin = demo_keypair(seed, "admin")
    authority = demo_keypair(seed, "authority")
    registry = AttestationRegistry(admin.address)
    registry.add_authority(admin.address, authority.address)
    issuer = AttestationIssuer(authority.private_key, schema=CREDIT_REPORT_SCHEMA)

    circuit = ComparatorCircuit(num_attributes=len(CREDIT_REPORT_SCHEMA))
    setup = timed(rows, -1, "development_setup", lambda: DevelopmentSetup(circuit.n_public, seed=seed))
    builder = ProofBuilder(circuit, DevelopmentBackend(setup))
    verifier = Verifier(registry, setup.verification_key, circuit)
    hasher = CommitmentGenerator(len(CREDIT_REPORT_SCHEMA))

    fake = Faker()
    fake.seed_instance(seed)
    rng = np.random.default_rng(seed)

    for i in range(holders):
        keypair = demo_keypair(seed, i)
        report = random_report(fake, rng)
        values = CREDIT_REPORT_SCHEMA.values(report.as_attributes())

        timed(rows, i, "commitment", lambda: hasher.commit(keypair.address, values))
        timed(rows, i, "encrypt_attribute", lambda: encrypt_value(keypair.public_key, values[0]))
        prepared = timed(
            rows, i, "prepare_attestation",
            lambda: issuer.prepare(keypair.public_key, report.as_attributes()),
            notes=f"{len(values)} envelopes",
        )
        token_id = timed(rows, i, "mint", lambda: issuer.issue(registry, prepared))

        holder = Holder(keypair.private_key, schema=CREDIT_REPORT_SCHEMA)
        attestation = registry.get_attestation(token_id)
        signals = holder.comparator_input(attestation, "creditScore", operator, threshold)
        try:
            proof = timed(rows, i, "build_proof", lambda: builder.build_proof(signals))
        except WitnessGenerationFailed:
            rows.append({"holder": i, "phase": "build_proof", "duration_ms": None, "notes": "not eligible"})
            continue
        accepted = timed(rows, i, "verify", lambda: verifier.verify(proof, token_id))
        rows[-1]["notes"] = "accepted" if accepted else "rejected"

    return pd.DataFrame(rows)


def main() -> None:
    parser = argparse.ArgumentParser(description="Proof pipeline benchmarking harness")
    parser.add_argument("--holders", type=int, default=5, help="Number of attestations to issue")
    parser.add_argument("--threshold", type=int, default=650, help="Public threshold")
    parser.add_argument("--operator", default="gte", help="Comparison operator")
    parser.add_argument("--rng-seed", type=int, default=1337, help="Seed for synthetic data")
    parser.add_argument("--output", type=Path, default=PROOF_CSV, help="CSV output path")

    args = parser.parse_args()

    df = run(args.holders, args.threshold, Operator.parse(args.operator), args.rng_seed)

    args.output.parent.mkdir(parents=True, exist_ok=True)
    df.to_csv(args.output, mode="a", header=not args.output.exists(), index=False)

    summary = df.dropna(subset=["duration_ms"]).groupby("phase")["duration_ms"].agg(["count", "mean", "max"])
    print(summary.round(2).to_string())
    print(f"wrote {len(df)} rows to {args.output}")


if __name__ == "__main__":
    main()
