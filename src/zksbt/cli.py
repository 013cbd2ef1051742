"""
zksbt command line.

    zksbt keygen
    zksbt commit --owner 0x... 720
    zksbt encrypt --public-key 0x04... 720
    zksbt decrypt --private-key 0x... envelope.json
    zksbt calldata proof.json public.json
    zksbt demo --count 3 --operator gte --threshold 650
"""

import argparse
import json
import sys
from typing import List, Optional

from zksbt.circuit import ComparatorCircuit
from zksbt.commitment import commit, commitment_to_hex
from zksbt.config import Settings, configure_logging
from zksbt.demo import demo_keypair, populate_demo_registry
from zksbt.ecies import EncryptedEnvelope, decrypt, encrypt, encrypt_json
from zksbt.errors import WitnessGenerationFailed, ZKSBTError
from zksbt.groth16 import DevelopmentSetup
from zksbt.identity import generate_keypair
from zksbt.issuer import CREDIT_REPORT_SCHEMA, AttestationIssuer, Holder
from zksbt.operators import Operator
from zksbt.prover import DevelopmentBackend, Proof, ProofBuilder
from zksbt.registry import AttestationRegistry
from zksbt.verifier import Verifier


def _read_json(path: str):
    if path == "-":
        return json.load(sys.stdin)
    with open(path, "r") as f:
        return json.load(f)


def cmd_keygen(args) -> int:
    keypair = generate_keypair()
    print(json.dumps({
        "address": keypair.address,
        "privateKey": keypair.private_key_hex,
        "publicKey": keypair.public_key_hex,
    }, indent=2))
    return 0


def cmd_commit(args) -> int:
    print(commitment_to_hex(commit(args.owner, args.values)))
    return 0


def cmd_encrypt(args) -> int:
    if args.json:
        envelope = encrypt_json(args.public_key, json.loads(args.value))
    else:
        envelope = encrypt(args.public_key, args.value.encode("utf-8"))
    print(json.dumps(envelope.to_wire(), indent=2))
    return 0


def cmd_decrypt(args) -> int:
    envelope = EncryptedEnvelope.from_wire(_read_json(args.envelope))
    print(decrypt(args.private_key, envelope).decode("utf-8"))
    return 0


def cmd_calldata(args) -> int:
    proof = Proof.from_snarkjs(_read_json(args.proof), _read_json(args.public))
    print(json.dumps(proof.flatten(), indent=2))
    return 0


def cmd_demo(args) -> int:
    settings = Settings.from_env()
    operator = Operator.parse(args.operator)

    admin = demo_keypair(args.seed, "admin")
    authority = demo_keypair(args.seed, "authority")
    registry = AttestationRegistry(admin.address, settings=settings)
    registry.add_authority(admin.address, authority.address)

    issuer = AttestationIssuer(authority.private_key, schema=CREDIT_REPORT_SCHEMA)
    print(f"\nminting {args.count} attestations on {registry.name} ({registry.symbol})")
    holders = populate_demo_registry(registry, issuer, count=args.count, seed=args.seed, progress=True)

    circuit = ComparatorCircuit(num_attributes=len(CREDIT_REPORT_SCHEMA))
    setup = DevelopmentSetup(n_public=circuit.n_public, seed=args.seed)
    builder = ProofBuilder(circuit, DevelopmentBackend(setup))
    verifier = Verifier(registry, setup.verification_key, circuit)

    print(f"\nproving creditScore {operator.symbol} {args.threshold}")
    for entry in holders:
        holder = Holder(entry.keypair.private_key, schema=CREDIT_REPORT_SCHEMA)
        attestation = registry.get_attestation(entry.token_id)
        signals = holder.comparator_input(attestation, "creditScore", operator, args.threshold)
        try:
            proof = builder.build_proof(signals)
        except WitnessGenerationFailed:
            print(f"  #{entry.token_id} {entry.report.name:<24} not eligible")
            continue
        accepted = verifier.verify(proof, entry.token_id)
        print(
            f"  #{entry.token_id} {entry.report.name:<24} "
            f"{'verified' if accepted else 'rejected'}, "
            f"eligibility {verifier.eligibility_of(attestation.owner)}"
        )

    print(f"\n{registry.total_supply()} attestations, {len(verifier.events)} eligibility records")
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="zksbt", description="Private soulbound attestations")
    parser.add_argument("--log-level", default=None, help="Logging level (default ZKSBT_LOG_LEVEL or INFO)")
    sub = parser.add_subparsers(dest="command", required=True)

    p = sub.add_parser("keygen", help="Generate a secp256k1 identity")
    p.set_defaults(func=cmd_keygen)

    p = sub.add_parser("commit", help="Poseidon commitment of an owner and attributes")
    p.add_argument("--owner", required=True, help="Owner address")
    p.add_argument("values", nargs="+", type=int, help="Attribute values in circuit order")
    p.set_defaults(func=cmd_commit)

    p = sub.add_parser("encrypt", help="Encrypt a value to a public key")
    p.add_argument("--public-key", required=True, help="Owner public key (hex)")
    p.add_argument("--json", action="store_true", help="Treat VALUE as a json object")
    p.add_argument("value", help="Plaintext value")
    p.set_defaults(func=cmd_encrypt)

    p = sub.add_parser("decrypt", help="Decrypt an envelope json file ('-' for stdin)")
    p.add_argument("--private-key", required=True, help="Owner private key (hex)")
    p.add_argument("envelope", help="Envelope json path")
    p.set_defaults(func=cmd_decrypt)

    p = sub.add_parser("calldata", help="Flatten snarkjs proof.json/public.json into call data")
    p.add_argument("proof", help="proof.json path")
    p.add_argument("public", help="public.json path")
    p.set_defaults(func=cmd_calldata)

    p = sub.add_parser("demo", help="Issue, prove and verify on an in-memory registry")
    p.add_argument("--count", type=int, default=3, help="Number of holders")
    p.add_argument("--seed", type=int, default=42, help="Seed for synthetic data and setup")
    p.add_argument("--operator", default="gte", help="Comparison operator (code, name or symbol)")
    p.add_argument("--threshold", type=int, default=650, help="Public threshold")
    p.set_defaults(func=cmd_demo)
    return parser


def main(argv: Optional[List[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    configure_logging(args.log_level or Settings.from_env().log_level)
    try:
        return args.func(args)
    except (ZKSBTError, OSError, json.JSONDecodeError) as exc:
        print(f"error: {exc}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    sys.exit(main())
