"""
verifier and eligibility tracker.

a proof is accepted for an attestation only if its public signals name that
attestation's commitment and owner and the groth16 check passes. acceptance
records the proven threshold as the owner's eligibility.
"""

import hmac
import logging
from collections import deque
from typing import Deque, Optional

from zksbt.circuit import ComparatorCircuit, PublicStatement
from zksbt.commitment import commitment_to_bytes
from zksbt.errors import AttestationMismatch, ProofVerificationFailed
from zksbt.groth16 import VerificationKey
from zksbt.groth16 import verify as groth16_verify
from zksbt.identity import normalize_address
from zksbt.prover import Proof
from zksbt.registry import AttestationRegistry, RegistryEvent
from zksbt.storage import EligibilityRecord

logger = logging.getLogger(__name__)


def _address_bytes(address: str) -> bytes:
    return bytes.fromhex(normalize_address(address)[2:])


class Verifier:
    """checks eligibility proofs against attestations in one registry"""

    def __init__(
        self,
        registry: AttestationRegistry,
        verification_key: VerificationKey,
        circuit: Optional[ComparatorCircuit] = None,
        revert_on_failure: Optional[bool] = None,
    ):
        self.registry = registry
        self.verification_key = verification_key
        self.circuit = circuit or ComparatorCircuit()
        if revert_on_failure is None:
            revert_on_failure = registry.settings.revert_on_failure
        self.revert_on_failure = revert_on_failure
        self.events: Deque[RegistryEvent] = deque(maxlen=registry.settings.event_log_size)

        if verification_key.n_public != self.circuit.n_public:
            raise ValueError(
                f"verification key has {verification_key.n_public} public inputs, "
                f"circuit declares {self.circuit.n_public}"
            )

    def verify(self, proof: Proof, attestation_id: int) -> bool:
        """
        Verify a proof for one attestation and record eligibility.

        Args:
            proof: proof with public signals in circuit order
            attestation_id: attestation the proof claims to be about

        Returns:
            True if accepted, False if the pairing check fails

        Raises:
            NotFound: unknown or burned attestation
            InvalidPublicSignals: wrong count or out-of-field signals
            AttestationMismatch: signals bound to another commitment or owner
            ProofVerificationFailed: pairing check failed and revert_on_failure is set
        """
        attestation = self.registry.get_attestation(attestation_id)
        statement: PublicStatement = self.circuit.read_public_signals(proof.public_signals)

        same_commitment = hmac.compare_digest(
            commitment_to_bytes(statement.commitment), commitment_to_bytes(attestation.commitment)
        )
        same_owner = hmac.compare_digest(
            _address_bytes(statement.owner), _address_bytes(attestation.owner)
        )
        if not (same_commitment and same_owner):
            raise AttestationMismatch(
                f"public signals are not bound to attestation {attestation_id}"
            )

        if not groth16_verify(self.verification_key, proof.to_groth16(), list(proof.public_signals)):
            logger.warning("proof for attestation %d rejected", attestation_id)
            if self.revert_on_failure:
                raise ProofVerificationFailed(f"invalid proof for attestation {attestation_id}")
            return False

        with self.registry.transaction() as (session, events):
            # the attestation may have been burned since it was read
            if self.registry.live_record(session, attestation_id).owner != attestation.owner:
                raise AttestationMismatch(f"attestation {attestation_id} changed owner")
            record = session.get(EligibilityRecord, attestation.owner)
            if record is None:
                record = EligibilityRecord(owner=attestation.owner)
                session.add(record)
            record.threshold = hex(statement.threshold)
            record.attestation_id = attestation_id
            record.updated_at = self.registry.clock()
            event = RegistryEvent(
                "Eligibility",
                {
                    "owner": attestation.owner,
                    "threshold": statement.threshold,
                    "attestation_id": attestation_id,
                },
            )
            events.append(event)
        self.events.append(event)

        logger.info(
            "attestation %d: %s proved %s", attestation_id, attestation.owner, statement.describe()
        )
        return True

    def eligibility_of(self, owner: str) -> int:
        """last proven threshold for owner, 0 if none"""
        record = self.eligibility_record(owner)
        return 0 if record is None else record["threshold"]

    def eligibility_record(self, owner: str) -> Optional[dict]:
        owner = normalize_address(owner)
        with self.registry.reader() as session:
            record = session.get(EligibilityRecord, owner)
            if record is None:
                return None
            return {
                "owner": record.owner,
                "threshold": int(record.threshold, 16),
                "attestation_id": record.attestation_id,
                "updated_at": record.updated_at,
            }
