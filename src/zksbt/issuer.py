"""
off-chain roles around the registry.

AttestationIssuer is the authority middleware: it checks the owner's public
key, commits to the attributes, encrypts them to the owner and either mints
directly or signs a delegation. Holder is the owner's wallet: it decrypts its
attestations and turns them into comparator inputs.
"""

import logging
from dataclasses import dataclass
from typing import Any, Dict, Mapping, Optional, Sequence, Tuple, Union

from zksbt.circuit import ComparatorInput
from zksbt.commitment import CommitmentGenerator
from zksbt.delegation import sign_mint
from zksbt.ecies import (
    EncryptedEnvelope,
    decrypt_json,
    decrypt_value,
    encrypt_json,
    encrypt_value,
)
from zksbt.errors import ArityMismatch, InvalidIdentity, MalformedEnvelope
from zksbt.identity import keypair_from_private_key, normalize_address, public_key_to_address
from zksbt.operators import Operator
from zksbt.registry import Attestation, AttestationRegistry

logger = logging.getLogger(__name__)

ENVELOPE_MODES = ("per_attribute", "json")


@dataclass(frozen=True)
class AttributeSchema:
    """ordered attribute names; the order is the commitment and circuit order"""
    names: Tuple[str, ...]

    def __len__(self) -> int:
        return len(self.names)

    def index(self, name: str) -> int:
        try:
            return self.names.index(name)
        except ValueError as exc:
            raise ArityMismatch(f"unknown attribute {name!r}") from exc

    def values(self, attributes: Union[Mapping[str, Any], Sequence[Any]]) -> Tuple[int, ...]:
        if isinstance(attributes, Mapping):
            missing = [n for n in self.names if n not in attributes]
            if missing:
                raise ArityMismatch(f"missing attributes: {', '.join(missing)}")
            attributes = [attributes[n] for n in self.names]
        if len(attributes) != len(self.names):
            raise ArityMismatch(f"expected {len(self.names)} attributes, got {len(attributes)}")
        return tuple(int(v) for v in attributes)


CREDIT_SCORE_SCHEMA = AttributeSchema(("creditScore",))
CREDIT_REPORT_SCHEMA = AttributeSchema(("creditScore", "income", "reportDate"))


@dataclass(frozen=True)
class PreparedAttestation:
    owner: str
    commitment: int
    attributes: Dict[str, int]
    envelopes: Tuple[EncryptedEnvelope, ...]


def _check_mode(envelope_mode: str) -> str:
    if envelope_mode not in ENVELOPE_MODES:
        raise ValueError(f"envelope_mode must be one of {ENVELOPE_MODES}")
    return envelope_mode


class AttestationIssuer:
    """Authority middleware preparing, minting and delegating attestations."""

    def __init__(self, private_key, schema: AttributeSchema = CREDIT_SCORE_SCHEMA,
                 envelope_mode: str = "per_attribute"):
        self.keypair = keypair_from_private_key(private_key)
        self.schema = schema
        self.envelope_mode = _check_mode(envelope_mode)
        self.hasher = CommitmentGenerator(len(schema))

    @property
    def address(self) -> str:
        return self.keypair.address

    def prepare(self, owner_public_key, attributes, owner: Optional[str] = None) -> PreparedAttestation:
        """
        Commit to and encrypt attributes for an owner.

        Args:
            owner_public_key: secp256k1 public key of the owner
            attributes: mapping by schema name, or values in schema order
            owner: expected owner address, checked against the public key

        Returns:
            PreparedAttestation ready to mint or to delegate
        """
        derived = public_key_to_address(owner_public_key)
        if owner is not None and normalize_address(owner) != derived:
            raise InvalidIdentity(f"public key belongs to {derived}, not {owner}")

        values = self.schema.values(attributes)
        commitment = self.hasher.commit(derived, values)

        if self.envelope_mode == "json":
            payload = dict(zip(self.schema.names, values))
            envelopes = (encrypt_json(owner_public_key, payload),)
        else:
            envelopes = tuple(encrypt_value(owner_public_key, v) for v in values)

        return PreparedAttestation(
            owner=derived,
            commitment=commitment,
            attributes=dict(zip(self.schema.names, values)),
            envelopes=envelopes,
        )

    def issue(self, registry: AttestationRegistry, prepared: PreparedAttestation) -> int:
        """mint directly; this issuer must be an authority of the registry"""
        return registry.mint_by_authority(
            self.address, prepared.owner, prepared.commitment, prepared.envelopes
        )

    def sign_delegation(self, domain: Dict[str, Any], prepared: PreparedAttestation,
                        signature_date: int) -> bytes:
        """let the owner submit the mint; signed under the registry domain"""
        signature = sign_mint(
            self.keypair.private_key,
            domain,
            prepared.owner,
            self.address,
            signature_date,
            prepared.commitment,
            prepared.envelopes,
        )
        logger.debug("signed delegated mint for %s at %d", prepared.owner, signature_date)
        return signature


class Holder:
    """Attestation owner: decrypts attributes and builds proof inputs."""

    def __init__(self, private_key, schema: AttributeSchema = CREDIT_SCORE_SCHEMA,
                 envelope_mode: str = "per_attribute"):
        self.keypair = keypair_from_private_key(private_key)
        self.schema = schema
        self.envelope_mode = _check_mode(envelope_mode)
        self.hasher = CommitmentGenerator(len(schema))

    @property
    def address(self) -> str:
        return self.keypair.address

    @property
    def public_key(self) -> bytes:
        return self.keypair.public_key

    def read_attributes(self, attestation: Attestation) -> Dict[str, int]:
        """decrypt the attestation envelopes into schema-named values"""
        if self.envelope_mode == "json":
            if len(attestation.envelopes) != 1:
                raise MalformedEnvelope("json mode expects exactly one envelope")
            payload = decrypt_json(self.keypair.private_key, attestation.envelopes[0])
            return dict(zip(self.schema.names, self.schema.values(payload)))

        if len(attestation.envelopes) != len(self.schema):
            raise ArityMismatch(
                f"attestation has {len(attestation.envelopes)} envelopes, "
                f"schema has {len(self.schema)} attributes"
            )
        plaintexts = [decrypt_value(self.keypair.private_key, e) for e in attestation.envelopes]
        try:
            values = [int(p) for p in plaintexts]
        except ValueError as exc:
            raise MalformedEnvelope("envelope does not hold an integer") from exc
        return dict(zip(self.schema.names, values))

    def matches_commitment(self, attestation: Attestation) -> bool:
        values = self.schema.values(self.read_attributes(attestation))
        return self.hasher.commit(attestation.owner, values) == attestation.commitment

    def comparator_input(self, attestation: Attestation, attribute: str,
                         operator: Union[Operator, int, str], threshold: int) -> ComparatorInput:
        """comparator input claiming `attribute <operator> threshold` for an attestation"""
        values = self.schema.values(self.read_attributes(attestation))
        return ComparatorInput(
            owner=attestation.owner,
            operator=operator,
            threshold=threshold,
            attributes=values,
            commitment=attestation.commitment,
            attribute_index=self.schema.index(attribute),
        )

    def claim(self, registry: AttestationRegistry, prepared: PreparedAttestation,
              authority: str, signature_date: int, signature: bytes) -> int:
        """self-sovereign mint with an authority's delegation"""
        return registry.mint_self_sovereign(
            self.address,
            prepared.owner,
            authority,
            signature_date,
            prepared.commitment,
            prepared.envelopes,
            signature,
        )
