"""
Attestation registry: the ledger side of soulbound attestations.

per attestation id: unminted -> minted -> burned (terminal). records are
never reassigned to another owner; every mutation runs in one database
transaction and is serialized by the registry lock.
"""

import logging
import threading
import time
from collections import deque
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Any, Callable, Deque, Dict, List, Optional, Sequence, Tuple, Union

from zksbt.commitment import commitment_from_hex, commitment_to_hex
from zksbt.config import Settings
from zksbt.delegation import check_signature_date, mint_domain, recover_mint_signer
from zksbt.ecies import EncryptedEnvelope
from zksbt.errors import (
    AlreadyBurned,
    InvalidIdentity,
    InvalidSignature,
    MalformedEnvelope,
    NonTransferable,
    NotAuthorized,
    NotFound,
    NotOwner,
    SignatureExpired,
    UnknownAuthority,
    ValueOutOfRange,
)
from zksbt.identity import ZERO_ADDRESS, normalize_address
from zksbt.poseidon import SNARK_SCALAR_FIELD
from zksbt.storage import (
    AttestationRecord,
    AuthorityRecord,
    EnvelopeRecord,
    RegistryState,
    create_session_factory,
)

logger = logging.getLogger(__name__)

EnvelopeLike = Union[EncryptedEnvelope, Dict[str, str]]

MAX_TIMESTAMP = (1 << 63) - 1


@dataclass(frozen=True)
class Attestation:
    id: int
    owner: str
    commitment: int
    envelopes: Tuple[EncryptedEnvelope, ...]
    authority: str
    issued_at: int
    minted_at: int


@dataclass(frozen=True)
class RegistryEvent:
    name: str
    args: Dict[str, Any] = field(default_factory=dict)


def _to_attestation(record: AttestationRecord) -> Attestation:
    return Attestation(
        id=record.token_id,
        owner=record.owner,
        commitment=commitment_from_hex(record.commitment),
        envelopes=tuple(
            EncryptedEnvelope(
                iv=e.iv,
                ephemeral_public_key=e.ephemeral_public_key,
                cipher_text=e.cipher_text,
                mac=e.mac,
            )
            for e in record.envelopes
        ),
        authority=record.authority,
        issued_at=record.issued_at,
        minted_at=record.minted_at,
    )


def _check_envelopes(envelopes: Sequence[EnvelopeLike]) -> List[EncryptedEnvelope]:
    if isinstance(envelopes, (EncryptedEnvelope, dict)):
        envelopes = [envelopes]
    if not envelopes:
        raise MalformedEnvelope("an attestation needs at least one envelope")
    checked = []
    for envelope in envelopes:
        if isinstance(envelope, dict):
            envelope = EncryptedEnvelope.from_wire(envelope)
        envelope.check()
        checked.append(envelope)
    return checked


def _check_commitment(commitment: int) -> int:
    try:
        commitment = int(commitment)
    except (TypeError, ValueError) as exc:
        raise ValueOutOfRange(f"commitment {commitment!r} is not an integer") from exc
    if not 0 <= commitment < SNARK_SCALAR_FIELD:
        raise ValueOutOfRange("commitment is outside the scalar field")
    return commitment


def _check_issued_at(issued_at) -> int:
    value = check_signature_date(issued_at)
    # timestamps live in 64-bit integer columns
    if value > MAX_TIMESTAMP:
        raise ValueOutOfRange(f"signature date {value} does not fit a 64-bit timestamp")
    return value


class AttestationRegistry:
    """
    Soulbound attestation registry with an authority allow-list.

    Args:
        admin: address allowed to manage the authority allow-list
        settings: registry name, symbol, base uri, domain and database url
        session_factory: pre-built sessionmaker (shared with other components)
        clock: returns unix seconds, injectable for tests
    """

    def __init__(
        self,
        admin: str,
        settings: Optional[Settings] = None,
        session_factory=None,
        clock: Optional[Callable[[], int]] = None,
    ):
        self.settings = settings or Settings()
        self.SessionLocal = session_factory or create_session_factory(self.settings.database_url)
        self.address = normalize_address(self.settings.registry_address)
        self.clock = clock or (lambda: int(time.time()))
        # most recent events only; state itself is in the database
        self.events: Deque[RegistryEvent] = deque(maxlen=self.settings.event_log_size)
        self._lock = threading.RLock()

        session = self.SessionLocal()
        try:
            if not session.get(RegistryState, 1):
                session.add(RegistryState(id=1, admin=normalize_address(admin), next_token_id=0))
                session.commit()
        finally:
            session.close()

    # transactions

    @contextmanager
    def transaction(self):
        """
        One all-or-nothing ledger transaction.

        yields (session, events); events are published only after commit.
        """
        with self._lock:
            session = self.SessionLocal()
            pending: List[RegistryEvent] = []
            try:
                yield session, pending
                session.commit()
            except Exception:
                session.rollback()
                raise
            finally:
                session.close()
            self.events.extend(pending)

    @contextmanager
    def reader(self):
        with self._lock:
            session = self.SessionLocal()
            try:
                yield session
            finally:
                session.close()

    # metadata

    @property
    def name(self) -> str:
        return self.settings.name

    @property
    def symbol(self) -> str:
        return self.settings.symbol

    @property
    def domain(self) -> Dict[str, Any]:
        """eip-712 domain of delegated mint signatures for this registry"""
        return mint_domain(
            self.settings.domain_name,
            self.settings.domain_version,
            self.settings.chain_id,
            self.address,
        )

    @property
    def admin(self) -> str:
        with self.reader() as session:
            return session.get(RegistryState, 1).admin

    # authorities

    def add_authority(self, caller: str, authority: str) -> None:
        caller = normalize_address(caller)
        authority = normalize_address(authority)
        if authority == ZERO_ADDRESS:
            raise InvalidIdentity("the zero address cannot be an authority")
        with self.transaction() as (session, events):
            if session.get(RegistryState, 1).admin != caller:
                raise NotAuthorized(f"{caller} is not the registry admin")
            if session.get(AuthorityRecord, authority) is None:
                session.add(AuthorityRecord(address=authority, added_at=self.clock()))
                events.append(RegistryEvent("AuthorityAdded", {"authority": authority}))
        logger.info("authority %s added", authority)

    def remove_authority(self, caller: str, authority: str) -> None:
        caller = normalize_address(caller)
        authority = normalize_address(authority)
        with self.transaction() as (session, events):
            if session.get(RegistryState, 1).admin != caller:
                raise NotAuthorized(f"{caller} is not the registry admin")
            record = session.get(AuthorityRecord, authority)
            if record is not None:
                session.delete(record)
                events.append(RegistryEvent("AuthorityRemoved", {"authority": authority}))
        logger.info("authority %s removed", authority)

    def is_authority(self, address: str) -> bool:
        address = normalize_address(address)
        with self.reader() as session:
            return session.get(AuthorityRecord, address) is not None

    def authorities(self) -> List[str]:
        with self.reader() as session:
            return [r.address for r in session.query(AuthorityRecord).order_by(AuthorityRecord.address)]

    # minting

    def _mint(self, session, events, owner, authority, issued_at, commitment, envelopes) -> int:
        state = session.get(RegistryState, 1)
        token_id = state.next_token_id
        state.next_token_id = token_id + 1

        record = AttestationRecord(
            token_id=token_id,
            owner=owner,
            commitment=commitment_to_hex(commitment),
            authority=authority,
            issued_at=int(issued_at),
            minted_at=self.clock(),
            burned=False,
        )
        record.envelopes = [
            EnvelopeRecord(
                position=i,
                iv=e.iv,
                ephemeral_public_key=e.ephemeral_public_key,
                cipher_text=e.cipher_text,
                mac=e.mac,
            )
            for i, e in enumerate(envelopes)
        ]
        session.add(record)
        events.append(RegistryEvent("Mint", {"id": token_id, "owner": owner}))
        return token_id

    def mint_by_authority(
        self,
        caller: str,
        owner: str,
        commitment: int,
        envelopes: Sequence[EnvelopeLike],
    ) -> int:
        """
        Mint directly as an authority.

        Args:
            caller: address submitting the mint, must be an authority
            owner: address the attestation is bound to
            commitment: poseidon(owner, attributes...)
            envelopes: attributes encrypted to the owner

        Returns:
            new attestation id
        """
        caller = normalize_address(caller)
        owner = normalize_address(owner)
        commitment = _check_commitment(commitment)
        checked = _check_envelopes(envelopes)

        with self.transaction() as (session, events):
            if session.get(AuthorityRecord, caller) is None:
                raise NotAuthorized(f"{caller} is not an authority")
            token_id = self._mint(session, events, owner, caller, self.clock(), commitment, checked)

        logger.info("minted attestation %d for %s by authority %s", token_id, owner, caller)
        return token_id

    def mint_self_sovereign(
        self,
        caller: str,
        owner: str,
        authority: str,
        issued_at: int,
        commitment: int,
        envelopes: Sequence[EnvelopeLike],
        signature: Union[str, bytes],
    ) -> int:
        """
        Mint as the owner, with a delegation signed by an authority.

        the signature must cover exactly (owner, authority, issued_at,
        commitment, envelope ciphertexts) under this registry's domain.
        the same signature may be submitted more than once.
        """
        caller = normalize_address(caller)
        owner = normalize_address(owner)
        authority = normalize_address(authority)
        if caller != owner:
            raise NotOwner(f"{caller} cannot mint for {owner}")
        issued_at = _check_issued_at(issued_at)
        commitment = _check_commitment(commitment)
        checked = _check_envelopes(envelopes)

        with self.transaction() as (session, events):
            if session.get(AuthorityRecord, authority) is None:
                raise UnknownAuthority(f"{authority} is not an authority")

            signer = recover_mint_signer(
                self.domain, owner, authority, issued_at, commitment, checked, signature
            )
            if signer != authority:
                raise InvalidSignature(f"mint signed by {signer}, not {authority}")

            ttl = self.settings.signature_ttl
            if ttl is not None and self.clock() - issued_at > ttl:
                raise SignatureExpired(f"delegation from {issued_at} is older than {ttl}s")

            token_id = self._mint(session, events, owner, authority, issued_at, commitment, checked)

        logger.info("minted attestation %d for %s, delegated by %s", token_id, owner, authority)
        return token_id

    # lifecycle

    def burn(self, caller: str, token_id: int) -> None:
        caller = normalize_address(caller)
        with self.transaction() as (session, events):
            record = session.get(AttestationRecord, token_id)
            if record is None:
                raise NotFound(f"attestation {token_id} does not exist")
            if record.burned:
                raise AlreadyBurned(f"attestation {token_id} is already burned")
            if record.owner != caller:
                raise NotOwner(f"{caller} does not own attestation {token_id}")
            record.burned = True
            events.append(RegistryEvent("Burn", {"id": token_id, "owner": record.owner}))
        logger.info("burned attestation %d", token_id)

    def transfer(self, caller: str, to: str, token_id: int) -> None:
        raise NonTransferable("attestations are soulbound and cannot be transferred")

    def live_record(self, session, token_id: int) -> AttestationRecord:
        record = session.get(AttestationRecord, token_id)
        if record is None or record.burned:
            raise NotFound(f"attestation {token_id} does not exist")
        return record

    def get_attestation(self, token_id: int) -> Attestation:
        with self.reader() as session:
            return _to_attestation(self.live_record(session, token_id))

    # enumeration

    def _live_query(self, session):
        return (
            session.query(AttestationRecord)
            .filter(AttestationRecord.burned.is_(False))
            .order_by(AttestationRecord.token_id)
        )

    def owner_of(self, token_id: int) -> str:
        with self.reader() as session:
            return self.live_record(session, token_id).owner

    def token_uri(self, token_id: int) -> str:
        with self.reader() as session:
            self.live_record(session, token_id)
        return f"{self.settings.base_uri}{token_id}"

    def balance_of(self, owner: str) -> int:
        owner = normalize_address(owner)
        with self.reader() as session:
            return self._live_query(session).filter(AttestationRecord.owner == owner).count()

    def total_supply(self) -> int:
        with self.reader() as session:
            return self._live_query(session).count()

    def attestation_count(self) -> int:
        """number of mints ever, burned included"""
        with self.reader() as session:
            return session.get(RegistryState, 1).next_token_id

    def token_by_index(self, index: int) -> int:
        with self.reader() as session:
            record = self._live_query(session).offset(index).first() if index >= 0 else None
        if record is None:
            raise NotFound(f"no attestation at index {index}")
        return record.token_id

    def tokens_of_owner(self, owner: str) -> List[int]:
        owner = normalize_address(owner)
        with self.reader() as session:
            return [
                r.token_id
                for r in self._live_query(session).filter(AttestationRecord.owner == owner)
            ]

    def token_of_owner_by_index(self, owner: str, index: int) -> int:
        tokens = self.tokens_of_owner(owner)
        if not 0 <= index < len(tokens):
            raise NotFound(f"{owner} has no attestation at index {index}")
        return tokens[index]
