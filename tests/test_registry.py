"""Tests for the attestation registry."""

import pytest

from conftest import SIGNATURE_DATE
from zksbt.commitment import commit
from zksbt.config import Settings
from zksbt.delegation import sign_mint
from zksbt.ecies import encrypt_value
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
from zksbt.identity import ZERO_ADDRESS
from zksbt.poseidon import SNARK_SCALAR_FIELD
from zksbt.registry import AttestationRegistry


def _material(keypair, score=45):
    return commit(keypair.address, [score]), (encrypt_value(keypair.public_key, score),)


def _mint(registry, authority, keypair, score=45):
    commitment, envelopes = _material(keypair, score)
    return registry.mint_by_authority(authority.address, keypair.address, commitment, envelopes)


def _delegate(registry, signer, owner, authority_address=None, date=SIGNATURE_DATE):
    commitment, envelopes = _material(owner)
    authority_address = authority_address or signer.address
    signature = sign_mint(
        signer.private_key, registry.domain, owner.address, authority_address,
        date, commitment, envelopes,
    )
    return commitment, envelopes, signature


class TestMetadata:
    def test_name_and_symbol(self, registry) -> None:
        assert registry.name == "ZKP SBT"
        assert registry.symbol == "ZKPSBT"

    def test_token_uri(self, registry, authority, owner) -> None:
        token_id = _mint(registry, authority, owner)
        assert registry.token_uri(token_id) == "https://testserver/0"

    def test_domain(self, registry) -> None:
        assert registry.domain["name"] == "ZKPSBTSelfSovereign"
        assert registry.domain["verifyingContract"] == registry.address


class TestAuthorities:
    def test_admin_adds_and_removes(self, registry, admin, authority, stranger) -> None:
        assert registry.is_authority(authority.address)
        registry.add_authority(admin.address, stranger.address)
        assert set(registry.authorities()) == {authority.address, stranger.address}
        registry.remove_authority(admin.address, stranger.address)
        assert not registry.is_authority(stranger.address)
        names = [e.name for e in registry.events]
        assert names == ["AuthorityAdded", "AuthorityAdded", "AuthorityRemoved"]

    def test_only_admin(self, registry, authority, stranger) -> None:
        with pytest.raises(NotAuthorized):
            registry.add_authority(authority.address, stranger.address)
        with pytest.raises(NotAuthorized):
            registry.remove_authority(stranger.address, authority.address)
        assert registry.is_authority(authority.address)

    def test_zero_address(self, registry, admin) -> None:
        with pytest.raises(InvalidIdentity):
            registry.add_authority(admin.address, ZERO_ADDRESS)


class TestMintByAuthority:
    def test_mint(self, registry, authority, owner, clock) -> None:
        commitment, envelopes = _material(owner)
        token_id = registry.mint_by_authority(authority.address, owner.address, commitment, envelopes)

        assert token_id == 0
        assert registry.attestation_count() == 1
        assert registry.total_supply() == 1
        assert registry.token_by_index(0) == 0
        assert registry.owner_of(0) == owner.address
        assert registry.balance_of(owner.address) == 1

        attestation = registry.get_attestation(0)
        assert attestation.commitment == commitment
        assert attestation.envelopes == envelopes
        assert attestation.authority == authority.address
        assert attestation.issued_at == clock.now
        assert registry.events[-1].name == "Mint"
        assert registry.events[-1].args == {"id": 0, "owner": owner.address}

    def test_each_mint_adds_one(self, registry, authority, owner, other) -> None:
        for expected, keypair in enumerate([owner, other, owner], start=1):
            _mint(registry, authority, keypair)
            assert registry.attestation_count() == expected
        assert registry.tokens_of_owner(owner.address) == [0, 2]
        assert registry.token_of_owner_by_index(owner.address, 1) == 2

    def test_non_authority(self, registry, stranger, owner) -> None:
        events = len(registry.events)
        with pytest.raises(NotAuthorized):
            _mint(registry, stranger, owner)
        assert registry.attestation_count() == 0
        assert len(registry.events) == events

    def test_wire_envelopes_accepted(self, registry, authority, owner) -> None:
        commitment, envelopes = _material(owner)
        token_id = registry.mint_by_authority(
            authority.address, owner.address, commitment, [envelopes[0].to_wire()]
        )
        assert registry.get_attestation(token_id).envelopes == envelopes

    def test_malformed_envelope(self, registry, authority, owner) -> None:
        commitment, envelopes = _material(owner)
        broken = envelopes[0].model_copy(update={"mac": b"\x00" * 5})
        with pytest.raises(MalformedEnvelope):
            registry.mint_by_authority(authority.address, owner.address, commitment, [broken])
        with pytest.raises(MalformedEnvelope):
            registry.mint_by_authority(authority.address, owner.address, commitment, [])
        assert registry.attestation_count() == 0

    def test_commitment_out_of_field(self, registry, authority, owner) -> None:
        _, envelopes = _material(owner)
        with pytest.raises(ValueOutOfRange):
            registry.mint_by_authority(authority.address, owner.address, SNARK_SCALAR_FIELD, envelopes)


class TestMintSelfSovereign:
    def test_owner_mints_with_delegation(self, registry, authority, owner) -> None:
        commitment, envelopes, signature = _delegate(registry, authority, owner)
        token_id = registry.mint_self_sovereign(
            owner.address, owner.address, authority.address, SIGNATURE_DATE,
            commitment, envelopes, signature,
        )
        attestation = registry.get_attestation(token_id)
        assert attestation.owner == owner.address
        assert attestation.authority == authority.address
        assert attestation.issued_at == SIGNATURE_DATE

    def test_same_signature_twice(self, registry, authority, owner) -> None:
        commitment, envelopes, signature = _delegate(registry, authority, owner)
        for _ in range(2):
            registry.mint_self_sovereign(
                owner.address, owner.address, authority.address, SIGNATURE_DATE,
                commitment, envelopes, signature,
            )
        assert registry.balance_of(owner.address) == 2

    def test_caller_must_be_owner(self, registry, authority, owner, other) -> None:
        commitment, envelopes, signature = _delegate(registry, authority, owner)
        with pytest.raises(NotOwner):
            registry.mint_self_sovereign(
                other.address, owner.address, authority.address, SIGNATURE_DATE,
                commitment, envelopes, signature,
            )

    def test_non_authority_signer(self, registry, stranger, owner) -> None:
        commitment, envelopes, signature = _delegate(registry, stranger, owner)
        with pytest.raises(UnknownAuthority):
            registry.mint_self_sovereign(
                owner.address, owner.address, stranger.address, SIGNATURE_DATE,
                commitment, envelopes, signature,
            )

    def test_signer_impersonating_authority(self, registry, authority, stranger, owner) -> None:
        commitment, envelopes, signature = _delegate(
            registry, stranger, owner, authority_address=authority.address
        )
        with pytest.raises(InvalidSignature):
            registry.mint_self_sovereign(
                owner.address, owner.address, authority.address, SIGNATURE_DATE,
                commitment, envelopes, signature,
            )

    def test_signature_for_another_owner(self, registry, authority, owner, other) -> None:
        commitment, envelopes, signature = _delegate(registry, authority, owner)
        with pytest.raises(InvalidSignature):
            registry.mint_self_sovereign(
                other.address, other.address, authority.address, SIGNATURE_DATE,
                commitment, envelopes, signature,
            )
        assert registry.attestation_count() == 0

    def test_signature_for_another_registry(self, admin, authority, owner, clock) -> None:
        first = AttestationRegistry(admin.address, clock=clock)
        second = AttestationRegistry(
            admin.address,
            settings=Settings(registry_address="0xe7f1725E7734CE288F8367e1Bb143E90bb3F0512"),
            clock=clock,
        )
        second.add_authority(admin.address, authority.address)
        commitment, envelopes, signature = _delegate(first, authority, owner)
        with pytest.raises(InvalidSignature):
            second.mint_self_sovereign(
                owner.address, owner.address, authority.address, SIGNATURE_DATE,
                commitment, envelopes, signature,
            )

    def test_removed_authority(self, registry, admin, authority, owner) -> None:
        commitment, envelopes, signature = _delegate(registry, authority, owner)
        registry.remove_authority(admin.address, authority.address)
        with pytest.raises(UnknownAuthority):
            registry.mint_self_sovereign(
                owner.address, owner.address, authority.address, SIGNATURE_DATE,
                commitment, envelopes, signature,
            )

    @pytest.mark.parametrize("issued_at", [-1, 1 << 256, 1 << 63, "today"])
    def test_issued_at_out_of_range(self, registry, authority, owner, issued_at) -> None:
        commitment, envelopes, signature = _delegate(registry, authority, owner)
        with pytest.raises(ValueOutOfRange):
            registry.mint_self_sovereign(
                owner.address, owner.address, authority.address, issued_at,
                commitment, envelopes, signature,
            )
        assert registry.attestation_count() == 0

    def test_signature_ttl(self, admin, authority, owner, clock) -> None:
        registry = AttestationRegistry(admin.address, settings=Settings(signature_ttl=60), clock=clock)
        registry.add_authority(admin.address, authority.address)
        commitment, envelopes, signature = _delegate(registry, authority, owner)

        clock.now = SIGNATURE_DATE + 60
        registry.mint_self_sovereign(
            owner.address, owner.address, authority.address, SIGNATURE_DATE,
            commitment, envelopes, signature,
        )
        clock.now = SIGNATURE_DATE + 61
        with pytest.raises(SignatureExpired):
            registry.mint_self_sovereign(
                owner.address, owner.address, authority.address, SIGNATURE_DATE,
                commitment, envelopes, signature,
            )


class TestBurn:
    def test_burn(self, registry, authority, owner) -> None:
        _mint(registry, authority, owner)
        _mint(registry, authority, owner)
        registry.burn(owner.address, 0)

        assert registry.balance_of(owner.address) == 1
        assert registry.total_supply() == 1
        assert registry.attestation_count() == 2
        assert registry.token_by_index(0) == 1
        assert registry.tokens_of_owner(owner.address) == [1]
        assert registry.events[-1].name == "Burn"
        with pytest.raises(NotFound):
            registry.get_attestation(0)
        with pytest.raises(NotFound):
            registry.owner_of(0)

    def test_double_burn(self, registry, authority, owner) -> None:
        _mint(registry, authority, owner)
        registry.burn(owner.address, 0)
        with pytest.raises(AlreadyBurned):
            registry.burn(owner.address, 0)

    def test_non_owner_burn_leaves_state(self, registry, authority, owner, other) -> None:
        _mint(registry, authority, owner)
        with pytest.raises(NotOwner):
            registry.burn(other.address, 0)
        assert registry.owner_of(0) == owner.address
        assert registry.balance_of(owner.address) == 1

    def test_unknown_id(self, registry, owner) -> None:
        with pytest.raises(NotFound):
            registry.burn(owner.address, 7)

    def test_not_transferable(self, registry, authority, owner, other) -> None:
        _mint(registry, authority, owner)
        with pytest.raises(NonTransferable):
            registry.transfer(owner.address, other.address, 0)
        assert registry.owner_of(0) == owner.address


class TestEnumeration:
    def test_index_out_of_bounds(self, registry) -> None:
        with pytest.raises(NotFound):
            registry.token_by_index(0)
        with pytest.raises(NotFound):
            registry.token_by_index(-1)

    def test_owner_index_out_of_bounds(self, registry, owner) -> None:
        with pytest.raises(NotFound):
            registry.token_of_owner_by_index(owner.address, 0)


class TestPersistence:
    def test_state_survives_reopen(self, tmp_path, admin, authority, owner) -> None:
        settings = Settings(database_url=f"sqlite:///{tmp_path / 'registry.db'}")
        first = AttestationRegistry(admin.address, settings=settings)
        first.add_authority(admin.address, authority.address)
        _mint(first, authority, owner)

        reopened = AttestationRegistry(admin.address, settings=settings)
        assert reopened.is_authority(authority.address)
        assert reopened.owner_of(0) == owner.address
        assert reopened.attestation_count() == 1


class TestEventLog:
    def test_keeps_most_recent_events(self, admin, authority, owner, clock) -> None:
        registry = AttestationRegistry(admin.address, settings=Settings(event_log_size=2), clock=clock)
        registry.add_authority(admin.address, authority.address)
        ids = [_mint(registry, authority, owner) for _ in range(3)]

        assert [e.name for e in registry.events] == ["Mint", "Mint"]
        assert [e.args["id"] for e in registry.events] == ids[1:]
        assert registry.attestation_count() == 3
