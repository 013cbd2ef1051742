"""
EIP-712 signatures authorizing a self-sovereign mint.

an authority signs Mint(to, authorityAddress, signatureDate, hashData,
cipherData) under the registry's domain; the owner submits the mint and the
registry recovers the signer.
"""

from typing import Any, Dict, Sequence, Union

from eth_account import Account
from eth_account.messages import encode_typed_data
from eth_keys.exceptions import BadSignature, ValidationError

from zksbt.commitment import commitment_to_bytes
from zksbt.ecies import EncryptedEnvelope
from zksbt.errors import InvalidSignature, ValueOutOfRange
from zksbt.identity import normalize_address

UINT256_LIMIT = 1 << 256


def check_signature_date(signature_date) -> int:
    """signatureDate is a uint256 in the typed data"""
    try:
        value = int(signature_date)
    except (TypeError, ValueError) as exc:
        raise ValueOutOfRange(f"signature date {signature_date!r} is not an integer") from exc
    if not 0 <= value < UINT256_LIMIT:
        raise ValueOutOfRange(f"signature date {value} is not a uint256")
    return value


def mint_domain(name: str, version: str, chain_id: int, verifying_contract: str) -> Dict[str, Any]:
    return {
        "name": name,
        "version": version,
        "chainId": chain_id,
        "verifyingContract": normalize_address(verifying_contract),
    }


def mint_types(envelope_count: int) -> Dict[str, Any]:
    """one envelope signs `bytes cipherData`, several sign `bytes[] cipherData`"""
    return {
        "Mint": [
            {"name": "to", "type": "address"},
            {"name": "authorityAddress", "type": "address"},
            {"name": "signatureDate", "type": "uint256"},
            {"name": "hashData", "type": "bytes"},
            {"name": "cipherData", "type": "bytes" if envelope_count == 1 else "bytes[]"},
        ]
    }


def mint_message(
    owner: str,
    authority: str,
    signature_date: int,
    commitment: int,
    envelopes: Sequence[EncryptedEnvelope],
) -> Dict[str, Any]:
    cipher_texts = [bytes(e.cipher_text) for e in envelopes]
    return {
        "to": normalize_address(owner),
        "authorityAddress": normalize_address(authority),
        "signatureDate": check_signature_date(signature_date),
        "hashData": commitment_to_bytes(commitment),
        "cipherData": cipher_texts[0] if len(cipher_texts) == 1 else cipher_texts,
    }


def _signable(domain, owner, authority, signature_date, commitment, envelopes):
    if not envelopes:
        raise ValueError("a mint needs at least one envelope")
    return encode_typed_data(
        domain_data=domain,
        message_types=mint_types(len(envelopes)),
        message_data=mint_message(owner, authority, signature_date, commitment, envelopes),
    )


def sign_mint(
    private_key: Union[str, bytes],
    domain: Dict[str, Any],
    owner: str,
    authority: str,
    signature_date: int,
    commitment: int,
    envelopes: Sequence[EncryptedEnvelope],
) -> bytes:
    """
    Sign a delegated mint as `authority`.

    Args:
        private_key: authority secp256k1 key
        domain: registry domain, see mint_domain()
        owner: address allowed to submit the mint
        authority: address of the signer
        signature_date: unix seconds bound into the signature
        commitment: attestation commitment
        envelopes: encrypted attribute envelopes, mint order

    Returns:
        65-byte r || s || v signature
    """
    signable = _signable(domain, owner, authority, signature_date, commitment, envelopes)
    signed = Account.sign_message(signable, private_key=private_key)
    return bytes(signed.signature)


def recover_mint_signer(
    domain: Dict[str, Any],
    owner: str,
    authority: str,
    signature_date: int,
    commitment: int,
    envelopes: Sequence[EncryptedEnvelope],
    signature: Union[str, bytes],
) -> str:
    """address that produced signature over this exact mint"""
    signable = _signable(domain, owner, authority, signature_date, commitment, envelopes)
    try:
        return Account.recover_message(signable, signature=signature)
    except (BadSignature, ValidationError, ValueError, TypeError) as exc:
        raise InvalidSignature(f"malformed mint signature: {exc}") from exc
