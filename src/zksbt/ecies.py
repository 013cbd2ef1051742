"""
ECIES envelopes for attribute data, compatible with eth-crypto / eccrypto.

an envelope is (iv, ephemeral public key, ciphertext, mac):
- ECDH between a fresh ephemeral key and the owner's secp256k1 public key
- sha512(shared x) -> aes-256-cbc key (first half) and hmac key (second half)
- mac = hmac-sha256(iv || ephemeral public key || ciphertext)

only the holder of the owner's private key can open an envelope; any change
to a field fails the mac check.
"""

import json
import secrets
from typing import Any, Dict, Optional, Union

import pydantic
from cryptography.exceptions import InvalidSignature
from cryptography.hazmat.primitives import hashes, hmac, padding
from cryptography.hazmat.primitives.asymmetric import ec
from cryptography.hazmat.primitives.ciphers import Cipher, algorithms, modes

from zksbt.errors import AuthenticationFailed, InvalidPublicKeyFormat, MalformedEnvelope
from zksbt.identity import encode_public_key, load_private_key, load_public_key

IV_LENGTH = 16
EPHEMERAL_KEY_LENGTH = 65
COMPRESSED_KEY_LENGTH = 33
MAC_LENGTH = 32
BLOCK_LENGTH = 16


def _to_hex(data: bytes) -> str:
    return "0x" + data.hex()


class EncryptedEnvelope(pydantic.BaseModel):
    """ciphertext of one attribute (or one json payload) for one owner"""

    model_config = pydantic.ConfigDict(frozen=True, populate_by_name=True)

    iv: bytes
    ephemeral_public_key: bytes = pydantic.Field(alias="ephemPublicKey")
    cipher_text: bytes = pydantic.Field(alias="cipherText")
    mac: bytes

    @pydantic.field_validator("iv", "ephemeral_public_key", "cipher_text", "mac", mode="before")
    @classmethod
    def _parse_hex(cls, value: Any) -> Any:
        if isinstance(value, str):
            stripped = value[2:] if value[:2].lower() == "0x" else value
            return bytes.fromhex(stripped)
        return value

    def check(self) -> None:
        """raise MalformedEnvelope unless every field has the expected length"""
        if len(self.iv) != IV_LENGTH:
            raise MalformedEnvelope(f"iv must be {IV_LENGTH} bytes, got {len(self.iv)}")
        if len(self.ephemeral_public_key) != EPHEMERAL_KEY_LENGTH:
            raise MalformedEnvelope(
                f"ephemeral public key must be {EPHEMERAL_KEY_LENGTH} bytes, "
                f"got {len(self.ephemeral_public_key)}"
            )
        if not self.cipher_text or len(self.cipher_text) % BLOCK_LENGTH:
            raise MalformedEnvelope("ciphertext must be a non-empty multiple of the block size")
        if len(self.mac) != MAC_LENGTH:
            raise MalformedEnvelope(f"mac must be {MAC_LENGTH} bytes, got {len(self.mac)}")

    def to_wire(self) -> Dict[str, str]:
        """hex-prefixed wire form {iv, ephemPublicKey, cipherText, mac}"""
        return {
            "iv": _to_hex(self.iv),
            "ephemPublicKey": _to_hex(self.ephemeral_public_key),
            "cipherText": _to_hex(self.cipher_text),
            "mac": _to_hex(self.mac),
        }

    @classmethod
    def from_wire(cls, data: Dict[str, str]) -> "EncryptedEnvelope":
        try:
            envelope = cls.model_validate(data)
        except pydantic.ValidationError as exc:
            raise MalformedEnvelope(f"cannot parse envelope: {exc}") from exc
        envelope.check()
        return envelope

    def to_compact(self) -> bytes:
        """single blob: iv || compressed ephemeral key || mac || ciphertext"""
        self.check()
        try:
            ephemeral = load_public_key(self.ephemeral_public_key)
        except InvalidPublicKeyFormat as exc:
            raise MalformedEnvelope("ephemeral public key is not a curve point") from exc
        return self.iv + encode_public_key(ephemeral, compressed=True) + self.mac + self.cipher_text

    @classmethod
    def from_compact(cls, blob: bytes) -> "EncryptedEnvelope":
        header = IV_LENGTH + COMPRESSED_KEY_LENGTH + MAC_LENGTH
        if len(blob) <= header:
            raise MalformedEnvelope("compact envelope is too short")
        iv = blob[:IV_LENGTH]
        compressed = blob[IV_LENGTH:IV_LENGTH + COMPRESSED_KEY_LENGTH]
        mac = blob[IV_LENGTH + COMPRESSED_KEY_LENGTH:header]
        try:
            ephemeral = encode_public_key(load_public_key(compressed))
        except InvalidPublicKeyFormat as exc:
            raise MalformedEnvelope("ephemeral public key is not a curve point") from exc
        envelope = cls(iv=iv, ephemeral_public_key=ephemeral, cipher_text=blob[header:], mac=mac)
        envelope.check()
        return envelope


def _derive_keys(private_key: ec.EllipticCurvePrivateKey,
                 peer: ec.EllipticCurvePublicKey):
    shared_x = private_key.exchange(ec.ECDH(), peer)
    digest = hashes.Hash(hashes.SHA512())
    digest.update(shared_x)
    material = digest.finalize()
    return material[:32], material[32:]


def _mac(mac_key: bytes, iv: bytes, ephemeral: bytes, cipher_text: bytes) -> hmac.HMAC:
    h = hmac.HMAC(mac_key, hashes.SHA256())
    h.update(iv + ephemeral + cipher_text)
    return h


def encrypt(public_key: Union[str, bytes], plaintext: bytes,
            iv: Optional[bytes] = None) -> EncryptedEnvelope:
    """
    Encrypt plaintext for the holder of public_key.

    Args:
        public_key: owner public key (64/65/33 bytes or hex)
        plaintext: bytes to protect
        iv: fixed iv, for reproducible fixtures only

    Returns:
        EncryptedEnvelope
    """
    recipient = load_public_key(public_key)
    ephemeral_key = ec.generate_private_key(ec.SECP256K1())
    ephemeral = encode_public_key(ephemeral_key.public_key())
    iv = secrets.token_bytes(IV_LENGTH) if iv is None else iv
    if len(iv) != IV_LENGTH:
        raise MalformedEnvelope(f"iv must be {IV_LENGTH} bytes")

    enc_key, mac_key = _derive_keys(ephemeral_key, recipient)

    padder = padding.PKCS7(algorithms.AES.block_size).padder()
    padded = padder.update(plaintext) + padder.finalize()
    encryptor = Cipher(algorithms.AES(enc_key), modes.CBC(iv)).encryptor()
    cipher_text = encryptor.update(padded) + encryptor.finalize()

    mac = _mac(mac_key, iv, ephemeral, cipher_text).finalize()
    return EncryptedEnvelope(iv=iv, ephemeral_public_key=ephemeral, cipher_text=cipher_text, mac=mac)


def decrypt(private_key: Union[str, bytes], envelope: EncryptedEnvelope) -> bytes:
    """open an envelope; AuthenticationFailed on tampering or the wrong key"""
    envelope.check()
    owner_key = load_private_key(private_key)
    try:
        ephemeral = load_public_key(envelope.ephemeral_public_key)
    except InvalidPublicKeyFormat as exc:
        raise MalformedEnvelope("ephemeral public key is not a curve point") from exc

    enc_key, mac_key = _derive_keys(owner_key, ephemeral)
    try:
        _mac(mac_key, envelope.iv, envelope.ephemeral_public_key, envelope.cipher_text).verify(envelope.mac)
    except InvalidSignature as exc:
        raise AuthenticationFailed("envelope mac does not verify") from exc

    decryptor = Cipher(algorithms.AES(enc_key), modes.CBC(envelope.iv)).decryptor()
    padded = decryptor.update(envelope.cipher_text) + decryptor.finalize()
    unpadder = padding.PKCS7(algorithms.AES.block_size).unpadder()
    try:
        return unpadder.update(padded) + unpadder.finalize()
    except ValueError as exc:
        raise MalformedEnvelope("authenticated ciphertext has invalid padding") from exc


def encrypt_value(public_key: Union[str, bytes], value: Any) -> EncryptedEnvelope:
    """encrypt str(value), the way scores and dates are stored one per envelope"""
    return encrypt(public_key, str(value).encode("utf-8"))


def decrypt_value(private_key: Union[str, bytes], envelope: EncryptedEnvelope) -> str:
    return decrypt(private_key, envelope).decode("utf-8")


def encrypt_json(public_key: Union[str, bytes], payload: Dict[str, Any]) -> EncryptedEnvelope:
    """single-envelope variant: the whole attribute record as json"""
    return encrypt(public_key, json.dumps(payload, sort_keys=True).encode("utf-8"))


def decrypt_json(private_key: Union[str, bytes], envelope: EncryptedEnvelope) -> Dict[str, Any]:
    plaintext = decrypt(private_key, envelope)
    try:
        return json.loads(plaintext.decode("utf-8"))
    except (UnicodeDecodeError, json.JSONDecodeError) as exc:
        raise MalformedEnvelope("envelope payload is not json") from exc
