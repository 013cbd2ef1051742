"""
wallet-style identities: secp256k1 key pairs and their checksum addresses.

an identity is the EIP-55 checksum form of keccak256(pubkey)[-20:]. inside
circuits the same identity is the integer value of the 20 address bytes.
"""

from dataclasses import dataclass
from typing import Union

from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import ec
from eth_utils import is_address, keccak, to_checksum_address

from zksbt.errors import InvalidIdentity, InvalidPrivateKey, InvalidPublicKeyFormat

# secp256k1 group order
SECP256K1_ORDER = 0xFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFEBAAEDCE6AF48A03BBFD25E8CD0364141

ZERO_ADDRESS = "0x0000000000000000000000000000000000000000"


@dataclass(frozen=True)
class Keypair:
    private_key: bytes   # 32 bytes
    public_key: bytes    # 65 bytes, uncompressed SEC1
    address: str

    @property
    def private_key_hex(self) -> str:
        return "0x" + self.private_key.hex()

    @property
    def public_key_hex(self) -> str:
        return "0x" + self.public_key.hex()


def _hex_to_bytes(value: Union[str, bytes]) -> bytes:
    if isinstance(value, bytes):
        return value
    stripped = value.strip()
    if stripped[:2].lower() == "0x":
        stripped = stripped[2:]
    return bytes.fromhex(stripped)


def load_private_key(private_key: Union[str, bytes]) -> ec.EllipticCurvePrivateKey:
    """parse a 32-byte secp256k1 secret (raw or hex)"""
    try:
        raw = _hex_to_bytes(private_key)
    except (ValueError, AttributeError) as exc:
        raise InvalidPrivateKey("private key is not valid hex") from exc
    if len(raw) != 32:
        raise InvalidPrivateKey(f"private key must be 32 bytes, got {len(raw)}")
    secret = int.from_bytes(raw, byteorder="big")
    if not 0 < secret < SECP256K1_ORDER:
        raise InvalidPrivateKey("private key is outside the secp256k1 group order")
    return ec.derive_private_key(secret, ec.SECP256K1())


def load_public_key(public_key: Union[str, bytes]) -> ec.EllipticCurvePublicKey:
    """parse a secp256k1 public key: 64 raw bytes, 65 uncompressed or 33 compressed"""
    try:
        raw = _hex_to_bytes(public_key)
    except (ValueError, AttributeError) as exc:
        raise InvalidPublicKeyFormat("public key is not valid hex") from exc
    if len(raw) == 64:
        raw = b"\x04" + raw
    if len(raw) not in (33, 65):
        raise InvalidPublicKeyFormat(f"unexpected public key length {len(raw)}")
    try:
        return ec.EllipticCurvePublicKey.from_encoded_point(ec.SECP256K1(), raw)
    except ValueError as exc:
        raise InvalidPublicKeyFormat("public key is not a point on secp256k1") from exc


def encode_public_key(key: ec.EllipticCurvePublicKey, compressed: bool = False) -> bytes:
    fmt = (
        serialization.PublicFormat.CompressedPoint
        if compressed
        else serialization.PublicFormat.UncompressedPoint
    )
    return key.public_bytes(serialization.Encoding.X962, fmt)


def public_key_to_address(public_key: Union[str, bytes]) -> str:
    """derive the checksum address owning a public key"""
    uncompressed = encode_public_key(load_public_key(public_key))
    return to_checksum_address(keccak(uncompressed[1:])[-20:])


def keypair_from_private_key(private_key: Union[str, bytes]) -> Keypair:
    key = load_private_key(private_key)
    secret = key.private_numbers().private_value.to_bytes(32, byteorder="big")
    public = encode_public_key(key.public_key())
    return Keypair(private_key=secret, public_key=public, address=public_key_to_address(public))


def generate_keypair() -> Keypair:
    """generate a fresh secp256k1 identity"""
    key = ec.generate_private_key(ec.SECP256K1())
    secret = key.private_numbers().private_value.to_bytes(32, byteorder="big")
    return keypair_from_private_key(secret)


def normalize_address(address: str) -> str:
    """return the checksum form of an address, rejecting anything else"""
    if not isinstance(address, str) or not is_address(address):
        raise InvalidIdentity(f"not an address: {address!r}")
    return to_checksum_address(address)


def address_to_scalar(address: str) -> int:
    """integer value of an address, as fed to circuits"""
    return int(normalize_address(address), 16)


def scalar_to_address(value: int) -> str:
    if value < 0 or value >= 1 << 160:
        raise InvalidIdentity(f"scalar {value} does not fit in an address")
    return to_checksum_address(value.to_bytes(20, byteorder="big"))
