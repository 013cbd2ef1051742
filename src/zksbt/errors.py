"""
error taxonomy for attestation issuance, proving and verification.

four families, so callers can tell a bad request from a false claim:

1. InputValidationError: malformed keys, envelopes, operator codes, arities.
   detected locally before any cryptographic work.
2. AuthorizationError: wrong caller, unknown authority, bad delegation.
3. CryptographicError: failed authentication tag, unsatisfiable witness,
   rejected pairing check, proof bound to another attestation.
4. StateError: unknown or already burned attestation ids.
"""


class ZKSBTError(Exception):
    """base class for every error raised by zksbt"""


# input validation

class InputValidationError(ZKSBTError, ValueError):
    pass


class ArityMismatch(InputValidationError):
    pass


class ValueOutOfRange(InputValidationError):
    pass


class InvalidIdentity(InputValidationError):
    pass


class InvalidPublicKeyFormat(InputValidationError):
    pass


class InvalidPrivateKey(InputValidationError):
    pass


class MalformedEnvelope(InputValidationError):
    pass


class InvalidOperatorCode(InputValidationError):
    pass


class InvalidPublicSignals(InputValidationError):
    pass


# authorization

class AuthorizationError(ZKSBTError, PermissionError):
    pass


class NotAuthorized(AuthorizationError):
    pass


class UnknownAuthority(AuthorizationError):
    pass


class InvalidSignature(AuthorizationError):
    pass


class SignatureExpired(AuthorizationError):
    pass


class NotOwner(AuthorizationError):
    pass


class NonTransferable(AuthorizationError):
    pass


# cryptographic failures

class CryptographicError(ZKSBTError):
    pass


class AuthenticationFailed(CryptographicError):
    pass


class WitnessGenerationFailed(CryptographicError):
    pass


class ProvingFailed(CryptographicError):
    pass


class HashingFailed(CryptographicError):
    """the poseidon bridge could not be run or returned garbage"""


class ProofVerificationFailed(CryptographicError):
    pass


class AttestationMismatch(CryptographicError):
    """public signals name a different commitment or owner than the attestation"""


# state

class StateError(ZKSBTError, LookupError):
    pass


class NotFound(StateError):
    pass


class AlreadyBurned(StateError):
    pass
