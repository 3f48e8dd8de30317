"""
Error types for session message framing and cryptography.
"""


class SessionMessageError(Exception):
    """Base exception for session message operations."""
    pass


class FormatError(SessionMessageError):
    """Raised when a message buffer has an invalid structure."""
    pass


class BadLengthError(FormatError):
    """Raised when declared lengths do not match the buffer."""
    pass


class UnsupportedVersionError(FormatError):
    """Raised when the header carries an unknown protocol version."""
    pass


class UnexpectedTypeError(FormatError):
    """Raised when the header type tag is not the one expected."""
    pass


class CapacityError(SessionMessageError):
    """Raised when an output buffer is too small."""
    pass


class CryptoError(SessionMessageError):
    """Base exception for cryptographic failures."""
    pass


class EncryptionFailedError(CryptoError):
    """Raised when the cleartext cannot be encrypted with the given key."""
    pass


class SigningFailedError(CryptoError):
    """Raised when PSS padding or the raw signature transform fails."""
    pass


class DecryptionFailedError(CryptoError):
    """Raised when the ciphertext cannot be decrypted or does not fit."""
    pass


class SignatureInvalidError(CryptoError):
    """Raised when the ciphertext signature does not verify."""
    pass
