# Secure Messaging Module
"""
Signed-and-encrypted session message implementation including:
- Common message header (version, type, body length)
- Strict length-prefixed framing of ciphertext and signature
- RSA-OAEP encryption of the session secret
- RSA-PSS signature over the ciphertext digest (explicit pad + raw sign)

Message format: [header | ct_len | ciphertext | sig_len | signature]

Security features:
- Framing validated before any cryptographic operation
- Message signing over the ciphertext hash, not the plaintext
- Exact lengths only, no trailing bytes
"""

from .errors import (
    SessionMessageError,
    FormatError,
    BadLengthError,
    UnsupportedVersionError,
    UnexpectedTypeError,
    CapacityError,
    CryptoError,
    EncryptionFailedError,
    SigningFailedError,
    DecryptionFailedError,
    SignatureInvalidError,
)
from .message import (
    CURRENT_PROTOCOL_VERSION,
    HEADER_LENGTH,
    Message,
    MessageType,
    write_header,
)
from .session_message import (
    MESSAGE_DIGEST_ALGORITHM,
    MIN_BODY_LENGTH,
    RSAKeyPair,
    SessionMessage,
    write_fields,
    oaep_capacity,
    create_session_message,
    open_session_message,
)

__all__ = [
    'SessionMessageError',
    'FormatError',
    'BadLengthError',
    'UnsupportedVersionError',
    'UnexpectedTypeError',
    'CapacityError',
    'CryptoError',
    'EncryptionFailedError',
    'SigningFailedError',
    'DecryptionFailedError',
    'SignatureInvalidError',
    'CURRENT_PROTOCOL_VERSION',
    'HEADER_LENGTH',
    'Message',
    'MessageType',
    'write_header',
    'MESSAGE_DIGEST_ALGORITHM',
    'MIN_BODY_LENGTH',
    'RSAKeyPair',
    'SessionMessage',
    'write_fields',
    'oaep_capacity',
    'create_session_message',
    'open_session_message',
]
