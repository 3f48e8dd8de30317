"""
Session Message Module

Implements the signed-and-encrypted session message:
- RSA-OAEP encryption of a small secret for the recipient
- SHA-256 digest of the ciphertext
- Explicit EMSA-PSS padding followed by a raw RSA private transform
- Strict length-prefixed framing after the common header

Message Format:
    [header (4 bytes) | ct_len (2) | ciphertext | sig_len (2) | signature]

Security features:
- Sign hash of ciphertext, not plaintext
- Framing is validated before any cryptographic operation runs
- Declared lengths must match the buffer exactly (no trailing bytes)
"""

import logging
import struct
from dataclasses import dataclass
from typing import Callable, Optional, Union

from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import padding, rsa

from ..core_crypto import pss
from ..core_crypto.rsa_math import (
    modulus_bits,
    modulus_size,
    raw_private_transform,
    raw_public_transform,
)
from .errors import (
    BadLengthError,
    CapacityError,
    DecryptionFailedError,
    EncryptionFailedError,
    SignatureInvalidError,
    SigningFailedError,
    UnexpectedTypeError,
)
from .message import (
    CURRENT_PROTOCOL_VERSION,
    HEADER_LENGTH,
    MAX_BODY_LENGTH,
    Buffer,
    Message,
    MessageType,
    write_header,
)

logger = logging.getLogger(__name__)


# Constants
LENGTH_FORMAT = '>H'
LENGTH_SIZE = struct.calcsize(LENGTH_FORMAT)  # 2 bytes
MIN_BODY_LENGTH = 2 * LENGTH_SIZE             # the two length fields
MAX_FIELD_LENGTH = 0xFFFF

MESSAGE_DIGEST_ALGORITHM = hashes.SHA256()
OAEP_HASH_ALGORITHM = hashes.SHA1()           # RSA_PKCS1_OAEP_PADDING parameters
DEFAULT_KEY_SIZE = 2048
PUBLIC_EXPONENT = 65537

RSAKey = Union[rsa.RSAPublicKey, rsa.RSAPrivateKey]
HeaderWriter = Callable[[Buffer, int, int, int], None]


def _oaep() -> padding.OAEP:
    return padding.OAEP(
        mgf=padding.MGF1(algorithm=OAEP_HASH_ALGORITHM),
        algorithm=OAEP_HASH_ALGORITHM,
        label=None
    )


def _as_public_key(key: RSAKey) -> rsa.RSAPublicKey:
    if isinstance(key, rsa.RSAPrivateKey):
        return key.public_key()
    if isinstance(key, rsa.RSAPublicKey):
        return key
    raise TypeError(f"RSA key required, got {type(key).__name__}")


def oaep_capacity(key: RSAKey) -> int:
    """Largest cleartext, in bytes, the key can encrypt with OAEP."""
    return modulus_size(key) - 2 * OAEP_HASH_ALGORITHM.digest_size - 2


@dataclass
class RSAKeyPair:
    """RSA key pair container."""
    private_key: Optional[rsa.RSAPrivateKey]
    public_key: rsa.RSAPublicKey

    @classmethod
    def generate(cls, bits: int = DEFAULT_KEY_SIZE) -> 'RSAKeyPair':
        """Generate a new RSA key pair."""
        private_key = rsa.generate_private_key(
            public_exponent=PUBLIC_EXPONENT,
            key_size=bits
        )
        return cls(private_key, private_key.public_key())

    @property
    def key_size(self) -> int:
        """Modulus size in bytes."""
        return modulus_size(self.public_key)

    def public_bytes(self) -> bytes:
        """Get public key as DER SubjectPublicKeyInfo."""
        return self.public_key.public_bytes(
            encoding=serialization.Encoding.DER,
            format=serialization.PublicFormat.SubjectPublicKeyInfo
        )

    def private_bytes(self) -> bytes:
        """Get private key as DER PKCS#8."""
        if self.private_key is None:
            raise ValueError("Key pair has no private key")
        return self.private_key.private_bytes(
            encoding=serialization.Encoding.DER,
            format=serialization.PrivateFormat.PKCS8,
            encryption_algorithm=serialization.NoEncryption()
        )

    @classmethod
    def from_public_bytes(cls, data: bytes) -> 'RSAKeyPair':
        """Create RSAKeyPair from DER public key bytes (public key only)."""
        public_key = serialization.load_der_public_key(data)
        if not isinstance(public_key, rsa.RSAPublicKey):
            raise ValueError("Not an RSA public key")
        return cls(None, public_key)

    @classmethod
    def from_private_bytes(cls, data: bytes,
                           password: Optional[bytes] = None) -> 'RSAKeyPair':
        """Create RSAKeyPair from DER PKCS#8 private key bytes."""
        private_key = serialization.load_der_private_key(data, password=password)
        if not isinstance(private_key, rsa.RSAPrivateKey):
            raise ValueError("Not an RSA private key")
        return cls(private_key, private_key.public_key())


def write_fields(buf: Buffer,
                 ciphertext: bytes,
                 ciphertext_signature: bytes,
                 message_type: int = MessageType.SESSION,
                 header_writer: HeaderWriter = write_header) -> int:
    """
    Frame a ciphertext and its signature into `buf`.

    Writes both length-prefixed fields, then lets `header_writer` stamp the
    common header. `buf` is left untouched if any step fails, including the
    header writer.

    Args:
        buf: Writable buffer; its length is the capacity
        ciphertext: Encrypted payload
        ciphertext_signature: Signature over the ciphertext
        message_type: Type tag for the header
        header_writer: Callable stamping (buf, version, type, body_length)

    Returns:
        Number of bytes written (header included)

    Raises:
        BadLengthError: If a field or the body does not fit in 16 bits
        CapacityError: If buf is too small
    """
    if len(ciphertext) > MAX_FIELD_LENGTH:
        raise BadLengthError(f"Ciphertext too long: {len(ciphertext)} bytes")
    if len(ciphertext_signature) > MAX_FIELD_LENGTH:
        raise BadLengthError(f"Signature too long: {len(ciphertext_signature)} bytes")

    body_length = MIN_BODY_LENGTH + len(ciphertext) + len(ciphertext_signature)
    if body_length > MAX_BODY_LENGTH:
        raise BadLengthError(f"Body too long: {body_length} bytes")

    total_length = HEADER_LENGTH + body_length
    if len(buf) < total_length:
        raise CapacityError(f"Buffer too small: {len(buf)} < {total_length}")

    # Frame is staged locally and copied into buf only once complete
    frame = bytearray(total_length)

    offset = HEADER_LENGTH
    struct.pack_into(LENGTH_FORMAT, frame, offset, len(ciphertext))
    offset += LENGTH_SIZE
    frame[offset:offset + len(ciphertext)] = ciphertext
    offset += len(ciphertext)

    struct.pack_into(LENGTH_FORMAT, frame, offset, len(ciphertext_signature))
    offset += LENGTH_SIZE
    frame[offset:offset + len(ciphertext_signature)] = ciphertext_signature

    header_writer(frame, CURRENT_PROTOCOL_VERSION, message_type, body_length)

    buf[:total_length] = frame

    return total_length


def _encrypt(cleartext: bytes, enc_key: RSAKey) -> bytes:
    public_key = _as_public_key(enc_key)
    try:
        return public_key.encrypt(bytes(cleartext), _oaep())
    except ValueError as exc:
        logger.debug(
            f"Encryption failed: {len(cleartext)} bytes, "
            f"capacity {oaep_capacity(public_key)}"
        )
        raise EncryptionFailedError("cleartext encryption failed") from exc


def _sign(ciphertext: bytes, sig_key: rsa.RSAPrivateKey) -> bytes:
    if not isinstance(sig_key, rsa.RSAPrivateKey):
        raise SigningFailedError("Private key required for signing")

    digest = pss.compute_digest(ciphertext, MESSAGE_DIGEST_ALGORITHM)

    try:
        padded = pss.pad(digest, modulus_bits(sig_key), MESSAGE_DIGEST_ALGORITHM)
        return raw_private_transform(padded, sig_key)
    except ValueError as exc:
        raise SigningFailedError("ciphertext signature failed") from exc


class SessionMessage(Message):
    """
    Read-only view over a session message.

    The framing is validated once, eagerly, when the view is built:
    1. no bytes past the declared body
    2. body holds both length fields
    3. body holds the declared ciphertext
    4. body holds exactly the ciphertext and the declared signature

    The header type tag is only checked when `message_type` is given;
    otherwise callers dispatch on `Message.type` before building the view.

    Example:
        data = SessionMessage.seal(b"secret", bob.public_key, alice.private_key)

        message = SessionMessage.from_bytes(data, MessageType.SESSION)
        message.check_signature(alice.public_key)
        cleartext = message.decrypt(bob.private_key)
    """

    def __init__(self, data: bytes, message_type: Optional[int] = None):
        super().__init__(data)

        if message_type is not None and self._type != message_type:
            logger.debug(
                f"Rejected session message: type {self._type}, "
                f"expected {int(message_type)}"
            )
            raise UnexpectedTypeError(f"Unexpected message type: {self._type}")

        if len(self.data) != self.total_length():
            logger.debug(
                f"Rejected session message: {len(self.data)} bytes "
                f"for a declared total of {self.total_length()}"
            )
            raise BadLengthError("bad message length")

        if self.length < MIN_BODY_LENGTH:
            logger.debug(f"Rejected session message: body of {self.length} bytes")
            raise BadLengthError("bad message length")

        offset = HEADER_LENGTH
        ciphertext_size, = struct.unpack_from(LENGTH_FORMAT, self.data, offset)
        offset += LENGTH_SIZE

        if self.length < MIN_BODY_LENGTH + ciphertext_size:
            logger.debug(
                f"Rejected session message: ciphertext of {ciphertext_size} bytes "
                f"in a body of {self.length} bytes"
            )
            raise BadLengthError("bad message length")

        self._ciphertext = self.data[offset:offset + ciphertext_size]
        offset += ciphertext_size

        signature_size, = struct.unpack_from(LENGTH_FORMAT, self.data, offset)
        offset += LENGTH_SIZE

        if self.length != MIN_BODY_LENGTH + ciphertext_size + signature_size:
            logger.debug(
                f"Rejected session message: signature of {signature_size} bytes "
                f"does not match a body of {self.length} bytes"
            )
            raise BadLengthError("bad message length")

        self._ciphertext_signature = self.data[offset:offset + signature_size]

    @classmethod
    def from_bytes(cls, data: bytes,
                   message_type: Optional[int] = None) -> 'SessionMessage':
        """Parse and validate a session message from raw bytes."""
        return cls(data, message_type)

    @property
    def ciphertext(self) -> bytes:
        """Encrypted payload."""
        return self._ciphertext

    @property
    def ciphertext_size(self) -> int:
        return len(self._ciphertext)

    @property
    def ciphertext_signature(self) -> bytes:
        """Signature over the ciphertext."""
        return self._ciphertext_signature

    @property
    def ciphertext_signature_size(self) -> int:
        return len(self._ciphertext_signature)

    def check_signature(self, key: RSAKey) -> None:
        """
        Verify the ciphertext signature.

        Recomputes the ciphertext digest, recovers the padded block with a
        raw public transform and checks it as a PSS encoding with the salt
        length taken from the block.

        Args:
            key: Sender's public key (a private key's public half also works)

        Raises:
            SignatureInvalidError: If any step fails
        """
        public_key = _as_public_key(key)
        digest = pss.compute_digest(self._ciphertext, MESSAGE_DIGEST_ALGORITHM)

        try:
            padded = raw_public_transform(self._ciphertext_signature, public_key)
        except ValueError as exc:
            logger.debug(f"Signature rejected: {exc}")
            raise SignatureInvalidError("signature verification failed") from exc

        if not pss.verify(digest, padded, modulus_bits(public_key),
                          MESSAGE_DIGEST_ALGORITHM, pss.SALT_LENGTH_AUTO):
            logger.debug("Signature rejected: PSS verification failed")
            raise SignatureInvalidError("signature verification failed")

    def has_valid_signature(self, key: RSAKey) -> bool:
        """Check the signature without raising."""
        try:
            self.check_signature(key)
        except SignatureInvalidError:
            return False
        return True

    def get_cleartext(self, key: rsa.RSAPrivateKey,
                      buf: Optional[Buffer] = None) -> int:
        """
        Decrypt the ciphertext into `buf`.

        Args:
            key: Recipient's private key
            buf: Writable output buffer, or None to query the required size

        Returns:
            The key size in bytes when buf is None (an upper bound on the
            cleartext length), otherwise the cleartext length

        Raises:
            DecryptionFailedError: If OAEP unpadding fails or buf is too small
        """
        if buf is None:
            return modulus_size(key)

        cleartext = self.decrypt(key)
        if len(cleartext) > len(buf):
            raise DecryptionFailedError(
                f"Output buffer too small: {len(buf)} < {len(cleartext)}"
            )

        buf[:len(cleartext)] = cleartext
        return len(cleartext)

    def decrypt(self, key: rsa.RSAPrivateKey) -> bytes:
        """
        Decrypt the ciphertext.

        Args:
            key: Recipient's private key

        Returns:
            Cleartext bytes

        Raises:
            DecryptionFailedError: If OAEP unpadding fails
        """
        if not isinstance(key, rsa.RSAPrivateKey):
            raise DecryptionFailedError("Private key required for decryption")

        try:
            return key.decrypt(self._ciphertext, _oaep())
        except ValueError as exc:
            logger.debug("Decryption failed")
            raise DecryptionFailedError("ciphertext decryption failed") from exc

    @classmethod
    def write(cls, buf: Buffer,
              cleartext: bytes,
              enc_key: RSAKey,
              sig_key: rsa.RSAPrivateKey,
              message_type: int = MessageType.SESSION) -> int:
        """
        Encrypt, sign and frame a cleartext into `buf`.

        Steps: OAEP-encrypt with enc_key, digest the ciphertext, PSS-pad the
        digest, raw-sign the padded block with sig_key, then frame.

        Args:
            buf: Writable output buffer
            cleartext: Secret payload
            enc_key: Recipient's public key
            sig_key: Sender's private key
            message_type: Type tag for the header

        Returns:
            Number of bytes written

        Raises:
            EncryptionFailedError: If the cleartext exceeds the OAEP capacity
            SigningFailedError: If padding or the raw transform fails
            CapacityError: If buf is too small
        """
        ciphertext = _encrypt(cleartext, enc_key)
        ciphertext_signature = _sign(ciphertext, sig_key)

        return write_fields(buf, ciphertext, ciphertext_signature, message_type)

    @classmethod
    def seal(cls, cleartext: bytes,
             enc_key: RSAKey,
             sig_key: rsa.RSAPrivateKey,
             message_type: int = MessageType.SESSION) -> bytes:
        """Encrypt, sign and frame a cleartext into a new buffer."""
        ciphertext = _encrypt(cleartext, enc_key)
        ciphertext_signature = _sign(ciphertext, sig_key)

        buf = bytearray(
            HEADER_LENGTH + MIN_BODY_LENGTH
            + len(ciphertext) + len(ciphertext_signature)
        )
        write_fields(buf, ciphertext, ciphertext_signature, message_type)

        return bytes(buf)

    def __repr__(self) -> str:
        return (
            f"SessionMessage(type={self._type}, "
            f"ciphertext={self.ciphertext_size}B, "
            f"signature={self.ciphertext_signature_size}B)"
        )


def create_session_message(cleartext: bytes,
                           enc_key: RSAKey,
                           sig_key: rsa.RSAPrivateKey,
                           message_type: int = MessageType.SESSION) -> bytes:
    """
    One-shot function to create an encrypted, signed session message.

    Args:
        cleartext: Secret payload (at most oaep_capacity(enc_key) bytes)
        enc_key: Recipient's public key
        sig_key: Sender's private key
        message_type: Type tag for the header

    Returns:
        Framed message bytes
    """
    return SessionMessage.seal(cleartext, enc_key, sig_key, message_type)


def open_session_message(data: bytes,
                         sender_public_key: RSAKey,
                         recipient_private_key: rsa.RSAPrivateKey,
                         message_type: Optional[int] = MessageType.SESSION) -> bytes:
    """
    One-shot function to validate and decrypt a session message.

    Parses the framing, verifies the signature, then decrypts.

    Args:
        data: Framed message bytes
        sender_public_key: Sender's public key
        recipient_private_key: Recipient's private key
        message_type: Expected type tag, or None to accept any

    Returns:
        Decrypted cleartext

    Raises:
        FormatError: If the framing or type tag is invalid
        SignatureInvalidError: If the signature does not verify
        DecryptionFailedError: If decryption fails
    """
    message = SessionMessage.from_bytes(data, message_type)
    message.check_signature(sender_public_key)
    return message.decrypt(recipient_private_key)


# Self-test when run directly
if __name__ == "__main__":
    print("Session Message Module Test")
    print("=" * 70)

    # Test 1: Key pair generation
    print("\n[Test 1] Key pair generation (RSA-2048)")
    alice_keys = RSAKeyPair.generate()
    bob_keys = RSAKeyPair.generate()
    test1_pass = alice_keys.key_size == 256 and bob_keys.key_size == 256
    print(f"  Key size: {alice_keys.key_size} bytes")
    print(f"  OAEP capacity: {oaep_capacity(bob_keys.public_key)} bytes")
    print(f"  Status: {'✓ PASS' if test1_pass else '✗ FAIL'}")

    # Test 2: Seal and open
    print("\n[Test 2] Seal, verify and decrypt")
    cleartext = b"hello-session-key"
    data = SessionMessage.seal(cleartext, bob_keys.public_key, alice_keys.private_key)
    message = SessionMessage.from_bytes(data)
    valid = message.has_valid_signature(alice_keys.public_key)
    decrypted = message.decrypt(bob_keys.private_key)
    test2_pass = valid and decrypted == cleartext and len(data) == HEADER_LENGTH + 2 + 256 + 2 + 256
    print(f"  Message size: {len(data)} bytes")
    print(f"  Signature valid: {valid}")
    print(f"  Decrypted: {decrypted}")
    print(f"  Status: {'✓ PASS' if test2_pass else '✗ FAIL'}")

    # Test 3: Wrong sender key
    print("\n[Test 3] Wrong sender key rejected")
    test3_pass = not message.has_valid_signature(bob_keys.public_key)
    print(f"  Status: {'✓ PASS' if test3_pass else '✗ FAIL'}")

    # Test 4: Truncated buffer
    print("\n[Test 4] Truncated buffer rejected")
    try:
        SessionMessage.from_bytes(data[:-1])
        test4_pass = False
    except BadLengthError:
        test4_pass = True
    print(f"  Status: {'✓ PASS' if test4_pass else '✗ FAIL'}")

    all_passed = all([test1_pass, test2_pass, test3_pass, test4_pass])
    print("\n" + "=" * 70)
    print(f"Overall: {'All tests passed!' if all_passed else 'Some tests failed!'}")
