"""
Unit tests for the Session Message module.

Tests:
- Common message header
- Length-prefixed framing (write and parse)
- Seal, signature check and decryption
"""

import logging
from unittest.mock import patch

import pytest

from src.core_crypto import rsa_math
from src.messaging.errors import (
    BadLengthError, CapacityError, DecryptionFailedError, EncryptionFailedError,
    FormatError, SignatureInvalidError, SigningFailedError, UnexpectedTypeError,
    UnsupportedVersionError
)
from src.messaging.message import HEADER_LENGTH, Message, MessageType, write_header
from src.messaging.session_message import (
    RSAKeyPair, SessionMessage, oaep_capacity, write_fields
)


class TestMessageHeader:
    """Tests for the common header."""

    def test_write_header(self):
        """Header is version, type and big-endian body length."""
        buf = bytearray(4)
        write_header(buf, 1, MessageType.SESSION, 10)
        assert bytes(buf) == b"\x01\x05\x00\x0a"

    def test_write_header_small_buffer(self):
        """A buffer shorter than the header is rejected."""
        with pytest.raises(CapacityError):
            write_header(bytearray(3), 1, MessageType.SESSION, 0)

    def test_write_header_body_too_long(self):
        """Body length must fit 16 bits."""
        with pytest.raises(BadLengthError):
            write_header(bytearray(4), 1, MessageType.SESSION, 0x10000)

    def test_parse_header(self):
        """Parsed header exposes its fields."""
        message = Message.from_bytes(b"\x01\x05\x00\x02ab")
        assert message.version == 1
        assert message.type == MessageType.SESSION
        assert message.length == 2
        assert message.total_length() == HEADER_LENGTH + 2
        assert message.body == b"ab"

    def test_unknown_type_kept_as_int(self):
        """Unknown type tags are reported as plain integers."""
        message = Message.from_bytes(b"\x01\x42\x00\x00")
        assert message.type == 0x42

    def test_short_buffer_rejected(self):
        """Buffers shorter than the header are rejected."""
        with pytest.raises(BadLengthError):
            Message.from_bytes(b"\x01\x05\x00")

    def test_declared_body_longer_than_buffer(self):
        """Declared body must be present."""
        with pytest.raises(BadLengthError):
            Message.from_bytes(b"\x01\x05\x00\x03ab")

    def test_unsupported_version(self):
        """Unknown versions are a format error."""
        with pytest.raises(UnsupportedVersionError):
            Message.from_bytes(b"\x02\x05\x00\x00")
        with pytest.raises(FormatError):
            Message.from_bytes(b"\x00\x05\x00\x00")


class TestWriteFields:
    """Tests for framing ciphertext and signature."""

    def test_layout(self):
        """Fields are length-prefixed after the header."""
        buf = bytearray(13)
        written = write_fields(buf, b"abc", b"de")
        assert written == 13
        assert bytes(buf) == b"\x01\x05\x00\x09" + b"\x00\x03abc" + b"\x00\x02de"

    def test_larger_buffer(self):
        """Only the message prefix of a larger buffer is written."""
        buf = bytearray(20)
        written = write_fields(buf, b"abc", b"de", MessageType.SESSION_REQUEST)
        assert written == 13
        assert buf[1] == MessageType.SESSION_REQUEST
        assert bytes(buf[13:]) == b"\x00" * 7

    def test_memoryview_buffer(self):
        """A writable memoryview is accepted."""
        backing = bytearray(13)
        write_fields(memoryview(backing), b"abc", b"de")
        assert SessionMessage.from_bytes(bytes(backing)).ciphertext == b"abc"

    def test_capacity_error_leaves_buffer_untouched(self):
        """No partial write on a too-small buffer."""
        buf = bytearray(b"\xaa" * 12)
        with pytest.raises(CapacityError):
            write_fields(buf, b"abc", b"de")
        assert buf == bytearray(b"\xaa" * 12)

    def test_field_too_long(self):
        """Fields longer than 65535 bytes are rejected, not truncated."""
        with pytest.raises(BadLengthError):
            write_fields(bytearray(0x20000), bytes(0x10000), b"")
        with pytest.raises(BadLengthError):
            write_fields(bytearray(0x20000), b"", bytes(0x10000))

    def test_body_too_long(self):
        """The body length must fit the header."""
        with pytest.raises(BadLengthError):
            write_fields(bytearray(0x20000), bytes(0xFFFF), b"x")

    def test_custom_header_writer(self):
        """The header writer receives version, type and body length."""
        calls = []

        def header_writer(buf, version, message_type, body_length):
            calls.append((version, message_type, body_length))
            write_header(buf, version, message_type, body_length)

        write_fields(bytearray(13), b"abc", b"de", MessageType.SESSION, header_writer)
        assert calls == [(1, MessageType.SESSION, 9)]

    def test_failing_header_writer_leaves_buffer_untouched(self):
        """No partial frame is left behind when the header writer fails."""
        def header_writer(buf, version, message_type, body_length):
            raise ValueError("header rejected")

        buf = bytearray(14)
        with pytest.raises(ValueError):
            write_fields(buf, b"abc", b"def", MessageType.SESSION, header_writer)
        assert buf == bytearray(14)


class TestParse:
    """Tests for parsing session messages."""

    def test_parse_fields(self):
        """Parsed view exposes ciphertext and signature."""
        message = SessionMessage.from_bytes(b"\x01\x05\x00\x09\x00\x03abc\x00\x02de")
        assert message.ciphertext == b"abc"
        assert message.ciphertext_size == 3
        assert message.ciphertext_signature == b"de"
        assert message.ciphertext_signature_size == 2
        assert message.type == MessageType.SESSION

    def test_zero_length_fields(self):
        """Empty fields are structurally valid."""
        message = SessionMessage.from_bytes(b"\x01\x05\x00\x04\x00\x00\x00\x00")
        assert message.ciphertext == b""
        assert message.ciphertext_signature == b""

    def test_body_shorter_than_length_fields(self):
        """Body must hold both length fields."""
        with pytest.raises(BadLengthError):
            SessionMessage.from_bytes(b"\x01\x05\x00\x03\x00\x00\x00")

    def test_ciphertext_past_body(self):
        """Declared ciphertext must fit in the body."""
        with pytest.raises(BadLengthError):
            SessionMessage.from_bytes(b"\x01\x05\x00\x04\x00\x05\x00\x00")

    def test_signature_size_mismatch(self):
        """Declared signature must end the body exactly."""
        with pytest.raises(BadLengthError):
            SessionMessage.from_bytes(b"\x01\x05\x00\x09\x00\x03abc\x00\x03de")
        with pytest.raises(BadLengthError):
            SessionMessage.from_bytes(b"\x01\x05\x00\x09\x00\x03abc\x00\x01de")

    def test_trailing_bytes_rejected(self):
        """Bytes past the declared body are rejected."""
        with pytest.raises(BadLengthError):
            SessionMessage.from_bytes(b"\x01\x05\x00\x09\x00\x03abc\x00\x02de\x00")

    def test_rejection_is_logged(self, caplog):
        """Rejections are logged at debug level."""
        caplog.set_level(logging.DEBUG, logger="src.messaging.session_message")
        with pytest.raises(BadLengthError):
            SessionMessage.from_bytes(b"\x01\x05\x00\x04\x00\x05\x00\x00")
        assert "Rejected session message" in caplog.text

    def test_expected_type(self):
        """A given type tag must match the header."""
        data = b"\x01\x05\x00\x09\x00\x03abc\x00\x02de"
        assert SessionMessage.from_bytes(data, MessageType.SESSION).ciphertext == b"abc"

    def test_unexpected_type_rejected(self):
        """A DATA-tagged buffer is not accepted as a session message."""
        data = b"\x01\x00\x00\x09\x00\x03abc\x00\x02de"
        with pytest.raises(UnexpectedTypeError):
            SessionMessage.from_bytes(data, MessageType.SESSION)
        with pytest.raises(FormatError):
            SessionMessage(data, MessageType.SESSION)

    def test_type_not_checked_by_default(self):
        """Without an expected type, the caller dispatches on the tag."""
        data = b"\x01\x00\x00\x09\x00\x03abc\x00\x02de"
        assert SessionMessage.from_bytes(data).type == MessageType.DATA


class TestSeal:
    """Tests for building session messages."""

    def test_sealed_size(self, sealed):
        """Header, two length fields, 256-byte ciphertext and signature."""
        assert len(sealed) == HEADER_LENGTH + 2 + 256 + 2 + 256
        message = SessionMessage.from_bytes(sealed)
        assert message.ciphertext_size == 256
        assert message.ciphertext_signature_size == 256
        assert message.type == MessageType.SESSION

    def test_message_type(self, enc_keys, sig_keys):
        """The type tag is a parameter."""
        data = SessionMessage.seal(b"x", enc_keys.public_key, sig_keys.private_key,
                                   MessageType.SESSION_REQUEST)
        assert SessionMessage.from_bytes(data).type == MessageType.SESSION_REQUEST

    def test_probabilistic(self, enc_keys, sig_keys):
        """Sealing the same cleartext twice gives different messages."""
        first = SessionMessage.seal(b"same", enc_keys.public_key, sig_keys.private_key)
        second = SessionMessage.seal(b"same", enc_keys.public_key, sig_keys.private_key)
        assert first != second

    def test_write_into_buffer(self, enc_keys, sig_keys):
        """write() fills a caller buffer and returns the length."""
        buf = bytearray(600)
        written = SessionMessage.write(buf, b"secret", enc_keys.public_key, sig_keys.private_key)
        assert written == 520
        message = SessionMessage.from_bytes(bytes(buf[:written]))
        assert message.decrypt(enc_keys.private_key) == b"secret"

    def test_write_small_buffer(self, enc_keys, sig_keys):
        """A too-small buffer aborts without writing."""
        buf = bytearray(519)
        with pytest.raises(CapacityError):
            SessionMessage.write(buf, b"secret", enc_keys.public_key, sig_keys.private_key)
        assert buf == bytearray(519)

    def test_oaep_capacity(self, enc_keys, sig_keys):
        """Cleartext up to the OAEP capacity is accepted, beyond it fails."""
        capacity = oaep_capacity(enc_keys.public_key)
        assert capacity == 256 - 42

        data = SessionMessage.seal(b"k" * capacity, enc_keys.public_key, sig_keys.private_key)
        assert SessionMessage.from_bytes(data).decrypt(enc_keys.private_key) == b"k" * capacity

        with pytest.raises(EncryptionFailedError):
            SessionMessage.seal(b"k" * (capacity + 1), enc_keys.public_key, sig_keys.private_key)

    def test_empty_cleartext(self, enc_keys, sig_keys):
        """An empty cleartext round-trips."""
        data = SessionMessage.seal(b"", enc_keys.public_key, sig_keys.private_key)
        assert SessionMessage.from_bytes(data).decrypt(enc_keys.private_key) == b""

    def test_private_encryption_key(self, enc_keys, sig_keys):
        """A private key can stand in for its public half."""
        data = SessionMessage.seal(b"secret", enc_keys.private_key, sig_keys.private_key)
        assert SessionMessage.from_bytes(data).decrypt(enc_keys.private_key) == b"secret"

    def test_public_signing_key_rejected(self, enc_keys, sig_keys):
        """Signing needs a private key."""
        with pytest.raises(SigningFailedError):
            SessionMessage.seal(b"secret", enc_keys.public_key, sig_keys.public_key)

    def test_mixed_key_sizes(self, enc_keys):
        """Signature length follows the signing key."""
        small = RSAKeyPair.generate(1024)
        data = SessionMessage.seal(b"secret", enc_keys.public_key, small.private_key)
        assert len(data) == HEADER_LENGTH + 2 + 256 + 2 + 128
        SessionMessage.from_bytes(data).check_signature(small.public_key)

    def test_faulty_signature_not_emitted(self, enc_keys, sig_keys):
        """A fault in the signing exponentiation fails the seal."""
        p = sig_keys.private_key.private_numbers().p
        real_mod_exp = rsa_math.mod_exp

        def faulty(base, exponent, modulus):
            result = real_mod_exp(base, exponent, modulus)
            return result ^ 1 if modulus == p else result

        buf = bytearray(520)
        with patch.object(rsa_math, 'mod_exp', side_effect=faulty):
            with pytest.raises(SigningFailedError):
                SessionMessage.write(buf, b"secret", enc_keys.public_key,
                                     sig_keys.private_key)
        assert buf == bytearray(520)


class TestVerifyAndDecrypt:
    """Tests for authenticating and opening session messages."""

    def test_check_signature(self, sealed, sig_keys):
        """The sender's public key verifies."""
        message = SessionMessage.from_bytes(sealed)
        message.check_signature(sig_keys.public_key)
        assert message.has_valid_signature(sig_keys.public_key)

    def test_wrong_key_rejected(self, sealed, enc_keys, other_keys):
        """Any other public key fails."""
        message = SessionMessage.from_bytes(sealed)
        for key in (enc_keys.public_key, other_keys.public_key):
            with pytest.raises(SignatureInvalidError):
                message.check_signature(key)
            assert not message.has_valid_signature(key)

    def test_decrypt(self, sealed, enc_keys):
        """The recipient's private key decrypts."""
        message = SessionMessage.from_bytes(sealed)
        assert message.decrypt(enc_keys.private_key) == b"hello-session-key"

    def test_size_query(self, sealed, enc_keys):
        """Without a buffer the key size is returned."""
        message = SessionMessage.from_bytes(sealed)
        assert message.get_cleartext(enc_keys.private_key) == 256
        assert message.get_cleartext(enc_keys.private_key) == enc_keys.key_size

    def test_get_cleartext_into_buffer(self, sealed, enc_keys):
        """Cleartext is written into the caller buffer."""
        message = SessionMessage.from_bytes(sealed)
        buf = bytearray(message.get_cleartext(enc_keys.private_key))
        length = message.get_cleartext(enc_keys.private_key, buf)
        assert length == len(b"hello-session-key")
        assert bytes(buf[:length]) == b"hello-session-key"

    def test_get_cleartext_small_buffer(self, sealed, enc_keys):
        """A too-small buffer fails and is left untouched."""
        message = SessionMessage.from_bytes(sealed)
        buf = bytearray(5)
        with pytest.raises(DecryptionFailedError):
            message.get_cleartext(enc_keys.private_key, buf)
        assert buf == bytearray(5)

    def test_wrong_decryption_key(self, sealed, other_keys):
        """Another private key cannot decrypt."""
        message = SessionMessage.from_bytes(sealed)
        with pytest.raises(DecryptionFailedError):
            message.decrypt(other_keys.private_key)

    def test_public_decryption_key_rejected(self, sealed, enc_keys):
        """Decryption needs a private key."""
        message = SessionMessage.from_bytes(sealed)
        with pytest.raises(DecryptionFailedError):
            message.decrypt(enc_keys.public_key)
