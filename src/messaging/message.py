"""
Generic Message Header

Every message on the wire starts with the same fixed header:

    [version (1 byte) | type (1 byte) | body length (2 bytes, big-endian)]

followed by exactly `body length` bytes whose layout depends on the type.
"""

import logging
import struct
from enum import IntEnum
from typing import Union

from .errors import BadLengthError, CapacityError, UnsupportedVersionError

logger = logging.getLogger(__name__)


# Constants
CURRENT_PROTOCOL_VERSION = 1
HEADER_FORMAT = '>BBH'
HEADER_LENGTH = struct.calcsize(HEADER_FORMAT)  # 4 bytes
MAX_BODY_LENGTH = 0xFFFF

Buffer = Union[bytearray, memoryview]


class MessageType(IntEnum):
    """Message type tags carried in the header."""
    DATA = 0x00
    HELLO_REQUEST = 0x01
    HELLO_RESPONSE = 0x02
    PRESENTATION = 0x03
    SESSION_REQUEST = 0x04
    SESSION = 0x05
    KEEP_ALIVE = 0xFF


def write_header(buf: Buffer, version: int, message_type: int,
                 body_length: int) -> None:
    """
    Stamp the common header at the start of `buf`.

    Args:
        buf: Writable buffer, at least HEADER_LENGTH bytes
        version: Protocol version
        message_type: Message type tag
        body_length: Number of body bytes following the header

    Raises:
        CapacityError: If buf is shorter than the header
        BadLengthError: If body_length does not fit in 16 bits
    """
    if len(buf) < HEADER_LENGTH:
        raise CapacityError(
            f"Buffer too small for header: {len(buf)} < {HEADER_LENGTH}"
        )
    if not 0 <= body_length <= MAX_BODY_LENGTH:
        raise BadLengthError(f"Body length out of range: {body_length}")

    struct.pack_into(HEADER_FORMAT, buf, 0, version, int(message_type), body_length)


class Message:
    """
    Read-only view over a received message.

    The header is checked once at construction; the view never changes
    afterwards.
    """

    def __init__(self, data: bytes):
        data = bytes(data)

        if len(data) < HEADER_LENGTH:
            logger.debug(f"Rejected message: {len(data)} bytes is shorter than the header")
            raise BadLengthError("bad message length")

        version, message_type, length = struct.unpack_from(HEADER_FORMAT, data, 0)

        if version != CURRENT_PROTOCOL_VERSION:
            logger.debug(f"Rejected message: unsupported version {version}")
            raise UnsupportedVersionError(f"Unsupported version: {version}")

        if len(data) - HEADER_LENGTH < length:
            logger.debug(
                f"Rejected message: body length {length} exceeds "
                f"{len(data) - HEADER_LENGTH} available bytes"
            )
            raise BadLengthError("bad message length")

        self._data = data
        self._version = version
        self._type = message_type
        self._length = length

    @classmethod
    def from_bytes(cls, data: bytes) -> 'Message':
        """Parse a message header from raw bytes."""
        return cls(data)

    @property
    def data(self) -> bytes:
        """Raw buffer the view was built from."""
        return self._data

    @property
    def version(self) -> int:
        """Protocol version."""
        return self._version

    @property
    def type(self) -> int:
        """Message type tag (a MessageType when the tag is known)."""
        try:
            return MessageType(self._type)
        except ValueError:
            return self._type

    @property
    def length(self) -> int:
        """Declared body length."""
        return self._length

    def total_length(self) -> int:
        """Header plus declared body length."""
        return HEADER_LENGTH + self._length

    @property
    def body(self) -> bytes:
        """The declared body bytes."""
        return self._data[HEADER_LENGTH:HEADER_LENGTH + self._length]

    def __repr__(self) -> str:
        return f"Message(version={self._version}, type={self._type}, length={self._length})"
