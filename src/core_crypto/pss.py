"""
EMSA-PSS Padding (RFC 8017, Section 9.1)

Builds and checks the PSS-encoded block that sits between a message digest
and the raw RSA transform.

Encoding (emBits = modBits - 1):
    M'  = 0x00 * 8 || mHash || salt
    H   = Hash(M')
    DB  = PS (zeros) || 0x01 || salt
    EM  = (DB xor MGF1(H)) || H || 0xbc

The returned block is always ceil(modBits / 8) bytes. When modBits - 1 is
a multiple of 8 the encoded message is one byte shorter and is prefixed
with a zero byte, which is what the raw transform expects.
"""

import hmac
import secrets
from typing import Optional

from cryptography.hazmat.primitives import hashes


# Salt length conventions
SALT_LENGTH_DIGEST = -1  # salt as long as the digest
SALT_LENGTH_AUTO = -2    # verify only: recover salt length from the block
SALT_LENGTH_MAX = -3     # pad only: largest salt the block can hold

TRAILER = 0xBC


def compute_digest(data: bytes, algorithm: hashes.HashAlgorithm) -> bytes:
    """Hash data with the given algorithm."""
    ctx = hashes.Hash(algorithm)
    ctx.update(data)
    return ctx.finalize()


def mgf1(seed: bytes, length: int, algorithm: hashes.HashAlgorithm) -> bytes:
    """
    Mask generation function MGF1.

    Args:
        seed: Seed bytes
        length: Requested mask length
        algorithm: Hash algorithm

    Returns:
        Mask of exactly `length` bytes
    """
    mask = bytearray()
    counter = 0
    while len(mask) < length:
        mask += compute_digest(seed + counter.to_bytes(4, 'big'), algorithm)
        counter += 1
    return bytes(mask[:length])


def _encoded_sizes(mod_bits: int):
    """Return (em_bits, em_len, block_len, msbits) for a modulus size."""
    em_bits = mod_bits - 1
    em_len = (em_bits + 7) // 8
    block_len = (mod_bits + 7) // 8
    return em_bits, em_len, block_len, em_bits & 7


def _hash_prime(digest: bytes, salt: bytes,
                algorithm: hashes.HashAlgorithm) -> bytes:
    return compute_digest(b'\x00' * 8 + digest + salt, algorithm)


def pad(digest: bytes,
        mod_bits: int,
        algorithm: hashes.HashAlgorithm,
        salt_length: int = SALT_LENGTH_DIGEST,
        salt: Optional[bytes] = None) -> bytes:
    """
    PSS-encode a message digest for a modulus of `mod_bits` bits.

    Args:
        digest: Message digest (must match the algorithm's digest size)
        mod_bits: Bit length of the RSA modulus
        algorithm: Hash algorithm used for the digest, H and MGF1
        salt_length: Explicit salt length or SALT_LENGTH_DIGEST/SALT_LENGTH_MAX
        salt: Fixed salt; random when None (salt_length is then ignored)

    Returns:
        Padded block of ceil(mod_bits / 8) bytes

    Raises:
        ValueError: If the digest size is wrong or the modulus is too small
    """
    h_len = algorithm.digest_size
    if len(digest) != h_len:
        raise ValueError(f"Digest must be {h_len} bytes, got {len(digest)}")

    em_bits, em_len, block_len, _ = _encoded_sizes(mod_bits)

    if salt is None:
        if salt_length == SALT_LENGTH_DIGEST:
            salt_length = h_len
        elif salt_length == SALT_LENGTH_MAX:
            salt_length = em_len - h_len - 2
        elif salt_length < 0:
            raise ValueError(f"Invalid salt length: {salt_length}")
        if salt_length < 0:
            raise ValueError("Modulus too small for PSS encoding")
        salt = secrets.token_bytes(salt_length)

    if em_len < h_len + len(salt) + 2:
        raise ValueError("Modulus too small for PSS encoding")

    h = _hash_prime(digest, salt, algorithm)

    db = bytearray(em_len - len(salt) - h_len - 2)
    db.append(0x01)
    db += salt

    db_mask = mgf1(h, em_len - h_len - 1, algorithm)
    masked_db = bytearray(a ^ b for a, b in zip(db, db_mask))

    # Clear the leftmost 8 * emLen - emBits bits
    masked_db[0] &= 0xFF >> (8 * em_len - em_bits)

    encoded = bytes(masked_db) + h + bytes([TRAILER])

    return b'\x00' * (block_len - em_len) + encoded


def verify(digest: bytes,
           block: bytes,
           mod_bits: int,
           algorithm: hashes.HashAlgorithm,
           salt_length: int = SALT_LENGTH_AUTO) -> bool:
    """
    Check a PSS-encoded block against a message digest.

    Args:
        digest: Recomputed message digest
        block: Padded block recovered by the raw public transform
        mod_bits: Bit length of the RSA modulus
        algorithm: Hash algorithm used for the digest, H and MGF1
        salt_length: Explicit salt length, SALT_LENGTH_DIGEST or SALT_LENGTH_AUTO

    Returns:
        True if the block is a valid encoding of the digest, False otherwise
    """
    h_len = algorithm.digest_size
    if len(digest) != h_len:
        return False

    em_bits, em_len, block_len, msbits = _encoded_sizes(mod_bits)
    if len(block) != block_len:
        return False

    # Bits above emBits must be zero
    if block[0] & (0xFF << msbits) & 0xFF:
        return False
    encoded = block[block_len - em_len:]

    if em_len < h_len + 2:
        return False
    if encoded[-1] != TRAILER:
        return False

    masked_db = encoded[:em_len - h_len - 1]
    h = encoded[em_len - h_len - 1:-1]

    db_mask = mgf1(h, len(masked_db), algorithm)
    db = bytearray(a ^ b for a, b in zip(masked_db, db_mask))
    db[0] &= 0xFF >> (8 * em_len - em_bits)

    index = 0
    while index < len(db) and db[index] == 0:
        index += 1
    if index == len(db) or db[index] != 0x01:
        return False

    salt = bytes(db[index + 1:])

    if salt_length == SALT_LENGTH_DIGEST:
        salt_length = h_len
    if salt_length >= 0 and len(salt) != salt_length:
        return False
    if salt_length < 0 and salt_length != SALT_LENGTH_AUTO:
        return False

    return hmac.compare_digest(h, _hash_prime(digest, salt, algorithm))
