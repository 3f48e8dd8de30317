"""
RSA Raw Transform Operations

Implements the unpadded RSA operations used by the session message envelope:
- Modular exponentiation (square-and-multiply algorithm)
- Big-endian integer <-> bytes conversion
- Raw public-key transform (signature recovery)
- Raw private-key transform with CRT and base blinding (signature generation)

The keys are `cryptography` RSA key objects; only their numbers are used
here. No padding is applied: callers pad and unpad explicitly (see pss.py).

Note: This implementation avoids using Python's built-in pow(a, b, mod).
      All modular exponentiation uses the square-and-multiply algorithm.
"""

import secrets
from typing import Optional, Tuple, Union

from cryptography.hazmat.primitives.asymmetric import rsa


RSAKey = Union[rsa.RSAPublicKey, rsa.RSAPrivateKey]


def mod_exp(base: int, exponent: int, modulus: int) -> int:
    """
    Modular exponentiation using square-and-multiply algorithm.

    Computes (base^exponent) mod modulus with the right-to-left binary
    method: for each bit of the exponent, multiply the result by the base
    when the bit is set, then square the base.

    Args:
        base: The base number
        exponent: The exponent (must be non-negative)
        modulus: The modulus (must be positive)

    Returns:
        (base^exponent) mod modulus

    Raises:
        ValueError: If exponent < 0 or modulus <= 0
    """
    if exponent < 0:
        raise ValueError("Exponent must be non-negative")
    if modulus <= 0:
        raise ValueError("Modulus must be positive")
    if modulus == 1:
        return 0

    if exponent == 0:
        return 1

    base = base % modulus
    if base == 0:
        return 0

    result = 1
    while exponent > 0:
        if exponent & 1:
            result = (result * base) % modulus
        base = (base * base) % modulus
        exponent >>= 1

    return result


def gcd(a: int, b: int) -> int:
    """Greatest common divisor using the Euclidean algorithm."""
    a, b = abs(a), abs(b)
    while b:
        a, b = b, a % b
    return a


def extended_gcd(a: int, b: int) -> Tuple[int, int, int]:
    """
    Extended Euclidean Algorithm.

    Finds integers x, y such that: a*x + b*y = gcd(a, b)

    Iterative, so 2048-bit operands stay within the recursion limit.

    Returns:
        Tuple (gcd, x, y) where a*x + b*y = gcd
    """
    x0, x1, y0, y1 = 1, 0, 0, 1
    while b:
        q = a // b
        a, b = b, a - q * b
        x0, x1 = x1, x0 - q * x1
        y0, y1 = y1, y0 - q * y1
    return a, x0, y0


def mod_inverse(a: int, m: int) -> int:
    """
    Modular multiplicative inverse: x such that (a * x) mod m = 1.

    Raises:
        ValueError: If the inverse doesn't exist (gcd(a, m) != 1)
    """
    g, x, _ = extended_gcd(a % m, m)
    if g != 1:
        raise ValueError("Modular inverse doesn't exist")
    return x % m


def bytes_to_int(data: bytes) -> int:
    """Convert bytes to integer (big-endian)."""
    return int.from_bytes(data, byteorder='big')


def int_to_bytes(n: int, length: Optional[int] = None) -> bytes:
    """Convert integer to bytes (big-endian)."""
    if length is None:
        length = (n.bit_length() + 7) // 8
        length = max(1, length)  # At least 1 byte
    return n.to_bytes(length, byteorder='big')


def _public_numbers(key: RSAKey) -> rsa.RSAPublicNumbers:
    if isinstance(key, rsa.RSAPrivateKey):
        return key.private_numbers().public_numbers
    return key.public_numbers()


def modulus_bits(key: RSAKey) -> int:
    """Exact bit length of the key's modulus."""
    return _public_numbers(key).n.bit_length()


def modulus_size(key: RSAKey) -> int:
    """Size of the key's modulus in bytes (the RSA block size)."""
    return (modulus_bits(key) + 7) // 8


def _block_to_int(data: bytes, n: int, size: int) -> int:
    if len(data) != size:
        raise ValueError(f"Block must be exactly {size} bytes, got {len(data)}")
    value = bytes_to_int(data)
    if value >= n:
        raise ValueError("Block value must be less than modulus n")
    return value


def raw_public_transform(data: bytes, key: RSAKey) -> bytes:
    """
    Unpadded RSA public-key operation: data^e mod n.

    Used to recover the padded block from a signature.

    Args:
        data: Input block, exactly modulus_size(key) bytes
        key: RSA public key (or private key, whose public half is used)

    Returns:
        Output block of modulus_size(key) bytes

    Raises:
        ValueError: If the block has the wrong size or is not below n
    """
    numbers = _public_numbers(key)
    size = modulus_size(key)
    value = _block_to_int(data, numbers.n, size)
    return int_to_bytes(mod_exp(value, numbers.e, numbers.n), size)


def _blinding_factor(n: int) -> int:
    while True:
        r = secrets.randbelow(n - 2) + 2
        if gcd(r, n) == 1:
            return r


def raw_private_transform(data: bytes, key: rsa.RSAPrivateKey) -> bytes:
    """
    Unpadded RSA private-key operation: data^d mod n.

    The input is blinded with a fresh random r before exponentiation
    (c' = c * r^e mod n) and unblinded afterwards (m = m' * r^-1 mod n).
    The exponentiation uses the Chinese Remainder Theorem with the key's
    CRT coefficients:
        m1 = c'^dP mod p
        m2 = c'^dQ mod q
        h  = qInv * (m1 - m2) mod p
        m' = m2 + h * q

    The result is checked with the public exponent before it is returned,
    so a faulty half-exponentiation never leaves this function.

    Args:
        data: Input block, exactly modulus_size(key) bytes
        key: RSA private key

    Returns:
        Output block of modulus_size(key) bytes

    Raises:
        ValueError: If the block has the wrong size or is not below n,
                    or if the result fails verification
    """
    if not isinstance(key, rsa.RSAPrivateKey):
        raise ValueError("Private key required for the private transform")

    numbers = key.private_numbers()
    n = numbers.public_numbers.n
    e = numbers.public_numbers.e
    size = modulus_size(key)
    value = _block_to_int(data, n, size)

    r = _blinding_factor(n)
    blinded = (value * mod_exp(r, e, n)) % n

    m1 = mod_exp(blinded, numbers.dmp1, numbers.p)
    m2 = mod_exp(blinded, numbers.dmq1, numbers.q)
    h = (numbers.iqmp * (m1 - m2)) % numbers.p

    result = ((m2 + h * numbers.q) * mod_inverse(r, n)) % n

    if mod_exp(result, e, n) != value:
        raise ValueError("Private transform result failed verification")

    return int_to_bytes(result, size)
