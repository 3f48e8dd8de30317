# Core Cryptography Module
"""
Core cryptographic primitives for the session message envelope:
- Raw (unpadded) RSA transforms on `cryptography` key objects
- Square-and-multiply modular exponentiation
- EMSA-PSS padding and verification with MGF1
"""
