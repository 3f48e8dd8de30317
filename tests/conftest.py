"""
Shared fixtures.

RSA key generation is slow enough that key pairs are created once per
test session.
"""

import pytest

from src.messaging.session_message import RSAKeyPair


@pytest.fixture(scope="session")
def enc_keys():
    """Recipient key pair (encryption)."""
    return RSAKeyPair.generate(2048)


@pytest.fixture(scope="session")
def sig_keys():
    """Sender key pair (signing)."""
    return RSAKeyPair.generate(2048)


@pytest.fixture(scope="session")
def other_keys():
    """Unrelated key pair."""
    return RSAKeyPair.generate(2048)


@pytest.fixture(scope="session")
def sealed(enc_keys, sig_keys):
    """A session message sealed for enc_keys and signed by sig_keys."""
    from src.messaging.session_message import SessionMessage
    return SessionMessage.seal(b"hello-session-key", enc_keys.public_key, sig_keys.private_key)
