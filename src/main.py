"""
Session Message - Main Entry Point
Seals a session secret for a recipient and opens it again.
"""

import logging

from src.messaging import RSAKeyPair, SessionMessage, oaep_capacity


def main():
    """Main entry point for the session message demo."""
    logging.basicConfig(level=logging.DEBUG, format="%(levelname)s %(name)s: %(message)s")

    print("=" * 50)
    print("Signed-and-Encrypted Session Message")
    print("=" * 50)

    encryption_keys = RSAKeyPair.generate()
    signing_keys = RSAKeyPair.generate()
    print(f"\nRecipient key: {encryption_keys.key_size * 8} bits, "
          f"OAEP capacity {oaep_capacity(encryption_keys.public_key)} bytes")
    print(f"Sender key:    {signing_keys.key_size * 8} bits")

    cleartext = b"hello-session-key"
    data = SessionMessage.seal(cleartext, encryption_keys.public_key, signing_keys.private_key)
    print(f"\nSealed {len(cleartext)} bytes into a {len(data)}-byte message")

    message = SessionMessage.from_bytes(data)
    print(f"Parsed: {message!r}")

    message.check_signature(signing_keys.public_key)
    print("Signature: valid")

    buf = bytearray(message.get_cleartext(encryption_keys.private_key))
    length = message.get_cleartext(encryption_keys.private_key, buf)
    print(f"Cleartext: {bytes(buf[:length])!r}")

    print(f"\nWrong sender key accepted: "
          f"{message.has_valid_signature(encryption_keys.public_key)}")
    print("\n")


if __name__ == "__main__":
    main()
