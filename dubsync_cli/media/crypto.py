"""
AES-128-CBC segment decryption as used by encrypted HLS streams.
"""

from cryptography.hazmat.primitives import padding
from cryptography.hazmat.primitives.ciphers import Cipher, algorithms, modes

from dubsync_cli.exceptions import DecryptionError
from dubsync_cli.models.variant import DecryptionKey

_BLOCK_SIZE = 16


def decrypt_segment(ciphertext: bytes, key: DecryptionKey, iv: bytes) -> bytes:
    """
    Decrypts one segment and strips its PKCS#7 padding.

    Raises:
        DecryptionError: The ciphertext is malformed or the key does not fit it.
    """
    if len(iv) != _BLOCK_SIZE:
        raise DecryptionError(f"IV must be {_BLOCK_SIZE} bytes, got {len(iv)}.")
    if not ciphertext or len(ciphertext) % _BLOCK_SIZE:
        raise DecryptionError(
            f"Ciphertext length {len(ciphertext)} is not a multiple of the AES "
            "block size."
        )

    decryptor = Cipher(algorithms.AES(key.key), modes.CBC(iv)).decryptor()
    padded = decryptor.update(ciphertext) + decryptor.finalize()
    unpadder = padding.PKCS7(_BLOCK_SIZE * 8).unpadder()
    try:
        plaintext = unpadder.update(padded) + unpadder.finalize()
    except ValueError as e:
        raise DecryptionError(
            f"Invalid padding after decrypting with key '{key.key_id}'; "
            "the key is probably wrong."
        ) from e
    if not plaintext:
        raise DecryptionError("Segment decrypted to zero bytes.")
    return plaintext


def encrypt_segment(plaintext: bytes, key: DecryptionKey, iv: bytes) -> bytes:
    """Inverse of `decrypt_segment`."""
    padder = padding.PKCS7(_BLOCK_SIZE * 8).padder()
    padded = padder.update(plaintext) + padder.finalize()
    encryptor = Cipher(algorithms.AES(key.key), modes.CBC(iv)).encryptor()
    return encryptor.update(padded) + encryptor.finalize()
