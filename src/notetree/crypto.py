"""Field-level encryption for protected notes and their history.

Title and text are encrypted separately with AES-CBC. The IV for each field
is derived from the owning entity's identifier, so the same IV can be
re-derived at any later time without storing it:

- note_title_iv(entity_id) / note_text_iv(entity_id) are pure functions
- ciphertext is base64(digest_prefix + aes_payload), where digest_prefix is
  the first 4 bytes of SHA-256 over the plaintext; decrypt() checks it so a
  wrong key is reported instead of returning garbage
"""

import base64
import binascii
import hashlib
import logging
from typing import Optional

from cryptography.hazmat.primitives import padding
from cryptography.hazmat.primitives.ciphers import Cipher, algorithms, modes

from notetree.exceptions import CryptoError, ErrorCode

logger = logging.getLogger(__name__)

IV_LENGTH = 16
DIGEST_PREFIX_LENGTH = 4
VALID_KEY_LENGTHS = (16, 24, 32)

# Field markers keep title and text IVs apart for the same entity
_TITLE_MARKER = "0"
_TEXT_MARKER = "1"


def _derive_iv(marker: str, entity_id: str) -> bytes:
    return hashlib.sha256(f"{marker}{entity_id}".encode("utf-8")).digest()[:IV_LENGTH]


def note_title_iv(entity_id: str) -> bytes:
    """IV for the title field of a note or history snapshot."""
    return _derive_iv(_TITLE_MARKER, entity_id)


def note_text_iv(entity_id: str) -> bytes:
    """IV for the text (body) field of a note or history snapshot."""
    return _derive_iv(_TEXT_MARKER, entity_id)


def _digest_prefix(data: bytes) -> bytes:
    return hashlib.sha256(data).digest()[:DIGEST_PREFIX_LENGTH]


def _cipher(key: bytes, iv: bytes) -> Cipher:
    if len(key) not in VALID_KEY_LENGTHS:
        raise CryptoError(
            f"Data key must be 16, 24 or 32 bytes, got {len(key)}",
            code=ErrorCode.INVALID_KEY,
        )
    if len(iv) != IV_LENGTH:
        raise CryptoError(
            f"IV must be {IV_LENGTH} bytes, got {len(iv)}",
            code=ErrorCode.INVALID_KEY,
        )
    return Cipher(algorithms.AES(key), modes.CBC(iv))


def encrypt(key: bytes, iv: bytes, plaintext: str) -> str:
    """Encrypt a string and return the base64 ciphertext."""
    data = plaintext.encode("utf-8")
    payload = _digest_prefix(data) + data

    padder = padding.PKCS7(algorithms.AES.block_size).padder()
    padded = padder.update(payload) + padder.finalize()

    encryptor = _cipher(key, iv).encryptor()
    encrypted = encryptor.update(padded) + encryptor.finalize()
    return base64.b64encode(encrypted).decode("ascii")


def decrypt(key: bytes, iv: bytes, ciphertext: str) -> bytes:
    """Decrypt base64 ciphertext produced by encrypt().

    Raises:
        CryptoError: If the ciphertext is malformed or the key is wrong.
    """
    try:
        encrypted = base64.b64decode(ciphertext.encode("ascii"), validate=True)
    except (binascii.Error, UnicodeEncodeError) as e:
        raise CryptoError(f"Ciphertext is not valid base64: {e}") from e

    decryptor = _cipher(key, iv).decryptor()
    try:
        padded = decryptor.update(encrypted) + decryptor.finalize()
        unpadder = padding.PKCS7(algorithms.AES.block_size).unpadder()
        payload = unpadder.update(padded) + unpadder.finalize()
    except ValueError as e:
        raise CryptoError(
            "Decryption failed, the data key is probably wrong"
        ) from e

    digest, data = payload[:DIGEST_PREFIX_LENGTH], payload[DIGEST_PREFIX_LENGTH:]
    if len(digest) != DIGEST_PREFIX_LENGTH or digest != _digest_prefix(data):
        raise CryptoError("Decryption failed, the data key is probably wrong")
    return data


def decrypt_string(key: bytes, iv: bytes, ciphertext: Optional[str]) -> str:
    """Decrypt ciphertext into a UTF-8 string."""
    if ciphertext is None:
        return ""
    data = decrypt(key, iv, ciphertext)
    try:
        return data.decode("utf-8")
    except UnicodeDecodeError as e:
        raise CryptoError(f"Decrypted data is not valid UTF-8: {e}") from e
