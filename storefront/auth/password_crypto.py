"""
Reversible encryption for secrets that must be parked until an otp is verified
(the pending password of a registration or reset).

Uses Fernet (AES-128-CBC + HMAC-SHA256) from the cryptography library. The
configured secret can be any string, a Fernet key is derived from it.
"""
import base64
import hashlib
from functools import lru_cache

from cryptography.fernet import Fernet, InvalidToken

MAX_PLAINTEXT_LENGTH = 1024


class PasswordCryptoError(Exception):
    """Raised when a value cannot be encrypted or decrypted."""
    pass


@lru_cache(maxsize=8)
def _fernet_for(key: str) -> Fernet:
    if not key:
        raise PasswordCryptoError("encryption key is empty")
    derived = hashlib.sha256(key.encode("utf-8")).digest()
    return Fernet(base64.urlsafe_b64encode(derived))


def encrypt(plaintext: str, key: str) -> str:
    """
    Encrypt `plaintext` with a key derived from `key`.

    Every call produces a different ciphertext (random IV).
    """
    if plaintext is None or plaintext == "":
        raise PasswordCryptoError("cannot encrypt an empty value")
    if len(plaintext) > MAX_PLAINTEXT_LENGTH:
        raise PasswordCryptoError("value too long to encrypt")
    token = _fernet_for(key).encrypt(plaintext.encode("utf-8"))
    return token.decode("ascii")


def decrypt(ciphertext: str, key: str) -> str:
    """
    Decrypt a value produced by `encrypt`.

    Fails closed: tampered, truncated or foreign ciphertext and a wrong key all
    raise PasswordCryptoError, never return garbage.
    """
    if not ciphertext:
        raise PasswordCryptoError("cannot decrypt an empty value")
    try:
        raw = _fernet_for(key).decrypt(ciphertext.encode("ascii"))
    except (InvalidToken, UnicodeEncodeError) as e:
        raise PasswordCryptoError("ciphertext is invalid or was tampered with") from e
    return raw.decode("utf-8")
