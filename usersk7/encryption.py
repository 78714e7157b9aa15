from __future__ import annotations

"""AES-256-CBC sealing of opaque byte buffers.

The external representation of a sealed buffer is ``base64(iv || ciphertext)``.
There is no authentication tag: a wrong password and a corrupted archive both
surface as :class:`DecryptFailedError` (or, when the padding happens to check
out, as garbage that fails later during decompression).

Key material defaults to the raw UTF-8 password truncated or NUL-padded to
32 bytes, which is what OpenSSL does when handed a password as an AES-256
key. ``key_derivation="argon2id"`` switches to a salted Argon2id key and
prepends the salt to the framed bytes; both ends must use the same mode.
"""

import base64
import binascii
from dataclasses import dataclass
from typing import Union

from Cryptodome.Cipher import AES
from Cryptodome.Random import get_random_bytes
from Cryptodome.Util.Padding import pad, unpad

try:  # pragma: no cover - availability depends on environment
    from argon2.low_level import Type as _ArgonType, hash_secret_raw as _argon_hash  # type: ignore
    _HAS_ARGON2 = True
except ImportError:  # pragma: no cover - argon2id mode reports it as unavailable
    _ArgonType = None  # type: ignore
    _argon_hash = None  # type: ignore
    _HAS_ARGON2 = False

from .constants import (
    ARGON_MEMORY_COST_KIB,
    ARGON_PARALLELISM,
    ARGON_TIME_COST,
    BLOCK_SIZE,
    IV_SIZE,
    KDF_ARGON2ID,
    KDF_MODES,
    KDF_RAW,
    KEY_SIZE,
    SALT_SIZE,
)
from .errors import (
    DecryptFailedError,
    MalformedEncodingError,
    MissingPasswordError,
    TruncatedError,
)

_WHITESPACE = b" \t\n\r\v\f"


@dataclass(frozen=True)
class SealedBlob:
    iv: bytes
    ciphertext: bytes
    salt: bytes = b""

    def to_bytes(self) -> bytes:
        return self.salt + self.iv + self.ciphertext

    def encode(self) -> str:
        return base64.b64encode(self.to_bytes()).decode("ascii")

    @classmethod
    def decode(cls, text: Union[str, bytes], *, salted: bool = False) -> "SealedBlob":
        """Parse the base64 framing, rejecting bad alphabet/padding and short input.

        ASCII whitespace anywhere in the text is ignored, so line-wrapped
        archives decode; any other character outside the alphabet is an error.
        """
        if isinstance(text, str):
            try:
                text = text.encode("ascii")
            except UnicodeEncodeError as exc:
                raise MalformedEncodingError("archive is not base64 text") from exc
        try:
            raw = base64.b64decode(bytes(text).translate(None, _WHITESPACE), validate=True)
        except (binascii.Error, ValueError) as exc:
            raise MalformedEncodingError(f"invalid base64 framing: {exc}") from exc
        prefix = SALT_SIZE if salted else 0
        if len(raw) < prefix + IV_SIZE + BLOCK_SIZE:
            raise TruncatedError(
                f"sealed payload too short ({len(raw)} bytes; need at least {prefix + IV_SIZE + BLOCK_SIZE})"
            )
        salt = raw[:prefix]
        iv = raw[prefix : prefix + IV_SIZE]
        return cls(iv=iv, ciphertext=raw[prefix + IV_SIZE :], salt=salt)


def raw_key(password: str) -> bytes:
    """Use the password bytes directly as a 256-bit key (no KDF)."""
    return password.encode("utf-8")[:KEY_SIZE].ljust(KEY_SIZE, b"\x00")


def argon2id_key(password: str, salt: bytes) -> bytes:
    if not _HAS_ARGON2:
        raise RuntimeError("argon2-cffi is required for argon2id key derivation")
    return _argon_hash(
        password.encode("utf-8"),
        salt,
        time_cost=ARGON_TIME_COST,
        memory_cost=ARGON_MEMORY_COST_KIB,
        parallelism=ARGON_PARALLELISM,
        hash_len=KEY_SIZE,
        type=_ArgonType.ID,
    )


class EncryptionService:
    """Stateless seal/open of byte buffers under a password."""

    def __init__(self, key_derivation: str = KDF_RAW):
        if key_derivation not in KDF_MODES:
            raise ValueError(f"unknown key derivation mode: {key_derivation!r}")
        self.key_derivation = key_derivation

    @property
    def salted(self) -> bool:
        return self.key_derivation == KDF_ARGON2ID

    def _key(self, password: str, salt: bytes) -> bytes:
        if self.salted:
            return argon2id_key(password, salt)
        return raw_key(password)

    def seal(self, plaintext: bytes, password: str) -> SealedBlob:
        if not password:
            raise MissingPasswordError("an encryption password is required")
        salt = get_random_bytes(SALT_SIZE) if self.salted else b""
        iv = get_random_bytes(IV_SIZE)
        cipher = AES.new(self._key(password, salt), AES.MODE_CBC, iv=iv)
        return SealedBlob(iv=iv, ciphertext=cipher.encrypt(pad(plaintext, BLOCK_SIZE)), salt=salt)

    def open(self, sealed: Union[SealedBlob, str, bytes], password: str) -> bytes:
        if not password:
            raise MissingPasswordError("a decryption password is required")
        blob = sealed if isinstance(sealed, SealedBlob) else SealedBlob.decode(sealed, salted=self.salted)
        if len(blob.iv) != IV_SIZE:
            raise TruncatedError(f"IV must be {IV_SIZE} bytes")
        if not blob.ciphertext:
            raise TruncatedError("ciphertext is empty")
        if len(blob.ciphertext) % BLOCK_SIZE:
            raise DecryptFailedError("ciphertext length is not a multiple of the block size")
        cipher = AES.new(self._key(password, blob.salt), AES.MODE_CBC, iv=blob.iv)
        try:
            return unpad(cipher.decrypt(blob.ciphertext), BLOCK_SIZE)
        except ValueError as exc:
            raise DecryptFailedError("decryption failed: wrong password or corrupted archive") from exc

    def seal_text(self, plaintext: bytes, password: str) -> str:
        """Seal and return the external base64 representation."""
        return self.seal(plaintext, password).encode()


__all__ = [
    "EncryptionService",
    "SealedBlob",
    "raw_key",
    "argon2id_key",
    "_HAS_ARGON2",
]
