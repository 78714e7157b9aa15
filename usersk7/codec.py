from __future__ import annotations

import json
import zlib
from typing import Any, List, Optional, Sequence, Union

from .constants import AUTO_WBITS, COMPRESS_LEVEL, GZIP_WBITS, KDF_RAW
from .encryption import EncryptionService
from .errors import (
    CompressFailedError,
    CryptoError,
    DecompressFailedError,
    EncryptFailedError,
    ParseFailedError,
    SerializeFailedError,
)
from .records import Record, records_from_payload, records_to_payload


class ArchiveCodec:
    """Record sequence <-> sealed archive bytes.

    Export: JSON -> gzip (level 9) -> AES-256-CBC -> base64.
    Import is the exact inverse. Crypto errors raised while opening propagate
    unchanged so the caller can tell a rejected password from bytes that
    decrypted but do not decompress or parse.
    """

    def __init__(self, encryption: Optional[EncryptionService] = None, level: Optional[int] = None):
        self.encryption = encryption or EncryptionService(KDF_RAW)
        self.level = level

    # -------- stages --------

    def serialize(self, records: Sequence[Record]) -> bytes:
        try:
            text = json.dumps(records_to_payload(records), indent=4, ensure_ascii=False, allow_nan=False)
        except (TypeError, ValueError) as exc:
            raise SerializeFailedError(f"records could not be encoded as JSON: {exc}") from exc
        return text.encode("utf-8")

    def compress(self, data: bytes) -> bytes:
        try:
            c = zlib.compressobj(self.level if self.level is not None else COMPRESS_LEVEL, zlib.DEFLATED, GZIP_WBITS)
            return c.compress(data) + c.flush()
        except (zlib.error, ValueError) as exc:
            raise CompressFailedError(f"compression failed: {exc}") from exc

    def decompress(self, data: bytes) -> bytes:
        try:
            d = zlib.decompressobj(AUTO_WBITS)
            out = d.decompress(data) + d.flush()
        except zlib.error as exc:
            raise DecompressFailedError(f"decrypted data is not a valid compressed stream: {exc}") from exc
        if not d.eof:
            raise DecompressFailedError("compressed stream is truncated")
        if d.unused_data:
            raise DecompressFailedError(f"{len(d.unused_data)} trailing bytes after the compressed stream")
        return out

    def parse(self, data: bytes) -> List[Any]:
        try:
            payload = json.loads(data.decode("utf-8"))
        except (UnicodeDecodeError, ValueError) as exc:
            raise ParseFailedError(f"archive does not contain valid JSON: {exc}") from exc
        if not isinstance(payload, list):
            raise ParseFailedError(f"archive must hold a list of records, not {type(payload).__name__}")
        return payload

    # -------- pipelines --------

    def seal(self, records: Sequence[Record], password: str) -> bytes:
        compressed = self.compress(self.serialize(records))
        try:
            return self.encryption.seal_text(compressed, password).encode("ascii")
        except CryptoError as exc:
            raise EncryptFailedError(f"encryption failed: {exc}") from exc

    def open_payload(self, data: Union[bytes, str], password: str) -> List[Any]:
        """Decrypt, decompress and parse, returning the raw list of mappings."""
        compressed = self.encryption.open(data, password)
        return self.parse(self.decompress(compressed))

    def open(self, data: Union[bytes, str], password: str) -> List[Record]:
        return records_from_payload(self.open_payload(data, password))
