from __future__ import annotations

import os
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from typing import Callable, Iterable, List, Optional, Union

from .codec import ArchiveCodec
from .config import Settings
from .constants import ARCHIVE_EXTENSION, ARCHIVE_NAME_PREFIX, FILENAME_TIMESTAMP_FORMAT
from .encryption import EncryptionService
from .errors import (
    ArchiveTooLargeError,
    CodecError,
    CryptoError,
    EmptyArchiveError,
    EncryptFailedError,
    InvalidArchiveNameError,
    MissingPasswordError,
    UsersK7Error,
)
from .oplog import FileLogStorage, LogEntry, MemoryLogStorage, OperationLog, Severity
from .reconcile import Decision, Reconciler, Summary
from .records import Record, normalize_key, records_from_payload
from .store import RecordStore


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def build_log(settings: Settings, *, clock: Callable[[], datetime] = _utcnow) -> OperationLog:
    storage = FileLogStorage(settings.log_path) if settings.log_path else MemoryLogStorage()
    return OperationLog(storage, ttl_seconds=settings.log_ttl_seconds, clock=clock)


def archive_filename(now: datetime) -> str:
    return f"{ARCHIVE_NAME_PREFIX}{now.strftime(FILENAME_TIMESTAMP_FORMAT)}{ARCHIVE_EXTENSION}"


@dataclass
class ExportResult:
    data: bytes
    filename: str
    count: int


@dataclass
class ImportResult:
    summary: Summary
    decisions: List[Decision]
    entries: List[LogEntry] = field(default_factory=list)
    dry_run: bool = False


class _Run:
    def __init__(
        self,
        settings: Settings,
        log: Optional[OperationLog] = None,
        *,
        codec: Optional[ArchiveCodec] = None,
        clock: Callable[[], datetime] = _utcnow,
    ):
        self.settings = settings
        self.clock = clock
        self.log = log if log is not None else build_log(settings, clock=clock)
        self.codec = codec or ArchiveCodec(EncryptionService(settings.key_derivation))

    def _abort(self, message: str, exc: UsersK7Error) -> UsersK7Error:
        """Log the terminal error, persist the log so far, hand back the error to raise."""
        self.log.error(f"{message} ({exc})")
        self.log.persist_last()
        return exc


class ExportRun(_Run):
    """Normalize records and seal them into one archive buffer."""

    def run(self, records: Iterable[Record]) -> ExportResult:
        self.log.clear()
        self.log.info("Export process started.")
        if not self.settings.password:
            raise self._abort("Encryption password is not set; cannot export.", MissingPasswordError("password required"))

        normalized: List[Record] = []
        for rec in records:
            key = normalize_key(rec.key)
            if not key:
                self.log.warning("Record without a key exported as-is; it will be skipped on import.")
            elif not rec.credential_hash:
                self.log.warning(f"Record {key} has no credential hash; it cannot be imported outside a dry run.")
            normalized.append(replace(rec, key=key or rec.key, metadata=dict(rec.metadata)))
        if not normalized:
            self.log.warning("No records found to export.")
        self.log.info(f"Fetched data for {len(normalized)} records.")

        try:
            payload = self.codec.serialize(normalized)
            self.log.info("Record data successfully encoded to JSON.")
            compressed = self.codec.compress(payload)
            self.log.info("JSON data successfully compressed.")
        except CodecError as exc:
            self._abort("Fatal error while preparing export data.", exc)
            raise
        try:
            data = self.codec.encryption.seal_text(compressed, self.settings.password).encode("ascii")
        except CryptoError as exc:
            raise self._abort("Fatal error during data encryption.", EncryptFailedError(str(exc))) from exc
        self.log.info("Compressed data successfully encrypted.")

        filename = archive_filename(self.clock())
        self.log.success(f'Archive "{filename}" successfully generated ({len(normalized)} records).')
        self.log.persist_last()
        return ExportResult(data=data, filename=filename, count=len(normalized))


class ImportRun(_Run):
    """Validate, open and reconcile one archive against a store."""

    def _check_gate(self, data: Union[bytes, str], filename: Optional[str]) -> None:
        if not self.settings.password:
            raise self._abort("Encryption password not set, cannot decrypt archive.", MissingPasswordError("password required"))
        if filename is not None:
            ext = os.path.splitext(os.path.basename(filename))[1].lower()
            if ext != ARCHIVE_EXTENSION:
                raise self._abort(
                    f"Invalid file type: {ext or '(none)'}. Expected {ARCHIVE_EXTENSION}",
                    InvalidArchiveNameError(filename),
                )
        if not data or not data.strip():
            raise self._abort("Archive is empty.", EmptyArchiveError(filename or "archive"))
        if len(data) > self.settings.max_archive_bytes:
            raise self._abort(
                f"Archive is too large: {len(data)} bytes. Max: {self.settings.max_archive_bytes} bytes.",
                ArchiveTooLargeError(f"{len(data)} > {self.settings.max_archive_bytes}"),
            )

    def run(
        self,
        data: Union[bytes, str],
        store: RecordStore,
        *,
        dry_run: bool = False,
        filename: Optional[str] = None,
    ) -> ImportResult:
        self.log.clear()
        self.log.info("Import process initiated.")
        if dry_run:
            self.log.important("--- DRY RUN MODE ACTIVATED ---")
        self._check_gate(data, filename)
        self.log.info(f'Archive "{filename}" received for import.' if filename else "Archive received for import.")

        try:
            compressed = self.codec.encryption.open(data, self.settings.password)
        except CryptoError as exc:
            self._abort("Failed to decrypt archive. Incorrect password or corrupted file?", exc)
            raise
        self.log.info("Archive data successfully decrypted.")
        try:
            payload = self.codec.parse(self.codec.decompress(compressed))
        except CodecError as exc:
            self._abort("Archive data could not be decompressed or parsed.", exc)
            raise
        self.log.info(f"Successfully parsed JSON, found {len(payload)} entries.")
        if not payload:
            self.log.warning("Archive contains no records.")

        reconciler = Reconciler(self.log, roles_key=self.settings.roles_key, now=self.clock())
        result = reconciler.apply(records_from_payload(payload), store, dry_run=dry_run)

        s = result.summary
        message = (
            f"Import complete. Records created: {s.created}, "
            f"records updated: {s.updated}, entries skipped/errored: {s.skipped}."
        )
        if dry_run:
            message = f"DRY RUN COMPLETED. {message} No actual changes were made."
        self.log.append(message, Severity.WARNING if s.skipped else Severity.SUCCESS)
        self.log.persist_last()
        return ImportResult(summary=s, decisions=result.decisions, entries=self.log.entries(), dry_run=dry_run)


def export_records(records: Iterable[Record], settings: Settings, log: Optional[OperationLog] = None) -> ExportResult:
    return ExportRun(settings, log).run(records)


def import_archive(
    data: Union[bytes, str],
    store: RecordStore,
    settings: Settings,
    *,
    dry_run: bool = False,
    filename: Optional[str] = None,
    log: Optional[OperationLog] = None,
) -> ImportResult:
    return ImportRun(settings, log).run(data, store, dry_run=dry_run, filename=filename)
