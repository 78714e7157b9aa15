from __future__ import annotations

"""Walks parsed records against a store and decides create/update/skip.

Records are processed strictly in archive order. A record's problems
(missing key or credential, store failures) become a ``Skipped`` decision and
a log entry; nothing raised by the store for one record stops the run.
"""

from dataclasses import dataclass, field, replace
from datetime import datetime
from enum import Enum
from typing import Dict, List, Optional, Sequence, Union

from .constants import DEFAULT_ROLES_KEY, LEGACY_ROLES_KEY
from .errors import StoreError
from .oplog import OperationLog
from .records import Record, normalize_key
from .store import RecordStore


@dataclass(frozen=True)
class RealId:
    value: int

    def __str__(self) -> str:
        return str(self.value)


@dataclass(frozen=True)
class PendingId:
    """Placeholder for a record a dry run would create (1, 2, 3 ... per run)."""

    sequence: int

    def __str__(self) -> str:
        return f"pending-{self.sequence}"


RecordId = Union[RealId, PendingId]


class Outcome(str, Enum):
    CREATED = "created"
    UPDATED = "updated"
    SKIPPED = "skipped"


class SkipReason(str, Enum):
    MISSING_KEY = "missing_key"
    MISSING_CREDENTIAL = "missing_credential"
    STORE_ERROR = "store_error"


@dataclass(frozen=True)
class Decision:
    index: int
    key: str
    outcome: Outcome
    record_id: Optional[RecordId] = None
    reason: Optional[SkipReason] = None
    detail: str = ""
    metadata_keys: tuple = ()

    @classmethod
    def created(cls, index: int, key: str, record_id: RecordId) -> "Decision":
        return cls(index, key, Outcome.CREATED, record_id)

    @classmethod
    def updated(cls, index: int, key: str, record_id: RecordId) -> "Decision":
        return cls(index, key, Outcome.UPDATED, record_id)

    @classmethod
    def skipped(cls, index: int, key: str, reason: SkipReason, detail: str = "") -> "Decision":
        return cls(index, key, Outcome.SKIPPED, None, reason, detail)


@dataclass
class Summary:
    created: int = 0
    updated: int = 0
    skipped: int = 0

    def count(self, decision: Decision) -> None:
        if decision.outcome is Outcome.CREATED:
            self.created += 1
        elif decision.outcome is Outcome.UPDATED:
            self.updated += 1
        else:
            self.skipped += 1

    @property
    def total(self) -> int:
        return self.created + self.updated + self.skipped

    def as_dict(self) -> Dict[str, int]:
        return {"created": self.created, "updated": self.updated, "skipped": self.skipped}


@dataclass
class ReconcileResult:
    summary: Summary = field(default_factory=Summary)
    decisions: List[Decision] = field(default_factory=list)


class Reconciler:
    def __init__(
        self,
        log: Optional[OperationLog] = None,
        *,
        roles_key: str = DEFAULT_ROLES_KEY,
        now: Optional[datetime] = None,
    ):
        self.log = log if log is not None else OperationLog()
        self.roles_keys = {roles_key, LEGACY_ROLES_KEY}
        self.now = now
        self._pending = 0

    def apply(self, records: Sequence[Record], store: RecordStore, dry_run: bool = False) -> ReconcileResult:
        result = ReconcileResult()
        self._pending = 0
        for index, record in enumerate(records):
            decision = self.reconcile_one(index, record, store, dry_run)
            result.decisions.append(decision)
            result.summary.count(decision)
        return result

    def _next_pending(self) -> PendingId:
        self._pending += 1
        return PendingId(self._pending)

    def reconcile_one(self, index: int, record: Record, store: RecordStore, dry_run: bool) -> Decision:
        """Decide and (unless dry_run) apply one record. Never raises StoreError."""
        prefix = f"Processing entry #{index + 1}: "
        key = normalize_key(record.key)
        if not key:
            self.log.warning(prefix + "Skipped - missing key.")
            return Decision.skipped(index, "", SkipReason.MISSING_KEY)
        prefix += f"{key} - "
        if not record.credential_hash and not dry_run:
            self.log.warning(prefix + "Skipped - missing credential hash.")
            return Decision.skipped(index, key, SkipReason.MISSING_CREDENTIAL)

        request = record.normalized(self.now)
        core = replace(request, metadata={})
        try:
            existing = store.find_by_key(key)
        except StoreError as exc:
            self.log.error(prefix + f"Error looking up record: {exc.detail}")
            return Decision.skipped(index, key, SkipReason.STORE_ERROR, exc.detail)

        if existing is not None:
            record_id: RecordId = RealId(existing.id)
            if dry_run:
                self.log.info(prefix + f"DRY RUN: Would update existing record (ID: {record_id}).")
            else:
                try:
                    store.update(existing.id, core)
                except StoreError as exc:
                    self.log.error(prefix + f"Error updating record: {exc.detail}")
                    return Decision.skipped(index, key, SkipReason.STORE_ERROR, exc.detail)
                self.log.success(prefix + "Successfully updated existing record.")
            decision = Decision.updated(index, key, record_id)
        else:
            if dry_run:
                record_id = self._next_pending()
                self.log.info(prefix + f"DRY RUN: Would create new record ({record_id}).")
            else:
                try:
                    record_id = RealId(store.create(core))
                except StoreError as exc:
                    self.log.error(prefix + f"Error creating new record: {exc.detail}")
                    return Decision.skipped(index, key, SkipReason.STORE_ERROR, exc.detail)
                self.log.success(prefix + f"Successfully created new record (ID: {record_id}).")
            decision = Decision.created(index, key, record_id)

        if request.metadata:
            applied = self._apply_metadata(prefix, record_id, request.metadata, store, dry_run)
            decision = Decision(
                decision.index, decision.key, decision.outcome, decision.record_id, metadata_keys=applied
            )
        return decision

    def _apply_metadata(self, prefix: str, record_id: RecordId, metadata: Dict, store: RecordStore, dry_run: bool) -> tuple:
        self.log.detail(prefix + f"Processing metadata for record ID {record_id}...")
        if dry_run:
            for meta_key in metadata:
                self.log.detail(prefix + f'DRY RUN: Would update metadata key "{meta_key}".')
            return tuple(metadata)

        if self.roles_keys.intersection(metadata):
            try:
                store.clear_roles(record_id.value)
                self.log.detail(prefix + "Cleared existing roles before applying imported ones.")
            except StoreError as exc:
                self.log.error(prefix + f"Error clearing roles: {exc.detail}")

        applied = []
        for meta_key, value in metadata.items():
            try:
                store.set_metadata(record_id.value, meta_key, value)
            except StoreError as exc:
                self.log.error(prefix + f'Error updating metadata key "{meta_key}": {exc.detail}')
                continue
            applied.append(meta_key)
        return tuple(applied)
