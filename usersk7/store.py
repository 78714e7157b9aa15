from __future__ import annotations

import copy
import json
import os
import tempfile
from dataclasses import dataclass, replace
from pathlib import Path
from typing import Any, Dict, Iterator, List, Optional, Protocol, Union, runtime_checkable

from .constants import DEFAULT_ROLES_KEY, LEGACY_ROLES_KEY
from .errors import StoreError
from .records import Record, normalize_key


@dataclass(frozen=True)
class StoredRecord:
    id: int
    record: Record


@runtime_checkable
class RecordStore(Protocol):
    """Lookup and mutation primitives over the identity store.

    Every mutating call raises :class:`StoreError` on failure.
    """

    def find_by_key(self, key: str) -> Optional[StoredRecord]: ...

    def create(self, record: Record) -> int: ...

    def update(self, record_id: int, record: Record) -> None: ...

    def set_metadata(self, record_id: int, key: str, value: Any) -> None: ...

    def clear_roles(self, record_id: int) -> None: ...

    def records(self) -> Iterator[Record]: ...


class InMemoryRecordStore:
    """Dict-backed store; ids are assigned in creation order starting at 1.

    ``update`` replaces the core fields and attributes but keeps the stored
    metadata, which only changes through ``set_metadata``/``clear_roles``.
    """

    def __init__(self, records: Optional[List[Record]] = None, *, roles_key: str = DEFAULT_ROLES_KEY):
        self.roles_key = roles_key
        self._rows: Dict[int, Record] = {}
        self._by_key: Dict[str, int] = {}
        self._next_id = 1
        for rec in records or []:
            self.create(rec)

    def __len__(self) -> int:
        return len(self._rows)

    def _require(self, record_id: int) -> Record:
        try:
            return self._rows[record_id]
        except KeyError:
            raise StoreError(f"no record with id {record_id}") from None

    def find_by_key(self, key: str) -> Optional[StoredRecord]:
        rid = self._by_key.get(normalize_key(key))
        if rid is None:
            return None
        return StoredRecord(rid, self._rows[rid])

    def get(self, record_id: int) -> Record:
        return self._require(record_id)

    def create(self, record: Record) -> int:
        key = normalize_key(record.key)
        if not key:
            raise StoreError("cannot create a record without a key")
        if key in self._by_key:
            raise StoreError(f"key {key!r} already exists")
        rid = self._next_id
        self._next_id += 1
        self._rows[rid] = replace(record, key=key, metadata=copy.deepcopy(record.metadata))
        self._by_key[key] = rid
        return rid

    def update(self, record_id: int, record: Record) -> None:
        current = self._require(record_id)
        key = normalize_key(record.key)
        owner = self._by_key.get(key)
        if owner is not None and owner != record_id:
            raise StoreError(f"key {key!r} belongs to record {owner}")
        del self._by_key[normalize_key(current.key)]
        self._rows[record_id] = replace(record, key=key, metadata=current.metadata)
        self._by_key[key] = record_id

    def set_metadata(self, record_id: int, key: str, value: Any) -> None:
        current = self._require(record_id)
        meta = dict(current.metadata)
        meta[key] = copy.deepcopy(value)
        self._rows[record_id] = replace(current, metadata=meta)

    def clear_roles(self, record_id: int) -> None:
        current = self._require(record_id)
        meta = dict(current.metadata)
        for key in (self.roles_key, LEGACY_ROLES_KEY):
            if key in meta:
                meta[key] = {}
        self._rows[record_id] = replace(current, metadata=meta)

    def records(self) -> Iterator[Record]:
        for rid in sorted(self._rows):
            yield self._rows[rid]


class JsonFileRecordStore(InMemoryRecordStore):
    """InMemoryRecordStore persisted to a JSON file.

    The file holds ``{"records": [{"id": int, "record": {...}}, ...]}``; ``save``
    writes a temp file next to the target and swaps it in atomically.
    """

    def __init__(self, path: Union[str, Path], *, roles_key: str = DEFAULT_ROLES_KEY):
        super().__init__(roles_key=roles_key)
        self.path = Path(path)
        if self.path.exists():
            self._load()

    def _load(self) -> None:
        try:
            doc = json.loads(self.path.read_text(encoding="utf-8"))
        except (OSError, ValueError) as exc:
            raise StoreError(f"cannot read record store {self.path}: {exc}") from exc
        rows = doc.get("records", []) if isinstance(doc, dict) else doc
        if not isinstance(rows, list):
            raise StoreError(f"record store {self.path} is not a list of records")
        for row in rows:
            if isinstance(row, dict) and "record" in row:
                try:
                    rid = int(row.get("id", self._next_id))
                except (TypeError, ValueError) as exc:
                    raise StoreError(f"record store {self.path} has an invalid id: {row.get('id')!r}") from exc
                data = row["record"]
            else:
                rid, data = self._next_id, row
            if rid in self._rows:
                raise StoreError(f"record store {self.path} has a duplicate id: {rid}")
            rec = Record.from_dict(data)
            key = normalize_key(rec.key)
            if not key or key in self._by_key:
                raise StoreError(f"record store {self.path} has a missing or duplicate key: {rec.key!r}")
            self._rows[rid] = replace(rec, key=key)
            self._by_key[key] = rid
            self._next_id = max(self._next_id, rid + 1)

    def save(self) -> None:
        doc = {"records": [{"id": rid, "record": self._rows[rid].to_dict()} for rid in sorted(self._rows)]}
        target_dir = self.path.parent if str(self.path.parent) else Path(".")
        target_dir.mkdir(parents=True, exist_ok=True)
        fd, tmp = tempfile.mkstemp(prefix=".usersk7-store-", suffix=".json", dir=str(target_dir))
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as fh:
                json.dump(doc, fh, indent=2, ensure_ascii=False)
                fh.flush()
                os.fsync(fh.fileno())
            os.replace(tmp, str(self.path))
        except OSError as exc:
            try:
                os.unlink(tmp)
            except OSError:
                pass
            raise StoreError(f"cannot write record store {self.path}: {exc}") from exc
