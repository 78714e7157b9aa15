from __future__ import annotations

import re
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Mapping, Optional, Tuple

from .constants import TIMESTAMP_FORMAT


# Record attribute -> archive wire name
WIRE_NAMES: Tuple[Tuple[str, str], ...] = (
    ("key", "key"),
    ("credential_hash", "credentialHash"),
    ("email", "email"),
    ("url", "url"),
    ("nice_key", "niceKey"),
    ("display_name", "displayName"),
    ("first_name", "firstName"),
    ("last_name", "lastName"),
    ("description", "description"),
    ("registered_at", "registeredAt"),
)
METADATA_WIRE_NAME = "metadata"

# Field names written by the original WordPress exporter
LEGACY_ALIASES: Dict[str, str] = {
    "key": "user_login",
    "credentialHash": "user_pass",
    "email": "user_email",
    "url": "user_url",
    "niceKey": "user_nicename",
    "displayName": "display_name",
    "firstName": "first_name",
    "lastName": "last_name",
    "registeredAt": "user_registered",
    "metadata": "user_meta_data",
}

_KNOWN_NAMES = (
    {wire for _, wire in WIRE_NAMES}
    | {METADATA_WIRE_NAME}
    | set(LEGACY_ALIASES.values())
)

_KEY_DISALLOWED = re.compile(r"[^a-z0-9 _.@-]")
_WHITESPACE = re.compile(r"\s+")
_SLUG_DISALLOWED = re.compile(r"[^a-z0-9_-]+")
_TAGS = re.compile(r"<[^>]*>")
_EMAIL = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")


def normalize_key(value: Any) -> str:
    """Case-normalize a login-like key; returns "" when nothing usable remains."""
    if value is None:
        return ""
    text = _TAGS.sub("", str(value)).strip().lower()
    text = _KEY_DISALLOWED.sub("", text)
    return _WHITESPACE.sub(" ", text).strip()


def slugify(value: str) -> str:
    text = _WHITESPACE.sub("-", value.strip().lower())
    return _SLUG_DISALLOWED.sub("-", text).strip("-")


def _clean_text(value: Any, *, multiline: bool = False) -> str:
    if value is None:
        return ""
    text = _TAGS.sub("", str(value))
    if multiline:
        return "\n".join(line.rstrip() for line in text.strip().splitlines())
    return _WHITESPACE.sub(" ", text).strip()


def _clean_email(value: Any) -> str:
    text = _clean_text(value)
    return text if _EMAIL.match(text) else ""


def _clean_url(value: Any) -> str:
    text = _clean_text(value)
    return text if text.lower().startswith(("http://", "https://")) else ""


def utc_timestamp(now: Optional[datetime] = None) -> str:
    return (now or datetime.now(timezone.utc)).strftime(TIMESTAMP_FORMAT)


@dataclass(frozen=True)
class Record:
    """One identity entity as carried by an archive.

    ``metadata`` holds the open key/value set (scalars or structured values such
    as the role set). ``extra`` keeps unknown top-level fields so archives
    written by newer producers survive a round trip.
    """

    key: str = ""
    credential_hash: Optional[str] = None
    email: Optional[str] = None
    url: Optional[str] = None
    nice_key: Optional[str] = None
    display_name: Optional[str] = None
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    description: Optional[str] = None
    registered_at: Optional[str] = None
    metadata: Dict[str, Any] = field(default_factory=dict)
    extra: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, data: Any) -> "Record":
        """Build a Record from one parsed archive element.

        Non-object elements yield a keyless Record, which reconciliation skips.
        """
        if not isinstance(data, Mapping):
            return cls()
        values: Dict[str, Any] = {}
        for attr, wire in WIRE_NAMES:
            raw = data.get(wire)
            if raw is None and wire in LEGACY_ALIASES:
                raw = data.get(LEGACY_ALIASES[wire])
            if raw is None:
                continue
            values[attr] = raw if isinstance(raw, str) else str(raw)
        meta = data.get(METADATA_WIRE_NAME)
        if meta is None:
            meta = data.get(LEGACY_ALIASES[METADATA_WIRE_NAME])
        values["metadata"] = {str(k): v for k, v in meta.items()} if isinstance(meta, Mapping) else {}
        values["extra"] = {k: v for k, v in data.items() if k not in _KNOWN_NAMES}
        return cls(**values)

    def to_dict(self) -> Dict[str, Any]:
        out: Dict[str, Any] = dict(self.extra)
        for attr, wire in WIRE_NAMES:
            out[wire] = getattr(self, attr)
        out[METADATA_WIRE_NAME] = dict(self.metadata)
        return out

    def normalized(self, now: Optional[datetime] = None) -> "Record":
        """Return the store-ready form: normalized key, cleaned and defaulted attributes."""
        key = normalize_key(self.key)
        return replace(
            self,
            key=key,
            email=_clean_email(self.email),
            url=_clean_url(self.url),
            nice_key=slugify(self.nice_key or "") or slugify(key),
            display_name=_clean_text(self.display_name) or key,
            first_name=_clean_text(self.first_name),
            last_name=_clean_text(self.last_name),
            description=_clean_text(self.description, multiline=True),
            registered_at=self.registered_at or utc_timestamp(now),
            metadata=dict(self.metadata),
        )


def records_from_payload(payload: Iterable[Any]) -> List[Record]:
    return [Record.from_dict(item) for item in payload]


def records_to_payload(records: Iterable[Record]) -> List[Dict[str, Any]]:
    return [r.to_dict() for r in records]
