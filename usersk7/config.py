from __future__ import annotations

import json
import os
from dataclasses import dataclass, fields, replace
from pathlib import Path
from typing import Any, Dict, Mapping, Optional, Union

from .constants import (
    DEFAULT_LOG_TTL_SECONDS,
    DEFAULT_MAX_ARCHIVE_BYTES,
    DEFAULT_ROLES_KEY,
    KDF_MODES,
    KDF_RAW,
)

ENV_PREFIX = "USERSK7_"


def default_log_path() -> Path:
    base = os.environ.get("XDG_STATE_HOME") or os.path.join(os.path.expanduser("~"), ".local", "state")
    return Path(base) / "usersk7" / "last-run.json"


@dataclass(frozen=True)
class Settings:
    """Run settings: the archive password and the knobs around it.

    Args:
        password: Shared secret used to seal and open archives.
        key_derivation: "raw" (password bytes are the key) or "argon2id".
        max_archive_bytes: Largest archive accepted by an import.
        log_path: Where the last run's log is persisted; None keeps it in memory.
        log_ttl_seconds: How long the persisted log stays readable.
        roles_key: Metadata key holding the role set (replaced, not merged, on import).
    """

    password: str = ""
    key_derivation: str = KDF_RAW
    max_archive_bytes: int = DEFAULT_MAX_ARCHIVE_BYTES
    log_path: Optional[Path] = None
    log_ttl_seconds: int = DEFAULT_LOG_TTL_SECONDS
    roles_key: str = DEFAULT_ROLES_KEY

    def __post_init__(self):
        if self.key_derivation not in KDF_MODES:
            raise ValueError(f"key_derivation must be one of {', '.join(KDF_MODES)}; got {self.key_derivation!r}")
        if self.max_archive_bytes <= 0:
            raise ValueError("max_archive_bytes must be positive")
        if self.log_ttl_seconds <= 0:
            raise ValueError("log_ttl_seconds must be positive")
        if not self.roles_key:
            raise ValueError("roles_key must not be empty")
        if self.log_path is not None and not isinstance(self.log_path, Path):
            object.__setattr__(self, "log_path", Path(self.log_path))

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]) -> "Settings":
        known = {f.name for f in fields(cls)}
        unknown = sorted(set(data) - known)
        if unknown:
            raise ValueError(f"unknown settings: {', '.join(unknown)}")
        values: Dict[str, Any] = dict(data)
        for name in ("max_archive_bytes", "log_ttl_seconds"):
            if name in values:
                values[name] = int(values[name])
        return cls(**values)

    @classmethod
    def from_file(cls, path: Union[str, Path]) -> "Settings":
        return cls.from_mapping(_read_settings_file(path))

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None, **overrides: Any) -> "Settings":
        """Read USERSK7_* variables; non-None keyword overrides win."""
        return cls.load(None, environ, **overrides)

    @classmethod
    def load(
        cls,
        path: Union[str, Path, None] = None,
        environ: Optional[Mapping[str, str]] = None,
        **overrides: Any,
    ) -> "Settings":
        """Layer settings file < USERSK7_* environment < non-None overrides."""
        values: Dict[str, Any] = _read_settings_file(path) if path else {}
        env = os.environ if environ is None else environ
        for f in fields(cls):
            raw = env.get(ENV_PREFIX + f.name.upper())
            if raw:
                values[f.name] = raw
        values.update({k: v for k, v in overrides.items() if v is not None})
        return cls.from_mapping(values)

    def with_password(self, password: str) -> "Settings":
        return replace(self, password=password)


def _read_settings_file(path: Union[str, Path]) -> Dict[str, Any]:
    with open(path, "r", encoding="utf-8") as fh:
        data = json.load(fh)
    if not isinstance(data, dict):
        raise ValueError(f"settings file {path} must contain a JSON object")
    return data
