"""
UsersK7: portable, encrypted transfer of account records between systems.

Features:

- Archive codec: JSON -> gzip (level 9) -> AES-256-CBC, framed as base64(IV || ciphertext).
- Reconciliation of an archive against a record store: create, update or skip
  per record, with a dry-run mode that decides everything and writes nothing.
- Imported role sets replace the stored ones; every other metadata key is merged.
- Append-only operation log per run, persisted (last run only) with an expiry.
- CLI for export, import, inspect and last-run log display.

Security note: the cipher mode carries no authentication tag and, by default,
the password is used directly as key material. A wrong password and a corrupt
archive are indistinguishable; treat archives from untrusted sources with care.
"""

__version__ = "1.1.0"

__all__ = [
    "constants",
    "encryption",
    "codec",
    "records",
    "store",
    "reconcile",
    "oplog",
    "pipeline",
    "config",
]

# Programmatic API: usersk7.pipeline.ExportRun/ImportRun (or export_records /
# import_archive), and the CLI functions in usersk7.cli (cmd_export/cmd_import).
