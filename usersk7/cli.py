from __future__ import annotations

import os
import sys
import argparse
import json as _json
import getpass as _getpass
from dataclasses import replace
from pathlib import Path
from typing import List

from usersk7.codec import ArchiveCodec
from usersk7.config import Settings, default_log_path
from usersk7.constants import ARCHIVE_EXTENSION, KDF_MODES
from usersk7.encryption import EncryptionService
from usersk7.errors import UsersK7Error
from usersk7.oplog import FileLogStorage, OperationLog
from usersk7.pipeline import ExportRun, ImportRun
from usersk7.reconcile import Outcome
from usersk7.store import JsonFileRecordStore


def _resolve_settings(args: argparse.Namespace, *, need_password: bool = True) -> Settings:
    """Merge CLI flags over USERSK7_* environment values; prompt for a missing password."""
    settings = Settings.load(
        getattr(args, "settings", None),
        password=getattr(args, "password", None),
        key_derivation=getattr(args, "key_derivation", None),
        log_path=getattr(args, "log_path", None),
    )
    if settings.log_path is None:
        settings = replace(settings, log_path=default_log_path())
    if need_password and not settings.password:
        settings = settings.with_password(_getpass.getpass("Archive password: "))
    return settings


def cmd_export(store_path: str, output: str, settings: Settings, *, quiet: bool = False) -> bool:
    """Seal every record of a JSON record store into a .k7 archive.

    Args:
        store_path: JSON record store to read.
        output: Archive path, or an existing directory to place the suggested filename in.
        settings: Run settings (password, key derivation, log location).
        quiet: Suppress the per-entry log echo.
    """
    if not os.path.exists(store_path):
        raise FileNotFoundError(f"record store not found: {store_path}")
    store = JsonFileRecordStore(store_path, roles_key=settings.roles_key)
    run = ExportRun(settings)
    result = run.run(store.records())
    target = Path(output)
    if target.is_dir():
        target = target / result.filename
    target.write_bytes(result.data)
    if not quiet:
        for line in run.log.lines():
            print(line)
    print(f"Done: {result.count} records sealed into {target}")
    return True


def cmd_import(
    archive: str,
    store_path: str,
    settings: Settings,
    *,
    dry_run: bool = False,
    as_json: bool = False,
    quiet: bool = False,
) -> bool:
    """Reconcile an archive against a JSON record store.

    Returns:
        True when no entry was skipped.
    """
    data = Path(archive).read_bytes()
    store = JsonFileRecordStore(store_path, roles_key=settings.roles_key)
    run = ImportRun(settings)
    result = run.run(data, store, dry_run=dry_run, filename=os.path.basename(archive))
    if not dry_run:
        store.save()
    s = result.summary
    if as_json:
        print(_json.dumps({
            "dry_run": dry_run,
            "summary": s.as_dict(),
            "decisions": [
                {
                    "index": d.index,
                    "key": d.key,
                    "outcome": d.outcome.value,
                    "id": str(d.record_id) if d.record_id is not None else None,
                    "reason": d.reason.value if d.reason else None,
                    "detail": d.detail or None,
                }
                for d in result.decisions
            ],
        }))
    else:
        if not quiet:
            for entry in result.entries:
                print(entry.format())
        for d in result.decisions:
            if d.outcome is Outcome.SKIPPED:
                print(f"  skipped #{d.index + 1} {d.key or '(no key)'}: {d.reason.value} {d.detail}".rstrip())
        prefix = "Dry run" if dry_run else "Summary"
        print(f"{prefix}: created={s.created} updated={s.updated} skipped={s.skipped}")
    return s.skipped == 0


def cmd_inspect(archive: str, settings: Settings) -> bool:
    """List the keys held by an archive without touching any store."""
    codec = ArchiveCodec(EncryptionService(settings.key_derivation))
    records = codec.open(Path(archive).read_bytes(), settings.password)
    for rec in records:
        roles = rec.metadata.get(settings.roles_key)
        role_txt = ",".join(sorted(roles)) if isinstance(roles, dict) else "-"
        print(f"{rec.key or '(no key)'}\t{rec.email or '-'}\t{role_txt}\t{len(rec.metadata)} meta")
    print(f"Entries: {len(records)}")
    return True


def cmd_log(settings: Settings, *, html: bool = False) -> bool:
    """Print the persisted log of the last run, if it has not expired."""
    log = OperationLog(FileLogStorage(settings.log_path), ttl_seconds=settings.log_ttl_seconds)
    text = log.formatted_last(html_list=html)
    if not text:
        print("No log from a recent run.")
        return False
    print(text)
    return True


def main(argv: List[str] | None = None):
    ap = argparse.ArgumentParser(
        prog="usersk7",
        description="Export and import account records as encrypted .k7 archives",
        epilog="Archives are base64(IV || AES-256-CBC(gzip(JSON))). Keep the password safe.",
    )
    ap.add_argument("--settings", help="JSON settings file")
    ap.add_argument("--log-path", help="Where the last run's log is kept")
    sub = ap.add_subparsers(dest="cmd", required=True)

    def _crypto_args(p: argparse.ArgumentParser) -> None:
        p.add_argument("--password", help="Archive password (or USERSK7_PASSWORD)")
        p.add_argument("--key-derivation", choices=list(KDF_MODES), help="Key derivation mode (default raw)")

    ap_export = sub.add_parser("export", help="Seal a record store into an archive")
    ap_export.add_argument("store", help="JSON record store")
    ap_export.add_argument("output", help=f"Output {ARCHIVE_EXTENSION} path or directory")
    ap_export.add_argument("--quiet", help="limit outputs to summaries only", action="store_true")
    _crypto_args(ap_export)

    ap_import = sub.add_parser("import", help="Reconcile an archive into a record store")
    ap_import.add_argument("archive", help=f"{ARCHIVE_EXTENSION} archive path")
    ap_import.add_argument("store", help="JSON record store (created if missing)")
    ap_import.add_argument("--dry-run", action="store_true", help="Decide everything, change nothing")
    ap_import.add_argument("--strict", action="store_true", help="Exit 1 when any entry was skipped")
    ap_import.add_argument("--json", action="store_true", help="Emit JSON result summary")
    ap_import.add_argument("--quiet", help="limit outputs to summaries only", action="store_true")
    _crypto_args(ap_import)

    ap_inspect = sub.add_parser("inspect", help="List archive entries")
    ap_inspect.add_argument("archive", help="Archive path")
    _crypto_args(ap_inspect)

    ap_log = sub.add_parser("log", help="Show the log of the last run")
    ap_log.add_argument("--html", action="store_true", help="Render as an HTML list")

    args = ap.parse_args(argv)
    try:
        if args.cmd == "export":
            cmd_export(args.store, args.output, _resolve_settings(args), quiet=args.quiet)
        elif args.cmd == "import":
            ok = cmd_import(
                args.archive,
                args.store,
                _resolve_settings(args),
                dry_run=args.dry_run,
                as_json=args.json,
                quiet=args.quiet,
            )
            if args.strict and not ok:
                sys.exit(1)
        elif args.cmd == "inspect":
            cmd_inspect(args.archive, _resolve_settings(args))
        elif args.cmd == "log":
            cmd_log(_resolve_settings(args, need_password=False), html=args.html)
        else:
            raise RuntimeError("Unknown command")
    except FileNotFoundError as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(2)
    except UsersK7Error as e:
        print(f"Error: {type(e).__name__}: {e}", file=sys.stderr)
        sys.exit(2)
    except (ValueError, RuntimeError, OSError) as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(2)


if __name__ == "__main__":
    main()
