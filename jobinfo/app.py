import argparse
import base64
import binascii
import json
import sys
from pathlib import Path
from typing import Dict, List, Optional, Tuple

from . import __version__
from .database import (
    DatabaseTarget,
    Job,
    get_session_factory,
    init_database,
    run_in_txn,
)
from .env import get_database_url, get_log_dir, get_log_level, load_env
from .errors import ClaimMismatchError
from .jobs import ClaimSession, JobHandle
from .logger import get_logger


def resolve_target(db: Optional[str]) -> DatabaseTarget:
    """Treat anything with a scheme as a SQLAlchemy URL, else a SQLite path."""
    value = db or get_database_url()
    if "://" in value:
        return value
    return Path(value)


def display_key(key: bytes) -> str:
    try:
        return key.decode("utf-8")
    except UnicodeDecodeError:
        return "0x" + key.hex()


def _read_dump(path: Path) -> Dict[str, dict]:
    if not path.exists():
        raise SystemExit(f"Input file not found: {path}")
    with path.open("r", encoding="utf-8") as f:
        data = json.load(f)
    jobs = data.get("jobs")
    if not isinstance(jobs, dict):
        raise SystemExit(f"Expected a top-level 'jobs' object in {path}")
    return jobs


def _decode_legacy(entry: dict) -> Tuple[Optional[bytes], Optional[bytes], Optional[bytes]]:
    """Return (claim_session_id, payload, progress) from a dump entry."""
    claim = entry.get("claim_session_id")
    payload = entry.get("payload")
    progress = entry.get("progress")
    return (
        bytes.fromhex(claim) if claim else None,
        base64.b64decode(payload, validate=True) if payload is not None else None,
        base64.b64decode(progress, validate=True) if progress is not None else None,
    )


def cmd_init(args: argparse.Namespace) -> None:
    target = resolve_target(args.db)
    init_database(target)
    print(f"Initialized job info tables at {target}")


def cmd_get(args: argparse.Namespace) -> None:
    factory = get_session_factory(resolve_target(args.db))
    handle = JobHandle(args.job_id)

    value, found = run_in_txn(factory, lambda txn: handle.info_storage(txn).get(args.key))
    if not found:
        print(f"No info record for job {args.job_id} key {args.key!r}")
        raise SystemExit(1)

    if args.output:
        Path(args.output).write_bytes(value)
        print(f"Wrote {len(value)} bytes to {args.output}")
        return
    print(value.decode("utf-8", errors="replace"))


def cmd_put(args: argparse.Namespace) -> None:
    if args.input:
        input_path = Path(args.input)
        if not input_path.exists():
            raise SystemExit(f"Input file not found: {input_path}")
        value = input_path.read_bytes()
    else:
        value = args.value.encode("utf-8")

    session = ClaimSession.from_hex(args.session) if args.session else None
    handle = JobHandle(args.job_id, session=session)
    factory = get_session_factory(resolve_target(args.db))

    try:
        run_in_txn(factory, lambda txn: handle.info_storage(txn).write(args.key, value))
    except ClaimMismatchError as e:
        raise SystemExit(f"Write rejected: {e}")
    print(f"Wrote {len(value)} bytes to job {args.job_id} key {args.key!r}")


def cmd_ls(args: argparse.Namespace) -> None:
    factory = get_session_factory(resolve_target(args.db))
    handle = JobHandle(args.job_id)

    def collect(txn) -> List[Tuple[bytes, int]]:
        records = []
        handle.info_storage(txn).iterate(
            args.prefix, lambda key, value: records.append((key, len(value)))
        )
        return records

    records = run_in_txn(factory, collect)
    if not records:
        print(f"No info records for job {args.job_id} under prefix {args.prefix!r}")
        return
    print(f"Found {len(records)} info records for job {args.job_id}:\n")
    for key, size in records:
        print(f"  {display_key(key)}  ({size} bytes)")


def import_legacy(target: DatabaseTarget, jobs: Dict[str, dict], dry_run: bool = False) -> Dict[str, int]:
    """
    Write legacy payload/progress blobs from a dump into job_info.

    Missing job rows are created with the dump's claim session. Each job is
    imported in its own transaction.

    Returns:
        Counts of imported, skipped and failed jobs
    """
    logger = get_logger()
    factory = get_session_factory(target)
    counts = {"imported": 0, "skipped": 0, "errors": 0}

    for raw_id, entry in jobs.items():
        try:
            job_id = int(raw_id)
            claim, payload, progress = _decode_legacy(entry)
        except (ValueError, binascii.Error) as e:
            print(f"Skipping job {raw_id}: {e}")
            counts["skipped"] += 1
            continue

        if payload is None and progress is None:
            print(f"Skipping job {job_id}: no payload or progress")
            counts["skipped"] += 1
            continue

        if dry_run:
            print(f"  [dry run] job {job_id}: payload={payload is not None} progress={progress is not None}")
            counts["imported"] += 1
            continue

        def migrate(txn):
            row = txn.get(Job, job_id)
            if row is None:
                row = Job(id=job_id, claim_session_id=claim)
                txn.add(row)
                txn.flush()
            session = ClaimSession(row.claim_session_id) if row.claim_session_id else None
            storage = JobHandle(job_id, session=session).info_storage(txn)
            if payload is not None:
                storage.write_legacy_payload(payload)
            if progress is not None:
                storage.write_legacy_progress(progress)

        try:
            run_in_txn(factory, migrate)
            counts["imported"] += 1
        except Exception as e:
            logger.error("Legacy import failed", job_id=job_id, error=str(e))
            logger.record_error(type(e).__name__)
            print(f"Error importing job {job_id}: {e}")
            counts["errors"] += 1

    return counts


def verify_legacy(target: DatabaseTarget, jobs: Dict[str, dict]) -> Tuple[List[str], int]:
    """
    Compare stored legacy records against a dump.

    Entries that cannot be parsed are skipped, as import-legacy skips them.

    Returns:
        (mismatch descriptions, number of skipped entries)
    """
    factory = get_session_factory(target)
    mismatches = []
    skipped = 0

    for raw_id, entry in jobs.items():
        try:
            job_id = int(raw_id)
            _, payload, progress = _decode_legacy(entry)
        except (ValueError, binascii.Error) as e:
            print(f"Skipping job {raw_id}: {e}")
            skipped += 1
            continue

        def read(txn):
            storage = JobHandle(job_id).info_storage(txn)
            return storage.get_legacy_payload(), storage.get_legacy_progress()

        (stored_payload, _), (stored_progress, _) = run_in_txn(factory, read)
        if payload is not None and stored_payload != payload:
            mismatches.append(f"job {job_id}: payload differs")
        if progress is not None and stored_progress != progress:
            mismatches.append(f"job {job_id}: progress differs")

    return mismatches, skipped


def cmd_import_legacy(args: argparse.Namespace) -> None:
    jobs = _read_dump(Path(args.input))
    target = resolve_target(args.db)
    print(f"Found {len(jobs)} jobs in {args.input}")
    if not args.dry_run:
        init_database(target)
    counts = import_legacy(target, jobs, dry_run=args.dry_run)
    print(f"Done. imported={counts['imported']} skipped={counts['skipped']} errors={counts['errors']}")
    if counts["errors"]:
        raise SystemExit(1)


def cmd_verify_legacy(args: argparse.Namespace) -> None:
    jobs = _read_dump(Path(args.input))
    mismatches, skipped = verify_legacy(resolve_target(args.db), jobs)
    if mismatches:
        print(f"Found {len(mismatches)} mismatches:")
        for m in mismatches:
            print(f" - {m}")
        raise SystemExit(1)
    print(f"All {len(jobs) - skipped} jobs match ({skipped} skipped)")


def main(argv: Optional[List[str]] = None):
    # Load .env if present (JOBINFO_DATABASE_URL, JOBINFO_LOG_LEVEL, etc.)
    load_env()
    logger = get_logger()
    logger.set_level(get_log_level())
    log_dir = get_log_dir()
    if log_dir is not None:
        logger.set_log_dir(log_dir)

    parser = argparse.ArgumentParser(prog="jobinfo", description="Inspect and edit per-job info records")
    parser.add_argument("--version", action="store_true", help="Show version")
    parser.add_argument("--db", help="SQLite path or SQLAlchemy URL (default: JOBINFO_DATABASE_URL)")

    subparsers = parser.add_subparsers(dest="command")
    ini = subparsers.add_parser("init", help="Create the jobs and job_info tables")
    ini.set_defaults(func=cmd_init)

    get = subparsers.add_parser("get", help="Print the latest value of an info key")
    get.add_argument("--job-id", type=int, required=True, help="Job ID")
    get.add_argument("--key", required=True, help="Info key")
    get.add_argument("--output", help="Write the raw value to this file instead of stdout")
    get.set_defaults(func=cmd_get)

    put = subparsers.add_parser("put", help="Replace the value of an info key")
    put.add_argument("--job-id", type=int, required=True, help="Job ID")
    put.add_argument("--key", required=True, help="Info key")
    src = put.add_mutually_exclusive_group(required=True)
    src.add_argument("--value", help="Value as UTF-8 text")
    src.add_argument("--input", help="Read the raw value from this file")
    put.add_argument("--session", help="Claim session ID (hex); the write is fenced against the job's claim")
    put.set_defaults(func=cmd_put)

    ls = subparsers.add_parser("ls", help="List the latest record of each key under a prefix")
    ls.add_argument("--job-id", type=int, required=True, help="Job ID")
    ls.add_argument("--prefix", default="", help="Info key prefix (default: all keys)")
    ls.set_defaults(func=cmd_ls)

    imp = subparsers.add_parser("import-legacy", help="Import legacy payload/progress blobs from a JSON dump")
    imp.add_argument("--input", required=True, help="Path to JSON dump")
    imp.add_argument("--dry-run", action="store_true", help="Report what would be imported without writing")
    imp.set_defaults(func=cmd_import_legacy)

    ver = subparsers.add_parser("verify-legacy", help="Check stored legacy records against a JSON dump")
    ver.add_argument("--input", required=True, help="Path to JSON dump")
    ver.set_defaults(func=cmd_verify_legacy)

    args = parser.parse_args(argv)

    if args.version:
        print(__version__)
        return

    if hasattr(args, "func"):
        args.func(args)
        return

    parser.print_help(sys.stdout)


if __name__ == "__main__":
    main()
