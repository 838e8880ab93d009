"""Bulk-enqueue every document in a directory for batch extraction.

Usage:
    python scripts/enqueue_directory.py DIR --instruction TEXT --schema FILE [--dry-run]

Each file under DIR becomes one Pending batch request with the same
instruction and output schema. The batch submitter picks them up on its next
run. Files that fail validation are reported and skipped.

Reads DOCBATCH_DATABASE_URL from the environment or the project .env file.
"""

import argparse
import os
import sys
from pathlib import Path

from dotenv import load_dotenv

# Allow running from the project root without installing the package.
_PROJECT_DIR = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(_PROJECT_DIR))

load_dotenv(_PROJECT_DIR / ".env")

# Parse --db-url early so it is in the environment before settings are read.
_pre = argparse.ArgumentParser(add_help=False)
_pre.add_argument("--db-url", default=None)
_pre_args, _ = _pre.parse_known_args()
if _pre_args.db_url:
    os.environ["DOCBATCH_DATABASE_URL"] = _pre_args.db_url

from docbatch.db import create_tables, get_session_factory  # noqa: E402
from docbatch.schemas.request import DocumentSubmission  # noqa: E402
from docbatch.services.extraction import ExtractionService, InvalidDocumentError  # noqa: E402
from docbatch.services.stores import RequestStore  # noqa: E402


def _collect_files(root: Path) -> list[Path]:
    return sorted(p for p in root.rglob("*") if p.is_file() and not p.name.startswith("."))


def main() -> None:
    parser = argparse.ArgumentParser(description="Enqueue a directory of documents for batch extraction.")
    parser.add_argument("directory", type=Path, help="Directory to scan recursively.")
    parser.add_argument("--instruction", required=True, help="Extraction instruction applied to every file.")
    parser.add_argument("--schema", type=Path, required=True, help="Path to the JSON output schema.")
    parser.add_argument("--model-id", default=None, help="Optional model override for every request.")
    parser.add_argument("--callback-url", default=None, help="Optional completion callback URL.")
    parser.add_argument("--db-url", default=None, help="Database URL (default: DOCBATCH_DATABASE_URL).")
    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Print what would be enqueued without writing to the database.",
    )
    args = parser.parse_args()

    directory: Path = args.directory
    if not directory.is_dir():
        print(f"ERROR: directory not found: {directory}", file=sys.stderr)
        sys.exit(1)
    if not args.schema.is_file():
        print(f"ERROR: schema file not found: {args.schema}", file=sys.stderr)
        sys.exit(1)
    output_schema = args.schema.read_text(encoding="utf-8")

    files = _collect_files(directory)
    print(f"Found {len(files)} file(s) in {directory}")
    if args.dry_run:
        print("DRY RUN: nothing will be written.\n")

    create_tables()
    svc = ExtractionService(RequestStore(get_session_factory()))

    queued = 0
    errors = 0
    for path in files:
        relative = path.relative_to(directory)
        if args.dry_run:
            print(f"  WOULD QUEUE  {relative}")
            queued += 1
            continue
        try:
            request = svc.queue_for_batch(
                DocumentSubmission(
                    document_bytes=path.read_bytes(),
                    document_name=path.name,
                    instruction=args.instruction,
                    output_schema=output_schema,
                    model_id=args.model_id,
                    callback_url=args.callback_url,
                )
            )
            print(f"  QUEUED       {relative}  ({request.id})")
            queued += 1
        except InvalidDocumentError as exc:
            print(f"  SKIPPED      {relative}  ({exc})", file=sys.stderr)
            errors += 1
        except OSError as exc:
            print(f"  ERROR        {relative}  ({exc})", file=sys.stderr)
            errors += 1

    print(f"\nDone: {queued} queued, {errors} skipped.")
    if errors:
        sys.exit(1)


if __name__ == "__main__":
    main()
