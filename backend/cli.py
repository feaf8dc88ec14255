#!/usr/bin/env python3
"""
CLI tool for the Document Key-Value Extractor

Supports:
- extract: Extract key/value data from files or directories and export a reconciled CSV table
- suggest-headers: Ask the model for column headers covering a set of documents
"""

import argparse
import asyncio
import json
import logging
import mimetypes
import sys
from pathlib import Path
from typing import List, Tuple

from config import ACCEPTED_MIME_TYPES, EXTRACTION_CONCURRENCY, LOG_LEVEL
from gemini_extractor import GeminiExtractor, ExtractionError
from models import FileStatus
from session import ExtractionSession

SUPPORTED_EXTENSIONS = {ext for exts in ACCEPTED_MIME_TYPES.values() for ext in exts}


def collect_files(inputs: List[str]) -> List[Tuple[Path, str]]:
    """Expand input paths into (path, mime_type) pairs, directories non-recursively"""
    files = []
    for item in inputs:
        path = Path(item)
        if path.is_dir():
            candidates = sorted(p for p in path.iterdir() if p.is_file())
        elif path.is_file():
            candidates = [path]
        else:
            print(f"Warning: Path '{path}' not found.")
            continue

        for candidate in candidates:
            if candidate.suffix.lower() not in SUPPORTED_EXTENSIONS:
                if path.is_file():
                    print(f"Warning: Unsupported file type skipped: {candidate.name}")
                continue
            mime_type = mimetypes.guess_type(candidate.name)[0]
            files.append((candidate, mime_type))
    return files


def extract_command(args, extractor=None):
    """Handle extract command"""
    files = collect_files(args.input)
    if not files:
        print("Error: No supported files found.")
        sys.exit(1)

    session = ExtractionSession(extractor or GeminiExtractor(), concurrency=args.concurrency)
    for path, mime_type in files:
        session.add_document(path.name, mime_type, path.read_bytes())

    print(f"Processing {len(session.documents)} document(s)...")
    state = asyncio.run(session.process_pending(instructions=args.instructions))

    for document in session.documents:
        mark = "✓" if document.status == FileStatus.COMPLETED else "✗"
        line = f"  {mark} {document.filename}"
        if document.error:
            line += f": {document.error}"
        print(line, file=sys.stderr if document.error else sys.stdout)
    print(f"Summary: {state.completed} completed, {state.failed} failed, {len(state.columns)} column(s).")

    if args.json:
        headers, rows = session.table()
        output = json.dumps({"headers": headers, "rows": rows}, indent=2, ensure_ascii=False)
    else:
        output = session.export_csv()

    if args.output:
        output_path = Path(args.output)
        output_path.parent.mkdir(parents=True, exist_ok=True)
        with open(output_path, "w", encoding="utf-8", newline="") as f:
            f.write(output)
        print(f"Results saved to {output_path}")
    else:
        print(output)


def suggest_headers_command(args, extractor=None):
    """Handle suggest-headers command"""
    files = collect_files(args.input)
    if not files:
        print("Error: No supported files found.")
        sys.exit(1)

    extractor = extractor or GeminiExtractor()
    try:
        headers = extractor.suggest_headers([(path.read_bytes(), mime_type) for path, mime_type in files])
    except ExtractionError as e:
        print(f"Error: {e}")
        sys.exit(1)

    for header in headers:
        print(header)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Document Key-Value Extractor CLI")
    subparsers = parser.add_subparsers(dest="command", required=True)

    # Extract
    extract_parser = subparsers.add_parser("extract", help="Extract key/value data into a table")
    extract_parser.add_argument("input", nargs="+", help="Input files or directories")
    extract_parser.add_argument("--output", help="Output file (prints to stdout if omitted)")
    extract_parser.add_argument("--instructions", help="Additional instructions for the model")
    extract_parser.add_argument("--json", action="store_true", help="Write the table as JSON instead of CSV")
    extract_parser.add_argument("--concurrency", type=int, default=EXTRACTION_CONCURRENCY, help="Documents extracted in parallel")
    extract_parser.set_defaults(func=extract_command)

    # Suggest headers
    headers_parser = subparsers.add_parser("suggest-headers", help="Suggest column headers for documents")
    headers_parser.add_argument("input", nargs="+", help="Input files or directories")
    headers_parser.set_defaults(func=suggest_headers_command)

    return parser


def main(argv=None):
    logging.basicConfig(level=LOG_LEVEL, format="%(levelname)s %(name)s: %(message)s")
    parser = build_parser()
    args = parser.parse_args(argv)
    args.func(args)


if __name__ == "__main__":
    main()
