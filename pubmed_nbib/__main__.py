"""
Command line interface for the pubmed-nbib package.
"""

from __future__ import annotations

import argparse
import logging
from pathlib import Path
from typing import Iterable

from .clients import DEFAULT_RETMAX, DEFAULT_TIMEOUT, DownloadError
from .downloader import (
    DEFAULT_DELAY_SECONDS,
    DEFAULT_OUTPUT_DIR,
    DEFAULT_QUERY,
    PACKAGE_DIR,
    FetchOutcome,
    HarvestConfig,
    download_nbib_files,
    load_env_file,
)

LOGGER = logging.getLogger("pubmed_nbib.cli")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Search PubMed and download one NBIB citation file per matching PMID."
    )
    query_group = parser.add_mutually_exclusive_group()
    query_group.add_argument(
        "--query",
        help="PubMed search term (defaults to the built-in atrial fibrillation/anticoagulant query).",
    )
    query_group.add_argument(
        "--query-file",
        type=Path,
        help="Read the PubMed search term from a UTF-8 text file.",
    )
    parser.add_argument(
        "--output-dir",
        type=Path,
        default=DEFAULT_OUTPUT_DIR,
        help="Directory for .nbib files; relative paths resolve against --base-dir (default: output).",
    )
    parser.add_argument(
        "--base-dir",
        type=Path,
        default=PACKAGE_DIR,
        help="Base for a relative --output-dir (defaults to the package installation directory).",
    )
    parser.add_argument(
        "--delay",
        type=float,
        default=DEFAULT_DELAY_SECONDS,
        help="Seconds to wait between citation downloads (default 0.5).",
    )
    parser.add_argument(
        "--retmax",
        type=int,
        default=DEFAULT_RETMAX,
        help="Maximum number of PMIDs to request from the search (default 500).",
    )
    parser.add_argument(
        "--timeout",
        type=float,
        default=DEFAULT_TIMEOUT,
        help="Per-request timeout in seconds (default 60).",
    )
    parser.add_argument(
        "--fail-fast",
        action="store_true",
        help="Abort on the first failed citation download instead of skipping it.",
    )
    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Resolve PMIDs without downloading any files.",
    )
    parser.add_argument("--verbose", action="store_true", help="Enable debug logging.")
    return parser


def _log_outcomes(outcomes: Iterable[FetchOutcome]) -> None:
    saved = 0
    failed: list[FetchOutcome] = []
    total = 0
    for total, outcome in enumerate(outcomes, start=1):
        if outcome.ok:
            saved += 1
            LOGGER.info("Saved %s", outcome.path)
        else:
            failed.append(outcome)
    if total == 0:
        LOGGER.info("No citations downloaded.")
        return

    LOGGER.info("%d/%d citations saved", saved, total)
    for outcome in failed:
        LOGGER.warning("  PMID %s failed: %s", outcome.pmid, outcome.error)


def main(argv: list[str] | None = None) -> None:
    parser = build_parser()
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s | %(levelname)s | %(name)s | %(message)s",
    )

    if args.delay < 0:
        raise SystemExit("Delay must be non-negative.")
    if args.retmax <= 0:
        raise SystemExit("retmax must be a positive integer.")

    if args.query_file is not None:
        if not args.query_file.exists():
            raise SystemExit(f"Query file not found: {args.query_file}")
        query = args.query_file.read_text(encoding="utf-8").strip()
    elif args.query is not None:
        query = args.query
    else:
        query = DEFAULT_QUERY

    load_env_file()
    config = HarvestConfig(
        query=query,
        output_dir=args.output_dir,
        base_dir=args.base_dir,
        delay_seconds=args.delay,
        retmax=args.retmax,
        timeout=args.timeout,
        raise_on_error=args.fail_fast,
        dry_run=args.dry_run,
    )

    try:
        outcomes = download_nbib_files(config)
    except DownloadError as exc:
        LOGGER.error("Download aborted: %s", exc)
        raise SystemExit(1) from exc
    except OSError as exc:
        LOGGER.error("Could not write to %s: %s", config.target_dir, exc)
        raise SystemExit(1) from exc

    if args.dry_run:
        LOGGER.info("Dry run finished; no files were downloaded.")
        return

    _log_outcomes(outcomes)


if __name__ == "__main__":
    main()
