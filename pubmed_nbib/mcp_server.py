"""
FastMCP server exposing the PubMed NBIB harvester as MCP tools.
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import secrets
import sys
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Sequence

if __package__ in {None, ""}:
    sys.path.insert(0, str(Path(__file__).resolve().parents[1]))

from fastmcp import FastMCP

from pubmed_nbib.clients import DEFAULT_RETMAX, DownloadError, PubMedClient
from pubmed_nbib.downloader import (
    DEFAULT_DELAY_SECONDS,
    FetchOutcome,
    HarvestConfig,
    download_nbib_files,
)

LOGGER = logging.getLogger("pubmed_nbib.mcp")

mcp = FastMCP("PubMed NBIB Harvester MCP")


@dataclass
class JobRecord:
    """Summary of one ``download_nbib`` call, kept for the lifetime of the server."""

    job_id: str
    query: str
    output_dir: str
    dry_run: bool
    outcomes: list[FetchOutcome] = field(default_factory=list)
    created_at: str = field(
        default_factory=lambda: datetime.now(timezone.utc).isoformat(timespec="seconds")
    )

    @property
    def files(self) -> list[str]:
        return [str(outcome.path) for outcome in self.outcomes if outcome.ok]

    @property
    def failures(self) -> dict[str, str]:
        return {outcome.pmid: outcome.error or "" for outcome in self.outcomes if not outcome.ok}

    def summary(self) -> dict[str, Any]:
        return {
            "job_id": self.job_id,
            "query": self.query,
            "output_dir": self.output_dir,
            "downloaded_files": self.files,
            "file_count": len(self.files),
            "failures": self.failures,
            "attempted": len(self.outcomes),
            "dry_run": self.dry_run,
            "created_at": self.created_at,
        }


class JobRegistry:
    """In-memory job summaries keyed by job id; nothing survives a restart."""

    def __init__(self) -> None:
        self._jobs: dict[str, JobRecord] = {}
        self._lock = asyncio.Lock()

    async def add(self, record: JobRecord) -> JobRecord:
        async with self._lock:
            self._jobs[record.job_id] = record
        return record

    async def lookup(self, job_id: str) -> JobRecord:
        async with self._lock:
            record = self._jobs.get(job_id)
        if record is None:
            raise ValueError(f"Job {job_id} not found.")
        return record


job_registry = JobRegistry()


async def _run_download(config: HarvestConfig) -> list[FetchOutcome]:
    try:
        return await asyncio.to_thread(download_nbib_files, config)
    except DownloadError as exc:
        LOGGER.error("Download failed: %s", exc)
        raise RuntimeError(str(exc)) from exc
    except OSError as exc:
        LOGGER.error("Could not write to %s: %s", config.target_dir, exc)
        raise RuntimeError(f"Could not write to {config.target_dir}: {exc}") from exc


@mcp.tool
async def search_pubmed_ids(query: str, retmax: int = DEFAULT_RETMAX) -> dict[str, Any]:
    """
    Resolve a PubMed search term to its PMIDs without downloading anything.
    """
    if retmax <= 0:
        raise ValueError("retmax must be a positive integer.")
    client = PubMedClient()
    try:
        ids = await asyncio.to_thread(client.search_ids, query, retmax)
    except DownloadError as exc:
        raise RuntimeError(str(exc)) from exc
    return {"count": len(ids), "ids": ids}


@mcp.tool
async def download_nbib(
    query: str,
    output_dir: str = "downloads/nbib",
    delay_seconds: float = DEFAULT_DELAY_SECONDS,
    retmax: int = DEFAULT_RETMAX,
    dry_run: bool = False,
    job_id: str | None = None,
) -> dict[str, Any]:
    """
    Search PubMed for ``query`` and save one NBIB citation file per PMID.

    Relative ``output_dir`` values resolve against the server's working directory. When
    ``job_id`` is given, files land in a sub-folder named after it.
    """
    if delay_seconds < 0:
        raise ValueError("delay_seconds must be non-negative.")
    if retmax <= 0:
        raise ValueError("retmax must be a positive integer.")

    target_dir = Path(output_dir)
    if job_id:
        target_dir = target_dir / job_id
    target_dir = target_dir.resolve()

    config = HarvestConfig(
        query=query,
        output_dir=target_dir,
        delay_seconds=delay_seconds,
        retmax=retmax,
        dry_run=dry_run,
    )
    outcomes = await _run_download(config)

    record = await job_registry.add(
        JobRecord(
            job_id=job_id or secrets.token_hex(4),
            query=query,
            output_dir=str(target_dir),
            dry_run=dry_run,
            outcomes=outcomes,
        )
    )
    return record.summary()


@mcp.tool
async def get_job_summary(job_id: str) -> dict[str, Any]:
    """
    Retrieve the stored summary for a previous ``download_nbib`` execution.
    """
    record = await job_registry.lookup(job_id)
    return record.summary()


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Serve the PubMed NBIB tools over MCP.")
    parser.add_argument(
        "--transport",
        choices=("stdio", "http"),
        default="stdio",
        help="stdio for local clients, http to listen on --host/--port (default: stdio).",
    )
    parser.add_argument("--host", default="127.0.0.1", help="HTTP bind address.")
    parser.add_argument("--port", type=int, default=8000, help="HTTP port.")
    return parser


def main(argv: Sequence[str] | None = None) -> None:
    args = build_parser().parse_args(argv)
    logging.basicConfig(level=logging.INFO)
    if args.transport == "http":
        mcp.run(transport="http", host=args.host, port=args.port)
    else:
        mcp.run()


if __name__ == "__main__":
    main()
