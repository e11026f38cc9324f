"""
Core helpers for resolving PubMed identifiers and downloading their NBIB citation files.
"""

from __future__ import annotations

import logging
import os
import re
import time
from collections import deque
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, Iterable, Iterator, Optional

from .clients import (
    DEFAULT_RETMAX,
    DEFAULT_TIMEOUT,
    NBIB_EXTENSION,
    DownloadError,
    PubMedClient,
)

LOGGER = logging.getLogger(__name__)

DEFAULT_DELAY_SECONDS = 0.5  # NCBI caps unauthenticated clients at 3 req/sec
DEFAULT_OUTPUT_DIR = Path("output")
PACKAGE_DIR = Path(__file__).resolve().parent

_PMID_PATTERN = re.compile(r"[0-9A-Za-z._-]+")

# The curly quotes around ACF02Query are part of the stock query and are sent as-is.
DEFAULT_QUERY = (
    "“ACF02Query”[ti] OR "
    '"atrial fibrillation" AND ((Acenocoumarol OR apixaban OR argatroban '
    "OR betrixaban OR bivalirudin OR Dabigatran OR Dalteparin OR danaparoid OR desirudin OR "
    "edoxaban OR Enoxaparin OR Fondaparinux OR Heparin* OR Hirudins OR lepirudin OR Rivaroxaban "
    'OR Warfarin OR "oral anticoagulation" OR "direct oral anticoagulants" OR DOACs OR '
    'Anticoagula*) OR (Abciximab OR "acetylsalicylic acid" OR Aspirin OR cangrelor OR '
    "Cilostazol OR Clopidogrel OR Dipyridamole OR eptifibitide OR Pentoxifylline OR "
    '"Prasugrel Hydrochloride" OR Ticagrelor OR Ticlopidine OR Tirofiban OR antiplatelet OR '
    'Antithrombotic)) AND "last 14 days"=[dp] AND english[LA] NOT (mouse OR mice OR dog OR '
    "dogs OR chicken OR chickens OR cat OR cats OR canine* OR monkey* OR rat OR rats OR "
    "porcine*)"
)


def _iter_env_pairs(text: str) -> Iterator[tuple[str, str]]:
    for raw_line in text.splitlines():
        line = raw_line.strip()
        if line.startswith("#"):
            continue
        key, sep, value = line.partition("=")
        key, value = key.strip(), value.strip().strip("'\"")
        if sep and key and value:
            yield key, value


def load_env_file(path: Path | str = ".env") -> bool:
    """
    Read NCBI credentials (or any other ``KEY=value`` pairs) from a dotenv-style file.

    Variables already present in the environment win over the file.
    """
    env_path = Path(path)
    if not env_path.is_file():
        LOGGER.debug("No .env file found at %s", env_path)
        return False

    fresh = {
        key: value
        for key, value in _iter_env_pairs(env_path.read_text(encoding="utf-8"))
        if key not in os.environ
    }
    os.environ.update(fresh)
    if fresh:
        LOGGER.info("Loaded %s from %s", ", ".join(sorted(fresh)), env_path)
    else:
        LOGGER.debug("No new environment variables loaded from %s", env_path)
    return True


@dataclass
class HarvestConfig:
    """Everything a single harvest run needs; defaults reproduce the stock query."""

    query: str = DEFAULT_QUERY
    output_dir: Path = DEFAULT_OUTPUT_DIR
    base_dir: Path = PACKAGE_DIR
    delay_seconds: float = DEFAULT_DELAY_SECONDS
    retmax: int = DEFAULT_RETMAX
    timeout: float = DEFAULT_TIMEOUT
    raise_on_error: bool = False
    dry_run: bool = False
    api_key: Optional[str] = field(default=None, repr=False)
    email: Optional[str] = None

    @property
    def target_dir(self) -> Path:
        return resolve_output_dir(self.output_dir, self.base_dir)


@dataclass
class FetchOutcome:
    """Result of one identifier's download attempt."""

    pmid: str
    path: Optional[Path] = None
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.error is None


def resolve_output_dir(output_dir: Path | str, base_dir: Path | str | None = None) -> Path:
    """
    Resolve ``output_dir`` against ``base_dir`` (the package directory by default).

    Absolute paths are returned unchanged.
    """
    base = Path(base_dir) if base_dir is not None else PACKAGE_DIR
    return base / Path(output_dir)


def prepare_output_dir(path: Path) -> Path:
    """
    Create ``path`` (and parents) unless it already exists as a directory.

    Anything other than "already exists as a directory" propagates, e.g. a permission
    error or a regular file occupying the path.
    """
    path.mkdir(parents=True, exist_ok=True)
    return path


def nbib_destination(output_dir: Path, pmid: str) -> Path:
    return output_dir / f"{pmid}.{NBIB_EXTENSION}"


def fetch_and_persist(
    pmids: Iterable[str],
    output_dir: Path,
    *,
    client: PubMedClient,
    delay_seconds: float = DEFAULT_DELAY_SECONDS,
    raise_on_error: bool = False,
    sleep: Callable[[float], None] = time.sleep,
) -> Iterator[FetchOutcome]:
    """
    Download each PMID's citation in order, writing ``<pmid>.nbib`` into ``output_dir``.

    Requests are strictly sequential with ``delay_seconds`` between consecutive
    identifiers, whether or not the previous one succeeded. Request and write failures
    are reported as failed outcomes unless ``raise_on_error`` is set, and so are
    identifiers that are not plain tokens (anything that could leave ``output_dir``).
    """
    pending = deque(pmids)
    while pending:
        pmid = pending.popleft()
        destination = nbib_destination(output_dir, pmid)
        try:
            if not _PMID_PATTERN.fullmatch(pmid):
                raise DownloadError(f"Refusing unsafe identifier {pmid!r}")
            payload = client.fetch_citation(pmid)
            destination.write_bytes(payload)
        except (DownloadError, OSError) as exc:
            LOGGER.warning("Skipping PMID %s: %s", pmid, exc)
            if raise_on_error:
                raise
            yield FetchOutcome(pmid=pmid, error=str(exc))
        else:
            LOGGER.debug("Wrote %d bytes to %s", len(payload), destination)
            yield FetchOutcome(pmid=pmid, path=destination)

        if pending and delay_seconds:
            sleep(delay_seconds)


def download_nbib_files(
    config: HarvestConfig,
    *,
    client: Optional[PubMedClient] = None,
    sleep: Callable[[float], None] = time.sleep,
) -> list[FetchOutcome]:
    """
    Resolve ``config.query`` to PMIDs and download one NBIB file per PMID.

    Search failures and output-directory failures abort the run; per-identifier failures
    are returned as outcomes. When ``dry_run`` is ``True`` only the search is performed.
    """
    client = client or PubMedClient(
        api_key=config.api_key,
        email=config.email,
        timeout=config.timeout,
    )
    pmids = client.search_ids(config.query, retmax=config.retmax)
    LOGGER.info("Resolved %d PMIDs (retmax=%d)", len(pmids), config.retmax)

    sample = pmids[:5]
    if sample:
        suffix = "..." if len(pmids) > len(sample) else ""
        LOGGER.info("Example PMIDs queued: %s%s", ", ".join(sample), suffix)

    if config.dry_run:
        LOGGER.info("Dry run requested; skipping all download attempts.")
        return []

    output_dir = prepare_output_dir(config.target_dir)
    if not pmids:
        LOGGER.info("Nothing to download.")
        return []

    LOGGER.info("Beginning downloads; files will be stored in %s", output_dir)
    return list(
        fetch_and_persist(
            pmids,
            output_dir,
            client=client,
            delay_seconds=config.delay_seconds,
            raise_on_error=config.raise_on_error,
            sleep=sleep,
        )
    )
