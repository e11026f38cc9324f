"""
High-level helpers for downloading PubMed NBIB citation files for a search query.
"""

from .clients import DownloadError, PubMedClient, extract_ids  # noqa: F401
from .downloader import (  # noqa: F401
    FetchOutcome,
    HarvestConfig,
    download_nbib_files,
    fetch_and_persist,
    prepare_output_dir,
)

__all__ = [
    "DownloadError",
    "FetchOutcome",
    "HarvestConfig",
    "PubMedClient",
    "download_nbib_files",
    "extract_ids",
    "fetch_and_persist",
    "prepare_output_dir",
]
__version__ = "0.1.0"
