import logging
import os
from typing import Optional
from urllib.parse import quote

import requests
from bs4 import BeautifulSoup
from bs4.element import Tag

LOGGER = logging.getLogger(__name__)

DEFAULT_USER_AGENT = "PubMedNbibHarvester/0.1.0 (+https://pubmed.ncbi.nlm.nih.gov/)"
DEFAULT_RETMAX = 500
DEFAULT_TIMEOUT = 60
NBIB_EXTENSION = "nbib"

ESEARCH_URL = "https://eutils.ncbi.nlm.nih.gov/entrez/eutils/esearch.fcgi"
CITATION_URL = "https://api.ncbi.nlm.nih.gov/lit/ctxp/v1/pubmed/"


class DownloadError(RuntimeError):
    """Raised when a PubMed search or citation request fails."""


def build_search_url(
    query: str,
    retmax: int = DEFAULT_RETMAX,
    *,
    api_key: Optional[str] = None,
    email: Optional[str] = None,
) -> str:
    """
    Build the ESearch URL for ``query``.

    The query is percent-encoded as a whole (including ``&`` and ``=``) and is otherwise
    passed through untouched; PubMed decides what an empty or malformed term means.
    """
    url = f"{ESEARCH_URL}?db=pubmed&retmax={retmax}&term={quote(query, safe='')}"
    if api_key:
        url += f"&api_key={quote(api_key, safe='')}"
    if email:
        url += f"&email={quote(email, safe='')}&tool=pubmed_nbib"
    return url


def build_citation_url(pmid: str) -> str:
    return (
        f"{CITATION_URL}?format=medline&contenttype=json"
        f"&id={quote(pmid, safe='')}&download=y"
    )


def extract_ids(xml_text: str) -> list[str]:
    """
    Return the identifiers listed under the root's ``IdList`` element, in document order.

    A response without ``IdList`` yields an empty list rather than an error; NCBI reports
    malformed queries and server-side problems that way.
    """
    if not xml_text or not xml_text.strip():
        LOGGER.warning("ESearch returned an empty body; no identifiers resolved.")
        return []

    soup = BeautifulSoup(xml_text, "xml")
    root = next((child for child in soup.children if isinstance(child, Tag)), None)
    id_list = root.find("IdList", recursive=False) if root is not None else None
    if id_list is None:
        error = root.find("ERROR", recursive=False) if root is not None else None
        if error is not None:
            LOGGER.warning("ESearch response has no IdList (ERROR: %s)", error.get_text(strip=True))
        else:
            LOGGER.warning("ESearch response has no IdList; no identifiers resolved.")
        return []

    return [child.get_text() for child in id_list.children if isinstance(child, Tag)]


class PubMedClient:
    """
    Client for the NCBI E-utilities search endpoint and the PubMed citation exporter.

    Notes
    -----
    * ESearch documentation: https://www.ncbi.nlm.nih.gov/books/NBK25499/
    * NCBI allows 3 requests/second without an API key. Set ``NCBI_API_KEY`` (or pass
      ``api_key=``) to have it sent with searches; ``NCBI_EMAIL`` is sent as contact info.
    * The client performs no pacing of its own; callers space out requests.
    """

    def __init__(
        self,
        *,
        session: Optional[requests.Session] = None,
        user_agent: str = DEFAULT_USER_AGENT,
        api_key: Optional[str] = None,
        email: Optional[str] = None,
        timeout: float = DEFAULT_TIMEOUT,
    ) -> None:
        self._api_key = api_key or os.getenv("NCBI_API_KEY")
        self._email = email or os.getenv("NCBI_EMAIL")
        self._timeout = timeout
        self._session = session or requests.Session()
        self._session.headers.update({"User-Agent": user_agent})

    def search_ids(self, query: str, retmax: int = DEFAULT_RETMAX) -> list[str]:
        """
        Run ``query`` against PubMed and return the matching PMIDs in the order returned.
        """
        url = build_search_url(query, retmax, api_key=self._api_key, email=self._email)
        LOGGER.debug("PubMed search: %s", url)
        response = self._get(url, what="PubMed search")
        return extract_ids(response.text)

    def fetch_citation(self, pmid: str) -> bytes:
        """
        Download the MEDLINE (``.nbib``) citation for ``pmid`` and return the raw body.
        """
        url = build_citation_url(pmid)
        LOGGER.debug("PubMed citation download: %s", url)
        response = self._get(url, what=f"Citation download for {pmid}")
        return response.content

    def _get(self, url: str, *, what: str) -> requests.Response:
        try:
            response = self._session.get(url, timeout=self._timeout)
        except requests.RequestException as exc:
            raise DownloadError(f"{what} failed: {exc}") from exc
        if response.status_code != requests.codes.ok:
            raise DownloadError(
                f"{what} failed ({response.status_code}): {response.text[:200]}"
            )
        return response
