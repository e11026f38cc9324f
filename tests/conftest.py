from pathlib import Path
import sys

import pytest
import requests

PROJECT_ROOT = Path(__file__).resolve().parents[1]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))


class FakeResponse:
    def __init__(self, body: bytes | str = b"", status_code: int = 200) -> None:
        self.content = body.encode("utf-8") if isinstance(body, str) else body
        self.status_code = status_code

    @property
    def text(self) -> str:
        return self.content.decode("utf-8")


class FakeSession:
    """Stand-in for ``requests.Session`` that serves canned responses in call order."""

    def __init__(self, responses=()) -> None:
        self.headers: dict[str, str] = {}
        self.calls: list[str] = []
        self._responses = list(responses)

    def queue(self, response) -> None:
        self._responses.append(response)

    def get(self, url: str, timeout=None):
        self.calls.append(url)
        if not self._responses:
            raise requests.ConnectionError(f"no response queued for {url}")
        response = self._responses.pop(0)
        if isinstance(response, Exception):
            raise response
        return response


def esearch_xml(*pmids: str) -> str:
    ids = "\n".join(f"    <Id>{pmid}</Id>" for pmid in pmids)
    return (
        '<?xml version="1.0" encoding="UTF-8" ?>\n'
        '<!DOCTYPE eSearchResult PUBLIC "-//NLM//DTD esearch 20060628//EN" '
        '"https://eutils.ncbi.nlm.nih.gov/eutils/dtd/20060628/esearch.dtd">\n'
        "<eSearchResult>\n"
        f"  <Count>{len(pmids)}</Count>\n"
        f"  <RetMax>{len(pmids)}</RetMax>\n"
        "  <RetStart>0</RetStart>\n"
        f"  <IdList>\n{ids}\n  </IdList>\n"
        "  <TranslationSet/>\n"
        "</eSearchResult>\n"
    )


@pytest.fixture(autouse=True)
def _isolate_ncbi_env(monkeypatch: pytest.MonkeyPatch) -> None:
    for key in ("NCBI_API_KEY", "NCBI_EMAIL"):
        monkeypatch.setenv(key, "")
        monkeypatch.delenv(key)
