import asyncio
from pathlib import Path

import pytest

from pubmed_nbib import mcp_server
from pubmed_nbib.clients import DownloadError, PubMedClient
from pubmed_nbib.downloader import FetchOutcome, HarvestConfig


def call_tool(tool, *args, **kwargs):
    fn = getattr(tool, "fn", tool)
    return asyncio.run(fn(*args, **kwargs))


@pytest.fixture
def registry(monkeypatch: pytest.MonkeyPatch) -> mcp_server.JobRegistry:
    fresh = mcp_server.JobRegistry()
    monkeypatch.setattr(mcp_server, "job_registry", fresh)
    return fresh


@pytest.fixture
def pipeline(monkeypatch: pytest.MonkeyPatch) -> list[HarvestConfig]:
    seen: list[HarvestConfig] = []

    def fake_download(config: HarvestConfig) -> list[FetchOutcome]:
        seen.append(config)
        if config.dry_run:
            return []
        return [
            FetchOutcome(pmid="1", path=config.target_dir / "1.nbib"),
            FetchOutcome(pmid="2", error="boom"),
        ]

    monkeypatch.setattr(mcp_server, "download_nbib_files", fake_download)
    return seen


def test_job_registry_lookup_of_unknown_job_raises() -> None:
    registry = mcp_server.JobRegistry()
    record = mcp_server.JobRecord(
        job_id="abc12345", query="warfarin", output_dir="/tmp/nbib", dry_run=False
    )

    async def scenario() -> None:
        assert await registry.add(record) is record
        assert await registry.lookup("abc12345") is record
        with pytest.raises(ValueError, match="Job missing not found"):
            await registry.lookup("missing")

    asyncio.run(scenario())


def test_search_pubmed_ids_returns_count_and_ids(monkeypatch: pytest.MonkeyPatch) -> None:
    calls: list[tuple[str, int]] = []

    def fake_search(self: PubMedClient, query: str, retmax: int = 500) -> list[str]:
        calls.append((query, retmax))
        return ["11", "22", "33"]

    monkeypatch.setattr(PubMedClient, "search_ids", fake_search)

    result = call_tool(mcp_server.search_pubmed_ids, "aspirin[ti]", retmax=3)

    assert result == {"count": 3, "ids": ["11", "22", "33"]}
    assert calls == [("aspirin[ti]", 3)]


def test_search_pubmed_ids_maps_download_errors(monkeypatch: pytest.MonkeyPatch) -> None:
    def failing_search(self: PubMedClient, query: str, retmax: int = 500) -> list[str]:
        raise DownloadError("PubMed search failed (503): unavailable")

    monkeypatch.setattr(PubMedClient, "search_ids", failing_search)
    with pytest.raises(RuntimeError, match="503"):
        call_tool(mcp_server.search_pubmed_ids, "aspirin")


def test_search_pubmed_ids_rejects_non_positive_retmax() -> None:
    with pytest.raises(ValueError, match="retmax"):
        call_tool(mcp_server.search_pubmed_ids, "aspirin", retmax=0)


def test_download_nbib_routes_job_id_into_subfolder_and_stores_summary(
    registry: mcp_server.JobRegistry,
    pipeline: list[HarvestConfig],
    tmp_path: Path,
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    monkeypatch.chdir(tmp_path)

    result = call_tool(mcp_server.download_nbib, "warfarin", job_id="j1", delay_seconds=1.0)

    expected_dir = (tmp_path / "downloads" / "nbib" / "j1").resolve()
    assert pipeline[0].target_dir == expected_dir
    assert pipeline[0].delay_seconds == 1.0
    assert result["job_id"] == "j1"
    assert result["output_dir"] == str(expected_dir)
    assert result["downloaded_files"] == [str(expected_dir / "1.nbib")]
    assert result["failures"] == {"2": "boom"}
    assert result["attempted"] == 2

    summary = call_tool(mcp_server.get_job_summary, "j1")
    assert summary == result
    assert summary["file_count"] == 1


def test_download_nbib_without_job_id_generates_one(
    registry: mcp_server.JobRegistry,
    pipeline: list[HarvestConfig],
    tmp_path: Path,
) -> None:
    result = call_tool(
        mcp_server.download_nbib, "warfarin", output_dir=str(tmp_path), dry_run=True
    )

    assert pipeline[0].target_dir == tmp_path.resolve()
    assert pipeline[0].dry_run is True
    assert len(result["job_id"]) == 8
    assert result["attempted"] == 0
    assert call_tool(mcp_server.get_job_summary, result["job_id"])["dry_run"] is True


@pytest.mark.parametrize(
    "kwargs",
    [{"delay_seconds": -0.1}, {"retmax": 0}],
)
def test_download_nbib_validates_arguments(
    kwargs: dict, registry: mcp_server.JobRegistry, pipeline: list[HarvestConfig]
) -> None:
    with pytest.raises(ValueError):
        call_tool(mcp_server.download_nbib, "warfarin", **kwargs)
    assert pipeline == []


def test_get_job_summary_unknown_job(registry: mcp_server.JobRegistry) -> None:
    with pytest.raises(ValueError, match="Job nope not found"):
        call_tool(mcp_server.get_job_summary, "nope")


def test_run_download_executes_pipeline_in_thread(
    pipeline: list[HarvestConfig], tmp_path: Path
) -> None:
    config = HarvestConfig(query="q", output_dir=tmp_path)

    outcomes = asyncio.run(mcp_server._run_download(config))

    assert pipeline == [config]
    assert outcomes[0].path == tmp_path / "1.nbib"


def test_run_download_converts_download_errors(monkeypatch: pytest.MonkeyPatch) -> None:
    def failing_download(config: HarvestConfig) -> list[FetchOutcome]:
        raise DownloadError("PubMed search failed (502): bad gateway")

    monkeypatch.setattr(mcp_server, "download_nbib_files", failing_download)
    with pytest.raises(RuntimeError, match="502"):
        asyncio.run(mcp_server._run_download(HarvestConfig(query="q")))


def test_download_nbib_reports_blocked_output_dir(
    registry: mcp_server.JobRegistry, monkeypatch: pytest.MonkeyPatch, tmp_path: Path
) -> None:
    blocker = tmp_path / "out"
    blocker.write_text("file in the way")

    def blocked_download(config: HarvestConfig) -> list[FetchOutcome]:
        config.target_dir.mkdir(parents=True, exist_ok=True)
        return []

    monkeypatch.setattr(mcp_server, "download_nbib_files", blocked_download)
    with pytest.raises(RuntimeError, match="Could not write to"):
        call_tool(mcp_server.download_nbib, "warfarin", output_dir=str(blocker))
