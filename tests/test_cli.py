import orjson
import pytest

import influencer_search.cli as cli
from influencer_search.connectors import ApifyScrapingService, ScrapeBackedVerifier, SerplySearchProvider
from influencer_search.exceptions import InfluencerSearchError
from influencer_search.models import (
    DataSource,
    QualityTier,
    RankedCandidate,
    ScrapedProfile,
    SearchResponse,
    SearchSummary,
)


@pytest.fixture
def no_logging(monkeypatch):
    # Avoid touching real logs/paths during tests
    monkeypatch.setattr(cli, "setup_logging", lambda *a, **k: None)


def _response(success=True):
    results = []
    if success:
        profile = ScrapedProfile(
            username="mariafitness",
            platform="instagram",
            url="https://www.instagram.com/mariafitness/",
            data_source=DataSource.SCRAPED,
            followers=52_000,
        )
        results.append(RankedCandidate(rank=1, profile=profile, combined_score=81))
    return SearchResponse(
        search_id="abc123",
        success=success,
        results=results,
        summary=SearchSummary(total_found=4, total_scraped=1, total_returned=len(results)),
        source_strategy="multi_source_search" if success else None,
        quality_tier=QualityTier.HIGH if success else None,
    )


@pytest.fixture
def fake_orchestrator(monkeypatch):
    """Replace build_orchestrator; captures its kwargs and the search params"""
    calls = {"build": None, "params": None, "success": True, "entered": False, "exited": False}

    class FakeOrchestrator:
        async def __aenter__(self):
            calls["entered"] = True
            return self

        async def __aexit__(self, *exc_info):
            calls["exited"] = True

        async def search(self, params):
            calls["params"] = params
            return _response(calls["success"])

    def fake_build(**kwargs):
        calls["build"] = kwargs
        return FakeOrchestrator()

    monkeypatch.setattr(cli, "build_orchestrator", fake_build)
    monkeypatch.delenv("SERPLY_API_KEY", raising=False)
    monkeypatch.delenv("APIFY_TOKEN", raising=False)
    return calls


def test_main_passes_search_arguments(no_logging, fake_orchestrator, tmp_path):
    cli.main(
        [
            "--platforms", "Instagram", "tiktok",
            "--niches", "fitness", "food",
            "--location", "spain",
            "--brand", "Nike",
            "--min-followers", "10000",
            "--max-results", "5",
            "--mode", "economy",
            "--output", str(tmp_path),
        ]
    )

    params = fake_orchestrator["params"]
    assert params["platforms"] == ["instagram", "tiktok"]
    assert params["niches"] == ["fitness", "food"]
    assert params["brand_name"] == "Nike"
    assert params["min_followers"] == 10000
    assert params["max_results"] == 5
    assert fake_orchestrator["build"]["mode"] == "economy"
    assert fake_orchestrator["build"]["serply_key"] is None
    assert fake_orchestrator["entered"] and fake_orchestrator["exited"]

    saved = list(tmp_path.glob("search_abc123_*.json"))
    assert len(saved) == 1
    document = orjson.loads(saved[0].read_bytes())
    assert document["results"][0]["profile"]["username"] == "mariafitness"


def test_main_reads_credentials_from_environment(no_logging, fake_orchestrator, tmp_path, monkeypatch):
    monkeypatch.setenv("SERPLY_API_KEY", "serply-key")
    monkeypatch.setenv("APIFY_TOKEN", "apify-token")
    cli.main(["--verify", "--output", str(tmp_path)])
    build = fake_orchestrator["build"]
    assert build["serply_key"] == "serply-key"
    assert build["apify_token"] == "apify-token"
    assert build["verify"] is True


def test_main_exits_nonzero_without_results(no_logging, fake_orchestrator, tmp_path):
    fake_orchestrator["success"] = False
    with pytest.raises(SystemExit) as exc:
        cli.main(["--output", str(tmp_path)])
    assert exc.value.code == 1


def test_unknown_mode_is_rejected_by_parser(no_logging):
    with pytest.raises(SystemExit):
        cli.main(["--mode", "luxury"])


def test_build_orchestrator_wires_available_connectors(tmp_path):
    vetted = tmp_path / "vetted.json"
    vetted.write_bytes(orjson.dumps([]))

    orchestrator = cli.build_orchestrator(
        mode="balanced", vetted_file=vetted, serply_key="k", apify_token="t", verify=True
    )

    assert isinstance(orchestrator.search_providers[0], SerplySearchProvider)
    assert isinstance(orchestrator.scraper, ApifyScrapingService)
    assert isinstance(orchestrator.verifier, ScrapeBackedVerifier)
    assert orchestrator.vetted_store is not None


def test_build_orchestrator_without_credentials():
    orchestrator = cli.build_orchestrator(mode="economy")
    assert orchestrator.search_providers == []
    assert orchestrator.scraper is None
    assert orchestrator.verifier is None


def test_build_orchestrator_missing_vetted_file(tmp_path):
    with pytest.raises(InfluencerSearchError):
        cli.build_orchestrator(mode="economy", vetted_file=tmp_path / "missing.json")
