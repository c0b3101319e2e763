"""Interfaces of the external services the orchestrator depends on"""

from typing import Any, Dict, List, Mapping, Protocol, runtime_checkable

from .models import SearchHit, VerificationResult, VettedFilters


@runtime_checkable
class WebSearchProvider(Protocol):
    """Cheap discovery: returns candidate profile links for a text query"""

    name: str

    async def search(self, query: str, limit: int) -> List[SearchHit]:
        ...


@runtime_checkable
class ScrapingService(Protocol):
    """Expensive enrichment: fetches metrics for a batch of profile URLs on one platform"""

    async def scrape(
        self,
        urls: List[str],
        platform: str,
        platform_input: Dict[str, Any],
    ) -> List[Mapping[str, Any]]:
        ...


@runtime_checkable
class VettedDatasetStore(Protocol):
    """Read-only store of pre-curated profiles"""

    async def query(self, filters: VettedFilters) -> List[Mapping[str, Any]]:
        ...


@runtime_checkable
class VerificationService(Protocol):
    async def verify(
        self,
        profile_url: str,
        platform: str,
        confidence_threshold: float,
    ) -> VerificationResult:
        ...
