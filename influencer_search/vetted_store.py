"""Vetted influencer dataset backed by a local JSON file"""

import asyncio
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional

import aiofiles
import orjson
from loguru import logger

from .exceptions import ParsingError
from .models import VettedFilters


def _follower_count(record: Mapping[str, Any]) -> int:
    value = record.get("followerCount", record.get("followers", 0))
    try:
        return int(value or 0)
    except (TypeError, ValueError):
        return 0


def _niches(record: Mapping[str, Any]) -> List[str]:
    value = record.get("niche", record.get("niches", []))
    if isinstance(value, str):
        value = value.split(",")
    return [str(v).strip().lower() for v in value if str(v).strip()]


def matches(record: Mapping[str, Any], filters: VettedFilters) -> bool:
    """True when a vetted record satisfies every filter that is set"""
    if filters.country:
        where = f"{record.get('country', '')} {record.get('location', '')}".lower()
        if filters.country.lower() not in where:
            return False

    if filters.niches:
        record_niches = _niches(record)
        wanted = [n.lower() for n in filters.niches]
        if not any(w in niche or niche in w for w in wanted for niche in record_niches):
            return False

    if filters.gender and filters.gender.lower() != "any":
        gender = str(record.get("gender", "")).lower()
        if gender and gender != filters.gender.lower():
            return False

    followers = _follower_count(record)
    if filters.min_followers is not None and followers < filters.min_followers:
        return False
    if filters.max_followers is not None and followers > filters.max_followers:
        return False
    return True


class JsonVettedStore:
    """
    Read-only vetted dataset.

    The file is loaded once on first query; records are plain dicts in the
    dataset's own field names.
    """

    def __init__(self, path: Path):
        self.path = Path(path)
        self._records: Optional[List[Dict[str, Any]]] = None
        self._load_lock = asyncio.Lock()

    async def _load(self) -> List[Dict[str, Any]]:
        async with self._load_lock:
            if self._records is None:
                async with aiofiles.open(self.path, "rb") as f:
                    raw = await f.read()
                try:
                    data = orjson.loads(raw)
                except orjson.JSONDecodeError as e:
                    raise ParsingError(f"Vetted dataset {self.path} is not valid JSON: {e}") from e

                if isinstance(data, dict):
                    data = data.get("influencers", [])
                if not isinstance(data, list):
                    raise ParsingError(f"Vetted dataset {self.path} must hold a list of records")

                self._records = [r for r in data if isinstance(r, dict)]
                logger.info(f"📚 Loaded {len(self._records)} vetted influencers from {self.path.name}")
        return self._records

    async def query(self, filters: VettedFilters) -> List[Mapping[str, Any]]:
        records = await self._load()
        found = [r for r in records if matches(r, filters)]
        found.sort(key=_follower_count, reverse=True)
        logger.debug(f"Vetted dataset: {len(found)}/{len(records)} records match")
        return found
