"""Search response storage with async I/O"""

from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Optional

import aiofiles
import orjson
from loguru import logger

from .models import SearchParams, SearchResponse


class AsyncResponseStorage:
    """
    Writes search responses to disk without blocking the event loop.
    Uses aiofiles for async I/O and orjson for serialization.
    """

    _initialized_dirs = set()  # Class-level cache

    def __init__(self, output_dir: Path):
        self.output_dir = Path(output_dir)

        if self.output_dir not in AsyncResponseStorage._initialized_dirs:
            self.output_dir.mkdir(parents=True, exist_ok=True)
            AsyncResponseStorage._initialized_dirs.add(self.output_dir)
            logger.debug(f"Created output directory: {self.output_dir}")

    async def save(
        self,
        response: SearchResponse,
        params: Optional[SearchParams] = None,
        timestamp: Optional[str] = None,
    ) -> Path:
        """
        Save one search response as pretty-printed JSON.

        Args:
            response: The response to persist
            params: The request that produced it, stored alongside for reference
            timestamp: Filename timestamp (defaults to now, UTC)

        Returns:
            Path to saved file
        """
        timestamp = timestamp or datetime.now(timezone.utc).strftime("%Y%m%d_%H%M%S")
        output_file = self.output_dir / f"search_{response.search_id}_{timestamp}.json"

        document: Dict[str, Any] = {"saved_at": timestamp, **response.to_dict()}
        if params is not None:
            document["search_params"] = params

        # orjson serializes dataclasses natively
        json_bytes = orjson.dumps(document, option=orjson.OPT_INDENT_2)

        async with aiofiles.open(output_file, "wb") as f:
            await f.write(json_bytes)

        if response.results:
            logger.success(
                f"💾 Saved {len(response.results)} results: {output_file.name} ({len(json_bytes)/1024:.1f}KB)"
            )
        else:
            logger.warning(f"⚠️ Saved empty results: {output_file.name}")

        return output_file


async def save_response(
    response: SearchResponse,
    output_dir: Path,
    params: Optional[SearchParams] = None,
) -> Path:
    """Save a search response to <output_dir>/search_<id>_<timestamp>.json"""
    return await AsyncResponseStorage(output_dir).save(response, params)
