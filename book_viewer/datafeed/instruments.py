"""One-shot REST fetch of the tradable instrument list."""

from __future__ import annotations

import asyncio
from typing import Optional

import aiohttp
import orjson
from loguru import logger

from ..config import REST_URL


async def _fetch(session: aiohttp.ClientSession, url: str, timeout: float) -> list[str]:
    async with session.get(url, timeout=aiohttp.ClientTimeout(total=timeout)) as resp:
        resp.raise_for_status()
        data = orjson.loads(await resp.read())

    if not isinstance(data, list):
        raise ValueError(f"expected a JSON list, got {type(data).__name__}")

    return sorted({
        item["id"] for item in data
        if isinstance(item, dict) and isinstance(item.get("id"), str)
    })


async def fetch_instruments(
    url: str = REST_URL,
    session: Optional[aiohttp.ClientSession] = None,
    timeout: float = 10.0,
) -> list[str]:
    """
    Fetch instrument identifiers, sorted lexicographically.

    Never raises for network or payload problems; returns [] instead.
    """
    try:
        if session is None:
            async with aiohttp.ClientSession() as own_session:
                instruments = await _fetch(own_session, url, timeout)
        else:
            instruments = await _fetch(session, url, timeout)
    except (aiohttp.ClientError, asyncio.TimeoutError, ValueError) as exc:
        logger.error("Error fetching instruments from {}: {}", url, exc)
        return []

    logger.info("Fetched {} instruments", len(instruments))
    return instruments
