from __future__ import annotations

import asyncio
from typing import Any, Dict, Optional, Tuple
from aiohttp import ClientSession, ClientTimeout
import aiohttp
import logging

logger = logging.getLogger(__name__)


async def _backoff(attempt: int) -> None:
    """Capped exponential backoff between attempts: 1s, 2s, 4s, then 5s."""
    await asyncio.sleep(min(2 ** attempt, 5))


async def _get(
    session: ClientSession,
    url: str,
    *,
    timeout: float,
    retries: int,
    as_bytes: bool,
) -> Optional[str | bytes]:
    last_exc: Optional[Exception] = None
    for attempt in range(retries + 1):
        try:
            async with session.get(url, timeout=ClientTimeout(total=timeout)) as resp:
                # Redirects are followed; anything >= 400 is a failed fetch.
                resp.raise_for_status()
                if as_bytes:
                    return await resp.read()
                return await resp.text()
        except (aiohttp.ClientError, asyncio.TimeoutError) as exc:
            last_exc = exc
            logger.debug("GET attempt %s failed for %s: %r", attempt + 1, url, exc)
            if attempt < retries:
                await _backoff(attempt)
    logger.warning("GET failed for %s after %s attempts: %r", url, retries + 1, last_exc)
    return None


async def fetch_text(
    session: ClientSession,
    url: str,
    *,
    timeout: float = 15.0,
    retries: int = 2,
) -> Optional[str]:
    """
    Fetch a URL and return body text. Returns None on failure after retries.
    """
    return await _get(session, url, timeout=timeout, retries=retries, as_bytes=False)


async def fetch_bytes(
    session: ClientSession,
    url: str,
    *,
    timeout: float = 15.0,
    retries: int = 2,
) -> Optional[bytes]:
    """Same as :func:`fetch_text` but returns the raw body (gzipped sitemaps)."""
    return await _get(session, url, timeout=timeout, retries=retries, as_bytes=True)


async def post_json(
    session: ClientSession,
    url: str,
    payload: Dict[str, Any],
    *,
    headers: Optional[Dict[str, str]] = None,
    timeout: float = 30.0,
    retries: int = 1,
) -> Tuple[int, Any]:
    """
    POST a JSON body and return ``(status, decoded_json)``.

    Transport errors and 5xx responses are retried; the last one is raised.
    Other statuses are returned to the caller as-is.
    """
    last_exc: Optional[Exception] = None
    for attempt in range(retries + 1):
        try:
            async with session.post(
                url,
                json=payload,
                headers=headers,
                timeout=ClientTimeout(total=timeout),
            ) as resp:
                if resp.status >= 500 and attempt < retries:
                    last_exc = aiohttp.ClientResponseError(
                        resp.request_info, resp.history, status=resp.status, message=resp.reason or ""
                    )
                    logger.debug("POST attempt %s to %s returned %s", attempt + 1, url, resp.status)
                else:
                    body = await resp.json(content_type=None)
                    return resp.status, body
        except (aiohttp.ClientError, asyncio.TimeoutError) as exc:
            last_exc = exc
            logger.debug("POST attempt %s failed for %s: %r", attempt + 1, url, exc)
            if attempt >= retries:
                raise
        await _backoff(attempt)
    assert last_exc is not None
    raise last_exc


def create_session(user_agent: Optional[str] = None) -> ClientSession:
    """
    Create a shared aiohttp ClientSession.
    """
    # Note: caller is responsible for closing the session (await session.close()).
    connector = aiohttp.TCPConnector(limit=0)  # unlimited; concurrency managed by callers
    headers = {"User-Agent": user_agent} if user_agent else None
    return aiohttp.ClientSession(connector=connector, headers=headers)
