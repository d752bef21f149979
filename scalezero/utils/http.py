"""HTTP probing helpers shared by the launch path and the peer monitors."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable

import aiohttp

from scalezero.utils.exceptions import NETWORK_ERRORS

logger = logging.getLogger(__name__)

# (url) -> True if the endpoint answered with a success status
Probe = Callable[[str], Awaitable[bool]]


def is_success_status(status: int) -> bool:
    """2xx and 3xx count as healthy."""
    return 200 <= status < 400


async def probe_url(
    url: str,
    *,
    timeout: float = 3.0,
    connect_timeout: float | None = None,
) -> bool:
    """GET ``url`` once and report whether it answered 2xx/3xx in time.

    Creates a fresh aiohttp session per probe so a pooled connection can
    never mask a dead peer. Redirects are not followed.

    Returns:
        True on a success status, False on any other status, timeout or
        network error
    """
    client_timeout = aiohttp.ClientTimeout(total=timeout, connect=connect_timeout)
    try:
        async with aiohttp.ClientSession(timeout=client_timeout) as session:
            async with session.get(url, allow_redirects=False) as resp:
                return is_success_status(resp.status)
    except asyncio.TimeoutError:
        logger.debug(f"Probe of {url} timed out after {timeout}s")
        return False
    except NETWORK_ERRORS as e:
        logger.debug(f"Probe of {url} failed: {type(e).__name__}: {e}")
        return False


async def fetch_text(url: str, *, timeout: float = 3.0) -> str | None:
    """GET ``url`` and return the stripped body of a success response, else None."""
    client_timeout = aiohttp.ClientTimeout(total=timeout)
    try:
        async with aiohttp.ClientSession(timeout=client_timeout) as session:
            async with session.get(url) as resp:
                if not is_success_status(resp.status):
                    return None
                return (await resp.text()).strip()
    except NETWORK_ERRORS as e:
        logger.debug(f"Fetch of {url} failed: {type(e).__name__}: {e}")
        return None
