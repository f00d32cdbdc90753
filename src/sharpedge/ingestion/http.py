"""Shared JSON GET helper for feed clients."""

import asyncio
import logging
from typing import Any

import aiohttp

from sharpedge.errors import CollaboratorError, ErrorKind, classify_status

logger = logging.getLogger(__name__)


async def get_json(
    url: str,
    params: dict[str, Any] | None = None,
    timeout_seconds: float = 10.0,
) -> Any:
    """
    GET ``url`` and decode the JSON body.

    Args:
        url: Absolute URL
        params: Query parameters
        timeout_seconds: Total request timeout

    Returns:
        Decoded JSON payload

    Raises:
        CollaboratorError: On non-200 status, transport failure, timeout,
            or an undecodable body
    """
    timeout = aiohttp.ClientTimeout(total=timeout_seconds)
    try:
        async with aiohttp.ClientSession(timeout=timeout) as session:
            async with session.get(url, params=params) as resp:
                if resp.status != 200:
                    body = await resp.text()
                    raise CollaboratorError(
                        classify_status(resp.status),
                        f"GET {url} failed: {body[:200]}",
                        status=resp.status,
                    )
                return await resp.json(content_type=None)
    except asyncio.TimeoutError as e:
        raise CollaboratorError(ErrorKind.NETWORK_TIMEOUT, f"GET {url} timed out") from e
    except aiohttp.ClientConnectionError as e:
        raise CollaboratorError(ErrorKind.NETWORK_TIMEOUT, f"GET {url} fetch failed: {e}") from e
    except (aiohttp.ContentTypeError, ValueError) as e:
        raise CollaboratorError(ErrorKind.UNKNOWN, f"GET {url} returned invalid JSON: {e}") from e
