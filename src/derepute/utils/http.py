"""Size-capped body reading for aiohttp responses.

An Onionoo details document for the whole network runs to tens of
megabytes, so every feed response is read through
[read_bounded_json][derepute.utils.http.read_bounded_json] with the
``max_response_size`` from
[FeedConfig][derepute.services.common.configs.FeedConfig].

Note:
    ``utils`` depends only on ``aiohttp`` and the stdlib; it must not import
    ``derepute.core``.
"""

from __future__ import annotations

import json
from typing import Any

import aiohttp


def _too_large(max_size: int) -> ValueError:
    return ValueError(f"Response body too large: >{max_size} bytes")


async def read_bounded(response: aiohttp.ClientResponse, max_size: int) -> bytes:
    """Return the body of *response*, refusing anything over *max_size* bytes.

    A declared ``Content-Length`` above the cap fails before any read.
    Otherwise the stream is drained piecewise, since a chunked body may
    arrive in reads shorter than requested.

    Raises:
        ValueError: If the body exceeds *max_size*.
    """
    declared = response.content_length
    if isinstance(declared, int) and declared > max_size:
        raise _too_large(max_size)

    body = bytearray()
    while chunk := await response.content.read(max_size + 1 - len(body)):
        body += chunk
        if len(body) > max_size:
            raise _too_large(max_size)
    return bytes(body)


async def read_bounded_json(response: aiohttp.ClientResponse, max_size: int) -> Any:
    """Like [read_bounded][derepute.utils.http.read_bounded], then ``json.loads``.

    Raises:
        ValueError: If the body exceeds *max_size*.
        json.JSONDecodeError: If the body is not valid JSON.
    """
    return json.loads(await read_bounded(response, max_size))
