"""Stateless helpers shared by the services layer.

Depends only on [derepute.models][] and third-party libraries.

Attributes:
    read_bounded_json: Size-limited JSON body reader for aiohttp responses.
"""

from .http import read_bounded, read_bounded_json


__all__ = ["read_bounded", "read_bounded_json"]
