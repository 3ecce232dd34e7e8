"""API service package.

Re-exports all public symbols::

    from derepute.services.api import Api, ApiConfig
"""

from .configs import ApiConfig
from .service import Api


__all__ = ["Api", "ApiConfig"]
