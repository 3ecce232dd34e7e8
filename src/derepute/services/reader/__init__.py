"""Reader package: read-only pagination and search over the registry.

    from derepute.services.reader import RegistryReader
"""

from .facade import DEFAULT_PAGE_SIZE, RegistryReader, SearchProgress, matches_query


__all__ = ["DEFAULT_PAGE_SIZE", "RegistryReader", "SearchProgress", "matches_query"]
