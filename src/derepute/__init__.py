r"""Derepute -- Tor relay reputation registry and feed synchronizer.

Keeps a registry of relay reputation records (one per fingerprint) in
step with the Onionoo relay feed. Writes go through a single serialized
channel gated by an owner/updater capability list; reads are served by a
pagination façade and a read-only HTTP API.

Architecture follows a **diamond DAG** dependency structure where imports
flow strictly downward:

```text
              services         Synchronizer, reader, API, feed and transformer
             /        \
          core        utils    Registry, write channel, logging, metrics / HTTP
             \        /
              models           Pure frozen dataclasses (zero I/O)
```

Note:
    For lightweight usage, import directly from subpackages::

        from derepute.models import RelayRecord
        from derepute.core import RegistryStore

    Top-level imports (``from derepute import RelayRecord``) use lazy
    loading and resolve on first access.
"""

import importlib
from importlib.metadata import version as _get_version


__version__ = _get_version("derepute")

__all__ = [
    "Api",
    "ApiConfig",
    "AuthorizationSet",
    "BaseService",
    "ConfigT",
    "Logger",
    "OnionooClient",
    "RegistryReader",
    "RegistryStore",
    "RelayRecord",
    "Synchronizer",
    "SynchronizerConfig",
    "WriteChannel",
]

_LAZY_IMPORTS: dict[str, tuple[str, str]] = {
    "AuthorizationSet": ("derepute.core", "AuthorizationSet"),
    "BaseService": ("derepute.core", "BaseService"),
    "ConfigT": ("derepute.core", "ConfigT"),
    "Logger": ("derepute.core", "Logger"),
    "RegistryStore": ("derepute.core", "RegistryStore"),
    "WriteChannel": ("derepute.core", "WriteChannel"),
    "RelayRecord": ("derepute.models", "RelayRecord"),
    "OnionooClient": ("derepute.services.common", "OnionooClient"),
    "Api": ("derepute.services", "Api"),
    "ApiConfig": ("derepute.services", "ApiConfig"),
    "RegistryReader": ("derepute.services", "RegistryReader"),
    "Synchronizer": ("derepute.services", "Synchronizer"),
    "SynchronizerConfig": ("derepute.services", "SynchronizerConfig"),
}


def __getattr__(name: str) -> object:
    if name in _LAZY_IMPORTS:
        module_path, attr_name = _LAZY_IMPORTS[name]
        module = importlib.import_module(module_path)
        value = getattr(module, attr_name)
        globals()[name] = value
        return value
    raise AttributeError(f"module 'derepute' has no attribute {name!r}")


def __dir__() -> list[str]:
    return __all__
