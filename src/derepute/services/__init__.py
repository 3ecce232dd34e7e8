"""Synchronization pipeline, read surface and shared building blocks.

Services are the top layer of the diamond DAG, depending on
[derepute.core][derepute.core], [derepute.utils][derepute.utils] and
[derepute.models][derepute.models]. Each long-running service extends
[BaseService][derepute.core.base_service.BaseService] and implements
``async def run()`` for one cycle of work.

```text
Onionoo feed -> Synchronizer -> WriteChannel -> RegistryStore -> RegistryReader -> Api
```

Attributes:
    Synchronizer: Fetches the ranked feed, transforms it and applies it to
        the registry as sequential, retried, atomic chunk writes.
    Api: Read-only FastAPI service over the registry.
    RegistryReader: Pagination and progressive search façade.

See Also:
    [common][derepute.services.common]: Feed client, transformer and
        shared configuration models.

Examples:
    ```python
    from derepute.core import RegistryStore
    from derepute.services import Synchronizer

    store = RegistryStore.from_yaml("config/registry.yaml")
    sync = Synchronizer.from_yaml("config/services/synchronizer.yaml", store=store)
    await sync.run()
    ```
"""

from .api import Api, ApiConfig
from .reader import RegistryReader, SearchProgress
from .synchronizer import Synchronizer, SynchronizerConfig, SyncReport


__all__ = [
    "Api",
    "ApiConfig",
    "RegistryReader",
    "SearchProgress",
    "SyncReport",
    "Synchronizer",
    "SynchronizerConfig",
]
