"""Synchronizer service package.

Re-exports all public symbols::

    from derepute.services.synchronizer import Synchronizer, SynchronizerConfig
"""

from .configs import (
    OrderingConfig,
    SourceConfig,
    SubmitConfig,
    SynchronizerConfig,
    VerifyConfig,
)
from .service import Synchronizer
from .utils import ChunkOutcome, SyncPhase, SyncReport


__all__ = [
    "ChunkOutcome",
    "OrderingConfig",
    "SourceConfig",
    "SubmitConfig",
    "SyncPhase",
    "SyncReport",
    "Synchronizer",
    "SynchronizerConfig",
    "VerifyConfig",
]
