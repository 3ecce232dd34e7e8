"""
In-process relay reputation registry.

[RegistryStore][derepute.core.registry.RegistryStore] keeps one
[RelayRecord][derepute.models.relay_record.RelayRecord] per fingerprint in
two co-located structures: a mapping from fingerprint to record, and an
append-only [FingerprintIndex][derepute.core.registry.FingerprintIndex]
that fixes enumeration order. Writes are gated by an
[AuthorizationSet][derepute.core.authorization.AuthorizationSet] and are
all-or-nothing: every record of a call is validated before anything is
mutated.

Store state can be persisted to a JSON snapshot so that the synchronizer,
the API and the admin CLI (separate processes) share one registry.

See Also:
    [WriteChannel][derepute.core.channel.WriteChannel]: Serialized boundary
        through which all mutations are submitted.
    [RegistryReader][derepute.services.reader.RegistryReader]: Read-only
        façade with pagination and search.
"""

from __future__ import annotations

import json
import os
import tempfile
import time
from collections.abc import Callable, Iterable, Iterator, Sequence
from pathlib import Path
from typing import Any

from pydantic import BaseModel, Field

from derepute.models.relay_record import RelayRecord, find_violation

from .authorization import AuthorizationSet
from .channel import WriteChannelConfig
from .exceptions import (
    ConfigurationError,
    IndexOutOfBoundsError,
    NotFoundError,
    RecordValidationError,
    StateError,
)
from .logger import Logger
from .yaml import load_yaml


SNAPSHOT_VERSION = 1


# ---------------------------------------------------------------------------
# Configuration Models
# ---------------------------------------------------------------------------


class BatchConfig(BaseModel):
    """Upper bound on the number of records accepted by one batch write."""

    max_size: int = Field(
        default=1000, ge=1, le=100_000, description="Maximum records per batch write"
    )


class SnapshotConfig(BaseModel):
    """Where the registry state is persisted between processes.

    With ``path`` unset the registry lives only in memory.
    """

    path: Path | None = Field(default=None, description="JSON snapshot file")


class RegistryConfig(BaseModel):
    """Aggregate configuration for the registry and its write channel."""

    owner: str = Field(min_length=1, description="Initial owner identity")
    batch: BatchConfig = Field(default_factory=BatchConfig)
    snapshot: SnapshotConfig = Field(default_factory=SnapshotConfig)
    channel: WriteChannelConfig = Field(default_factory=WriteChannelConfig)


# ---------------------------------------------------------------------------
# Fingerprint Index
# ---------------------------------------------------------------------------


class FingerprintIndex:
    """Insertion-ordered, append-only sequence of unique fingerprints.

    A fingerprint already present is never appended again, so positions
    are stable for the lifetime of the registry.
    """

    __slots__ = ("_members", "_order")

    def __init__(self, fingerprints: Iterable[str] = ()) -> None:
        self._order: list[str] = []
        self._members: set[str] = set()
        for fingerprint in fingerprints:
            self.append(fingerprint)

    def append(self, fingerprint: str) -> bool:
        """Append *fingerprint* unless present; return whether it was added."""
        if fingerprint in self._members:
            return False
        self._order.append(fingerprint)
        self._members.add(fingerprint)
        return True

    def fingerprint_at(self, index: int) -> str:
        """Return the fingerprint at *index*.

        Raises:
            IndexOutOfBoundsError: Unless ``0 <= index < len(self)``.
        """
        if not 0 <= index < len(self._order):
            raise IndexOutOfBoundsError(
                f"index {index} out of bounds for {len(self._order)} fingerprints"
            )
        return self._order[index]

    def slice(self, start: int, stop: int) -> list[str]:
        return self._order[start:stop]

    def __contains__(self, fingerprint: object) -> bool:
        return fingerprint in self._members

    def __len__(self) -> int:
        return len(self._order)

    def __iter__(self) -> Iterator[str]:
        return iter(self._order)


# ---------------------------------------------------------------------------
# Registry Store
# ---------------------------------------------------------------------------


def _system_clock() -> int:
    return int(time.time())


class RegistryStore:
    """Authoritative store of relay reputation records.

    Records are created on their first valid write, fully replaced on each
    later write and never deleted. Every mutating method takes the calling
    identity as its first argument and checks it against the
    [AuthorizationSet][derepute.core.authorization.AuthorizationSet] before
    validating or mutating anything.

    Store methods are synchronous and atomic with respect to the event
    loop; ordering between callers is the job of
    [WriteChannel][derepute.core.channel.WriteChannel].

    Example:
        store = RegistryStore("operator")
        store.add_updater("operator", "sync-bot")
        store.batch_upsert("sync-bot", records)
        store.get_by_index(0)
    """

    def __init__(
        self,
        owner: str,
        config: RegistryConfig | None = None,
        clock: Callable[[], int] = _system_clock,
    ) -> None:
        """Initialize an empty registry.

        Args:
            owner: Initial owner identity.
            config: Registry configuration. Defaults to an in-memory
                registry owned by *owner*.
            clock: Write-time clock returning Unix seconds, used to reject
                records whose ``last_seen`` lies in the future.
        """
        self._config = config or RegistryConfig(owner=owner)
        self._clock = clock
        self._auth = AuthorizationSet(owner)
        self._records: dict[str, RelayRecord] = {}
        self._index = FingerprintIndex()
        self._snapshot_mtime: float | None = None
        self._logger = Logger("registry")

    @property
    def config(self) -> RegistryConfig:
        """The registry configuration (read-only)."""
        return self._config

    @property
    def owner(self) -> str:
        return self._auth.owner

    @property
    def updaters(self) -> frozenset[str]:
        return self._auth.updaters

    @property
    def authorization(self) -> AuthorizationSet:
        return self._auth

    # -------------------------------------------------------------------------
    # Factory Methods
    # -------------------------------------------------------------------------

    @classmethod
    def from_yaml(cls, config_path: str | Path, **kwargs: Any) -> RegistryStore:
        """Create a registry from a YAML configuration file.

        See [from_dict()][derepute.core.registry.RegistryStore.from_dict].
        """
        return cls.from_dict(load_yaml(config_path), **kwargs)

    @classmethod
    def from_dict(cls, config_dict: dict[str, Any], **kwargs: Any) -> RegistryStore:
        """Create a registry from a configuration dictionary.

        When the configured snapshot file already exists its state
        (owner, updaters, records) replaces the configured owner.
        """
        config = RegistryConfig(**config_dict)
        store = cls(config.owner, config=config, **kwargs)
        path = config.snapshot.path
        if path is not None and path.exists():
            store.load_snapshot(path)
        return store

    # -------------------------------------------------------------------------
    # Reads
    # -------------------------------------------------------------------------

    def get(self, fingerprint: str) -> RelayRecord:
        """Return the record stored for *fingerprint* (case-insensitive).

        Raises:
            NotFoundError: If no record exists.
        """
        try:
            return self._records[fingerprint.upper()]
        except KeyError:
            raise NotFoundError(f"relay not found: {fingerprint!r}") from None

    def exists(self, fingerprint: str) -> bool:
        return fingerprint.upper() in self._records

    def count(self) -> int:
        return len(self._index)

    def get_by_index(self, index: int) -> str:
        """Return the fingerprint at position *index* in insertion order.

        Raises:
            IndexOutOfBoundsError: Unless ``0 <= index < count()``.
        """
        return self._index.fingerprint_at(index)

    def records_between(self, start: int, stop: int) -> list[RelayRecord]:
        """Return the records at index positions ``start`` to ``stop`` (exclusive)."""
        return [self._records[fp] for fp in self._index.slice(start, stop)]

    # -------------------------------------------------------------------------
    # Record Writes
    # -------------------------------------------------------------------------

    def _validate(self, records: Sequence[RelayRecord]) -> None:
        now = self._clock()
        for record in records:
            violation = find_violation(record, now)
            if violation is not None:
                raise RecordValidationError.for_violation(violation, record.fingerprint)

    def _apply(self, record: RelayRecord) -> None:
        self._index.append(record.fingerprint)
        self._records[record.fingerprint] = record

    def upsert(self, caller: str, record: RelayRecord) -> None:
        """Insert or fully replace one record.

        Raises:
            AuthorizationError: If *caller* is neither owner nor updater.
            RecordValidationError: If the record breaks a write rule; the
                specific subclass names the rule.
        """
        self._auth.require_writer(caller)
        self._validate((record,))
        self._apply(record)
        self._logger.debug("relay_updated", fingerprint=record.fingerprint, caller=caller)

    def batch_upsert(self, caller: str, records: Sequence[RelayRecord]) -> int:
        """Insert or replace every record in *records*, or none of them.

        Returns:
            Number of records written.

        Raises:
            AuthorizationError: If *caller* is neither owner nor updater.
            RecordValidationError: If any record breaks a write rule. No
                record of the batch is written.
            StateError: If the batch exceeds ``config.batch.max_size``.
        """
        self._auth.require_writer(caller)
        if len(records) > self._config.batch.max_size:
            raise StateError(
                f"batch size ({len(records)}) exceeds maximum ({self._config.batch.max_size})"
            )
        self._validate(records)
        for record in records:
            self._apply(record)
        if records:
            self._logger.debug("relay_batch_updated", count=len(records), caller=caller)
        return len(records)

    # -------------------------------------------------------------------------
    # Administration
    # -------------------------------------------------------------------------

    def transfer_ownership(self, caller: str, new_owner: str | None) -> None:
        """Hand the owner role to *new_owner*.

        Raises:
            AuthorizationError: If *caller* is not the owner.
            NullTargetError: If *new_owner* is null or blank.
        """
        previous = self._auth.transfer_ownership(caller, new_owner)
        self._logger.info("ownership_transferred", previous=previous, owner=new_owner)

    def add_updater(self, caller: str, who: str | None) -> None:
        """Grant write access to *who*.

        Raises:
            AuthorizationError: If *caller* is not the owner.
            NullTargetError: If *who* is null or blank.
            AlreadyAuthorizedError: If *who* is already an updater.
        """
        self._auth.add_updater(caller, who)
        self._logger.info("updater_added", updater=who)

    def remove_updater(self, caller: str, who: str | None) -> None:
        """Revoke write access from *who*.

        Raises:
            AuthorizationError: If *caller* is not the owner.
            NotAuthorizedError: If *who* is not an updater.
        """
        self._auth.remove_updater(caller, who)
        self._logger.info("updater_removed", updater=who)

    # -------------------------------------------------------------------------
    # Snapshot Persistence
    # -------------------------------------------------------------------------

    def to_dict(self) -> dict[str, Any]:
        """Return the full registry state as a JSON-compatible mapping."""
        return {
            "version": SNAPSHOT_VERSION,
            "owner": self._auth.owner,
            "updaters": sorted(self._auth.updaters),
            "records": [self._records[fp].to_dict() for fp in self._index],
        }

    def restore(self, data: dict[str, Any]) -> None:
        """Replace the in-memory state with the output of ``to_dict()``.

        Raises:
            ConfigurationError: If the snapshot version is not supported or
                the payload is malformed.
        """
        if data.get("version") != SNAPSHOT_VERSION:
            raise ConfigurationError(f"unsupported snapshot version: {data.get('version')!r}")
        try:
            auth = AuthorizationSet(data["owner"], set(data.get("updaters", ())))
            records = [RelayRecord.from_dict(item) for item in data.get("records", ())]
        except (KeyError, TypeError, ValueError) as e:
            raise ConfigurationError(f"malformed registry snapshot: {e}") from e

        self._auth = auth
        self._records = {}
        self._index = FingerprintIndex()
        for record in records:
            self._apply(record)

    def save_snapshot(self, path: str | Path) -> None:
        """Write the registry state to *path* atomically."""
        target = Path(path)
        target.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(dir=target.parent, prefix=f".{target.name}.")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump(self.to_dict(), f, separators=(",", ":"))
            os.replace(tmp_name, target)
        except BaseException:
            Path(tmp_name).unlink(missing_ok=True)
            raise
        self._snapshot_mtime = target.stat().st_mtime
        self._logger.debug("snapshot_saved", path=str(target), records=self.count())

    def load_snapshot(self, path: str | Path) -> None:
        """Replace the in-memory state with the snapshot stored at *path*.

        Raises:
            FileNotFoundError: If *path* does not exist.
            ConfigurationError: If the file is not a valid snapshot.
        """
        source = Path(path)
        with source.open(encoding="utf-8") as f:
            try:
                data = json.load(f)
            except json.JSONDecodeError as e:
                raise ConfigurationError(f"invalid snapshot file {source}: {e}") from e
        if not isinstance(data, dict):
            raise ConfigurationError(f"invalid snapshot file {source}: not an object")
        self.restore(data)
        self._snapshot_mtime = source.stat().st_mtime
        self._logger.debug("snapshot_loaded", path=str(source), records=self.count())

    def persist(self) -> bool:
        """Save to the configured snapshot path; return False if none is set."""
        path = self._config.snapshot.path
        if path is None:
            return False
        self.save_snapshot(path)
        return True

    def refresh(self) -> bool:
        """Reload from the configured snapshot if it changed since last seen.

        Returns:
            True if the in-memory state was reloaded.
        """
        path = self._config.snapshot.path
        if path is None or not path.exists():
            return False
        if path.stat().st_mtime == self._snapshot_mtime:
            return False
        self.load_snapshot(path)
        return True
