"""
Capability list guarding writes to the registry.

One distinguished owner plus a set of authorized updaters. Both may write
records; only the owner may change who else can.

See Also:
    [RegistryStore][derepute.core.registry.RegistryStore]: Consults the set
        before every mutation.
"""

from __future__ import annotations

from derepute.core.exceptions import (
    AlreadyAuthorizedError,
    AuthorizationError,
    NotAuthorizedError,
    NullTargetError,
)


def _require_identity(identity: str | None, role: str) -> str:
    if identity is None or not identity.strip():
        raise NullTargetError(f"{role} cannot be null")
    return identity


class AuthorizationSet:
    """Owner identity plus a set of authorized updater identities.

    Identities are opaque non-empty strings (account addresses, key ids).

    Raises:
        NullTargetError: If *owner* is ``None`` or blank.

    Examples:
        ```python
        auth = AuthorizationSet("operator")
        auth.add_updater("operator", "sync-bot")
        auth.is_authorized("sync-bot")  # True
        auth.add_updater("sync-bot", "other")  # AuthorizationError
        ```
    """

    def __init__(self, owner: str, updaters: frozenset[str] | set[str] = frozenset()) -> None:
        self._owner = _require_identity(owner, "Owner")
        self._updaters: set[str] = set(updaters)

    @property
    def owner(self) -> str:
        return self._owner

    @property
    def updaters(self) -> frozenset[str]:
        return frozenset(self._updaters)

    def is_owner(self, identity: str | None) -> bool:
        return identity is not None and identity == self._owner

    def is_authorized(self, identity: str | None) -> bool:
        """Return whether *identity* may write records."""
        return self.is_owner(identity) or identity in self._updaters

    def require_owner(self, caller: str | None) -> None:
        if not self.is_owner(caller):
            raise AuthorizationError(f"only the owner may call this function, got {caller!r}")

    def require_writer(self, caller: str | None) -> None:
        if not self.is_authorized(caller):
            raise AuthorizationError(
                f"only the owner or authorized updaters may write records, got {caller!r}"
            )

    # -------------------------------------------------------------------------
    # Mutations (owner only)
    # -------------------------------------------------------------------------

    def transfer_ownership(self, caller: str, new_owner: str | None) -> str:
        """Hand the owner role to *new_owner* and return the previous owner.

        Raises:
            AuthorizationError: If *caller* is not the current owner.
            NullTargetError: If *new_owner* is null or blank.
        """
        self.require_owner(caller)
        new_owner = _require_identity(new_owner, "New owner")
        previous, self._owner = self._owner, new_owner
        return previous

    def add_updater(self, caller: str, who: str | None) -> None:
        """Grant write access to *who*.

        Raises:
            AuthorizationError: If *caller* is not the current owner.
            NullTargetError: If *who* is null or blank.
            AlreadyAuthorizedError: If *who* is already an updater.
        """
        self.require_owner(caller)
        who = _require_identity(who, "Updater")
        if who in self._updaters:
            raise AlreadyAuthorizedError(f"{who!r} is already authorized")
        self._updaters.add(who)

    def remove_updater(self, caller: str, who: str | None) -> None:
        """Revoke write access from *who*.

        Raises:
            AuthorizationError: If *caller* is not the current owner.
            NotAuthorizedError: If *who* is not an updater (including null).
        """
        self.require_owner(caller)
        if who is None or who not in self._updaters:
            raise NotAuthorizedError(f"{who!r} is not authorized")
        self._updaters.remove(who)
