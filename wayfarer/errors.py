"""Exception hierarchy shared by the server and the client library."""

from __future__ import annotations

from typing import Iterable


class WayfarerError(Exception):
    """Base exception for Wayfarer failures."""


class StorageUnavailable(WayfarerError):
    """The device-local secure store could not be read or written."""


class ProtectedFieldError(WayfarerError):
    """A flush tried to modify ledger fields outside the claim transaction."""

    def __init__(self, fields: Iterable[str]):
        self.fields = set(fields)
        super().__init__(f"protected fields cannot be written directly: {', '.join(sorted(self.fields))}")


class ImmutableRecordError(WayfarerError):
    """A flush tried to update or delete a committed claim record."""
