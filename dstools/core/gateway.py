"""
Entry Gateway
=============

Binds directory entries by path.

The transport signals a missing or unreachable path by returning no entry
rather than raising, so the gateway checks for that itself and raises
Unreachable. Everything the transport does raise becomes
DirectoryOperationFailed with the original message.
"""

from typing import Callable, Optional

from ..directory.entry import DirectoryEntry
from ..directory.service import DirectoryService
from ..errors import DirectoryError, ErrorKind, operation_step
from ..model.schemas import Credential
from .base import Component
from .context import credential_parts


class EntryGateway(Component):
    """Opens bound DirectoryEntry handles."""

    def __init__(
        self,
        service: DirectoryService,
        verbose: bool = False,
        progress_callback: Optional[Callable[[str], None]] = None
    ):
        super().__init__(verbose, progress_callback)
        self.service = service

    def bind(self, path: str, credential: Optional[Credential] = None) -> DirectoryEntry:
        """Bind the entry at path ("LDAP://server/dn").

        Raises:
            DirectoryError: Unreachable when nothing could be bound;
                DirectoryOperationFailed for transport failures
        """
        username, password = credential_parts(credential)
        self._log(f"[*] Binding {path}")

        with operation_step("bind-entry", path, not_found=ErrorKind.UNREACHABLE):
            entry = self.service.bind_entry(path, username, password)

        if entry is None:
            raise DirectoryError(
                ErrorKind.UNREACHABLE, "bind-entry",
                f"Unable to contact the server or the object does not exist: {path}",
                path
            )
        return entry
