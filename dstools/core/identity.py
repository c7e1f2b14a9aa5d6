"""
Identity Normalizer
===================

Turns whatever an operator typed for a server (IP literal, NetBIOS short
name, FQDN, CNAME) into one canonical host name:

1. Reverse lookup, treating the identity as an IP literal. An identity that
   is not a literal is simply taken as a host name.
2. Forward lookup of the resulting name, which expands short names through
   the resolver search list and follows CNAMEs.
"""

from typing import Callable, Optional

from ..directory.service import AddressFormatError, DirectoryService
from ..errors import DirectoryError, ErrorKind
from .base import Component


class IdentityNormalizer(Component):
    """Normalizes server identities to FQDNs."""

    def __init__(
        self,
        service: DirectoryService,
        verbose: bool = False,
        progress_callback: Optional[Callable[[str], None]] = None
    ):
        super().__init__(verbose, progress_callback)
        self.service = service

    def normalize(self, identity: str) -> str:
        """Canonical FQDN for identity.

        Raises:
            DirectoryError: NameResolutionFailed when a lookup fails,
                InvalidArgument for an empty identity
        """
        if not identity or not identity.strip():
            raise DirectoryError(ErrorKind.INVALID_ARGUMENT, "normalize-identity", "An identity is required")

        name = identity.strip()
        try:
            name = self.service.reverse_dns_lookup(name)
            self._log(f"[*] {identity} reverses to {name}")
        except AddressFormatError:
            self._log(f"[*] {identity} is not an IP address, using it as a host name")
        except Exception as e:
            raise DirectoryError(
                ErrorKind.NAME_RESOLUTION_FAILED, "normalize-identity",
                f"Reverse lookup of {identity} failed: {e}", identity, cause=e
            ) from e

        try:
            fqdn = self.service.forward_dns_lookup(name)
        except Exception as e:
            raise DirectoryError(
                ErrorKind.NAME_RESOLUTION_FAILED, "normalize-identity",
                f"Host lookup of {name} failed: {e}", identity, cause=e
            ) from e

        self._log(f"[+] {identity} -> {fqdn}")
        return fqdn
