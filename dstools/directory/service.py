"""
Directory Service Interface
===========================

The narrow boundary between dstools and the directory protocol.

Everything that touches the network (LDAP binds, searches and writes, DNS
lookups, locator pings) sits behind DirectoryService. The resolution layer
in dstools.core only talks to this interface, so it can run against the
ldap3 implementation or an in-memory fake.

Design Decisions:
-----------------
1. Methods return dstools model objects, never ldap3 objects
2. "Not there" is signalled in-band where the protocol does so (bind_entry
   returns None, search returns []) and by ObjectNotFoundError for topology
   lookups (unknown domain, forest or server)
3. All other failures raise whatever the transport raises; the core wraps them
"""

from abc import ABC, abstractmethod
from typing import Optional

from ..model.schemas import (
    DirectoryContext, Domain, DomainController, Forest, LocatorFlag, SearchScope
)
from .entry import DirectoryEntry


class DirectoryServiceError(Exception):
    """Failure reported by the directory transport."""

    def __init__(self, message: str, result_code: Optional[int] = None):
        super().__init__(message)
        self.result_code = result_code


class ObjectNotFoundError(DirectoryServiceError):
    """The named domain, forest, server or object does not exist."""


class ObjectClassViolationError(DirectoryServiceError):
    """A commit was rejected because mandatory attributes are missing."""


class AddressFormatError(DirectoryServiceError):
    """The value given to a reverse lookup is not an IP address literal."""


class PrincipalNotMappedError(DirectoryServiceError):
    """A principal name could not be translated to a SID."""


class DirectoryService(ABC):
    """Abstract directory service consumed by the resolution layer."""

    # Entries

    @abstractmethod
    def bind_entry(
        self,
        path: str,
        username: Optional[str] = None,
        password: Optional[str] = None
    ) -> Optional[DirectoryEntry]:
        """Bind the object at path; None when there is nothing to bind."""

    @abstractmethod
    def search(
        self,
        root: str,
        search_filter: str,
        page_size: int = 0,
        size_limit: int = 0,
        scope: SearchScope = SearchScope.SUBTREE,
        find_one: bool = False,
        username: Optional[str] = None,
        password: Optional[str] = None,
        attributes: Optional[list] = None
    ) -> list:
        """Search below root (an LDAP path) and return DirectoryEntry objects."""

    @abstractmethod
    def create_child(self, parent: DirectoryEntry, object_class: str, rdn: str) -> DirectoryEntry:
        """Return a new, uncommitted child entry of parent."""

    @abstractmethod
    def commit_changes(self, entry: DirectoryEntry) -> None:
        """Write an entry's staged attributes and security descriptor."""

    @abstractmethod
    def get_access_control(self, entry: DirectoryEntry):
        """Read the entry's security descriptor (a SecurityDescriptor)."""

    # Topology

    @abstractmethod
    def get_domain(self, context: DirectoryContext) -> Domain:
        """Resolve the domain a Domain or DirectoryServer context refers to."""

    @abstractmethod
    def get_forest(self, context: DirectoryContext) -> Forest:
        """Resolve a forest by its root name (Forest context) or via a server."""

    @abstractmethod
    def get_domain_controller(self, context: DirectoryContext) -> DomainController:
        """Resolve the controller named by a DirectoryServer context."""

    @abstractmethod
    def find_all_controllers(self, context: DirectoryContext, site: Optional[str] = None) -> list:
        """Every controller of the context's domain, optionally in one site."""

    @abstractmethod
    def find_one_controller(
        self,
        context: DirectoryContext,
        site: Optional[str] = None,
        flags: LocatorFlag = LocatorFlag.NONE
    ) -> Optional[DomainController]:
        """One controller meeting every flag, or None."""

    @abstractmethod
    def get_computer_site(self, context: DirectoryContext) -> Optional[str]:
        """Site the local computer belongs to, as reported by a controller."""

    # Names

    @abstractmethod
    def translate_principal_to_sid(
        self,
        principal: str,
        server: Optional[str] = None,
        username: Optional[str] = None,
        password: Optional[str] = None
    ) -> str:
        """Translate an account name to a SID string."""

    @abstractmethod
    def reverse_dns_lookup(self, address: str) -> str:
        """Host name for an IP literal; AddressFormatError if not a literal."""

    @abstractmethod
    def forward_dns_lookup(self, name: str) -> str:
        """Canonical FQDN for a host name."""
