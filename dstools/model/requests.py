"""
Request types for operations with mutually exclusive modes.

Each operation that used to select behaviour from whichever parameters were
supplied takes exactly one of these dataclasses instead. The consumer
dispatches on the concrete type and rejects anything else.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Optional, Union

from .schemas import Domain, Forest, FsmoRole, LocatorFlag, ServiceRequirement


# Domain controller selection

@dataclass(frozen=True)
class ByIdentity:
    """One specific controller, named by IP, NetBIOS name or FQDN."""
    identity: str


@dataclass(frozen=True)
class FindAllInForest:
    """Every controller of every domain in the forest of domain_name."""
    domain_name: Optional[str] = None


@dataclass(frozen=True)
class FindAll:
    """Every controller of domain_name, optionally limited to one site."""
    domain_name: Optional[str] = None
    site_name: Optional[str] = None


@dataclass(frozen=True)
class FindOne:
    """One controller satisfying every requested locator constraint."""
    domain_name: Optional[str] = None
    site_name: Optional[str] = None
    avoid_self: bool = False
    force_rediscover: bool = False
    writable: bool = False
    services: frozenset = field(default_factory=frozenset)

    @property
    def locator_flags(self) -> LocatorFlag:
        """Bitmask of locator flags for this request."""
        flags = LocatorFlag.NONE
        if self.avoid_self:
            flags |= LocatorFlag.AVOID_SELF
        if self.force_rediscover:
            flags |= LocatorFlag.FORCE_REDISCOVERY
        if self.writable:
            flags |= LocatorFlag.WRITEABLE_REQUIRED
        for service in self.services:
            flags |= service.locator_flag
        return flags


@dataclass(frozen=True)
class RoleOwner:
    """The controller holding an FSMO role in a domain (or forest)."""
    role: FsmoRole
    domain_name: Optional[str] = None
    identity: Optional[str] = None


DomainControllerRequest = Union[ByIdentity, FindAllInForest, FindAll, FindOne, RoleOwner]


def parse_service_requirements(text: Optional[str]) -> frozenset:
    """Parse a comma-list such as "KDC,TimeService" into ServiceRequirements.

    Raises:
        ValueError: for an unknown service name
    """
    if not text:
        return frozenset()
    return frozenset(
        ServiceRequirement.from_string(token)
        for token in text.split(",")
        if token.strip()
    )


# Domain / forest selection

class CurrentContext(Enum):
    """Shortcut selectors for the "current" domain or forest."""
    CURRENT_USER = "CurrentUser"
    LOCAL_MACHINE = "LocalMachine"

    @classmethod
    def from_string(cls, s: str) -> "CurrentContext":
        for current in cls:
            if current.value.lower() == s.strip().lower():
                return current
        raise ValueError(f"Unknown current context: {s}")


# Site selection

@dataclass(frozen=True)
class SiteByIdentity:
    """A single site by name; the local computer's site when name is None."""
    name: Optional[str] = None
    server: Optional[str] = None


@dataclass(frozen=True)
class SitesByDomainName:
    domain_name: str


@dataclass(frozen=True)
class SitesByForestName:
    forest_name: str


@dataclass(frozen=True)
class SitesOfDomain:
    domain: Domain


@dataclass(frozen=True)
class SitesOfForest:
    forest: Forest


SiteSelector = Union[SiteByIdentity, SitesByDomainName, SitesByForestName, SitesOfDomain, SitesOfForest]
