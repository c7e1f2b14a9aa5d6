"""
dstools Data Schemas
====================

Typed dataclasses and enums for directory contexts, topology objects and
access rules.

Design Decisions:
-----------------
1. Contexts and credentials are plain values; a context is built per call and
   never cached
2. Topology objects (Domain, Forest, DomainController, Site) are resolved
   snapshots produced by the directory service, not live handles
3. Back-references (controller -> domain -> forest) are excluded from repr
   and comparison so snapshots can point at each other without recursion
4. Enums parse the names operators type on the command line through
   from_string(); unknown names raise ValueError

Schema Overview:
- DirectoryContext / Credential: what to bind to and as whom
- DomainController, Domain, Forest, Site, TrustRelationship: topology
- AccessRule and its flag enums: one ACE to be added to an object
- RootDSE: server metadata snapshot
"""

import uuid
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum, Flag
from typing import Optional


EMPTY_GUID = uuid.UUID(int=0)


def _normalize_token(value: str) -> str:
    return value.strip().replace("-", "").replace("_", "").replace(" ", "").lower()


class ContextType(Enum):
    """Kinds of target a DirectoryContext can address."""
    DOMAIN = "Domain"
    FOREST = "Forest"
    DIRECTORY_SERVER = "DirectoryServer"
    CONFIGURATION_SET = "ConfigurationSet"
    APPLICATION_PARTITION = "ApplicationPartition"

    @classmethod
    def from_string(cls, s: str) -> "ContextType":
        normalized = _normalize_token(s)
        for context_type in cls:
            if _normalize_token(context_type.value) == normalized:
                return context_type
        raise ValueError(f"Unknown context type: {s}")


class SearchScope(Enum):
    """LDAP search scopes."""
    BASE = "Base"
    ONE_LEVEL = "OneLevel"
    SUBTREE = "Subtree"

    @classmethod
    def from_string(cls, s: str) -> "SearchScope":
        normalized = _normalize_token(s)
        for scope in cls:
            if _normalize_token(scope.value) == normalized:
                return scope
        raise ValueError(f"Unknown search scope: {s}")


@dataclass
class Credential:
    """Account used to bind to the directory.

    Attributes:
        username: Account name, without any domain prefix
        password: Plaintext password (never shown in repr)
        domain: NetBIOS or DNS domain of the account, if any
    """
    username: str
    password: str = field(default="", repr=False)
    domain: Optional[str] = None

    @classmethod
    def parse(cls, principal: str, password: str) -> "Credential":
        """Split "DOMAIN\\user" into its parts.

        "user@domain" is kept whole as the account name because a UPN binds
        as-is.
        """
        if "\\" in principal:
            domain, _, username = principal.partition("\\")
            return cls(username=username, password=password, domain=domain or None)
        return cls(username=principal, password=password)

    @property
    def bind_principal(self) -> str:
        """Name to bind as: bare account name when the domain part is empty."""
        if self.domain:
            return f"{self.domain}\\{self.username}"
        return self.username


@dataclass(frozen=True)
class DirectoryContext:
    """An addressable target plus the principal to bind as."""
    context_type: ContextType
    name: str
    username: Optional[str] = None
    password: Optional[str] = field(default=None, repr=False)


class FsmoRole(Enum):
    """Flexible single-master operation roles."""
    PDC = "PdcRole"
    RID = "RidRole"
    INFRASTRUCTURE = "InfrastructureRole"
    SCHEMA = "SchemaRole"
    NAMING = "NamingRole"

    @property
    def is_forest_role(self) -> bool:
        return self in (FsmoRole.SCHEMA, FsmoRole.NAMING)

    @classmethod
    def from_string(cls, s: str) -> "FsmoRole":
        normalized = _normalize_token(s)
        aliases = {
            "pdc": cls.PDC,
            "pdcemulator": cls.PDC,
            "rid": cls.RID,
            "ridmaster": cls.RID,
            "infrastructure": cls.INFRASTRUCTURE,
            "infrastructuremaster": cls.INFRASTRUCTURE,
            "schema": cls.SCHEMA,
            "schemaroleowner": cls.SCHEMA,
            "schemamaster": cls.SCHEMA,
            "naming": cls.NAMING,
            "namingroleowner": cls.NAMING,
            "domainnamingmaster": cls.NAMING,
        }
        for role in cls:
            if _normalize_token(role.value) == normalized:
                return role
        if normalized in aliases:
            return aliases[normalized]
        raise ValueError(f"Unknown FSMO role: {s}")


class DomainMode(Enum):
    """Domain functional level, keyed by msDS-Behavior-Version."""
    WINDOWS_2000 = 0
    WINDOWS_2003_INTERIM = 1
    WINDOWS_2003 = 2
    WINDOWS_2008 = 3
    WINDOWS_2008_R2 = 4
    WINDOWS_2012 = 5
    WINDOWS_2012_R2 = 6
    WINDOWS_2016 = 7
    WINDOWS_2025 = 10

    @classmethod
    def from_level(cls, level: int) -> "DomainMode":
        """Map a functionality integer; unknown values raise ValueError."""
        return cls(int(level))

    @property
    def display_name(self) -> str:
        return _mode_display_name(self.name, "Domain")


class ForestMode(Enum):
    """Forest functional level, keyed by msDS-Behavior-Version."""
    WINDOWS_2000 = 0
    WINDOWS_2003_INTERIM = 1
    WINDOWS_2003 = 2
    WINDOWS_2008 = 3
    WINDOWS_2008_R2 = 4
    WINDOWS_2012 = 5
    WINDOWS_2012_R2 = 6
    WINDOWS_2016 = 7
    WINDOWS_2025 = 10

    @classmethod
    def from_level(cls, level: int) -> "ForestMode":
        return cls(int(level))

    @property
    def display_name(self) -> str:
        return _mode_display_name(self.name, "Forest")


def _mode_display_name(name: str, suffix: str) -> str:
    # WINDOWS_2008_R2 -> Windows2008R2Domain
    parts = name.split("_")
    return "".join(p.capitalize() if p.isalpha() else p for p in parts) + suffix


class TrustType(Enum):
    """Kinds of trust relationship."""
    CROSS_LINK = "CrossLink"
    EXTERNAL = "External"
    FOREST = "Forest"
    KERBEROS = "Kerberos"
    PARENT_CHILD = "ParentChild"
    TREE_ROOT = "TreeRoot"
    UNKNOWN = "Unknown"

    @classmethod
    def from_string(cls, s: str) -> "TrustType":
        normalized = _normalize_token(s)
        for trust_type in cls:
            if _normalize_token(trust_type.value) == normalized:
                return trust_type
        raise ValueError(f"Unknown trust type: {s}")


class TrustDirection(Flag):
    """Trust direction, matching the trustDirection attribute bits."""
    INBOUND = 1
    OUTBOUND = 2
    BIDIRECTIONAL = 3

    @classmethod
    def from_string(cls, s: str) -> "TrustDirection":
        normalized = _normalize_token(s)
        for name, member in cls.__members__.items():
            if _normalize_token(name) == normalized:
                return member
        raise ValueError(f"Unknown trust direction: {s}")

    @property
    def display_name(self) -> str:
        return {1: "Inbound", 2: "Outbound", 3: "Bidirectional"}.get(self.value, str(self.value))

    def satisfies(self, wanted: "TrustDirection") -> bool:
        """True when this direction includes every bit of wanted."""
        return (self & wanted) == wanted


@dataclass(frozen=True)
class TrustRelationship:
    """A trust between two domains or forests, as seen from source_name."""
    source_name: str
    target_name: str
    trust_type: TrustType
    trust_direction: TrustDirection

    def to_dict(self) -> dict:
        return {
            "source_name": self.source_name,
            "target_name": self.target_name,
            "trust_type": self.trust_type.value,
            "trust_direction": self.trust_direction.display_name,
        }


@dataclass(eq=False)
class DomainController:
    """A resolved domain controller.

    Attributes:
        name: DNS host name of the controller
        domain: Domain the controller serves (back-reference)
        forest: Forest the controller belongs to (back-reference)
        site: Replication site name, if known
        roles: FSMO roles this controller holds
        ip_address: Address the locator reached it on, if known
        read_only: Whether this is a read-only domain controller
        global_catalog: Whether the controller hosts a global catalog
        os_version: operatingSystem of the computer object, if read
    """
    name: str
    domain: Optional["Domain"] = field(default=None, repr=False)
    forest: Optional["Forest"] = field(default=None, repr=False)
    site: Optional[str] = None
    roles: set = field(default_factory=set)
    ip_address: Optional[str] = None
    read_only: bool = False
    global_catalog: bool = False
    os_version: Optional[str] = None

    def __hash__(self):
        return hash(self.name.lower())

    def __eq__(self, other):
        if isinstance(other, DomainController):
            return self.name.lower() == other.name.lower()
        return False

    def to_dict(self) -> dict:
        return {
            "name": self.name,
            "domain": self.domain.name if self.domain else None,
            "forest": self.forest.name if self.forest else None,
            "site": self.site,
            "roles": sorted(role.value for role in self.roles),
            "ip_address": self.ip_address,
            "read_only": self.read_only,
            "global_catalog": self.global_catalog,
            "os_version": self.os_version,
        }


@dataclass(eq=False)
class Domain:
    """A resolved Active Directory domain.

    Role owners and the trust list are only populated when the domain was
    resolved on its own; domains listed inside a Forest carry their
    controllers but leave role owners unset.
    """
    name: str
    distinguished_name: str = ""
    forest: Optional["Forest"] = field(default=None, repr=False)
    domain_controllers: list = field(default_factory=list)
    trusts: list = field(default_factory=list)
    pdc_role_owner: Optional[DomainController] = field(default=None, repr=False)
    rid_role_owner: Optional[DomainController] = field(default=None, repr=False)
    infrastructure_role_owner: Optional[DomainController] = field(default=None, repr=False)
    domain_mode: Optional[DomainMode] = None
    parent: Optional[str] = None

    def __hash__(self):
        return hash(self.name.lower())

    def __eq__(self, other):
        if isinstance(other, Domain):
            return self.name.lower() == other.name.lower()
        return False

    def role_owner(self, role: FsmoRole) -> Optional[DomainController]:
        return {
            FsmoRole.PDC: self.pdc_role_owner,
            FsmoRole.RID: self.rid_role_owner,
            FsmoRole.INFRASTRUCTURE: self.infrastructure_role_owner,
        }.get(role)

    def to_dict(self) -> dict:
        return {
            "name": self.name,
            "distinguished_name": self.distinguished_name,
            "forest": self.forest.name if self.forest else None,
            "domain_controllers": [dc.name for dc in self.domain_controllers],
            "pdc_role_owner": self.pdc_role_owner.name if self.pdc_role_owner else None,
            "rid_role_owner": self.rid_role_owner.name if self.rid_role_owner else None,
            "infrastructure_role_owner": (
                self.infrastructure_role_owner.name if self.infrastructure_role_owner else None
            ),
            "domain_mode": self.domain_mode.display_name if self.domain_mode else None,
            "parent": self.parent,
        }


@dataclass
class Site:
    """A replication site.

    Attributes:
        name: Site name
        domains: Names of domains with a controller in this site (back-references)
        subnets: Subnets (CIDR strings) associated with the site
    """
    name: str
    domains: list = field(default_factory=list)
    subnets: list = field(default_factory=list)

    def contains_domain(self, domain) -> bool:
        """Membership test by domain name (accepts a Domain or a string)."""
        name = domain.name if isinstance(domain, Domain) else str(domain)
        return any(d.lower() == name.lower() for d in self.domains)

    def to_dict(self) -> dict:
        return {"name": self.name, "domains": list(self.domains), "subnets": list(self.subnets)}


@dataclass(eq=False)
class Forest:
    """A resolved Active Directory forest."""
    name: str
    domains: list = field(default_factory=list)
    sites: list = field(default_factory=list)
    trusts: list = field(default_factory=list)
    schema_role_owner: Optional[DomainController] = field(default=None, repr=False)
    naming_role_owner: Optional[DomainController] = field(default=None, repr=False)
    forest_mode: Optional[ForestMode] = None

    def __hash__(self):
        return hash(self.name.lower())

    def __eq__(self, other):
        if isinstance(other, Forest):
            return self.name.lower() == other.name.lower()
        return False

    def role_owner(self, role: FsmoRole) -> Optional[DomainController]:
        return {
            FsmoRole.SCHEMA: self.schema_role_owner,
            FsmoRole.NAMING: self.naming_role_owner,
        }.get(role)

    def to_dict(self) -> dict:
        return {
            "name": self.name,
            "domains": [d.name for d in self.domains],
            "sites": [s.name for s in self.sites],
            "schema_role_owner": self.schema_role_owner.name if self.schema_role_owner else None,
            "naming_role_owner": self.naming_role_owner.name if self.naming_role_owner else None,
            "forest_mode": self.forest_mode.display_name if self.forest_mode else None,
        }


class ActiveDirectoryRights(Flag):
    """Directory access-mask bits (ADS_RIGHT_*), with the generic composites."""
    CREATE_CHILD = 0x00000001
    DELETE_CHILD = 0x00000002
    LIST_CHILDREN = 0x00000004
    SELF = 0x00000008
    READ_PROPERTY = 0x00000010
    WRITE_PROPERTY = 0x00000020
    DELETE_TREE = 0x00000040
    LIST_OBJECT = 0x00000080
    EXTENDED_RIGHT = 0x00000100
    DELETE = 0x00010000
    READ_CONTROL = 0x00020000
    WRITE_DACL = 0x00040000
    WRITE_OWNER = 0x00080000
    SYNCHRONIZE = 0x00100000
    ACCESS_SYSTEM_SECURITY = 0x01000000
    GENERIC_READ = 0x00020094
    GENERIC_WRITE = 0x00020028
    GENERIC_EXECUTE = 0x00020004
    GENERIC_ALL = 0x000F01FF

    @classmethod
    def parse(cls, text: str) -> "ActiveDirectoryRights":
        """Parse "ReadProperty, GenericExecute" into a combined flag."""
        lookup = {_normalize_token(name): member for name, member in cls.__members__.items()}
        result = cls(0)
        for token in text.split(","):
            if not token.strip():
                continue
            member = lookup.get(_normalize_token(token))
            if member is None:
                raise ValueError(f"Unknown directory right: {token.strip()}")
            result |= member
        if not result:
            raise ValueError("No directory rights given")
        return result


class AccessControlType(Enum):
    ALLOW = "Allow"
    DENY = "Deny"

    @classmethod
    def from_string(cls, s: str) -> "AccessControlType":
        for access_type in cls:
            if access_type.value.lower() == s.strip().lower():
                return access_type
        raise ValueError(f"Unknown access control type: {s}")


class InheritanceType(Enum):
    """ActiveDirectorySecurityInheritance values."""
    NONE = "None"
    ALL = "All"
    DESCENDENTS = "Descendents"
    SELF_AND_CHILDREN = "SelfAndChildren"
    CHILDREN = "Children"

    @classmethod
    def from_string(cls, s: str) -> "InheritanceType":
        normalized = _normalize_token(s)
        for inheritance in cls:
            if _normalize_token(inheritance.value) == normalized:
                return inheritance
        raise ValueError(f"Unknown inheritance type: {s}")


@dataclass(frozen=True)
class AccessRule:
    """One access control entry to add to an object's DACL.

    object_type / inherited_object_type are schemaIDGUIDs; EMPTY_GUID means
    the rule applies to all object classes.
    """
    identity: str
    sid: str
    rights: ActiveDirectoryRights
    access_type: AccessControlType = AccessControlType.ALLOW
    inheritance: InheritanceType = InheritanceType.NONE
    object_type: uuid.UUID = EMPTY_GUID
    inherited_object_type: uuid.UUID = EMPTY_GUID


class LocatorFlag(Flag):
    """DC locator flags (DsGetDcName values)."""
    NONE = 0
    FORCE_REDISCOVERY = 0x00000001
    KDC_REQUIRED = 0x00000400
    TIME_SERVER_REQUIRED = 0x00000800
    WRITEABLE_REQUIRED = 0x00001000
    AVOID_SELF = 0x00004000


class ServiceRequirement(Enum):
    """Services a located controller must offer."""
    KDC = "KDC"
    TIME_SERVICE = "TimeService"

    @classmethod
    def from_string(cls, s: str) -> "ServiceRequirement":
        normalized = _normalize_token(s)
        aliases = {"kdc": cls.KDC, "timeservice": cls.TIME_SERVICE, "timeserver": cls.TIME_SERVICE}
        if normalized in aliases:
            return aliases[normalized]
        raise ValueError(f"Unknown service requirement: {s}")

    @property
    def locator_flag(self) -> LocatorFlag:
        if self is ServiceRequirement.KDC:
            return LocatorFlag.KDC_REQUIRED
        return LocatorFlag.TIME_SERVER_REQUIRED


@dataclass
class RootDSE:
    """Snapshot of a server's root DSE.

    Attributes:
        configuration_naming_context: DN of the configuration partition
        default_naming_context: DN of the server's domain partition
        schema_naming_context: DN of the schema partition
        root_domain_naming_context: DN of the forest root domain
        domain_functionality: Domain functional level
        forest_functionality: Forest functional level
        current_time: Server time, converted to local time
        dns_host_name / server_name / service_name: Server identity
        supported_* : Informational capability lists
    """
    configuration_naming_context: str
    default_naming_context: str
    schema_naming_context: str
    domain_functionality: DomainMode
    forest_functionality: ForestMode
    current_time: datetime
    root_domain_naming_context: Optional[str] = None
    dns_host_name: Optional[str] = None
    server_name: Optional[str] = None
    service_name: Optional[str] = None
    naming_contexts: list = field(default_factory=list)
    supported_capabilities: list = field(default_factory=list)
    supported_controls: list = field(default_factory=list)
    supported_sasl_mechanisms: list = field(default_factory=list)
    supported_ldap_versions: list = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "configurationNamingContext": self.configuration_naming_context,
            "defaultNamingContext": self.default_naming_context,
            "schemaNamingContext": self.schema_naming_context,
            "rootDomainNamingContext": self.root_domain_naming_context,
            "domainFunctionality": self.domain_functionality.display_name,
            "forestFunctionality": self.forest_functionality.display_name,
            "currentTime": self.current_time.isoformat(),
            "dnsHostName": self.dns_host_name,
            "serverName": self.server_name,
            "serviceName": self.service_name,
            "namingContexts": self.naming_contexts,
            "supportedCapabilities": self.supported_capabilities,
            "supportedControl": self.supported_controls,
            "supportedSASLMechanisms": self.supported_sasl_mechanisms,
            "supportedLDAPVersion": self.supported_ldap_versions,
        }
