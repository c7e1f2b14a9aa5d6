"""
Pytest configuration and shared fixtures.

FakeDirectoryService is an in-memory DirectoryService modelling a small
forest:

    contoso.com (forest root)          emea.contoso.com (child)
      dc01.contoso.com   HQ            emea-dc01.emea.contoso.com  Branch
      dc02.contoso.com   Branch
      rodc01.contoso.com HQ (RODC)

Sites: HQ, Branch, Lab (no controllers).
"""

import copy
import ipaddress
import re
import sys
import uuid
from pathlib import Path

PROJECT_ROOT = Path(__file__).parent.parent
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

import pytest

from dstools.config import DSConfig
from dstools.core.environment import StaticEnvironment
from dstools.directory.entry import DirectoryEntry
from dstools.directory.paths import build_path, is_root_dse, parent_dn, parse_path, rdn_value, root_dse_path
from dstools.directory.security import SecurityDescriptor
from dstools.directory.service import (
    AddressFormatError, DirectoryService, DirectoryServiceError,
    ObjectClassViolationError, ObjectNotFoundError, PrincipalNotMappedError
)
from dstools.model.schemas import (
    ContextType, Credential, Domain, DomainController, DomainMode, Forest,
    ForestMode, FsmoRole, LocatorFlag, SearchScope, Site, TrustDirection,
    TrustRelationship, TrustType
)
from dstools.session import DirectoryTools


USER_CLASS_GUID = uuid.UUID("bf967aba-0de6-11d0-a285-00aa003049e2")
COMPUTER_CLASS_GUID = uuid.UUID("bf967a86-0de6-11d0-a285-00aa003049e2")
ALICE_SID = "S-1-5-21-1004336348-1177238915-682003330-1104"

_EQUALITY_FILTER = re.compile(r"^\(([A-Za-z][\w-]*)=([^()]*)\)$")


class FakeDirectoryService(DirectoryService):
    """In-memory directory for tests.

    Attributes worth poking at from tests:
        entries: lowercased DN -> (DN, attributes)
        descriptors: lowercased DN -> SecurityDescriptor
        commits: DNs committed, in order
        binds: (path, username, password) for every bind_entry call
        forest_calls: names passed to get_forest
        root_dse_overrides: attributes merged into every RootDSE
        mandatory: objectClass -> attributes a new object must carry
        services: controller name -> {"kdc", "time"}
    """

    def __init__(self):
        self.local_host = "ws01.contoso.com"
        self.entries = {}
        self.descriptors = {}
        self.commits = []
        self.binds = []
        self.searches = []
        self.forest_calls = []
        self.root_dse_overrides = {}
        self.mandatory = {"user": ["sAMAccountName"], "computer": ["sAMAccountName"]}
        self.services = {}
        self.computer_site = "HQ"
        self.ptr = {"10.0.0.10": "dc01.contoso.com", "10.0.1.10": "emea-dc01.emea.contoso.com"}
        self.hosts = {}
        self.principals = {
            "everyone": "S-1-1-0",
            "authenticated users": "S-1-5-11",
            "contoso\\alice": ALICE_SID,
            "alice": ALICE_SID,
            "alice@contoso.com": ALICE_SID,
        }
        self._build_topology()
        self._build_entries()

    # Fixture data

    def _build_topology(self):
        forest = Forest(name="contoso.com", forest_mode=ForestMode.WINDOWS_2016)
        root = Domain(name="contoso.com", distinguished_name="DC=contoso,DC=com", forest=forest,
                      domain_mode=DomainMode.WINDOWS_2016)
        child = Domain(name="emea.contoso.com", distinguished_name="DC=emea,DC=contoso,DC=com",
                       forest=forest, parent="contoso.com", domain_mode=DomainMode.WINDOWS_2016)
        forest.domains = [root, child]

        def controller(name, domain, site, read_only=False, gc=False, services=()):
            dc = DomainController(name=name, domain=domain, forest=forest, site=site,
                                  read_only=read_only, global_catalog=gc)
            domain.domain_controllers.append(dc)
            self.services[name] = set(services)
            return dc

        dc01 = controller("dc01.contoso.com", root, "HQ", gc=True, services=("kdc",))
        controller("dc02.contoso.com", root, "Branch", services=("kdc", "time"))
        controller("rodc01.contoso.com", root, "HQ", read_only=True, services=("kdc",))
        emea_dc = controller("emea-dc01.emea.contoso.com", child, "Branch", gc=True, services=("kdc", "time"))

        dc01.roles = {FsmoRole.PDC, FsmoRole.RID, FsmoRole.INFRASTRUCTURE, FsmoRole.SCHEMA, FsmoRole.NAMING}
        root.pdc_role_owner = root.rid_role_owner = root.infrastructure_role_owner = dc01
        emea_dc.roles = {FsmoRole.PDC, FsmoRole.RID, FsmoRole.INFRASTRUCTURE}
        child.pdc_role_owner = child.rid_role_owner = child.infrastructure_role_owner = emea_dc
        forest.schema_role_owner = forest.naming_role_owner = dc01

        forest.sites = [
            Site(name="HQ", domains=["contoso.com"], subnets=["10.0.0.0/24"]),
            Site(name="Branch", domains=["contoso.com", "emea.contoso.com"], subnets=["10.0.1.0/24"]),
            Site(name="Lab"),
        ]

        root.trusts = [
            TrustRelationship("contoso.com", "emea.contoso.com", TrustType.PARENT_CHILD, TrustDirection.BIDIRECTIONAL),
            TrustRelationship("contoso.com", "fabrikam.com", TrustType.FOREST, TrustDirection.INBOUND),
            TrustRelationship("contoso.com", "legacy.local", TrustType.EXTERNAL, TrustDirection.OUTBOUND),
        ]
        child.trusts = [
            TrustRelationship("emea.contoso.com", "contoso.com", TrustType.PARENT_CHILD, TrustDirection.BIDIRECTIONAL),
        ]
        forest.trusts = [
            TrustRelationship("contoso.com", "fabrikam.com", TrustType.FOREST, TrustDirection.INBOUND),
        ]

        self.forest = forest
        for domain in forest.domains:
            for dc in domain.domain_controllers:
                short = dc.name.split(".")[0]
                self.hosts[short] = dc.name
                self.hosts[dc.name] = dc.name
        self.hosts["ldap.contoso.com"] = "dc01.contoso.com"
        self.hosts["ws01"] = "ws01.contoso.com"
        self.hosts["ws01.contoso.com"] = "ws01.contoso.com"

    def _build_entries(self):
        self.add_entry("DC=contoso,DC=com", objectClass=["top", "domain", "domainDNS"])
        self.add_entry("CN=Users,DC=contoso,DC=com", objectClass=["top", "container"])
        self.add_entry("CN=Alice,CN=Users,DC=contoso,DC=com", objectClass=["top", "person", "user"],
                       sAMAccountName="alice", displayName="Alice Smith")
        self.add_entry("CN=Bob,CN=Users,DC=contoso,DC=com", objectClass=["top", "person", "user"],
                       sAMAccountName="bob")
        self.add_entry("OU=Finance,DC=contoso,DC=com", objectClass=["top", "organizationalUnit"])
        self.add_entry("DC=emea,DC=contoso,DC=com", objectClass=["top", "domain", "domainDNS"])
        self.add_entry("CN=Configuration,DC=contoso,DC=com", objectClass=["top", "configuration"])
        self.add_entry("CN=Schema,CN=Configuration,DC=contoso,DC=com", objectClass=["top", "dMD"])
        self.add_entry("CN=User,CN=Schema,CN=Configuration,DC=contoso,DC=com",
                       objectClass=["top", "classSchema"], schemaIDGUID=USER_CLASS_GUID.bytes_le)
        self.add_entry("CN=Computer,CN=Schema,CN=Configuration,DC=contoso,DC=com",
                       objectClass=["top", "classSchema"], schemaIDGUID=COMPUTER_CLASS_GUID.bytes_le)

    def add_entry(self, dn: str, **attributes):
        self.entries[dn.lower()] = (dn, {
            name: value if isinstance(value, list) else [value]
            for name, value in attributes.items()
        })

    # Helpers

    def controller(self, name: str) -> DomainController:
        for domain in self.forest.domains:
            for dc in domain.domain_controllers:
                if dc.name.lower() == name.lower():
                    return dc
        raise ObjectNotFoundError(f"Server '{name}' is not a domain controller")

    def _domain(self, name: str) -> Domain:
        for domain in self.forest.domains:
            if domain.name.lower() == name.lower():
                return domain
        raise ObjectNotFoundError(f"Domain '{name}' does not exist")

    def _root_dse(self, server: str) -> dict:
        dc = self.controller(server)
        attributes = {
            "configurationNamingContext": ["CN=Configuration,DC=contoso,DC=com"],
            "defaultNamingContext": [dc.domain.distinguished_name],
            "schemaNamingContext": ["CN=Schema,CN=Configuration,DC=contoso,DC=com"],
            "rootDomainNamingContext": ["DC=contoso,DC=com"],
            "domainFunctionality": ["7"],
            "forestFunctionality": ["7"],
            "currentTime": ["20150101120000.0Z"],
            "dnsHostName": [dc.name],
            "ldapServiceName": [f"contoso.com:{dc.name.split('.')[0]}$@CONTOSO.COM"],
            "namingContexts": ["DC=contoso,DC=com", "CN=Configuration,DC=contoso,DC=com"],
            "supportedLDAPVersion": ["3", "2"],
            "supportedControl": ["1.2.840.113556.1.4.319"],
            "supportedSASLMechanisms": ["GSSAPI", "GSS-SPNEGO"],
            "supportedCapabilities": ["1.2.840.113556.1.4.800"],
        }
        attributes.update(self.root_dse_overrides)
        return attributes

    def _matches(self, search_filter: str, dn: str, attributes: dict) -> bool:
        if search_filter == "(objectClass=*)":
            return True
        match = _EQUALITY_FILTER.match(search_filter)
        if not match:
            raise DirectoryServiceError(f"Bad search filter: {search_filter}")
        name, wanted = match.group(1).lower(), match.group(2).lower()
        values = [v for key, vs in attributes.items() if key.lower() == name for v in vs]
        if name == "cn" and not values:
            values = [rdn_value(dn)]
        if wanted == "*":
            return bool(values)
        return any(str(v).lower() == wanted for v in values)

    # Entries

    def bind_entry(self, path, username=None, password=None):
        self.binds.append((path, username, password))
        server, dn = parse_path(path)
        if server is None or server.lower() not in {d.name.lower() for d in self._controllers()}:
            return None
        if is_root_dse(dn):
            return DirectoryEntry(path=root_dse_path(server), attributes=self._root_dse(server))
        stored = self.entries.get(dn.lower())
        if stored is None:
            return None
        return DirectoryEntry(path=build_path(server, stored[0]), attributes=copy.deepcopy(stored[1]))

    def search(self, root, search_filter, page_size=0, size_limit=0, scope=SearchScope.SUBTREE,
               find_one=False, username=None, password=None, attributes=None):
        self.searches.append((root, search_filter, page_size, size_limit, scope, find_one))
        server, base = parse_path(root)
        if base.lower() not in self.entries:
            return []

        results = []
        for key, (dn, attrs) in self.entries.items():
            if scope is SearchScope.BASE and key != base.lower():
                continue
            if scope is SearchScope.ONE_LEVEL and parent_dn(key) != base.lower():
                continue
            if scope is SearchScope.SUBTREE and key != base.lower() and not key.endswith("," + base.lower()):
                continue
            if self._matches(search_filter, dn, attrs):
                results.append(DirectoryEntry(path=build_path(server, dn), attributes=copy.deepcopy(attrs)))

        if find_one:
            size_limit = 1
        if size_limit:
            results = results[:size_limit]
        return results

    def create_child(self, parent, object_class, rdn):
        return DirectoryEntry(
            path=build_path(parent.server, f"{rdn},{parent.distinguished_name}"),
            bound=False,
            object_class=object_class,
        )

    def commit_changes(self, entry):
        dn = entry.distinguished_name
        if entry.is_new:
            missing = [
                name for name in self.mandatory.get(entry.object_class.lower(), [])
                if name.lower() not in {k.lower() for k in entry.staged_changes}
            ]
            if missing:
                raise ObjectClassViolationError(
                    f"Object class violation: {', '.join(missing)} required", 65
                )
            attributes = {"objectClass": ["top", entry.object_class]}
            attributes.update(entry.staged_changes)
            self.entries[dn.lower()] = (dn, attributes)
        elif dn.lower() in self.entries:
            self.entries[dn.lower()][1].update(entry.staged_changes)

        if entry.staged_security_descriptor is not None:
            self.descriptors[dn.lower()] = entry.staged_security_descriptor
        self.commits.append(dn)
        entry.mark_committed()

    def get_access_control(self, entry):
        stored = self.descriptors.get(entry.distinguished_name.lower())
        if stored is None:
            return SecurityDescriptor()
        return SecurityDescriptor.from_bytes(stored.to_bytes())

    # Topology

    def _controllers(self) -> list:
        return [dc for domain in self.forest.domains for dc in domain.domain_controllers]

    def get_domain(self, context):
        if context.context_type is ContextType.DIRECTORY_SERVER:
            return self.controller(context.name).domain
        return self._domain(context.name)

    def get_forest(self, context):
        self.forest_calls.append(context.name)
        if context.context_type is ContextType.DIRECTORY_SERVER:
            return self.controller(context.name).forest
        if context.name.lower() != self.forest.name.lower():
            raise ObjectNotFoundError(f"'{context.name}' is not the root of a forest")
        return self.forest

    def get_domain_controller(self, context):
        return self.controller(context.name)

    def find_all_controllers(self, context, site=None):
        domain = self._domain(context.name)
        return [
            dc for dc in domain.domain_controllers
            if not site or (dc.site or "").lower() == site.lower()
        ]

    def find_one_controller(self, context, site=None, flags=LocatorFlag.NONE):
        domain = self._domain(context.name)
        for dc in domain.domain_controllers:
            if site and (dc.site or "").lower() != site.lower():
                continue
            if LocatorFlag.AVOID_SELF in flags and dc.name.lower() == self.local_host.lower():
                continue
            if LocatorFlag.WRITEABLE_REQUIRED in flags and dc.read_only:
                continue
            services = self.services.get(dc.name, set())
            if LocatorFlag.KDC_REQUIRED in flags and "kdc" not in services:
                continue
            if LocatorFlag.TIME_SERVER_REQUIRED in flags and "time" not in services:
                continue
            return dc
        return None

    def get_computer_site(self, context):
        self._domain(context.name)
        return self.computer_site

    # Names

    def translate_principal_to_sid(self, principal, server=None, username=None, password=None):
        if principal.upper().startswith("S-1-"):
            return principal
        sid = self.principals.get(principal.lower())
        if sid is None:
            raise PrincipalNotMappedError(f"'{principal}' could not be translated")
        return sid

    def reverse_dns_lookup(self, address):
        try:
            ipaddress.ip_address(address)
        except ValueError as e:
            raise AddressFormatError(f"'{address}' is not an IP address") from e
        if address not in self.ptr:
            raise DirectoryServiceError(f"No PTR record for {address}")
        return self.ptr[address]

    def forward_dns_lookup(self, name):
        fqdn = self.hosts.get(name.lower())
        if fqdn is None:
            raise DirectoryServiceError(f"{name} does not resolve")
        return fqdn


# ==================== Fixtures ====================

@pytest.fixture
def fake_service() -> FakeDirectoryService:
    return FakeDirectoryService()


@pytest.fixture
def environment() -> StaticEnvironment:
    return StaticEnvironment(
        machine_domain="contoso.com",
        user_dns_domain="emea.contoso.com",
        local_host_name="ws01.contoso.com",
    )


@pytest.fixture
def tools(fake_service, environment) -> DirectoryTools:
    return DirectoryTools(service=fake_service, environment=environment, config=DSConfig())


@pytest.fixture
def credential() -> Credential:
    return Credential.parse("CONTOSO\\admin", "Passw0rd!")


@pytest.fixture
def messages(tools) -> list:
    """Progress messages from every component of the tools fixture."""
    collected = []
    for component in (tools.gateway, tools.normalizer, tools.locator, tools.domains, tools.forests,
                      tools.topology, tools.rootdse, tools.access, tools.objects):
        component.progress_callback = collected.append
    return collected
