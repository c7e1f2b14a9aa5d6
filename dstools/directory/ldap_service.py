"""
LDAP Directory Service
======================

DirectoryService implementation over ldap3 and dnspython.

Features:
- Binds, searches (paged), object creation and attribute writes
- DACL read/modify through the SD flags control
- Forest topology from the configuration partition (controllers, sites,
  subnets, FSMO owners, domains) and trusts from trustedDomain objects
- DC location from DNS SRV records plus LDAP pings

Design Decisions:
-----------------
1. Uses ldap3 for cross-platform LDAP support and dnspython for SRV/PTR lookups
2. A connection is opened per operation and closed afterwards; nothing is
   cached between calls
3. Attribute values come from the raw response: text attributes are decoded
   to str, known binary attributes stay bytes
4. NTLM is used for DOMAIN\\user principals, SIMPLE for UPNs and bare names
"""

import socket
from contextlib import contextmanager
from typing import Callable, Optional

import dns.exception
import dns.resolver
import dns.reversename
from ldap3 import (
    Server, Connection, NONE, BASE, LEVEL, SUBTREE,
    NTLM, SIMPLE, MODIFY_REPLACE
)
from ldap3.core.exceptions import LDAPSocketOpenError
from ldap3.protocol.microsoft import security_descriptor_control
from ldap3.utils.conv import escape_filter_chars

from ..config import DSConfig, get_config
from ..model.schemas import (
    ContextType, DirectoryContext, Domain, DomainController, DomainMode,
    Forest, ForestMode, FsmoRole, LocatorFlag, SearchScope, Site,
    TrustDirection, TrustRelationship, TrustType
)
from .entry import DirectoryEntry
from .netlogon import NETLOGON_ATTRIBUTE, NetlogonResponse, parse_netlogon_response, ping_filter
from .paths import (
    build_path, dn_to_domain, domain_to_dn, is_root_dse, parent_dn,
    parse_path, rdn_value, root_dse_path, site_from_server_dn, split_dn
)
from .security import SecurityDescriptor, sid_to_bytes, sid_to_string
from .service import (
    AddressFormatError, DirectoryService, DirectoryServiceError,
    ObjectClassViolationError, ObjectNotFoundError, PrincipalNotMappedError
)


# LDAP result codes
RESULT_SUCCESS = 0
RESULT_SIZE_LIMIT_EXCEEDED = 4
RESULT_NO_SUCH_OBJECT = 32
RESULT_OBJECT_CLASS_VIOLATION = 65

PAGED_RESULTS_OID = '1.2.840.113556.1.4.319'
LDAP_MATCHING_RULE_BIT_AND = '1.2.840.113556.1.4.803'

# SD flags: DACL_SECURITY_INFORMATION
SD_FLAGS_DACL = 0x04

# nTDSDSA options
NTDSDSA_OPT_IS_GC = 0x1

# crossRef systemFlags
FLAG_CR_NTDS_DOMAIN = 0x2

# trustedDomain values
TRUST_TYPE_DOWNLEVEL = 1
TRUST_TYPE_UPLEVEL = 2
TRUST_TYPE_MIT = 3
TRUST_ATTRIBUTE_FOREST_TRANSITIVE = 0x08
TRUST_ATTRIBUTE_WITHIN_FOREST = 0x20

# DNS SRV names used by the DC locator
LDAP_DNS_SRV_FORMAT = '_ldap._tcp.dc._msdcs.{domain}'
KERBEROS_DNS_SRV_FORMAT = '_kerberos._tcp.dc._msdcs.{domain}'
LDAP_SITE_DNS_SRV_FORMAT = '_ldap._tcp.{site}._sites.dc._msdcs.{domain}'
KERBEROS_SITE_DNS_SRV_FORMAT = '_kerberos._tcp.{site}._sites.dc._msdcs.{domain}'

BINARY_ATTRIBUTES = {
    'objectsid', 'objectguid', 'schemaidguid', 'ntsecuritydescriptor',
    'netlogon', 'attributesecurityguid', 'sidhistory', 'tokengroups',
    'securityidentifier', 'msds-generationid', 'usercertificate',
}

SCOPES = {
    SearchScope.BASE: BASE,
    SearchScope.ONE_LEVEL: LEVEL,
    SearchScope.SUBTREE: SUBTREE,
}

# Well-known principals that translate without a directory search
WELL_KNOWN_PRINCIPALS = {
    'null authority': 'S-1-0-0',
    'everyone': 'S-1-1-0',
    'local': 'S-1-2-0',
    'creator owner': 'S-1-3-0',
    'creator group': 'S-1-3-1',
    'network': 'S-1-5-2',
    'batch': 'S-1-5-3',
    'interactive': 'S-1-5-4',
    'service': 'S-1-5-6',
    'anonymous logon': 'S-1-5-7',
    'enterprise domain controllers': 'S-1-5-9',
    'self': 'S-1-5-10',
    'principal self': 'S-1-5-10',
    'authenticated users': 'S-1-5-11',
    'system': 'S-1-5-18',
    'local system': 'S-1-5-18',
    'local service': 'S-1-5-19',
    'network service': 'S-1-5-20',
    'administrators': 'S-1-5-32-544',
    'users': 'S-1-5-32-545',
    'guests': 'S-1-5-32-546',
    'account operators': 'S-1-5-32-548',
    'server operators': 'S-1-5-32-549',
    'print operators': 'S-1-5-32-550',
    'backup operators': 'S-1-5-32-551',
    'replicator': 'S-1-5-32-552',
    'pre-windows 2000 compatible access': 'S-1-5-32-554',
    'remote desktop users': 'S-1-5-32-555',
    'network configuration operators': 'S-1-5-32-556',
}
WELL_KNOWN_PREFIXES = ('builtin\\', 'nt authority\\', '\\')


def well_known_sid(principal: str) -> Optional[str]:
    """SID for a well-known principal name, or None."""
    name = principal.strip().lower()
    for prefix in WELL_KNOWN_PREFIXES:
        if name.startswith(prefix):
            name = name[len(prefix):]
            break
    return WELL_KNOWN_PRINCIPALS.get(name)


def _decode_attributes(raw_attributes: dict) -> dict:
    attributes = {}
    for name, values in raw_attributes.items():
        if name.lower() in BINARY_ATTRIBUTES:
            attributes[name] = [bytes(v) for v in values]
            continue
        decoded = []
        for value in values:
            try:
                decoded.append(bytes(value).decode('utf-8'))
            except UnicodeDecodeError:
                decoded.append(bytes(value))
        attributes[name] = decoded
    return attributes


def _first(attributes: dict, name: str, default=None):
    lowered = name.lower()
    for key, values in attributes.items():
        if key.lower() == lowered and values:
            return values[0]
    return default


def _level_or_none(enum_type, value):
    # Snapshot fields tolerate levels newer than this enum knows about
    if value is None:
        return None
    try:
        return enum_type.from_level(int(value))
    except ValueError:
        return None


class Ldap3DirectoryService(DirectoryService):
    """Directory service backed by live LDAP and DNS.

    Usage:
        service = Ldap3DirectoryService(DSConfig())
        entry = service.bind_entry("LDAP://dc01.corp.local/DC=corp,DC=local",
                                   "CORP\\\\admin", "Password123")
    """

    def __init__(
        self,
        config: Optional[DSConfig] = None,
        verbose: Optional[bool] = None,
        progress_callback: Optional[Callable[[str], None]] = None
    ):
        self.config = config or get_config()
        self.verbose = self.config.verbose if verbose is None else verbose
        self.progress_callback = progress_callback

    def _log(self, message: str) -> None:
        """Log a message to console and/or callback."""
        if self.verbose:
            print(message)
        if self.progress_callback:
            self.progress_callback(message)

    # Connections

    def _connect(self, host: str, username: Optional[str], password: Optional[str]) -> Connection:
        ldap_config = self.config.ldap
        server = Server(
            host,
            port=ldap_config.port,
            use_ssl=ldap_config.use_ssl,
            get_info=NONE,
            connect_timeout=ldap_config.timeout
        )

        if username:
            if '\\' in username and ldap_config.authentication == "ntlm":
                authentication = NTLM
            else:
                authentication = SIMPLE
            self._log(f"[*] Binding to {host}:{ldap_config.port} as {username}")
            return Connection(
                server,
                user=username,
                password=password,
                authentication=authentication,
                auto_bind=True,
                receive_timeout=ldap_config.timeout
            )

        self._log(f"[*] Binding anonymously to {host}:{ldap_config.port}")
        return Connection(server, auto_bind=True, receive_timeout=ldap_config.timeout)

    @contextmanager
    def _session(self, host: str, username: Optional[str] = None, password: Optional[str] = None):
        connection = self._connect(host, username, password)
        try:
            yield connection
        finally:
            connection.unbind()

    @contextmanager
    def _domain_session(self, domain: str, username: Optional[str] = None, password: Optional[str] = None):
        """Open a session to the first reachable controller of domain.

        Yields:
            Tuple of (host, connection)
        """
        candidates = self._srv_records(domain)
        if not candidates:
            raise ObjectNotFoundError(f"No domain controllers registered for '{domain}'")

        last_error = None
        for host in candidates:
            try:
                connection = self._connect(host, username, password)
            except LDAPSocketOpenError as e:
                self._log(f"[!] {host} unreachable: {e}")
                last_error = e
                continue
            try:
                yield host, connection
            finally:
                connection.unbind()
            return
        raise DirectoryServiceError(f"No reachable domain controller for '{domain}': {last_error}")

    def _check_result(self, connection: Connection, operation: str, target: str) -> int:
        result = connection.result or {}
        code = result.get('result', RESULT_SUCCESS)
        if code in (RESULT_SUCCESS, RESULT_SIZE_LIMIT_EXCEEDED):
            return code
        message = f"{operation} {target} failed: {result.get('description')} {result.get('message', '')}".strip()
        if code == RESULT_NO_SUCH_OBJECT:
            raise ObjectNotFoundError(message, code)
        if code == RESULT_OBJECT_CLASS_VIOLATION:
            raise ObjectClassViolationError(message, code)
        raise DirectoryServiceError(message, code)

    def _run_search(
        self,
        connection: Connection,
        host: str,
        base: str,
        search_filter: str,
        scope=SUBTREE,
        attributes=None,
        size_limit: int = 0,
        page_size: int = 0,
        controls=None
    ) -> list:
        """Search and return DirectoryEntry objects, following paged cookies."""
        entries = []
        cookie = None
        while True:
            kwargs = {}
            if page_size:
                kwargs['paged_size'] = page_size
                kwargs['paged_cookie'] = cookie
            connection.search(
                search_base=base,
                search_filter=search_filter,
                search_scope=scope,
                attributes=attributes or ['*'],
                size_limit=size_limit,
                controls=controls,
                **kwargs
            )
            self._check_result(connection, "search", base or "RootDSE")

            for item in connection.response or []:
                if item.get('type') != 'searchResEntry':
                    continue
                entries.append(DirectoryEntry(
                    path=build_path(host, item['dn']) if item['dn'] else root_dse_path(host),
                    attributes=_decode_attributes(item.get('raw_attributes', {}))
                ))

            if not page_size:
                break
            cookie = (
                (connection.result or {}).get('controls', {})
                .get(PAGED_RESULTS_OID, {}).get('value', {}).get('cookie')
            )
            if not cookie or (size_limit and len(entries) >= size_limit):
                break

        if size_limit:
            entries = entries[:size_limit]
        return entries

    def _host_for(self, server: Optional[str], dn: str) -> str:
        if server:
            return server
        domain = dn_to_domain(dn)
        if not domain:
            raise DirectoryServiceError(f"Cannot locate a server for '{dn}'")
        candidates = self._srv_records(domain)
        if not candidates:
            raise ObjectNotFoundError(f"No domain controllers registered for '{domain}'")
        return candidates[0]

    # Entries

    def bind_entry(self, path, username=None, password=None):
        server, dn = parse_path(path)
        host = self._host_for(server, dn)
        credentials = {'username': username, 'password': password}

        with self._session(host, username, password) as connection:
            if is_root_dse(dn):
                entries = self._run_search(
                    connection, host, '', '(objectClass=*)', BASE, attributes=['*', '+']
                )
                if not entries:
                    return None
                entry = entries[0]
                entry.path = root_dse_path(host)
                entry.native = credentials
                return entry

            try:
                entries = self._run_search(connection, host, dn, '(objectClass=*)', BASE)
            except ObjectNotFoundError:
                return None

        if not entries:
            return None
        entry = entries[0]
        entry.native = credentials
        return entry

    def search(self, root, search_filter, page_size=0, size_limit=0, scope=SearchScope.SUBTREE,
               find_one=False, username=None, password=None, attributes=None):
        server, dn = parse_path(root)
        host = self._host_for(server, dn)
        if find_one:
            size_limit, page_size = 1, 0

        with self._session(host, username, password) as connection:
            try:
                entries = self._run_search(
                    connection, host, dn, search_filter, SCOPES[scope],
                    attributes=attributes, size_limit=size_limit, page_size=page_size
                )
            except ObjectNotFoundError:
                return []

        for entry in entries:
            entry.native = {'username': username, 'password': password}
        return entries

    def create_child(self, parent, object_class, rdn):
        return DirectoryEntry(
            path=build_path(parent.server, f"{rdn},{parent.distinguished_name}"),
            bound=False,
            object_class=object_class,
            native=parent.native,
        )

    def commit_changes(self, entry):
        credentials = entry.native or {}
        dn = entry.distinguished_name
        host = self._host_for(entry.server, dn)

        with self._session(host, credentials.get('username'), credentials.get('password')) as connection:
            if entry.is_new:
                connection.add(dn, entry.object_class, attributes=entry.staged_changes or None)
                self._check_result(connection, "add", dn)
            elif entry.staged_changes:
                changes = {
                    name: [(MODIFY_REPLACE, values)]
                    for name, values in entry.staged_changes.items()
                }
                connection.modify(dn, changes)
                self._check_result(connection, "modify", dn)

            descriptor = entry.staged_security_descriptor
            if descriptor is not None:
                connection.modify(
                    dn,
                    {'nTSecurityDescriptor': [(MODIFY_REPLACE, [descriptor.to_bytes()])]},
                    controls=security_descriptor_control(sdflags=SD_FLAGS_DACL)
                )
                self._check_result(connection, "modify security descriptor of", dn)

        entry.mark_committed()
        self._log(f"[+] Committed {dn}")

    def get_access_control(self, entry):
        credentials = entry.native or {}
        dn = entry.distinguished_name
        host = self._host_for(entry.server, dn)

        with self._session(host, credentials.get('username'), credentials.get('password')) as connection:
            entries = self._run_search(
                connection, host, dn, '(objectClass=*)', BASE,
                attributes=['nTSecurityDescriptor'],
                controls=security_descriptor_control(sdflags=SD_FLAGS_DACL)
            )

        raw = _first(entries[0].attributes, 'nTSecurityDescriptor') if entries else None
        if raw is None:
            raise DirectoryServiceError(f"Security descriptor of {dn} is not readable")
        return SecurityDescriptor.from_bytes(raw)

    # DNS

    def _resolver(self) -> dns.resolver.Resolver:
        locator = self.config.locator
        resolver = dns.resolver.Resolver()
        if locator.nameservers:
            resolver.nameservers = list(locator.nameservers)
        resolver.timeout = locator.dns_timeout
        resolver.lifetime = locator.dns_lifetime
        return resolver

    def _srv_records(self, domain: str, site: Optional[str] = None, kdc: bool = False) -> list[str]:
        """Controller host names from DNS SRV records, by priority then weight.

        Raises:
            ObjectNotFoundError: when the domain has no locator records at all
        """
        if site:
            fmt = KERBEROS_SITE_DNS_SRV_FORMAT if kdc else LDAP_SITE_DNS_SRV_FORMAT
        else:
            fmt = KERBEROS_DNS_SRV_FORMAT if kdc else LDAP_DNS_SRV_FORMAT
        name = fmt.format(domain=domain, site=site)

        try:
            answers = self._resolver().resolve(name, 'SRV')
        except dns.resolver.NXDOMAIN:
            if site:
                # no site records; an unknown domain still raises
                self._srv_records(domain, kdc=kdc)
                return []
            raise ObjectNotFoundError(f"Domain '{domain}' does not exist or has no domain controllers")
        except dns.resolver.NoAnswer:
            return []

        records = sorted(answers, key=lambda r: (r.priority, -r.weight))
        return [str(r.target).rstrip('.') for r in records]

    def reverse_dns_lookup(self, address):
        try:
            reverse_name = dns.reversename.from_address(address)
        except dns.exception.SyntaxError as e:
            raise AddressFormatError(f"'{address}' is not an IP address") from e
        answer = self._resolver().resolve(reverse_name, 'PTR')
        return str(answer[0].target).rstrip('.')

    def forward_dns_lookup(self, name):
        resolver = self._resolver()
        try:
            answer = resolver.resolve(name, 'A', search=True)
        except dns.resolver.NoAnswer:
            answer = resolver.resolve(name, 'AAAA', search=True)
        return str(answer.canonical_name).rstrip('.')

    # Locator

    def _ldap_ping(self, host: str, domain: str) -> Optional[NetlogonResponse]:
        with self._session(host) as connection:
            connection.search(
                search_base='',
                search_filter=ping_filter(domain),
                search_scope=BASE,
                attributes=[NETLOGON_ATTRIBUTE]
            )
            self._check_result(connection, "LDAP ping of", host)
            for item in connection.response or []:
                raw = _first(item.get('raw_attributes', {}), NETLOGON_ATTRIBUTE)
                if raw:
                    return parse_netlogon_response(bytes(raw))
        return None

    def find_one_controller(self, context, site=None, flags=LocatorFlag.NONE):
        domain = context.name
        kdc = LocatorFlag.KDC_REQUIRED in flags
        local_host = socket.getfqdn().lower()

        for host in self._srv_records(domain, site, kdc):
            if LocatorFlag.AVOID_SELF in flags and host.lower() == local_host:
                self._log(f"[*] Skipping {host} (avoid self)")
                continue
            try:
                ping = self._ldap_ping(host, domain)
            except LDAPSocketOpenError as e:
                self._log(f"[!] {host} did not answer the LDAP ping: {e}")
                continue
            if ping is None or not ping.satisfies(flags):
                self._log(f"[*] {host} does not meet the requested locator flags")
                continue
            if site and ping.dc_site_name.lower() != site.lower():
                self._log(f"[*] {host} is in site {ping.dc_site_name}, not {site}")
                continue

            self._log(f"[+] Located {host}")
            controller = self.get_domain_controller(DirectoryContext(
                ContextType.DIRECTORY_SERVER, host, context.username, context.password
            ))
            controller.global_catalog = controller.global_catalog or ping.is_global_catalog
            return controller

        return None

    def get_computer_site(self, context):
        for host in self._srv_records(context.name):
            try:
                ping = self._ldap_ping(host, context.name)
            except LDAPSocketOpenError:
                continue
            if ping is not None:
                return ping.client_site_name or None
        return None

    # Topology

    def _root_dse(self, connection: Connection, host: str) -> dict:
        entries = self._run_search(connection, host, '', '(objectClass=*)', BASE, attributes=['*', '+'])
        if not entries:
            raise DirectoryServiceError(f"{host} returned no root DSE")
        return entries[0].attributes

    def _controller_records(self, connection: Connection, host: str, config_nc: str) -> list[dict]:
        """Every DSA in the forest with its host, site and domain."""
        page_size = self.config.ldap.page_size
        servers = self._run_search(
            connection, host, f"CN=Sites,{config_nc}", '(objectClass=server)',
            attributes=['dNSHostName', 'serverReference'], page_size=page_size
        )
        host_by_server = {
            entry.distinguished_name.lower(): entry.get('dNSHostName') for entry in servers
        }

        dsas = self._run_search(
            connection, host, f"CN=Sites,{config_nc}",
            '(|(objectClass=nTDSDSA)(objectClass=nTDSDSARO))',
            attributes=['objectClass', 'options', 'msDS-HasDomainNCs', 'hasMasterNCs'],
            page_size=page_size
        )

        records = []
        for dsa in dsas:
            ntds_dn = dsa.distinguished_name
            dns_host = host_by_server.get(parent_dn(ntds_dn).lower())
            if not dns_host:
                continue

            domain_nc = dsa.get('msDS-HasDomainNCs')
            if not domain_nc:
                for nc in dsa.get_all('hasMasterNCs'):
                    first = split_dn(nc)[0].upper() if split_dn(nc) else ""
                    if first.startswith("DC=") and first not in ("DC=DOMAINDNSZONES", "DC=FORESTDNSZONES"):
                        domain_nc = nc
                        break

            records.append({
                'host': dns_host,
                'ntds_dn': ntds_dn,
                'site': site_from_server_dn(ntds_dn),
                'domain': dn_to_domain(domain_nc) if domain_nc else None,
                'read_only': any(c.lower() == 'ntdsdsaro' for c in dsa.get_all('objectClass')),
                'global_catalog': bool(int(dsa.get('options', 0) or 0) & NTDSDSA_OPT_IS_GC),
            })
        return records

    def _role_owner_dn(self, connection: Connection, host: str, dn: str) -> Optional[str]:
        try:
            entries = self._run_search(connection, host, dn, '(objectClass=*)', BASE, attributes=['fSMORoleOwner'])
        except ObjectNotFoundError:
            return None
        return entries[0].get('fSMORoleOwner') if entries else None

    def _build_forest(self, connection: Connection, host: str, root_dse: dict) -> tuple:
        """Read the forest from the configuration partition.

        Returns:
            Tuple of (Forest, controllers keyed by lowercased NTDS Settings DN)
        """
        config_nc = _first(root_dse, 'configurationNamingContext')
        schema_nc = _first(root_dse, 'schemaNamingContext')
        root_nc = _first(root_dse, 'rootDomainNamingContext')
        partitions = f"CN=Partitions,{config_nc}"

        forest = Forest(
            name=dn_to_domain(root_nc),
            forest_mode=_level_or_none(ForestMode, _first(root_dse, 'forestFunctionality')),
        )
        self._log(f"[*] Reading topology of forest {forest.name}")

        cross_refs = self._run_search(
            connection, host, partitions,
            f"(&(objectClass=crossRef)(systemFlags:{LDAP_MATCHING_RULE_BIT_AND}:={FLAG_CR_NTDS_DOMAIN}))",
            LEVEL, attributes=['nCName', 'dnsRoot', 'trustParent']
        )
        domains_by_name = {}
        for ref in cross_refs:
            nc_name = ref.get('nCName')
            name = ref.get('dnsRoot') or dn_to_domain(nc_name)
            parent = ref.get('trustParent')
            domain = Domain(
                name=name,
                distinguished_name=nc_name or domain_to_dn(name),
                forest=forest,
                parent=dn_to_domain(parent) if parent else None,
            )
            domains_by_name[name.lower()] = domain
            forest.domains.append(domain)

        controllers_by_ntds = {}
        for record in self._controller_records(connection, host, config_nc):
            domain = domains_by_name.get((record['domain'] or '').lower())
            controller = DomainController(
                name=record['host'],
                domain=domain,
                forest=forest,
                site=record['site'],
                read_only=record['read_only'],
                global_catalog=record['global_catalog'],
            )
            controllers_by_ntds[record['ntds_dn'].lower()] = controller
            if domain is not None:
                domain.domain_controllers.append(controller)

        forest.sites = self._sites(connection, host, config_nc, controllers_by_ntds.values())

        schema_owner = self._role_owner_dn(connection, host, schema_nc)
        naming_owner = self._role_owner_dn(connection, host, partitions)
        forest.schema_role_owner = controllers_by_ntds.get((schema_owner or '').lower())
        forest.naming_role_owner = controllers_by_ntds.get((naming_owner or '').lower())
        if forest.schema_role_owner:
            forest.schema_role_owner.roles.add(FsmoRole.SCHEMA)
        if forest.naming_role_owner:
            forest.naming_role_owner.roles.add(FsmoRole.NAMING)

        return forest, controllers_by_ntds

    def _sites(self, connection: Connection, host: str, config_nc: str, controllers) -> list[Site]:
        sites_dn = f"CN=Sites,{config_nc}"
        site_entries = self._run_search(connection, host, sites_dn, '(objectClass=site)', LEVEL, attributes=['cn'])
        sites = {}
        for entry in site_entries:
            name = entry.get('cn') or rdn_value(entry.distinguished_name)
            sites[name.lower()] = Site(name=name)

        for controller in controllers:
            site = sites.get((controller.site or '').lower())
            if site is not None and controller.domain is not None and not site.contains_domain(controller.domain):
                site.domains.append(controller.domain.name)

        subnets = self._run_search(
            connection, host, f"CN=Subnets,{sites_dn}", '(objectClass=subnet)', LEVEL, attributes=['siteObject']
        )
        for subnet in subnets:
            site_dn = subnet.get('siteObject')
            site = sites.get(rdn_value(site_dn).lower()) if site_dn else None
            if site is not None:
                site.subnets.append(rdn_value(subnet.distinguished_name))

        return list(sites.values())

    def _trusts(self, connection: Connection, host: str, domain: Domain, forest: Forest) -> list:
        try:
            entries = self._run_search(
                connection, host, f"CN=System,{domain.distinguished_name}",
                '(objectClass=trustedDomain)', LEVEL,
                attributes=['trustPartner', 'trustDirection', 'trustType', 'trustAttributes']
            )
        except ObjectNotFoundError:
            return []

        trusts = []
        for entry in entries:
            direction = int(entry.get('trustDirection', 0) or 0)
            if direction not in (1, 2, 3):
                continue
            partner = entry.get('trustPartner') or rdn_value(entry.distinguished_name)
            trusts.append(TrustRelationship(
                source_name=domain.name,
                target_name=partner,
                trust_type=classify_trust(
                    domain.name, partner,
                    int(entry.get('trustType', 0) or 0),
                    int(entry.get('trustAttributes', 0) or 0),
                    forest
                ),
                trust_direction=TrustDirection(direction),
            ))
        return trusts

    def _complete_domain(self, connection: Connection, host: str, root_dse: dict,
                         forest: Forest, controllers: dict) -> Domain:
        """Pick the connected controller's domain out of forest and fill in roles and trusts."""
        domain_dn = _first(root_dse, 'defaultNamingContext')
        name = dn_to_domain(domain_dn)
        domain = next((d for d in forest.domains if d.name.lower() == name.lower()), None)
        if domain is None:
            domain = Domain(name=name, distinguished_name=domain_dn, forest=forest)
            forest.domains.append(domain)

        domain.domain_mode = _level_or_none(DomainMode, _first(root_dse, 'domainFunctionality'))

        owners = {
            FsmoRole.PDC: domain_dn,
            FsmoRole.RID: f"CN=RID Manager$,CN=System,{domain_dn}",
            FsmoRole.INFRASTRUCTURE: f"CN=Infrastructure,{domain_dn}",
        }
        for role, dn in owners.items():
            owner = controllers.get((self._role_owner_dn(connection, host, dn) or '').lower())
            if owner is not None:
                owner.roles.add(role)
            if role is FsmoRole.PDC:
                domain.pdc_role_owner = owner
            elif role is FsmoRole.RID:
                domain.rid_role_owner = owner
            else:
                domain.infrastructure_role_owner = owner

        domain.trusts = self._trusts(connection, host, domain, forest)
        return domain

    def _forest_trusts(self, forest: Forest, username, password) -> list:
        root = next((d for d in forest.domains if d.name.lower() == forest.name.lower()), None)
        if root is None:
            return []
        with self._domain_session(forest.name, username, password) as (host, connection):
            trusts = self._trusts(connection, host, root, forest)
        return [
            TrustRelationship(forest.name, t.target_name, t.trust_type, t.trust_direction)
            for t in trusts if t.trust_type is TrustType.FOREST
        ]

    @contextmanager
    def _context_session(self, context: DirectoryContext):
        if context.context_type is ContextType.DIRECTORY_SERVER:
            try:
                connection = self._connect(context.name, context.username, context.password)
            except LDAPSocketOpenError as e:
                raise ObjectNotFoundError(f"Server '{context.name}' is not reachable: {e}") from e
            try:
                yield context.name, connection
            finally:
                connection.unbind()
        elif context.context_type in (ContextType.DOMAIN, ContextType.FOREST):
            with self._domain_session(context.name, context.username, context.password) as session:
                yield session
        else:
            raise DirectoryServiceError(
                f"{context.context_type.value} contexts do not address a domain or forest"
            )

    def get_domain(self, context):
        with self._context_session(context) as (host, connection):
            root_dse = self._root_dse(connection, host)
            if context.context_type is ContextType.DOMAIN:
                served = dn_to_domain(_first(root_dse, 'defaultNamingContext', ''))
                if served.lower() != context.name.lower():
                    raise ObjectNotFoundError(f"'{context.name}' is not a domain (reached {served})")
            forest, controllers = self._build_forest(connection, host, root_dse)
            return self._complete_domain(connection, host, root_dse, forest, controllers)

    def get_forest(self, context):
        with self._context_session(context) as (host, connection):
            root_dse = self._root_dse(connection, host)
            root_name = dn_to_domain(_first(root_dse, 'rootDomainNamingContext', ''))
            if context.context_type is ContextType.FOREST and root_name.lower() != context.name.lower():
                raise ObjectNotFoundError(f"'{context.name}' is not the root of a forest")
            forest, controllers = self._build_forest(connection, host, root_dse)
            self._complete_domain(connection, host, root_dse, forest, controllers)

        forest.trusts = self._forest_trusts(forest, context.username, context.password)
        return forest

    def get_domain_controller(self, context):
        if context.context_type is not ContextType.DIRECTORY_SERVER:
            raise DirectoryServiceError("A DirectoryServer context is required")

        with self._context_session(context) as (host, connection):
            root_dse = self._root_dse(connection, host)
            forest, controllers = self._build_forest(connection, host, root_dse)
            domain = self._complete_domain(connection, host, root_dse, forest, controllers)

        dns_host = (_first(root_dse, 'dnsHostName') or context.name).lower()
        for controller in domain.domain_controllers:
            if controller.name.lower() in (dns_host, context.name.lower()):
                return controller
        raise ObjectNotFoundError(f"'{context.name}' is not a domain controller of {domain.name}")

    def find_all_controllers(self, context, site=None):
        domain = self.get_domain(context)
        if not site:
            return list(domain.domain_controllers)
        return [dc for dc in domain.domain_controllers if (dc.site or '').lower() == site.lower()]

    # Names

    def translate_principal_to_sid(self, principal, server=None, username=None, password=None):
        if principal.strip().upper().startswith("S-1-"):
            sid_to_bytes(principal)
            return principal.strip().upper()

        sid = well_known_sid(principal)
        if sid:
            return sid

        if not server:
            raise PrincipalNotMappedError(f"No server to translate '{principal}' against")

        account = principal.split('\\', 1)[-1]
        account_filter = escape_filter_chars(account.split('@', 1)[0])
        search_filter = (
            f"(|(sAMAccountName={account_filter})"
            f"(userPrincipalName={escape_filter_chars(account)}))"
        )

        with self._session(server, username, password) as connection:
            root_dse = self._root_dse(connection, server)
            entries = self._run_search(
                connection, server, _first(root_dse, 'defaultNamingContext'),
                search_filter, SUBTREE, attributes=['objectSid'], size_limit=1
            )

        raw = _first(entries[0].attributes, 'objectSid') if entries else None
        if not raw:
            raise PrincipalNotMappedError(f"Some or all identity references could not be translated: '{principal}'")
        return sid_to_string(raw)


def classify_trust(source: str, partner: str, trust_type: int, attributes: int, forest: Optional[Forest]) -> TrustType:
    """Map trustedDomain attributes onto a TrustType."""
    if trust_type == TRUST_TYPE_MIT:
        return TrustType.KERBEROS
    if attributes & TRUST_ATTRIBUTE_FOREST_TRANSITIVE:
        return TrustType.FOREST
    if attributes & TRUST_ATTRIBUTE_WITHIN_FOREST:
        a, b = source.lower(), partner.lower()
        if a.endswith("." + b) or b.endswith("." + a):
            return TrustType.PARENT_CHILD
        roots = set()
        if forest is not None:
            roots = {d.name.lower() for d in forest.domains if not d.parent}
        if a in roots and b in roots:
            return TrustType.TREE_ROOT
        return TrustType.CROSS_LINK
    if trust_type in (TRUST_TYPE_DOWNLEVEL, TRUST_TYPE_UPLEVEL):
        return TrustType.EXTERNAL
    return TrustType.UNKNOWN
