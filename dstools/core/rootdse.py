"""
Root DSE Reader
===============

Reads server metadata from the RootDSE pseudo-entry. The snapshot is
fetched fresh on every call.

currentTime arrives as a generalized time such as "20150101120000.0Z";
everything after the first "." is dropped, the rest is parsed as
%Y%m%d%H%M%S in UTC and converted to local time.
"""

from datetime import datetime, timezone
from typing import Callable, Optional

from ..directory.entry import DirectoryEntry
from ..directory.paths import root_dse_path
from ..errors import DirectoryError, ErrorKind, operation_step
from ..model.schemas import Credential, DomainMode, ForestMode, RootDSE
from .base import Component
from .gateway import EntryGateway
from .locator import DomainControllerLocator

GENERALIZED_TIME_FORMAT = "%Y%m%d%H%M%S"


def parse_current_time(value) -> datetime:
    """Parse a RootDSE currentTime value into local time.

    Raises:
        DirectoryError: MalformedResponse when the value does not parse
    """
    text = str(value or "").split(".", 1)[0].strip()
    try:
        utc = datetime.strptime(text, GENERALIZED_TIME_FORMAT).replace(tzinfo=timezone.utc)
    except ValueError as e:
        raise DirectoryError(
            ErrorKind.MALFORMED_RESPONSE, "parse-current-time",
            f"Unparsable currentTime: {value!r}", cause=e
        ) from e
    return utc.astimezone()


def _functional_level(entry: DirectoryEntry, attribute: str, enum_type):
    value = entry.get(attribute)
    try:
        return enum_type.from_level(int(value))
    except (TypeError, ValueError) as e:
        raise DirectoryError(
            ErrorKind.MALFORMED_RESPONSE, "parse-functional-level",
            f"Unrecognized {attribute} value: {value!r}", cause=e
        ) from e


def parse_root_dse(entry: DirectoryEntry) -> RootDSE:
    """Build a RootDSE snapshot from a bound RootDSE entry."""
    return RootDSE(
        configuration_naming_context=entry.get("configurationNamingContext"),
        default_naming_context=entry.get("defaultNamingContext"),
        schema_naming_context=entry.get("schemaNamingContext"),
        domain_functionality=_functional_level(entry, "domainFunctionality", DomainMode),
        forest_functionality=_functional_level(entry, "forestFunctionality", ForestMode),
        current_time=parse_current_time(entry.get("currentTime")),
        root_domain_naming_context=entry.get("rootDomainNamingContext"),
        dns_host_name=entry.get("dnsHostName"),
        server_name=entry.get("serverName"),
        service_name=entry.get("ldapServiceName"),
        naming_contexts=entry.get_all("namingContexts"),
        supported_capabilities=entry.get_all("supportedCapabilities"),
        supported_controls=entry.get_all("supportedControl"),
        supported_sasl_mechanisms=entry.get_all("supportedSASLMechanisms"),
        supported_ldap_versions=[int(v) for v in entry.get_all("supportedLDAPVersion")],
    )


class RootDSEReader(Component):
    """Reads RootDSE snapshots."""

    def __init__(
        self,
        gateway: EntryGateway,
        locator: DomainControllerLocator,
        verbose: bool = False,
        progress_callback: Optional[Callable[[str], None]] = None
    ):
        super().__init__(verbose, progress_callback)
        self.gateway = gateway
        self.locator = locator

    def read(self, server: Optional[str] = None, credential: Optional[Credential] = None) -> RootDSE:
        """Read the RootDSE of server (any available controller when omitted)."""
        with operation_step("read-rootdse", server):
            host = self.locator.default_server(server, credential)
            entry = self.gateway.bind(root_dse_path(host), credential)
            snapshot = parse_root_dse(entry)
        self._log(f"[+] Read RootDSE of {host}")
        return snapshot
