"""
LDAP Ping Module
================

Build LDAP ping requests and parse the NETLOGON_SAM_LOGON_RESPONSE_EX reply.

An LDAP ping is a base search of the root DSE with a filter of the form
(&(DnsDomain=corp.local)(NtVer=\\16\\00\\00\\00)) asking for the "Netlogon"
attribute. The controller answers with a binary structure describing
itself: which services it offers (flags), its names, its site and the site
of the client that asked.

Reply layout:
- Opcode(2) Sbz(2) Flags(4) DomainGuid(16)
- DnsForestName, DnsDomainName, DnsHostName, NetbiosDomainName,
  NetbiosComputerName, UserName, DcSiteName, ClientSiteName
  (RFC 1035 names, compressed with pointers into the reply)
- NextClosestSiteName when requested, then NtVersion(4) LmNtToken(2) Lm20Token(2)
"""

import struct
import uuid
from dataclasses import dataclass, field
from typing import Optional

from ..model.schemas import LocatorFlag

LOGON_SAM_LOGON_RESPONSE_EX = 23
LOGON_SAM_USER_UNKNOWN_EX = 25

# Server flags in the reply
DS_PDC_FLAG = 0x00000001
DS_GC_FLAG = 0x00000004
DS_LDAP_FLAG = 0x00000008
DS_DS_FLAG = 0x00000010
DS_KDC_FLAG = 0x00000020
DS_TIMESERV_FLAG = 0x00000040
DS_CLOSEST_FLAG = 0x00000080
DS_WRITABLE_FLAG = 0x00000100
DS_GOOD_TIMESERV_FLAG = 0x00000200

# NETLOGON_NT_VERSION_5 | NETLOGON_NT_VERSION_5EX | NETLOGON_NT_VERSION_WITH_CLOSEST_SITE
NT_VERSION = 0x00000016

NETLOGON_ATTRIBUTE = "Netlogon"


class NetlogonParseError(ValueError):
    """The ping reply could not be decoded."""


def ping_filter(domain: str, nt_version: int = NT_VERSION) -> str:
    """LDAP filter for an LDAP ping against domain."""
    escaped = "".join(f"\\{b:02x}" for b in struct.pack('<I', nt_version))
    return f"(&(DnsDomain={domain})(NtVer={escaped}))"


def _read_name(data: bytes, offset: int) -> tuple[str, int]:
    """Decode a (possibly compressed) RFC 1035 name starting at offset.

    Returns:
        Tuple of (dotted name, offset just past the name in the original stream)
    """
    labels = []
    end_offset = None
    jumps = 0
    while True:
        if offset >= len(data):
            raise NetlogonParseError("Name runs past end of reply")
        length = data[offset]
        if length == 0:
            offset += 1
            break
        if length & 0xC0 == 0xC0:
            if offset + 1 >= len(data):
                raise NetlogonParseError("Truncated name pointer")
            pointer = ((length & 0x3F) << 8) | data[offset + 1]
            if end_offset is None:
                end_offset = offset + 2
            jumps += 1
            if jumps > 32:
                raise NetlogonParseError("Name pointer loop")
            offset = pointer
            continue
        labels.append(data[offset + 1:offset + 1 + length].decode('utf-8', errors='replace'))
        offset += 1 + length
    return ".".join(labels), (end_offset if end_offset is not None else offset)


@dataclass
class NetlogonResponse:
    """Decoded LDAP ping reply."""
    opcode: int
    flags: int
    domain_guid: uuid.UUID
    dns_forest_name: str = ""
    dns_domain_name: str = ""
    dns_host_name: str = ""
    netbios_domain_name: str = ""
    netbios_computer_name: str = ""
    user_name: str = ""
    dc_site_name: str = ""
    client_site_name: str = ""
    next_closest_site_name: Optional[str] = None
    extra: dict = field(default_factory=dict)

    @property
    def is_writable(self) -> bool:
        return bool(self.flags & DS_WRITABLE_FLAG)

    @property
    def is_kdc(self) -> bool:
        return bool(self.flags & DS_KDC_FLAG)

    @property
    def is_time_server(self) -> bool:
        return bool(self.flags & DS_TIMESERV_FLAG)

    @property
    def is_global_catalog(self) -> bool:
        return bool(self.flags & DS_GC_FLAG)

    def satisfies(self, flags: LocatorFlag) -> bool:
        """Whether the server flags meet every service requirement in flags."""
        if LocatorFlag.WRITEABLE_REQUIRED in flags and not self.is_writable:
            return False
        if LocatorFlag.KDC_REQUIRED in flags and not self.is_kdc:
            return False
        if LocatorFlag.TIME_SERVER_REQUIRED in flags and not self.is_time_server:
            return False
        return True


def parse_netlogon_response(data: bytes) -> NetlogonResponse:
    """Parse a NETLOGON_SAM_LOGON_RESPONSE_EX structure.

    Raises:
        NetlogonParseError: for short data or an unexpected opcode
    """
    if len(data) < 24:
        raise NetlogonParseError("Reply too short")

    opcode, _, flags = struct.unpack('<HHI', data[:8])
    if opcode not in (LOGON_SAM_LOGON_RESPONSE_EX, LOGON_SAM_USER_UNKNOWN_EX):
        raise NetlogonParseError(f"Unexpected opcode {opcode}")

    response = NetlogonResponse(
        opcode=opcode,
        flags=flags,
        domain_guid=uuid.UUID(bytes_le=bytes(data[8:24])),
    )

    offset = 24
    for attribute in (
        "dns_forest_name", "dns_domain_name", "dns_host_name",
        "netbios_domain_name", "netbios_computer_name", "user_name",
        "dc_site_name", "client_site_name",
    ):
        value, offset = _read_name(data, offset)
        setattr(response, attribute, value)

    # The optional next-closest-site name is only present when the
    # remaining bytes are more than the fixed version/token trailer.
    if len(data) - offset > 8:
        response.next_closest_site_name, offset = _read_name(data, offset)

    if len(data) - offset >= 8:
        nt_version, lm_nt_token, lm20_token = struct.unpack('<IHH', data[offset:offset + 8])
        response.extra = {
            "nt_version": nt_version,
            "lm_nt_token": lm_nt_token,
            "lm20_token": lm20_token,
        }

    return response
