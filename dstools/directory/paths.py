"""
Path and distinguished-name helpers.

Paths follow the ADSI moniker form "LDAP://<server>/<dn>", with the special
"LDAP://<server>/RootDSE" for a server's root DSE.
"""

import re
from typing import Optional

SCHEME = "LDAP://"
ROOT_DSE = "RootDSE"

_DC_MARKER = re.compile(r"(^|,)\s*DC=", re.IGNORECASE)
# Splits on commas not escaped with a backslash
_RDN_SPLIT = re.compile(r"(?<!\\),")


def build_path(server: Optional[str], dn: str) -> str:
    """Form "LDAP://server/dn" (or serverless "LDAP://dn")."""
    if server:
        return f"{SCHEME}{server.rstrip('/')}/{dn}"
    return f"{SCHEME}{dn}"


def root_dse_path(server: Optional[str]) -> str:
    return build_path(server, ROOT_DSE)


def parse_path(path: str) -> tuple[Optional[str], str]:
    """Split an LDAP path into (server, dn).

    A path with no server segment returns (None, dn). A bare DN (no scheme)
    is accepted and returned with no server.
    """
    if path[:len(SCHEME)].upper() != SCHEME:
        return None, path
    rest = path[len(SCHEME):]
    if "/" in rest:
        server, _, dn = rest.partition("/")
        return server or None, dn
    if "=" in rest or rest.lower() == ROOT_DSE.lower():
        return None, rest
    return rest, ""


def is_root_dse(dn: str) -> bool:
    return dn.strip().lower() in ("rootdse", "")


def has_domain_component(identity: str) -> bool:
    """True if identity already carries a DC= component."""
    return bool(_DC_MARKER.search(identity))


def split_dn(dn: str) -> list[str]:
    return [part.strip() for part in _RDN_SPLIT.split(dn) if part.strip()]


def parent_dn(dn: str) -> str:
    parts = split_dn(dn)
    return ",".join(parts[1:])


def rdn_value(dn: str) -> str:
    """Value of the leading RDN: "CN=dc01,CN=Servers,..." -> "dc01"."""
    parts = split_dn(dn)
    if not parts:
        return ""
    return parts[0].partition("=")[2]


def domain_to_dn(domain: str) -> str:
    """corp.local -> DC=corp,DC=local"""
    return ",".join(f"DC={part}" for part in domain.strip(".").split(".") if part)


def dn_to_domain(dn: str) -> str:
    """DC=corp,DC=local -> corp.local (non-DC components are ignored)."""
    labels = []
    for part in split_dn(dn):
        key, _, value = part.partition("=")
        if key.strip().upper() == "DC":
            labels.append(value)
    return ".".join(labels)


def site_from_server_dn(dn: str) -> Optional[str]:
    """Site name from a server or NTDS Settings DN.

    CN=NTDS Settings,CN=DC01,CN=Servers,CN=HQ,CN=Sites,CN=Configuration,...
    -> "HQ"
    """
    parts = split_dn(dn)
    for i, part in enumerate(parts):
        if part.upper() == "CN=SITES" and i > 0:
            return parts[i - 1].partition("=")[2]
    return None
