"""
dstools Directory Module
========================

Transport layer: everything that talks LDAP or DNS.

Key Components:
- service.py: Abstract DirectoryService interface and transport exceptions
- ldap_service.py: ldap3/dnspython implementation
- entry.py: DirectoryEntry handle with staged changes
- paths.py: LDAP path and DN helpers
- security.py: Security descriptor / ACE codec
- netlogon.py: LDAP ping reply parser
"""

from .entry import DirectoryEntry
from .service import (
    DirectoryService,
    DirectoryServiceError,
    ObjectNotFoundError,
    ObjectClassViolationError,
    AddressFormatError,
    PrincipalNotMappedError,
)
from .security import Ace, SecurityDescriptor, SecurityDescriptorError
from .ldap_service import Ldap3DirectoryService
