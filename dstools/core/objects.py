"""
Directory Object Access
=======================

Point lookup, search and creation of directory objects.

- get: binds one object; identities without a DC= component are taken as
  relative to the domain root
- search: eager, scoped, optionally paged; the default root is the
  server's defaultNamingContext
- create: OU=<name> for organizationalUnit, CN=<name> for anything else;
  attributes are staged and committed in one write, skipped entirely for
  what_if. Protection from accidental deletion is an explicit Deny of
  Delete/DeleteTree to Everyone, applied after the object exists
"""

from typing import Callable, Optional, Union

from ldap3.utils.dn import escape_rdn

from ..directory.entry import DirectoryEntry
from ..directory.paths import build_path, has_domain_component, parse_path, SCHEME
from ..directory.service import DirectoryService, ObjectClassViolationError
from ..errors import DirectoryError, ErrorKind, operation_step
from ..model.schemas import (
    AccessControlType, ActiveDirectoryRights, Credential, InheritanceType, SearchScope
)
from .access import AccessRuleManager
from .base import Component
from .context import credential_parts
from .gateway import EntryGateway
from .locator import DomainControllerLocator
from .resolvers import DomainResolver
from .rootdse import RootDSEReader

DEFAULT_FILTER = "(objectClass=*)"
EVERYONE = "Everyone"
PROTECT_RIGHTS = ActiveDirectoryRights.DELETE | ActiveDirectoryRights.DELETE_TREE


def build_rdn(name: str, object_class: str) -> str:
    """OU=name for organizational units, CN=name for every other class.

    The name is escaped, so separators in it stay part of the value.
    """
    value = escape_rdn(name)
    if object_class.strip().lower() == "organizationalunit":
        return f"OU={value}"
    return f"CN={value}"


class DirectoryObjectAccess(Component):
    """Reads, searches and creates directory objects."""

    def __init__(
        self,
        service: DirectoryService,
        gateway: EntryGateway,
        locator: DomainControllerLocator,
        domains: DomainResolver,
        rootdse: RootDSEReader,
        access: AccessRuleManager,
        verbose: bool = False,
        progress_callback: Optional[Callable[[str], None]] = None
    ):
        super().__init__(verbose, progress_callback)
        self.service = service
        self.gateway = gateway
        self.locator = locator
        self.domains = domains
        self.rootdse = rootdse
        self.access = access

    def get(
        self,
        identity: str,
        server: Optional[str] = None,
        credential: Optional[Credential] = None
    ) -> DirectoryEntry:
        """Bind one object by DN (or by a name relative to the domain root).

        Raises:
            DirectoryError: Unreachable when the object does not exist
        """
        if not identity or not identity.strip():
            raise DirectoryError(ErrorKind.INVALID_ARGUMENT, "get-object", "An identity is required")

        with operation_step("get-object", identity):
            host = self.locator.default_server(server, credential)
            dn = identity.strip()
            if not has_domain_component(dn):
                domain = self.domains.resolve(server=server, credential=credential)
                dn = f"{dn},{domain.distinguished_name}"
            return self.gateway.bind(build_path(host, dn), credential)

    def search(
        self,
        search_filter: str = DEFAULT_FILTER,
        page_size: int = 0,
        size_limit: int = 0,
        search_root: Optional[str] = None,
        scope: Union[SearchScope, str] = SearchScope.SUBTREE,
        find_one: bool = False,
        server: Optional[str] = None,
        credential: Optional[Credential] = None,
        attributes: Optional[list] = None
    ):
        """Search the directory.

        Returns:
            A DirectoryEntry or None when find_one, otherwise a list (possibly
            empty) in the order the server returned them
        """
        if isinstance(scope, str):
            try:
                scope = SearchScope.from_string(scope)
            except ValueError as e:
                raise DirectoryError(ErrorKind.INVALID_ARGUMENT, "search", str(e), cause=e) from e
        if page_size < 0 or size_limit < 0:
            raise DirectoryError(ErrorKind.INVALID_ARGUMENT, "search", "page_size and size_limit must not be negative")

        with operation_step("search", search_root):
            host = self.locator.default_server(server, credential)
            root = search_root or self.rootdse.read(host, credential).default_naming_context
            if root[:len(SCHEME)].upper() != SCHEME:
                root = build_path(host, root)
            elif parse_path(root)[0] is None:
                root = build_path(host, parse_path(root)[1])

            username, password = credential_parts(credential)
            self._log(f"[*] Searching {root} for {search_filter or DEFAULT_FILTER} ({scope.value})")
            results = self.service.search(
                root, search_filter or DEFAULT_FILTER,
                page_size=page_size,
                size_limit=size_limit,
                scope=scope,
                find_one=find_one,
                username=username,
                password=password,
                attributes=attributes,
            )

        if find_one:
            return results[0] if results else None
        self._log(f"[+] {len(results)} entries")
        return list(results)

    def create(
        self,
        name: str,
        object_type: str,
        path: Optional[str] = None,
        description: Optional[str] = None,
        display_name: Optional[str] = None,
        other_attributes: Optional[dict] = None,
        protected_from_accidental_deletion: bool = False,
        server: Optional[str] = None,
        credential: Optional[Credential] = None,
        what_if: bool = False
    ) -> str:
        """Create an object under path (the domain root by default).

        Returns:
            Distinguished name of the created (or, with what_if, the
            would-be) object

        Raises:
            DirectoryError: MissingMandatoryAttributes when the schema requires
                attributes that were not supplied; Unreachable when the parent
                does not exist
        """
        if not name or not name.strip():
            raise DirectoryError(ErrorKind.INVALID_ARGUMENT, "create-object", "A name is required")
        if not object_type or not object_type.strip():
            raise DirectoryError(ErrorKind.INVALID_ARGUMENT, "create-object", "An object type is required", name)

        rdn = build_rdn(name.strip(), object_type)

        with operation_step("create-object", name):
            host = self.locator.default_server(server, credential)
            if path is None:
                path = self.domains.resolve(server=server, credential=credential).distinguished_name

            parent = self.get(path, server=host, credential=credential)
            child = self.service.create_child(parent, object_type.strip(), rdn)
            dn = child.distinguished_name

            child.put("description", description)
            child.put("displayName", display_name)
            for attribute, value in (other_attributes or {}).items():
                child.put(attribute, value)

            if what_if:
                self._log(f"[WhatIf] Would create {object_type} {dn}")
                for attribute, values in child.staged_changes.items():
                    self._log(f"[WhatIf]   {attribute} = {values}")
                if protected_from_accidental_deletion:
                    self._log(f"[WhatIf] Would deny Delete,DeleteTree to {EVERYONE} on {dn}")
                return dn

            self._commit_new(child)
            self._log(f"[+] Created {dn}")

            if protected_from_accidental_deletion:
                with operation_step("protect-object", dn):
                    self.access.add_access_rule(
                        dn, EVERYONE,
                        rights=PROTECT_RIGHTS,
                        access_type=AccessControlType.DENY,
                        inheritance=InheritanceType.NONE,
                        server=host,
                        credential=credential,
                    )
        return dn

    def _commit_new(self, child: DirectoryEntry) -> None:
        dn = child.distinguished_name
        with operation_step("commit", dn):
            try:
                self.service.commit_changes(child)
            except ObjectClassViolationError as e:
                raise DirectoryError(
                    ErrorKind.MISSING_MANDATORY_ATTRIBUTES, "commit",
                    f"{dn} is missing attributes its class requires; "
                    f"supply them with other_attributes ({e})",
                    dn, cause=e
                ) from e
