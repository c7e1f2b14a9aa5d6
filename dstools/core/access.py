"""
Access Rule Manager
===================

Adds access control entries to a directory object's DACL.

Steps, each failing on its own:
1. schema lookup: ObjectType / InheritedObjectType class names to
   schemaIDGUIDs ("All" or nothing means every class)
2. principal translation: identity to SID
3. rule construction
4. bind the target, append the ACE to its descriptor, commit
"""

import uuid
from typing import Callable, Optional

from ldap3.utils.conv import escape_filter_chars

from ..directory.paths import build_path
from ..directory.security import SecurityDescriptorError
from ..directory.service import DirectoryService, PrincipalNotMappedError
from ..errors import DirectoryError, ErrorKind, operation_step
from ..model.schemas import (
    EMPTY_GUID, AccessControlType, AccessRule, ActiveDirectoryRights,
    Credential, InheritanceType
)
from .base import Component
from .context import credential_parts
from .gateway import EntryGateway
from .locator import DomainControllerLocator
from .rootdse import RootDSEReader

ALL_OBJECT_TYPES = "all"

DEFAULT_RIGHTS = ActiveDirectoryRights.READ_PROPERTY | ActiveDirectoryRights.GENERIC_EXECUTE


def schema_guid_value(value) -> uuid.UUID:
    """schemaIDGUID attribute value (bytes, UUID or string) to a UUID."""
    if isinstance(value, uuid.UUID):
        return value
    if isinstance(value, (bytes, bytearray)):
        return uuid.UUID(bytes_le=bytes(value))
    return uuid.UUID(str(value))


class AccessRuleManager(Component):
    """Adds ACEs to directory objects."""

    def __init__(
        self,
        service: DirectoryService,
        gateway: EntryGateway,
        locator: DomainControllerLocator,
        rootdse: RootDSEReader,
        verbose: bool = False,
        progress_callback: Optional[Callable[[str], None]] = None
    ):
        super().__init__(verbose, progress_callback)
        self.service = service
        self.gateway = gateway
        self.locator = locator
        self.rootdse = rootdse

    def add_access_rule(
        self,
        distinguished_name: str,
        identity: str,
        rights: ActiveDirectoryRights = DEFAULT_RIGHTS,
        access_type: AccessControlType = AccessControlType.ALLOW,
        inheritance: InheritanceType = InheritanceType.NONE,
        object_type: Optional[str] = None,
        inherited_object_type: Optional[str] = None,
        server: Optional[str] = None,
        credential: Optional[Credential] = None
    ) -> AccessRule:
        """Add one ACE to the DACL of distinguished_name and commit it.

        Returns:
            The AccessRule that was applied

        Raises:
            DirectoryError: InvalidArgument for an unknown schema class,
                InvalidPrincipal for an untranslatable identity, Unreachable
                when the object can't be bound
        """
        with operation_step("add-access-rule", distinguished_name):
            host = self.locator.default_server(server, credential)

            with operation_step("schema-lookup"):
                object_guid = self._schema_guid(object_type, "ObjectType", host, credential)
                inherited_guid = self._schema_guid(inherited_object_type, "InheritedObjectType", host, credential)

            sid = self._translate(identity, host, credential)

            with operation_step("build-rule", identity):
                rule = AccessRule(
                    identity=identity,
                    sid=sid,
                    rights=rights,
                    access_type=access_type,
                    inheritance=inheritance,
                    object_type=object_guid,
                    inherited_object_type=inherited_guid,
                )

            with operation_step("apply-rule", distinguished_name):
                entry = self.gateway.bind(build_path(host, distinguished_name), credential)
                descriptor = self.service.get_access_control(entry)
                descriptor.add_access_rule(rule)
                entry.stage_security_descriptor(descriptor)
                self.service.commit_changes(entry)

        self._log(
            f"[+] {access_type.value} {rights} for {identity} on {distinguished_name}"
        )
        return rule

    def _schema_guid(self, class_name: Optional[str], label: str, host: str, credential) -> uuid.UUID:
        if class_name is None or class_name.strip().lower() in ("", ALL_OBJECT_TYPES):
            return EMPTY_GUID

        schema_nc = self.rootdse.read(host, credential).schema_naming_context
        username, password = credential_parts(credential)
        entries = self.service.search(
            build_path(host, schema_nc),
            f"(CN={escape_filter_chars(class_name.strip())})",
            find_one=True,
            username=username,
            password=password,
            attributes=["schemaIDGUID"],
        )
        if not entries or entries[0].get("schemaIDGUID") is None:
            raise DirectoryError(
                ErrorKind.INVALID_ARGUMENT, "schema-lookup",
                f"Invalid {label} specified: {class_name}", class_name
            )
        return schema_guid_value(entries[0].get("schemaIDGUID"))

    def _translate(self, identity: str, host: str, credential) -> str:
        username, password = credential_parts(credential)
        with operation_step("translate-principal", identity):
            try:
                return self.service.translate_principal_to_sid(identity, host, username, password)
            except (PrincipalNotMappedError, SecurityDescriptorError) as e:
                raise DirectoryError(
                    ErrorKind.INVALID_PRINCIPAL, "translate-principal",
                    f"'{identity}' cannot be translated to a security identifier: {e}",
                    identity, cause=e
                ) from e
