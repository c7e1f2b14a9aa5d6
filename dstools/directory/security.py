"""
Security Descriptor Module
==========================

Parse and build self-relative SECURITY_DESCRIPTOR blobs as stored in
nTSecurityDescriptor.

Only the DACL is interpreted. Owner, group and SACL are carried through
unchanged when present so a descriptor read with the DACL-only SD flags
control can be written back with the same control.

Layout reference (all little-endian except the SID identifier authority):
- Header: Revision(1) Sbz1(1) Control(2) OffsetOwner(4) OffsetGroup(4)
  OffsetSacl(4) OffsetDacl(4)
- ACL: AclRevision(1) Sbz1(1) AclSize(2) AceCount(2) Sbz2(2)
- ACE: AceType(1) AceFlags(1) AceSize(2) AccessMask(4) ...
"""

import struct
import uuid
from dataclasses import dataclass, field
from typing import Optional

from ..model.schemas import AccessControlType, AccessRule, EMPTY_GUID, InheritanceType

# ACE types
ACCESS_ALLOWED_ACE_TYPE = 0x00
ACCESS_DENIED_ACE_TYPE = 0x01
ACCESS_ALLOWED_OBJECT_ACE_TYPE = 0x05
ACCESS_DENIED_OBJECT_ACE_TYPE = 0x06

OBJECT_ACE_TYPES = (ACCESS_ALLOWED_OBJECT_ACE_TYPE, ACCESS_DENIED_OBJECT_ACE_TYPE)
DENY_ACE_TYPES = (ACCESS_DENIED_ACE_TYPE, ACCESS_DENIED_OBJECT_ACE_TYPE)

# ACE flags
OBJECT_INHERIT_ACE = 0x01
CONTAINER_INHERIT_ACE = 0x02
NO_PROPAGATE_INHERIT_ACE = 0x04
INHERIT_ONLY_ACE = 0x08
INHERITED_ACE = 0x10

# Object ACE flags
ACE_OBJECT_TYPE_PRESENT = 0x01
ACE_INHERITED_OBJECT_TYPE_PRESENT = 0x02

# Control bits
SE_DACL_PRESENT = 0x0004
SE_SACL_PRESENT = 0x0010
SE_SELF_RELATIVE = 0x8000

ACL_REVISION = 2
ACL_REVISION_DS = 4

INHERITANCE_FLAGS = {
    InheritanceType.NONE: 0,
    InheritanceType.ALL: CONTAINER_INHERIT_ACE,
    InheritanceType.DESCENDENTS: CONTAINER_INHERIT_ACE | INHERIT_ONLY_ACE,
    InheritanceType.SELF_AND_CHILDREN: CONTAINER_INHERIT_ACE | NO_PROPAGATE_INHERIT_ACE,
    InheritanceType.CHILDREN: CONTAINER_INHERIT_ACE | INHERIT_ONLY_ACE | NO_PROPAGATE_INHERIT_ACE,
}


class SecurityDescriptorError(ValueError):
    """Malformed descriptor, ACE or SID data."""


def sid_to_string(sid_bytes: bytes) -> str:
    """Convert binary SID to string format (e.g. "S-1-5-21-...").

    SID structure:
    Byte 0: Revision
    Byte 1: Number of sub-authorities
    Bytes 2-7: Identifier authority (big-endian)
    Remaining: Sub-authorities (little-endian 32-bit)
    """
    if len(sid_bytes) < 8:
        raise SecurityDescriptorError("SID too short")
    revision = sid_bytes[0]
    sub_auth_count = sid_bytes[1]
    if len(sid_bytes) < 8 + 4 * sub_auth_count:
        raise SecurityDescriptorError("SID truncated")

    id_auth = int.from_bytes(sid_bytes[2:8], 'big')
    sub_auths = struct.unpack(f'<{sub_auth_count}I', sid_bytes[8:8 + 4 * sub_auth_count])

    sid = f"S-{revision}-{id_auth}"
    for sub_auth in sub_auths:
        sid += f"-{sub_auth}"
    return sid


def sid_to_bytes(sid: str) -> bytes:
    """Inverse of sid_to_string."""
    parts = sid.strip().upper().split("-")
    if len(parts) < 3 or parts[0] != "S":
        raise SecurityDescriptorError(f"Not a SID string: {sid}")
    try:
        revision = int(parts[1])
        id_auth = int(parts[2])
        sub_auths = [int(p) for p in parts[3:]]
    except ValueError:
        raise SecurityDescriptorError(f"Not a SID string: {sid}")
    return (
        bytes([revision, len(sub_auths)])
        + id_auth.to_bytes(6, 'big')
        + struct.pack(f'<{len(sub_auths)}I', *sub_auths)
    )


def sid_length(data: bytes, offset: int = 0) -> int:
    return 8 + 4 * data[offset + 1]


@dataclass
class Ace:
    """One parsed access control entry.

    raw holds the original bytes for ACE types this module doesn't model
    (audit, callback ...), so they are written back untouched.
    """
    ace_type: int
    flags: int
    access_mask: int = 0
    sid: str = ""
    object_type: Optional[uuid.UUID] = None
    inherited_object_type: Optional[uuid.UUID] = None
    raw: Optional[bytes] = field(default=None, repr=False)

    @property
    def is_inherited(self) -> bool:
        return bool(self.flags & INHERITED_ACE)

    @property
    def is_deny(self) -> bool:
        return self.ace_type in DENY_ACE_TYPES

    @classmethod
    def from_bytes(cls, ace_data: bytes) -> "Ace":
        ace_type = ace_data[0]
        ace_flags = ace_data[1]

        if ace_type in (ACCESS_ALLOWED_ACE_TYPE, ACCESS_DENIED_ACE_TYPE):
            access_mask = struct.unpack('<I', ace_data[4:8])[0]
            return cls(ace_type, ace_flags, access_mask, sid_to_string(ace_data[8:]))

        if ace_type in OBJECT_ACE_TYPES:
            access_mask, object_flags = struct.unpack('<II', ace_data[4:12])
            offset = 12
            object_type = inherited_object_type = None
            if object_flags & ACE_OBJECT_TYPE_PRESENT:
                object_type = uuid.UUID(bytes_le=bytes(ace_data[offset:offset + 16]))
                offset += 16
            if object_flags & ACE_INHERITED_OBJECT_TYPE_PRESENT:
                inherited_object_type = uuid.UUID(bytes_le=bytes(ace_data[offset:offset + 16]))
                offset += 16
            return cls(
                ace_type, ace_flags, access_mask, sid_to_string(ace_data[offset:]),
                object_type, inherited_object_type
            )

        return cls(ace_type, ace_flags, raw=bytes(ace_data))

    def to_bytes(self) -> bytes:
        if self.raw is not None:
            return self.raw

        body = struct.pack('<I', self.access_mask)
        if self.ace_type in OBJECT_ACE_TYPES:
            object_flags = 0
            guids = b""
            if self.object_type is not None:
                object_flags |= ACE_OBJECT_TYPE_PRESENT
                guids += self.object_type.bytes_le
            if self.inherited_object_type is not None:
                object_flags |= ACE_INHERITED_OBJECT_TYPE_PRESENT
                guids += self.inherited_object_type.bytes_le
            body += struct.pack('<I', object_flags) + guids
        body += sid_to_bytes(self.sid)

        size = 4 + len(body)
        return struct.pack('<BBH', self.ace_type, self.flags, size) + body

    @classmethod
    def from_rule(cls, rule: AccessRule) -> "Ace":
        """Build the ACE for an AccessRule.

        An object ACE is used when either GUID is set; EMPTY_GUID is left out.
        """
        object_type = rule.object_type if rule.object_type != EMPTY_GUID else None
        inherited = rule.inherited_object_type if rule.inherited_object_type != EMPTY_GUID else None
        deny = rule.access_type is AccessControlType.DENY

        if object_type or inherited:
            ace_type = ACCESS_DENIED_OBJECT_ACE_TYPE if deny else ACCESS_ALLOWED_OBJECT_ACE_TYPE
        else:
            ace_type = ACCESS_DENIED_ACE_TYPE if deny else ACCESS_ALLOWED_ACE_TYPE

        return cls(
            ace_type=ace_type,
            flags=INHERITANCE_FLAGS[rule.inheritance],
            access_mask=rule.rights.value,
            sid=rule.sid,
            object_type=object_type,
            inherited_object_type=inherited,
        )


@dataclass
class SecurityDescriptor:
    """A parsed self-relative security descriptor.

    Usage:
        sd = SecurityDescriptor.from_bytes(raw)
        sd.add_access_rule(rule)
        raw = sd.to_bytes()
    """
    control: int = SE_DACL_PRESENT | SE_SELF_RELATIVE
    owner: Optional[bytes] = None
    group: Optional[bytes] = None
    sacl: Optional[bytes] = None
    dacl: list = field(default_factory=list)
    revision: int = 1

    @classmethod
    def from_bytes(cls, data: bytes) -> "SecurityDescriptor":
        if len(data) < 20:
            raise SecurityDescriptorError("Security descriptor too short")

        revision, _, control, owner_off, group_off, sacl_off, dacl_off = struct.unpack(
            '<BBHIIII', data[:20]
        )

        owner = data[owner_off:owner_off + sid_length(data, owner_off)] if owner_off else None
        group = data[group_off:group_off + sid_length(data, group_off)] if group_off else None

        sacl = None
        if sacl_off:
            sacl_size = struct.unpack('<H', data[sacl_off + 2:sacl_off + 4])[0]
            sacl = bytes(data[sacl_off:sacl_off + sacl_size])

        aces = []
        if dacl_off:
            acl_size, ace_count = struct.unpack('<HH', data[dacl_off + 2:dacl_off + 6])
            if dacl_off + acl_size > len(data):
                raise SecurityDescriptorError("DACL extends past end of descriptor")
            ace_offset = dacl_off + 8
            for _ in range(ace_count):
                ace_size = struct.unpack('<H', data[ace_offset + 2:ace_offset + 4])[0]
                if ace_size < 8 or ace_offset + ace_size > dacl_off + acl_size:
                    raise SecurityDescriptorError("Malformed ACE")
                aces.append(Ace.from_bytes(data[ace_offset:ace_offset + ace_size]))
                ace_offset += ace_size

        return cls(
            control=control,
            owner=bytes(owner) if owner else None,
            group=bytes(group) if group else None,
            sacl=sacl,
            dacl=aces,
            revision=revision,
        )

    def add_access_rule(self, rule: AccessRule) -> Ace:
        """Insert the rule's ACE in canonical order and return it.

        Explicit deny ACEs go first; explicit allow ACEs go after the last
        explicit ACE; inherited ACEs stay at the end.
        """
        ace = Ace.from_rule(rule)
        if ace.is_deny:
            position = 0
        else:
            position = 0
            for i, existing in enumerate(self.dacl):
                if not existing.is_inherited:
                    position = i + 1
        self.dacl.insert(position, ace)
        self.control |= SE_DACL_PRESENT
        return ace

    def _dacl_bytes(self) -> bytes:
        aces = b"".join(ace.to_bytes() for ace in self.dacl)
        revision = ACL_REVISION_DS if any(a.ace_type in OBJECT_ACE_TYPES for a in self.dacl) else ACL_REVISION
        return struct.pack('<BBHHH', revision, 0, 8 + len(aces), len(self.dacl), 0) + aces

    def to_bytes(self) -> bytes:
        offset = 20
        body = b""
        owner_off = group_off = sacl_off = dacl_off = 0

        if self.sacl:
            sacl_off = offset + len(body)
            body += self.sacl
        dacl_off = offset + len(body)
        body += self._dacl_bytes()
        if self.owner:
            owner_off = offset + len(body)
            body += self.owner
        if self.group:
            group_off = offset + len(body)
            body += self.group

        control = self.control | SE_SELF_RELATIVE | SE_DACL_PRESENT
        if not self.sacl:
            control &= ~SE_SACL_PRESENT
        header = struct.pack(
            '<BBHIIII', self.revision, 0, control, owner_off, group_off, sacl_off, dacl_off
        )
        return header + body
