"""
Directory entry handle.

A DirectoryEntry is what a bind produces: the path it was bound at, the
attributes read from the server, and any locally staged changes. Staged
changes only reach the directory when the service commits the entry.
"""

from dataclasses import dataclass, field
from typing import Any, Optional

from .paths import parse_path


@dataclass
class DirectoryEntry:
    """A bound (or newly created, not yet committed) directory object.

    Attributes:
        path: "LDAP://server/dn"
        bound: Whether the entry exists on the server
        attributes: Attribute name -> list of values
        object_class: objectClass for a new child (set by create_child)
        native: Transport-specific handle data
    """
    path: str
    bound: bool = True
    attributes: dict = field(default_factory=dict)
    object_class: Optional[str] = None
    native: Any = field(default=None, repr=False)
    _staged: dict = field(default_factory=dict, repr=False)
    _security_descriptor: Any = field(default=None, repr=False)

    @property
    def server(self) -> Optional[str]:
        return parse_path(self.path)[0]

    @property
    def distinguished_name(self) -> str:
        return parse_path(self.path)[1]

    @property
    def is_new(self) -> bool:
        return not self.bound

    def _key(self, name: str) -> Optional[str]:
        lowered = name.lower()
        for key in self.attributes:
            if key.lower() == lowered:
                return key
        return None

    def get_all(self, name: str) -> list:
        """All values of an attribute (case-insensitive name), [] when absent."""
        key = self._key(name)
        if key is None:
            return []
        values = self.attributes[key]
        if isinstance(values, (list, tuple)):
            return list(values)
        return [values]

    def get(self, name: str, default: Any = None) -> Any:
        """First value of an attribute, or default."""
        values = self.get_all(name)
        return values[0] if values else default

    def put(self, name: str, value: Any) -> None:
        """Stage an attribute value; nothing is written until commit."""
        if value is None:
            return
        if not isinstance(value, (list, tuple)):
            value = [value]
        self._staged[name] = list(value)

    @property
    def staged_changes(self) -> dict:
        return dict(self._staged)

    def stage_security_descriptor(self, descriptor: Any) -> None:
        self._security_descriptor = descriptor

    @property
    def staged_security_descriptor(self) -> Any:
        return self._security_descriptor

    def mark_committed(self) -> None:
        """Fold staged values into attributes after a successful commit."""
        for name, values in self._staged.items():
            key = self._key(name) or name
            self.attributes[key] = values
        self._staged = {}
        self._security_descriptor = None
        self.bound = True

    def to_dict(self) -> dict:
        attributes = {}
        for name in self.attributes:
            attributes[name] = [v.hex() if isinstance(v, bytes) else v for v in self.get_all(name)]
        return {"path": self.path, "distinguished_name": self.distinguished_name, "attributes": attributes}
