"""
dstools Configuration Module
============================

Centralized configuration management for dstools.
Supports environment variables for deployment-specific values (name
servers, default domain and site).

Design Decision:
- Configuration is a dataclass tree that can be passed through the stack
- Connection settings and locator settings are separate so automation can
  override one without restating the other
"""

import os
from dataclasses import dataclass, field, asdict
from typing import Optional


@dataclass
class LDAPConfig:
    """Configuration for LDAP connections.

    Attributes:
        use_ssl: Whether to use LDAPS (port 636) vs LDAP (port 389)
        port: Explicit port (auto-detected from use_ssl when None)
        authentication: "ntlm" or "simple" for credentialed binds
        page_size: Page size for topology enumeration in the configuration partition
        timeout: Connection and receive timeout in seconds
    """
    use_ssl: bool = False
    port: Optional[int] = None  # Auto-detect based on use_ssl
    authentication: str = "ntlm"
    page_size: int = 1000
    timeout: int = 30

    def __post_init__(self):
        if self.port is None:
            self.port = 636 if self.use_ssl else 389
        self.authentication = self.authentication.lower()
        if self.authentication not in ("ntlm", "simple"):
            raise ValueError(f"Unsupported authentication: {self.authentication}")


@dataclass
class LocatorConfig:
    """Configuration for domain controller discovery.

    Attributes:
        nameservers: DNS servers to query (system resolver when empty)
        dns_timeout: Per-server DNS timeout in seconds
        dns_lifetime: Total DNS query lifetime in seconds
        default_domain: Domain used when the local machine's domain can't be derived
        default_site: Site reported for the local computer (None = ask a controller)
    """
    nameservers: list = field(default_factory=list)
    dns_timeout: float = 5.0
    dns_lifetime: float = 15.0
    default_domain: Optional[str] = None
    default_site: Optional[str] = None

    def __post_init__(self):
        """Fill unset values from the environment."""
        if not self.nameservers:
            servers = os.environ.get("DSTOOLS_NAMESERVERS", "")
            self.nameservers = [s.strip() for s in servers.split(",") if s.strip()]

        if self.default_domain is None:
            self.default_domain = os.environ.get("DSTOOLS_DOMAIN")

        if self.default_site is None:
            self.default_site = os.environ.get("DSTOOLS_SITE")


@dataclass
class DSConfig:
    """Main configuration container for dstools.

    Usage:
        config = DSConfig()  # Uses all defaults
        config = DSConfig(ldap=LDAPConfig(use_ssl=True))
    """
    ldap: LDAPConfig = field(default_factory=LDAPConfig)
    locator: LocatorConfig = field(default_factory=LocatorConfig)

    # Verbosity level for progress output
    verbose: bool = False
    debug: bool = False

    @classmethod
    def from_dict(cls, config_dict: dict) -> "DSConfig":
        """Create configuration from a dictionary.

        Useful for loading from JSON files or CLI inputs.
        """
        return cls(
            ldap=LDAPConfig(**config_dict.get("ldap", {})),
            locator=LocatorConfig(**config_dict.get("locator", {})),
            verbose=config_dict.get("verbose", False),
            debug=config_dict.get("debug", False)
        )

    def to_dict(self) -> dict:
        """Convert configuration to dictionary for serialization."""
        return asdict(self)


# Default global configuration instance
_default_config: Optional[DSConfig] = None


def get_config() -> DSConfig:
    """Get the global configuration instance."""
    global _default_config
    if _default_config is None:
        _default_config = DSConfig()
    return _default_config


def set_config(config: DSConfig) -> None:
    """Set the global configuration instance."""
    global _default_config
    _default_config = config
