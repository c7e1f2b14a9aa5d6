"""
Environment Provider
====================

Read-only facts about the machine dstools runs on: the domain the computer
is joined to, the DNS domain of the logged-on user, the local host name and
the computer's site.

Resolvers receive a provider instead of reading the OS directly, so tests
and automation can pin these values with StaticEnvironment.
"""

import os
import socket
from abc import ABC, abstractmethod
from typing import Optional

from ..config import LocatorConfig, get_config


class EnvironmentProvider(ABC):
    """Source of ambient machine/user facts."""

    @abstractmethod
    def machine_domain(self) -> Optional[str]:
        """DNS domain the local computer is joined to, or None."""

    @abstractmethod
    def user_dns_domain(self) -> Optional[str]:
        """DNS domain of the logged-on user, or None."""

    @abstractmethod
    def local_host_name(self) -> str:
        """Fully qualified name of the local computer."""

    @abstractmethod
    def computer_site(self) -> Optional[str]:
        """Configured site of the local computer; None means ask a controller."""


class SystemEnvironment(EnvironmentProvider):
    """Environment read from the OS and the locator configuration.

    Machine domain precedence: LocatorConfig.default_domain (DSTOOLS_DOMAIN),
    then the domain suffix of the local FQDN.
    """

    def __init__(self, config: Optional[LocatorConfig] = None):
        self.config = config or get_config().locator

    def machine_domain(self) -> Optional[str]:
        if self.config.default_domain:
            return self.config.default_domain
        fqdn = self.local_host_name()
        if "." in fqdn:
            return fqdn.split(".", 1)[1]
        return None

    def user_dns_domain(self) -> Optional[str]:
        return os.environ.get("USERDNSDOMAIN") or None

    def local_host_name(self) -> str:
        return socket.getfqdn()

    def computer_site(self) -> Optional[str]:
        return self.config.default_site or None


class StaticEnvironment(EnvironmentProvider):
    """Fixed environment values."""

    def __init__(
        self,
        machine_domain: Optional[str] = None,
        user_dns_domain: Optional[str] = None,
        local_host_name: str = "localhost",
        computer_site: Optional[str] = None
    ):
        self._machine_domain = machine_domain
        self._user_dns_domain = user_dns_domain
        self._local_host_name = local_host_name
        self._computer_site = computer_site

    def machine_domain(self) -> Optional[str]:
        return self._machine_domain

    def user_dns_domain(self) -> Optional[str]:
        return self._user_dns_domain

    def local_host_name(self) -> str:
        return self._local_host_name

    def computer_site(self) -> Optional[str]:
        return self._computer_site
