"""
Directory Tools Facade
======================

High-level interface over the resolution components.

DirectoryTools wires one directory service and one environment provider
into every component and exposes each operation as a method. The CLI and
automation scripts talk to this class only.

Design Decisions:
-----------------
1. One object per session, but nothing is cached between calls: every call
   resolves its context, server and entries fresh
2. The live ldap3 service and the OS environment are the defaults; tests
   pass an in-memory service and a StaticEnvironment
3. Progress updates go through a single callback shared by all components
"""

from typing import Callable, Optional

from .config import DSConfig, get_config
from .core.access import AccessRuleManager, DEFAULT_RIGHTS
from .core.context import ContextResolver
from .core.environment import EnvironmentProvider, SystemEnvironment
from .core.gateway import EntryGateway
from .core.identity import IdentityNormalizer
from .core.locator import DomainControllerLocator
from .core.objects import DirectoryObjectAccess, DEFAULT_FILTER
from .core.resolvers import DomainResolver, ForestResolver
from .core.rootdse import RootDSEReader
from .core.topology import TopologyQuery
from .directory.ldap_service import Ldap3DirectoryService
from .directory.service import DirectoryService
from .model.schemas import (
    AccessControlType, ContextType, Credential, InheritanceType, SearchScope
)


class DirectoryTools:
    """Entry point for every directory operation.

    Usage:
        tools = DirectoryTools(verbose=True)
        cred = Credential.parse("CORP\\\\admin", "Password123")
        dc = tools.get_domain_controller(FindOne(domain_name="corp.local", writable=True), cred)
        forest = tools.get_forest("corp.local", credential=cred)
    """

    def __init__(
        self,
        service: Optional[DirectoryService] = None,
        environment: Optional[EnvironmentProvider] = None,
        config: Optional[DSConfig] = None,
        verbose: Optional[bool] = None,
        progress_callback: Optional[Callable[[str], None]] = None
    ):
        self.config = config or get_config()
        verbose = self.config.verbose if verbose is None else verbose

        if service is None:
            service = Ldap3DirectoryService(self.config, verbose, progress_callback)
        self.service = service
        self.environment = environment or SystemEnvironment(self.config.locator)

        log = {"verbose": verbose, "progress_callback": progress_callback}
        self.contexts = ContextResolver()
        self.gateway = EntryGateway(service, **log)
        self.normalizer = IdentityNormalizer(service, **log)
        self.locator = DomainControllerLocator(service, self.contexts, self.normalizer, self.environment, **log)
        self.domains = DomainResolver(service, self.contexts, self.environment, self.locator, **log)
        self.forests = ForestResolver(
            service, self.contexts, self.environment, self.locator, domains=self.domains, **log
        )
        self.locator.attach_resolvers(self.domains, self.forests)
        self.topology = TopologyQuery(service, self.contexts, self.environment, self.domains, self.forests, **log)
        self.rootdse = RootDSEReader(self.gateway, self.locator, **log)
        self.access = AccessRuleManager(service, self.gateway, self.locator, self.rootdse, **log)
        self.objects = DirectoryObjectAccess(
            service, self.gateway, self.locator, self.domains, self.rootdse, self.access, **log
        )

    # Contexts and entries

    def resolve_context(self, context_type, name: str, credential: Optional[Credential] = None):
        return self.contexts.resolve(context_type, name, credential)

    def bind(self, path: str, credential: Optional[Credential] = None):
        return self.gateway.bind(path, credential)

    def normalize_identity(self, identity: str) -> str:
        return self.normalizer.normalize(identity)

    # Topology

    def get_domain_controller(self, request, credential: Optional[Credential] = None):
        """Locate controllers; see DomainControllerLocator.locate."""
        return self.locator.locate(request, credential)

    def get_domain(self, name=None, current=None, server=None, credential: Optional[Credential] = None):
        return self.domains.resolve(name=name, current=current, server=server, credential=credential)

    def get_forest(self, name=None, current=None, server=None, credential: Optional[Credential] = None):
        return self.forests.resolve(name=name, current=current, server=server, credential=credential)

    def get_trusts(
        self,
        source_name=None,
        context=ContextType.DOMAIN,
        target_name=None,
        trust_type=None,
        trust_direction=None,
        credential: Optional[Credential] = None
    ) -> list:
        return self.topology.trusts(source_name, context, target_name, trust_type, trust_direction, credential)

    def get_sites(self, selector, credential: Optional[Credential] = None):
        return self.topology.sites(selector, credential)

    # Objects

    def get_object(self, identity: str, server=None, credential: Optional[Credential] = None):
        return self.objects.get(identity, server, credential)

    def search(
        self,
        search_filter: str = DEFAULT_FILTER,
        page_size: int = 0,
        size_limit: int = 0,
        search_root=None,
        scope=SearchScope.SUBTREE,
        find_one: bool = False,
        server=None,
        credential: Optional[Credential] = None,
        attributes=None
    ):
        return self.objects.search(
            search_filter, page_size, size_limit, search_root, scope, find_one, server, credential, attributes
        )

    def new_object(
        self,
        name: str,
        object_type: str,
        path=None,
        description=None,
        display_name=None,
        other_attributes=None,
        protected_from_accidental_deletion: bool = False,
        server=None,
        credential: Optional[Credential] = None,
        what_if: bool = False
    ) -> str:
        return self.objects.create(
            name, object_type, path, description, display_name, other_attributes,
            protected_from_accidental_deletion, server, credential, what_if
        )

    def add_access_rule(
        self,
        distinguished_name: str,
        identity: str,
        rights=DEFAULT_RIGHTS,
        access_type=AccessControlType.ALLOW,
        inheritance=InheritanceType.NONE,
        object_type=None,
        inherited_object_type=None,
        server=None,
        credential: Optional[Credential] = None
    ):
        return self.access.add_access_rule(
            distinguished_name, identity, rights, access_type, inheritance,
            object_type, inherited_object_type, server, credential
        )

    def read_root_dse(self, server=None, credential: Optional[Credential] = None):
        return self.rootdse.read(server, credential)
