"""
Domain Controller Locator
=========================

Finds domain controllers. The request type picks exactly one mode:

- ByIdentity: one named controller (IP, short name or FQDN)
- FindAllInForest: every controller of every domain in a forest
- FindAll: every controller of a domain, optionally in one site
- FindOne: one controller meeting locator constraints (site, writable,
  KDC / time service, avoid self)
- RoleOwner: the holder of an FSMO role

Design Decisions:
-----------------
1. Candidates are returned in the order the directory service yields them;
   this layer never re-ranks
2. A domain name is optional everywhere; the machine's joined domain is the
   default
3. Each step (normalization, domain lookup, controller discovery, role
   lookup) raises with its own operation name so failures say where they
   happened
4. Domain and forest resolvers are attached after construction because
   they also depend on the locator
"""

from typing import Callable, Optional

from ..directory.service import DirectoryService
from ..errors import DirectoryError, ErrorKind, operation_step
from ..model.requests import ByIdentity, FindAll, FindAllInForest, FindOne, RoleOwner
from ..model.schemas import ContextType, Credential, DomainController, LocatorFlag
from .base import Component
from .context import ContextResolver
from .environment import EnvironmentProvider
from .identity import IdentityNormalizer


def describe_flags(flags: LocatorFlag) -> str:
    names = [member.name for member in LocatorFlag if member.value and member in flags]
    return ", ".join(names) if names else "no constraints"


class DomainControllerLocator(Component):
    """Resolves DomainControllerRequest values to controllers.

    Usage:
        locator = DomainControllerLocator(service, ContextResolver(), normalizer, environment)
        locator.attach_resolvers(domains, forests)
        dc = locator.locate(FindOne(domain_name="corp.local", writable=True))
    """

    def __init__(
        self,
        service: DirectoryService,
        contexts: ContextResolver,
        normalizer: IdentityNormalizer,
        environment: EnvironmentProvider,
        verbose: bool = False,
        progress_callback: Optional[Callable[[str], None]] = None
    ):
        super().__init__(verbose, progress_callback)
        self.service = service
        self.contexts = contexts
        self.normalizer = normalizer
        self.environment = environment
        self.domains = None
        self.forests = None

    def attach_resolvers(self, domains, forests) -> None:
        """Wire the domain and forest resolvers (needed for forest and role modes)."""
        self.domains = domains
        self.forests = forests

    def locate(self, request, credential: Optional[Credential] = None):
        """Run the mode selected by request.

        Returns:
            A DomainController, or a list of them for the FindAll modes

        Raises:
            DirectoryError: NotFound when no controller qualifies; see each mode
        """
        if isinstance(request, ByIdentity):
            return self._by_identity(request, credential)
        if isinstance(request, FindAllInForest):
            return self._find_all_in_forest(request, credential)
        if isinstance(request, FindAll):
            return self._find_all(request, credential)
        if isinstance(request, FindOne):
            return self._find_one(request, credential)
        if isinstance(request, RoleOwner):
            return self._role_owner(request, credential)
        raise DirectoryError(
            ErrorKind.INVALID_ARGUMENT, "locate-controller",
            f"Unsupported controller request: {type(request).__name__}"
        )

    def default_server(self, server: Optional[str], credential: Optional[Credential] = None) -> str:
        """server if given, else any available controller of the machine's domain."""
        if server:
            return server
        with operation_step("select-server"):
            return self.locate(FindOne(), credential).name

    def _domain_name(self, domain_name: Optional[str]) -> str:
        if domain_name:
            return domain_name
        machine_domain = self.environment.machine_domain()
        if not machine_domain:
            raise DirectoryError(
                ErrorKind.OBJECT_NOT_FOUND, "domain-lookup",
                "No domain name given and the local computer is not joined to a domain"
            )
        return machine_domain

    def _require_resolvers(self) -> None:
        if self.domains is None or self.forests is None:
            raise DirectoryError(
                ErrorKind.INVALID_ARGUMENT, "locate-controller",
                "Domain and forest resolvers are not attached"
            )

    # Modes

    def _by_identity(self, request: ByIdentity, credential) -> DomainController:
        with operation_step("locate-controller", request.identity):
            host = self.normalizer.normalize(request.identity)
            context = self.contexts.resolve(ContextType.DIRECTORY_SERVER, host, credential)
            with operation_step("controller-lookup", host, not_found=ErrorKind.NOT_FOUND):
                controller = self.service.get_domain_controller(context)
            self._log(f"[+] Resolved controller {controller.name}")
            return controller

    def _find_all_in_forest(self, request: FindAllInForest, credential) -> list:
        self._require_resolvers()
        with operation_step("locate-controller", request.domain_name):
            domain_name = self._domain_name(request.domain_name)
            forest = self.forests.resolve(name=domain_name, credential=credential)
            controllers = []
            for domain in forest.domains:
                controllers.extend(domain.domain_controllers)
            self._log(f"[+] {len(controllers)} controllers in forest {forest.name}")
            return controllers

    def _find_all(self, request: FindAll, credential) -> list:
        with operation_step("locate-controller", request.domain_name):
            domain_name = self._domain_name(request.domain_name)
            context = self.contexts.resolve(ContextType.DOMAIN, domain_name, credential)
            with operation_step("controller-discovery", domain_name, not_found=ErrorKind.OBJECT_NOT_FOUND):
                controllers = self.service.find_all_controllers(context, request.site_name)
            self._log(f"[+] {len(controllers)} controllers in {domain_name}")
            return controllers

    def _find_one(self, request: FindOne, credential) -> DomainController:
        flags = request.locator_flags
        with operation_step("locate-controller", request.domain_name):
            domain_name = self._domain_name(request.domain_name)
            context = self.contexts.resolve(ContextType.DOMAIN, domain_name, credential)
            if LocatorFlag.FORCE_REDISCOVERY in flags:
                self._log("[*] Forced rediscovery requested (no locator cache is kept)")

            where = f"{domain_name} site {request.site_name}" if request.site_name else domain_name
            self._log(f"[*] Locating a controller in {where} ({describe_flags(flags)})")
            with operation_step("controller-discovery", domain_name, not_found=ErrorKind.OBJECT_NOT_FOUND):
                controller = self.service.find_one_controller(context, request.site_name, flags)

            if controller is None:
                raise DirectoryError(
                    ErrorKind.NOT_FOUND, "controller-discovery",
                    f"No domain controller in {where} satisfies: {describe_flags(flags)}",
                    domain_name
                )
            self._log(f"[+] Located {controller.name}")
            return controller

    def _role_owner(self, request: RoleOwner, credential) -> DomainController:
        self._require_resolvers()
        role = request.role
        with operation_step("locate-controller", request.identity or request.domain_name):
            if role.is_forest_role:
                holder = self.forests.resolve(
                    name=request.domain_name, server=request.identity, credential=credential
                )
            else:
                holder = self.domains.resolve(
                    name=request.domain_name, server=request.identity, credential=credential
                )

            owner = holder.role_owner(role)
            if owner is None:
                raise DirectoryError(
                    ErrorKind.NOT_FOUND, "role-lookup",
                    f"No owner of {role.value} recorded for {holder.name}", holder.name
                )
            self._log(f"[+] {role.value} is held by {owner.name}")
            return owner
