"""
Domain and Forest Resolvers
===========================

Resolve Domain and Forest snapshots from whichever selector the caller
gave. Selector precedence:

1. server: locate that controller and use its domain / forest
2. name
3. current: CurrentUser (the logged-on user's DNS domain) or LocalMachine
   (the computer's joined domain)
4. nothing: the computer's joined domain

A forest name that is not a forest root is retried as a domain name and
the forest of that domain is returned.
"""

from typing import Callable, Optional, Union

from ..directory.service import DirectoryService, ObjectNotFoundError
from ..errors import DirectoryError, ErrorKind, operation_step
from ..model.requests import ByIdentity, CurrentContext
from ..model.schemas import ContextType, Credential, Domain, Forest
from .base import Component
from .context import ContextResolver
from .environment import EnvironmentProvider


class _Resolver(Component):

    def __init__(
        self,
        service: DirectoryService,
        contexts: ContextResolver,
        environment: EnvironmentProvider,
        locator,
        verbose: bool = False,
        progress_callback: Optional[Callable[[str], None]] = None
    ):
        super().__init__(verbose, progress_callback)
        self.service = service
        self.contexts = contexts
        self.environment = environment
        self.locator = locator

    def _select_name(self, name: Optional[str], current: Union[CurrentContext, str, None]) -> str:
        if name:
            return name

        if isinstance(current, str):
            try:
                current = CurrentContext.from_string(current)
            except ValueError as e:
                raise DirectoryError(ErrorKind.INVALID_ARGUMENT, "select-domain", str(e), current, cause=e) from e

        if current is CurrentContext.CURRENT_USER:
            selected = self.environment.user_dns_domain()
            source = "the logged-on user"
        else:
            selected = self.environment.machine_domain()
            source = "the local computer"

        if not selected:
            raise DirectoryError(
                ErrorKind.OBJECT_NOT_FOUND, "select-domain",
                f"No domain could be determined for {source}"
            )
        return selected


class DomainResolver(_Resolver):
    """Resolves Domain snapshots."""

    def resolve(
        self,
        name: Optional[str] = None,
        current: Union[CurrentContext, str, None] = None,
        server: Optional[str] = None,
        credential: Optional[Credential] = None
    ) -> Domain:
        """Resolve a domain.

        Raises:
            DirectoryError: ObjectNotFound when the domain does not exist,
                DirectoryOperationFailed for anything else
        """
        with operation_step("resolve-domain", server or name, not_found=ErrorKind.OBJECT_NOT_FOUND):
            if server:
                controller = self.locator.locate(ByIdentity(server), credential)
                if controller.domain is None:
                    raise DirectoryError(
                        ErrorKind.OBJECT_NOT_FOUND, "domain-lookup",
                        f"Controller {controller.name} reported no domain", server
                    )
                return controller.domain

            domain_name = self._select_name(name, current)
            return self.lookup(domain_name, credential)

    def lookup(self, domain_name: str, credential: Optional[Credential] = None) -> Domain:
        """Resolve a domain by name only."""
        context = self.contexts.resolve(ContextType.DOMAIN, domain_name, credential)
        self._log(f"[*] Resolving domain {domain_name}")
        with operation_step("domain-lookup", domain_name):
            try:
                domain = self.service.get_domain(context)
            except ObjectNotFoundError as e:
                raise DirectoryError(
                    ErrorKind.OBJECT_NOT_FOUND, "domain-lookup",
                    f"Domain '{domain_name}' could not be found: {e}", domain_name, cause=e
                ) from e
        self._log(f"[+] Resolved domain {domain.name}")
        return domain


class ForestResolver(_Resolver):
    """Resolves Forest snapshots."""

    def __init__(self, *args, domains: Optional[DomainResolver] = None, **kwargs):
        super().__init__(*args, **kwargs)
        self.domains = domains

    def resolve(
        self,
        name: Optional[str] = None,
        current: Union[CurrentContext, str, None] = None,
        server: Optional[str] = None,
        credential: Optional[Credential] = None
    ) -> Forest:
        """Resolve a forest by root name, any domain name in it, or a server.

        Raises:
            DirectoryError: ObjectNotFound when neither a forest nor a domain
                of that name exists
        """
        with operation_step("resolve-forest", server or name, not_found=ErrorKind.OBJECT_NOT_FOUND):
            if server:
                controller = self.locator.locate(ByIdentity(server), credential)
                if controller.forest is None:
                    raise DirectoryError(
                        ErrorKind.OBJECT_NOT_FOUND, "forest-lookup",
                        f"Controller {controller.name} reported no forest", server
                    )
                return controller.forest

            forest_name = self._select_name(name, current)
            return self.lookup(forest_name, credential)

    def lookup(self, forest_name: str, credential: Optional[Credential] = None) -> Forest:
        """Resolve a forest by name, falling back to the forest of a domain of that name."""
        context = self.contexts.resolve(ContextType.FOREST, forest_name, credential)
        self._log(f"[*] Resolving forest {forest_name}")

        with operation_step("forest-lookup", forest_name):
            try:
                forest = self.service.get_forest(context)
            except ObjectNotFoundError:
                self._log(f"[*] {forest_name} is not a forest root, resolving it as a domain")
                forest = None

        if forest is None:
            domain = self.domains.lookup(forest_name, credential)
            if domain.forest is None:
                raise DirectoryError(
                    ErrorKind.OBJECT_NOT_FOUND, "forest-lookup",
                    f"Domain '{forest_name}' reported no forest", forest_name
                )
            root_context = self.contexts.resolve(ContextType.FOREST, domain.forest.name, credential)
            with operation_step("forest-lookup", domain.forest.name, not_found=ErrorKind.OBJECT_NOT_FOUND):
                forest = self.service.get_forest(root_context)

        self._log(f"[+] Resolved forest {forest.name}")
        return forest
