"""
Topology Queries
================

Trust relationships and replication sites derived from resolved domains
and forests.

Trust filters are membership tests: a trust passes a type filter when its
type is in the requested set, and a direction filter when its direction
includes every bit of the requested direction (a Bidirectional trust
satisfies an Inbound filter, not the other way round). Filtering always
builds a new list, so the result is a subset of the unfiltered query.
"""

from typing import Callable, Iterable, Optional, Union

from ..directory.service import DirectoryService
from ..errors import DirectoryError, ErrorKind, operation_step
from ..model.requests import (
    SiteByIdentity, SitesByDomainName, SitesByForestName, SitesOfDomain, SitesOfForest
)
from ..model.schemas import ContextType, Credential, Domain, Site, TrustDirection, TrustType
from .base import Component
from .context import ContextResolver
from .environment import EnvironmentProvider
from .resolvers import DomainResolver, ForestResolver


def _trust_types(trust_type) -> set:
    if trust_type is None:
        return set()
    if isinstance(trust_type, (TrustType, str)):
        trust_type = [trust_type]
    return {t if isinstance(t, TrustType) else TrustType.from_string(t) for t in trust_type}


class TopologyQuery(Component):
    """Trust and site queries."""

    def __init__(
        self,
        service: DirectoryService,
        contexts: ContextResolver,
        environment: EnvironmentProvider,
        domains: DomainResolver,
        forests: ForestResolver,
        verbose: bool = False,
        progress_callback: Optional[Callable[[str], None]] = None
    ):
        super().__init__(verbose, progress_callback)
        self.service = service
        self.contexts = contexts
        self.environment = environment
        self.domains = domains
        self.forests = forests

    # Trusts

    def trusts(
        self,
        source_name: Optional[str] = None,
        context: Union[ContextType, str] = ContextType.DOMAIN,
        target_name: Optional[str] = None,
        trust_type: Union[TrustType, str, Iterable, None] = None,
        trust_direction: Union[TrustDirection, str, None] = None,
        credential: Optional[Credential] = None
    ) -> list:
        """Trusts of a domain (or of its forest), optionally filtered.

        Raises:
            DirectoryError: InvalidArgument for a context other than Domain or
                Forest or an unknown filter value; NotFound when target_name
                has no trust
        """
        try:
            if isinstance(context, str):
                context = ContextType.from_string(context)
            types = _trust_types(trust_type)
            if isinstance(trust_direction, str):
                trust_direction = TrustDirection.from_string(trust_direction)
        except ValueError as e:
            raise DirectoryError(ErrorKind.INVALID_ARGUMENT, "get-trust", str(e), source_name, cause=e) from e

        if context not in (ContextType.DOMAIN, ContextType.FOREST):
            raise DirectoryError(
                ErrorKind.INVALID_ARGUMENT, "get-trust",
                f"Trusts can only be read for a Domain or Forest context, not {context.value}",
                source_name
            )

        with operation_step("get-trust", source_name):
            if context is ContextType.DOMAIN:
                source = self.domains.resolve(name=source_name, credential=credential)
            else:
                source = self.forests.resolve(name=source_name, credential=credential)

            trusts = list(source.trusts)
            if target_name:
                trusts = [t for t in trusts if t.target_name.lower() == target_name.lower()]
                if not trusts:
                    raise DirectoryError(
                        ErrorKind.NOT_FOUND, "trust-lookup",
                        f"{source.name} has no trust with {target_name}", target_name
                    )

            result = [
                trust for trust in trusts
                if (not types or trust.trust_type in types)
                and (trust_direction is None or trust.trust_direction.satisfies(trust_direction))
            ]
            self._log(f"[+] {len(result)} of {len(trusts)} trusts of {source.name} match")
            return result

    # Sites

    def sites(self, selector, credential: Optional[Credential] = None):
        """Sites for a selector.

        Returns:
            One Site for SiteByIdentity, a list of Sites otherwise

        Raises:
            DirectoryError: NotFound when the named site does not exist
        """
        if isinstance(selector, SiteByIdentity):
            return self._site_by_identity(selector, credential)

        with operation_step("get-site"):
            if isinstance(selector, SitesByDomainName):
                return self._sites_of_domain(self.domains.resolve(name=selector.domain_name, credential=credential), credential)
            if isinstance(selector, SitesOfDomain):
                return self._sites_of_domain(selector.domain, credential)
            if isinstance(selector, SitesByForestName):
                return list(self.forests.resolve(name=selector.forest_name, credential=credential).sites)
            if isinstance(selector, SitesOfForest):
                return list(selector.forest.sites)

        raise DirectoryError(
            ErrorKind.INVALID_ARGUMENT, "get-site",
            f"Unsupported site selector: {type(selector).__name__}"
        )

    def _sites_of_domain(self, domain: Domain, credential) -> list:
        forest = domain.forest
        if forest is None or not forest.sites:
            forest = self.forests.resolve(name=domain.name, credential=credential)
        return [site for site in forest.sites if site.contains_domain(domain)]

    def _site_by_identity(self, selector: SiteByIdentity, credential) -> Site:
        with operation_step("get-site", selector.name):
            name = selector.name or self.computer_site(credential)
            if selector.server:
                forest = self.forests.resolve(server=selector.server, credential=credential)
            else:
                forest = self.forests.resolve(credential=credential)

            for site in forest.sites:
                if site.name.lower() == name.lower():
                    return site
            raise DirectoryError(
                ErrorKind.NOT_FOUND, "site-lookup",
                f"Site '{name}' does not exist in forest {forest.name}", name
            )

    def computer_site(self, credential: Optional[Credential] = None) -> str:
        """Site of the local computer: configured value, else asked of a controller."""
        site = self.environment.computer_site()
        if site:
            return site

        domain_name = self.environment.machine_domain()
        if not domain_name:
            raise DirectoryError(
                ErrorKind.NOT_FOUND, "computer-site",
                "The local computer is not joined to a domain, so it has no site"
            )
        context = self.contexts.resolve(ContextType.DOMAIN, domain_name, credential)
        with operation_step("computer-site", domain_name):
            site = self.service.get_computer_site(context)
        if not site:
            raise DirectoryError(
                ErrorKind.NOT_FOUND, "computer-site",
                f"No controller of {domain_name} reported a site for this computer", domain_name
            )
        return site
