"""
dstools Core Module
===================

Directory-context resolution and discovery.

Key Components:
- context.py: ContextResolver (name + credential -> DirectoryContext)
- gateway.py: EntryGateway (path -> bound DirectoryEntry)
- identity.py: IdentityNormalizer (IP / short name -> FQDN)
- locator.py: DomainControllerLocator
- resolvers.py: DomainResolver, ForestResolver
- topology.py: TopologyQuery (trusts, sites)
- rootdse.py: RootDSEReader
- objects.py: DirectoryObjectAccess (get, search, create)
- access.py: AccessRuleManager
- environment.py: Environment providers
"""

from .environment import EnvironmentProvider, SystemEnvironment, StaticEnvironment
from .context import ContextResolver, credential_parts
from .gateway import EntryGateway
from .identity import IdentityNormalizer
from .locator import DomainControllerLocator
from .resolvers import DomainResolver, ForestResolver
from .topology import TopologyQuery
from .rootdse import RootDSEReader, parse_root_dse, parse_current_time
from .access import AccessRuleManager
from .objects import DirectoryObjectAccess, build_rdn
