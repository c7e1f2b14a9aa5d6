"""
dstools Model Module
====================

Typed data models for directory contexts, topology and access control,
plus the request types used to select an operation mode.

Key Components:
- schemas.py: Dataclasses and enums for contexts, topology objects, rules
- requests.py: Tagged-union request types (controller, site selection)
"""

from .schemas import (
    EMPTY_GUID,
    ContextType,
    SearchScope,
    Credential,
    DirectoryContext,
    FsmoRole,
    DomainMode,
    ForestMode,
    TrustType,
    TrustDirection,
    TrustRelationship,
    DomainController,
    Domain,
    Forest,
    Site,
    ActiveDirectoryRights,
    AccessControlType,
    InheritanceType,
    AccessRule,
    LocatorFlag,
    ServiceRequirement,
    RootDSE,
)
from .requests import (
    ByIdentity,
    FindAllInForest,
    FindAll,
    FindOne,
    RoleOwner,
    DomainControllerRequest,
    CurrentContext,
    SiteByIdentity,
    SitesByDomainName,
    SitesByForestName,
    SitesOfDomain,
    SitesOfForest,
    SiteSelector,
    parse_service_requirements,
)
