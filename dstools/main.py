#!/usr/bin/env python3
"""
dstools - Active Directory discovery and management from the command line
=========================================================================

Usage:
    # Find a writable controller in the HQ site
    python -m dstools get-dc -d corp.local --site HQ --writable

    # Forest topology
    python -m dstools get-forest -d corp.local -u CORP\\admin -p Password123

    # Search
    python -m dstools search -f "(objectClass=user)" --page-size 500 -s dc01.corp.local

Options common to every command:
    --username, -u      Account to bind as (DOMAIN\\user, user@domain or user)
    --password, -p      Password (or DSTOOLS_PASSWORD)
    --server, -s        Domain controller to use
    --domain, -d        Domain name
    --ssl               Use LDAPS
    --nameserver        DNS server for controller discovery (repeatable)
    --verbose, -v       Verbose output
    --debug             Show the failing step and cause on errors

Every command prints JSON on success and exits 0; failures print
"[!] <kind>: <message>" and exit 1.
"""

import argparse
import json
import os
import sys

from . import __version__
from .config import DSConfig, LDAPConfig, LocatorConfig
from .errors import DirectoryError, ErrorKind
from .model.requests import (
    ByIdentity, CurrentContext, FindAll, FindAllInForest, FindOne, RoleOwner,
    SiteByIdentity, SitesByDomainName, SitesByForestName, parse_service_requirements
)
from .model.schemas import (
    AccessControlType, ActiveDirectoryRights, ContextType, Credential, FsmoRole,
    InheritanceType, SearchScope, TrustDirection
)
from .session import DirectoryTools


def _to_json(value):
    if isinstance(value, list):
        return [_to_json(v) for v in value]
    if hasattr(value, "to_dict"):
        return value.to_dict()
    return value


def _common_arguments() -> argparse.ArgumentParser:
    common = argparse.ArgumentParser(add_help=False)

    conn_group = common.add_argument_group("Connection")
    conn_group.add_argument("-u", "--username", help="Account to bind as (DOMAIN\\user, UPN or bare name)")
    conn_group.add_argument("-p", "--password", help="Password (default: $DSTOOLS_PASSWORD)")
    conn_group.add_argument("-s", "--server", help="Domain controller (IP, short name or FQDN)")
    conn_group.add_argument("-d", "--domain", help="Domain name (default: the local computer's domain)")
    conn_group.add_argument("--ssl", action="store_true", help="Use LDAPS (port 636)")
    conn_group.add_argument(
        "--auth", choices=["ntlm", "simple"], default="ntlm",
        help="Bind mechanism for DOMAIN\\user accounts (default: ntlm)"
    )
    conn_group.add_argument(
        "--nameserver", action="append", default=[],
        help="DNS server for controller discovery (repeatable)"
    )

    common.add_argument("-v", "--verbose", action="store_true", help="Enable verbose output")
    common.add_argument("--debug", action="store_true", help="Show the failing step and underlying cause on errors")
    return common


def build_parser() -> argparse.ArgumentParser:
    common = _common_arguments()
    parser = argparse.ArgumentParser(
        prog="dstools",
        description="dstools - Active Directory discovery and management",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Locate one controller offering KDC and time service
  %(prog)s get-dc -d corp.local --service KDC,TimeService

  # The PDC emulator of a child domain
  %(prog)s get-dc -d emea.corp.local --role PdcRole

  # Inbound trusts of the forest
  %(prog)s get-trust -d corp.local --context Forest --direction Inbound

  # Create a protected OU (dry run)
  %(prog)s new-object -n Banking -t organizationalUnit --protect --what-if
        """
    )
    parser.add_argument("--version", action="version", version=f"dstools {__version__}")
    commands = parser.add_subparsers(dest="command", required=True)

    dc = commands.add_parser("get-dc", parents=[common], help="Locate domain controllers")
    dc_mode = dc.add_argument_group("Selection")
    dc_mode.add_argument("--identity", help="A specific controller (IP, short name or FQDN)")
    dc_mode.add_argument("--role", help="FSMO role owner (PdcRole, RidRole, InfrastructureRole, "
                                        "SchemaRoleOwner, NamingRoleOwner)")
    dc_mode.add_argument("--all", action="store_true", help="Every controller of the domain")
    dc_mode.add_argument("--forest", action="store_true", help="With --all: every controller in the forest")
    dc_disc = dc.add_argument_group("Discovery")
    dc_disc.add_argument("--site", help="Limit to one site")
    dc_disc.add_argument("--writable", action="store_true", help="Require a writable controller")
    dc_disc.add_argument("--avoid-self", action="store_true", help="Never return the local computer")
    dc_disc.add_argument("--force-rediscover", action="store_true", help="Ignore any cached controller")
    dc_disc.add_argument("--service", help="Required services: KDC, TimeService (comma-separated)")

    domain = commands.add_parser("get-domain", parents=[common], help="Resolve a domain")
    domain.add_argument("--current", choices=["CurrentUser", "LocalMachine"], help="Use the current domain")

    forest = commands.add_parser("get-forest", parents=[common], help="Resolve a forest")
    forest.add_argument("--current", choices=["CurrentUser", "LocalMachine"], help="Use the current forest")

    trust = commands.add_parser("get-trust", parents=[common], help="List trust relationships")
    trust.add_argument("--context", default="Domain", help="Domain or Forest (default: Domain)")
    trust.add_argument("--target", help="Only the trust with this partner")
    trust.add_argument("--type", dest="trust_type", action="append",
                       help="Trust type filter (repeatable): CrossLink, External, Forest, "
                            "Kerberos, ParentChild, TreeRoot, Unknown")
    trust.add_argument("--direction", help="Inbound, Outbound or Bidirectional")

    site = commands.add_parser("get-site", parents=[common], help="Resolve replication sites")
    site.add_argument("--name", help="Site name (default: the local computer's site)")
    site.add_argument("--forest-name", help="Every site of this forest")
    site.add_argument("--by-domain", action="store_true", help="Every site containing --domain")

    get_object = commands.add_parser("get-object", parents=[common], help="Read one directory object")
    get_object.add_argument("identity", help="Distinguished name, or a name relative to the domain root")

    search = commands.add_parser("search", parents=[common], help="Search the directory")
    search.add_argument("-f", "--filter", default="(objectClass=*)", help="LDAP filter")
    search.add_argument("--root", help="Search root DN (default: defaultNamingContext)")
    search.add_argument("--scope", default="Subtree", help="Base, OneLevel or Subtree")
    search.add_argument("--page-size", type=int, default=0, help="Paged search page size (0 = no paging)")
    search.add_argument("--size-limit", type=int, default=0, help="Maximum entries (0 = server limit)")
    search.add_argument("--find-one", action="store_true", help="Return at most one entry")
    search.add_argument("--attribute", action="append", dest="attributes", help="Attribute to return (repeatable)")

    new = commands.add_parser("new-object", parents=[common], help="Create a directory object")
    new.add_argument("-n", "--name", required=True, help="Object name (CN or OU value)")
    new.add_argument("-t", "--type", dest="object_type", required=True, help="objectClass")
    new.add_argument("--path", help="Parent DN (default: the domain root)")
    new.add_argument("--description", help="description attribute")
    new.add_argument("--display-name", help="displayName attribute")
    new.add_argument("--attribute", action="append", default=[], metavar="NAME=VALUE",
                     help="Extra attribute (repeatable)")
    new.add_argument("--protect", action="store_true", help="Protect from accidental deletion")
    new.add_argument("--what-if", action="store_true", help="Report what would be created, change nothing")

    acl = commands.add_parser("add-access-rule", parents=[common], help="Add an ACE to an object")
    acl.add_argument("distinguished_name", help="Target object DN")
    acl.add_argument("--identity", required=True, help="Principal the rule applies to")
    acl.add_argument("--rights", default="ReadProperty,GenericExecute", help="Comma-separated rights")
    acl.add_argument("--type", dest="access_type", default="Allow", help="Allow or Deny")
    acl.add_argument("--inheritance", default="None",
                     help="None, All, Descendents, SelfAndChildren or Children")
    acl.add_argument("--object-type", help="Schema class name the rule applies to (All = every class)")
    acl.add_argument("--inherited-object-type", help="Schema class name inheriting the rule")

    commands.add_parser("rootdse", parents=[common], help="Read a server's RootDSE")

    return parser


def _parse_attributes(pairs: list) -> dict:
    attributes = {}
    for pair in pairs:
        name, sep, value = pair.partition("=")
        if not sep or not name.strip():
            raise ValueError(f"Attribute must be NAME=VALUE: {pair}")
        attributes.setdefault(name.strip(), []).append(value)
    return {k: v[0] if len(v) == 1 else v for k, v in attributes.items()}


def _controller_request(args):
    if args.forest and not args.all:
        raise ValueError("--forest only applies together with --all")
    if args.identity:
        return ByIdentity(args.identity)
    if args.role:
        return RoleOwner(FsmoRole.from_string(args.role), args.domain, args.server)
    if args.all:
        if args.forest:
            return FindAllInForest(args.domain)
        return FindAll(args.domain, args.site)
    return FindOne(
        domain_name=args.domain,
        site_name=args.site,
        avoid_self=args.avoid_self,
        force_rediscover=args.force_rediscover,
        writable=args.writable,
        services=parse_service_requirements(args.service),
    )


def run_command(tools: DirectoryTools, args):
    """Dispatch one parsed command and return its JSON-ready result."""
    credential = None
    if args.username:
        credential = Credential.parse(args.username, args.password or os.environ.get("DSTOOLS_PASSWORD", ""))

    if args.command == "get-dc":
        return tools.get_domain_controller(_controller_request(args), credential)
    if args.command == "get-domain":
        return tools.get_domain(args.domain, args.current and CurrentContext.from_string(args.current),
                                args.server, credential)
    if args.command == "get-forest":
        return tools.get_forest(args.domain, args.current and CurrentContext.from_string(args.current),
                                args.server, credential)
    if args.command == "get-trust":
        return tools.get_trusts(
            args.domain, ContextType.from_string(args.context), args.target, args.trust_type,
            TrustDirection.from_string(args.direction) if args.direction else None, credential
        )
    if args.command == "get-site":
        if args.forest_name:
            return tools.get_sites(SitesByForestName(args.forest_name), credential)
        if args.by_domain:
            if not args.domain:
                raise ValueError("--by-domain needs --domain")
            return tools.get_sites(SitesByDomainName(args.domain), credential)
        return tools.get_sites(SiteByIdentity(args.name, args.server), credential)
    if args.command == "get-object":
        return tools.get_object(args.identity, args.server, credential)
    if args.command == "search":
        return tools.search(
            args.filter, args.page_size, args.size_limit, args.root,
            SearchScope.from_string(args.scope), args.find_one, args.server, credential, args.attributes
        )
    if args.command == "new-object":
        dn = tools.new_object(
            args.name, args.object_type, args.path, args.description, args.display_name,
            _parse_attributes(args.attribute), args.protect, args.server, credential, args.what_if
        )
        return {"distinguished_name": dn, "what_if": args.what_if}
    if args.command == "add-access-rule":
        rule = tools.add_access_rule(
            args.distinguished_name, args.identity,
            ActiveDirectoryRights.parse(args.rights),
            AccessControlType.from_string(args.access_type),
            InheritanceType.from_string(args.inheritance),
            args.object_type, args.inherited_object_type, args.server, credential
        )
        return {
            "distinguished_name": args.distinguished_name,
            "identity": rule.identity,
            "sid": rule.sid,
            "rights": args.rights,
            "access_type": rule.access_type.value,
            "inheritance": rule.inheritance.value,
            "object_type": str(rule.object_type),
            "inherited_object_type": str(rule.inherited_object_type),
        }
    if args.command == "rootdse":
        return tools.read_root_dse(args.server, credential)
    raise ValueError(f"Unknown command: {args.command}")


def main(argv=None):
    """Main CLI entry point."""
    parser = build_parser()
    args = parser.parse_args(argv)

    config = DSConfig(
        ldap=LDAPConfig(use_ssl=args.ssl, authentication=args.auth),
        locator=LocatorConfig(nameservers=args.nameserver),
        verbose=args.verbose,
        debug=args.debug,
    )
    tools = DirectoryTools(config=config, verbose=args.verbose)

    try:
        result = run_command(tools, args)
    except DirectoryError as e:
        print(f"[!] {e.kind.value}: {e.message}")
        if config.debug:
            print(f"    at {e.path}" + (f" [{e.target}]" if e.target else ""))
            if e.cause is not None:
                print(f"    cause: {type(e.cause).__name__}: {e.cause}")
        return 1
    except ValueError as e:
        print(f"[!] {ErrorKind.INVALID_ARGUMENT.value}: {e}")
        return 1

    print(json.dumps(_to_json(result), indent=2, default=str))
    return 0


if __name__ == "__main__":
    sys.exit(main())
