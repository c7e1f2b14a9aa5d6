"""
Tests for ContextResolver, EntryGateway and IdentityNormalizer.
"""

from unittest.mock import patch

import pytest

from dstools.core.context import ContextResolver, credential_parts
from dstools.directory.service import DirectoryServiceError
from dstools.errors import DirectoryError, ErrorKind
from dstools.model.schemas import ContextType, Credential, DirectoryContext


class TestCredential:

    def test_parse_domain_qualified(self):
        cred = Credential.parse("CONTOSO\\alice", "pw")
        assert cred.domain == "CONTOSO"
        assert cred.username == "alice"
        assert cred.bind_principal == "CONTOSO\\alice"

    def test_empty_domain_uses_bare_account(self):
        cred = Credential.parse("\\alice", "pw")
        assert cred.domain is None
        assert cred.bind_principal == "alice"

    def test_upn_kept_whole(self):
        cred = Credential.parse("alice@contoso.com", "pw")
        assert cred.bind_principal == "alice@contoso.com"

    def test_password_not_in_repr(self):
        assert "s3cret" not in repr(Credential.parse("CONTOSO\\alice", "s3cret"))


class TestContextResolver:

    @pytest.mark.parametrize("context_type", list(ContextType))
    def test_resolve_is_deterministic(self, context_type):
        resolver = ContextResolver()
        cred = Credential.parse("CONTOSO\\admin", "pw")
        first = resolver.resolve(context_type, "contoso.com", cred)
        second = resolver.resolve(context_type, "contoso.com", cred)
        assert first == second
        assert first == DirectoryContext(context_type, "contoso.com", "CONTOSO\\admin", "pw")

    def test_empty_domain_credential_binds_bare_name(self):
        context = ContextResolver().resolve(ContextType.DOMAIN, "contoso.com", Credential("admin", "pw", ""))
        assert context.username == "admin"
        assert context.password == "pw"

    def test_no_credential(self):
        context = ContextResolver().resolve(ContextType.FOREST, "contoso.com")
        assert context.username is None
        assert context.password is None

    def test_type_by_name(self):
        context = ContextResolver().resolve("DirectoryServer", "dc01.contoso.com")
        assert context.context_type is ContextType.DIRECTORY_SERVER

    @pytest.mark.parametrize("name", ["", "   ", None])
    def test_empty_name_rejected(self, name):
        with pytest.raises(DirectoryError) as exc:
            ContextResolver().resolve(ContextType.DOMAIN, name)
        assert exc.value.kind is ErrorKind.INVALID_ARGUMENT

    def test_unknown_type_rejected(self):
        with pytest.raises(DirectoryError) as exc:
            ContextResolver().resolve("Galaxy", "contoso.com")
        assert exc.value.kind is ErrorKind.INVALID_ARGUMENT

    def test_credential_parts(self):
        assert credential_parts(None) == (None, None)
        assert credential_parts(Credential.parse("CONTOSO\\a", "b")) == ("CONTOSO\\a", "b")


class TestEntryGateway:

    def test_bind_existing_entry(self, tools):
        entry = tools.bind("LDAP://dc01.contoso.com/CN=Alice,CN=Users,DC=contoso,DC=com")
        assert entry.bound
        assert entry.get("samaccountname") == "alice"
        assert entry.server == "dc01.contoso.com"

    def test_missing_entry_is_unreachable(self, tools):
        with pytest.raises(DirectoryError) as exc:
            tools.bind("LDAP://dc01.contoso.com/CN=Nobody,DC=contoso,DC=com")
        assert exc.value.kind is ErrorKind.UNREACHABLE
        assert exc.value.target == "LDAP://dc01.contoso.com/CN=Nobody,DC=contoso,DC=com"

    def test_unknown_server_is_unreachable(self, tools):
        with pytest.raises(DirectoryError) as exc:
            tools.bind("LDAP://nowhere.contoso.com/DC=contoso,DC=com")
        assert exc.value.kind is ErrorKind.UNREACHABLE

    def test_transport_failure_keeps_message(self, tools, fake_service):
        with patch.object(fake_service, "bind_entry", side_effect=DirectoryServiceError("invalidCredentials")):
            with pytest.raises(DirectoryError) as exc:
                tools.bind("LDAP://dc01.contoso.com/DC=contoso,DC=com")
        assert exc.value.kind is ErrorKind.DIRECTORY_OPERATION_FAILED
        assert "invalidCredentials" in exc.value.message
        assert isinstance(exc.value.cause, DirectoryServiceError)

    def test_credential_is_passed_through(self, tools, fake_service):
        tools.bind("LDAP://dc01.contoso.com/DC=contoso,DC=com", Credential("admin", "pw", None))
        assert fake_service.binds[-1] == ("LDAP://dc01.contoso.com/DC=contoso,DC=com", "admin", "pw")


class TestIdentityNormalizer:

    def test_fqdn(self, tools):
        assert tools.normalize_identity("dc01.contoso.com") == "dc01.contoso.com"

    def test_short_name(self, tools):
        assert tools.normalize_identity("dc01") == "dc01.contoso.com"

    def test_cname(self, tools):
        assert tools.normalize_identity("ldap.contoso.com") == "dc01.contoso.com"

    def test_ip_literal_matches_hostname(self, tools):
        assert tools.normalize_identity("10.0.0.10") == tools.normalize_identity("dc01")

    @pytest.mark.parametrize("identity", ["dc01", "DC02", "10.0.1.10", "ldap.contoso.com"])
    def test_idempotent(self, tools, identity):
        once = tools.normalize_identity(identity)
        assert tools.normalize_identity(once) == once

    def test_unresolvable_name(self, tools):
        with pytest.raises(DirectoryError) as exc:
            tools.normalize_identity("ghost")
        assert exc.value.kind is ErrorKind.NAME_RESOLUTION_FAILED
        assert exc.value.target == "ghost"

    def test_reverse_failure_is_fatal(self, tools):
        with pytest.raises(DirectoryError) as exc:
            tools.normalize_identity("192.0.2.1")
        assert exc.value.kind is ErrorKind.NAME_RESOLUTION_FAILED

    def test_not_an_ip_is_not_an_error(self, tools, messages):
        tools.normalize_identity("dc02")
        assert any("not an IP address" in m for m in messages)
