"""
Tests for DirectoryObjectAccess: get, search and create.
"""

from unittest.mock import patch

import pytest

from dstools.core.objects import build_rdn
from dstools.directory.security import ACCESS_DENIED_ACE_TYPE
from dstools.errors import DirectoryError, ErrorKind
from dstools.model.schemas import SearchScope


ALICE_DN = "CN=Alice,CN=Users,DC=contoso,DC=com"


class TestGetObject:

    def test_absolute_dn(self, tools):
        entry = tools.get_object(ALICE_DN)
        assert entry.distinguished_name == ALICE_DN
        assert entry.server == "dc01.contoso.com"

    def test_relative_to_domain_root(self, tools):
        entry = tools.get_object("CN=Alice,CN=Users")
        assert entry.distinguished_name == ALICE_DN
        assert entry.get("displayName") == "Alice Smith"

    def test_explicit_server(self, tools, fake_service):
        tools.get_object("OU=Finance,DC=contoso,DC=com", server="dc02.contoso.com")
        assert fake_service.binds[-1][0] == "LDAP://dc02.contoso.com/OU=Finance,DC=contoso,DC=com"

    def test_missing_object(self, tools):
        with pytest.raises(DirectoryError) as exc:
            tools.get_object("CN=Nobody,CN=Users")
        assert exc.value.kind is ErrorKind.UNREACHABLE

    def test_empty_identity(self, tools):
        with pytest.raises(DirectoryError) as exc:
            tools.get_object(" ")
        assert exc.value.kind is ErrorKind.INVALID_ARGUMENT


class TestSearch:

    def test_default_root_is_default_naming_context(self, tools, fake_service):
        results = tools.search("(sAMAccountName=alice)")
        assert [e.distinguished_name for e in results] == [ALICE_DN]
        assert fake_service.searches[-1][0] == "LDAP://dc01.contoso.com/DC=contoso,DC=com"

    def test_no_match_is_empty_list(self, tools):
        assert tools.search("(sAMAccountName=mallory)") == []

    def test_find_one(self, tools):
        entry = tools.search("(objectClass=user)", find_one=True)
        assert entry.distinguished_name == ALICE_DN

    def test_find_one_without_match(self, tools):
        assert tools.search("(sAMAccountName=mallory)", find_one=True) is None

    def test_one_level(self, tools):
        results = tools.search(search_root="CN=Users,DC=contoso,DC=com", scope=SearchScope.ONE_LEVEL)
        assert sorted(e.get("sAMAccountName") for e in results) == ["alice", "bob"]

    def test_base_scope_by_name(self, tools):
        results = tools.search(search_root="OU=Finance,DC=contoso,DC=com", scope="Base")
        assert [e.distinguished_name for e in results] == ["OU=Finance,DC=contoso,DC=com"]

    def test_full_path_root(self, tools, fake_service):
        tools.search(search_root="LDAP://dc02.contoso.com/CN=Users,DC=contoso,DC=com")
        assert fake_service.searches[-1][0] == "LDAP://dc02.contoso.com/CN=Users,DC=contoso,DC=com"

    def test_serverless_root_gets_a_server(self, tools, fake_service):
        tools.search(search_root="LDAP://CN=Users,DC=contoso,DC=com")
        assert fake_service.searches[-1][0] == "LDAP://dc01.contoso.com/CN=Users,DC=contoso,DC=com"

    def test_paging_and_limit_are_passed(self, tools, fake_service):
        results = tools.search("(objectClass=user)", page_size=500, size_limit=1)
        assert len(results) == 1
        _, _, page_size, size_limit, scope, find_one = fake_service.searches[-1]
        assert (page_size, size_limit, scope, find_one) == (500, 1, SearchScope.SUBTREE, False)

    def test_negative_size(self, tools):
        with pytest.raises(DirectoryError) as exc:
            tools.search(page_size=-1)
        assert exc.value.kind is ErrorKind.INVALID_ARGUMENT

    def test_bad_scope(self, tools):
        with pytest.raises(DirectoryError) as exc:
            tools.search(scope="Sideways")
        assert exc.value.kind is ErrorKind.INVALID_ARGUMENT

    def test_bad_filter(self, tools):
        with pytest.raises(DirectoryError) as exc:
            tools.search("sAMAccountName=alice")
        assert exc.value.kind is ErrorKind.DIRECTORY_OPERATION_FAILED
        assert exc.value.operation == "search"


class TestBuildRdn:

    @pytest.mark.parametrize("object_class,expected", [
        ("organizationalUnit", "OU=Sales"),
        ("OrganizationalUnit", "OU=Sales"),
        ("user", "CN=Sales"),
        ("group", "CN=Sales"),
        ("container", "CN=Sales"),
    ])
    def test_prefix(self, object_class, expected):
        assert build_rdn("Sales", object_class) == expected

    @pytest.mark.parametrize("name,expected", [
        ("X,OU=Finance", r"CN=X\,OU\=Finance"),
        ("R+D", r"CN=R\+D"),
        ("Smith, John", r"CN=Smith\, John"),
    ])
    def test_separators_are_escaped(self, name, expected):
        assert build_rdn(name, "container") == expected


class TestCreateObject:

    def test_create_user(self, tools, fake_service):
        dn = tools.new_object(
            "Carol", "user", path="CN=Users,DC=contoso,DC=com",
            description="Payroll", display_name="Carol Jones",
            other_attributes={"sAMAccountName": "carol"},
        )
        assert dn == "CN=Carol,CN=Users,DC=contoso,DC=com"
        assert fake_service.commits == [dn]
        stored = fake_service.entries[dn.lower()][1]
        assert stored["description"] == ["Payroll"]
        assert stored["displayName"] == ["Carol Jones"]
        assert stored["sAMAccountName"] == ["carol"]

    def test_organizational_unit_under_domain_root(self, tools, fake_service):
        dn = tools.new_object("Sales", "organizationalUnit")
        assert dn == "OU=Sales,DC=contoso,DC=com"
        assert "ou=sales,dc=contoso,dc=com" in fake_service.entries

    def test_absent_attributes_not_written(self, tools, fake_service):
        dn = tools.new_object("Archive", "container")
        assert set(fake_service.entries[dn.lower()][1]) == {"objectClass"}

    def test_what_if_commits_nothing(self, tools, fake_service, messages):
        before = dict(fake_service.entries)
        dn = tools.new_object("Sales", "organizationalUnit", protected_from_accidental_deletion=True, what_if=True)
        assert dn == "OU=Sales,DC=contoso,DC=com"
        assert fake_service.commits == []
        assert fake_service.entries == before
        assert fake_service.descriptors == {}
        assert any(m.startswith("[WhatIf]") for m in messages)

    def test_missing_mandatory_attributes(self, tools, fake_service):
        with pytest.raises(DirectoryError) as exc:
            tools.new_object("Dave", "user", path="CN=Users,DC=contoso,DC=com")
        assert exc.value.kind is ErrorKind.MISSING_MANDATORY_ATTRIBUTES
        assert exc.value.target == "CN=Dave,CN=Users,DC=contoso,DC=com"
        assert fake_service.commits == []

    def test_missing_parent(self, tools):
        with pytest.raises(DirectoryError) as exc:
            tools.new_object("Sales", "organizationalUnit", path="OU=Gone,DC=contoso,DC=com")
        assert exc.value.kind is ErrorKind.UNREACHABLE

    def test_protected_from_accidental_deletion(self, tools, fake_service):
        dn = tools.new_object("Sales", "organizationalUnit", protected_from_accidental_deletion=True)
        descriptor = fake_service.descriptors[dn.lower()]
        ace = descriptor.dacl[0]
        assert ace.ace_type == ACCESS_DENIED_ACE_TYPE
        assert ace.sid == "S-1-1-0"
        assert ace.access_mask == 0x00010040
        assert fake_service.commits == [dn, dn]

    def test_unprotected_leaves_acl_alone(self, tools, fake_service):
        tools.new_object("Sales", "organizationalUnit")
        assert fake_service.descriptors == {}

    @pytest.mark.parametrize("name,object_type", [("", "user"), ("Eve", ""), ("Eve", None)])
    def test_name_and_type_required(self, tools, name, object_type):
        with pytest.raises(DirectoryError) as exc:
            tools.new_object(name, object_type)
        assert exc.value.kind is ErrorKind.INVALID_ARGUMENT

    def test_separators_in_name_stay_under_path(self, tools, fake_service):
        dn = tools.new_object("X,OU=Finance", "container", path="CN=Users,DC=contoso,DC=com")
        assert dn == r"CN=X\,OU\=Finance,CN=Users,DC=contoso,DC=com"
        assert fake_service.commits == [dn]
        assert not any(key.startswith("cn=x,ou=finance") for key in fake_service.entries)

    def test_what_if_twice_leaves_directory_unchanged(self, tools, fake_service):
        before = {key: (dn, dict(attrs)) for key, (dn, attrs) in fake_service.entries.items()}
        first = tools.new_object("Sales", "organizationalUnit", protected_from_accidental_deletion=True, what_if=True)
        second = tools.new_object("Sales", "organizationalUnit", protected_from_accidental_deletion=True, what_if=True)
        assert first == second == "OU=Sales,DC=contoso,DC=com"
        assert fake_service.entries == before
        assert fake_service.commits == []
        assert fake_service.descriptors == {}

    def test_failed_protection_keeps_created_object(self, tools, fake_service):
        with patch.object(fake_service, "get_access_control", side_effect=RuntimeError("descriptor read failed")):
            with pytest.raises(DirectoryError) as exc:
                tools.new_object("Sales", "organizationalUnit", protected_from_accidental_deletion=True)
        assert exc.value.kind is ErrorKind.DIRECTORY_OPERATION_FAILED
        assert exc.value.path.startswith("create-object/protect-object/add-access-rule")
        assert "ou=sales,dc=contoso,dc=com" in fake_service.entries
        assert fake_service.commits == ["OU=Sales,DC=contoso,DC=com"]
        assert fake_service.descriptors == {}
