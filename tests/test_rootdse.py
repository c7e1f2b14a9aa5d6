"""
Tests for RootDSE reading and parsing.
"""

from datetime import datetime, timezone

import pytest

from dstools.core.rootdse import parse_current_time
from dstools.errors import DirectoryError, ErrorKind
from dstools.model.schemas import DomainMode, ForestMode


class TestParseCurrentTime:

    def test_fraction_and_zone_dropped(self):
        parsed = parse_current_time("20150101120000.0Z")
        assert parsed == datetime(2015, 1, 1, 12, 0, 0, tzinfo=timezone.utc)
        assert parsed.tzinfo is not None

    def test_without_fraction(self):
        assert parse_current_time("20240229235959") == datetime(2024, 2, 29, 23, 59, 59, tzinfo=timezone.utc)

    @pytest.mark.parametrize("value", ["", None, "yesterday", "2015-01-01T12:00:00Z", "20151301120000.0Z"])
    def test_malformed(self, value):
        with pytest.raises(DirectoryError) as exc:
            parse_current_time(value)
        assert exc.value.kind is ErrorKind.MALFORMED_RESPONSE


class TestRootDSEReader:

    def test_read_default_server(self, tools):
        root = tools.read_root_dse()
        assert root.default_naming_context == "DC=contoso,DC=com"
        assert root.configuration_naming_context == "CN=Configuration,DC=contoso,DC=com"
        assert root.schema_naming_context == "CN=Schema,CN=Configuration,DC=contoso,DC=com"
        assert root.root_domain_naming_context == "DC=contoso,DC=com"
        assert root.domain_functionality is DomainMode.WINDOWS_2016
        assert root.forest_functionality is ForestMode.WINDOWS_2016
        assert root.current_time == datetime(2015, 1, 1, 12, tzinfo=timezone.utc)
        assert root.dns_host_name == "dc01.contoso.com"
        assert root.service_name == "contoso.com:dc01$@CONTOSO.COM"
        assert root.supported_ldap_versions == [3, 2]
        assert root.supported_sasl_mechanisms == ["GSSAPI", "GSS-SPNEGO"]

    def test_read_named_server(self, tools):
        root = tools.read_root_dse("emea-dc01.emea.contoso.com")
        assert root.default_naming_context == "DC=emea,DC=contoso,DC=com"
        assert root.dns_host_name == "emea-dc01.emea.contoso.com"

    def test_fresh_on_every_call(self, tools, fake_service):
        first = tools.read_root_dse("dc01.contoso.com")
        fake_service.root_dse_overrides["currentTime"] = ["20150101120500.0Z"]
        second = tools.read_root_dse("dc01.contoso.com")
        assert (second.current_time - first.current_time).total_seconds() == 300

    def test_unparsable_time(self, tools, fake_service):
        fake_service.root_dse_overrides["currentTime"] = ["not-a-time"]
        with pytest.raises(DirectoryError) as exc:
            tools.read_root_dse()
        assert exc.value.kind is ErrorKind.MALFORMED_RESPONSE
        assert exc.value.path == "read-rootdse/parse-current-time"

    @pytest.mark.parametrize("attribute", ["domainFunctionality", "forestFunctionality"])
    def test_unknown_functional_level(self, tools, fake_service, attribute):
        fake_service.root_dse_overrides[attribute] = ["42"]
        with pytest.raises(DirectoryError) as exc:
            tools.read_root_dse()
        assert exc.value.kind is ErrorKind.MALFORMED_RESPONSE
        assert attribute in exc.value.message

    def test_unreachable_server(self, tools):
        with pytest.raises(DirectoryError) as exc:
            tools.read_root_dse("gone.contoso.com")
        assert exc.value.kind is ErrorKind.UNREACHABLE
        assert exc.value.path == "read-rootdse/bind-entry"

    def test_to_dict(self, tools):
        data = tools.read_root_dse().to_dict()
        assert data["domainFunctionality"] == "Windows2016Domain"
        assert data["forestFunctionality"] == "Windows2016Forest"
        assert datetime.fromisoformat(data["currentTime"]) == datetime(2015, 1, 1, 12, tzinfo=timezone.utc)
