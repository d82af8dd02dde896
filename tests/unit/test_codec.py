"""Unit tests for credvault.codec.

Covers parsing of Git's key=value credential stream (terminator handling,
required keys, ignored keys, url decomposition) and stable serialization.
"""

from __future__ import annotations

import io

import pytest

from credvault.codec import (
    format_record,
    parse_lines,
    parse_record,
    read_record,
)
from credvault.errors import MalformedInputError
from credvault.models import CredentialRecord

STORE_INPUT = (
    "protocol=https\n"
    "host=github.com\n"
    "username=PersonalAccessToken\n"
    "password=ghp_abc123\n"
    "\n"
)


# ============================================================================
# Parsing
# ============================================================================


class TestParse:
    """Tests for parse_record() / read_record()."""

    def test_parses_full_record(self):
        record = parse_record(STORE_INPUT, "store")
        assert record.protocol == "https"
        assert record.host == "github.com"
        assert record.username == "PersonalAccessToken"
        assert record.secret == "ghp_abc123"
        assert record.path is None

    def test_partial_record_for_get(self):
        record = parse_record("protocol=https\nhost=github.com\n\n", "get")
        assert record.secret is None
        assert record.username is None

    def test_value_may_contain_equals(self):
        record = parse_record("protocol=https\nhost=h\npassword=a=b==\n\n", "store")
        assert record.secret == "a=b=="

    def test_crlf_line_endings_accepted(self):
        record = parse_record("protocol=https\r\nhost=github.com\r\n\r\n", "get")
        assert record.host == "github.com"

    def test_unrecognized_keys_ignored(self):
        text = (
            "capability[]=authtype\n"
            "protocol=https\n"
            "host=github.com\n"
            "wwwauth[]=Basic realm=\"GitHub\"\n"
            "\n"
        )
        record = parse_record(text, "get")
        assert record.host == "github.com"

    def test_read_stops_at_blank_line(self):
        stream = io.StringIO("protocol=https\nhost=github.com\n\ntrailing=data\n")
        read_record(stream, "get")
        assert stream.read() == "trailing=data\n"

    def test_password_expiry_parsed(self):
        record = parse_record(STORE_INPUT[:-1] + "password_expiry_utc=1700000000\n\n", "store")
        assert record.password_expiry_utc == 1700000000

    def test_unparseable_expiry_ignored(self):
        record = parse_record(STORE_INPUT[:-1] + "password_expiry_utc=soon\n\n", "store")
        assert record.password_expiry_utc is None


class TestUrlDecomposition:
    """The url key fills in fields that were not given explicitly."""

    def test_url_only(self):
        record = parse_record("url=https://octocat@github.com/org/repo.git\n\n", "get")
        assert record.protocol == "https"
        assert record.host == "github.com"
        assert record.path == "org/repo.git"
        assert record.username == "octocat"

    def test_url_with_port(self):
        record = parse_record("url=https://git.example.com:8443\n\n", "get")
        assert record.host == "git.example.com:8443"
        assert record.path is None

    def test_explicit_field_wins(self):
        record = parse_record("host=override.example\nurl=https://github.com/x\n\n", "get")
        assert record.host == "override.example"
        assert record.protocol == "https"


class TestMalformed:
    """Inputs that must raise MalformedInputError."""

    def test_missing_terminator(self):
        with pytest.raises(MalformedInputError, match="terminating blank line"):
            parse_record("protocol=https\nhost=github.com\n", "get")

    def test_empty_stream(self):
        with pytest.raises(MalformedInputError):
            parse_record("", "get")

    def test_line_without_equals(self):
        with pytest.raises(MalformedInputError, match="line 2"):
            parse_record("protocol=https\nghp_leakedtoken\nhost=h\n\n", "get")

    def test_diagnostic_does_not_echo_line(self):
        with pytest.raises(MalformedInputError) as exc_info:
            parse_record("protocol=https\nghp_leakedtoken\n\n", "get")
        assert "ghp_leakedtoken" not in str(exc_info.value)

    def test_empty_key(self):
        with pytest.raises(MalformedInputError, match="empty key"):
            parse_record("=value\n\n", "get")

    def test_nul_byte(self):
        with pytest.raises(MalformedInputError, match="NUL"):
            parse_record("protocol=https\nhost=git\0hub.com\n\n", "get")

    @pytest.mark.parametrize("operation", ["get", "store", "erase"])
    def test_missing_host(self, operation):
        with pytest.raises(MalformedInputError, match="host"):
            parse_record("protocol=https\npassword=x\n\n", operation)

    def test_missing_protocol(self):
        with pytest.raises(MalformedInputError, match="protocol"):
            parse_record("host=github.com\n\n", "get")

    def test_store_requires_password(self):
        with pytest.raises(MalformedInputError, match="password"):
            parse_record("protocol=https\nhost=github.com\nusername=u\n\n", "store")

    def test_store_rejects_empty_password(self):
        with pytest.raises(MalformedInputError, match="password"):
            parse_record("protocol=https\nhost=github.com\npassword=\n\n", "store")

    def test_parse_lines_reports_no_terminator_after_content(self):
        with pytest.raises(MalformedInputError):
            parse_lines(["protocol=https\n", "host=github.com"])


# ============================================================================
# Serialization
# ============================================================================


class TestFormat:
    """Tests for format_record()."""

    def test_stable_order(self):
        record = CredentialRecord(
            password="ghp_abc123",
            username="PersonalAccessToken",
            host="github.com",
            protocol="https",
        )
        assert format_record(record) == STORE_INPUT

    def test_includes_path_and_expiry(self):
        record = CredentialRecord(
            protocol="https",
            host="github.com",
            path="org/repo.git",
            password="tok",
            password_expiry_utc=1700000000,
        )
        assert format_record(record) == (
            "protocol=https\n"
            "host=github.com\n"
            "path=org/repo.git\n"
            "password=tok\n"
            "password_expiry_utc=1700000000\n"
            "\n"
        )

    def test_none_is_empty(self):
        assert format_record(None) == ""

    def test_empty_record_is_empty(self):
        assert format_record(CredentialRecord()) == ""

    def test_url_not_echoed(self):
        record = CredentialRecord(url="https://github.com", password="tok")
        text = format_record(record)
        assert "url=" not in text
        assert text.startswith("protocol=https\nhost=github.com\n")

    def test_parse_of_formatted_output(self):
        record = parse_record(STORE_INPUT, "store")
        assert parse_record(format_record(record), "store") == record
