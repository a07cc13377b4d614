# @even rygh
"""
Tests for the core integrity checker and its HTTP manifest source.
"""

import hashlib

import httpx
import pytest

from exceptions import ExternalServiceError
from integrity_checker import HttpManifestSource, IntegrityChecker, detect_platform_version
from models import IssueType, Severity

from conftest import StaticManifestSource, write

URL = "https://checksums.example/core?version={version}"


def _md5(data: bytes) -> str:
    return hashlib.md5(data).hexdigest()


def _source(handler) -> HttpManifestSource:
    return HttpManifestSource(URL, timeout=30.0, transport=httpx.MockTransport(handler))


class TestHttpManifestSource:
    def test_fetch_flat_manifest(self):
        def handler(request):
            assert request.url.params["version"] == "6.4.2"
            return httpx.Response(200, json={"checksums": {"index.php": "abc"}})

        assert _source(handler).fetch("6.4.2") == {"index.php": "abc"}

    def test_fetch_nested_manifest(self):
        def handler(request):
            return httpx.Response(200, json={"checksums": {"6.4.2": {"index.php": "abc"}}})

        assert _source(handler).fetch("6.4.2") == {"index.php": "abc"}

    def test_timeout_raises_external_service_error(self):
        def handler(request):
            raise httpx.ReadTimeout("timed out", request=request)

        with pytest.raises(ExternalServiceError):
            _source(handler).fetch("6.4.2")

    def test_server_error_raises(self):
        with pytest.raises(ExternalServiceError):
            _source(lambda request: httpx.Response(503)).fetch("6.4.2")

    def test_unknown_version_raises(self):
        with pytest.raises(ExternalServiceError):
            _source(lambda request: httpx.Response(200, json={"checksums": False})).fetch("0.0")


class TestIntegrityChecker:
    def test_matching_files_produce_nothing(self, site):
        data = (site / "index.php").read_bytes()
        checker = IntegrityChecker(site, StaticManifestSource({"index.php": _md5(data)}))
        assert checker.check_integrity("6.4.2") == []

    def test_one_byte_change_is_modified(self, site):
        original = (site / "index.php").read_bytes()
        checker = IntegrityChecker(site, StaticManifestSource({"index.php": _md5(original)}))
        write(site / "index.php", original[:-1] + b"X")

        findings = checker.check_integrity("6.4.2")

        assert len(findings) == 1
        assert findings[0].issue_type == IssueType.MODIFIED_CORE_FILE
        assert findings[0].severity == Severity.HIGH

    def test_missing_file(self, site):
        checker = IntegrityChecker(site, StaticManifestSource({"wp-login.php": "0" * 32}))
        findings = checker.check_integrity("6.4.2")
        assert [(f.issue_type, f.severity) for f in findings] == [(IssueType.MISSING_CORE_FILE, Severity.MEDIUM)]

    def test_unreachable_manifest_skips_check(self, site):
        checker = IntegrityChecker(site, StaticManifestSource(error=True))
        assert checker.check_integrity("6.4.2") == []

    def test_unknown_version_skips_check(self, site):
        source = StaticManifestSource({"index.php": "0" * 32})
        assert IntegrityChecker(site, source).check_integrity(None) == []
        assert source.calls == 0


def test_detect_platform_version(site):
    assert detect_platform_version(site, "wp-includes/version.php") == "6.4.2"
    assert detect_platform_version(site, "missing.php") is None
