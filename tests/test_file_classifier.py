# @even rygh
"""
Tests for FileClassifier - heuristic content and location rules.
"""

import base64
from pathlib import Path

import pytest

from file_classifier import FileClassifier, decode_base64_candidate, format_file_size
from models import CONTEXT_CORE, CONTEXT_UPLOADS, IssueType, Severity


@pytest.fixture
def classifier() -> FileClassifier:
    return FileClassifier(size_anomaly_bytes=1024)


def _types(findings):
    return [f.issue_type for f in findings]


class TestContentRules:
    def test_clean_file_has_no_findings(self, classifier):
        content = b"<?php\necho 'hello world';\n"
        assert classifier.check_content(Path("hello.php"), content) == []

    def test_eval_of_encoded_payload_in_uploads(self, classifier):
        payload = base64.b64encode(b"<?php system($_GET['cmd']); eval($_POST['x']); ?>").decode()
        content = f"<?php eval(base64_decode('{payload}')); ?>".encode()

        findings = classifier.classify(Path("x.php"), content, CONTEXT_UPLOADS)
        types = _types(findings)

        assert IssueType.SUSPICIOUS_CODE in types
        assert IssueType.DANGEROUS_FUNCTION in types
        assert IssueType.OBFUSCATED_CODE in types
        assert IssueType.SUSPICIOUS_LOCATION in types

        location = [f for f in findings if f.issue_type == IssueType.SUSPICIOUS_LOCATION][0]
        assert location.severity == Severity.HIGH
        obfuscated = [f for f in findings if f.issue_type == IssueType.OBFUSCATED_CODE]
        assert len(obfuscated) == 1
        assert obfuscated[0].severity == Severity.HIGH

    def test_one_finding_per_pattern_family(self, classifier):
        content = b"<?php eval($a); eval($b); eval($c);"
        families = [
            f.evidence["pattern_family"]
            for f in classifier.check_content(Path("a.php"), content)
            if f.issue_type == IssueType.SUSPICIOUS_CODE
        ]
        assert families == ["eval_call"]

    def test_exec_does_not_match_inside_shell_exec(self, classifier):
        findings = classifier.check_content(Path("a.php"), b"<?php shell_exec('ls');")
        functions = {f.evidence["function"] for f in findings if f.issue_type == IssueType.DANGEROUS_FUNCTION}
        assert functions == {"shell_exec"}

    def test_benign_base64_blob_is_not_obfuscated(self, classifier):
        blob = base64.b64encode(b"just an ordinary image caption that is long enough to count").decode()
        findings = classifier.check_content(Path("a.js"), f"var x = '{blob}';".encode())
        assert IssueType.OBFUSCATED_CODE not in _types(findings)

    def test_invalid_base64_is_ignored(self):
        assert decode_base64_candidate(b"!!!not-base64!!!") is None

    def test_size_anomaly_only_for_text_types(self, classifier):
        big = b"a" * 2048
        assert IssueType.SIZE_ANOMALY in _types(classifier.check_content(Path("big.js"), big))
        assert IssueType.SIZE_ANOMALY not in _types(classifier.check_content(Path("big.html"), big))

    def test_size_anomaly_uses_reported_size(self, classifier):
        findings = classifier.check_content(Path("big.css"), b"body{}", size=5000)
        anomaly = [f for f in findings if f.issue_type == IssueType.SIZE_ANOMALY]
        assert anomaly and anomaly[0].severity == Severity.LOW


class TestLocationRules:
    def test_php_outside_uploads_is_fine(self, classifier):
        assert classifier.check_location(Path("index.php"), CONTEXT_CORE) == []

    def test_random_hex_name(self, classifier):
        findings = classifier.check_location(Path("0123456789abcdef0123456789abcdef.php"), CONTEXT_CORE)
        assert _types(findings) == [IssueType.SUSPICIOUS_FILENAME]
        assert findings[0].severity == Severity.MEDIUM

    def test_random_name_with_non_executable_extension(self, classifier):
        assert classifier.check_location(Path("0123456789abcdef0123456789abcdef.jpg"), CONTEXT_CORE) == []

    def test_hidden_file(self, classifier):
        findings = classifier.check_location(Path(".backdoor"), CONTEXT_CORE)
        assert _types(findings) == [IssueType.HIDDEN_FILE]
        assert findings[0].severity == Severity.LOW

    def test_access_control_file_is_not_hidden(self, classifier):
        assert classifier.check_location(Path(".htaccess"), CONTEXT_CORE) == []


class TestScannable:
    @pytest.mark.parametrize("name,expected", [
        ("a.php", True),
        ("a.JS", True),
        (".htaccess", True),
        ("a.png", False),
        ("README", False),
    ])
    def test_is_scannable(self, classifier, name, expected):
        assert classifier.is_scannable(Path(name)) is expected


def test_format_file_size():
    assert format_file_size(0) == "0.0 B"
    assert format_file_size(2048) == "2.0 KB"
    assert format_file_size(3 * 1024 * 1024) == "3.0 MB"
