# @even rygh
"""
Tests for QuarantineManager and issue isolation through SecurityService.
"""

import stat
from datetime import datetime, timezone
from pathlib import Path

import pytest

from exceptions import QuarantineError
from models import CONTEXT_UPLOADS, IssueType, ScanMode, Severity
from quarantine import QUARANTINE_MARKER, QuarantineManager

from conftest import write


@pytest.fixture
def quarantine(tmp_path, clock) -> QuarantineManager:
    return QuarantineManager(tmp_path / "isolated", clock=clock)


class TestQuarantineManager:
    def test_moves_file_and_protects_directory(self, tmp_path, quarantine):
        source = write(tmp_path / "uploads" / "shell.php", "<?php system($_GET['c']);")

        target = quarantine.quarantine(source)

        assert not source.exists()
        assert target.parent == quarantine.quarantine_dir
        assert QUARANTINE_MARKER in target.name
        assert target.read_text() == "<?php system($_GET['c']);"
        assert (quarantine.quarantine_dir / ".htaccess").read_text().startswith("Order deny,allow")
        assert (quarantine.quarantine_dir / "index.php").exists()
        assert not target.stat().st_mode & stat.S_IWUSR

    def test_same_name_same_second_gets_unique_target(self, tmp_path, quarantine):
        first = quarantine.quarantine(write(tmp_path / "a" / "x.php", "1"))
        second = quarantine.quarantine(write(tmp_path / "b" / "x.php", "2"))

        assert first != second
        assert sorted(p.name for p in quarantine.list_quarantined()) == sorted([first.name, second.name])

    def test_missing_source_raises(self, tmp_path, quarantine):
        with pytest.raises(QuarantineError):
            quarantine.quarantine(tmp_path / "gone.php")

    def test_directory_source_raises(self, tmp_path, quarantine):
        (tmp_path / "folder").mkdir()
        with pytest.raises(QuarantineError):
            quarantine.quarantine(tmp_path / "folder")


class TestIsolateIssue:
    def _issue_for(self, repository, path: Path):
        scan = repository.insert_scan(ScanMode.HEURISTIC, datetime.now(timezone.utc))
        return repository.insert_issue(
            scan_id=scan.id,
            file_path=str(path),
            issue_type=IssueType.SUSPICIOUS_LOCATION,
            severity=Severity.HIGH,
            description="Executable .php file found in uploads directory",
            recommendation="Remove",
            context=CONTEXT_UPLOADS,
        )

    def test_isolate_moves_file_and_marks_issue(self, components, repository, settings):
        path = write(settings.uploads_root / "x.php", "<?php eval($_POST['a']);")
        issue = self._issue_for(repository, path)

        isolated = components.service.isolate_issue(issue.id)

        assert isolated.isolated is True
        assert Path(isolated.file_path).parent == settings.quarantine_root
        assert not path.exists()

    def test_isolate_is_idempotent(self, components, repository, settings):
        path = write(settings.uploads_root / "x.php", "<?php")
        issue = self._issue_for(repository, path)

        first = components.service.isolate_issue(issue.id)
        second = components.service.isolate_issue(issue.id)

        assert first.file_path == second.file_path
        assert len(components.quarantine.list_quarantined()) == 1

    def test_failed_move_leaves_issue_unisolated(self, components, repository, settings):
        issue = self._issue_for(repository, settings.uploads_root / "already-deleted.php")

        with pytest.raises(QuarantineError):
            components.service.isolate_issue(issue.id)

        assert repository.get_issue(issue.id).isolated is False

    def test_resolve_is_idempotent(self, components, repository, settings):
        issue = self._issue_for(repository, settings.uploads_root / "x.php")
        components.service.resolve_issue(issue.id)
        assert components.service.resolve_issue(issue.id).resolved is True
