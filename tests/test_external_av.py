# @even rygh
"""
Tests for the external AV adapters. The engine is never actually invoked.
"""

import subprocess
from pathlib import Path
from unittest.mock import MagicMock, patch

import pytest

from exceptions import ExternalServiceError
from external_av import ClamAVAdapter, NullAVAdapter, parse_av_report

REPORT = """\
/site/wp-content/uploads/x.php: Php.Webshell.Generic FOUND
/site/index.php: OK

----------- SCAN SUMMARY -----------
Infected files: 1
"""


def _completed(returncode: int, stdout: str = "") -> subprocess.CompletedProcess:
    return subprocess.CompletedProcess(args=[], returncode=returncode, stdout=stdout, stderr="")


def test_parse_av_report():
    assert parse_av_report(REPORT) == [("/site/wp-content/uploads/x.php", "Php.Webshell.Generic")]


def test_null_adapter_finds_nothing(tmp_path):
    assert NullAVAdapter().scan(tmp_path) == []


class TestClamAVAdapter:
    @patch("external_av.shutil.which", return_value="/usr/bin/clam")
    def test_daemon_result_is_used(self, _which):
        runner = MagicMock(return_value=_completed(1, REPORT))
        adapter = ClamAVAdapter(timeout=5, runner=runner)

        detections = adapter.scan(Path("/site"))

        assert detections == [("/site/wp-content/uploads/x.php", "Php.Webshell.Generic")]
        command = runner.call_args.args[0]
        assert command[0] == "clamdscan"
        assert command[-1] == "/site"
        assert runner.call_args.kwargs["timeout"] == 5

    @patch("external_av.shutil.which", return_value="/usr/bin/clam")
    def test_falls_back_to_standalone_on_engine_error(self, _which):
        runner = MagicMock(side_effect=[_completed(2), _completed(0, "")])
        adapter = ClamAVAdapter(runner=runner)

        assert adapter.scan(Path("/site")) == []
        assert [c.args[0][0] for c in runner.call_args_list] == ["clamdscan", "clamscan"]

    @patch("external_av.shutil.which", return_value="/usr/bin/clam")
    def test_timeout_raises(self, _which):
        runner = MagicMock(side_effect=subprocess.TimeoutExpired(cmd="clamdscan", timeout=5))
        with pytest.raises(ExternalServiceError):
            ClamAVAdapter(timeout=5, runner=runner).scan(Path("/site"))

    @patch("external_av.shutil.which", return_value=None)
    def test_no_engine_installed(self, _which):
        runner = MagicMock()
        with pytest.raises(ExternalServiceError):
            ClamAVAdapter(runner=runner).scan(Path("/site"))
        runner.assert_not_called()
