# @even rygh
"""
Tests for UploadMonitor - immediate upload alerts and the dropped-PHP sweep.
"""

import os
import time

from models import AttackEventType, Severity

from conftest import write


ATTACKER = "203.0.113.20"


class TestInspectUpload:
    def test_php_upload_is_quarantined_and_alerted(self, components, settings, repository):
        path = write(settings.uploads_root / "2024" / "01" / "avatar.php", "<?php system($_GET['c']);")

        event = components.upload_monitor.inspect_upload(path, ATTACKER)

        assert event.event_type == AttackEventType.MALICIOUS_UPLOAD
        assert event.severity == Severity.HIGH
        assert event.extra["quarantine_path"] is not None
        assert not path.exists()
        # Upload alerts do not block by themselves
        assert not components.mitigation.is_blocked(ATTACKER)

    def test_image_upload_is_ignored(self, components, settings):
        path = write(settings.uploads_root / "photo.jpg", b"\xff\xd8\xff")
        assert components.upload_monitor.inspect_upload(path, ATTACKER) is None
        assert path.exists()

    def test_alert_survives_failed_quarantine(self, components, settings):
        event = components.upload_monitor.inspect_upload(settings.uploads_root / "vanished.php", ATTACKER)
        assert event is not None
        assert event.extra["quarantine_path"] is None


class TestInspectAttachment:
    def test_executable_attachment(self, components, settings):
        event = components.upload_monitor.inspect_attachment(settings.uploads_root / "invoice.exe", ATTACKER, 42)
        assert event.event_type == AttackEventType.SUSPICIOUS_ATTACHMENT
        assert event.severity == Severity.MEDIUM
        assert event.extra["attachment_id"] == 42

    def test_document_attachment(self, components, settings):
        assert components.upload_monitor.inspect_attachment(settings.uploads_root / "cv.pdf", ATTACKER) is None


class TestSweepUploads:
    def test_fresh_php_file_is_critical(self, components, settings, notifier):
        dropped = write(settings.uploads_root / "2024" / "wp-cache.php", "<?php eval($_POST['x']);")

        events = components.upload_monitor.sweep_uploads()

        assert len(events) == 1
        assert events[0].event_type == AttackEventType.DIRECT_PHP_CREATION
        assert events[0].severity == Severity.CRITICAL
        assert events[0].source == "unknown"
        assert not dropped.exists()

        components.dispatcher.shutdown(wait=True)
        assert [e.event_type for e in notifier.attacks] == [AttackEventType.DIRECT_PHP_CREATION]

    def test_old_php_file_is_left_alone(self, components, settings):
        old = write(settings.uploads_root / "legacy.php", "<?php")
        past = time.time() - 3600
        os.utime(old, (past, past))

        assert components.upload_monitor.sweep_uploads() == []
        assert old.exists()

    def test_quarantined_files_are_not_swept_again(self, components, settings):
        write(settings.uploads_root / "drop.php", "<?php")
        assert len(components.upload_monitor.sweep_uploads()) == 1
        assert components.upload_monitor.sweep_uploads() == []
