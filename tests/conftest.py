# @even rygh
"""
Pytest configuration and shared fixtures.

This module provides:
- A controllable clock for TTL and window tests
- A recording notifier
- A small site tree laid out like a real installation
- Fully wired components built the same way the app builds them
"""

import sys
from pathlib import Path
from typing import List

import pytest

# Modules live at the repository root
root_path = Path(__file__).parent.parent
sys.path.insert(0, str(root_path))

from config import Settings  # noqa: E402
from counter_store import ExpiringStore  # noqa: E402
from integrity_checker import ManifestSource  # noqa: E402
from main import build_components  # noqa: E402
from mitigation import BLOCK_KEY_PREFIX  # noqa: E402
from models import AttackEvent, ScanResult  # noqa: E402
from notifications import Notifier  # noqa: E402
from repository import InMemoryRepository  # noqa: E402
from exceptions import ExternalServiceError  # noqa: E402


# =============================================================================
# Helpers
# =============================================================================


class FakeClock:
    """Callable clock advanced by hand."""

    def __init__(self, start: float = 1_700_000_000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class RecordingNotifier(Notifier):
    def __init__(self):
        self.scans: List[ScanResult] = []
        self.attacks: List[AttackEvent] = []

    def notify_scan(self, result: ScanResult) -> None:
        self.scans.append(result)

    def notify_attack(self, event: AttackEvent) -> None:
        self.attacks.append(event)


class StaticManifestSource(ManifestSource):
    def __init__(self, checksums=None, error: bool = False):
        self.checksums = checksums or {}
        self.error = error
        self.calls = 0

    def fetch(self, version):
        self.calls += 1
        if self.error:
            raise ExternalServiceError("Checksum manifest request timed out after 30.0s")
        return dict(self.checksums)


def write(path: Path, content, mode: int = None) -> Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    if isinstance(content, bytes):
        path.write_bytes(content)
    else:
        path.write_text(content, encoding="utf-8")
    if mode is not None:
        path.chmod(mode)
    return path


# =============================================================================
# Fixtures
# =============================================================================


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def store(clock) -> ExpiringStore:
    return ExpiringStore(max_entries=1000, clock=clock, protected_prefixes=(BLOCK_KEY_PREFIX,))


@pytest.fixture
def repository() -> InMemoryRepository:
    return InMemoryRepository()


@pytest.fixture
def notifier() -> RecordingNotifier:
    return RecordingNotifier()


@pytest.fixture
def site(tmp_path: Path) -> Path:
    """
    Minimal clean installation:
    - core files with a version file
    - hardened secrets file (0600, file editing disabled)
    - empty extensions/themes/uploads trees
    """
    root = tmp_path / "site"
    write(root / "index.php", "<?php\nrequire __DIR__ . '/wp-blog-header.php';\n")
    write(root / "wp-includes" / "version.php", "<?php\n$wp_version = '6.4.2';\n")
    write(
        root / "wp-config.php",
        "<?php\ndefine('DB_NAME', 'site');\ndefine('DISALLOW_FILE_EDIT', true);\n",
        mode=0o600,
    )
    for sub in ("plugins", "themes", "uploads"):
        (root / "wp-content" / sub).mkdir(parents=True)
    return root


@pytest.fixture
def settings(site: Path) -> Settings:
    return Settings(
        site_root=site,
        xmlrpc_enabled=False,
        scan_workers=2,
        uploads_sweep_interval_seconds=None,
        admin_token=None,
        debug=False,
    )


@pytest.fixture
def manifest_source() -> StaticManifestSource:
    return StaticManifestSource()


@pytest.fixture
def components(settings, repository, store, manifest_source, notifier):
    built = build_components(
        settings,
        repository=repository,
        store=store,
        manifest_source=manifest_source,
        notifiers=[notifier],
    )
    yield built
    built.dispatcher.shutdown(wait=True)
