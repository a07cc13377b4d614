# @even rygh
"""
Configuration management for the threat detection service.
All security-critical settings are centralized here for easy auditing.
"""
from pathlib import Path
from typing import Literal, Optional, Set

from pydantic import Field
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """
    Application settings with security defaults.
    Uses Pydantic for validation - invalid configs will fail fast at startup.
    """

    # Application
    app_name: str = "SentinelWP - Threat Detection Service"
    app_version: str = "1.0.0"
    debug: bool = False
    uvicorn_reload: bool = False

    cors_origins: list[str] = [
        "http://localhost:3000",
        "http://127.0.0.1:3000",
    ]
    allowed_hosts: list[str] = [
        "localhost",
        "127.0.0.1",
        "testserver",
    ]

    # Admin API gate: if set, /security/* requires header X-Admin-Token
    admin_token: Optional[str] = None

    # Site layout
    # Directory names are relative to site_root (content_dir) or to the
    # content directory (extensions/themes/uploads).
    site_root: Path = Path(".")
    content_dir: str = "wp-content"
    extensions_dir: str = "plugins"
    themes_dir: str = "themes"
    uploads_dir: str = "uploads"
    secrets_file: str = "wp-config.php"
    access_control_file: str = ".htaccess"
    version_file: str = "wp-includes/version.php"
    quarantine_dir: Optional[Path] = None  # default: <content>/sentinelwp-isolated

    # Scanning
    scan_mode: Literal["heuristic", "external-av"] = "heuristic"
    scan_workers: int = Field(default=4, ge=1, le=64)
    # Files above this size are location-checked but not content-scanned
    max_content_bytes: int = 16 * 1024 * 1024
    size_anomaly_bytes: int = 1024 * 1024
    scan_deadline_seconds: Optional[float] = None
    scannable_extensions: Set[str] = {"php", "js", "html", "htm", "css", "txt", "htaccess"}

    # Core integrity
    platform_version: Optional[str] = None  # auto-detected from version_file
    checksum_manifest_url: str = "https://api.wordpress.org/core/checksums/1.0/?version={version}"
    manifest_timeout_seconds: float = 30.0

    # External AV
    external_av_timeout_seconds: float = 600.0

    # IDS / IPS
    ids_enabled: bool = True
    ips_enabled: bool = True
    trust_proxy_headers: bool = False
    xmlrpc_path: str = "/xmlrpc.php"
    # Form and JSON bodies above this size are passed through uninspected
    ids_max_body_bytes: int = Field(default=1024 * 1024, ge=0)

    brute_force_threshold: int = Field(default=10, ge=1)
    brute_force_window_seconds: int = Field(default=60, ge=1)
    xmlrpc_abuse_threshold: int = Field(default=50, ge=1)
    xmlrpc_abuse_window_seconds: int = Field(default=60, ge=1)
    xmlrpc_flood_threshold: int = Field(default=10, ge=1)
    xmlrpc_flood_window_seconds: int = Field(default=60, ge=1)
    injection_threshold: int = Field(default=3, ge=1)
    injection_window_seconds: int = Field(default=60, ge=1)
    block_duration_seconds: int = Field(default=10 * 60, ge=1)

    # Uploads sweep: php files younger than this are treated as dropped payloads
    direct_php_max_age_seconds: int = 300
    uploads_sweep_interval_seconds: Optional[int] = 300  # disabled when None

    # Site flags that cannot be read from the file tree
    xmlrpc_enabled: bool = True

    # Expiring store limits
    # A restart clears every counter and block entry.
    counter_store_max_entries: int = 100_000
    counter_store_cleanup_interval_seconds: int = 300

    # Dedicated JSON-lines log for high/critical attacks (disabled when None)
    attack_log_file: Optional[Path] = None

    class Config:
        env_file = ".env"
        case_sensitive = False

    @property
    def content_root(self) -> Path:
        return self.site_root / self.content_dir

    @property
    def extensions_root(self) -> Path:
        return self.content_root / self.extensions_dir

    @property
    def themes_root(self) -> Path:
        return self.content_root / self.themes_dir

    @property
    def uploads_root(self) -> Path:
        return self.content_root / self.uploads_dir

    @property
    def quarantine_root(self) -> Path:
        if self.quarantine_dir is not None:
            return self.quarantine_dir
        return self.content_root / "sentinelwp-isolated"


def get_settings() -> Settings:
    """Build settings from the environment."""
    return Settings()
