# @even rygh
"""
Main FastAPI application for the threat detection service.

create_app() builds every core component exactly once and hands them to
the middleware and routes through app.state. No module-level singletons.
"""
import asyncio
import logging
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import Optional

from fastapi import FastAPI, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.trustedhost import TrustedHostMiddleware
from fastapi.responses import JSONResponse

from config import Settings, get_settings
from counter_store import ExpiringStore
from external_av import ClamAVAdapter, ExternalAVAdapter, NullAVAdapter
from file_classifier import FileClassifier
from ids_middleware import ids_middleware
from integrity_checker import HttpManifestSource, IntegrityChecker, ManifestSource
from mitigation import BLOCK_KEY_PREFIX, MitigationController
from notifications import AttackLogNotifier, LoggingNotifier, NotificationDispatcher, Notifier
from quarantine import QuarantineManager
from repository import InMemoryRepository, ScanRepository
from request_inspector import RequestInspector
from scanner import ScanOrchestrator
from security_routes import router as security_router
from security_service import SecurityService
from threshold_detector import ThresholdDetector, default_rules
from upload_monitor import UploadMonitor

logger = logging.getLogger(__name__)


def configure_logging(debug: bool = False) -> None:
    logging.basicConfig(
        level=logging.DEBUG if debug else logging.INFO,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        datefmt='%Y-%m-%d %H:%M:%S'
    )


@dataclass
class Components:
    settings: Settings
    store: ExpiringStore
    repository: ScanRepository
    dispatcher: NotificationDispatcher
    mitigation: MitigationController
    detector: ThresholdDetector
    inspector: RequestInspector
    quarantine: QuarantineManager
    orchestrator: ScanOrchestrator
    upload_monitor: UploadMonitor
    service: SecurityService


def build_components(
    settings: Settings,
    repository: Optional[ScanRepository] = None,
    store: Optional[ExpiringStore] = None,
    manifest_source: Optional[ManifestSource] = None,
    av_adapter: Optional[ExternalAVAdapter] = None,
    notifiers: Optional[list[Notifier]] = None,
) -> Components:
    """Construct the core once, wiring collaborators explicitly."""
    repository = repository if repository is not None else InMemoryRepository()
    store = store if store is not None else ExpiringStore(
        max_entries=settings.counter_store_max_entries, protected_prefixes=(BLOCK_KEY_PREFIX,)
    )

    if notifiers is None:
        notifiers = [LoggingNotifier()]
        if settings.attack_log_file is not None:
            notifiers.append(AttackLogNotifier(settings.attack_log_file))
    dispatcher = NotificationDispatcher(notifiers)

    mitigation = MitigationController(store, settings.block_duration_seconds)
    detector = ThresholdDetector(
        store=store,
        mitigation=mitigation,
        repository=repository,
        dispatcher=dispatcher,
        rules=default_rules(settings),
        enabled=settings.ids_enabled,
        mitigation_enabled=settings.ips_enabled,
        block_duration_seconds=settings.block_duration_seconds,
    )
    quarantine = QuarantineManager(settings.quarantine_root, settings.access_control_file)

    if av_adapter is None:
        if settings.scan_mode == "external-av":
            av_adapter = ClamAVAdapter(timeout=settings.external_av_timeout_seconds)
        else:
            av_adapter = NullAVAdapter()
    if manifest_source is None:
        manifest_source = HttpManifestSource(settings.checksum_manifest_url, settings.manifest_timeout_seconds)

    orchestrator = ScanOrchestrator(
        settings=settings,
        repository=repository,
        classifier=FileClassifier(
            scannable_extensions=settings.scannable_extensions,
            size_anomaly_bytes=settings.size_anomaly_bytes,
            access_control_file=settings.access_control_file,
        ),
        integrity_checker=IntegrityChecker(settings.site_root, manifest_source),
        av_adapter=av_adapter,
        dispatcher=dispatcher,
    )
    upload_monitor = UploadMonitor(
        detector, quarantine, settings.uploads_root, max_age_seconds=settings.direct_php_max_age_seconds
    )
    service = SecurityService(orchestrator, repository, quarantine, mitigation)

    return Components(
        settings=settings,
        store=store,
        repository=repository,
        dispatcher=dispatcher,
        mitigation=mitigation,
        detector=detector,
        inspector=RequestInspector(),
        quarantine=quarantine,
        orchestrator=orchestrator,
        upload_monitor=upload_monitor,
        service=service,
    )


async def _uploads_sweep_loop(monitor: UploadMonitor, interval_seconds: int) -> None:
    while True:
        await asyncio.sleep(interval_seconds)
        try:
            await asyncio.to_thread(monitor.sweep_uploads)
        except Exception as e:
            logger.error(f"Uploads sweep error: {type(e).__name__}: {str(e)} | Task will continue running")


def create_app(settings: Optional[Settings] = None, components: Optional[Components] = None) -> FastAPI:
    settings = settings or (components.settings if components else get_settings())
    configure_logging(settings.debug)
    components = components or build_components(settings)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """
        Start background maintenance on startup, stop it on shutdown.

        Counters and blocks live in memory only; shutdown drops them.
        """
        tasks = [
            asyncio.create_task(
                components.store.start_cleanup_task(settings.counter_store_cleanup_interval_seconds)
            )
        ]
        if settings.uploads_sweep_interval_seconds:
            tasks.append(asyncio.create_task(
                _uploads_sweep_loop(components.upload_monitor, settings.uploads_sweep_interval_seconds)
            ))
        logger.info(
            f"Application started | site_root={settings.site_root} scan_mode={settings.scan_mode} "
            f"ids={settings.ids_enabled} ips={settings.ips_enabled}"
        )

        yield

        logger.info("Application shutdown initiated")
        for task in tasks:
            task.cancel()
        for task in tasks:
            try:
                await task
            except asyncio.CancelledError:
                pass
        components.dispatcher.shutdown(wait=True)
        logger.info(f"Application shutdown complete | dropped_store_entries={len(components.store)}")

    app = FastAPI(
        title=settings.app_name,
        version=settings.app_version,
        description="On-host malware scanning and intrusion detection/prevention",
        docs_url="/docs" if settings.debug else None,
        redoc_url="/redoc" if settings.debug else None,
        lifespan=lifespan,
    )

    app.state.settings = settings
    app.state.components = components
    app.state.store = components.store
    app.state.repository = components.repository
    app.state.mitigation = components.mitigation
    app.state.detector = components.detector
    app.state.inspector = components.inspector
    app.state.upload_monitor = components.upload_monitor
    app.state.service = components.service

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["GET", "POST", "DELETE", "OPTIONS"],
        allow_headers=["*"],
        max_age=3600,
    )

    # SECURITY: Trusted host middleware prevents Host header attacks
    if not settings.debug:
        app.add_middleware(TrustedHostMiddleware, allowed_hosts=settings.allowed_hosts)

    # Added last so it runs first: blocked sources never reach anything else
    app.middleware("http")(ids_middleware)

    @app.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception):
        """Log full error server-side, return generic message to client."""
        logger.error(f"Unhandled exception: {type(exc).__name__}: {str(exc)} | path={request.url.path}")
        content = {"error": "Internal Server Error"}
        if settings.debug:
            content.update({"detail": str(exc), "type": type(exc).__name__})
        else:
            content["detail"] = "An unexpected error occurred. Please try again later."
        return JSONResponse(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, content=content)

    app.include_router(security_router)

    @app.get("/health", tags=["Health"])
    async def health_check():
        return {
            "status": "healthy",
            "service": settings.app_name,
            "version": settings.app_version,
        }

    @app.get("/", tags=["Root"])
    async def root():
        return {
            "service": settings.app_name,
            "version": settings.app_version,
            "endpoints": {
                "run_scan": "/security/scans",
                "scan_issues": "/security/scans/{scan_id}/issues",
                "blocked_sources": "/security/blocked",
                "attack_events": "/security/events",
                "attack_status": "/security/status",
                "health": "/health",
            },
        }

    return app


if __name__ == "__main__":
    import uvicorn

    # SECURITY: Disable auto-reload in production
    uvicorn.run(
        "main:create_app",
        factory=True,
        host="127.0.0.1",
        port=8000,
        reload=get_settings().uvicorn_reload,
        log_level="info",
    )
