# @even rygh
"""
Intrusion detection/prevention middleware.

Runs first on every request:
1. Blocked source -> 403 before any other processing
2. Query parameters, form or JSON body fields and the URI -> request
   inspector (in the threadpool) -> threshold detector
3. XML-RPC endpoint hits -> threshold detector
If the request itself pushed its source over a mitigating threshold,
it is refused as well.

Components are read from app.state, where main.create_app() puts them.
"""
import ipaddress
import json
import logging
from typing import Any, Dict, List, Optional

from fastapi import Request, status
from fastapi.responses import JSONResponse
from starlette.concurrency import run_in_threadpool
from starlette.exceptions import HTTPException as StarletteHTTPException
from starlette.formparsers import MultiPartException

from request_inspector import MAX_FIELDS

logger = logging.getLogger(__name__)

# Checked in order when proxy headers are trusted
PROXY_HEADERS = (
    "cf-connecting-ip",
    "x-forwarded-for",
    "x-real-ip",
    "client-ip",
)

EXEMPT_PATHS = ("/health",)

FORM_CONTENT_TYPES = ("application/x-www-form-urlencoded", "multipart/form-data")
JSON_CONTENT_TYPE = "application/json"


def _public_ip(value: str) -> Optional[str]:
    candidate = value.split(",")[0].strip()
    try:
        address = ipaddress.ip_address(candidate)
    except ValueError:
        return None
    if address.is_private or address.is_reserved or address.is_loopback or address.is_unspecified:
        return None
    return str(address)


def get_client_ip(request: Request, trust_proxy_headers: bool = False) -> str:
    """
    Resolve the source address of a request.

    Proxy headers are spoofable, so they are only honoured when configured,
    and only when they carry a public address.
    """
    if trust_proxy_headers:
        for header in PROXY_HEADERS:
            value = request.headers.get(header)
            if value:
                ip = _public_ip(value)
                if ip:
                    return ip
    return request.client.host if request.client else "unknown"


def access_denied() -> JSONResponse:
    return JSONResponse(
        status_code=status.HTTP_403_FORBIDDEN,
        content={"detail": "Access denied. Your address has been temporarily blocked."},
    )


async def _body_params(request: Request, max_body_bytes: int) -> Dict[str, List[Any]]:
    """
    Collect string fields from a form or JSON body.

    Only bodies with a declared length within max_body_bytes are read. The
    body is cached on the request, so handlers can still read it.
    """
    if request.method in ("GET", "HEAD", "OPTIONS"):
        return {}
    content_type = request.headers.get("content-type", "").split(";")[0].strip().lower()
    if content_type not in FORM_CONTENT_TYPES and content_type != JSON_CONTENT_TYPE:
        return {}
    try:
        length = int(request.headers.get("content-length", ""))
    except ValueError:
        logger.debug(f"Body not inspected, no declared length | path={request.url.path}")
        return {}
    if length > max_body_bytes:
        logger.info(f"Body not inspected, too large: {length} bytes | path={request.url.path}")
        return {}

    params: Dict[str, List[Any]] = {}
    body = await request.body()
    if content_type == JSON_CONTENT_TYPE:
        try:
            payload = json.loads(body)
        except ValueError as e:
            logger.debug(f"Unparseable JSON body: {e} | path={request.url.path}")
            return {}
        if isinstance(payload, dict):
            for key, value in payload.items():
                params.setdefault(str(key), []).extend(value if isinstance(value, list) else [value])
        return params

    try:
        async with request.form(max_fields=MAX_FIELDS, max_files=MAX_FIELDS) as form:
            for key, value in form.multi_items():
                if isinstance(value, str):
                    params.setdefault(key, []).append(value)
    except (MultiPartException, StarletteHTTPException) as e:
        logger.debug(f"Unparseable form body: {e} | path={request.url.path}")
    return params


async def ids_middleware(request: Request, call_next):
    """IDS/IPS middleware."""
    state = request.app.state
    settings = state.settings

    if request.url.path in EXEMPT_PATHS:
        return await call_next(request)

    client_ip = get_client_ip(request, settings.trust_proxy_headers)
    request.state.client_ip = client_ip

    if settings.ips_enabled and state.mitigation.is_blocked(client_ip):
        logger.info(f"Blocked source refused: {client_ip} | path={request.url.path}")
        return access_denied()

    if settings.ids_enabled:
        uri = request.url.path
        if request.url.query:
            uri = f"{uri}?{request.url.query}"
        params = {}
        for key, value in request.query_params.multi_items():
            params.setdefault(key, []).append(value)

        for key, values in (await _body_params(request, settings.ids_max_body_bytes)).items():
            params.setdefault(key, []).extend(values)

        findings = await run_in_threadpool(state.inspector.inspect, params, uri)
        alerts = state.detector.record_request_findings(client_ip, findings, uri) if findings else []

        if request.url.path == settings.xmlrpc_path:
            alerts.extend(state.detector.record_xmlrpc_request(client_ip))

        if alerts and settings.ips_enabled and state.mitigation.is_blocked(client_ip):
            return access_denied()

    return await call_next(request)
