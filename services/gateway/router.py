"""
services/gateway/router.py
Edge gateway: forwards /api/<service>/<path> to a backend instance
picked from the service registry and relays its response verbatim.

No retries and no circuit breaking here; an unreachable backend is a
503 with {"error": "<Service> unavailable"}.
"""

import logging

import httpx
from fastapi import APIRouter, Depends, Request, Response

from config.registry import ServiceRegistry
from config.settings import settings
from shared.utils.errors import DownstreamUnavailable, NotFound

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Gateway"])

PROXY_METHODS = ["GET", "POST", "PUT", "PATCH", "DELETE", "OPTIONS", "HEAD"]

HOP_BY_HOP_HEADERS = {
    "connection",
    "keep-alive",
    "proxy-authenticate",
    "proxy-authorization",
    "te",
    "trailers",
    "transfer-encoding",
    "upgrade",
}
EXCLUDED_REQUEST_HEADERS = HOP_BY_HOP_HEADERS | {"host", "content-length"}
# httpx already decoded the body, so length/encoding no longer describe it
EXCLUDED_RESPONSE_HEADERS = HOP_BY_HOP_HEADERS | {"content-length", "content-encoding"}


# ── Dependencies ──────────────────────────────────────────────

def get_registry(request: Request) -> ServiceRegistry:
    return request.app.state.registry


def get_http_client(request: Request) -> httpx.AsyncClient:
    client = getattr(request.app.state, "http_client", None)
    if client is None:
        client = httpx.AsyncClient(timeout=settings.GATEWAY_TIMEOUT_SECONDS)
        request.app.state.http_client = client
    return client


# ── Routes ────────────────────────────────────────────────────

@router.get("/services")
async def list_services(registry: ServiceRegistry = Depends(get_registry)):
    """Registered backend services and their base URLs."""
    return registry.as_dict()


@router.api_route("/api/{service}", methods=PROXY_METHODS, include_in_schema=False)
@router.api_route("/api/{service}/{path:path}", methods=PROXY_METHODS, include_in_schema=False)
async def proxy(
    service: str,
    request: Request,
    path: str = "",
    registry: ServiceRegistry = Depends(get_registry),
    client: httpx.AsyncClient = Depends(get_http_client),
):
    if service not in registry:
        raise NotFound(f"Unknown service: {service}")

    target = registry.resolve(service)
    url = f"{target}/{path}"
    if request.url.query:
        url = f"{url}?{request.url.query}"

    headers = {
        k: v for k, v in request.headers.items() if k.lower() not in EXCLUDED_REQUEST_HEADERS
    }
    if request.client:
        headers["X-Forwarded-For"] = request.client.host
    request_id = getattr(request.state, "request_id", None)
    if request_id:
        headers["X-Request-ID"] = request_id

    try:
        upstream = await client.request(
            request.method,
            url,
            headers=headers,
            content=await request.body(),
        )
    except httpx.TransportError as e:
        display = registry.display_name(service)
        logger.error(f"[{request_id}] {display} service unreachable at {target}: {e!r}")
        raise DownstreamUnavailable(f"{display} service unavailable")

    response_headers = {
        k: v for k, v in upstream.headers.items() if k.lower() not in EXCLUDED_RESPONSE_HEADERS
    }
    return Response(
        content=upstream.content,
        status_code=upstream.status_code,
        headers=response_headers,
    )
