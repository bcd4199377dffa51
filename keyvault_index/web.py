"""
Index Web Service — Local HTTP surface over a VaultIndexService.

Routes:
    GET    /health            liveness plus index counters
    GET    /status            job status, progress and last report
    POST   /index/start       start a pass (409 when already running)
    POST   /index/cancel      cancel at the next batch boundary
    DELETE /index             clear both cache layers
    POST   /search            {"query", "type"?, "vault"?} over the session index
    GET    /vault/{name}      one indexed vault, metadata only
    GET    /vaults            indexed vaults and their last indexing time
    GET    /cache/search      ?q=<term>&type=<type> over the persistent cache
    GET    /cache/expiring    ?days=<n> expiring certificates
    GET    /security          description of the storage guarantees

Security Note:
    Responses never contain secret values, even when the session index
    holds them; value matches report only the field that matched.
"""
import logging
from typing import Any, Optional

import orjson
from aiohttp import web

from .exceptions import AlreadyRunningError, DecryptionError
from .models import ResourceType, utcnow
from .service import VaultIndexService

logger = logging.getLogger("keyvault_index.web")

SERVICE_KEY = web.AppKey("index_service", VaultIndexService)
SCHEDULE_KEY = web.AppKey("schedule", bool)


def _dumps(obj: Any) -> str:
    return orjson.dumps(obj).decode("utf-8")


def json_response(data: Any, status: int = 200) -> web.Response:
    return web.json_response(data, status=status, dumps=_dumps)


def _resource_type(raw: Optional[str]) -> Optional[ResourceType]:
    if not raw:
        return None
    try:
        return ResourceType(raw.lower())
    except ValueError:
        raise web.HTTPBadRequest(
            text=_dumps({"error": f"Unknown resource type: {raw}"}),
            content_type="application/json",
        ) from None


def _service(request: web.Request) -> VaultIndexService:
    return request.app[SERVICE_KEY]


async def health(request: web.Request) -> web.Response:
    service = _service(request)
    status = service.job.snapshot()
    return json_response({
        "status": "healthy",
        "timestamp": utcnow().isoformat(),
        "indexedVaults": service.index.size(),
        "indexingStatus": status["status"],
        "indexingProgress": status["progress"],
    })


async def status(request: web.Request) -> web.Response:
    return json_response(_service(request).indexing_status())


async def start_indexing(request: web.Request) -> web.Response:
    service = _service(request)
    try:
        service.start_indexing()
    except AlreadyRunningError as err:
        return json_response({"error": str(err)}, status=409)
    return json_response({"message": "Indexing started", "status": "running"})


async def cancel_indexing(request: web.Request) -> web.Response:
    cancelled = _service(request).cancel_indexing()
    return json_response({"cancelled": cancelled})


async def clear_index(request: web.Request) -> web.Response:
    await _service(request).clear_cache()
    return json_response({"message": "Index cleared successfully"})


async def search(request: web.Request) -> web.Response:
    try:
        body = await request.json(loads=orjson.loads)
    except ValueError:
        return json_response({"error": "Invalid JSON body"}, status=400)
    if not isinstance(body, dict):
        return json_response({"error": "Invalid JSON body"}, status=400)
    query = (body.get("query") or "").strip()
    if not query:
        return json_response({"results": [], "totalFound": 0, "query": query})
    service = _service(request)
    hits = service.search(
        query,
        resource_type=_resource_type(body.get("type")),
        vault=body.get("vault") or body.get("vaultName"),
        limit=service.config.search_limit,
    )
    return json_response({
        "results": [hit.to_dict() for hit in hits],
        "totalFound": len(hits),
        "query": query,
    })


async def get_vault(request: web.Request) -> web.Response:
    name = request.match_info["name"]
    try:
        record = _service(request).index.find(name)
    except DecryptionError:
        logger.error("Session index entry for vault %s is unreadable", name)
        return json_response({"error": "Vault data unreadable"}, status=500)
    if record is None:
        return json_response({"error": "Vault not found or not indexed"}, status=404)
    return json_response(record.metadata_only().model_dump(mode="json"))


async def list_vaults(request: web.Request) -> web.Response:
    vaults = [
        {"name": name, "lastIndexed": when.isoformat()}
        for name, when in _service(request).index.vaults().items()
    ]
    return json_response({"vaults": vaults})


async def cache_search(request: web.Request) -> web.Response:
    term = request.query.get("q", "").strip()
    if not term:
        return json_response({"results": [], "totalFound": 0, "query": term})
    hits = _service(request).global_search(
        term, resource_type=_resource_type(request.query.get("type")),
    )
    return json_response({
        "results": [hit.to_dict() for hit in hits],
        "totalFound": len(hits),
        "query": term,
    })


async def cache_expiring(request: web.Request) -> web.Response:
    try:
        days = int(request.query.get("days", "30"))
    except ValueError:
        return json_response({"error": "days must be an integer"}, status=400)
    hits = _service(request).expiring_certificates(days)
    return json_response({
        "days": days,
        "certificates": [hit.to_dict() for hit in hits],
    })


async def security(request: web.Request) -> web.Response:
    service = _service(request)
    return json_response({
        "encryptionEnabled": True,
        "ephemeralStorage": True,
        "valuesInSessionIndex": service.config.include_values,
        "persistentCacheMetadataOnly": True,
        "localOnlyAccess": service.config.host in ("127.0.0.1", "localhost", "::1"),
        "lastVerified": utcnow().isoformat(),
        "securityFeatures": [
            "Session index encrypted with a random per-process key",
            "Persistent cache encrypted with a password-derived key",
            "Persistent cache never stores secret values",
            "Session index dropped on shutdown",
        ],
    })


async def _on_startup(app: web.Application) -> None:
    if app[SCHEDULE_KEY]:
        app[SERVICE_KEY].scheduler.start()


async def _on_cleanup(app: web.Application) -> None:
    logger.info("Shutting down index service")
    await app[SERVICE_KEY].close()


def create_app(service: VaultIndexService, schedule: bool = True) -> web.Application:
    """Build the aiohttp application around an opened service.

    Args:
        service: Service whose caches and coordinator are exposed.
        schedule: Start the recurring indexing job with the app.
    """
    app = web.Application()
    app[SERVICE_KEY] = service
    app[SCHEDULE_KEY] = schedule
    app.router.add_get("/health", health)
    app.router.add_get("/status", status)
    app.router.add_post("/index/start", start_indexing)
    app.router.add_post("/index/cancel", cancel_indexing)
    app.router.add_delete("/index", clear_index)
    app.router.add_post("/search", search)
    app.router.add_get("/vault/{name}", get_vault)
    app.router.add_get("/vaults", list_vaults)
    app.router.add_get("/cache/search", cache_search)
    app.router.add_get("/cache/expiring", cache_expiring)
    app.router.add_get("/security", security)
    app.on_startup.append(_on_startup)
    app.on_cleanup.append(_on_cleanup)
    return app


def run(service: VaultIndexService) -> None:
    """Serve the index on the configured host and port."""
    web.run_app(
        create_app(service),
        host=service.config.host,
        port=service.config.port,
    )
