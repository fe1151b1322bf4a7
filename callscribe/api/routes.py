"""
Transcription HTTP API.

Endpoints:
    POST /api/transcribe                              - admit a transcription for a call
    GET  /api/transcribe/status?call_id=...           - poll transcription status
    POST /api/transcribe/cancel                       - cancel an in-flight transcription
    POST /api/transcripts/{call_id}/apply-corrections - re-run correction rules
    GET  /api/health                                  - server health, queue and cache statistics

The caller is identified by the ``X-User-Id`` header set by the upstream
authentication layer.
"""

import json
import logging
from typing import TYPE_CHECKING, Any

from aiohttp import web

if TYPE_CHECKING:
    from callscribe.context import Context

from callscribe.errors import PipelineError

logger = logging.getLogger(__name__)

USER_ID_HEADER = "X-User-Id"

CONTEXT_KEY = web.AppKey("context", object)

routes = web.RouteTableDef()


# -------------------------------------------------------------- #
# Helpers
# -------------------------------------------------------------- #


def _services(request: web.Request):
    return request.app[CONTEXT_KEY].services_manager


def _caller_id(request: web.Request) -> str:
    caller_id = request.headers.get(USER_ID_HEADER, "").strip()
    if not caller_id:
        raise web.HTTPUnauthorized(
            text=json.dumps({"error": "Unauthorized"}), content_type="application/json"
        )
    return caller_id


def _bad_request(message: str) -> web.HTTPBadRequest:
    return web.HTTPBadRequest(text=json.dumps({"error": message}), content_type="application/json")


async def _json_body(request: web.Request) -> dict[str, Any]:
    if not request.can_read_body:
        return {}
    try:
        body = await request.json()
    except json.JSONDecodeError as e:
        raise _bad_request("Request body must be valid JSON") from e
    if not isinstance(body, dict):
        raise _bad_request("Request body must be a JSON object")
    return body


def _call_id_from(body: dict[str, Any]) -> str:
    call_id = body.get("call_id") or body.get("callId")
    if not call_id or not isinstance(call_id, str):
        raise _bad_request("call_id is required")
    return call_id


def _force_from(body: dict[str, Any]) -> bool:
    force = body.get("forceRetranscribe", body.get("force"))
    if force is None:
        return False
    if not isinstance(force, bool):
        raise _bad_request("forceRetranscribe must be a boolean")
    return force


@web.middleware
async def error_middleware(request: web.Request, handler):
    """Convert pipeline errors to JSON responses; never leak tracebacks."""
    try:
        return await handler(request)
    except web.HTTPException:
        raise
    except PipelineError as e:
        body: dict[str, Any] = {"error": e.message}
        if e.details:
            body["details"] = e.details
        return web.json_response(body, status=e.status_code)
    except Exception:
        logger.exception(f"Unhandled error in {request.method} {request.path}")
        return web.json_response({"error": "Internal server error"}, status=500)


# -------------------------------------------------------------- #
# Routes
# -------------------------------------------------------------- #


@routes.post("/api/transcribe")
async def start_transcription(request: web.Request) -> web.Response:
    """Admit a transcription request."""
    caller_id = _caller_id(request)
    body = await _json_body(request)
    call_id = _call_id_from(body)
    force = _force_from(body)

    result = await _services(request).transcription_job_manager.start_transcription(
        caller_id,
        call_id,
        language=body.get("language") or None,
        prompt=body.get("prompt") or None,
        force=force,
    )
    return web.json_response(result.body, status=result.status_code)


@routes.get("/api/transcribe/status")
async def transcription_status(request: web.Request) -> web.Response:
    """Poll the transcription status of a call."""
    caller_id = _caller_id(request)
    call_id = request.query.get("call_id") or request.query.get("callId")
    if not call_id:
        raise _bad_request("call_id is required")

    status = await _services(request).transcription_job_manager.get_status(caller_id, call_id)
    return web.json_response(status)


@routes.post("/api/transcribe/cancel")
async def cancel_transcription(request: web.Request) -> web.Response:
    """Cancel the in-flight transcription of a call."""
    caller_id = _caller_id(request)
    call_id = _call_id_from(await _json_body(request))

    result = await _services(request).transcription_job_manager.cancel(caller_id, call_id)
    return web.json_response(result)


@routes.post("/api/transcripts/{call_id}/apply-corrections")
async def apply_corrections(request: web.Request) -> web.Response:
    """Re-run the owner's correction rules over a stored transcript."""
    caller_id = _caller_id(request)
    call_id = request.match_info["call_id"]

    result = await _services(request).transcription_job_manager.reapply_corrections(
        caller_id, call_id
    )
    return web.json_response(result)


@routes.get("/api/health")
async def health(request: web.Request) -> web.Response:
    """Report server health with queue, embedding cache and logging statistics."""
    context = request.app[CONTEXT_KEY]
    servers = await context.server_manager.health_check_all()
    queue = await context.services_manager.transcription_job_manager.get_queue_statistics()
    cache = context.services_manager.embedding_manager.get_cache_statistics()
    logs = context.services_manager.logging_service.get_statistics()

    healthy = all(servers.values()) and not context.is_shutting_down()
    return web.json_response(
        {
            "healthy": healthy,
            "servers": servers,
            "queue": queue,
            "embedding_cache": cache,
            "logging": logs,
        },
        status=200 if healthy else 503,
    )


# -------------------------------------------------------------- #
# App Factory
# -------------------------------------------------------------- #


def create_app(context: "Context") -> web.Application:
    """
    Build the aiohttp application for a fully initialized context.

    Args:
        context: Context whose server and services managers are already started

    Returns:
        The configured web.Application
    """
    app = web.Application(middlewares=[error_middleware])
    app[CONTEXT_KEY] = context
    app.add_routes(routes)
    return app
