import logging

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse, Response

from api.config import settings
from api.dependencies import get_forwarder, get_session, get_translator
from api.models import LegacyRouteResponse, Route, RouteErrorResponse
from core.errors import ForwardFailure, ForwardTimeout, PayloadTooLarge, RecordError
from core.session import MigrationSession
from core.target import TargetForwarder
from core.translator import JobTranslator

logger = logging.getLogger(__name__)

router = APIRouter()

ROUTED_HEADER = "X-Migration-Routed"


async def read_body(request: Request, limit: int) -> bytes:
    """Read the request body, refusing anything over ``limit`` bytes."""
    declared = request.headers.get("content-length")
    if declared and declared.isdigit() and int(declared) > limit:
        raise PayloadTooLarge(limit)

    body = bytearray()
    async for chunk in request.stream():
        body.extend(chunk)
        if len(body) > limit:
            raise PayloadTooLarge(limit)
    return bytes(body)


def _route_error(status_code: int, message: str) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content=RouteErrorResponse(error=message).model_dump(mode="json"),
        headers={ROUTED_HEADER: Route.TARGET.value},
    )


@router.post("/jobs")
async def submit_job(
    request: Request,
    session: MigrationSession = Depends(get_session),
    translator: JobTranslator = Depends(get_translator),
    forwarder: TargetForwarder = Depends(get_forwarder),
):
    """
    Accept one legacy-format job and route it.

    Jobs routed to the target are translated and forwarded, and the target's
    response is relayed as is. Jobs routed to legacy are acknowledged without
    translation. A routing decision is final: failures on the target side are
    reported, never retried against legacy.
    """
    body = await read_body(request, settings.max_body_bytes)

    if not session.should_route_to_target():
        session.stats.record_legacy()
        return JSONResponse(
            content=LegacyRouteResponse(size=len(body)).model_dump(mode="json"),
            headers={ROUTED_HEADER: Route.LEGACY.value},
        )

    session.stats.record_target()

    try:
        job = translator.translate(body)
    except RecordError as e:
        session.stats.record_error()
        logger.warning(f"Translation failed: {e}")
        return _route_error(400, f"translation failed: {e}")

    try:
        upstream = await forwarder.forward(job)
    except ForwardTimeout as e:
        session.stats.record_error()
        logger.error(f"Forwarding {job.type} timed out: {e}")
        return _route_error(504, f"forwarding to target timed out: {e}")
    except ForwardFailure as e:
        session.stats.record_error()
        logger.error(f"Forwarding {job.type} failed: {e}")
        return _route_error(502, f"forwarding to target: {e}")

    return Response(
        content=upstream.content,
        status_code=upstream.status_code,
        media_type=upstream.headers.get("content-type", "application/json"),
        headers={ROUTED_HEADER: Route.TARGET.value},
    )
