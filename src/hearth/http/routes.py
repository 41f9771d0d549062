"""
Dialog API — user turns, device events, context inspection.

Endpoints:
    POST /v1/dialog/turn                              → Run one user turn
    POST /v1/events/device                            → Queue a device event (202)
    GET  /v1/sessions/{user_id}/{session_id}/context  → Current context document
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse

from hearth.core.errors import ContextUnavailable
from hearth.plugins.dispatcher import FALLBACK_RESPONSE
from hearth.proactive.events import DeviceEvent

if TYPE_CHECKING:
    from hearth.context.manager import ContextManager
    from hearth.orchestrator import DialogOrchestrator
    from hearth.proactive.engine import ProactiveRuleEngine

logger = logging.getLogger(__name__)


def _unavailable(e: ContextUnavailable) -> JSONResponse:
    return JSONResponse(
        {
            "error": "context_unavailable",
            "detail": str(e),
            "response": FALLBACK_RESPONSE.to_dict(),
        },
        status_code=503,
    )


def create_dialog_router(
    orchestrator: "DialogOrchestrator",
    context_manager: "ContextManager",
    engine: "ProactiveRuleEngine | None" = None,
) -> APIRouter:
    """Create the dialog router."""

    router = APIRouter(prefix="/v1", tags=["dialog"])

    # ─── Dialog ───────────────────────────────────────────────

    @router.post("/dialog/turn")
    async def dialog_turn(request: Request) -> JSONResponse:
        body = await request.json()
        user_id = body.get("user_id")
        session_id = body.get("session_id")
        text = body.get("text")
        if not user_id or not session_id or not isinstance(text, str):
            return JSONResponse(
                {"error": "user_id, session_id and text are required"},
                status_code=400,
            )

        try:
            result = await orchestrator.handle_turn(
                user_id, session_id, text, device_id=body.get("device_id")
            )
        except ContextUnavailable as e:
            logger.error("Turn failed for %s:%s: %s", user_id, session_id, e)
            return _unavailable(e)
        return JSONResponse(result.to_dict())

    # ─── Device events ────────────────────────────────────────

    @router.post("/events/device")
    async def device_event(request: Request) -> JSONResponse:
        if engine is None:
            return JSONResponse({"error": "Proactive engine disabled"}, status_code=503)
        body = await request.json()
        try:
            event = DeviceEvent.from_dict(body)
        except (KeyError, TypeError, ValueError) as e:
            return JSONResponse({"error": f"Invalid device event: {e}"}, status_code=400)

        accepted = engine.ingest(event)
        return JSONResponse(
            {"event_id": event.event_id, "accepted": accepted},
            status_code=202 if accepted else 429,
        )

    # ─── Context ──────────────────────────────────────────────

    @router.get("/sessions/{user_id}/{session_id}/context")
    async def get_context(user_id: str, session_id: str) -> JSONResponse:
        try:
            context = await context_manager.get_or_create(user_id, session_id)
        except ContextUnavailable as e:
            return _unavailable(e)
        document = context.to_dict()
        document["enrichment_sources"] = context.enrichment_sources
        return JSONResponse(document)

    return router
