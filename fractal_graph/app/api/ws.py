from __future__ import annotations

import asyncio
import contextlib
import json
import logging

from fastapi import APIRouter, HTTPException, WebSocket, WebSocketDisconnect
from pydantic import ValidationError

from fractal_graph.app.core.container import AppContainer
from fractal_graph.app.models.session import CompileCompleteRequest

logger = logging.getLogger(__name__)

router = APIRouter(tags=["ws"])


@router.websocket("/ws/sessions/{session_id}")
async def session_events(websocket: WebSocket, session_id: str) -> None:
    container: AppContainer = websocket.app.state.container
    try:
        await container.session_service.get_session(session_id)
    except HTTPException:
        await websocket.close(code=4404)
        return

    await websocket.accept()
    queue = await container.event_bus.subscribe(session_id)
    logger.info(
        "Websocket subscribed to session '%s' (%d subscribers)",
        session_id,
        await container.event_bus.subscriber_count(session_id),
    )

    async def send_loop() -> None:
        while True:
            event = await queue.get()
            await websocket.send_json(event.model_dump(mode="json"))

    async def receive_loop() -> None:
        # Renderers may acknowledge compiles over the socket instead of POSTing compile-complete.
        while True:
            message = await websocket.receive_text()
            try:
                payload = json.loads(message)
            except json.JSONDecodeError:
                continue
            if not isinstance(payload, dict) or payload.get("type") != "compile_complete":
                continue
            try:
                request = CompileCompleteRequest.model_validate(payload)
                await container.session_service.complete_compile(session_id, request)
            except (ValidationError, HTTPException) as exc:
                logger.warning("Ignoring compile acknowledgement for session '%s': %s", session_id, exc)

    try:
        sender_task = asyncio.create_task(send_loop(), name=f"ws-session-send:{session_id}")
        receiver_task = asyncio.create_task(receive_loop(), name=f"ws-session-recv:{session_id}")
        done, pending = await asyncio.wait({sender_task, receiver_task}, return_when=asyncio.FIRST_COMPLETED)

        for task in pending:
            task.cancel()
        for task in pending:
            with contextlib.suppress(asyncio.CancelledError, WebSocketDisconnect):
                await task

        for task in done:
            exception = task.exception()
            if exception is None or isinstance(exception, WebSocketDisconnect):
                continue
            raise exception
    except asyncio.CancelledError:
        raise
    except WebSocketDisconnect:
        pass
    finally:
        await container.event_bus.unsubscribe(session_id, queue)
