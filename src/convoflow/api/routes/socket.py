"""Real-time socket for conversation events.

Clients connect to /ws/conversations?token=<jwt> and send JSON frames
{type, conversationId, data}. Every frame gets exactly one reply frame.
"""

import json

from fastapi import APIRouter, Depends, WebSocket, WebSocketDisconnect, status
from starlette.concurrency import run_in_threadpool

from convoflow.api.dependencies import get_pipeline
from convoflow.api.socket_auth import SocketAuthError, verify_socket_token
from convoflow.ingest.pipeline import IngestPipeline
from convoflow.observability.correlation import generate_correlation_id, reset_correlation_id, set_correlation_id
from convoflow.observability.logging import get_logger
from convoflow.observability.redaction import safe_log_context

router = APIRouter(tags=["socket"])

logger = get_logger(__name__)


@router.websocket("/ws/conversations")
async def conversations_socket(
    websocket: WebSocket,
    token: str | None = None,
    pipeline: IngestPipeline = Depends(get_pipeline),
) -> None:
    try:
        principal = verify_socket_token(token)
    except SocketAuthError as e:
        logger.warning("socket auth rejected", extra={"extra_fields": {"reason": str(e)}})
        await websocket.close(code=status.WS_1008_POLICY_VIOLATION)
        return

    await websocket.accept()
    cid_token = set_correlation_id(generate_correlation_id())
    log_ctx = safe_log_context(workspace_id=principal.workspace_id, user_id=principal.user_id)
    logger.info("socket connected", extra={"extra_fields": log_ctx})
    try:
        while True:
            text = await websocket.receive_text()
            try:
                frame = json.loads(text)
            except ValueError:
                await websocket.send_json({"type": "error", "error": "invalid json"})
                continue

            reply = await run_in_threadpool(
                pipeline.process_socket_frame, principal.workspace_id, principal.user_id, frame
            )
            await websocket.send_json(reply)
    except WebSocketDisconnect:
        logger.info("socket disconnected", extra={"extra_fields": log_ctx})
    finally:
        reset_correlation_id(cid_token)
