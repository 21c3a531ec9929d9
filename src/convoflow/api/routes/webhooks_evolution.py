"""Evolution API webhook receiver.

Security:
- X-Api-Key identifies the workspace; unknown or inactive keys get 401
- Credentials are never stored with the delivery row
- Logs contain NO phone numbers, JIDs or message text
"""

from __future__ import annotations

import json
from typing import Any

from fastapi import APIRouter, Depends, Header, Request
from fastapi.responses import JSONResponse
from starlette.concurrency import run_in_threadpool

from convoflow.api.dependencies import get_pipeline
from convoflow.ingest.pipeline import IngestPipeline
from convoflow.observability.logging import get_logger
from convoflow.observability.redaction import safe_log_context
from convoflow.whatsapp.evolution_adapter import InvalidPayloadError

router = APIRouter(prefix="/webhooks/evolution", tags=["webhooks"])

logger = get_logger(__name__)


def _error(status_code: int, error: str) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"ok": False, "error": error})


@router.get("")
def evolution_webhook_probe() -> dict:
    """Reachability probe used by the provider's webhook setup."""
    return {"ok": True}


@router.post("")
async def evolution_webhook(
    request: Request,
    x_api_key: str | None = Header(None, alias="X-Api-Key"),
    pipeline: IngestPipeline = Depends(get_pipeline),
) -> JSONResponse:
    """Receive one Evolution API event.

    Returns:
        200 {ok: true, ...} if processed, ignored or duplicate.
        401 if the API key is missing or unknown.
        422 if the body is not a JSON object, or a message event names an
            instance this workspace does not own.
        500 {ok: false, error} on unexpected failure.
    """
    if not x_api_key:
        logger.warning("evolution webhook without api key")
        return _error(401, "unauthorized")

    try:
        workspace_id = await run_in_threadpool(pipeline.store.workspace_for_api_key, x_api_key)
    except Exception:
        logger.exception("api key lookup failed")
        return _error(500, "internal error")
    if workspace_id is None:
        logger.warning("evolution webhook api key rejected")
        return _error(401, "unauthorized")

    raw = await request.body()
    body_text = raw.decode("utf-8", errors="replace")
    try:
        body: Any = json.loads(body_text)
    except ValueError:
        logger.warning(
            "invalid json body",
            extra={"extra_fields": safe_log_context(workspace_id=workspace_id, body_len=len(raw))},
        )
        return _error(422, "invalid json")

    try:
        result = await run_in_threadpool(
            pipeline.process_webhook, workspace_id, body_text, body, dict(request.headers)
        )
    except InvalidPayloadError as e:
        logger.warning(
            "invalid evolution payload shape",
            extra={"extra_fields": safe_log_context(workspace_id=workspace_id)},
        )
        return _error(422, str(e))
    except Exception:
        # delivery insert itself failed
        logger.exception(
            "webhook delivery could not be recorded",
            extra={"extra_fields": safe_log_context(workspace_id=workspace_id)},
        )
        return _error(500, "internal error")

    return JSONResponse(status_code=result.http_status, content=result.body)
