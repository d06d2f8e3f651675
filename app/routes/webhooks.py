"""
Webhook API routes.

Inbound completion channels from the AI provider:

- GET  /webhook-callback                       redirect callback (browser)
- POST /api/webhooks/message                   cross-window message relay
- POST /api/webhooks/transformation-callback   server-to-server JSON
- /api/webhooks/mailbox                        polled mailbox

Each endpoint only parses; the reconciler decides what the signal means.
"""
import json
from typing import Any
from urllib.parse import urlsplit

from fastapi import APIRouter, Depends, Header, HTTPException, Request, status
from fastapi.responses import HTMLResponse
from pydantic import BaseModel

from app.config import settings
from app.logging_config import get_logger
from app.models.job import JobKind
from app.services.job_runtime import JobRuntime, get_runtime
from app.services.reconciler import (
    CompletionOutcome,
    CompletionSignal,
    ID_FIELDS,
    MESSAGE_TYPES,
    RESULT_FIELDS,
    SignalChannel,
    signal_from_callback_body,
    signal_from_mailbox_entry,
    signal_from_message,
    signal_from_query_params,
)


log = get_logger(component="webhooks")

router = APIRouter(tags=["webhooks"])

SIMULATED_RESULTS = {
    JobKind.TRANSFORMATION: "https://drive.google.com/uc?id=1q8Jvf1Ra5n8lHx4vg_mEIxzezy7Ocxqg&export=download",
    JobKind.DESCRIPTION: "Luminosa propiedad en excelente ubicación, ideal para familias.",
}

CALLBACK_PAGE = """<!DOCTYPE html>
<html>
<head>
<meta charset="utf-8">
<meta http-equiv="refresh" content="{delay};url={redirect_url}">
<title>{title}</title>
</head>
<body>
<p>{title}</p>
<script>
var message = {message};
if (message && window.opener) {{ window.opener.postMessage(message, "*"); }}
if (message && window.parent !== window) {{ window.parent.postMessage(message, "*"); }}
</script>
</body>
</html>
"""


def _origin(url: str) -> str:
    parts = urlsplit(url)
    return f"{parts.scheme}://{parts.netloc}"


def allowed_origins() -> set[str]:
    """Message origins accepted by the relay: the provider's and our own."""
    return {
        *(origin.rstrip("/") for origin in settings.ALLOWED_MESSAGE_ORIGINS),
        _origin(settings.PUBLIC_BASE_URL),
        _origin(settings.FRONTEND_URL),
    }


def _callback_page(title: str, redirect_path: str, message: dict | None) -> str:
    # "</" must not appear inside the inline script
    message_js = json.dumps(message).replace("</", "<\\/")
    return CALLBACK_PAGE.format(
        title=title,
        delay=settings.CALLBACK_REDIRECT_DELAY_SECONDS,
        redirect_url=settings.FRONTEND_URL.rstrip("/") + redirect_path,
        message=message_js,
    )


# ============================================
# Redirect callback
# ============================================

@router.get("/webhook-callback", response_class=HTMLResponse)
async def webhook_callback(
    request: Request,
    runtime: JobRuntime = Depends(get_runtime)
):
    """
    Landing page the provider redirects to when a job finishes.

    Applies the result, relays it to an opener window as a message and
    forwards the browser to the matching list page.
    """
    params = dict(request.query_params)
    signal = signal_from_query_params(params)

    if signal is None:
        log.warning("invalid_callback", params=sorted(params))
        return HTMLResponse(_callback_page("Invalid callback", "/", None), status_code=status.HTTP_400_BAD_REQUEST)

    await runtime.reconciler.apply_completion(signal, SignalChannel.REDIRECT)

    message_type = next(name for name, kind in MESSAGE_TYPES.items() if kind == signal.kind)
    message = {
        "type": message_type,
        "payload": {
            ID_FIELDS[signal.kind]: signal.job_id,
            RESULT_FIELDS[signal.kind]: signal.result,
            "error": signal.error,
        },
    }
    return _callback_page("Processing response", f"/{signal.kind.value}s", message)


# ============================================
# Message relay
# ============================================

@router.post("/api/webhooks/message", response_model=dict)
async def receive_message(
    data: dict[str, Any],
    origin: str | None = Header(None),
    runtime: JobRuntime = Depends(get_runtime)
):
    """
    Accept a completion message relayed by a browser window.

    Only messages from allow-listed origins are applied.
    """
    if not origin or origin.rstrip("/") not in allowed_origins():
        log.warning("message_from_untrusted_origin", origin=origin)
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Origin not allowed"
        )

    signal = signal_from_message(data)
    if signal is None:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Unrecognised completion message"
        )

    outcome = await runtime.reconciler.apply_completion(signal, SignalChannel.MESSAGE)
    return {"outcome": outcome.value}


# ============================================
# Server-to-server callback
# ============================================

@router.post("/api/webhooks/transformation-callback", response_model=dict)
async def transformation_callback(
    body: dict[str, Any],
    runtime: JobRuntime = Depends(get_runtime)
):
    """
    JSON callback for finished transformations.

    Accepts {transformationId, transformedImageUrl} or {id, url}, either
    one optionally wrapped in {"data": ...}.
    """
    signal = signal_from_callback_body(body)
    if signal is None:
        log.warning("invalid_transformation_callback", keys=sorted(body))
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Missing transformation id or result URL"
        )

    outcome = await runtime.reconciler.apply_completion(signal, SignalChannel.CALLBACK)
    if outcome == CompletionOutcome.UNKNOWN_JOB:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Transformation not found: {signal.job_id}"
        )

    return {"success": True, "transformationId": signal.job_id, "outcome": outcome.value}


# ============================================
# Mailbox
# ============================================

@router.get("/api/webhooks/mailbox", response_model=dict)
async def get_mailbox(runtime: JobRuntime = Depends(get_runtime)):
    """Entries waiting for the next poll."""
    entries = await runtime.mailbox.peek()
    return {"count": len(entries), "entries": entries}


@router.post("/api/webhooks/mailbox", response_model=dict, status_code=status.HTTP_202_ACCEPTED)
async def append_to_mailbox(
    entry: dict[str, Any],
    runtime: JobRuntime = Depends(get_runtime)
):
    """Queue a completion entry for the poller."""
    if signal_from_mailbox_entry(entry) is None:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Entry needs transformationId or descriptionId"
        )

    depth = await runtime.mailbox.append(entry)
    return {"queued": True, "depth": depth}


@router.delete("/api/webhooks/mailbox", status_code=status.HTTP_204_NO_CONTENT)
async def clear_mailbox(runtime: JobRuntime = Depends(get_runtime)):
    await runtime.mailbox.clear()
    log.info("mailbox_cleared")


# ============================================
# Simulation (development only)
# ============================================

class SimulateRequest(BaseModel):
    """Optional override of the simulated outcome."""
    result: str | None = None
    error: str | None = None


@router.post("/api/webhooks/simulate/{kind}/{job_id}", response_model=dict)
async def simulate_completion(
    kind: JobKind,
    job_id: str,
    request: SimulateRequest | None = None,
    runtime: JobRuntime = Depends(get_runtime)
):
    """
    Finish a job as if the provider had answered.

    Only available when ENABLE_WEBHOOK_SIMULATION is set.
    """
    if not settings.ENABLE_WEBHOOK_SIMULATION:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Not Found")

    request = request or SimulateRequest()
    signal = CompletionSignal(
        kind=kind,
        job_id=job_id,
        result=None if request.error else (request.result or SIMULATED_RESULTS[kind]),
        error=request.error,
    )

    outcome = await runtime.reconciler.apply_completion(signal, SignalChannel.SIMULATION)
    if outcome == CompletionOutcome.UNKNOWN_JOB:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"{kind.value.capitalize()} not found: {job_id}"
        )

    log.info("simulated_completion", kind=kind.value, job_id=job_id, outcome=outcome.value)
    return {"success": True, "outcome": outcome.value, "result": signal.result}
