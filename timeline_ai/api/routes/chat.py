"""Chat API routes.

POST /chat runs a resilient dispatch (cache, retry, fallback).
POST /chat/stream streams one model's reply as NDJSON events:
    {"type": "content", "delta": "..."}
    {"type": "complete", "content": "..."}
    {"type": "error", "message": "..."}
"""

import json
import logging
import queue
import threading
from typing import Iterator, Optional

from fastapi import APIRouter, Depends, HTTPException
from fastapi.responses import StreamingResponse
from pydantic import BaseModel, Field

from timeline_ai.api.dependencies import get_provider_router
from timeline_ai.llm.errors import CredentialMissingError, ProviderError
from timeline_ai.llm.router import ProviderRouter
from timeline_ai.llm.schemas import DispatchResult, Message, RequestOptions, StreamCallbacks

logger = logging.getLogger(__name__)

router = APIRouter(tags=["chat"])


class ChatRequest(BaseModel):
    model_id: str
    messages: list[Message] = Field(..., min_length=1)
    options: Optional[RequestOptions] = None


def _raise_http_error(e: ProviderError) -> None:
    if isinstance(e, CredentialMissingError):
        raise HTTPException(status_code=503, detail=str(e)) from e
    raise HTTPException(status_code=502, detail=str(e)) from e


@router.post("/chat", response_model=DispatchResult)
def chat(
    request: ChatRequest,
    provider_router: ProviderRouter = Depends(get_provider_router),
) -> DispatchResult:
    """Send a chat request, falling back across the requested models."""
    try:
        return provider_router.dispatch(request.model_id, request.messages, request.options)
    except ProviderError as e:
        logger.error(f"Chat failed for {request.model_id}: {e}")
        _raise_http_error(e)


@router.post("/chat/stream")
def chat_stream(
    request: ChatRequest,
    provider_router: ProviderRouter = Depends(get_provider_router),
) -> StreamingResponse:
    """Stream a reply from a single model."""
    events: queue.Queue = queue.Queue()
    finished = object()
    disconnected = threading.Event()

    callbacks = StreamCallbacks(
        on_content=lambda delta: events.put({"type": "content", "delta": delta}),
        on_complete=lambda content: events.put({"type": "complete", "content": content}),
        on_error=lambda e: events.put({"type": "error", "message": str(e)}),
        cancellation_check=disconnected.is_set,
    )

    def run() -> None:
        try:
            provider_router.dispatch_streaming(
                request.model_id, request.messages, callbacks, request.options
            )
        except (ProviderError, InterruptedError) as e:
            # Already delivered through on_error
            logger.info(f"[{request.model_id}] Stream ended with error: {e}")
        except Exception as e:
            logger.error(f"[{request.model_id}] Stream crashed: {e}", exc_info=True)
            events.put({"type": "error", "message": str(e)})
        finally:
            events.put(finished)

    threading.Thread(target=run, name=f"stream-{request.model_id}", daemon=True).start()

    def body() -> Iterator[str]:
        try:
            while True:
                event = events.get()
                if event is finished:
                    return
                yield json.dumps(event) + "\n"
        finally:
            disconnected.set()

    return StreamingResponse(body(), media_type="application/x-ndjson")


@router.get("/cache/stats")
def get_cache_stats(
    provider_router: ProviderRouter = Depends(get_provider_router),
) -> dict:
    return provider_router.cache_stats()


@router.delete("/cache")
def clear_cache(
    provider_router: ProviderRouter = Depends(get_provider_router),
) -> dict:
    provider_router.clear_cache()
    return {"cleared": True}
