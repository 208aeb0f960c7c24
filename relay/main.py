from fastapi import Depends, FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, PlainTextResponse, StreamingResponse
import anyio
import asyncio
import logging
import json
import datetime
import os
from typing import AsyncIterator, Optional

from relay.generation import (
    FragmentStream,
    GenerationClient,
    UpstreamError,
    client_for,
    to_upstream_contents,
)
from relay.models import ErrorResponse
from relay.payload import InvalidChatRequest, parse_history, resolve_options
from relay.settings import RelaySettings, get_settings

app = FastAPI(
    title="SHIMA Chat Relay",
    description="Streams Gemini completions to the SHIMA chat client",
    version="1.0.0"
)

# Enable CORS for the browser client
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],  # In production, specify exact origins
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger("audit_logger")

STREAM_HEADERS = {
    "Cache-Control": "no-cache, no-transform",
    "X-Accel-Buffering": "no",
}
FALLBACK_ERROR = "Gemini error"


class UpstreamStreamError(RuntimeError):
    """The generation stream broke after the response had started."""


def get_generation_client(settings: RelaySettings = Depends(get_settings)) -> Optional[GenerationClient]:
    if not settings.configured:
        return None
    return client_for(settings.api_key, settings.base_url)


def _audit(status: str, **fields) -> None:
    audit_log = {
        "timestamp": datetime.datetime.utcnow().isoformat(),
        "status": status,
        **fields,
    }
    if status == "SUCCESS":
        logger.info("AUDIT_LOG: %s", json.dumps(audit_log, ensure_ascii=False))
    else:
        logger.error("AUDIT_LOG: %s", json.dumps(audit_log, ensure_ascii=False))


async def _read_body(request: Request) -> dict:
    try:
        body = await request.json()
    except ValueError:
        return {}
    return body if isinstance(body, dict) else {}


async def relay_fragments(stream: FragmentStream, first: Optional[str], model: str) -> AsyncIterator[bytes]:
    """
    Re-emit upstream fragments as UTF-8 chunks, in arrival order.
    The upstream stream is closed on every exit path.
    """
    fragments = 0
    try:
        if first:
            fragments += 1
            yield first.encode("utf-8")
        async for fragment in stream:
            fragments += 1
            yield fragment.encode("utf-8")
        _audit("SUCCESS", model=model, fragments=fragments)
    except (asyncio.CancelledError, GeneratorExit):
        logger.info("Client went away after %d fragment(s); releasing upstream stream", fragments)
        raise
    except UpstreamError as e:
        _audit("STREAM_ERROR", model=model, fragments=fragments, error=str(e))
        raise UpstreamStreamError(str(e)) from e
    finally:
        with anyio.CancelScope(shield=True):
            await stream.aclose()


@app.get("/health")
def health_check():
    """Health check for the hosting platform"""
    return {"status": "healthy"}


@app.get("/chat")
def chat_liveness(settings: RelaySettings = Depends(get_settings)):
    if not settings.configured:
        return PlainTextResponse("GOOGLE_API_KEY not set", status_code=500)
    return PlainTextResponse("chat endpoint ok")


@app.post("/chat")
async def chat(
    request: Request,
    settings: RelaySettings = Depends(get_settings),
    generation: Optional[GenerationClient] = Depends(get_generation_client),
):
    if not settings.configured or generation is None:
        return PlainTextResponse("Server missing GOOGLE_API_KEY", status_code=500)

    body = await _read_body(request)
    try:
        turns = parse_history(body.get("messages"))
    except InvalidChatRequest as e:
        _audit("INVALID", error=str(e))
        return JSONResponse(status_code=400, content=ErrorResponse(error=str(e)).model_dump())

    options = resolve_options(body, settings)

    try:
        stream = await generation.stream(to_upstream_contents(turns), options)
    except UpstreamError as e:
        _audit("ERROR", model=options.model, turns=len(turns), error=str(e))
        return PlainTextResponse(str(e) or FALLBACK_ERROR, status_code=500)

    # Pull the first fragment before committing to a 200
    try:
        first = await anext(stream, None)
    except UpstreamError as e:
        await stream.aclose()
        _audit("ERROR", model=options.model, turns=len(turns), error=str(e))
        return PlainTextResponse(str(e) or FALLBACK_ERROR, status_code=500)

    logger.info("Streaming %s for %d turn(s)", options.model, len(turns))
    return StreamingResponse(
        relay_fragments(stream, first, options.model),
        media_type="text/plain; charset=utf-8",
        headers=STREAM_HEADERS,
    )


# For local development
if __name__ == "__main__":
    import uvicorn
    port = int(os.environ.get("PORT", 8000))
    uvicorn.run(app, host="0.0.0.0", port=port)
