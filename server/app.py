"""
FastAPI server for the voice hooks coordinator.

Endpoints:
- GET /health, GET /metrics
- Utterances: POST /api/potential-utterances, GET /api/utterances,
  GET /api/conversation, GET /api/utterances/status,
  GET /api/has-pending-utterances, DELETE /api/utterances[/{id}]
- Agent side: POST /api/dequeue-utterances, POST /api/wait-for-utterances,
  POST /api/validate-action, POST /api/hooks/{pre-tool,post-tool,pre-speak,stop},
  POST /api/speak
- Browser side: GET /api/tts-events (Server-Sent Events),
  POST /api/voice-preferences, POST /api/voice-input-state
"""

import asyncio
import sys

# Use uvloop for faster asyncio (Linux/macOS only)
try:
    import uvloop
    asyncio.set_event_loop_policy(uvloop.EventLoopPolicy())
except ImportError:
    pass  # uvloop not available on Windows

import time
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, AsyncIterator, Dict, Optional
import logging

from fastapi import FastAPI, Query, Request
from fastapi.responses import JSONResponse, StreamingResponse
from pydantic import BaseModel
import structlog
import uvicorn

from src.voice_hooks.broadcast import CONNECTED_EVENT, QueueObserver, format_sse
from src.voice_hooks.config import get_config, init_config, ConfigError
from src.voice_hooks.hooks import AttemptedAction, HookDecision
from src.voice_hooks.service import ValidationFailure, VoiceHooksService


def configure_logging(log_level: str = "INFO") -> None:
    """Configure structured logging."""
    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.stdlib.PositionalArgumentsFormatter(),
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.processors.UnicodeDecoder(),
            structlog.processors.JSONRenderer() if log_level != "DEBUG" else structlog.dev.ConsoleRenderer(),
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    # Set log level
    logging.basicConfig(
        format="%(message)s",
        stream=sys.stderr,
        level=getattr(logging, log_level.upper(), logging.INFO),
    )

logger = structlog.get_logger(__name__)

SSE_KEEPALIVE_SECONDS = 15.0


@dataclass
class ServerMetrics:
    """Server-wide metrics."""
    start_time: float = field(default_factory=time.time)
    utterances_submitted: int = 0
    hook_requests: int = 0
    hook_blocks: int = 0
    waits: int = 0
    total_streams: int = 0
    active_streams: int = 0
    errors: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "uptime_seconds": round(time.time() - self.start_time, 2),
            "utterances_submitted": self.utterances_submitted,
            "hook_requests": self.hook_requests,
            "hook_blocks": self.hook_blocks,
            "waits": self.waits,
            "total_streams": self.total_streams,
            "active_streams": self.active_streams,
            "errors": self.errors,
        }


# Global metrics
metrics = ServerMetrics()


class UtteranceRequest(BaseModel):
    text: Optional[str] = None
    timestamp: Optional[datetime] = None


class ActionRequest(BaseModel):
    action: Optional[Any] = None


class VoicePreferencesRequest(BaseModel):
    voiceResponsesEnabled: bool = False


class VoiceInputStateRequest(BaseModel):
    active: bool = False


class SpeakRequest(BaseModel):
    text: Optional[str] = None


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan manager."""
    # Startup
    logger.info("Starting voice hooks server...")

    try:
        config = init_config()
        configure_logging(config.log_level)
        app.state.service = VoiceHooksService.create(config)

        logger.info(
            "Server ready",
            port=config.port,
            base_url=config.base_url,
        )

    except ConfigError as e:
        logger.error("Configuration error", error=str(e))
        sys.exit(1)
    except SystemExit:
        raise
    except Exception as e:
        logger.error("Startup failed", error=str(e))
        sys.exit(1)

    yield

    # Shutdown
    logger.info("Shutting down server...")


# Create FastAPI app
app = FastAPI(
    title="Voice Hooks",
    description="Turn-taking coordinator between a voice front-end and a text agent",
    version="1.0.0",
    lifespan=lifespan,
)


def _service(request: Request) -> VoiceHooksService:
    return request.app.state.service


@app.get("/health")
async def health_check(request: Request) -> JSONResponse:
    """Health check endpoint."""
    service = _service(request)
    return JSONResponse(
        content={
            "status": "healthy",
            "timestamp": time.time(),
            "queue": service.get_counts().to_dict(),
            "observers": service.context.notifier.observer_count,
        }
    )


@app.get("/metrics")
async def get_metrics() -> JSONResponse:
    """Metrics endpoint."""
    return JSONResponse(content=metrics.to_dict())


# ---------------------------------------------------------------------------
# Utterances
# ---------------------------------------------------------------------------

@app.post("/api/potential-utterances")
async def submit_utterance(body: UtteranceRequest, request: Request) -> JSONResponse:
    result = _service(request).submit_utterance(body.text or "", body.timestamp)
    if not result.success:
        return JSONResponse(status_code=400, content={"error": result.error})
    metrics.utterances_submitted += 1
    return JSONResponse(content=result.to_dict())


@app.get("/api/utterances")
async def list_utterances(request: Request, limit: int = Query(10)) -> JSONResponse:
    utterances = _service(request).list_recent_utterances(limit if limit > 0 else 10)
    return JSONResponse(content={"utterances": [u.to_dict() for u in utterances]})


@app.get("/api/conversation")
async def list_conversation(request: Request, limit: int = Query(50)) -> JSONResponse:
    messages = _service(request).list_recent_messages(limit if limit > 0 else 50)
    return JSONResponse(content={"messages": [m.to_dict() for m in messages]})


@app.get("/api/utterances/status")
async def utterance_status(request: Request) -> JSONResponse:
    return JSONResponse(content=_service(request).get_counts().to_dict())


@app.get("/api/has-pending-utterances")
async def has_pending_utterances(request: Request) -> JSONResponse:
    pending_count = _service(request).pending_count()
    return JSONResponse(content={"hasPending": pending_count > 0, "pendingCount": pending_count})


@app.delete("/api/utterances/{utterance_id}")
async def delete_utterance(utterance_id: str, request: Request) -> JSONResponse:
    if _service(request).delete_utterance(utterance_id):
        return JSONResponse(content={"success": True, "message": "Message deleted"})
    return JSONResponse(
        status_code=400,
        content={"success": False, "error": "Only pending messages can be deleted"},
    )


@app.delete("/api/utterances")
async def clear_utterances(request: Request) -> JSONResponse:
    cleared = _service(request).clear_all()
    return JSONResponse(
        content={
            "success": True,
            "message": f"Cleared {cleared} utterances",
            "clearedCount": cleared,
        }
    )


# ---------------------------------------------------------------------------
# Agent side
# ---------------------------------------------------------------------------

@app.post("/api/dequeue-utterances")
async def dequeue_utterances(request: Request) -> JSONResponse:
    return JSONResponse(content=_service(request).dequeue_pending().to_dict())


@app.post("/api/wait-for-utterances")
async def wait_for_utterances(request: Request) -> JSONResponse:
    metrics.waits += 1
    result = await _service(request).wait_for_utterance()
    if not result.success:
        return JSONResponse(status_code=400, content=result.to_dict())
    return JSONResponse(content=result.to_dict())


@app.post("/api/validate-action")
async def validate_action(body: ActionRequest, request: Request) -> JSONResponse:
    result = _service(request).validate_action(body.action)
    if isinstance(result, ValidationFailure):
        return JSONResponse(status_code=400, content=result.to_dict())
    return JSONResponse(content=result.to_dict())


async def _run_hook(request: Request, action: AttemptedAction) -> JSONResponse:
    metrics.hook_requests += 1
    result = await _service(request).evaluate_action(action)
    if isinstance(result, HookDecision) and not result.approved:
        metrics.hook_blocks += 1
    return JSONResponse(content=result.to_dict())


@app.post("/api/hooks/pre-tool")
async def pre_tool_hook(request: Request) -> JSONResponse:
    return await _run_hook(request, AttemptedAction.TOOL)


@app.post("/api/hooks/post-tool")
async def post_tool_hook(request: Request) -> JSONResponse:
    return await _run_hook(request, AttemptedAction.POST_TOOL)


@app.post("/api/hooks/pre-speak")
async def pre_speak_hook(request: Request) -> JSONResponse:
    return await _run_hook(request, AttemptedAction.SPEAK)


@app.post("/api/hooks/stop")
async def stop_hook(request: Request) -> JSONResponse:
    return await _run_hook(request, AttemptedAction.STOP)


@app.post("/api/speak")
async def speak(body: SpeakRequest, request: Request) -> JSONResponse:
    result = _service(request).speak(body.text or "")
    return JSONResponse(status_code=result.status_code, content=result.to_dict())


# ---------------------------------------------------------------------------
# Browser side
# ---------------------------------------------------------------------------

@app.post("/api/voice-preferences")
async def update_voice_preferences(body: VoicePreferencesRequest, request: Request) -> JSONResponse:
    prefs = _service(request).set_voice_responses(body.voiceResponsesEnabled)
    return JSONResponse(content={"success": True, "preferences": prefs.to_dict()})


@app.post("/api/voice-input-state")
async def update_voice_input_state(body: VoiceInputStateRequest, request: Request) -> JSONResponse:
    prefs = _service(request).set_voice_input_active(body.active)
    return JSONResponse(content={"success": True, "voiceInputActive": prefs.voice_input_active})


@app.get("/api/tts-events")
async def tts_events(request: Request) -> StreamingResponse:
    """
    Server-Sent Events stream of speak/waitStatus events for one browser tab.

    Closing the last stream switches voice input and voice responses off.
    """
    service = _service(request)
    observer = QueueObserver(maxsize=service.context.config.sse_queue_size)

    async def event_stream() -> AsyncIterator[str]:
        service.subscribe(observer)
        metrics.total_streams += 1
        metrics.active_streams += 1
        try:
            yield format_sse(CONNECTED_EVENT)
            while True:
                try:
                    event = await asyncio.wait_for(
                        observer.next_event(), timeout=SSE_KEEPALIVE_SECONDS
                    )
                except asyncio.TimeoutError:
                    if await request.is_disconnected():
                        break
                    yield ": keep-alive\n\n"
                    continue
                yield format_sse(event)
        finally:
            observer.close()
            service.unsubscribe(observer)
            metrics.active_streams -= 1
            logger.info("Event stream closed", active_streams=metrics.active_streams)

    return StreamingResponse(
        event_stream(),
        media_type="text/event-stream",
        headers={"Cache-Control": "no-cache", "Connection": "keep-alive"},
    )


@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Global exception handler."""
    logger.error(
        "Unhandled exception",
        path=request.url.path,
        error=str(exc),
    )
    metrics.errors += 1

    return JSONResponse(
        status_code=500,
        content={"error": "Internal server error"},
    )


def main() -> None:
    """Run the server."""
    config = get_config()
    configure_logging(config.log_level)

    logger.info(
        "Starting server",
        host=config.host,
        port=config.port,
    )

    uvicorn.run(
        "server.app:app",
        host=config.host,
        port=config.port,
        log_level=config.log_level.lower(),
        reload=False,
    )


if __name__ == "__main__":
    main()
