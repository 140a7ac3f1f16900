"""
CodeStream Receiver Application
===============================

FastAPI entry point for the receiving side.

The lifespan wires the pipeline:
    FrameBroadcastHub -> LatestFrameTracker
                      -> DetectionThrottle -> DetectionBatch
    RegionDecoder resolves decode requests against the tracked frames.

Endpoints:
    GET  /              - Service information
    GET  /health        - Liveness check (is process alive?)
    GET  /ready         - Readiness check (hub listening?)
    GET  /metrics       - Hub, throttle and decoder counters
    GET  /detections    - Most recent detection batch
    GET  /frame         - Most recent frame as JPEG
    POST /decode        - Decode one detection (by index) or region
    WS   /ws/detections - Real-time detection batches
    WS   /ws/status     - Hub status messages
"""

import asyncio
import logging
import os
import time
from contextlib import asynccontextmanager
from typing import AsyncIterator, Optional

from fastapi import FastAPI, WebSocket, WebSocketDisconnect
from fastapi.responses import JSONResponse, Response
from pydantic import BaseModel, Field

from codestream import __version__
from codestream.config import settings
from codestream.decoding import RegionDecoder, ZXingSymbolDecoder
from codestream.detection import DetectionThrottle, create_detector
from codestream.events import Broadcaster
from codestream.models import Rect
from codestream.transport import (
    BroadcastBuffer,
    FrameBroadcastHub,
    LatestFrameTracker,
)


logger = logging.getLogger(__name__)


# =============================================================================
# Global State
# =============================================================================

_shutdown_flag: bool = False
_startup_time: float = 0.0

_hub: Optional[FrameBroadcastHub] = None
_tracker: Optional[LatestFrameTracker] = None
_throttle: Optional[DetectionThrottle] = None
_decoder: Optional[RegionDecoder] = None


# =============================================================================
# Getters
# =============================================================================

def get_hub() -> Optional[FrameBroadcastHub]:
    return _hub

def get_tracker() -> Optional[LatestFrameTracker]:
    return _tracker

def get_throttle() -> Optional[DetectionThrottle]:
    return _throttle

def get_decoder() -> Optional[RegionDecoder]:
    return _decoder


# =============================================================================
# Lifespan Management
# =============================================================================

@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Build the receive pipeline on startup, tear it down in reverse."""
    global _hub, _tracker, _throttle, _decoder
    global _shutdown_flag, _startup_time

    _shutdown_flag = False
    _startup_time = time.time()
    logger.info(f"Starting CodeStream receiver {__version__}")

    # Decoding
    symbol_decoder = ZXingSymbolDecoder(
        formats=settings.decode.formats,
        try_rotate=settings.decode.try_rotate,
        try_harder=settings.decode.try_harder,
        try_inverted=settings.decode.try_inverted,
    )

    # Ingestion
    _hub = FrameBroadcastHub(
        max_frame_bytes=settings.hub.max_frame_bytes,
        stop_grace_seconds=settings.hub.stop_grace_seconds,
    )
    _tracker = LatestFrameTracker()
    _tracker.attach(_hub.frames)

    # Detection (backend selection fails fast)
    _throttle = DetectionThrottle(
        detector=create_detector(settings.detection),
        padding=settings.detection.padding,
        cooldown_ms=settings.detection.cooldown_ms,
        detector_timeout_seconds=settings.detection.detector_timeout_seconds,
        shutdown_timeout_seconds=settings.detection.shutdown_timeout_seconds,
    )
    _throttle.attach(_hub.frames)

    _decoder = RegionDecoder(
        symbol_decoder,
        tracker=_tracker,
        use_detection_frame=settings.decode.use_detection_frame,
    )

    await _hub.start(settings.hub.bind_host, settings.hub.bind_port)
    logger.info(
        f"Receiver ready: hub={settings.hub.bind_host}:{_hub.port}, "
        f"detector={settings.detection.backend}"
    )

    yield

    # Shutdown
    logger.info("Shutting down gracefully...")
    _shutdown_flag = True

    await _throttle.close()
    _tracker.detach()
    _tracker.clear()
    await _hub.stop()

    logger.info("Shutdown complete")


# =============================================================================
# FastAPI Application
# =============================================================================

app = FastAPI(
    title="CodeStream",
    description="Live barcode/QR detection over a framed TCP video link",
    version=__version__,
    lifespan=lifespan,
)


class DecodeRequest(BaseModel):
    """Body of POST /decode: a detection index or explicit bounds."""

    index: Optional[int] = Field(default=None, ge=0, description="Detection index in the latest batch")
    bounds: Optional[Rect] = Field(default=None, description="Explicit region in frame pixels")


# =============================================================================
# HTTP Endpoints
# =============================================================================

@app.get("/")
async def root() -> JSONResponse:
    """Service information endpoint."""
    return JSONResponse({
        "service": "CodeStream",
        "version": __version__,
        "status": "running",
        "detector_backend": settings.detection.backend,
        "hub_port": _hub.port if _hub else None,
    })


@app.get("/health")
async def health() -> JSONResponse:
    """
    Liveness check - is the process alive?

    Always returns 200 if the service is running.
    """
    return JSONResponse({
        "status": "healthy",
        "uptime_seconds": round(time.time() - _startup_time, 1),
    })


@app.get("/ready")
async def ready() -> JSONResponse:
    """
    Readiness check - is the hub accepting producers?

    Returns 503 until the listener is bound.
    """
    hub = get_hub()
    listening = hub.running if hub else False

    if listening:
        return JSONResponse({
            "status": "ready",
            "hub_port": hub.port,
            "producers": hub.active_connections,
        })
    return JSONResponse(
        {"status": "not_ready", "hub_listening": False},
        status_code=503,
    )


@app.get("/metrics")
async def metrics() -> JSONResponse:
    """Detailed metrics for observability."""
    hub = get_hub()
    throttle = get_throttle()
    decoder = get_decoder()

    return JSONResponse({
        "uptime_seconds": round(time.time() - _startup_time, 1),
        "detector_backend": settings.detection.backend,
        "hub": {
            **hub.metrics.to_dict(),
            "active_connections": hub.active_connections,
        } if hub else {},
        "detection": throttle.metrics.to_dict() if throttle else {},
        "decode": decoder.metrics.to_dict() if decoder else {},
    })


@app.get("/detections")
async def detections() -> JSONResponse:
    """Most recent detection batch."""
    throttle = get_throttle()
    batch = throttle.latest_batch if throttle else None

    if batch is None:
        return JSONResponse(
            {"error": "No detections available yet"},
            status_code=503,
        )
    return JSONResponse(batch.to_dict())


@app.get("/frame")
async def frame() -> Response:
    """Most recent frame, as the JPEG payload the producer sent."""
    tracker = get_tracker()
    latest = tracker.latest if tracker else None

    if latest is None:
        return JSONResponse(
            {"error": "No frame received yet"},
            status_code=503,
        )

    return Response(
        content=latest.frame.payload,
        media_type="image/jpeg",
        headers={"X-Frame-Id": str(latest.frame_id)},
    )


@app.post("/decode")
async def decode(request: DecodeRequest) -> JSONResponse:
    """
    Decode a selected region.

    With `index`, the detection is taken from the most recent batch.
    With `bounds`, the region is decoded as given.
    """
    decoder = get_decoder()
    throttle = get_throttle()
    if decoder is None or throttle is None:
        return JSONResponse({"error": "Service not ready"}, status_code=503)

    batch = throttle.latest_batch

    if request.index is not None:
        if batch is None or request.index >= len(batch):
            return JSONResponse(
                {"error": f"No detection at index {request.index}"},
                status_code=404,
            )
        result = await decoder.decode_async(batch.detections[request.index], batch)
    elif request.bounds is not None:
        result = await asyncio.to_thread(decoder.decode_bounds, request.bounds, batch)
    else:
        return JSONResponse(
            {"error": "Provide either 'index' or 'bounds'"},
            status_code=400,
        )

    return JSONResponse(result.model_dump(mode="json"))


# =============================================================================
# WebSocket Endpoints
# =============================================================================

async def _wait_for_disconnect(websocket: WebSocket) -> None:
    """Consume client messages until the client disconnects."""
    while True:
        message = await websocket.receive()
        if message["type"] == "websocket.disconnect":
            return


async def _push_broadcast(websocket: WebSocket, broadcaster: Broadcaster, to_json) -> None:
    """Relay a broadcaster to one websocket client until it goes away."""
    buffer: BroadcastBuffer = BroadcastBuffer(maxsize=8)
    buffer.attach(broadcaster)
    disconnected = asyncio.create_task(_wait_for_disconnect(websocket))
    try:
        while not _shutdown_flag and not disconnected.done():
            item = await buffer.get(timeout=0.5)
            if item is not None:
                await websocket.send_json(to_json(item))
    except WebSocketDisconnect:
        pass
    except Exception as e:
        logger.warning(f"WebSocket error: {e}")
    finally:
        disconnected.cancel()
        buffer.detach()


@app.websocket("/ws/detections")
async def detection_stream(websocket: WebSocket) -> None:
    """WebSocket endpoint for real-time detection batches."""
    throttle = get_throttle()
    await websocket.accept()
    logger.info("Client connected to /ws/detections")

    if throttle is not None:
        await _push_broadcast(websocket, throttle.batches, lambda batch: batch.to_dict())
    logger.info("Client disconnected from /ws/detections")


@app.websocket("/ws/status")
async def status_stream(websocket: WebSocket) -> None:
    """WebSocket endpoint for hub status messages."""
    hub = get_hub()
    await websocket.accept()
    logger.info("Client connected to /ws/status")

    if hub is not None:
        await _push_broadcast(websocket, hub.status, lambda message: {"status": message})
    logger.info("Client disconnected from /ws/status")


# =============================================================================
# Main Entry Point
# =============================================================================

if __name__ == "__main__":
    import uvicorn

    port = int(os.environ.get("PORT", settings.server.port))

    uvicorn.run(
        "codestream.main:app",
        host=settings.server.host,
        port=port,
        reload=False,
    )
