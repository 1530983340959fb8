"""
Module: icon_pack.mock_server
Purpose: Simulated generation backend for local runs and tests
Dependencies: fastapi, uvicorn, pydantic, Pillow

Implements the backend's HTTP and push-event endpoints with placeholder icons
drawn by Pillow. Each enabled provider "generates" instantly when the request
is submitted; the event stream then replays the results with an optional
delay between events.

Usage:
    icon-pack serve-mock --port 8080
    icon-pack --base-url http://localhost:8080 generate "pastel weather icons"
"""

import asyncio
import base64
import json
import logging
import random
import uuid
import zipfile
from dataclasses import dataclass, field
from io import BytesIO
from typing import Dict, Iterable, List, Optional, Tuple

from fastapi import FastAPI, HTTPException, Query
from fastapi.responses import Response, StreamingResponse
from PIL import Image, ImageDraw

from icon_pack import providers
from icon_pack.schemas import (
    GENERATION_COMPLETE,
    GENERATION_ERROR,
    SERVICE_UPDATE,
    ExportRequest,
    FeedbackRequest,
    GenerationRequest,
    MoreIconsRequest,
)
from icon_pack.session import JobKey

logger = logging.getLogger(__name__)

ICON_SIZE = 64
GRID_SIDE = 3

_COLORS = {
    "flux": (231, 111, 81),
    "recraft": (42, 157, 143),
    "photon": (233, 196, 106),
    "gpt": (38, 70, 83),
    "imagen": (244, 162, 97),
}


def draw_icon(provider_id: str, index: int, transparent: bool = False) -> Image.Image:
    """Placeholder icon: a provider-coloured disc on a plain background."""
    mode = "RGBA" if transparent else "RGB"
    background = (0, 0, 0, 0) if transparent else (255, 255, 255)
    image = Image.new(mode, (ICON_SIZE, ICON_SIZE), background)
    draw = ImageDraw.Draw(image)
    color = _COLORS.get(provider_id, (128, 128, 128))
    inset = 4 + (index % 4) * 3
    draw.ellipse((inset, inset, ICON_SIZE - inset, ICON_SIZE - inset), fill=color)
    draw.text((ICON_SIZE // 2 - 4, ICON_SIZE // 2 - 6), str(index + 1), fill=(255, 255, 255))
    return image


def draw_grid(icons: List[Image.Image]) -> Image.Image:
    """Paste up to nine icons into a 3x3 grid."""
    grid = Image.new("RGB", (ICON_SIZE * GRID_SIDE, ICON_SIZE * GRID_SIDE), (255, 255, 255))
    for position, icon in enumerate(icons[:GRID_SIDE * GRID_SIDE]):
        row, col = divmod(position, GRID_SIDE)
        grid.paste(icon.convert("RGB"), (col * ICON_SIZE, row * ICON_SIZE))
    return grid


def encode_png(image: Image.Image) -> bytes:
    buffer = BytesIO()
    image.save(buffer, format="PNG")
    return buffer.getvalue()


def b64_png(image: Image.Image) -> str:
    return base64.b64encode(encode_png(image)).decode("ascii")


def sse_event(event: str, data: dict) -> str:
    """Format one named push event."""
    return f"event: {event}\ndata: {json.dumps(data)}\n\n"


@dataclass
class MockJob:
    key: JobKey
    status: str
    descriptions: List[str] = field(default_factory=list)
    message: Optional[str] = None
    generation_time_ms: int = 0
    seed: Optional[int] = None


@dataclass
class MockRequest:
    request_id: str
    request: GenerationRequest
    enabled_services: Dict[str, bool]
    jobs: Dict[JobKey, MockJob] = field(default_factory=dict)
    streamed: bool = False


class MockBackend:
    """
    In-memory state behind the simulated API.

    Attributes:
        enabled_services: Provider id to enabled flag reported for every request
        failing_services: Providers whose jobs end in an error update
        delay: Seconds to wait between push events
        requests: Submitted requests by id
        feedback: Feedback texts received
        more_requests: Generate-more requests received
    """

    def __init__(
        self,
        enabled_services: Optional[Dict[str, bool]] = None,
        failing_services: Iterable[str] = (),
        delay: float = 0.0,
    ):
        if enabled_services is None:
            enabled_services = {provider_id: True for provider_id in providers.provider_ids()}
        self.enabled_services = dict(enabled_services)
        self.failing_services = set(failing_services)
        self.delay = delay
        self.requests: Dict[str, MockRequest] = {}
        self.feedback: List[str] = []
        self.more_requests: List[MoreIconsRequest] = []

    def submit(self, request: GenerationRequest) -> MockRequest:
        request_id = uuid.uuid4().hex[:12]
        entry = MockRequest(
            request_id=request_id,
            request=request,
            enabled_services=dict(self.enabled_services),
        )
        descriptions = self._descriptions(request)
        base_seed = request.seed if request.seed is not None else random.randint(0, 2**31 - 1)
        for provider_id, enabled in self.enabled_services.items():
            if not enabled:
                continue
            for index in range(1, request.generations_per_service + 1):
                key = JobKey(provider_id, index)
                if provider_id in self.failing_services:
                    entry.jobs[key] = MockJob(key, "error", message=f"{provider_id} is unavailable")
                else:
                    entry.jobs[key] = MockJob(
                        key, "success", descriptions=descriptions,
                        generation_time_ms=1200 * index, seed=base_seed + index - 1,
                    )
        self.requests[request_id] = entry
        logger.info(f"Mock request {request_id}: {len(entry.jobs)} jobs")
        return entry

    @staticmethod
    def _descriptions(request: GenerationRequest) -> List[str]:
        given = list(request.individual_descriptions)[:request.icon_count]
        theme = request.general_description or "icon"
        return given + [f"{theme} #{i + 1}" for i in range(len(given), request.icon_count)]

    def icons_for(self, job: MockJob, transparent: bool = False) -> List[Tuple[str, Image.Image]]:
        return [
            (description, draw_icon(job.key.provider, index, transparent))
            for index, description in enumerate(job.descriptions)
        ]

    def service_payload(self, entry: MockRequest, job: MockJob) -> dict:
        payload = {
            "serviceName": str(job.key),
            "status": job.status,
            "requestId": entry.request_id,
            "generationIndex": job.key.generation_index,
            "generationTimeMs": job.generation_time_ms,
        }
        if job.status == "success":
            icons = self.icons_for(job)
            payload["icons"] = [
                {"base64Data": b64_png(image), "description": description}
                for description, image in icons
            ]
            payload["originalGridImageBase64"] = b64_png(draw_grid([image for _, image in icons]))
            payload["seed"] = job.seed
            payload["message"] = f"Generated {len(icons)} icons"
        else:
            payload["message"] = job.message
        return payload

    async def events(self, entry: MockRequest):
        for job in entry.jobs.values():
            yield sse_event(SERVICE_UPDATE, {"serviceName": str(job.key), "status": "started"})
            if self.delay:
                await asyncio.sleep(self.delay)

        for job in entry.jobs.values():
            yield sse_event(SERVICE_UPDATE, self.service_payload(entry, job))
            if self.delay:
                await asyncio.sleep(self.delay)

        entry.streamed = True
        if entry.jobs and all(job.status == "error" for job in entry.jobs.values()):
            yield sse_event(GENERATION_ERROR, {"message": "All providers failed"})
        else:
            yield sse_event(GENERATION_COMPLETE, {
                "requestId": entry.request_id,
                "message": "Icon generation completed",
            })

    def archive(self, entry: MockRequest, job: MockJob, remove_background: bool) -> bytes:
        buffer = BytesIO()
        with zipfile.ZipFile(buffer, "w", zipfile.ZIP_DEFLATED) as archive:
            for index, (_, image) in enumerate(self.icons_for(job, transparent=remove_background), 1):
                archive.writestr(f"{job.key}-{index:02d}.png", encode_png(image))
        return buffer.getvalue()


def create_app(
    enabled_services: Optional[Dict[str, bool]] = None,
    failing_services: Iterable[str] = (),
    delay: float = 0.0,
) -> FastAPI:
    """
    Build the simulated backend app.

    Args:
        enabled_services: Providers reported as enabled (default: all)
        failing_services: Providers whose jobs fail
        delay: Seconds between push events

    Returns:
        FastAPI application; its ``MockBackend`` is at ``app.state.backend``
    """
    backend = MockBackend(enabled_services, failing_services, delay)

    app = FastAPI(
        title="icon-pack mock backend",
        description="Simulated icon generation backend",
        version="0.1.0"
    )
    app.state.backend = backend

    @app.post("/generate-stream")
    async def generate_stream(request: GenerationRequest):
        entry = backend.submit(request)
        return {"requestId": entry.request_id, "enabledServices": entry.enabled_services}

    @app.get("/stream/{request_id}")
    async def stream(request_id: str):
        entry = backend.requests.get(request_id)
        if entry is None:
            raise HTTPException(status_code=404, detail="Unknown request")

        return StreamingResponse(
            backend.events(entry),
            media_type="text/event-stream",
            headers={"Cache-Control": "no-cache", "X-Accel-Buffering": "no"}
        )

    @app.get("/status/{request_id}")
    async def status(request_id: str):
        entry = backend.requests.get(request_id)
        if entry is None:
            raise HTTPException(status_code=404, detail="Unknown request")
        state = "completed" if entry.streamed else "processing"
        return {"status": state, "message": f"{len(entry.jobs)} jobs"}

    @app.post("/export")
    async def export(request: ExportRequest):
        entry = backend.requests.get(request.request_id)
        if entry is None:
            raise HTTPException(status_code=404, detail="Unknown request")

        job = entry.jobs.get(JobKey(request.service_name, request.generation_index))
        if job is None or job.status != "success":
            raise HTTPException(status_code=404, detail="No icons for that generation")

        data = backend.archive(entry, job, request.remove_background)
        filename = f"icon-pack-{entry.request_id}-{job.key}.zip"
        return Response(
            content=data,
            media_type="application/zip",
            headers={"Content-Disposition": f'attachment; filename="{filename}"'}
        )

    @app.post("/generate-more")
    async def generate_more(request: MoreIconsRequest):
        backend.more_requests.append(request)
        entry = backend.requests.get(request.original_request_id)
        if entry is None:
            return {"status": "error", "message": "Original request not found"}
        if request.service_name in backend.failing_services:
            return {"status": "error", "message": f"{request.service_name} is unavailable"}

        new_icons = []
        for index, description in enumerate(request.icon_descriptions[:request.icon_count]):
            image = draw_icon(request.service_name, index)
            new_icons.append({
                "base64Data": b64_png(image),
                "description": description or f"{request.general_description or 'icon'} +{index + 1}",
            })
        return {"status": "success", "newIcons": new_icons, "generationTimeMs": 900}

    @app.get("/api/user/unsubscribe")
    async def unsubscribe(token: str = Query("")):
        if not token.strip():
            raise HTTPException(status_code=400, detail="Missing token")
        return {"success": True, "message": "You have been unsubscribed"}

    @app.post("/api/feedback")
    async def feedback(request: FeedbackRequest):
        backend.feedback.append(request.feedback)
        return Response(status_code=200)

    return app


def run_server(
    host: str = "127.0.0.1",
    port: int = 8080,
    delay: float = 0.5,
    failing_services: Iterable[str] = (),
):
    """
    Run the simulated backend.

    Args:
        host: Host to bind to
        port: Port to listen on
        delay: Seconds between push events
        failing_services: Providers whose jobs fail
    """
    import uvicorn

    logger.info(f"Starting mock backend on {host}:{port}")

    uvicorn.run(
        create_app(delay=delay, failing_services=failing_services),
        host=host,
        port=port,
        log_level="info"
    )
