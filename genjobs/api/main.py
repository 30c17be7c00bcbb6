"""FastAPI front door for generation jobs with streamed progress"""

import json
import logging
import time
import uuid
from contextlib import asynccontextmanager
from datetime import datetime
from typing import Optional

from fastapi import FastAPI
from fastapi.responses import JSONResponse, StreamingResponse
from fastapi.staticfiles import StaticFiles

from .api_types import GenerateRequest, GenerateImageRequest, GenerateVideoRequest, ServicesResponse, CancelResponse
from ..core.config import MCP_CONFIG_PATH, OUTPUT_DIR, REDIS_URL, HOST, PORT
from ..core.exceptions import GenerationError
from ..generation.orchestrator import JobOrchestrator
from ..generation.registry import ServiceRegistry, load_service_config, SERVICE_KINDS
from ..progress import ProgressHub, ProgressReporter, RedisProgressPublisher

logger = logging.getLogger(__name__)


def load_registry(config_path: str = MCP_CONFIG_PATH) -> ServiceRegistry:
    """Registry from the service-config document; empty when none is configured"""
    try:
        return ServiceRegistry(load_service_config(config_path))
    except GenerationError as e:
        logger.warning(f"[API] {e}")
        return ServiceRegistry({})


def create_app(
    orchestrator: Optional[JobOrchestrator] = None,
    redis_url: str = REDIS_URL,
    hub: Optional[ProgressHub] = None
) -> FastAPI:
    """
    Build the application around one orchestrator

    Progress events are fanned out to an in-process hub for /api/progress
    streams and, when redis_url is set, to Redis pub/sub.
    """
    if orchestrator is None:
        orchestrator = JobOrchestrator(load_registry(), reporter=ProgressReporter())
    hub = hub or ProgressHub()
    orchestrator.reporter.add_sink(hub)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Manage application lifespan"""
        # Startup
        orchestrator.output_dir.mkdir(parents=True, exist_ok=True)
        app.state.redis_publisher = None
        if redis_url:
            publisher = RedisProgressPublisher.from_url(redis_url)
            orchestrator.reporter.add_sink(publisher)
            app.state.redis_publisher = publisher
            logger.info("[API] Publishing progress events to Redis")

        yield

        # Shutdown
        await orchestrator.reporter.drain()
        if app.state.redis_publisher:
            await app.state.redis_publisher.close()

    app = FastAPI(
        title="Generation Job Orchestrator",
        description="Submits image and video generation jobs to MCP services and streams their progress",
        version="1.0.0",
        lifespan=lifespan
    )
    app.state.orchestrator = orchestrator
    app.state.hub = hub
    app.state.started_at = time.time()

    @app.get("/health")
    async def health():
        """Health check endpoint"""
        redis_status = "disabled"
        publisher = getattr(app.state, "redis_publisher", None)
        if publisher is not None:
            try:
                await publisher.ping()
                redis_status = "connected"
            except Exception as e:
                redis_status = f"error: {str(e)}"

        return {
            "status": "healthy",
            "uptime": round(time.time() - app.state.started_at, 1),
            "services": len(orchestrator.registry),
            "redis": redis_status,
            "timestamp": datetime.now().isoformat()
        }

    @app.get("/api/services", response_model=ServicesResponse)
    async def list_services():
        """Registered services grouped by kind, plus the default per kind"""
        defaults = {}
        for kind in SERVICE_KINDS:
            try:
                defaults[kind] = orchestrator.registry.default_service(kind)
            except GenerationError:
                defaults[kind] = None
        return {"services": orchestrator.registry.summary(), "defaults": defaults}

    async def run_generation(kind: str, request: GenerateRequest) -> JSONResponse:
        task_id = request.task_id or str(uuid.uuid4())
        options = request.to_options(kind)
        options["task_id"] = task_id
        logger.info(f"[API] {kind} generation requested (task {task_id})")

        result = await orchestrator.generate(request.prompt, options)
        body = {**result.to_dict(), "taskId": task_id}
        if not result.success:
            logger.error(f"[API] {kind} generation failed (task {task_id}): {result.error}")
            return JSONResponse(status_code=500, content=body)
        return JSONResponse(content=body)

    @app.post("/api/generate")
    async def generate_image(request: GenerateImageRequest):
        """Generate an image and wait for the result"""
        return await run_generation("image", request)

    @app.post("/api/generate-video")
    async def generate_video(request: GenerateVideoRequest):
        """Generate a video and wait for the result"""
        return await run_generation("video", request)

    @app.get("/api/progress/{task_id}")
    async def progress_stream(task_id: str):
        """Newline-delimited JSON progress events, closed after the terminal event"""
        async def events():
            connected = {"type": "connected", "taskId": task_id, "timestamp": datetime.now().isoformat()}
            yield json.dumps(connected) + "\n"
            async for event in hub.subscribe(task_id):
                yield json.dumps(event, default=str) + "\n"

        return StreamingResponse(events(), media_type="application/x-ndjson")

    @app.post("/api/tasks/{task_id}/cancel", response_model=CancelResponse)
    async def cancel_task(task_id: str):
        """Cancel an in-flight generation job"""
        if not orchestrator.cancel(task_id):
            return JSONResponse(status_code=404, content={"error": "Task not found", "taskId": task_id})
        return CancelResponse(task_id=task_id, status="cancelling")

    app.mount("/generated", StaticFiles(directory=str(orchestrator.output_dir), check_dir=False), name="generated")
    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn
    logging.basicConfig(level=logging.INFO)
    uvicorn.run(app, host=HOST, port=PORT)
