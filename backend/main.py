from __future__ import annotations

import asyncio
import time

from fastapi import FastAPI, File, HTTPException, Query, Request, UploadFile
from fastapi.responses import HTMLResponse
from fastapi.staticfiles import StaticFiles
from fastapi.templating import Jinja2Templates

from backend.config import settings
from backend.log_setup import setup_logging
from backend.schemas import BoxInstruction, DetectResponse, StatusResponse, UploadResponse
from backend.storage import save_upload
from detector.controller import DetectionController
from detector.errors import FileError, ProcessingError
from detector.loader import ModelLoader, default_strategies, probe_model_endpoint
from detector.surfaces import RecordingSurface, StatusBoard
from detector.types import DetectionParameters

logger = setup_logging(settings.debug)

app = FastAPI(title="Object Detection Demo", version="0.1.0")

# Frontend
templates = Jinja2Templates(directory=str(settings.project_root / "frontend" / "templates"))
app.mount(
    "/static",
    StaticFiles(directory=str(settings.project_root / "frontend" / "static")),
    name="static",
)


def build_controller() -> DetectionController:
    status = StatusBoard("Loading object detection model...")
    loader = ModelLoader(
        default_strategies(settings.fallback_weights),
        status,
        task=settings.model_task,
        model_id=settings.model_id,
        options={
            "quantized": False,
            "cache_dir": settings.model_cache_dir,
            "local_files_only": False,
            "use_auth_token": False,
            "revision": "main",
        },
        retry_delay_s=settings.retry_delay_s,
        probe=probe_model_endpoint if settings.probe_endpoint else None,
    )
    return DetectionController(
        loader,
        status,
        RecordingSurface(),
        detection_timeout_s=settings.detection_timeout_s,
        reload_on_demand=settings.reload_on_demand,
    )


controller = build_controller()
_background: set[asyncio.Task] = set()


@app.on_event("startup")
async def _startup() -> None:
    if not settings.preload_model:
        return
    task = asyncio.create_task(controller.initialize(settings.max_retries))
    _background.add(task)
    task.add_done_callback(_background.discard)


@app.get("/health", tags=["API"], summary="GET /health")
def health():
    return {"status": "ok"}


def _status() -> StatusResponse:
    return StatusResponse(
        status=controller.status.message,
        model_loaded=controller.state.model_loaded,
        is_processing=controller.state.is_processing,
        image_selected=controller.selected_image is not None,
    )


@app.get("/api/status", response_model=StatusResponse, tags=["API"], summary="GET /api/status")
def get_status():
    return _status()


@app.post("/api/image", response_model=UploadResponse, tags=["API"], summary="POST /api/image")
async def upload_image(file: UploadFile = File(...)):
    content = await file.read()
    max_bytes = settings.max_upload_mb * 1024 * 1024
    if len(content) > max_bytes:
        raise HTTPException(status_code=413, detail=f"File too large (>{settings.max_upload_mb}MB).")

    filename = file.filename or "upload"
    try:
        input_path = save_upload(settings.uploads_dir, filename, content)
        controller.select_image(input_path, file.content_type)
    except OSError as e:
        logger.error("Failed to store upload %s: %s", filename, e)
        raise HTTPException(status_code=500, detail="Error processing your file. Please try another image.") from e
    except FileError as e:
        raise HTTPException(status_code=400, detail=controller.status.message) from e
    return UploadResponse(status=controller.status.message, filename=filename)


@app.post("/api/detect", response_model=DetectResponse, tags=["API"], summary="POST /api/detect")
async def detect(
    threshold: float = Query(default=settings.default_threshold, ge=0.0, le=1.0),
    max_objects: int = Query(default=settings.default_max_objects, ge=1, le=settings.max_objects_limit),
):
    if controller.state.is_processing:
        raise HTTPException(status_code=409, detail="Already processing an image.")

    params = DetectionParameters(threshold=threshold, max_objects=max_objects)
    t0 = time.perf_counter()
    try:
        selected = await controller.run_detection(controller.selected_image, params)
    except ProcessingError as e:
        raise HTTPException(status_code=500, detail=controller.status.message) from e
    duration_ms = int((time.perf_counter() - t0) * 1000)

    if selected is None:
        if controller.selected_image is None:
            raise HTTPException(status_code=400, detail="No image selected.")
        if controller.state.detector is None:
            raise HTTPException(status_code=503, detail=controller.status.message)
        raise HTTPException(status_code=409, detail="Already processing an image.")

    return DetectResponse(
        status=controller.status.message,
        threshold=threshold,
        max_objects=max_objects,
        count=len(selected),
        duration_ms=duration_ms,
        boxes=[BoxInstruction(**b) for b in controller.surface.to_jsonable()],
    )


@app.post("/api/reset", response_model=StatusResponse, tags=["API"], summary="POST /api/reset")
def reset():
    controller.reset()
    return _status()


# -----------------
# Frontend
# -----------------

@app.get("/", response_class=HTMLResponse, tags=["Frontend"], summary="GET /")
def index(request: Request):
    return templates.TemplateResponse(
        request,
        "index.html",
        {
            "default_threshold": settings.default_threshold,
            "default_max_objects": settings.default_max_objects,
            "max_objects_limit": settings.max_objects_limit,
            "max_upload_mb": settings.max_upload_mb,
        },
    )
