import os
import asyncio
import logging
from datetime import datetime, timezone
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.staticfiles import StaticFiles
from inkframe.db import Base, engine, ensure_sqlite_schema
from inkframe.db import SessionLocal
from inkframe.api import device, display, playlist, plugin
from inkframe.seed import seed_device_models
from inkframe.services import storage
from inkframe.services.image_cache import cleanup_generated

LOG_LEVEL = os.getenv("INKFRAME_LOG_LEVEL", "INFO").strip().upper() or "INFO"
logging.basicConfig(level=LOG_LEVEL, format="%(asctime)s %(levelname)s %(name)s: %(message)s")

Base.metadata.create_all(bind=engine)
ensure_sqlite_schema()
storage.ensure_storage()

_seed_db = SessionLocal()
try:
    seed_device_models(_seed_db)
finally:
    _seed_db.close()

API_KEY = os.getenv("INKFRAME_API_KEY", "").strip()
IMAGE_GC_SWEEP_SEC = int(os.getenv("INKFRAME_IMAGE_GC_SWEEP_SEC", "3600"))
QUIET_ACCESS_LOG = os.getenv("INKFRAME_QUIET_ACCESS_LOG", "1").strip().lower() in {"1", "true", "yes", "on"}
DEVICE_PATH_PREFIXES = ("/api/", "/storage", "/docs", "/openapi.json", "/redoc", "/healthz")
_image_gc_task: asyncio.Task | None = None

logger = logging.getLogger(__name__)

if QUIET_ACCESS_LOG:
    # Devices poll constantly; keep warning/error lines only.
    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)


def _sweep_generated_images() -> int:
    db = SessionLocal()
    try:
        return cleanup_generated(db)
    finally:
        db.close()


async def _image_gc_watcher() -> None:
    while True:
        await asyncio.sleep(IMAGE_GC_SWEEP_SEC)
        try:
            await asyncio.to_thread(_sweep_generated_images)
        except Exception:
            logger.exception("Image GC sweep failed")


app = FastAPI(title="inkframe")
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.get("/")
def root():
    return {
        "ok": True,
        "service": "inkframe",
        "time_utc": datetime.now(timezone.utc).isoformat(),
        "docs": "/docs",
    }


@app.get("/healthz")
def healthz():
    return {"ok": True}


@app.on_event("startup")
async def startup_events() -> None:
    global _image_gc_task
    if IMAGE_GC_SWEEP_SEC > 0 and (_image_gc_task is None or _image_gc_task.done()):
        _image_gc_task = asyncio.create_task(_image_gc_watcher())


@app.on_event("shutdown")
async def shutdown_events() -> None:
    global _image_gc_task
    if _image_gc_task is not None:
        _image_gc_task.cancel()
        try:
            await _image_gc_task
        except asyncio.CancelledError:
            pass
        _image_gc_task = None


@app.middleware("http")
async def api_key_middleware(request: Request, call_next):
    if not API_KEY:
        return await call_next(request)
    path = request.url.path
    if path == "/" or path.startswith(DEVICE_PATH_PREFIXES):
        return await call_next(request)
    if request.headers.get("X-API-Key") != API_KEY:
        return JSONResponse({"detail": "Unauthorized"}, status_code=401)
    return await call_next(request)


app.include_router(display.router)
app.include_router(device.router)
app.include_router(device.models_router)
app.include_router(playlist.router)
app.include_router(plugin.router)

app.mount("/storage", StaticFiles(directory=storage.STORAGE_DIR), name="storage")
