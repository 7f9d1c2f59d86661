import time
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from caption_relay.api import routes_health, routes_transcription
from caption_relay.core.config import get_settings
from caption_relay.core.exceptions import RecordNotFoundError
from caption_relay.core.logger import get_logger
from caption_relay.services.record_store import get_record_store
from caption_relay.services.session_manager import get_session_manager

log = get_logger(__name__)
settings = get_settings()


@asynccontextmanager
async def lifespan(app: FastAPI):
    log.info("%s %s starting (env=%s)", settings.APP_NAME, settings.APP_VERSION, settings.ENV)
    try:
        yield
    finally:
        # Shutdown
        await get_session_manager().shutdown()
        await get_record_store().aclose()


app = FastAPI(
    title=settings.APP_NAME,
    description="Relays a Fireflies.ai realtime transcript into a Supabase record",
    version=settings.APP_VERSION,
    lifespan=lifespan,
)

# CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.middleware("http")
async def log_requests(request: Request, call_next):
    start = time.perf_counter()
    response = await call_next(request)
    duration_ms = (time.perf_counter() - start) * 1000
    log.info("%s %s %d - %.0fms", request.method, request.url.path, response.status_code, duration_ms)
    return response


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError):
    fields = [".".join(str(p) for p in err["loc"] if p != "body") or "body" for err in exc.errors()]
    log.warning("Invalid request to %s: %s", request.url.path, fields)
    return JSONResponse(
        status_code=400,
        content={"detail": f"Invalid or missing fields: {', '.join(fields)}"},
    )


@app.exception_handler(RecordNotFoundError)
async def not_found_handler(request: Request, exc: RecordNotFoundError):
    log.warning("%s", exc)
    return JSONResponse(status_code=404, content={"detail": str(exc)})


@app.exception_handler(Exception)
async def unhandled_error_handler(request: Request, exc: Exception):
    log.exception("Unhandled error on %s %s", request.method, request.url.path)
    return JSONResponse(status_code=500, content={"detail": "Internal Server Error"})


# Routers
app.include_router(routes_transcription.router, prefix="/api/transcription", tags=["Transcription"])
app.include_router(routes_health.router, prefix="/health", tags=["Health"])


@app.get("/")
def root():
    return {"status": f"{settings.APP_NAME} running"}
