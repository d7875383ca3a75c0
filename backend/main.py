"""
ExamForge API entry point.

Builds the FastAPI app: question import routes and exam submission routes
under /api, plus /health for probes.
"""

import time
from contextlib import asynccontextmanager

from fastapi import FastAPI, APIRouter, Request
from fastapi.middleware.cors import CORSMiddleware

from app.config import logger, get_version_info, CORS_ORIGINS, DEFAULT_IMPORT_MODE, GEMINI_MODEL
from app.routes import register_all_routes


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info(f"🚀 ExamForge starting (model={GEMINI_MODEL}, default import mode={DEFAULT_IMPORT_MODE})")
    # Included routers carry no path of their own
    logger.info("REGISTERED ROUTES: %s", [getattr(r, "path", None) for r in app.routes])

    yield

    logger.info("🛑 ExamForge shutting down, closing Mongo client")
    from app.database import client
    client.close()


app = FastAPI(title="ExamForge API", lifespan=lifespan)

api_router = APIRouter(prefix="/api")


@api_router.get("/version")
async def get_version():
    return get_version_info()


register_all_routes(api_router)
app.include_router(api_router)


@app.get("/health")
async def health():
    """Liveness probe; does not touch Mongo or the AI service"""
    return {"status": "healthy", "service": "ExamForge API"}


@app.middleware("http")
async def log_requests(request: Request, call_next):
    started = time.time()
    try:
        response = await call_next(request)
    except Exception as e:
        logger.error(f"{request.method} {request.url.path} raised: {e}")
        raise

    elapsed_ms = int((time.time() - started) * 1000)
    # Progress polling is chatty, keep it out of INFO
    if request.url.path.endswith("progress"):
        logger.debug(f"{request.method} {request.url.path} -> {response.status_code} ({elapsed_ms}ms)")
    else:
        logger.info(f"{request.method} {request.url.path} -> {response.status_code} ({elapsed_ms}ms)")
    return response


app.add_middleware(
    CORSMiddleware,
    allow_origins=CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)
