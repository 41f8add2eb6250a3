import contextlib
import logging
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from app.routes import router
from app.core.config import settings
from app.core.errors import WorkflowError, workflow_error_handler
from prometheus_fastapi_instrumentator import Instrumentator

logging.basicConfig(
    level=settings.LOG_LEVEL,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)


@contextlib.asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info("Starting %s (%s)...", settings.SERVICE_NAME, settings.ENVIRONMENT)
    yield
    logger.info("Shutting down %s...", settings.SERVICE_NAME)


app = FastAPI(
    title="VidPOD Workflow Service",
    description="Story idea and teacher request approval workflow API",
    version=settings.SERVICE_VERSION,
    lifespan=lifespan,
)

app.add_exception_handler(WorkflowError, workflow_error_handler)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(router, prefix="/api/workflow", tags=["workflow"])

Instrumentator(
    should_group_status_codes=True,
    should_ignore_untemplated=True,
    excluded_handlers=["/metrics", "/health", "/api/health"],
).instrument(app).expose(app, endpoint="/metrics", include_in_schema=False)

@app.get("/api/health")
async def health_check():
    return {"status": "ok", "service": settings.SERVICE_NAME}

@app.get("/")
async def root():
    """Root endpoint"""
    return {
        "service": settings.SERVICE_NAME,
        "version": settings.SERVICE_VERSION,
        "status": "running",
    }
