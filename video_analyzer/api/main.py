"""Video Analyzer API.

Exposes the analysis layer to the dashboard front-end:
- Scoring engine definitions
- Analysis runs per subject (start, confirm rerun, poll, select)
- Engine board per subject (run engines, composite Quantum score)
"""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from video_analyzer.api.routes import engines, subjects
from video_analyzer.api.sessions import get_session_manager
from video_analyzer.engines.registry import get_engine_registry
from video_analyzer.runs.db import init_db

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan handler."""
    logger.info("Loading engine definitions...")
    engine_registry = get_engine_registry()
    logger.info(f"Loaded {engine_registry.count()} engines")

    logger.info("Initializing runs database...")
    init_db()

    logger.info("Video Analyzer API ready")
    yield
    logger.info("Shutting down Video Analyzer API")
    get_session_manager().close_all()


app = FastAPI(
    title="Video Analyzer API",
    description="""
## Analysis runs and scoring engines

- `GET /v1/engines` - List scoring engines
- `PUT /v1/subjects/{id}` - Open a video for analysis
- `POST /v1/subjects/{id}/runs` - Start an analysis run
- `GET /v1/subjects/{id}/runs` - Poll run status and history
- `POST /v1/subjects/{id}/board/run-remaining` - Run all remaining engines
- `GET /v1/subjects/{id}/board` - Engine states and Quantum score
""",
    version="0.1.0",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(engines.router, prefix="/v1")
app.include_router(subjects.router, prefix="/v1")


@app.get("/")
async def root():
    """Root endpoint with API info."""
    return {
        "service": "Video Analyzer API",
        "version": "0.1.0",
        "docs": "/docs",
        "endpoints": {
            "engines": "/v1/engines",
            "subjects": "/v1/subjects",
        },
    }


@app.get("/health")
async def health():
    """Health check endpoint."""
    return {
        "status": "healthy",
        "engines_loaded": get_engine_registry().count(),
        "open_subjects": get_session_manager().count(),
    }
