# =============================================================================
# Pasture Biomass Estimator - FastAPI Server Application
# =============================================================================
# Thin HTTP host around the AnalysisOrchestrator. The local model is loaded
# once in the application lifespan; each upload runs through the hybrid
# pipeline and the AnalysisResult is returned as JSON. Classified pipeline
# failures are mapped onto HTTP status codes.
# =============================================================================

import logging
import time
from contextlib import asynccontextmanager

from fastapi import FastAPI, File, HTTPException, UploadFile

from config import get_config
from server.orchestrator import AnalysisOrchestrator
from shared.errors import (
    AnalysisTimeout,
    BiomassAnalysisError,
    ImageValidationError,
    RemoteTransportError,
)
from shared.schemas import AnalysisResult, HealthResponse

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Global references populated during lifespan startup
# ---------------------------------------------------------------------------
_orchestrator: AnalysisOrchestrator = None
_start_time: float = 0.0


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Application lifespan handler — initializes the analysis pipeline.

    On startup:
        - Loads the local PyTorch model (or degrades to remote-only mode).
        - Builds the remote vision client and the orchestrator.
    """
    global _orchestrator, _start_time

    config = get_config()
    _start_time = time.time()

    logger.info("Starting server — building analysis pipeline...")
    _orchestrator = AnalysisOrchestrator.from_config(config)

    logger.info(
        "Server ready — local model %s, remote vision %s.",
        "ENABLED" if _orchestrator.predictor.is_available else "DISABLED",
        "configured" if _orchestrator.client.is_configured else "NOT configured",
    )
    yield

    logger.info("Shutting down server...")
    _orchestrator = None


# ---------------------------------------------------------------------------
# FastAPI application
# ---------------------------------------------------------------------------
app = FastAPI(
    title="Pasture Biomass Estimator",
    description=(
        "Estimates pasture biomass components from a photograph by combining "
        "a local PyTorch regressor with a remote vision-language model."
    ),
    version="1.0.0",
    lifespan=lifespan,
)


def _status_for(exc: BiomassAnalysisError) -> int:
    """Map a classified pipeline failure onto an HTTP status code."""
    if isinstance(exc, ImageValidationError):
        return 400
    if isinstance(exc, AnalysisTimeout):
        return 504
    if isinstance(exc, RemoteTransportError):
        return 503
    return 502


@app.get("/health", response_model=HealthResponse)
def health_check():
    """
    Health check endpoint.

    Returns server status, whether the local model is loaded, and uptime.
    """
    ready = _orchestrator is not None
    predictor = _orchestrator.predictor if ready else None
    model_loaded = predictor is not None and predictor.is_available
    uptime = time.time() - _start_time if _start_time > 0 else 0.0
    return HealthResponse(
        status="ok" if ready else "loading",
        model_loaded=model_loaded,
        device=predictor.device if model_loaded else None,
        remote_configured=ready and _orchestrator.client.is_configured,
        uptime_seconds=round(uptime, 2),
    )


@app.post("/api/v1/analyses", response_model=AnalysisResult)
def analyze_image(file: UploadFile = File(...)):
    """
    Analyze an uploaded pasture photograph.

    Args:
        file: Multipart image upload (PNG, JPEG or GIF).

    Returns:
        AnalysisResult with the five biomass components and recommendations.
    """
    if _orchestrator is None:
        raise HTTPException(status_code=503, detail="Analysis pipeline not ready yet")

    image_bytes = file.file.read()
    logger.info("Received upload %s (%d bytes)", file.filename, len(image_bytes))

    try:
        return _orchestrator.run(image_bytes)
    except BiomassAnalysisError as exc:
        raise HTTPException(
            status_code=_status_for(exc),
            detail={
                "error": type(exc).__name__,
                "message": str(exc),
                "attempts": exc.attempts,
            },
        )
