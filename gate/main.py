"""Gate FastAPI application."""

import logging

from fastapi import FastAPI, Request, status
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from gate.api.approvals import router as approvals_router
from gate.api.gate import failure_response
from gate.api.gate import router as gate_router
from gate.api.health import router as health_router
from gate.config import settings
from gate.errors import (
    ApprovalStateError,
    GateError,
    NotFoundError,
    OrchestratorStateError,
    ValidationError,
)

logging.basicConfig(
    level=settings.log_level,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)

app = FastAPI(
    title="Gate - Fail-Closed Transaction Policy Engine",
    description="Evaluates agent transaction requests and seals each decision in a SHA-256 evidence pack",
    version=settings.gate_version,
    docs_url="/docs",
    redoc_url="/redoc",
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError):
    """Malformed bodies are rejected before evaluation, never coerced."""
    return JSONResponse(
        status_code=status.HTTP_400_BAD_REQUEST,
        content={
            "error": "Invalid request body",
            "code": ValidationError.code,
            "verdict": "BLOCKED",
            "detail": jsonable_encoder(exc.errors()),
        },
    )


@app.exception_handler(GateError)
async def gate_error_handler(request: Request, exc: GateError):
    if isinstance(exc, ValidationError):
        code = status.HTTP_400_BAD_REQUEST
    elif isinstance(exc, NotFoundError):
        code = status.HTTP_404_NOT_FOUND
    elif isinstance(exc, (ApprovalStateError, OrchestratorStateError)):
        code = status.HTTP_409_CONFLICT
    else:
        logger.error("Unhandled gate error on %s: %s", request.url.path, exc.message)
        code = status.HTTP_500_INTERNAL_SERVER_ERROR
    return failure_response(code, exc)


app.include_router(health_router, tags=["Health"])
app.include_router(gate_router, prefix="/v1", tags=["Gate"])
app.include_router(approvals_router, prefix="/v1", tags=["Approvals"])


@app.get("/")
async def root():
    """Root endpoint."""
    return {"service": "gate", "version": settings.gate_version, "docs": "/docs"}
