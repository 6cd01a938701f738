"""Health and metrics endpoints."""

from fastapi import APIRouter

from gate.config import settings
from gate.engine.rules import POLICY_RULES

router = APIRouter()


@router.get("/health")
async def health():
    """Health check endpoint."""
    return {"status": "ok"}


@router.get("/metrics")
async def metrics():
    """Basic metrics endpoint for observability."""
    return {"service": "gate", "version": settings.gate_version, "rules": len(POLICY_RULES)}
