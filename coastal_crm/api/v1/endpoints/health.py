"""
Health Check Endpoint
Provides health status for Docker health checks and monitoring
"""
from fastapi import APIRouter, Depends, status
from datetime import datetime
from typing import Any, Dict

from coastal_crm.api.v1.dependencies import get_dialer_engine
from coastal_crm.domain.services.dialer_engine import DialerEngine

router = APIRouter(tags=["health"])


@router.get("/health", status_code=status.HTTP_200_OK)
async def health_check(engine: DialerEngine = Depends(get_dialer_engine)) -> Dict[str, Any]:
    """
    Health check endpoint for Docker and monitoring systems.

    Returns:
        Dict with status, timestamp and dialer registry stats
    """
    return {
        "status": "healthy",
        "timestamp": datetime.utcnow().isoformat() + "Z",
        "service": "coastal-crm-dialer",
        "dialer": engine.get_stats(),
    }


@router.get("/", status_code=status.HTTP_200_OK)
async def root() -> Dict[str, str]:
    return {
        "message": "Coastal CRM Dialer",
        "version": "1.0.0",
        "docs": "/docs"
    }
