"""Health check endpoint."""

from fastapi import APIRouter, Depends
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession

from app.adapters.persistence.database import get_session
from app.infrastructure.api.dependencies import job_runner

router = APIRouter(tags=["health"])


@router.get("/health")
async def health_check(session: AsyncSession = Depends(get_session)):
    """Check API, database connectivity and the distribution job runner."""
    try:
        result = await session.execute(text("SELECT 1"))
        result.scalar()
        db_status = "connected"
    except Exception as e:
        db_status = f"error: {e}"

    healthy = db_status == "connected" and job_runner.running
    return {
        "status": "ok" if healthy else "degraded",
        "database": db_status,
        "jobRunner": {
            "running": job_runner.running,
            "pendingJobs": len(job_runner.pending_keys),
        },
        "service": "Task Distribution Engine",
    }
