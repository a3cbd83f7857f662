from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.ext.asyncio import AsyncSession

from src.crud.job import get_job
from src.database import get_db
from src.schemas.job import JobEnvelope, JobRead


router = APIRouter(prefix="/jobs", tags=["jobs"])


@router.get("/{job_id}", response_model=JobEnvelope)
async def get_job_endpoint(
    job_id: int,
    session: AsyncSession = Depends(get_db),
) -> JobEnvelope:
    """Inspect a background job (status, attempts, last error)."""

    job = await get_job(session, job_id=job_id)
    if job is None:
        raise HTTPException(status_code=404, detail="Job not found")
    return JobEnvelope(message="Job details.", data=JobRead.model_validate(job))
