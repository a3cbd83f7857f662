from fastapi import APIRouter

from src.api.v1.endpoints.brands import router as brands_router
from src.api.v1.endpoints.jobs import router as jobs_router

router = APIRouter()


@router.get("/ping")
async def ping():
    return {"ping": "pong"}


router.include_router(brands_router)
router.include_router(jobs_router)
