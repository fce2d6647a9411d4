# API routers for the autotune service

from fastapi import APIRouter

from autotune.routers.autotune import router as autotune_router

router = APIRouter()
router.include_router(autotune_router, prefix="/autotune", tags=["autotune"])
