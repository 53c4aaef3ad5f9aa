from fastapi import APIRouter

from .endpoints import health, noshow, observability, redemption

router = APIRouter()
router.include_router(health.router, tags=["Health"])
router.include_router(redemption.router)
router.include_router(noshow.router)
router.include_router(observability.router)
