from fastapi import APIRouter

from .endpoints import checkout, enrollments, fulfillment, health, progress, refunds, webhooks

router = APIRouter()
router.include_router(health.router, tags=["Health"])
router.include_router(checkout.router)
router.include_router(webhooks.router)
router.include_router(enrollments.router)
router.include_router(progress.router)
router.include_router(refunds.router)
router.include_router(fulfillment.router)
