from fastapi import APIRouter

from app.api.v1.endpoints import (
    prescriptions,
    orders,
    inventory,
    refill_requests,
    refill_notifications,
)

api_router = APIRouter()

api_router.include_router(prescriptions.router, prefix="/prescriptions", tags=["prescriptions"])
api_router.include_router(orders.router, prefix="/orders", tags=["orders"])
api_router.include_router(inventory.router, prefix="/inventory", tags=["inventory"])
api_router.include_router(refill_requests.router, prefix="/refill-requests", tags=["refill-requests"])
api_router.include_router(
    refill_notifications.router, prefix="/refill-notifications", tags=["refill-notifications"]
)
