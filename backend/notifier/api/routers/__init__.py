from fastapi import APIRouter

from notifier.api.routers.notifications import router as notifications_router


api_router = APIRouter()
api_router.include_router(notifications_router, prefix="/notifications", tags=["notifications"])
